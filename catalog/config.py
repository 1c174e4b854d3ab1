import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import orjson
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, ValidationError, field_validator

DEFAULT_LISTING_TEMPLATE = "https://www.jumia.ma/catalog/?q=pc+portable+hp&page={page}#catalog-listing"


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    supabase_url: HttpUrl = Field(alias="SUPABASE_URL")
    supabase_key: str = Field(alias="SUPABASE_SERVICE_KEY")
    env: str = Field(default="local", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Optional: without Redis the cache is disabled and quota counters live in memory.
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")

    admin_api_key: Optional[str] = Field(default=None, alias="ADMIN_API_KEY")
    # JSON object: {"<api key>": "BASIC" | "PRO" | "ULTRA" | "MEGA"}
    plan_keys: Dict[str, str] = Field(default_factory=dict, alias="PLAN_KEYS")
    quota_window_days: int = Field(default=30, alias="QUOTA_WINDOW_DAYS")

    cache_ttl_latest: int = Field(default=60, alias="CACHE_TTL_LATEST")
    cache_ttl_detail: int = Field(default=300, alias="CACHE_TTL_DETAIL")
    cache_ttl_search: int = Field(default=60, alias="CACHE_TTL_SEARCH")
    cache_ttl_price_range: int = Field(default=120, alias="CACHE_TTL_PRICE_RANGE")
    cache_ttl_categories: int = Field(default=600, alias="CACHE_TTL_CATEGORIES")

    harvest_url_template: str = Field(default=DEFAULT_LISTING_TEMPLATE, alias="HARVEST_URL_TEMPLATE")
    harvest_start_page: int = Field(default=1, alias="HARVEST_START_PAGE")
    harvest_end_page: int = Field(default=50, alias="HARVEST_END_PAGE")
    harvest_max_targets: int = Field(default=50, alias="HARVEST_MAX_TARGETS")
    harvest_concurrency: int = Field(default=3, alias="HARVEST_CONCURRENCY")
    harvest_target_timeout_s: float = Field(default=45.0, alias="HARVEST_TARGET_TIMEOUT_S")
    harvest_wait_selector_ms: int = Field(default=15000, alias="HARVEST_WAIT_SELECTOR_MS")
    harvest_retries: int = Field(default=2, alias="HARVEST_RETRIES")
    harvest_run_budget_s: float = Field(default=900.0, alias="HARVEST_RUN_BUDGET_S")

    @field_validator("plan_keys", mode="before")
    @classmethod
    def _parse_plan_keys(cls, value):
        if isinstance(value, (str, bytes)):
            return orjson.loads(value) if value.strip() else {}
        return value

    @field_validator("plan_keys")
    @classmethod
    def _upper_tiers(cls, value: Dict[str, str]) -> Dict[str, str]:
        return {key: tier.upper() for key, tier in value.items()}

    @property
    def quota_window_seconds(self) -> int:
        return self.quota_window_days * 24 * 60 * 60


def _load_dotenv():
    # Load from repo root if present, otherwise rely on environment variables.
    root_env = Path(__file__).resolve().parents[1] / ".env"
    if root_env.exists():
        load_dotenv(root_env)
    else:
        load_dotenv()


@lru_cache()
def get_settings() -> Settings:
    _load_dotenv()
    try:
        return Settings(**os.environ)
    except ValidationError as exc:
        missing = [e["loc"][0] for e in exc.errors() if e["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        detail = f"Missing required environment variables: {', '.join(missing)}"
        raise RuntimeError(detail) from exc
