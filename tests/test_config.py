from __future__ import annotations

import pytest
from pydantic import ValidationError

from catalog.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_missing_required_env_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)

    with pytest.raises(RuntimeError) as exc:
        get_settings()

    assert "SUPABASE_URL" in str(exc.value)
    assert "SUPABASE_SERVICE_KEY" in str(exc.value)


def test_env_values_are_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://unit-test.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "k")
    monkeypatch.setenv("PLAN_KEYS", '{"a": "pro", "b": "MEGA"}')
    monkeypatch.setenv("CACHE_TTL_DETAIL", "30")
    monkeypatch.delenv("REDIS_URL", raising=False)

    settings = get_settings()

    assert settings.plan_keys == {"a": "PRO", "b": "MEGA"}
    assert settings.cache_ttl_detail == 30
    assert settings.redis_url is None


def test_defaults_match_documented_ttls() -> None:
    settings = Settings(SUPABASE_URL="https://unit-test.supabase.co", SUPABASE_SERVICE_KEY="k")

    assert (
        settings.cache_ttl_latest,
        settings.cache_ttl_detail,
        settings.cache_ttl_search,
        settings.cache_ttl_price_range,
        settings.cache_ttl_categories,
    ) == (60, 300, 60, 120, 600)
    assert settings.quota_window_seconds == 30 * 24 * 60 * 60
    assert settings.plan_keys == {}


def test_invalid_plan_keys_json() -> None:
    with pytest.raises(ValidationError):
        Settings(SUPABASE_URL="https://unit-test.supabase.co", SUPABASE_SERVICE_KEY="k", PLAN_KEYS="not json")
