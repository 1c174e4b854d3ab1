import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .cache import CacheAside, RedisCacheProvider
from .config import Settings, get_settings
from .errors import CatalogError
from .quota import MemoryCounterStore, QuotaGate, RedisCounterStore
from .routers import records
from .store import RecordStore, SupabaseRecordStore

logger = logging.getLogger(__name__)


def _default_gate(settings: Settings) -> QuotaGate:
    if settings.redis_url:
        counters = RedisCounterStore.from_url(settings.redis_url)
    else:
        logger.warning("REDIS_URL not set; quota counters are per-process")
        counters = MemoryCounterStore()
    return QuotaGate(settings.plan_keys, counters, window_seconds=settings.quota_window_seconds)


def _default_cache(settings: Settings) -> CacheAside:
    if not settings.redis_url:
        logger.info("REDIS_URL not set; response cache disabled")
        return CacheAside(None)
    return CacheAside(RedisCacheProvider.from_url(settings.redis_url))


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    cache: Optional[CacheAside] = None,
    gate: Optional[QuotaGate] = None,
) -> FastAPI:
    """
    Build the API. Backends default to Supabase/Redis from settings; tests
    pass in-memory ones.

        uvicorn --factory catalog.main:create_app
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="Catalog API", version="0.1.0")
    app.state.settings = settings
    app.state.store = store if store is not None else SupabaseRecordStore()
    app.state.cache = cache if cache is not None else _default_cache(settings)
    app.state.gate = gate if gate is not None else _default_gate(settings)

    @app.exception_handler(CatalogError)
    async def catalog_error(request: Request, exc: CatalogError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "detail": f"Invalid or missing: {fields}"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "InternalError"})

    @app.get("/health")
    def healthcheck():
        return {"status": "ok", "env": settings.env}

    app.include_router(records.router, prefix="/records", tags=["records"])
    return app
