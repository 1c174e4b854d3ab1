"""
Shared fixtures: in-memory store, cache and quota counters wired into the
FastAPI app, plus a controllable clock for TTL tests.
"""
from __future__ import annotations

from typing import Dict

import pytest
from fastapi.testclient import TestClient

from catalog.cache import CacheAside, MemoryCacheProvider
from catalog.config import Settings
from catalog.main import create_app
from catalog.models import RecordDraft
from catalog.quota import MemoryCounterStore, QuotaGate
from catalog.store import MemoryRecordStore

API_KEYS: Dict[str, str] = {
    "basic-key": "BASIC",
    "pro-key": "PRO",
    "ultra-key": "ULTRA",
    "mega-key": "MEGA",
}
ADMIN_KEY = "admin-secret"


class FakeClock:
    """Monotonic-style clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_draft(n: int, **overrides) -> RecordDraft:
    fields = {
        "natural_key": f"https://shop.test/p/{n}",
        "title": f"HP Laptop {n}",
        "display_price": f"{1000 + n} MAD",
        "image_url": f"https://shop.test/img/{n}.jpg",
        "category": "Laptops",
        "source_page": "https://shop.test/catalog?page=1",
    }
    fields.update(overrides)
    return RecordDraft(**fields)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SUPABASE_URL="https://unit-test.supabase.co",
        SUPABASE_SERVICE_KEY="service-key",
        ADMIN_API_KEY=ADMIN_KEY,
        PLAN_KEYS='{"basic-key": "BASIC", "pro-key": "PRO", "ultra-key": "ULTRA", "mega-key": "mega"}',
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def counters(clock: FakeClock) -> MemoryCounterStore:
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def gate(settings: Settings, counters: MemoryCounterStore) -> QuotaGate:
    return QuotaGate(settings.plan_keys, counters, window_seconds=settings.quota_window_seconds)


@pytest.fixture
def cache(clock: FakeClock) -> CacheAside:
    return CacheAside(MemoryCacheProvider(clock=clock))


@pytest.fixture
def client(settings, store, cache, gate) -> TestClient:
    app = create_app(settings=settings, store=store, cache=cache, gate=gate)
    return TestClient(app, raise_server_exceptions=False)
