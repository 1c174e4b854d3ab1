import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request

from ..access import project, project_many
from ..auth import admit_request, require_admin
from ..cache import CacheAside, build_cache_key
from ..config import Settings
from ..errors import NotFound, ValidationError
from ..models import DEFAULT_CATEGORY, CategoriesOut, Record, RecordDraft, RecordIn
from ..plans import policy_for
from ..quota import Admission
from ..store import RecordStore

router = APIRouter()


def _store(request: Request) -> RecordStore:
    return request.app.state.store


def _cache(request: Request) -> CacheAside:
    return request.app.state.cache


def _settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("")
def latest(request: Request, admission: Admission = Depends(admit_request)) -> List[Dict[str, Any]]:
    limit = policy_for(admission.plan).list_limit
    key = build_cache_key("latest", {}, admission.plan)
    return _cache(request).read(
        key,
        lambda: project_many(_store(request).list_recent(limit), admission.plan),
        _settings(request).cache_ttl_latest,
    )


@router.get("/search/{term}")
def search(term: str, request: Request, admission: Admission = Depends(admit_request)) -> List[Dict[str, Any]]:
    term = term.strip()
    if not term:
        raise ValidationError("search term must not be empty")
    limit = policy_for(admission.plan).search_limit
    key = build_cache_key("search", {"q": term}, admission.plan, casefold=("q",))
    return _cache(request).read(
        key,
        lambda: project_many(_store(request).find_by_text(term, limit), admission.plan),
        _settings(request).cache_ttl_search,
    )


@router.get("/price-range")
def price_range(
    request: Request,
    admission: Admission = Depends(admit_request),
    min_price: Optional[float] = Query(default=None, alias="min"),
    max_price: Optional[float] = Query(default=None, alias="max"),
) -> List[Dict[str, Any]]:
    if min_price is None or max_price is None:
        raise ValidationError("min and max are required")
    if not (math.isfinite(min_price) and math.isfinite(max_price)):
        raise ValidationError("min and max must be finite numbers")
    if min_price < 0 or max_price < min_price:
        raise ValidationError("min and max must satisfy 0 <= min <= max")
    limit = policy_for(admission.plan).list_limit
    key = build_cache_key("price-range", {"min": min_price, "max": max_price}, admission.plan)
    return _cache(request).read(
        key,
        lambda: project_many(_store(request).find_by_price_range(min_price, max_price, limit), admission.plan),
        _settings(request).cache_ttl_price_range,
    )


@router.get("/categories", response_model=CategoriesOut)
def categories(request: Request, admission: Admission = Depends(admit_request)):
    key = build_cache_key("categories", {}, admission.plan)
    return _cache(request).read(
        key,
        lambda: {"categories": _store(request).list_distinct_categories()},
        _settings(request).cache_ttl_categories,
    )


@router.get("/{record_id}")
def detail(record_id: str, request: Request, admission: Admission = Depends(admit_request)) -> Dict[str, Any]:
    def compute() -> Dict[str, Any]:
        record = _store(request).find_by_id(record_id)
        if record is None:
            raise NotFound("Record not found")
        return project(record, admission.plan).model_dump()

    key = build_cache_key("record", {"id": record_id}, admission.plan)
    return _cache(request).read(key, compute, _settings(request).cache_ttl_detail)


@router.post("", response_model=Record, dependencies=[Depends(require_admin)])
def admin_upsert(payload: RecordIn, request: Request):
    """
    Administrative insert-or-update keyed by natural_key. Goes straight to the
    store; cached reads pick it up when their TTL lapses.
    """
    draft = RecordDraft(
        natural_key=payload.natural_key,
        title=payload.title,
        display_price=payload.display_price,
        image_url=payload.image_url,
        source_page=payload.source_page,
        category=payload.category or DEFAULT_CATEGORY,
    )
    return _store(request).upsert(draft)
