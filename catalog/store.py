"""
Canonical record store.

Records are keyed by their natural key (the product URL). ``upsert`` is one
atomic store operation: the backend decides insert-vs-update and keeps the
``id``/``created_at`` it generated on the first insert. Callers never look a
record up before writing it.

Two backends:

- ``SupabaseRecordStore``: PostgREST upsert with ``on_conflict=natural_key``.
  The row sent never contains ``id`` or ``created_at``, so Postgres fills
  them from column defaults on insert and ``ON CONFLICT DO UPDATE`` only
  rewrites the columns that were sent.
- ``MemoryRecordStore``: process-local, for tests and local runs.
"""
import logging
import math
import threading
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Protocol
from uuid import uuid4

from supabase import Client, create_client

from .config import get_settings
from .errors import StoreFailure, ValidationError
from .models import DEFAULT_CATEGORY, Record, RecordDraft, numeric_price

logger = logging.getLogger(__name__)

TABLE = "records"
CATEGORIES_VIEW = "record_categories"


class RecordStore(Protocol):
    def upsert(self, draft: RecordDraft) -> Record: ...

    def find_by_id(self, record_id: str) -> Optional[Record]: ...

    def find_by_text(self, query: str, limit: int) -> List[Record]: ...

    def find_by_price_range(self, min_price: float, max_price: float, limit: int) -> List[Record]: ...

    def list_recent(self, limit: int) -> List[Record]: ...

    def list_distinct_categories(self) -> List[str]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def validate_draft(draft: RecordDraft) -> RecordDraft:
    """Trim a draft and reject it if the natural key or title is missing."""
    cleaned = RecordDraft(
        natural_key=_clean(draft.natural_key),
        title=_clean(draft.title),
        display_price=_clean(draft.display_price),
        image_url=_clean(draft.image_url),
        category=_clean(draft.category) or DEFAULT_CATEGORY,
        source_page=_clean(draft.source_page),
    )
    if not cleaned.natural_key:
        raise ValidationError("natural_key is required")
    if not cleaned.title:
        raise ValidationError("title is required")
    return cleaned


def _mutable_row(draft: RecordDraft, now: datetime) -> Dict:
    row = draft.mutable_fields()
    row["numeric_price"] = numeric_price(draft.display_price)
    row["updated_at"] = now
    return row


@lru_cache()
def get_supabase() -> Client:
    settings = get_settings()
    url = str(settings.supabase_url)

    if "your-project.supabase.co" in url:
        raise RuntimeError(
            "SUPABASE_URL in .env is still the placeholder (your-project). "
            "Fill in your real project URL and service key."
        )
    return create_client(url, settings.supabase_key)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SupabaseRecordStore:
    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            try:
                self._client = get_supabase()
            except Exception as exc:
                raise StoreFailure("Record store client initialization failed") from exc
        return self._client

    def _execute(self, query) -> List[Dict]:
        try:
            resp = query.execute()
        except Exception as exc:
            logger.exception("Supabase query raised an exception")
            raise StoreFailure("Record store unavailable") from exc
        error = getattr(resp, "error", None)
        if error:
            logger.error("Supabase response.error: %s", error)
            raise StoreFailure("Record store query failed")
        return getattr(resp, "data", None) or []

    def upsert(self, draft: RecordDraft) -> Record:
        draft = validate_draft(draft)
        row = _mutable_row(draft, _utcnow())
        row["updated_at"] = row["updated_at"].isoformat()
        row["natural_key"] = draft.natural_key

        logger.debug("Upserting record %s -> %s", draft.natural_key, draft.title)
        data = self._execute(self.client.table(TABLE).upsert(row, on_conflict="natural_key"))
        if not data:
            raise StoreFailure("Upsert returned no row")
        return Record.model_validate(data[0])

    def find_by_id(self, record_id: str) -> Optional[Record]:
        data = self._execute(self.client.table(TABLE).select("*").eq("id", record_id).limit(1))
        return Record.model_validate(data[0]) if data else None

    def find_by_text(self, query: str, limit: int) -> List[Record]:
        pattern = f"%{_escape_like(query)}%"
        data = self._execute(
            self.client.table(TABLE)
            .select("*")
            .ilike("title", pattern)
            .order("created_at", desc=True)
            .limit(limit)
        )
        return [Record.model_validate(row) for row in data]

    def find_by_price_range(self, min_price: float, max_price: float, limit: int) -> List[Record]:
        data = self._execute(
            self.client.table(TABLE)
            .select("*")
            .gte("numeric_price", math.ceil(min_price))
            .lte("numeric_price", math.floor(max_price))
            .order("created_at", desc=True)
            .limit(limit)
        )
        return [Record.model_validate(row) for row in data]

    def list_recent(self, limit: int) -> List[Record]:
        data = self._execute(
            self.client.table(TABLE).select("*").order("created_at", desc=True).limit(limit)
        )
        return [Record.model_validate(row) for row in data]

    def list_distinct_categories(self) -> List[str]:
        # PostgREST has no DISTINCT; the view deduplicates server-side.
        data = self._execute(self.client.table(CATEGORIES_VIEW).select("category").order("category"))
        return [row["category"] for row in data if row.get("category")]


class MemoryRecordStore:
    """Lock-guarded in-process store with the same upsert semantics."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._lock = threading.Lock()
        self._by_key: Dict[str, Record] = {}
        self._by_id: Dict[str, str] = {}
        self._seq: Dict[str, int] = {}

    def upsert(self, draft: RecordDraft) -> Record:
        draft = validate_draft(draft)
        with self._lock:
            now = self._clock()
            row = _mutable_row(draft, now)
            existing = self._by_key.get(draft.natural_key)
            if existing is not None:
                record = existing.model_copy(update=row)
            else:
                record = Record(
                    id=str(uuid4()),
                    natural_key=draft.natural_key,
                    created_at=now,
                    **row,
                )
                self._by_id[record.id] = draft.natural_key
                self._seq[draft.natural_key] = len(self._seq)
            self._by_key[draft.natural_key] = record
        return record

    def _newest_first(self, records) -> List[Record]:
        return sorted(
            records,
            key=lambda r: (r.created_at, self._seq[r.natural_key]),
            reverse=True,
        )

    def find_by_id(self, record_id: str) -> Optional[Record]:
        with self._lock:
            key = self._by_id.get(record_id)
            return self._by_key.get(key) if key else None

    def find_by_text(self, query: str, limit: int) -> List[Record]:
        needle = query.lower()
        with self._lock:
            hits = [r for r in self._by_key.values() if needle in r.title.lower()]
            return self._newest_first(hits)[:limit]

    def find_by_price_range(self, min_price: float, max_price: float, limit: int) -> List[Record]:
        with self._lock:
            hits = [
                r
                for r in self._by_key.values()
                if r.numeric_price is not None and min_price <= r.numeric_price <= max_price
            ]
            return self._newest_first(hits)[:limit]

    def list_recent(self, limit: int) -> List[Record]:
        with self._lock:
            return self._newest_first(self._by_key.values())[:limit]

    def list_distinct_categories(self) -> List[str]:
        with self._lock:
            return sorted(
                {r.category for r in self._by_key.values() if r.category and r.category != DEFAULT_CATEGORY}
            )
