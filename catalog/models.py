import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CATEGORY = "Uncategorized"
_NON_DIGITS = re.compile(r"\D")


def numeric_price(display_price: Optional[str]) -> Optional[int]:
    """Digits of a scraped price string as an int ('1,299 MAD' -> 1299), None if it has none."""
    digits = _NON_DIGITS.sub("", display_price or "")
    return int(digits) if digits else None


# --- public.records ---
# natural_key (source URL) is UNIQUE; id and created_at are generated by the
# store on first insert and never sent on upsert.
class Record(BaseModel):
    id: str  # PRIMARY KEY
    natural_key: str
    title: str
    display_price: Optional[str] = None
    numeric_price: Optional[int] = None
    image_url: Optional[str] = None
    category: str = DEFAULT_CATEGORY
    source_page: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# Mutable fields of a record plus its natural key. Produced by the scrape
# normalizer and by the admin insert route.
class RecordDraft(BaseModel):
    natural_key: Optional[str] = None
    title: Optional[str] = None
    display_price: Optional[str] = None
    image_url: Optional[str] = None
    category: str = DEFAULT_CATEGORY
    source_page: Optional[str] = None

    def mutable_fields(self) -> dict:
        return self.model_dump(exclude={"natural_key"})


# Admin POST /records body. Required fields are enforced here; empty strings
# are rejected by the store-level draft validation.
class RecordIn(BaseModel):
    natural_key: str = Field(min_length=1)
    title: str = Field(min_length=1)
    display_price: Optional[str] = None
    image_url: Optional[str] = None
    source_page: Optional[str] = None
    category: Optional[str] = None


# --- tiered public views ---
class BasicView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    plan: str


class StandardView(BasicView):
    display_price: Optional[str] = None
    image_url: Optional[str] = None
    url: str
    category: str


class FullView(StandardView):
    source_page: Optional[str] = None


class CategoriesOut(BaseModel):
    categories: List[str]
