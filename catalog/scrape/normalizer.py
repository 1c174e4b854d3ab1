from typing import Dict, Optional
from urllib.parse import urljoin

from ..models import DEFAULT_CATEGORY, RecordDraft


def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = " ".join(str(value).split())
    return value or None


def normalize(raw: Dict, source_page: str) -> Optional[RecordDraft]:
    """
    Turn one raw listing item into a draft, or None when it has no url/title.

    Relative product and image links are resolved against the listing page.
    """
    url = _text(raw.get("url"))
    title = _text(raw.get("title"))
    if not url or not title:
        return None

    image = _text(raw.get("image"))
    return RecordDraft(
        natural_key=urljoin(source_page, url),
        title=title,
        display_price=_text(raw.get("price")),
        image_url=urljoin(source_page, image) if image else None,
        category=_text(raw.get("category")) or DEFAULT_CATEGORY,
        source_page=source_page,
    )
