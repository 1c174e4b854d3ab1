# adapter_listing.py
from typing import Dict, List

from bs4 import BeautifulSoup

ITEM_SELECTOR = "article.prd"


def _txt(node) -> str | None:
    if node is None:
        return None
    return " ".join(node.get_text(" ").split()) or None


def extract_listing(html: str, item_selector: str = ITEM_SELECTOR) -> List[Dict]:
    """
    Pull product cards out of a catalog listing page.

    Each card yields {title, price, image, url}; lazy-loaded images keep the
    real source in data-src.
    """
    soup = BeautifulSoup(html, "lxml")
    items: List[Dict] = []
    for card in soup.select(item_selector):
        img = card.select_one("img")
        link = card.select_one("a.core") or card.select_one("a[href]")
        items.append({
            "title": _txt(card.select_one("h3.name")),
            "price": _txt(card.select_one("div.prc")),
            "image": (img.get("data-src") or img.get("src")) if img else None,
            "url": link.get("href") if link else None,
        })
    return items
