# robots.py
import logging
import threading
import urllib.robotparser as urp
from urllib.parse import urlsplit

import requests

logger = logging.getLogger(__name__)

UA = "CatalogHarvester/1.0"
_cache = {}
_lock = threading.Lock()


def allowed(url: str, user_agent: str = UA, timeout=5) -> bool:
    """robots.txt check, cached per origin. Unreachable robots.txt allows everything."""
    parts = urlsplit(url)
    base = f"{parts.scheme}://{parts.netloc}"
    with _lock:
        rp = _cache.get(base)
    if not rp:
        rp = urp.RobotFileParser()
        robots_url = f"{base}/robots.txt"
        try:
            r = requests.get(robots_url, timeout=timeout, headers={"User-Agent": user_agent})
            r.raise_for_status()
            rp.parse(r.text.splitlines())
        except requests.RequestException as exc:
            logger.info("robots.txt unavailable for %s (%s); allowing", base, exc)
            rp.parse([])  # empty rules => allow all
        with _lock:
            _cache[base] = rp
    return rp.can_fetch(user_agent, url)
