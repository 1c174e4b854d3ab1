import asyncio
import logging
import random
from typing import Dict, List, Protocol

from playwright.async_api import async_playwright

from .adapter_listing import ITEM_SELECTOR, extract_listing
from .robots import allowed

logger = logging.getLogger(__name__)

UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome Safari CatalogHarvester/1.0"


class TargetSkipped(Exception):
    """The target must not be fetched at all (e.g. robots.txt disallows it)."""


class Harvester(Protocol):
    async def harvest(self, target: str) -> List[Dict]: ...


class PlaywrightHarvester:
    """
    Renders listing pages in headless Chromium and extracts product cards.

    Use as an async context manager; one browser is shared by all targets and
    each target gets its own context.
    """

    def __init__(
        self,
        item_selector: str = ITEM_SELECTOR,
        wait_timeout_ms: int = 15000,
        settle_ms: int = 2000,
        jitter_ms: int = 3000,
        respect_robots: bool = True,
        headless: bool = True,
    ):
        self.item_selector = item_selector
        self.wait_timeout_ms = wait_timeout_ms
        self.settle_ms = settle_ms
        self.jitter_ms = jitter_ms
        self.respect_robots = respect_robots
        self.headless = headless
        self._pw = None
        self._browser = None

    async def __aenter__(self) -> "PlaywrightHarvester":
        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(headless=self.headless)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._browser is not None:
            await self._browser.close()
        if self._pw is not None:
            await self._pw.stop()
        self._browser = self._pw = None

    async def harvest(self, target: str) -> List[Dict]:
        if self._browser is None:
            raise RuntimeError("PlaywrightHarvester used outside 'async with'")
        if self.respect_robots and not await asyncio.to_thread(allowed, target):
            raise TargetSkipped(f"robots.txt disallows {target}")

        ctx = await self._browser.new_context(user_agent=UA)
        try:
            page = await ctx.new_page()
            await page.goto(target, timeout=self.wait_timeout_ms, wait_until="domcontentloaded")
            await page.wait_for_timeout(self.settle_ms + random.randint(0, self.jitter_ms))
            # Listing cards are rendered client side; wait for the first one.
            await page.wait_for_selector(self.item_selector, timeout=self.wait_timeout_ms)
            html = await page.content()
        finally:
            await ctx.close()

        items = extract_listing(html, self.item_selector)
        logger.debug("Extracted %d items from %s", len(items), target)
        return items
