"""
Headless Browser Pool

A fixed-capacity pool of headless Chromium instances (Playwright) shared by
every active ingestion session.

Features:
- Round-robin acquisition of healthy browsers
- Transparent replacement of disconnected browsers (one retry per acquire)
- Scoped page acquisition: every page is closed on every exit path,
  including timeouts and task cancellation
- One page per browser slot at a time (slot lock)
- Same-host site crawl with link selection, used by the docs adapter

Callers fall back to the HTTP fetcher when acquisition raises
BrowserUnavailableError.

Usage:
    from app.pipelines.utils.browser_pool import BrowserPool

    pool = BrowserPool(size=2)
    async with pool.page() as page:
        await page.goto("https://keras.io/guides/")
    pages = await pool.crawl_site("https://keras.io/guides/", "machine learning", max_pages=8)
    await pool.shutdown()
"""

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.pipelines.utils.http_fetcher import DEFAULT_USER_AGENT, FetchedPage, parse_html
from app.services.ingestion.scoring import is_relevant_content, select_relevant_links

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

BROWSER_MAIN_SELECTORS = "main, .content, .documentation, .docs-content, article"
BROWSER_MAX_CONTENT_CHARS = 8000
VIEWPORT = {"width": 1366, "height": 768}


class BrowserUnavailableError(Exception):
    """Raised when no healthy browser can be provided."""


class _BrowserSlot:
    """One pool position: a browser plus the lock that keeps pages unshared."""

    def __init__(self, index: int):
        self.index = index
        self.browser: Optional[Browser] = None
        self.lock = asyncio.Lock()


class BrowserPool:
    """
    Fixed-size pool of headless browsers.

    Attributes:
        size: Number of browser slots
        replacements: Count of browsers replaced after disconnects
    """

    def __init__(
        self,
        size: Optional[int] = None,
        config: Optional[IngestionSettings] = None,
        launcher: Optional[Callable[[], Awaitable[Browser]]] = None,
    ):
        """
        Initialize the pool. Browsers launch lazily on first acquire.

        Args:
            size: Slot count (defaults to BROWSER_POOL_SIZE)
            config: Ingestion settings for timeouts and politeness delays
            launcher: Optional coroutine factory returning a Browser,
                replacing the Playwright launcher (used by tests)
        """
        self.config = config or ingestion_settings
        self.size = size or self.config.BROWSER_POOL_SIZE
        self.replacements = 0
        self._slots = [_BrowserSlot(i) for i in range(self.size)]
        self._next = 0
        self._launcher = launcher
        self._playwright = None
        self._start_lock = asyncio.Lock()
        self._closed = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _launch(self) -> Browser:
        if self._closed:
            raise BrowserUnavailableError("Browser pool is shut down")
        try:
            if self._launcher is not None:
                return await self._launcher()
            async with self._start_lock:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
            return await self._playwright.chromium.launch(headless=True, args=LAUNCH_ARGS)
        except BrowserUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Browser launch failed: {type(e).__name__}: {e}")
            raise BrowserUnavailableError(f"Browser launch failed ({type(e).__name__})") from e

    def _slot_for(self, browser: Browser) -> Optional[_BrowserSlot]:
        for slot in self._slots:
            if slot.browser is browser:
                return slot
        return None

    async def _close_quietly(self, browser: Browser) -> None:
        try:
            await browser.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing browser: {e}")

    async def replace(self, browser: Browser) -> Browser:
        """
        Close a dead browser and launch a fresh one into the same slot.

        Args:
            browser: Browser previously handed out by this pool

        Returns:
            The replacement browser

        Raises:
            BrowserUnavailableError: If the browser is unknown or relaunch fails
        """
        slot = self._slot_for(browser)
        if slot is None:
            raise BrowserUnavailableError("Browser does not belong to this pool")

        await self._close_quietly(browser)
        slot.browser = None
        slot.browser = await self._launch()
        self.replacements += 1
        logger.warning(f"Replaced browser in slot {slot.index} (total replacements: {self.replacements})")
        return slot.browser

    async def _ensure_healthy(self, slot: _BrowserSlot) -> Browser:
        if slot.browser is None:
            slot.browser = await self._launch()
            logger.info(f"Launched browser in slot {slot.index}")
            return slot.browser

        if slot.browser.is_connected():
            return slot.browser

        logger.warning(f"Browser in slot {slot.index} disconnected, replacing")
        browser = await self.replace(slot.browser)
        if not browser.is_connected():
            raise BrowserUnavailableError(f"Replacement browser in slot {slot.index} is not connected")
        return browser

    def _next_slot(self) -> _BrowserSlot:
        slot = self._slots[self._next % self.size]
        self._next += 1
        return slot

    async def acquire(self) -> Browser:
        """
        Return a currently-healthy browser, round-robin across slots.

        The health check runs under the slot lock, so concurrent callers see
        at most one launch or replacement per slot.

        Raises:
            BrowserUnavailableError: If launching or replacing fails
        """
        slot = self._next_slot()
        async with slot.lock:
            return await self._ensure_healthy(slot)

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """
        Scoped page on a pooled browser.

        The slot lock is held for the lifetime of the page, so a browser
        never serves two callers at once, and the page is closed however
        the block exits.

        Raises:
            BrowserUnavailableError: If no healthy browser can be provided
        """
        slot = self._next_slot()
        async with slot.lock:
            browser = await self._ensure_healthy(slot)
            page = await browser.new_page(user_agent=DEFAULT_USER_AGENT, viewport=VIEWPORT)
            try:
                yield page
            finally:
                try:
                    await page.close()
                except Exception as e:
                    logger.debug(f"Ignoring error while closing page: {e}")

    async def shutdown(self) -> None:
        """Close every browser and stop Playwright."""
        self._closed = True
        for slot in self._slots:
            if slot.browser is not None:
                await self._close_quietly(slot.browser)
                slot.browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug(f"Ignoring error while stopping Playwright: {e}")
            self._playwright = None
        logger.info("Browser pool shut down")

    def pool_info(self) -> dict[str, Any]:
        """Pool state for health reporting."""
        launched = [slot.browser for slot in self._slots if slot.browser is not None]
        return {
            "size": self.size,
            "launched": len(launched),
            "connected": sum(1 for browser in launched if browser.is_connected()),
            "replacements": self.replacements,
        }

    # =========================================================================
    # Site Crawl
    # =========================================================================

    async def _polite_pause(self) -> None:
        low = self.config.POLITE_DELAY_MIN_SECONDS
        high = self.config.POLITE_DELAY_MAX_SECONDS
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

    async def crawl_site(self, start_url: str, domain: str, max_pages: Optional[int] = None) -> list[FetchedPage]:
        """
        Crawl a documentation site starting from one URL.

        Pages are kept when they pass the content-relevance check; up to
        five same-host links per page are queued by the link selector.

        Args:
            start_url: First page to visit
            domain: Domain being ingested (for logging)
            max_pages: Maximum relevant pages to return

        Returns:
            Relevant pages in visit order

        Raises:
            BrowserUnavailableError: If no browser can be acquired
        """
        max_pages = max_pages or self.config.MAX_PAGES_PER_SITE
        timeout_ms = self.config.BROWSER_NAVIGATION_TIMEOUT_SECONDS * 1000
        queue = [start_url]
        visited: set[str] = set()
        pages: list[FetchedPage] = []
        max_visits = max_pages * 3

        async with self.page() as page:
            page.set_default_timeout(timeout_ms)

            while queue and len(pages) < max_pages and len(visited) < max_visits:
                url = queue.pop(0)
                if url in visited:
                    continue
                visited.add(url)

                try:
                    await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
                    html = await page.content()
                except PlaywrightError as e:
                    logger.warning(f"[{domain}] Browser failed on {url}: {e}")
                    continue

                fetched = parse_html(
                    url,
                    html,
                    max_chars=BROWSER_MAX_CONTENT_CHARS,
                    main_selectors=BROWSER_MAIN_SELECTORS,
                )
                if is_relevant_content(fetched.title, fetched.content, url):
                    pages.append(fetched)

                queue.extend(link for link in select_relevant_links(fetched.links, url) if link not in visited)
                if queue and len(pages) < max_pages:
                    await self._polite_pause()

        logger.info(f"[{domain}] Crawled {len(visited)} pages from {start_url}, kept {len(pages)}")
        return pages
