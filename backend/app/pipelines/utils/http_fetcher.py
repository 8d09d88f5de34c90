"""
HTTP Fetcher

Fetches a single page over plain HTTP and parses it into a FetchedPage.
Used as the primary path for static sources and as the fallback when the
headless browser path fails.

Parsing:
- Non-content nodes are removed (script, style, nav, footer, aside,
  sidebars, navigation, ads)
- Title and h1-h4 headings are extracted
- Main text comes from <main>, <article> or .content, else <body>
- Text is whitespace-collapsed and capped at MAX_CONTENT_CHARS
- Code fragments of at least MIN_CODE_BLOCK_CHARS are kept

Usage:
    from app.pipelines.utils.http_fetcher import fetch_page, parse_html

    page = await fetch_page("https://keras.io/guides/")
    page = parse_html(url, html)  # pure parsing, shared with the browser path
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from app.config.ingestion import ingestion_settings

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; DomainIngestionBot/2.0; +https://example.org/bot)"
DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

NON_CONTENT_SELECTORS = "script, style, nav, footer, aside, .sidebar, .navigation, .ad, .advertisement"
MAIN_CONTENT_SELECTORS = "main, article, .content"

MAX_CONTENT_CHARS = 6000
MIN_CODE_BLOCK_CHARS = 20
MAX_HEADING_CHARS = 200


class FetchError(Exception):
    """Raised when a page cannot be fetched or is not HTML."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


@dataclass
class FetchedPage:
    """Parsed view of one fetched page."""

    url: str
    title: str = ""
    headings: list[str] = field(default_factory=list)
    content: str = ""
    code_blocks: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    word_count: int = 0


def create_http_client(timeout: Optional[float] = None, headers: Optional[dict] = None) -> httpx.AsyncClient:
    """
    Build an AsyncClient with the polite default headers.

    Args:
        timeout: Request timeout in seconds (defaults to PAGE_TIMEOUT_SECONDS)
        headers: Extra headers merged over the defaults

    Returns:
        Configured httpx.AsyncClient (caller closes it)
    """
    merged = dict(DEFAULT_HEADERS)
    if headers:
        merged.update(headers)
    return httpx.AsyncClient(
        timeout=timeout or ingestion_settings.PAGE_TIMEOUT_SECONDS,
        headers=merged,
        follow_redirects=True,
    )


def parse_html(
    url: str,
    html: str,
    max_chars: int = MAX_CONTENT_CHARS,
    main_selectors: str = MAIN_CONTENT_SELECTORS,
) -> FetchedPage:
    """
    Parse raw HTML into a FetchedPage.

    Args:
        url: URL the HTML was served from (used to absolutize links)
        html: Raw HTML
        max_chars: Cap for the extracted main text
        main_selectors: CSS selectors tried, in one query, for the main content

    Returns:
        FetchedPage with title, headings, content, code blocks and links
    """
    soup = BeautifulSoup(html or "", "lxml")

    title = soup.title.get_text(strip=True) if soup.title else ""

    code_blocks = [
        block.get_text().strip()
        for block in soup.select("pre, code")
        if len(block.get_text().strip()) >= MIN_CODE_BLOCK_CHARS
    ]

    links = []
    for anchor in soup.select("a[href]"):
        href = anchor.get("href", "").strip()
        if not href or href.startswith(("javascript:", "mailto:", "#")):
            continue
        links.append(urljoin(url, href))

    for node in soup.select(NON_CONTENT_SELECTORS):
        node.decompose()

    headings = [
        text
        for text in (h.get_text(" ", strip=True) for h in soup.select("h1, h2, h3, h4"))
        if 0 < len(text) < MAX_HEADING_CHARS
    ]

    main = soup.select_one(main_selectors) or soup.body or soup
    content = " ".join(main.get_text(" ").split())[:max_chars]

    return FetchedPage(
        url=url,
        title=title or "Untitled",
        headings=headings,
        content=content,
        code_blocks=code_blocks,
        links=list(dict.fromkeys(links)),
        word_count=len(content.split()),
    )


async def fetch_html(url: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """
    GET a URL and return its body text.

    Args:
        url: Page URL
        client: Optional shared client; a temporary one is created otherwise

    Returns:
        Response body

    Raises:
        FetchError: On network errors or non-2xx responses
    """
    owns_client = client is None
    client = client or create_http_client()
    try:
        response = await client.get(url)
        response.raise_for_status()
        return response.text
    except httpx.HTTPStatusError as e:
        raise FetchError(url, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise FetchError(url, type(e).__name__) from e
    finally:
        if owns_client:
            await client.aclose()


async def fetch_page(url: str, client: Optional[httpx.AsyncClient] = None) -> FetchedPage:
    """
    Fetch and parse one page.

    Args:
        url: Page URL
        client: Optional shared httpx.AsyncClient

    Returns:
        Parsed FetchedPage

    Raises:
        FetchError: If the page cannot be fetched
    """
    html = await fetch_html(url, client=client)
    page = parse_html(url, html)
    logger.debug(f"Fetched {url}: {page.word_count} words, {len(page.code_blocks)} code blocks")
    return page
