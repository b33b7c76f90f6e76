from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup, Tag
import httpx

from kbchat.config import Settings
from kbchat.services.rag.chunker import clean_text
from kbchat.services.rag.types import CrawledPage

logger = logging.getLogger(__name__)

CONTENT_SELECTORS = (
    "main",
    "article",
    ".content",
    ".main-content",
    "#content",
    ".post-content",
    ".page-content",
)
EXCLUDED_SELECTORS = (
    "nav",
    "header",
    "footer",
    ".navigation",
    ".navbar",
    ".sidebar",
    ".ads",
    ".advertisement",
    ".social-share",
    ".comments",
    ".related-posts",
)
TEXT_ELEMENTS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "td", "th", "blockquote"]
BOILERPLATE_PHRASES = (
    "cookie policy",
    "privacy policy",
    "terms of service",
    "all rights reserved",
    "copyright",
    "follow us on",
    "subscribe to our newsletter",
    "read more",
    "learn more",
    "click here",
)

_BOILERPLATE = re.compile(
    r"\b(" + "|".join(re.escape(phrase) for phrase in BOILERPLATE_PHRASES) + r")\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class CrawlSettings:
    base_url: str
    max_depth: int = 2
    max_pages: int = 50
    request_delay_seconds: float = 1.0
    request_timeout_seconds: float = 10.0
    user_agent: str = "kbchat-bot/1.0 (Website Content Scraper)"
    exclude_patterns: tuple[str, ...] = ()
    remove_boilerplate: bool = True
    boilerplate_patterns: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> CrawlSettings:
        return cls(
            base_url=settings.site_base_url,
            max_depth=settings.site_max_depth,
            max_pages=settings.site_max_pages,
            request_delay_seconds=settings.site_request_delay_seconds,
            request_timeout_seconds=settings.site_request_timeout_seconds,
            user_agent=settings.site_user_agent,
            exclude_patterns=settings.site_exclude_patterns,
            remove_boilerplate=settings.site_remove_boilerplate,
            boilerplate_patterns=settings.site_boilerplate_patterns,
        )


def clean_web_content(text: str, *, patterns: Sequence[str] = ()) -> str:
    """Collapse whitespace and strip the fixed boilerplate phrases.

    Each of ``patterns`` is applied afterwards as a case-insensitive regex.
    """
    cleaned = clean_text(_BOILERPLATE.sub("", clean_text(text)))
    for pattern in patterns:
        cleaned = re.sub(pattern, "", cleaned, flags=re.IGNORECASE)
    return clean_text(cleaned)


class WebsiteCrawler:
    """Depth-first, same-host crawler with page and depth budgets.

    A URL is marked visited before it is fetched and is never fetched twice.
    Fetch failures are logged and end that branch of the walk.
    """

    def __init__(self, settings: CrawlSettings, *, http_client: httpx.AsyncClient | None = None) -> None:
        for pattern in settings.boilerplate_patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid boilerplate pattern {pattern!r}: {exc}") from exc

        self._settings = settings
        self._http_client = http_client
        self._visited: set[str] = set()
        self._pages: list[CrawledPage] = []

    async def crawl(self, base_url: str | None = None) -> list[CrawledPage]:
        start_url = base_url or self._settings.base_url
        if not start_url:
            raise ValueError("Website base URL is not configured (set SITE_BASE_URL)")

        self._visited = set()
        self._pages = []
        logger.info("Starting website crawl from %s", start_url)

        if self._http_client is not None:
            await self._crawl(self._http_client, start_url, 0)
        else:
            async with httpx.AsyncClient(
                timeout=self._settings.request_timeout_seconds,
                headers={"User-Agent": self._settings.user_agent},
                follow_redirects=True,
            ) as client:
                await self._crawl(client, start_url, 0)

        logger.info("Website crawl complete: %d pages", len(self._pages))
        return list(self._pages)

    def stats(self) -> dict[str, int]:
        return {
            "pages_scraped": len(self._pages),
            "urls_visited": len(self._visited),
            "total_content_length": sum(len(page.content) for page in self._pages),
        }

    async def _crawl(self, client: httpx.AsyncClient, url: str, depth: int) -> None:
        if depth > self._settings.max_depth or url in self._visited:
            return
        if len(self._pages) >= self._settings.max_pages:
            logger.info("Reached maximum page limit (%d)", self._settings.max_pages)
            return

        self._visited.add(url)
        logger.debug("Fetching %s (depth=%d)", url, depth)
        try:
            page = await self.fetch_page(client, url)
        except httpx.HTTPError as exc:
            logger.warning("Error fetching %s: %s", url, exc)
            return

        if page.content.strip():
            self._pages.append(page)

        if self._settings.request_delay_seconds > 0:
            await asyncio.sleep(self._settings.request_delay_seconds)

        if depth >= self._settings.max_depth or not page.html:
            return

        for link in self.extract_links(page.html, url):
            if len(self._pages) >= self._settings.max_pages:
                break
            await self._crawl(client, link, depth + 1)

    async def fetch_page(self, client: httpx.AsyncClient, url: str) -> CrawledPage:
        response = await client.get(url)
        response.raise_for_status()
        fetched_at = datetime.now(timezone.utc).isoformat()

        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type.lower():
            return CrawledPage(url=url, title="", content="", last_updated=fetched_at)

        html = response.text
        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""
        description_tag = soup.find("meta", attrs={"name": "description"})
        description = ""
        if isinstance(description_tag, Tag):
            description = str(description_tag.get("content") or "")

        return CrawledPage(
            url=url,
            title=title or "Untitled",
            description=description,
            content=self.extract_main_content(soup),
            html=html,
            last_updated=fetched_at,
        )

    def extract_main_content(self, soup: BeautifulSoup) -> str:
        content = ""
        for selector in CONTENT_SELECTORS:
            elements = soup.select(selector)
            if elements:
                content = _text_from_elements(elements)
                if content.strip():
                    break

        if not content.strip():
            content = _text_from_elements([soup.body or soup])

        patterns = self._settings.boilerplate_patterns if self._settings.remove_boilerplate else ()
        return clean_web_content(content, patterns=patterns)

    def extract_links(self, html: str, page_url: str) -> list[str]:
        soup = BeautifulSoup(html, "html.parser")
        base_host = urlparse(page_url).hostname
        links: list[str] = []

        for anchor in soup.select("a[href]"):
            href = anchor.get("href")
            if not isinstance(href, str) or not href.strip():
                continue
            absolute, _ = urldefrag(urljoin(page_url, href.strip()))
            parsed = urlparse(absolute)
            if parsed.scheme not in ("http", "https") or parsed.hostname != base_host:
                continue
            if self._is_excluded(parsed.path):
                continue
            if absolute not in links:
                links.append(absolute)

        return links

    def _is_excluded(self, path: str) -> bool:
        for pattern in self._settings.exclude_patterns:
            if pattern.startswith("*"):
                if path.endswith(pattern[1:]):
                    return True
            elif pattern in path:
                return True
        return False


def _text_from_elements(elements: Sequence[Tag]) -> str:
    lines: list[str] = []
    for element in elements:
        for selector in EXCLUDED_SELECTORS:
            for excluded in element.select(selector):
                excluded.decompose()
        for node in element.find_all(TEXT_ELEMENTS):
            text = node.get_text(" ", strip=True)
            if text:
                lines.append(text)
    return "\n".join(lines)
