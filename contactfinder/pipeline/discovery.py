from __future__ import annotations

"""
SERP discovery: load the search engine results for a query, page through up
to N result pages and collect deduplicated anchor candidates.

The engine's DOM changes often, so no result-block parsing happens here:
whole pages are captured and anchors are extracted heuristically afterwards.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
from urllib.parse import quote_plus

from playwright.async_api import Error as PlaywrightError, Page

from ..schemas import SearchCandidate
from .browser import BrowserSessionManager, SessionConfig
from .extractors import extract_anchor_candidates, strip_html_assets


DEFAULT_SEARCH_URL = "https://www.google.com/search?q={query}&hl=ru"
MAX_CANDIDATES_PER_PAGE = 120

CONSENT_SELECTOR = 'button[aria-label="Принять все"], #L2AGLb, form [role="none"] button'
NEXT_PAGE_SELECTOR = 'a#pnnext, a[aria-label="Следующая страница"], a[aria-label="Next page"]'


@dataclass(frozen=True)
class SerpPage:
    index: int
    html: str
    url: str


def collect_candidates(pages: Sequence[SerpPage], max_per_page: int = MAX_CANDIDATES_PER_PAGE) -> List[SearchCandidate]:
    """Extract candidates from every page; merge and dedupe by URL (first wins)."""
    out: List[SearchCandidate] = []
    seen: set[str] = set()
    for p in pages:
        for c in extract_anchor_candidates(strip_html_assets(p.html), p.url, max_per_page):
            if c.url not in seen:
                seen.add(c.url)
                out.append(c)
    return out


class SearchDiscovery:
    """Drives the search engine through a page of the shared browser."""

    def __init__(
        self,
        sessions: BrowserSessionManager,
        *,
        search_url: str = DEFAULT_SEARCH_URL,
        navigation_timeout_ms: int = 60000,
        consent_timeout_ms: int = 4000,
        consent_navigation_timeout_ms: int = 10000,
        next_page_timeout_ms: int = 30000,
    ) -> None:
        self.sessions = sessions
        self.search_url = search_url
        self.navigation_timeout_ms = navigation_timeout_ms
        self.consent_timeout_ms = consent_timeout_ms
        self.consent_navigation_timeout_ms = consent_navigation_timeout_ms
        self.next_page_timeout_ms = next_page_timeout_ms

    def build_url(self, query: str) -> str:
        return self.search_url.format(query=quote_plus(query))

    async def _dismiss_consent(self, page: Page) -> bool:
        """Best-effort click on the cookie-consent banner."""
        try:
            await page.wait_for_selector(CONSENT_SELECTOR, timeout=self.consent_timeout_ms)
        except PlaywrightError:
            return False
        try:
            await page.locator(CONSENT_SELECTOR).first.click(timeout=self.consent_timeout_ms)
            await page.wait_for_load_state("load", timeout=self.consent_navigation_timeout_ms)
        except PlaywrightError:
            # Banner dismissed in place or not clickable; either way carry on
            pass
        return True

    async def _next_page(self, page: Page, index: int, log: Optional[Callable[[str], object]]) -> Optional[SerpPage]:
        """Click the next-page control and capture the result; None ends paging."""
        try:
            nxt = page.locator(NEXT_PAGE_SELECTOR).first
            if await nxt.count() == 0:
                if log:
                    log(f"No next-page control after page {index - 1}")
                return None
            before = page.url
            await nxt.click(timeout=self.next_page_timeout_ms)
            await page.wait_for_url(lambda url: url != before, wait_until="load", timeout=self.next_page_timeout_ms)
            return SerpPage(index=index, html=await page.content(), url=page.url)
        except PlaywrightError as e:
            if log:
                log(f"Navigation to page {index} did not complete: {e}")
            return None

    async def discover(
        self,
        query: str,
        page_count: int = 1,
        user_agent: Optional[str] = None,
        session_config: Optional[SessionConfig] = None,
        log: Optional[Callable[[str], object]] = None,
    ) -> List[SerpPage]:
        """Capture up to ``page_count`` result pages for ``query``.

        Stops early when there is no next-page control or navigation to it
        does not complete. Browser launch errors propagate; a failed first
        navigation yields an empty list.
        """
        pages: List[SerpPage] = []
        async with self.sessions.open_page(session_config or SessionConfig(), user_agent) as page:
            page.set_default_navigation_timeout(self.navigation_timeout_ms)
            try:
                await page.goto(self.build_url(query), wait_until="load", timeout=self.navigation_timeout_ms)
            except PlaywrightError as e:
                if log:
                    log(f"Search page failed to load: {e}")
                return pages

            if await self._dismiss_consent(page) and log:
                log("Consent banner dismissed")

            try:
                pages.append(SerpPage(index=1, html=await page.content(), url=page.url))
            except PlaywrightError as e:
                if log:
                    log(f"Search page could not be captured: {e}")
                return pages

            for index in range(2, max(1, page_count) + 1):
                serp = await self._next_page(page, index, log)
                if serp is None:
                    break
                pages.append(serp)
        if log:
            log(f"SERP pages captured: {len(pages)}")
        return pages
