from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from ..browser import evaluate_in_page


# Substrings of an href that point at a contacts page (EN, translit, RU)
CONTACT_HREF_KEYWORDS = ["contact", "kontakt", "kontakty", "контакт"]

# Returns the index of the first anchor whose text contains the hint or whose
# href looks like a contacts page, or -1.
FIND_HINT_ANCHOR_JS = """
([hint, keywords]) => {
    const anchors = Array.from(document.querySelectorAll('a'));
    for (let i = 0; i < anchors.length; i++) {
        const text = (anchors[i].textContent || '').trim().toLowerCase();
        let href = (anchors[i].getAttribute('href') || '').toLowerCase();
        try { href = decodeURIComponent(href); } catch (e) {}
        if (text.includes(hint) || keywords.some(k => href.includes(k))) {
            return i;
        }
    }
    return -1;
}
"""

CLICK_ANCHOR_JS = """
(index) => {
    const a = document.querySelectorAll('a')[index];
    if (a instanceof HTMLElement) { a.click(); return true; }
    return false;
}
"""


@dataclass(frozen=True)
class PlaywrightResult:
    url: str
    final_url: str
    status_code: int
    html: str | None
    page_title: str | None
    error: str | None = None


@dataclass(frozen=True)
class NavigationResult:
    url: str
    html: str
    clicked_hint: Optional[str] = None
    hints_tried: List[str] = field(default_factory=list)


class PlaywrightFetcher:
    """Drives a page owned by the caller: load a URL, follow contact hints.

    The page comes from ``BrowserSessionManager.open_page``; this class never
    opens or closes pages itself.
    """

    def __init__(
        self,
        *,
        timeout_ms: int = 90000,
        hint_navigation_timeout_ms: int = 30000,
        settle_timeout_ms: int = 5000,
    ) -> None:
        self.timeout_ms = timeout_ms
        self.hint_navigation_timeout_ms = hint_navigation_timeout_ms
        self.settle_timeout_ms = settle_timeout_ms

    async def fetch(self, page: Page, url: str) -> PlaywrightResult:
        """Navigate ``page`` to ``url`` and capture HTML after redirects."""
        try:
            page.set_default_navigation_timeout(self.timeout_ms)
            response = await page.goto(url, wait_until="load", timeout=self.timeout_ms)

            # Let XHR-rendered footers settle; a busy page is not an error
            try:
                await page.wait_for_load_state("networkidle", timeout=self.settle_timeout_ms)
            except PlaywrightTimeoutError:
                pass

            html = await page.content()
            title = await page.title()
            return PlaywrightResult(
                url=url,
                final_url=page.url or url,
                status_code=response.status if response else 0,
                html=html,
                page_title=title,
                error=None,
            )
        except Exception as e:
            return PlaywrightResult(
                url=url,
                final_url=url,
                status_code=0,
                html=None,
                page_title=None,
                error=str(e) or type(e).__name__,
            )

    async def navigate_by_hints(self, page: Page, hints: Sequence[str]) -> NavigationResult:
        """Click the first anchor matching a hint, trying hints in order.

        Stops at the first successful click. Navigation that does not
        complete within the timeout is not an error: the page content is
        captured wherever the browser ended up.
        """
        tried: List[str] = []
        clicked: Optional[str] = None
        for hint in hints:
            lowered = (hint or "").strip().lower()
            if not lowered:
                continue
            tried.append(hint)
            index = await evaluate_in_page(page, FIND_HINT_ANCHOR_JS, [lowered, CONTACT_HREF_KEYWORDS])
            if not isinstance(index, int) or index < 0:
                continue
            before = page.url
            if not await evaluate_in_page(page, CLICK_ANCHOR_JS, index):
                continue
            clicked = hint
            try:
                await page.wait_for_url(
                    lambda url: url != before, wait_until="load", timeout=self.hint_navigation_timeout_ms
                )
            except PlaywrightTimeoutError:
                # in-page anchors and SPA routes do not navigate
                pass
            break
        html = await page.content()
        return NavigationResult(url=page.url, html=html, clicked_hint=clicked, hints_tried=tried)
