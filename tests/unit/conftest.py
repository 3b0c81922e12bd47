from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import pytest

from contactfinder.pipeline.ai import AiOutcome
from contactfinder.pipeline.fetchers.playwright import NavigationResult, PlaywrightResult
from contactfinder.schemas import ContactExtractionReply


class FakeAi:
    """AiCollaborator stand-in with canned outcomes per call site."""

    def __init__(self):
        self.selection = AiOutcome([], "not configured")
        self.relevance = AiOutcome([], "not configured")
        # url -> reply; missing urls get an empty reply
        self.extractions: Dict[str, ContactExtractionReply] = {}
        self.hints = AiOutcome([], None)
        self.calls: List[str] = []

    async def select_links(self, query, candidates, max_items=15):
        self.calls.append("select")
        return self.selection

    async def classify_links(self, query, links):
        self.calls.append("classify")
        return self.relevance

    async def extract_contacts(self, html, url):
        self.calls.append(f"extract:{url}")
        return AiOutcome(self.extractions.get(url, ContactExtractionReply()))

    async def suggest_navigation(self, html, url):
        self.calls.append("hints")
        return self.hints

    async def close(self):
        self.calls.append("close")


class FakeSessions:
    """BrowserSessionManager stand-in counting page opens and releases."""

    def __init__(self):
        self.opened = 0
        self.released = 0
        self.closed = False

    @asynccontextmanager
    async def open_page(self, config, user_agent=None):
        self.opened += 1
        try:
            yield object()
        finally:
            self.released += 1

    async def close(self):
        self.closed = True


class FakeFetcher:
    """PlaywrightFetcher stand-in serving canned pages by URL."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, *, error: Optional[str] = None,
                 nav_url: Optional[str] = None, nav_html: str = "", nav_hint_match: Optional[str] = None):
        self.pages = pages or {}
        self.error = error
        self.nav_url = nav_url
        self.nav_html = nav_html
        self.nav_hint_match = nav_hint_match
        self.hints_seen: List[List[str]] = []

    async def fetch(self, page, url):
        if self.error:
            return PlaywrightResult(url=url, final_url=url, status_code=0, html=None, page_title=None, error=self.error)
        return PlaywrightResult(url=url, final_url=url, status_code=200, html=self.pages.get(url, ""), page_title="t")

    async def navigate_by_hints(self, page, hints):
        hints = list(hints)
        self.hints_seen.append(hints)
        tried = []
        clicked = None
        for h in hints:
            tried.append(h)
            if h == self.nav_hint_match:
                clicked = h
                break
        return NavigationResult(url=self.nav_url or "about:blank", html=self.nav_html, clicked_hint=clicked, hints_tried=tried)


@pytest.fixture
def fake_ai():
    return FakeAi()


@pytest.fixture
def fake_sessions():
    return FakeSessions()


@pytest.fixture
def make_fetcher():
    return FakeFetcher
