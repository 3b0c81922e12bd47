import asyncio
import json
from unittest.mock import MagicMock

import pytest

from contactfinder.db.history_store import HistoryStore
from contactfinder.ops_logger import OpsLogger
from contactfinder.pipeline.ai import AiOutcome
from contactfinder.pipeline.browser import BrowserLaunchError
from contactfinder.pipeline.discovery import SerpPage
from contactfinder.pipeline.search import SearchPipeline
from contactfinder.pipeline.worker import ContactDiscoveryWorker
from contactfinder.schemas import LinkSummary, RelevanceVerdict, SearchRequest

QUERY = "музыкальная студия тюмень"
STUDIO = "https://studio-tmn.ru/"
SERP_URL = "https://www.google.com/search?q=x&hl=ru"
SERP_HTML = (
    f'<div><a href="{STUDIO}">Музыкальная студия Тюмень</a></div>'
    '<div><a href="https://2gis.ru/tyumen/search/studio">Студии на 2ГИС</a></div>'
    '<div><a href="https://other-studio.ru/">Другая студия</a></div>'
)


class FakeDiscovery:
    def __init__(self, pages=None, error=None):
        self.pages = pages if pages is not None else [SerpPage(index=1, html=SERP_HTML, url=SERP_URL)]
        self.error = error
        self.calls = []

    async def discover(self, query, page_count=1, user_agent=None, session_config=None, log=None):
        self.calls.append((query, page_count))
        if self.error:
            raise self.error
        return self.pages


def _pipeline(fake_ai, fake_sessions, fetcher, *, discovery=None, history=None, ops_logger=None, concurrency=3):
    worker = ContactDiscoveryWorker(fake_sessions, fake_ai, fetcher=fetcher, echo=False)
    return SearchPipeline(
        ai=fake_ai,
        sessions=fake_sessions,
        discovery=discovery or FakeDiscovery(),
        worker=worker,
        history=history,
        ops_logger=ops_logger,
        concurrency=concurrency,
        echo=False,
    )


def _select_studio(fake_ai):
    fake_ai.selection = AiOutcome([LinkSummary(url=STUDIO, title="Музыкальная студия Тюмень")])
    fake_ai.relevance = AiOutcome([RelevanceVerdict(url=STUDIO, relevant=True, reason="official site")])


def test_end_to_end_single_link(fake_ai, fake_sessions, make_fetcher):
    _select_studio(fake_ai)
    fetcher = make_fetcher({STUDIO: '<footer><a href="tel:+79991234567">+7 999 123-45-67</a></footer>'})
    pipeline = _pipeline(fake_ai, fake_sessions, fetcher)
    response = asyncio.run(pipeline.run(SearchRequest(query=QUERY, top=1, pages=1)))

    assert response.query == QUERY
    assert response.total == len(response.results) == 1
    wire = response.to_wire()["results"][0]
    assert wire["contacts"]["phones"] == ["+79991234567"]
    assert wire["contacts"]["emails"] == []
    assert "error" not in wire
    assert wire["link"]["reason"] == "official site"
    assert response.history_id is None
    assert any("Step 1" in l for l in response.logs)
    assert any(QUERY in l for l in response.logs)


def test_end_to_end_fetch_timeout(fake_ai, fake_sessions, make_fetcher):
    _select_studio(fake_ai)
    fetcher = make_fetcher(error="Timeout 90000ms exceeded")
    response = asyncio.run(_pipeline(fake_ai, fake_sessions, fetcher).run(SearchRequest(query=QUERY, top=1, pages=1)))
    result = response.results[0]
    assert result.error is True
    assert result.page == STUDIO
    assert result.contacts.is_empty()


def test_fallback_ranking_filters_aggregators(fake_ai, fake_sessions, make_fetcher):
    # AI unavailable: first `top` candidates, then the aggregator filter
    fetcher = make_fetcher({})
    response = asyncio.run(_pipeline(fake_ai, fake_sessions, fetcher).run(SearchRequest(query=QUERY, top=3, pages=1)))
    urls = [r.link.url for r in response.results]
    assert urls == [STUDIO, "https://other-studio.ru/"]
    assert all(r.link.reason == "fallback" for r in response.results)


def test_empty_serp_returns_no_results(fake_ai, fake_sessions, make_fetcher):
    discovery = FakeDiscovery(pages=[])
    response = asyncio.run(_pipeline(fake_ai, fake_sessions, make_fetcher({}), discovery=discovery).run(SearchRequest(query=QUERY)))
    assert response.total == 0
    assert response.results == []
    assert fake_sessions.opened == 0
    assert discovery.calls == [(QUERY, 3)]


def test_browser_launch_error_propagates(fake_ai, fake_sessions, make_fetcher):
    discovery = FakeDiscovery(error=BrowserLaunchError("no chromium"))
    with pytest.raises(BrowserLaunchError):
        asyncio.run(_pipeline(fake_ai, fake_sessions, make_fetcher({}), discovery=discovery).run(SearchRequest(query=QUERY)))


def test_history_and_ops_are_written(tmp_path, fake_ai, fake_sessions, make_fetcher):
    _select_studio(fake_ai)
    history = HistoryStore(tmp_path / "history.sqlite")
    ops = OpsLogger(tmp_path / "ops.log")
    fetcher = make_fetcher({STUDIO: "<p>info@studio-tmn.ru</p>"})
    pipeline = _pipeline(fake_ai, fake_sessions, fetcher, history=history, ops_logger=ops)
    response = asyncio.run(pipeline.run(SearchRequest(query=QUERY, top=1, pages=1)))

    assert response.history_id is not None
    entry = history.get(response.history_id)
    assert entry["query"] == QUERY
    assert entry["results"][0]["contacts"]["emails"] == ["info@studio-tmn.ru"]
    assert entry["logs"] == response.logs

    records = [json.loads(l) for l in (tmp_path / "ops.log").read_text(encoding="utf-8").splitlines()]
    assert records[0]["url"] == STUDIO
    assert records[0]["state"] == "resolved"
    assert records[-1]["summary"] is True
    assert records[-1]["results"] == 1


def test_history_failure_does_not_fail_run(fake_ai, fake_sessions, make_fetcher):
    history = MagicMock()
    history.save.side_effect = OSError("disk full")
    pipeline = _pipeline(fake_ai, fake_sessions, make_fetcher({}), history=history)
    response = asyncio.run(pipeline.run(SearchRequest(query=QUERY, top=1)))
    assert response.history_id is None
    assert any("History save failed: disk full" in l for l in response.logs)


def test_close_releases_browser_and_ai(fake_ai, fake_sessions, make_fetcher):
    pipeline = _pipeline(fake_ai, fake_sessions, make_fetcher({}))
    asyncio.run(pipeline.close())
    assert fake_sessions.closed
    assert "close" in fake_ai.calls
