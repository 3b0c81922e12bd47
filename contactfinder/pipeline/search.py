from __future__ import annotations

import time
from typing import List, Optional

from ..config import Settings
from ..db.history_store import HistoryStore
from ..ops_logger import OpsLogger, RunLog
from ..schemas import PipelineResult, RankedLink, SearchRequest, SearchResponse
from .ai import AiCollaborator
from .browser import BrowserSessionManager, SessionConfig
from .discovery import SearchDiscovery, collect_candidates
from .fetchers.playwright import PlaywrightFetcher
from .ranking import LinkRankingStage
from .scheduler import DEFAULT_CONCURRENCY, run_bounded
from .worker import ContactDiscoveryWorker


class SearchPipeline:
    """Main discovery run: SERP -> candidates -> ranking -> bounded workers.

    - One shared browser session for the search pages and every worker
    - Per-link failures become ``error=True`` results, never abort the run
    - Browser launch failures (``BrowserLaunchError``/``ProfileBusyError``)
      propagate to the caller
    """

    def __init__(
        self,
        *,
        ai: AiCollaborator,
        sessions: Optional[BrowserSessionManager] = None,
        discovery: Optional[SearchDiscovery] = None,
        ranking: Optional[LinkRankingStage] = None,
        worker: Optional[ContactDiscoveryWorker] = None,
        history: Optional[HistoryStore] = None,
        ops_logger: Optional[OpsLogger] = None,
        session_config: Optional[SessionConfig] = None,
        user_agent: Optional[str] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        echo: bool = True,
    ):
        self.ai = ai
        self.sessions = sessions or BrowserSessionManager()
        self.session_config = session_config or SessionConfig()
        self.user_agent = user_agent
        self.discovery = discovery or SearchDiscovery(self.sessions)
        self.ranking = ranking or LinkRankingStage(ai)
        self.worker = worker or ContactDiscoveryWorker(
            self.sessions,
            ai,
            session_config=self.session_config,
            user_agent=user_agent,
            echo=echo,
        )
        self.history = history
        self.ops_logger = ops_logger
        self.concurrency = int(concurrency or DEFAULT_CONCURRENCY)
        self.echo = bool(echo)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        history: Optional[HistoryStore] = None,
        ops_logger: Optional[OpsLogger] = None,
    ) -> "SearchPipeline":
        ai = AiCollaborator(
            api_key=settings.ai.api_key,
            base_url=settings.ai.base_url,
            model=settings.ai.model,
            temperature=settings.ai.temperature,
            timeout_s=settings.ai.timeout_s,
        )
        sessions = BrowserSessionManager()
        session_config = settings.browser.session_config()
        user_agent = settings.search.user_agent
        echo = settings.pipeline.echo_logs
        discovery = SearchDiscovery(
            sessions,
            search_url=settings.search.url,
            navigation_timeout_ms=int(settings.search.navigation_timeout_s * 1000),
            next_page_timeout_ms=int(settings.search.next_page_timeout_s * 1000),
        )
        worker = ContactDiscoveryWorker(
            sessions,
            ai,
            fetcher=PlaywrightFetcher(
                timeout_ms=int(settings.pipeline.fetch_timeout_s * 1000),
                hint_navigation_timeout_ms=int(settings.pipeline.hint_navigation_timeout_s * 1000),
            ),
            session_config=session_config,
            user_agent=user_agent,
            echo=echo,
        )
        return cls(
            ai=ai,
            sessions=sessions,
            discovery=discovery,
            worker=worker,
            history=history,
            ops_logger=ops_logger,
            session_config=session_config,
            user_agent=user_agent,
            concurrency=settings.pipeline.concurrency,
            echo=echo,
        )

    async def _process_link(self, link: RankedLink) -> PipelineResult:
        t0 = time.perf_counter()
        result = await self.worker.process(link)
        if self.ops_logger:
            self.ops_logger.link_result(result, time.perf_counter() - t0)
        return result

    async def run(self, request: SearchRequest) -> SearchResponse:
        log = RunLog(echo=self.echo)
        t0 = time.perf_counter()
        log(f'Start: "{request.query}" (top={request.top}, pages={request.pages})')

        log("Step 1: search engine results...")
        serp_pages = await self.discovery.discover(
            request.query,
            request.pages,
            user_agent=self.user_agent,
            session_config=self.session_config,
            log=log,
        )

        log("Step 2: extracting link candidates...")
        candidates = collect_candidates(serp_pages)
        log(f"Candidates: {len(candidates)}")

        log("Step 3: ranking links...")
        ranked = await self.ranking.rank(request.query, candidates, request.top, log)

        log(f"Step 4: contact discovery for {len(ranked)} links (concurrency={self.concurrency})...")
        results: List[PipelineResult] = await run_bounded(ranked, self.concurrency, self._process_link)
        errors = sum(1 for r in results if r.error)
        log(f"Done. Returning {len(results)} results ({errors} with errors).")

        history_id = None
        if self.history is not None:
            try:
                history_id = self.history.save(
                    request.query,
                    {"results": [r.to_wire() for r in results], "logs": log.lines},
                )
            except Exception as e:
                log(f"History save failed: {e}")

        if self.ops_logger:
            self.ops_logger.run_summary(
                request.query,
                wall_s=time.perf_counter() - t0,
                serp_pages=len(serp_pages),
                candidates=len(candidates),
                ranked=len(ranked),
                results=len(results),
                errors=errors,
            )

        return SearchResponse(
            query=request.query,
            total=len(results),
            results=results,
            logs=log.lines,
            history_id=history_id,
        )

    async def close(self) -> None:
        """Clean up resources."""
        await self.sessions.close()
        await self.ai.close()
