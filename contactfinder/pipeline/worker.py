from __future__ import annotations

from enum import Enum
from typing import Optional

from ..ops_logger import RunLog
from ..schemas import ContactRecord, PipelineResult, RankedLink
from .ai import AiCollaborator
from .browser import BrowserLaunchError, BrowserSessionManager, SessionConfig
from .extractors import heuristic_extract_contacts, strip_html_assets
from .fetchers.playwright import PlaywrightFetcher
from .normalize import merge_contacts


class LinkState(str, Enum):
    """States of the per-link pipeline; RESOLVED and ERROR are terminal."""
    FETCH = "fetch"
    EXTRACT = "extract"
    HINTS = "hints"
    NAVIGATE = "navigate"
    REEXTRACT = "reextract"
    RESOLVED = "resolved"
    ERROR = "error"


class LinkFetchError(RuntimeError):
    """The link's page could not be loaded."""


class ContactDiscoveryWorker:
    """Per-link pipeline: fetch, extract, and on an empty result follow
    navigation hints to a secondary page and extract again.

    Every failure after the page is opened ends in an ERROR result for this
    link only. Failing to obtain a browser at all (``BrowserLaunchError``)
    propagates, because no other link can succeed either.
    """

    def __init__(
        self,
        sessions: BrowserSessionManager,
        ai: AiCollaborator,
        *,
        fetcher: Optional[PlaywrightFetcher] = None,
        session_config: Optional[SessionConfig] = None,
        user_agent: Optional[str] = None,
        echo: bool = True,
    ) -> None:
        self.sessions = sessions
        self.ai = ai
        self.fetcher = fetcher or PlaywrightFetcher()
        self.session_config = session_config or SessionConfig()
        self.user_agent = user_agent
        self.echo = echo

    async def extract(self, html: str, url: str, log: RunLog) -> ContactRecord:
        """Heuristic + AI extraction on stripped HTML, merged and normalized."""
        heur = heuristic_extract_contacts(html, url)
        ai = await self.ai.extract_contacts(html, url)
        if not ai.ok:
            log(f"AI extraction unavailable ({ai.error}); heuristic only")
        reply = ai.value
        return merge_contacts(
            ai_emails=reply.emails,
            ai_phones=reply.phones,
            ai_socials=reply.socials,
            ai_hints=reply.contact_page_hints,
            heuristic_emails=heur.emails,
            heuristic_phones=heur.phones,
            heuristic_socials=heur.socials,
        )

    @staticmethod
    def _summary(record: ContactRecord) -> str:
        return f"emails={len(record.emails)}, phones={len(record.phones)}, socials={len(record.socials)}"

    async def process(self, link: RankedLink) -> PipelineResult:
        log = RunLog(link.url, echo=self.echo)
        state = LinkState.FETCH
        try:
            async with self.sessions.open_page(self.session_config, self.user_agent) as page:
                log("Loading page...")
                fetched = await self.fetcher.fetch(page, link.url)
                if fetched.error:
                    raise LinkFetchError(fetched.error)
                log(f"Page loaded: {fetched.final_url} (status={fetched.status_code})")

                state = LinkState.EXTRACT
                stripped = strip_html_assets(fetched.html or "")
                record = await self.extract(stripped, fetched.final_url, log)
                log(f"Primary extraction: {self._summary(record)}")
                if not record.is_empty():
                    log("Contacts found on the landing page")
                    return PipelineResult(link=link, page=fetched.final_url, contacts=record, logs=log.lines)

                state = LinkState.HINTS
                hints = list(record.contact_page_hints)
                if not hints:
                    suggested = await self.ai.suggest_navigation(stripped, fetched.final_url)
                    if not suggested.ok:
                        log(f"AI hints unavailable ({suggested.error})")
                    hints = list(suggested.value)

                state = LinkState.NAVIGATE
                log(f"Following hints ({len(hints)}) to find contacts...")
                nav = await self.fetcher.navigate_by_hints(page, hints)
                if nav.clicked_hint:
                    log(f"Clicked hint {nav.clicked_hint!r}, opened: {nav.url}")
                else:
                    log(f"No hint matched, staying on: {nav.url}")

                state = LinkState.REEXTRACT
                record = await self.extract(strip_html_assets(nav.html), nav.url, log)
                log(f"Secondary extraction: {self._summary(record)}")
                return PipelineResult(
                    link=link,
                    page=nav.url,
                    contacts=record,
                    hints_tried=list(nav.hints_tried),
                    logs=log.lines,
                )
        except BrowserLaunchError:
            raise
        except Exception as e:
            log(f"Error during {state.value}: {type(e).__name__}: {e}")
            return PipelineResult(
                link=link,
                page=link.url,
                contacts=ContactRecord(),
                logs=log.lines,
                error=True,
            )
