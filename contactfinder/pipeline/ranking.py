from __future__ import annotations

"""
Two-stage link ranking: AI selection constrained to the supplied candidates,
AI relevance classification, then a deterministic aggregator-domain filter.
"""

from typing import Callable, List, Optional, Sequence
from urllib.parse import urlparse

from ..schemas import RankedLink, SearchCandidate
from .ai import MAX_SELECTED_LINKS, AiCollaborator


DEFAULT_TOP = 10

# Directories, maps and review sites; never the target organization itself
AGGREGATOR_DOMAINS = [
    "google.com", "google.ru", "2gis.ru", "yandex.ru",
    "tripadvisor.ru", "profi.ru", "flamp.ru", "kudatumen.ru",
]


def is_aggregator(url: str, domains: Sequence[str] = AGGREGATOR_DOMAINS) -> bool:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    if host.startswith("www."):
        host = host[4:]
    return any(host.endswith(d) for d in domains)


def filter_aggregators(links: Sequence[RankedLink], domains: Sequence[str] = AGGREGATOR_DOMAINS) -> List[RankedLink]:
    return [l for l in links if not is_aggregator(l.url, domains)]


class LinkRankingStage:
    """Turns deduplicated SERP candidates into relevant, non-aggregator links."""

    def __init__(self, ai: AiCollaborator, *, aggregator_domains: Sequence[str] = AGGREGATOR_DOMAINS) -> None:
        self.ai = ai
        self.aggregator_domains = list(aggregator_domains)

    async def select(
        self,
        query: str,
        candidates: Sequence[SearchCandidate],
        top: int = DEFAULT_TOP,
        log: Optional[Callable[[str], object]] = None,
    ) -> List[RankedLink]:
        """AI picks up to 15 candidates; invented URLs are discarded.

        Falls back to the first ``top`` candidates when the call fails or
        nothing usable comes back.
        """
        top = max(1, min(MAX_SELECTED_LINKS, int(top or DEFAULT_TOP)))
        outcome = await self.ai.select_links(query, candidates, MAX_SELECTED_LINKS)
        selected = [
            RankedLink(url=item.url, title=item.title, snippet=item.snippet, relevant=True, reason="")
            for item in outcome.value
        ][:top]
        if selected:
            return selected
        if log:
            reason = outcome.error or "empty selection"
            log(f"AI selection unusable ({reason}); taking first {top} candidates")
        return [
            RankedLink(url=c.url, title=c.title, snippet="", relevant=True, reason="fallback")
            for c in candidates[:top]
        ]

    async def classify(
        self,
        query: str,
        links: Sequence[RankedLink],
        log: Optional[Callable[[str], object]] = None,
    ) -> List[RankedLink]:
        """Annotate each link with the AI verdict; permissive on failure."""
        if not links:
            return []
        outcome = await self.ai.classify_links(query, links)
        if not outcome.ok or not outcome.value:
            if log:
                log(f"AI relevance unusable ({outcome.error or 'empty reply'}); keeping all links")
            return [l.model_copy(update={"relevant": True, "reason": "fallback"}) for l in links]
        verdicts = {v.url: v for v in outcome.value}
        out: List[RankedLink] = []
        for link in links:
            v = verdicts.get(link.url)
            if v is None:
                out.append(link.model_copy(update={"relevant": True, "reason": "no verdict"}))
                continue
            out.append(link.model_copy(update={
                "relevant": bool(v.relevant),
                "reason": v.reason,
                "snippet": link.snippet or v.snippet,
            }))
        return out

    async def rank(
        self,
        query: str,
        candidates: Sequence[SearchCandidate],
        top: int = DEFAULT_TOP,
        log: Optional[Callable[[str], object]] = None,
    ) -> List[RankedLink]:
        selected = await self.select(query, candidates, top, log)
        if log:
            log(f"Selected links: {len(selected)}")
        classified = await self.classify(query, selected, log)
        relevant = [l for l in classified if l.relevant]
        if log:
            log(f"Relevant (AI): {len(relevant)}")
        kept = filter_aggregators(relevant, self.aggregator_domains)
        if log:
            log(f"Aggregator filter: {len(kept)} left")
        return kept
