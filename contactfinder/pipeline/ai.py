"""
AI collaborator - chat-completion calls used by ranking and extraction

Every call site returns an ``AiOutcome``: the parsed value, or the call
site's fallback value together with an ``error`` string. Transport failures,
a missing API key and malformed JSON never raise to the caller.

Call sites:
- select_links       -> candidates the model picked (subset of the input)
- classify_links     -> relevance verdicts per link
- extract_contacts   -> emails/phones/socials/contactPageHints from HTML
- suggest_navigation -> free-text hints towards a contacts page
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, Sequence, TypeVar

import httpx
from openai import AsyncOpenAI
from pydantic import ValidationError

from ..schemas import (
    ContactExtractionReply,
    LinkSelectionReply,
    LinkSummary,
    RankedLink,
    RelevanceReply,
    RelevanceVerdict,
    SearchCandidate,
)


DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.2
MAX_SELECTED_LINKS = 15
EXTRACTION_HTML_LIMIT = 120000
NAVIGATION_HTML_LIMIT = 20000
MAX_HINTS = 5

SELECT_SYSTEM = """You will be given a search intent and a list of CANDIDATE links already extracted from the same HTML.
Choose only from the provided candidates. Do NOT invent new links. Return JSON with key "items": [{{url,title,snippet}}] with up to {max_items} items."""

CLASSIFY_SYSTEM = """You are a precise research assistant. Given a search intent and a list of search results, mark which links are relevant to the intent.
Rules:
- Prefer DIRECT company/organization websites for the intent.
- INCLUDE official company pages on social networks (vk/telegram/instagram/facebook) when they represent the specific company (not generic categories).
- INCLUDE company pages on ORGS-like business cards if they are for the specific company.
- EXCLUDE general aggregators/directories/maps or generic category pages (examples: google, 2gis, yandex maps/search, tripadvisor, profi.ru, flamp, kudatumen) unless the page is a specific company profile.
- Keep only direct matches."""

EXTRACT_SYSTEM = """You extract contacts from raw HTML. Respond strictly as json object. Return structured contacts and hints where a contact/contacts link might be located.
Keys: emails[], phones[], socials[{platform,url}], contactPageHints[].
Phones: ONLY real phone numbers (no dates, ids, coordinates, order numbers). Keep human-readable formatting, but do NOT include 'tel:' prefix.
Include social links (vk/telegram/whatsapp/instagram/facebook) with platform and absolute url."""

NAVIGATE_SYSTEM = "Given a page HTML, suggest link texts, hrefs, or steps to navigate to a contacts page. Return up to 5 actionable hints."

LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]+|\d+[.)])\s*")
CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

T = TypeVar("T")


class AiParseError(ValueError):
    """The model reply does not match the expected schema."""


@dataclass(frozen=True)
class AiOutcome(Generic[T]):
    value: T
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _load_json(content: str) -> Any:
    text = CODE_FENCE_RE.sub("", (content or "").strip())
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise AiParseError(f"invalid JSON: {e.msg}") from e


def parse_link_selection(content: str, candidates: Sequence[SearchCandidate], max_items: int) -> List[LinkSummary]:
    """Parse ``{"items": [...]}`` keeping only URLs present in ``candidates``."""
    data = _load_json(content)
    try:
        reply = LinkSelectionReply.model_validate(data)
    except ValidationError as e:
        raise AiParseError(f"unexpected selection shape: {e.error_count()} errors") from e
    allowed = {c.url for c in candidates}
    out: List[LinkSummary] = []
    seen: set[str] = set()
    for item in reply.items:
        if item.url in allowed and item.url not in seen:
            seen.add(item.url)
            out.append(item)
    return out[:max_items]


def parse_relevance(content: str) -> List[RelevanceVerdict]:
    """Accepts a bare JSON array or an object with ``items``."""
    data = _load_json(content)
    if isinstance(data, list):
        data = {"items": data}
    try:
        return RelevanceReply.model_validate(data).items
    except ValidationError as e:
        raise AiParseError(f"unexpected relevance shape: {e.error_count()} errors") from e


def parse_contact_extraction(content: str) -> ContactExtractionReply:
    data = _load_json(content)
    if not isinstance(data, dict):
        raise AiParseError("contact extraction is not a JSON object")
    try:
        return ContactExtractionReply.model_validate(data)
    except ValidationError as e:
        raise AiParseError(f"unexpected contacts shape: {e.error_count()} errors") from e


def parse_hints(content: str) -> List[str]:
    hints: List[str] = []
    for line in (content or "").splitlines():
        s = LIST_MARKER_RE.sub("", line).strip().strip("\"'«»`")
        if s:
            hints.append(s)
    return hints[:MAX_HINTS]


class AiCollaborator:
    """
    Thin async wrapper around an OpenAI-compatible chat-completions API.

    The client is built lazily so a missing key only affects AI call sites
    (each falls back) and never import or pipeline construction.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        timeout_s: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url or None
        self.model = model
        self.temperature = temperature
        self.timeout_s = timeout_s
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("API key is not set (PROXYAPI_API_KEY or OPENAI_API_KEY)")
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                http_client=httpx.AsyncClient(timeout=self.timeout_s),
            )
        return self._client

    async def _complete(self, system: str, user: str, *, json_mode: bool = False) -> str:
        params: dict[str, Any] = {}
        if json_mode:
            params["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=self.temperature,
            **params,
        )
        return response.choices[0].message.content or ""

    async def select_links(
        self, query: str, candidates: Sequence[SearchCandidate], max_items: int = MAX_SELECTED_LINKS
    ) -> AiOutcome[List[LinkSummary]]:
        if not candidates:
            return AiOutcome([], "no candidates")
        user = json.dumps(
            {"intent": query, "candidates": [{"url": c.url, "title": c.title, "snippet": ""} for c in candidates]},
            ensure_ascii=False,
        )
        try:
            content = await self._complete(SELECT_SYSTEM.format(max_items=max_items), user, json_mode=True)
            return AiOutcome(parse_link_selection(content, candidates, max_items))
        except Exception as e:
            return AiOutcome([], f"{type(e).__name__}: {e}")

    async def classify_links(self, query: str, links: Sequence[RankedLink]) -> AiOutcome[List[RelevanceVerdict]]:
        user = "\n".join(
            [f"Intent: {query}", "Results:"]
            + [f"{i + 1}. {l.title} | {l.url}\n{l.snippet}" for i, l in enumerate(links)]
            + ["", "Respond as JSON array of objects: {url,title,snippet,relevant:boolean,reason} with the same order."]
        )
        try:
            content = await self._complete(CLASSIFY_SYSTEM, user)
            return AiOutcome(parse_relevance(content))
        except Exception as e:
            return AiOutcome([], f"{type(e).__name__}: {e}")

    async def extract_contacts(self, html: str, url: str) -> AiOutcome[ContactExtractionReply]:
        user = f"Return json only. URL: {url}\nHTML:\n{(html or '')[:EXTRACTION_HTML_LIMIT]}"
        try:
            content = await self._complete(EXTRACT_SYSTEM, user, json_mode=True)
            return AiOutcome(parse_contact_extraction(content))
        except Exception as e:
            return AiOutcome(ContactExtractionReply(), f"{type(e).__name__}: {e}")

    async def suggest_navigation(self, html: str, url: str) -> AiOutcome[List[str]]:
        user = f"URL: {url}\nHTML:\n{(html or '')[:NAVIGATION_HTML_LIMIT]}"
        try:
            content = await self._complete(NAVIGATE_SYSTEM, user)
            return AiOutcome(parse_hints(content))
        except Exception as e:
            return AiOutcome([], f"{type(e).__name__}: {e}")

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
            except Exception:
                pass
