"""
Contact Finder - Pydantic Data Schemas

Core data models for search candidates, ranked links, contact records and
pipeline results, plus the request/response envelope of a discovery run and
the loose schemas AI replies are parsed into.

Python attributes are snake_case; the wire format uses camelCase aliases
(``contactPageHints``, ``hintsTried``, ``historyId``).
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SearchCandidate(BaseModel):
    """Anchor extracted from raw SERP HTML before any relevance judgment."""
    url: str = Field(..., description="Absolute HTTP(S) URL")
    title: str = Field(..., description="Anchor text (truncated)")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Candidates are always absolute web URLs."""
        if not v.lower().startswith(('http://', 'https://')):
            raise ValueError('url must be a valid HTTP/HTTPS URL')
        return v


class RankedLink(BaseModel):
    """A candidate annotated with a relevance verdict and reason."""
    url: str
    title: str = ""
    snippet: str = ""
    relevant: bool = True
    reason: str = ""


class SocialLink(BaseModel):
    platform: str
    url: str


class ContactRecord(BaseModel):
    """
    Contacts discovered for one link.

    Emails and phones are deduplicated by normalized form, socials hold at
    most one canonical URL per platform. Construction goes through
    ``pipeline.normalize.merge_contacts`` which enforces both invariants.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    emails: List[str] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    socials: List[SocialLink] = Field(default_factory=list)
    contact_page_hints: List[str] = Field(default_factory=list, alias="contactPageHints")

    def is_empty(self) -> bool:
        return not (self.emails or self.phones or self.socials)


class PipelineResult(BaseModel):
    """One processed link. Immutable once produced."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    link: RankedLink
    page: str = Field(..., description="Final URL visited")
    contacts: ContactRecord = Field(default_factory=ContactRecord)
    hints_tried: Optional[List[str]] = Field(default=None, alias="hintsTried")
    logs: List[str] = Field(default_factory=list)
    error: Optional[bool] = None

    def to_wire(self) -> dict:
        """Serialize with camelCase keys; absent ``hintsTried``/``error`` are omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SearchRequest(BaseModel):
    """Input of a discovery run."""
    query: str = Field(..., description="Free-text organization query")
    top: int = Field(default=10, ge=1, le=15, description="Number of ranked links to process")
    pages: int = Field(default=3, ge=1, le=10, description="Number of SERP pages to crawl")

    @field_validator('query')
    @classmethod
    def validate_query(cls, v):
        if not v or not v.strip():
            raise ValueError('query is required')
        return v.strip()


class SearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    total: int
    results: List[PipelineResult] = Field(default_factory=list)
    logs: List[str] = Field(default_factory=list)
    history_id: Optional[int] = Field(default=None, alias="historyId")

    def to_wire(self) -> dict:
        return {
            "query": self.query,
            "total": self.total,
            "results": [r.to_wire() for r in self.results],
            "logs": list(self.logs),
            "historyId": self.history_id,
        }


# AI reply schemas. Replies are loosely specified, so every field is optional
# and unknown keys are ignored.

class LinkSummary(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""


class LinkSelectionReply(BaseModel):
    items: List[LinkSummary] = Field(default_factory=list)


class RelevanceVerdict(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""
    relevant: bool = True
    reason: str = ""


class RelevanceReply(BaseModel):
    items: List[RelevanceVerdict] = Field(default_factory=list)


class ContactExtractionReply(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    emails: List[str] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    socials: List[SocialLink] = Field(default_factory=list)
    contact_page_hints: List[str] = Field(default_factory=list, alias="contactPageHints")

    @field_validator('emails', 'phones', 'contact_page_hints', mode='before')
    @classmethod
    def drop_nulls(cls, v):
        """Models occasionally emit ``null`` or a bare string instead of a list."""
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return []
        return [x.strip() for x in v if isinstance(x, str) and x.strip()]

    @field_validator('socials', mode='before')
    @classmethod
    def drop_incomplete_socials(cls, v):
        if isinstance(v, dict):
            v = [v]
        if not isinstance(v, list):
            return []
        out = []
        for s in v:
            if isinstance(s, dict) and isinstance(s.get('url'), str) and s['url'].strip():
                out.append({"platform": str(s.get('platform') or ''), "url": s['url'].strip()})
        return out
