"""
Heuristic extraction from raw HTML - anchor candidates and contacts

Works on text, not on a DOM: SERP and business-site HTML is frequently
malformed, so anchors, emails, tel: links and social URLs are found with
pattern matching. Values are returned raw; normalization is done by
``pipeline.normalize``.

The only parser use is the preprocessing step (``strip_html_assets``) which
removes script/style/noscript blocks before anything else looks at the page.
"""

from __future__ import annotations

import html as htmllib
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser

from ..schemas import SearchCandidate, SocialLink


MAX_TITLE_LEN = 180

# Engine-internal navigation; never a result
BLACKLIST_FRAGMENTS = [
    "google.com/preferences", "/preferences", "/setprefs", "/sorry", "/imgres",
    "/search?", "/maps/preview",
    "accounts.google.", "consent.google.", "support.google.", "policies.google.",
]

ANCHOR_RE = re.compile(r"""<a\s+[^>]*href=["']([^"']+)["'][^>]*>(.*?)</a>""", re.IGNORECASE | re.DOTALL)
TAG_RE = re.compile(r"<[^>]+>")
WS_RE = re.compile(r"\s+")
COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
MULTI_WS_RE = re.compile(r"\s{2,}")

EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
TEL_HREF_RE = re.compile(r"""<a\s+[^>]*href=["']tel:([^"']+)["'][^>]*>""", re.IGNORECASE)

SOCIAL_PATTERNS = [
    ("vk", re.compile(r"https?://(?:www\.|m\.)?vk\.com/[A-Za-z0-9_./-]+", re.IGNORECASE)),
    ("telegram", re.compile(r"https?://(?:t\.me|telegram\.me)/[A-Za-z0-9_./-]+", re.IGNORECASE)),
    ("whatsapp", re.compile(r"https?://(?:wa\.me|api\.whatsapp\.com)/[A-Za-z0-9_?=&#%-]+", re.IGNORECASE)),
    ("instagram", re.compile(r"https?://(?:www\.)?instagram\.com/[A-Za-z0-9_./-]+", re.IGNORECASE)),
    ("facebook", re.compile(r"https?://(?:www\.)?facebook\.com/[A-Za-z0-9_./-]+", re.IGNORECASE)),
]


@dataclass
class HeuristicContacts:
    """Raw, unnormalized contacts found by pattern matching."""
    emails: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    socials: List[SocialLink] = field(default_factory=list)


def strip_html_assets(html: str) -> str:
    """Remove script/style/noscript blocks, comments and runs of whitespace."""
    if not html:
        return ""
    try:
        tree = HTMLParser(html)
        tree.strip_tags(["script", "style", "noscript"])
        out = tree.html or ""
    except Exception:
        return html
    out = COMMENT_RE.sub("", out)
    return MULTI_WS_RE.sub(" ", out)


def _resolve_href(href: str, base_url: str) -> Optional[str]:
    try:
        abs_url = urljoin(base_url, htmllib.unescape(href.strip()))
    except ValueError:
        return None
    if not abs_url.lower().startswith(("http://", "https://")):
        return None
    if any(b in abs_url for b in BLACKLIST_FRAGMENTS):
        return None
    return abs_url


def _anchor_text(inner: str) -> str:
    text = TAG_RE.sub(" ", inner or "")
    return WS_RE.sub(" ", htmllib.unescape(text)).strip()


def extract_anchor_candidates(html: str, base_url: str, max_items: int = 100) -> List[SearchCandidate]:
    """Scan ``<a href>`` tags and return unique absolute candidates in page order.

    Anchors without text, non-HTTP(S) targets and engine-internal links are
    skipped. At most ``max_items`` candidates are returned.
    """
    out: List[SearchCandidate] = []
    if max_items <= 0 or not html:
        return out
    seen: set[str] = set()
    for m in ANCHOR_RE.finditer(html):
        abs_url = _resolve_href(m.group(1), base_url)
        if not abs_url or abs_url in seen:
            continue
        text = _anchor_text(m.group(2))
        if not text:
            continue
        seen.add(abs_url)
        out.append(SearchCandidate(url=abs_url, title=text[:MAX_TITLE_LEN]))
        if len(out) >= max_items:
            break
    return out


def heuristic_extract_contacts(html: str, base_url: str) -> HeuristicContacts:
    """Pattern-based emails, ``tel:`` phones and social profile URLs.

    Phones are taken from ``tel:`` anchors only; free-text digit runs are
    mostly dates, ids and prices.
    """
    result = HeuristicContacts()
    if not html:
        return result

    seen_emails: set[str] = set()
    for m in EMAIL_RE.finditer(html):
        email = m.group(0)
        if email not in seen_emails:
            seen_emails.add(email)
            result.emails.append(email)

    seen_phones: set[str] = set()
    for m in TEL_HREF_RE.finditer(html):
        raw = htmllib.unescape(m.group(1)).strip()
        if raw and raw not in seen_phones:
            seen_phones.add(raw)
            result.phones.append(raw)

    # url -> platform, insertion ordered
    socials: Dict[str, str] = {}
    for platform, pattern in SOCIAL_PATTERNS:
        for m in pattern.finditer(html):
            socials[m.group(0)] = platform
    result.socials = [SocialLink(platform=p, url=u) for u, p in socials.items()]
    return result
