"""
Contact normalization: phone validity and dedup, social URL canonicalization,
email union and the merge of AI and heuristic extractions into one record.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse, urlunparse

from ..schemas import ContactRecord, SocialLink


DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
# Card/order-number-like: 1234-5678-9012-3456
SEGMENTED_ID_RE = re.compile(r"\b(?:\d{4}-){3}\d{3,4}\b")

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

EMAIL_FULL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)

# vk.com subsections that are content, not a profile/community page.
# Matched as the section word, optionally pluralized, followed by a boundary:
# /wall-123_456, /video-1_2, /photos123, /app123, /feed, /groups
VK_RESERVED_RE = re.compile(
    r"^/(?:wall|video|photo|events|topic|album|app|market|artist|sticker|feed|write|share|audio|groups)s?"
    r"(?:$|[/\-_0-9])",
    re.IGNORECASE,
)
TELEGRAM_HOST_RE = re.compile(r"(?:^|\.)t\.me$|telegram\.me$", re.IGNORECASE)
WHATSAPP_HOST_RE = re.compile(r"(?:^|\.)wa\.me$|api\.whatsapp\.com$", re.IGNORECASE)


# -------------------------
# Phones
# -------------------------
def normalize_phone(display: str) -> str:
    """Digits only, keeping a leading ``+``."""
    s = (display or "").strip()
    digits = re.sub(r"[^0-9]", "", s)
    return f"+{digits}" if s.startswith("+") else digits


def looks_like_phone(display: str) -> bool:
    if not display:
        return False
    if "." in display:  # coordinates, amounts
        return False
    if DATE_RE.search(display):
        return False
    if SEGMENTED_ID_RE.search(display):
        return False
    norm = normalize_phone(display)
    digits = norm[1:] if norm.startswith("+") else norm
    if not (MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS):
        return False
    # Local numbering: without a country prefix numbers start with 7 or 8
    if not norm.startswith("+") and digits[0] not in "78":
        return False
    return True


def clean_phones(phones: Iterable[str]) -> List[str]:
    """Valid phones, deduplicated by normalized form, first display form wins."""
    by_norm: Dict[str, str] = {}
    for raw in phones or []:
        display = (raw or "").strip()
        if display.lower().startswith("tel:"):
            display = display[4:].strip()
        if not looks_like_phone(display):
            continue
        by_norm.setdefault(normalize_phone(display), display)
    return list(by_norm.values())


# -------------------------
# Socials
# -------------------------
def canonicalize_social_url(url: str) -> Optional[str]:
    """Reduce a social URL to its profile-identifying form; None when it is not a profile."""
    try:
        p = urlparse((url or "").strip())
    except ValueError:
        return None
    if p.scheme.lower() not in ("http", "https") or not p.netloc:
        return None
    host = (p.hostname or "").lower()

    if host.endswith("vk.com"):
        path = re.sub(r"/+$", "", p.path or "")
        if VK_RESERVED_RE.match(path):
            return None
        segs = [s for s in path.split("/") if s]
        if len(segs) != 1:
            return None
        return urlunparse(p._replace(path="/" + segs[0], params="", query="", fragment=""))

    if TELEGRAM_HOST_RE.search(host):
        segs = [s for s in (p.path or "").split("/") if s]
        if not segs:
            return None
        return urlunparse(p._replace(path="/" + segs[0], params="", query="", fragment=""))

    if WHATSAPP_HOST_RE.search(host):
        return urlunparse(p._replace(fragment=""))

    if "instagram.com" in host or "facebook.com" in host:
        return urlunparse(p._replace(query="", fragment=""))

    return urlunparse(p)


def clean_socials(socials: Iterable[SocialLink]) -> List[SocialLink]:
    """Canonicalize, drop rejects, dedup by (platform, url), keep one per platform."""
    seen: set[tuple[str, str]] = set()
    per_platform: Dict[str, SocialLink] = {}
    for s in socials or []:
        if not s or not s.url:
            continue
        canonical = canonicalize_social_url(s.url)
        if not canonical:
            continue
        platform = (s.platform or "").strip().lower()
        key = (platform, canonical)
        if key in seen:
            continue
        seen.add(key)
        per_platform.setdefault(platform, SocialLink(platform=platform, url=canonical))
    return list(per_platform.values())


# -------------------------
# Emails and merge
# -------------------------
def merge_emails(*sources: Iterable[str]) -> List[str]:
    """Case-sensitive ordered union."""
    out: List[str] = []
    seen: set[str] = set()
    for src in sources:
        for e in src or []:
            e = (e or "").strip()
            if e and e not in seen:
                seen.add(e)
                out.append(e)
    return out


def looks_like_email(value: str) -> bool:
    return bool(EMAIL_FULL_RE.fullmatch((value or "").strip()))


def merge_contacts(
    *,
    ai_emails: Sequence[str] = (),
    ai_phones: Sequence[str] = (),
    ai_socials: Sequence[SocialLink] = (),
    ai_hints: Sequence[str] = (),
    heuristic_emails: Sequence[str] = (),
    heuristic_phones: Sequence[str] = (),
    heuristic_socials: Sequence[SocialLink] = (),
) -> ContactRecord:
    """Combine AI and heuristic extraction into a normalized ContactRecord.

    Socials are keyed by URL before canonicalization; for the same URL the
    heuristic platform label overrides the AI one. Hints come only from AI.
    AI emails that are not address-shaped are dropped.
    """
    pairs: Dict[str, str] = {}
    for s in list(ai_socials) + list(heuristic_socials):
        if s and s.url:
            pairs[s.url] = s.platform or ""
    return ContactRecord(
        emails=merge_emails([e for e in ai_emails if looks_like_email(e)], heuristic_emails),
        phones=clean_phones(list(ai_phones) + list(heuristic_phones)),
        socials=clean_socials(SocialLink(platform=p, url=u) for u, p in pairs.items()),
        contact_page_hints=[h for h in ai_hints if h and h.strip()],
    )
