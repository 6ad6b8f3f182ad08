"""Citation extraction and normalization for generated research text."""

import re
from typing import Iterable, Sequence
from urllib.parse import urlsplit

from deep_research.logging import get_logger
from deep_research.models import Reference, normalize_url_key

log = get_logger("deep_research.research.references")

USER_PROVIDED_DESCRIPTION = "user-provided"
STRUCTURED_DESCRIPTION = "Cited source"
INLINE_DESCRIPTION = "Linked inline in generated text"

# [Source: title | author | date | url]
_STRUCTURED_CITATION = re.compile(
    r"\[\s*(?:source|reference|источник)\s*:\s*"
    r"([^|\]]+?)\s*\|\s*([^|\]]*?)\s*\|\s*([^|\]]*?)\s*\|\s*([^\]]+?)\s*\]",
    re.IGNORECASE,
)
_MARKDOWN_LINK = re.compile(r"\[([^\[\]]+)\]\((https?://[^\s()]+)\)")
_BARE_URL = re.compile(r"https?://[^\s<>\"'`\[\]{}|\\^]+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?'\"*_>"


def extract_domain(url: str) -> str | None:
    """Host of an absolute http(s) URL without a leading 'www.'; None when malformed."""
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not host:
        return None
    return host[4:] if host.startswith("www.") else host


def _trim_url(url: str) -> str:
    trimmed = url.rstrip(_TRAILING_PUNCTUATION)
    # keep a closing paren only when the URL itself opened one
    while trimmed.endswith(")") and trimmed.count("(") < trimmed.count(")"):
        trimmed = trimmed[:-1].rstrip(_TRAILING_PUNCTUATION)
    return trimmed


def _optional(value: str) -> str | None:
    value = value.strip()
    if not value or value.lower() in ("n/a", "na", "unknown", "-", "—"):
        return None
    return value


def _structured_references(text: str) -> list[Reference]:
    references: list[Reference] = []
    for match in _STRUCTURED_CITATION.finditer(text):
        title, author, date, url = (group.strip() for group in match.groups())
        url = _trim_url(url)
        domain = extract_domain(url)
        if not title or domain is None:
            log.debug("references.structured.skipped", url=url)
            continue
        references.append(
            Reference(
                url=url,
                title=title,
                domain=domain,
                author=_optional(author),
                publish_date=_optional(date),
                description=STRUCTURED_DESCRIPTION,
            )
        )
    return references


def _inline_references(text: str, known_urls: set[str]) -> list[Reference]:
    references: list[Reference] = []

    def _add(url: str, title: str | None) -> None:
        url = _trim_url(url)
        domain = extract_domain(url)
        if domain is None:
            return
        key = normalize_url_key(url)
        if key in known_urls:
            return
        known_urls.add(key)
        references.append(Reference(url=url, title=title or domain, domain=domain, description=INLINE_DESCRIPTION))

    for match in _MARKDOWN_LINK.finditer(text):
        _add(match.group(2), match.group(1).strip())
    for match in _BARE_URL.finditer(text):
        _add(match.group(0), None)
    return references


def custom_url_references(custom_urls: Sequence[str]) -> list[Reference]:
    """References for caller-supplied URLs, kept verbatim."""
    references: list[Reference] = []
    for index, url in enumerate(custom_urls, 1):
        domain = extract_domain(url)
        if domain is None:
            log.warning("references.custom_url.malformed", url=url)
            continue
        references.append(
            Reference(
                url=url,
                title=f"User-provided source {index}",
                domain=domain,
                description=USER_PROVIDED_DESCRIPTION,
            )
        )
    return references


def deduplicate_references(references: Iterable[Reference]) -> list[Reference]:
    """Drop references whose (url, title) key was already seen, keeping first occurrences."""
    seen: set[tuple[str, str]] = set()
    unique: list[Reference] = []
    for ref in references:
        if ref.key in seen:
            continue
        seen.add(ref.key)
        unique.append(ref)
    return unique


def extract_references(text: str, custom_urls: Sequence[str] = ()) -> list[Reference]:
    """Parse structured citations and bare links out of ``text``.

    Structured ``[Source: title | author | date | url]`` citations are read
    first; any other http(s) link is then picked up with its domain as title.
    Custom URLs are always appended. The result is deduplicated.
    """
    structured = _structured_references(text or "")
    known_urls = {normalize_url_key(ref.url) for ref in structured}
    inline = _inline_references(text or "", known_urls)
    return deduplicate_references([*structured, *inline, *custom_url_references(custom_urls)])


def format_reference(reference: Reference, number: int) -> str:
    """Render one numbered entry of the report's source list."""
    details = [reference.title]
    if reference.author:
        details.append(reference.author)
    if reference.publish_date:
        details.append(reference.publish_date)
    return f"{number}. {'. '.join(details)}. {reference.url}"
