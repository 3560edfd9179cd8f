"""
Certificate page source.
Extraction is strict: the holder's name only ever comes from a "Completed by" marker.
"""
from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup, NavigableString

from shared.utils.logging import get_logger

from verifier.fetcher import FetchError
from verifier.fuzzy import normalize_text
from verifier.sources.base import CertificateExtraction, ContentSource

logger = get_logger(__name__)

_MARKER = re.compile(r"completed by", re.IGNORECASE)
_MARKER_TAIL = re.compile(r"completed by\s+(.+)", re.IGNORECASE | re.DOTALL)
_CANDIDATE_END = re.compile(r"[\n,.!|&<]")

_MARKDOWN_NAME_PATTERNS = (
    re.compile(r"Completed by\s+\*\*([^*]+)\*\*", re.IGNORECASE),
    re.compile(r"Completed by\s+([A-Za-z][A-Za-z ]{2,50})", re.IGNORECASE),
)

_MARKDOWN_COURSE_PATTERNS = (
    re.compile(r"Working with\s+([A-Za-z0-9 ]+?)(?:\s+(?:in|and)\b|\n|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"Course:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"Project:\s*([^\n]+)", re.IGNORECASE),
)

_NAME_TAGS = ["strong", "b", "span"]


def clean_name_candidate(raw: str) -> str:
    """Trim a raw candidate at the first delimiter; empty if it is not a plausible person name."""
    candidate = _CANDIDATE_END.split(raw, maxsplit=1)[0].strip()
    if not 2 <= len(candidate) < 60:
        return ""
    if "coursera" in candidate.lower():
        return ""
    if not re.search(r"[A-Za-z]", candidate):
        return ""
    return candidate


def name_from_markdown(markdown: str) -> str:
    for pattern in _MARKDOWN_NAME_PATTERNS:
        for match in pattern.finditer(markdown):
            candidate = clean_name_candidate(match.group(1))
            if candidate:
                return candidate
    return ""


def name_from_html(soup: BeautifulSoup) -> str:
    """Text node carrying the marker, or the strong/b/span right after it."""
    for node in soup.find_all(string=_MARKER):
        tail = _MARKER_TAIL.search(str(node))
        if tail:
            candidate = clean_name_candidate(tail.group(1))
            if candidate:
                return candidate
        sibling = node.find_next_sibling(_NAME_TAGS) if isinstance(node, NavigableString) else None
        if sibling is not None:
            candidate = clean_name_candidate(sibling.get_text(" ", strip=True))
            if candidate:
                return candidate
    return ""


def course_from_markdown(markdown: str) -> str:
    for pattern in _MARKDOWN_COURSE_PATTERNS:
        match = pattern.search(markdown)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return ""


def course_from_html(soup: BeautifulSoup) -> str:
    for h2 in soup.find_all("h2"):
        text = h2.get_text(" ", strip=True)
        lowered = text.lower()
        if "completed by" in lowered or "coursera" in lowered:
            continue
        if len(text) > 3:
            return text
    return ""


def parse_certificate(markdown: str, html: str) -> CertificateExtraction:
    """Apply markdown patterns first, then the HTML fallbacks; normalize both fields."""
    soup: Optional[BeautifulSoup] = BeautifulSoup(html, "html.parser") if html else None

    name = name_from_markdown(markdown) if markdown else ""
    if not name and soup is not None:
        name = name_from_html(soup)

    course = course_from_markdown(markdown) if markdown else ""
    if not course and soup is not None:
        course = course_from_html(soup)

    return CertificateExtraction(name=normalize_text(name), project=normalize_text(course))


class CertificateSource(ContentSource[CertificateExtraction]):
    """Rendered scrape when configured, direct fetch otherwise or on render failure."""

    @property
    def source_name(self) -> str:
        return "certificate"

    async def extract(self, url: str) -> CertificateExtraction:
        if not url:
            return CertificateExtraction()

        markdown = html = ""
        if self._fetcher.rendering_enabled:
            try:
                page = await self._fetcher.render(url)
                markdown, html = page.markdown, page.html
            except FetchError as exc:
                logger.info("certificate_render_fallback", url=url, error=str(exc))

        if not markdown and not html:
            try:
                html = await self._fetcher.fetch_html(url, source=self.source_name)
            except FetchError as exc:
                logger.warning("certificate_fetch_failed", url=url, error=str(exc), status=exc.status)
                return CertificateExtraction()

        result = parse_certificate(markdown, html)
        if not result.name:
            logger.info("certificate_marker_missing", url=url)
        logger.debug("certificate_extracted", url=url, name=result.name, project=result.project)
        return result
