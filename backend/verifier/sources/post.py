"""
Social post source and post-URL slug parsing.
Author comes from the page title form "Name on|posted|shared ..."; excerpt from description metadata.
"""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from shared.utils.logging import get_logger

from verifier.fetcher import FetchError
from verifier.fuzzy import normalize_text
from verifier.sources.base import ContentSource, PostExtraction

logger = get_logger(__name__)

_TITLE_AUTHOR = re.compile(r"^([^|]+?) (?:on|posted|shared)\b", re.IGNORECASE)
_POST_SLUG = re.compile(r"/posts/([^_/]+)")
_PROFILE_SLUG = re.compile(r"/in/([^/]+)")


def name_from_post_url(url: str) -> str:
    """
    Derive a name from the URL path alone.

    /posts/jane-doe-1a2b_activity-... -> "jane doe ab"; /in/jane-doe/ -> "jane doe".
    Hyphens and underscores become spaces and digits are dropped. Anything else yields "".
    """
    if not url:
        return ""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""

    match: Optional[re.Match[str]] = None
    if "/posts/" in path:
        match = _POST_SLUG.search(path)
    elif "/in/" in path:
        match = _PROFILE_SLUG.search(path)
    if not match:
        return ""
    return normalize_text(re.sub(r"[-_]", " ", match.group(1)))


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def parse_post(html: str) -> PostExtraction:
    soup = BeautifulSoup(html, "html.parser")

    author = ""
    titles = [soup.title.get_text(strip=True) if soup.title else "", _meta_content(soup, property="og:title")]
    for title in titles:
        match = _TITLE_AUTHOR.match(title)
        if match:
            author = match.group(1).strip()
            break

    excerpt = _meta_content(soup, name="description") or _meta_content(soup, property="og:description")
    return PostExtraction(author=normalize_text(author), excerpt=normalize_text(excerpt))


class PostSource(ContentSource[PostExtraction]):
    """Direct fetch of a public post page."""

    @property
    def source_name(self) -> str:
        return "post"

    async def extract(self, url: str) -> PostExtraction:
        if not url:
            return PostExtraction()
        try:
            html = await self._fetcher.fetch_html(url, source=self.source_name)
        except FetchError as exc:
            logger.warning("post_fetch_failed", url=url, error=str(exc), status=exc.status)
            return PostExtraction()

        result = parse_post(html)
        logger.debug("post_extracted", url=url, author=result.author, excerpt_len=len(result.excerpt))
        return result
