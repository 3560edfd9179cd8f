"""
Extraction results and base source interface.
Every source turns one URL into normalized strings; absence is an empty string.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, TypeVar

from verifier.fetcher import PageFetcher

T = TypeVar("T")


@dataclass(frozen=True)
class CertificateExtraction:
    """Normalized signals from a certificate page."""
    name: str = ""
    project: str = ""


@dataclass(frozen=True)
class PostExtraction:
    """Normalized signals from a social post page."""
    author: str = ""
    excerpt: str = ""


class ContentSource(ABC, Generic[T]):
    """Base for the certificate and post extractors."""

    def __init__(self, fetcher: PageFetcher) -> None:
        self._fetcher = fetcher

    @property
    @abstractmethod
    def source_name(self) -> str:
        pass

    @abstractmethod
    async def extract(self, url: str) -> T:
        """
        Fetch url and extract its signals.
        Implementations must treat fetch failures as empty extraction; do not raise.
        """
        pass
