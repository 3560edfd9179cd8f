"""
Per-submission Verification Engine.
Fetches the certificate and post concurrently, triangulates identity across roster name,
certificate name and post-URL name, then checks the certificate project against the post text.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from shared.models.domain import VerificationResult
from shared.models.enums import MatchVerdict
from shared.utils.logging import get_logger

from verifier.config import VerifierSettings, get_verifier_settings
from verifier.fetcher import PageFetcher
from verifier.fuzzy import names_match, normalize_text, project_match
from verifier.sources.base import CertificateExtraction, PostExtraction
from verifier.sources.certificate import CertificateSource
from verifier.sources.post import PostSource, name_from_post_url

logger = get_logger(__name__)


@dataclass(frozen=True)
class IdentityChecks:
    roster_vs_certificate: bool
    roster_vs_slug: bool
    certificate_vs_slug: bool

    @property
    def passed(self) -> bool:
        return self.roster_vs_certificate and self.roster_vs_slug and self.certificate_vs_slug


def identity_reason(roster: str, certificate_name: str, slug_name: str, checks: IdentityChecks) -> str:
    """Name every identity comparison that failed; empty when all passed."""
    if checks.passed:
        return ""
    reasons: list[str] = []
    if not certificate_name:
        reasons.append("Certificate name not found (no 'Completed by' marker detected)")
    elif not checks.roster_vs_certificate:
        reasons.append(f'Certificate name "{certificate_name}" does not match roster name "{roster}"')
    if not slug_name:
        reasons.append("Could not extract a name from the post URL")
    elif not checks.roster_vs_slug:
        reasons.append(f'Post URL name "{slug_name}" does not match roster name "{roster}"')
    if certificate_name and slug_name and not checks.certificate_vs_slug:
        reasons.append(f'Certificate name "{certificate_name}" does not match post URL name "{slug_name}"')
    return "; ".join(reasons)


def content_reason(project: str, excerpt: str, matched: bool) -> str:
    if matched:
        return ""
    if not project:
        return "Could not extract course/project name from certificate"
    if not excerpt:
        return "Could not extract text from post"
    return f'Course "{project}" not found in post'


class VerificationEngine:
    """Verifies one submission. Never raises except for task cancellation."""

    def __init__(
        self,
        fetcher: PageFetcher,
        settings: Optional[VerifierSettings] = None,
        certificate_source: Optional[CertificateSource] = None,
        post_source: Optional[PostSource] = None,
    ) -> None:
        self._settings = settings or get_verifier_settings()
        self._certificates = certificate_source or CertificateSource(fetcher)
        self._posts = post_source or PostSource(fetcher)

    async def verify(
        self,
        student_name: str,
        coursera_link: Optional[str],
        linkedin_link: Optional[str],
    ) -> VerificationResult:
        try:
            return await self._verify(student_name, coursera_link or "", linkedin_link or "")
        except Exception as exc:
            logger.error("verification_failed", student=student_name, error=str(exc), exc_info=True)
            return VerificationResult.failure(str(exc) or exc.__class__.__name__)

    async def _verify(self, student_name: str, coursera_link: str, linkedin_link: str) -> VerificationResult:
        s = self._settings
        roster = normalize_text(student_name)

        certificate: CertificateExtraction
        post: PostExtraction
        certificate, post = await asyncio.gather(
            self._certificates.extract(coursera_link),
            self._posts.extract(linkedin_link),
        )
        slug_name = name_from_post_url(linkedin_link)

        checks = IdentityChecks(
            roster_vs_certificate=names_match(roster, certificate.name, s.name_threshold),
            roster_vs_slug=names_match(roster, slug_name, s.slug_threshold),
            certificate_vs_slug=names_match(certificate.name, slug_name, s.slug_threshold),
        )
        content_ok = project_match(certificate.project, post.excerpt, s.content_threshold)

        logger.debug(
            "verification_checks",
            roster=roster,
            certificate_name=certificate.name,
            slug_name=slug_name,
            roster_vs_certificate=checks.roster_vs_certificate,
            roster_vs_slug=checks.roster_vs_slug,
            certificate_vs_slug=checks.certificate_vs_slug,
            content_match=content_ok,
        )

        return VerificationResult(
            student_match_auto=MatchVerdict.YES if checks.passed else MatchVerdict.NO,
            course_match_auto=MatchVerdict.YES if content_ok else MatchVerdict.NO,
            student_match_reason=identity_reason(roster, certificate.name, slug_name, checks),
            course_match_reason=content_reason(certificate.project, post.excerpt, content_ok),
            scraped_coursera_name=certificate.name,
            scraped_coursera_project=certificate.project,
            scraped_linkedin_name=post.author,
            scraped_linkedin_text=post.excerpt[: s.excerpt_max_chars],
        )
