"""
Pydantic v2 domain models shared across the verification services.
These are the internal and wire representations, not ORM models.
"""
from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict

from shared.models.enums import FinalDecision, JobStatus, MatchVerdict, ProcessingStatus


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Store snapshots ─────────────────────────────────────────────────────
class JobSnapshot(DomainModel):
    job_id: str
    user_email: str
    status: JobStatus
    total_submissions: int = 0
    completed_submissions: int = 0
    completion_email_sent: bool = False

    @property
    def progress_pct(self) -> float:
        if self.total_submissions <= 0:
            return 0.0
        return round(100.0 * self.completed_submissions / self.total_submissions, 1)


class SubmissionRow(DomainModel):
    """The fields a run needs from a pending submission."""
    id: uuid.UUID
    job_id: str
    roll_number: str = ""
    student_name: str
    coursera_link: Optional[str] = None
    linkedin_link: Optional[str] = None


# ── Verification ────────────────────────────────────────────────────────
class VerificationResult(DomainModel):
    """
    Outcome of verifying one submission.

    Verdicts are always set; every other field uses "" for "nothing found",
    never None. A non-empty ``error`` means verification itself broke.
    """
    student_match_auto: MatchVerdict
    course_match_auto: MatchVerdict
    student_match_reason: str = ""
    course_match_reason: str = ""
    scraped_coursera_name: str = ""
    scraped_coursera_project: str = ""
    scraped_linkedin_name: str = ""
    scraped_linkedin_text: str = ""
    error: str = ""

    @classmethod
    def failure(cls, error: str) -> "VerificationResult":
        return cls(
            student_match_auto=MatchVerdict.NO,
            course_match_auto=MatchVerdict.NO,
            error=error or "Verification failed",
        )


class RowOutcome(DomainModel):
    """Everything the processor writes back for one row."""
    processing_status: ProcessingStatus
    student_match_auto: MatchVerdict
    course_match_auto: MatchVerdict
    final_decision: FinalDecision
    coursera_link_duplicate: bool = False
    linkedin_link_duplicate: bool = False
    student_match_reason: Optional[str] = None
    course_match_reason: Optional[str] = None
    scraped_coursera_name: Optional[str] = None
    scraped_coursera_project: Optional[str] = None
    scraped_linkedin_name: Optional[str] = None
    scraped_linkedin_text: Optional[str] = None
    error_message: Optional[str] = None


# ── API ─────────────────────────────────────────────────────────────────
class JobProgress(DomainModel):
    job_id: str
    status: JobStatus
    total_submissions: int
    completed_submissions: int
    progress_pct: float
    completion_email_sent: bool


class DispatchResponse(DomainModel):
    success: bool
    job_id: str
    message: str
