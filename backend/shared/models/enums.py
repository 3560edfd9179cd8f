"""Domain enumerations for the submission verification pipeline."""
from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    QUEUED = "Queued"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "Completed with Errors"
    COMPLETED_PARTIAL = "Completed (Partial)"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.QUEUED, JobStatus.PROCESSING)

    @classmethod
    def active(cls) -> tuple["JobStatus", ...]:
        """States a run may still write over."""
        return (cls.QUEUED, cls.PROCESSING)


class ProcessingStatus(str, Enum):
    """Per-row lifecycle: pending -> processing -> completed | failed."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MatchVerdict(str, Enum):
    YES = "Yes"
    NO = "No"
    PENDING = "Pending"


class FinalDecision(str, Enum):
    CORRECT = "Correct"
    WRONG = "Wrong"
    PENDING = "Pending"


class AdminVerification(str, Enum):
    """Owned by the review UI; the pipeline only reads it."""
    NOT_REVIEWED = "Not Reviewed"
    CORRECT = "Correct"
    WRONG = "Wrong"


class LinkKind(str, Enum):
    """The two submitted links, keyed by their column names."""
    CERTIFICATE = "coursera_link"
    POST = "linkedin_link"
