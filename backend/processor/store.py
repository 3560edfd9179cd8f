"""
Persistent store for jobs and submissions.

JobStore is the interface the orchestrator and notifier depend on; SqlJobStore maps it onto
the existing `jobs` / `submissions` tables with SQLAlchemy 2.0 async. Every write is row-scoped
and there are no cross-row transactions, so a crash mid-batch leaves rows that a re-run of the
remaining `pending` rows picks up.
"""
from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from sqlalchemy import case, func, select, update

from shared.models.domain import JobSnapshot, RowOutcome, SubmissionRow
from shared.models.enums import FinalDecision, JobStatus, LinkKind, MatchVerdict, ProcessingStatus
from shared.models.orm import JobORM, SubmissionORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

_ACTIVE_STATUSES = [s.value for s in JobStatus.active()]
_TERMINAL_ROW_STATUSES = [ProcessingStatus.COMPLETED.value, ProcessingStatus.FAILED.value]


def failed_outcome(message: str) -> RowOutcome:
    """The terminal write for a row that could not be verified."""
    return RowOutcome(
        processing_status=ProcessingStatus.FAILED,
        student_match_auto=MatchVerdict.NO,
        course_match_auto=MatchVerdict.NO,
        final_decision=FinalDecision.WRONG,
        error_message=message or "Verification failed",
    )


class JobStore(ABC):
    """Storage operations used during a job run."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        pass

    @abstractmethod
    async def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        pass

    @abstractmethod
    async def list_pending_submissions(self, job_id: str) -> list[SubmissionRow]:
        """Rows still `pending`, oldest first."""
        pass

    @abstractmethod
    async def mark_processing(self, submission_ids: Sequence[uuid.UUID]) -> None:
        pass

    @abstractmethod
    async def count_link_duplicates(
        self, job_id: str, submission_id: uuid.UUID, kind: LinkKind, link: str
    ) -> int:
        """Other rows in the job carrying exactly this link."""
        pass

    @abstractmethod
    async def record_outcome(self, submission_id: uuid.UUID, outcome: RowOutcome) -> None:
        """Partial update: fields left as None are not written."""
        pass

    async def record_failure(self, submission_id: uuid.UUID, message: str) -> None:
        await self.record_outcome(submission_id, failed_outcome(message))

    @abstractmethod
    async def increment_progress(self, job_id: str, count: int) -> None:
        """Advance completed_submissions by count, never beyond total_submissions."""
        pass

    @abstractmethod
    async def count_terminal(self, job_id: str) -> tuple[int, int]:
        """Returns (completed + failed, failed)."""
        pass

    @abstractmethod
    async def update_job_status(
        self, job_id: str, status: JobStatus, completed: Optional[int] = None
    ) -> bool:
        """Write status only while the job is Queued or Processing. Returns True if written."""
        pass

    @abstractmethod
    async def claim_notification(self, job_id: str) -> bool:
        """Flip completion_email_sent false -> true. Returns True for the single winner."""
        pass


class SqlJobStore(JobStore):
    """JobStore on SQLAlchemy async sessions."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        async with self._db.read_session() as session:
            result = await session.execute(select(JobORM).where(JobORM.job_id == job_id))
            job = result.scalar_one_or_none()
            return JobSnapshot.model_validate(job) if job is not None else None

    async def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        async with self._db.read_session() as session:
            result = await session.execute(select(JobORM.status).where(JobORM.job_id == job_id))
            status = result.scalar_one_or_none()
            return JobStatus(status) if status is not None else None

    async def list_pending_submissions(self, job_id: str) -> list[SubmissionRow]:
        async with self._db.read_session() as session:
            stmt = (
                select(SubmissionORM)
                .where(
                    SubmissionORM.job_id == job_id,
                    SubmissionORM.processing_status == ProcessingStatus.PENDING.value,
                )
                .order_by(SubmissionORM.created_at, SubmissionORM.id)
            )
            result = await session.execute(stmt)
            return [SubmissionRow.model_validate(row) for row in result.scalars()]

    async def mark_processing(self, submission_ids: Sequence[uuid.UUID]) -> None:
        if not submission_ids:
            return
        async with self._db.write_session() as session:
            await session.execute(
                update(SubmissionORM)
                .where(SubmissionORM.id.in_(list(submission_ids)))
                .values(processing_status=ProcessingStatus.PROCESSING.value)
            )

    async def count_link_duplicates(
        self, job_id: str, submission_id: uuid.UUID, kind: LinkKind, link: str
    ) -> int:
        column = getattr(SubmissionORM, kind.value)
        async with self._db.read_session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(SubmissionORM)
                .where(
                    SubmissionORM.job_id == job_id,
                    column == link,
                    SubmissionORM.id != submission_id,
                )
            )
            return int(result.scalar_one())

    async def record_outcome(self, submission_id: uuid.UUID, outcome: RowOutcome) -> None:
        values = outcome.model_dump(mode="json", exclude_none=True)
        async with self._db.write_session() as session:
            await session.execute(
                update(SubmissionORM).where(SubmissionORM.id == submission_id).values(**values)
            )

    async def increment_progress(self, job_id: str, count: int) -> None:
        if count <= 0:
            return
        advanced = JobORM.completed_submissions + count
        async with self._db.write_session() as session:
            await session.execute(
                update(JobORM)
                .where(JobORM.job_id == job_id)
                .values(
                    completed_submissions=case(
                        (advanced > JobORM.total_submissions, JobORM.total_submissions),
                        else_=advanced,
                    )
                )
            )

    async def count_terminal(self, job_id: str) -> tuple[int, int]:
        async with self._db.read_session() as session:
            result = await session.execute(
                select(SubmissionORM.processing_status, func.count())
                .where(
                    SubmissionORM.job_id == job_id,
                    SubmissionORM.processing_status.in_(_TERMINAL_ROW_STATUSES),
                )
                .group_by(SubmissionORM.processing_status)
            )
            counts = {status: int(n) for status, n in result.all()}
        failed = counts.get(ProcessingStatus.FAILED.value, 0)
        return counts.get(ProcessingStatus.COMPLETED.value, 0) + failed, failed

    async def update_job_status(
        self, job_id: str, status: JobStatus, completed: Optional[int] = None
    ) -> bool:
        values: dict[str, object] = {"status": status.value}
        if completed is not None:
            values["completed_submissions"] = case(
                (JobORM.total_submissions < completed, JobORM.total_submissions),
                else_=completed,
            )
        async with self._db.write_session() as session:
            result = await session.execute(
                update(JobORM)
                .where(JobORM.job_id == job_id, JobORM.status.in_(_ACTIVE_STATUSES))
                .values(**values)
            )
            written = result.rowcount > 0
        if not written:
            logger.info("job_status_write_skipped", job_id=job_id, status=status.value)
        return written

    async def claim_notification(self, job_id: str) -> bool:
        async with self._db.write_session() as session:
            result = await session.execute(
                update(JobORM)
                .where(JobORM.job_id == job_id, JobORM.completion_email_sent.is_(False))
                .values(completion_email_sent=True)
            )
            return result.rowcount == 1
