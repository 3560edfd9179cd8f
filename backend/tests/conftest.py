"""
Shared fixtures: settings built directly, an in-memory JobStore and a scripted verification engine.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Sequence

import pytest

from shared.config import Settings
from shared.models.domain import JobSnapshot, RowOutcome, SubmissionRow, VerificationResult
from shared.models.enums import JobStatus, LinkKind, MatchVerdict, ProcessingStatus

from processor.store import JobStore
from verifier.config import VerifierSettings


@dataclass
class StoredSubmission:
    row: SubmissionRow
    created_at: datetime
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    outcome: Optional[RowOutcome] = None
    error_message: Optional[str] = None


@dataclass
class StoredJob:
    snapshot: JobSnapshot
    submissions: list[StoredSubmission] = field(default_factory=list)
    progress_history: list[int] = field(default_factory=list)
    status_history: list[JobStatus] = field(default_factory=list)


class InMemoryJobStore(JobStore):
    """JobStore with the same guards as SqlJobStore, plus write histories for assertions."""

    def __init__(self) -> None:
        self.jobs: dict[str, StoredJob] = {}
        self.fail_on: set[str] = set()
        self.on_batch_progress: Optional[Callable[[str, int], Awaitable[None]]] = None

    # ── Fixtures helpers ────────────────────────────────────────────────

    def add_job(
        self,
        job_id: str,
        rows: Sequence[tuple[str, Optional[str], Optional[str]]],
        status: JobStatus = JobStatus.QUEUED,
    ) -> list[SubmissionRow]:
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        stored = StoredJob(
            snapshot=JobSnapshot(
                job_id=job_id,
                user_email="owner@example.com",
                status=status,
                total_submissions=len(rows),
            )
        )
        stored.progress_history.append(0)
        for index, (name, cert, post) in enumerate(rows):
            row = SubmissionRow(
                id=uuid.uuid4(),
                job_id=job_id,
                roll_number=f"R{index:03d}",
                student_name=name,
                coursera_link=cert,
                linkedin_link=post,
            )
            stored.submissions.append(StoredSubmission(row=row, created_at=base + timedelta(seconds=index)))
        self.jobs[job_id] = stored
        return [s.row for s in stored.submissions]

    def submission(self, submission_id: uuid.UUID) -> StoredSubmission:
        for job in self.jobs.values():
            for sub in job.submissions:
                if sub.row.id == submission_id:
                    return sub
        raise KeyError(submission_id)

    def set_status(self, job_id: str, status: JobStatus) -> None:
        self.jobs[job_id].snapshot.status = status

    def _check(self, op: str) -> None:
        if op in self.fail_on:
            raise ConnectionError(f"store unavailable during {op}")

    # ── JobStore ────────────────────────────────────────────────────────

    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        self._check("get_job")
        job = self.jobs.get(job_id)
        return job.snapshot.model_copy() if job else None

    async def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        self._check("get_job_status")
        job = self.jobs.get(job_id)
        return job.snapshot.status if job else None

    async def list_pending_submissions(self, job_id: str) -> list[SubmissionRow]:
        self._check("list_pending_submissions")
        subs = [s for s in self.jobs[job_id].submissions if s.processing_status == ProcessingStatus.PENDING]
        return [s.row for s in sorted(subs, key=lambda s: s.created_at)]

    async def mark_processing(self, submission_ids: Sequence[uuid.UUID]) -> None:
        self._check("mark_processing")
        for sid in submission_ids:
            self.submission(sid).processing_status = ProcessingStatus.PROCESSING

    async def count_link_duplicates(
        self, job_id: str, submission_id: uuid.UUID, kind: LinkKind, link: str
    ) -> int:
        self._check("count_link_duplicates")
        return sum(
            1
            for s in self.jobs[job_id].submissions
            if s.row.id != submission_id and getattr(s.row, kind.value) == link
        )

    async def record_outcome(self, submission_id: uuid.UUID, outcome: RowOutcome) -> None:
        self._check("record_outcome")
        sub = self.submission(submission_id)
        sub.outcome = outcome
        sub.processing_status = outcome.processing_status
        sub.error_message = outcome.error_message

    async def increment_progress(self, job_id: str, count: int) -> None:
        self._check("increment_progress")
        job = self.jobs[job_id]
        snap = job.snapshot
        snap.completed_submissions = min(snap.total_submissions, snap.completed_submissions + count)
        job.progress_history.append(snap.completed_submissions)
        if self.on_batch_progress is not None:
            await self.on_batch_progress(job_id, snap.completed_submissions)

    async def count_terminal(self, job_id: str) -> tuple[int, int]:
        self._check("count_terminal")
        subs = self.jobs[job_id].submissions
        failed = sum(1 for s in subs if s.processing_status == ProcessingStatus.FAILED)
        done = sum(1 for s in subs if s.processing_status == ProcessingStatus.COMPLETED)
        return done + failed, failed

    async def update_job_status(
        self, job_id: str, status: JobStatus, completed: Optional[int] = None
    ) -> bool:
        self._check(f"update_job_status:{status.value}")
        job = self.jobs.get(job_id)
        if job is None or job.snapshot.status not in JobStatus.active():
            return False
        job.snapshot.status = status
        job.status_history.append(status)
        if completed is not None:
            job.snapshot.completed_submissions = min(completed, job.snapshot.total_submissions)
            job.progress_history.append(job.snapshot.completed_submissions)
        return True

    async def claim_notification(self, job_id: str) -> bool:
        self._check("claim_notification")
        job = self.jobs.get(job_id)
        if job is None or job.snapshot.completion_email_sent:
            return False
        job.snapshot.completion_email_sent = True
        return True


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def notify_job_complete(self, job_id: str) -> None:
        self.calls.append(job_id)


class ScriptedEngine:
    """Stands in for VerificationEngine; per-name results or delays."""

    def __init__(self) -> None:
        self.results: dict[str, VerificationResult] = {}
        self.delays: dict[str, float] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def verify(
        self, student_name: str, coursera_link: Optional[str], linkedin_link: Optional[str]
    ) -> VerificationResult:
        self.calls.append(student_name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(student_name, 0)
            if delay:
                await asyncio.sleep(delay)
            if student_name in self.errors:
                raise self.errors[student_name]
            return self.results.get(student_name, passing_result())
        except asyncio.CancelledError:
            self.cancelled.append(student_name)
            raise
        finally:
            self.in_flight -= 1


def passing_result() -> VerificationResult:
    return VerificationResult(
        student_match_auto=MatchVerdict.YES,
        course_match_auto=MatchVerdict.YES,
        scraped_coursera_name="jane doe",
        scraped_coursera_project="data science",
        scraped_linkedin_name="jane doe",
        scraped_linkedin_text="finished the data science project",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        job_batch_size=10,
        job_row_timeout_s=1.0,
        job_batch_delay_s=0.0,
        job_max_runtime_s=1800,
        job_lease_enabled=False,
        notify_url="",
        metrics_enabled=False,
    )


@pytest.fixture
def verifier_settings() -> VerifierSettings:
    return VerifierSettings(
        fetch_timeout_s=2.0,
        fetch_max_attempts=2,
        retry_base_delay_s=0.0,
        per_domain_rpm=6000,
        per_domain_burst=100,
        slot_wait_s=0.1,
        firecrawl_api_key="",
    )


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine() -> ScriptedEngine:
    return ScriptedEngine()
