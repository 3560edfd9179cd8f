"""
Job Orchestrator.

Drives one job to completion:
1. Takes the job's run lease so only one run exists per job
2. Streams pending rows oldest-first in fixed-size batches
3. Verifies every row of a batch concurrently, each under a hard deadline
4. Advances the persisted progress counter once per batch
5. Checks the watchdog and external cancellation between batches
6. Finalizes the job status from a storage recount and triggers the completion notification
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import RowOutcome, SubmissionRow
from shared.models.enums import FinalDecision, JobStatus, LinkKind, MatchVerdict, ProcessingStatus
from shared.utils.logging import get_logger, log_context
from shared.utils.metrics import ACTIVE_JOB_RUNS, JOBS_FINALIZED, ROW_LATENCY, ROWS_PROCESSED, atrack_latency
from shared.utils.redis_manager import RedisManager

from processor.notifier import Notifier
from processor.store import JobStore
from verifier.engine import VerificationEngine

logger = get_logger(__name__)


class RowIOTimeout(Exception):
    """A timeout raised by a row's own store or network call, distinct from the row deadline."""


@dataclass
class RunStats:
    """Counters for a single run_job invocation."""
    job_id: str
    started_at: float
    batches: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    partial: bool = False
    cancelled: bool = False
    notified: bool = False
    final_status: Optional[JobStatus] = None


def final_decision(
    student_match: MatchVerdict,
    course_match: MatchVerdict,
    coursera_duplicate: bool,
    linkedin_duplicate: bool,
) -> FinalDecision:
    if coursera_duplicate or linkedin_duplicate:
        return FinalDecision.WRONG
    if student_match == MatchVerdict.YES and course_match == MatchVerdict.YES:
        return FinalDecision.CORRECT
    if student_match == MatchVerdict.NO or course_match == MatchVerdict.NO:
        return FinalDecision.WRONG
    return FinalDecision.PENDING


def determine_job_status(partial: bool, failed_rows: int) -> JobStatus:
    if partial:
        return JobStatus.COMPLETED_PARTIAL
    if failed_rows > 0:
        return JobStatus.COMPLETED_WITH_ERRORS
    return JobStatus.COMPLETED


def timeout_message(timeout_s: float) -> str:
    return f"Skipped (Timeout after {timeout_s:g}s)"


class JobOrchestrator:
    """Runs jobs against a JobStore using a VerificationEngine."""

    def __init__(
        self,
        store: JobStore,
        engine: VerificationEngine,
        notifier: Notifier,
        lease: Optional[RedisManager] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._engine = engine
        self._notifier = notifier
        self._lease = lease
        self._settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep
        self._instance_id = self._settings.instance_id or str(uuid.uuid4())[:8]

    # ── Entry point ─────────────────────────────────────────────────────

    async def run_job(self, job_id: str) -> Optional[RunStats]:
        """
        Run a job to completion. Never raises except for task cancellation.

        Returns the run's stats, or None when no run happened (unknown job,
        job already terminal, or another process holds the lease).
        """
        with log_context(job_id=job_id):
            log = logger.bind(job_id=job_id)
            owner = f"{self._instance_id}:{uuid.uuid4().hex[:8]}"
            leased = await self._acquire_lease(job_id, owner, log)
            if leased is False:
                log.info("job_already_running")
                return None

            ACTIVE_JOB_RUNS.inc()
            try:
                return await self._run(job_id, log)
            finally:
                ACTIVE_JOB_RUNS.dec()
                if leased:
                    await self._release_lease(job_id, owner, log)

    async def _acquire_lease(self, job_id: str, owner: str, log: Any) -> Optional[bool]:
        """True if taken, False if held elsewhere, None if no lease is in use."""
        if self._lease is None or not self._settings.job_lease_enabled:
            return None
        try:
            return await self._lease.try_acquire_job_lease(job_id, owner, self._settings.job_lease_ttl_s)
        except Exception as exc:
            log.warning("job_lease_unavailable", error=str(exc))
            return None

    async def _release_lease(self, job_id: str, owner: str, log: Any) -> None:
        if self._lease is None:
            return
        try:
            await self._lease.release_job_lease(job_id, owner)
        except Exception as exc:
            log.warning("job_lease_release_failed", error=str(exc))

    # ── Run loop ────────────────────────────────────────────────────────

    async def _run(self, job_id: str, log: Any) -> Optional[RunStats]:
        s = self._settings
        stats = RunStats(job_id=job_id, started_at=self._clock())
        try:
            job = await self._store.get_job(job_id)
            if job is None:
                log.warning("job_not_found")
                return None
            if job.status.is_terminal:
                log.info("job_already_terminal", status=job.status.value)
                return None
            if job.status == JobStatus.QUEUED:
                await self._store.update_job_status(job_id, JobStatus.PROCESSING)

            rows = await self._store.list_pending_submissions(job_id)
            batches = [rows[i:i + s.job_batch_size] for i in range(0, len(rows), s.job_batch_size)]
            log.info("job_run_started", pending=len(rows), batches=len(batches), total=job.total_submissions)

            for index, batch in enumerate(batches):
                elapsed = self._clock() - stats.started_at
                if elapsed > s.job_max_runtime_s:
                    stats.partial = True
                    log.warning(
                        "job_watchdog_expired",
                        elapsed_s=round(elapsed, 1),
                        batches_done=stats.batches,
                        batches_skipped=len(batches) - index,
                    )
                    break

                status = await self._store.get_job_status(job_id)
                if status is None or status.is_terminal:
                    stats.cancelled = True
                    log.info("job_run_stopped", status=status.value if status else None, batches_done=stats.batches)
                    return stats

                await self._run_batch(job_id, batch, stats, log)

                if index < len(batches) - 1 and s.job_batch_delay_s > 0:
                    await self._sleep(s.job_batch_delay_s)

            await self.finalize_job(job_id, stats)
            return stats

        except Exception as exc:
            log.error("job_run_failed", error=str(exc), exc_info=True)
            await self._fail_job(job_id, stats, log)
            return stats

    async def _run_batch(self, job_id: str, batch: list[SubmissionRow], stats: RunStats, log: Any) -> None:
        await self._store.mark_processing([row.id for row in batch])

        results = await asyncio.gather(
            *(self._process_row(job_id, row, stats) for row in batch),
            return_exceptions=True,
        )
        for row, result in zip(batch, results):
            if isinstance(result, BaseException):
                log.error("row_write_failed", submission_id=str(row.id), error=str(result))

        await self._store.increment_progress(job_id, len(batch))
        stats.batches += 1
        log.info(
            "batch_completed",
            batch=stats.batches,
            rows=len(batch),
            completed=stats.completed,
            failed=stats.failed,
            timed_out=stats.timed_out,
        )

    # ── Per row ─────────────────────────────────────────────────────────

    async def _process_row(self, job_id: str, row: SubmissionRow, stats: RunStats) -> None:
        timeout_s = self._settings.job_row_timeout_s
        try:
            async with atrack_latency(ROW_LATENCY):
                outcome = await asyncio.wait_for(self._evaluate(job_id, row), timeout=timeout_s)
        except asyncio.TimeoutError:
            stats.failed += 1
            stats.timed_out += 1
            ROWS_PROCESSED.labels(outcome="timeout").inc()
            logger.warning("row_timeout", job_id=job_id, submission_id=str(row.id), timeout_s=timeout_s)
            await self._store.record_failure(row.id, timeout_message(timeout_s))
            return
        except Exception as exc:
            stats.failed += 1
            ROWS_PROCESSED.labels(outcome="failed").inc()
            logger.error("row_failed", job_id=job_id, submission_id=str(row.id), error=str(exc))
            await self._store.record_failure(row.id, str(exc) or exc.__class__.__name__)
            return

        await self._store.record_outcome(row.id, outcome)
        if outcome.processing_status == ProcessingStatus.FAILED:
            stats.failed += 1
            ROWS_PROCESSED.labels(outcome="failed").inc()
        else:
            stats.completed += 1
            ROWS_PROCESSED.labels(outcome="completed").inc()

    async def _is_duplicate(self, job_id: str, row: SubmissionRow, kind: LinkKind) -> bool:
        link = getattr(row, kind.value)
        if not link:
            return False
        return await self._store.count_link_duplicates(job_id, row.id, kind, link) > 0

    async def _evaluate(self, job_id: str, row: SubmissionRow) -> RowOutcome:
        """Duplicate detection then verification; runs inside the row deadline."""
        try:
            return await self._assess(job_id, row)
        except (TimeoutError, asyncio.TimeoutError) as exc:
            # Only the deadline itself may surface as a timeout to _process_row
            raise RowIOTimeout(str(exc) or f"{exc.__class__.__name__} during verification") from exc

    async def _assess(self, job_id: str, row: SubmissionRow) -> RowOutcome:
        coursera_dup = await self._is_duplicate(job_id, row, LinkKind.CERTIFICATE)
        linkedin_dup = await self._is_duplicate(job_id, row, LinkKind.POST)

        result = await self._engine.verify(row.student_name, row.coursera_link, row.linkedin_link)

        evidence = dict(
            coursera_link_duplicate=coursera_dup,
            linkedin_link_duplicate=linkedin_dup,
            student_match_reason=result.student_match_reason or None,
            course_match_reason=result.course_match_reason or None,
            scraped_coursera_name=result.scraped_coursera_name or None,
            scraped_coursera_project=result.scraped_coursera_project or None,
            scraped_linkedin_name=result.scraped_linkedin_name or None,
            scraped_linkedin_text=result.scraped_linkedin_text or None,
        )
        if result.error:
            return RowOutcome(
                processing_status=ProcessingStatus.FAILED,
                student_match_auto=MatchVerdict.NO,
                course_match_auto=MatchVerdict.NO,
                final_decision=FinalDecision.WRONG,
                error_message=result.error,
                **evidence,
            )
        return RowOutcome(
            processing_status=ProcessingStatus.COMPLETED,
            student_match_auto=result.student_match_auto,
            course_match_auto=result.course_match_auto,
            final_decision=final_decision(
                result.student_match_auto, result.course_match_auto, coursera_dup, linkedin_dup
            ),
            **evidence,
        )

    # ── Finalization ────────────────────────────────────────────────────

    async def finalize_job(self, job_id: str, stats: RunStats) -> Optional[JobStatus]:
        """
        Write the terminal status from a storage recount and notify.
        No-op when the job was cancelled or already finalized.
        """
        log = logger.bind(job_id=job_id)
        status = await self._store.get_job_status(job_id)
        if status is None or status.is_terminal:
            log.info("finalize_skipped", status=status.value if status else None)
            return None

        processed, failed = await self._store.count_terminal(job_id)
        final = determine_job_status(stats.partial, failed)
        written = await self._store.update_job_status(job_id, final, completed=processed)
        if not written:
            return None

        stats.final_status = final
        JOBS_FINALIZED.labels(status=final.value).inc()
        log.info(
            "job_finalized",
            status=final.value,
            processed=processed,
            failed=failed,
            batches=stats.batches,
            duration_s=round(self._clock() - stats.started_at, 2),
        )
        await self._notify(job_id, stats)
        return final

    async def _fail_job(self, job_id: str, stats: RunStats, log: Any) -> None:
        try:
            written = await self._store.update_job_status(job_id, JobStatus.FAILED)
        except Exception as exc:
            log.error("job_fail_write_failed", error=str(exc))
            await self._notify(job_id, stats)
            return
        if written:
            stats.final_status = JobStatus.FAILED
            JOBS_FINALIZED.labels(status=JobStatus.FAILED.value).inc()
            await self._notify(job_id, stats)

    async def _notify(self, job_id: str, stats: RunStats) -> None:
        if stats.notified:
            return
        stats.notified = True
        await self._notifier.notify_job_complete(job_id)
