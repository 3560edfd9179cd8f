"""
Supervised background dispatch of job runs.
The caller only learns whether a run was scheduled; outcomes are read from the job record.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

from processor.orchestrator import JobOrchestrator

logger = get_logger(__name__)


class JobDispatcher:
    """Owns the asyncio tasks running jobs in this process, bounded by max_concurrent_jobs."""

    def __init__(self, orchestrator: JobOrchestrator, settings: Optional[Settings] = None) -> None:
        self._orchestrator = orchestrator
        self._settings = settings or get_settings()
        self._sem = asyncio.Semaphore(self._settings.max_concurrent_jobs)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._closed = False

    def running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    @property
    def active_jobs(self) -> list[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    def submit(self, job_id: str) -> bool:
        """Schedule a run. Returns False if this process is already running the job or is shutting down."""
        if self._closed or self.running(job_id):
            return False
        task = asyncio.create_task(self._supervise(job_id), name=f"job:{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t, j=job_id: self._reap(j, t))
        logger.info("job_dispatched", job_id=job_id, active=len(self.active_jobs))
        return True

    async def _supervise(self, job_id: str) -> None:
        async with self._sem:
            await self._orchestrator.run_job(job_id)

    def _reap(self, job_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            logger.info("job_task_cancelled", job_id=job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("job_task_crashed", job_id=job_id, error=str(exc), exc_info=exc)

    async def shutdown(self) -> None:
        """Stop accepting work, cancel outstanding runs and wait for them to unwind."""
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("dispatcher_stopped", cancelled=len(tasks))
