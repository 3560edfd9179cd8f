"""
One-shot job runner: python -m processor.main JOB-ID

Runs a single job in the foreground against its remaining `pending` rows, which is also how a
crashed or partial run is resumed. SIGINT/SIGTERM cancel the run cleanly.
"""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Optional

from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.redis_manager import RedisManager

from processor.notifier import build_notifier
from processor.orchestrator import JobOrchestrator, RunStats
from processor.store import SqlJobStore
from verifier.config import get_verifier_settings
from verifier.engine import VerificationEngine
from verifier.fetcher import PageFetcher

logger = get_logger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="processor", description="Run one verification job to completion.")
    parser.add_argument("job_id", help="Job identifier, e.g. JOB-20250101-AB12")
    parser.add_argument("--no-lease", action="store_true", help="Skip the Redis single-flight lease")
    return parser.parse_args(argv)


async def run(job_id: str, use_lease: bool = True) -> Optional[RunStats]:
    settings = get_settings()
    verifier_settings = get_verifier_settings()

    db = DatabaseManager(settings)
    await db.connect()

    redis: Optional[RedisManager] = None
    if use_lease and settings.job_lease_enabled:
        redis = RedisManager(settings)
        try:
            await redis.connect()
        except Exception as exc:
            logger.warning("redis_unavailable_running_without_lease", error=str(exc))
            redis = None

    fetcher = PageFetcher(verifier_settings)
    await fetcher.start()
    try:
        store = SqlJobStore(db)
        orchestrator = JobOrchestrator(
            store=store,
            engine=VerificationEngine(fetcher, verifier_settings),
            notifier=build_notifier(store, settings),
            lease=redis,
            settings=settings,
        )
        task = asyncio.create_task(orchestrator.run_job(job_id))

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, task.cancel)
            except NotImplementedError:
                pass

        try:
            return await task
        except asyncio.CancelledError:
            logger.warning("job_run_interrupted", job_id=job_id)
            return None
    finally:
        await fetcher.close()
        if redis is not None:
            await redis.disconnect()
        await db.disconnect()


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("processor", {"job_id": args.job_id})
    stats = asyncio.run(run(args.job_id, use_lease=not args.no_lease))
    if stats is None:
        return 1
    logger.info(
        "job_run_finished",
        status=stats.final_status.value if stats.final_status else None,
        batches=stats.batches,
        completed=stats.completed,
        failed=stats.failed,
        timed_out=stats.timed_out,
        partial=stats.partial,
        cancelled=stats.cancelled,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
