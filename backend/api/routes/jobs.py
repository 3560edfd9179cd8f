"""
Job REST endpoints.

POST /v1/jobs/{job_id}/process  Schedule a background run; returns once scheduled.
GET  /v1/jobs/{job_id}          Status and progress snapshot for polling.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from shared.models.domain import DispatchResponse, JobProgress
from shared.utils.logging import get_logger

from api.dependencies import get_dispatcher, get_store
from processor.dispatcher import JobDispatcher
from processor.store import JobStore

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/jobs", tags=["jobs"])


@router.post(
    "/{job_id}/process",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=DispatchResponse,
)
async def process_job(
    job_id: str,
    store: JobStore = Depends(get_store),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> DispatchResponse:
    """
    Start verifying a job's pending submissions in the background.

    The response only confirms scheduling; poll GET /v1/jobs/{job_id} for the outcome.
    """
    job = await store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    if dispatcher.running(job_id):
        raise HTTPException(status_code=409, detail=f"Job {job_id} is already being processed")
    if not dispatcher.submit(job_id):
        raise HTTPException(status_code=503, detail="Processor is shutting down")

    logger.info("job_process_requested", job_id=job_id, status=job.status.value)
    return DispatchResponse(
        success=True,
        job_id=job_id,
        message="Job processing started in background",
    )


@router.get("/{job_id}", response_model=JobProgress)
async def get_job(
    job_id: str,
    store: JobStore = Depends(get_store),
) -> JobProgress:
    job = await store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return JobProgress(
        job_id=job.job_id,
        status=job.status,
        total_submissions=job.total_submissions,
        completed_submissions=job.completed_submissions,
        progress_pct=job.progress_pct,
        completion_email_sent=job.completion_email_sent,
    )
