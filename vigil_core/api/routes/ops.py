"""Operator endpoints for inspecting and repairing the job ledger.

All routes sit under ``/ops`` and require the ``X-Ops-Token`` header when
``OPS_API_TOKEN`` is configured.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from vigil_core.api.deps import DBSession, JobQueueDep, require_ops_token
from vigil_core.domain.models import Job, JobStatus, Topic
from vigil_core.domain.services.jobs import JobQueue
from vigil_core.observability.metrics import collect_job_gauges, get_metrics

router = APIRouter(
    prefix="/ops",
    tags=["operations"],
    dependencies=[Depends(require_ops_token)],
)

REQUEUEABLE = (JobStatus.DEAD, JobStatus.DISCARDED)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    topic: str
    status: str
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    next_run_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    payload: dict[str, Any] = Field(validation_alias="payload_json")


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int


class JobCountsResponse(BaseModel):
    """Per-status counts, overall and for each topic."""

    counts: dict[str, int]
    by_topic: dict[str, dict[str, int]]
    total: int


class JobRequeueRequest(BaseModel):
    max_attempts: Optional[int] = Field(None, ge=1)


class JobRequeueResponse(BaseModel):
    id: int
    status: str
    message: str


def _reject_unknown(kind: str, value: Optional[str], known: tuple) -> None:
    if value is not None and value not in known:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=f"Unknown {kind} '{value}'")


def _job_or_404(queue: JobQueue, job_id: int) -> Job:
    job = queue.get_job(job_id)
    if job is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.get("/jobs", response_model=JobListResponse, summary="List recent jobs")
async def list_jobs(
    queue: JobQueueDep,
    topic: Optional[str] = Query(None, description="Only jobs of this topic"),
    status_filter: Optional[str] = Query(None, alias="status", description="Only jobs in this status"),
    limit: int = Query(50, ge=1, le=200),
):
    """Newest jobs first, optionally narrowed by topic and status."""
    _reject_unknown("topic", topic, Topic.ALL)
    _reject_unknown("status", status_filter, JobStatus.ALL)

    jobs = queue.list_jobs(topic=topic, status=status_filter, limit=limit)
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
    )


@router.get("/jobs/counts", response_model=JobCountsResponse, summary="Job counts per status")
async def get_job_counts(queue: JobQueueDep):
    counts = queue.count_by_status()
    return JobCountsResponse(
        counts=counts,
        by_topic={topic: queue.count_by_status(topic=topic) for topic in Topic.ALL},
        total=sum(counts.values()),
    )


@router.get("/jobs/{job_id}", response_model=JobResponse, summary="Job details")
async def get_job(job_id: int, queue: JobQueueDep):
    return JobResponse.model_validate(_job_or_404(queue, job_id))


@router.post(
    "/jobs/{job_id}/requeue",
    response_model=JobRequeueResponse,
    summary="Requeue a dead or discarded job",
)
async def requeue_job(
    job_id: int,
    db: DBSession,
    queue: JobQueueDep,
    request: Optional[JobRequeueRequest] = Body(None),
):
    """Give a dead or discarded job a fresh attempt budget and wake a worker.

    Live jobs answer 409 so an operator cannot race a worker holding the lease.
    """
    job = _job_or_404(queue, job_id)
    if job.status not in REQUEUEABLE:
        raise HTTPException(
            status.HTTP_409_CONFLICT,
            detail=f"Job is {job.status}; only dead or discarded jobs can be requeued",
        )

    try:
        job = queue.requeue(job_id, max_attempts=request.max_attempts if request else None)
    except ValueError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    # The wake-up is sent when this commits
    db.commit()

    return JobRequeueResponse(id=job.id, status=job.status, message="Job requeued")


@router.get("/metrics", summary="In-process metrics snapshot")
async def get_ops_metrics(db: DBSession) -> dict:
    """Refresh the job gauges, then return counters, gauges and histograms."""
    collector = get_metrics()
    collect_job_gauges(db, collector)
    return collector.get_all()
