"""
Job API endpoints.

Status, progress and cancellation for background jobs.
"""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.db import get_job
from cardkeeper.db.database import get_session, get_session_factory
from cardkeeper.models.db import JobDB
from cardkeeper.models.failure import NotFoundError
from cardkeeper.models.job import JobStatus
from cardkeeper.services.resort import ResortJobRegistry, ResortRunner, resort_registry

router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_resort_registry() -> ResortJobRegistry:
    """Dependency that provides the process-wide re-sort registry."""
    return resort_registry


def get_resort_runner(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    registry: Annotated[ResortJobRegistry, Depends(get_resort_registry)],
) -> ResortRunner:
    """Dependency that provides a re-sort runner bound to the app's database."""
    return ResortRunner(session_factory, registry=registry)


class JobResponse(BaseModel):
    """A background job and its progress."""

    id: int
    type: str
    status: str
    progress: dict[str, Any]
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None


class CancelResponse(BaseModel):
    """Acknowledgement of a cancellation request."""

    job_id: int
    status: str
    message: str


def job_response(job: JobDB) -> JobResponse:
    return JobResponse(
        id=job.id,
        type=job.type,
        status=job.status,
        progress=dict(job.job_metadata or {}),
        error=job.error,
        started_at=job.started_at,
        completed_at=job.completed_at,
        created_at=job.created_at,
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> JobResponse:
    """Get a job's status and progress."""
    job = await get_job(session, job_id)
    if job is None:
        raise NotFoundError("Job", job_id)
    return job_response(job)


@router.post(
    "/{job_id}/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_job(
    job_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[ResortJobRegistry, Depends(get_resort_registry)],
) -> CancelResponse:
    """
    Ask a running job to stop.

    The job finishes its current batch first, then ends as cancelled.
    Batches already written stay written.
    """
    job = await get_job(session, job_id)
    if job is None:
        raise NotFoundError("Job", job_id)

    if JobStatus(job.status).is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} already {job.status}",
        )

    if not registry.request_cancel(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} is not running in this process",
        )

    return CancelResponse(
        job_id=job_id,
        status=job.status,
        message="Cancellation requested",
    )
