"""
Liveness and readiness probes.

Readiness checks the database and reports whether a bulk re-sort is running.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.api.jobs import get_resort_registry
from cardkeeper.db.database import get_session
from cardkeeper.services.resort import ResortJobRegistry

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Probe result."""

    status: str
    database: str | None = None
    active_resort_job: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe. Touches nothing outside the process."""
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[ResortJobRegistry, Depends(get_resort_registry)],
) -> HealthResponse:
    """
    Readiness probe.

    503 when the database cannot be reached.
    """
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="disconnected")

    return HealthResponse(
        status="ready",
        database="connected",
        active_resort_job=registry.active_job_id,
    )
