"""
Storage location API endpoints.

Just enough to give sorting rules somewhere to point.
"""

from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.db import count_by_location, create_storage_location, list_storage_locations
from cardkeeper.db.database import get_session
from cardkeeper.models.db import StorageLocationDB

StorageType = Literal["Box", "Binder"]

router = APIRouter(prefix="/storage-locations", tags=["storage"])


class StorageLocationResponse(BaseModel):
    """A storage location."""

    id: int
    name: str
    storage_type: StorageType
    card_count: int | None = Field(
        default=None,
        description="Cards stored here (sum of quantities); listed locations only",
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StorageLocationCreateRequest(BaseModel):
    """Request model for creating a storage location."""

    name: str = Field(..., min_length=1, max_length=255)
    storage_type: StorageType = "Box"


def storage_location_response(
    location: StorageLocationDB, card_count: int | None = None
) -> StorageLocationResponse:
    return StorageLocationResponse(
        id=location.id,
        name=location.name,
        storage_type=location.storage_type,  # type: ignore[arg-type]
        card_count=card_count,
        created_at=location.created_at,
        updated_at=location.updated_at,
    )


@router.get("", response_model=list[StorageLocationResponse])
async def get_storage_locations(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[StorageLocationResponse]:
    """List storage locations by name, with how many cards each holds."""
    locations = await list_storage_locations(session)
    counts = await count_by_location(session)
    return [
        storage_location_response(location, card_count=counts.get(location.id, 0))
        for location in locations
    ]


@router.post("", response_model=StorageLocationResponse, status_code=status.HTTP_201_CREATED)
async def create_location(
    request: StorageLocationCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> StorageLocationResponse:
    """Create a box or binder."""
    location = await create_storage_location(session, request.name, request.storage_type)
    return storage_location_response(location)
