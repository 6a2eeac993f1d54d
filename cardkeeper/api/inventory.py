"""
Inventory API endpoints.

Adding cards (with AutoSort) and triggering a bulk re-sort.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.api.jobs import get_resort_runner
from cardkeeper.db import create_inventory_item, get_card, require_storage_location
from cardkeeper.db.database import get_session
from cardkeeper.models.failure import NotFoundError
from cardkeeper.models.job import JobStatus
from cardkeeper.services.auto_sort import auto_sort_service
from cardkeeper.services.resort import ResortRunner

router = APIRouter(prefix="/inventory", tags=["inventory"])


class InventoryCreateRequest(BaseModel):
    """Request model for adding a card to inventory."""

    scryfall_id: str = Field(..., min_length=1)
    treatment: str = Field(
        default="",
        description="Treatment such as foil or etched; empty for regular",
    )
    quantity: int = Field(default=1, ge=1)
    storage_location_id: int | None = Field(
        default=None,
        description="Explicit location; omit to let AutoSort decide",
    )


class InventoryItemResponse(BaseModel):
    """An inventory item."""

    id: int
    scryfall_id: str
    oracle_id: str
    treatment: str
    quantity: int
    storage_location_id: int | None = None
    auto_sorted: bool = Field(
        default=False,
        description="True if the location was chosen by a sorting rule",
    )


class ResortRequest(BaseModel):
    """Request model for a bulk re-sort."""

    ids: list[int] | None = Field(
        default=None,
        description="Inventory ids to re-sort; omit for the whole inventory",
    )


class ResortResponse(BaseModel):
    """The job created for a re-sort."""

    job_id: int
    status: str


@router.post("", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED)
async def add_inventory_item(
    request: InventoryCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> InventoryItemResponse:
    """
    Add a card to inventory.

    Without an explicit storage_location_id the enabled sorting rules pick
    one; when no rule matches the item is left unassigned.
    """
    card = await get_card(session, request.scryfall_id)
    if card is None:
        raise NotFoundError("Card", request.scryfall_id)

    auto_sorted = False
    location_id = request.storage_location_id
    if location_id is not None:
        await require_storage_location(session, location_id)
    else:
        location_id = await auto_sort_service.determine_storage_location(
            session,
            request.scryfall_id,
            treatment=request.treatment,
            quantity=request.quantity,
        )
        auto_sorted = location_id is not None

    item = await create_inventory_item(
        session,
        scryfall_id=card.scryfall_id,
        oracle_id=card.oracle_id,
        treatment=request.treatment,
        quantity=request.quantity,
        storage_location_id=location_id,
    )

    return InventoryItemResponse(
        id=item.id,
        scryfall_id=item.scryfall_id,
        oracle_id=item.oracle_id,
        treatment=item.treatment,
        quantity=item.quantity,
        storage_location_id=item.storage_location_id,
        auto_sorted=auto_sorted,
    )


@router.post("/resort", response_model=ResortResponse, status_code=status.HTTP_202_ACCEPTED)
async def resort_inventory(
    runner: Annotated[ResortRunner, Depends(get_resort_runner)],
    request: ResortRequest | None = None,
) -> ResortResponse:
    """
    Re-sort the inventory against the current rules in the background.

    Returns the job id straight away; poll /jobs/{job_id} for progress.
    Only one re-sort runs at a time: a second request gets 409.
    """
    ids = request.ids if request is not None and request.ids else None
    job_id = await runner.start(inventory_ids=ids)
    return ResortResponse(job_id=job_id, status=JobStatus.PENDING.value)
