"""
Sorting rule API endpoints.

CRUD for sorting rules plus expression validation, a live rule tester and
bulk priority reordering. Expressions are validated before anything is
stored; parse and validation failures come back as 400 envelopes.
"""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.api.storage import StorageLocationResponse, storage_location_response
from cardkeeper.db import (
    batch_update_priorities,
    create_sorting_rule,
    delete_sorting_rule,
    get_sorting_rule,
    list_sorting_rules,
    update_sorting_rule,
)
from cardkeeper.db.database import get_session
from cardkeeper.models.db import SortingRuleDB
from cardkeeper.models.failure import NotFoundError
from cardkeeper.rules import MatchResult, expression_cache, validate, validate_or_raise
from cardkeeper.services.auto_sort import auto_sort_service

router = APIRouter(prefix="/sorting-rules", tags=["sorting-rules"])


class SortingRuleResponse(BaseModel):
    """A stored sorting rule."""

    id: int
    name: str
    priority: int
    expression: str
    storage_location_id: int
    enabled: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SortingRuleCreateRequest(BaseModel):
    """Request model for creating a sorting rule."""

    name: str = Field(..., min_length=1, max_length=255)
    priority: int = Field(
        default=0,
        description="Lower values are evaluated first",
    )
    expression: str = Field(
        ...,
        description="Boolean expression over card fields",
        examples=["rarity == 'mythic' && prices.usd >= 20"],
    )
    storage_location_id: int
    enabled: bool = True


class SortingRuleUpdateRequest(BaseModel):
    """Request model for updating a sorting rule. Omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    priority: int | None = None
    expression: str | None = None
    storage_location_id: int | None = None
    enabled: bool | None = None


class ValidateRequest(BaseModel):
    """Request model for validating an expression."""

    expression: str


class ValidateResponse(BaseModel):
    """Result of validating an expression."""

    valid: bool
    error: str | None = None


class EvaluateRequest(BaseModel):
    """Request model for the live rule tester."""

    card_data: dict[str, Any] = Field(
        ...,
        description="Card attributes in catalog (Scryfall) shape",
    )
    treatment: str = Field(
        default="",
        description="Optional treatment, e.g. foil or etched",
    )


class DiagnosticResponse(BaseModel):
    """A rule that errored while evaluating the card."""

    rule_id: int
    message: str


class EvaluateResponse(BaseModel):
    """Which storage location the card would be placed in."""

    matched: bool
    storage_location: StorageLocationResponse | None = None
    rule_id: int | None = None
    error: str | None = None
    diagnostics: list[DiagnosticResponse] = Field(default_factory=list)


class PriorityUpdate(BaseModel):
    """New priority for one rule."""

    id: int
    priority: int


class BatchPriorityRequest(BaseModel):
    """Request model for reordering rules."""

    updates: list[PriorityUpdate]


class BatchPriorityResponse(BaseModel):
    """Number of rules whose priority was set."""

    updated_count: int


def _rule_response(rule: SortingRuleDB) -> SortingRuleResponse:
    return SortingRuleResponse(
        id=rule.id,
        name=rule.name,
        priority=rule.priority,
        expression=rule.expression,
        storage_location_id=rule.storage_location_id,
        enabled=rule.enabled,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


@router.get("", response_model=list[SortingRuleResponse])
async def get_sorting_rules(
    session: Annotated[AsyncSession, Depends(get_session)],
    enabled: bool | None = None,
) -> list[SortingRuleResponse]:
    """
    List sorting rules in evaluation order.

    Ordered by priority, then id. Pass ?enabled=true to see only the rules
    AutoSort uses.
    """
    rules = await list_sorting_rules(session, enabled=enabled)
    return [_rule_response(rule) for rule in rules]


@router.post("", response_model=SortingRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: SortingRuleCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SortingRuleResponse:
    """Create a sorting rule. The expression must validate."""
    validate_or_raise(request.expression)

    rule = await create_sorting_rule(
        session,
        name=request.name,
        priority=request.priority,
        expression=request.expression,
        storage_location_id=request.storage_location_id,
        enabled=request.enabled,
    )
    return _rule_response(rule)


@router.post("/validate", response_model=ValidateResponse)
async def validate_expression(request: ValidateRequest) -> ValidateResponse:
    """Check an expression without storing or evaluating it."""
    result = validate(request.expression)
    return ValidateResponse(valid=result.valid, error=result.error)


@router.post("/evaluate", response_model=EvaluateResponse)
async def evaluate_card(
    request: EvaluateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> EvaluateResponse:
    """
    Run the enabled rules against ad-hoc card data.

    Same decision path as adding a card to inventory. Rules that fail on
    this card's data are listed in diagnostics and skipped.
    """
    if not request.card_data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="card_data is required",
        )

    decision, location = await auto_sort_service.evaluate_card_data(
        session, request.card_data, treatment=request.treatment
    )
    diagnostics = [
        DiagnosticResponse(rule_id=d.rule_id, message=d.message) for d in decision.errors
    ]

    if not isinstance(decision, MatchResult):
        return EvaluateResponse(
            matched=False,
            error="No sorting rule matched",
            diagnostics=diagnostics,
        )

    if location is None:
        return EvaluateResponse(
            matched=False,
            rule_id=decision.rule_id,
            error=f"Storage location {decision.storage_location_id} not found",
            diagnostics=diagnostics,
        )

    return EvaluateResponse(
        matched=True,
        storage_location=storage_location_response(location),
        rule_id=decision.rule_id,
        diagnostics=diagnostics,
    )


@router.post("/batch/priorities", response_model=BatchPriorityResponse)
async def update_priorities(
    request: BatchPriorityRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> BatchPriorityResponse:
    """
    Reorder rules in one transaction.

    Either every listed rule gets its new priority or none does.
    """
    if not request.updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Updates cannot be empty",
        )

    updated = await batch_update_priorities(
        session, [(update.id, update.priority) for update in request.updates]
    )
    return BatchPriorityResponse(updated_count=updated)


@router.get("/{rule_id}", response_model=SortingRuleResponse)
async def get_rule(
    rule_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SortingRuleResponse:
    """Get one sorting rule."""
    rule = await get_sorting_rule(session, rule_id)
    if rule is None:
        raise NotFoundError("Sorting rule", rule_id)
    return _rule_response(rule)


@router.put("/{rule_id}", response_model=SortingRuleResponse)
async def update_rule(
    rule_id: int,
    request: SortingRuleUpdateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SortingRuleResponse:
    """
    Update a sorting rule.

    Only the fields present in the body change. A new expression must
    validate; the old one stays in place otherwise.
    """
    changes = request.model_dump(exclude_none=True)
    if "expression" in changes:
        validate_or_raise(changes["expression"])

    rule = await update_sorting_rule(session, rule_id, changes)
    expression_cache.invalidate(rule_id)
    return _rule_response(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    """Delete a sorting rule."""
    deleted = await delete_sorting_rule(session, rule_id)
    if not deleted:
        raise NotFoundError("Sorting rule", rule_id)

    expression_cache.invalidate(rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
