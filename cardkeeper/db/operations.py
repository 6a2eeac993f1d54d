"""
Database CRUD operations.

Provides async functions for storage locations, sorting rules, catalog
cards, inventory items and jobs.
"""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.models.db import (
    CardDB,
    InventoryItemDB,
    JobDB,
    SortingRuleDB,
    StorageLocationDB,
)
from cardkeeper.models.failure import NotFoundError
from cardkeeper.models.job import ACTIVE_STATUSES, JobStatus, JobType
from cardkeeper.models.sorting_rule import SortingRule

# --- Storage Location Operations ---


async def create_storage_location(
    session: AsyncSession, name: str, storage_type: str
) -> StorageLocationDB:
    """Create a storage location."""
    location = StorageLocationDB(name=name, storage_type=storage_type)
    session.add(location)
    await session.flush()
    return location


async def get_storage_location(session: AsyncSession, location_id: int) -> StorageLocationDB | None:
    """Get a storage location by id. Returns None if not found."""
    return await session.get(StorageLocationDB, location_id)


async def require_storage_location(session: AsyncSession, location_id: int) -> StorageLocationDB:
    """
    Get a storage location by id.

    Raises NotFoundError if it does not exist.
    """
    location = await get_storage_location(session, location_id)
    if location is None:
        raise NotFoundError("Storage location", location_id)
    return location


async def list_storage_locations(session: AsyncSession) -> list[StorageLocationDB]:
    """All storage locations ordered by name."""
    result = await session.execute(
        select(StorageLocationDB).order_by(StorageLocationDB.name, StorageLocationDB.id)
    )
    return list(result.scalars().all())


# --- Sorting Rule Operations ---


async def list_sorting_rules(
    session: AsyncSession, enabled: bool | None = None
) -> list[SortingRuleDB]:
    """
    Get sorting rules in evaluation order.

    Ordered by priority, then id. Pass enabled to filter.
    """
    query = select(SortingRuleDB).order_by(SortingRuleDB.priority, SortingRuleDB.id)
    if enabled is not None:
        query = query.where(SortingRuleDB.enabled == enabled)
    result = await session.execute(query)
    return list(result.scalars().all())


async def get_sorting_rule(session: AsyncSession, rule_id: int) -> SortingRuleDB | None:
    """Get a sorting rule by id. Returns None if not found."""
    return await session.get(SortingRuleDB, rule_id)


async def create_sorting_rule(
    session: AsyncSession,
    name: str,
    priority: int,
    expression: str,
    storage_location_id: int,
    enabled: bool = True,
) -> SortingRuleDB:
    """
    Create a sorting rule.

    The expression must already be validated by the caller.
    Raises NotFoundError if the storage location does not exist.
    """
    await require_storage_location(session, storage_location_id)

    rule = SortingRuleDB(
        name=name,
        priority=priority,
        expression=expression,
        storage_location_id=storage_location_id,
        enabled=enabled,
    )
    session.add(rule)
    await session.flush()
    return rule


async def update_sorting_rule(
    session: AsyncSession,
    rule_id: int,
    changes: dict[str, Any],
) -> SortingRuleDB:
    """
    Apply field changes to a sorting rule.

    Raises NotFoundError if the rule or a new storage location is missing.
    """
    rule = await get_sorting_rule(session, rule_id)
    if rule is None:
        raise NotFoundError("Sorting rule", rule_id)

    if "storage_location_id" in changes:
        await require_storage_location(session, changes["storage_location_id"])

    for key, value in changes.items():
        setattr(rule, key, value)
    rule.updated_at = datetime.now(UTC)

    await session.flush()
    return rule


async def delete_sorting_rule(session: AsyncSession, rule_id: int) -> bool:
    """
    Delete a sorting rule.

    Returns True if deleted, False if not found.
    """
    rule = await get_sorting_rule(session, rule_id)
    if rule is None:
        return False

    await session.delete(rule)
    await session.flush()
    return True


async def batch_update_priorities(
    session: AsyncSession, updates: Sequence[tuple[int, int]]
) -> int:
    """
    Set priorities for several rules at once.

    All ids are checked before anything is written, so a missing id leaves
    every rule untouched. Returns the number of rules updated.

    Raises NotFoundError naming the first missing id.
    """
    ids = [rule_id for rule_id, _ in updates]
    result = await session.execute(select(SortingRuleDB).where(SortingRuleDB.id.in_(ids)))
    rules = {rule.id: rule for rule in result.scalars().all()}

    for rule_id in ids:
        if rule_id not in rules:
            raise NotFoundError("Sorting rule", rule_id)

    now = datetime.now(UTC)
    for rule_id, priority in updates:
        rules[rule_id].priority = priority
        rules[rule_id].updated_at = now

    await session.flush()
    return len(updates)


def sorting_rule_to_model(rule: SortingRuleDB) -> SortingRule:
    """Convert a database rule to a domain model."""
    return SortingRule(
        id=rule.id,
        name=rule.name,
        priority=rule.priority,
        expression=rule.expression,
        storage_location_id=rule.storage_location_id,
        enabled=rule.enabled,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


async def get_enabled_rules(session: AsyncSession) -> list[SortingRule]:
    """Enabled rules as domain models, in evaluation order."""
    rules = await list_sorting_rules(session, enabled=True)
    return [sorting_rule_to_model(rule) for rule in rules]


# --- Card Catalog Operations ---


async def upsert_card(
    session: AsyncSession,
    scryfall_id: str,
    oracle_id: str,
    name: str,
    raw_json: str,
) -> CardDB:
    """Insert or replace catalog data for one card."""
    card = await session.get(CardDB, scryfall_id)
    if card is None:
        card = CardDB(scryfall_id=scryfall_id, oracle_id=oracle_id, name=name, raw_json=raw_json)
        session.add(card)
    else:
        card.oracle_id = oracle_id
        card.name = name
        card.raw_json = raw_json
    await session.flush()
    return card


async def get_card(session: AsyncSession, scryfall_id: str) -> CardDB | None:
    """Get catalog data for a card. Returns None if not found."""
    return await session.get(CardDB, scryfall_id)


async def get_cards_by_ids(session: AsyncSession, scryfall_ids: Iterable[str]) -> dict[str, CardDB]:
    """Fetch catalog rows for many cards, keyed by scryfall id."""
    ids = list(set(scryfall_ids))
    if not ids:
        return {}
    result = await session.execute(select(CardDB).where(CardDB.scryfall_id.in_(ids)))
    return {card.scryfall_id: card for card in result.scalars().all()}


# --- Inventory Operations ---


async def create_inventory_item(
    session: AsyncSession,
    scryfall_id: str,
    oracle_id: str,
    treatment: str = "",
    quantity: int = 1,
    storage_location_id: int | None = None,
) -> InventoryItemDB:
    """Create an inventory item."""
    item = InventoryItemDB(
        scryfall_id=scryfall_id,
        oracle_id=oracle_id,
        treatment=treatment,
        quantity=quantity,
        storage_location_id=storage_location_id,
    )
    session.add(item)
    await session.flush()
    return item


async def count_inventory(session: AsyncSession, item_ids: Sequence[int] | None = None) -> int:
    """Count inventory rows, optionally restricted to the given ids."""
    query = select(func.count()).select_from(InventoryItemDB)
    if item_ids is not None:
        query = query.where(InventoryItemDB.id.in_(item_ids))
    result = await session.execute(query)
    return int(result.scalar_one())


async def fetch_inventory_batch(
    session: AsyncSession,
    after_id: int,
    limit: int,
    item_ids: Sequence[int] | None = None,
) -> list[InventoryItemDB]:
    """
    Fetch the next batch of inventory rows by ascending id.

    Keyset pagination: pass the last id of the previous batch as after_id.
    """
    query = (
        select(InventoryItemDB)
        .where(InventoryItemDB.id > after_id)
        .order_by(InventoryItemDB.id)
        .limit(limit)
    )
    if item_ids is not None:
        query = query.where(InventoryItemDB.id.in_(item_ids))
    result = await session.execute(query)
    return list(result.scalars().all())


async def apply_location_changes(
    session: AsyncSession,
    changes: dict[int | None, list[int]],
) -> int:
    """
    Move inventory rows to new storage locations.

    Args:
        changes: Target location id (None to unassign) -> inventory ids

    Returns:
        Number of rows updated
    """
    updated = 0
    for location_id, item_ids in changes.items():
        if not item_ids:
            continue
        result = await session.execute(
            update(InventoryItemDB)
            .where(InventoryItemDB.id.in_(item_ids))
            .values(storage_location_id=location_id, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        # rowcount is available on UPDATE results; type stubs incomplete for async
        updated += int(result.rowcount)  # type: ignore[attr-defined]
    return updated


async def count_by_location(session: AsyncSession) -> dict[int | None, int]:
    """Card quantities per storage location (None = unassigned)."""
    result = await session.execute(
        select(InventoryItemDB.storage_location_id, func.sum(InventoryItemDB.quantity)).group_by(
            InventoryItemDB.storage_location_id
        )
    )
    return {location_id: int(total or 0) for location_id, total in result.all()}


# --- Job Operations ---


async def create_job(
    session: AsyncSession,
    job_type: JobType,
    metadata: dict[str, Any] | None = None,
) -> JobDB:
    """Create a pending job."""
    job = JobDB(type=job_type.value, status=JobStatus.PENDING.value, job_metadata=metadata or {})
    session.add(job)
    await session.flush()
    return job


async def get_job(session: AsyncSession, job_id: int) -> JobDB | None:
    """Get a job by id. Returns None if not found."""
    return await session.get(JobDB, job_id, populate_existing=True)


async def find_active_job(session: AsyncSession, job_type: JobType) -> JobDB | None:
    """The oldest pending or in-progress job of a type, if any."""
    result = await session.execute(
        select(JobDB)
        .where(
            JobDB.type == job_type.value,
            JobDB.status.in_([s.value for s in ACTIVE_STATUSES]),
        )
        .order_by(JobDB.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def start_job(session: AsyncSession, job_id: int) -> None:
    """Mark a job as in progress."""
    await session.execute(
        update(JobDB)
        .where(JobDB.id == job_id)
        .values(status=JobStatus.IN_PROGRESS.value, started_at=datetime.now(UTC))
    )


async def update_job_metadata(session: AsyncSession, job_id: int, metadata: dict[str, Any]) -> None:
    """Replace a job's metadata."""
    await session.execute(update(JobDB).where(JobDB.id == job_id).values(job_metadata=metadata))


async def finish_job(
    session: AsyncSession,
    job_id: int,
    status: JobStatus,
    metadata: dict[str, Any] | None = None,
    error: str | None = None,
) -> None:
    """Move a job to a terminal status."""
    if not status.is_terminal:
        msg = f"Cannot finish job {job_id} with non-terminal status {status.value}"
        raise ValueError(msg)

    values: dict[str, Any] = {"status": status.value, "completed_at": datetime.now(UTC)}
    if metadata is not None:
        values["job_metadata"] = metadata
    if error is not None:
        values["error"] = error
    await session.execute(update(JobDB).where(JobDB.id == job_id).values(**values))


async def cancel_stale_jobs(session: AsyncSession) -> int:
    """
    Cancel jobs left pending or in progress by a previous process.

    Call once at startup. Returns the number of jobs cancelled.
    """
    result = await session.execute(
        update(JobDB)
        .where(JobDB.status.in_([s.value for s in ACTIVE_STATUSES]))
        .values(
            status=JobStatus.CANCELLED.value,
            completed_at=datetime.now(UTC),
            error="Cancelled at startup: interrupted by restart",
        )
    )
    # rowcount is available on UPDATE results; type stubs incomplete for async
    return int(result.rowcount)  # type: ignore[attr-defined]
