"""
Bulk re-sort: a background job over the whole inventory.

Re-evaluates every inventory row (or an explicit subset) against one
snapshot of the sorting rules and moves rows whose location changed.

INVARIANTS:
- At most one re-sort job is active per process; a second trigger is
  rejected with JobConflictError, never queued
- The rule snapshot is taken once at job start; later rule edits do not
  affect a running job
- Each batch is persisted in one transaction; committed batches are never
  rolled back, even when a later batch fails
- Only rows whose location actually changes are written, so repeating a
  re-sort with unchanged rules and cards writes nothing
- Cancellation is checked between batches; a batch is never half-applied

Lifecycle:
    pending -> in_progress -> completed | failed | cancelled
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from threading import Event, Lock

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.config import MAX_RESORT_BATCH_SIZE, MIN_RESORT_BATCH_SIZE, settings
from cardkeeper.db.operations import (
    apply_location_changes,
    count_inventory,
    create_job,
    fetch_inventory_batch,
    find_active_job,
    finish_job,
    get_cards_by_ids,
    get_enabled_rules,
    list_storage_locations,
    start_job,
    update_job_metadata,
)
from cardkeeper.models.failure import JobConflictError
from cardkeeper.models.job import JobStatus, JobType, ResortPhase, ResortProgress
from cardkeeper.rules.cache import ExpressionCache, expression_cache
from cardkeeper.rules.context import context_from_raw_json
from cardkeeper.rules.engine import MatchResult, RuleEngine, RuleSetSnapshot, rule_engine

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLE-FLIGHT REGISTRY
# =============================================================================


class ResortJobRegistry:
    """
    Process-wide record of the active re-sort job.

    State is either idle or claimed (optionally bound to a job id). Claiming
    is a single check-and-set under a lock.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._claimed = False
        self._active_job_id: int | None = None
        self._cancel_events: dict[int, Event] = {}
        self._tasks: dict[int, asyncio.Task[None]] = {}

    @property
    def active_job_id(self) -> int | None:
        with self._lock:
            return self._active_job_id

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._claimed

    def claim(self) -> None:
        """
        Reserve the single re-sort slot.

        Raises:
            JobConflictError: If a job already holds the slot
        """
        with self._lock:
            if self._claimed:
                raise JobConflictError(self._active_job_id)
            self._claimed = True
            self._active_job_id = None

    def bind(self, job_id: int) -> None:
        """Attach the job created under the current claim."""
        with self._lock:
            self._active_job_id = job_id
            self._cancel_events[job_id] = Event()

    def release(self, job_id: int | None = None) -> None:
        """Free the slot. With a job id, only frees it if that job holds it."""
        with self._lock:
            if job_id is not None and self._active_job_id != job_id:
                return
            if self._active_job_id is not None:
                self._cancel_events.pop(self._active_job_id, None)
            self._claimed = False
            self._active_job_id = None

    def request_cancel(self, job_id: int) -> bool:
        """
        Ask a running job to stop after its current batch.

        Returns False if the job is not running in this process.
        """
        with self._lock:
            event = self._cancel_events.get(job_id)
        if event is None:
            return False
        event.set()
        return True

    def is_cancelled(self, job_id: int) -> bool:
        with self._lock:
            event = self._cancel_events.get(job_id)
        return event is not None and event.is_set()

    def track(self, job_id: int, task: "asyncio.Task[None]") -> None:
        """Hold a reference to the job's task until it finishes."""
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))

    async def wait(self, job_id: int) -> None:
        """Wait for a job's task to finish (no-op if it already has)."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)


resort_registry = ResortJobRegistry()


# =============================================================================
# BATCH PLANNING (pure, runs off the event loop)
# =============================================================================


@dataclass(frozen=True, slots=True)
class InventoryRow:
    """The inventory fields a re-sort needs, detached from the ORM session."""

    id: int
    scryfall_id: str
    treatment: str
    quantity: int
    storage_location_id: int | None


@dataclass
class BatchPlan:
    """Location changes decided for one batch."""

    changes: dict[int | None, list[int]] = field(default_factory=lambda: defaultdict(list))
    movements: list[dict[str, Any]] = field(default_factory=list)
    evaluated: int = 0
    moved: int = 0
    errors: int = 0


def _location_name(names: Mapping[int, str], location_id: int | None) -> str | None:
    if location_id is None:
        return None
    return names.get(location_id, f"#{location_id}")


def plan_batch(
    snapshot: RuleSetSnapshot,
    rows: list[InventoryRow],
    catalog: dict[str, str],
    engine: RuleEngine,
    location_names: Mapping[int, str] | None = None,
) -> BatchPlan:
    """
    Decide the target location for each row in a batch.

    Rows without catalog data are counted as errors and left where they are.
    A rule evaluation error also counts, but the row is still placed by the
    remaining rules. Each change is also described as a movement naming the
    card and both locations (None for unassigned).
    """
    names = location_names or {}
    plan = BatchPlan()

    for row in rows:
        plan.evaluated += 1

        raw_json = catalog.get(row.scryfall_id)
        if raw_json is None:
            logger.warning("Card %s not in catalog; skipping row %d", row.scryfall_id, row.id)
            plan.errors += 1
            continue

        try:
            context = context_from_raw_json(
                raw_json, treatment=row.treatment, quantity=row.quantity
            )
        except ValueError as e:
            logger.error("Unreadable catalog data for %s: %s", row.scryfall_id, e)
            plan.errors += 1
            continue

        decision = engine.match(snapshot, context)
        if decision.errors:
            plan.errors += 1

        target = decision.storage_location_id if isinstance(decision, MatchResult) else None
        if target != row.storage_location_id:
            plan.changes[target].append(row.id)
            plan.movements.append(
                {
                    "inventory_id": row.id,
                    "card_name": context.get("name", row.scryfall_id),
                    "treatment": row.treatment,
                    "from_location_id": row.storage_location_id,
                    "from_location": _location_name(names, row.storage_location_id),
                    "to_location_id": target,
                    "to_location": _location_name(names, target),
                }
            )
            plan.moved += 1

    return plan


# =============================================================================
# JOB RUNNER
# =============================================================================


class BatchPersistenceError(Exception):
    """A batch could not be written within the allowed attempts."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Batch update failed after {attempts} attempts: "
            f"{type(last_error).__name__}: {last_error}"
        )


@dataclass(frozen=True)
class ResortOptions:
    """Tuning knobs for a re-sort run."""

    batch_size: int = 200
    max_attempts: int = 3
    retry_delay_seconds: float = 0.5
    batch_timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls) -> "ResortOptions":
        return cls(
            batch_size=min(
                max(settings.resort_batch_size, MIN_RESORT_BATCH_SIZE), MAX_RESORT_BATCH_SIZE
            ),
            max_attempts=max(settings.resort_max_attempts, 1),
            retry_delay_seconds=settings.resort_retry_delay_seconds,
            batch_timeout_seconds=settings.resort_batch_timeout_seconds,
        )


class ResortRunner:
    """Starts re-sort jobs and drives them to a terminal status."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ResortJobRegistry | None = None,
        options: ResortOptions | None = None,
        cache: ExpressionCache | None = None,
        engine: RuleEngine | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry if registry is not None else resort_registry
        self.options = options if options is not None else ResortOptions.from_settings()
        self.cache = cache if cache is not None else expression_cache
        self.engine = engine if engine is not None else rule_engine

    async def start(self, inventory_ids: list[int] | None = None) -> int:
        """
        Create a re-sort job and run it in the background.

        Returns immediately with the new job id.

        Raises:
            JobConflictError: If a re-sort is already pending or running
        """
        self.registry.claim()
        try:
            async with self.session_factory() as session:
                active = await find_active_job(session, JobType.INVENTORY_RESORT)
                if active is not None:
                    raise JobConflictError(active.id)

                progress = ResortProgress(
                    batch_size=self.options.batch_size,
                    inventory_ids=inventory_ids,
                )
                job = await create_job(session, JobType.INVENTORY_RESORT, progress.to_metadata())
                await session.commit()
                job_id = job.id
        except BaseException:
            self.registry.release()
            raise

        self.registry.bind(job_id)
        task = asyncio.create_task(self.run(job_id, inventory_ids))
        self.registry.track(job_id, task)

        logger.info("RESORT_JOB_STARTED", extra={"job_id": job_id})
        return job_id

    async def run(self, job_id: int, inventory_ids: list[int] | None = None) -> None:
        """
        Execute a re-sort job to completion.

        Never raises: every outcome is recorded on the job row.
        """
        progress = ResortProgress(batch_size=self.options.batch_size, inventory_ids=inventory_ids)

        try:
            async with self.session_factory() as session:
                await start_job(session, job_id)
                progress.phase = ResortPhase.COUNTING
                await update_job_metadata(session, job_id, progress.to_metadata())
                rules = await get_enabled_rules(session)
                location_names = {
                    location.id: location.name
                    for location in await list_storage_locations(session)
                }
                progress.total_cards = await count_inventory(session, inventory_ids)
                await session.commit()

            # One snapshot for the whole job
            snapshot = RuleSetSnapshot.build(rules, self.cache)
            logger.info(
                "RESORT_SNAPSHOT_TAKEN",
                extra={
                    "job_id": job_id,
                    "rules": len(snapshot),
                    "total_cards": progress.total_cards,
                },
            )

            progress.phase = ResortPhase.SORTING
            await self._save_progress(job_id, progress)

            status = await self._process_batches(
                job_id, snapshot, progress, inventory_ids, location_names
            )

        except BatchPersistenceError as e:
            logger.error(
                "RESORT_JOB_FAILED",
                extra={"job_id": job_id, "error": str(e), "processed": progress.processed_cards},
            )
            await self._finish(job_id, JobStatus.FAILED, progress, error=str(e))
        except Exception as e:
            logger.exception("Re-sort job %d crashed", job_id)
            await self._finish(job_id, JobStatus.FAILED, progress, error=f"{type(e).__name__}: {e}")
        else:
            progress.phase = ResortPhase.DONE
            await self._finish(job_id, status, progress)
            logger.info(
                "RESORT_JOB_FINISHED",
                extra={
                    "job_id": job_id,
                    "status": status.value,
                    "processed": progress.processed_cards,
                    "updated": progress.updated_cards,
                    "errors": progress.error_count,
                },
            )
        finally:
            self.registry.release(job_id)

    async def _process_batches(
        self,
        job_id: int,
        snapshot: RuleSetSnapshot,
        progress: ResortProgress,
        inventory_ids: list[int] | None,
        location_names: Mapping[int, str],
    ) -> JobStatus:
        after_id = 0

        while True:
            if self.registry.is_cancelled(job_id):
                logger.info("RESORT_JOB_CANCELLED", extra={"job_id": job_id})
                return JobStatus.CANCELLED

            async with self.session_factory() as session:
                items = await fetch_inventory_batch(
                    session, after_id, self.options.batch_size, inventory_ids
                )
                rows = [
                    InventoryRow(
                        id=item.id,
                        scryfall_id=item.scryfall_id,
                        treatment=item.treatment or "",
                        quantity=item.quantity,
                        storage_location_id=item.storage_location_id,
                    )
                    for item in items
                ]
                cards = await get_cards_by_ids(session, {row.scryfall_id for row in rows})
                catalog = {sid: card.raw_json for sid, card in cards.items()}

            if not rows:
                return JobStatus.COMPLETED

            plan = await asyncio.to_thread(
                plan_batch, snapshot, rows, catalog, self.engine, location_names
            )
            updated = await self._commit_batch(job_id, plan)

            progress.processed_cards += plan.evaluated
            progress.updated_cards += updated
            progress.error_count += plan.errors
            progress.record_movements(plan.movements)
            after_id = rows[-1].id

            await self._save_progress(job_id, progress)
            logger.debug(
                "Re-sort job %d: %d/%d processed",
                job_id,
                progress.processed_cards,
                progress.total_cards,
            )

    async def _commit_batch(self, job_id: int, plan: BatchPlan) -> int:
        changes = {loc: ids for loc, ids in plan.changes.items() if ids}
        if not changes:
            return 0

        last_error: BaseException | None = None
        for attempt in range(1, self.options.max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._write_changes(changes), timeout=self.options.batch_timeout_seconds
                )
            except (SQLAlchemyError, TimeoutError) as e:
                last_error = e
                logger.warning(
                    "RESORT_BATCH_RETRY",
                    extra={"job_id": job_id, "attempt": attempt, "error": str(e)},
                )
                if attempt < self.options.max_attempts:
                    await asyncio.sleep(self.options.retry_delay_seconds * 2 ** (attempt - 1))

        assert last_error is not None
        raise BatchPersistenceError(self.options.max_attempts, last_error)

    async def _write_changes(self, changes: dict[int | None, list[int]]) -> int:
        async with self.session_factory() as session:
            try:
                updated = await apply_location_changes(session, changes)
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                raise
        return updated

    async def _save_progress(self, job_id: int, progress: ResortProgress) -> None:
        async with self.session_factory() as session:
            await update_job_metadata(session, job_id, progress.to_metadata())
            await session.commit()

    async def _finish(
        self,
        job_id: int,
        status: JobStatus,
        progress: ResortProgress,
        error: str | None = None,
    ) -> None:
        try:
            async with self.session_factory() as session:
                await finish_job(session, job_id, status, progress.to_metadata(), error=error)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not record final status %s for job %d", status.value, job_id)
