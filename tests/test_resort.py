"""Tests for the bulk re-sort job."""

import asyncio
import json
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from cardkeeper.config import settings
from cardkeeper.db.operations import (
    apply_location_changes,
    batch_update_priorities,
    create_inventory_item,
    create_job,
    create_sorting_rule,
    create_storage_location,
    fetch_inventory_batch,
    get_job,
    update_sorting_rule,
    upsert_card,
)
from cardkeeper.models.failure import JobConflictError
from cardkeeper.models.job import JobType, ResortProgress
from cardkeeper.models.sorting_rule import SortingRule
from cardkeeper.rules.cache import ExpressionCache
from cardkeeper.rules.engine import RuleEngine, RuleSetSnapshot
from cardkeeper.services.resort import (
    InventoryRow,
    ResortJobRegistry,
    ResortOptions,
    ResortRunner,
    plan_batch,
)

FAST = ResortOptions(
    batch_size=2,
    max_attempts=2,
    retry_delay_seconds=0,
    batch_timeout_seconds=5,
)


@pytest.fixture
def registry() -> ResortJobRegistry:
    return ResortJobRegistry()


@pytest.fixture
def runner(session_factory, registry) -> ResortRunner:
    return ResortRunner(session_factory, registry=registry, options=FAST, cache=ExpressionCache())


@pytest.fixture
async def seeded(session_factory, card_json) -> dict[str, Any]:
    """
    Two locations, two rules and five inventory rows.

    Expected placement with the rules as seeded:
        items[0] mythic black  -> mythics
        items[1] common red    -> reds
        items[2] common blue   -> unassigned (was in mythics)
        items[3] mythic red    -> mythics
        items[4] not in catalog, left alone
    """
    async with session_factory() as session:
        mythics = await create_storage_location(session, "Mythics", "Binder")
        reds = await create_storage_location(session, "Reds", "Box")
        mythic_rule = await create_sorting_rule(
            session, "Mythics", 1, 'rarity == "mythic"', mythics.id
        )
        red_rule = await create_sorting_rule(session, "Reds", 2, 'colors contains "R"', reds.id)

        cards = {
            "s-black-mythic": card_json(name="Sheoldred", rarity="mythic", colors=["B"]),
            "s-red-common": card_json(name="Shock", rarity="common", colors=["R"]),
            "s-blue-common": card_json(name="Counterspell", rarity="common", colors=["U"]),
            "s-red-mythic": card_json(name="Glorybringer", rarity="mythic", colors=["R"]),
        }
        for scryfall_id, raw in cards.items():
            await upsert_card(session, scryfall_id, f"o-{scryfall_id}", scryfall_id, raw)

        items = [
            await create_inventory_item(session, "s-black-mythic", "o1"),
            await create_inventory_item(session, "s-red-common", "o2"),
            await create_inventory_item(
                session, "s-blue-common", "o3", storage_location_id=mythics.id
            ),
            await create_inventory_item(session, "s-red-mythic", "o4"),
            await create_inventory_item(session, "s-unknown", "o5", storage_location_id=reds.id),
        ]
        await session.commit()

    return {
        "mythics": mythics.id,
        "reds": reds.id,
        "mythic_rule": mythic_rule.id,
        "red_rule": red_rule.id,
        "items": [item.id for item in items],
    }


async def placements(session_factory) -> list[int | None]:
    async with session_factory() as session:
        items = await fetch_inventory_batch(session, 0, 1000)
        return [item.storage_location_id for item in items]


async def load_job(session_factory, job_id: int):
    async with session_factory() as session:
        return await get_job(session, job_id)


async def run_to_end(runner: ResortRunner, inventory_ids: list[int] | None = None) -> int:
    job_id = await runner.start(inventory_ids)
    await runner.registry.wait(job_id)
    return job_id


class TestResortJob:
    async def test_places_every_card(self, runner, session_factory, seeded) -> None:
        """Every row is re-evaluated; non-matches become unassigned."""
        job_id = await run_to_end(runner)

        job = await load_job(session_factory, job_id)
        progress = ResortProgress.from_metadata(job.job_metadata)
        assert job.status == "completed"
        assert job.completed_at is not None
        assert progress.total_cards == 5
        assert progress.processed_cards == 5
        assert progress.updated_cards == 4
        assert progress.error_count == 1
        assert progress.phase.value == "done"
        assert await placements(session_factory) == [
            seeded["mythics"],
            seeded["reds"],
            None,
            seeded["mythics"],
            seeded["reds"],
        ]
        assert [
            (m["card_name"], m["from_location"], m["to_location"]) for m in progress.movements
        ] == [
            ("Sheoldred", None, "Mythics"),
            ("Shock", None, "Reds"),
            ("Counterspell", "Mythics", None),
            ("Glorybringer", None, "Mythics"),
        ]
        assert progress.movements[2]["from_location_id"] == seeded["mythics"]
        assert progress.movements[2]["to_location_id"] is None
        assert progress.movements_truncated is False

    async def test_second_run_changes_nothing(self, runner, session_factory, seeded) -> None:
        """With no rule or card changes a repeat run writes zero rows."""
        await run_to_end(runner)
        before = await placements(session_factory)

        job_id = await run_to_end(runner)

        job = await load_job(session_factory, job_id)
        assert job.status == "completed"
        assert job.job_metadata["updated_cards"] == 0
        assert job.job_metadata["movements"] == []
        assert await placements(session_factory) == before

    async def test_subset(self, runner, session_factory, seeded) -> None:
        """Only the listed rows are touched."""
        first, second, *_ = seeded["items"]

        job_id = await run_to_end(runner, [second])

        job = await load_job(session_factory, job_id)
        assert job.job_metadata["total_cards"] == 1
        assert job.job_metadata["inventory_ids"] == [second]
        result = await placements(session_factory)
        assert result[0] is None
        assert result[1] == seeded["reds"]

    async def test_priority_reorder_changes_placement(
        self, runner, session_factory, seeded
    ) -> None:
        """Swapping priorities re-homes cards matched by both rules."""
        await run_to_end(runner)
        async with session_factory() as session:
            await batch_update_priorities(
                session, [(seeded["mythic_rule"], 2), (seeded["red_rule"], 1)]
            )
            await session.commit()

        job_id = await run_to_end(runner)

        job = await load_job(session_factory, job_id)
        assert job.job_metadata["updated_cards"] == 1
        assert (await placements(session_factory))[3] == seeded["reds"]

    async def test_empty_inventory(self, runner, session_factory) -> None:
        job_id = await run_to_end(runner)

        job = await load_job(session_factory, job_id)
        assert job.status == "completed"
        assert job.job_metadata["processed_cards"] == 0

    async def test_registry_released_after_finish(self, runner, seeded) -> None:
        await run_to_end(runner)

        assert runner.registry.is_busy is False
        assert runner.registry.active_job_id is None


class TestSingleFlight:
    async def test_second_trigger_rejected(self, runner, registry, seeded) -> None:
        """A trigger while a job holds the slot fails fast, nothing queued."""
        job_id = await runner.start()

        with pytest.raises(JobConflictError) as exc_info:
            await runner.start()

        assert exc_info.value.active_job_id == job_id
        assert exc_info.value.status_code == 409
        await registry.wait(job_id)

    async def test_active_job_in_database_rejected(self, runner, registry, session_factory) -> None:
        """A pending job row blocks a new trigger and frees the slot again."""
        async with session_factory() as session:
            existing = await create_job(session, JobType.INVENTORY_RESORT)
            await session.commit()

        with pytest.raises(JobConflictError) as exc_info:
            await runner.start()

        assert exc_info.value.active_job_id == existing.id
        assert registry.is_busy is False

    async def test_new_job_allowed_after_finish(self, runner, seeded) -> None:
        first = await run_to_end(runner)
        second = await run_to_end(runner)

        assert second != first


class EditRuleAfterFirstBatch(ResortRunner):
    """Rewrites a rule once the first batch has been saved."""

    def __init__(self, *args, rule_id: int, **kwargs):
        super().__init__(*args, **kwargs)
        self.rule_id = rule_id
        self.edited = False

    async def _save_progress(self, job_id: int, progress: ResortProgress) -> None:
        await super()._save_progress(job_id, progress)
        if not self.edited and progress.processed_cards == self.options.batch_size:
            async with self.session_factory() as session:
                await update_sorting_rule(
                    session, self.rule_id, {"expression": 'rarity == "common"'}
                )
                await session.commit()
            self.edited = True


class TestRuleSnapshot:
    async def test_edit_during_job_does_not_apply(
        self, session_factory, registry, seeded
    ) -> None:
        """Later batches keep using the rules as they were when the job started."""
        runner = EditRuleAfterFirstBatch(
            session_factory,
            registry=registry,
            options=FAST,
            cache=ExpressionCache(),
            rule_id=seeded["mythic_rule"],
        )

        job_id = await run_to_end(runner)

        job = await load_job(session_factory, job_id)
        assert runner.edited is True
        assert job.status == "completed"
        assert await placements(session_factory) == [
            seeded["mythics"],
            seeded["reds"],
            None,
            seeded["mythics"],
            seeded["reds"],
        ]

    async def test_next_job_sees_the_edit(self, session_factory, registry, seeded) -> None:
        runner = EditRuleAfterFirstBatch(
            session_factory,
            registry=registry,
            options=FAST,
            cache=ExpressionCache(),
            rule_id=seeded["mythic_rule"],
        )
        await run_to_end(runner)

        await run_to_end(runner)

        result = await placements(session_factory)
        assert result[2] == seeded["mythics"]
        assert result[3] == seeded["reds"]


class CancelAfterFirstMatch(RuleEngine):
    """Requests cancellation of a job while its first batch is evaluated."""

    def __init__(self, registry: ResortJobRegistry):
        self.registry = registry
        self.job_id: int | None = None

    def match(self, snapshot, context):
        if self.job_id is not None:
            self.registry.request_cancel(self.job_id)
        return super().match(snapshot, context)


class TestCancellation:
    async def test_cancel_before_first_batch(
        self, runner, registry, session_factory, seeded
    ) -> None:
        job_id = await runner.start()
        assert registry.request_cancel(job_id) is True

        await registry.wait(job_id)

        job = await load_job(session_factory, job_id)
        assert job.status == "cancelled"
        assert job.job_metadata["processed_cards"] == 0
        assert await placements(session_factory) == [
            None,
            None,
            seeded["mythics"],
            None,
            seeded["reds"],
        ]

    async def test_cancel_between_batches(self, session_factory, registry, seeded) -> None:
        """The batch in flight is committed; the next one never starts."""
        engine = CancelAfterFirstMatch(registry)
        runner = ResortRunner(
            session_factory, registry=registry, options=FAST, cache=ExpressionCache(), engine=engine
        )
        job_id = await runner.start()
        engine.job_id = job_id

        await registry.wait(job_id)

        job = await load_job(session_factory, job_id)
        assert job.status == "cancelled"
        assert job.job_metadata["processed_cards"] == 2
        assert await placements(session_factory) == [
            seeded["mythics"],
            seeded["reds"],
            seeded["mythics"],
            None,
            seeded["reds"],
        ]

    async def test_cancel_unknown_job(self, registry) -> None:
        assert registry.request_cancel(12345) is False


class TestBatchRetry:
    async def test_exhausted_retries_fail_job_and_keep_committed_batches(
        self, runner, session_factory, seeded, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The first batch stays written when a later batch cannot be."""
        calls = 0

        async def flaky(session, changes):
            nonlocal calls
            calls += 1
            if calls == 1:
                return await apply_location_changes(session, changes)
            raise OperationalError("UPDATE inventory", {}, Exception("database is locked"))

        monkeypatch.setattr("cardkeeper.services.resort.apply_location_changes", flaky)

        job_id = await run_to_end(runner)

        job = await load_job(session_factory, job_id)
        assert job.status == "failed"
        assert "after 2 attempts" in job.error
        assert "OperationalError" in job.error
        assert job.job_metadata["processed_cards"] == 2
        assert calls == 3
        assert (await placements(session_factory))[:3] == [
            seeded["mythics"],
            seeded["reds"],
            seeded["mythics"],
        ]
        assert runner.registry.is_busy is False

    async def test_timeout_is_retried(
        self, session_factory, registry, seeded, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A batch write that hangs is abandoned and tried again."""
        calls = 0

        async def slow_once(session, changes):
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(5)
            return await apply_location_changes(session, changes)

        monkeypatch.setattr("cardkeeper.services.resort.apply_location_changes", slow_once)
        options = ResortOptions(
            batch_size=10, max_attempts=2, retry_delay_seconds=0, batch_timeout_seconds=0.05
        )
        runner = ResortRunner(
            session_factory, registry=registry, options=options, cache=ExpressionCache()
        )

        job_id = await run_to_end(runner)

        job = await load_job(session_factory, job_id)
        assert job.status == "completed"
        assert job.job_metadata["updated_cards"] == 4
        assert calls == 2


class TestPlanBatch:
    def test_groups_changes_by_target(self, card_json) -> None:
        snapshot = RuleSetSnapshot.build(
            [
                SortingRule(1, "Mythics", 1, 'rarity == "mythic"', 10),
                SortingRule(2, "Cheap", 2, "prices.usd < 1", 20),
            ]
        )
        rows = [
            InventoryRow(1, "a", "", 1, None),
            InventoryRow(2, "b", "", 1, 10),
            InventoryRow(3, "c", "", 1, 10),
            InventoryRow(4, "gone", "", 1, 20),
        ]
        catalog = {
            "a": card_json(rarity="mythic"),
            "b": card_json(rarity="mythic"),
            "c": card_json(rarity="rare", prices={"usd": "0.25"}),
        }

        plan = plan_batch(snapshot, rows, catalog, RuleEngine())

        assert dict(plan.changes) == {10: [1], 20: [3]}
        assert plan.evaluated == 4
        assert plan.moved == 2
        assert plan.errors == 1

    def test_movements_name_card_and_locations(self, card_json) -> None:
        snapshot = RuleSetSnapshot.build([SortingRule(1, "Mythics", 1, 'rarity == "mythic"', 10)])
        rows = [
            InventoryRow(1, "a", "foil", 1, 30),
            InventoryRow(2, "b", "", 1, 99),
        ]
        catalog = {
            "a": card_json(name="Sheoldred", rarity="mythic"),
            "b": card_json(name="Shock", rarity="common"),
        }

        plan = plan_batch(
            snapshot, rows, catalog, RuleEngine(), location_names={10: "Binder", 30: "Box"}
        )

        assert plan.movements == [
            {
                "inventory_id": 1,
                "card_name": "Sheoldred",
                "treatment": "foil",
                "from_location_id": 30,
                "from_location": "Box",
                "to_location_id": 10,
                "to_location": "Binder",
            },
            {
                "inventory_id": 2,
                "card_name": "Shock",
                "treatment": "",
                "from_location_id": 99,
                "from_location": "#99",
                "to_location_id": None,
                "to_location": None,
            },
        ]

    def test_unreadable_catalog_row(self) -> None:
        snapshot = RuleSetSnapshot.build([SortingRule(1, "All", 1, "true", 10)])

        plan = plan_batch(
            snapshot, [InventoryRow(1, "a", "", 1, None)], {"a": json.dumps([1, 2])}, RuleEngine()
        )

        assert plan.errors == 1
        assert not plan.changes

    def test_evaluation_errors_counted(self, card_json) -> None:
        snapshot = RuleSetSnapshot.build(
            [SortingRule(1, "Cheap", 1, "cmc < 2", 10), SortingRule(2, "All", 2, "true", 20)]
        )

        plan = plan_batch(
            snapshot, [InventoryRow(1, "a", "", 1, None)], {"a": card_json(cmc="1")}, RuleEngine()
        )

        assert plan.errors == 1
        assert dict(plan.changes) == {20: [1]}


class TestRegistry:
    def test_claim_is_exclusive(self) -> None:
        registry = ResortJobRegistry()
        registry.claim()
        registry.bind(7)

        with pytest.raises(JobConflictError) as exc_info:
            registry.claim()

        assert exc_info.value.active_job_id == 7

    def test_release_frees_slot(self) -> None:
        registry = ResortJobRegistry()
        registry.claim()
        registry.bind(7)

        registry.release(7)

        assert registry.is_busy is False
        registry.claim()

    def test_release_ignores_other_job(self) -> None:
        registry = ResortJobRegistry()
        registry.claim()
        registry.bind(7)

        registry.release(8)

        assert registry.active_job_id == 7

    def test_cancel_flag(self) -> None:
        registry = ResortJobRegistry()
        registry.claim()
        registry.bind(7)

        assert registry.is_cancelled(7) is False
        assert registry.request_cancel(7) is True
        assert registry.is_cancelled(7) is True


class TestResortOptions:
    @pytest.mark.parametrize(("configured", "expected"), [(5, 100), (250, 250), (10_000, 500)])
    def test_batch_size_clamped(
        self, configured: int, expected: int, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "resort_batch_size", configured)

        assert ResortOptions.from_settings().batch_size == expected
