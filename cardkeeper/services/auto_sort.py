"""
AutoSort: single-card storage assignment.

Runs inside the request that creates an inventory item. Each call takes a
fresh snapshot of the enabled rules, so edits, deletions and priority
changes apply to the very next card. Parsed expressions come from the
shared cache, so an unchanged rule is never re-parsed.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.db.operations import get_card, get_enabled_rules, get_storage_location
from cardkeeper.models.db import StorageLocationDB
from cardkeeper.rules.cache import ExpressionCache, expression_cache
from cardkeeper.rules.context import context_from_card_json, context_from_raw_json
from cardkeeper.rules.engine import (
    MatchDecision,
    MatchResult,
    NoMatch,
    RuleEngine,
    RuleSetSnapshot,
    rule_engine,
)

logger = logging.getLogger(__name__)


class AutoSortService:
    """Evaluates sorting rules to pick a storage location for one card."""

    def __init__(
        self,
        cache: ExpressionCache | None = None,
        engine: RuleEngine | None = None,
    ):
        self.cache = cache if cache is not None else expression_cache
        self.engine = engine if engine is not None else rule_engine

    async def load_snapshot(self, session: AsyncSession) -> RuleSetSnapshot:
        """Snapshot the currently enabled rules."""
        rules = await get_enabled_rules(session)
        return RuleSetSnapshot.build(rules, self.cache)

    async def determine_storage_location(
        self,
        session: AsyncSession,
        scryfall_id: str,
        treatment: str = "",
        quantity: int | None = None,
    ) -> int | None:
        """
        Pick the storage location for a new inventory item.

        Returns:
            The matched location id, or None when no rule matches or the
            card is missing from the catalog
        """
        card = await get_card(session, scryfall_id)
        if card is None:
            logger.info("Card %s not in catalog; leaving unassigned", scryfall_id)
            return None

        try:
            context = context_from_raw_json(card.raw_json, treatment=treatment, quantity=quantity)
        except ValueError as e:
            logger.warning("Unreadable catalog data for %s: %s", scryfall_id, e)
            return None

        snapshot = await self.load_snapshot(session)
        decision = self.engine.match(snapshot, context)
        self._log_diagnostics(scryfall_id, decision)

        if isinstance(decision, NoMatch):
            logger.debug("No sorting rule matched %s", scryfall_id)
            return None

        logger.info(
            "CARD_AUTO_SORTED",
            extra={
                "scryfall_id": scryfall_id,
                "rule_id": decision.rule_id,
                "storage_location_id": decision.storage_location_id,
            },
        )
        return decision.storage_location_id

    async def evaluate_card_data(
        self,
        session: AsyncSession,
        card_data: Mapping[str, Any],
        treatment: str = "",
    ) -> tuple[MatchDecision, StorageLocationDB | None]:
        """
        Evaluate ad-hoc card data against the enabled rules.

        Used by the live rule tester. A treatment passed here overrides one
        inside card_data.
        """
        quantity = card_data.get("quantity")
        context = context_from_card_json(
            card_data,
            treatment=treatment or str(card_data.get("treatment") or ""),
            quantity=quantity if isinstance(quantity, int) else None,
        )

        snapshot = await self.load_snapshot(session)
        decision = self.engine.match(snapshot, context)

        location = None
        if isinstance(decision, MatchResult):
            location = await get_storage_location(session, decision.storage_location_id)
        return decision, location

    def _log_diagnostics(self, scryfall_id: str, decision: MatchDecision) -> None:
        for diagnostic in decision.errors:
            logger.warning(
                "RULE_EVALUATION_ERROR",
                extra={
                    "scryfall_id": scryfall_id,
                    "rule_id": diagnostic.rule_id,
                    "error": diagnostic.message,
                },
            )


auto_sort_service = AutoSortService()
