"""Tests for the parsed expression cache."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from cardkeeper.models.failure import ExpressionParseError
from cardkeeper.models.sorting_rule import SortingRule
from cardkeeper.rules.cache import ExpressionCache
from cardkeeper.rules.parser import parse

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def make_rule(expression: str = "foil", updated_at: datetime = T0, rule_id: int = 1) -> SortingRule:
    return SortingRule(
        id=rule_id,
        name="Foils",
        priority=1,
        expression=expression,
        storage_location_id=1,
        updated_at=updated_at,
    )


class TestExpressionCache:
    def test_parses_once_per_version(self) -> None:
        """A second lookup of the same version is served from the cache."""
        cache = ExpressionCache()
        rule = make_rule()

        with patch("cardkeeper.rules.cache.parse", wraps=parse) as parse_spy:
            first = cache.get(rule)
            second = cache.get(rule)

        assert first is second
        assert parse_spy.call_count == 1

    def test_new_version_reparses(self) -> None:
        """A changed updated_at or expression replaces the entry."""
        cache = ExpressionCache()
        cache.get(make_rule("foil"))

        updated = cache.get(make_rule("promo", updated_at=T0 + timedelta(seconds=1)))

        assert updated.field == "promo"
        assert len(cache) == 1

    def test_same_timestamp_different_text(self) -> None:
        """The expression text is part of the version."""
        cache = ExpressionCache()
        cache.get(make_rule("foil"))

        assert cache.get(make_rule("promo")).field == "promo"

    def test_invalidate(self) -> None:
        cache = ExpressionCache()
        cache.get(make_rule())

        cache.invalidate(1)

        assert 1 not in cache
        cache.invalidate(1)  # no-op when absent

    def test_clear(self) -> None:
        cache = ExpressionCache()
        cache.get(make_rule(rule_id=1))
        cache.get(make_rule(rule_id=2))

        cache.clear()

        assert len(cache) == 0

    def test_parse_error_not_cached(self) -> None:
        cache = ExpressionCache()

        with pytest.raises(ExpressionParseError):
            cache.get(make_rule("rarity =="))

        assert 1 not in cache
