"""
Cache of parsed rule expressions.

Entries are keyed by rule id and tagged with the rule version
``(updated_at, expression)``. A lookup with a different version re-parses
and replaces the entry whole.
"""

import logging
from datetime import datetime
from threading import Lock

from cardkeeper.models.sorting_rule import SortingRule
from cardkeeper.rules.nodes import Expression
from cardkeeper.rules.parser import parse

logger = logging.getLogger(__name__)

RuleVersion = tuple[datetime | None, str]


class ExpressionCache:
    """Thread-safe map of rule id -> (version, parsed expression)."""

    def __init__(self) -> None:
        self._entries: dict[int, tuple[RuleVersion, Expression]] = {}
        self._lock = Lock()

    def get(self, rule: SortingRule) -> Expression:
        """
        Return the parsed expression for a rule, parsing on a cache miss.

        Raises:
            ExpressionParseError: If the stored expression does not parse
        """
        version: RuleVersion = (rule.updated_at, rule.expression)

        with self._lock:
            entry = self._entries.get(rule.id)
        if entry is not None and entry[0] == version:
            return entry[1]

        expression = parse(rule.expression)
        with self._lock:
            self._entries[rule.id] = (version, expression)
        logger.debug("Parsed expression for rule %d", rule.id)
        return expression

    def invalidate(self, rule_id: int) -> None:
        """Drop a rule's entry (rule deleted or rewritten)."""
        with self._lock:
            self._entries.pop(rule_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, rule_id: object) -> bool:
        with self._lock:
            return rule_id in self._entries


# Process-wide cache shared by the API and the resort runner
expression_cache = ExpressionCache()
