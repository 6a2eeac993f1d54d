"""
Rule Engine: first-match evaluation of a prioritised rule set.

INVARIANTS:
- Rules are evaluated in ascending priority; equal priorities are ordered
  by ascending rule id
- The first rule whose expression is true wins
- An EvaluationError on one rule skips that rule only; it is reported as a
  diagnostic and never aborts the match
- A snapshot is immutable; rule changes produce a new snapshot
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from cardkeeper.models.failure import EvaluationError, ExpressionParseError
from cardkeeper.models.sorting_rule import SortingRule
from cardkeeper.rules.cache import ExpressionCache
from cardkeeper.rules.context import EvaluationContext
from cardkeeper.rules.evaluator import evaluate
from cardkeeper.rules.nodes import Expression
from cardkeeper.rules.parser import parse

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompiledRule:
    """A rule paired with its parsed expression."""

    rule: SortingRule
    expression: Expression

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.rule.priority, self.rule.id)


@dataclass(frozen=True, slots=True)
class RuleSetSnapshot:
    """Ordered, immutable sequence of enabled rules."""

    rules: tuple[CompiledRule, ...] = ()

    @classmethod
    def build(
        cls,
        rules: Iterable[SortingRule],
        cache: ExpressionCache | None = None,
    ) -> "RuleSetSnapshot":
        """
        Snapshot the enabled rules in evaluation order.

        Rules whose stored expression no longer parses are left out.
        """
        compiled: list[CompiledRule] = []
        for rule in rules:
            if not rule.enabled:
                continue
            try:
                expression = cache.get(rule) if cache is not None else parse(rule.expression)
            except ExpressionParseError as e:
                logger.warning(
                    "RULE_SKIPPED_UNPARSABLE",
                    extra={"rule_id": rule.id, "error": e.message},
                )
                continue
            compiled.append(CompiledRule(rule=rule, expression=expression))

        compiled.sort(key=lambda c: c.sort_key)
        return cls(rules=tuple(compiled))

    def __len__(self) -> int:
        return len(self.rules)

    def rule_ids(self) -> list[int]:
        """Rule ids in evaluation order."""
        return [c.rule.id for c in self.rules]


@dataclass(frozen=True, slots=True)
class RuleDiagnostic:
    """A rule that could not be evaluated for one card."""

    rule_id: int
    message: str


@dataclass(frozen=True, slots=True)
class MatchResult:
    """The card belongs in the first matching rule's location."""

    rule_id: int
    storage_location_id: int
    errors: tuple[RuleDiagnostic, ...] = ()

    matched = True


@dataclass(frozen=True, slots=True)
class NoMatch:
    """No rule matched; the card stays (or becomes) unassigned."""

    errors: tuple[RuleDiagnostic, ...] = ()

    matched = False


MatchDecision = MatchResult | NoMatch


class RuleEngine:
    """Applies the evaluator over a snapshot in priority order."""

    def match(self, snapshot: RuleSetSnapshot, context: EvaluationContext) -> MatchDecision:
        errors: list[RuleDiagnostic] = []

        for compiled in snapshot.rules:
            try:
                matched = evaluate(compiled.expression, context)
            except EvaluationError as e:
                errors.append(RuleDiagnostic(rule_id=compiled.rule.id, message=e.message))
                continue

            if matched:
                return MatchResult(
                    rule_id=compiled.rule.id,
                    storage_location_id=compiled.rule.storage_location_id,
                    errors=tuple(errors),
                )

        return NoMatch(errors=tuple(errors))


rule_engine = RuleEngine()
