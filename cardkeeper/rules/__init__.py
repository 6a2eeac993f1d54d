from cardkeeper.rules.cache import ExpressionCache, expression_cache
from cardkeeper.rules.context import (
    EvaluationContext,
    context_from_card_json,
    context_from_raw_json,
)
from cardkeeper.rules.engine import (
    CompiledRule,
    MatchDecision,
    MatchResult,
    NoMatch,
    RuleDiagnostic,
    RuleEngine,
    RuleSetSnapshot,
    rule_engine,
)
from cardkeeper.rules.evaluator import evaluate
from cardkeeper.rules.parser import parse
from cardkeeper.rules.validator import ValidationResult, validate, validate_or_raise

__all__ = [
    "CompiledRule",
    "EvaluationContext",
    "ExpressionCache",
    "MatchDecision",
    "MatchResult",
    "NoMatch",
    "RuleDiagnostic",
    "RuleEngine",
    "RuleSetSnapshot",
    "ValidationResult",
    "context_from_card_json",
    "context_from_raw_json",
    "evaluate",
    "expression_cache",
    "parse",
    "rule_engine",
    "validate",
    "validate_or_raise",
]
