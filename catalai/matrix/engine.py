"""Decision matrix rule engine.

Evaluates the prioritised rule set of one matrix version against a
classification context. Evaluation runs in two passes over the same
ordering: the first matching override rule decides the category, then
every matching adjust_confidence and require_review rule applies
cumulatively regardless of where the override sat.

An engine compiles its matrix once and holds no mutable state, so one
instance can serve many concurrent callers.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from catalai.errors import InvalidValueError, UnknownAttributeError
from catalai.matrix.registry import AttributeRegistry, as_number
from catalai.schemas.classification import (
    ClassificationContext,
    EvaluationResult,
    TriggeredRule,
)
from catalai.schemas.matrix import (
    ActionType,
    AdjustConfidenceAction,
    AttributeValue,
    Condition,
    ConditionOperator,
    DecisionMatrix,
    NumberValue,
    OverrideAction,
    Rule,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CompiledCondition:
    """A condition with its literals resolved once at load time."""

    condition: Condition
    literals: tuple[AttributeValue, ...]
    error: str | None = None


@dataclass(frozen=True)
class _CompiledRule:
    rule: Rule
    conditions: tuple[_CompiledCondition, ...]


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _compare(operator: ConditionOperator, actual: AttributeValue, literals: tuple) -> bool:
    if operator.is_ordering:
        left = actual.value if isinstance(actual, NumberValue) else as_number(actual.value)
        right = literals[0].value
        # Fail closed on anything that is not a number
        if left is None:
            return False
        if operator == ConditionOperator.GT:
            return left > right
        if operator == ConditionOperator.LT:
            return left < right
        if operator == ConditionOperator.GE:
            return left >= right
        return left <= right

    values = {literal.value for literal in literals}
    if operator in (ConditionOperator.EQ, ConditionOperator.IN):
        return actual.value in values
    return actual.value not in values


class RuleEngine:
    """Evaluates classification contexts against one matrix version.

    Conditions whose literals fall outside the declared domain are
    compiled as never-matching and reported in each result that reaches
    them.

    Raises:
        ValidationError: If the matrix is structurally malformed.
    """

    def __init__(self, matrix: DecisionMatrix) -> None:
        self._matrix = matrix
        self._registry = AttributeRegistry.from_matrix(matrix)
        self._rules = tuple(self._compile(rule) for rule in matrix.ordered_rules())

    @property
    def matrix(self) -> DecisionMatrix:
        return self._matrix

    @property
    def registry(self) -> AttributeRegistry:
        return self._registry

    def _compile(self, rule: Rule) -> _CompiledRule:
        compiled: list[_CompiledCondition] = []
        for condition in rule.conditions:
            try:
                literals = self._registry.resolve_condition(condition)
            except (UnknownAttributeError, InvalidValueError) as e:
                logger.warning(
                    "Rule %s (v%d): %s; condition will never match",
                    rule.id, self._matrix.version, e,
                )
                compiled.append(_CompiledCondition(condition, (), f"rule {rule.id}: {e}"))
                continue
            compiled.append(_CompiledCondition(condition, literals))
        return _CompiledRule(rule, tuple(compiled))

    # ── Condition matching ───────────────────────────────────────

    def _matches(
        self,
        compiled: _CompiledRule,
        values: Mapping[str, object],
        warnings: list[str],
    ) -> bool:
        for cc in compiled.conditions:
            if cc.error is not None:
                if cc.error not in warnings:
                    warnings.append(cc.error)
                return False

            name = cc.condition.attribute
            if name not in values or values[name] is None:
                # Partial attribute data is not an error
                return False

            try:
                actual = self._registry.resolve_value(name, values[name])
            except (UnknownAttributeError, InvalidValueError) as e:
                message = f"rule {compiled.rule.id}: {e}"
                logger.warning("Skipping condition during evaluation: %s", message)
                if message not in warnings:
                    warnings.append(message)
                return False

            if cc.condition.operator.is_ordering and not isinstance(actual, NumberValue):
                # Range buckets order on the raw reading, not the label
                number = as_number(values[name])
                if number is not None:
                    actual = NumberValue(value=number)

            if not _compare(cc.condition.operator, actual, cc.literals):
                return False
        return True

    # ── Evaluation ───────────────────────────────────────────────

    def evaluate(self, context: ClassificationContext) -> EvaluationResult:
        """Apply the matrix to one context.

        Deterministic for a given matrix version and context.
        """
        values = context.attribute_values
        warnings: list[str] = []

        # Pass 1: first matching override wins the category
        override: _CompiledRule | None = None
        for compiled in self._rules:
            if compiled.rule.action_type != ActionType.OVERRIDE:
                continue
            if self._matches(compiled, values, warnings):
                override = compiled
                break

        # Pass 2: every matching adjustment and review rule applies
        delta = 0.0
        requires_review = False
        contributing: set[str] = set()
        for compiled in self._rules:
            action = compiled.rule.action_type
            if action == ActionType.OVERRIDE:
                continue
            if not self._matches(compiled, values, warnings):
                continue
            contributing.add(compiled.rule.id)
            if isinstance(compiled.rule.action, AdjustConfidenceAction):
                delta += compiled.rule.action.delta
            else:
                requires_review = True

        if override is not None:
            contributing.add(override.rule.id)

        triggered = tuple(
            TriggeredRule(
                rule_id=c.rule.id,
                rule_name=c.rule.name,
                priority=c.rule.priority,
                action=c.rule.action_type,
            )
            for c in self._rules
            if c.rule.id in contributing
        )

        category = context.llm_category
        if override is not None and isinstance(override.rule.action, OverrideAction):
            category = override.rule.action.category

        confidence = clamp(context.llm_confidence + delta)

        logger.debug(
            "Evaluated v%d: %s -> %s (%.2f -> %.2f), %d rule(s), review=%s",
            self._matrix.version, context.llm_category, category,
            context.llm_confidence, confidence, len(triggered), requires_review,
        )

        return EvaluationResult(
            category=category,
            confidence=confidence,
            triggered_rules=triggered,
            requires_review=requires_review,
            overridden=override is not None,
            matrix_version=self._matrix.version,
            original_category=context.llm_category,
            original_confidence=context.llm_confidence,
            warnings=tuple(warnings),
        )


def evaluate(matrix: DecisionMatrix, context: ClassificationContext) -> EvaluationResult:
    """Evaluate one context against a matrix. See RuleEngine.evaluate."""
    return RuleEngine(matrix).evaluate(context)
