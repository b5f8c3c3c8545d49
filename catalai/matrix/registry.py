"""Attribute registry: the typed vocabulary rules and contexts share.

All domain validation of attribute values lives here. Raw values coming
from a classification context, a rule condition or an imported document
are normalised into the tagged AttributeValue model by resolve_value().
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Iterator

from catalai.errors import InvalidValueError, UnknownAttributeError, ValidationError
from catalai.schemas.matrix import (
    Attribute,
    AttributeType,
    AttributeValue,
    Condition,
    ConditionIssue,
    DecisionMatrix,
    EnumValue,
    NumberValue,
    TextValue,
)

logger = logging.getLogger(__name__)

# Range bucket labels: "1-10", "0.5-2", "200+"
_BOUNDED_BUCKET_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)\s*$")
_OPEN_BUCKET_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*\+\s*$")


def parse_bucket(label: str) -> tuple[float, float] | None:
    """Inclusive numeric bounds of a range bucket label, or None."""
    match = _BOUNDED_BUCKET_RE.match(label)
    if match:
        return float(match.group(1)), float(match.group(2))
    match = _OPEN_BUCKET_RE.match(label)
    if match:
        return float(match.group(1)), math.inf
    return None


def as_number(raw: object) -> float | None:
    """Numeric reading of a raw value, or None when it has none."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int | float):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(value) else value


def _unwrap(raw: object) -> object:
    if isinstance(raw, TextValue | NumberValue | EnumValue):
        return raw.value
    return raw


def _format_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


class AttributeRegistry:
    """Registered attributes keyed by name, in registration order."""

    def __init__(self, attributes: Iterable[Attribute] = ()) -> None:
        self._attributes: dict[str, Attribute] = {}
        for attribute in attributes:
            self.register(attribute)

    @classmethod
    def from_matrix(cls, matrix: DecisionMatrix) -> AttributeRegistry:
        return cls(matrix.attributes)

    def __contains__(self, name: object) -> bool:
        return name in self._attributes

    def __iter__(self) -> Iterator[Attribute]:
        return iter(self._attributes.values())

    def __len__(self) -> int:
        return len(self._attributes)

    @property
    def names(self) -> list[str]:
        return list(self._attributes)

    def register(self, attribute: Attribute) -> None:
        """Add an attribute to the vocabulary.

        Raises:
            ValidationError: If the name is already registered, a categorical
                or range-bucket attribute declares no possible values, or a
                numeric domain is inverted.
        """
        if attribute.name in self._attributes:
            raise ValidationError(f"Attribute '{attribute.name}' is already registered")

        if attribute.type in (AttributeType.CATEGORICAL, AttributeType.RANGE_BUCKET):
            if not attribute.possible_values:
                raise ValidationError(
                    f"Attribute '{attribute.name}' ({attribute.type.value}) "
                    "must declare at least one possible value"
                )
            folded = [v.strip().casefold() for v in attribute.possible_values]
            if len(set(folded)) != len(folded):
                raise ValidationError(
                    f"Attribute '{attribute.name}' declares duplicate possible values"
                )

        if (
            attribute.min_value is not None
            and attribute.max_value is not None
            and attribute.min_value > attribute.max_value
        ):
            raise ValidationError(
                f"Attribute '{attribute.name}' has min_value above max_value"
            )

        self._attributes[attribute.name] = attribute
        logger.debug("Registered attribute %s (%s)", attribute.name, attribute.type.value)

    def get(self, name: str) -> Attribute:
        try:
            return self._attributes[name]
        except KeyError:
            raise UnknownAttributeError(name) from None

    # ── Value resolution ─────────────────────────────────────────

    def resolve_value(self, name: str, raw: object) -> AttributeValue:
        """Normalise a raw value against the attribute's declared domain.

        Categorical values match a possible value ignoring case and
        surrounding whitespace and resolve to its canonical spelling.
        Numeric values parse to floats and must satisfy min/max. Range
        buckets accept a bucket label or a number inside one bucket.

        Raises:
            UnknownAttributeError: If no attribute with this name exists.
            InvalidValueError: If the value is outside the declared domain.
        """
        attribute = self.get(name)
        raw = _unwrap(raw)

        if attribute.type == AttributeType.NUMERIC:
            return self._resolve_numeric(attribute, raw)
        if attribute.type == AttributeType.RANGE_BUCKET:
            return self._resolve_bucket(attribute, raw)
        return self._resolve_categorical(attribute, raw)

    def _resolve_categorical(self, attribute: Attribute, raw: object) -> EnumValue:
        if isinstance(raw, bool):
            text = "true" if raw else "false"
        elif isinstance(raw, str):
            text = raw
        elif isinstance(raw, int | float):
            text = _format_number(float(raw))
        else:
            raise InvalidValueError(attribute.name, raw, "expected text")
        canonical = self._match_label(attribute, text)
        if canonical is None:
            raise InvalidValueError(
                attribute.name, raw,
                f"not in possible values {list(attribute.possible_values)}",
            )
        return EnumValue(value=canonical)

    def _resolve_numeric(self, attribute: Attribute, raw: object) -> NumberValue:
        number = as_number(raw)
        if number is None:
            raise InvalidValueError(attribute.name, raw, "expected a number")
        if attribute.min_value is not None and number < attribute.min_value:
            raise InvalidValueError(
                attribute.name, raw, f"below minimum {attribute.min_value}",
            )
        if attribute.max_value is not None and number > attribute.max_value:
            raise InvalidValueError(
                attribute.name, raw, f"above maximum {attribute.max_value}",
            )
        return NumberValue(value=number)

    def _resolve_bucket(self, attribute: Attribute, raw: object) -> EnumValue:
        if isinstance(raw, str):
            canonical = self._match_label(attribute, raw)
            if canonical is not None:
                return EnumValue(value=canonical)

        number = as_number(raw)
        if number is not None:
            for label in attribute.possible_values:
                bounds = parse_bucket(label)
                if bounds is not None and bounds[0] <= number <= bounds[1]:
                    return EnumValue(value=label)

        raise InvalidValueError(
            attribute.name, raw,
            f"matches no bucket in {list(attribute.possible_values)}",
        )

    @staticmethod
    def _match_label(attribute: Attribute, text: str) -> str | None:
        folded = text.strip().casefold()
        for value in attribute.possible_values:
            if value.strip().casefold() == folded:
                return value
        return None

    # ── Condition checks ─────────────────────────────────────────

    def resolve_condition(self, condition: Condition) -> tuple[AttributeValue, ...]:
        """Resolve every literal of a condition against its attribute.

        Ordering operators need numeric literals; they are resolved for
        numeric attributes and only parsed for the others.

        Raises:
            UnknownAttributeError: If the condition's attribute is unknown.
            InvalidValueError: If any literal is outside the domain.
        """
        attribute = self.get(condition.attribute)
        if condition.operator.is_ordering:
            number = as_number(condition.value)
            if number is None:
                raise InvalidValueError(
                    attribute.name, condition.value,
                    f"operator '{condition.operator.value}' needs a numeric value",
                )
            if attribute.type == AttributeType.NUMERIC:
                return (self._resolve_numeric(attribute, number),)
            return (NumberValue(value=number),)
        return tuple(self.resolve_value(attribute.name, v) for v in condition.values)

    def check_condition(self, condition: Condition) -> list[str]:
        """Problems with a rule condition, without raising."""
        try:
            self.resolve_condition(condition)
        except (UnknownAttributeError, InvalidValueError) as e:
            return [str(e)]
        return []


def validate_matrix(matrix: DecisionMatrix) -> list[ConditionIssue]:
    """Validate a matrix for activation.

    Structural problems (duplicate or empty-domain attributes, duplicate
    rule ids) raise. Conditions whose values fall outside their declared
    domain are returned as issues: such a condition never matches but the
    matrix still loads.

    Raises:
        ValidationError: If the matrix is structurally malformed.
    """
    registry = AttributeRegistry.from_matrix(matrix)

    seen: set[str] = set()
    for rule in matrix.rules:
        if rule.id in seen:
            raise ValidationError(f"Duplicate rule id '{rule.id}'")
        seen.add(rule.id)

    issues: list[ConditionIssue] = []
    for rule in matrix.rules:
        for condition in rule.conditions:
            for message in registry.check_condition(condition):
                issues.append(ConditionIssue(
                    rule_id=rule.id,
                    attribute=condition.attribute,
                    message=message,
                ))

    for issue in issues:
        logger.warning("Rule %s: %s (condition will never match)", issue.rule_id, issue.message)
    return issues
