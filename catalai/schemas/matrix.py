"""Decision matrix schemas.

Defines the attribute vocabulary, the tagged attribute value model, rule
conditions and actions, and the immutable, versioned DecisionMatrix
aggregate that every evaluation reads from.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AttributeType(StrEnum):
    """Value domain of an attribute."""

    CATEGORICAL = "categorical"
    NUMERIC = "numeric"
    RANGE_BUCKET = "range_bucket"


class Attribute(BaseModel):
    """A named, typed dimension that rules and classifications reference.

    Categorical and range-bucket attributes declare an ordered set of
    possible values. Numeric attributes may declare an inclusive domain.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Unique attribute key")
    type: AttributeType = Field(description="Value domain of the attribute")
    possible_values: tuple[str, ...] = Field(
        default=(), description="Ordered allowed values (categorical / range_bucket)",
    )
    weight: float = Field(default=1.0, ge=0.0, description="Relative importance")
    description: str = Field(default="", description="What this attribute measures")
    min_value: float | None = Field(
        default=None, description="Inclusive lower bound for numeric attributes",
    )
    max_value: float | None = Field(
        default=None, description="Inclusive upper bound for numeric attributes",
    )


# ── Tagged attribute values ──────────────────────────────────────


class TextValue(BaseModel):
    """A free-text value that has not been matched to a domain yet."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str


class NumberValue(BaseModel):
    """A numeric value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["number"] = "number"
    value: float


class EnumValue(BaseModel):
    """A value resolved to the canonical spelling of a declared possible value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["enum"] = "enum"
    value: str


AttributeValue = Annotated[
    Union[TextValue, NumberValue, EnumValue],
    Field(discriminator="kind"),
]

# bool is kept distinct so JSON true/false is not read as 1.0/0.0
Scalar = bool | str | float


# ── Conditions ───────────────────────────────────────────────────


class ConditionOperator(StrEnum):
    """Comparison operators available in rule conditions."""

    EQ = "=="
    NE = "!="
    IN = "in"
    NOT_IN = "not_in"
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="

    @property
    def is_membership(self) -> bool:
        return self in (ConditionOperator.IN, ConditionOperator.NOT_IN)

    @property
    def is_ordering(self) -> bool:
        return self in (
            ConditionOperator.GT,
            ConditionOperator.LT,
            ConditionOperator.GE,
            ConditionOperator.LE,
        )


class Condition(BaseModel):
    """A single ``(attribute, operator, value)`` test.

    Membership operators take a list of values; every other operator
    takes a single scalar.
    """

    model_config = ConfigDict(frozen=True)

    attribute: str = Field(min_length=1, description="Attribute name")
    operator: ConditionOperator = Field(description="Comparison operator")
    value: Scalar | tuple[Scalar, ...] = Field(description="Literal to compare against")

    @model_validator(mode="after")
    def _check_value_shape(self) -> Condition:
        is_list = isinstance(self.value, tuple)
        if self.operator.is_membership and not is_list:
            raise ValueError(
                f"Operator '{self.operator.value}' on '{self.attribute}' needs a list value"
            )
        if not self.operator.is_membership and is_list:
            raise ValueError(
                f"Operator '{self.operator.value}' on '{self.attribute}' needs a single value"
            )
        return self

    @property
    def values(self) -> tuple[Scalar, ...]:
        """The condition literal(s) as a tuple."""
        return self.value if isinstance(self.value, tuple) else (self.value,)


# ── Actions ──────────────────────────────────────────────────────


class ActionType(StrEnum):
    """What a matching rule does to the classification."""

    OVERRIDE = "override"
    ADJUST_CONFIDENCE = "adjust_confidence"
    REQUIRE_REVIEW = "require_review"


class OverrideAction(BaseModel):
    """Force the final category."""

    model_config = ConfigDict(frozen=True)

    type: Literal["override"] = "override"
    category: str = Field(min_length=1, description="Category to force")
    rationale: str = Field(default="", description="Why the override applies")


class AdjustConfidenceAction(BaseModel):
    """Add a signed delta to the confidence score."""

    model_config = ConfigDict(frozen=True)

    type: Literal["adjust_confidence"] = "adjust_confidence"
    delta: float = Field(description="Signed confidence adjustment")
    rationale: str = Field(default="", description="Why the adjustment applies")


class RequireReviewAction(BaseModel):
    """Force manual review regardless of confidence."""

    model_config = ConfigDict(frozen=True)

    type: Literal["require_review"] = "require_review"
    rationale: str = Field(default="", description="Why review is required")


RuleAction = Annotated[
    Union[OverrideAction, AdjustConfidenceAction, RequireReviewAction],
    Field(discriminator="type"),
]


class Rule(BaseModel):
    """A prioritised conjunctive rule. No conditions means always match."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique rule identifier")
    name: str = Field(default="", description="Short human-readable name")
    priority: int = Field(default=0, description="Higher priorities evaluate first")
    conditions: tuple[Condition, ...] = Field(
        default=(), description="All must hold for the rule to match",
    )
    action: RuleAction = Field(description="Effect when the rule matches")
    enabled: bool = Field(default=True, description="Disabled rules never evaluate")
    description: str = Field(default="", description="What the rule encodes")

    @property
    def action_type(self) -> ActionType:
        return ActionType(self.action.type)

    @property
    def sort_key(self) -> tuple[int, str]:
        """Priority descending, then id ascending."""
        return (-self.priority, self.id)


class DecisionMatrix(BaseModel):
    """Immutable, versioned aggregate of attributes and rules."""

    model_config = ConfigDict(frozen=True)

    version: int = Field(default=0, ge=0, description="Monotonic matrix version")
    attributes: tuple[Attribute, ...] = Field(default=(), description="Attribute vocabulary")
    rules: tuple[Rule, ...] = Field(default=(), description="Rule set")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When this version was created",
    )
    created_by: str = Field(default="system", description="Author of this version")
    description: str = Field(default="", description="Free-text description")

    def attribute(self, name: str) -> Attribute | None:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None

    def rule(self, rule_id: str) -> Rule | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def ordered_rules(self) -> list[Rule]:
        """Enabled rules in evaluation order."""
        return sorted((r for r in self.rules if r.enabled), key=lambda r: r.sort_key)


class ConditionIssue(BaseModel):
    """A rule condition that can never match against the declared domain."""

    rule_id: str = Field(description="Rule containing the condition")
    attribute: str = Field(description="Attribute the condition references")
    message: str = Field(description="Human-readable explanation")
