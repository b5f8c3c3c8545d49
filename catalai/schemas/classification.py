"""Classification context, evaluation and routing schemas.

Defines the ephemeral input to rule evaluation, the EvaluationResult
produced by the rule engine, and the RoutingDecision produced by the
quality-aware router.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from catalai.schemas.matrix import ActionType


class ClarifyingExchange(BaseModel):
    """One question/answer pair from a clarification round."""

    model_config = ConfigDict(frozen=True)

    question: str = Field(default="", description="Clarifying question asked")
    answer: str = Field(default="", description="User's answer")


class ClassificationContext(BaseModel):
    """Everything the rule engine needs to evaluate one process."""

    model_config = ConfigDict(frozen=True)

    process_description: str = Field(default="", description="Free-text process description")
    attribute_values: dict[str, bool | str | float] = Field(
        default_factory=dict, description="Extracted attribute values, may be partial",
    )
    llm_category: str = Field(description="Category proposed by the LLM")
    llm_confidence: float = Field(ge=0.0, le=1.0, description="LLM confidence")
    conversation_history: tuple[ClarifyingExchange, ...] = Field(
        default=(), description="Prior clarifying exchanges, oldest first",
    )


class TriggeredRule(BaseModel):
    """Audit record of a rule that contributed to an evaluation."""

    model_config = ConfigDict(frozen=True)

    rule_id: str = Field(description="Identifier of the rule")
    rule_name: str = Field(default="", description="Rule name")
    priority: int = Field(description="Rule priority")
    action: ActionType = Field(description="Action the rule applied")


class EvaluationResult(BaseModel):
    """Outcome of evaluating one matrix version against one context."""

    model_config = ConfigDict(frozen=True)

    category: str = Field(description="Final category")
    confidence: float = Field(ge=0.0, le=1.0, description="Adjusted, clamped confidence")
    triggered_rules: tuple[TriggeredRule, ...] = Field(
        default=(), description="Contributing rules in evaluation order",
    )
    requires_review: bool = Field(default=False, description="A rule demanded manual review")
    overridden: bool = Field(default=False, description="An override rule set the category")
    matrix_version: int = Field(description="Matrix version evaluated")
    original_category: str = Field(description="Category proposed by the LLM")
    original_confidence: float = Field(description="Confidence proposed by the LLM")
    warnings: tuple[str, ...] = Field(
        default=(), description="Conditions skipped because of domain errors",
    )


class DescriptionQuality(StrEnum):
    """Heuristic quality bucket of a process description."""

    POOR = "poor"
    MARGINAL = "marginal"
    GOOD = "good"


class RouteAction(StrEnum):
    """What to do with a classification."""

    AUTO_CLASSIFY = "auto_classify"
    CLARIFY = "clarify"
    MANUAL_REVIEW = "manual_review"


class RoutingDecision(BaseModel):
    """Router output with the inputs that produced it."""

    model_config = ConfigDict(frozen=True)

    action: RouteAction = Field(description="Selected route")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence that was routed")
    quality: DescriptionQuality = Field(description="Assessed description quality")
    requires_review: bool = Field(default=False, description="Review flag from the engine")
    reason: str = Field(description="Which policy branch fired")


class ClassificationOutcome(BaseModel):
    """Evaluation plus routing for one classification request."""

    evaluation: EvaluationResult
    routing: RoutingDecision


class LLMClassification(BaseModel):
    """Category and confidence returned by a completion provider."""

    category: str = Field(min_length=1, description="Proposed category")
    confidence: float = Field(ge=0.0, le=1.0, description="Self-assessed confidence")
    rationale: str = Field(default="", description="Model's explanation")


class ConnectionProbe(BaseModel):
    """Result of a provider connection test."""

    text: str = Field(description="Text returned by the model")
    latency: float = Field(ge=0.0, description="Round-trip time in seconds")
    model: str = Field(default="", description="Model identifier that answered")
