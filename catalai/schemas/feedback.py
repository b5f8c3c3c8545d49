"""Feedback session and analysis report schemas.

Feedback sessions are immutable once recorded and are the sole input to
the learning loop. The AnalysisReport is what the feedback analyzer
returns: aggregate agreement findings, qualifying misclassification
patterns and the pending suggestions derived from them.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from catalai.schemas.classification import ClarifyingExchange
from catalai.schemas.suggestion import Suggestion


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class FeedbackStatus(StrEnum):
    """Which feedback sessions a store query returns."""

    ANY = "any"
    CONFIRMED = "confirmed"
    CORRECTED = "corrected"


class FeedbackSession(BaseModel):
    """A classification the user confirmed or corrected."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1, description="Unique session identifier")
    final_category: str = Field(description="Category shown to the user")
    final_confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Confidence shown to the user",
    )
    user_corrected_category: str | None = Field(
        default=None, description="Category the user chose when they disagreed",
    )
    attribute_values: dict[str, bool | str | float] = Field(
        default_factory=dict, description="Attribute snapshot at classification time",
    )
    timestamp: UtcDatetime = Field(description="When feedback was recorded")
    llm_category: str | None = Field(default=None, description="Raw LLM category")
    llm_confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Raw LLM confidence",
    )
    process_description: str = Field(default="", description="Process description")
    conversation_history: tuple[ClarifyingExchange, ...] = Field(
        default=(), description="Clarifying exchanges",
    )
    matrix_version: int | None = Field(default=None, description="Matrix version used")
    subject: str | None = Field(default=None, description="Subject area of the process")

    @property
    def is_corrected(self) -> bool:
        return (
            self.user_corrected_category is not None
            and self.user_corrected_category != self.final_category
        )

    @property
    def correct_category(self) -> str:
        """The category the user accepted as right."""
        return self.user_corrected_category or self.final_category


class DateRange(BaseModel):
    """Inclusive timestamp window. Open on any side left as None."""

    start: UtcDatetime | None = None
    end: UtcDatetime | None = None

    def contains(self, moment: datetime) -> bool:
        moment = _ensure_utc(moment)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


class AnalysisFilters(BaseModel):
    """Which sessions an analysis run considers and how patterns qualify."""

    start: UtcDatetime | None = Field(default=None, description="Inclusive lower bound")
    end: UtcDatetime | None = Field(default=None, description="Inclusive upper bound")
    misclassifications_only: bool = Field(
        default=True, description="Only analyse corrected sessions",
    )
    min_support: int = Field(default=3, ge=1, description="Minimum supporting sessions")
    min_support_fraction: float = Field(
        default=0.0, ge=0.0, le=1.0,
        description="Minimum share of analysed sessions a pattern must cover",
    )

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start, end=self.end)


class MisclassificationSummary(BaseModel):
    """Count of one from → to correction across the dataset."""

    from_category: str
    to_category: str
    count: int = Field(ge=0)
    examples: list[str] = Field(default_factory=list, description="Example session ids")


class SubjectConsistency(BaseModel):
    """Agreement statistics within one subject area."""

    subject: str
    total_sessions: int = Field(ge=0)
    agreement_rate: float = Field(ge=0.0, le=1.0)
    common_category: str
    category_distribution: dict[str, int] = Field(default_factory=dict)


class MisclassificationPattern(BaseModel):
    """A recurring correction over identical attribute snapshots."""

    signature: dict[str, str] = Field(description="Attribute snapshot shared by the group")
    final_category: str = Field(description="Category the system produced")
    corrected_category: str = Field(description="Category the users chose")
    support: int = Field(ge=0, description="Number of sessions in the group")
    session_ids: list[str] = Field(default_factory=list, description="Sessions in the group")
    description: str = Field(description="Human-readable summary")


class AnalysisProgress(BaseModel):
    """Progress notification emitted during long-running batch work."""

    stage: str = Field(description="collecting | analyzing | validating | complete")
    message: str
    current: int = Field(ge=0)
    total: int = Field(ge=0)

    @property
    def percentage(self) -> int:
        return round(self.current / self.total * 100) if self.total else 100


class AnalysisReport(BaseModel):
    """Everything one analysis run produced."""

    analysis_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    filters: AnalysisFilters
    matrix_version: int = Field(description="Matrix version suggestions are based on")
    analysed_sessions: int = Field(ge=0)
    data_range: DateRange = Field(description="Earliest and latest analysed timestamps")
    support_threshold: int = Field(ge=1, description="Effective minimum pattern support")
    overall_agreement_rate: float = Field(ge=0.0, le=1.0)
    category_agreement_rates: dict[str, float] = Field(default_factory=dict)
    common_misclassifications: list[MisclassificationSummary] = Field(default_factory=list)
    subject_consistency: list[SubjectConsistency] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    patterns: list[MisclassificationPattern] = Field(default_factory=list)
    unactionable_patterns: list[MisclassificationPattern] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
