"""Validation sampling result schemas."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from catalai.schemas.classification import RouteAction


class ReplayOutcome(StrEnum):
    """How a replayed session compares to its recorded outcome."""

    IMPROVED = "improved"
    UNCHANGED = "unchanged"
    WORSENED = "worsened"


class ValidationDetail(BaseModel):
    """Replay of one sampled session under a candidate matrix."""

    session_id: str
    original_category: str
    new_category: str
    new_confidence: float = Field(ge=0.0, le=1.0)
    correct_category: str
    was_correct: bool
    is_correct: bool
    route: RouteAction
    outcome: ReplayOutcome


class ValidationResult(BaseModel):
    """Estimated effect of a candidate matrix on historical sessions.

    Derivable deterministically from (seed, matrix version, session set).
    """

    matrix_version: int = Field(description="Version of the candidate matrix")
    seed: int = Field(description="Random seed used for sampling")
    population_size: int = Field(ge=0, description="Sessions available for sampling")
    sample_size: int = Field(ge=0, description="Sessions replayed")
    sample_fraction: float = Field(ge=0.0, le=1.0, description="sample_size / population")
    improved_count: int = Field(ge=0)
    unchanged_count: int = Field(ge=0)
    worsened_count: int = Field(ge=0)
    improvement_rate: float = Field(ge=0.0, le=1.0, description="improved / sample_size")
    details: list[ValidationDetail] = Field(default_factory=list)
