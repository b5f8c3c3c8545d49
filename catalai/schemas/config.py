"""Engine configuration schemas.

Loaded from defaults.toml. Every policy constant the router, quality
heuristic, analyzer and sampler use lives here so it can be tuned without
code changes.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Eliminate",
    "Simplify",
    "Digitise",
    "RPA",
    "AI Agent",
    "Agentic AI",
)


class RoutingThresholds(BaseModel):
    """Confidence bands used by the classification router."""

    manual_review_below: float = Field(
        default=0.5, ge=0.0, le=1.0,
        description="Confidence strictly below this goes to manual review",
    )
    clarify_up_to: float = Field(
        default=0.90, ge=0.0, le=1.0,
        description="Confidence up to and including this asks for clarification",
    )
    marginal_clarify_up_to: float = Field(
        default=0.92, ge=0.0, le=1.0,
        description="Marginal descriptions clarify up to and including this confidence",
    )

    @model_validator(mode="after")
    def _check_order(self) -> RoutingThresholds:
        if not self.manual_review_below <= self.clarify_up_to <= self.marginal_clarify_up_to:
            raise ValueError(
                "Routing thresholds must satisfy "
                "manual_review_below <= clarify_up_to <= marginal_clarify_up_to"
            )
        return self


class QualityThresholds(BaseModel):
    """Word-count and indicator thresholds for description quality."""

    poor_max_words: int = Field(
        default=20, ge=0, description="Fewer words than this may be poor",
    )
    good_min_words: int = Field(
        default=50, ge=0, description="More words than this may be good",
    )
    min_indicators: int = Field(
        default=2, ge=0, description="Indicator categories needed to escape poor / reach good",
    )
    conversation_good_after: int = Field(
        default=3, ge=0,
        description="Clarifying exchanges after which quality is good (0 disables)",
    )


class AnalysisConfig(BaseModel):
    """Feedback analyzer settings."""

    batch_size: int = Field(default=100, ge=1, description="Sessions scanned per batch")
    min_support: int = Field(default=3, ge=1, description="Default minimum pattern support")
    max_examples: int = Field(
        default=5, ge=0, description="Example session ids kept per misclassification",
    )
    low_confidence_below: float = Field(
        default=0.7, ge=0.0, le=1.0,
        description="Misclassifications below this confidence count as low-confidence",
    )
    consistency_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0,
        description="Subject agreement below this is reported as inconsistent",
    )


class ValidationConfig(BaseModel):
    """Validation sampler settings."""

    sample_fraction: float = Field(default=0.10, gt=0.0, le=1.0)
    min_sample: int = Field(default=10, ge=1)
    max_sample: int = Field(default=1000, ge=1)
    default_seed: int = Field(default=42, description="Seed used when the caller passes none")

    @model_validator(mode="after")
    def _check_bounds(self) -> ValidationConfig:
        if self.min_sample > self.max_sample:
            raise ValueError("min_sample must not exceed max_sample")
        return self


class ProviderConfig(BaseModel):
    """LiteLLM completion provider settings."""

    model: str = Field(default="gpt-4o-mini", description="LiteLLM model identifier")
    api_key_env: str = Field(
        default="OPENAI_API_KEY", description="Environment variable holding the API key",
    )
    api_base: str = Field(default="", description="Custom API base URL (empty = provider default)")
    timeout: float = Field(default=30.0, gt=0.0, description="Per-call timeout in seconds")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)


class StorageConfig(BaseModel):
    """Where matrix versions, suggestions and feedback live on disk."""

    state_dir: str = Field(default="~/.catalai", description="Matrix and suggestion state")
    feedback_db: str = Field(default="feedback.db", description="Relative to state_dir")


class EngineConfig(BaseModel):
    """Top-level configuration for the classification core."""

    categories: tuple[str, ...] = Field(
        default=DEFAULT_CATEGORIES,
        description="Automation categories from least to most automated",
    )
    routing: RoutingThresholds = Field(default_factory=RoutingThresholds)
    quality: QualityThresholds = Field(default_factory=QualityThresholds)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
