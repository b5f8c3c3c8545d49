"""catalai schema definitions.

All Pydantic v2 models used by the matrix, router, learning loop and
configuration layer.
"""

from catalai.schemas.classification import (
    ClarifyingExchange,
    ClassificationContext,
    ClassificationOutcome,
    ConnectionProbe,
    DescriptionQuality,
    EvaluationResult,
    LLMClassification,
    RouteAction,
    RoutingDecision,
    TriggeredRule,
)
from catalai.schemas.config import (
    DEFAULT_CATEGORIES,
    AnalysisConfig,
    EngineConfig,
    ProviderConfig,
    QualityThresholds,
    RoutingThresholds,
    StorageConfig,
    ValidationConfig,
)
from catalai.schemas.feedback import (
    AnalysisFilters,
    AnalysisProgress,
    AnalysisReport,
    DateRange,
    FeedbackSession,
    FeedbackStatus,
    MisclassificationPattern,
    MisclassificationSummary,
    SubjectConsistency,
)
from catalai.schemas.matrix import (
    ActionType,
    AdjustConfidenceAction,
    Attribute,
    AttributeType,
    AttributeValue,
    Condition,
    ConditionIssue,
    ConditionOperator,
    DecisionMatrix,
    EnumValue,
    NumberValue,
    OverrideAction,
    RequireReviewAction,
    Rule,
    TextValue,
)
from catalai.schemas.suggestion import (
    AddAttribute,
    AddRule,
    ModifyAttribute,
    ModifyRule,
    RemoveAttribute,
    RemoveRule,
    Suggestion,
    SuggestionEvidence,
    SuggestionStatus,
)
from catalai.schemas.validation import ReplayOutcome, ValidationDetail, ValidationResult

__all__ = [
    "DEFAULT_CATEGORIES",
    "ActionType",
    "AddAttribute",
    "AddRule",
    "AdjustConfidenceAction",
    "AnalysisConfig",
    "AnalysisFilters",
    "AnalysisProgress",
    "AnalysisReport",
    "Attribute",
    "AttributeType",
    "AttributeValue",
    "ClarifyingExchange",
    "ClassificationContext",
    "ClassificationOutcome",
    "Condition",
    "ConditionIssue",
    "ConditionOperator",
    "ConnectionProbe",
    "DateRange",
    "DecisionMatrix",
    "DescriptionQuality",
    "EngineConfig",
    "EnumValue",
    "EvaluationResult",
    "FeedbackSession",
    "FeedbackStatus",
    "LLMClassification",
    "MisclassificationPattern",
    "MisclassificationSummary",
    "ModifyAttribute",
    "ModifyRule",
    "NumberValue",
    "OverrideAction",
    "ProviderConfig",
    "QualityThresholds",
    "RemoveAttribute",
    "RemoveRule",
    "ReplayOutcome",
    "RequireReviewAction",
    "RouteAction",
    "RoutingDecision",
    "RoutingThresholds",
    "Rule",
    "StorageConfig",
    "SubjectConsistency",
    "Suggestion",
    "SuggestionEvidence",
    "SuggestionStatus",
    "TextValue",
    "TriggeredRule",
    "ValidationConfig",
    "ValidationDetail",
    "ValidationResult",
]
