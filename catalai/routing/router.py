"""Quality-aware classification router.

Decides whether an evaluated classification is accepted automatically,
needs a clarifying question, or goes to a human. Confidence alone is not
enough to auto-accept: a thin description caps what the router trusts.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from catalai.routing.quality import assess_description_quality
from catalai.schemas.classification import (
    ClarifyingExchange,
    DescriptionQuality,
    EvaluationResult,
    RouteAction,
    RoutingDecision,
)
from catalai.schemas.config import QualityThresholds, RoutingThresholds

logger = logging.getLogger(__name__)


def decide(
    confidence: float,
    quality: DescriptionQuality,
    requires_review: bool,
    thresholds: RoutingThresholds | None = None,
) -> RoutingDecision:
    """Routing policy as a pure function. First matching branch wins."""
    t = thresholds or RoutingThresholds()

    if requires_review:
        action, reason = RouteAction.MANUAL_REVIEW, "a matrix rule requires review"
    elif confidence < t.manual_review_below:
        action, reason = (
            RouteAction.MANUAL_REVIEW,
            f"confidence {confidence:.2f} below {t.manual_review_below:.2f}",
        )
    elif confidence <= t.clarify_up_to:
        action, reason = (
            RouteAction.CLARIFY,
            f"confidence {confidence:.2f} at or below {t.clarify_up_to:.2f}",
        )
    elif quality == DescriptionQuality.POOR:
        action, reason = RouteAction.CLARIFY, "description quality is poor"
    elif quality == DescriptionQuality.MARGINAL and confidence <= t.marginal_clarify_up_to:
        action, reason = (
            RouteAction.CLARIFY,
            f"marginal description with confidence at or below {t.marginal_clarify_up_to:.2f}",
        )
    else:
        action, reason = (
            RouteAction.AUTO_CLASSIFY,
            f"confidence {confidence:.2f} with {quality} description",
        )

    return RoutingDecision(
        action=action,
        confidence=confidence,
        quality=quality,
        requires_review=requires_review,
        reason=reason,
    )


def route(
    evaluation: EvaluationResult,
    description: str,
    conversation_history: Sequence[ClarifyingExchange] = (),
    routing: RoutingThresholds | None = None,
    quality: QualityThresholds | None = None,
) -> RoutingDecision:
    """Route an evaluated classification."""
    assessed = assess_description_quality(description, conversation_history, quality)
    decision = decide(evaluation.confidence, assessed, evaluation.requires_review, routing)
    logger.debug(
        "Routed %s (%.2f, %s) -> %s: %s",
        evaluation.category, evaluation.confidence, assessed,
        decision.action, decision.reason,
    )
    return decision
