"""Validation sampler: replays historical sessions under a candidate matrix.

A seeded sample of feedback sessions is re-evaluated and re-routed from
each session's stored snapshot, with no live LLM call, and compared with
what the user said was correct. The same seed, candidate matrix and
session set always produce the same ValidationResult.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Sequence

from catalai.errors import EmptyDatasetError
from catalai.learning.cancellation import CancellationToken
from catalai.matrix.engine import RuleEngine
from catalai.matrix.store import MatrixVersionStore, apply_change
from catalai.routing.router import route
from catalai.schemas.classification import ClassificationContext
from catalai.schemas.config import QualityThresholds, RoutingThresholds, ValidationConfig
from catalai.schemas.feedback import FeedbackSession
from catalai.schemas.matrix import DecisionMatrix
from catalai.schemas.validation import ReplayOutcome, ValidationDetail, ValidationResult

logger = logging.getLogger(__name__)

# Sessions replayed between cancellation checks
_CHECK_EVERY = 100


class ValidationSampler:
    """Estimates the effect of a candidate matrix before it is committed."""

    def __init__(
        self,
        config: ValidationConfig | None = None,
        routing: RoutingThresholds | None = None,
        quality: QualityThresholds | None = None,
    ) -> None:
        self._config = config or ValidationConfig()
        self._routing = routing
        self._quality = quality

    def sample_size(self, population: int) -> int:
        """Sessions replayed for a population of ``population``.

        ``ceil(fraction * n)`` bounded below by min_sample and above by
        max_sample, and never more than the population itself.
        """
        target = min(
            self._config.max_sample,
            max(self._config.min_sample, math.ceil(self._config.sample_fraction * population)),
        )
        return min(population, target)

    def select(self, sessions: Sequence[FeedbackSession], seed: int) -> list[FeedbackSession]:
        """Seeded, order-independent sample of ``sessions``."""
        ordered = sorted(sessions, key=lambda s: s.session_id)
        size = self.sample_size(len(ordered))
        if size >= len(ordered):
            return ordered
        return random.Random(seed).sample(ordered, size)

    def validate(
        self,
        candidate: DecisionMatrix,
        sessions: Sequence[FeedbackSession],
        seed: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> ValidationResult:
        """Replay a seeded sample of sessions under ``candidate``.

        Raises:
            EmptyDatasetError: If ``sessions`` is empty.
            OperationCancelledError: If ``cancel`` fires mid-replay.
        """
        if not sessions:
            raise EmptyDatasetError("No feedback sessions to validate against")

        seed = self._config.default_seed if seed is None else seed
        sample = self.select(sessions, seed)
        engine = RuleEngine(candidate)

        details: list[ValidationDetail] = []
        for index, session in enumerate(sample):
            if cancel is not None and index % _CHECK_EVERY == 0:
                cancel.raise_if_cancelled("Validation")
            details.append(self._replay(engine, session))
        if cancel is not None:
            cancel.raise_if_cancelled("Validation")

        improved = sum(1 for d in details if d.outcome == ReplayOutcome.IMPROVED)
        worsened = sum(1 for d in details if d.outcome == ReplayOutcome.WORSENED)
        unchanged = len(details) - improved - worsened
        size = len(details)

        result = ValidationResult(
            matrix_version=candidate.version,
            seed=seed,
            population_size=len(sessions),
            sample_size=size,
            sample_fraction=size / len(sessions),
            improved_count=improved,
            unchanged_count=unchanged,
            worsened_count=worsened,
            improvement_rate=improved / size if size else 0.0,
            details=details,
        )
        logger.info(
            "Validated matrix v%d on %d/%d sessions (seed %d): +%d -%d =%d",
            candidate.version, size, len(sessions), seed, improved, worsened, unchanged,
        )
        return result

    def _replay(self, engine: RuleEngine, session: FeedbackSession) -> ValidationDetail:
        category = session.llm_category or session.final_category
        confidence = session.llm_confidence
        if confidence is None:
            confidence = session.final_confidence if session.final_confidence is not None else 0.0

        context = ClassificationContext(
            process_description=session.process_description,
            attribute_values=session.attribute_values,
            llm_category=category,
            llm_confidence=confidence,
            conversation_history=session.conversation_history,
        )
        evaluation = engine.evaluate(context)
        decision = route(
            evaluation, session.process_description, session.conversation_history,
            self._routing, self._quality,
        )

        correct = session.correct_category
        was_correct = session.final_category == correct
        is_correct = evaluation.category == correct
        if is_correct and not was_correct:
            outcome = ReplayOutcome.IMPROVED
        elif was_correct and not is_correct:
            outcome = ReplayOutcome.WORSENED
        else:
            outcome = ReplayOutcome.UNCHANGED

        return ValidationDetail(
            session_id=session.session_id,
            original_category=session.final_category,
            new_category=evaluation.category,
            new_confidence=evaluation.confidence,
            correct_category=correct,
            was_correct=was_correct,
            is_correct=is_correct,
            route=decision.action,
            outcome=outcome,
        )

    def validate_suggestion(
        self,
        store: MatrixVersionStore,
        suggestion_id: str,
        sessions: Sequence[FeedbackSession],
        seed: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> ValidationResult:
        """Preview a suggestion's change on the active matrix without committing it."""
        suggestion = store.get_suggestion(suggestion_id)
        candidate = apply_change(store.require_active(), suggestion.proposed_change)
        return self.validate(candidate, sessions, seed=seed, cancel=cancel)
