"""Background worker for feedback analysis and validation runs.

Runs the CPU-bound scans in a thread so the event loop stays responsive.
Cancelling the awaiting task cancels the scan's token, and the scan stops
at its next batch boundary.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import TypeVar

from catalai.learning.analyzer import FeedbackAnalyzer, ProgressCallback
from catalai.learning.cancellation import CancellationToken
from catalai.learning.sampler import ValidationSampler
from catalai.schemas.config import EngineConfig
from catalai.schemas.feedback import AnalysisFilters, AnalysisReport, FeedbackSession
from catalai.schemas.matrix import DecisionMatrix
from catalai.schemas.validation import ValidationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LearningWorker:
    """Runs analyzer and sampler jobs off the event loop."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()

    async def _run(self, job: Callable[[CancellationToken], T], name: str) -> T:
        token = CancellationToken()
        try:
            return await asyncio.to_thread(job, token)
        except asyncio.CancelledError:
            token.cancel()
            logger.info("%s cancelled", name)
            raise

    async def analyze(
        self,
        matrix: DecisionMatrix,
        sessions: Sequence[FeedbackSession],
        filters: AnalysisFilters | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AnalysisReport:
        analyzer = FeedbackAnalyzer(
            matrix, self._config.analysis, categories=self._config.categories,
        )
        return await self._run(
            lambda token: analyzer.analyze(sessions, filters, cancel=token, on_progress=on_progress),
            "Feedback analysis",
        )

    async def validate(
        self,
        candidate: DecisionMatrix,
        sessions: Sequence[FeedbackSession],
        seed: int | None = None,
    ) -> ValidationResult:
        sampler = ValidationSampler(
            self._config.validation, self._config.routing, self._config.quality,
        )
        return await self._run(
            lambda token: sampler.validate(candidate, sessions, seed=seed, cancel=token),
            "Validation",
        )
