"""Adaptive learning loop: feedback mining, validation sampling, background runs."""

from catalai.learning.analyzer import FeedbackAnalyzer
from catalai.learning.cancellation import CancellationToken
from catalai.learning.sampler import ValidationSampler
from catalai.learning.worker import LearningWorker

__all__ = [
    "CancellationToken",
    "FeedbackAnalyzer",
    "LearningWorker",
    "ValidationSampler",
]
