"""Description quality heuristic.

Buckets a process description as poor, marginal or good from its word
count and which kinds of key information it mentions. Keyword detection,
not NLP: the thresholds are policy constants from QualityThresholds.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from catalai.schemas.classification import ClarifyingExchange, DescriptionQuality
from catalai.schemas.config import QualityThresholds

# Key-information indicator categories
INDICATORS: dict[str, re.Pattern[str]] = {
    "frequency": re.compile(
        r"\b(daily|weekly|monthly|hourly|quarterly|annually|every|once|twice|times? per)\b",
        re.IGNORECASE,
    ),
    "volume": re.compile(
        r"\b(\d+|many|few|several|multiple|hundreds?|thousands?|transactions|users|people)\b",
        re.IGNORECASE,
    ),
    "current_state": re.compile(
        r"\b(currently|now|today|manual|paper|digital|automated|system|tool|software"
        r"|spreadsheet|excel|legacy)\b",
        re.IGNORECASE,
    ),
    "complexity": re.compile(
        r"\b(steps?|process|workflow|involves?|requires?|needs?|systems?|departments?"
        r"|approvals?)\b",
        re.IGNORECASE,
    ),
    "pain_point": re.compile(
        r"\b(problem|issue|slow|error|mistake|difficult|time-consuming|inefficient"
        r"|frustrating|pain|bottleneck)\b",
        re.IGNORECASE,
    ),
}


def _full_text(description: str, history: Sequence[ClarifyingExchange]) -> str:
    answers = [exchange.answer for exchange in history if exchange.answer]
    return " ".join([description, *answers])


def count_words(text: str) -> int:
    return len(text.split())


def detect_indicators(text: str) -> list[str]:
    """Indicator categories present in ``text``, in declaration order."""
    return [name for name, pattern in INDICATORS.items() if pattern.search(text)]


def assess_description_quality(
    description: str,
    conversation_history: Sequence[ClarifyingExchange] = (),
    thresholds: QualityThresholds | None = None,
) -> DescriptionQuality:
    """Classify description quality.

    Clarifying answers count toward the text. Once enough clarifying
    exchanges have happened the description is treated as good.
    """
    t = thresholds or QualityThresholds()

    if t.conversation_good_after and len(conversation_history) >= t.conversation_good_after:
        return DescriptionQuality.GOOD

    text = _full_text(description, conversation_history)
    words = count_words(text)
    indicators = len(detect_indicators(text))

    if words < t.poor_max_words and indicators < t.min_indicators:
        return DescriptionQuality.POOR
    if words > t.good_min_words and indicators >= t.min_indicators:
        return DescriptionQuality.GOOD
    return DescriptionQuality.MARGINAL
