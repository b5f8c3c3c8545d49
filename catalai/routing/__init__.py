"""Quality-aware routing of evaluated classifications."""

from catalai.routing.quality import assess_description_quality, detect_indicators
from catalai.routing.router import decide, route

__all__ = [
    "assess_description_quality",
    "decide",
    "detect_indicators",
    "route",
]
