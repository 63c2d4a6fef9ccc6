"""Confidence scoring helpers.

Every score handed out by the resolver lives in [0.0, 1.0].  This module
holds the small numeric pieces shared by the matching engine, the
record merger and the API layer:

1. **clamp_confidence** -- force any float (including NaN) into range.
2. **weighted_confidence** -- similarity x tier weight, clamped.
3. **confidence_to_level** -- map a score to a display tier.
"""

import math
from enum import Enum


class ConfidenceLevel(Enum):
    """Human-readable confidence tiers used in API responses."""

    VERY_LOW = "very_low"    # < 0.2
    LOW = "low"              # 0.2 - 0.4
    MEDIUM = "medium"        # 0.4 - 0.6
    HIGH = "high"            # 0.6 - 0.8
    VERY_HIGH = "very_high"  # >= 0.8


def clamp_confidence(value: float) -> float:
    """Clamp *value* to [0.0, 1.0]; NaN becomes 0.0."""
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def weighted_confidence(similarity: float, tier_weight: float) -> float:
    """Combine a name similarity with the weight of the tier that matched.

    Args:
        similarity: Name similarity in [0.0, 1.0].
        tier_weight: Static weight for the kind of name that matched.

    Returns:
        ``similarity * tier_weight`` clamped to [0.0, 1.0].
    """
    return clamp_confidence(clamp_confidence(similarity) * clamp_confidence(tier_weight))


def confidence_to_level(score: float) -> ConfidenceLevel:
    """Map a numeric confidence score to a human-readable level."""
    if score < 0.2:
        return ConfidenceLevel.VERY_LOW
    if score < 0.4:
        return ConfidenceLevel.LOW
    if score < 0.6:
        return ConfidenceLevel.MEDIUM
    if score < 0.8:
        return ConfidenceLevel.HIGH
    return ConfidenceLevel.VERY_HIGH
