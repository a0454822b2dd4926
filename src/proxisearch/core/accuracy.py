"""
Location accuracy tiers.

Device fixes report an error margin in meters. We bucket it into a small ordered set
of tiers for display and ranking hints. A missing margin stays missing: there is no
default tier.
"""

from __future__ import annotations

import math
from enum import Enum


class AccuracyTier(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    VERY_POOR = "VERY_POOR"

    @property
    def label(self) -> str:
        """Human-readable label, e.g. `"Very Poor"`."""
        return self.value.replace("_", " ").title()


# Upper bounds (inclusive, meters), strictly increasing.
ACCURACY_THRESHOLDS_M: tuple[tuple[float, AccuracyTier], ...] = (
    (5.0, AccuracyTier.EXCELLENT),
    (10.0, AccuracyTier.GOOD),
    (20.0, AccuracyTier.FAIR),
    (50.0, AccuracyTier.POOR),
)


def classify_accuracy(accuracy_m: float | None) -> AccuracyTier | None:
    """Bucket an error margin in meters; raises ValueError for negative or non-finite input."""
    if accuracy_m is None:
        return None
    value = float(accuracy_m)
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"accuracy must be a finite non-negative number of meters, got {accuracy_m!r}")
    for upper, tier in ACCURACY_THRESHOLDS_M:
        if value <= upper:
            return tier
    return AccuracyTier.VERY_POOR
