from __future__ import annotations

import math
from typing import Tuple


def normal_cdf(value: float) -> float:
    return 0.5 * (1.0 + math.erf(value / math.sqrt(2.0)))


def two_proportion_z_test(
    baseline_conversions: int,
    baseline_participants: int,
    variant_conversions: int,
    variant_participants: int,
) -> Tuple[float, float]:
    """Two-sided z-test for a difference between two conversion rates.

    Returns ``(z, p_value)``. When the pooled standard error is zero (both arms
    converted at 0% or 100%) there is no evidence of a difference and the
    p-value is 1.0.
    """
    if baseline_participants <= 0 or variant_participants <= 0:
        return 0.0, 1.0
    p1 = baseline_conversions / baseline_participants
    p2 = variant_conversions / variant_participants
    pooled = (baseline_conversions + variant_conversions) / (baseline_participants + variant_participants)
    error = math.sqrt(pooled * (1 - pooled) * (1 / baseline_participants + 1 / variant_participants))
    if error == 0:
        return 0.0, 1.0
    z = (p2 - p1) / error
    p_value = 2 * (1 - normal_cdf(abs(z)))
    return z, max(0.0, min(1.0, p_value))
