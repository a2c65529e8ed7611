"""
Cleveland–McGill error metric.

    log2Error = log2(|reported − true| + 1/8)

An exact answer scores 0 rather than log2(1/8) = −3.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class GradeResult:
    raw_error: float
    log2_error: float


def cm_error(reported: float, true: float) -> float:
    """Unclamped cm-error."""
    return math.log2(abs(reported - true) + 1 / 8)


def score(trial_data, response: float) -> GradeResult:
    raw_error = abs(trial_data.true_percentage - response)
    log2_error = 0.0 if raw_error == 0 else cm_error(response, trial_data.true_percentage)
    return GradeResult(raw_error=raw_error, log2_error=log2_error)
