"""
Trial data generation.

Each trial is n distinct integers drawn uniformly from [lower, upper].
The values at positions 1 and 2 are always the marked pair the
participant compares; the true percentage is the smaller marked value
as a percentage of the larger.
"""

import math
import random
from dataclasses import dataclass

from .errors import GenerationError

MARKED = (1, 2)


@dataclass(frozen=True)
class TrialData:
    values: tuple[int, ...]
    marked: tuple[int, int]
    true_percentage: int

    @property
    def marked_values(self) -> tuple[int, int]:
        return self.values[self.marked[0]], self.values[self.marked[1]]


def round_half_up(x: float) -> int:
    """Round .5 away from zero for positive x (browser Math.round)."""
    return int(math.floor(x + 0.5))


def true_percentage(value_a: int, value_b: int) -> int:
    smaller = min(value_a, value_b)
    larger = max(value_a, value_b)
    return round_half_up(smaller / larger * 100)


def _distinct_values(n: int, lower: int, upper: int, rng, max_attempts: int) -> list[int]:
    values: list[int] = []
    attempts = 0
    while len(values) < n:
        if attempts >= max_attempts:
            raise GenerationError(
                f"could not draw {n} distinct values from [{lower}, {upper}] "
                f"in {max_attempts} attempts"
            )
        attempts += 1
        v = rng.randint(lower, upper)
        if v not in values:
            values.append(v)
    return values


def _enforce_gap(values: list[int], min_gap: int, lower: int, upper: int,
                 rng, max_attempts: int) -> None:
    """Re-roll values[2] until it is at least min_gap away from values[1]."""
    a, b = MARKED
    attempts = 0
    while abs(values[a] - values[b]) < min_gap:
        if attempts >= max_attempts:
            raise GenerationError(
                f"could not separate marked values by {min_gap} "
                f"in {max_attempts} attempts"
            )
        attempts += 1
        v = rng.randint(lower, upper)
        if v not in values:
            values[b] = v


def generate_trial_data(
    n: int = 5,
    lower: int = 2,
    upper: int = 99,
    min_gap: int = 0,
    rng: random.Random | None = None,
    max_attempts: int = 10000,
) -> TrialData:
    if n < 3:
        raise GenerationError(f"need at least 3 values to mark positions {MARKED}, got {n}")
    if n > upper - lower + 1:
        raise GenerationError(f"cannot draw {n} distinct values from [{lower}, {upper}]")
    rng = rng or random.Random()

    values = _distinct_values(n, lower, upper, rng, max_attempts)
    if min_gap > 0:
        _enforce_gap(values, min_gap, lower, upper, rng, max_attempts)

    return TrialData(
        values=tuple(values),
        marked=MARKED,
        true_percentage=true_percentage(values[MARKED[0]], values[MARKED[1]]),
    )


def generate_trial_set(
    count: int,
    n: int = 5,
    lower: int = 2,
    upper: int = 99,
    min_gap: int = 0,
    rng: random.Random | None = None,
    max_attempts: int = 10000,
) -> list[TrialData]:
    """Pre-generate count trials, no two sharing the same first two values."""
    rng = rng or random.Random()
    trials: list[TrialData] = []
    seen: set[tuple[int, int]] = set()
    attempts = 0
    while len(trials) < count:
        if attempts >= max_attempts:
            raise GenerationError(f"could not build {count} non-duplicate trials")
        attempts += 1
        trial = generate_trial_data(n, lower, upper, min_gap, rng, max_attempts)
        head = trial.values[:2]
        if head in seen:
            continue
        seen.add(head)
        trials.append(trial)
    return trials
