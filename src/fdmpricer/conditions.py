"""Step conditions applied during backward time stepping.

A step condition transforms the value array at a given time: early
exercise, discrete barrier monitoring, snapshots for Greeks, or any
user-supplied event.  Conditions that act only at specific times list them
in ``stopping_times``; the time grid must contain every one of these
exactly (see :meth:`TimeGrid.from_mandatory_times`), so a condition is
never skipped.  ``stopping_times`` of ``None`` means "every step".
"""

from __future__ import annotations

import numpy as np
from typing import Callable, Iterable, Optional, Sequence

from .exceptions import ConfigurationError

__all__ = [
    "StepCondition",
    "AmericanStepCondition",
    "BermudanStepCondition",
    "KnockOutStepCondition",
    "SnapshotCondition",
    "FunctionStepCondition",
    "StepConditionComposite",
    "TIME_TOL",
]

TIME_TOL = 1e-10


def _check_times(times: Iterable[float]) -> tuple[float, ...]:
    t = tuple(sorted(float(x) for x in times))
    if any(x < 0.0 or not np.isfinite(x) for x in t):
        raise ConfigurationError(f"condition times must be finite and non-negative, got {t}")
    return t


class StepCondition:
    """Base class.  ``apply_to`` returns the (possibly new) value array."""

    stopping_times: Optional[tuple[float, ...]] = None

    def applies_at(self, t: float) -> bool:
        if self.stopping_times is None:
            return True
        return any(abs(t - s) <= TIME_TOL for s in self.stopping_times)

    def apply_to(self, values: np.ndarray, t: float) -> np.ndarray:
        raise NotImplementedError


class AmericanStepCondition(StepCondition):
    """Continuous early exercise: ``max(V, exercise value)`` after every step."""

    def __init__(self, exercise_values: np.ndarray):
        self.exercise_values = np.asarray(exercise_values, dtype=float)

    def apply_to(self, values: np.ndarray, t: float) -> np.ndarray:
        return np.maximum(values, self.exercise_values)


class BermudanStepCondition(StepCondition):
    """Early exercise on a discrete set of dates."""

    def __init__(self, exercise_times: Sequence[float], exercise_values: np.ndarray):
        self.stopping_times = _check_times(exercise_times)
        if not self.stopping_times:
            raise ConfigurationError("a Bermudan condition needs at least one exercise time")
        self.exercise_values = np.asarray(exercise_values, dtype=float)

    def apply_to(self, values: np.ndarray, t: float) -> np.ndarray:
        if self.applies_at(t):
            return np.maximum(values, self.exercise_values)
        return values


class KnockOutStepCondition(StepCondition):
    """Discretely monitored barrier: knocked-out nodes pay ``rebate``."""

    def __init__(self, monitoring_times: Sequence[float], knocked_out: np.ndarray,
                 rebate: float = 0.0):
        self.stopping_times = _check_times(monitoring_times)
        self.knocked_out = np.asarray(knocked_out, dtype=bool)
        self.rebate = float(rebate)

    def apply_to(self, values: np.ndarray, t: float) -> np.ndarray:
        if self.applies_at(t):
            values = np.array(values, dtype=float)
            values[self.knocked_out] = self.rebate
        return values


class SnapshotCondition(StepCondition):
    """Keeps a copy of the value array reached at time ``t``."""

    def __init__(self, t: float):
        self.t = float(t)
        self.stopping_times = (self.t,)
        self.values: Optional[np.ndarray] = None

    def apply_to(self, values: np.ndarray, t: float) -> np.ndarray:
        if self.applies_at(t):
            self.values = np.array(values, dtype=float)
        return values


class FunctionStepCondition(StepCondition):
    """Arbitrary transform ``fn(values, t)`` at the given times."""

    def __init__(self, times: Sequence[float], fn: Callable[[np.ndarray, float], np.ndarray]):
        self.stopping_times = _check_times(times)
        self.fn = fn

    def apply_to(self, values: np.ndarray, t: float) -> np.ndarray:
        if self.applies_at(t):
            return np.asarray(self.fn(np.array(values, dtype=float), t), dtype=float)
        return values


class StepConditionComposite(StepCondition):
    """Applies its members in order; ``stopping_times`` is their union."""

    def __init__(self, conditions: Iterable[StepCondition] = ()):
        self.conditions = list(conditions)

    @property
    def stopping_times(self) -> tuple[float, ...]:
        times = set()
        for c in self.conditions:
            if c.stopping_times is not None:
                times.update(c.stopping_times)
        return tuple(sorted(times))

    def applies_at(self, t: float) -> bool:
        return any(c.applies_at(t) for c in self.conditions)

    def apply_to(self, values: np.ndarray, t: float) -> np.ndarray:
        for c in self.conditions:
            if c.applies_at(t):
                values = c.apply_to(values, t)
        return values
