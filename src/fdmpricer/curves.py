"""Discount-curve providers consumed by the PDE operators.

The operators only ever ask two questions of a curve: the discount factor
to a time ``t`` and the continuously-compounded forward rate over a step
``[t1, t2]``.  Anything exposing ``discount(t)`` and
``forward_rate(t1, t2)`` can be passed where a curve is expected; the two
classes below cover flat rates and interpolated zero curves.
"""

from __future__ import annotations

import numpy as np
from typing import Sequence

from .exceptions import ConfigurationError

__all__ = ["YieldCurve", "FlatForward", "ZeroCurve"]

_FWD_EPS = 1e-4


class YieldCurve:
    """Base class: subclasses provide :meth:`zero_rate`."""

    def zero_rate(self, t: float) -> float:
        raise NotImplementedError

    def discount(self, t: float) -> float:
        t = float(t)
        return float(np.exp(-self.zero_rate(t) * t))

    def forward_rate(self, t1: float, t2: float) -> float:
        """Continuously-compounded forward rate over ``[t1, t2]``.

        A degenerate interval is widened to ``[t1, t1 + 1e-4]``.
        """
        t1, t2 = float(t1), float(t2)
        if t2 < t1:
            raise ConfigurationError(f"forward_rate needs t1 <= t2, got {t1} > {t2}")
        if t2 - t1 < _FWD_EPS:
            t2 = t1 + _FWD_EPS
        return float(np.log(self.discount(t1) / self.discount(t2)) / (t2 - t1))


class FlatForward(YieldCurve):
    """Flat continuously-compounded rate."""

    def __init__(self, rate: float):
        if not np.isfinite(rate):
            raise ConfigurationError(f"rate must be finite, got {rate}")
        self.rate = float(rate)

    def zero_rate(self, t: float) -> float:
        return self.rate

    def forward_rate(self, t1: float, t2: float) -> float:
        return self.rate

    def __repr__(self) -> str:
        return f"FlatForward({self.rate!r})"


class ZeroCurve(YieldCurve):
    """Zero rates linearly interpolated in time, flat beyond the pillars.

    Parameters
    ----------
    times : sequence of float
        Strictly increasing pillar times (years), all positive.
    rates : sequence of float
        Continuously-compounded zero rates at the pillars.
    """

    def __init__(self, times: Sequence[float], rates: Sequence[float]):
        times = np.asarray(times, dtype=float)
        rates = np.asarray(rates, dtype=float)
        if times.ndim != 1 or times.shape != rates.shape or times.size == 0:
            raise ConfigurationError("times and rates must be 1-D of equal, non-zero length")
        if np.any(times <= 0.0) or np.any(np.diff(times) <= 0.0):
            raise ConfigurationError("pillar times must be positive and strictly increasing")
        if not np.all(np.isfinite(rates)):
            raise ConfigurationError("zero rates must be finite")
        self.times = times
        self.rates = rates

    def zero_rate(self, t: float) -> float:
        return float(np.interp(t, self.times, self.rates))
