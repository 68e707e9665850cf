from __future__ import annotations

import logging
import numpy as np
from typing import Iterable, Sequence

from .conditions import TIME_TOL
from .exceptions import ConfigurationError

__all__ = ["TimeGrid"]

logger = logging.getLogger(__name__)


class TimeGrid:
    """Strictly increasing time points ``0 = t0 < t1 < ... < tN``.

    The grid is immutable.  Mandatory times (exercise, monitoring,
    snapshot dates) are stored exactly, so a lookup with :meth:`index`
    never has to interpolate.
    """

    def __init__(self, times: Sequence[float]):
        t = np.array(times, dtype=float)
        if t.ndim != 1 or t.size < 2:
            raise ConfigurationError("a time grid needs at least two points")
        if not np.all(np.isfinite(t)):
            raise ConfigurationError("time grid points must be finite")
        if t[0] != 0.0:
            raise ConfigurationError(f"a time grid must start at 0, got {t[0]}")
        if np.any(np.diff(t) <= 0.0):
            raise ConfigurationError("time grid points must be strictly increasing")
        t.setflags(write=False)
        self._times = t

    @classmethod
    def from_mandatory_times(
        cls,
        end: float,
        steps: int,
        mandatory: Iterable[float] = (),
    ) -> "TimeGrid":
        """About *steps* even steps on ``[0, end]`` with every mandatory time on the grid.

        Each interval between consecutive mandatory times receives
        ``max(1, round(length / (end / steps)))`` equal steps.
        """
        if end <= 0.0 or not np.isfinite(end):
            raise ConfigurationError(f"end time must be positive, got {end}")
        if steps < 1:
            raise ConfigurationError(f"steps must be >= 1, got {steps}")
        pts = sorted({float(m) for m in mandatory})
        if pts and (pts[0] < 0.0 or pts[-1] > end + TIME_TOL):
            raise ConfigurationError(f"mandatory times must lie in [0, {end}], got {pts}")
        pts = [p for p in pts if TIME_TOL < p < end - TIME_TOL] + [float(end)]

        dt_max = end / steps
        times = [0.0]
        begin = 0.0
        for stop in pts:
            n = max(int(round((stop - begin) / dt_max)), 1)
            dt = (stop - begin) / n
            times.extend(begin + k * dt for k in range(1, n))
            times.append(stop)
            begin = stop
        logger.debug("time grid: end=%g, %d steps requested, %d built, %d mandatory",
                     end, steps, len(times) - 1, len(pts))
        return cls(times)

    @property
    def times(self) -> np.ndarray:
        return self._times

    @property
    def end(self) -> float:
        return float(self._times[-1])

    @property
    def steps(self) -> int:
        return int(self._times.size - 1)

    def dt(self, i: int) -> float:
        """Length of step ``[t_{i-1}, t_i]``."""
        return float(self._times[i] - self._times[i - 1])

    def contains(self, t: float) -> bool:
        return bool(np.any(np.abs(self._times - t) <= TIME_TOL))

    def index(self, t: float) -> int:
        hit = np.flatnonzero(np.abs(self._times - t) <= TIME_TOL)
        if hit.size == 0:
            raise ConfigurationError(f"time {t} is not a point of the time grid")
        return int(hit[0])

    def __len__(self) -> int:
        return int(self._times.size)

    def __getitem__(self, i):
        return self._times[i]

    def __iter__(self):
        return iter(self._times)

    def __repr__(self) -> str:
        return f"TimeGrid(end={self.end:g}, steps={self.steps})"
