"""Backward time stepping and the value/Greeks readout on top of it.

:class:`BackwardSolver` runs a stepping scheme from maturity down to a
grid time, applying the step condition at maturity and at every grid time
reached.  :class:`FdmSolver` owns one full rollback to ``t = 0`` and
interpolates value, delta, gamma and theta off the resulting slice.

Both are explicit state machines:

- ``BackwardSolver``: ``constructed → stepping → terminal``; ``reset()``
  goes back to ``constructed``.
- ``FdmSolver``: ``dirty`` until :meth:`FdmSolver.recompute` runs,
  ``clean`` afterwards; :meth:`FdmSolver.invalidate` marks it dirty again.
  Reading results while dirty raises :class:`SolverStateError`; nothing is
  ever recomputed implicitly on read.
"""

from __future__ import annotations

import logging
import time
import numpy as np
from dataclasses import dataclass, field
from scipy.interpolate import CubicSpline, RectBivariateSpline
from typing import Callable, Optional, Sequence, Union

from .boundary import BoundaryConditionSet
from .composite import LinearOpComposite
from .conditions import SnapshotCondition, StepCondition, StepConditionComposite
from .exceptions import ConfigurationError, SolverStateError
from .meshers import MesherComposite
from .operators import FirstDerivativeOp, SecondDerivativeOp
from .schemes import ImplicitEulerScheme, SchemeDesc, make_scheme
from .time_grid import TimeGrid

__all__ = [
    "CONSTRUCTED",
    "STEPPING",
    "TERMINAL",
    "DIRTY",
    "CLEAN",
    "BackwardSolver",
    "SolverDesc",
    "FdmSolver",
]

logger = logging.getLogger(__name__)

CONSTRUCTED = "constructed"
STEPPING = "stepping"
TERMINAL = "terminal"

DIRTY = "dirty"
CLEAN = "clean"

InnerValue = Union[np.ndarray, Callable[[MesherComposite], np.ndarray]]


def _stopping_times(condition: Optional[StepCondition]) -> tuple[float, ...]:
    if condition is None or condition.stopping_times is None:
        return ()
    return tuple(condition.stopping_times)


# ---------------------------------------------------------------------------
# Backward solver
# ---------------------------------------------------------------------------

class BackwardSolver:
    """Roll a value array back through a fixed time grid.

    Parameters
    ----------
    op : LinearOpComposite
        Spatial operator; refreshed by the scheme at every step.
    time_grid : TimeGrid or sequence of float
        ``0 = t0 < t1 < ... < tN``; a plain sequence is validated here.
    bc_set : BoundaryConditionSet, optional
    condition : StepCondition, optional
        Applied at maturity before the first step and after every step at
        the time reached.  Its ``stopping_times`` must be grid points.
    scheme : SchemeDesc
        Stepping scheme (default Hundsdorfer-Verwer).
    damping_steps : int
        Number of initial implicit Euler steps (Rannacher smoothing of the
        payoff kink).
    """

    def __init__(
        self,
        op: LinearOpComposite,
        time_grid: Union[TimeGrid, Sequence[float]],
        bc_set: Optional[BoundaryConditionSet] = None,
        condition: Optional[StepCondition] = None,
        scheme: Optional[SchemeDesc] = None,
        damping_steps: int = 0,
    ):
        grid = time_grid if isinstance(time_grid, TimeGrid) else TimeGrid(time_grid)
        if not 0 <= damping_steps <= grid.steps:
            raise ConfigurationError(
                f"damping_steps must lie in [0, {grid.steps}], got {damping_steps}"
            )
        for s in _stopping_times(condition):
            if not grid.contains(s):
                raise ConfigurationError(f"step-condition time {s} is not on the time grid")

        self.op = op
        self.time_grid = grid
        self.bc_set = bc_set if bc_set is not None else BoundaryConditionSet()
        self.condition = condition if condition is not None else StepConditionComposite()
        self.scheme_desc = scheme if scheme is not None else SchemeDesc.hundsdorfer()
        self.damping_steps = int(damping_steps)

        self._scheme = make_scheme(self.scheme_desc, op, self.bc_set)
        self._damping = ImplicitEulerScheme(op, self.bc_set)
        self.reset()

    @property
    def state(self) -> str:
        return self._state

    @property
    def time(self) -> Optional[float]:
        """Grid time the last rollback stopped at (``None`` before any)."""
        return None if self._index is None else float(self.time_grid[self._index])

    def reset(self) -> None:
        self._state = CONSTRUCTED
        self._index: Optional[int] = None
        self._steps_done = 0

    def rollback(self, values: np.ndarray, to: float = 0.0) -> np.ndarray:
        """Step *values* from the current time (maturity at first) down to *to*.

        A second call continues from where the previous one stopped, so a
        slice can be read off at an intermediate time and the rollback
        resumed with the same values.
        """
        if self._state == TERMINAL:
            raise SolverStateError("the solver reached t=0; call reset() before rolling back again")

        grid = self.time_grid
        target = grid.index(to)
        values = np.array(values, dtype=float)
        if values.shape != (self.op.mesher.size,):
            raise ConfigurationError(
                f"value array has shape {values.shape}, mesher has {self.op.mesher.size} nodes"
            )

        if self._state == CONSTRUCTED:
            start = grid.steps
            if self.condition.applies_at(grid.end):
                values = self.condition.apply_to(values, grid.end)
        else:
            start = self._index
        if target > start:
            raise ConfigurationError(
                f"cannot roll back from t={grid[start]} to the later time t={to}"
            )

        logger.debug("rollback %s: t=%g -> t=%g, %d steps (%d damped)",
                     self._scheme.name, grid[start], grid[target], start - target,
                     max(0, min(self.damping_steps - self._steps_done, start - target)))

        for n in range(start, target, -1):
            scheme = self._damping if self._steps_done < self.damping_steps else self._scheme
            scheme.set_step(grid.dt(n))
            values = scheme.step(values, float(grid[n]))
            t_next = float(grid[n - 1])
            if self.condition.applies_at(t_next):
                values = self.condition.apply_to(values, t_next)
            self._steps_done += 1

        self._index = target
        self._state = TERMINAL if target == 0 else STEPPING
        return values


# ---------------------------------------------------------------------------
# Solver description and facade
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class SolverDesc:
    """Everything a full rollback needs except the operator and the scheme.

    ``inner_value`` is either the terminal value array or a callable that
    returns it given the mesher.
    """
    mesher: MesherComposite
    bc_set: BoundaryConditionSet
    condition: Optional[StepCondition]
    inner_value: InnerValue
    maturity: float
    time_steps: int
    damping_steps: int = 0
    mandatory_times: tuple = field(default=())

    def __post_init__(self):
        if not self.maturity > 0.0:
            raise ConfigurationError(f"maturity must be positive, got {self.maturity}")
        if self.time_steps < 1:
            raise ConfigurationError(f"time_steps must be >= 1, got {self.time_steps}")
        if self.damping_steps < 0:
            raise ConfigurationError(f"damping_steps must be >= 0, got {self.damping_steps}")
        if self.mesher.ndim > 2:
            raise ConfigurationError("value readout supports one or two dimensions")

    def terminal_values(self) -> np.ndarray:
        v = self.inner_value(self.mesher) if callable(self.inner_value) else self.inner_value
        v = np.array(v, dtype=float)
        if v.shape != (self.mesher.size,):
            raise ConfigurationError(
                f"inner value has shape {v.shape}, mesher has {self.mesher.size} nodes"
            )
        return v


class FdmSolver:
    """One rollback to ``t = 0`` plus interpolated value and Greeks.

    Derivatives are taken with respect to the mesh coordinate of direction
    0 (e.g. log-spot for a log-spot mesh); engines apply the chain rule.
    In two dimensions the readout is at ``(x, y)``.

    Examples
    --------
    >>> solver = FdmSolver(desc, SchemeDesc.douglas(), op)
    >>> solver.recompute()
    >>> solver.value_at(np.log(100.0))
    """

    def __init__(self, desc: SolverDesc, scheme: Optional[SchemeDesc], op: LinearOpComposite):
        if op.mesher is not desc.mesher:
            raise ConfigurationError("operator and solver description use different meshers")
        self.desc = desc
        self.scheme = scheme if scheme is not None else SchemeDesc.hundsdorfer()
        self.op = op
        self.invalidate()

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state

    def invalidate(self) -> None:
        self._state = DIRTY
        self._values: Optional[np.ndarray] = None
        self._interp = None

    def _require_clean(self) -> None:
        if self._state != CLEAN:
            raise SolverStateError("results are stale; call recompute() first")

    def recompute(self) -> None:
        """Run the rollback and rebuild the interpolants."""
        start = time.perf_counter()
        desc = self.desc
        mandatory = _stopping_times(desc.condition) + tuple(desc.mandatory_times)
        grid = TimeGrid.from_mandatory_times(desc.maturity, desc.time_steps, mandatory)

        snapshot = SnapshotCondition(float(grid[1]))
        members = [snapshot] if desc.condition is None else [desc.condition, snapshot]
        solver = BackwardSolver(
            self.op, grid, desc.bc_set, StepConditionComposite(members),
            self.scheme, desc.damping_steps,
        )
        values = solver.rollback(desc.terminal_values(), 0.0)

        mesher = desc.mesher
        d1 = FirstDerivativeOp(0, mesher).apply(values)
        d2 = SecondDerivativeOp(0, mesher).apply(values)
        theta = (snapshot.values - values) / snapshot.t

        make = _Interp1d if mesher.ndim == 1 else _Interp2d
        self._interp = {
            "value": make(mesher, values),
            "delta": make(mesher, d1),
            "gamma": make(mesher, d2),
            "theta": make(mesher, theta),
        }
        self._values = values
        self._state = CLEAN
        logger.debug("recompute: %d nodes, %d steps, %s, %.3f s",
                     mesher.size, grid.steps, self.scheme.type, time.perf_counter() - start)

    # -- results ------------------------------------------------------------

    @property
    def values(self) -> np.ndarray:
        """Value array at ``t = 0`` (a copy)."""
        self._require_clean()
        return self._values.copy()

    def value_at(self, *x: float) -> float:
        self._require_clean()
        return self._interp["value"](*x)

    def delta_at(self, *x: float) -> float:
        """``∂V/∂x`` along direction 0."""
        self._require_clean()
        return self._interp["delta"](*x)

    def gamma_at(self, *x: float) -> float:
        """``∂²V/∂x²`` along direction 0."""
        self._require_clean()
        return self._interp["gamma"](*x)

    def theta_at(self, *x: float) -> float:
        """``∂V/∂t`` from the first time step."""
        self._require_clean()
        return self._interp["theta"](*x)


# ---------------------------------------------------------------------------
# Interpolants
# ---------------------------------------------------------------------------

def _check_inside(grid: np.ndarray, x: float, direction: int) -> None:
    if not grid[0] <= x <= grid[-1]:
        raise ConfigurationError(
            f"point {x} lies outside the mesh [{grid[0]}, {grid[-1]}] in direction {direction}"
        )


class _Interp1d:
    """Natural cubic spline through a 1-D slice."""

    def __init__(self, mesher: MesherComposite, values: np.ndarray):
        self._x = mesher.mesher(0).locations
        self._spline = CubicSpline(self._x, values, bc_type="natural")

    def __call__(self, *x: float) -> float:
        if len(x) != 1:
            raise ConfigurationError(f"a 1-D solver is read at one coordinate, got {len(x)}")
        _check_inside(self._x, x[0], 0)
        return float(self._spline(x[0]))


class _Interp2d:
    """Bicubic spline through a 2-D slice (lower order on very coarse meshes)."""

    def __init__(self, mesher: MesherComposite, values: np.ndarray):
        self._x = mesher.mesher(0).locations
        self._y = mesher.mesher(1).locations
        grid = mesher.layout.to_grid(values)
        kx = min(3, self._x.size - 1)
        ky = min(3, self._y.size - 1)
        self._spline = RectBivariateSpline(self._x, self._y, grid, kx=kx, ky=ky)

    def __call__(self, *x: float) -> float:
        if len(x) != 2:
            raise ConfigurationError(f"a 2-D solver is read at two coordinates, got {len(x)}")
        _check_inside(self._x, x[0], 0)
        _check_inside(self._y, x[1], 1)
        return float(self._spline(x[0], x[1])[0, 0])
