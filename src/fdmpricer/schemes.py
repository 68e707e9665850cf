"""Time-stepping schemes for ``∂V/∂t + L V = 0`` solved backwards in time.

Every scheme advances the value array one step from ``t`` to ``t - dt``:
``set_step(dt)`` fixes the step size and ``step(values, t)`` returns the
new array.  Each step refreshes the operator with ``op.set_time(t - dt, t)``
and the boundary conditions with ``bc_set.set_time(t - dt)`` before doing
anything else.

The ADI schemes (Douglas, Craig-Sneyd, modified Craig-Sneyd,
Hundsdorfer-Verwer) treat each direction implicitly in turn and the mixed
part explicitly; constants follow

- K. J. in 't Hout & S. Foulon, *ADI finite difference schemes for option
  pricing in the Heston model with correlation*, Int. J. Numer. Anal.
  Model. 7 (2010) 303-320;
- W. Hundsdorfer & J. G. Verwer, *Numerical Solution of Time-Dependent
  Advection-Diffusion-Reaction Equations* (Springer, 2003), IV.5.
"""

from __future__ import annotations

import numpy as np
from dataclasses import dataclass
from scipy import sparse
from scipy.sparse.linalg import spsolve
from typing import Optional

from .boundary import BoundaryConditionSet
from .composite import LinearOpComposite
from .exceptions import ConfigurationError, NumericalError

__all__ = [
    "SchemeDesc",
    "ExplicitEulerScheme",
    "ImplicitEulerScheme",
    "CrankNicolsonScheme",
    "DouglasScheme",
    "CraigSneydScheme",
    "ModifiedCraigSneydScheme",
    "HundsdorferScheme",
    "make_scheme",
]

DOUGLAS = "douglas"
CRAIG_SNEYD = "craig_sneyd"
MODIFIED_CRAIG_SNEYD = "modified_craig_sneyd"
HUNDSDORFER = "hundsdorfer"
MODIFIED_HUNDSDORFER = "modified_hundsdorfer"
IMPLICIT_EULER = "implicit_euler"
EXPLICIT_EULER = "explicit_euler"
CRANK_NICOLSON = "crank_nicolson"

_TYPES = (DOUGLAS, CRAIG_SNEYD, MODIFIED_CRAIG_SNEYD, HUNDSDORFER,
          MODIFIED_HUNDSDORFER, IMPLICIT_EULER, EXPLICIT_EULER, CRANK_NICOLSON)


# ---------------------------------------------------------------------------
# Scheme description
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SchemeDesc:
    """Which scheme to run and its weights.

    ``theta`` is the implicit weight, ``mu`` the weight of the explicit
    correction stage.  Prefer the factory methods, which carry the
    literature constants.
    """
    type: str
    theta: float
    mu: float = 0.0

    def __post_init__(self):
        if self.type not in _TYPES:
            raise ConfigurationError(f"unknown scheme type {self.type!r}; expected one of {_TYPES}")
        if not 0.0 <= self.theta <= 1.0:
            raise ConfigurationError(f"theta must lie in [0, 1], got {self.theta}")
        if not 0.0 <= self.mu <= 1.0:
            raise ConfigurationError(f"mu must lie in [0, 1], got {self.mu}")

    @classmethod
    def douglas(cls) -> "SchemeDesc":
        return cls(DOUGLAS, 0.5, 0.0)

    @classmethod
    def craig_sneyd(cls) -> "SchemeDesc":
        return cls(CRAIG_SNEYD, 0.5, 0.5)

    @classmethod
    def modified_craig_sneyd(cls) -> "SchemeDesc":
        return cls(MODIFIED_CRAIG_SNEYD, 1.0 / 3.0, 1.0 / 3.0)

    @classmethod
    def hundsdorfer(cls) -> "SchemeDesc":
        return cls(HUNDSDORFER, 0.5 + np.sqrt(3.0) / 6.0, 0.5)

    @classmethod
    def modified_hundsdorfer(cls) -> "SchemeDesc":
        return cls(MODIFIED_HUNDSDORFER, 1.0 - np.sqrt(2.0) / 2.0, 0.5)

    @classmethod
    def implicit_euler(cls) -> "SchemeDesc":
        return cls(IMPLICIT_EULER, 0.0, 0.0)

    @classmethod
    def explicit_euler(cls) -> "SchemeDesc":
        return cls(EXPLICIT_EULER, 0.0, 0.0)

    @classmethod
    def crank_nicolson(cls) -> "SchemeDesc":
        return cls(CRANK_NICOLSON, 0.5, 0.0)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class _Scheme:
    name = "scheme"

    def __init__(self, op: LinearOpComposite, bc_set: Optional[BoundaryConditionSet] = None):
        self.op = op
        self.bc_set = bc_set if bc_set is not None else BoundaryConditionSet()
        self.dt: Optional[float] = None

    def set_step(self, dt: float) -> None:
        if not dt > 0.0 or not np.isfinite(dt):
            raise ConfigurationError(f"step size must be positive, got {dt}")
        self.dt = float(dt)

    def _begin(self, t: float) -> float:
        if self.dt is None:
            raise ConfigurationError("set_step() must be called before step()")
        if t - self.dt < -1e-8:
            raise ConfigurationError(f"a step from t={t} of size {self.dt} goes below zero")
        t0 = max(0.0, t - self.dt)
        self.op.set_time(t0, t)
        self.bc_set.set_time(t0)
        return t0

    def step(self, values: np.ndarray, t: float) -> np.ndarray:
        raise NotImplementedError

    @staticmethod
    def _check(values: np.ndarray) -> np.ndarray:
        if not np.all(np.isfinite(values)):
            raise NumericalError("time step produced non-finite values")
        return values


# ---------------------------------------------------------------------------
# One-step theta family
# ---------------------------------------------------------------------------

class ExplicitEulerScheme(_Scheme):
    """``V ← V + θ dt L V`` (θ = 1 unless a fraction is requested)."""

    name = EXPLICIT_EULER

    def step(self, values: np.ndarray, t: float, theta: float = 1.0) -> np.ndarray:
        self._begin(t)
        a = np.asarray(values, dtype=float)
        self.bc_set.apply_before_applying(self.op)
        y = a + theta * self.dt * self.op.apply(a)
        self.bc_set.apply_after_applying(y)
        return self._check(y)


class ImplicitEulerScheme(_Scheme):
    """Solve ``(I - θ dt L) V_new = V``.

    Single-direction operators without a mixed part use the exact banded
    solve; otherwise the assembled sparse system is factorised directly.
    """

    name = IMPLICIT_EULER

    def step(self, values: np.ndarray, t: float, theta: float = 1.0) -> np.ndarray:
        self._begin(t)
        rhs = np.array(values, dtype=float)
        self.bc_set.apply_before_solving(self.op, rhs)
        a = theta * self.dt
        if self.op.size() == 1 and not getattr(self.op, "has_mixed", True):
            x = self.op.solve_splitting(self.op.directions[0], rhs, a)
        else:
            n = rhs.size
            m = (sparse.identity(n, format="csr") - a * self.op.to_matrix()).tocsc()
            x = np.asarray(spsolve(m, rhs), dtype=float)
            if not np.all(np.isfinite(x)):
                raise NumericalError("implicit Euler system is singular")
        self.bc_set.apply_after_solving(x)
        return self._check(x)


class CrankNicolsonScheme(_Scheme):
    """Explicit ``(1 - θ)`` half followed by an implicit ``θ`` half."""

    name = CRANK_NICOLSON

    def __init__(self, theta: float, op: LinearOpComposite,
                 bc_set: Optional[BoundaryConditionSet] = None):
        super().__init__(op, bc_set)
        self.theta = theta
        self._explicit = ExplicitEulerScheme(op, self.bc_set)
        self._implicit = ImplicitEulerScheme(op, self.bc_set)

    def set_step(self, dt: float) -> None:
        super().set_step(dt)
        self._explicit.set_step(dt)
        self._implicit.set_step(dt)

    def step(self, values: np.ndarray, t: float) -> np.ndarray:
        if self.dt is None:
            raise ConfigurationError("set_step() must be called before step()")
        a = values
        if self.theta != 1.0:
            a = self._explicit.step(a, t, 1.0 - self.theta)
        if self.theta != 0.0:
            a = self._implicit.step(a, t, self.theta)
        return a


# ---------------------------------------------------------------------------
# ADI schemes
# ---------------------------------------------------------------------------

class _ADIScheme(_Scheme):
    def __init__(self, theta: float, mu: float, op: LinearOpComposite,
                 bc_set: Optional[BoundaryConditionSet] = None):
        super().__init__(op, bc_set)
        self.theta = theta
        self.mu = mu

    def _explicit(self, base: np.ndarray, increment: np.ndarray) -> np.ndarray:
        self.bc_set.apply_before_applying(self.op)
        y = base + self.dt * increment
        self.bc_set.apply_after_applying(y)
        return y

    def _sweep(self, y: np.ndarray, a: np.ndarray) -> np.ndarray:
        """One implicit solve per direction, correcting with ``a``."""
        th = self.theta * self.dt
        for d in self.op.directions:
            rhs = y - th * self.op.apply_direction(d, a)
            y = self.op.solve_splitting(d, rhs, th)
        return y


class DouglasScheme(_ADIScheme):
    """Douglas-Rachford splitting; with one direction and θ = ½ it is Crank-Nicolson."""

    name = DOUGLAS

    def __init__(self, theta: float, op: LinearOpComposite,
                 bc_set: Optional[BoundaryConditionSet] = None):
        super().__init__(theta, 0.0, op, bc_set)

    def step(self, values: np.ndarray, t: float) -> np.ndarray:
        self._begin(t)
        a = np.asarray(values, dtype=float)
        y = self._explicit(a, self.op.apply(a))
        y = self._sweep(y, a)
        self.bc_set.apply_after_solving(y)
        return self._check(y)


class CraigSneydScheme(_ADIScheme):
    """Douglas predictor plus a ``mu``-weighted explicit mixed-term corrector."""

    name = CRAIG_SNEYD

    def step(self, values: np.ndarray, t: float) -> np.ndarray:
        self._begin(t)
        a = np.asarray(values, dtype=float)
        y0 = self._explicit(a, self.op.apply(a))
        y = self._sweep(y0.copy(), a)

        yt = self._explicit(y0, self.mu * self.op.apply_mixed(y - a))
        yt = self._sweep(yt, a)
        self.bc_set.apply_after_solving(yt)
        return self._check(yt)


class ModifiedCraigSneydScheme(_ADIScheme):
    """Craig-Sneyd with an extra ``(½ - mu)`` full-operator correction."""

    name = MODIFIED_CRAIG_SNEYD

    def step(self, values: np.ndarray, t: float) -> np.ndarray:
        self._begin(t)
        a = np.asarray(values, dtype=float)
        y0 = self._explicit(a, self.op.apply(a))
        y = self._sweep(y0.copy(), a)

        diff = y - a
        yt = self._explicit(
            y0,
            self.mu * self.op.apply_mixed(diff) + (0.5 - self.mu) * self.op.apply(diff),
        )
        yt = self._sweep(yt, a)
        self.bc_set.apply_after_solving(yt)
        return self._check(yt)


class HundsdorferScheme(_ADIScheme):
    """Hundsdorfer-Verwer: two implicit sweeps around a ``mu``-weighted corrector.

    1. ``y0 = a + dt L a``
    2. per direction ``d``: ``(I - θ dt L_d) y = y - θ dt L_d a``
    3. ``ŷ0 = y0 + mu dt L (y - a)``
    4. per direction ``d``: ``(I - θ dt L_d) ŷ = ŷ - θ dt L_d y``
    """

    name = HUNDSDORFER

    def step(self, values: np.ndarray, t: float) -> np.ndarray:
        self._begin(t)
        a = np.asarray(values, dtype=float)
        y0 = self._explicit(a, self.op.apply(a))
        y = self._sweep(y0.copy(), a)

        yt = self._explicit(y0, self.mu * self.op.apply(y - a))
        yt = self._sweep(yt, y)
        self.bc_set.apply_after_solving(yt)
        return self._check(yt)


def make_scheme(desc: SchemeDesc, op: LinearOpComposite,
                bc_set: Optional[BoundaryConditionSet] = None) -> _Scheme:
    """Instantiate the scheme described by *desc*."""
    if desc.type == DOUGLAS:
        return DouglasScheme(desc.theta, op, bc_set)
    if desc.type == CRAIG_SNEYD:
        return CraigSneydScheme(desc.theta, desc.mu, op, bc_set)
    if desc.type == MODIFIED_CRAIG_SNEYD:
        return ModifiedCraigSneydScheme(desc.theta, desc.mu, op, bc_set)
    if desc.type in (HUNDSDORFER, MODIFIED_HUNDSDORFER):
        return HundsdorferScheme(desc.theta, desc.mu, op, bc_set)
    if desc.type == IMPLICIT_EULER:
        return ImplicitEulerScheme(op, bc_set)
    if desc.type == EXPLICIT_EULER:
        return ExplicitEulerScheme(op, bc_set)
    if desc.type == CRANK_NICOLSON:
        return CrankNicolsonScheme(desc.theta, op, bc_set)
    raise ConfigurationError(f"unknown scheme type {desc.type!r}")
