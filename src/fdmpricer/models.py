"""Model-specific PDE operators.

Each class turns a stochastic model plus discount curve(s) into a
:class:`~fdmpricer.composite.LinearOpComposite` for the backward pricing
equation ``∂V/∂t + L V = 0``.  Coefficients that depend on time (rates,
time-dependent drift, local/leverage volatility) are refreshed in
:meth:`set_time`, which must run before every step; using an operator
whose time was never set raises :class:`SolverStateError`.

Models
------
- :class:`CEVOp`: ``df = alpha f^beta dW`` on the forward.
- :class:`BlackScholesOp`: lognormal spot in ``x = ln S``, optional local
  volatility ``sigma(t, S)``.
- :class:`ExtendedOrnsteinUhlenbeckOp`: mean reversion to a
  time-dependent level.
- :class:`ExtOUJumpOp`: extended OU plus an exponentially decaying jump
  factor; the jump integral is the explicit (mixed) part.
- :class:`HestonOp`: log-spot / variance with correlation cross term and
  an optional leverage function (stochastic local volatility).
- :class:`BlackScholesCIROp`: lognormal spot with a correlated CIR short
  rate as the second state variable.
"""

from __future__ import annotations

import numpy as np
from scipy import sparse
from typing import Callable, Optional

from .composite import RateSource, _TimedComposite, rate_over
from .exceptions import ConfigurationError, NumericalError
from .meshers import MesherComposite
from .operators import (
    FirstDerivativeOp,
    SecondDerivativeOp,
    SecondOrderMixedDerivativeOp,
    TripleBandLinearOp,
)
from .processes import (
    CIRProcess,
    ExtendedOrnsteinUhlenbeckProcess,
    ExtOUWithJumpsProcess,
    HestonProcess,
)

__all__ = [
    "CEVOp",
    "BlackScholesOp",
    "ExtendedOrnsteinUhlenbeckOp",
    "ExtOUJumpOp",
    "HestonOp",
    "BlackScholesCIROp",
]


class _OneDirectionOp(_TimedComposite):
    """Composite whose whole action is one triple-band map along ``direction``."""

    def __init__(self, mesher: MesherComposite, direction: int):
        if not 0 <= direction < mesher.ndim:
            raise ConfigurationError(
                f"direction {direction} outside a {mesher.ndim}-dimensional mesher"
            )
        self.mesher = mesher
        self.direction = direction
        self._map = TripleBandLinearOp(direction, mesher)

    @property
    def directions(self) -> tuple[int, ...]:
        return (self.direction,)

    @property
    def has_mixed(self) -> bool:
        return False

    def apply(self, r: np.ndarray) -> np.ndarray:
        self._require_time()
        return self._map.apply(r)

    def apply_direction(self, direction: int, r: np.ndarray) -> np.ndarray:
        self._require_time()
        if direction == self.direction:
            return self._map.apply(r)
        return self._zeros(r)

    def solve_splitting(self, direction: int, r: np.ndarray, a: float) -> np.ndarray:
        self._require_time()
        if direction == self.direction:
            return self._map.solve_splitting(r, -a, 1.0)
        return np.array(r, dtype=float)

    def to_matrix_decomp(self) -> list[sparse.csr_matrix]:
        self._require_time()
        return [self._map.to_matrix()]


# ---------------------------------------------------------------------------
# CEV
# ---------------------------------------------------------------------------

class CEVOp(_OneDirectionOp):
    """Constant elasticity of variance on the forward, absorbing at zero.

    ``L = ½ alpha² f^(2 beta) ∂²/∂f² - r(t)``, with ``r`` the forward rate of
    ``r_curve`` over the current step.
    """

    def __init__(
        self,
        mesher: MesherComposite,
        r_curve: RateSource,
        f0: float,
        alpha: float,
        beta: float,
        direction: int = 0,
    ):
        super().__init__(mesher, direction)
        if alpha <= 0.0:
            raise ConfigurationError(f"alpha must be positive, got {alpha}")
        self.r_curve = r_curve
        self.f0, self.alpha, self.beta = float(f0), float(alpha), float(beta)
        f = mesher.locations(direction)
        with np.errstate(divide="ignore", invalid="ignore"):
            vol2 = alpha * alpha * np.power(f, 2.0 * beta)
        vol2 = np.where(f > 0.0, vol2, 0.0)
        self._dxx = SecondDerivativeOp(direction, mesher).mult(0.5 * vol2)

    def set_time(self, t1: float, t2: float) -> None:
        r = rate_over(self.r_curve, t1, t2)
        self._map.axpyb(None, None, self._dxx, -r)
        self._time = (t1, t2)


# ---------------------------------------------------------------------------
# Black-Scholes (log-spot, optional local volatility)
# ---------------------------------------------------------------------------

class BlackScholesOp(_OneDirectionOp):
    """Lognormal spot in ``x = ln S``.

    ``L = ½ σ² ∂²/∂x² + (r - q - ½ σ²) ∂/∂x - r``.  With ``local_vol`` given,
    ``σ = local_vol(t, S)`` is evaluated on the mesh at the step's mid time.
    """

    def __init__(
        self,
        mesher: MesherComposite,
        r_curve: RateSource,
        q_curve: RateSource = None,
        vol: Optional[float] = None,
        local_vol: Optional[Callable[[float, np.ndarray], np.ndarray]] = None,
        direction: int = 0,
    ):
        super().__init__(mesher, direction)
        if (vol is None) == (local_vol is None):
            raise ConfigurationError("give exactly one of vol and local_vol")
        if vol is not None and vol <= 0.0:
            raise ConfigurationError(f"vol must be positive, got {vol}")
        self.r_curve, self.q_curve = r_curve, q_curve
        self.vol, self.local_vol = vol, local_vol
        self._x = mesher.locations(direction)
        self._dx = FirstDerivativeOp(direction, mesher)
        self._dxx = SecondDerivativeOp(direction, mesher)

    def set_time(self, t1: float, t2: float) -> None:
        r = rate_over(self.r_curve, t1, t2)
        q = rate_over(self.q_curve, t1, t2)
        if self.local_vol is not None:
            sig = np.asarray(self.local_vol(0.5 * (t1 + t2), np.exp(self._x)), dtype=float)
            sig = np.broadcast_to(sig, self._x.shape)
            if not np.all(np.isfinite(sig)):
                raise NumericalError(f"local volatility is not finite at t={0.5 * (t1 + t2)}")
            var = sig * sig
        else:
            var = self.vol * self.vol
        self._map.axpyb(r - q - 0.5 * var, self._dx, self._dxx.mult(0.5 * var), -r)
        self._time = (t1, t2)


# ---------------------------------------------------------------------------
# Extended Ornstein-Uhlenbeck
# ---------------------------------------------------------------------------

class ExtendedOrnsteinUhlenbeckOp(_OneDirectionOp):
    """``L = ½ σ² ∂²/∂x² + speed (level(t) - x) ∂/∂x - r``."""

    def __init__(
        self,
        mesher: MesherComposite,
        process: ExtendedOrnsteinUhlenbeckProcess,
        r_curve: RateSource,
        direction: int = 0,
    ):
        super().__init__(mesher, direction)
        self.process = process
        self.r_curve = r_curve
        self._x = mesher.locations(direction)
        self._dx = FirstDerivativeOp(direction, mesher)
        vol = process.diffusion(0.0, self._x)
        self._dxx = SecondDerivativeOp(direction, mesher).mult(0.5 * vol * vol)

    def set_time(self, t1: float, t2: float) -> None:
        r = rate_over(self.r_curve, t1, t2)
        drift = self.process.drift(0.5 * (t1 + t2), self._x)
        self._map.axpyb(drift, self._dx, self._dxx, -r)
        self._time = (t1, t2)


# ---------------------------------------------------------------------------
# Extended OU with jumps (two factors)
# ---------------------------------------------------------------------------

class ExtOUJumpOp(_TimedComposite):
    """Two-factor spike model on a ``(x, y)`` mesh.

    Direction 0 carries the OU factor and the discounting, direction 1 the
    jump factor's decay ``-beta y ∂/∂y`` and the ``-λ V`` part of the jump
    term.  The jump integral

    .. math::

        λ \\int_0^\\infty V(x, y + z)\\, η e^{-η z} \\, dz

    is computed with Gauss-Laguerre quadrature and linear interpolation
    along ``y`` (values beyond the mesh are held flat) and forms the
    explicit mixed part.
    """

    def __init__(
        self,
        mesher: MesherComposite,
        process: ExtOUWithJumpsProcess,
        r_curve: RateSource,
        integro_points: int = 20,
    ):
        if mesher.ndim != 2:
            raise ConfigurationError("the OU jump operator needs a two-dimensional mesher")
        if integro_points < 1:
            raise ConfigurationError(f"integro_points must be >= 1, got {integro_points}")
        self.mesher = mesher
        self.process = process
        self.r_curve = r_curve
        ou = process.ou_process

        self._x = mesher.locations(0)
        self._dx = FirstDerivativeOp(0, mesher)
        vol = ou.diffusion(0.0, self._x)
        self._dxx = SecondDerivativeOp(0, mesher).mult(0.5 * vol * vol)
        self._map_x = TripleBandLinearOp(0, mesher)

        y = mesher.locations(1)
        self._map_y = FirstDerivativeOp(1, mesher).mult(-process.beta * y)
        self._map_y.axpyb(None, None, self._map_y, -process.jump_intensity)

        nodes, weights = np.polynomial.laguerre.laggauss(integro_points)
        y_grid = mesher.mesher(1).locations
        targets = y_grid[:, None] + nodes[None, :] / process.eta
        idx = np.clip(np.searchsorted(y_grid, targets, side="right") - 1, 0, y_grid.size - 2)
        w = (targets - y_grid[idx]) / (y_grid[idx + 1] - y_grid[idx])
        self._jump_idx = idx
        self._jump_w = np.clip(w, 0.0, 1.0)
        self._quad_w = weights

    def set_time(self, t1: float, t2: float) -> None:
        r = rate_over(self.r_curve, t1, t2)
        drift = self.process.ou_process.drift(0.5 * (t1 + t2), self._x)
        self._map_x.axpyb(drift, self._dx, self._dxx, -r)
        self._time = (t1, t2)

    def integro_part(self, r: np.ndarray) -> np.ndarray:
        """``λ ∫ V(x, y+z) η e^{-ηz} dz`` at every node."""
        layout = self.mesher.layout
        g = layout.to_grid(np.asarray(r, dtype=float))   # (nx, ny)
        lo = g[:, self._jump_idx]                        # (nx, ny, k)
        hi = g[:, self._jump_idx + 1]
        interp = lo + self._jump_w * (hi - lo)
        integral = interp @ self._quad_w                 # (nx, ny)
        return self.process.jump_intensity * layout.from_grid(integral)

    def apply_direction(self, direction: int, r: np.ndarray) -> np.ndarray:
        self._require_time()
        if direction == 0:
            return self._map_x.apply(r)
        if direction == 1:
            return self._map_y.apply(r)
        return self._zeros(r)

    def apply_mixed(self, r: np.ndarray) -> np.ndarray:
        self._require_time()
        return self.integro_part(r)

    def solve_splitting(self, direction: int, r: np.ndarray, a: float) -> np.ndarray:
        self._require_time()
        if direction == 0:
            return self._map_x.solve_splitting(r, -a, 1.0)
        if direction == 1:
            return self._map_y.solve_splitting(r, -a, 1.0)
        return np.array(r, dtype=float)

    def to_matrix_decomp(self) -> list[sparse.csr_matrix]:
        self._require_time()
        n = self.mesher.size
        layout = self.mesher.layout
        # the integral is linear in V; assemble it column by column
        coords = layout.coords
        rows, cols, vals = [], [], []
        base = np.arange(n)
        jy = coords[:, 1]
        for k, qw in enumerate(self._quad_w):
            i_lo = self._jump_idx[jy, k]
            w = self._jump_w[jy, k]
            c_lo = coords[:, 0] + i_lo * layout.spacing[1]
            c_hi = c_lo + layout.spacing[1]
            rows.extend([base, base])
            cols.extend([c_lo, c_hi])
            vals.extend([qw * (1.0 - w), qw * w])
        integro = sparse.coo_matrix(
            (self.process.jump_intensity * np.concatenate(vals),
             (np.concatenate(rows), np.concatenate(cols))),
            shape=(n, n),
        ).tocsr()
        return [self._map_x.to_matrix(), self._map_y.to_matrix(), integro]


# ---------------------------------------------------------------------------
# Heston / Heston stochastic local volatility
# ---------------------------------------------------------------------------

class HestonOp(_TimedComposite):
    """Heston model in ``(x = ln S, v)``.

    .. math::

        L = ½ L^2 v ∂_{xx} + (r - q - ½ L^2 v) ∂_x
            + ½ σ^2 v ∂_{vv} + κ(θ - v) ∂_v
            + ρ σ v L ∂_{xv} - r

    ``L = leverage(t, S)`` (default 1) turns the model into stochastic
    local volatility.  The discount term is split half per direction and
    the cross term is the explicit mixed part.
    """

    def __init__(
        self,
        mesher: MesherComposite,
        r_curve: RateSource,
        q_curve: RateSource,
        process: HestonProcess,
        leverage: Optional[Callable[[float, np.ndarray], np.ndarray]] = None,
    ):
        if mesher.ndim != 2:
            raise ConfigurationError("the Heston operator needs a two-dimensional mesher")
        if np.any(mesher.mesher(1).locations < 0.0):
            raise ConfigurationError("variance mesh must be non-negative")
        self.mesher = mesher
        self.r_curve, self.q_curve = r_curve, q_curve
        self.process = process
        self.leverage = leverage
        p = process

        self._x = mesher.locations(0)
        self._v = mesher.locations(1)
        self._dx = FirstDerivativeOp(0, mesher)
        self._dxx = SecondDerivativeOp(0, mesher)
        self._map_x = TripleBandLinearOp(0, mesher)

        self._dv_static = FirstDerivativeOp(1, mesher).mult(p.kappa * (p.theta - self._v)).add(
            SecondDerivativeOp(1, mesher).mult(0.5 * p.sigma * p.sigma * self._v)
        )
        self._map_v = TripleBandLinearOp(1, mesher)

        self._dxv = SecondOrderMixedDerivativeOp(0, 1, mesher).mult(p.rho * p.sigma * self._v)
        self._corr = self._dxv

    def set_time(self, t1: float, t2: float) -> None:
        r = rate_over(self.r_curve, t1, t2)
        q = rate_over(self.q_curve, t1, t2)
        if self.leverage is not None:
            lev = np.asarray(self.leverage(0.5 * (t1 + t2), np.exp(self._x)), dtype=float)
            lev = np.broadcast_to(lev, self._x.shape)
            if not np.all(np.isfinite(lev)) or np.any(lev < 0.0):
                raise NumericalError("leverage function must be finite and non-negative")
        else:
            lev = 1.0
        var = lev * lev * self._v
        self._map_x.axpyb(r - q - 0.5 * var, self._dx, self._dxx.mult(0.5 * var), -0.5 * r)
        self._map_v.axpyb(None, None, self._dv_static, -0.5 * r)
        self._corr = self._dxv if self.leverage is None else self._dxv.mult(lev)
        self._time = (t1, t2)

    def apply_direction(self, direction: int, r: np.ndarray) -> np.ndarray:
        self._require_time()
        if direction == 0:
            return self._map_x.apply(r)
        if direction == 1:
            return self._map_v.apply(r)
        return self._zeros(r)

    def apply_mixed(self, r: np.ndarray) -> np.ndarray:
        self._require_time()
        return self._corr.apply(r)

    def solve_splitting(self, direction: int, r: np.ndarray, a: float) -> np.ndarray:
        self._require_time()
        if direction == 0:
            return self._map_x.solve_splitting(r, -a, 1.0)
        if direction == 1:
            return self._map_v.solve_splitting(r, -a, 1.0)
        return np.array(r, dtype=float)

    def to_matrix_decomp(self) -> list[sparse.csr_matrix]:
        self._require_time()
        return [self._map_x.to_matrix(), self._map_v.to_matrix(), self._corr.to_matrix()]


# ---------------------------------------------------------------------------
# Black-Scholes equity with a CIR short rate
# ---------------------------------------------------------------------------

class BlackScholesCIROp(_TimedComposite):
    """Lognormal spot driven by a stochastic CIR short rate, in ``(x = ln S, r)``.

    .. math::

        L = ½ σ^2 ∂_{xx} + (r - q - ½ σ^2) ∂_x
            + ½ σ_r^2 r ∂_{rr} + κ(θ - r) ∂_r
            + ρ σ σ_r \\sqrt{r} ∂_{xr} - r

    The short rate is a state variable, so the discount term ``-r`` is a
    per-node coefficient (half in each direction) rather than a curve
    value.  Only the dividend curve depends on time.  The cross term is the
    explicit mixed part.
    """

    def __init__(
        self,
        mesher: MesherComposite,
        process: CIRProcess,
        vol: float,
        q_curve: RateSource = None,
        rho: float = 0.0,
    ):
        if mesher.ndim != 2:
            raise ConfigurationError("the CIR operator needs a two-dimensional mesher")
        if np.any(mesher.mesher(1).locations < 0.0):
            raise ConfigurationError("short-rate mesh must be non-negative")
        if vol <= 0.0:
            raise ConfigurationError(f"vol must be positive, got {vol}")
        if not -1.0 <= rho <= 1.0:
            raise ConfigurationError(f"rho must lie in [-1, 1], got {rho}")
        self.mesher = mesher
        self.process = process
        self.vol, self.rho = float(vol), float(rho)
        self.q_curve = q_curve
        p = process

        self._r = mesher.locations(1)
        self._dx = FirstDerivativeOp(0, mesher)
        self._dxx = SecondDerivativeOp(0, mesher).mult(0.5 * vol * vol)
        self._map_x = TripleBandLinearOp(0, mesher)

        self._map_r = TripleBandLinearOp(1, mesher)
        self._map_r.axpyb(
            p.kappa * (p.theta - self._r), FirstDerivativeOp(1, mesher),
            SecondDerivativeOp(1, mesher).mult(0.5 * p.sigma * p.sigma * self._r),
            -0.5 * self._r,
        )
        self._dxr = SecondOrderMixedDerivativeOp(0, 1, mesher).mult(
            rho * vol * p.sigma * np.sqrt(self._r)
        )

    def set_time(self, t1: float, t2: float) -> None:
        q = rate_over(self.q_curve, t1, t2)
        drift = self._r - q - 0.5 * self.vol * self.vol
        self._map_x.axpyb(drift, self._dx, self._dxx, -0.5 * self._r)
        self._time = (t1, t2)

    def apply_direction(self, direction: int, r: np.ndarray) -> np.ndarray:
        self._require_time()
        if direction == 0:
            return self._map_x.apply(r)
        if direction == 1:
            return self._map_r.apply(r)
        return self._zeros(r)

    def apply_mixed(self, r: np.ndarray) -> np.ndarray:
        self._require_time()
        return self._dxr.apply(r)

    def solve_splitting(self, direction: int, r: np.ndarray, a: float) -> np.ndarray:
        self._require_time()
        if direction == 0:
            return self._map_x.solve_splitting(r, -a, 1.0)
        if direction == 1:
            return self._map_r.solve_splitting(r, -a, 1.0)
        return np.array(r, dtype=float)

    def to_matrix_decomp(self) -> list[sparse.csr_matrix]:
        self._require_time()
        return [self._map_x.to_matrix(), self._map_r.to_matrix(), self._dxr.to_matrix()]
