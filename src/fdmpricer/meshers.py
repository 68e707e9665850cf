"""Spatial meshes for the finite-difference engine.

A 1-D mesher is an immutable, strictly increasing array of node
locations together with the forward/backward spacings the difference
stencils need.  Multi-dimensional meshes are Cartesian products of 1-D
meshers (:class:`MesherComposite`); their node values are stored flat in
the order given by :class:`~fdmpricer.layout.Layout`.

The concentrating mesher uses the sinh stretching of Tavella & Randall,
*Pricing Financial Instruments: The Finite Difference Method* (Wiley,
2000), section 5.3, so that nodes cluster around a point of interest
(strike, spot, a barrier) while the domain stays wide.
"""

from __future__ import annotations

import numpy as np
from typing import Optional, Sequence
from scipy.stats import gamma, ncx2, norm

from .exceptions import ConfigurationError
from .layout import Layout
from .processes import CIRProcess, ExtendedOrnsteinUhlenbeckProcess, HestonProcess

__all__ = [
    "Fdm1dMesher",
    "Uniform1dMesher",
    "Concentrating1dMesher",
    "Predefined1dMesher",
    "CEV1dMesher",
    "BlackScholesMesher",
    "HestonVarianceMesher",
    "CIRRateMesher",
    "OrnsteinUhlenbeck1dMesher",
    "ExponentialJump1dMesher",
    "MesherComposite",
]


# ---------------------------------------------------------------------------
# 1-D meshers
# ---------------------------------------------------------------------------

class Fdm1dMesher:
    """Base 1-D mesher holding validated node locations."""

    def __init__(self, locations: Sequence[float]):
        x = np.array(locations, dtype=float)
        if x.ndim != 1 or x.size < 2:
            raise ConfigurationError(f"a mesher needs at least 2 points, got {x.size}")
        if not np.all(np.isfinite(x)):
            raise ConfigurationError("mesher locations must be finite")
        if np.any(np.diff(x) <= 0.0):
            raise ConfigurationError("mesher locations must be strictly increasing")
        x.setflags(write=False)
        self._locations = x

        dplus = np.full(x.size, np.nan)
        dplus[:-1] = np.diff(x)
        dminus = np.full(x.size, np.nan)
        dminus[1:] = np.diff(x)
        dplus.setflags(write=False)
        dminus.setflags(write=False)
        self._dplus = dplus
        self._dminus = dminus

    @property
    def size(self) -> int:
        return int(self._locations.size)

    @property
    def locations(self) -> np.ndarray:
        return self._locations

    @property
    def dplus(self) -> np.ndarray:
        """``x[i+1] - x[i]``; NaN at the last node."""
        return self._dplus

    @property
    def dminus(self) -> np.ndarray:
        """``x[i] - x[i-1]``; NaN at the first node."""
        return self._dminus

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        x = self._locations
        return f"{type(self).__name__}(size={x.size}, [{x[0]:.6g}, {x[-1]:.6g}])"


def _check_size(size: int) -> int:
    size = int(size)
    if size < 2:
        raise ConfigurationError(f"mesher size must be >= 2, got {size}")
    return size


def _check_range(start: float, end: float) -> None:
    if not (np.isfinite(start) and np.isfinite(end)) or start >= end:
        raise ConfigurationError(f"need finite start < end, got [{start}, {end}]")


class Uniform1dMesher(Fdm1dMesher):
    """Equally spaced nodes on ``[start, end]``."""

    def __init__(self, start: float, end: float, size: int):
        size = _check_size(size)
        _check_range(start, end)
        super().__init__(np.linspace(start, end, size))


class Predefined1dMesher(Fdm1dMesher):
    """Caller-supplied node locations."""


class Concentrating1dMesher(Fdm1dMesher):
    """Nodes on ``[start, end]`` clustered around ``c_point``.

    Parameters
    ----------
    start, end : float
        Domain bounds (both are nodes).
    size : int
        Number of nodes, at least 2.
    c_point : float, optional
        Concentration point.  ``None`` gives a uniform mesh.
    density : float, optional
        Width of the fine region relative to ``end - start``; smaller is
        more concentrated (default 0.1).
    require_c_point : bool
        Place one node exactly on ``c_point``.
    """

    def __init__(
        self,
        start: float,
        end: float,
        size: int,
        c_point: Optional[float] = None,
        density: Optional[float] = None,
        require_c_point: bool = False,
    ):
        size = _check_size(size)
        _check_range(start, end)

        if c_point is None:
            super().__init__(np.linspace(start, end, size))
            return

        density = 0.1 if density is None else float(density)
        if density <= 0.0:
            raise ConfigurationError(f"density must be positive, got {density}")
        if require_c_point and size == 2 and start < c_point < end:
            raise ConfigurationError("cannot require an interior point with 2 nodes")
        if require_c_point and not start <= c_point <= end:
            raise ConfigurationError(
                f"required point {c_point} lies outside [{start}, {end}]"
            )

        dens = density * (end - start)
        c1 = np.arcsinh((start - c_point) / dens)
        c2 = np.arcsinh((end - c_point) / dens)
        u = np.linspace(0.0, 1.0, size)

        if require_c_point and start < c_point < end and size > 2:
            # bend the uniform coordinate so one node maps onto sinh(0)
            z0 = -c1 / (c2 - c1)
            i0 = int(np.clip(np.rint(z0 * (size - 1)), 1, size - 2))
            u0 = i0 / (size - 1)
            arg = np.where(u <= u0, c1 * (1.0 - u / u0), c2 * (u - u0) / (1.0 - u0))
        else:
            arg = c1 + (c2 - c1) * u

        x = c_point + dens * np.sinh(arg)
        x[0], x[-1] = start, end
        super().__init__(x)


class CEV1dMesher(Concentrating1dMesher):
    """Forward mesh for the CEV process ``df = alpha f^beta dW``.

    The domain covers ``f0 ± k * alpha * f0**beta * sqrt(T)`` where ``k`` is
    the standard normal ``1 - eps`` quantile times ``scale_factor``; the
    lower end is floored at zero (absorbing boundary).
    """

    def __init__(
        self,
        f0: float,
        alpha: float,
        beta: float,
        maturity: float,
        size: int,
        eps: float = 1e-4,
        scale_factor: float = 1.5,
        c_point: Optional[float] = None,
        density: float = 0.1,
    ):
        if f0 <= 0.0 or alpha <= 0.0 or maturity <= 0.0:
            raise ConfigurationError("f0, alpha and maturity must be positive")
        if not 0.0 < eps < 0.5:
            raise ConfigurationError(f"eps must lie in (0, 0.5), got {eps}")
        sd = alpha * f0 ** beta * np.sqrt(maturity)
        k = norm.ppf(1.0 - eps) * scale_factor
        start = max(0.0, f0 - k * sd)
        end = f0 + k * sd
        c_point = f0 if c_point is None else c_point
        super().__init__(start, end, size, c_point, density,
                         require_c_point=start < c_point < end)


class BlackScholesMesher(Concentrating1dMesher):
    """Log-spot mesh for a lognormal underlying.

    Spans ``ln(S0) + (r - q - vol²/2) T ± k vol sqrt(T)`` widened to contain
    ``ln(S0)``, with ``k = Φ⁻¹(1 - eps) * scale_factor``; concentrated on
    ``ln(c_point)`` (usually the strike) when given.
    """

    def __init__(
        self,
        size: int,
        spot: float,
        vol: float,
        maturity: float,
        drift: float = 0.0,
        eps: float = 1e-4,
        scale_factor: float = 1.5,
        c_point: Optional[float] = None,
        density: float = 0.1,
    ):
        if spot <= 0.0 or vol <= 0.0 or maturity <= 0.0:
            raise ConfigurationError("spot, vol and maturity must be positive")
        x0 = np.log(spot)
        sd = vol * np.sqrt(maturity)
        k = norm.ppf(1.0 - eps) * scale_factor
        centre = x0 + (drift - 0.5 * vol * vol) * maturity
        start = min(centre - k * sd, x0 - k * sd)
        end = max(centre + k * sd, x0 + k * sd)
        xc = None if c_point is None else np.log(c_point)
        require = xc is not None and start < xc < end
        super().__init__(start, end, size, xc, density, require_c_point=require)


class HestonVarianceMesher(Concentrating1dMesher):
    """Variance mesh on ``[0, v_max]`` for the Heston model.

    ``v_max`` is the largest ``1 - eps`` quantile of the non-central
    chi-square transition density of the CIR variance over a handful of
    times in ``(0, T]``; nodes cluster around ``v0``.
    """

    def __init__(
        self,
        size: int,
        process: HestonProcess,
        maturity: float,
        eps: float = 1e-4,
        density: float = 0.2,
    ):
        if maturity <= 0.0:
            raise ConfigurationError(f"maturity must be positive, got {maturity}")
        p = process
        df = 4.0 * p.kappa * p.theta / (p.sigma * p.sigma)
        v_max = max(p.v0, p.theta)
        for t in np.linspace(maturity / 10.0, maturity, 10):
            e = np.exp(-p.kappa * t)
            c = p.sigma * p.sigma * (1.0 - e) / (4.0 * p.kappa)
            nc = p.v0 * e / c
            v_max = max(v_max, float(c * ncx2.ppf(1.0 - eps, df, nc)))
        c_point = p.v0 if 0.0 < p.v0 < v_max else None
        super().__init__(0.0, v_max, size, c_point, density,
                         require_c_point=c_point is not None)


class OrnsteinUhlenbeck1dMesher(Concentrating1dMesher):
    """Mesh for a mean-reverting factor, concentrated on its start value.

    The bounds are the extremes of ``mean(t) ± k sd(t)`` over ``t_avg_steps``
    times in ``(0, T]``, where ``mean(t)`` relaxes from ``x0`` to the level
    and ``sd(t)² = sigma² (1 - e^{-2 speed t}) / (2 speed)``.
    """

    def __init__(
        self,
        size: int,
        process: ExtendedOrnsteinUhlenbeckProcess,
        maturity: float,
        eps: float = 1e-4,
        scale_factor: float = 1.5,
        t_avg_steps: int = 10,
        density: float = 0.1,
    ):
        if maturity <= 0.0:
            raise ConfigurationError(f"maturity must be positive, got {maturity}")
        p = process
        k = norm.ppf(1.0 - eps) * scale_factor
        lo = hi = p.x0
        for t in np.linspace(maturity / t_avg_steps, maturity, t_avg_steps):
            if p.speed > 0.0:
                e = np.exp(-p.speed * t)
                mean = p.x0 * e + p.level(t) * (1.0 - e)
                sd = p.sigma * np.sqrt((1.0 - e * e) / (2.0 * p.speed))
            else:
                mean, sd = p.x0, p.sigma * np.sqrt(t)
            lo = min(lo, mean - k * sd)
            hi = max(hi, mean + k * sd)
        super().__init__(lo, hi, size, p.x0, density, require_c_point=lo < p.x0 < hi)


class CIRRateMesher(Concentrating1dMesher):
    """Short-rate mesh for a CIR process, concentrated on ``r0``.

    The bounds are the extremes of ``mean(t) ± k sd(t)`` over ``t_avg_steps``
    times in ``(0, T]`` with the exact CIR moments and ``k`` the normal
    ``1 - eps`` quantile times ``scale_factor``; the lower end is floored at
    zero.
    """

    def __init__(
        self,
        size: int,
        process: CIRProcess,
        maturity: float,
        eps: float = 1e-4,
        scale_factor: float = 1.5,
        t_avg_steps: int = 10,
        density: float = 0.2,
    ):
        if maturity <= 0.0:
            raise ConfigurationError(f"maturity must be positive, got {maturity}")
        k = norm.ppf(1.0 - eps) * scale_factor
        lo = hi = process.r0
        for t in np.linspace(maturity / t_avg_steps, maturity, t_avg_steps):
            mean, sd = process.mean(t), np.sqrt(process.variance(t))
            lo = min(lo, mean - k * sd)
            hi = max(hi, mean + k * sd)
        lo = max(lo, 0.0)
        c_point = process.r0
        super().__init__(lo, hi, size, c_point, density, require_c_point=lo < c_point < hi)


class ExponentialJump1dMesher(Concentrating1dMesher):
    """Mesh on ``[0, y_max]`` for a jump factor ``dy = -beta y dt + J dN``.

    With exponential jump sizes of rate ``eta`` the stationary law of ``y``
    is a gamma distribution with shape ``jump_intensity / beta`` and scale
    ``1 / eta``; ``y_max`` is its ``1 - eps`` quantile, but never below the
    same quantile of a single jump.  Nodes cluster near zero.
    """

    def __init__(
        self,
        size: int,
        beta: float,
        jump_intensity: float,
        eta: float,
        eps: float = 1e-3,
        density: float = 0.2,
    ):
        if beta <= 0.0 or eta <= 0.0:
            raise ConfigurationError("beta and eta must be positive")
        y_max = -np.log(eps) / eta
        if jump_intensity > 0.0:
            y_max = max(y_max, float(gamma.ppf(1.0 - eps, jump_intensity / beta, scale=1.0 / eta)))
        super().__init__(0.0, y_max, size, 0.0, density)


# ---------------------------------------------------------------------------
# Composite (Cartesian product) mesher
# ---------------------------------------------------------------------------

class MesherComposite:
    """Cartesian product of 1-D meshers, one per spatial direction."""

    def __init__(self, *meshers: Fdm1dMesher):
        if len(meshers) == 1 and isinstance(meshers[0], (list, tuple)):
            meshers = tuple(meshers[0])
        if not meshers:
            raise ConfigurationError("a composite mesher needs at least one 1-D mesher")
        self._meshers = tuple(meshers)
        self._layout = Layout([m.size for m in meshers])
        coords = self._layout.coords
        self._locations = []
        self._dplus = []
        self._dminus = []
        for d, m in enumerate(self._meshers):
            c = coords[:, d]
            for store, src in ((self._locations, m.locations),
                               (self._dplus, m.dplus),
                               (self._dminus, m.dminus)):
                arr = src[c]
                arr.setflags(write=False)
                store.append(arr)

    @property
    def layout(self) -> Layout:
        return self._layout

    @property
    def meshers(self) -> tuple[Fdm1dMesher, ...]:
        return self._meshers

    @property
    def ndim(self) -> int:
        return len(self._meshers)

    @property
    def size(self) -> int:
        return self._layout.size

    def mesher(self, direction: int) -> Fdm1dMesher:
        return self._meshers[direction]

    def locations(self, direction: int) -> np.ndarray:
        """Location along *direction* of every flat node."""
        return self._locations[direction]

    def dplus(self, direction: int) -> np.ndarray:
        return self._dplus[direction]

    def dminus(self, direction: int) -> np.ndarray:
        return self._dminus[direction]

    def __repr__(self) -> str:
        return f"MesherComposite({', '.join(repr(m) for m in self._meshers)})"
