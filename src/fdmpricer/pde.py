"""Finite-difference Black-Scholes pricing on :class:`OptionSpec`.

Thin wrappers over the general engine: the log-spot operator
:class:`~fdmpricer.models.BlackScholesOp`, a concentrating mesh and the
stepping schemes of :mod:`fdmpricer.schemes`.  Under ``x = ln(S)`` the
constant-volatility PDE

.. math::

    \\frac{\\partial V}{\\partial t}
    + \\frac{\\sigma^2}{2}\\frac{\\partial^2 V}{\\partial x^2}
    + \\left(r - q - \\tfrac{\\sigma^2}{2}\\right)\\frac{\\partial V}{\\partial x}
    - r\\,V = 0

has constant coefficients, so each implicit stage is one tridiagonal solve.

References
----------
- Duffy, D.J. *Finite Difference Methods in Financial Engineering* (Wiley,
  2006), chapters 7–10, 22, 28.
"""

from __future__ import annotations

import numpy as np
from typing import Callable, Literal, Optional

from .boundary import DirichletBoundary, BoundaryConditionSet, LOWER, UPPER
from .core import OptionSpec, CALL, AMERICAN, EUROPEAN, check_kind, vanilla_payoff
from .curves import FlatForward
from .engines import fd_black_scholes_vanilla
from .exceptions import ConfigurationError
from .meshers import Concentrating1dMesher, MesherComposite
from .models import BlackScholesOp
from .schemes import SchemeDesc
from .solver import FdmSolver, SolverDesc

__all__ = [
    "fd_price",
    "fd_price_barrier",
    "fd_greeks",
    "fd_price_local_vol",
]

BARRIER_TYPES = ("up-and-out", "down-and-out", "up-and-in", "down-and-in")


# ---------------------------------------------------------------------------
# Vanilla
# ---------------------------------------------------------------------------

def _vanilla(opt: OptionSpec, kind: str, N_S: int, N_t: int,
             scheme: Optional[SchemeDesc], american: bool, damping_steps: int) -> dict:
    return fd_black_scholes_vanilla(
        opt.S0, opt.K, opt.T, opt.r, opt.sigma, opt.q, check_kind(kind),
        AMERICAN if american else EUROPEAN,
        t_grid=N_t, x_grid=N_S + 1, damping_steps=damping_steps, scheme=scheme,
    )


def fd_price(
    opt: OptionSpec,
    kind: Literal["call", "put"] = CALL,
    *,
    N_S: int = 200,
    N_t: int = 200,
    scheme: Optional[SchemeDesc] = None,
    american: bool = False,
    damping_steps: int = 0,
) -> float:
    """Price a European or American vanilla option via finite differences.

    Parameters
    ----------
    opt : OptionSpec
        Option specification.
    kind : ``"call"`` or ``"put"``
    N_S : int
        Number of spatial intervals (default 200).
    N_t : int
        Number of time steps (default 200).
    scheme : SchemeDesc, optional
        Stepping scheme (default Douglas, i.e. Crank-Nicolson in 1-D).
    american : bool
        Enable early exercise (default False).
    damping_steps : int
        Implicit Euler steps at maturity.

    Returns
    -------
    float
        Option price.
    """
    return _vanilla(opt, kind, N_S, N_t, scheme, american, damping_steps)["value"]


def fd_greeks(
    opt: OptionSpec,
    kind: Literal["call", "put"] = CALL,
    **kwargs,
) -> dict[str, float]:
    """Delta, gamma and theta read off the FD grid.

    Delta and gamma come from the grid's spatial derivatives at
    ``x = ln(S0)`` (chain rule to spot), theta from the first time step.
    Accepts the keyword arguments of :func:`fd_price`.
    """
    N_S = kwargs.pop("N_S", 200)
    N_t = kwargs.pop("N_t", 200)
    scheme = kwargs.pop("scheme", None)
    american = kwargs.pop("american", False)
    damping_steps = kwargs.pop("damping_steps", 0)
    if kwargs:
        raise ConfigurationError(f"unexpected arguments: {sorted(kwargs)}")
    res = _vanilla(opt, kind, N_S, N_t, scheme, american, damping_steps)
    return {"delta": res["delta"], "gamma": res["gamma"], "theta": res["theta"]}


# ---------------------------------------------------------------------------
# Barriers
# ---------------------------------------------------------------------------

def fd_price_barrier(
    opt: OptionSpec,
    kind: Literal["call", "put"] = CALL,
    barrier: float = 0.0,
    barrier_type: Literal[
        "up-and-out", "down-and-out", "up-and-in", "down-and-in"
    ] = "up-and-out",
    *,
    rebate: float = 0.0,
    N_S: int = 200,
    N_t: int = 200,
    scheme: Optional[SchemeDesc] = None,
    S_max_mult: float = 4.0,
) -> float:
    """Price a continuously monitored European barrier option.

    Knock-out options are solved on a mesh that ends at the barrier, with a
    Dirichlet condition pinning the value there to ``rebate``.  Knock-in
    prices use in/out parity ``V_in = V_vanilla - V_out`` (the rebate only
    applies to knock-outs).

    Parameters
    ----------
    opt : OptionSpec
    kind : ``"call"`` or ``"put"``
    barrier : float
        Barrier level.
    barrier_type : str
        One of ``"up-and-out"``, ``"down-and-out"``, ``"up-and-in"``,
        ``"down-and-in"``.
    rebate : float
        Paid on knock-out (default 0).
    S_max_mult : float
        Far side of the mesh as a multiple of σ√T in log-spot.

    Returns
    -------
    float
    """
    check_kind(kind)
    if barrier_type not in BARRIER_TYPES:
        raise ConfigurationError(f"barrier_type must be one of {BARRIER_TYPES}, got {barrier_type!r}")
    if barrier <= 0.0:
        raise ConfigurationError(f"barrier must be positive, got {barrier}")
    grid_kw = dict(N_S=N_S, N_t=N_t, scheme=scheme, S_max_mult=S_max_mult)

    if barrier_type.endswith("in"):
        out_type = barrier_type.replace("in", "out")
        vanilla = fd_price(opt, kind, N_S=N_S, N_t=N_t, scheme=scheme)
        knock_out = fd_price_barrier(opt, kind, barrier, out_type, **grid_kw)
        return vanilla - knock_out

    up = barrier_type.startswith("up")
    if (up and opt.S0 >= barrier) or (not up and opt.S0 <= barrier):
        return float(rebate)

    x0, xb = np.log(opt.S0), np.log(barrier)
    width = S_max_mult * opt.sigma * np.sqrt(opt.T)
    start, end = (min(x0, xb) - width, xb) if up else (xb, max(x0, xb) + width)
    xk = np.log(opt.K)
    c_point = xk if start < xk < end else None
    mesher = MesherComposite(
        Concentrating1dMesher(start, end, N_S + 1, c_point, 0.1, require_c_point=c_point is not None)
    )

    r_curve, q_curve = FlatForward(opt.r), FlatForward(opt.q)
    payoff = vanilla_payoff(opt.K, kind)(np.exp(mesher.locations(0)))
    edge = DirichletBoundary(mesher, rebate, 0, UPPER if up else LOWER)
    payoff[edge.indices] = rebate
    bcs = BoundaryConditionSet([edge])

    desc = SolverDesc(mesher, bcs, None, payoff, opt.T, N_t)
    solver = FdmSolver(desc, scheme or SchemeDesc.douglas(),
                       BlackScholesOp(mesher, r_curve, q_curve, vol=opt.sigma))
    solver.recompute()
    return solver.value_at(x0)


# ---------------------------------------------------------------------------
# Local volatility
# ---------------------------------------------------------------------------

def fd_price_local_vol(
    S0: float,
    K: float,
    T: float,
    r: float,
    q: float,
    sigma_func: Callable[[np.ndarray, float], np.ndarray],
    kind: Literal["call", "put"] = CALL,
    *,
    N_S: int = 200,
    N_t: int = 200,
    scheme: Optional[SchemeDesc] = None,
    ref_vol: float = 0.3,
) -> float:
    """Price with local volatility σ(S, t) on the FD grid.

    ``sigma_func(S_array, t)`` is evaluated on the mesh at the middle of
    every time step.

    Parameters
    ----------
    S0, K, T, r, q : float
        Market and instrument parameters.
    sigma_func : callable
        ``sigma_func(S_array, t) -> sigma_array``.
    kind : str
    ref_vol : float
        Reference vol used only for mesh construction (default 0.3).

    Returns
    -------
    float
    """
    res = fd_black_scholes_vanilla(
        S0, K, T, r, ref_vol, q, check_kind(kind),
        t_grid=N_t, x_grid=N_S + 1, scheme=scheme,
        local_vol=lambda t, S: sigma_func(S, t),
    )
    return res["value"]
