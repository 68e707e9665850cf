"""Finite-difference pricing engines for vanilla options.

Each engine builds a mesher, a model operator and a :class:`SolverDesc`,
runs one :class:`FdmSolver` rollback and reads value and Greeks at the
current state.  European, American and Bermudan exercise are handled with
step conditions; Bermudan exercise dates are inserted into the time grid
exactly.

All engines return a ``dict``.  Greeks are with respect to spot (the
forward for CEV); theta is ``∂V/∂t`` in calendar time.
"""

from __future__ import annotations

import logging
import numpy as np
from typing import Callable, Optional, Sequence, Union

from .boundary import BoundaryConditionSet
from .conditions import AmericanStepCondition, BermudanStepCondition, StepCondition
from .core import AMERICAN, BERMUDAN, CALL, EUROPEAN, check_exercise, vanilla_payoff
from .curves import FlatForward, YieldCurve
from .exceptions import ConfigurationError
from .meshers import (
    BlackScholesMesher,
    CEV1dMesher,
    CIRRateMesher,
    ExponentialJump1dMesher,
    HestonVarianceMesher,
    MesherComposite,
    OrnsteinUhlenbeck1dMesher,
)
from .models import BlackScholesCIROp, BlackScholesOp, CEVOp, ExtOUJumpOp, HestonOp
from .processes import CIRProcess, ExtOUWithJumpsProcess, HestonProcess
from .schemes import SchemeDesc
from .solver import FdmSolver, SolverDesc

__all__ = [
    "fd_black_scholes_vanilla",
    "fd_cev_vanilla",
    "fd_ext_ou_jump_vanilla",
    "fd_heston_vanilla",
    "fd_black_scholes_cir_vanilla",
]

logger = logging.getLogger(__name__)

Curve = Union[float, YieldCurve]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _as_curve(curve: Optional[Curve]) -> YieldCurve:
    if curve is None:
        return FlatForward(0.0)
    if isinstance(curve, YieldCurve):
        return curve
    if isinstance(curve, (int, float)):
        return FlatForward(float(curve))
    raise ConfigurationError(f"expected a rate or a YieldCurve, got {type(curve).__name__}")


def _exercise_condition(
    exercise: str,
    exercise_times: Sequence[float],
    intrinsic: np.ndarray,
) -> Optional[StepCondition]:
    check_exercise(exercise)
    if exercise == AMERICAN:
        return AmericanStepCondition(intrinsic)
    if exercise == BERMUDAN:
        if not exercise_times:
            raise ConfigurationError("Bermudan exercise needs exercise_times")
        return BermudanStepCondition(exercise_times, intrinsic)
    return None


def _spot_greeks(solver: FdmSolver, s: float, *at: float) -> dict[str, float]:
    """Value and Greeks in spot terms for a log-spot direction 0."""
    v_x = solver.delta_at(*at)
    v_xx = solver.gamma_at(*at)
    return {
        "value": solver.value_at(*at),
        "delta": v_x / s,
        "gamma": (v_xx - v_x) / (s * s),
    }


# ---------------------------------------------------------------------------
# Black-Scholes (optionally local volatility)
# ---------------------------------------------------------------------------

def fd_black_scholes_vanilla(
    spot: float,
    strike: float,
    maturity: float,
    r: Curve,
    vol: float,
    q: Optional[Curve] = None,
    kind: str = CALL,
    exercise: str = EUROPEAN,
    exercise_times: Sequence[float] = (),
    *,
    t_grid: int = 100,
    x_grid: int = 100,
    damping_steps: int = 0,
    scheme: Optional[SchemeDesc] = None,
    local_vol: Optional[Callable[[float, np.ndarray], np.ndarray]] = None,
) -> dict[str, float]:
    """Vanilla option under Black-Scholes on a log-spot mesh.

    Parameters
    ----------
    spot, strike, maturity : float
    r, q : float or YieldCurve
        Discount and dividend curves (constants become flat curves).
    vol : float
        Constant volatility; with ``local_vol`` it only sizes the mesh.
    kind : ``"call"`` or ``"put"``
    exercise : ``"european"``, ``"american"`` or ``"bermudan"``
    exercise_times : sequence of float
        Bermudan exercise times (year fractions).
    t_grid, x_grid : int
        Time steps and spatial nodes.
    damping_steps : int
        Implicit Euler steps at maturity.
    scheme : SchemeDesc, optional
        Default Douglas.
    local_vol : callable, optional
        ``local_vol(t, S) -> sigma``.

    Returns
    -------
    dict
        ``value``, ``delta``, ``gamma``, ``theta``.
    """
    r_curve, q_curve = _as_curve(r), _as_curve(q)
    drift = r_curve.zero_rate(maturity) - q_curve.zero_rate(maturity)
    mesher = MesherComposite(
        BlackScholesMesher(x_grid, spot, vol, maturity, drift, c_point=strike)
    )
    x = mesher.locations(0)
    intrinsic = vanilla_payoff(strike, kind)(np.exp(x))

    if local_vol is None:
        op = BlackScholesOp(mesher, r_curve, q_curve, vol=vol)
    else:
        op = BlackScholesOp(mesher, r_curve, q_curve, local_vol=local_vol)

    desc = SolverDesc(
        mesher, BoundaryConditionSet(),
        _exercise_condition(exercise, exercise_times, intrinsic),
        intrinsic, maturity, t_grid, damping_steps,
    )
    solver = FdmSolver(desc, scheme or SchemeDesc.douglas(), op)
    solver.recompute()

    x0 = float(np.log(spot))
    out = _spot_greeks(solver, spot, x0)
    out["theta"] = solver.theta_at(x0)
    logger.debug("black-scholes %s %s K=%g T=%g: %s", exercise, kind, strike, maturity, out)
    return out


# ---------------------------------------------------------------------------
# CEV
# ---------------------------------------------------------------------------

def fd_cev_vanilla(
    f0: float,
    strike: float,
    maturity: float,
    alpha: float,
    beta: float,
    r: Curve,
    kind: str = CALL,
    exercise: str = EUROPEAN,
    exercise_times: Sequence[float] = (),
    *,
    t_grid: int = 50,
    x_grid: int = 400,
    damping_steps: int = 0,
    scheme: Optional[SchemeDesc] = None,
    scale_factor: float = 1.5,
    eps: float = 1e-4,
) -> dict[str, float]:
    """Vanilla option on a CEV forward ``df = alpha f^beta dW``.

    The forward mesh concentrates on the strike.  Returns ``value``,
    ``delta``, ``gamma`` (in the forward) and ``theta``.
    """
    r_curve = _as_curve(r)
    mesher = MesherComposite(
        CEV1dMesher(f0, alpha, beta, maturity, x_grid, eps, scale_factor, c_point=strike)
    )
    intrinsic = vanilla_payoff(strike, kind)(mesher.locations(0))
    op = CEVOp(mesher, r_curve, f0, alpha, beta)

    desc = SolverDesc(
        mesher, BoundaryConditionSet(),
        _exercise_condition(exercise, exercise_times, intrinsic),
        intrinsic, maturity, t_grid, damping_steps,
    )
    solver = FdmSolver(desc, scheme or SchemeDesc.douglas(), op)
    solver.recompute()

    out = {
        "value": solver.value_at(f0),
        "delta": solver.delta_at(f0),
        "gamma": solver.gamma_at(f0),
        "theta": solver.theta_at(f0),
    }
    logger.debug("cev %s %s K=%g T=%g: %s", exercise, kind, strike, maturity, out)
    return out


# ---------------------------------------------------------------------------
# Extended OU with jumps
# ---------------------------------------------------------------------------

def fd_ext_ou_jump_vanilla(
    process: ExtOUWithJumpsProcess,
    strike: float,
    maturity: float,
    r: Curve,
    kind: str = CALL,
    exercise: str = EUROPEAN,
    exercise_times: Sequence[float] = (),
    *,
    t_grid: int = 50,
    x_grid: int = 200,
    y_grid: int = 50,
    damping_steps: int = 0,
    scheme: Optional[SchemeDesc] = None,
) -> dict[str, float]:
    """Vanilla option on ``S = exp(x + y)`` under the OU-plus-jumps model.

    Returns ``value``, ``delta`` and ``gamma`` with respect to ``S`` at the
    process's initial state.
    """
    r_curve = _as_curve(r)
    mesher = MesherComposite(
        OrnsteinUhlenbeck1dMesher(x_grid, process.ou_process, maturity),
        ExponentialJump1dMesher(y_grid, process.beta, process.jump_intensity, process.eta),
    )
    spot_nodes = process.spot(mesher.locations(0), mesher.locations(1))
    intrinsic = vanilla_payoff(strike, kind)(spot_nodes)
    op = ExtOUJumpOp(mesher, process, r_curve)

    desc = SolverDesc(
        mesher, BoundaryConditionSet(),
        _exercise_condition(exercise, exercise_times, intrinsic),
        intrinsic, maturity, t_grid, damping_steps,
    )
    solver = FdmSolver(desc, scheme or SchemeDesc.hundsdorfer(), op)
    solver.recompute()

    x0, y0 = process.initial_values
    out = _spot_greeks(solver, float(process.spot(x0, y0)), x0, y0)
    logger.debug("ext-ou-jump %s %s K=%g T=%g: %s", exercise, kind, strike, maturity, out)
    return out


# ---------------------------------------------------------------------------
# Heston / stochastic local volatility
# ---------------------------------------------------------------------------

def fd_heston_vanilla(
    spot: float,
    strike: float,
    maturity: float,
    process: HestonProcess,
    r: Curve,
    q: Optional[Curve] = None,
    kind: str = CALL,
    exercise: str = EUROPEAN,
    exercise_times: Sequence[float] = (),
    *,
    t_grid: int = 100,
    x_grid: int = 100,
    v_grid: int = 50,
    damping_steps: int = 0,
    scheme: Optional[SchemeDesc] = None,
    leverage: Optional[Callable[[float, np.ndarray], np.ndarray]] = None,
) -> dict[str, float]:
    """Vanilla option under Heston (or Heston SLV with a leverage function).

    Returns ``value``, ``delta`` and ``gamma`` at ``(spot, v0)``.
    """
    r_curve, q_curve = _as_curve(r), _as_curve(q)
    drift = r_curve.zero_rate(maturity) - q_curve.zero_rate(maturity)
    ref_vol = float(np.sqrt(max(process.v0, process.theta)))
    mesher = MesherComposite(
        BlackScholesMesher(x_grid, spot, ref_vol, maturity, drift, c_point=strike),
        HestonVarianceMesher(v_grid, process, maturity),
    )
    intrinsic = vanilla_payoff(strike, kind)(np.exp(mesher.locations(0)))
    op = HestonOp(mesher, r_curve, q_curve, process, leverage)

    desc = SolverDesc(
        mesher, BoundaryConditionSet(),
        _exercise_condition(exercise, exercise_times, intrinsic),
        intrinsic, maturity, t_grid, damping_steps,
    )
    solver = FdmSolver(desc, scheme or SchemeDesc.hundsdorfer(), op)
    solver.recompute()

    out = _spot_greeks(solver, spot, float(np.log(spot)), process.v0)
    logger.debug("heston %s %s K=%g T=%g: %s", exercise, kind, strike, maturity, out)
    return out


# ---------------------------------------------------------------------------
# Black-Scholes with a CIR short rate
# ---------------------------------------------------------------------------

def fd_black_scholes_cir_vanilla(
    spot: float,
    strike: float,
    maturity: float,
    vol: float,
    process: CIRProcess,
    q: Optional[Curve] = None,
    kind: str = CALL,
    exercise: str = EUROPEAN,
    exercise_times: Sequence[float] = (),
    rho: float = 0.0,
    *,
    t_grid: int = 100,
    x_grid: int = 100,
    r_grid: int = 30,
    damping_steps: int = 0,
    scheme: Optional[SchemeDesc] = None,
) -> dict[str, float]:
    """Vanilla option on a lognormal spot discounted by a CIR short rate.

    ``rho`` correlates the spot and rate Brownian motions.  Returns
    ``value``, ``delta``, ``gamma`` and ``theta`` at ``(spot, r0)``.
    """
    q_curve = _as_curve(q)
    drift = process.mean(maturity) - q_curve.zero_rate(maturity)
    mesher = MesherComposite(
        BlackScholesMesher(x_grid, spot, vol, maturity, drift, c_point=strike),
        CIRRateMesher(r_grid, process, maturity),
    )
    intrinsic = vanilla_payoff(strike, kind)(np.exp(mesher.locations(0)))
    op = BlackScholesCIROp(mesher, process, vol, q_curve, rho)

    desc = SolverDesc(
        mesher, BoundaryConditionSet(),
        _exercise_condition(exercise, exercise_times, intrinsic),
        intrinsic, maturity, t_grid, damping_steps,
    )
    solver = FdmSolver(desc, scheme or SchemeDesc.hundsdorfer(), op)
    solver.recompute()

    x0 = float(np.log(spot))
    out = _spot_greeks(solver, spot, x0, process.r0)
    out["theta"] = solver.theta_at(x0, process.r0)
    logger.debug("black-scholes-cir %s %s K=%g T=%g: %s", exercise, kind, strike, maturity, out)
    return out
