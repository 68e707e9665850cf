# black_scholes.py
# Closed-form Black-Scholes prices and Greeks: the reference values the
# finite-difference engines are checked against.

from __future__ import annotations
import math
from typing import Dict, Literal

from scipy.stats import norm

from .core import OptionSpec, CALL, PUT, check_kind

__all__ = ["price", "greeks"]

_N = norm.cdf
_n = norm.pdf


def _d1_d2(opt: OptionSpec):
    rt = opt.sigma * math.sqrt(opt.T)
    d1 = (math.log(opt.S0 / opt.K) + (opt.r - opt.q + 0.5 * opt.sigma * opt.sigma) * opt.T) / rt
    return d1, d1 - rt


def price(opt: OptionSpec, kind: Literal["call", "put"] = CALL) -> float:
    check_kind(kind)
    d1, d2 = _d1_d2(opt)
    disc_r = math.exp(-opt.r * opt.T)
    disc_q = math.exp(-opt.q * opt.T)
    if kind == CALL:
        return float(disc_q * opt.S0 * _N(d1) - disc_r * opt.K * _N(d2))
    return float(disc_r * opt.K * _N(-d2) - disc_q * opt.S0 * _N(-d1))


def greeks(opt: OptionSpec, kind: Literal["call", "put"] = CALL) -> Dict[str, float]:
    """Delta, gamma, vega (per unit vol), theta (per year, ``∂V/∂t``) and rho."""
    check_kind(kind)
    d1, d2 = _d1_d2(opt)
    n_d1 = _n(d1)
    disc_r = math.exp(-opt.r * opt.T)
    disc_q = math.exp(-opt.q * opt.T)
    srt = opt.sigma * math.sqrt(opt.T)

    gamma = disc_q * n_d1 / (opt.S0 * srt)
    vega = opt.S0 * disc_q * n_d1 * math.sqrt(opt.T)
    decay = -opt.S0 * disc_q * n_d1 * opt.sigma / (2.0 * math.sqrt(opt.T))

    if kind == CALL:
        delta = disc_q * _N(d1)
        theta = decay - opt.r * opt.K * disc_r * _N(d2) + opt.q * opt.S0 * disc_q * _N(d1)
        rho = opt.K * opt.T * disc_r * _N(d2)
    else:
        delta = disc_q * (_N(d1) - 1.0)
        theta = decay + opt.r * opt.K * disc_r * _N(-d2) - opt.q * opt.S0 * disc_q * _N(-d1)
        rho = -opt.K * opt.T * disc_r * _N(-d2)

    return {k: float(v) for k, v in
            {"delta": delta, "gamma": gamma, "vega": vega, "theta": theta, "rho": rho}.items()}
