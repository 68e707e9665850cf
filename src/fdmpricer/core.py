from __future__ import annotations
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .exceptions import ConfigurationError


CALL = "call"
PUT  = "put"

EUROPEAN = "european"
AMERICAN = "american"
BERMUDAN = "bermudan"


# ---------------------------------------------------------------------------
# Black-Scholes contract + market bundle used by the convenience wrappers
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class OptionSpec:
    """Single-option container bundling instrument + flat market data.

    Used by :mod:`fdmpricer.pde` and the closed-form reference in
    :mod:`fdmpricer.black_scholes`.
    """
    S0: float
    K: float
    T: float          # years
    r: float          # continuous risk-free
    sigma: float
    q: float = 0.0    # continuous dividend yield

    def __post_init__(self):
        if self.S0 <= 0:
            raise ConfigurationError(f"S0 must be positive, got {self.S0}")
        if self.K <= 0:
            raise ConfigurationError(f"K must be positive, got {self.K}")
        if self.T <= 0:
            raise ConfigurationError(f"T must be positive, got {self.T}")
        if self.sigma <= 0:
            raise ConfigurationError(f"sigma must be positive, got {self.sigma}")


def check_kind(kind: str) -> str:
    if kind not in (CALL, PUT):
        raise ConfigurationError(f"kind must be 'call' or 'put', got {kind!r}")
    return kind


def check_exercise(exercise: str) -> str:
    if exercise not in (EUROPEAN, AMERICAN, BERMUDAN):
        raise ConfigurationError(
            f"exercise must be 'european', 'american' or 'bermudan', "
            f"got {exercise!r}"
        )
    return exercise


def vanilla_payoff(strike: float, kind: str) -> Callable[[np.ndarray], np.ndarray]:
    """Return ``payoff(S)`` for a plain call or put struck at *strike*."""
    check_kind(kind)

    def payoff(S):
        S = np.asarray(S, dtype=float)
        if kind == CALL:
            return np.maximum(S - strike, 0.0)
        return np.maximum(strike - S, 0.0)

    return payoff
