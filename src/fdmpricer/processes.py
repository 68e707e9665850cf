# processes.py
# Stochastic-process parameter objects for the PDE operators.
# Only the coefficient functions the operators need are modelled here
# (drift, diffusion, jump characteristics); path simulation lives elsewhere.

from __future__ import annotations
import numpy as np
from dataclasses import dataclass
from typing import Callable, Union

from .exceptions import ConfigurationError


__all__ = [
    "ExtendedOrnsteinUhlenbeckProcess",
    "ExtOUWithJumpsProcess",
    "HestonProcess",
    "CIRProcess",
]


# -----------------------------------------
# 1) Extended Ornstein-Uhlenbeck
# -----------------------------------------
class ExtendedOrnsteinUhlenbeckProcess:
    """
    Mean-reverting factor with a time-dependent level:
        dx = speed * (level(t) - x) dt + sigma dW
    ``level`` may be a constant or a callable of time.
    """

    def __init__(
        self,
        speed: float,
        sigma: float,
        x0: float,
        level: Union[float, Callable[[float], float]] = 0.0,
    ):
        if speed < 0.0:
            raise ConfigurationError(f"speed must be non-negative, got {speed}")
        if sigma <= 0.0:
            raise ConfigurationError(f"sigma must be positive, got {sigma}")
        self.speed = float(speed)
        self.sigma = float(sigma)
        self.x0 = float(x0)
        if callable(level):
            self._level = level
        else:
            lvl = float(level)
            self._level = lambda t: lvl

    def level(self, t: float) -> float:
        return float(self._level(t))

    def drift(self, t: float, x: np.ndarray) -> np.ndarray:
        return self.speed * (self.level(t) - np.asarray(x, dtype=float))

    def diffusion(self, t: float, x: np.ndarray) -> np.ndarray:
        return np.full_like(np.asarray(x, dtype=float), self.sigma)


# -----------------------------------------
# 2) Extended OU plus a decaying jump factor
# -----------------------------------------
class ExtOUWithJumpsProcess:
    """
    Two-factor spike model, spot = exp(x + y):
        x : extended Ornstein-Uhlenbeck factor
        dy = -beta * y dt + J dN,   N ~ Poisson(jump_intensity),
                                    J ~ Exponential(rate=eta)
    """

    def __init__(
        self,
        ou_process: ExtendedOrnsteinUhlenbeckProcess,
        y0: float,
        beta: float,
        jump_intensity: float,
        eta: float,
    ):
        if beta < 0.0:
            raise ConfigurationError(f"beta must be non-negative, got {beta}")
        if jump_intensity < 0.0:
            raise ConfigurationError(
                f"jump_intensity must be non-negative, got {jump_intensity}"
            )
        if eta <= 0.0:
            raise ConfigurationError(f"eta must be positive, got {eta}")
        self.ou_process = ou_process
        self.y0 = float(y0)
        self.beta = float(beta)
        self.jump_intensity = float(jump_intensity)
        self.eta = float(eta)

    @property
    def initial_values(self) -> tuple[float, float]:
        return self.ou_process.x0, self.y0

    def spot(self, x, y):
        return np.exp(np.asarray(x, dtype=float) + np.asarray(y, dtype=float))


# -----------------------------------------
# 3) Heston stochastic volatility
# -----------------------------------------
@dataclass(frozen=True)
class HestonProcess:
    """
    Variance dynamics under Q:
        dv = kappa (theta - v) dt + sigma sqrt(v) dW_v,   d<W_s, W_v> = rho dt
    """
    v0: float
    kappa: float
    theta: float
    sigma: float
    rho: float

    def __post_init__(self):
        if self.v0 < 0:
            raise ConfigurationError(f"v0 must be non-negative, got {self.v0}")
        if self.kappa <= 0:
            raise ConfigurationError(f"kappa must be positive, got {self.kappa}")
        if self.theta <= 0:
            raise ConfigurationError(f"theta must be positive, got {self.theta}")
        if self.sigma <= 0:
            raise ConfigurationError(f"sigma must be positive, got {self.sigma}")
        if not -1.0 <= self.rho <= 1.0:
            raise ConfigurationError(f"rho must lie in [-1, 1], got {self.rho}")

    @property
    def feller_satisfied(self) -> bool:
        return 2.0 * self.kappa * self.theta >= self.sigma ** 2


# -----------------------------------------
# 4) Cox-Ingersoll-Ross short rate
# -----------------------------------------
@dataclass(frozen=True)
class CIRProcess:
    """
    Short rate under Q:
        dr = kappa (theta - r) dt + sigma sqrt(r) dW_r
    """
    r0: float
    kappa: float
    theta: float
    sigma: float

    def __post_init__(self):
        if self.r0 < 0:
            raise ConfigurationError(f"r0 must be non-negative, got {self.r0}")
        if self.kappa <= 0:
            raise ConfigurationError(f"kappa must be positive, got {self.kappa}")
        if self.theta <= 0:
            raise ConfigurationError(f"theta must be positive, got {self.theta}")
        if self.sigma <= 0:
            raise ConfigurationError(f"sigma must be positive, got {self.sigma}")

    def mean(self, t: float) -> float:
        e = np.exp(-self.kappa * t)
        return float(self.r0 * e + self.theta * (1.0 - e))

    def variance(self, t: float) -> float:
        e = np.exp(-self.kappa * t)
        s2 = self.sigma * self.sigma
        return float(self.r0 * s2 / self.kappa * (e - e * e)
                     + self.theta * s2 / (2.0 * self.kappa) * (1.0 - e) ** 2)
