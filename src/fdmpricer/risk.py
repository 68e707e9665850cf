"""Bump-and-reprice Greeks.

Used to cross-check the Greeks the engines read off the grid: any
``spot -> price`` callable can be differenced, including a full FD
re-solve on a fixed mesh.
"""

from __future__ import annotations

from typing import Callable

from .exceptions import ConfigurationError

__all__ = ["bump_greeks"]


def bump_greeks(
    pricer: Callable[[float], float],
    spot: float,
    bump: float = 0.01,
    *,
    relative: bool = True,
) -> dict[str, float]:
    """Central finite-difference delta and gamma of ``pricer`` at ``spot``.

    Parameters
    ----------
    pricer : callable
        ``pricer(spot) -> price``.
    spot : float
    bump : float
        Spot bump; a fraction of ``spot`` when ``relative`` (default 1%),
        otherwise absolute.

    Returns
    -------
    dict[str, float]
        Keys: ``value``, ``delta``, ``gamma``.
    """
    h = bump * spot if relative else bump
    if not h > 0.0:
        raise ConfigurationError(f"bump must be positive, got {h}")

    p0 = pricer(spot)
    p_up = pricer(spot + h)
    p_dn = pricer(spot - h)
    return {
        "value": float(p0),
        "delta": float((p_up - p_dn) / (2.0 * h)),
        "gamma": float((p_up - 2.0 * p0 + p_dn) / (h * h)),
    }
