"""Grid convergence analysis.

Prices at a sequence of grid sizes, compares with a reference value and
estimates the observed order of convergence from a log-log fit,
``error ~ C / size**order``.
"""

from __future__ import annotations

import numpy as np
from typing import Callable, Sequence

from .exceptions import ConfigurationError

__all__ = ["convergence_analysis"]


def convergence_analysis(
    pricer: Callable[[int], float],
    reference: float,
    sizes: Sequence[int],
) -> dict:
    """Run ``pricer(size)`` for every size and measure the error decay.

    Parameters
    ----------
    pricer : callable
        ``pricer(size) -> price``; ``size`` usually scales both the spatial
        nodes and the time steps.
    reference : float
        True price (e.g. closed-form Black-Scholes).
    sizes : sequence of int
        Increasing grid sizes.

    Returns
    -------
    dict
        ``"params"``, ``"prices"``, ``"errors"``, ``"order"`` (NaN when fewer
        than two non-zero errors are available).
    """
    sizes = [int(s) for s in sizes]
    if not sizes:
        raise ConfigurationError("convergence analysis needs at least one grid size")

    prices = [float(pricer(s)) for s in sizes]
    errors = [abs(p - reference) for p in prices]

    order = float("nan")
    valid = [(s, e) for s, e in zip(sizes, errors) if e > 0]
    if len(valid) >= 2:
        log_s = np.log([s for s, _ in valid])
        log_e = np.log([e for _, e in valid])
        coeffs = np.polyfit(log_s, log_e, 1)
        order = -float(coeffs[0])

    return {
        "params": sizes,
        "prices": prices,
        "errors": errors,
        "order": order,
    }
