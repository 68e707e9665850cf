"""Exception hierarchy for fdmpricer.

Every library error derives from :class:`FdmError`, so a caller can abandon
a single price computation with one ``except`` clause::

    try:
        res = fd_cev_vanilla(100.0, 100.0, 1.0, 0.2, 0.5, curve)
    except FdmError as exc:
        log.error("pricing failed: %s", exc)

The concrete classes also derive from the matching builtin so that code
written against ``ValueError`` keeps working.
"""

from __future__ import annotations


class FdmError(Exception):
    """Base exception for all library errors."""


# ── Configuration ───────────────────────────────────────────────────


class ConfigurationError(FdmError, ValueError):
    """Invalid mesh, time grid, scheme parameters or boundary set-up."""


# ── Numerical issues ────────────────────────────────────────────────


class NumericalError(FdmError, ArithmeticError):
    """Singular banded system, non-finite coefficients or a failed solve."""


# ── Object state ────────────────────────────────────────────────────


class SolverStateError(FdmError, RuntimeError):
    """Results read from a dirty solver, or a terminal solver reused."""
