"""Composite PDE operators and the splitting contract used by the schemes.

A :class:`LinearOpComposite` is the sum of one tridiagonal operator per
spatial direction plus a "mixed" remainder (cross derivatives, integral
terms) that is always treated explicitly by the splitting schemes:

.. math::

    L = \\sum_d L_d + L_{mixed}

The schemes only talk to this contract, so new models plug in without the
schemes knowing anything about their coefficients.

Sign convention: ``solve_splitting(d, rhs, a)`` solves
``(I - a L_d) x = rhs``; an implicit fractional step of size ``θ Δt`` is
``solve_splitting(d, rhs, θ Δt)``.
"""

from __future__ import annotations

import numpy as np
from scipy import sparse
from typing import Callable, Mapping, Optional, Union

from .exceptions import ConfigurationError, NumericalError, SolverStateError
from .meshers import MesherComposite
from .operators import LinearOp, TripleBandLinearOp

__all__ = ["LinearOpComposite", "OperatorSum", "RateSource", "rate_over"]

RateSource = Union[float, Callable[[float, float], float], object, None]


def rate_over(source: RateSource, t1: float, t2: float) -> float:
    """Short rate over ``[t1, t2]`` from a curve, a callable or a constant."""
    if source is None:
        return 0.0
    if hasattr(source, "forward_rate"):
        r = source.forward_rate(t1, t2)
    elif callable(source):
        r = source(t1, t2)
    else:
        r = source
    r = float(r)
    if not np.isfinite(r):
        raise NumericalError(f"non-finite rate over [{t1}, {t2}]")
    return r


class LinearOpComposite(LinearOp):
    """Sum of per-direction operators plus an explicit mixed part.

    Subclasses provide :meth:`apply_direction`, :meth:`apply_mixed`,
    :meth:`solve_splitting`, :meth:`set_time` and
    :meth:`to_matrix_decomp`; the remaining members have sensible defaults.
    ``set_time`` must be called before every step because coefficients are
    in general time dependent.  Instances cache per-step state and must not
    be shared between concurrent solves.
    """

    mesher: MesherComposite

    @property
    def directions(self) -> tuple[int, ...]:
        """Directions that carry an implicit (tridiagonal) part."""
        return tuple(range(self.mesher.ndim))

    def size(self) -> int:
        """Number of spatial directions handled."""
        return len(self.directions)

    @property
    def has_mixed(self) -> bool:
        """Whether :meth:`apply_mixed` can be non-zero."""
        return True

    def set_time(self, t1: float, t2: float) -> None:
        raise NotImplementedError

    def apply(self, r: np.ndarray) -> np.ndarray:
        out = self.apply_mixed(r)
        for d in self.directions:
            out = out + self.apply_direction(d, r)
        return out

    def apply_direction(self, direction: int, r: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def apply_mixed(self, r: np.ndarray) -> np.ndarray:
        return np.zeros_like(np.asarray(r, dtype=float))

    def solve_splitting(self, direction: int, r: np.ndarray, a: float) -> np.ndarray:
        raise NotImplementedError

    def preconditioner(self, r: np.ndarray, dt: float) -> np.ndarray:
        """Approximate ``(I - dt L)^{-1} r`` by the first direction's solve."""
        return self.solve_splitting(self.directions[0], r, dt)

    def to_matrix_decomp(self) -> list[sparse.csr_matrix]:
        raise NotImplementedError

    def to_matrix(self) -> sparse.csr_matrix:
        mats = self.to_matrix_decomp()
        out = mats[0]
        for m in mats[1:]:
            out = out + m
        return out.tocsr()


class _TimedComposite(LinearOpComposite):
    """Shared bookkeeping: last ``set_time`` bounds and the stale-time guard."""

    _time: Optional[tuple[float, float]] = None

    @property
    def last_time(self) -> Optional[tuple[float, float]]:
        return self._time

    def _require_time(self) -> None:
        if self._time is None:
            raise SolverStateError(
                f"{type(self).__name__}.set_time() must be called before applying the operator"
            )

    def _zeros(self, r: np.ndarray) -> np.ndarray:
        return np.zeros_like(np.asarray(r, dtype=float))


class OperatorSum(_TimedComposite):
    """Generic composite built from named operator pieces.

    Parameters
    ----------
    mesher : MesherComposite
    operators : mapping of str to LinearOp
        Named pieces.  :class:`TripleBandLinearOp` pieces are summed per
        direction and solved implicitly; every other piece (nine-point
        cross terms, user-defined operators) forms the mixed part.
    rate : curve, callable or float, optional
        Zero-order discount term ``-r(t1, t2)``, split evenly across the
        directions.  A curve is queried via ``forward_rate(t1, t2)``.

    Examples
    --------
    >>> m = MesherComposite(Uniform1dMesher(-1, 1, 51), Uniform1dMesher(-1, 1, 41))
    >>> op = OperatorSum(m, {
    ...     "dxx": SecondDerivativeOp(0, m).mult(0.5),
    ...     "dyy": SecondDerivativeOp(1, m).mult(0.5),
    ...     "dxy": SecondOrderMixedDerivativeOp(0, 1, m).mult(0.3),
    ... }, rate=0.02)
    """

    def __init__(
        self,
        mesher: MesherComposite,
        operators: Mapping[str, LinearOp],
        rate: RateSource = None,
    ):
        if not operators:
            raise ConfigurationError("an operator sum needs at least one operator")
        self.mesher = mesher
        self.operators = dict(operators)
        self.rate = rate

        static: dict[int, TripleBandLinearOp] = {}
        mixed: list[LinearOp] = []
        for name, op in self.operators.items():
            if isinstance(op, TripleBandLinearOp):
                if op.mesher is not mesher:
                    raise ConfigurationError(f"operator {name!r} is on a different mesher")
                static[op.direction] = op.copy() if op.direction not in static \
                    else static[op.direction].add(op)
            elif isinstance(op, LinearOp):
                mixed.append(op)
            else:
                raise ConfigurationError(f"operator {name!r} is not a LinearOp")

        self._directions = tuple(sorted(static))
        self._static = static
        self._mixed = mixed
        self._maps = {d: op.copy() for d, op in static.items()}
        self._time: Optional[tuple[float, float]] = None

    @property
    def directions(self) -> tuple[int, ...]:
        return self._directions

    @property
    def has_mixed(self) -> bool:
        return bool(self._mixed)

    def set_time(self, t1: float, t2: float) -> None:
        r = rate_over(self.rate, t1, t2)
        n = max(len(self._directions), 1)
        for d in self._directions:
            self._maps[d].axpyb(None, None, self._static[d], -r / n)
        if not self._directions and r != 0.0:
            raise ConfigurationError("a rate term needs at least one implicit direction")
        self._time = (t1, t2)

    def apply_direction(self, direction: int, r: np.ndarray) -> np.ndarray:
        self._require_time()
        if direction in self._maps:
            return self._maps[direction].apply(r)
        return self._zeros(r)

    def apply_mixed(self, r: np.ndarray) -> np.ndarray:
        self._require_time()
        out = self._zeros(r)
        for op in self._mixed:
            out = out + op.apply(r)
        return out

    def solve_splitting(self, direction: int, r: np.ndarray, a: float) -> np.ndarray:
        self._require_time()
        if direction in self._maps:
            return self._maps[direction].solve_splitting(r, -a, 1.0)
        return np.array(r, dtype=float)

    def to_matrix_decomp(self) -> list[sparse.csr_matrix]:
        self._require_time()
        mats = [self._maps[d].to_matrix() for d in self._directions]
        mats.extend(op.to_matrix() for op in self._mixed)
        return mats
