"""Discretised differential operators on a :class:`MesherComposite`.

All operators act on flat value arrays (see :mod:`fdmpricer.layout`).

* :class:`TripleBandLinearOp`: one lower/diagonal/upper band per node along
  a single direction.  Derivative operators of the form
  ``a(x) ∂²/∂x² + b(x) ∂/∂x + c(x)`` along one direction are combined
  cheaply with :meth:`~TripleBandLinearOp.mult`,
  :meth:`~TripleBandLinearOp.add` and :meth:`~TripleBandLinearOp.axpyb`
  without ever materialising a matrix, and inverted exactly with a batched
  Thomas algorithm.
* :class:`NinePointLinearOp`: nine-point stencil coupling two directions,
  used for the mixed derivative ``∂²/∂x∂y``.

Stencils are the standard three-point central differences on non-uniform
grids (Duffy, *Finite Difference Methods in Financial Engineering*,
Wiley 2006, ch. 9).  At the edges the first derivative is one-sided and
the second derivative vanishes; edge values are then governed by the
PDE's remaining terms or by boundary conditions.
"""

from __future__ import annotations

import numpy as np
from scipy import sparse
from typing import Optional, Union

from .exceptions import ConfigurationError, NumericalError
from .meshers import MesherComposite

__all__ = [
    "thomas_solve",
    "LinearOp",
    "TripleBandLinearOp",
    "FirstDerivativeOp",
    "SecondDerivativeOp",
    "NinePointLinearOp",
    "SecondOrderMixedDerivativeOp",
]

Coefficient = Union[float, np.ndarray, None]


# ---------------------------------------------------------------------------
# Tridiagonal solver
# ---------------------------------------------------------------------------

def thomas_solve(
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
    d: np.ndarray,
) -> np.ndarray:
    """Solve tridiagonal systems ``A x = d`` via the Thomas algorithm, O(N).

    Every column of the 2-D inputs is an independent system, so all lines
    of a multi-dimensional grid along one direction are solved at once.

    Parameters
    ----------
    a : sub-diagonal, shape (N, M), ``a[0]`` unused.
    b : main diagonal, shape (N, M).
    c : super-diagonal, shape (N, M), ``c[-1]`` unused.
    d : right-hand side, shape (N, M).

    Raises
    ------
    NumericalError
        If a pivot vanishes or the solution is not finite.
    """
    N = b.shape[0]
    b_ = np.array(b, dtype=float)
    d_ = np.array(d, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        for i in range(1, N):
            if np.any(b_[i - 1] == 0.0):
                raise NumericalError(f"singular tridiagonal system (zero pivot at row {i - 1})")
            w = a[i] / b_[i - 1]
            b_[i] -= w * c[i - 1]
            d_[i] -= w * d_[i - 1]
        if np.any(b_[-1] == 0.0):
            raise NumericalError(f"singular tridiagonal system (zero pivot at row {N - 1})")
        x = np.empty_like(d_)
        x[-1] = d_[-1] / b_[-1]
        for i in range(N - 2, -1, -1):
            x[i] = (d_[i] - c[i] * x[i + 1]) / b_[i]
    if not np.all(np.isfinite(x)):
        raise NumericalError("tridiagonal solve produced non-finite values")
    return x


def _as_coefficient(u: Coefficient, size: int) -> np.ndarray:
    u = np.asarray(u, dtype=float)
    if u.ndim == 0:
        u = np.full(size, float(u))
    if u.shape != (size,):
        raise ConfigurationError(f"coefficient must be a scalar or have shape ({size},), got {u.shape}")
    if not np.all(np.isfinite(u)):
        raise NumericalError("operator coefficient is not finite")
    return u


# ---------------------------------------------------------------------------
# Base operator
# ---------------------------------------------------------------------------

class LinearOp:
    """A linear map on flat value arrays.

    ``apply`` must be pure: the same input always gives the same output until
    coefficients are explicitly refreshed.
    """

    def apply(self, r: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def to_matrix(self) -> sparse.csr_matrix:
        raise NotImplementedError

    def __call__(self, r: np.ndarray) -> np.ndarray:
        return self.apply(r)


# ---------------------------------------------------------------------------
# Triple-band operator
# ---------------------------------------------------------------------------

class TripleBandLinearOp(LinearOp):
    """Three-band operator along one direction of a composite mesh.

    Row ``i`` reads ``lower[i]*v[i0[i]] + diag[i]*v[i] + upper[i]*v[i2[i]]``
    where ``i0``/``i2`` are the flat indices of the previous/next node along
    ``direction`` (reflected back inside at the edges).
    """

    def __init__(self, direction: int, mesher: MesherComposite):
        if not 0 <= direction < mesher.ndim:
            raise ConfigurationError(
                f"direction {direction} outside a {mesher.ndim}-dimensional mesher"
            )
        self.direction = direction
        self.mesher = mesher
        layout = mesher.layout
        self._i0 = layout.neighbourhood(direction, -1)
        self._i2 = layout.neighbourhood(direction, +1)
        n = layout.size
        self.lower = np.zeros(n)
        self.diag = np.zeros(n)
        self.upper = np.zeros(n)

    @property
    def size(self) -> int:
        return self.diag.size

    def _like(self, lower, diag, upper) -> "TripleBandLinearOp":
        op = TripleBandLinearOp.__new__(TripleBandLinearOp)
        op.direction = self.direction
        op.mesher = self.mesher
        op._i0 = self._i0
        op._i2 = self._i2
        op.lower = lower
        op.diag = diag
        op.upper = upper
        return op

    def copy(self) -> "TripleBandLinearOp":
        return self._like(self.lower.copy(), self.diag.copy(), self.upper.copy())

    def _check_compatible(self, other: "TripleBandLinearOp") -> None:
        if other.direction != self.direction or other.mesher is not self.mesher:
            raise ConfigurationError(
                "triple-band operators must share mesher and direction "
                f"(got directions {self.direction} and {other.direction})"
            )

    # -- action --------------------------------------------------------------

    def apply(self, r: np.ndarray) -> np.ndarray:
        r = np.asarray(r, dtype=float)
        if r.shape != self.diag.shape:
            raise ConfigurationError(f"expected {self.diag.size} values, got {r.shape}")
        return self.lower * r[self._i0] + self.diag * r + self.upper * r[self._i2]

    def to_matrix(self) -> sparse.csr_matrix:
        n = self.size
        rows = np.tile(np.arange(n), 3)
        cols = np.concatenate([self._i0, np.arange(n), self._i2])
        vals = np.concatenate([self.lower, self.diag, self.upper])
        return sparse.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()

    # -- algebra -------------------------------------------------------------

    def mult(self, u: Coefficient) -> "TripleBandLinearOp":
        """Scale row ``i`` by ``u[i]`` (``diag(u) @ L``)."""
        u = _as_coefficient(u, self.size)
        return self._like(self.lower * u, self.diag * u, self.upper * u)

    def mult_r(self, u: Coefficient) -> "TripleBandLinearOp":
        """Scale column ``j`` by ``u[j]`` (``L @ diag(u)``)."""
        u = _as_coefficient(u, self.size)
        return self._like(self.lower * u[self._i0], self.diag * u, self.upper * u[self._i2])

    def add(self, other: "TripleBandLinearOp") -> "TripleBandLinearOp":
        self._check_compatible(other)
        return self._like(self.lower + other.lower,
                          self.diag + other.diag,
                          self.upper + other.upper)

    def __add__(self, other: "TripleBandLinearOp") -> "TripleBandLinearOp":
        return self.add(other)

    def axpyb(
        self,
        a: Coefficient,
        x: Optional["TripleBandLinearOp"],
        y: "TripleBandLinearOp",
        b: Coefficient,
    ) -> None:
        """Overwrite this operator with ``a*x + y + b*I`` in place.

        ``a`` scales the rows of ``x`` (scalar or per-node array) and ``b``
        is a zero-order term added to the diagonal.  Pass ``None`` for
        ``a``/``x`` to drop the first term and ``None`` for ``b`` to skip
        the diagonal shift.  Nothing is modified if a coefficient is
        invalid.
        """
        self._check_compatible(y)
        n = self.size
        if a is None or x is None:
            lower, diag, upper = y.lower.copy(), y.diag.copy(), y.upper.copy()
        else:
            self._check_compatible(x)
            a = _as_coefficient(a, n)
            lower = a * x.lower + y.lower
            diag = a * x.diag + y.diag
            upper = a * x.upper + y.upper
        if b is not None:
            diag = diag + _as_coefficient(b, n)
        self.lower, self.diag, self.upper = lower, diag, upper

    # -- inversion -----------------------------------------------------------

    def solve_splitting(self, r: np.ndarray, a: float, b: float = 1.0) -> np.ndarray:
        """Solve ``(b*I + a*L) x = r`` exactly, line by line along the direction."""
        r = np.asarray(r, dtype=float)
        if r.shape != self.diag.shape:
            raise ConfigurationError(f"expected {self.diag.size} values, got {r.shape}")
        layout = self.mesher.layout
        d = self.direction
        lo = layout.lines(a * self.lower, d)
        di = layout.lines(b + a * self.diag, d)
        up = layout.lines(a * self.upper, d)
        # reflected neighbours at the line ends fold into the inner band
        up[0] = up[0] + lo[0]
        lo[-1] = lo[-1] + up[-1]
        x = thomas_solve(lo, di, up, layout.lines(r, d))
        return layout.from_lines(x, d)


class FirstDerivativeOp(TripleBandLinearOp):
    """Central ∂/∂x on a non-uniform mesh, one-sided at the edges."""

    def __init__(self, direction: int, mesher: MesherComposite):
        super().__init__(direction, mesher)
        hm = mesher.dminus(direction)
        hp = mesher.dplus(direction)
        layout = mesher.layout
        lo_edge = layout.is_lower_edge(direction)
        up_edge = layout.is_upper_edge(direction)
        inner = ~(lo_edge | up_edge)

        hm_i, hp_i = hm[inner], hp[inner]
        self.lower[inner] = -hp_i / (hm_i * (hm_i + hp_i))
        self.diag[inner] = (hp_i - hm_i) / (hm_i * hp_i)
        self.upper[inner] = hm_i / (hp_i * (hm_i + hp_i))

        self.diag[lo_edge] = -1.0 / hp[lo_edge]
        self.upper[lo_edge] = 1.0 / hp[lo_edge]

        self.lower[up_edge] = -1.0 / hm[up_edge]
        self.diag[up_edge] = 1.0 / hm[up_edge]


class SecondDerivativeOp(TripleBandLinearOp):
    """Central ∂²/∂x² on a non-uniform mesh, zero at the edges."""

    def __init__(self, direction: int, mesher: MesherComposite):
        super().__init__(direction, mesher)
        hm = mesher.dminus(direction)
        hp = mesher.dplus(direction)
        layout = mesher.layout
        inner = ~(layout.is_lower_edge(direction) | layout.is_upper_edge(direction))

        hm_i, hp_i = hm[inner], hp[inner]
        self.lower[inner] = 2.0 / (hm_i * (hm_i + hp_i))
        self.diag[inner] = -2.0 / (hm_i * hp_i)
        self.upper[inner] = 2.0 / (hp_i * (hm_i + hp_i))


# ---------------------------------------------------------------------------
# Nine-point operator
# ---------------------------------------------------------------------------

_OFFSETS = [(k, l) for k in (-1, 0, 1) for l in (-1, 0, 1)]


class NinePointLinearOp(LinearOp):
    """Stencil over the 3x3 neighbourhood spanned by two directions."""

    def __init__(self, d0: int, d1: int, mesher: MesherComposite):
        if d0 == d1:
            raise ConfigurationError("a nine-point operator needs two distinct directions")
        for d in (d0, d1):
            if not 0 <= d < mesher.ndim:
                raise ConfigurationError(
                    f"direction {d} outside a {mesher.ndim}-dimensional mesher"
                )
        self.d0, self.d1 = d0, d1
        self.mesher = mesher
        layout = mesher.layout
        self._idx = {
            (k, l): layout.neighbourhood(d0, k, d1, l) for k, l in _OFFSETS
        }
        self.weights = {(k, l): np.zeros(layout.size) for k, l in _OFFSETS}

    @property
    def size(self) -> int:
        return self.mesher.size

    def apply(self, r: np.ndarray) -> np.ndarray:
        r = np.asarray(r, dtype=float)
        if r.shape != (self.size,):
            raise ConfigurationError(f"expected {self.size} values, got {r.shape}")
        out = np.zeros(self.size)
        for key, w in self.weights.items():
            out += w * r[self._idx[key]]
        return out

    def mult(self, u: Coefficient) -> "NinePointLinearOp":
        u = _as_coefficient(u, self.size)
        op = NinePointLinearOp.__new__(NinePointLinearOp)
        op.d0, op.d1, op.mesher, op._idx = self.d0, self.d1, self.mesher, self._idx
        op.weights = {key: w * u for key, w in self.weights.items()}
        return op

    def to_matrix(self) -> sparse.csr_matrix:
        n = self.size
        rows = np.tile(np.arange(n), len(_OFFSETS))
        cols = np.concatenate([self._idx[key] for key in _OFFSETS])
        vals = np.concatenate([self.weights[key] for key in _OFFSETS])
        return sparse.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()


class SecondOrderMixedDerivativeOp(NinePointLinearOp):
    """∂²/∂x∂y as the product of the two central first-derivative stencils.

    Rows of nodes on an edge of either direction are zero.
    """

    def __init__(self, d0: int, d1: int, mesher: MesherComposite):
        super().__init__(d0, d1, mesher)
        layout = mesher.layout
        inner = np.ones(layout.size, dtype=bool)
        for d in (d0, d1):
            inner &= ~(layout.is_lower_edge(d) | layout.is_upper_edge(d))

        def central(d):
            hm, hp = mesher.dminus(d)[inner], mesher.dplus(d)[inner]
            return {
                -1: -hp / (hm * (hm + hp)),
                0: (hp - hm) / (hm * hp),
                1: hm / (hp * (hm + hp)),
            }

        w0, w1 = central(d0), central(d1)
        for k, l in _OFFSETS:
            self.weights[(k, l)][inner] = w0[k] * w1[l]
