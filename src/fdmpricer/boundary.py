"""Boundary conditions for the finite-difference schemes.

A condition is bound to one side (``"lower"`` or ``"upper"``) of one
direction of a :class:`MesherComposite` and hooks into four phases of a
time step:

- ``apply_before_applying(op)``: before an explicit operator evaluation;
- ``apply_after_applying(values)``: after an explicit evaluation;
- ``apply_before_solving(op, rhs)``: before an implicit solve;
- ``apply_after_solving(values)``: after the final implicit solve.

``set_time(t)`` refreshes time-dependent boundary values.  Value arrays are
modified in place.  :class:`BoundaryConditionSet` runs every phase over its
members in insertion order.
"""

from __future__ import annotations

import numpy as np
from typing import Callable, Iterable, Iterator, Optional, Union

from .composite import LinearOpComposite
from .exceptions import ConfigurationError
from .meshers import MesherComposite

__all__ = [
    "LOWER",
    "UPPER",
    "BoundaryCondition",
    "DirichletBoundary",
    "TimeDependentDirichletBoundary",
    "DiscountDirichletBoundary",
    "NeumannBoundary",
    "LinearExtrapolationBoundary",
    "BoundaryConditionSet",
]

LOWER = "lower"
UPPER = "upper"

BoundaryValue = Union[float, np.ndarray]


class BoundaryCondition:
    """Base class; every phase is a no-op unless overridden."""

    def __init__(self, mesher: MesherComposite, direction: int, side: str):
        if not 0 <= direction < mesher.ndim:
            raise ConfigurationError(
                f"direction {direction} outside a {mesher.ndim}-dimensional mesher"
            )
        self.mesher = mesher
        self.direction = direction
        self.side = side
        self.indices = mesher.layout.edge_indices(direction, side)

    @property
    def key(self) -> tuple[int, str]:
        return self.direction, self.side

    def pinned_values(self) -> Optional[np.ndarray]:
        """Fixed value per edge node, or ``None`` if the edge is not pinned."""
        return None

    def set_time(self, t: float) -> None:
        pass

    def apply_before_applying(self, op: LinearOpComposite) -> None:
        pass

    def apply_after_applying(self, values: np.ndarray) -> None:
        pass

    def apply_before_solving(self, op: LinearOpComposite, rhs: np.ndarray) -> None:
        pass

    def apply_after_solving(self, values: np.ndarray) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(direction={self.direction}, side={self.side!r})"


# ---------------------------------------------------------------------------
# Dirichlet family
# ---------------------------------------------------------------------------

class DirichletBoundary(BoundaryCondition):
    """Pins the edge nodes to a fixed value (scalar or one per edge node)."""

    def __init__(self, mesher: MesherComposite, value: BoundaryValue,
                 direction: int, side: str):
        super().__init__(mesher, direction, side)
        self.value = self._check_value(value)

    def _check_value(self, value: BoundaryValue) -> np.ndarray:
        v = np.asarray(value, dtype=float)
        if v.ndim == 0:
            v = np.full(self.indices.size, float(v))
        if v.shape != self.indices.shape:
            raise ConfigurationError(
                f"boundary value must be a scalar or have {self.indices.size} entries"
            )
        return v

    def pinned_values(self) -> Optional[np.ndarray]:
        return self.value

    def apply_after_applying(self, values: np.ndarray) -> None:
        values[self.indices] = self.value

    def apply_before_solving(self, op: LinearOpComposite, rhs: np.ndarray) -> None:
        rhs[self.indices] = self.value

    def apply_after_solving(self, values: np.ndarray) -> None:
        values[self.indices] = self.value


class TimeDependentDirichletBoundary(DirichletBoundary):
    """Dirichlet value ``value_fn(t)`` refreshed on every :meth:`set_time`."""

    def __init__(self, mesher: MesherComposite, value_fn: Callable[[float], BoundaryValue],
                 direction: int, side: str):
        self.value_fn = value_fn
        super().__init__(mesher, 0.0, direction, side)

    def pinned_values(self) -> Optional[np.ndarray]:
        return None

    def set_time(self, t: float) -> None:
        self.value = self._check_value(self.value_fn(t))


class DiscountDirichletBoundary(TimeDependentDirichletBoundary):
    """A value fixed at ``maturity`` discounted back to the current time."""

    def __init__(self, mesher: MesherComposite, r_curve, maturity: float,
                 value_at_maturity: BoundaryValue, direction: int, side: str):
        self.r_curve = r_curve
        self.maturity = float(maturity)
        self.value_at_maturity = value_at_maturity

        def value_fn(t):
            df = r_curve.discount(self.maturity) / r_curve.discount(t)
            return np.asarray(value_at_maturity, dtype=float) * df

        super().__init__(mesher, value_fn, direction, side)
        self.set_time(self.maturity)


# ---------------------------------------------------------------------------
# Derivative conditions
# ---------------------------------------------------------------------------

class NeumannBoundary(BoundaryCondition):
    """First difference against the adjacent node equals ``slope``."""

    def __init__(self, mesher: MesherComposite, slope: float, direction: int, side: str):
        super().__init__(mesher, direction, side)
        self.slope = float(slope)
        step = mesher.layout.spacing[direction]
        if side == LOWER:
            self._inner = self.indices + step
            self._h = mesher.dplus(direction)[self.indices]
            self._sign = -1.0
        else:
            self._inner = self.indices - step
            self._h = mesher.dminus(direction)[self.indices]
            self._sign = 1.0

    def _impose(self, values: np.ndarray) -> None:
        values[self.indices] = values[self._inner] + self._sign * self.slope * self._h

    def apply_after_applying(self, values: np.ndarray) -> None:
        self._impose(values)

    def apply_after_solving(self, values: np.ndarray) -> None:
        self._impose(values)


class LinearExtrapolationBoundary(BoundaryCondition):
    """Zero second derivative: edge value extrapolated from two inner nodes."""

    def __init__(self, mesher: MesherComposite, direction: int, side: str):
        super().__init__(mesher, direction, side)
        if mesher.layout.dims[direction] < 3:
            raise ConfigurationError("linear extrapolation needs at least 3 nodes")
        step = mesher.layout.spacing[direction]
        s = step if side == LOWER else -step
        self._i1 = self.indices + s
        self._i2 = self.indices + 2 * s
        x = mesher.locations(direction)
        self._w = (x[self.indices] - x[self._i1]) / (x[self._i1] - x[self._i2])

    def _impose(self, values: np.ndarray) -> None:
        v1 = values[self._i1]
        values[self.indices] = v1 + self._w * (v1 - values[self._i2])

    def apply_after_applying(self, values: np.ndarray) -> None:
        self._impose(values)

    def apply_after_solving(self, values: np.ndarray) -> None:
        self._impose(values)


# ---------------------------------------------------------------------------
# Ordered set
# ---------------------------------------------------------------------------

def _agree(a: BoundaryCondition, b: BoundaryCondition,
           ia: np.ndarray, ib: np.ndarray) -> bool:
    va, vb = a.pinned_values(), b.pinned_values()
    if va is None or vb is None:
        return False
    return bool(np.array_equal(va[ia], vb[ib]))


class BoundaryConditionSet:
    """Ordered collection of conditions that never disagree on a node.

    At most one condition per (direction, side).  Edges of different
    directions share corner nodes; there both conditions must pin the same
    fixed value, otherwise :meth:`add` raises.
    """

    def __init__(self, conditions: Iterable[BoundaryCondition] = ()):
        self._conditions: list[BoundaryCondition] = []
        for bc in conditions:
            self.add(bc)

    def add(self, bc: BoundaryCondition) -> "BoundaryConditionSet":
        for other in self._conditions:
            if other.key == bc.key:
                raise ConfigurationError(
                    f"conflicting boundary conditions on direction {bc.direction}, "
                    f"{bc.side} side: {other!r} and {bc!r}"
                )
            shared, i_new, i_old = np.intersect1d(
                bc.indices, other.indices, assume_unique=True, return_indices=True
            )
            if shared.size and not _agree(bc, other, i_new, i_old):
                raise ConfigurationError(
                    f"{bc!r} and {other!r} disagree on {shared.size} shared node(s), "
                    f"first at flat index {shared[0]}"
                )
        self._conditions.append(bc)
        return self

    def __iter__(self) -> Iterator[BoundaryCondition]:
        return iter(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)

    def set_time(self, t: float) -> None:
        for bc in self._conditions:
            bc.set_time(t)

    def apply_before_applying(self, op: LinearOpComposite) -> None:
        for bc in self._conditions:
            bc.apply_before_applying(op)

    def apply_after_applying(self, values: np.ndarray) -> None:
        for bc in self._conditions:
            bc.apply_after_applying(values)

    def apply_before_solving(self, op: LinearOpComposite, rhs: np.ndarray) -> None:
        for bc in self._conditions:
            bc.apply_before_solving(op, rhs)

    def apply_after_solving(self, values: np.ndarray) -> None:
        for bc in self._conditions:
            bc.apply_after_solving(values)
