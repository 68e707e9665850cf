"""Multi-index ↔ flat-index layout of a Cartesian grid.

Values live in a flat 1-D array; the first dimension runs fastest, i.e. the
flat index of ``(i0, i1, ..., ik)`` is ``i0 + n0*i1 + n0*n1*i2 + ...``
(Fortran order in numpy terms).  The mapping is a bijection over the full
Cartesian product and never changes after construction.
"""

from __future__ import annotations

import numpy as np
from typing import Sequence

from .exceptions import ConfigurationError

__all__ = ["Layout"]


class Layout:
    """Index arithmetic for a grid with ``dims[d]`` points in direction ``d``."""

    def __init__(self, dims: Sequence[int]):
        dims = tuple(int(n) for n in dims)
        if len(dims) == 0:
            raise ConfigurationError("a layout needs at least one dimension")
        if any(n < 2 for n in dims):
            raise ConfigurationError(f"every dimension needs >= 2 points, got {dims}")
        self._dims = dims
        self._spacing = tuple(int(s) for s in np.cumprod((1,) + dims[:-1]))
        self._size = int(np.prod(dims))
        self._coords = np.stack(
            np.unravel_index(np.arange(self._size), dims, order="F"), axis=1
        )
        self._coords.setflags(write=False)

    @property
    def dims(self) -> tuple[int, ...]:
        return self._dims

    @property
    def ndim(self) -> int:
        return len(self._dims)

    @property
    def size(self) -> int:
        return self._size

    @property
    def spacing(self) -> tuple[int, ...]:
        return self._spacing

    @property
    def coords(self) -> np.ndarray:
        """Read-only ``(size, ndim)`` array of the multi-index of every node."""
        return self._coords

    def index(self, coords: Sequence[int]) -> int:
        if len(coords) != self.ndim:
            raise ConfigurationError(
                f"expected {self.ndim} coordinates, got {len(coords)}"
            )
        for c, n in zip(coords, self._dims):
            if not 0 <= c < n:
                raise ConfigurationError(f"coordinates {tuple(coords)} outside {self._dims}")
        return int(sum(c * s for c, s in zip(coords, self._spacing)))

    def coordinates(self, index: int) -> tuple[int, ...]:
        if not 0 <= index < self._size:
            raise ConfigurationError(f"index {index} outside [0, {self._size})")
        return tuple(int(c) for c in self._coords[index])

    def neighbourhood(self, direction: int, offset: int, direction2: int | None = None,
                      offset2: int = 0) -> np.ndarray:
        """Flat index of each node shifted by *offset* along *direction*.

        Shifts that leave the grid are reflected back inside it, so an edge
        node's missing neighbour maps onto its interior one.  An optional
        second shift along *direction2* gives the diagonal neighbours used
        by mixed-derivative stencils.
        """
        idx = np.arange(self._size)
        idx = idx + self._shift(direction, offset)
        if direction2 is not None:
            idx = idx + self._shift(direction2, offset2)
        return idx

    def _shift(self, direction: int, offset: int) -> np.ndarray:
        n = self._dims[direction]
        c = self._coords[:, direction]
        target = c + offset
        target = np.where(target < 0, -target, target)
        target = np.where(target >= n, 2 * (n - 1) - target, target)
        return (target - c) * self._spacing[direction]

    def is_lower_edge(self, direction: int) -> np.ndarray:
        return self._coords[:, direction] == 0

    def is_upper_edge(self, direction: int) -> np.ndarray:
        return self._coords[:, direction] == self._dims[direction] - 1

    def edge_indices(self, direction: int, side: str) -> np.ndarray:
        if side == "lower":
            return np.flatnonzero(self.is_lower_edge(direction))
        if side == "upper":
            return np.flatnonzero(self.is_upper_edge(direction))
        raise ConfigurationError(f"side must be 'lower' or 'upper', got {side!r}")

    # -- reshaping helpers --------------------------------------------------

    def to_grid(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(values).reshape(self._dims, order="F")

    def from_grid(self, grid: np.ndarray) -> np.ndarray:
        return np.asarray(grid).reshape(-1, order="F")

    def lines(self, values: np.ndarray, direction: int) -> np.ndarray:
        """Values rearranged as ``(dims[direction], n_lines)`` columns."""
        g = self.to_grid(values)
        return np.moveaxis(g, direction, 0).reshape(self._dims[direction], -1)

    def from_lines(self, lines: np.ndarray, direction: int) -> np.ndarray:
        shape = (self._dims[direction],) + tuple(
            n for d, n in enumerate(self._dims) if d != direction
        )
        g = np.moveaxis(np.asarray(lines).reshape(shape), 0, direction)
        return self.from_grid(g)

    def __eq__(self, other) -> bool:
        return isinstance(other, Layout) and other._dims == self._dims

    def __hash__(self) -> int:
        return hash(self._dims)

    def __repr__(self) -> str:
        return f"Layout({list(self._dims)})"
