"""Tests for the flat-index layout."""

import numpy as np
import pytest
from fdmpricer import Layout, ConfigurationError


class TestIndexing:
    def test_first_dimension_fastest(self):
        lay = Layout([3, 4])
        assert lay.index((1, 0)) == 1
        assert lay.index((0, 1)) == 3
        assert lay.index((2, 3)) == 2 + 3 * 3

    def test_bijection(self):
        lay = Layout([3, 4, 2])
        seen = {lay.index(lay.coordinates(i)) for i in range(lay.size)}
        assert seen == set(range(lay.size))
        assert lay.size == 24

    def test_spacing(self):
        assert Layout([5, 7, 3]).spacing == (1, 5, 35)

    def test_coords_read_only(self):
        lay = Layout([3, 3])
        with pytest.raises(ValueError):
            lay.coords[0, 0] = 2

    @pytest.mark.parametrize("dims", [[], [1], [3, 1]])
    def test_rejects_degenerate(self, dims):
        with pytest.raises(ConfigurationError):
            Layout(dims)

    def test_out_of_range(self):
        lay = Layout([3, 3])
        with pytest.raises(ConfigurationError):
            lay.index((3, 0))
        with pytest.raises(ConfigurationError):
            lay.coordinates(9)


class TestNeighbourhood:
    def test_interior_shift(self):
        lay = Layout([4, 3])
        i = lay.index((1, 1))
        assert lay.neighbourhood(0, 1)[i] == lay.index((2, 1))
        assert lay.neighbourhood(1, -1)[i] == lay.index((1, 0))

    def test_reflection_at_edges(self):
        lay = Layout([4, 3])
        lo = lay.index((0, 2))
        hi = lay.index((3, 2))
        assert lay.neighbourhood(0, -1)[lo] == lay.index((1, 2))
        assert lay.neighbourhood(0, 1)[hi] == lay.index((2, 2))

    def test_diagonal(self):
        lay = Layout([4, 3])
        i = lay.index((1, 1))
        assert lay.neighbourhood(0, 1, 1, -1)[i] == lay.index((2, 0))

    def test_edges(self):
        lay = Layout([3, 2])
        assert list(lay.edge_indices(0, "lower")) == [0, 3]
        assert list(lay.edge_indices(1, "upper")) == [3, 4, 5]
        with pytest.raises(ConfigurationError):
            lay.edge_indices(0, "left")


class TestReshaping:
    def test_grid_round_trip(self):
        lay = Layout([3, 4])
        v = np.arange(12.0)
        g = lay.to_grid(v)
        assert g.shape == (3, 4)
        assert g[1, 2] == v[lay.index((1, 2))]
        np.testing.assert_array_equal(lay.from_grid(g), v)

    def test_lines(self):
        lay = Layout([3, 4])
        v = np.arange(12.0)
        lines = lay.lines(v, 1)
        assert lines.shape == (4, 3)
        np.testing.assert_array_equal(lines[:, 0], v[[0, 3, 6, 9]])
        np.testing.assert_array_equal(lay.from_lines(lines, 1), v)

    def test_equality(self):
        assert Layout([3, 4]) == Layout((3, 4))
        assert Layout([3, 4]) != Layout([4, 3])
        assert hash(Layout([3, 4])) == hash(Layout([3, 4]))
