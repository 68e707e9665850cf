"""Tests for boundary conditions and the boundary-condition set."""

import numpy as np
import pytest
from fdmpricer import (
    ConfigurationError, FlatForward, Uniform1dMesher, Concentrating1dMesher, MesherComposite,
    DirichletBoundary, TimeDependentDirichletBoundary, DiscountDirichletBoundary,
    NeumannBoundary, LinearExtrapolationBoundary, BoundaryConditionSet,
    BackwardSolver, OperatorSum, SecondDerivativeOp, SchemeDesc,
)
from fdmpricer.boundary import LOWER, UPPER


@pytest.fixture
def mesher():
    return MesherComposite(Concentrating1dMesher(0.0, 4.0, 9, 1.0, 0.5), Uniform1dMesher(0.0, 1.0, 5))


class TestDirichlet:
    def test_pins_after_solving(self, mesher):
        bc = DirichletBoundary(mesher, 3.5, 0, UPPER)
        values = np.random.default_rng(0).normal(size=mesher.size)
        bc.apply_after_solving(values)
        assert np.all(values[bc.indices] == 3.5)

    def test_per_node_values(self, mesher):
        target = np.arange(5.0)
        bc = DirichletBoundary(mesher, target, 0, LOWER)
        values = np.zeros(mesher.size)
        bc.apply_after_applying(values)
        np.testing.assert_array_equal(values[bc.indices], target)
        others = np.setdiff1d(np.arange(mesher.size), bc.indices)
        assert np.all(values[others] == 0.0)

    def test_pins_rhs_before_solving(self, mesher):
        bc = DirichletBoundary(mesher, -1.0, 1, LOWER)
        rhs = np.ones(mesher.size)
        bc.apply_before_solving(None, rhs)
        assert np.all(rhs[bc.indices] == -1.0)

    def test_wrong_value_shape(self, mesher):
        with pytest.raises(ConfigurationError):
            DirichletBoundary(mesher, np.ones(3), 0, LOWER)

    def test_bad_direction_or_side(self, mesher):
        with pytest.raises(ConfigurationError):
            DirichletBoundary(mesher, 0.0, 2, LOWER)
        with pytest.raises(ConfigurationError):
            DirichletBoundary(mesher, 0.0, 0, "left")


class TestTimeDependent:
    def test_value_refreshed(self, mesher):
        bc = TimeDependentDirichletBoundary(mesher, lambda t: 2.0 * t, 0, UPPER)
        values = np.zeros(mesher.size)
        bc.set_time(0.75)
        bc.apply_after_solving(values)
        assert np.all(values[bc.indices] == 1.5)

    def test_discounted(self, mesher):
        curve = FlatForward(0.05)
        bc = DiscountDirichletBoundary(mesher, curve, 2.0, 100.0, 0, UPPER)
        bc.set_time(0.5)
        values = np.zeros(mesher.size)
        bc.apply_after_solving(values)
        np.testing.assert_allclose(values[bc.indices], 100.0 * np.exp(-0.05 * 1.5))


class TestDerivativeConditions:
    def test_neumann_slope(self, mesher):
        x = mesher.locations(0)
        bc = NeumannBoundary(mesher, 2.0, 0, UPPER)
        values = x.copy()
        bc.apply_after_solving(values)
        hm = mesher.dminus(0)[bc.indices]
        inner = values[bc.indices - 1]
        np.testing.assert_allclose((values[bc.indices] - inner) / hm, 2.0)

    def test_linear_extrapolation_keeps_lines(self, mesher):
        x = mesher.locations(0)
        values = 3.0 * x - 1.0
        expected = values.copy()
        values[mesher.layout.edge_indices(0, LOWER)] = 99.0
        LinearExtrapolationBoundary(mesher, 0, LOWER).apply_after_solving(values)
        np.testing.assert_allclose(values, expected, atol=1e-12)


class TestBoundaryConditionSet:
    def test_dirichlet_invariant_after_solving(self, mesher):
        bcs = BoundaryConditionSet([
            DirichletBoundary(mesher, 1.0, 0, LOWER),
            DirichletBoundary(mesher, 2.0, 0, UPPER),
            DirichletBoundary(mesher, np.linspace(1.0, 2.0, 9), 1, UPPER),
        ])
        values = np.random.default_rng(3).normal(size=mesher.size)
        bcs.set_time(0.3)
        bcs.apply_after_solving(values)
        for bc in bcs:
            np.testing.assert_array_equal(values[bc.indices], bc.value)

    def test_corner_pinned_twice_to_the_same_value(self, mesher):
        bcs = BoundaryConditionSet([
            DirichletBoundary(mesher, 1.0, 0, UPPER),
            DirichletBoundary(mesher, 1.0, 1, UPPER),
        ])
        values = np.zeros(mesher.size)
        bcs.apply_after_solving(values)
        assert values[mesher.layout.index((8, 4))] == 1.0

    def test_corner_pinned_to_different_values(self, mesher):
        bcs = BoundaryConditionSet([DirichletBoundary(mesher, 2.5, 0, LOWER)])
        with pytest.raises(ConfigurationError, match="shared node"):
            bcs.add(DirichletBoundary(mesher, -1.0, 1, UPPER))
        assert len(bcs) == 1

    def test_per_node_values_disagree_only_at_corner(self, mesher):
        # the y-lower edge differs from the x-lower edge only at their corner
        edge = np.full(9, 3.0)
        edge[0] = 0.0
        with pytest.raises(ConfigurationError):
            BoundaryConditionSet([
                DirichletBoundary(mesher, 3.0, 0, LOWER),
                DirichletBoundary(mesher, edge, 1, LOWER),
            ])

    def test_time_dependent_edge_cannot_share_a_corner(self, mesher):
        bcs = BoundaryConditionSet([DirichletBoundary(mesher, 0.0, 0, UPPER)])
        with pytest.raises(ConfigurationError):
            bcs.add(TimeDependentDirichletBoundary(mesher, lambda t: 0.0, 1, LOWER))
        with pytest.raises(ConfigurationError):
            bcs.add(LinearExtrapolationBoundary(mesher, 1, UPPER))

    def test_opposite_edges_do_not_overlap(self, mesher):
        bcs = BoundaryConditionSet([
            DirichletBoundary(mesher, 1.0, 0, LOWER),
            NeumannBoundary(mesher, 0.0, 0, UPPER),
        ])
        assert len(bcs) == 2

    def test_rollback_keeps_every_dirichlet_node(self):
        m = MesherComposite(Uniform1dMesher(-1.0, 1.0, 21), Uniform1dMesher(-1.0, 1.0, 21))
        op = OperatorSum(m, {
            "dxx": SecondDerivativeOp(0, m).mult(0.5),
            "dyy": SecondDerivativeOp(1, m).mult(0.5),
        })
        bcs = BoundaryConditionSet([
            DirichletBoundary(m, 2.5, 0, LOWER),
            DirichletBoundary(m, 2.5, 1, UPPER),
        ])
        solver = BackwardSolver(op, np.linspace(0.0, 0.1, 11), bcs, scheme=SchemeDesc.douglas())
        out = solver.rollback(np.ones(m.size))
        for bc in bcs:
            assert np.all(out[bc.indices] == 2.5)

    def test_conflict(self, mesher):
        bcs = BoundaryConditionSet([DirichletBoundary(mesher, 1.0, 0, LOWER)])
        with pytest.raises(ConfigurationError):
            bcs.add(NeumannBoundary(mesher, 0.0, 0, LOWER))
        assert len(bcs) == 1
