"""Tests for the backward solver state machine and the FdmSolver readout."""

import numpy as np
import pytest
from fdmpricer import (
    ConfigurationError, SolverStateError, FlatForward,
    Uniform1dMesher, BlackScholesMesher, MesherComposite,
    SecondDerivativeOp, OperatorSum, BlackScholesOp,
    FunctionStepCondition, TimeGrid, SchemeDesc, BackwardSolver, SolverDesc, FdmSolver,
    BoundaryConditionSet,
)
from fdmpricer.solver import CONSTRUCTED, STEPPING, TERMINAL, DIRTY, CLEAN


def _bs_setup():
    m = MesherComposite(BlackScholesMesher(60, 100.0, 0.2, 1.0, c_point=100.0))
    op = BlackScholesOp(m, FlatForward(0.05), FlatForward(0.0), vol=0.2)
    payoff = np.maximum(np.exp(m.locations(0)) - 100.0, 0.0)
    return op, payoff


def _zero_op(*meshers, rate=0.0):
    m = MesherComposite(*meshers)
    return OperatorSum(m, {"dxx": SecondDerivativeOp(0, m).mult(0.0)}, rate=rate)


GRID = np.linspace(0.0, 1.0, 21)


class TestBackwardSolver:
    def test_non_monotonic_grid(self):
        op, _ = _bs_setup()
        with pytest.raises(ConfigurationError):
            BackwardSolver(op, [0.0, 0.5, 0.4, 1.0])

    def test_condition_zeroes_values(self):
        op, payoff = _bs_setup()
        cond = FunctionStepCondition([0.5], lambda v, t: np.zeros_like(v))
        solver = BackwardSolver(op, GRID, condition=cond, scheme=SchemeDesc.douglas())
        out = solver.rollback(payoff, 0.0)
        np.testing.assert_array_equal(out, 0.0)

    def test_condition_at_maturity(self):
        op, payoff = _bs_setup()
        plain = BackwardSolver(op, GRID, scheme=SchemeDesc.douglas()).rollback(payoff)
        cond = FunctionStepCondition([1.0], lambda v, t: 2.0 * v)
        doubled = BackwardSolver(op, GRID, condition=cond, scheme=SchemeDesc.douglas()).rollback(payoff)
        np.testing.assert_allclose(doubled, 2.0 * plain, rtol=1e-12, atol=1e-12)

    def test_resume_from_intermediate_time(self):
        op, payoff = _bs_setup()
        full = BackwardSolver(op, GRID).rollback(payoff, 0.0)

        solver = BackwardSolver(op, GRID)
        assert solver.state == CONSTRUCTED and solver.time is None
        half = solver.rollback(payoff, 0.5)
        assert solver.state == STEPPING
        assert solver.time == pytest.approx(0.5)
        rest = solver.rollback(half, 0.0)
        assert solver.state == TERMINAL
        np.testing.assert_allclose(rest, full, rtol=1e-12, atol=1e-12)

    def test_terminal_and_reset(self):
        op, payoff = _bs_setup()
        solver = BackwardSolver(op, GRID)
        first = solver.rollback(payoff)
        with pytest.raises(SolverStateError):
            solver.rollback(payoff)
        solver.reset()
        assert solver.state == CONSTRUCTED
        np.testing.assert_allclose(solver.rollback(payoff), first)

    def test_target_not_on_grid(self):
        op, payoff = _bs_setup()
        with pytest.raises(ConfigurationError):
            BackwardSolver(op, GRID).rollback(payoff, 0.33)

    def test_cannot_go_forward(self):
        op, payoff = _bs_setup()
        solver = BackwardSolver(op, GRID)
        v = solver.rollback(payoff, 0.5)
        with pytest.raises(ConfigurationError):
            solver.rollback(v, 0.75)

    def test_wrong_shape(self):
        op, payoff = _bs_setup()
        with pytest.raises(ConfigurationError):
            BackwardSolver(op, GRID).rollback(payoff[:-1])

    def test_invalid_configuration(self):
        op, _ = _bs_setup()
        with pytest.raises(ConfigurationError):
            BackwardSolver(op, GRID, damping_steps=21)
        with pytest.raises(ConfigurationError):
            BackwardSolver(op, GRID, condition=FunctionStepCondition([0.33], lambda v, t: v))

    def test_damping_everywhere_is_implicit_euler(self):
        op, payoff = _bs_setup()
        grid = TimeGrid(GRID)
        damped = BackwardSolver(op, grid, scheme=SchemeDesc.douglas(), damping_steps=20).rollback(payoff)
        euler = BackwardSolver(op, grid, scheme=SchemeDesc.implicit_euler()).rollback(payoff)
        np.testing.assert_allclose(damped, euler, rtol=1e-12, atol=1e-12)


class TestSolverDesc:
    def test_validation(self):
        m = MesherComposite(Uniform1dMesher(0.0, 1.0, 5))
        v = np.zeros(5)
        with pytest.raises(ConfigurationError):
            SolverDesc(m, BoundaryConditionSet(), None, v, 0.0, 10)
        with pytest.raises(ConfigurationError):
            SolverDesc(m, BoundaryConditionSet(), None, v, 1.0, 0)
        with pytest.raises(ConfigurationError):
            SolverDesc(m, BoundaryConditionSet(), None, v, 1.0, 10, damping_steps=-1)
        m3 = MesherComposite(*(Uniform1dMesher(0.0, 1.0, 3) for _ in range(3)))
        with pytest.raises(ConfigurationError):
            SolverDesc(m3, BoundaryConditionSet(), None, np.zeros(27), 1.0, 10)

    def test_inner_value_callable(self):
        m = MesherComposite(Uniform1dMesher(0.0, 1.0, 5))
        desc = SolverDesc(m, BoundaryConditionSet(), None, lambda mesher: mesher.locations(0) ** 2, 1.0, 4)
        np.testing.assert_allclose(desc.terminal_values(), np.linspace(0.0, 1.0, 5) ** 2)

    def test_inner_value_shape(self):
        m = MesherComposite(Uniform1dMesher(0.0, 1.0, 5))
        desc = SolverDesc(m, BoundaryConditionSet(), None, np.zeros(4), 1.0, 4)
        with pytest.raises(ConfigurationError):
            desc.terminal_values()


class TestFdmSolver:
    def test_state_machine(self):
        op = _zero_op(Uniform1dMesher(-1.0, 1.0, 41))
        desc = SolverDesc(op.mesher, BoundaryConditionSet(), None, np.ones(41), 1.0, 10)
        solver = FdmSolver(desc, SchemeDesc.douglas(), op)
        assert solver.state == DIRTY
        with pytest.raises(SolverStateError):
            solver.value_at(0.0)
        solver.recompute()
        assert solver.state == CLEAN
        assert solver.value_at(0.0) == pytest.approx(1.0)
        solver.invalidate()
        assert solver.state == DIRTY
        with pytest.raises(SolverStateError):
            solver.values

    def test_mesher_mismatch(self):
        op = _zero_op(Uniform1dMesher(-1.0, 1.0, 41))
        other = MesherComposite(Uniform1dMesher(-1.0, 1.0, 41))
        desc = SolverDesc(other, BoundaryConditionSet(), None, np.ones(41), 1.0, 10)
        with pytest.raises(ConfigurationError):
            FdmSolver(desc, SchemeDesc.douglas(), op)

    def test_quadratic_readout(self):
        op = _zero_op(Uniform1dMesher(-1.0, 1.0, 41))
        desc = SolverDesc(op.mesher, BoundaryConditionSet(), None,
                          lambda m: m.locations(0) ** 2, 1.0, 10)
        solver = FdmSolver(desc, SchemeDesc.douglas(), op)
        solver.recompute()
        assert solver.value_at(0.3) == pytest.approx(0.09, abs=1e-6)
        assert solver.delta_at(0.3) == pytest.approx(0.6, abs=1e-6)
        assert solver.gamma_at(0.3) == pytest.approx(2.0, abs=1e-6)
        assert solver.theta_at(0.3) == pytest.approx(0.0, abs=1e-12)

    def test_values_are_a_copy(self):
        op = _zero_op(Uniform1dMesher(-1.0, 1.0, 11))
        desc = SolverDesc(op.mesher, BoundaryConditionSet(), None, np.ones(11), 1.0, 5)
        solver = FdmSolver(desc, SchemeDesc.douglas(), op)
        solver.recompute()
        solver.values[:] = 5.0
        np.testing.assert_allclose(solver.values, 1.0)

    def test_discounting_theta(self):
        r = 0.05
        op = _zero_op(Uniform1dMesher(-1.0, 1.0, 11), rate=r)
        desc = SolverDesc(op.mesher, BoundaryConditionSet(), None, np.ones(11), 1.0, 50)
        solver = FdmSolver(desc, SchemeDesc.douglas(), op)
        solver.recompute()
        assert solver.value_at(0.0) == pytest.approx(np.exp(-r), abs=1e-5)
        assert solver.theta_at(0.0) == pytest.approx(r * np.exp(-r), rel=1e-2)

    def test_readout_two_dimensions(self):
        op = _zero_op(Uniform1dMesher(-1.0, 1.0, 11), Uniform1dMesher(0.0, 2.0, 9))
        desc = SolverDesc(op.mesher, BoundaryConditionSet(), None,
                          lambda m: m.locations(0) + 2.0 * m.locations(1), 1.0, 5)
        solver = FdmSolver(desc, SchemeDesc.hundsdorfer(), op)
        solver.recompute()
        assert solver.value_at(0.1, 0.2) == pytest.approx(0.5, abs=1e-10)
        assert solver.delta_at(0.1, 0.2) == pytest.approx(1.0, abs=1e-10)

    def test_point_outside_mesh(self):
        op = _zero_op(Uniform1dMesher(-1.0, 1.0, 11))
        desc = SolverDesc(op.mesher, BoundaryConditionSet(), None, np.ones(11), 1.0, 5)
        solver = FdmSolver(desc, SchemeDesc.douglas(), op)
        solver.recompute()
        with pytest.raises(ConfigurationError):
            solver.value_at(1.5)
        with pytest.raises(ConfigurationError):
            solver.value_at(0.0, 0.0)
