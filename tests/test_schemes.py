"""Tests for the stepping schemes."""

import numpy as np
import pytest
from scipy import sparse
from scipy.sparse.linalg import expm_multiply

from fdmpricer import (
    ConfigurationError, FlatForward, SchemeDesc, make_scheme,
    Uniform1dMesher, BlackScholesMesher, MesherComposite,
    FirstDerivativeOp, SecondDerivativeOp, SecondOrderMixedDerivativeOp,
    OperatorSum, BlackScholesOp, DirichletBoundary, BoundaryConditionSet,
)
from fdmpricer.boundary import LOWER, UPPER
from fdmpricer.schemes import (
    ExplicitEulerScheme, ImplicitEulerScheme, CrankNicolsonScheme, DouglasScheme,
    CraigSneydScheme, ModifiedCraigSneydScheme, HundsdorferScheme,
)

ALL_DESCS = [
    SchemeDesc.douglas(), SchemeDesc.craig_sneyd(), SchemeDesc.modified_craig_sneyd(),
    SchemeDesc.hundsdorfer(), SchemeDesc.modified_hundsdorfer(), SchemeDesc.implicit_euler(),
    SchemeDesc.explicit_euler(), SchemeDesc.crank_nicolson(),
]


def _heat_2d():
    m = MesherComposite(Uniform1dMesher(-3.0, 3.0, 31), Uniform1dMesher(-3.0, 3.0, 31))
    op = OperatorSum(m, {
        "dxx": SecondDerivativeOp(0, m).mult(0.5),
        "dy": FirstDerivativeOp(1, m).mult(0.1),
        "dyy": SecondDerivativeOp(1, m).mult(0.4),
        "dxy": SecondOrderMixedDerivativeOp(0, 1, m).mult(0.2),
    }, rate=0.05)
    x, y = m.locations(0), m.locations(1)
    return op, np.exp(-(x * x + y * y))


def _black_scholes_1d():
    m = MesherComposite(BlackScholesMesher(80, 100.0, 0.2, 1.0, c_point=100.0))
    op = BlackScholesOp(m, FlatForward(0.05), FlatForward(0.01), vol=0.2)
    return op, np.maximum(np.exp(m.locations(0)) - 100.0, 0.0)


class TestSchemeDesc:
    def test_constants(self):
        assert SchemeDesc.douglas().theta == 0.5
        assert SchemeDesc.craig_sneyd().mu == 0.5
        assert SchemeDesc.modified_craig_sneyd().theta == pytest.approx(1.0 / 3.0)
        assert SchemeDesc.modified_craig_sneyd().mu == pytest.approx(1.0 / 3.0)
        assert SchemeDesc.hundsdorfer().theta == pytest.approx(0.5 + np.sqrt(3.0) / 6.0)
        assert SchemeDesc.modified_hundsdorfer().theta == pytest.approx(1.0 - np.sqrt(2.0) / 2.0)
        assert SchemeDesc.crank_nicolson().theta == 0.5

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            SchemeDesc("leapfrog", 0.5)
        with pytest.raises(ConfigurationError):
            SchemeDesc("douglas", 1.5)

    @pytest.mark.parametrize("desc, cls", [
        (SchemeDesc.douglas(), DouglasScheme),
        (SchemeDesc.craig_sneyd(), CraigSneydScheme),
        (SchemeDesc.modified_craig_sneyd(), ModifiedCraigSneydScheme),
        (SchemeDesc.hundsdorfer(), HundsdorferScheme),
        (SchemeDesc.modified_hundsdorfer(), HundsdorferScheme),
        (SchemeDesc.implicit_euler(), ImplicitEulerScheme),
        (SchemeDesc.explicit_euler(), ExplicitEulerScheme),
        (SchemeDesc.crank_nicolson(), CrankNicolsonScheme),
    ])
    def test_factory(self, desc, cls):
        op, _ = _heat_2d()
        assert isinstance(make_scheme(desc, op), cls)


class TestStepping:
    @pytest.mark.parametrize("desc", ALL_DESCS, ids=lambda d: d.type)
    def test_one_step_matches_exponential(self, desc):
        op, v = _heat_2d()
        dt = 1e-3
        scheme = make_scheme(desc, op)
        scheme.set_step(dt)
        out = scheme.step(v, 0.5)
        op.set_time(0.5 - dt, 0.5)
        exact = expm_multiply(dt * sparse.csc_matrix(op.to_matrix()), v)
        np.testing.assert_allclose(out, exact, atol=1e-4)

    def test_douglas_is_crank_nicolson_in_one_dimension(self):
        op, v = _black_scholes_1d()
        douglas = make_scheme(SchemeDesc.douglas(), op)
        cn = make_scheme(SchemeDesc.crank_nicolson(), op)
        for s in (douglas, cn):
            s.set_step(0.01)
        np.testing.assert_allclose(douglas.step(v, 1.0), cn.step(v, 1.0), atol=1e-10)

    def test_implicit_euler_multi_dimensional(self):
        op, v = _heat_2d()
        scheme = ImplicitEulerScheme(op)
        scheme.set_step(0.05)
        x = scheme.step(v, 1.0)
        residual = x - 0.05 * (op.to_matrix() @ x)
        np.testing.assert_allclose(residual, v, atol=1e-10)

    def test_explicit_euler(self):
        op, v = _black_scholes_1d()
        scheme = ExplicitEulerScheme(op)
        scheme.set_step(1e-4)
        out = scheme.step(v, 1.0)
        np.testing.assert_allclose(out, v + 1e-4 * op.apply(v))

    def test_step_below_zero(self):
        op, v = _black_scholes_1d()
        scheme = make_scheme(SchemeDesc.hundsdorfer(), op)
        scheme.set_step(0.5)
        with pytest.raises(ConfigurationError):
            scheme.step(v, 0.2)

    def test_needs_step_size(self):
        op, v = _black_scholes_1d()
        with pytest.raises(ConfigurationError):
            make_scheme(SchemeDesc.douglas(), op).step(v, 1.0)
        with pytest.raises(ConfigurationError):
            make_scheme(SchemeDesc.douglas(), op).set_step(0.0)

    def test_operator_time_set(self):
        op, v = _black_scholes_1d()
        scheme = make_scheme(SchemeDesc.craig_sneyd(), op)
        scheme.set_step(0.25)
        scheme.step(v, 1.0)
        assert op.last_time == (0.75, 1.0)

    @pytest.mark.parametrize("desc", ALL_DESCS, ids=lambda d: d.type)
    def test_dirichlet_held_after_step(self, desc):
        op, v = _heat_2d()
        bcs = BoundaryConditionSet([
            DirichletBoundary(op.mesher, 0.25, 0, LOWER),
            DirichletBoundary(op.mesher, 0.25, 1, UPPER),
        ])
        scheme = make_scheme(desc, op, bcs)
        scheme.set_step(1e-3)
        out = scheme.step(v, 0.1)
        for bc in bcs:
            assert np.all(out[bc.indices] == 0.25)
