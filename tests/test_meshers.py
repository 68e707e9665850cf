"""Tests for the 1-D and composite meshers."""

import numpy as np
import pytest
from fdmpricer import (
    ConfigurationError, HestonProcess, ExtendedOrnsteinUhlenbeckProcess, CIRProcess,
    Fdm1dMesher, Uniform1dMesher, Concentrating1dMesher, Predefined1dMesher,
    CEV1dMesher, BlackScholesMesher, HestonVarianceMesher, CIRRateMesher,
    OrnsteinUhlenbeck1dMesher, ExponentialJump1dMesher, MesherComposite,
)


def _strictly_increasing(x):
    return np.all(np.diff(x) > 0)


class TestFdm1dMesher:
    def test_spacings(self):
        m = Predefined1dMesher([0.0, 1.0, 3.0, 6.0])
        np.testing.assert_array_equal(m.dplus[:-1], [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(m.dminus[1:], [1.0, 2.0, 3.0])
        assert np.isnan(m.dplus[-1]) and np.isnan(m.dminus[0])

    @pytest.mark.parametrize("locs", [[1.0], [0.0, 0.0, 1.0], [0.0, 2.0, 1.0], [0.0, np.inf]])
    def test_rejects_invalid(self, locs):
        with pytest.raises(ConfigurationError):
            Fdm1dMesher(locs)

    def test_immutable(self):
        m = Uniform1dMesher(0.0, 1.0, 5)
        with pytest.raises(ValueError):
            m.locations[0] = 3.0


class TestUniform:
    def test_nodes(self):
        m = Uniform1dMesher(-1.0, 1.0, 5)
        np.testing.assert_allclose(m.locations, [-1.0, -0.5, 0.0, 0.5, 1.0])
        assert m.size == len(m) == 5

    @pytest.mark.parametrize("size", [0, 1])
    def test_size_below_two(self, size):
        with pytest.raises(ConfigurationError):
            Uniform1dMesher(0.0, 1.0, size)

    def test_bad_range(self):
        with pytest.raises(ConfigurationError):
            Uniform1dMesher(1.0, 1.0, 5)


class TestConcentrating:
    def test_endpoints_and_order(self):
        m = Concentrating1dMesher(0.0, 10.0, 51, c_point=3.0, density=0.05)
        assert m.locations[0] == 0.0 and m.locations[-1] == 10.0
        assert _strictly_increasing(m.locations)

    def test_finer_near_point(self):
        m = Concentrating1dMesher(0.0, 10.0, 101, c_point=5.0, density=0.05)
        x = m.locations
        near = np.min(np.diff(x)[np.abs(x[:-1] - 5.0) < 0.5])
        assert near < np.max(np.diff(x)) / 3.0

    @pytest.mark.parametrize("size", [3, 10, 51, 200])
    def test_required_point_is_a_node(self, size):
        m = Concentrating1dMesher(-2.0, 3.0, size, c_point=0.7, density=0.1,
                                  require_c_point=True)
        assert np.min(np.abs(m.locations - 0.7)) < 1e-12
        assert _strictly_increasing(m.locations)

    def test_required_point_needs_three_nodes(self):
        with pytest.raises(ConfigurationError):
            Concentrating1dMesher(0.0, 1.0, 2, c_point=0.5, require_c_point=True)

    def test_required_point_outside(self):
        with pytest.raises(ConfigurationError):
            Concentrating1dMesher(0.0, 1.0, 10, c_point=2.0, require_c_point=True)

    def test_no_point_is_uniform(self):
        m = Concentrating1dMesher(0.0, 1.0, 11)
        np.testing.assert_allclose(np.diff(m.locations), 0.1)

    def test_bad_density(self):
        with pytest.raises(ConfigurationError):
            Concentrating1dMesher(0.0, 1.0, 11, c_point=0.5, density=0.0)


class TestModelMeshers:
    def test_cev_range(self):
        m = CEV1dMesher(100.0, 0.2, 0.5, 1.0, 200)
        sd = 0.2 * 100.0 ** 0.5
        assert m.locations[0] < 100.0 - 3 * sd
        assert m.locations[-1] > 100.0 + 3 * sd
        assert np.min(np.abs(m.locations - 100.0)) < 1e-12

    def test_cev_floor_at_zero(self):
        m = CEV1dMesher(1.0, 1.0, 1.0, 5.0, 100)
        assert m.locations[0] == 0.0

    def test_black_scholes_contains_spot_and_strike(self):
        m = BlackScholesMesher(100, 100.0, 0.2, 1.0, 0.05, c_point=110.0)
        x = m.locations
        assert x[0] < np.log(100.0) < x[-1]
        assert np.min(np.abs(x - np.log(110.0))) < 1e-12

    def test_heston_variance(self):
        p = HestonProcess(v0=0.04, kappa=1.5, theta=0.04, sigma=0.3, rho=-0.7)
        m = HestonVarianceMesher(30, p, 1.0)
        assert m.locations[0] == 0.0
        assert m.locations[-1] > 0.04
        assert np.min(np.abs(m.locations - 0.04)) < 1e-12

    def test_cir_rate_floor_and_start(self):
        p = CIRProcess(r0=0.03, kappa=0.5, theta=0.05, sigma=0.1)
        m = CIRRateMesher(30, p, 2.0)
        assert m.locations[0] == 0.0
        assert m.locations[-1] > 0.05
        assert np.min(np.abs(m.locations - 0.03)) < 1e-12

    def test_cir_rate_narrow_for_small_vol(self):
        p = CIRProcess(r0=0.05, kappa=1.0, theta=0.05, sigma=1e-3)
        m = CIRRateMesher(15, p, 1.0)
        assert 0.045 < m.locations[0] < 0.05 < m.locations[-1] < 0.055
        assert _strictly_increasing(m.locations)

    def test_ou_mesher_contains_start(self):
        p = ExtendedOrnsteinUhlenbeckProcess(speed=1.0, sigma=0.3, x0=0.1, level=0.2)
        m = OrnsteinUhlenbeck1dMesher(50, p, 1.0)
        assert np.min(np.abs(m.locations - 0.1)) < 1e-12
        assert m.locations[0] < -0.5 and m.locations[-1] > 0.7

    def test_jump_mesher(self):
        m = ExponentialJump1dMesher(20, beta=5.0, jump_intensity=4.0, eta=2.0)
        assert m.locations[0] == 0.0
        assert m.locations[-1] >= -np.log(1e-3) / 2.0
        assert _strictly_increasing(m.locations)


class TestComposite:
    def test_flat_locations(self):
        mx = Uniform1dMesher(0.0, 2.0, 3)
        my = Uniform1dMesher(10.0, 13.0, 4)
        m = MesherComposite(mx, my)
        assert m.size == 12 and m.ndim == 2
        i = m.layout.index((2, 1))
        assert m.locations(0)[i] == 2.0
        assert m.locations(1)[i] == 11.0
        assert m.dplus(1)[i] == pytest.approx(1.0)
        assert m.mesher(1) is my

    def test_accepts_list(self):
        m = MesherComposite([Uniform1dMesher(0.0, 1.0, 3)])
        assert m.ndim == 1

    def test_empty(self):
        with pytest.raises(ConfigurationError):
            MesherComposite()
