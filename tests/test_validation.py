"""Tests for the grid convergence analysis."""

import numpy as np
import pytest
from fdmpricer import ConfigurationError, OptionSpec, CALL, PUT, bs_price, fd_price
from fdmpricer.validation import convergence_analysis

OPT = OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2)


class TestConvergenceAnalysis:
    def test_synthetic_order(self):
        result = convergence_analysis(lambda n: 1.0 + 3.0 / n ** 2, 1.0, [10, 20, 40, 80])
        assert result["order"] == pytest.approx(2.0, abs=1e-8)
        assert result["params"] == [10, 20, 40, 80]
        assert len(result["prices"]) == len(result["errors"]) == 4

    def test_fdm_convergence(self):
        result = convergence_analysis(
            lambda n: fd_price(OPT, CALL, N_S=n, N_t=n, damping_steps=2),
            bs_price(OPT, CALL), [50, 100, 200],
        )
        assert result["errors"][-1] < result["errors"][0]

    def test_order_positive(self):
        result = convergence_analysis(
            lambda n: fd_price(OPT, PUT, N_S=n, N_t=n, damping_steps=2),
            bs_price(OPT, PUT), [50, 100, 200, 400],
        )
        assert result["order"] > 0.5

    def test_exact_pricer_has_no_order(self):
        result = convergence_analysis(lambda n: 2.0, 2.0, [10, 20])
        assert np.isnan(result["order"])
        assert result["errors"] == [0.0, 0.0]

    def test_needs_sizes(self):
        with pytest.raises(ConfigurationError):
            convergence_analysis(lambda n: 0.0, 0.0, [])
