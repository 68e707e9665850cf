"""Tests for step conditions."""

import numpy as np
import pytest
from fdmpricer import (
    ConfigurationError, AmericanStepCondition, BermudanStepCondition, KnockOutStepCondition,
    SnapshotCondition, FunctionStepCondition, StepConditionComposite,
)


class TestExercise:
    def test_american_every_time(self):
        cond = AmericanStepCondition(np.array([1.0, 2.0, 3.0]))
        assert cond.stopping_times is None
        assert cond.applies_at(0.123)
        out = cond.apply_to(np.array([2.0, 1.0, 4.0]), 0.5)
        np.testing.assert_array_equal(out, [2.0, 2.0, 4.0])

    def test_bermudan_only_on_dates(self):
        cond = BermudanStepCondition([0.5, 0.25], np.array([5.0, 5.0]))
        assert cond.stopping_times == (0.25, 0.5)
        v = np.array([1.0, 6.0])
        np.testing.assert_array_equal(cond.apply_to(v, 0.3), v)
        np.testing.assert_array_equal(cond.apply_to(v, 0.5), [5.0, 6.0])

    def test_bermudan_needs_dates(self):
        with pytest.raises(ConfigurationError):
            BermudanStepCondition([], np.ones(2))

    def test_negative_time(self):
        with pytest.raises(ConfigurationError):
            BermudanStepCondition([-0.1], np.ones(2))


class TestOtherConditions:
    def test_knock_out(self):
        cond = KnockOutStepCondition([1.0], np.array([False, True, True]), rebate=0.5)
        v = np.array([3.0, 3.0, 3.0])
        np.testing.assert_array_equal(cond.apply_to(v, 1.0), [3.0, 0.5, 0.5])
        np.testing.assert_array_equal(v, 3.0)

    def test_snapshot_copies(self):
        cond = SnapshotCondition(0.1)
        v = np.array([1.0, 2.0])
        assert cond.apply_to(v, 0.2) is v and cond.values is None
        cond.apply_to(v, 0.1)
        v[0] = 7.0
        np.testing.assert_array_equal(cond.values, [1.0, 2.0])

    def test_function(self):
        cond = FunctionStepCondition([0.5], lambda v, t: v * t)
        np.testing.assert_array_equal(cond.apply_to(np.array([2.0]), 0.5), [1.0])
        np.testing.assert_array_equal(cond.apply_to(np.array([2.0]), 0.4), [2.0])


class TestComposite:
    def test_union_of_times(self):
        comp = StepConditionComposite([
            BermudanStepCondition([0.5, 1.0], np.zeros(2)),
            SnapshotCondition(0.25),
            AmericanStepCondition(np.zeros(2)),
        ])
        assert comp.stopping_times == (0.25, 0.5, 1.0)

    def test_members_in_order(self):
        snap = SnapshotCondition(0.5)
        comp = StepConditionComposite([
            FunctionStepCondition([0.5], lambda v, t: v + 1.0),
            snap,
        ])
        out = comp.apply_to(np.zeros(2), 0.5)
        np.testing.assert_array_equal(out, 1.0)
        np.testing.assert_array_equal(snap.values, 1.0)
        assert not comp.applies_at(0.3)
