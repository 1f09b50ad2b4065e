"""
Tests for per-difficulty calibration.
=====================================
Covers:
  - Neutral behaviour without data
  - Learning-rate updates and the accuracy → target mapping
  - Rapid-phase confidence ramp
  - Direct (rapid) nudges that leave counters alone
  - Disabled calibration never touching state
  - Persistence and corrupt records
"""

import math
from datetime import timedelta

import pytest

from retentio.core.forgetting import (
    Difficulty,
    ItemMemoryState,
    PersonalizedCalibration,
    baseline_tau,
)
from retentio.core.forgetting.calibration import target_adjustment
from retentio.core.forgetting.curve import retention


class TestNeutral:

    def test_no_data_is_identity(self):
        calibration = PersonalizedCalibration()
        for level in Difficulty:
            assert calibration.personal_adjustment(level) == 1.0
            assert calibration.personalized_tau(level, 4, 5) == baseline_tau(level, 4, 5)

    def test_stats_empty(self):
        stats = PersonalizedCalibration().stats()
        assert stats.total_sessions == 0
        assert not stats.is_calibrated
        assert stats.adjustments == {}


class TestTargetMapping:

    @pytest.mark.parametrize(
        "accuracy,target",
        [(0.0, 0.7), (0.29, 0.7), (0.3, 0.85), (0.49, 0.85), (0.5, 1.15), (0.8, 1.15), (0.81, 1.3), (1.0, 1.3)],
    )
    def test_mapping(self, accuracy, target):
        assert target_adjustment(accuracy) == target


class TestSlowUpdate:

    def test_first_update_moves_by_learning_rate(self, make_outcome):
        calibration = PersonalizedCalibration()
        record = calibration.update_from_outcome(make_outcome(difficulty="Easy"))
        # no prior review: accuracy 1.0 -> target 1.3
        assert record.adjustment_factor == pytest.approx(1.03)
        assert record.session_count == 1
        assert record.confidence == pytest.approx(1 / 20)
        assert calibration.total_sessions == 1

    def test_rapid_phase_ramp(self, make_outcome):
        calibration = PersonalizedCalibration()
        calibration.update_from_outcome(make_outcome(difficulty="Easy"))
        # total sessions <= 5: confidence min(0.6, 1/3)
        assert calibration.personal_adjustment("Easy") == pytest.approx(1 + 0.03 / 3)
        assert calibration.personal_adjustment("Average") == 1.0

    def test_ramp_after_rapid_phase(self, make_outcome):
        calibration = PersonalizedCalibration()
        for day in range(6):
            calibration.update_from_outcome(make_outcome(day=day, difficulty="Easy"))
        factor = calibration.get_record("Easy").adjustment_factor
        expected = 1.3 - 0.3 * 0.9 ** 6
        assert factor == pytest.approx(expected)
        assert calibration.personal_adjustment("Easy") == pytest.approx(1 + (expected - 1) * 6 / 25)
        assert calibration.is_calibrated()
        assert not calibration.is_stable()

    def test_personalized_tau_scales_baseline(self, make_outcome):
        calibration = PersonalizedCalibration()
        calibration.update_from_outcome(make_outcome(difficulty="Average"))
        multiplier = calibration.personal_adjustment("Average")
        assert calibration.personalized_tau("Average") == pytest.approx(9.0 * multiplier)

    def test_prediction_accuracy_uses_prior_state(self, t0, make_outcome):
        calibration = PersonalizedCalibration()
        prior = ItemMemoryState(item_id="etude-1", tau_days=9.0, review_count=1, last_review=t0)
        outcome = make_outcome(day=9, repetitions=10, failures=0, duration=timedelta(minutes=10))
        expected = retention(9, 9.0)
        # 1 repetition per minute -> estimated actual retention 0.5
        assert calibration.prediction_accuracy(outcome, prior) == pytest.approx(1 - abs(expected - 0.5))

    def test_poor_prediction_pulls_factor_down(self, t0, make_outcome):
        calibration = PersonalizedCalibration()
        prior = ItemMemoryState(item_id="etude-1", tau_days=180.0, review_count=3, last_review=t0)
        outcome = make_outcome(day=1, repetitions=1, failures=5, duration=timedelta(minutes=60), attempts_till_success=4)
        record = calibration.update_from_outcome(outcome, prior)
        # expected ~0.95, actual 0.05 -> clamped 0.1 -> accuracy ~0.15 -> target 0.7
        assert record.adjustment_factor == pytest.approx(0.97)

    def test_factor_bounded(self, make_outcome):
        calibration = PersonalizedCalibration(learning_rate=1.0)
        for day in range(30):
            calibration.update_from_outcome(make_outcome(day=day))
        assert calibration.get_record("Average").adjustment_factor <= 3.0


class TestRapidAdjustment:

    def test_nudge_does_not_count_sessions(self):
        calibration = PersonalizedCalibration()
        record = calibration.apply_rapid_adjustment("Difficult", 0.8)
        assert record.adjustment_factor == pytest.approx(0.8)
        assert record.session_count == 0
        assert calibration.total_sessions == 0

    def test_nudge_clamped(self):
        calibration = PersonalizedCalibration()
        for _ in range(20):
            calibration.apply_rapid_adjustment("Difficult", 0.8)
        assert calibration.get_record("Difficult").adjustment_factor == pytest.approx(0.3)
        for _ in range(40):
            calibration.apply_rapid_adjustment("Difficult", 1.25)
        assert calibration.get_record("Difficult").adjustment_factor == pytest.approx(3.0)

    @pytest.mark.parametrize("factor", [0, -1, float("nan")])
    def test_invalid_factor_ignored(self, factor):
        calibration = PersonalizedCalibration()
        assert calibration.apply_rapid_adjustment("Easy", factor) is None
        assert calibration.get_record("Easy") is None


class TestDisabled:

    def test_disabled_never_touches_state(self, make_outcome):
        calibration = PersonalizedCalibration(enabled=False)
        assert calibration.update_from_outcome(make_outcome()) is None
        assert calibration.apply_rapid_adjustment("Average", 0.8) is None
        assert calibration.session_count("Average") == 0
        assert calibration.get_record("Average") is None
        assert calibration.personal_adjustment("Average") == 1.0
        assert calibration.personalized_tau("Easy") == baseline_tau("Easy")
        assert calibration.to_dict() == {}
        assert calibration.total_sessions == 0

    def test_disabled_ignores_persisted_state(self):
        enabled = PersonalizedCalibration()
        enabled.apply_rapid_adjustment("Easy", 1.25)
        disabled = PersonalizedCalibration(enabled=False)
        assert disabled.load_dict(enabled.to_dict()) == 0
        assert disabled.get_record("Easy") is None


class TestPersistence:

    def test_round_trip(self, make_outcome):
        calibration = PersonalizedCalibration()
        for day in range(4):
            calibration.update_from_outcome(make_outcome(day=day, difficulty="Difficult"))
        calibration.apply_rapid_adjustment("Easy", 1.25)

        restored = PersonalizedCalibration()
        assert restored.load_dict(calibration.to_dict()) == 2
        assert restored.total_sessions == 4
        assert restored.session_count("Difficult") == 4
        assert restored.get_record("Easy").adjustment_factor == pytest.approx(1.25)
        assert restored.personal_adjustment("Difficult") == pytest.approx(
            calibration.personal_adjustment("Difficult"), abs=1e-6
        )

    def test_corrupt_record_skipped(self):
        calibration = PersonalizedCalibration()
        loaded = calibration.load_dict(
            {
                "total_sessions": 3,
                "adjustments": {
                    "easy": {"adjustment_factor": "nan", "session_count": 2},
                    "difficult": {"adjustment_factor": 0.9, "session_count": 3},
                },
            }
        )
        assert loaded == 1
        assert calibration.get_record("Easy") is None
        assert calibration.get_record("Difficult").adjustment_factor == pytest.approx(0.9)

    def test_reset(self, make_outcome):
        calibration = PersonalizedCalibration()
        calibration.update_from_outcome(make_outcome())
        calibration.reset()
        assert calibration.total_sessions == 0
        assert calibration.personal_adjustment("Average") == 1.0
        assert not math.isnan(calibration.personalized_tau("Average"))
