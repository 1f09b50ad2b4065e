"""
Tests for the forgetting curve and interval policy.
===================================================
Covers:
  - Baseline tau per difficulty and learning stage
  - Repetition bonus and its cap
  - Tau and interval clamps with composed reason codes
  - Retention bounds, day zero, decay and the consolidation plateau
  - Learner-specific curve settings (experience, age, global multiplier)
"""

import math

import pytest
from hypothesis import assume, given, settings
import hypothesis.strategies as st

from retentio.core.config import ExperienceConfig, RetentionTargetsConfig
from retentio.core.forgetting import (
    ClampReason,
    Difficulty,
    ExperienceLevel,
    ForgettingCurve,
    LearnerProfile,
    RetentionDiagnostics,
)
from retentio.core.forgetting.curve import (
    age_factor,
    baseline_tau,
    clamp_interval,
    clamp_tau,
    difficulty_modifier,
    individual_variability,
    is_optimal_interval,
    motor_plateau,
    repetition_bonus,
    retention,
    retention_target,
    sanitize_repetitions,
    sanitize_stage,
)
from retentio.core.forgetting.config import AGE_FACTOR_BASE


# =====================================================================
# Baseline tau
# =====================================================================

class TestBaselineTau:

    def test_difficult_item(self):
        assert baseline_tau("Difficult", repetitions=0, stage=0) == pytest.approx(5.4)

    def test_average_and_easy(self):
        assert baseline_tau(Difficulty.AVERAGE) == pytest.approx(9.0)
        assert baseline_tau(Difficulty.EASY) == pytest.approx(15.3)

    @pytest.mark.parametrize("stage,expected", [(0, 18.0), (2, 18.0), (3, 18.0), (4, 22.5), (5, 31.5), (9, 31.5)])
    def test_mastered_depends_on_stage(self, stage, expected):
        assert baseline_tau("Mastered", stage=stage) == pytest.approx(expected)

    def test_unknown_label_is_average(self):
        assert baseline_tau("Normal") == pytest.approx(9.0)
        assert baseline_tau("something else") == pytest.approx(9.0)
        assert baseline_tau(None) == pytest.approx(9.0)

    def test_repetition_bonus_scales_by_difficulty(self):
        bonus = 1 + math.log(5) * 0.15
        assert repetition_bonus(4, Difficulty.AVERAGE) == pytest.approx(bonus)
        assert repetition_bonus(4, Difficulty.DIFFICULT) == pytest.approx(bonus * 1.3)
        assert repetition_bonus(4, Difficulty.MASTERED) == pytest.approx(bonus * 0.7)

    def test_repetition_bonus_capped(self):
        assert repetition_bonus(1000, Difficulty.DIFFICULT) == pytest.approx(2.0)
        assert baseline_tau("Difficult", repetitions=1000) == pytest.approx(10.8)

    @pytest.mark.parametrize("bad", [-5, float("nan"), float("inf"), None, "abc"])
    def test_invalid_repetitions_become_zero(self, bad):
        assert sanitize_repetitions(bad) == 0
        assert baseline_tau("Average", repetitions=bad) == pytest.approx(9.0)

    def test_huge_repetitions_capped(self):
        assert sanitize_repetitions(10 ** 9) == 1000

    def test_numeric_strings_accepted(self):
        assert sanitize_repetitions("4.0") == 4
        assert sanitize_stage("2.5") == 2
        assert baseline_tau("Mastered", repetitions="4", stage="5.0") == pytest.approx(baseline_tau("Mastered", 4, 5))

    @pytest.mark.parametrize("bad", [-1, float("nan"), "later", None])
    def test_invalid_stage_is_zero(self, bad):
        assert sanitize_stage(bad) == 0
        assert difficulty_modifier("Mastered", bad) == 2.0

    @given(
        difficulty=st.sampled_from(list(Difficulty) + ["hard", "", "xyz"]),
        repetitions=st.one_of(st.integers(min_value=-10 ** 6, max_value=10 ** 6), st.floats(allow_nan=True)),
        stage=st.integers(min_value=-3, max_value=20),
    )
    def test_baseline_always_in_bounds(self, difficulty, repetitions, stage):
        tau = baseline_tau(difficulty, repetitions, stage)
        assert 1.0 <= tau <= 180.0

    def test_difficulty_modifier_table(self):
        assert difficulty_modifier("Difficult") == 0.6
        assert difficulty_modifier("Average") == 1.0
        assert difficulty_modifier("Easy") == 1.7


# =====================================================================
# Clamps
# =====================================================================

class TestClamps:

    def test_tau_clamped_to_range(self):
        assert clamp_tau(500) == 180.0
        assert clamp_tau(0.2) == 1.0
        assert clamp_tau(42.0) == 42.0

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf"), None])
    def test_non_finite_tau_falls_back_to_base(self, bad):
        assert clamp_tau(bad) == 3.0

    def test_interval_safety_max_then_tau_cap(self):
        value, reason = clamp_interval(400, tau=10)
        assert value == pytest.approx(50.0)
        assert reason == "safety_max_365+cap_5x_tau"

    def test_interval_within_bounds(self):
        assert clamp_interval(30) == (30.0, ClampReason.NONE)
        assert clamp_interval(30, tau=10) == (30.0, "none")

    def test_interval_below_minimum(self):
        assert clamp_interval(0.5) == (1.0, "min_consolidation")

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), -3.0, 0.0, None])
    def test_invalid_interval_goes_to_minimum(self, bad):
        value, reason = clamp_interval(bad)
        assert value == 1.0
        assert reason == "invalid_min"

    def test_tau_cap_only(self):
        assert clamp_interval(60, tau=10) == (50.0, "cap_5x_tau")

    def test_cap_uses_clamped_tau(self):
        # tau below the minimum never pushes the cap below one day
        assert clamp_interval(30, tau=0.1) == (5.0, "cap_5x_tau")
        assert clamp_interval(30, tau=float("nan")) == (15.0, "cap_5x_tau")

    def test_clamp_logged_as_warning(self, log_messages):
        clamp_interval(400, tau=10)
        assert any(m.startswith("WARNING") and "safety_max_365+cap_5x_tau" in m for m in log_messages)

    def test_substitution_reported_to_diagnostics(self):
        diagnostics = RetentionDiagnostics(enabled=True)
        clamp_interval(float("nan"), diagnostics=diagnostics)
        records = diagnostics.records("substitution")
        assert len(records) == 1
        assert records[0]["field"] == "interval_days"

    @given(
        interval=st.floats(allow_nan=True, allow_infinity=True),
        tau=st.one_of(st.none(), st.floats(allow_nan=True, allow_infinity=True)),
    )
    def test_interval_always_in_bounds(self, interval, tau):
        value, reason = clamp_interval(interval, tau=tau)
        assert 1.0 <= value <= 365.0
        if tau is not None:
            assert value <= 5 * clamp_tau(tau) + 1e-9
        assert reason


# =====================================================================
# Retention
# =====================================================================

class TestRetention:

    def test_day_zero_is_exact(self):
        assert retention(0, 9.0) == 0.95
        assert retention(0, 150.0, repetitions=20, difficulty="Easy") == 0.95

    def test_one_tau_out(self):
        assert retention(9, 9) == pytest.approx(0.8 * math.exp(-1) + 0.15)

    def test_long_horizon_reaches_floor(self):
        assert retention(1000, 1) == 0.15
        assert retention(1e9, 1) == 0.15

    def test_plateau_slows_early_decay(self):
        effective = 0.2 * (1 - 0.6 * (1 - 0.2 / 0.4))
        assert motor_plateau(0.2) == pytest.approx(effective)
        assert retention(0.2, 9) == pytest.approx(0.8 * math.exp(-effective / 9) + 0.15)
        assert motor_plateau(0.4) == pytest.approx(0.4)
        assert motor_plateau(2.0) == 2.0

    def test_experience_slows_forgetting(self):
        beginner = retention(9, 9, experience="beginner")
        professional = retention(9, 9, experience=ExperienceLevel.PROFESSIONAL)
        assert professional == pytest.approx(0.8 * math.exp(-9 / (9 * 1.4)) + 0.15)
        assert beginner < retention(9, 9) < professional

    def test_age_factor_tapers(self):
        assert age_factor(None) == 1.0
        assert age_factor(20) == pytest.approx(1.1)
        assert age_factor(60) == pytest.approx(0.9)
        assert age_factor(90) == pytest.approx(0.85)
        assert individual_variability("professional", 10) == pytest.approx(1.4 * 1.15)

    def test_age_factor_starts_above_base_for_young_learners(self):
        assert age_factor(20) == pytest.approx(AGE_FACTOR_BASE)
        assert age_factor(10) == pytest.approx(AGE_FACTOR_BASE + 0.05)
        assert age_factor(10) > AGE_FACTOR_BASE

    @pytest.mark.parametrize("days", [float("nan"), float("inf"), -4])
    def test_invalid_days(self, days):
        value = retention(days, 9)
        assert 0.0 <= value <= 1.0

    @given(
        days=st.floats(allow_nan=True, allow_infinity=True),
        tau=st.floats(allow_nan=True, allow_infinity=True),
        repetitions=st.integers(min_value=-100, max_value=5000),
        difficulty=st.sampled_from(list(Difficulty)),
        experience=st.sampled_from(list(ExperienceLevel)),
    )
    def test_retention_bounded(self, days, tau, repetitions, difficulty, experience):
        value = retention(days, tau, repetitions, difficulty, experience)
        assert 0.0 <= value <= 1.0

    @settings(max_examples=200)
    @given(
        t1=st.floats(min_value=0.0, max_value=1000.0),
        t2=st.floats(min_value=0.0, max_value=1000.0),
        tau=st.floats(min_value=10.0, max_value=180.0),
    )
    def test_retention_never_increases(self, t1, t2, tau):
        assume(t2 - t1 > 1e-3)
        assert retention(t1, tau) >= retention(t2, tau)


# =====================================================================
# Policy helpers
# =====================================================================

class TestPolicy:

    def test_default_targets(self):
        assert retention_target("Difficult") == 0.85
        assert retention_target("Average") == 0.80
        assert retention_target("Easy") == 0.70
        assert retention_target("Mastered") == 0.65

    def test_configured_targets(self):
        targets = RetentionTargetsConfig(difficult=0.9, average=0.75, easy=0.6, mastered=0.55)
        assert retention_target("hard", targets) == 0.9
        assert retention_target("mastered", targets) == 0.55

    def test_optimal_interval_window(self):
        assert is_optimal_interval(0.82, 0.80)
        assert is_optimal_interval(0.85, 0.80)
        assert not is_optimal_interval(0.9, 0.80)
        assert not is_optimal_interval(0.7, 0.80)

    def test_difficulty_aliases(self):
        assert Difficulty.normalize("hard") is Difficulty.DIFFICULT
        assert Difficulty.normalize("EASY") is Difficulty.EASY
        assert Difficulty.normalize("normal") is Difficulty.AVERAGE
        assert Difficulty.normalize("") is Difficulty.AVERAGE

    def test_experience_normalization(self):
        assert ExperienceLevel.normalize("expert") is ExperienceLevel.PROFESSIONAL
        assert ExperienceLevel.normalize("Beginner") is ExperienceLevel.BEGINNER
        assert ExperienceLevel.normalize("wizard") is ExperienceLevel.INTERMEDIATE


class TestForgettingCurve:

    def test_demographic_tau_uses_experience(self):
        curve = ForgettingCurve()
        profile = LearnerProfile(learner_id="p", experience="professional")
        assert curve.demographic_tau("Average", profile=profile) == pytest.approx(11.7)
        assert curve.demographic_tau("Average") == pytest.approx(9.0)

    def test_demographics_disabled(self):
        curve = ForgettingCurve(use_demographics=False)
        profile = LearnerProfile(learner_id="p", experience="professional", age=70)
        assert curve.demographic_tau("Average", profile=profile) == pytest.approx(9.0)
        assert curve.retention(9, 9, profile=profile) == pytest.approx(
            retention(9, 9, experience="professional")
        )

    def test_configured_experience_multipliers(self):
        curve = ForgettingCurve(experience_multipliers=ExperienceConfig(beginner=0.5))
        profile = LearnerProfile(learner_id="p", experience="beginner")
        assert curve.demographic_tau("Average", profile=profile) == pytest.approx(4.5)

    def test_global_multiplier_rescales_and_reclamps(self):
        curve = ForgettingCurve(global_interval_multiplier=2.0)
        assert curve.scale_interval(10, tau=100) == (20.0, "none")
        assert curve.scale_interval(300, tau=100) == (365.0, "safety_max_365")
        assert curve.scale_interval(40, tau=10) == (50.0, "cap_5x_tau")

    def test_invalid_global_multiplier_is_neutral(self):
        curve = ForgettingCurve(global_interval_multiplier=float("nan"))
        assert curve.scale_interval(10, tau=100) == (10.0, "none")
