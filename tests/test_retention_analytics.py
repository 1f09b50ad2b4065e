"""
Tests for curve sampling and engine summaries.
"""

import pytest

from retentio.core.forgetting import retention, retention_curve, stability_curve, summarize
from retentio.core.forgetting.stability import MemoryStabilityStats


@pytest.mark.parametrize(
    "tau,reps,difficulty,experience,age",
    [
        (9.0, 0, "Average", "intermediate", None),
        (5.4, 12, "Difficult", "beginner", 35),
        (31.5, 40, "Mastered", "professional", 70),
        (0.5, 0, "Easy", "advanced", None),
    ],
)
def test_curve_matches_scalar_retention(tau, reps, difficulty, experience, age):
    points = retention_curve(tau, days_ahead=60, repetitions=reps, difficulty=difficulty, experience=experience, age=age)
    assert len(points) == 61
    for day, value in points:
        assert value == pytest.approx(retention(day, tau, reps, difficulty, experience, age), abs=1e-12)


def test_curve_starts_at_day_zero_value():
    points = retention_curve(9.0, days_ahead=5)
    assert points[0] == (0, 0.95)
    assert [d for d, _ in points] == [0, 1, 2, 3, 4, 5]


def test_invalid_horizon():
    assert len(retention_curve(9.0, days_ahead=float("nan"))) == 31
    assert retention_curve(9.0, days_ahead=-3) == [(0, 0.95)]


def test_stability_curve_halves_at_stability():
    stats = MemoryStabilityStats(
        item_id="x", is_new=False, stability=4.0, difficulty=0.3, review_count=2, retrievability=1.0
    )
    points = dict(stability_curve(stats, days_ahead=8))
    assert points[0] == 1.0
    assert points[4] == pytest.approx(0.5)
    assert points[8] == pytest.approx(0.25)


def test_summarize(engine, make_outcome):
    history = []
    for day in range(4):
        outcome = make_outcome(day=day * 2, performance_score=7.0)
        engine.record_outcome(outcome, item_history=history)
        history.append(outcome)
    engine.record_outcome(make_outcome(item_id="etude-2", performance_score=7.0))

    summary = summarize(engine)
    assert summary["learner_id"] == "test-learner"
    assert summary["items_tracked"] == 2
    assert summary["total_reviews"] == 5
    assert summary["total_sessions"] == 5
    assert summary["calibration"]["total_sessions"] == 5
    assert summary["stability"]["items"] == 2
    assert summary["avg_tau"] > 0
