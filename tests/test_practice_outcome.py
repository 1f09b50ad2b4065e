"""
Tests for practice outcomes, derived ratings and the learner profile.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from retentio.core.exceptions import ValidationError
from retentio.core.forgetting import (
    Difficulty,
    ExperienceLevel,
    LearnerProfile,
    LearningZone,
    PracticeOutcome,
    create_learner_profile,
    estimate_actual_retention,
    performance_rating,
    recalled_successfully,
)
from retentio.core.forgetting.outcome import chronological, recent_ratings, rolling_success_ratio


class TestConstruction:

    def test_normalizes_fields(self):
        outcome = PracticeOutcome(
            item_id="x",
            timestamp=datetime(2024, 1, 1, 12, 0),
            duration=5,
            repetitions=-3,
            failures=float("nan"),
            difficulty="hard",
        )
        assert outcome.timestamp.tzinfo is timezone.utc
        assert outcome.duration == timedelta(minutes=5)
        assert outcome.repetitions == 0
        assert outcome.failures == 0
        assert outcome.difficulty is Difficulty.DIFFICULT

    @pytest.mark.parametrize(
        "duration",
        [float("nan"), float("inf"), -5, 1e12, "soon", timedelta(minutes=-3)],
    )
    def test_unusable_duration_becomes_zero(self, t0, duration, log_messages):
        outcome = PracticeOutcome(item_id="x", timestamp=t0, duration=duration, repetitions=3)
        assert outcome.duration == timedelta(0)
        assert outcome.repetitions == 3
        assert any(m.startswith("WARNING") and "unusable duration" in m for m in log_messages)

    def test_numeric_string_counts(self, t0):
        outcome = PracticeOutcome(item_id="x", timestamp=t0, duration="2.5", repetitions="4.0", failures="1")
        assert outcome.duration == timedelta(minutes=2.5)
        assert outcome.repetitions == 4
        assert outcome.failures == 1

    def test_from_dict_naive_timestamp(self, t0):
        data = {"item_id": "x", "timestamp": "2024-03-01T18:00:00", "duration_seconds": float("nan")}
        outcome = PracticeOutcome.from_dict(data)
        assert outcome.timestamp == t0
        assert outcome.duration == timedelta(0)

    def test_empty_item_id_rejected(self, t0):
        with pytest.raises(ValidationError) as exc_info:
            PracticeOutcome(item_id="", timestamp=t0)
        assert exc_info.value.field == "item_id"

    def test_timestamp_must_be_datetime(self):
        with pytest.raises(ValidationError):
            PracticeOutcome(item_id="x", timestamp="yesterday")

    def test_round_trip(self, make_outcome):
        outcome = make_outcome(session_outcome="TargetReached", performance_score=8.5)
        assert PracticeOutcome.from_dict(outcome.to_dict()) == outcome


class TestDerivedSignals:

    @pytest.mark.parametrize(
        "reps,fails,zone",
        [
            (0, 0, LearningZone.TOO_HARD),
            (5, 5, LearningZone.TOO_HARD),
            (7, 3, LearningZone.EXPLORATION),
            (85, 15, LearningZone.CONSOLIDATION),
            (92, 8, LearningZone.POLISH),
            (19, 1, LearningZone.MASTERED),
        ],
    )
    def test_learning_zone(self, make_outcome, reps, fails, zone):
        assert make_outcome(repetitions=reps, failures=fails).learning_zone is zone

    def test_rating_prefers_explicit_score(self, make_outcome):
        assert performance_rating(make_outcome(performance_score=3.5, session_outcome="TargetReached")) == 3.5
        assert performance_rating(make_outcome(performance_score=42)) == 10.0

    def test_rating_from_session_verdict(self, make_outcome):
        assert performance_rating(make_outcome(session_outcome="Target Reached")) == 8.0
        assert performance_rating(make_outcome(session_outcome="frustration")) == 3.0

    @pytest.mark.parametrize(
        "difficulty,rating",
        [("Mastered", 10.0), ("Easy", 8.5), ("Average", 7.0), ("Difficult", 5.0)],
    )
    def test_rating_from_difficulty(self, make_outcome, difficulty, rating):
        assert performance_rating(make_outcome(difficulty=difficulty)) == rating

    def test_recall_needs_two_indicators(self, make_outcome):
        # only "played at least a minute"
        missed = make_outcome(repetitions=0, performance_score=2.0, duration=timedelta(minutes=5))
        assert not recalled_successfully(missed)
        # repetitions + duration
        hit = make_outcome(repetitions=3, performance_score=2.0, duration=timedelta(minutes=5))
        assert recalled_successfully(hit)

    def test_estimated_retention(self, make_outcome):
        assert estimate_actual_retention(make_outcome(duration=timedelta())) == 0.5
        assert estimate_actual_retention(make_outcome(repetitions=40, duration=timedelta(minutes=10))) == 1.0
        damped = make_outcome(repetitions=40, duration=timedelta(minutes=10), attempts_till_success=4)
        assert estimate_actual_retention(damped) == pytest.approx(0.5)


class TestHistory:

    def test_chronological_and_recent(self, make_outcome):
        history = [
            make_outcome(day=2, performance_score=2.0),
            make_outcome(day=0, performance_score=9.0),
            make_outcome(day=1, performance_score=5.0),
        ]
        assert [o.performance_score for o in chronological(history)] == [9.0, 5.0, 2.0]
        assert recent_ratings(history, 2) == [2.0, 5.0]
        assert chronological(None) == []

    def test_rolling_success_ratio(self, make_outcome):
        history = [make_outcome(day=d, repetitions=9, failures=1) for d in range(10)]
        history.append(make_outcome(day=20, repetitions=0, failures=10))
        assert rolling_success_ratio(history, window=2) == pytest.approx(9 / 20)
        assert rolling_success_ratio([]) == 0.0


class TestLearnerProfile:

    def test_stats_update(self, make_outcome):
        profile = LearnerProfile(learner_id="p")
        outcome = make_outcome(duration=timedelta(minutes=12))
        profile.update_stats(outcome, rating=8.0, recalled=True)
        profile.update_stats(outcome, rating=6.0, recalled=False)
        assert profile.total_sessions == 2
        assert profile.stats["successful_sessions"] == 1
        assert profile.stats["avg_rating"] == pytest.approx(7.0)
        assert profile.stats["total_minutes"] == pytest.approx(24.0)

    def test_round_trip(self):
        profile = create_learner_profile("p", "expert", age=44)
        restored = LearnerProfile.from_dict(profile.to_dict())
        assert restored.experience is ExperienceLevel.PROFESSIONAL
        assert restored.age == 44
        assert restored.created_at == profile.created_at

    def test_non_positive_age_dropped(self):
        assert LearnerProfile(learner_id="p", age=0).age is None

    def test_concurrent_updates_are_serialized(self, make_outcome):
        profile = LearnerProfile(learner_id="p")
        outcome = make_outcome(duration=timedelta(minutes=1))

        def practice():
            for _ in range(200):
                profile.update_stats(outcome, rating=7.0, recalled=True)

        threads = [threading.Thread(target=practice) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert profile.total_sessions == 800
        assert profile.stats["successful_sessions"] == 800
        assert profile.stats["avg_rating"] == pytest.approx(7.0)
        assert profile.to_dict()["stats"] is not profile.stats

    def test_naive_timestamps_loaded_as_utc(self):
        profile = LearnerProfile.from_dict({"learner_id": "p", "created_at": "2024-01-01T00:00:00"})
        assert profile.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
