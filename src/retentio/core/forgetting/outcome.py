"""
Practice Outcomes
=================
Immutable record of one practice session on one item, plus the signals the
engine derives from it (success ratio, learning zone, performance rating,
recall success, estimated actual retention).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from retentio.core.exceptions import ValidationError

from .config import (
    DEFAULT_PERFORMANCE_RATING,
    MAX_ELAPSED_DAYS,
    MAX_PERFORMANCE_RATING,
    MIN_PERFORMANCE_RATING,
    ROLLING_SUCCESS_WINDOW,
    Difficulty,
    LearningZone,
)
from .curve import as_utc, is_finite_number, parse_timestamp


_DIFFICULTY_RATINGS = {
    Difficulty.MASTERED: 10.0,
    Difficulty.EASY: 8.5,
    Difficulty.AVERAGE: 7.0,
    Difficulty.DIFFICULT: 5.0,
}

_SESSION_OUTCOME_RATINGS = {
    "targetreached": 8.0,
    "frustration": 3.0,
    "partial": 6.0,
    "satisfactory": 7.0,
}

MAX_DURATION_MINUTES = MAX_ELAPSED_DAYS * 24 * 60


def _outcome_key(text: str) -> str:
    return "".join(ch for ch in (text or "").lower() if ch.isalnum())


def _clean_duration(item_id: str, value) -> timedelta:
    """Non-negative session length; unusable values become zero."""
    if isinstance(value, timedelta):
        minutes = value.total_seconds() / 60.0
    elif value is None:
        return timedelta(0)
    elif is_finite_number(value):
        minutes = float(value)
    else:
        minutes = math.nan
    if not math.isfinite(minutes) or minutes < 0 or minutes > MAX_DURATION_MINUTES:
        logger.warning(f"PracticeOutcome {item_id}: unusable duration {value!r}, using 0")
        return timedelta(0)
    return timedelta(minutes=minutes)


@dataclass(frozen=True)
class PracticeOutcome:
    """
    One practice session on one item.

    Attributes:
        item_id: Identifier of the practiced item
        timestamp: When the session ended (naive values are taken as UTC)
        duration: Time spent practicing
        repetitions: Successful repetitions
        failures: Failed attempts
        difficulty: Learner's difficulty label, normalized on construction
        attempts_till_success: Failed attempts before the first success
        session_outcome: Free-text verdict, e.g. "TargetReached"
        performance_score: Optional explicit 0-10 score
    """
    item_id: str
    timestamp: datetime
    duration: timedelta = field(default_factory=timedelta)
    repetitions: int = 0
    failures: int = 0
    difficulty: Difficulty = Difficulty.AVERAGE
    attempts_till_success: int = 0
    session_outcome: str = ""
    performance_score: Optional[float] = None

    def __post_init__(self):
        if not self.item_id or not str(self.item_id).strip():
            raise ValidationError(field="item_id", reason="Item identifier must not be empty")
        if not isinstance(self.timestamp, datetime):
            raise ValidationError(
                field="timestamp", reason="Expected a datetime", value=self.timestamp
            )
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))
        object.__setattr__(self, "difficulty", Difficulty.normalize(self.difficulty))
        object.__setattr__(self, "duration", _clean_duration(self.item_id, self.duration))
        for name in ("repetitions", "failures", "attempts_till_success"):
            value = getattr(self, name)
            clean = int(float(value)) if is_finite_number(value) else 0
            if clean < 0:
                logger.warning(f"PracticeOutcome {self.item_id}: negative {name}={value}, using 0")
                clean = 0
            object.__setattr__(self, name, clean)

    # ---- Derived signals ----------------------------------------- #

    @property
    def duration_minutes(self) -> float:
        return self.duration.total_seconds() / 60.0

    @property
    def success_ratio(self) -> float:
        """successes / (successes + failures); 0.0 when nothing was attempted."""
        total = self.repetitions + self.failures
        if total <= 0:
            return 0.0
        return self.repetitions / total

    @property
    def learning_zone(self) -> LearningZone:
        return LearningZone.from_success_ratio(self.success_ratio)

    @property
    def target_reached(self) -> bool:
        return _outcome_key(self.session_outcome) == "targetreached"

    # ---- Serialization ------------------------------------------- #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "timestamp": self.timestamp.isoformat(),
            "duration_seconds": self.duration.total_seconds(),
            "repetitions": self.repetitions,
            "failures": self.failures,
            "difficulty": self.difficulty.value,
            "attempts_till_success": self.attempts_till_success,
            "session_outcome": self.session_outcome,
            "performance_score": self.performance_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PracticeOutcome":
        seconds = data.get("duration_seconds", 0.0)
        return cls(
            item_id=data["item_id"],
            timestamp=parse_timestamp(data["timestamp"]),
            duration=float(seconds) / 60.0 if is_finite_number(seconds) else seconds,
            repetitions=data.get("repetitions", 0),
            failures=data.get("failures", 0),
            difficulty=Difficulty.normalize(data.get("difficulty")),
            attempts_till_success=data.get("attempts_till_success", 0),
            session_outcome=data.get("session_outcome", ""),
            performance_score=data.get("performance_score"),
        )


# ------------------------------------------------------------------ #
#  Derived ratings                                                    #
# ------------------------------------------------------------------ #

def performance_rating(outcome: PracticeOutcome) -> float:
    """
    Session quality on a 1-10 scale.

    An explicit score wins; otherwise a recognized session verdict is used,
    otherwise the learner's difficulty label.
    """
    score = outcome.performance_score
    if score is not None and score == score and score > 0:
        rating = float(score)
    else:
        rating = _SESSION_OUTCOME_RATINGS.get(
            _outcome_key(outcome.session_outcome),
            _DIFFICULTY_RATINGS.get(outcome.difficulty, DEFAULT_PERFORMANCE_RATING),
        )
    return max(MIN_PERFORMANCE_RATING, min(MAX_PERFORMANCE_RATING, rating))


def recalled_successfully(outcome: PracticeOutcome) -> bool:
    """At least two of: rating ≥ 6, any repetition, target reached, ≥ 1 minute played."""
    indicators = (
        performance_rating(outcome) >= 6.0,
        outcome.repetitions > 0,
        outcome.target_reached,
        outcome.duration_minutes >= 1.0,
    )
    return sum(indicators) >= 2


def estimate_actual_retention(outcome: PracticeOutcome) -> float:
    """
    Heuristic retention estimate from practice efficiency.

    Placeholder proxy: repetitions per minute, damped by the number of failed
    attempts before the first success. Not empirically validated.
    """
    minutes = outcome.duration_minutes
    if minutes <= 0:
        return 0.5
    per_minute = outcome.repetitions / minutes
    efficiency = max(0.1, min(1.0, per_minute / 2.0))
    if outcome.attempts_till_success > 0:
        efficiency *= 1.0 / math.sqrt(outcome.attempts_till_success)
    return max(0.1, min(1.0, efficiency))


# ------------------------------------------------------------------ #
#  History helpers                                                    #
# ------------------------------------------------------------------ #

def chronological(history: Optional[Iterable[PracticeOutcome]]) -> List[PracticeOutcome]:
    """Oldest first; ``None`` becomes an empty list."""
    if not history:
        return []
    return sorted(history, key=lambda o: o.timestamp)


def recent_ratings(history: Sequence[PracticeOutcome], window: int) -> List[float]:
    """Performance ratings of the newest ``window`` outcomes, newest first."""
    newest_first = sorted(history, key=lambda o: o.timestamp, reverse=True)
    return [performance_rating(o) for o in newest_first[:window]]


def rolling_success_ratio(
    history: Optional[Iterable[PracticeOutcome]],
    window: int = ROLLING_SUCCESS_WINDOW,
) -> float:
    """Pooled success ratio over the newest ``window`` sessions."""
    recent = chronological(history)[-window:]
    reps = sum(o.repetitions for o in recent)
    fails = sum(o.failures for o in recent)
    if reps + fails == 0:
        return 0.0
    return reps / (reps + fails)


__all__ = [
    "PracticeOutcome",
    "performance_rating",
    "recalled_successfully",
    "estimate_actual_retention",
    "chronological",
    "recent_ratings",
    "rolling_success_ratio",
]
