"""
Per-Difficulty Calibration
==========================
Learns, per difficulty class, how far this learner's forgetting departs from
the baseline curve, and turns that into a tau multiplier.

After every session the engine measures how well the curve predicted the
session:

    accuracy = 1 - |R_expected - R_estimated|

and nudges the difficulty's adjustment factor toward a target derived from
that accuracy, at a fixed learning rate (incremental belief update rather
than an overwrite):

    f ← f + 0.1 × (target(accuracy) - f)        f ∈ [0.3, 3.0]

The factor is applied through a confidence ramp so a handful of sessions
cannot move tau much:

    multiplier = 1 + (f - 1) × confidence

With no calibration data the multiplier is exactly 1.0.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

from loguru import logger

from retentio.core.exceptions import StateCorruptionError

from .config import (
    ACCURACY_GOOD,
    ACCURACY_POOR,
    ACCURACY_WEAK,
    CALIBRATED_SESSIONS,
    CALIBRATION_LEARNING_RATE,
    FULL_CONFIDENCE_SESSIONS,
    MAX_ADJUSTMENT_FACTOR,
    MIN_ADJUSTMENT_FACTOR,
    RAPID_PHASE_CONFIDENCE_CAP,
    RAPID_PHASE_SESSION_DIVISOR,
    RAPID_PHASE_SESSIONS,
    RECORD_CONFIDENCE_SESSIONS,
    STABLE_CALIBRATION_SESSIONS,
    TARGET_FOR_GOOD,
    TARGET_FOR_POOR,
    TARGET_FOR_WEAK,
    TARGET_OTHERWISE,
    Difficulty,
)
from .curve import baseline_tau, clamp_tau, is_finite_number, parse_timestamp, retention
from .outcome import PracticeOutcome, estimate_actual_retention

if TYPE_CHECKING:
    from .diagnostics import RetentionDiagnostics
    from .item_memory import ItemMemoryState


def _clamp_factor(value: float) -> float:
    return max(MIN_ADJUSTMENT_FACTOR, min(MAX_ADJUSTMENT_FACTOR, value))


def target_adjustment(accuracy: float) -> float:
    """Map prediction accuracy onto the factor the record should drift toward."""
    if accuracy < ACCURACY_POOR:
        return TARGET_FOR_POOR
    if accuracy < ACCURACY_WEAK:
        return TARGET_FOR_WEAK
    if accuracy > ACCURACY_GOOD:
        return TARGET_FOR_GOOD
    return TARGET_OTHERWISE


@dataclass
class DifficultyCalibration:
    """
    Calibration record for one difficulty class.

    Attributes:
        difficulty: Difficulty class
        adjustment_factor: Multiplicative tau adjustment, within [0.3, 3.0]
        session_count: Slow (learning-rate) updates applied
        confidence: min(1, session_count / 20)
        last_updated: Time of the last change
    """
    difficulty: Difficulty
    adjustment_factor: float = 1.0
    session_count: int = 0
    confidence: float = 0.0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "difficulty": self.difficulty.value,
            "adjustment_factor": round(self.adjustment_factor, 6),
            "session_count": self.session_count,
            "confidence": round(self.confidence, 6),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DifficultyCalibration":
        factor = data.get("adjustment_factor", 1.0)
        if not is_finite_number(factor):
            raise ValueError(f"adjustment_factor is not a finite number: {factor!r}")
        sessions = max(0, int(data.get("session_count", 0)))
        last = data.get("last_updated")
        return cls(
            difficulty=Difficulty.normalize(data.get("difficulty")),
            adjustment_factor=_clamp_factor(float(factor)),
            session_count=sessions,
            confidence=min(1.0, sessions / RECORD_CONFIDENCE_SESSIONS),
            last_updated=parse_timestamp(last),
        )


@dataclass
class CalibrationStats:
    """Summary of a learner's calibration state."""
    total_sessions: int = 0
    is_calibrated: bool = False
    is_stable: bool = False
    last_update: Optional[datetime] = None
    adjustments: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "is_calibrated": self.is_calibrated,
            "is_stable": self.is_stable,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "adjustments": self.adjustments,
        }


class PersonalizedCalibration:
    """
    Per-learner, per-difficulty calibration store.

    When ``enabled`` is False every operation is a no-op that neither reads
    nor creates records: personalized_tau returns the baseline, updates are
    dropped, and serialization yields an empty document.
    """

    def __init__(
        self,
        enabled: bool = True,
        learning_rate: float = CALIBRATION_LEARNING_RATE,
        diagnostics: Optional["RetentionDiagnostics"] = None,
    ):
        self.enabled = enabled
        self.learning_rate = learning_rate
        self.diagnostics = diagnostics
        self._records: Dict[Difficulty, DifficultyCalibration] = {}
        self._total_sessions = 0
        self._last_update: Optional[datetime] = None
        self._lock = threading.RLock()

    # ---- Queries ------------------------------------------------- #

    @property
    def total_sessions(self) -> int:
        return self._total_sessions

    def session_count(self, difficulty) -> int:
        """Slow updates recorded for one difficulty class (0 when disabled)."""
        if not self.enabled:
            return 0
        with self._lock:
            record = self._records.get(Difficulty.normalize(difficulty))
            return record.session_count if record is not None else 0

    def get_record(self, difficulty) -> Optional[DifficultyCalibration]:
        if not self.enabled:
            return None
        with self._lock:
            record = self._records.get(Difficulty.normalize(difficulty))
            return replace(record) if record is not None else None

    def personal_adjustment(self, difficulty) -> float:
        """
        Tau multiplier for a difficulty class, within [0.3, 3.0].

        During the first five sessions overall the confidence is
        min(0.6, difficulty_sessions / 3); afterwards min(1, total / 25).
        """
        if not self.enabled:
            return 1.0
        with self._lock:
            record = self._records.get(Difficulty.normalize(difficulty))
            if record is None:
                return 1.0
            if self._total_sessions <= RAPID_PHASE_SESSIONS:
                confidence = min(
                    RAPID_PHASE_CONFIDENCE_CAP,
                    record.session_count / RAPID_PHASE_SESSION_DIVISOR,
                )
            else:
                confidence = min(1.0, self._total_sessions / FULL_CONFIDENCE_SESSIONS)
            multiplier = 1.0 + (record.adjustment_factor - 1.0) * confidence
        return _clamp_factor(multiplier)

    def personalized_tau(self, difficulty, repetitions=0, stage: int = 0) -> float:
        """Baseline tau scaled by the learner's calibration for that difficulty."""
        base = baseline_tau(difficulty, repetitions, stage, self.diagnostics)
        multiplier = self.personal_adjustment(difficulty)
        if multiplier == 1.0:
            return base
        personalized = clamp_tau(base * multiplier, self.diagnostics)
        logger.debug(
            f"Personalized tau for {Difficulty.normalize(difficulty).value}: "
            f"{base:.2f} x {multiplier:.3f} = {personalized:.2f}"
        )
        return personalized

    def is_calibrated(self) -> bool:
        return self.enabled and self._total_sessions >= CALIBRATED_SESSIONS

    def is_stable(self) -> bool:
        return self.enabled and self._total_sessions >= STABLE_CALIBRATION_SESSIONS

    # ---- Accuracy ------------------------------------------------ #

    def prediction_accuracy(
        self,
        outcome: PracticeOutcome,
        prior_item_state: Optional["ItemMemoryState"] = None,
    ) -> float:
        """
        1 - |expected - estimated actual| retention for a session, in [0, 1].

        Expected retention uses the item's tau before this session and the
        days since its previous review. Without a previous review there is
        nothing to predict and the accuracy is 1.0.
        """
        if prior_item_state is None or prior_item_state.last_review is None:
            return 1.0
        days = (outcome.timestamp - prior_item_state.last_review).total_seconds() / 86400.0
        if days <= 0:
            return 1.0
        expected = retention(days, prior_item_state.tau_days, diagnostics=self.diagnostics)
        actual = estimate_actual_retention(outcome)
        return max(0.0, min(1.0, 1.0 - abs(expected - actual)))

    # ---- Updates ------------------------------------------------- #

    def update_from_outcome(
        self,
        outcome: PracticeOutcome,
        prior_item_state: Optional["ItemMemoryState"] = None,
    ) -> Optional[DifficultyCalibration]:
        """
        Slow Bayesian-style update of the outcome's difficulty record.

        Returns a copy of the updated record, or None when disabled.
        """
        if not self.enabled:
            return None
        accuracy = self.prediction_accuracy(outcome, prior_item_state)
        target = target_adjustment(accuracy)
        with self._lock:
            record = self._records.get(outcome.difficulty)
            if record is None:
                record = DifficultyCalibration(difficulty=outcome.difficulty)
                self._records[outcome.difficulty] = record
            old_factor = record.adjustment_factor
            record.adjustment_factor = _clamp_factor(
                old_factor + self.learning_rate * (target - old_factor)
            )
            record.session_count += 1
            record.confidence = min(1.0, record.session_count / RECORD_CONFIDENCE_SESSIONS)
            record.last_updated = datetime.now(timezone.utc)
            self._total_sessions += 1
            self._last_update = record.last_updated
            snapshot = replace(record)

        logger.info(
            f"Calibration {outcome.difficulty.value}: accuracy={accuracy:.3f}, "
            f"factor {old_factor:.3f} -> {snapshot.adjustment_factor:.3f} "
            f"(sessions={snapshot.session_count}, total={self._total_sessions})"
        )
        if self.diagnostics is not None:
            self.diagnostics.log_calibration(
                outcome.item_id, outcome.difficulty.value, accuracy, old_factor, snapshot.adjustment_factor, "slow"
            )
        return snapshot

    def apply_rapid_adjustment(self, difficulty, factor: float) -> Optional[DifficultyCalibration]:
        """
        Multiply a difficulty's adjustment factor directly, bypassing the
        learning rate. Session counters are left untouched.

        Returns a copy of the record, or None when disabled or the factor
        is invalid.
        """
        if not self.enabled:
            return None
        if not is_finite_number(factor) or factor <= 0:
            logger.warning(f"Ignoring invalid rapid calibration factor {factor!r}")
            return None
        level = Difficulty.normalize(difficulty)
        with self._lock:
            record = self._records.get(level)
            if record is None:
                record = DifficultyCalibration(difficulty=level)
                self._records[level] = record
            old_factor = record.adjustment_factor
            record.adjustment_factor = _clamp_factor(old_factor * float(factor))
            record.last_updated = datetime.now(timezone.utc)
            self._last_update = record.last_updated
            snapshot = replace(record)

        logger.info(
            f"Rapid calibration {level.value}: factor {old_factor:.3f} -> "
            f"{snapshot.adjustment_factor:.3f} (x{factor:.2f})"
        )
        if self.diagnostics is not None:
            self.diagnostics.log_calibration(
                None, level.value, None, old_factor, snapshot.adjustment_factor, "rapid"
            )
        return snapshot

    # ---- Stats & persistence ------------------------------------- #

    def stats(self) -> CalibrationStats:
        if not self.enabled:
            return CalibrationStats()
        with self._lock:
            return CalibrationStats(
                total_sessions=self._total_sessions,
                is_calibrated=self.is_calibrated(),
                is_stable=self.is_stable(),
                last_update=self._last_update,
                adjustments={level.key: rec.to_dict() for level, rec in self._records.items()},
            )

    def to_dict(self) -> Dict[str, Any]:
        if not self.enabled:
            return {}
        with self._lock:
            return {
                "total_sessions": self._total_sessions,
                "last_update": self._last_update.isoformat() if self._last_update else None,
                "adjustments": {level.key: rec.to_dict() for level, rec in self._records.items()},
            }

    def load_dict(self, data: Dict[str, Any]) -> int:
        """
        Replace state with a persisted document. Malformed records are skipped.

        Returns the number of difficulty records loaded (0 when disabled).
        """
        if not self.enabled:
            logger.debug("Calibration disabled, persisted state not loaded")
            return 0
        data = data or {}
        records: Dict[Difficulty, DifficultyCalibration] = {}
        for key, raw in (data.get("adjustments") or {}).items():
            try:
                record = DifficultyCalibration.from_dict({"difficulty": key, **raw})
            except (TypeError, ValueError, AttributeError) as exc:
                err = StateCorruptionError(key=key, reason=str(exc))
                logger.warning(f"Skipping calibration record: {err}")
                continue
            records[record.difficulty] = record

        last = data.get("last_update")
        with self._lock:
            self._records = records
            self._total_sessions = max(0, int(data.get("total_sessions", 0) or 0))
            self._last_update = parse_timestamp(last)
        logger.info(
            f"Loaded calibration: {len(records)} difficulty records, "
            f"{self._total_sessions} sessions"
        )
        return len(records)

    def reset(self) -> None:
        """Drop all calibration back to neutral."""
        with self._lock:
            self._records = {}
            self._total_sessions = 0
            self._last_update = None


__all__ = [
    "target_adjustment",
    "DifficultyCalibration",
    "CalibrationStats",
    "PersonalizedCalibration",
]
