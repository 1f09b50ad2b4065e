"""
Adaptive Tau Integration
========================
Blends the policy baseline with up to three learned signals into the tau
used for scheduling.

Signals (each optional, weighted by its own confidence):

    calibration   personalized tau for the difficulty        max weight 0.4
    stability     S × 0.7 × (1 + 0.3 D) from the estimator   max weight 0.5
    performance   demographic tau × {0.7, 1.0, 1.4}          max weight 0.3

    adaptive_tau = Σ tau_i · w_i / Σ w_i

The overall confidence (mean of present confidences, boosted when several
sources agree) decides how much of the adaptive tau replaces the baseline:

    c < 0.1   → demographic tau
    c > 0.8   → 0.9 · adaptive + 0.1 · demographic
    otherwise → c · adaptive + (1 - c) · demographic

Any failure while gathering a signal drops that signal; a failure of the
whole integration returns the plain baseline tau. Callers always get a tau
in [1, 180].
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from loguru import logger

from .calibration import PersonalizedCalibration
from .config import (
    BASE_TAU_DAYS,
    CALIBRATION_CONFIDENCE_SESSIONS,
    CALIBRATION_WEIGHT,
    EXPECTED_PERFORMANCE_SCORE,
    HIGH_BLEND_CONFIDENCE,
    HIGH_CONFIDENCE_ADAPTIVE_SHARE,
    IMMEDIATE_DEVIATION_THRESHOLD,
    MATERIAL_FACTOR,
    MIN_BLEND_CONFIDENCE,
    MIN_CALIBRATION_SESSIONS_FOR_SIGNAL,
    MIN_PERFORMANCE_SESSIONS,
    MIN_STABILITY_REVIEWS,
    PERFORMANCE_WEIGHT,
    PERFORMANCE_WINDOW,
    POOR_PERFORMANCE_MULTIPLIER,
    POOR_PERFORMANCE_SCORE,
    RAPID_DEVIATION_THRESHOLD,
    RAPID_ITEM_SESSIONS,
    RAPID_LENGTHEN_FACTOR,
    RAPID_PHASE_SESSIONS,
    RAPID_SHORTEN_FACTOR,
    STABILITY_CONFIDENCE_REVIEWS,
    STABILITY_DIFFICULTY_FACTOR,
    STABILITY_TAU_FACTOR,
    STABILITY_WEIGHT,
    STRONG_PERFORMANCE_MULTIPLIER,
    STRONG_PERFORMANCE_SCORE,
    THREE_SOURCE_BOOST,
    TWO_SOURCE_BOOST,
    Difficulty,
)
from .curve import (
    ForgettingCurve,
    baseline_tau,
    clamp_tau,
    difficulty_modifier,
    is_finite_number,
    repetition_bonus,
    sanitize_repetitions,
    sanitize_stage,
)
from .outcome import PracticeOutcome, performance_rating, recent_ratings

if TYPE_CHECKING:
    from retentio.core.config import FeatureFlagsConfig
    from .diagnostics import RetentionDiagnostics
    from .profile import LearnerProfile
    from .stability import StabilityProvider


RAW_BASELINE_TAU: float = BASE_TAU_DAYS * MATERIAL_FACTOR


# ------------------------------------------------------------------ #
#  Data records                                                       #
# ------------------------------------------------------------------ #

@dataclass
class AdaptiveDataSet:
    """
    Signals gathered for one scheduling call. Never persisted.

    A signal is present when its tau is not None.
    """
    demographic_tau: float
    calibration_tau: Optional[float] = None
    calibration_confidence: float = 0.0
    stability_tau: Optional[float] = None
    stability_confidence: float = 0.0
    performance_tau: Optional[float] = None
    performance_confidence: float = 0.0
    recent_performance: Optional[float] = None
    adaptive_tau: float = RAW_BASELINE_TAU
    overall_confidence: float = 0.0

    @property
    def has_calibration(self) -> bool:
        return self.calibration_tau is not None

    @property
    def has_stability(self) -> bool:
        return self.stability_tau is not None

    @property
    def has_performance(self) -> bool:
        return self.performance_tau is not None

    def present_signals(self) -> List[Tuple[float, float, float]]:
        """(tau, confidence, max_weight) for every present signal."""
        signals = []
        if self.calibration_tau is not None:
            signals.append((self.calibration_tau, self.calibration_confidence, CALIBRATION_WEIGHT))
        if self.stability_tau is not None:
            signals.append((self.stability_tau, self.stability_confidence, STABILITY_WEIGHT))
        if self.performance_tau is not None:
            signals.append((self.performance_tau, self.performance_confidence, PERFORMANCE_WEIGHT))
        return signals

    @property
    def source_count(self) -> int:
        return len(self.present_signals())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "demographic_tau": self.demographic_tau,
            "calibration_tau": self.calibration_tau,
            "calibration_confidence": self.calibration_confidence,
            "stability_tau": self.stability_tau,
            "stability_confidence": self.stability_confidence,
            "performance_tau": self.performance_tau,
            "performance_confidence": self.performance_confidence,
            "recent_performance": self.recent_performance,
            "adaptive_tau": self.adaptive_tau,
            "overall_confidence": self.overall_confidence,
        }


@dataclass
class TauBreakdown:
    """Every contributor to one tau decision, for diagnostics and tests."""
    item_id: Optional[str]
    difficulty: Difficulty
    repetitions: int
    stage: int
    base_tau: float
    difficulty_modifier: float
    repetition_factor: float
    data: AdaptiveDataSet
    final_tau: float
    source: str = "adaptive"
    interval_days: Optional[float] = None
    clamp_reason: Optional[str] = None
    target_retention: Optional[float] = None
    predicted_retention: Optional[float] = None
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "difficulty": self.difficulty.value,
            "repetitions": self.repetitions,
            "stage": self.stage,
            "base_tau": self.base_tau,
            "difficulty_modifier": self.difficulty_modifier,
            "repetition_factor": self.repetition_factor,
            "data": self.data.to_dict(),
            "final_tau": self.final_tau,
            "source": self.source,
            "interval_days": self.interval_days,
            "clamp_reason": self.clamp_reason,
            "target_retention": self.target_retention,
            "predicted_retention": self.predicted_retention,
        }


# ------------------------------------------------------------------ #
#  Pure blending math                                                 #
# ------------------------------------------------------------------ #

def weighted_adaptive_tau(data: AdaptiveDataSet) -> float:
    """Confidence-weighted mean of the present signals; raw baseline when none."""
    weighted_sum = 0.0
    total_weight = 0.0
    for tau, confidence, max_weight in data.present_signals():
        if confidence <= 0:
            continue
        weight = confidence * max_weight
        weighted_sum += tau * weight
        total_weight += weight
    if total_weight > 0:
        return weighted_sum / total_weight
    return RAW_BASELINE_TAU


def overall_confidence(data: AdaptiveDataSet) -> float:
    """Mean confidence of present signals, ×1.2 for two sources and ×1.1 more for three."""
    signals = data.present_signals()
    if not signals:
        return 0.0
    confidence = sum(c for _, c, _ in signals) / len(signals)
    if len(signals) >= 2:
        confidence *= TWO_SOURCE_BOOST
    if len(signals) >= 3:
        confidence *= THREE_SOURCE_BOOST
    return max(0.0, min(1.0, confidence))


def blend_tau(demographic_tau: float, adaptive_tau: float, confidence: float) -> float:
    """Mix adaptive and demographic tau according to the overall confidence."""
    if confidence < MIN_BLEND_CONFIDENCE:
        return demographic_tau
    if confidence > HIGH_BLEND_CONFIDENCE:
        return (
            HIGH_CONFIDENCE_ADAPTIVE_SHARE * adaptive_tau
            + (1.0 - HIGH_CONFIDENCE_ADAPTIVE_SHARE) * demographic_tau
        )
    return adaptive_tau * confidence + demographic_tau * (1.0 - confidence)


def stability_to_tau(stability_days: float, item_difficulty: float) -> float:
    """Tau equivalent of a 50%-recall stability."""
    return stability_days * STABILITY_TAU_FACTOR * (1.0 + item_difficulty * STABILITY_DIFFICULTY_FACTOR)


def performance_multiplier(average_rating: float) -> float:
    if average_rating < POOR_PERFORMANCE_SCORE:
        return POOR_PERFORMANCE_MULTIPLIER
    if average_rating > STRONG_PERFORMANCE_SCORE:
        return STRONG_PERFORMANCE_MULTIPLIER
    return 1.0


# ------------------------------------------------------------------ #
#  Manager                                                            #
# ------------------------------------------------------------------ #

class AdaptiveTauManager:
    """
    Orchestrates the tau signals for one learner.

    Owns no state of its own: calibration and stability stores are passed
    in and shared with the engine.
    """

    def __init__(
        self,
        curve: ForgettingCurve,
        calibration: PersonalizedCalibration,
        stability: Optional["StabilityProvider"] = None,
        features: Optional["FeatureFlagsConfig"] = None,
        diagnostics: Optional["RetentionDiagnostics"] = None,
    ):
        self.curve = curve
        self.calibration = calibration
        self.stability = stability
        self.diagnostics = diagnostics
        self.use_adaptive_systems = features.use_adaptive_systems if features else True
        self.use_calibration = features.use_calibration if features else True
        self.use_stability = features.use_stability if features else True
        self.use_performance_trend = features.use_performance_trend if features else True

    # ---- Entry points -------------------------------------------- #

    def integrated_tau(
        self,
        difficulty,
        repetitions=0,
        item_id: Optional[str] = None,
        item_history: Optional[Sequence[PracticeOutcome]] = None,
        profile: Optional["LearnerProfile"] = None,
        stage: int = 0,
    ) -> float:
        """Final tau in [1, 180] days for an item."""
        return self.integrated_tau_breakdown(
            difficulty, repetitions, item_id, item_history, profile, stage
        ).final_tau

    def integrated_tau_breakdown(
        self,
        difficulty,
        repetitions=0,
        item_id: Optional[str] = None,
        item_history: Optional[Sequence[PracticeOutcome]] = None,
        profile: Optional["LearnerProfile"] = None,
        stage: int = 0,
        log: bool = True,
    ) -> TauBreakdown:
        """Same as ``integrated_tau`` but returns every contributor."""
        level, reps, clean_stage = Difficulty.AVERAGE, 0, 0
        breakdown = None

        try:
            level = Difficulty.normalize(difficulty)
            reps = sanitize_repetitions(repetitions, self.diagnostics)
            clean_stage = sanitize_stage(stage, self.diagnostics)
            breakdown = self._new_breakdown(item_id, level, reps, clean_stage)

            base = self.curve.baseline_tau(level, reps, clean_stage)
            breakdown.base_tau = base

            if not self.use_adaptive_systems:
                breakdown.data.demographic_tau = base
                breakdown.final_tau = base
                breakdown.source = "disabled"
                return self._finish(breakdown, log)

            demographic = self.curve.demographic_tau(level, reps, clean_stage, profile)
            breakdown.data.demographic_tau = demographic

            history = list(item_history or [])
            if not item_id or not history:
                breakdown.final_tau = demographic
                breakdown.source = "no_data"
                return self._finish(breakdown, log)

            data = self.gather_signals(level, reps, clean_stage, item_id, history, demographic)
            breakdown.data = data
            breakdown.final_tau = clamp_tau(
                blend_tau(demographic, data.adaptive_tau, data.overall_confidence),
                self.diagnostics,
            )
            logger.debug(
                f"Integrated tau for {item_id}: demographic={demographic:.3f}, "
                f"adaptive={data.adaptive_tau:.3f}, confidence={data.overall_confidence:.3f}, "
                f"final={breakdown.final_tau:.3f}"
            )
        except Exception as exc:
            fallback = baseline_tau(level, reps, clean_stage)
            logger.warning(f"Tau integration failed for {item_id or '-'} ({exc!r}); using baseline {fallback:.3f}")
            if breakdown is None:
                breakdown = self._new_breakdown(item_id, level, reps, clean_stage)
                breakdown.base_tau = fallback
            breakdown.final_tau = fallback
            breakdown.source = "fallback"

        return self._finish(breakdown, log)

    def _new_breakdown(self, item_id: Optional[str], level: Difficulty, reps: int, stage: int) -> TauBreakdown:
        return TauBreakdown(
            item_id=item_id,
            difficulty=level,
            repetitions=reps,
            stage=stage,
            base_tau=RAW_BASELINE_TAU,
            difficulty_modifier=difficulty_modifier(level, stage),
            repetition_factor=repetition_bonus(reps, level),
            data=AdaptiveDataSet(demographic_tau=RAW_BASELINE_TAU),
            final_tau=RAW_BASELINE_TAU,
        )

    def _finish(self, breakdown: TauBreakdown, log: bool) -> TauBreakdown:
        if log and self.diagnostics is not None:
            self.log_breakdown(breakdown)
        return breakdown

    def log_breakdown(self, breakdown: TauBreakdown) -> None:
        if self.diagnostics is None:
            return
        if breakdown.source == "adaptive":
            self.diagnostics.log_tau_breakdown(breakdown)
        else:
            self.diagnostics.log_simple_tau(
                breakdown.item_id,
                breakdown.difficulty.value,
                breakdown.repetitions,
                breakdown.data.demographic_tau,
                breakdown.final_tau,
                breakdown.source,
            )

    # ---- Signals ------------------------------------------------- #

    def gather_signals(
        self,
        difficulty: Difficulty,
        repetitions: int,
        stage: int,
        item_id: str,
        history: Sequence[PracticeOutcome],
        demographic_tau: float,
    ) -> AdaptiveDataSet:
        data = AdaptiveDataSet(demographic_tau=demographic_tau)

        try:
            signal = self._calibration_signal(difficulty, repetitions, stage)
            if signal is not None:
                data.calibration_tau, data.calibration_confidence = signal
        except Exception as exc:
            logger.warning(f"Skipping calibration signal for {item_id}: {exc!r}")

        try:
            signal = self._stability_signal(item_id)
            if signal is not None:
                data.stability_tau, data.stability_confidence = signal
        except Exception as exc:
            logger.warning(f"Skipping stability signal for {item_id}: {exc!r}")

        try:
            signal = self._performance_signal(history, demographic_tau)
            if signal is not None:
                data.performance_tau, data.performance_confidence, data.recent_performance = signal
        except Exception as exc:
            logger.warning(f"Skipping performance signal for {item_id}: {exc!r}")

        data.adaptive_tau = weighted_adaptive_tau(data)
        data.overall_confidence = overall_confidence(data)
        return data

    def _calibration_signal(
        self, difficulty: Difficulty, repetitions: int, stage: int
    ) -> Optional[Tuple[float, float]]:
        if not self.use_calibration or not self.calibration.enabled:
            return None
        sessions = self.calibration.session_count(difficulty)
        if sessions < MIN_CALIBRATION_SESSIONS_FOR_SIGNAL:
            return None
        tau = self.calibration.personalized_tau(difficulty, repetitions, stage)
        if not is_finite_number(tau) or tau <= 0:
            return None
        return tau, min(1.0, sessions / CALIBRATION_CONFIDENCE_SESSIONS)

    def _stability_signal(self, item_id: str) -> Optional[Tuple[float, float]]:
        if not self.use_stability or self.stability is None:
            return None
        stats = self.stability.get_memory_stats(item_id)
        if stats is None or stats.is_new or stats.review_count < MIN_STABILITY_REVIEWS:
            return None
        tau = stability_to_tau(stats.stability, stats.difficulty)
        if not is_finite_number(tau) or tau <= 0:
            return None
        return tau, min(1.0, stats.review_count / STABILITY_CONFIDENCE_REVIEWS)

    def _performance_signal(
        self, history: Sequence[PracticeOutcome], demographic_tau: float
    ) -> Optional[Tuple[float, float, float]]:
        if not self.use_performance_trend or len(history) < MIN_PERFORMANCE_SESSIONS:
            return None
        ratings = recent_ratings(history, PERFORMANCE_WINDOW)
        average = sum(ratings) / len(ratings)
        tau = demographic_tau * performance_multiplier(average)
        return tau, min(1.0, len(ratings) / PERFORMANCE_WINDOW), average

    # ---- Rapid calibration --------------------------------------- #

    def is_rapid_phase(self, learner_sessions: int, item_sessions: int) -> bool:
        return learner_sessions <= RAPID_PHASE_SESSIONS or item_sessions <= RAPID_ITEM_SESSIONS

    def apply_rapid_calibration(
        self,
        outcome: PracticeOutcome,
        learner_sessions: int,
        item_sessions: int,
    ) -> Optional[float]:
        """
        Nudge the difficulty's calibration ×0.8 or ×1.25 when a young learner
        or item performs far from the expected 6.0.

        Returns the applied factor, or None when nothing changed.
        """
        if not self.use_adaptive_systems or not self.use_calibration or not self.calibration.enabled:
            return None
        if not self.is_rapid_phase(learner_sessions, item_sessions):
            return None
        rating = performance_rating(outcome)
        deviation = rating - EXPECTED_PERFORMANCE_SCORE
        if abs(deviation) <= RAPID_DEVIATION_THRESHOLD:
            return None
        factor = RAPID_SHORTEN_FACTOR if deviation < 0 else RAPID_LENGTHEN_FACTOR
        if self.calibration.apply_rapid_adjustment(outcome.difficulty, factor) is None:
            return None
        logger.info(
            f"Rapid calibration for {outcome.item_id}: rating={rating:.1f}, x{factor:.2f} "
            f"(item session {item_sessions}, learner session {learner_sessions})"
        )
        return factor

    def requires_immediate_adjustment(
        self,
        outcome: PracticeOutcome,
        recent_history: Optional[Sequence[PracticeOutcome]],
    ) -> bool:
        """True when the newest three sessions average more than 2.5 away from 6.0."""
        if outcome is None or not recent_history or len(recent_history) < 2:
            return False
        ratings = recent_ratings(recent_history, PERFORMANCE_WINDOW)
        average = sum(ratings) / len(ratings)
        return abs(average - EXPECTED_PERFORMANCE_SCORE) > IMMEDIATE_DEVIATION_THRESHOLD


__all__ = [
    "RAW_BASELINE_TAU",
    "AdaptiveDataSet",
    "TauBreakdown",
    "weighted_adaptive_tau",
    "overall_confidence",
    "blend_tau",
    "stability_to_tau",
    "performance_multiplier",
    "AdaptiveTauManager",
]
