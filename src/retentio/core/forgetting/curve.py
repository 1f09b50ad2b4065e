"""
Forgetting Curve & Interval Policy
==================================
Closed-form retention model and the two safety clamps every tau and
interval leaving the engine passes through.

    R(t) = 0.80 · e^(-t' / τ') + 0.15

where:
    t' = elapsed days with a motor-skill plateau correction (first 0.4 days)
    τ' = τ × repetition bonus × individual variability

Baseline tau for an item:

    τ_base = 3.0 × 3.0 × difficulty_modifier × repetition_bonus   ∈ [1, 180]

Functions here are total: invalid numbers (NaN, ±∞, negative, huge) are
replaced by a safe default, logged, and reported to the diagnostic channel
when one is passed in. Nothing in this module raises on numeric input.

Public API:
    tau = baseline_tau(Difficulty.EASY, repetitions=4)
    r = retention(days_since_practice=2.0, tau=tau)
    interval, reason = clamp_interval(400, tau=10)   # (50.0, "safety_max_365+cap_5x_tau")
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Tuple, Union

from loguru import logger

from .config import (
    AGE_FACTOR_BASE,
    AGE_FACTOR_FLOOR,
    AGE_REFERENCE_YEARS,
    AGE_TAPER_PER_YEAR,
    BASE_TAU_DAYS,
    CURVE_AMPLITUDE,
    CURVE_ASYMPTOTE,
    DAY_ZERO_RETENTION,
    DIFFICULTY_MODIFIERS,
    EXPERIENCE_VARIABILITY,
    MASTERED_EARLY_MODIFIER,
    MASTERED_EARLY_STAGE_MAX,
    MASTERED_LATE_MODIFIER,
    MASTERED_MID_MODIFIER,
    MATERIAL_FACTOR,
    MAX_ELAPSED_DAYS,
    MAX_INTERVAL_DAYS,
    MAX_REPETITION_BONUS,
    MAX_REPETITIONS,
    MAX_TAU_DAYS,
    MAX_VARIABILITY,
    MIN_INTERVAL_DAYS,
    MIN_SAFE_EXPONENT,
    MIN_TAU_DAYS,
    MIN_VARIABILITY,
    OPTIMAL_RETENTION_CEILING,
    PLATEAU_STRENGTH,
    PLATEAU_WINDOW_DAYS,
    REPETITION_BONUS_RATE,
    REPETITION_DIFFICULTY_FACTORS,
    TAU_INTERVAL_CAP,
    ClampReason,
    Difficulty,
    ExperienceLevel,
)

if TYPE_CHECKING:
    from retentio.core.config import ExperienceConfig, RetentionTargetsConfig
    from .diagnostics import RetentionDiagnostics
    from .profile import LearnerProfile

DifficultyLike = Union[Difficulty, str, None]
ExperienceLike = Union[ExperienceLevel, str, None]


# ------------------------------------------------------------------ #
#  Sanitization                                                       #
# ------------------------------------------------------------------ #

def is_finite_number(value) -> bool:
    """True for real, finite numbers (bools excluded)."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _note_substitution(
    field: str,
    original,
    replacement,
    diagnostics: Optional["RetentionDiagnostics"] = None,
) -> None:
    logger.warning(f"Sanitized {field}: {original!r} -> {replacement!r}")
    if diagnostics is not None:
        diagnostics.record_substitution(field, original, replacement)


def sanitize_repetitions(
    repetitions, diagnostics: Optional["RetentionDiagnostics"] = None
) -> int:
    """Clamp a repetition count to [0, 1000]; NaN and non-numbers become 0."""
    if not is_finite_number(repetitions):
        if repetitions is not None:
            _note_substitution("repetitions", repetitions, 0, diagnostics)
        return 0
    reps = int(float(repetitions))
    if reps < 0:
        _note_substitution("repetitions", repetitions, 0, diagnostics)
        return 0
    if reps > MAX_REPETITIONS:
        _note_substitution("repetitions", repetitions, MAX_REPETITIONS, diagnostics)
        return MAX_REPETITIONS
    return reps


def sanitize_stage(stage, diagnostics: Optional["RetentionDiagnostics"] = None) -> int:
    """Whole, non-negative consolidation stage; anything else becomes 0."""
    if not is_finite_number(stage):
        if stage is not None:
            _note_substitution("stage", stage, 0, diagnostics)
        return 0
    value = int(float(stage))
    if value < 0:
        _note_substitution("stage", stage, 0, diagnostics)
        return 0
    return value


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def parse_timestamp(value) -> Optional[datetime]:
    """ISO string or datetime to an aware datetime; None stays None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise ValueError(f"not a timestamp: {value!r}")
    return as_utc(value)


# ------------------------------------------------------------------ #
#  Safety clamps                                                      #
# ------------------------------------------------------------------ #

def clamp_tau(tau, diagnostics: Optional["RetentionDiagnostics"] = None) -> float:
    """Bound a tau to [1, 180] days. Non-finite input falls back to the base tau."""
    if not is_finite_number(tau):
        _note_substitution("tau", tau, BASE_TAU_DAYS, diagnostics)
        return BASE_TAU_DAYS
    value = float(tau)
    clamped = min(MAX_TAU_DAYS, max(MIN_TAU_DAYS, value))
    if abs(clamped - value) > 0.001:
        logger.debug(f"Tau clamped {value:.3f} -> {clamped:.3f}")
    return clamped


def clamp_interval(
    interval_days,
    tau=None,
    diagnostics: Optional["RetentionDiagnostics"] = None,
) -> Tuple[float, str]:
    """
    Bound an interval to [1, 365] days and, when a tau is given, to 5 × tau.

    Clamps apply in order: invalid → minimum, minimum consolidation,
    safety maximum, tau cap. The returned reason joins every clamp that
    fired with '+', or is "none".

    The tau passes through ``clamp_tau`` first so the cap can never fall
    below the one-day minimum.
    """
    reasons = []
    original = interval_days

    if not is_finite_number(interval_days) or float(interval_days) <= 0.0:
        value = MIN_INTERVAL_DAYS
        reasons.append(ClampReason.INVALID)
        if diagnostics is not None:
            diagnostics.record_substitution("interval_days", original, value)
    else:
        value = float(interval_days)

    if value < MIN_INTERVAL_DAYS:
        value = MIN_INTERVAL_DAYS
        reasons.append(ClampReason.MIN_CONSOLIDATION)
    if value > MAX_INTERVAL_DAYS:
        value = MAX_INTERVAL_DAYS
        reasons.append(ClampReason.SAFETY_MAX)
    if tau is not None:
        cap = TAU_INTERVAL_CAP * clamp_tau(tau, diagnostics)
        if value > cap:
            value = cap
            reasons.append(ClampReason.TAU_CAP)

    if not reasons:
        return value, ClampReason.NONE

    reason = ClampReason.SEPARATOR.join(reasons)
    logger.warning(f"Interval clamped {original!r} -> {value:.2f} days ({reason})")
    return value, reason


# ------------------------------------------------------------------ #
#  Baseline tau                                                       #
# ------------------------------------------------------------------ #

def difficulty_modifier(difficulty: DifficultyLike, stage: int = 0) -> float:
    """
    Multiplier applied to the 9-day base for a difficulty label.

    Mastered depends on the learning stage: early "mastered" judgments are
    not yet consolidated, so they get a smaller boost.
    """
    level = Difficulty.normalize(difficulty)
    if level is not Difficulty.MASTERED:
        return DIFFICULTY_MODIFIERS[level]
    stage = sanitize_stage(stage)
    if stage <= MASTERED_EARLY_STAGE_MAX:
        return MASTERED_EARLY_MODIFIER
    if stage == MASTERED_EARLY_STAGE_MAX + 1:
        return MASTERED_MID_MODIFIER
    return MASTERED_LATE_MODIFIER


def repetition_bonus(
    repetitions,
    difficulty: DifficultyLike = Difficulty.AVERAGE,
    diagnostics: Optional["RetentionDiagnostics"] = None,
) -> float:
    """1 + ln(1 + reps) × 0.15, scaled per difficulty and capped at 2.0."""
    reps = sanitize_repetitions(repetitions, diagnostics)
    if reps <= 0:
        return 1.0
    level = Difficulty.normalize(difficulty)
    bonus = (1.0 + math.log1p(reps) * REPETITION_BONUS_RATE) * REPETITION_DIFFICULTY_FACTORS[level]
    return min(MAX_REPETITION_BONUS, bonus)


def baseline_tau(
    difficulty: DifficultyLike,
    repetitions=0,
    stage: int = 0,
    diagnostics: Optional["RetentionDiagnostics"] = None,
) -> float:
    """Non-personalized tau for an item, always within [1, 180] days."""
    raw = (
        BASE_TAU_DAYS
        * MATERIAL_FACTOR
        * difficulty_modifier(difficulty, stage)
        * repetition_bonus(repetitions, difficulty, diagnostics)
    )
    return clamp_tau(raw, diagnostics)


# ------------------------------------------------------------------ #
#  Retention                                                          #
# ------------------------------------------------------------------ #

def motor_plateau(days: float) -> float:
    """Effective elapsed time, shortened during the first 0.4 days."""
    if days <= PLATEAU_WINDOW_DAYS:
        return days * (1.0 - PLATEAU_STRENGTH * (1.0 - days / PLATEAU_WINDOW_DAYS))
    return days


def age_factor(age: Optional[float]) -> float:
    if not is_finite_number(age) or float(age) <= 0:
        return 1.0
    return max(AGE_FACTOR_FLOOR, AGE_FACTOR_BASE - (float(age) - AGE_REFERENCE_YEARS) * AGE_TAPER_PER_YEAR)


def individual_variability(experience: ExperienceLike, age: Optional[float] = None) -> float:
    """Forgetting-speed factor from experience (and age), bounded to [0.6, 1.8]."""
    factor = EXPERIENCE_VARIABILITY[ExperienceLevel.normalize(experience)] * age_factor(age)
    return max(MIN_VARIABILITY, min(MAX_VARIABILITY, factor))


def retention(
    days_since_practice,
    tau,
    repetitions=0,
    difficulty: DifficultyLike = Difficulty.AVERAGE,
    experience: ExperienceLike = ExperienceLevel.INTERMEDIATE,
    age: Optional[float] = None,
    diagnostics: Optional["RetentionDiagnostics"] = None,
) -> float:
    """
    Predicted recall probability after ``days_since_practice`` days.

    Always within [0, 1]; exactly 0.95 on day zero.
    """
    if not is_finite_number(days_since_practice):
        _note_substitution("days_since_practice", days_since_practice, 0.0, diagnostics)
        days = 0.0
    else:
        days = max(0.0, min(MAX_ELAPSED_DAYS, float(days_since_practice)))
    if not is_finite_number(tau) or float(tau) <= 0:
        _note_substitution("tau", tau, BASE_TAU_DAYS, diagnostics)
        tau = BASE_TAU_DAYS
    tau = clamp_tau(tau, diagnostics)

    if days == 0.0:
        return DAY_ZERO_RETENTION

    effective_days = motor_plateau(days)
    effective_tau = (
        tau
        * repetition_bonus(repetitions, difficulty, diagnostics)
        * individual_variability(experience, age)
    )

    exponent = -effective_days / effective_tau
    if exponent < MIN_SAFE_EXPONENT:
        logger.debug(f"Retention exponent {exponent:.2f} below floor, returning asymptote")
        return CURVE_ASYMPTOTE

    value = CURVE_AMPLITUDE * math.exp(exponent) + CURVE_ASYMPTOTE
    return max(0.0, min(1.0, value))


# ------------------------------------------------------------------ #
#  Policy                                                             #
# ------------------------------------------------------------------ #

_DEFAULT_TARGETS = {
    Difficulty.DIFFICULT: 0.85,
    Difficulty.AVERAGE: 0.80,
    Difficulty.EASY: 0.70,
    Difficulty.MASTERED: 0.65,
}

_DEFAULT_EXPERIENCE_MULTIPLIERS = {
    ExperienceLevel.BEGINNER: 0.8,
    ExperienceLevel.INTERMEDIATE: 1.0,
    ExperienceLevel.ADVANCED: 1.1,
    ExperienceLevel.PROFESSIONAL: 1.3,
}


def retention_target(
    difficulty: DifficultyLike,
    targets: Optional["RetentionTargetsConfig"] = None,
) -> float:
    """Retention level at which the next review should fall."""
    level = Difficulty.normalize(difficulty)
    if targets is None:
        return _DEFAULT_TARGETS[level]
    return float(getattr(targets, level.key))


def experience_tau_multiplier(
    experience: ExperienceLike,
    multipliers: Optional["ExperienceConfig"] = None,
) -> float:
    level = ExperienceLevel.normalize(experience)
    if multipliers is None:
        return _DEFAULT_EXPERIENCE_MULTIPLIERS[level]
    return float(getattr(multipliers, level.value))


def apply_global_multiplier(interval_days: float, multiplier: float) -> float:
    """Scale an interval by the learner-wide multiplier (invalid → 1.0)."""
    if not is_finite_number(multiplier) or float(multiplier) <= 0:
        _note_substitution("global_interval_multiplier", multiplier, 1.0)
        multiplier = 1.0
    return interval_days * float(multiplier)


def is_optimal_interval(
    predicted_retention: float,
    target: float = _DEFAULT_TARGETS[Difficulty.AVERAGE],
) -> bool:
    """A review is well placed when target ≤ R ≤ 0.85."""
    return target <= predicted_retention <= OPTIMAL_RETENTION_CEILING


# ------------------------------------------------------------------ #
#  Configured curve                                                   #
# ------------------------------------------------------------------ #

class ForgettingCurve:
    """
    The curve functions bound to one learner's settings.

    Holds the configured retention targets, experience multipliers and the
    global interval multiplier, plus an optional diagnostic channel. Carries
    no per-item state.
    """

    def __init__(
        self,
        targets: Optional["RetentionTargetsConfig"] = None,
        experience_multipliers: Optional["ExperienceConfig"] = None,
        global_interval_multiplier: float = 1.0,
        use_demographics: bool = True,
        diagnostics: Optional["RetentionDiagnostics"] = None,
    ) -> None:
        self.targets = targets
        self.experience_multipliers = experience_multipliers
        self.global_interval_multiplier = global_interval_multiplier
        self.use_demographics = use_demographics
        self.diagnostics = diagnostics

    # ---- Tau ----------------------------------------------------- #

    def baseline_tau(self, difficulty: DifficultyLike, repetitions=0, stage: int = 0) -> float:
        return baseline_tau(difficulty, repetitions, stage, self.diagnostics)

    def demographic_tau(
        self,
        difficulty: DifficultyLike,
        repetitions=0,
        stage: int = 0,
        profile: Optional["LearnerProfile"] = None,
    ) -> float:
        """
        Baseline tau scaled by the learner's experience multiplier.

        Age is carried by the profile but only shapes the retention curve,
        not the tau prior.
        """
        base = self.baseline_tau(difficulty, repetitions, stage)
        if profile is None or not self.use_demographics:
            return base
        multiplier = experience_tau_multiplier(profile.experience, self.experience_multipliers)
        return clamp_tau(base * multiplier, self.diagnostics)

    # ---- Retention ----------------------------------------------- #

    def retention(
        self,
        days_since_practice,
        tau,
        repetitions=0,
        difficulty: DifficultyLike = Difficulty.AVERAGE,
        profile: Optional["LearnerProfile"] = None,
    ) -> float:
        experience = profile.experience if profile is not None else ExperienceLevel.INTERMEDIATE
        age = profile.age if profile is not None and self.use_demographics else None
        return retention(
            days_since_practice, tau, repetitions, difficulty, experience, age, self.diagnostics
        )

    def retention_target(self, difficulty: DifficultyLike) -> float:
        return retention_target(difficulty, self.targets)

    # ---- Intervals ----------------------------------------------- #

    def scale_interval(self, interval_days: float, tau: float) -> Tuple[float, str]:
        """Apply the global multiplier to a planned interval and re-clamp it."""
        if self.global_interval_multiplier == 1.0:
            return clamp_interval(interval_days, tau, self.diagnostics)
        scaled = apply_global_multiplier(interval_days, self.global_interval_multiplier)
        return clamp_interval(scaled, tau, self.diagnostics)


__all__ = [
    "is_finite_number",
    "sanitize_repetitions",
    "sanitize_stage",
    "as_utc",
    "parse_timestamp",
    "clamp_tau",
    "clamp_interval",
    "difficulty_modifier",
    "repetition_bonus",
    "baseline_tau",
    "motor_plateau",
    "age_factor",
    "individual_variability",
    "retention",
    "retention_target",
    "experience_tau_multiplier",
    "apply_global_multiplier",
    "is_optimal_interval",
    "ForgettingCurve",
]
