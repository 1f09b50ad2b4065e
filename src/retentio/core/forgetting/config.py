"""
Forgetting Curve Constants and Enums
=====================================
Shared constants and closed enumerations for the retention engine.

Every difficulty label, experience level and clamp reason that crosses the
engine boundary is normalized here, once, instead of being compared as a
free-text string throughout the code.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union


# ------------------------------------------------------------------ #
#  Curve constants                                                    #
# ------------------------------------------------------------------ #

BASE_TAU_DAYS: float = 3.0  # Base forgetting time constant
MATERIAL_FACTOR: float = 3.0  # Procedural (musical) material decays slower
MIN_TAU_DAYS: float = 1.0
MAX_TAU_DAYS: float = 180.0

CURVE_AMPLITUDE: float = 0.80  # Initial learning strength
CURVE_ASYMPTOTE: float = 0.15  # Long-term retention floor
DAY_ZERO_RETENTION: float = 0.95  # CURVE_AMPLITUDE + CURVE_ASYMPTOTE
MAX_ELAPSED_DAYS: float = 1000.0
MIN_SAFE_EXPONENT: float = -50.0

PLATEAU_WINDOW_DAYS: float = 0.4  # ~9.6 hours of procedural consolidation
PLATEAU_STRENGTH: float = 0.6

OPTIMAL_RETENTION_CEILING: float = 0.85  # Reviewing above this is redundant

# ------------------------------------------------------------------ #
#  Difficulty & repetition constants                                  #
# ------------------------------------------------------------------ #

MASTERED_EARLY_STAGE_MAX: int = 3
MASTERED_EARLY_MODIFIER: float = 2.0
MASTERED_MID_MODIFIER: float = 2.5  # stage == 4
MASTERED_LATE_MODIFIER: float = 3.5  # stage >= 5

REPETITION_BONUS_RATE: float = 0.15
MAX_REPETITION_BONUS: float = 2.0
MAX_REPETITIONS: int = 1000

# ------------------------------------------------------------------ #
#  Interval policy                                                    #
# ------------------------------------------------------------------ #

MIN_INTERVAL_DAYS: float = 1.0
MAX_INTERVAL_DAYS: float = 365.0
TAU_INTERVAL_CAP: float = 5.0  # interval <= 5 x tau

# ------------------------------------------------------------------ #
#  Per-item memory update                                             #
# ------------------------------------------------------------------ #

ITEM_MIN_INTERVAL_DAYS: float = 0.1
ITEM_MIN_TARGET: float = 0.50
ITEM_MAX_TARGET: float = 0.95
PLAN_MIN_TARGET: float = 0.5
ITEM_SUCCESS_GAIN: float = 0.35  # alpha
ITEM_MIN_ADJUSTMENT: float = -0.15
ITEM_MAX_ADJUSTMENT: float = 0.50
ITEM_FAILURE_PENALTY: float = 0.45  # beta
ITEM_EXPECTED_MISS_MARGIN: float = 0.05
ITEM_EXPECTED_MISS_SEVERITY: float = 0.7
ITEM_SMOOTHING: float = 0.2  # eta

# ------------------------------------------------------------------ #
#  Calibration                                                        #
# ------------------------------------------------------------------ #

CALIBRATION_LEARNING_RATE: float = 0.1
MIN_ADJUSTMENT_FACTOR: float = 0.3
MAX_ADJUSTMENT_FACTOR: float = 3.0
RAPID_PHASE_SESSIONS: int = 5
RAPID_PHASE_CONFIDENCE_CAP: float = 0.6
RAPID_PHASE_SESSION_DIVISOR: float = 3.0
FULL_CONFIDENCE_SESSIONS: float = 25.0
RECORD_CONFIDENCE_SESSIONS: float = 20.0
CALIBRATED_SESSIONS: int = 5
STABLE_CALIBRATION_SESSIONS: int = 10

# Prediction accuracy -> target adjustment factor
ACCURACY_POOR: float = 0.3
ACCURACY_WEAK: float = 0.5
ACCURACY_GOOD: float = 0.8
TARGET_FOR_POOR: float = 0.7
TARGET_FOR_WEAK: float = 0.85
TARGET_FOR_GOOD: float = 1.3
TARGET_OTHERWISE: float = 1.15

# ------------------------------------------------------------------ #
#  Integration                                                        #
# ------------------------------------------------------------------ #

CALIBRATION_WEIGHT: float = 0.40
STABILITY_WEIGHT: float = 0.50
PERFORMANCE_WEIGHT: float = 0.30
MIN_CALIBRATION_SESSIONS_FOR_SIGNAL: int = 3
CALIBRATION_CONFIDENCE_SESSIONS: float = 10.0
MIN_STABILITY_REVIEWS: int = 2
STABILITY_CONFIDENCE_REVIEWS: float = 5.0
STABILITY_TAU_FACTOR: float = 0.7
STABILITY_DIFFICULTY_FACTOR: float = 0.3
MIN_PERFORMANCE_SESSIONS: int = 2
PERFORMANCE_WINDOW: int = 3
POOR_PERFORMANCE_SCORE: float = 4.0
STRONG_PERFORMANCE_SCORE: float = 7.5
POOR_PERFORMANCE_MULTIPLIER: float = 0.7
STRONG_PERFORMANCE_MULTIPLIER: float = 1.4
TWO_SOURCE_BOOST: float = 1.2
THREE_SOURCE_BOOST: float = 1.1
MIN_BLEND_CONFIDENCE: float = 0.1
HIGH_BLEND_CONFIDENCE: float = 0.8
HIGH_CONFIDENCE_ADAPTIVE_SHARE: float = 0.9

EXPECTED_PERFORMANCE_SCORE: float = 6.0
RAPID_DEVIATION_THRESHOLD: float = 1.5
IMMEDIATE_DEVIATION_THRESHOLD: float = 2.5
RAPID_SHORTEN_FACTOR: float = 0.8
RAPID_LENGTHEN_FACTOR: float = 1.25
RAPID_ITEM_SESSIONS: int = 3

# ------------------------------------------------------------------ #
#  Practice outcomes                                                  #
# ------------------------------------------------------------------ #

ROLLING_SUCCESS_WINDOW: int = 7
MIN_PERFORMANCE_RATING: float = 1.0
MAX_PERFORMANCE_RATING: float = 10.0
DEFAULT_PERFORMANCE_RATING: float = 5.0


# ------------------------------------------------------------------ #
#  Enums                                                              #
# ------------------------------------------------------------------ #

class Difficulty(Enum):
    """Closed set of difficulty labels a learner can give an item."""
    DIFFICULT = "Difficult"
    AVERAGE = "Average"
    EASY = "Easy"
    MASTERED = "Mastered"

    @classmethod
    def normalize(cls, label: Union["Difficulty", str, None]) -> "Difficulty":
        """
        Map any free-text label onto the closed set.

        Matching is case-insensitive; legacy "Normal" and anything
        unrecognized become AVERAGE.
        """
        if isinstance(label, cls):
            return label
        if not label:
            return cls.AVERAGE
        return _DIFFICULTY_ALIASES.get(str(label).strip().lower(), cls.AVERAGE)

    @property
    def key(self) -> str:
        """Lowercase key used for persisted calibration records."""
        return self.value.lower()


_DIFFICULTY_ALIASES = {
    "difficult": Difficulty.DIFFICULT,
    "hard": Difficulty.DIFFICULT,
    "challenging": Difficulty.DIFFICULT,
    "average": Difficulty.AVERAGE,
    "normal": Difficulty.AVERAGE,
    "easy": Difficulty.EASY,
    "simple": Difficulty.EASY,
    "mastered": Difficulty.MASTERED,
    "review": Difficulty.MASTERED,
    "maintain": Difficulty.MASTERED,
}

DIFFICULTY_MODIFIERS = {
    Difficulty.DIFFICULT: 0.6,
    Difficulty.AVERAGE: 1.0,
    Difficulty.EASY: 1.7,
}

REPETITION_DIFFICULTY_FACTORS = {
    Difficulty.DIFFICULT: 1.3,
    Difficulty.AVERAGE: 1.0,
    Difficulty.EASY: 0.9,
    Difficulty.MASTERED: 0.7,
}


class ExperienceLevel(Enum):
    """Learner experience level."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    PROFESSIONAL = "professional"

    @classmethod
    def normalize(cls, label: Union["ExperienceLevel", str, None]) -> "ExperienceLevel":
        if isinstance(label, cls):
            return label
        if not label:
            return cls.INTERMEDIATE
        key = str(label).strip().lower()
        if key == "expert":
            return cls.PROFESSIONAL
        try:
            return cls(key)
        except ValueError:
            return cls.INTERMEDIATE


# Individual variability of forgetting speed (retention curve only)
EXPERIENCE_VARIABILITY = {
    ExperienceLevel.BEGINNER: 0.8,
    ExperienceLevel.INTERMEDIATE: 1.0,
    ExperienceLevel.ADVANCED: 1.2,
    ExperienceLevel.PROFESSIONAL: 1.4,
}
MIN_VARIABILITY: float = 0.6
MAX_VARIABILITY: float = 1.8
AGE_REFERENCE_YEARS: float = 20.0
AGE_TAPER_PER_YEAR: float = 0.005
AGE_FACTOR_BASE: float = 1.1
AGE_FACTOR_FLOOR: float = 0.85


class LearningZone(Enum):
    """Band a session's success ratio falls into."""
    TOO_HARD = "TooHard"
    EXPLORATION = "Exploration"
    CONSOLIDATION = "Consolidation"
    POLISH = "Polish"
    MASTERED = "Mastered"

    @classmethod
    def from_success_ratio(cls, ratio: Optional[float]) -> "LearningZone":
        if ratio is None or ratio != ratio:
            return cls.TOO_HARD
        if ratio < 0.60:
            return cls.TOO_HARD
        if ratio < 0.80:
            return cls.EXPLORATION
        if ratio < 0.90:
            return cls.CONSOLIDATION
        if ratio < 0.95:
            return cls.POLISH
        return cls.MASTERED


class ClampReason:
    """Reason codes reported by interval clamping. Several may be joined with '+'."""
    NONE = "none"
    INVALID = "invalid_min"
    MIN_CONSOLIDATION = "min_consolidation"
    SAFETY_MAX = "safety_max_365"
    TAU_CAP = "cap_5x_tau"
    SEPARATOR = "+"


__all__ = [
    # Curve
    "BASE_TAU_DAYS",
    "MATERIAL_FACTOR",
    "MIN_TAU_DAYS",
    "MAX_TAU_DAYS",
    "CURVE_AMPLITUDE",
    "CURVE_ASYMPTOTE",
    "DAY_ZERO_RETENTION",
    "MAX_ELAPSED_DAYS",
    "MIN_SAFE_EXPONENT",
    "PLATEAU_WINDOW_DAYS",
    "PLATEAU_STRENGTH",
    "OPTIMAL_RETENTION_CEILING",
    # Difficulty & repetitions
    "MASTERED_EARLY_STAGE_MAX",
    "MASTERED_EARLY_MODIFIER",
    "MASTERED_MID_MODIFIER",
    "MASTERED_LATE_MODIFIER",
    "REPETITION_BONUS_RATE",
    "MAX_REPETITION_BONUS",
    "MAX_REPETITIONS",
    "DIFFICULTY_MODIFIERS",
    "REPETITION_DIFFICULTY_FACTORS",
    # Interval policy
    "MIN_INTERVAL_DAYS",
    "MAX_INTERVAL_DAYS",
    "TAU_INTERVAL_CAP",
    # Per-item update
    "ITEM_MIN_INTERVAL_DAYS",
    "ITEM_MIN_TARGET",
    "ITEM_MAX_TARGET",
    "PLAN_MIN_TARGET",
    "ITEM_SUCCESS_GAIN",
    "ITEM_MIN_ADJUSTMENT",
    "ITEM_MAX_ADJUSTMENT",
    "ITEM_FAILURE_PENALTY",
    "ITEM_EXPECTED_MISS_MARGIN",
    "ITEM_EXPECTED_MISS_SEVERITY",
    "ITEM_SMOOTHING",
    # Calibration
    "CALIBRATION_LEARNING_RATE",
    "MIN_ADJUSTMENT_FACTOR",
    "MAX_ADJUSTMENT_FACTOR",
    "RAPID_PHASE_SESSIONS",
    "RAPID_PHASE_CONFIDENCE_CAP",
    "RAPID_PHASE_SESSION_DIVISOR",
    "FULL_CONFIDENCE_SESSIONS",
    "RECORD_CONFIDENCE_SESSIONS",
    "CALIBRATED_SESSIONS",
    "STABLE_CALIBRATION_SESSIONS",
    "ACCURACY_POOR",
    "ACCURACY_WEAK",
    "ACCURACY_GOOD",
    "TARGET_FOR_POOR",
    "TARGET_FOR_WEAK",
    "TARGET_FOR_GOOD",
    "TARGET_OTHERWISE",
    # Integration
    "CALIBRATION_WEIGHT",
    "STABILITY_WEIGHT",
    "PERFORMANCE_WEIGHT",
    "MIN_CALIBRATION_SESSIONS_FOR_SIGNAL",
    "CALIBRATION_CONFIDENCE_SESSIONS",
    "MIN_STABILITY_REVIEWS",
    "STABILITY_CONFIDENCE_REVIEWS",
    "STABILITY_TAU_FACTOR",
    "STABILITY_DIFFICULTY_FACTOR",
    "MIN_PERFORMANCE_SESSIONS",
    "PERFORMANCE_WINDOW",
    "POOR_PERFORMANCE_SCORE",
    "STRONG_PERFORMANCE_SCORE",
    "POOR_PERFORMANCE_MULTIPLIER",
    "STRONG_PERFORMANCE_MULTIPLIER",
    "TWO_SOURCE_BOOST",
    "THREE_SOURCE_BOOST",
    "MIN_BLEND_CONFIDENCE",
    "HIGH_BLEND_CONFIDENCE",
    "HIGH_CONFIDENCE_ADAPTIVE_SHARE",
    "EXPECTED_PERFORMANCE_SCORE",
    "RAPID_DEVIATION_THRESHOLD",
    "IMMEDIATE_DEVIATION_THRESHOLD",
    "RAPID_SHORTEN_FACTOR",
    "RAPID_LENGTHEN_FACTOR",
    "RAPID_ITEM_SESSIONS",
    # Practice outcomes
    "ROLLING_SUCCESS_WINDOW",
    "MIN_PERFORMANCE_RATING",
    "MAX_PERFORMANCE_RATING",
    "DEFAULT_PERFORMANCE_RATING",
    # Experience
    "EXPERIENCE_VARIABILITY",
    "MIN_VARIABILITY",
    "MAX_VARIABILITY",
    "AGE_REFERENCE_YEARS",
    "AGE_TAPER_PER_YEAR",
    "AGE_FACTOR_BASE",
    "AGE_FACTOR_FLOOR",
    # Enums
    "Difficulty",
    "ExperienceLevel",
    "LearningZone",
    "ClampReason",
]
