"""
Forgetting Curve Package
========================
Retention modelling and adaptive review scheduling for practiced material.

This package provides modular components for the retention engine:

Configuration:
    - Constants and enums (Difficulty, ExperienceLevel, LearningZone, ClampReason)

Core Components:
    - curve: Closed-form retention curve, baseline tau and the interval/tau clamps
    - PracticeOutcome: One practice session and the signals derived from it
    - LearnerProfile: Per-learner experience, age and running statistics
    - ItemMemoryModel: Per-item tau with a bounded smoothed update rule
    - PersonalizedCalibration: Per-difficulty tau calibration
    - MemoryStabilityManager: Stability/difficulty estimate per item

Management:
    - AdaptiveTauManager: Confidence-weighted blend of the learned signals
    - RetentionEngine: Facade owning every store for one learner

Analytics:
    - RetentionDiagnostics: Rate-limited structured trace of tau decisions
    - retention_curve / stability_curve / summarize

Convenience Functions:
    - create_retention_engine: Factory function
    - create_learner_profile: Factory function

Usage:
    from retentio.core.forgetting import create_retention_engine, PracticeOutcome

    engine = create_retention_engine(learner_id="alice", experience="advanced")
    decision = engine.record_outcome(outcome, item_history=history)
    print(decision.interval_days, decision.clamp_reason)
"""

from .config import (
    # Constants
    BASE_TAU_DAYS,
    MATERIAL_FACTOR,
    MIN_TAU_DAYS,
    MAX_TAU_DAYS,
    MIN_INTERVAL_DAYS,
    MAX_INTERVAL_DAYS,
    TAU_INTERVAL_CAP,
    DAY_ZERO_RETENTION,
    # Enums
    ClampReason,
    Difficulty,
    ExperienceLevel,
    LearningZone,
)
from .curve import (
    ForgettingCurve,
    baseline_tau,
    clamp_interval,
    clamp_tau,
    is_optimal_interval,
    retention,
    retention_target,
)
from .outcome import (
    PracticeOutcome,
    estimate_actual_retention,
    performance_rating,
    recalled_successfully,
)
from .profile import LearnerProfile
from .item_memory import ItemMemoryModel, ItemMemoryState, plan_next_interval
from .calibration import DifficultyCalibration, PersonalizedCalibration
from .stability import MemoryStabilityManager, MemoryStabilityStats, StabilityProvider
from .diagnostics import RetentionDiagnostics
from .integration import AdaptiveDataSet, AdaptiveTauManager, TauBreakdown
from .engine import RetentionEngine, ScheduleDecision
from .analytics import retention_curve, stability_curve, summarize


def create_retention_engine(
    config=None,
    learner_id: str = "default",
    experience: str = "intermediate",
    age=None,
    persistence_path=None,
    **kwargs
):
    """
    Factory function to create a configured RetentionEngine.

    Args:
        config: RetentioConfig; the global configuration when omitted
        learner_id: Identifier of the learner
        experience: Free-text experience label ("beginner" ... "professional")
        age: Optional learner age in years
        persistence_path: Optional path for state persistence
        **kwargs: Additional arguments for RetentionEngine

    Returns:
        Configured RetentionEngine instance
    """
    return RetentionEngine(
        config=config,
        profile=create_learner_profile(learner_id, experience, age),
        persistence_path=persistence_path,
        **kwargs
    )


def create_learner_profile(
    learner_id: str,
    experience: str = "intermediate",
    age=None,
):
    """
    Factory function to create a LearnerProfile.

    Unknown experience labels fall back to intermediate; "expert" maps to
    professional.
    """
    return LearnerProfile.for_experience(learner_id, experience, age)


__all__ = [
    # Constants
    "BASE_TAU_DAYS",
    "MATERIAL_FACTOR",
    "MIN_TAU_DAYS",
    "MAX_TAU_DAYS",
    "MIN_INTERVAL_DAYS",
    "MAX_INTERVAL_DAYS",
    "TAU_INTERVAL_CAP",
    "DAY_ZERO_RETENTION",
    # Enums
    "ClampReason",
    "Difficulty",
    "ExperienceLevel",
    "LearningZone",
    # Curve
    "ForgettingCurve",
    "baseline_tau",
    "clamp_interval",
    "clamp_tau",
    "is_optimal_interval",
    "retention",
    "retention_target",
    # Core components
    "PracticeOutcome",
    "estimate_actual_retention",
    "performance_rating",
    "recalled_successfully",
    "LearnerProfile",
    "ItemMemoryModel",
    "ItemMemoryState",
    "plan_next_interval",
    "DifficultyCalibration",
    "PersonalizedCalibration",
    "MemoryStabilityManager",
    "MemoryStabilityStats",
    "StabilityProvider",
    # Management
    "AdaptiveDataSet",
    "AdaptiveTauManager",
    "TauBreakdown",
    "RetentionEngine",
    "ScheduleDecision",
    # Analytics
    "RetentionDiagnostics",
    "retention_curve",
    "stability_curve",
    "summarize",
    # Convenience functions
    "create_retention_engine",
    "create_learner_profile",
]
