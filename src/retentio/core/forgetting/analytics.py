"""
Retention Analytics
===================
Curve sampling and state summaries for display.

Provides:
1. Retention curve over whole days for a tau (numpy-vectorised)
2. Retrievability curve from a stability estimate
3. Summary statistics over an engine's item and calibration state
"""

from __future__ import annotations

import statistics
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import numpy as np

from .config import (
    CURVE_AMPLITUDE,
    CURVE_ASYMPTOTE,
    DAY_ZERO_RETENTION,
    MAX_ELAPSED_DAYS,
    MIN_SAFE_EXPONENT,
    PLATEAU_STRENGTH,
    PLATEAU_WINDOW_DAYS,
    Difficulty,
    ExperienceLevel,
)
from .curve import clamp_tau, individual_variability, is_finite_number, repetition_bonus
from .stability import MIN_RETRIEVABILITY, MemoryStabilityStats

if TYPE_CHECKING:
    from .engine import RetentionEngine


def _horizon(days_ahead) -> int:
    if not is_finite_number(days_ahead):
        return 30
    return int(max(0, min(MAX_ELAPSED_DAYS, days_ahead)))


def retention_curve(
    tau: float,
    days_ahead: int = 30,
    repetitions: int = 0,
    difficulty=Difficulty.AVERAGE,
    experience=ExperienceLevel.INTERMEDIATE,
    age: Optional[float] = None,
) -> List[Tuple[int, float]]:
    """
    Predicted retention on days 0..days_ahead.

    Matches ``curve.retention`` point for point.
    """
    days = np.arange(_horizon(days_ahead) + 1, dtype=np.float64)
    effective_tau = (
        clamp_tau(tau)
        * repetition_bonus(repetitions, difficulty)
        * individual_variability(experience, age)
    )
    plateau = days * (1.0 - PLATEAU_STRENGTH * (1.0 - days / PLATEAU_WINDOW_DAYS))
    effective_days = np.where(days <= PLATEAU_WINDOW_DAYS, plateau, days)
    exponent = -effective_days / effective_tau
    values = np.where(
        exponent < MIN_SAFE_EXPONENT,
        CURVE_ASYMPTOTE,
        CURVE_AMPLITUDE * np.exp(np.maximum(exponent, MIN_SAFE_EXPONENT)) + CURVE_ASYMPTOTE,
    )
    values = np.clip(values, 0.0, 1.0)
    values[0] = DAY_ZERO_RETENTION
    return [(int(d), float(v)) for d, v in zip(days, values)]


def stability_curve(stats: MemoryStabilityStats, days_ahead: int = 30) -> List[Tuple[int, float]]:
    """Retrievability on days 0..days_ahead after the last session."""
    days = np.arange(_horizon(days_ahead) + 1, dtype=np.float64)
    if stats.stability <= 0:
        values = np.full_like(days, 0.1)
    else:
        values = np.maximum(MIN_RETRIEVABILITY, np.exp(days * np.log(0.5) / stats.stability))
    values[0] = 1.0
    return [(int(d), float(v)) for d, v in zip(days, values)]


def summarize(engine: "RetentionEngine") -> Dict[str, Any]:
    """Counts and averages over an engine's state."""
    states = engine.item_memory.snapshot()
    taus = [s.tau_days for s in states]
    intervals = [s.last_planned_interval for s in states if s.last_planned_interval is not None]

    summary: Dict[str, Any] = {
        "learner_id": engine.profile.learner_id,
        "experience": engine.profile.experience.value,
        "total_sessions": engine.profile.total_sessions,
        "items_tracked": len(states),
        "total_reviews": sum(s.review_count for s in states),
        "avg_tau": round(statistics.mean(taus), 3) if taus else 0.0,
        "median_tau": round(statistics.median(taus), 3) if taus else 0.0,
        "tau_stdev": round(statistics.pstdev(taus), 3) if len(taus) > 1 else 0.0,
        "avg_planned_interval": round(statistics.mean(intervals), 3) if intervals else 0.0,
        "calibration": engine.calibration.stats().to_dict(),
    }

    if engine.stability.enabled:
        stats = [engine.stability.get_memory_stats(s.item_id) for s in states]
        stats = [s for s in stats if s is not None and not s.is_new]
        summary["stability"] = {
            "items": len(stats),
            "avg_stability": round(statistics.mean(s.stability for s in stats), 3) if stats else 0.0,
            "avg_retrievability": round(statistics.mean(s.retrievability for s in stats), 4) if stats else 0.0,
        }
    return summary


__all__ = ["retention_curve", "stability_curve", "summarize"]
