"""
Retention Engine
================
One engine per active learner profile. Owns every store (item memory,
calibration, stability, diagnostics) and exposes the two calls a scheduler
needs:

    decision = engine.recommend("etude-4/bars-1-8", "Difficult", repetitions=12)
    decision = engine.record_outcome(outcome, item_history=previous_outcomes)

Each decision carries a clamped tau, a clamped next interval with the reason
code of any clamp that fired, the retention target and the predicted
retention at the planned interval.

State can be written to and read from a JSON document. Persistence failures
are logged and never interrupt scheduling; a failed load leaves neutral
calibration in memory.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from loguru import logger

from retentio.core.config import RetentioConfig, get_config
from retentio.core.exceptions import PersistenceError

from .calibration import PersonalizedCalibration
from .config import Difficulty
from .curve import ForgettingCurve, sanitize_repetitions
from .diagnostics import RetentionDiagnostics
from .integration import AdaptiveTauManager, TauBreakdown
from .item_memory import ItemMemoryModel, plan_next_interval, target_interval
from .outcome import PracticeOutcome, chronological, performance_rating, recalled_successfully
from .profile import LearnerProfile
from .stability import MemoryStabilityManager, StabilityProvider

STATE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class ScheduleDecision:
    """What the scheduler needs to place the next review of an item."""
    item_id: Optional[str]
    tau_days: float
    interval_days: float
    clamp_reason: str
    target_retention: float
    predicted_retention: float
    source: str = "adaptive"
    item_tau_days: Optional[float] = None
    requires_attention: bool = False

    def due_at(self, from_date: Optional[datetime] = None) -> datetime:
        """Calendar time of the next review."""
        start = from_date or datetime.now(timezone.utc)
        return start + timedelta(days=self.interval_days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "tau_days": round(self.tau_days, 4),
            "interval_days": round(self.interval_days, 4),
            "clamp_reason": self.clamp_reason,
            "target_retention": self.target_retention,
            "predicted_retention": round(self.predicted_retention, 4),
            "source": self.source,
            "item_tau_days": self.item_tau_days,
            "requires_attention": self.requires_attention,
        }


class RetentionEngine:
    """
    Facade tying the curve, the stores and the integration manager together
    for one learner.

    Args:
        config: Loaded configuration; the global one when omitted
        profile: The learner; a default intermediate learner when omitted
        persistence_path: JSON state file used by save_state/load_state
        stability_provider: Replaces the built-in stability estimator as
            the source of the stability signal
        autosave: Save after every recorded outcome
    """

    def __init__(
        self,
        config: Optional[RetentioConfig] = None,
        profile: Optional[LearnerProfile] = None,
        persistence_path: Optional[Union[str, Path]] = None,
        stability_provider: Optional[StabilityProvider] = None,
        autosave: bool = False,
    ):
        self.config = config or get_config()
        self.profile = profile or LearnerProfile(learner_id="default")
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self.autosave = autosave
        self._lock = threading.RLock()

        features = self.config.features
        self.diagnostics = RetentionDiagnostics(
            enabled=features.enable_diagnostics,
            limit_per_day=features.diagnostic_limit_per_day,
        )
        self.curve = ForgettingCurve(
            targets=self.config.retention_targets,
            experience_multipliers=self.config.experience,
            global_interval_multiplier=self.config.scheduling.global_interval_multiplier,
            use_demographics=features.use_demographics,
            diagnostics=self.diagnostics,
        )
        self.item_memory = ItemMemoryModel(diagnostics=self.diagnostics)
        self.calibration = PersonalizedCalibration(
            enabled=features.use_calibration, diagnostics=self.diagnostics
        )
        self.stability = MemoryStabilityManager(
            enabled=features.use_stability, diagnostics=self.diagnostics
        )
        self.integration = AdaptiveTauManager(
            curve=self.curve,
            calibration=self.calibration,
            stability=stability_provider or self.stability,
            features=features,
            diagnostics=self.diagnostics,
        )

        logger.info(
            f"RetentionEngine ready for learner '{self.profile.learner_id}' "
            f"({self.profile.experience.value}, adaptive={features.use_adaptive_systems})"
        )

    # ---- Scheduling ---------------------------------------------- #

    def recommend(
        self,
        item_id: Optional[str],
        difficulty,
        repetitions=0,
        stage: int = 0,
        item_history: Optional[Sequence[PracticeOutcome]] = None,
    ) -> ScheduleDecision:
        """Tau and next interval for an item, without changing any state."""
        breakdown = self.integration.integrated_tau_breakdown(
            difficulty,
            repetitions,
            item_id=item_id,
            item_history=item_history,
            profile=self.profile,
            stage=stage,
            log=False,
        )
        return self._decide(breakdown)

    def _decide(self, breakdown: TauBreakdown, requires_attention: bool = False) -> ScheduleDecision:
        tau = breakdown.final_tau
        target = self.curve.retention_target(breakdown.difficulty)
        interval, reason = self.curve.scale_interval(target_interval(tau, target), tau)
        predicted = self.curve.retention(
            interval, tau, breakdown.repetitions, breakdown.difficulty, self.profile
        )

        breakdown.interval_days = interval
        breakdown.clamp_reason = reason
        breakdown.target_retention = target
        breakdown.predicted_retention = predicted
        self.integration.log_breakdown(breakdown)

        item_state = self.item_memory.get(breakdown.item_id) if breakdown.item_id else None
        return ScheduleDecision(
            item_id=breakdown.item_id,
            tau_days=tau,
            interval_days=interval,
            clamp_reason=reason,
            target_retention=target,
            predicted_retention=predicted,
            source=breakdown.source,
            item_tau_days=item_state.tau_days if item_state else None,
            requires_attention=requires_attention,
        )

    def record_outcome(
        self,
        outcome: PracticeOutcome,
        item_history: Optional[Sequence[PracticeOutcome]] = None,
        stage: int = 0,
        repetitions: Optional[int] = None,
    ) -> ScheduleDecision:
        """
        Feed one practice session through every learning store, then return
        the fresh recommendation for the item.

        Order: learner statistics, calibration (slow update), rapid
        calibration, stability, item memory. ``item_history`` holds the
        item's earlier sessions; the outcome itself is appended if missing.

        Args:
            outcome: The session that just ended
            item_history: Earlier sessions for the same item
            stage: Learning stage of the item
            repetitions: Completed repetitions for the baseline tau; defaults
                to the repetitions summed over the history and this session
        """
        prior = chronological(o for o in (item_history or []) if o is not outcome)
        history = prior + [outcome]
        if repetitions is None:
            repetitions = sum(o.repetitions for o in history)
        reps = sanitize_repetitions(repetitions, self.diagnostics)

        rating = performance_rating(outcome)
        recalled = recalled_successfully(outcome)
        prior_state = self.item_memory.get(outcome.item_id)

        with self._lock:
            self.profile.update_stats(outcome, rating, recalled)
            learner_sessions = self.profile.total_sessions

        self.calibration.update_from_outcome(outcome, prior_state)
        self.integration.apply_rapid_calibration(
            outcome, learner_sessions=learner_sessions, item_sessions=len(history)
        )
        self.stability.update(outcome)

        target = self.curve.retention_target(outcome.difficulty)
        if prior_state is not None and prior_state.last_review is not None:
            elapsed = (outcome.timestamp - prior_state.last_review).total_seconds() / 86400.0
        else:
            elapsed = None

        def seed_tau() -> float:
            return self.curve.demographic_tau(outcome.difficulty, reps, stage, self.profile)

        if elapsed is None:
            seed = prior_state.tau_days if prior_state is not None else seed_tau()
            elapsed = plan_next_interval(seed, target, self.diagnostics)

        self.item_memory.update(
            outcome.item_id,
            interval_days=elapsed,
            was_correct=recalled,
            target_retention=target,
            init_factory=seed_tau,
            reviewed_at=outcome.timestamp,
        )

        attention = self.integration.requires_immediate_adjustment(outcome, history)
        if attention:
            logger.info(f"Item {outcome.item_id} performance far from expected; flagging for attention")

        breakdown = self.integration.integrated_tau_breakdown(
            outcome.difficulty,
            reps,
            item_id=outcome.item_id,
            item_history=history,
            profile=self.profile,
            stage=stage,
            log=False,
        )
        decision = self._decide(breakdown, requires_attention=attention)

        if self.autosave:
            self.save_state()
        return decision

    def retention_now(
        self,
        days_since_practice: float,
        tau: float,
        difficulty=Difficulty.AVERAGE,
        repetitions=0,
    ) -> float:
        """Predicted retention for this learner after a number of days."""
        return self.curve.retention(days_since_practice, tau, repetitions, difficulty, self.profile)

    # ---- Persistence --------------------------------------------- #

    def _resolve_path(self, path: Optional[Union[str, Path]]) -> Path:
        if path is not None:
            return Path(path)
        if self.persistence_path is not None:
            return self.persistence_path
        return Path(self.config.paths.state_file)

    def to_dict(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {
            "version": STATE_FORMAT_VERSION,
            "profile": self.profile.to_dict(),
            "item_memory": self.item_memory.to_dict(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        if self.calibration.enabled:
            state["calibration"] = self.calibration.to_dict()
        if self.stability.enabled:
            state["stability"] = self.stability.to_dict()
        return state

    def load_dict(self, state: Dict[str, Any]) -> None:
        profile = state.get("profile")
        if profile:
            with self._lock:
                self.profile = LearnerProfile.from_dict(profile)
        self.item_memory.load_dict(state.get("item_memory") or {})
        if self.calibration.enabled:
            self.calibration.load_dict(state.get("calibration") or {})
        if self.stability.enabled:
            self.stability.load_dict(state.get("stability") or {})

    def save_state(self, path: Optional[Union[str, Path]] = None) -> bool:
        """Write engine state as JSON. Returns False (and logs) on failure."""
        target = self._resolve_path(path)
        try:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, "w", encoding="utf-8") as f:
                    json.dump(self.to_dict(), f, indent=2)
            except (OSError, TypeError, ValueError) as exc:
                raise PersistenceError(path=str(target), operation="save", reason=str(exc)) from exc
        except PersistenceError as err:
            logger.warning(f"Failed to save retention state: {err}")
            return False
        logger.debug(f"Saved retention state to {target}")
        return True

    def load_state(self, path: Optional[Union[str, Path]] = None) -> bool:
        """
        Read engine state from JSON.

        A missing file keeps the current state. An unreadable file resets
        calibration to neutral and returns False.
        """
        target = self._resolve_path(path)
        if not target.exists():
            logger.debug(f"No persisted retention state at {target}")
            return False
        try:
            try:
                with open(target, "r", encoding="utf-8") as f:
                    state = json.load(f)
                if not isinstance(state, dict):
                    raise ValueError("state document is not a mapping")
                self.load_dict(state)
            except (OSError, TypeError, ValueError, KeyError, AttributeError) as exc:
                raise PersistenceError(path=str(target), operation="load", reason=str(exc)) from exc
        except PersistenceError as err:
            logger.warning(f"Failed to load retention state, continuing with neutral calibration: {err}")
            self.calibration.reset()
            return False

        logger.info(
            f"Loaded retention state from {target}: {len(self.item_memory)} items, "
            f"{self.calibration.total_sessions} calibration sessions"
        )
        return True


__all__ = ["ScheduleDecision", "RetentionEngine", "STATE_FORMAT_VERSION"]
