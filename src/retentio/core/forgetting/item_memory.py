"""
Per-Item Memory State
=====================
Keeps one tau estimate per item and nudges it after every review with a
bounded, exponentially smoothed rule:

    correct:    adj = clamp(0.35 × (t/τ + ln R*), -0.15, 0.50)
                τ_proposed = τ × (1 + adj)
    incorrect:  τ_proposed = τ × (1 - 0.45 × severity)
                severity = 0.7 if the miss was already predicted, else 1.0

    τ_new = clamp(0.8 × τ + 0.2 × τ_proposed, 1, 180)

A longer-than-target interval that was still recalled grows tau; a miss
shrinks it. Smoothing keeps one noisy session from swinging the estimate.

The store is guarded by a single re-entrant lock. Updates for one item must
arrive in the order the sessions happened; the smoothing recurrence depends
on the previous tau.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, TYPE_CHECKING

from loguru import logger

from retentio.core.exceptions import StateCorruptionError, ValidationError

from .config import (
    ITEM_EXPECTED_MISS_MARGIN,
    ITEM_EXPECTED_MISS_SEVERITY,
    ITEM_FAILURE_PENALTY,
    ITEM_MAX_ADJUSTMENT,
    ITEM_MAX_TARGET,
    ITEM_MIN_ADJUSTMENT,
    ITEM_MIN_INTERVAL_DAYS,
    ITEM_MIN_TARGET,
    ITEM_SMOOTHING,
    ITEM_SUCCESS_GAIN,
    PLAN_MIN_TARGET,
)
from .curve import as_utc, clamp_interval, clamp_tau, is_finite_number, parse_timestamp

if TYPE_CHECKING:
    from .diagnostics import RetentionDiagnostics


# ------------------------------------------------------------------ #
#  Interval projection                                                #
# ------------------------------------------------------------------ #

def target_interval(tau: float, target_retention: float) -> float:
    """
    Unclamped interval at which e^(-t/τ) equals the target: -τ × ln(R*).

    Tau is clamped to [1, 180] and the target to [0.5, 0.95] first.
    """
    tau = clamp_tau(tau)
    if not is_finite_number(target_retention):
        target_retention = ITEM_MAX_TARGET
    target = max(PLAN_MIN_TARGET, min(ITEM_MAX_TARGET, float(target_retention)))
    return -tau * math.log(target)


def plan_next_interval(
    tau: float,
    target_retention: float,
    diagnostics: Optional["RetentionDiagnostics"] = None,
) -> float:
    """Next interval in days for a tau and target, within [1, 365] and ≤ 5 × τ."""
    interval, _ = clamp_interval(target_interval(tau, target_retention), clamp_tau(tau), diagnostics)
    return interval


# ------------------------------------------------------------------ #
#  State record                                                       #
# ------------------------------------------------------------------ #

@dataclass
class ItemMemoryState:
    """
    Memory state of one item.

    Attributes:
        item_id: Item identifier
        tau_days: Current tau estimate, within [1, 180]
        review_count: Number of updates applied
        last_review: When the last update happened
        last_predicted_retention: e^(-t/τ) for the last reviewed interval
        last_planned_interval: Interval planned after the last update
    """
    item_id: str
    tau_days: float
    review_count: int = 0
    last_review: Optional[datetime] = None
    last_predicted_retention: Optional[float] = None
    last_planned_interval: Optional[float] = None

    def days_since_review(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.last_review is None:
            return None
        now = as_utc(now or datetime.now(timezone.utc))
        return max(0.0, (now - self.last_review).total_seconds() / 86400.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "tau_days": round(self.tau_days, 6),
            "review_count": self.review_count,
            "last_review": self.last_review.isoformat() if self.last_review else None,
            "last_predicted_retention": self.last_predicted_retention,
            "last_planned_interval": self.last_planned_interval,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemMemoryState":
        data = data.copy()
        data["last_review"] = parse_timestamp(data.get("last_review"))
        data["tau_days"] = clamp_tau(data.get("tau_days"))
        data["review_count"] = max(0, int(data.get("review_count", 0)))
        return cls(**data)


# ------------------------------------------------------------------ #
#  Store                                                              #
# ------------------------------------------------------------------ #

class ItemMemoryModel:
    """
    Thread-safe keyed store of ItemMemoryState.

    Records are created lazily on first access, seeded from a caller-supplied
    factory (typically the baseline tau), and never deleted.
    """

    def __init__(self, diagnostics: Optional["RetentionDiagnostics"] = None):
        self._states: Dict[str, ItemMemoryState] = {}
        self._lock = threading.RLock()
        self.diagnostics = diagnostics

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._states

    def __iter__(self) -> Iterator[ItemMemoryState]:
        return iter(self.snapshot())

    def snapshot(self) -> List[ItemMemoryState]:
        """Copies of all records."""
        with self._lock:
            return [replace(s) for s in self._states.values()]

    def get(self, item_id: str) -> Optional[ItemMemoryState]:
        """Copy of a record, or None. Never creates one."""
        with self._lock:
            state = self._states.get(item_id)
            return replace(state) if state is not None else None

    def get_or_create(
        self, item_id: str, init_factory: Callable[[], float]
    ) -> ItemMemoryState:
        """Copy of the record for ``item_id``, creating it from ``init_factory()`` if absent."""
        with self._lock:
            return replace(self._get_or_create(item_id, init_factory))

    def _get_or_create(
        self, item_id: str, init_factory: Callable[[], float]
    ) -> ItemMemoryState:
        if not item_id or not str(item_id).strip():
            raise ValidationError(field="item_id", reason="Item identifier must not be empty")
        state = self._states.get(item_id)
        if state is None:
            state = ItemMemoryState(item_id=item_id, tau_days=clamp_tau(init_factory(), self.diagnostics))
            self._states[item_id] = state
            logger.debug(f"Tracking item {item_id} with initial tau {state.tau_days:.2f}d")
        return state

    def update(
        self,
        item_id: str,
        interval_days: float,
        was_correct: bool,
        target_retention: float,
        init_factory: Callable[[], float],
        reviewed_at: Optional[datetime] = None,
    ) -> ItemMemoryState:
        """
        Apply one review outcome to an item's tau.

        Args:
            item_id: Item identifier (must not be empty)
            interval_days: Days since the previous review (floored at 0.1)
            was_correct: Whether the item was recalled
            target_retention: Retention target, clamped to [0.50, 0.95]
            init_factory: Seeds tau when the item is not tracked yet
            reviewed_at: Event time; defaults to now

        Returns:
            A copy of the updated state.
        """
        if not is_finite_number(interval_days):
            interval_days = ITEM_MIN_INTERVAL_DAYS
        interval = max(ITEM_MIN_INTERVAL_DAYS, float(interval_days))
        if not is_finite_number(target_retention):
            target_retention = ITEM_MAX_TARGET
        target = max(ITEM_MIN_TARGET, min(ITEM_MAX_TARGET, float(target_retention)))
        when = as_utc(reviewed_at or datetime.now(timezone.utc))

        with self._lock:
            state = self._get_or_create(item_id, init_factory)
            if state.last_review is not None and when < state.last_review:
                logger.warning(
                    f"Out-of-order review for {item_id}: {when.isoformat()} precedes "
                    f"{state.last_review.isoformat()}"
                )

            old_tau = state.tau_days
            predicted = math.exp(-interval / old_tau)
            target_ratio = -math.log(target)
            observed_ratio = interval / old_tau

            if was_correct:
                delta = observed_ratio - target_ratio
                adjustment = max(ITEM_MIN_ADJUSTMENT, min(ITEM_MAX_ADJUSTMENT, ITEM_SUCCESS_GAIN * delta))
                proposed = old_tau * (1.0 + adjustment)
            else:
                expected_miss = predicted < target - ITEM_EXPECTED_MISS_MARGIN
                severity = ITEM_EXPECTED_MISS_SEVERITY if expected_miss else 1.0
                proposed = old_tau * (1.0 - ITEM_FAILURE_PENALTY * severity)

            new_tau = clamp_tau(
                (1.0 - ITEM_SMOOTHING) * old_tau + ITEM_SMOOTHING * proposed, self.diagnostics
            )

            state.tau_days = new_tau
            state.review_count += 1
            state.last_review = when
            state.last_predicted_retention = predicted
            state.last_planned_interval = plan_next_interval(new_tau, target, self.diagnostics)

            logger.info(
                f"Item {item_id} review #{state.review_count}: "
                f"{'correct' if was_correct else 'missed'} after {interval:.2f}d, "
                f"tau {old_tau:.2f} -> {new_tau:.2f}"
            )
            if self.diagnostics is not None:
                self.diagnostics.log_adaptation(
                    item_id, old_tau, new_tau, "item_review_correct" if was_correct else "item_review_missed"
                )
            return replace(state)

    # ---- Persistence --------------------------------------------- #

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {item_id: s.to_dict() for item_id, s in self._states.items()}

    def load_dict(self, data: Dict[str, Any]) -> int:
        """
        Replace all records with ``data``. Malformed records are skipped.

        Returns the number of records loaded.
        """
        loaded: Dict[str, ItemMemoryState] = {}
        for item_id, raw in (data or {}).items():
            try:
                loaded[item_id] = ItemMemoryState.from_dict({**raw, "item_id": item_id})
            except (TypeError, ValueError, KeyError, AttributeError) as exc:
                err = StateCorruptionError(key=item_id, reason=str(exc))
                logger.warning(f"Skipping item record: {err}")
        with self._lock:
            self._states = loaded
        return len(loaded)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], diagnostics: Optional["RetentionDiagnostics"] = None) -> "ItemMemoryModel":
        model = cls(diagnostics=diagnostics)
        model.load_dict(data)
        return model


__all__ = [
    "target_interval",
    "plan_next_interval",
    "ItemMemoryState",
    "ItemMemoryModel",
]
