"""
Memory Stability Estimator
==========================
Two-component memory model (stability S, difficulty D) per item, updated
after each practice session. It is the default source of the "stability
signal" the integration manager blends into tau.

    R(t) = max(0.01, e^(t · ln 0.5 / S))      S = days until 50% recall

    success:  S ← S × 1.3 × √(1 - R + 0.1) × (1 - 0.3 D);   D ← max(0.01, D - 0.05)
    failure:  S ← max(1.8 × 0.8, 0.3 S);                     D ← min(0.99, D + 0.1)

followed by small performance and session-length corrections. Recalling an
item when its retrievability was low yields the largest stability gain.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, TYPE_CHECKING

from loguru import logger

from retentio.core.exceptions import StateCorruptionError

from .curve import as_utc, is_finite_number, parse_timestamp
from .outcome import PracticeOutcome, performance_rating, recalled_successfully

if TYPE_CHECKING:
    from .diagnostics import RetentionDiagnostics


# ------------------------------------------------------------------ #
#  Constants                                                          #
# ------------------------------------------------------------------ #

INITIAL_STABILITY_DAYS: float = 1.8
DEFAULT_ITEM_DIFFICULTY: float = 0.3
STABILITY_GROWTH_FACTOR: float = 1.3
DIFFICULTY_ADJUSTMENT_RATE: float = 0.05
RETRIEVABILITY_TARGET: float = 0.8
MIN_RETRIEVABILITY: float = 0.01
FAILURE_STABILITY_FLOOR: float = INITIAL_STABILITY_DAYS * 0.8
FAILURE_STABILITY_RETAINED: float = 0.3
MIN_ITEM_DIFFICULTY: float = 0.01
MAX_ITEM_DIFFICULTY: float = 0.99


class StabilityProvider(Protocol):
    """Anything that can report a stability estimate for an item."""

    def get_memory_stats(self, item_id: str, now: Optional[datetime] = None) -> Optional["MemoryStabilityStats"]:
        ...


@dataclass
class MemoryStabilityRecord:
    """Stability state of one item."""
    item_id: str
    stability: float = INITIAL_STABILITY_DAYS
    difficulty: float = DEFAULT_ITEM_DIFFICULTY
    review_count: int = 0
    last_review: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "stability": round(self.stability, 6),
            "difficulty": round(self.difficulty, 6),
            "review_count": self.review_count,
            "last_review": self.last_review.isoformat() if self.last_review else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryStabilityRecord":
        stability = data.get("stability", INITIAL_STABILITY_DAYS)
        difficulty = data.get("difficulty", DEFAULT_ITEM_DIFFICULTY)
        if not is_finite_number(stability) or stability <= 0:
            raise ValueError(f"invalid stability {stability!r}")
        if not is_finite_number(difficulty):
            raise ValueError(f"invalid difficulty {difficulty!r}")
        last = data.get("last_review")
        return cls(
            item_id=data["item_id"],
            stability=float(stability),
            difficulty=max(MIN_ITEM_DIFFICULTY, min(MAX_ITEM_DIFFICULTY, float(difficulty))),
            review_count=max(0, int(data.get("review_count", 0))),
            last_review=parse_timestamp(last),
        )


@dataclass
class MemoryStabilityStats:
    """
    Snapshot of an item's stability estimate.

    Attributes:
        item_id: Item identifier
        is_new: True when no sessions were recorded
        stability: Days until recall drops to 50%
        difficulty: 0 (easy) … 1 (hard)
        review_count: Sessions recorded
        retrievability: Recall probability now
        last_review: Time of the last session
        days_since_review: Days since that session
        retention_strength: 0-100 display score
        learning_progress: 0-100 display score
    """
    item_id: str
    is_new: bool
    stability: float
    difficulty: float
    review_count: int
    retrievability: float
    last_review: Optional[datetime] = None
    days_since_review: Optional[float] = None
    retention_strength: float = 0.0
    learning_progress: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "is_new": self.is_new,
            "stability": round(self.stability, 3),
            "difficulty": round(self.difficulty, 3),
            "review_count": self.review_count,
            "retrievability": round(self.retrievability, 4),
            "last_review": self.last_review.isoformat() if self.last_review else None,
            "days_since_review": self.days_since_review,
            "retention_strength": round(self.retention_strength, 1),
            "learning_progress": round(self.learning_progress, 1),
        }


# ---- Core math --------------------------------------------------- #

def retrievability(stability: float, days_since_review: float) -> float:
    """Recall probability after ``days_since_review`` days at a stability."""
    if days_since_review <= 0:
        return 1.0
    if stability <= 0:
        return 0.1
    return max(MIN_RETRIEVABILITY, math.exp(days_since_review * math.log(0.5) / stability))


def stability_growth(retrievability_now: float, difficulty: float) -> float:
    return STABILITY_GROWTH_FACTOR * math.sqrt(1.0 - retrievability_now + 0.1) * (1.0 - difficulty * 0.3)


def target_interval(stability: float, target: float = RETRIEVABILITY_TARGET) -> float:
    """Days until retrievability falls to ``target``, bounded to [0.1, 5 S]."""
    if target >= 1.0:
        return 0.0
    if target <= MIN_RETRIEVABILITY:
        return stability * 10
    interval = stability * math.log(target) / math.log(0.5)
    return max(0.1, min(stability * 5, interval))


def retention_strength(record: MemoryStabilityRecord) -> float:
    stability_score = min(100.0, record.stability * 5)
    experience_score = min(100.0, record.review_count * 10)
    difficulty_score = (1.0 - record.difficulty) * 100
    return stability_score * 0.5 + experience_score * 0.3 + difficulty_score * 0.2


def learning_progress(record: MemoryStabilityRecord) -> float:
    stability_progress = min(100.0, (record.stability / INITIAL_STABILITY_DAYS - 1.0) * 20)
    difficulty_progress = (DEFAULT_ITEM_DIFFICULTY - record.difficulty) * 200
    experience_progress = min(100.0, record.review_count * 5)
    return max(0.0, (stability_progress + difficulty_progress + experience_progress) / 3)


def _days_between(start: Optional[datetime], end: datetime) -> float:
    if start is None:
        return 0.0
    return (end - start).total_seconds() / 86400.0


# ------------------------------------------------------------------ #
#  Manager                                                            #
# ------------------------------------------------------------------ #

class MemoryStabilityManager:
    """
    Thread-safe per-item stability store.

    When ``enabled`` is False no record is created or read.
    """

    def __init__(
        self,
        enabled: bool = True,
        diagnostics: Optional["RetentionDiagnostics"] = None,
    ):
        self.enabled = enabled
        self.diagnostics = diagnostics
        self._records: Dict[str, MemoryStabilityRecord] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get_record(self, item_id: str) -> Optional[MemoryStabilityRecord]:
        if not self.enabled:
            return None
        with self._lock:
            record = self._records.get(item_id)
            return replace(record) if record is not None else None

    def update(self, outcome: PracticeOutcome) -> Optional[MemoryStabilityRecord]:
        """Apply one session. Returns a copy of the record, or None when disabled."""
        if not self.enabled:
            return None

        rating = performance_rating(outcome)
        success = recalled_successfully(outcome)

        with self._lock:
            record = self._records.get(outcome.item_id)
            if record is None:
                record = MemoryStabilityRecord(item_id=outcome.item_id, last_review=outcome.timestamp)
                self._records[outcome.item_id] = record

            days = _days_between(record.last_review, outcome.timestamp)
            r_now = retrievability(record.stability, days)
            old_stability = record.stability

            record.review_count += 1
            record.last_review = outcome.timestamp

            if success:
                record.stability *= stability_growth(r_now, record.difficulty)
                record.difficulty = max(MIN_ITEM_DIFFICULTY, record.difficulty - DIFFICULTY_ADJUSTMENT_RATE)
            else:
                record.stability = max(FAILURE_STABILITY_FLOOR, record.stability * FAILURE_STABILITY_RETAINED)
                record.difficulty = min(MAX_ITEM_DIFFICULTY, record.difficulty + DIFFICULTY_ADJUSTMENT_RATE * 2)

            # Performance fine-tuning
            if rating >= 8.0:
                record.stability *= 1.05
            elif rating <= 4.0:
                record.stability *= 0.95
            minutes = outcome.duration_minutes
            if minutes < 2.0:
                record.stability *= 0.98
            elif minutes > 15.0:
                record.stability *= 1.02

            snapshot = replace(record)

        logger.debug(
            f"Stability for {outcome.item_id}: S {old_stability:.2f} -> {snapshot.stability:.2f}d, "
            f"D={snapshot.difficulty:.3f}, R={r_now:.3f}, success={success}"
        )
        return snapshot

    def get_memory_stats(
        self, item_id: str, now: Optional[datetime] = None
    ) -> Optional[MemoryStabilityStats]:
        """Stats for an item; a neutral "new" snapshot when untracked, None when disabled."""
        if not self.enabled:
            return None
        now = as_utc(now or datetime.now(timezone.utc))
        with self._lock:
            record = self._records.get(item_id)
            if record is None:
                return MemoryStabilityStats(
                    item_id=item_id,
                    is_new=True,
                    stability=INITIAL_STABILITY_DAYS,
                    difficulty=DEFAULT_ITEM_DIFFICULTY,
                    review_count=0,
                    retrievability=1.0,
                )
            days = max(0.0, _days_between(record.last_review, now))
            return MemoryStabilityStats(
                item_id=item_id,
                is_new=record.review_count == 0,
                stability=record.stability,
                difficulty=record.difficulty,
                review_count=record.review_count,
                retrievability=retrievability(record.stability, days),
                last_review=record.last_review,
                days_since_review=days,
                retention_strength=retention_strength(record),
                learning_progress=learning_progress(record),
            )

    def optimal_interval(self, item_id: str) -> float:
        """
        Days from the last session until retrievability reaches 0.8,
        shortened for hard items (floor 0.5 days).
        """
        if not self.enabled:
            return 1.0
        with self._lock:
            record = self._records.get(item_id)
            if record is None:
                return INITIAL_STABILITY_DAYS
            interval = target_interval(record.stability)
            return max(0.5, interval * (1.0 - record.difficulty * 0.4))

    def merge(self, old_item_ids: Iterable[str], new_item_id: str) -> Optional[MemoryStabilityRecord]:
        """
        Fold several items into one, weighting stability and difficulty by
        review count. The old records are removed.
        """
        if not self.enabled:
            return None
        with self._lock:
            sources: List[MemoryStabilityRecord] = [
                self._records.pop(i) for i in list(old_item_ids) if i in self._records
            ]
            if not sources:
                return None
            total_reviews = sum(r.review_count for r in sources)
            if total_reviews > 0:
                stability = sum(r.stability * r.review_count for r in sources) / total_reviews
                difficulty = sum(r.difficulty * r.review_count for r in sources) / total_reviews
            else:
                stability = sum(r.stability for r in sources) / len(sources)
                difficulty = sum(r.difficulty for r in sources) / len(sources)
            last_dates = [r.last_review for r in sources if r.last_review is not None]
            merged = MemoryStabilityRecord(
                item_id=new_item_id,
                stability=max(stability, INITIAL_STABILITY_DAYS),
                difficulty=difficulty,
                review_count=total_reviews,
                last_review=max(last_dates) if last_dates else None,
            )
            self._records[new_item_id] = merged
            logger.info(f"Merged {len(sources)} stability records into {new_item_id}")
            return replace(merged)

    # ---- Persistence --------------------------------------------- #

    def to_dict(self) -> Dict[str, Any]:
        if not self.enabled:
            return {}
        with self._lock:
            return {item_id: r.to_dict() for item_id, r in self._records.items()}

    def load_dict(self, data: Dict[str, Any]) -> int:
        if not self.enabled:
            return 0
        records: Dict[str, MemoryStabilityRecord] = {}
        for item_id, raw in (data or {}).items():
            try:
                records[item_id] = MemoryStabilityRecord.from_dict({**raw, "item_id": item_id})
            except (TypeError, ValueError, KeyError, AttributeError) as exc:
                err = StateCorruptionError(key=item_id, reason=str(exc))
                logger.warning(f"Skipping stability record: {err}")
        with self._lock:
            self._records = records
        return len(records)


__all__ = [
    "INITIAL_STABILITY_DAYS",
    "DEFAULT_ITEM_DIFFICULTY",
    "StabilityProvider",
    "MemoryStabilityRecord",
    "MemoryStabilityStats",
    "retrievability",
    "stability_growth",
    "target_interval",
    "retention_strength",
    "learning_progress",
    "MemoryStabilityManager",
]
