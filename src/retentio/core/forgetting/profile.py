"""
Learner Profile – Per-Learner Configuration
===========================================
Experience level, optional age and running practice statistics for one
learner. The engine is constructed around exactly one profile.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

from loguru import logger

from .config import ExperienceLevel
from .curve import parse_timestamp

if TYPE_CHECKING:
    from .outcome import PracticeOutcome


@dataclass
class LearnerProfile:
    """
    Learner-level inputs to the retention model.

    Attributes:
        learner_id: Unique identifier for the learner
        experience: Experience level (scales the tau prior and forgetting speed)
        age: Age in years, if known (only shapes the retention curve)
        stats: Cumulative statistics
        created_at: When this profile was created
        last_updated: Last time profile was modified
    """
    learner_id: str
    experience: ExperienceLevel = ExperienceLevel.INTERMEDIATE
    age: Optional[int] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    def __post_init__(self):
        self.experience = ExperienceLevel.normalize(self.experience)
        if self.age is not None and self.age <= 0:
            logger.warning(f"Ignoring non-positive age {self.age} for learner {self.learner_id}")
            self.age = None
        if not self.stats:
            self.stats = {
                "total_sessions": 0,
                "successful_sessions": 0,
                "avg_rating": 0.0,
                "total_minutes": 0.0,
            }

    @property
    def total_sessions(self) -> int:
        return int(self.stats.get("total_sessions", 0))

    def update_stats(self, outcome: "PracticeOutcome", rating: float, recalled: bool) -> None:
        """Update running statistics after a practice session."""
        with self._lock:
            self.stats["total_sessions"] += 1
            if recalled:
                self.stats["successful_sessions"] += 1

            old_avg = self.stats.get("avg_rating", 0.0)
            n = self.stats["total_sessions"]
            self.stats["avg_rating"] = round((old_avg * (n - 1) + rating) / n, 3)
            self.stats["total_minutes"] = round(
                self.stats.get("total_minutes", 0.0) + outcome.duration_minutes, 2
            )

            self.last_updated = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        with self._lock:
            return {
                "learner_id": self.learner_id,
                "experience": self.experience.value,
                "age": self.age,
                "stats": dict(self.stats),
                "created_at": self.created_at.isoformat(),
                "last_updated": self.last_updated.isoformat(),
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearnerProfile":
        """Deserialize from dictionary."""
        data = data.copy()
        for key in ("created_at", "last_updated"):
            if data.get(key) is not None:
                data[key] = parse_timestamp(data[key])
        return cls(**data)

    @classmethod
    def for_experience(
        cls,
        learner_id: str,
        experience: str = "intermediate",
        age: Optional[int] = None,
    ) -> "LearnerProfile":
        """Factory accepting free-text experience labels ("expert", "Beginner", ...)."""
        return cls(learner_id=learner_id, experience=ExperienceLevel.normalize(experience), age=age)


__all__ = ["LearnerProfile"]
