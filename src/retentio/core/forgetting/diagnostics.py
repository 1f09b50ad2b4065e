"""
Retention Diagnostics
=====================
Optional structured trace of every tau decision, for offline analysis.

Each record is emitted as one compact log line with a stable
``[RETENTION_DIAG]`` prefix (easy to grep and share) and kept in a bounded
in-memory buffer that can be exported as JSON. Output is capped per day so
a long practice session cannot flood the log.

When disabled, every method returns immediately.
"""

from __future__ import annotations

import json
import threading
from collections import deque
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional, Union

from loguru import logger

if TYPE_CHECKING:
    from .integration import TauBreakdown


PREFIX = "[RETENTION_DIAG]"
HEADER_PREFIX = "[RETENTION_DIAG_HEADER]"
BREAKDOWN_COLUMNS = (
    "context,item,difficulty,reps,base_tau,difficulty_mod,rep_factor,demographic_tau,"
    "calibration(tau|w),stability(tau|w),performance(tau|w),confidence,integrated_tau,"
    "final_tau,next_interval,target_r,predicted_r"
)
DEFAULT_HISTORY_SIZE: int = 500


def _fmt(value: Optional[float], digits: int = 3) -> str:
    if value is None:
        return "-"
    return f"{value:.{digits}f}"


def _signal(tau: Optional[float], weight: Optional[float]) -> str:
    if tau is None or not weight:
        return "-"
    return f"{tau:.3f}|{weight:.3f}"


class RetentionDiagnostics:
    """Gated, rate-limited diagnostic channel."""

    def __init__(
        self,
        enabled: bool = False,
        limit_per_day: int = 80,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ):
        self.enabled = enabled
        self.limit_per_day = limit_per_day
        self._records: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self._day: Optional[date] = None
        self._emitted_today = 0
        self._header_emitted = False

    # ---- Gate ---------------------------------------------------- #

    def _should_emit(self) -> bool:
        if not self.enabled:
            return False
        today = datetime.now(timezone.utc).date()
        with self._lock:
            if self._day != today:
                self._day = today
                self._emitted_today = 0
            if self._emitted_today >= self.limit_per_day:
                return False
            self._emitted_today += 1
            return True

    @property
    def emitted_today(self) -> int:
        return self._emitted_today

    def _emit(self, kind: str, line: str, data: Dict[str, Any], level: str = "INFO") -> None:
        if not self._header_emitted:
            self._header_emitted = True
            logger.info(f"{HEADER_PREFIX} Columns={BREAKDOWN_COLUMNS}")
        logger.log(level, f"{PREFIX} {line}")
        with self._lock:
            self._records.append(
                {"kind": kind, "timestamp": datetime.now(timezone.utc).isoformat(), **data}
            )

    # ---- Records ------------------------------------------------- #

    def log_tau_breakdown(self, breakdown: "TauBreakdown") -> None:
        """One line per integrated tau decision with every weighted contributor."""
        if not self._should_emit():
            return
        b = breakdown
        line = ",".join(
            [
                "TauCalc",
                b.item_id or "-",
                b.difficulty.value,
                str(b.repetitions),
                _fmt(b.base_tau),
                _fmt(b.difficulty_modifier),
                _fmt(b.repetition_factor),
                _fmt(b.data.demographic_tau),
                _signal(b.data.calibration_tau, b.data.calibration_confidence),
                _signal(b.data.stability_tau, b.data.stability_confidence),
                _signal(b.data.performance_tau, b.data.performance_confidence),
                _fmt(b.data.overall_confidence),
                _fmt(b.data.adaptive_tau),
                _fmt(b.final_tau),
                _fmt(b.interval_days, 2),
                _fmt(b.target_retention),
                _fmt(b.predicted_retention),
            ]
        )
        self._emit("tau_breakdown", line, b.to_dict())

    def log_simple_tau(
        self,
        item_id: Optional[str],
        difficulty: str,
        repetitions: int,
        tau: float,
        final_tau: float,
        source: str = "baseline",
    ) -> None:
        """A tau decided without the adaptive blend."""
        if not self._should_emit():
            return
        line = f"SimpleTau,{item_id or '-'},{difficulty},{repetitions},{tau:.3f},{final_tau:.3f},source={source}"
        self._emit(
            "simple_tau",
            line,
            {
                "item_id": item_id,
                "difficulty": difficulty,
                "repetitions": repetitions,
                "tau": tau,
                "final_tau": final_tau,
                "source": source,
            },
        )

    def log_adaptation(self, item_id: str, old_tau: float, new_tau: float, trigger: str) -> None:
        if not self._should_emit():
            return
        line = f"AdaptUpdate,{item_id},{old_tau:.3f},{new_tau:.3f},trigger={trigger}"
        self._emit(
            "adaptation",
            line,
            {"item_id": item_id, "old_tau": old_tau, "new_tau": new_tau, "trigger": trigger},
            level="DEBUG",
        )

    def log_calibration(
        self,
        item_id: Optional[str],
        difficulty: str,
        accuracy: Optional[float],
        old_factor: float,
        new_factor: float,
        path: str,
    ) -> None:
        if not self._should_emit():
            return
        line = (
            f"Calibration,{item_id or '-'},{difficulty},accuracy={_fmt(accuracy)},"
            f"factor={old_factor:.3f}->{new_factor:.3f},path={path}"
        )
        self._emit(
            "calibration",
            line,
            {
                "item_id": item_id,
                "difficulty": difficulty,
                "accuracy": accuracy,
                "old_factor": old_factor,
                "new_factor": new_factor,
                "path": path,
            },
        )

    def record_substitution(self, field: str, original: Any, replacement: Any) -> None:
        """Note that an invalid numeric input was replaced by a safe default."""
        if not self._should_emit():
            return
        line = f"Sanitized,{field},{original!r}->{replacement!r}"
        self._emit(
            "substitution",
            line,
            {"field": field, "original": repr(original), "replacement": replacement},
            level="WARNING",
        )

    # ---- Access & export ----------------------------------------- #

    def records(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            items = list(self._records)
        if kind is None:
            return items
        return [r for r in items if r["kind"] == kind]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def export_json(self, path: Union[str, Path]) -> int:
        """Write buffered records to ``path``. Returns the number written."""
        items = self.records()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(items, f, indent=2, default=str)
        logger.info(f"Exported {len(items)} diagnostic records to {path}")
        return len(items)


__all__ = ["RetentionDiagnostics", "PREFIX", "BREAKDOWN_COLUMNS"]
