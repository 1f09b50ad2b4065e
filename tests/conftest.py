import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest
from loguru import logger


# Ensure local src/ package imports work without editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from retentio.core.config import RetentioConfig, reset_config  # noqa: E402
from retentio.core.forgetting import (  # noqa: E402
    LearnerProfile,
    PracticeOutcome,
    RetentionEngine,
)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running (use pytest -m 'not slow' to skip)"
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_config():
    """Reset global config singleton between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def t0() -> datetime:
    """Fixed reference time for practice sessions."""
    return datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_outcome(t0):
    """
    Factory for PracticeOutcome records.

    ``day`` is the offset from t0 in days; everything else is passed through.
    """
    def _make(item_id: str = "etude-1", day: float = 0.0, **kwargs) -> PracticeOutcome:
        kwargs.setdefault("duration", timedelta(minutes=10))
        kwargs.setdefault("repetitions", 8)
        kwargs.setdefault("failures", 2)
        return PracticeOutcome(item_id=item_id, timestamp=t0 + timedelta(days=day), **kwargs)

    return _make


@pytest.fixture
def log_messages() -> List[str]:
    """Capture loguru output (all levels) as "LEVEL message" strings."""
    messages: List[str] = []
    handler_id = logger.add(
        lambda msg: messages.append(f"{msg.record['level'].name} {msg.record['message']}"),
        level="DEBUG",
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def profile() -> LearnerProfile:
    return LearnerProfile(learner_id="test-learner")


@pytest.fixture
def engine(tmp_path, profile) -> RetentionEngine:
    """Engine with default settings persisting under tmp_path."""
    return RetentionEngine(
        config=RetentioConfig(),
        profile=profile,
        persistence_path=tmp_path / "state.json",
    )
