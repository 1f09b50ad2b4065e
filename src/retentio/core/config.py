"""
Retentio Configuration System
=============================
Centralized, validated configuration with environment variable overrides.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

import yaml

from retentio.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class RetentionTargetsConfig:
    """Retention level at which the next review is placed, per difficulty."""
    difficult: float = 0.85
    average: float = 0.80
    easy: float = 0.70
    mastered: float = 0.65


@dataclass(frozen=True)
class ExperienceConfig:
    """Tau multipliers per learner experience level."""
    beginner: float = 0.8
    intermediate: float = 1.0
    advanced: float = 1.1
    professional: float = 1.3


@dataclass(frozen=True)
class SchedulingConfig:
    global_interval_multiplier: float = 1.0


@dataclass(frozen=True)
class FeatureFlagsConfig:
    """Subsystem gates. A disabled subsystem never touches its state."""
    use_adaptive_systems: bool = True
    use_calibration: bool = True
    use_stability: bool = True
    use_performance_trend: bool = True
    use_demographics: bool = True
    enable_diagnostics: bool = False
    diagnostic_limit_per_day: int = 80


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str = "./data"
    state_file: str = "./data/retention_state.json"


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    json_logs: bool = False


@dataclass(frozen=True)
class RetentioConfig:
    """Root configuration object."""
    version: str = "1.0"
    retention_targets: RetentionTargetsConfig = field(default_factory=RetentionTargetsConfig)
    experience: ExperienceConfig = field(default_factory=ExperienceConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    features: FeatureFlagsConfig = field(default_factory=FeatureFlagsConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def _env_override(key: str, default):
    """Check for RETENTIO_<KEY> environment variable override."""
    env_key = f"RETENTIO_{key.upper()}"
    val = os.environ.get(env_key)
    if val is None:
        return default
    # Type coercion based on the default's type
    if isinstance(default, bool):
        return val.lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(val)
    if isinstance(default, float):
        return float(val)
    return val


def _validate_fraction(key: str, value: float) -> float:
    value = float(value)
    if not 0.0 < value < 1.0:
        raise ConfigurationError(
            config_key=key,
            reason=f"Retention target must lie strictly between 0 and 1, got {value}",
        )
    return value


def _validate_positive(key: str, value: float) -> float:
    value = float(value)
    if not value > 0.0:
        raise ConfigurationError(
            config_key=key,
            reason=f"Multiplier must be positive, got {value}",
        )
    return value


def load_config(path: Optional[Path] = None) -> RetentioConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Priority: ENV > YAML > defaults.

    Args:
        path: Path to config.yaml. If None, searches ./config.yaml.

    Returns:
        Validated RetentioConfig instance.

    Raises:
        ConfigurationError: If a retention target is outside (0, 1), a
            multiplier is not positive, or the diagnostic limit is negative.
    """
    if path is None:
        candidate = Path("config.yaml")
        if candidate.exists():
            path = candidate
    elif not isinstance(path, Path):
        path = Path(path)

    raw = {}
    if path is not None and path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
            raw = loaded.get("retentio") or {}

    targets_raw = raw.get("retention_targets") or {}
    retention_targets = RetentionTargetsConfig(
        **{
            name: _validate_fraction(
                f"retention_targets.{name}",
                _env_override(f"TARGET_{name}", float(targets_raw.get(name, default))),
            )
            for name, default in (
                ("difficult", 0.85),
                ("average", 0.80),
                ("easy", 0.70),
                ("mastered", 0.65),
            )
        }
    )

    exp_raw = raw.get("experience") or {}
    experience = ExperienceConfig(
        **{
            name: _validate_positive(
                f"experience.{name}",
                _env_override(f"EXPERIENCE_{name}", float(exp_raw.get(name, default))),
            )
            for name, default in (
                ("beginner", 0.8),
                ("intermediate", 1.0),
                ("advanced", 1.1),
                ("professional", 1.3),
            )
        }
    )

    sched_raw = raw.get("scheduling") or {}
    scheduling = SchedulingConfig(
        global_interval_multiplier=_validate_positive(
            "scheduling.global_interval_multiplier",
            _env_override(
                "GLOBAL_INTERVAL_MULTIPLIER",
                float(sched_raw.get("global_interval_multiplier", 1.0)),
            ),
        ),
    )

    feat_raw = raw.get("features") or {}
    diagnostic_limit = _env_override(
        "DIAGNOSTIC_LIMIT_PER_DAY", int(feat_raw.get("diagnostic_limit_per_day", 80))
    )
    if diagnostic_limit < 0:
        raise ConfigurationError(
            config_key="features.diagnostic_limit_per_day",
            reason=f"Limit must be non-negative, got {diagnostic_limit}",
        )
    features = FeatureFlagsConfig(
        use_adaptive_systems=_env_override(
            "USE_ADAPTIVE_SYSTEMS", bool(feat_raw.get("use_adaptive_systems", True))
        ),
        use_calibration=_env_override(
            "USE_CALIBRATION", bool(feat_raw.get("use_calibration", True))
        ),
        use_stability=_env_override(
            "USE_STABILITY", bool(feat_raw.get("use_stability", True))
        ),
        use_performance_trend=_env_override(
            "USE_PERFORMANCE_TREND", bool(feat_raw.get("use_performance_trend", True))
        ),
        use_demographics=_env_override(
            "USE_DEMOGRAPHICS", bool(feat_raw.get("use_demographics", True))
        ),
        enable_diagnostics=_env_override(
            "ENABLE_DIAGNOSTICS", bool(feat_raw.get("enable_diagnostics", False))
        ),
        diagnostic_limit_per_day=diagnostic_limit,
    )

    paths_raw = raw.get("paths") or {}
    paths = PathsConfig(
        data_dir=_env_override("DATA_DIR", paths_raw.get("data_dir", "./data")),
        state_file=_env_override(
            "STATE_FILE", paths_raw.get("state_file", "./data/retention_state.json")
        ),
    )

    obs_raw = raw.get("observability") or {}
    observability = ObservabilityConfig(
        log_level=_env_override("LOG_LEVEL", obs_raw.get("log_level", "INFO")),
        json_logs=_env_override("JSON_LOGS", bool(obs_raw.get("json_logs", False))),
    )

    return RetentioConfig(
        version=str(raw.get("version", "1.0")),
        retention_targets=retention_targets,
        experience=experience,
        scheduling=scheduling,
        features=features,
        paths=paths,
        observability=observability,
    )


# Module-level singleton (lazy-loaded)
_CONFIG: Optional[RetentioConfig] = None


def get_config() -> RetentioConfig:
    """Get or initialize the global config singleton."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_config():
    """Reset the global config singleton (useful for testing)."""
    global _CONFIG
    _CONFIG = None
