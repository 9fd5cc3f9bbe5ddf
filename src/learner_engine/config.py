"""Settings loader: reads engine tunables from data/engine.yaml.

The file is optional; anything it leaves out keeps the built-in default.
``LEARNER_ENGINE_CONFIG`` points at a different file.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from loguru import logger

from .engagement import EXPECTED_TIME_PER_QUESTION_MS
from .models import ScoringWeights
from .recommendations import DEFAULT_RECOMMENDATION_COUNT
from .alerts import ALERT_COOLDOWN_DAYS

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_CONFIG_PATH = DATA_DIR / "engine.yaml"

LOG_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {name}:{function} | {message}"


@dataclass(slots=True)
class Settings:
    decay_enabled: bool = True
    scoring_weights: ScoringWeights = field(default_factory=ScoringWeights)
    recommendation_count: int = DEFAULT_RECOMMENDATION_COUNT
    expected_time_per_question_ms: int = EXPECTED_TIME_PER_QUESTION_MS
    alert_cooldown_days: int = ALERT_COOLDOWN_DAYS
    # Overrides older than this stop hiding a topic; None keeps them forever.
    override_window_days: int | None = 30
    ai_model: str = "gpt-4o-mini"
    ai_max_retries: int = 2
    log_level: str = "INFO"


def config_path() -> Path:
    return Path(os.environ.get("LEARNER_ENGINE_CONFIG", DEFAULT_CONFIG_PATH))


def _weights_from(raw: Any) -> ScoringWeights:
    if not isinstance(raw, Mapping):
        return ScoringWeights()
    defaults = ScoringWeights()
    weights = ScoringWeights(
        mastery=float(raw.get("mastery", defaults.mastery)),
        urgency=float(raw.get("urgency", defaults.urgency)),
        goals=float(raw.get("goals", defaults.goals)),
    )
    if min(weights.mastery, weights.urgency, weights.goals) < 0:
        raise ValueError("scoring weights must be non-negative")
    return weights


def _optional_int(raw: Any) -> int | None:
    return None if raw is None else int(raw)


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    defaults = Settings()
    return Settings(
        decay_enabled=bool(data.get("decay_enabled", defaults.decay_enabled)),
        scoring_weights=_weights_from(data.get("scoring_weights")),
        recommendation_count=int(data.get("recommendation_count", defaults.recommendation_count)),
        expected_time_per_question_ms=int(
            data.get("expected_time_per_question_ms", defaults.expected_time_per_question_ms)
        ),
        alert_cooldown_days=int(data.get("alert_cooldown_days", defaults.alert_cooldown_days)),
        override_window_days=_optional_int(data.get("override_window_days", defaults.override_window_days)),
        ai_model=str(data.get("ai_model", defaults.ai_model)),
        ai_max_retries=int(data.get("ai_max_retries", defaults.ai_max_retries)),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
    )


def load_settings(path: Path | None = None) -> Settings:
    """Read settings from YAML; a missing file means defaults."""
    file_path = path or config_path()
    if not file_path.exists():
        logger.debug(f"No engine config at {file_path}, using defaults")
        return Settings()

    data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Engine config {file_path} must be a mapping")
    return settings_from_mapping(data)


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "Settings",
    "config_path",
    "configure_logging",
    "load_settings",
    "settings_from_mapping",
]
