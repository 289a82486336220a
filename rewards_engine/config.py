"""Engine configuration: YAML file + ``.env`` overrides mapped onto dataclasses."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from dotenv import load_dotenv

from rewards_engine.errors import ConfigError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "engine_config.yaml"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|sec|min|m|h)?\s*$", re.IGNORECASE)
_UNIT_MS = {None: 1, "ms": 1, "s": 1000, "sec": 1000, "min": 60_000, "m": 60_000, "h": 3_600_000}

Duration = Union[int, float, str]


def parse_duration_ms(value: Duration) -> int:
    """Convert ``1500``, ``"1500ms"``, ``"30s"`` or ``"2min"`` to milliseconds."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ConfigError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(float(amount) * _UNIT_MS[unit.lower() if unit else None])


@dataclass
class HumanizationConfig:
    enabled: bool = True
    action_delay_min: Duration = 500
    action_delay_max: Duration = 2200
    gesture_move_prob: float = 0.4
    gesture_scroll_prob: float = 0.2


@dataclass
class RetryPolicyConfig:
    max_attempts: int = 3
    base_delay: Duration = 1000
    max_delay: Duration = "30s"
    multiplier: float = 2.0
    jitter: float = 0.2


@dataclass
class JobStateConfig:
    enabled: bool = True
    dir: Optional[str] = None


@dataclass
class DiagnosticsConfig:
    enabled: bool = True
    save_screenshot: bool = True
    save_html: bool = True
    max_per_run: int = 8
    dir: str = "reports"


@dataclass
class InteractionConfig:
    max_click_attempts: int = 3
    per_attempt_timeout: Duration = 10000
    max_candidates: int = 5
    max_open_tabs: int = 3
    event_timeout: Duration = 1500


@dataclass
class WorkersConfig:
    do_daily_set: bool = True
    do_more_promotions: bool = True
    do_punch_cards: bool = True


@dataclass
class EngineConfig:
    base_url: str
    session_path: str = "sessions"
    headless: bool = False
    global_timeout: Duration = "30s"
    passes_per_run: int = 2
    humanization: HumanizationConfig = field(default_factory=HumanizationConfig)
    retry_policy: RetryPolicyConfig = field(default_factory=RetryPolicyConfig)
    job_state: JobStateConfig = field(default_factory=JobStateConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    interaction: InteractionConfig = field(default_factory=InteractionConfig)
    workers: WorkersConfig = field(default_factory=WorkersConfig)

    @property
    def global_timeout_ms(self) -> int:
        return parse_duration_ms(self.global_timeout)

    @property
    def job_state_dir(self) -> Path:
        if self.job_state.dir:
            return Path(self.job_state.dir)
        return Path(self.session_path) / "job-state"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping")
        if not data.get("base_url"):
            raise ConfigError("Config is missing required key 'base_url'")

        sections = {
            "humanization": HumanizationConfig,
            "retry_policy": RetryPolicyConfig,
            "job_state": JobStateConfig,
            "diagnostics": DiagnosticsConfig,
            "interaction": InteractionConfig,
            "workers": WorkersConfig,
        }
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key in sections:
                kwargs[key] = _build_section(sections[key], key, value or {})
            elif key in _field_names(cls):
                kwargs[key] = value
            else:
                logger.warning("Ignoring unknown config key: %s", key)

        config = cls(**kwargs)
        # Fail early on malformed durations
        for value in (
            config.global_timeout,
            config.retry_policy.base_delay,
            config.retry_policy.max_delay,
            config.interaction.per_attempt_timeout,
            config.interaction.event_timeout,
        ):
            parse_duration_ms(value)
        return config


def _field_names(klass) -> set[str]:
    return {f.name for f in fields(klass)}


def _build_section(klass, name: str, values: dict[str, Any]):
    if not isinstance(values, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    known = _field_names(klass)
    unknown = set(values) - known
    if unknown:
        logger.warning("Ignoring unknown keys in '%s': %s", name, ", ".join(sorted(unknown)))
    return klass(**{k: v for k, v in values.items() if k in known})


def _env_flag(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load the engine config, applying ``REWARDS_*`` environment overrides."""
    load_dotenv(PROJECT_ROOT / ".env")

    config_path = Path(path or os.environ.get("REWARDS_CONFIG") or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {config_path}: {e}") from e

    config = EngineConfig.from_dict(data)

    job_state = _env_flag("REWARDS_JOB_STATE_ENABLED")
    if job_state is not None:
        config.job_state.enabled = job_state
    headless = _env_flag("REWARDS_HEADLESS")
    if headless is not None:
        config.headless = headless

    logger.info("Loaded config from %s", config_path)
    return config
