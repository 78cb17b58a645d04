"""
Configuration loading and validation for hal.

This module handles:
- Loading <hal_dir>/config.yaml (optional; defaults apply when absent)
- Environment variable resolution (${VAR} syntax)
- Duration values such as "15m", "90s", "1h30m" or plain seconds
- Per-engine overrides (model, provider, timeout)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from hal.engine.types import EngineConfig
from hal.retry import RetryPolicy

CONFIG_FILE = "config.yaml"
PROMPT_FILE = "prompt.md"
PRD_FILE = "prd.json"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass
class RetryConfig:
    """Retry strategy for engine invocations."""
    max_retries: int = 3                       # Retries after the first attempt
    base_delay_seconds: float = 5.0            # Delay before the first retry
    max_delay_seconds: float = 120.0           # Backoff ceiling
    jitter_percent: int = 0                    # Random spread added to each delay

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            jitter_percent=self.jitter_percent,
        )


@dataclass
class LoopSettings:
    """Iteration loop tuning."""
    iteration_delay_seconds: float = 2.0       # Pause between iterations


@dataclass
class HalConfig:
    """
    Top-level configuration.

    Everything has a default, so a project without config.yaml still runs.
    """
    hal_dir: str = ".hal"
    engine: str = "claude"                     # Default engine name
    max_iterations: int = 10                   # <= 0 means unlimited
    retry: RetryConfig = field(default_factory=RetryConfig)
    loop: LoopSettings = field(default_factory=LoopSettings)
    engines: dict[str, EngineConfig] = field(default_factory=dict)

    @property
    def hal_path(self) -> Path:
        return Path(self.hal_dir)

    @property
    def prompt_path(self) -> Path:
        """Path to the iteration prompt."""
        return self.hal_path / PROMPT_FILE

    @property
    def prd_path(self) -> Path:
        """Path to the PRD."""
        return self.hal_path / PRD_FILE

    @property
    def logs_path(self) -> Path:
        """Directory for JSONL run logs."""
        return self.hal_path / "logs"

    def engine_config(self, name: str) -> EngineConfig:
        """Overrides for engine name; adapter defaults when none are configured."""
        return self.engines.get(name.lower(), EngineConfig())


def parse_duration(value: Any, field_name: str = "duration") -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and strings like "90", "45s", "15m", "1h30m"
    or "500ms".

    Raises:
        ConfigError: If the value is not a valid, non-negative duration.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {field_name}: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ConfigError(f"Invalid {field_name}: {value!r}")
            seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    else:
        raise ConfigError(f"Invalid {field_name}: {value!r}")

    if seconds < 0:
        raise ConfigError(f"Invalid {field_name}: {value!r} (must not be negative)")
    return seconds


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return value


def _as_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {field_name}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {field_name}: {value!r}")


def _parse_retry_config(data: dict[str, Any]) -> RetryConfig:
    """Parse retry configuration from dict."""
    config = RetryConfig(
        max_retries=_as_int(data.get("max_retries", 3), "retry.max_retries"),
        base_delay_seconds=parse_duration(data.get("base_delay", 5.0), "retry.base_delay"),
        max_delay_seconds=parse_duration(data.get("max_delay", 120.0), "retry.max_delay"),
        jitter_percent=_as_int(data.get("jitter_percent", 0), "retry.jitter_percent"),
    )
    if config.max_retries < 0:
        raise ConfigError("retry.max_retries must not be negative")
    if not 0 <= config.jitter_percent <= 100:
        raise ConfigError("retry.jitter_percent must be between 0 and 100")
    return config


def _parse_loop_settings(data: dict[str, Any]) -> LoopSettings:
    """Parse loop settings from dict."""
    return LoopSettings(
        iteration_delay_seconds=parse_duration(
            data.get("iteration_delay", 2.0), "loop.iteration_delay"
        ),
    )


def _parse_engine_config(name: str, data: Any) -> EngineConfig:
    """Parse one engine's overrides."""
    if data is None:
        return EngineConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Engine '{name}' settings must be a mapping")
    timeout = data.get("timeout")
    return EngineConfig(
        model=str(data.get("model") or ""),
        provider=str(data.get("provider") or ""),
        timeout=parse_duration(timeout, f"engines.{name}.timeout") if timeout is not None else None,
    )


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    hal_dir: str = ".hal",
) -> HalConfig:
    """
    Load configuration from config.yaml.

    Args:
        config_path: Optional path to a config file. If not provided, looks
                     for config.yaml inside hal_dir and falls back to
                     defaults when it does not exist.
        hal_dir: The hal working directory.

    Returns:
        HalConfig: Loaded and validated configuration.

    Raises:
        ConfigError: If an explicit config file is missing, or the config is
                     invalid.
    """
    if config_path is None:
        path = Path(hal_dir) / CONFIG_FILE
        if not path.exists():
            return HalConfig(hal_dir=hal_dir)
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if not raw_data:
        return HalConfig(hal_dir=hal_dir)
    if not isinstance(raw_data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    # Resolve environment variables
    data = _resolve_env_vars(raw_data)

    engines = {
        str(name).lower(): _parse_engine_config(str(name), settings)
        for name, settings in _section(data, "engines").items()
    }

    return HalConfig(
        hal_dir=str(data.get("hal_dir", hal_dir)),
        engine=str(data.get("engine", "claude")),
        max_iterations=_as_int(data.get("max_iterations", 10), "max_iterations"),
        retry=_parse_retry_config(_section(data, "retry")),
        loop=_parse_loop_settings(_section(data, "loop")),
        engines=engines,
    )
