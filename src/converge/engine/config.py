"""
Converge Runner Configuration

Settings are layered: built-in defaults, then an optional YAML config file,
then CONVERGE_* environment variables, then explicit overrides (CLI flags).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from converge.engine.errors import ParseError

DEFAULT_CONFIG_FILE = Path("converge.yml")
ENV_PREFIX = "CONVERGE_"


@dataclass(frozen=True)
class RunnerConfig:
    # Hosts processed concurrently
    forks: int = 5
    # Seconds per handler invocation; None disables the bound
    task_timeout: Optional[float] = 300.0
    # Seconds for a whole play; None disables the bound
    play_timeout: Optional[float] = None
    # Stop a host's remaining tasks after a failure
    fail_stop: bool = True
    check_mode: bool = False

    def __post_init__(self) -> None:
        if self.forks < 1:
            raise ValueError("forks must be at least 1")
        for name in ("task_timeout", "play_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive")

    def merge(self, **overrides: Any) -> RunnerConfig:
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(name: str, value: Any) -> Any:
    if name == "forks":
        return int(value)
    if name in ("task_timeout", "play_timeout"):
        if value in (None, "", "none", "None", 0, "0"):
            return None
        return float(value)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def config_from_mapping(data: Mapping[str, Any], base: Optional[RunnerConfig] = None) -> RunnerConfig:
    """Apply recognised keys from ``data`` on top of ``base``."""
    known = {f.name for f in fields(RunnerConfig)}
    values = {}
    for key, value in data.items():
        if key not in known:
            raise ParseError(f"Unknown config option: {key}")
        try:
            values[key] = _coerce(key, value)
        except (TypeError, ValueError) as e:
            raise ParseError(f"Invalid value for {key}: {value!r}", details=str(e))
    try:
        return replace(base or RunnerConfig(), **values)
    except ValueError as e:
        raise ParseError(str(e))


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunnerConfig:
    """
    Load runner configuration.

    Args:
        path: YAML file; when None, ./converge.yml is used if it exists
        environ: Environment to read CONVERGE_* variables from
            (defaults to os.environ)
    """
    config = RunnerConfig()

    config_path = path if path is not None else DEFAULT_CONFIG_FILE
    if config_path.exists():
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid config file: {e}", file_path=str(config_path))
        if not isinstance(data, dict):
            raise ParseError("Config file must be a mapping", file_path=str(config_path))
        config = config_from_mapping(data, config)
    elif path is not None:
        raise ParseError(f"Config file not found: {path}", file_path=str(path))

    environ = os.environ if environ is None else environ
    env_values = {
        f.name: environ[ENV_PREFIX + f.name.upper()]
        for f in fields(RunnerConfig)
        if ENV_PREFIX + f.name.upper() in environ
    }
    if env_values:
        config = config_from_mapping(env_values, config)

    return config
