"""Configuration module for the WAF replay runner."""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Pattern

import yaml

from .errors import ConfigurationError


DEFAULT_LOG_MARKER_HEADER = "X-CRS-Test"
DEFAULT_CONNECT_TIMEOUT = 3.0
DEFAULT_READ_TIMEOUT = 1.0
DEFAULT_MAX_MARKER_RETRIES = 20
DEFAULT_MAX_MARKER_LOG_LINES = 500


class RunMode(Enum):
    DEFAULT = "default"
    CLOUD = "cloud"


@dataclass
class InputOverride:
    """Destination fields substituted into every stage input."""
    dest_addr: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None


@dataclass
class Overrides:
    """Forced results keyed by test title regex; values are the reason."""
    input: InputOverride = field(default_factory=InputOverride)
    ignore: Dict[str, str] = field(default_factory=dict)
    force_pass: Dict[str, str] = field(default_factory=dict)
    force_fail: Dict[str, str] = field(default_factory=dict)


@dataclass
class Config:
    """Configuration for a replay run."""

    log_file: Optional[str] = None
    log_marker_header_name: str = DEFAULT_LOG_MARKER_HEADER
    run_mode: RunMode = RunMode.DEFAULT
    test_override: Overrides = field(default_factory=Overrides)

    include: Optional[str] = None
    exclude: Optional[str] = None

    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    max_marker_retries: int = DEFAULT_MAX_MARKER_RETRIES
    max_marker_log_lines: int = DEFAULT_MAX_MARKER_LOG_LINES

    show_time: bool = False
    show_only_failed: bool = False

    output_file: Optional[str] = None
    verbose: bool = False

    @property
    def cloud_mode(self) -> bool:
        return self.run_mode is RunMode.CLOUD

    def validate(self) -> bool:
        """Validate the configuration."""
        if self.include and self.exclude:
            raise ConfigurationError(
                f"you need to choose one: use include ({self.include}) or exclude ({self.exclude})"
            )

        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive")

        if self.max_marker_retries < 1:
            raise ConfigurationError("Max marker retries must be at least 1")

        if self.max_marker_log_lines < 1:
            raise ConfigurationError("Max marker log lines must be at least 1")

        if not self.cloud_mode and not self.log_file:
            raise ConfigurationError("A log file is required unless running in cloud mode")

        _compile(self.include, "include")
        _compile(self.exclude, "exclude")
        return True

    @property
    def include_pattern(self) -> Optional[Pattern]:
        return _compile(self.include, "include")

    @property
    def exclude_pattern(self) -> Optional[Pattern]:
        return _compile(self.exclude, "exclude")


def _compile(expression: Optional[str], name: str) -> Optional[Pattern]:
    if not expression:
        return None
    try:
        return re.compile(expression)
    except re.error as e:
        raise ConfigurationError(f"Invalid {name} pattern {expression!r}: {e}") from e


def load_config(path: str, base: Optional[Config] = None) -> Config:
    """Load a YAML configuration file on top of ``base`` (or the defaults)."""
    config = base or Config()
    config_path = Path(path)

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    if "logfile" in data:
        config.log_file = data["logfile"]
    if "logmarkerheadername" in data:
        config.log_marker_header_name = data["logmarkerheadername"]
    if "mode" in data:
        try:
            config.run_mode = RunMode(data["mode"] or RunMode.DEFAULT.value)
        except ValueError as e:
            raise ConfigurationError(f"Unknown run mode {data['mode']!r} in {path}") from e

    overrides = data.get("testoverride") or {}
    input_overrides = overrides.get("input") or {}
    port = input_overrides.get("port")
    if port is not None:
        try:
            port = int(port)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Override port {port!r} in {path} is not a number") from e
    config.test_override = Overrides(
        input=InputOverride(
            dest_addr=input_overrides.get("dest_addr"),
            port=port,
            protocol=input_overrides.get("protocol"),
        ),
        ignore=dict(overrides.get("ignore") or {}),
        force_pass=dict(overrides.get("forcepass") or {}),
        force_fail=dict(overrides.get("forcefail") or {}),
    )

    return config
