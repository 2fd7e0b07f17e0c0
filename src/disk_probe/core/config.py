"""Configuration system for disk-probe.

This module implements the configuration schema using Pydantic for
validation, with support for environment variable resolution in YAML files,
command-line overrides and fail-fast validation with actionable error
messages. All models are frozen: configuration is read once at startup and
shared read-only by every component afterwards.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Final, Literal, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from disk_probe.types.models import MAX_BYTES

# Matches ${VARIABLE_NAME} references in YAML string values
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_PATH: Final[str] = "/mnt/storage"
DEFAULT_THRESHOLD_BYTES: Final[int] = 107_400_000_000
DEFAULT_LISTEN_ADDRESS: Final[str] = ":8080"


def parse_listen_address(address: str) -> tuple[str | None, int]:
    """Split a ``host:port`` listen address.

    An empty host (``":8080"``) means all interfaces and is returned as None.
    IPv6 hosts must be bracketed (``"[::1]:8080"``).

    Args:
        address: Listen address string

    Returns:
        Tuple of (host or None, port)

    Raises:
        ValueError: If the address has no port or the port is out of range

    Examples:
        >>> parse_listen_address(":8080")
        (None, 8080)
        >>> parse_listen_address("127.0.0.1:9000")
        ('127.0.0.1', 9000)
        >>> parse_listen_address("[::1]:8080")
        ('::1', 8080)
    """
    host, sep, port_str = address.rpartition(":")
    if not sep:
        msg = f"Listen address must be in host:port form, got: {address!r}"
        raise ValueError(msg)

    if not port_str.isdigit():
        msg = f"Listen address port must be a number, got: {port_str!r}"
        raise ValueError(msg)

    port = int(port_str)
    if not 0 <= port <= 65535:
        msg = f"Listen address port out of range (0-65535): {port}"
        raise ValueError(msg)

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    return (host or None, port)


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ProbeSettings(_FrozenModel):
    """What to measure and how to judge it.

    Defines the monitored path, the byte threshold above which the endpoint
    reports an error, and the operator override.
    """

    path: Annotated[
        str,
        Field(
            min_length=1,
            description="Filesystem path whose disk usage is measured",
        ),
    ] = DEFAULT_PATH
    threshold_bytes: Annotated[
        int,
        Field(
            ge=0,
            le=MAX_BYTES,
            description="Usage in bytes above which GET / returns 500",
        ),
    ] = DEFAULT_THRESHOLD_BYTES
    override: Annotated[
        bool,
        Field(
            description="Always answer 200 when a measurement is cached, even over threshold",
        ),
    ] = False
    treat_zero_as_missing: Annotated[
        bool,
        Field(
            description="Serve a recorded zero-byte measurement as 'not cached yet'",
        ),
    ] = True


class MonitoringConfig(_FrozenModel):
    """Polling schedule and measurement behavior.

    Defines the base poll interval, the linear per-failure backoff and its
    optional cap, the snapshot logging interval, the measurement timeout,
    the number of poller workers and the measurement backend.
    """

    poll_interval: Annotated[
        float,
        Field(
            gt=0,
            description="Base delay in seconds between polls of a path",
        ),
    ] = 60.0
    error_backoff: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds added to the delay per consecutive measurement failure",
        ),
    ] = 10.0
    max_backoff: Annotated[
        Annotated[float, Field(gt=0)] | None,
        Field(
            description="Upper bound in seconds on the delay between polls (unbounded if unset)",
        ),
    ] = None
    status_interval: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds between disk state snapshot log entries",
        ),
    ] = 60.0
    measure_timeout: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds a single measurement may take before it counts as failed",
        ),
    ] = 120.0
    pollers: Annotated[
        int,
        Field(
            ge=1,
            description="Number of concurrent poller workers",
        ),
    ] = 1
    backend: Annotated[
        Literal["du", "walk"],
        Field(
            description="Measurement backend: external du tool or in-process tree walk",
        ),
    ] = "du"

    @model_validator(mode="after")
    def validate_backoff_cap(self) -> Self:
        """Ensure a cap still leaves failing polls slower than healthy ones.

        Raises:
            ValueError: If max_backoff is below poll_interval + error_backoff
        """
        if self.max_backoff is not None and self.max_backoff < self.poll_interval + self.error_backoff:
            msg = (
                f"max_backoff ({self.max_backoff}) must be at least "
                f"poll_interval + error_backoff ({self.poll_interval + self.error_backoff})"
            )
            raise ValueError(msg)
        return self


class HttpConfig(_FrozenModel):
    """Configuration for the HTTP threshold endpoint."""

    listen_address: Annotated[
        str,
        Field(
            description="Listen address in host:port form; ':port' binds all interfaces",
        ),
    ] = DEFAULT_LISTEN_ADDRESS

    @field_validator("listen_address", mode="after")
    @classmethod
    def validate_listen_address(cls, v: str) -> str:
        """Validate the listen address parses as host:port.

        Raises:
            ValueError: If the address is malformed
        """
        _ = parse_listen_address(v)
        return v

    @property
    def host(self) -> str | None:
        """Host to bind, None for all interfaces."""
        return parse_listen_address(self.listen_address)[0]

    @property
    def port(self) -> int:
        """Port to bind."""
        return parse_listen_address(self.listen_address)[1]


class ApplicationConfig(_FrozenModel):
    """Configuration for application-level settings."""

    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "INFO"
    syslog_enabled: Annotated[
        bool,
        Field(
            description="Enable syslog integration",
        ),
    ] = True


class ProbeConfig(_FrozenModel):
    """Top-level configuration container.

    Aggregates all configuration sections:
    - probe: monitored path, threshold and override
    - monitoring: polling schedule and measurement backend
    - http: endpoint listen address
    - application: logging settings

    Every section has defaults, so an empty YAML document (or no file at all)
    yields a runnable configuration.
    """

    probe: ProbeSettings = ProbeSettings()
    monitoring: MonitoringConfig = MonitoringConfig()
    http: HttpConfig = HttpConfig()
    application: ApplicationConfig = ApplicationConfig()


class EnvironmentVariableError(Exception):
    """Exception raised when a referenced environment variable is not set."""


class ConfigurationError(Exception):
    """Exception raised when configuration loading or validation fails.

    Messages are multi-line and name the file and fields at fault.
    """


def resolve_env_var(value: str) -> str:
    """Resolve ``${VARIABLE_NAME}`` references in a string value.

    Args:
        value: String potentially containing environment variable references

    Returns:
        String with environment variables resolved

    Raises:
        EnvironmentVariableError: If a referenced variable is not set

    Examples:
        >>> os.environ["PROBE_PATH"] = "/srv/data"
        >>> resolve_env_var("${PROBE_PATH}")
        '/srv/data'
        >>> resolve_env_var("no variables here")
        'no variables here'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)

        if env_value is None:
            msg = (
                f"Required environment variable '{var_name}' is not set. "
                f"Please set this variable before starting the application."
            )
            raise EnvironmentVariableError(msg)

        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def resolve_env_vars_in_dict(data: Mapping[str, object]) -> dict[str, object]:
    """Recursively resolve environment variables in a YAML mapping.

    Strings are resolved, nested mappings and lists are traversed, other
    values are kept as-is. Runs before Pydantic validation, hence ``object``.

    Raises:
        EnvironmentVariableError: If a referenced variable is not set
    """
    result: dict[str, object] = {}

    for key, value in data.items():
        result[key] = _resolve_value(value)

    return result


def _resolve_value(value: object) -> object:
    if isinstance(value, str):
        return resolve_env_var(value)
    if isinstance(value, dict):
        return resolve_env_vars_in_dict(value)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if isinstance(value, list):
        return [_resolve_value(item) for item in value]  # pyright: ignore[reportUnknownVariableType]  # YAML list items
    return value


def _read_yaml_mapping(config_path: Path) -> dict[str, object]:
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            f"Please create a configuration file at this location, "
            f"or start without --config to use defaults."
        )
        raise ConfigurationError(msg)

    try:
        with config_path.open("r") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML configuration file: {config_path}\n"
            f"YAML parsing error: {e}\n"
            f"Please check the file for syntax errors."
        )
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigurationError(msg) from e

    # An empty file means "all defaults"
    if raw_data is None:
        return {}

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}\n"
            f"Configuration file must contain key-value pairs."
        )
        raise ConfigurationError(msg)

    try:
        return resolve_env_vars_in_dict(raw_data)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    except EnvironmentVariableError as e:
        msg = (
            f"Environment variable resolution failed in: {config_path}\n"
            f"{e}\n"
            f"Set the required environment variable before starting the application."
        )
        raise ConfigurationError(msg) from e


def merge_overrides(
    data: Mapping[str, object],
    overrides: Mapping[str, Mapping[str, object]],
) -> dict[str, object]:
    """Merge section-level overrides on top of raw configuration data.

    Override values of None are ignored so unset CLI flags keep the file
    value.

    Examples:
        >>> merge_overrides({"probe": {"path": "/a"}}, {"probe": {"path": "/b", "override": None}})
        {'probe': {'path': '/b'}}
    """
    merged: dict[str, object] = dict(data)

    for section, values in overrides.items():
        existing = merged.get(section)
        section_data: dict[str, object] = dict(existing) if isinstance(existing, dict) else {}  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
        for key, value in values.items():
            if value is not None:
                section_data[key] = value
        if section_data or section in merged:
            merged[section] = section_data

    return merged


def load_config(
    config_path: Path | None = None,
    *,
    overrides: Mapping[str, Mapping[str, object]] | None = None,
) -> ProbeConfig:
    """Load and validate the application configuration.

    Reads the YAML file when one is given, resolves environment variables,
    applies overrides (typically from the command line) and validates the
    result against ``ProbeConfig``.

    Args:
        config_path: Optional path to a YAML configuration file
        overrides: Section -> field -> value overrides; None values are skipped

    Returns:
        Validated, frozen ProbeConfig instance

    Raises:
        ConfigurationError: If the file cannot be loaded or validation fails

    Examples:
        >>> config = load_config(overrides={"probe": {"path": "/srv"}})
        >>> config.probe.path
        '/srv'
    """
    raw_data: dict[str, object] = _read_yaml_mapping(config_path) if config_path is not None else {}

    if overrides:
        raw_data = merge_overrides(raw_data, overrides)

    try:
        return ProbeConfig.model_validate(raw_data)
    except ValidationError as e:
        error_lines = ["Configuration validation failed:", ""]
        for error in e.errors():
            field_path = " → ".join(str(loc) for loc in error["loc"])
            error_lines.append(f"  Field: {field_path}")
            error_lines.append(f"  Error: {error['msg']}")
            error_lines.append(f"  Type: {error['type']}")
            error_lines.append("")

        source = str(config_path) if config_path is not None else "<defaults and command line>"
        error_lines.append(f"Configuration source: {source}")
        error_lines.append("Please fix the above errors and try again.")

        msg = "\n".join(error_lines)
        raise ConfigurationError(msg) from e
