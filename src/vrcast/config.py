"""Configuration management for the vrcast publisher.

Settings come from the bundled ``default.toml``, an optional user TOML file and
command-line flags.

Configuration priority: CLI args > user config > default config
"""

from __future__ import annotations

import argparse
import importlib.resources
import sys
import tomllib
from dataclasses import dataclass, fields
from dataclasses import replace as dataclass_replace
from pathlib import Path
from typing import Any, NamedTuple

from .devices import MISSING_SLOT_POLICIES
from .network_utils import is_multicast_address, parse_socket_address
from .pose import AXIS_ORDERS


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """Raised when the bundled default configuration cannot be loaded."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """A user config value that differs from the default."""

    key: str
    default_value: Any
    new_value: Any


@dataclass
class PublisherConfig:
    """All publisher settings. Defaults live in default.toml."""

    # Multicast settings
    multicast_group: str
    port: int
    interface: str
    multicast_ttl: int
    multicast_loopback: bool

    # Tracking settings
    poll_interval: float
    tracking_origin: str
    broadcast_filter: str
    missing_slot_policy: str
    axis_order: str
    simulated_device_slots: int

    # Diagnostics
    echo_snapshots: bool
    status_log_interval: float

    # Logging settings
    log_dir: str | None
    log_level_console: str
    log_json_console: bool
    log_rotation: str | None
    log_retention: str | None

    @property
    def seen_only(self) -> bool:
        return self.broadcast_filter == "seen"


_VALID_KEYS: set[str] = {f.name for f in fields(PublisherConfig)}

_OPTIONAL_STRING_KEYS = ("log_dir", "log_rotation", "log_retention")

TRACKING_ORIGINS = ("standing", "seated")
BROADCAST_FILTERS = ("seen", "all")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_default_toml_data() -> dict[str, Any]:
    """Load default.toml from the package resources.

    Raises:
        DefaultConfigError: If default.toml cannot be found or parsed.
    """
    try:
        content = importlib.resources.files("vrcast").joinpath("default.toml").read_bytes()
        return tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        tomllib.TOMLDecodeError: If the TOML syntax is invalid.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def process_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Keep known keys and turn empty optional strings into None."""
    result: dict[str, Any] = {}

    for key, value in toml_data.items():
        if key in _VALID_KEYS:
            if key in _OPTIONAL_STRING_KEYS and value == "":
                value = None
            result[key] = value

    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    """Keys that PublisherConfig does not know (likely typos)."""
    return [key for key in toml_data if key not in _VALID_KEYS]


def validate_config(config: PublisherConfig) -> list[str]:
    """Validate configuration values.

    Returns:
        List of error messages. Empty list if configuration is valid.
    """
    errors: list[str] = []

    if not is_multicast_address(config.multicast_group):
        errors.append(
            f"multicast_group must be an IPv4 multicast address, got {config.multicast_group}"
        )
    if not 1 <= config.port <= 65535:
        errors.append(f"port must be between 1 and 65535, got {config.port}")
    if not 0 <= config.multicast_ttl <= 255:
        errors.append(f"multicast_ttl must be between 0 and 255, got {config.multicast_ttl}")

    for field_name in ("poll_interval", "status_log_interval"):
        value = getattr(config, field_name)
        if value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    if config.simulated_device_slots <= 0:
        errors.append(
            f"simulated_device_slots must be positive, got {config.simulated_device_slots}"
        )

    choices = [
        ("tracking_origin", TRACKING_ORIGINS),
        ("broadcast_filter", BROADCAST_FILTERS),
        ("missing_slot_policy", MISSING_SLOT_POLICIES),
        ("axis_order", tuple(AXIS_ORDERS)),
    ]
    for field_name, allowed in choices:
        value = getattr(config, field_name)
        if value not in allowed:
            errors.append(f"{field_name} must be one of {list(allowed)}, got {value}")

    if config.log_level_console.upper() not in LOG_LEVELS:
        errors.append(
            f"log_level_console must be one of {list(LOG_LEVELS)}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> PublisherConfig:
    """Load the default configuration from the bundled default.toml.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded or is incomplete.
    """
    config_data = process_toml_config(load_default_toml_data())

    missing = _VALID_KEYS - set(config_data)
    if missing:
        raise DefaultConfigError(
            f"Missing required fields in default.toml: {', '.join(sorted(missing))}"
        )

    return PublisherConfig(**config_data)


def merge_cli_args(config: PublisherConfig, args: argparse.Namespace) -> PublisherConfig:
    """Merge explicitly provided CLI arguments into config.

    Raises:
        ConfigurationError: If ``--address`` is not a valid host:port.
    """
    updates: dict[str, Any] = {}

    address = getattr(args, "address", None)
    if address is not None:
        try:
            updates["multicast_group"], updates["port"] = parse_socket_address(address)
        except ValueError as e:
            raise ConfigurationError([f"--address: {e}"]) from e

    # argparse dest -> config key
    simple_overrides = {
        "interface": "interface",
        "ttl": "multicast_ttl",
        "interval": "poll_interval",
        "origin": "tracking_origin",
        "missing_slot": "missing_slot_policy",
        "axis_order": "axis_order",
        "log_dir": "log_dir",
        "log_level_console": "log_level_console",
        "log_rotation": "log_rotation",
        "log_retention": "log_retention",
    }
    for dest, key in simple_overrides.items():
        value = getattr(args, dest, None)
        if value is not None:
            updates[key] = str(value) if key == "log_dir" else value

    if getattr(args, "broadcast_all", False):
        updates["broadcast_filter"] = "all"
    if getattr(args, "echo", False):
        updates["echo_snapshots"] = True
    if getattr(args, "no_loopback", False):
        updates["multicast_loopback"] = False
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True

    if not updates:
        return config

    return dataclass_replace(config, **updates)


def create_config_from_args(
    args: argparse.Namespace,
) -> tuple[PublisherConfig, list[ConfigOverride]]:
    """Build the effective configuration for a run.

    Returns:
        Tuple of (PublisherConfig, overrides from the user config file).

    Raises:
        DefaultConfigError: If default.toml cannot be loaded (fatal).
        FileNotFoundError: If the user config file does not exist.
        tomllib.TOMLDecodeError: If the user config has invalid TOML syntax.
        ConfigurationError: If validation fails.
    """
    config = load_default_config()
    overrides: list[ConfigOverride] = []

    if getattr(args, "config", None) is not None:
        user_config_path = Path(args.config)
        toml_data = load_config_from_toml(user_config_path)

        # Logging is not configured yet, so report on stderr
        unknown = get_unknown_keys(toml_data)
        if unknown:
            print(f"WARNING: Unknown keys in {user_config_path}:", file=sys.stderr)
            for key in unknown:
                print(f"  - {key}", file=sys.stderr)

        config_data = process_toml_config(toml_data)
        for key, new_value in config_data.items():
            default_value = getattr(config, key)
            if default_value != new_value:
                overrides.append(ConfigOverride(key, default_value, new_value))
        if config_data:
            config = dataclass_replace(config, **config_data)

    config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return config, overrides
