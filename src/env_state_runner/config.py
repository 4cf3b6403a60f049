"""Loading and validation of the YAML states configuration."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .models import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_TIME_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_INTERVAL_SECONDS,
    DEFAULT_SUCCESSFUL_RETRIES_REQUIRED,
    ActionSpec,
    ActionType,
    LaunchMode,
    ReadinessSpec,
    StateDeclaration,
    StatesConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "states.yml"
CONFIG_ENV_VAR = "ENV_STATE_CONFIG"

_LAUNCH_MODES = {
    "inline": LaunchMode.INLINE,
    "shell": LaunchMode.APPLICATION_SHELL,
    "application": LaunchMode.APPLICATION_SHELL,
    "newwindow": LaunchMode.NEW_WINDOW,
    "new_window": LaunchMode.NEW_WINDOW,
    "detached": LaunchMode.NEW_WINDOW,
}


def default_config_path() -> Path:
    """Return the config path from ENV_STATE_CONFIG or ./states.yml."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(os.path.expanduser(override))
    return Path.cwd() / DEFAULT_CONFIG_NAME


def _int_field(raw: dict[str, Any], keys: tuple[str, ...], default: int, where: str) -> int:
    for key in keys:
        if key in raw and raw[key] is not None:
            value = raw[key]
            if isinstance(value, bool):
                raise ConfigError(f"{where}: {key} must be a number, got {value!r}")
            try:
                number = int(value)
            except (TypeError, ValueError) as err:
                raise ConfigError(f"{where}: {key} must be a number, got {value!r}") from err
            if number < 0:
                raise ConfigError(f"{where}: {key} must not be negative, got {number}")
            return number
    return default


def _bool_field(raw: dict[str, Any], key: str, default: bool, where: str) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"{where}: {key} must be true or false, got {value!r}")
    return value


def _optional_str(raw: dict[str, Any], key: str, where: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int, float)):
        raise ConfigError(f"{where}: {key} must be a string")
    text = str(value).strip()
    return text or None


def _parse_readiness(raw: Any, where: str) -> ReadinessSpec | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: readiness must be a mapping")

    where = f"{where}.readiness"
    request_timeout = raw.get("requestTimeout", DEFAULT_REQUEST_TIMEOUT_SECONDS)
    try:
        request_timeout = float(request_timeout)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{where}: requestTimeout must be a number") from err

    return ReadinessSpec(
        check_command=_optional_str(raw, "checkCommand", where),
        check_endpoint=_optional_str(raw, "checkEndpoint", where),
        wait_command=_optional_str(raw, "waitCommand", where),
        wait_endpoint=_optional_str(raw, "waitEndpoint", where),
        max_retries=_int_field(raw, ("maxRetries",), DEFAULT_MAX_RETRIES, where),
        retry_interval_seconds=_int_field(
            raw,
            ("retryIntervalSeconds", "retryInterval"),
            DEFAULT_RETRY_INTERVAL_SECONDS,
            where,
        ),
        successful_retries_required=_int_field(
            raw,
            ("successfulRetriesRequired",),
            DEFAULT_SUCCESSFUL_RETRIES_REQUIRED,
            where,
        ),
        max_time_seconds=_int_field(
            raw, ("maxTimeSeconds", "maxTime"), DEFAULT_MAX_TIME_SECONDS, where
        ),
        verify_tls=_bool_field(raw, "verifyTls", False, where),
        request_timeout_seconds=request_timeout,
    )


def _parse_action(raw: Any, where: str) -> ActionSpec:
    # Bare strings are the original list-of-commands format
    if isinstance(raw, str):
        return ActionSpec(type=ActionType.LEGACY, command=raw.strip())
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: action must be a string or a mapping")

    type_name = str(raw.get("type", "command")).lower()
    try:
        action_type = ActionType(type_name)
    except ValueError as err:
        raise ConfigError(f"{where}: unknown action type '{type_name}'") from err
    if action_type is ActionType.LEGACY:
        raise ConfigError(f"{where}: unknown action type '{type_name}'")

    if action_type is ActionType.APPLICATION:
        command = _optional_str(raw, "path", where) or _optional_str(raw, "command", where)
        default_mode = LaunchMode.APPLICATION_SHELL
    else:
        command = _optional_str(raw, "command", where)
        default_mode = LaunchMode.INLINE
    if not command:
        field_name = "path" if action_type is ActionType.APPLICATION else "command"
        raise ConfigError(f"{where}: {action_type.value} action requires '{field_name}'")

    launch_mode = default_mode
    if raw.get("newWindow"):
        launch_mode = LaunchMode.NEW_WINDOW
    mode_name = raw.get("launchMode")
    if mode_name is not None:
        try:
            launch_mode = _LAUNCH_MODES[str(mode_name).lower()]
        except KeyError as err:
            raise ConfigError(f"{where}: unknown launchMode '{mode_name}'") from err

    working_directory = _optional_str(raw, "workingDirectory", where)
    cwd = Path(os.path.expanduser(working_directory)) if working_directory else None

    return ActionSpec(
        type=action_type,
        command=command,
        description=_optional_str(raw, "description", where),
        working_directory=cwd,
        timeout=_int_field(raw, ("timeout",), 0, where),
        launch_mode=launch_mode,
    )


def _parse_state(name: str, raw: Any) -> StateDeclaration:
    where = f"state '{name}'"
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: definition must be a mapping")

    needs_raw = raw.get("needs") or []
    if isinstance(needs_raw, str):
        needs_raw = [needs_raw]
    if not isinstance(needs_raw, list):
        raise ConfigError(f"{where}: needs must be a list of state names")

    actions_raw = raw.get("actions") or []
    if not isinstance(actions_raw, list):
        raise ConfigError(f"{where}: actions must be a list")

    return StateDeclaration(
        name=name,
        needs=tuple(str(n) for n in needs_raw),
        actions=tuple(
            _parse_action(item, f"{where} action {index}")
            for index, item in enumerate(actions_raw, start=1)
        ),
        readiness=_parse_readiness(raw.get("readiness"), where),
    )


def parse_config(payload: Any, source: Path | None = None) -> StatesConfig:
    """Create a StatesConfig from a parsed YAML document.

    Dependencies on undeclared states are accepted here; they fail as unknown
    states when resolved.

    Raises:
        ConfigError: If the document structure is invalid
    """
    if not isinstance(payload, dict):
        raise ConfigError("Configuration must be a mapping with a 'states' section")

    states_raw = payload.get("states")
    if not isinstance(states_raw, dict) or not states_raw:
        raise ConfigError("Configuration must define at least one state under 'states'")

    aliases_raw = payload.get("aliases") or {}
    if not isinstance(aliases_raw, dict):
        raise ConfigError("aliases must be a mapping of command -> replacement")

    target = payload.get("target")
    if target is not None:
        target = str(target)
        if target not in states_raw:
            raise ConfigError(f"Default target '{target}' is not a declared state")

    states = {str(name): _parse_state(str(name), raw) for name, raw in states_raw.items()}
    logger.debug(f"Parsed {len(states)} state(s) from {source or 'payload'}")

    return StatesConfig(
        states=states,
        target=target,
        aliases={str(k): str(v) for k, v in aliases_raw.items()},
        source=source,
    )


def load_config(path: Path) -> StatesConfig:
    """Load the states configuration from the provided path.

    Raises:
        ConfigError: If the file is missing, not valid YAML, or malformed
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as err:
        raise ConfigError(f"Configuration file not found: {path}") from err
    except OSError as err:
        raise ConfigError(f"Cannot read configuration file {path}: {err}") from err
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}: {err}") from err

    config = parse_config(data, source=path)
    logger.info(f"Loaded {len(config.states)} state(s) from {path}")
    return config
