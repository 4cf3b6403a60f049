"""Declarative state models loaded from the states configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ActionType(Enum):
    """Kind of action declared on a state."""

    COMMAND = "command"
    APPLICATION = "application"
    LEGACY = "legacy"


class LaunchMode(Enum):
    """How an action's process is launched."""

    INLINE = "inline"
    APPLICATION_SHELL = "application_shell"
    NEW_WINDOW = "new_window"


DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_INTERVAL_SECONDS = 3
DEFAULT_SUCCESSFUL_RETRIES_REQUIRED = 1
DEFAULT_MAX_TIME_SECONDS = 30
DEFAULT_REQUEST_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ActionSpec:
    """A single command or application launch belonging to a state."""

    type: ActionType
    command: str
    description: str | None = None
    working_directory: Path | None = None
    timeout: int = 0
    """Seconds before the action is killed (0 = unbounded)"""

    launch_mode: LaunchMode = LaunchMode.INLINE

    @property
    def display_command(self) -> str:
        return self.command

    @property
    def label(self) -> str:
        """Description if given, otherwise the command text."""
        return self.description or self.command


@dataclass(frozen=True)
class ReadinessSpec:
    """Pre-check and poll-until-ready configuration for a state."""

    check_command: str | None = None
    check_endpoint: str | None = None
    wait_command: str | None = None
    wait_endpoint: str | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_interval_seconds: int = DEFAULT_RETRY_INTERVAL_SECONDS
    successful_retries_required: int = DEFAULT_SUCCESSFUL_RETRIES_REQUIRED
    max_time_seconds: int = DEFAULT_MAX_TIME_SECONDS
    verify_tls: bool = False
    """Local dev servers usually present self-signed certificates"""

    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    @property
    def has_pre_check(self) -> bool:
        return bool(self.check_command or self.check_endpoint)

    @property
    def has_wait(self) -> bool:
        return bool(self.wait_command or self.wait_endpoint)

    @property
    def is_empty(self) -> bool:
        return not (self.has_pre_check or self.has_wait)


@dataclass(frozen=True)
class StateDeclaration:
    """A named unit of work with dependencies, readiness check and actions."""

    name: str
    needs: tuple[str, ...] = ()
    actions: tuple[ActionSpec, ...] = ()
    readiness: ReadinessSpec | None = None

    @property
    def has_pre_check(self) -> bool:
        return self.readiness is not None and self.readiness.has_pre_check

    @property
    def has_wait(self) -> bool:
        return self.readiness is not None and self.readiness.has_wait

    def validation_error(self) -> str | None:
        """Return why this declaration can never succeed, or None if it is valid."""
        if not self.actions and (self.readiness is None or self.readiness.is_empty):
            return f"State '{self.name}' has no actions and no readiness check"
        for index, action in enumerate(self.actions, start=1):
            if not action.command.strip():
                return f"State '{self.name}' action {index} has an empty command"
            if action.timeout < 0:
                return f"State '{self.name}' action {index} has a negative timeout"
        return None

    def is_valid(self) -> bool:
        return self.validation_error() is None


@dataclass(frozen=True)
class StatesConfig:
    """Validated contents of a states configuration file."""

    states: dict[str, StateDeclaration]
    target: str | None = None
    aliases: dict[str, str] = field(default_factory=dict)
    source: Path | None = None
