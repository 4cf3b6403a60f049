"""Custom exceptions for state orchestration.

This module defines a hierarchy of exceptions for the failure scenarios of a
run. ``StateFailureError`` subclasses are raised while a single state is being
processed and are converted into a boolean result at the state boundary;
``ConfigError`` is the only fatal error.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(Enum):
    """Machine-readable classification of a failure."""

    UNKNOWN_STATE = "unknown_state"
    INVALID_STATE_CONFIG = "invalid_state_config"
    CYCLE_DETECTED = "cycle_detected"
    DEPENDENCY_FAILED = "dependency_failed"
    ACTION_FAILED = "action_failed"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    ERROR_PATTERN = "error_pattern"
    LAUNCH_EXCEPTION = "launch_exception"
    READINESS_TIMEOUT = "readiness_timeout"
    READINESS_RETRIES_EXHAUSTED = "readiness_retries_exhausted"
    FATAL_CONFIG_LOAD = "fatal_config_load"


class EnvStateError(Exception):
    """Base exception for all env-state-runner errors."""


class ConfigError(EnvStateError):
    """Raised when the states configuration cannot be loaded or is malformed."""

    kind = FailureKind.FATAL_CONFIG_LOAD


class StateFailureError(EnvStateError):
    """Raised when a single state cannot be brought to ready."""

    kind = FailureKind.ACTION_FAILED

    def __init__(self, state: str, reason: str) -> None:
        super().__init__(reason)
        self.state = state
        self.reason = reason


class UnknownStateError(StateFailureError):
    """Raised when a state name is not declared in the configuration."""

    kind = FailureKind.UNKNOWN_STATE

    def __init__(self, state: str) -> None:
        super().__init__(state, f"Unknown state '{state}'")


class InvalidStateConfigError(StateFailureError):
    """Raised when a declaration cannot possibly bring its state to ready."""

    kind = FailureKind.INVALID_STATE_CONFIG


class CycleDetectedError(StateFailureError):
    """Raised when a state is reached again while it is still being resolved."""

    kind = FailureKind.CYCLE_DETECTED

    def __init__(self, state: str, dependency: str, path: list[str]) -> None:
        start = path.index(dependency) if dependency in path else 0
        self.cycle = [*path[start:], dependency]
        super().__init__(state, f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class DependencyFailedError(StateFailureError):
    """Raised when a dependency of the state failed to resolve."""

    kind = FailureKind.DEPENDENCY_FAILED

    def __init__(self, state: str, dependency: str) -> None:
        super().__init__(state, f"Dependency {dependency} failed")
        self.dependency = dependency


class ActionFailedError(StateFailureError):
    """Raised when one of the state's actions failed."""

    kind = FailureKind.ACTION_FAILED

    def __init__(
        self,
        state: str,
        index: int,
        reason: str,
        action_failure: FailureKind | None = None,
    ) -> None:
        super().__init__(state, f"Action {index} failed: {reason}")
        self.index = index
        self.action_failure = action_failure


class ReadinessTimeoutError(StateFailureError):
    """Raised when poll-until-ready ran out of wall-clock time."""

    kind = FailureKind.READINESS_TIMEOUT


class ReadinessRetriesExhaustedError(StateFailureError):
    """Raised when poll-until-ready used up all of its attempts."""

    kind = FailureKind.READINESS_RETRIES_EXHAUSTED
