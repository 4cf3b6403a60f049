"""Per-run bookkeeping of state and action results.

The tracker never influences control flow: every method tolerates unknown
names and logs instead of raising, so presentation problems cannot abort a run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .exceptions import FailureKind

logger = logging.getLogger(__name__)


class StateStatus(Enum):
    """Lifecycle status of a state within one run."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionStatus(Enum):
    """Lifecycle status of a single action."""

    EXECUTING = "executing"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class ActionResult:
    """Record of one action execution."""

    index: int
    type: str
    command: str
    description: str | None = None
    status: ActionStatus = ActionStatus.EXECUTING
    duration_seconds: float = 0.0
    error: str | None = None
    failure: FailureKind | None = None


@dataclass
class StateResult:
    """Record of one state's processing."""

    name: str
    dependencies: tuple[str, ...] = ()
    status: StateStatus = StateStatus.PROCESSING
    actions: list[ActionResult] = field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None
    failure: FailureKind | None = None
    already_ready: bool = False

    @property
    def duration_seconds(self) -> float | None:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()


@dataclass(frozen=True)
class ActionSnapshot:
    """Immutable copy of an ActionResult."""

    index: int
    type: str
    command: str
    description: str | None
    status: ActionStatus
    duration_seconds: float
    error: str | None
    failure: FailureKind | None

    @classmethod
    def from_result(cls, result: ActionResult) -> ActionSnapshot:
        return cls(**asdict(result))


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable copy of a StateResult."""

    name: str
    dependencies: tuple[str, ...]
    status: StateStatus
    actions: tuple[ActionSnapshot, ...]
    start_time: datetime | None
    end_time: datetime | None
    duration_seconds: float | None
    error: str | None
    failure: FailureKind | None
    already_ready: bool

    @classmethod
    def from_result(cls, result: StateResult) -> StateSnapshot:
        return cls(
            name=result.name,
            dependencies=tuple(result.dependencies),
            status=result.status,
            actions=tuple(ActionSnapshot.from_result(a) for a in result.actions),
            start_time=result.start_time,
            end_time=result.end_time,
            duration_seconds=result.duration_seconds,
            error=result.error,
            failure=result.failure,
            already_ready=result.already_ready,
        )

    @property
    def actions_executed(self) -> int:
        return len(self.actions)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured output."""
        return {
            "name": self.name,
            "dependencies": list(self.dependencies),
            "status": self.status.value,
            "already_ready": self.already_ready,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "failure": self.failure.value if self.failure else None,
            "actions": [
                {
                    "index": a.index,
                    "type": a.type,
                    "command": a.command,
                    "description": a.description,
                    "status": a.status.value,
                    "duration_seconds": a.duration_seconds,
                    "error": a.error,
                    "failure": a.failure.value if a.failure else None,
                }
                for a in self.actions
            ],
        }


@dataclass(frozen=True)
class RunSummary:
    """Immutable summary of a whole run."""

    target: str
    success: bool
    states: tuple[StateSnapshot, ...]
    total_duration_seconds: float
    failed_state: str | None = None
    failure_reason: str | None = None

    def get_state(self, name: str) -> StateSnapshot | None:
        for state in self.states:
            if state.name == name:
                return state
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "success": self.success,
            "total_duration_seconds": self.total_duration_seconds,
            "failed_state": self.failed_state,
            "failure_reason": self.failure_reason,
            "states": [s.to_dict() for s in self.states],
        }


class ResultTracker:
    """Records state and action timing, status and error text for one run."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._states: dict[str, StateResult] = {}
        self._run_start = self._clock()

    def reset(self) -> None:
        """Discard every record and restart the run clock."""
        self._states = {}
        self._run_start = self._clock()

    def _get(self, name: str) -> StateResult | None:
        result = self._states.get(name)
        if result is None:
            logger.warning(f"Tracker has no record of state '{name}'")
        return result

    def get_state(self, name: str) -> StateResult | None:
        return self._states.get(name)

    def start_state(self, name: str, dependencies: tuple[str, ...] = ()) -> StateResult:
        """Create the result record for a state entering processing."""
        result = StateResult(
            name=name,
            dependencies=tuple(dependencies),
            start_time=self._clock(),
        )
        self._states[name] = result
        return result

    def complete_state(self, name: str, already_ready: bool = False) -> None:
        result = self._get(name)
        if result is None:
            return
        result.status = StateStatus.COMPLETED
        result.already_ready = already_ready
        result.end_time = self._clock()

    def fail_state(self, name: str, error: str, failure: FailureKind | None = None) -> None:
        """Mark a state failed, creating a record if it never started."""
        result = self._states.get(name)
        if result is None:
            result = self.start_state(name)
        result.status = StateStatus.FAILED
        result.error = error
        result.failure = failure
        result.end_time = self._clock()

    def start_action(
        self,
        state: str,
        index: int,
        type: str,
        command: str,
        description: str | None = None,
    ) -> ActionResult | None:
        result = self._get(state)
        if result is None:
            return None
        action = ActionResult(index=index, type=type, command=command, description=description)
        result.actions.append(action)
        return action

    def complete_action(
        self,
        state: str,
        index: int,
        success: bool,
        duration_seconds: float,
        error: str | None = None,
        failure: FailureKind | None = None,
    ) -> None:
        result = self._get(state)
        if result is None:
            return
        for action in result.actions:
            if action.index == index:
                action.status = ActionStatus.SUCCESS if success else ActionStatus.FAILED
                action.duration_seconds = duration_seconds
                action.error = error
                action.failure = failure
                return
        logger.warning(f"Tracker has no action {index} for state '{state}'")

    def get_summary(self, target: str, success: bool) -> RunSummary:
        """Return an immutable snapshot of the run so far."""
        failed = next(
            (
                r
                for r in self._states.values()
                if r.status is StateStatus.FAILED
                and r.failure is not FailureKind.DEPENDENCY_FAILED
            ),
            None,
        )
        return RunSummary(
            target=target,
            success=success,
            states=tuple(StateSnapshot.from_result(r) for r in self._states.values()),
            total_duration_seconds=(self._clock() - self._run_start).total_seconds(),
            failed_state=failed.name if failed else None,
            failure_reason=failed.error if failed else None,
        )
