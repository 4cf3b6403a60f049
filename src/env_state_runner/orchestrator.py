"""Depth-first state orchestration.

For each state the orchestrator resolves dependencies in declared order, runs
the pre-check, executes actions when the state is not already ready, polls
until ready when a wait probe is configured, and records the outcome. Failures
are raised inside a state's own processing and converted to a boolean at the
state boundary, so they never unwind across states.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .events import EventSink, NullEventSink
from .exceptions import (
    ActionFailedError,
    CycleDetectedError,
    DependencyFailedError,
    FailureKind,
    InvalidStateConfigError,
    ReadinessRetriesExhaustedError,
    ReadinessTimeoutError,
    StateFailureError,
    UnknownStateError,
)
from .executor import ActionExecutor
from .models import ReadinessSpec, StateDeclaration
from .prober import ReadinessProber
from .tracker import ResultTracker, RunSummary

logger = logging.getLogger(__name__)


@dataclass
class StateFailure:
    """First failure recorded during a run."""

    state: str
    kind: FailureKind
    reason: str


@dataclass
class RunContext:
    """Per-run memo of processed states and the current resolution path."""

    processed: set[str] = field(default_factory=set)
    resolving: list[str] = field(default_factory=list)
    first_failure: StateFailure | None = None

    def record_failure(self, error: StateFailureError) -> None:
        # Dependency failures only echo the root cause recorded earlier
        if self.first_failure is None and not isinstance(error, DependencyFailedError):
            self.first_failure = StateFailure(error.state, error.kind, error.reason)


class StateOrchestrator:
    """Brings a target state to ready by walking its dependency graph."""

    def __init__(
        self,
        states: Mapping[str, StateDeclaration],
        *,
        executor: ActionExecutor | None = None,
        prober: ReadinessProber | None = None,
        tracker: ResultTracker | None = None,
        sink: EventSink | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            states: Declarations keyed by state name (read-only)
            executor: Action executor (default: one with the built-in aliases)
            prober: Readiness prober (default: one sharing the executor)
            tracker: Result tracker (default: a fresh tracker)
            sink: Event sink for presentation (default: NullEventSink)
        """
        self.states = dict(states)
        self.executor = executor or ActionExecutor()
        self.prober = prober or ReadinessProber(self.executor)
        self.tracker = tracker or ResultTracker()
        self.sink = sink or NullEventSink()

    def _emit(self, event: str, *args: Any) -> None:
        """Forward an event to the sink; sink errors never reach control flow."""
        try:
            getattr(self.sink, event)(*args)
        except Exception:
            logger.exception(f"Event sink failed while handling '{event}'")

    def run(self, target: str) -> RunSummary:
        """Resolve a target state in a fresh run context and summarize the run."""
        context = RunContext()
        self.tracker.reset()
        logger.info(f"Resolving target state '{target}'")
        success = self.resolve(target, context)
        summary = self.tracker.get_summary(target, success)
        if not success and context.first_failure is not None:
            # Context knows the root cause even when the tracker ordering differs
            summary = _with_failure(summary, context.first_failure)
        logger.info(f"Target '{target}' {'ready' if success else 'failed'}")
        self._emit("run_summary", summary)
        return summary

    def resolve(self, name: str, context: RunContext) -> bool:
        """Bring one state (and its dependencies) to ready.

        Args:
            name: State to resolve
            context: Run context shared across the recursion

        Returns:
            True when the state is ready, False when it failed
        """
        if name in context.processed:
            logger.debug(f"State '{name}' already processed in this run")
            return True

        try:
            self._process(name, context)
        except StateFailureError as err:
            self._fail(err, context)
            return False
        return True

    def _fail(self, error: StateFailureError, context: RunContext) -> None:
        logger.error(f"State '{error.state}' failed: {error.reason}")
        context.record_failure(error)
        self.tracker.fail_state(error.state, error.reason, error.kind)
        result = self.tracker.get_state(error.state)
        duration = result.duration_seconds if result is not None else None
        self._emit("state_completed", error.state, False, duration, error.reason)

    def _process(self, name: str, context: RunContext) -> None:
        declaration = self.states.get(name)
        if declaration is None:
            raise UnknownStateError(name)

        problem = declaration.validation_error()
        if problem is not None:
            raise InvalidStateConfigError(name, problem)

        context.resolving.append(name)
        try:
            self._resolve_dependencies(declaration, context)
        finally:
            context.resolving.pop()

        self.tracker.start_state(name, declaration.needs)
        self._emit("state_started", name, declaration.needs)

        readiness = declaration.readiness
        if readiness is not None and readiness.has_pre_check:
            if self._pre_check(name, readiness):
                self._complete(name, context, already_ready=True)
                return

        if not declaration.actions and not declaration.has_wait:
            raise InvalidStateConfigError(
                name,
                f"State '{name}' is not ready and has no actions or wait check to activate it",
            )

        self._run_actions(declaration)

        if readiness is not None and readiness.has_wait:
            self._wait_until_ready(name, readiness)

        self._complete(name, context, already_ready=False)

    def _resolve_dependencies(self, declaration: StateDeclaration, context: RunContext) -> None:
        for dependency in declaration.needs:
            if dependency in context.resolving:
                raise CycleDetectedError(declaration.name, dependency, context.resolving)
            if not self.resolve(dependency, context):
                raise DependencyFailedError(declaration.name, dependency)

    def _pre_check(self, name: str, readiness: ReadinessSpec) -> bool:
        target = readiness.check_endpoint or readiness.check_command or ""
        self._emit("check_performed", name, "pre", target)
        result = self.prober.check_now(readiness)
        self._emit("check_result", name, result.ready, result.detail)
        return result.ready

    def _run_actions(self, declaration: StateDeclaration) -> None:
        name = declaration.name
        self._emit("actions_started", name, len(declaration.actions))

        for index, action in enumerate(declaration.actions, start=1):
            self.tracker.start_action(
                name, index, action.type.value, action.display_command, action.description
            )
            self._emit(
                "action_started",
                name,
                index,
                action.type.value,
                action.display_command,
                action.description,
            )

            start = time.monotonic()
            outcome = self.executor.run(action, name)
            duration = outcome.duration_seconds or (time.monotonic() - start)

            self.tracker.complete_action(
                name, index, outcome.success, duration, outcome.error, outcome.failure
            )
            self._emit("action_completed", name, index, outcome.success, duration, outcome.error)

            if not outcome.success:
                raise ActionFailedError(
                    name, index, outcome.error or "unknown error", outcome.failure
                )

    def _wait_until_ready(self, name: str, readiness: ReadinessSpec) -> None:
        target = readiness.wait_endpoint or readiness.wait_command or ""
        self._emit("check_performed", name, "wait", target)

        result = self.prober.wait_until_ready(
            readiness,
            on_attempt=lambda attempt, ready, detail: self._emit(
                "poll_attempt", name, attempt, ready, detail
            ),
        )
        self._emit("check_result", name, result.ready, result.detail)
        if result.ready:
            return

        reason = f"Failed to become ready via {result.kind}: {result.detail}"
        if result.failure is FailureKind.READINESS_TIMEOUT:
            raise ReadinessTimeoutError(name, reason)
        raise ReadinessRetriesExhaustedError(name, reason)

    def _complete(self, name: str, context: RunContext, already_ready: bool) -> None:
        context.processed.add(name)
        self.tracker.complete_state(name, already_ready=already_ready)
        result = self.tracker.get_state(name)
        duration = result.duration_seconds if result is not None else None
        how = "already ready" if already_ready else "activated"
        logger.info(f"State '{name}' completed ({how})")
        self._emit("state_completed", name, True, duration, None)


def _with_failure(summary: RunSummary, failure: StateFailure) -> RunSummary:
    return replace(summary, failed_state=failure.state, failure_reason=failure.reason)
