"""Action execution with timeout handling and output classification."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .exceptions import FailureKind
from .models import ActionSpec, ActionType, LaunchMode
from .subprocess_helpers import (
    CommandDescriptor,
    CommandOutcome,
    build_descriptor,
    run_command,
    spawn_detached,
    working_directory,
)
from .utils import build_alias_table, find_error_pattern, truncate_text

logger = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 500


@dataclass
class ActionOutcome:
    """Result of executing a single action."""

    success: bool
    output: str = ""
    failure: FailureKind | None = None
    error: str | None = None
    exit_code: int | None = None
    duration_seconds: float = 0.0
    pid: int | None = None


def _output_tail(output: str) -> str:
    text = output.strip()
    if len(text) <= OUTPUT_TAIL_CHARS:
        return text
    return "..." + text[-OUTPUT_TAIL_CHARS:]


def classify_outcome(outcome: CommandOutcome, timeout: int = 0) -> ActionOutcome:
    """Decide whether a finished command succeeded.

    Success requires a zero (or absent) exit code and combined output free of
    the known error patterns; the exit code alone is not trusted.

    Args:
        outcome: Finished command
        timeout: Timeout the command ran under, for the error message

    Returns:
        ActionOutcome with failure kind and error text on failure
    """
    base = {
        "output": outcome.output,
        "exit_code": outcome.exit_code,
        "duration_seconds": outcome.duration_seconds,
        "pid": outcome.pid,
    }

    if outcome.timed_out:
        return ActionOutcome(
            success=False,
            failure=FailureKind.TIMEOUT,
            error=f"Timeout after {timeout}s",
            **base,
        )

    if outcome.exit_code not in (None, 0):
        tail = _output_tail(outcome.output)
        error = f"Exit code {outcome.exit_code}"
        if tail:
            error = f"{error}: {tail}"
        return ActionOutcome(success=False, failure=FailureKind.NON_ZERO_EXIT, error=error, **base)

    pattern = find_error_pattern(outcome.output)
    if pattern is not None:
        return ActionOutcome(
            success=False,
            failure=FailureKind.ERROR_PATTERN,
            error=f"Output matched error pattern '{pattern}': {_output_tail(outcome.output)}",
            **base,
        )

    return ActionOutcome(success=True, **base)


class ActionExecutor:
    """Runs state actions and readiness commands.

    Runner and spawner callables are injectable so tests can substitute fake
    processes.
    """

    def __init__(
        self,
        aliases: Mapping[str, str] | None = None,
        *,
        runner: Callable[..., CommandOutcome] = run_command,
        spawner: Callable[[CommandDescriptor], CommandOutcome] = spawn_detached,
    ) -> None:
        self.aliases = build_alias_table(aliases)
        self._runner = runner
        self._spawner = spawner

    def run(self, action: ActionSpec, state_name: str) -> ActionOutcome:
        """Execute one action belonging to a state.

        Spawn failures are converted into a failed outcome; nothing is
        retried here.

        Args:
            action: Action to execute
            state_name: Owning state, for logging

        Returns:
            ActionOutcome describing success and captured output
        """
        logger.info(
            f"[{state_name}] Running {action.type.value} action: {action.display_command}"
            + (f" (timeout {action.timeout}s)" if action.timeout else "")
        )

        try:
            descriptor = build_descriptor(action, self.aliases)
            if descriptor.detached:
                outcome = self._spawner(descriptor)
            else:
                with working_directory(action.working_directory):
                    outcome = self._runner(descriptor, timeout=action.timeout or None)
        except (OSError, ValueError) as err:
            logger.error(f"[{state_name}] Failed to launch '{action.display_command}': {err}")
            return ActionOutcome(
                success=False,
                failure=FailureKind.LAUNCH_EXCEPTION,
                error=f"Failed to launch: {err}",
            )

        result = classify_outcome(outcome, action.timeout)
        if result.success:
            logger.info(
                f"[{state_name}] Action succeeded in {result.duration_seconds:.2f}s"
            )
        else:
            logger.warning(
                f"[{state_name}] Action failed ({result.failure.value}): "
                f"{truncate_text(result.error or '', 200)}"
            )
        return result

    def run_check(self, command: str, timeout: int = 0) -> ActionOutcome:
        """Execute a readiness command inline and classify its output."""
        action = ActionSpec(
            type=ActionType.COMMAND,
            command=command,
            timeout=timeout,
            launch_mode=LaunchMode.INLINE,
        )
        try:
            descriptor = build_descriptor(action, self.aliases)
            outcome = self._runner(descriptor, timeout=timeout or None)
        except (OSError, ValueError) as err:
            logger.debug(f"Readiness command '{command}' could not be launched: {err}")
            return ActionOutcome(
                success=False,
                failure=FailureKind.LAUNCH_EXCEPTION,
                error=f"Failed to launch: {err}",
            )
        return classify_outcome(outcome, timeout)
