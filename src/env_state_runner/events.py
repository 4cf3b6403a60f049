"""Lifecycle event sinks for presenting a run.

The orchestrator reports progress through an ``EventSink`` passed in at
construction. Presentation styles are independent sink implementations picked
at startup with ``create_event_sink``.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .tracker import RunSummary, StateStatus
from .utils import format_duration, truncate_text

logger = logging.getLogger(__name__)

SINK_STYLES = ("rich", "plain", "json")


class EventSink:
    """Base class for lifecycle event sinks. Every event is a no-op by default."""

    def state_started(self, name: str, dependencies: Sequence[str]) -> None:
        pass

    def check_performed(self, state: str, kind: str, detail: str) -> None:
        pass

    def check_result(self, state: str, ready: bool, detail: str) -> None:
        pass

    def actions_started(self, state: str, count: int) -> None:
        pass

    def action_started(
        self,
        state: str,
        index: int,
        action_type: str,
        command: str,
        description: str | None,
    ) -> None:
        pass

    def action_completed(
        self,
        state: str,
        index: int,
        success: bool,
        duration_seconds: float,
        error: str | None,
    ) -> None:
        pass

    def poll_attempt(self, state: str, attempt: int, ready: bool, detail: str) -> None:
        pass

    def state_completed(
        self,
        name: str,
        success: bool,
        duration_seconds: float | None,
        error: str | None,
    ) -> None:
        pass

    def run_summary(self, summary: RunSummary) -> None:
        pass

    def fatal_error(self, message: str) -> None:
        pass


class NullEventSink(EventSink):
    """Sink that discards every event."""


class CompositeEventSink(EventSink):
    """Fans every event out to several sinks.

    A sink that raises is logged and skipped; the remaining sinks still
    receive the event.
    """

    def __init__(self, sinks: Sequence[EventSink]) -> None:
        self.sinks = list(sinks)

    def _dispatch(self, method: str, *args: Any) -> None:
        for sink in self.sinks:
            try:
                getattr(sink, method)(*args)
            except Exception:
                logger.exception(f"{type(sink).__name__} failed while handling '{method}'")

    def state_started(self, name, dependencies):
        self._dispatch("state_started", name, dependencies)

    def check_performed(self, state, kind, detail):
        self._dispatch("check_performed", state, kind, detail)

    def check_result(self, state, ready, detail):
        self._dispatch("check_result", state, ready, detail)

    def actions_started(self, state, count):
        self._dispatch("actions_started", state, count)

    def action_started(self, state, index, action_type, command, description):
        self._dispatch("action_started", state, index, action_type, command, description)

    def action_completed(self, state, index, success, duration_seconds, error):
        self._dispatch("action_completed", state, index, success, duration_seconds, error)

    def poll_attempt(self, state, attempt, ready, detail):
        self._dispatch("poll_attempt", state, attempt, ready, detail)

    def state_completed(self, name, success, duration_seconds, error):
        self._dispatch("state_completed", name, success, duration_seconds, error)

    def run_summary(self, summary):
        self._dispatch("run_summary", summary)

    def fatal_error(self, message):
        self._dispatch("fatal_error", message)


class LoggingEventSink(EventSink):
    """Writes one log record per lifecycle event."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logging.getLogger("env_state_runner.run")

    def state_started(self, name, dependencies):
        deps = ", ".join(dependencies) if dependencies else "none"
        self.log.info(f"State '{name}' started (needs: {deps})")

    def check_performed(self, state, kind, detail):
        self.log.info(f"State '{state}' {kind} check: {detail}")

    def check_result(self, state, ready, detail):
        self.log.info(f"State '{state}' {'ready' if ready else 'not ready'}: {detail}")

    def actions_started(self, state, count):
        self.log.info(f"State '{state}' running {count} action(s)")

    def action_started(self, state, index, action_type, command, description):
        label = f" ({description})" if description else ""
        self.log.info(f"State '{state}' action {index} [{action_type}] {command}{label}")

    def action_completed(self, state, index, success, duration_seconds, error):
        if success:
            self.log.info(f"State '{state}' action {index} succeeded in {duration_seconds:.2f}s")
        else:
            self.log.error(f"State '{state}' action {index} failed: {error}")

    def poll_attempt(self, state, attempt, ready, detail):
        self.log.debug(f"State '{state}' wait attempt {attempt}: {'ready' if ready else detail}")

    def state_completed(self, name, success, duration_seconds, error):
        if success:
            self.log.info(f"State '{name}' completed in {format_duration(duration_seconds)}")
        else:
            self.log.error(f"State '{name}' failed: {error}")

    def run_summary(self, summary):
        outcome = "succeeded" if summary.success else "failed"
        self.log.info(
            f"Run for '{summary.target}' {outcome} in "
            f"{format_duration(summary.total_duration_seconds)}"
        )

    def fatal_error(self, message):
        self.log.critical(message)


class JsonEventSink(EventSink):
    """Emits one JSON object per event, one per line."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout

    def _emit(self, event: str, **data: Any) -> None:
        payload = {"timestamp": datetime.now(UTC).isoformat(), "event": event, **data}
        self.stream.write(json.dumps(payload) + "\n")
        self.stream.flush()

    def state_started(self, name, dependencies):
        self._emit("state_started", state=name, dependencies=list(dependencies))

    def check_performed(self, state, kind, detail):
        self._emit("check_performed", state=state, kind=kind, detail=detail)

    def check_result(self, state, ready, detail):
        self._emit("check_result", state=state, ready=ready, detail=detail)

    def actions_started(self, state, count):
        self._emit("actions_started", state=state, count=count)

    def action_started(self, state, index, action_type, command, description):
        self._emit(
            "action_started",
            state=state,
            index=index,
            type=action_type,
            command=command,
            description=description,
        )

    def action_completed(self, state, index, success, duration_seconds, error):
        self._emit(
            "action_completed",
            state=state,
            index=index,
            success=success,
            duration_seconds=duration_seconds,
            error=error,
        )

    def poll_attempt(self, state, attempt, ready, detail):
        self._emit("poll_attempt", state=state, attempt=attempt, ready=ready, detail=detail)

    def state_completed(self, name, success, duration_seconds, error):
        self._emit(
            "state_completed",
            state=name,
            success=success,
            duration_seconds=duration_seconds,
            error=error,
        )

    def run_summary(self, summary):
        self._emit("run_summary", **summary.to_dict())

    def fatal_error(self, message):
        self._emit("fatal_error", message=message)


class RichEventSink(EventSink):
    """Console presentation using Rich markup and a summary table."""

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console()
        self.verbose = verbose

    def state_started(self, name, dependencies):
        deps = f" [dim](needs: {escape(', '.join(dependencies))})[/dim]" if dependencies else ""
        self.console.print(f"\n[bold cyan]▶ {escape(name)}[/bold cyan]{deps}")

    def check_performed(self, state, kind, detail):
        self.console.print(f"  [dim]{escape(kind)} check:[/dim] {escape(detail)}")

    def check_result(self, state, ready, detail):
        if ready:
            self.console.print(f"  [green]✓ ready[/green] [dim]{escape(detail)}[/dim]")
        else:
            self.console.print(f"  [yellow]○ not ready[/yellow] [dim]{escape(detail)}[/dim]")

    def actions_started(self, state, count):
        self.console.print(f"  [bold]Running {count} action(s)[/bold]")

    def action_started(self, state, index, action_type, command, description):
        label = escape(description) if description else escape(command)
        self.console.print(f"  [blue]{index}.[/blue] {label} [dim]({escape(action_type)})[/dim]")

    def action_completed(self, state, index, success, duration_seconds, error):
        duration = format_duration(duration_seconds)
        if success:
            self.console.print(f"     [green]✓[/green] [dim]{duration}[/dim]")
        else:
            message = escape(truncate_text(error or "failed", 300))
            self.console.print(f"     [red]✗ {message}[/red] [dim]{duration}[/dim]")

    def poll_attempt(self, state, attempt, ready, detail):
        if self.verbose or ready:
            mark = "[green]✓[/green]" if ready else "[yellow]…[/yellow]"
            self.console.print(f"     {mark} attempt {attempt}: [dim]{escape(detail)}[/dim]")

    def state_completed(self, name, success, duration_seconds, error):
        duration = format_duration(duration_seconds)
        if success:
            self.console.print(f"[green]✓ {escape(name)} ready[/green] [dim]{duration}[/dim]")
        else:
            self.console.print(
                f"[red]✗ {escape(name)} failed:[/red] {escape(error or 'unknown error')}"
            )

    def run_summary(self, summary):
        table = Table(title=f"Run summary: {summary.target}", show_lines=False)
        table.add_column("State", style="bold")
        table.add_column("Status")
        table.add_column("Actions", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Error", overflow="fold")

        for state in summary.states:
            if state.status is StateStatus.COMPLETED:
                status = "already ready" if state.already_ready else "ready"
                status = f"[green]{status}[/green]"
            elif state.status is StateStatus.FAILED:
                status = "[red]failed[/red]"
            else:
                status = "[yellow]processing[/yellow]"
            table.add_row(
                escape(state.name),
                status,
                str(state.actions_executed),
                format_duration(state.duration_seconds),
                escape(truncate_text(state.error or "", 120)),
            )

        self.console.print()
        self.console.print(table)
        if summary.success:
            self.console.print(
                f"[bold green]✓ {escape(summary.target)} is ready[/bold green] "
                f"[dim]({format_duration(summary.total_duration_seconds)})[/dim]"
            )
        else:
            reason = summary.failure_reason or "unknown error"
            where = f" at '{escape(summary.failed_state)}'" if summary.failed_state else ""
            self.console.print(
                f"[bold red]✗ {escape(summary.target)} failed{where}:[/bold red] {escape(reason)}"
            )

    def fatal_error(self, message):
        self.console.print(f"[bold red]Fatal:[/bold red] {escape(message)}")


def create_event_sink(
    style: str,
    *,
    console: Console | None = None,
    stream: TextIO | None = None,
    verbose: bool = False,
) -> EventSink:
    """Factory function to create an event sink by style name."""
    if style == "rich":
        return RichEventSink(console=console, verbose=verbose)
    if style == "plain":
        log = logging.getLogger("env_state_runner.console")
        if not log.handlers:
            handler = logging.StreamHandler(stream or sys.stdout)
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(message)s"))
            log.addHandler(handler)
        log.setLevel(logging.DEBUG if verbose else logging.INFO)
        # Kept off the root logger so the run log does not record events twice
        log.propagate = False
        return LoggingEventSink(log)
    if style == "json":
        return JsonEventSink(stream=stream)
    raise ValueError(f"Unknown output style: {style}")
