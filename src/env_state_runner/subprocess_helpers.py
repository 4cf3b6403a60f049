"""Platform-agnostic subprocess helpers for Windows/Linux/macOS compatibility.

This module centralizes platform-specific subprocess logic: turning an action
into a structured command descriptor, running it with an optional timeout, and
spawning detached processes.
"""

from __future__ import annotations

import logging
import os
import platform
import shlex
import subprocess
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .models import ActionSpec, LaunchMode
from .utils import resolve_alias

logger = logging.getLogger(__name__)


def is_windows() -> bool:
    return platform.system() == "Windows"


def format_command_string(command: list[str] | tuple[str, ...]) -> str:
    """Format command as a properly quoted string for the current platform.

    Uses platform-specific quoting rules:
    - Windows: subprocess.list2cmdline() for cmd.exe/PowerShell compatibility
    - Linux/macOS: shlex.join() for POSIX shell compatibility

    Args:
        command: Command as list or tuple

    Returns:
        Properly quoted command string suitable for display
    """
    if is_windows():
        return subprocess.list2cmdline(command)
    return shlex.join(command)


def split_command(command: str) -> list[str]:
    """Split a command line into argv using the platform's quoting rules.

    Raises:
        ValueError: If the command has unbalanced quotes
    """
    return shlex.split(command, posix=not is_windows())


@dataclass(frozen=True)
class CommandDescriptor:
    """Structured command ready to be spawned."""

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    detached: bool = False

    def to_list(self) -> list[str]:
        return list(self.argv)

    def display(self) -> str:
        return format_command_string(self.to_list())


@dataclass
class CommandOutcome:
    """Result of running (or spawning) a command."""

    exit_code: int | None
    output: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0
    pid: int | None = None


def _application_shell_argv(command: str) -> list[str] | None:
    """Wrap an application path so the OS opener resolves and launches it.

    Returns None where no opener exists; the path is then executed directly.
    """
    system = platform.system()
    if system == "Windows":
        # Empty title argument so a quoted path is not taken as the window title
        return ["cmd", "/c", "start", "", command]
    if system == "Darwin":
        return ["open", command]
    return None


def build_descriptor(
    action: ActionSpec,
    aliases: Mapping[str, str] | None = None,
) -> CommandDescriptor:
    """Build the command descriptor for an action.

    The leading token is rewritten through the alias table, then the launch
    mode decides how the process is wrapped.

    Inline launches and the Windows/macOS application openers run inside a
    scoped working directory change, so only detached launches carry their
    own cwd. On other platforms an application path is started directly as a
    detached process.

    Args:
        action: Action to build a command for
        aliases: Runtime alias table (leading token -> replacement)

    Returns:
        CommandDescriptor for the action

    Raises:
        ValueError: If the command cannot be tokenized
    """
    aliases = aliases or {}

    if action.launch_mode is LaunchMode.APPLICATION_SHELL:
        opener = _application_shell_argv(action.command)
        if opener is not None:
            return CommandDescriptor(argv=tuple(opener))
        # Path is a single argv entry and the launch returns immediately
        return CommandDescriptor(
            argv=(action.command,), cwd=action.working_directory, detached=True
        )

    argv = resolve_alias(split_command(action.command), aliases)
    if not argv:
        raise ValueError(f"Empty command: {action.command!r}")

    if action.launch_mode is LaunchMode.NEW_WINDOW:
        return CommandDescriptor(argv=tuple(argv), cwd=action.working_directory, detached=True)
    return CommandDescriptor(argv=tuple(argv))


@contextmanager
def working_directory(path: Path | str | None) -> Iterator[None]:
    """Temporarily change the process working directory.

    The previous directory is restored on exit, including when the body
    raises. A None path leaves the working directory untouched.
    """
    if path is None:
        yield
        return

    previous = os.getcwd()
    os.chdir(path)
    logger.debug(f"Changed working directory to {path}")
    try:
        yield
    finally:
        os.chdir(previous)
        logger.debug(f"Restored working directory to {previous}")


def run_command(
    descriptor: CommandDescriptor,
    *,
    timeout: int | None = None,
) -> CommandOutcome:
    """Run a command to completion, merging stderr into stdout.

    With a positive timeout the child is terminated and joined once the
    deadline passes, and the outcome is flagged as timed out.

    Args:
        descriptor: Command to run
        timeout: Timeout in seconds (None or 0 = wait indefinitely)

    Returns:
        CommandOutcome with exit code and combined output

    Raises:
        OSError: If the executable cannot be spawned
    """
    start = time.monotonic()
    process = subprocess.Popen(
        descriptor.to_list(),
        cwd=descriptor.cwd,
        env=dict(descriptor.env) if descriptor.env is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
    )

    try:
        output, _ = process.communicate(timeout=timeout or None)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {process.pid} exceeded {timeout}s timeout, terminating")
        safe_terminate_process(process)
        # Join the child and drain whatever it wrote before being killed
        try:
            output, _ = process.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            # A grandchild still holds the pipe open
            logger.warning(f"Output pipe of process {process.pid} did not close")
            if process.stdout:
                process.stdout.close()
            output = ""
        return CommandOutcome(
            exit_code=process.returncode,
            output=output or "",
            timed_out=True,
            duration_seconds=time.monotonic() - start,
            pid=process.pid,
        )

    return CommandOutcome(
        exit_code=process.returncode,
        output=output or "",
        duration_seconds=time.monotonic() - start,
        pid=process.pid,
    )


def spawn_detached(descriptor: CommandDescriptor) -> CommandOutcome:
    """Start a command as an independent process and return immediately.

    On Windows the process gets its own console window; on POSIX it is placed
    in a new session so it outlives this run.

    Raises:
        OSError: If the executable cannot be spawned
    """
    kwargs: dict[str, Any] = {}
    if is_windows():
        kwargs["creationflags"] = subprocess.CREATE_NEW_CONSOLE  # type: ignore[attr-defined]
    else:
        kwargs["start_new_session"] = True

    start = time.monotonic()
    process = subprocess.Popen(
        descriptor.to_list(),
        cwd=descriptor.cwd,
        env=dict(descriptor.env) if descriptor.env is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        **kwargs,
    )
    logger.info(f"Spawned detached process {process.pid}: {descriptor.display()}")
    return CommandOutcome(
        exit_code=None,
        output=f"Started process {process.pid}",
        duration_seconds=time.monotonic() - start,
        pid=process.pid,
    )


def safe_terminate_process(process: subprocess.Popen[Any], timeout: int = 5) -> None:
    """Safely terminate a subprocess with graceful fallback to kill.

    Args:
        process: The subprocess to terminate
        timeout: Seconds to wait for graceful termination before force kill
    """
    try:
        process.terminate()
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {process.pid} did not terminate gracefully, forcing kill")
        try:
            process.kill()
            process.wait(timeout=2)
        except Exception as e:
            logger.error(f"Failed to kill process {process.pid}: {e}")
    except Exception as e:
        logger.error(f"Error terminating process {process.pid}: {e}")
