"""Shared helpers for output classification, runtime aliases and formatting."""

from __future__ import annotations

import platform
import shlex
from collections.abc import Mapping, Sequence
from datetime import timedelta

ERROR_PATTERNS: tuple[str, ...] = (
    "error",
    "not found",
    "unable",
    "fail",
    "failed",
    "no such file",
    "connection refused",
)

# Package-manager front-ends are .cmd shims on Windows and cannot be spawned
# without a shell under their bare name.
WINDOWS_ALIASES: dict[str, str] = {
    "npm": "npm.cmd",
    "npx": "npx.cmd",
    "yarn": "yarn.cmd",
    "pnpm": "pnpm.cmd",
}


def find_error_pattern(output: str | None) -> str | None:
    """Return the first error pattern found in command output.

    Matching is a case-insensitive substring search against ERROR_PATTERNS.

    Args:
        output: Combined stdout/stderr text (may be None)

    Returns:
        The matching pattern, or None if the output looks clean

    Examples:
        >>> find_error_pattern("dial tcp: Connection Refused")
        'connection refused'
        >>> find_error_pattern("ok") is None
        True
    """
    if not output:
        return None
    lowered = output.lower()
    # Longest first so the reported pattern is the most specific one
    for pattern in sorted(ERROR_PATTERNS, key=len, reverse=True):
        if pattern in lowered:
            return pattern
    return None


def has_error_output(output: str | None) -> bool:
    """Check whether output contains any of the known error patterns."""
    return find_error_pattern(output) is not None


def default_aliases() -> dict[str, str]:
    """Return the built-in alias table for the current platform."""
    if platform.system() == "Windows":
        return dict(WINDOWS_ALIASES)
    return {}


def build_alias_table(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Merge configured aliases over the platform defaults."""
    table = default_aliases()
    if overrides:
        table.update({str(key): str(value) for key, value in overrides.items()})
    return table


def resolve_alias(argv: Sequence[str], aliases: Mapping[str, str]) -> list[str]:
    """Rewrite the leading token of argv through the alias table.

    Alias values may hold several tokens (e.g. ``"npx --yes"``); they replace
    the leading token and the remaining arguments are kept. Tokens with no
    alias pass through unchanged.

    Examples:
        >>> resolve_alias(["pm", "install"], {"pm": "pnpm"})
        ['pnpm', 'install']
        >>> resolve_alias(["git", "status"], {"pm": "pnpm"})
        ['git', 'status']
    """
    if not argv:
        return []
    head, *rest = argv
    replacement = aliases.get(head)
    if replacement is None:
        return list(argv)
    return [*shlex.split(replacement), *rest]


def format_duration(seconds: float | None) -> str:
    """Format a duration for display.

    Durations under a minute keep one decimal place, longer ones use HH:MM:SS.

    Examples:
        >>> format_duration(1.234)
        '1.2s'
        >>> format_duration(3661)
        '01:01:01'
    """
    if seconds is None:
        return "-"
    if seconds < 0:
        seconds = 0
    if seconds < 60:
        return f"{seconds:.1f}s"

    total_seconds = int(timedelta(seconds=int(seconds)).total_seconds())
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def truncate_text(text: str, max_len: int) -> str:
    """Truncate text to max length, adding ellipsis if needed."""
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return "..."[:max_len]
    return text[: max_len - 3] + "..."
