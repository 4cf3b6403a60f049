"""CLI entry point for bringing an environment to a target state.

This module handles command-line argument parsing, logging setup, event sink
selection, and mapping run results to process exit codes.
"""

from __future__ import annotations

import argparse
import json
import logging
import logging.handlers
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import default_config_path, load_config
from .events import SINK_STYLES, CompositeEventSink, LoggingEventSink, create_event_sink
from .exceptions import ConfigError
from .executor import ActionExecutor
from .models import StatesConfig
from .orchestrator import StateOrchestrator
from .prober import ReadinessProber

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

DEFAULT_LOG_FILE = Path("logs") / "env-state-runner.log"


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log line
        """
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "event": record.getMessage(),
            "context": {
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
            },
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_context"):
            log_data["context"].update(record.extra_context)

        return json.dumps(log_data)


def _setup_logging(log_file: Path, debug: bool) -> None:
    """Setup structured JSON logging to file.

    Args:
        log_file: Path to log file
        debug: Enable debug level logging
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Rotating file handler (10MB max, 3 backups)
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONFormatter())
    file_handler.setLevel(logging.DEBUG if debug else logging.INFO)

    root_logger.addHandler(file_handler)

    logger.info(
        "Logging initialized",
        extra={"extra_context": {"log_file": str(log_file), "debug": debug}},
    )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="env-state-runner",
        description="Bring a local development environment to a target ready state.",
    )
    parser.add_argument(
        "target",
        nargs="?",
        help="State to bring to ready (default: 'target' from the config).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the states YAML file (default: $ENV_STATE_CONFIG or ./states.yml).",
    )
    parser.add_argument(
        "--style",
        choices=SINK_STYLES,
        default="rich",
        help="Console output style (default: rich).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show every readiness polling attempt.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=DEFAULT_LOG_FILE,
        help=f"Path to the run log (default: {DEFAULT_LOG_FILE}).",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List declared states and exit.",
    )
    return parser.parse_args(argv)


def _print_states(config: StatesConfig, console: Console) -> None:
    """Render the declared states with their dependencies."""
    table = Table(title=f"States in {config.source}" if config.source else "States")
    table.add_column("State", style="bold")
    table.add_column("Needs")
    table.add_column("Actions", justify="right")
    table.add_column("Readiness")

    for name, declaration in config.states.items():
        readiness = declaration.readiness
        probes = []
        if readiness is not None:
            if readiness.has_pre_check:
                probes.append("check")
            if readiness.has_wait:
                probes.append("wait")
        marker = " [yellow](default)[/yellow]" if name == config.target else ""
        table.add_row(
            f"{escape(name)}{marker}",
            escape(", ".join(declaration.needs)) or "-",
            str(len(declaration.actions)),
            ", ".join(probes) or "-",
        )
    console.print(table)


def build_orchestrator(config: StatesConfig, sink) -> StateOrchestrator:
    """Wire executor, prober and sink for a loaded configuration."""
    executor = ActionExecutor(config.aliases)
    prober = ReadinessProber(executor)
    return StateOrchestrator(config.states, executor=executor, prober=prober, sink=sink)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code: 0 target ready, 1 target failed, 2 fatal error, 130 interrupted
    """
    args = _parse_args(argv)
    console = Console()

    try:
        _setup_logging(args.log_file, args.debug)
    except OSError as err:
        console.print(
            f"[red]Fatal: cannot open log file {escape(str(args.log_file))}: "
            f"{escape(str(err))}[/red]"
        )
        return EXIT_FATAL

    sink = CompositeEventSink(
        [create_event_sink(args.style, console=console, verbose=args.verbose), LoggingEventSink()]
    )

    config_path = args.config or default_config_path()
    try:
        config = load_config(config_path)
    except ConfigError as err:
        logger.error(
            "Config load failed",
            extra={"extra_context": {"config": str(config_path), "error": str(err)}},
        )
        sink.fatal_error(str(err))
        return EXIT_FATAL

    if args.list:
        _print_states(config, console)
        return EXIT_SUCCESS

    target = args.target or config.target
    if not target:
        sink.fatal_error("No target state given and the configuration declares no default target")
        return EXIT_FATAL

    logger.info(
        "Run started",
        extra={"extra_context": {"target": target, "config": str(config_path)}},
    )

    try:
        orchestrator = build_orchestrator(config, sink)
        summary = orchestrator.run(target)
    except KeyboardInterrupt:
        logger.info("Run interrupted by user (KeyboardInterrupt)")
        console.print("\n[red]Aborted by user.[/red]")
        return EXIT_INTERRUPTED
    except Exception as err:
        logger.error(
            "Run crashed with unhandled exception",
            extra={"extra_context": {"error": str(err)}},
            exc_info=True,
        )
        sink.fatal_error(f"{type(err).__name__}: {err}")
        console.print(f"[dim]Check logs at: {escape(str(args.log_file))}[/dim]")
        return EXIT_FATAL

    logger.info(
        "Run finished",
        extra={"extra_context": {"target": target, "success": summary.success}},
    )
    return EXIT_SUCCESS if summary.success else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
