"""Tests for the command-line entry point."""

from __future__ import annotations

import json
import logging
import sys
import textwrap
from pathlib import Path

import pytest

from env_state_runner.cli import EXIT_FAILURE, EXIT_FATAL, EXIT_SUCCESS, main
from env_state_runner.events import EventSink

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")

CONFIG = textwrap.dedent(
    """
    target: app
    states:
      base:
        readiness:
          checkCommand: "true"
      app:
        needs: [base]
        actions:
          - type: command
            command: echo ok
            description: "Say ok"
      broken:
        needs: [base]
        actions:
          - "false"
    """
)


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Keep handlers installed by main() from leaking into other tests."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "states.yml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


def _args(config: Path, tmp_path: Path, *extra: str) -> list[str]:
    return ["--config", str(config), "--log-file", str(tmp_path / "logs" / "run.log"), *extra]


def _events(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


@posix_only
def test_default_target_succeeds(
    config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = main(_args(config_file, tmp_path, "--style", "json"))

    assert exit_code == EXIT_SUCCESS
    events = _events(capsys.readouterr().out)
    summary = events[-1]
    assert summary["event"] == "run_summary"
    assert summary["target"] == "app"
    assert summary["success"] is True
    assert [s["name"] for s in summary["states"]] == ["base", "app"]


@posix_only
def test_failed_target_exit_code(
    config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = main(_args(config_file, tmp_path, "broken", "--style", "json"))

    assert exit_code == EXIT_FAILURE
    summary = _events(capsys.readouterr().out)[-1]
    assert summary["failed_state"] == "broken"


@posix_only
def test_rich_output(config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_args(config_file, tmp_path)) == EXIT_SUCCESS
    output = capsys.readouterr().out
    assert "Say ok" in output
    assert "app is ready" in output


@posix_only
def test_run_log_is_json(config_file: Path, tmp_path: Path) -> None:
    main(_args(config_file, tmp_path, "--style", "json"))
    lines = (tmp_path / "logs" / "run.log").read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert any(r["event"] == "Run started" for r in records)
    assert all("level" in r for r in records)


def test_unknown_target_fails(config_file: Path, tmp_path: Path) -> None:
    assert main(_args(config_file, tmp_path, "ghost", "--style", "json")) == EXIT_FAILURE


def test_missing_config_is_fatal(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(_args(tmp_path / "missing.yml", tmp_path, "--style", "json"))

    assert exit_code == EXIT_FATAL
    events = _events(capsys.readouterr().out)
    assert events[-1]["event"] == "fatal_error"
    assert "not found" in events[-1]["message"]


def test_no_target_is_fatal(tmp_path: Path) -> None:
    config = tmp_path / "states.yml"
    config.write_text("states:\n  a:\n    actions: ['echo ok']\n", encoding="utf-8")
    assert main(_args(config, tmp_path, "--style", "json")) == EXIT_FATAL


def test_list_states(config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_args(config_file, tmp_path, "--list")) == EXIT_SUCCESS
    output = capsys.readouterr().out
    assert "base" in output
    assert "broken" in output
    assert "(default)" in output


def test_interrupt_returns_130(
    config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def interrupt(self, target):
        raise KeyboardInterrupt

    monkeypatch.setattr("env_state_runner.cli.StateOrchestrator.run", interrupt)
    assert main(_args(config_file, tmp_path, "--style", "json")) == 130


def test_failing_console_sink_still_exits_fatal(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    class BrokenSink(EventSink):
        def fatal_error(self, message):
            raise RuntimeError("console closed")

    monkeypatch.setattr("env_state_runner.cli.create_event_sink", lambda *a, **k: BrokenSink())
    assert main(_args(tmp_path / "missing.yml", tmp_path)) == EXIT_FATAL
