"""Tests for YAML configuration loading."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from env_state_runner.config import default_config_path, load_config, parse_config
from env_state_runner.exceptions import ConfigError
from env_state_runner.models import ActionType, LaunchMode

SAMPLE_CONFIG = textwrap.dedent(
    """
    target: nodeReady
    aliases:
      pm: pnpm
    states:
      dockerStartup:
        readiness:
          checkCommand: docker info
          waitCommand: docker info
        actions:
          - type: application
            path: 'C:\\Program Files\\Docker\\Docker\\Docker Desktop.exe'
            description: "Starting Docker Desktop"

      dockerReady:
        needs: [dockerStartup]
        readiness:
          checkCommand: docker info
        actions:
          - type: command
            command: docker start postgres
          - docker start rabbitmq

      apiReady:
        needs: [dockerReady]
        readiness:
          checkEndpoint: "https://localhost:5001/healthcheck"
          waitEndpoint: "https://localhost:5001/healthcheck"
          maxRetries: 10
          retryInterval: 3
        actions:
          - type: command
            command: dotnet run
            workingDirectory: "/srv/identity/api"
            newWindow: true
            description: "Starting Identity API"

      nodeReady:
        needs: [apiReady]
        actions:
          - type: command
            command: npm install
            workingDirectory: "/srv/identity/spa"
            timeout: 300
    """
)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "states.yml"
    path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for load_config on a realistic document."""

    def test_loads_all_states_in_order(self, config_file: Path) -> None:
        config = load_config(config_file)
        assert list(config.states) == ["dockerStartup", "dockerReady", "apiReady", "nodeReady"]
        assert config.target == "nodeReady"
        assert config.aliases == {"pm": "pnpm"}
        assert config.source == config_file

    def test_application_action(self, config_file: Path) -> None:
        state = load_config(config_file).states["dockerStartup"]
        action = state.actions[0]
        assert action.type is ActionType.APPLICATION
        assert action.command.endswith("Docker Desktop.exe")
        assert action.launch_mode is LaunchMode.APPLICATION_SHELL
        assert action.description == "Starting Docker Desktop"
        assert state.readiness.check_command == "docker info"
        assert state.readiness.wait_command == "docker info"

    def test_legacy_string_action(self, config_file: Path) -> None:
        state = load_config(config_file).states["dockerReady"]
        assert state.needs == ("dockerStartup",)
        assert [a.type for a in state.actions] == [ActionType.COMMAND, ActionType.LEGACY]
        assert state.actions[1].command == "docker start rabbitmq"
        assert state.actions[1].launch_mode is LaunchMode.INLINE

    def test_new_window_and_polling_parameters(self, config_file: Path) -> None:
        state = load_config(config_file).states["apiReady"]
        action = state.actions[0]
        assert action.launch_mode is LaunchMode.NEW_WINDOW
        assert action.working_directory == Path("/srv/identity/api")
        readiness = state.readiness
        assert readiness.check_endpoint == "https://localhost:5001/healthcheck"
        assert readiness.max_retries == 10
        assert readiness.retry_interval_seconds == 3
        assert readiness.successful_retries_required == 1
        assert readiness.max_time_seconds == 30

    def test_timeout_and_missing_readiness(self, config_file: Path) -> None:
        state = load_config(config_file).states["nodeReady"]
        assert state.readiness is None
        assert state.actions[0].timeout == 300

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.yml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yml"
        path.write_text("states: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)


class TestParseConfigErrors:
    """Structural violations raise ConfigError naming the problem."""

    def test_document_must_be_mapping(self) -> None:
        with pytest.raises(ConfigError):
            parse_config(["not", "a", "mapping"])

    def test_states_required(self) -> None:
        with pytest.raises(ConfigError, match="at least one state"):
            parse_config({"target": "x"})

    def test_unknown_action_type(self) -> None:
        payload = {"states": {"a": {"actions": [{"type": "script", "command": "x"}]}}}
        with pytest.raises(ConfigError, match="unknown action type 'script'"):
            parse_config(payload)

    def test_command_action_requires_command(self) -> None:
        payload = {"states": {"a": {"actions": [{"type": "command"}]}}}
        with pytest.raises(ConfigError, match="requires 'command'"):
            parse_config(payload)

    def test_application_action_requires_path(self) -> None:
        payload = {"states": {"a": {"actions": [{"type": "application"}]}}}
        with pytest.raises(ConfigError, match="requires 'path'"):
            parse_config(payload)

    def test_negative_retry_count(self) -> None:
        payload = {"states": {"a": {"readiness": {"waitCommand": "x", "maxRetries": -1}}}}
        with pytest.raises(ConfigError, match="must not be negative"):
            parse_config(payload)

    def test_non_numeric_timeout(self) -> None:
        payload = {"states": {"a": {"actions": [{"command": "x", "timeout": "soon"}]}}}
        with pytest.raises(ConfigError, match="must be a number"):
            parse_config(payload)

    def test_needs_must_be_list(self) -> None:
        payload = {"states": {"a": {"needs": {"b": 1}, "actions": ["x"]}}}
        with pytest.raises(ConfigError, match="needs must be a list"):
            parse_config(payload)

    def test_unknown_default_target(self) -> None:
        payload = {"target": "missing", "states": {"a": {"actions": ["x"]}}}
        with pytest.raises(ConfigError, match="not a declared state"):
            parse_config(payload)

    def test_unknown_launch_mode(self) -> None:
        payload = {"states": {"a": {"actions": [{"command": "x", "launchMode": "teleport"}]}}}
        with pytest.raises(ConfigError, match="unknown launchMode"):
            parse_config(payload)


def test_undeclared_dependency_is_accepted_at_load_time() -> None:
    config = parse_config({"states": {"a": {"needs": ["ghost"], "actions": ["echo ok"]}}})
    assert config.states["a"].needs == ("ghost",)


def test_state_without_actions_or_readiness_loads() -> None:
    config = parse_config({"states": {"empty": None}})
    assert not config.states["empty"].is_valid()


def test_explicit_launch_mode() -> None:
    payload = {"states": {"a": {"actions": [{"command": "code .", "launchMode": "detached"}]}}}
    assert parse_config(payload).states["a"].actions[0].launch_mode is LaunchMode.NEW_WINDOW


def test_default_config_path_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ENV_STATE_CONFIG", str(tmp_path / "custom.yml"))
    assert default_config_path() == tmp_path / "custom.yml"


def test_default_config_path_cwd(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("ENV_STATE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    assert default_config_path() == Path.cwd() / "states.yml"


def test_verify_tls_flag() -> None:
    payload = {"states": {"a": {"readiness": {"checkEndpoint": "https://x", "verifyTls": True}}}}
    assert parse_config(payload).states["a"].readiness.verify_tls is True


def test_verify_tls_rejects_quoted_string() -> None:
    payload = {"states": {"a": {"readiness": {"checkEndpoint": "https://x", "verifyTls": "false"}}}}
    with pytest.raises(ConfigError, match="verifyTls must be true or false"):
        parse_config(payload)
