"""Tests for configuration validation and the entry point."""

import signal
from types import SimpleNamespace

import pytest

from stash_agent import main as entry
from stash_agent.config import Config


@pytest.fixture
def valid_config(monkeypatch):
    monkeypatch.setattr(Config, "STASH_API_KEY", "platform-key")
    monkeypatch.setattr(Config, "GEMINI_API_KEY", "gemini-key")
    monkeypatch.setattr(Config, "LOG_FILE", None)
    monkeypatch.setattr(Config, "HISTORY_DB_PATH", None)


def test_validate_accepts_defaults_with_keys(valid_config):
    is_valid, errors = Config.validate()

    assert is_valid
    assert errors == []


def test_validate_reports_missing_keys(monkeypatch):
    monkeypatch.setattr(Config, "STASH_API_KEY", None)
    monkeypatch.setattr(Config, "GEMINI_API_KEY", "")

    is_valid, errors = Config.validate()

    assert not is_valid
    assert "STASH_API_KEY is required but not set" in errors
    assert "GEMINI_API_KEY is required but not set" in errors


@pytest.mark.parametrize(
    "name, value",
    [
        ("STAKE_AMOUNT", 0),
        ("EXPECTED_SELECTIONS", 0),
        ("HISTORY_WINDOW", -1),
        ("FORECAST_MAX_WORKERS", 0),
        ("PIPELINE_MAX_WORKERS", 0),
        ("HEARTBEAT_INTERVAL_SECONDS", 0),
        ("GEMINI_TEMPERATURE", 3.0),
        ("AGENT_USERNAME", "  "),
    ],
)
def test_validate_rejects_out_of_range_values(valid_config, monkeypatch, name, value):
    monkeypatch.setattr(Config, name, value)

    is_valid, errors = Config.validate()

    assert not is_valid
    assert any(name in error for error in errors)


def test_ensure_directories_creates_parents(valid_config, monkeypatch, tmp_path):
    monkeypatch.setattr(Config, "HISTORY_DB_PATH", tmp_path / "data" / "history.db")
    monkeypatch.setattr(Config, "LOG_FILE", tmp_path / "logs" / "agent.log")

    Config.ensure_directories()

    assert (tmp_path / "data").is_dir()
    assert (tmp_path / "logs").is_dir()


def test_check_config_exit_codes(valid_config, monkeypatch, capsys):
    assert entry.main(["--check-config"]) == 0
    assert "Configuration OK" in capsys.readouterr().out

    monkeypatch.setattr(Config, "GEMINI_API_KEY", None)
    assert entry.main(["--check-config"]) == 1


def test_history_flag_requires_database(valid_config):
    assert entry.main(["--history"]) == 1


class FakeLobbyConnection:
    def __init__(self, on_message, on_disconnect, deliver):
        self.deliver = deliver
        self.stopped = False

    def start(self):
        self.deliver()

    def stop(self):
        self.stopped = True


def _run_with_signal(monkeypatch, signum):
    handlers = {}
    connections = []

    def deliver():
        handlers[signum](signum, None)

    def make_connection(on_message, on_disconnect):
        connection = FakeLobbyConnection(on_message, on_disconnect, deliver)
        connections.append(connection)
        return connection

    monkeypatch.setattr(entry.signal, "signal", lambda sig, handler: handlers.__setitem__(sig, handler))
    monkeypatch.setattr(
        entry,
        "build_handler",
        lambda executor: SimpleNamespace(
            username="agent",
            handle_message=lambda raw: None,
            on_connection_lost=lambda: None,
        ),
    )
    monkeypatch.setattr(entry, "LobbyConnection", make_connection)

    code = entry._run_agent()

    assert connections[0].stopped
    return code


def test_interrupt_signal_exits_with_130(valid_config, monkeypatch):
    assert _run_with_signal(monkeypatch, signal.SIGINT) == 130


def test_terminate_signal_exits_cleanly(valid_config, monkeypatch):
    assert _run_with_signal(monkeypatch, signal.SIGTERM) == 0
