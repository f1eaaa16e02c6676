"""Tests for the tributary-server entry point."""

import os

import pytest
import uvicorn

from tributary.server_cli import main


@pytest.fixture
def uvicorn_calls(monkeypatch):
    calls = []
    monkeypatch.setenv("TRIBUTARY_LOCAL_MODE", "0")
    monkeypatch.setenv("TRIBUTARY_SCHEDULER_ENABLED", "1")
    monkeypatch.setenv("TRIBUTARY_LOG_LEVEL", "info")
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    return calls


def test_local_mode_without_scheduler(uvicorn_calls):
    main(["--local", "--no-scheduler", "--port", "9000"])

    assert uvicorn_calls == [("tributary.main:app", {"host": "0.0.0.0", "port": 9000, "log_level": "info"})]
    assert os.environ["TRIBUTARY_LOCAL_MODE"] == "1"
    assert os.environ["TRIBUTARY_SCHEDULER_ENABLED"] == "0"


def test_defaults_leave_environment_alone(uvicorn_calls):
    main(["--log-level", "debug"])

    assert uvicorn_calls[0][1]["log_level"] == "debug"
    assert os.environ["TRIBUTARY_LOCAL_MODE"] == "0"
    assert os.environ["TRIBUTARY_SCHEDULER_ENABLED"] == "1"
    assert os.environ["TRIBUTARY_LOG_LEVEL"] == "debug"


def test_rejects_unknown_log_level(uvicorn_calls):
    with pytest.raises(SystemExit):
        main(["--log-level", "loud"])
    assert uvicorn_calls == []
