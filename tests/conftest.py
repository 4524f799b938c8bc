"""
Pytest configuration for ac_remote_core tests.

- Ensures the repository root is on sys.path so `import ac_remote_core`
  resolves to the working tree.
- Provides the fake broker/transport/timer fixtures used across suites.
"""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = str(Path(__file__).resolve().parent.parent)
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


_ensure_repo_root_on_syspath()

from ac_remote_core.config import ControllerConfig  # noqa: E402
from ac_remote_core.controller import ConnectionController  # noqa: E402
from tests.helpers.fakes import (  # noqa: E402
    FakeBroker,
    FakeTimerFactory,
    FakeTransport,
    StatusRecorder,
)


def pytest_configure(config):  # noqa: D401
    """Keep tests away from real option files and brokers."""
    os.environ.setdefault("OPTIONS_PATH", "/nonexistent/options.json")
    os.environ.setdefault("MQTT_HOST", "127.0.0.1")


@pytest.fixture
def caplog_level(caplog):
    # The package logger does not propagate by default; let caplog see it.
    pkg = logging.getLogger("ac_remote_core")
    old = pkg.propagate
    pkg.propagate = True
    caplog.set_level(logging.DEBUG, logger="ac_remote_core")
    yield caplog
    pkg.propagate = old


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def transport(broker):
    return FakeTransport(broker=broker)


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def recorder():
    return StatusRecorder()


@pytest.fixture
def config():
    return ControllerConfig(device_ready_timeout_s=10.0)


@pytest.fixture
def controller(config, transport, timers, recorder):
    ctl = ConnectionController(config, transport, timer_factory=timers)
    assert ctl.init(recorder.on_data, recorder) is True
    return ctl
