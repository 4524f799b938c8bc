import io
import json
import logging

import pytest

from ac_remote_core import logging_setup
from ac_remote_core.logging_setup import (
    JsonRedactingHandler,
    get_log_level,
    init_file_handler,
    redact,
    setup_logging,
)
from tests.helpers.util import assert_contains_log


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    setup_logging("INFO")


def _record(msg, args=None):
    return logging.LogRecord("ac_remote_core", logging.INFO, __file__, 1, msg, args, None)


def test_redact_scrubs_secrets():
    out = redact("password=hunter2 token: abc123 host=broker")
    assert "hunter2" not in out
    assert "abc123" not in out
    assert "host=broker" in out


def test_dict_messages_render_as_json_line():
    buf = io.StringIO()
    h = JsonRedactingHandler(buf)
    h.emit(_record({"event": "connect_requested", "port": 8884}))
    line = buf.getvalue().strip()
    assert json.loads(line) == {"event": "connect_requested", "port": 8884}


def test_text_messages_are_formatted_and_redacted():
    buf = io.StringIO()
    h = JsonRedactingHandler(buf)
    h.emit(_record("login secret=%s", ("s3cr3t",)))
    assert "s3cr3t" not in buf.getvalue()
    assert "***REDACTED***" in buf.getvalue()


@pytest.mark.parametrize(
    "override,env,expected",
    [
        ("debug", None, logging.DEBUG),
        (None, "WARNING", logging.WARNING),
        (None, "bogus", logging.INFO),
        (None, None, logging.INFO),
    ],
)
def test_get_log_level(monkeypatch, override, env, expected):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("AC_REMOTE_LOG_LEVEL", raising=False)
    if env:
        monkeypatch.setenv("LOG_LEVEL", env)
    assert get_log_level(override) == expected


def test_setup_logging_does_not_duplicate_handlers():
    setup_logging("DEBUG")
    setup_logging("DEBUG")
    lg = logging.getLogger("ac_remote_core")
    assert len(lg.handlers) == 1
    assert lg.level == logging.DEBUG
    assert lg.propagate is False


def test_setup_logging_with_file(tmp_path):
    path = tmp_path / "link.log"
    lg = setup_logging("INFO", str(path))
    assert len(lg.handlers) == 2
    lg.info({"event": "file_check"})
    for h in lg.handlers:
        h.flush()
    assert "file_check" in path.read_text()


def test_init_file_handler_falls_back(monkeypatch, tmp_path):
    monkeypatch.setattr(logging_setup, "_writable", lambda p: str(p).startswith(str(tmp_path)))
    monkeypatch.setattr(logging_setup.tempfile, "gettempdir", lambda: str(tmp_path))
    h = init_file_handler("/proc/forbidden/link.log")
    try:
        assert isinstance(h, logging.FileHandler)
        assert h.baseFilename.endswith("ac_remote_link.log")
    finally:
        h.close()


def test_child_loggers_reach_package_handler(caplog_level):
    logging_setup.transport_logger.info({"event": "mqtt_connected"})
    assert_contains_log(caplog_level, "mqtt_connected")
