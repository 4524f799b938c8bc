import json
import logging
import os
import pathlib
import re
import sys
import tempfile

# Expanded redaction pattern
REDACT = re.compile(
    r"(?i)[\"']?\b(pass(word)?|token|apikey|api_key|secret|bearer)\b[\"']?\s*[:=]\s*[\"']?([^\"',\s]+)[\"']?"
)


def redact(s: str) -> str:
    return REDACT.sub(lambda m: f"{m.group(1)}=***REDACTED***", s)


class JsonRedactingHandler(logging.StreamHandler):
    """Write dict messages as one JSON line, everything else as text.

    Secrets matching ``REDACT`` are scrubbed from the rendered line.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = record.msg
            if isinstance(msg, dict):
                line = json.dumps(msg, default=str)
            else:
                line = record.getMessage()
            line = redact(line)
            stream = self.stream if hasattr(self, "stream") else sys.stdout
            stream.write(line + "\n")
            self.flush()
        except Exception:
            self.handleError(record)


LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Package logger plus the two channel loggers. Children without handlers
# propagate to the package logger.
logger = logging.getLogger("ac_remote_core")
transport_logger = logging.getLogger("ac_remote_core.transport")
ble_logger = logging.getLogger("ac_remote_core.ble")


def get_log_level(override: str | None = None) -> int:
    """Resolve a numeric log level.

    Checks, in order: ``override``, LOG_LEVEL, AC_REMOTE_LOG_LEVEL; anything
    missing or unknown falls back to INFO.
    """
    lvl = override or os.environ.get("LOG_LEVEL") or os.environ.get(
        "AC_REMOTE_LOG_LEVEL"
    )
    if not lvl:
        return logging.INFO
    return LOG_LEVEL_MAP.get(str(lvl).strip().upper(), logging.INFO)


def _writable(path: str) -> bool:
    try:
        p = pathlib.Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "a"):
            pass
        return True
    except OSError:
        return False


def init_file_handler(path: str | None = None) -> logging.Handler:
    """
    Pref explicit path, then AC_REMOTE_LOG_PATH env, then the temp dir, then
    stderr. Emits one warning on fallback.
    """
    candidate = path or os.environ.get("AC_REMOTE_LOG_PATH")
    if candidate and _writable(candidate):
        return logging.FileHandler(candidate)
    tmp = os.path.join(tempfile.gettempdir(), "ac_remote_link.log")
    target = tmp if _writable(tmp) else None
    if candidate:
        logger.warning(
            {
                "event": "log_path_fallback",
                "requested": candidate,
                "target": target or "stderr",
            }
        )
    if target:
        return logging.FileHandler(target)
    return logging.StreamHandler()


def setup_logging(level: str | int | None = None, log_path: str | None = None):
    """(Re)initialize the package handlers.

    ``level`` may be a level name or a numeric level; when omitted the
    environment decides. With ``log_path`` a file handler is added as well.
    """
    numeric_level = level if isinstance(level, int) else get_log_level(level)
    logger.setLevel(numeric_level)
    # Deduplicate handlers on re-init
    logger.handlers.clear()
    handler = JsonRedactingHandler()
    handler.setLevel(numeric_level)
    logger.addHandler(handler)
    if log_path:
        fh = init_file_handler(log_path)
        fh.setLevel(numeric_level)
        fh.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s:%(name)s: %(message)s")
        )
        logger.addHandler(fh)
    logger.propagate = False
    return logger


# Attach the redacting handler on import; safe for runtime and tests
setup_logging()


__all__ = [
    "LOG_LEVEL_MAP",
    "JsonRedactingHandler",
    "ble_logger",
    "get_log_level",
    "init_file_handler",
    "logger",
    "redact",
    "setup_logging",
    "transport_logger",
]
