"""Command-line entrypoint: bring one device link up, optionally send a command.

Exit codes: 0 fully connected (and command sent), 2 broker connection failed
or transport unavailable, 3 device never confirmed, 4 command publish failed.
"""

from __future__ import annotations

import argparse
import contextlib
import json
import signal
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .ble_confirm import confirm_via_ble
from .config import ControllerConfig, load_controller_config
from .controller import ConnectionController
from .logging_setup import logger, setup_logging
from .types import StatusMessage

EXIT_OK = 0
EXIT_BROKER_FAILED = 2
EXIT_DEVICE_UNCONFIRMED = 3
EXIT_PUBLISH_FAILED = 4

_FAILURE_PREFIXES = (
    StatusMessage.CONNECTION_FAILED,
    StatusMessage.CONNECTION_ERROR,
    StatusMessage.TRANSPORT_UNAVAILABLE,
)


def _json_arg(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"not valid JSON: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ac-remote-link",
        description="Connect to the broker and wait for the AC remote device to report ready.",
    )
    p.add_argument("--config", help="YAML config file (overrides CONFIG_PATH discovery)")
    p.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="seconds to wait for the device to be fully connected (default 15)",
    )
    p.add_argument("--command", type=_json_arg, help="JSON command to publish once connected")
    p.add_argument(
        "--ble-confirm",
        action="store_true",
        help="confirm readiness by BLE scan if the broker is up but the device is silent",
    )
    p.add_argument("--stay", action="store_true", help="keep running until SIGINT/SIGTERM")
    p.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    return p


class _LinkWatcher:
    """Collects status callbacks into thread-safe flags for the CLI loop."""

    def __init__(self, echo: Callable[[str], None] = print) -> None:
        self.echo = echo
        self.changed = threading.Event()
        self.failed = threading.Event()
        self.fully = threading.Event()

    def on_status(self, broker: bool, device: bool, message: str) -> None:
        self.echo(f"[status] broker={broker} device={device} {message}")
        if broker and device:
            self.fully.set()
        else:
            self.fully.clear()
        if message.startswith(_FAILURE_PREFIXES):
            self.failed.set()
        self.changed.set()

    def on_data(self, payload: str) -> None:
        self.echo(f"[data] {payload}")


def _wait_until_stopped() -> None:
    stop_evt = threading.Event()

    def _on_signal(signum: int, _frame: object) -> None:
        logger.info({"event": "signal_received", "signum": signum})
        stop_evt.set()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)
    while not stop_evt.wait(1.0):
        pass


def run(
    args: argparse.Namespace,
    config: ControllerConfig,
    controller_factory: Callable[[ControllerConfig], ConnectionController] = ConnectionController,
    echo: Callable[[str], None] = print,
    wait_for_signal: Callable[[], None] = _wait_until_stopped,
) -> int:
    controller = controller_factory(config)
    watcher = _LinkWatcher(echo)
    if not controller.init(watcher.on_data, watcher.on_status):
        return EXIT_BROKER_FAILED

    try:
        controller.connect()
        deadline = time.monotonic() + max(args.timeout, 0.0)
        ble_tried = False
        while not watcher.fully.is_set() and not watcher.failed.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if args.ble_confirm and not ble_tried and controller.is_broker_connected():
                ble_tried = True
                confirm_via_ble(controller, config)
                continue
            watcher.changed.wait(min(remaining, 0.25))
            watcher.changed.clear()

        if not controller.is_broker_connected():
            logger.error({"event": "cli_broker_unavailable", "status": controller.get_status().as_dict()})
            return EXIT_BROKER_FAILED

        rc = EXIT_OK if controller.is_fully_connected() else EXIT_DEVICE_UNCONFIRMED
        if rc == EXIT_DEVICE_UNCONFIRMED:
            logger.warning({"event": "cli_device_unconfirmed", "timeout_s": args.timeout})
        if args.command is not None and not controller.publish(args.command):
            return EXIT_PUBLISH_FAILED

        if args.stay:
            logger.info({"event": "cli_stay", "status": controller.get_status().as_dict()})
            wait_for_signal()
        return rc
    finally:
        controller.disconnect()
        for h in getattr(logger, "handlers", []):
            with contextlib.suppress(OSError, ValueError):
                h.flush()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    yaml_paths = [Path(args.config)] if args.config else None
    config = load_controller_config(yaml_paths=yaml_paths)
    setup_logging(args.log_level or config.log_level, config.log_path)
    logger.info({"event": "cli_start", "config": config.as_dict()})
    try:
        return run(args, config)
    except Exception:
        logger.exception({"event": "cli_fatal"})
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
