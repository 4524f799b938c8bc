"""
controller.py

Connection-and-readiness state machine for one remote device on an MQTT bus.

Tracks two facts separately: whether the broker session is up, and whether
the device itself has announced readiness on its retained device-ready
topic. A single-shot watchdog bounds the wait for readiness; a retained
"offline" last will lets every subscriber see an ungraceful loss.

All host commands and all transport/timer events funnel through one
re-entrant lock and one event queue, so transitions never interleave.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from .config import ControllerConfig
from .errors import (
    ConnectFailure,
    ConnectionLost,
    PublishError,
    PublishNotConnected,
    TransportUnavailable,
)
from .events import (
    ConnectFailed,
    ConnectionDropped,
    ConnectSucceeded,
    ControllerEvent,
    MessageArrived,
    WatchdogExpired,
)
from .logging_setup import logger
from .mqtt_helpers import encode_payload
from .ports import LastWill, TimerFactory, Transport
from .types import (
    BROKER_STATES,
    CONNECTABLE_STATES,
    ConnectionState,
    ControllerStatus,
    DataCallback,
    StatusCallback,
    StatusMessage,
)
from .watchdog import Watchdog

State = ConnectionState


def _default_transport_factory(config: ControllerConfig) -> Transport:
    # Lazy import localizes the paho dependency to the default path.
    from .mqtt_transport import make_transport

    return make_transport(config)


class ConnectionController:
    """
    Host-facing controller for a single device.

    Construct once, call ``init`` with the host callbacks, then drive it with
    ``connect``/``disconnect``/``publish``. The instance is reused across
    reconnect attempts.
    """

    def __init__(
        self,
        config: ControllerConfig | None = None,
        transport: Transport | None = None,
        *,
        transport_factory: Callable[[ControllerConfig], Transport] | None = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.config = config or ControllerConfig()
        self._transport = transport
        self._transport_factory = transport_factory or _default_transport_factory

        self._lock = threading.RLock()
        self._pending: deque[ControllerEvent] = deque()
        self._draining = False

        self._state = State.IDLE
        self._broker_connected = False
        self._device_confirmed = False
        self._message = StatusMessage.NOT_CONNECTED
        self._disconnect_requested = False

        self._initialized = False
        self._unavailable = False

        self._on_data: DataCallback | None = None
        self._on_status: StatusCallback | None = None

        self._watchdog = Watchdog(
            self.config.device_ready_timeout_s,
            self._on_watchdog_expired,
            timer_factory=timer_factory,
        )

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------
    def init(
        self,
        on_data_received: DataCallback | None = None,
        on_connection_status_change: StatusCallback | None = None,
    ) -> bool:
        """Register host callbacks and acquire the transport.

        Returns False if the transport capability is unavailable; the
        controller is then disabled for its lifetime.
        """
        with self._serialized():
            if self._initialized:
                logger.info({"event": "controller_already_initialized"})
                return True
            if self._unavailable:
                logger.error({"event": "controller_disabled", "op": "init"})
                return False

            logger.info({"event": "controller_init"})
            self._on_data = on_data_received
            self._on_status = on_connection_status_change

            if self._transport is None:
                try:
                    self._transport = self._transport_factory(self.config)
                except Exception as exc:  # noqa: BLE001
                    err = (
                        exc
                        if isinstance(exc, TransportUnavailable)
                        else TransportUnavailable(str(exc))
                    )
                    self._unavailable = True
                    logger.error({"event": "transport_unavailable", "error": str(err)})
                    self._notify_only(f"{StatusMessage.TRANSPORT_UNAVAILABLE}: {err}")
                    return False

            self._transport.bind(self._submit)
            self._initialized = True
            return True

    def connect(self) -> None:
        """Request a broker session. No-op while connecting or connected."""
        with self._serialized():
            if not self._ready("connect"):
                return
            if self._state not in CONNECTABLE_STATES:
                logger.info(
                    {"event": "connect_ignored", "reason": "already connected or connecting",
                     "state": self._state.value}
                )
                return

            self._disconnect_requested = False
            self._set(State.CONNECTING, False, False, StatusMessage.CONNECTING)

            cfg = self.config
            will = LastWill(
                topic=cfg.ready_topic,
                payload=cfg.will_payload,
                qos=cfg.will_qos,
                retain=True,
            )
            logger.info(
                {
                    "event": "connect_requested",
                    "host": cfg.broker_host,
                    "port": cfg.broker_port,
                    "will_topic": will.topic,
                    "will_qos": will.qos,
                }
            )
            try:
                self._transport.connect(will)
            except Exception as exc:  # noqa: BLE001
                logger.error({"event": "connect_request_error", "error": str(exc)})
                self._set(
                    State.CONNECTION_ERROR,
                    False,
                    False,
                    f"{StatusMessage.CONNECTION_ERROR}: {exc}",
                )

    def disconnect(self) -> None:
        """Tear down subscriptions, the watchdog and the transport session."""
        with self._serialized():
            if not self._ready("disconnect"):
                return
            self._watchdog.disarm()
            state = self._state
            if state == State.IDLE or (
                state == State.DISCONNECTED and self._disconnect_requested
            ):
                logger.info({"event": "disconnect_ignored", "state": state.value})
                return

            logger.info({"event": "disconnect_requested", "state": state.value})
            self._disconnect_requested = True
            if state in BROKER_STATES:
                for topic in (self.config.status_topic, self.config.ready_topic):
                    try:
                        self._transport.unsubscribe(topic)
                    except Exception as exc:  # noqa: BLE001
                        logger.warning(
                            {"event": "unsubscribe_failed", "topic": topic,
                             "error": str(exc)}
                        )
            self._teardown_transport()
            self._set(State.DISCONNECTED, False, False, StatusMessage.DISCONNECTED)

    def publish(self, command: Any) -> bool:
        """Send one command to the device. True if handed to the transport."""
        with self._serialized():
            if not self._ready("publish"):
                return False
            if not self._broker_connected:
                err = PublishNotConnected(
                    "no broker session", topic=self.config.command_topic
                )
                logger.error(
                    {"event": "publish_not_connected", "error": str(err),
                     "kind": type(err).__name__, "state": self._state.value}
                )
                return False

            topic = self.config.command_topic
            try:
                data = encode_payload(command)
            except PublishError as exc:
                logger.error({"event": "publish_encode_error", "error": str(exc)})
                self._notify_only(f"{StatusMessage.PUBLISH_FAILED}: {exc}")
                return False

            if not self._device_confirmed:
                logger.warning(
                    {"event": "publish_unconfirmed_device", "topic": topic,
                     "state": self._state.value}
                )
                self._notify_only(StatusMessage.PUBLISH_UNCONFIRMED)

            try:
                self._transport.publish(
                    topic, data, qos=self.config.command_qos, retain=False
                )
            except Exception as exc:  # noqa: BLE001
                logger.error({"event": "publish_error", "topic": topic, "error": str(exc)})
                self._notify_only(f"{StatusMessage.PUBLISH_FAILED}: {exc}")
                return False

            logger.debug({"event": "published", "topic": topic, "bytes": len(data)})
            return True

    def force_device_online_confirmation(self) -> bool:
        """Mark the device ready from an out-of-band source (e.g. BLE).

        Only applies while the broker is connected and the device is not yet
        confirmed. Returns True if the confirmation was applied.
        """
        with self._serialized():
            if not self._ready("force_device_online_confirmation"):
                return False
            if not self._broker_connected or self._device_confirmed:
                logger.info(
                    {"event": "alt_confirmation_ignored", "state": self._state.value}
                )
                return False
            logger.info({"event": "device_online_confirmed_alt"})
            self._watchdog.disarm()
            self._set(State.FULLY_CONNECTED, True, True, StatusMessage.DEVICE_ONLINE_ALT)
            return True

    def is_broker_connected(self) -> bool:
        with self._lock:
            return self._broker_connected

    def is_fully_connected(self) -> bool:
        with self._lock:
            return self._broker_connected and self._device_confirmed

    def get_status(self) -> ControllerStatus:
        with self._lock:
            return ControllerStatus(
                state=self._state,
                broker_connected=self._broker_connected,
                device_confirmed=self._device_confirmed,
                message=self._message,
                client_id=getattr(self._transport, "client_id", None),
                watchdog_armed=self._watchdog.armed,
            )

    @property
    def state(self) -> ConnectionState:
        return self._state

    # ------------------------------------------------------------------
    # Serialized entry point
    # ------------------------------------------------------------------
    @contextmanager
    def _serialized(self) -> Iterator[None]:
        """Hold the controller lock; the outermost holder drains queued events."""
        with self._lock:
            if self._draining:
                yield
                return
            self._draining = True
            try:
                yield
                self._drain()
            finally:
                self._draining = False

    def _submit(self, event: ControllerEvent) -> None:
        """Event sink for the transport and the watchdog (any thread)."""
        with self._serialized():
            self._pending.append(event)

    def _drain(self) -> None:
        while self._pending:
            event = self._pending.popleft()
            try:
                self._handle(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    {"event": "event_handler_error", "type": type(event).__name__}
                )

    def _handle(self, event: ControllerEvent) -> None:
        if isinstance(event, ConnectSucceeded):
            self._on_connect_succeeded(event)
        elif isinstance(event, ConnectFailed):
            self._on_connect_failed(event)
        elif isinstance(event, ConnectionDropped):
            self._on_connection_dropped(event)
        elif isinstance(event, MessageArrived):
            self._on_message(event)
        elif isinstance(event, WatchdogExpired):
            self._on_watchdog_event(event)
        else:
            logger.warning({"event": "unknown_event", "type": type(event).__name__})

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _on_connect_succeeded(self, event: ConnectSucceeded) -> None:
        state = self._state
        resumed = (
            state == State.DISCONNECTED
            and not self._disconnect_requested
            and self.config.auto_reconnect
        )
        if state == State.CONNECTING or resumed:
            logger.info(
                {"event": "broker_connected", "resumed": resumed,
                 "session_present": event.session_present}
            )
            self._enter_awaiting_device(StatusMessage.AWAITING_DEVICE)
        elif state in BROKER_STATES:
            logger.debug({"event": "connect_success_duplicate", "state": state.value})
        else:
            # Late success after disconnect() or a reported failure.
            logger.warning({"event": "connect_success_stray", "state": state.value})
            self._teardown_transport()

    def _on_connect_failed(self, event: ConnectFailed) -> None:
        if self._state != State.CONNECTING:
            logger.debug(
                {"event": "connect_failure_ignored", "state": self._state.value,
                 "reason": event.reason}
            )
            return
        err = ConnectFailure(event.reason)
        logger.error(
            {"event": "connect_failed", "reason": event.reason,
             "kind": type(err).__name__}
        )
        self._set(
            State.CONNECTION_ERROR,
            False,
            False,
            f"{StatusMessage.CONNECTION_FAILED}: {event.reason}",
        )
        # Retry policy belongs to the host; stop any transport-level retry.
        self._teardown_transport()

    def _on_connection_dropped(self, event: ConnectionDropped) -> None:
        state = self._state
        if state in BROKER_STATES:
            self._watchdog.disarm()
            if event.clean or self._disconnect_requested:
                logger.info({"event": "connection_closed", "reason": event.reason})
                self._set(State.DISCONNECTED, False, False, StatusMessage.DISCONNECTED)
            else:
                err = ConnectionLost(event.reason)
                logger.warning(
                    {"event": "connection_lost", "reason": str(err),
                     "kind": type(err).__name__}
                )
                self._set(
                    State.DISCONNECTED, False, False, StatusMessage.CONNECTION_LOST
                )
        elif state == State.CONNECTING:
            logger.error({"event": "connect_dropped", "reason": event.reason})
            self._set(
                State.CONNECTION_ERROR,
                False,
                False,
                f"{StatusMessage.CONNECTION_FAILED}: {event.reason}",
            )
            self._teardown_transport()
        else:
            logger.debug(
                {"event": "connection_drop_ignored", "state": state.value,
                 "reason": event.reason}
            )

    def _on_message(self, event: MessageArrived) -> None:
        if self._state not in BROKER_STATES:
            logger.debug(
                {"event": "message_ignored", "topic": event.topic,
                 "state": self._state.value}
            )
            return
        logger.debug(
            {"event": "message_arrived", "topic": event.topic,
             "retained": event.retained}
        )
        if event.topic == self.config.ready_topic:
            self._on_ready_payload(event.payload)
        elif event.topic == self.config.status_topic:
            self._deliver_data(event.payload)
        else:
            logger.debug({"event": "message_unknown_topic", "topic": event.topic})

    def _on_ready_payload(self, payload: str) -> None:
        if payload == self.config.ready_online_payload:
            if self._device_confirmed:
                logger.debug({"event": "device_online_duplicate"})
                return
            logger.info({"event": "device_online"})
            self._watchdog.disarm()
            self._set(State.FULLY_CONNECTED, True, True, StatusMessage.DEVICE_ONLINE)
            return

        logger.info({"event": "device_offline", "payload": payload})
        if self._state == State.FULLY_CONNECTED:
            self._enter_awaiting_device(StatusMessage.DEVICE_OFFLINE)
        else:
            self._set(self._state, True, False, StatusMessage.DEVICE_OFFLINE)

    def _on_watchdog_event(self, event: WatchdogExpired) -> None:
        if self._ready_online_pending():
            # Confirmation in the same tick wins over the timeout.
            logger.debug({"event": "watchdog_superseded", "generation": event.generation})
            return
        if not self._watchdog.expired(event.generation):
            logger.debug({"event": "watchdog_stale", "generation": event.generation})
            return
        if self._state != State.BROKER_CONNECTED_AWAITING_DEVICE or self._device_confirmed:
            logger.debug({"event": "watchdog_ignored", "state": self._state.value})
            return
        logger.warning(
            {"event": "device_ready_timeout",
             "timeout_s": self.config.device_ready_timeout_s}
        )
        self._set(
            State.DEVICE_NOT_RESPONDING, True, False, StatusMessage.DEVICE_NOT_RESPONDING
        )

    def _on_watchdog_expired(self, generation: int) -> None:
        self._submit(WatchdogExpired(generation))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _enter_awaiting_device(self, message: str) -> None:
        if self._state not in BROKER_STATES:
            for topic in (self.config.status_topic, self.config.ready_topic):
                try:
                    self._transport.subscribe(topic, qos=self.config.subscribe_qos)
                    logger.info({"event": "subscribed", "topic": topic})
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        {"event": "subscription_failed", "topic": topic,
                         "error": str(exc)}
                    )
        self._watchdog.arm()
        self._set(State.BROKER_CONNECTED_AWAITING_DEVICE, True, False, message)

    def _ready_online_pending(self) -> bool:
        cfg = self.config
        return any(
            isinstance(ev, MessageArrived)
            and ev.topic == cfg.ready_topic
            and ev.payload == cfg.ready_online_payload
            for ev in self._pending
        )

    def _teardown_transport(self) -> None:
        try:
            self._transport.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.warning({"event": "transport_teardown_error", "error": str(exc)})

    def _ready(self, op: str) -> bool:
        if self._unavailable:
            logger.error({"event": "controller_disabled", "op": op})
            return False
        if not self._initialized:
            logger.error(
                {"event": "controller_not_initialized", "op": op,
                 "hint": "call init() first"}
            )
            return False
        return True

    def _set(self, state: ConnectionState, broker: bool, device: bool, message: str) -> None:
        previous = self._state
        self._state = state
        self._broker_connected = broker
        # Device confirmation never outlives the broker session.
        self._device_confirmed = device and broker
        self._message = message
        logger.info(
            {
                "event": "state_transition",
                "from": previous.value,
                "to": state.value,
                "broker": self._broker_connected,
                "device": self._device_confirmed,
                "message": message,
            }
        )
        self._notify_only(message)

    def _notify_only(self, message: str) -> None:
        cb = self._on_status
        if cb is None:
            return
        try:
            cb(self._broker_connected, self._device_confirmed, message)
        except Exception:  # noqa: BLE001
            logger.exception({"event": "status_callback_error", "message": message})

    def _deliver_data(self, payload: str) -> None:
        cb = self._on_data
        if cb is None:
            logger.debug({"event": "data_dropped_no_listener"})
            return
        try:
            cb(payload)
        except Exception:  # noqa: BLE001
            logger.exception({"event": "data_callback_error"})

    def __repr__(self) -> str:
        return (
            f"ConnectionController(state={self._state.value}, "
            f"broker={self._broker_connected}, device={self._device_confirmed})"
        )


__all__ = ["ConnectionController"]
