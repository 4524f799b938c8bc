"""
mqtt_transport.py

paho-mqtt implementation of the controller's Transport port.

One paho client per connect request; callbacks from a superseded client are
dropped so a late disconnect from an old session cannot reach the
controller. Network I/O runs on paho's own loop thread (``loop_start``).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from .config import ControllerConfig
from .errors import PublishError, SubscriptionFailure, TransportUnavailable
from .events import (
    ConnectFailed,
    ConnectionDropped,
    ConnectSucceeded,
    MessageArrived,
    TransportEvent,
)
from .logging_setup import transport_logger as logger
from .mqtt_helpers import decode_payload
from .ports import LastWill

REASONS = {
    0: "success",
    1: "unacceptable_protocol_version",
    2: "identifier_rejected",
    3: "server_unavailable",
    4: "bad_username_or_password",
    5: "not_authorized",
}


def _is_failure(reason_code: Any) -> bool:
    flag = getattr(reason_code, "is_failure", None)
    if flag is not None:
        return bool(flag)
    return reason_code != 0


def _reason_text(reason_code: Any) -> str:
    if isinstance(reason_code, int):
        return REASONS.get(reason_code, f"unknown_{reason_code}")
    return str(reason_code)


def new_client_id(prefix: str) -> str:
    """Prefix plus a millisecond timestamp."""
    return f"{prefix}{int(time.time() * 1000)}"


class PahoTransport:
    def __init__(self, config: ControllerConfig) -> None:
        self.config = config
        self._sink: Callable[[TransportEvent], None] | None = None
        self._lock = threading.Lock()
        self._client: mqtt.Client | None = None
        self.client_id: str | None = None
        # Build once up front so a broken TLS/websocket setup surfaces at init.
        self._client = self._build_client()
        self._fresh = True

    # ---- Transport port ----

    def bind(self, sink: Callable[[TransportEvent], None]) -> None:
        self._sink = sink

    def connect(self, will: LastWill) -> None:
        cfg = self.config
        with self._lock:
            old = self._client
            if old is not None and self._fresh:
                client = old
            else:
                if old is not None:
                    self._stop(old)
                client = self._build_client()
            self._client = client
            self._fresh = False

        client.will_set(will.topic, payload=will.payload, qos=will.qos, retain=will.retain)
        if cfg.auto_reconnect:
            client.reconnect_delay_set(min_delay=1, max_delay=30)
        logger.info(
            {
                "event": "mqtt_connect_attempt",
                "host": cfg.broker_host,
                "port": cfg.broker_port,
                "transport": cfg.transport,
                "tls": cfg.use_tls,
                "client_id": self.client_id,
                "user": bool(cfg.username),
            }
        )
        client.connect_async(cfg.broker_host, cfg.broker_port, cfg.keepalive)
        client.loop_start()

    def subscribe(self, topic: str, qos: int = 0) -> None:
        client = self._require_client(topic)
        try:
            result, _mid = client.subscribe(topic, qos=qos)
        except (ValueError, OSError) as exc:
            raise SubscriptionFailure(str(exc), topic=topic) from exc
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise SubscriptionFailure(
                f"subscribe rc={result} ({mqtt.error_string(result)})", topic=topic
            )

    def unsubscribe(self, topic: str) -> None:
        client = self._client
        if client is None:
            return
        result, _mid = client.unsubscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.debug({"event": "mqtt_unsubscribe_rc", "topic": topic, "rc": result})

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> None:
        client = self._client
        if client is None:
            raise PublishError("no client", topic=topic)
        try:
            info = client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (ValueError, OSError) as exc:
            raise PublishError(str(exc), topic=topic) from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(
                f"publish rc={info.rc} ({mqtt.error_string(info.rc)})", topic=topic
            )

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client is not None:
            self._stop(client)

    # ---- internals ----

    def _build_client(self) -> mqtt.Client:
        cfg = self.config
        self.client_id = new_client_id(cfg.client_id_prefix)
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=cfg.clean_session,
            protocol=mqtt.MQTTv311,
            transport=cfg.transport,
        )
        if cfg.transport == "websockets":
            client.ws_set_options(path=cfg.ws_path)
        if cfg.use_tls:
            client.tls_set()
        if cfg.username is not None:
            client.username_pw_set(username=cfg.username, password=cfg.password or "")
        client.connect_timeout = cfg.connect_timeout_s

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def _stop(self, client: mqtt.Client) -> None:
        try:
            client.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.debug({"event": "mqtt_disconnect_error", "error": repr(exc)})
        # loop_stop joins the network thread; never do that while a caller may
        # hold the lock the network thread is waiting on.
        threading.Thread(
            target=client.loop_stop, name="mqtt-loop-stop", daemon=True
        ).start()

    def _require_client(self, topic: str) -> mqtt.Client:
        client = self._client
        if client is None:
            raise SubscriptionFailure("no client", topic=topic)
        return client

    def _emit(self, client: mqtt.Client, event: TransportEvent) -> None:
        if client is not self._client:
            logger.debug({"event": "mqtt_stale_callback", "type": type(event).__name__})
            return
        sink = self._sink
        if sink is None:
            logger.warning({"event": "mqtt_event_unbound", "type": type(event).__name__})
            return
        sink(event)

    # ---- paho callbacks (network thread) ----

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        reason = _reason_text(reason_code)
        if _is_failure(reason_code):
            logger.error({"event": "mqtt_connect_failed", "reason": reason})
            self._emit(client, ConnectFailed(reason))
            return
        session_present = bool(getattr(flags, "session_present", False))
        logger.info({"event": "mqtt_connected", "reason": reason})
        self._emit(client, ConnectSucceeded(session_present=session_present))

    def _on_connect_fail(self, client, userdata):
        logger.error({"event": "mqtt_connect_unreachable"})
        self._emit(client, ConnectFailed("broker unreachable"))

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        # rc==0 = clean; anything else = unexpected
        clean = not _is_failure(reason_code)
        reason = _reason_text(reason_code)
        logger.warning({"event": "mqtt_disconnected", "reason": reason, "clean": clean})
        self._emit(client, ConnectionDropped(reason, clean=clean))

    def _on_message(self, client, userdata, msg):
        self._emit(
            client,
            MessageArrived(
                topic=msg.topic,
                payload=decode_payload(msg.payload),
                retained=bool(msg.retain),
            ),
        )


def make_transport(config: ControllerConfig) -> PahoTransport:
    """Create the default transport; failures surface as TransportUnavailable."""
    try:
        return PahoTransport(config)
    except Exception as exc:  # noqa: BLE001
        raise TransportUnavailable(f"paho client setup failed: {exc}") from exc


__all__ = ["PahoTransport", "make_transport", "new_client_id"]
