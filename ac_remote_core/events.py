"""Event objects fed into the controller's serialized entry point.

Transport callbacks and watchdog expiry never touch controller state
directly; they build one of these and hand it to the controller.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConnectSucceeded:
    session_present: bool = False


@dataclass(frozen=True)
class ConnectFailed:
    reason: str


@dataclass(frozen=True)
class ConnectionDropped:
    """Session ended. ``clean`` is True when the transport saw a normal close."""

    reason: str
    clean: bool = False


@dataclass(frozen=True)
class MessageArrived:
    topic: str
    payload: str
    retained: bool = False


@dataclass(frozen=True)
class WatchdogExpired:
    generation: int


TransportEvent = ConnectSucceeded | ConnectFailed | ConnectionDropped | MessageArrived
ControllerEvent = TransportEvent | WatchdogExpired


__all__ = [
    "ConnectFailed",
    "ConnectSucceeded",
    "ConnectionDropped",
    "ControllerEvent",
    "MessageArrived",
    "TransportEvent",
    "WatchdogExpired",
]
