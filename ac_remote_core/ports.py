"""Protocol definitions for the external ports used by the controller.

These small Protocols document the minimal methods the transport and the
timer primitive must provide. The paho adapter and the test doubles both
satisfy them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .events import TransportEvent


@dataclass(frozen=True)
class LastWill:
    """Message the broker publishes for us if the session dies uncleanly."""

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


@runtime_checkable
class Transport(Protocol):
    """Publish/subscribe capability owned by one controller.

    Completion of ``connect`` and ``disconnect`` is reported through the
    bound event sink, never through return values.
    """

    def bind(self, sink: Callable[[TransportEvent], None]) -> None:
        """Register the callable that receives transport events."""

    def connect(self, will: LastWill) -> None:
        """Request a session; raises only if the request cannot be issued."""

    def subscribe(self, topic: str, qos: int = 0) -> None:
        """Subscribe to a topic; raises SubscriptionFailure on error."""

    def unsubscribe(self, topic: str) -> None:
        """Drop a subscription."""

    def publish(
        self,
        topic: str,
        payload: str,
        qos: int = 0,
        retain: bool = False,
    ) -> None:
        """Send one message; raises PublishError on error."""

    def disconnect(self) -> None:
        """Tear down the session and any background network loop."""


@runtime_checkable
class Timer(Protocol):
    """Single-shot timer handle (``threading.Timer`` compatible)."""

    daemon: bool

    def start(self) -> None:
        """Start counting down."""

    def cancel(self) -> None:
        """Stop the timer if it has not fired yet."""


# Same call shape as threading.Timer(interval, function, args=...)
TimerFactory = Callable[..., Any]


__all__ = [
    "LastWill",
    "Timer",
    "TimerFactory",
    "Transport",
]
