"""Small stable type aliases, states and status records.

Keep these definitions free of local imports to avoid import-time cycles
in tests and applications that only need type hints.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

# ---------------------------
# Callback signatures
# ---------------------------
# (broker_connected, device_confirmed, message)
StatusCallback = Callable[[bool, bool, str], None]
# payload from the status channel, verbatim
DataCallback = Callable[[str], None]


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    BROKER_CONNECTED_AWAITING_DEVICE = "awaiting_device"
    FULLY_CONNECTED = "fully_connected"
    DEVICE_NOT_RESPONDING = "device_not_responding"
    DISCONNECTED = "disconnected"
    CONNECTION_ERROR = "connection_error"


# States in which the transport holds a live broker session.
BROKER_STATES = frozenset(
    {
        ConnectionState.BROKER_CONNECTED_AWAITING_DEVICE,
        ConnectionState.FULLY_CONNECTED,
        ConnectionState.DEVICE_NOT_RESPONDING,
    }
)

# States from which connect() issues a new transport request.
CONNECTABLE_STATES = frozenset(
    {
        ConnectionState.IDLE,
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTION_ERROR,
    }
)


class StatusMessage:
    """Status strings handed to the host's status callback."""

    NOT_CONNECTED = "Not Connected"
    TRANSPORT_UNAVAILABLE = "Transport Unavailable"
    CONNECTING = "Connecting"
    AWAITING_DEVICE = "Awaiting Device"
    DEVICE_ONLINE = "Device Online"
    DEVICE_OFFLINE = "Device Offline"
    DEVICE_NOT_RESPONDING = "Device Not Responding"
    DEVICE_ONLINE_ALT = "Device Online (Confirmed Alt)"
    CONNECTION_LOST = "Connection Lost"
    DISCONNECTED = "Disconnected"
    CONNECTION_FAILED = "Connection Failed"
    CONNECTION_ERROR = "Connection Error"
    PUBLISH_FAILED = "Publish Failed"
    PUBLISH_UNCONFIRMED = "Device Unconfirmed: best-effort delivery"


@dataclass(frozen=True)
class ControllerStatus:
    state: ConnectionState
    broker_connected: bool
    device_confirmed: bool
    message: str
    client_id: str | None = None
    watchdog_armed: bool = False

    @property
    def fully_connected(self) -> bool:
        return self.broker_connected and self.device_confirmed

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["fully_connected"] = self.fully_connected
        return data


__all__ = [
    "BROKER_STATES",
    "CONNECTABLE_STATES",
    "ConnectionState",
    "ControllerStatus",
    "DataCallback",
    "StatusCallback",
    "StatusMessage",
]
