"""Error taxonomy for the connection controller.

These are raised inside the package (transport adapter, helpers) and turned
into log records, status notifications and boolean returns at the
controller boundary. Nothing here is meant to reach the host application.
"""

from __future__ import annotations


class ControllerError(Exception):
    """Base exception for controller and transport failures."""

    def __init__(self, message: str, *, topic: str | None = None):
        super().__init__(message)
        self.topic = topic


class TransportUnavailable(ControllerError):
    """The transport capability could not be created at init."""


class ConnectFailure(ControllerError):
    """The broker rejected the session or was unreachable."""


class ConnectionLost(ControllerError):
    """An established session ended without a requested disconnect."""


class TransportError(ControllerError):
    """Raised by transport operations on an established session."""


class SubscriptionFailure(TransportError):
    """Subscribing to a single topic failed."""


class PublishNotConnected(ControllerError):
    """Publish attempted without a broker session."""


class PublishError(TransportError):
    """The transport refused or failed to send a message."""


__all__ = [
    "ConnectFailure",
    "ConnectionLost",
    "ControllerError",
    "PublishError",
    "PublishNotConnected",
    "SubscriptionFailure",
    "TransportError",
    "TransportUnavailable",
]
