"""ac_remote_core: MQTT connection and device-readiness controller."""

from .config import ControllerConfig, load_controller_config
from .controller import ConnectionController
from .errors import (
    ConnectFailure,
    ConnectionLost,
    ControllerError,
    PublishError,
    PublishNotConnected,
    SubscriptionFailure,
    TransportError,
    TransportUnavailable,
)
from .ports import LastWill, Transport
from .types import ConnectionState, ControllerStatus, StatusMessage

__version__ = "0.3.0"

__all__ = [
    "ConnectFailure",
    "ConnectionController",
    "ConnectionLost",
    "ConnectionState",
    "ControllerConfig",
    "ControllerError",
    "ControllerStatus",
    "LastWill",
    "PublishError",
    "PublishNotConnected",
    "StatusMessage",
    "SubscriptionFailure",
    "Transport",
    "TransportError",
    "TransportUnavailable",
    "__version__",
    "load_controller_config",
]
