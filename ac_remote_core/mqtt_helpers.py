"""MQTT helper utilities used by the controller and the transport.

These helpers normalize payload shapes and topic names so callers can use
a consistent API.
"""

from __future__ import annotations

import json
from typing import Any

from .errors import PublishError


def encode_payload(payload: Any) -> str:
    """Render a command for the wire.

    Strings are assumed to be pre-serialised JSON and pass through; bytes are
    decoded as UTF-8; everything else is JSON-encoded compactly.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        try:
            return bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PublishError(f"payload is not UTF-8: {exc}") from exc
    try:
        return json.dumps(payload, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise PublishError(f"payload not JSON serialisable: {exc}") from exc


def decode_payload(raw: Any) -> str:
    """Return an inbound payload as text (undecodable bytes are replaced)."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    return bytes(raw).decode("utf-8", "replace")


def has_wildcard(topic: str) -> bool:
    return "#" in topic or "+" in topic


__all__ = ["decode_payload", "encode_payload", "has_wildcard"]
