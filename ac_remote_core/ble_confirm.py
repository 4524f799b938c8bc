"""Out-of-band device readiness via a BLE advertisement scan.

A device that is advertising nearby is taken as evidence that it is powered
and ready, even when its retained readiness message was never observed.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from bleak import BleakScanner

from .config import ControllerConfig
from .logging_setup import ble_logger as logger


def _matches(device: Any, mac: str | None, name: str | None) -> bool:
    address = (getattr(device, "address", None) or "").upper()
    dev_name = getattr(device, "name", None) or ""
    if mac and address == mac.upper():
        return True
    return bool(name) and dev_name == name


async def probe_device(
    mac: str | None = None,
    name: str | None = None,
    adapter: str | None = None,
    timeout: float = 5.0,
) -> dict[str, Any]:
    """Scan once and report whether the device is advertising.

    Returns ``{"ok": bool, "address": str | None, "latency_ms": int | None}``;
    scanner errors are logged and reported as ``ok: False``.
    """
    if not mac and not name:
        logger.warning({"event": "ble_probe_skipped", "reason": "no mac or name"})
        return {"ok": False, "address": None, "latency_ms": None}

    logger.debug(
        {"event": "ble_probe_start", "mac": mac, "name": name, "adapter": adapter,
         "timeout": timeout}
    )
    t0 = time.monotonic()
    kwargs: dict[str, Any] = {"timeout": timeout}
    if adapter:
        kwargs["adapter"] = adapter
    try:
        devices = await BleakScanner.discover(**kwargs)
    except Exception as exc:  # noqa: BLE001
        logger.error({"event": "ble_probe_error", "error": repr(exc)})
        return {"ok": False, "address": None, "latency_ms": None}

    latency_ms = int((time.monotonic() - t0) * 1000)
    for d in devices:
        if _matches(d, mac, name):
            address = getattr(d, "address", None)
            logger.info(
                {"event": "ble_probe_found", "address": address,
                 "rssi": getattr(d, "rssi", None), "latency_ms": latency_ms}
            )
            return {"ok": True, "address": address, "latency_ms": latency_ms}

    logger.info(
        {"event": "ble_probe_not_found", "scanned": len(devices),
         "latency_ms": latency_ms}
    )
    return {"ok": False, "address": None, "latency_ms": latency_ms}


async def async_confirm_via_ble(controller, config: ControllerConfig) -> bool:
    result = await probe_device(
        mac=config.ble_mac,
        name=config.ble_name,
        adapter=config.ble_adapter,
        timeout=config.ble_scan_timeout_s,
    )
    if not result["ok"]:
        return False
    return bool(controller.force_device_online_confirmation())


def confirm_via_ble(controller, config: ControllerConfig) -> bool:
    """Blocking wrapper; must not be called from inside a running event loop."""
    return asyncio.run(async_confirm_via_ble(controller, config))


__all__ = ["async_confirm_via_ble", "confirm_via_ble", "probe_device"]
