from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .mqtt_helpers import has_wildcard

logger = logging.getLogger(__name__)

DEFAULT_BASE = "ac_remote/SANKAR_AC_BLE_MQTT"

# Environment overrides: ENV name -> config key
ENV_KEYS = {
    "MQTT_HOST": "mqtt_host",
    "MQTT_PORT": "mqtt_port",
    "MQTT_TLS": "mqtt_tls",
    "MQTT_TRANSPORT": "mqtt_transport",
    "MQTT_WS_PATH": "mqtt_ws_path",
    "MQTT_USERNAME": "mqtt_username",
    "MQTT_PASSWORD": "mqtt_password",
    "MQTT_CLIENT_ID_PREFIX": "mqtt_client_id_prefix",
    "MQTT_COMMAND_TOPIC": "command_topic",
    "MQTT_STATUS_TOPIC": "status_topic",
    "MQTT_READY_TOPIC": "ready_topic",
    "DEVICE_READY_TIMEOUT_S": "device_ready_timeout_s",
    "BLE_MAC": "ble_mac",
    "BLE_NAME": "ble_name",
    "BLE_ADAPTER": "ble_adapter",
    "LOG_LEVEL": "log_level",
    "AC_REMOTE_LOG_PATH": "log_path",
}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def _candidate_paths() -> list[Path]:
    """Ordered YAML config locations (explicit env first, then local, then container)."""
    env_path = os.environ.get("CONFIG_PATH")
    paths: list[Path] = []
    if env_path:
        paths.append(Path(env_path))
    paths.extend(
        [
            Path.cwd() / "config.yaml",
            Path("/data/config.yaml"),
            Path("/config/config.yaml"),
        ]
    )
    return paths


def _load_options_json(path: Path | None = None) -> tuple[dict[str, Any], Path | None]:
    """
    Load JSON options. Returns (data, source_path).
    """
    path = path or Path(os.environ.get("OPTIONS_PATH", "/data/options.json"))
    if not path.exists():
        logger.debug("[CONFIG] options.json not found: %s", path)
        return {}, None
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        logger.warning("[CONFIG] Failed to parse options.json %s: %s", path, exc)
        return {}, None
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("[CONFIG] Failed to read options.json %s: %s", path, exc)
        return {}, None
    if not isinstance(data, dict):
        logger.warning("[CONFIG] options.json root not a mapping: %s", path)
        return {}, None
    logger.info("[CONFIG] Loaded options from: %s", path)
    return data, path


def _load_yaml_cfg(
    paths: list[Path] | None = None,
) -> tuple[dict[str, Any], Path | None]:
    """
    Load YAML config from the first valid candidate path.
    Returns (data, source_path). Empty dict if none valid.
    """
    for pth in paths or _candidate_paths():
        if not pth.exists():
            logger.debug("[CONFIG] Path not found: %s", pth)
            continue
        try:
            with pth.open("r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            logger.warning("[CONFIG] Failed to parse YAML %s: %s", pth, exc)
            continue
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("[CONFIG] Failed to read YAML %s: %s", pth, exc)
            continue
        if not isinstance(data, dict):
            logger.warning("[CONFIG] YAML root not a mapping: %s", pth)
            continue
        logger.info("[CONFIG] Loaded YAML config from: %s", pth)
        return data, pth
    return {}, None


def _env_overrides() -> dict[str, Any]:
    return {key: os.environ[env] for env, key in ENV_KEYS.items() if env in os.environ}


def load_config(
    yaml_paths: list[Path] | None = None,
    options_path: Path | None = None,
) -> tuple[dict[str, Any], Path | None]:
    """
    Produce the effective raw configuration.
    Precedence: env > options.json > YAML. Returns (config_dict, primary_source).
    """
    yml, yml_src = _load_yaml_cfg(yaml_paths)
    opts, opts_src = _load_options_json(options_path)

    merged: dict[str, Any] = {}
    merged.update(yml)
    merged.update(opts)
    merged.update(_env_overrides())
    source = opts_src or yml_src
    logger.debug("[CONFIG] Active source: %s", source)
    return merged, source


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    logger.warning("[CONFIG] Not a boolean: %r; using %s", value, default)
    return default


def _as_number(value: Any, default: float, cast=float):
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning("[CONFIG] Not a number: %r; using %s", value, default)
        return default


def _topic(raw: dict[str, Any], key: str, default: str) -> str:
    value = str(raw.get(key) or "").strip().lstrip("/")
    if not value:
        return default
    if has_wildcard(value):
        logger.warning(
            "Wildcard detected in %s='%s' - unsafe for pub/sub; using default",
            key,
            value,
        )
        return default
    return value


def _opt_str(value: Any) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


@dataclass
class ControllerConfig:
    """Broker, topic and readiness settings for one controlled device."""

    broker_host: str = "broker.hivemq.com"
    broker_port: int = 8884
    use_tls: bool = True
    transport: str = "websockets"
    ws_path: str = "/mqtt"
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    client_id_prefix: str = "AC_WebApp_"
    keepalive: int = 60
    connect_timeout_s: float = 10.0
    clean_session: bool = True
    auto_reconnect: bool = True

    command_topic: str = f"{DEFAULT_BASE}/command_to_esp32"
    status_topic: str = f"{DEFAULT_BASE}/status_from_esp32"
    ready_topic: str = f"{DEFAULT_BASE}/esp32_ready"
    ready_online_payload: str = "online"
    will_payload: str = "offline"
    will_qos: int = 1
    command_qos: int = 0
    subscribe_qos: int = 0

    device_ready_timeout_s: float = 10.0

    ble_mac: str | None = None
    ble_name: str | None = None
    ble_adapter: str = "hci0"
    ble_scan_timeout_s: float = 5.0

    log_level: str = "INFO"
    log_path: str | None = None

    def __post_init__(self) -> None:
        if self.transport not in ("websockets", "tcp"):
            logger.warning(
                "[CONFIG] Unknown mqtt_transport %r; using websockets", self.transport
            )
            self.transport = "websockets"
        # The last will only works for abnormal loss if the broker is made to
        # deliver it at least once.
        if self.will_qos < 1:
            logger.warning("[CONFIG] will_qos %s raised to 1", self.will_qos)
            self.will_qos = 1
        self.will_qos = min(self.will_qos, 2)
        self.command_qos = max(0, min(self.command_qos, 2))
        self.subscribe_qos = max(0, min(self.subscribe_qos, 2))
        timeout = self.device_ready_timeout_s
        if not math.isfinite(timeout) or timeout <= 0:
            logger.warning(
                "[CONFIG] device_ready_timeout_s must be a positive finite number (%s); using 10.0",
                self.device_ready_timeout_s,
            )
            self.device_ready_timeout_s = 10.0

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> ControllerConfig:
        """Build a config from a flat key/value mapping (YAML, JSON or env)."""
        d = cls.__dataclass_fields__
        return cls(
            broker_host=str(raw.get("mqtt_host") or d["broker_host"].default),
            broker_port=_as_number(raw.get("mqtt_port"), d["broker_port"].default, int),
            use_tls=_as_bool(raw.get("mqtt_tls"), d["use_tls"].default),
            transport=str(raw.get("mqtt_transport") or d["transport"].default).lower(),
            ws_path=str(raw.get("mqtt_ws_path") or d["ws_path"].default),
            username=_opt_str(raw.get("mqtt_username")),
            password=_opt_str(raw.get("mqtt_password")),
            client_id_prefix=str(
                raw.get("mqtt_client_id_prefix") or d["client_id_prefix"].default
            ),
            keepalive=_as_number(raw.get("mqtt_keepalive"), d["keepalive"].default, int),
            connect_timeout_s=_as_number(
                raw.get("mqtt_connect_timeout_s"), d["connect_timeout_s"].default
            ),
            clean_session=_as_bool(
                raw.get("mqtt_clean_session"), d["clean_session"].default
            ),
            auto_reconnect=_as_bool(
                raw.get("mqtt_auto_reconnect"), d["auto_reconnect"].default
            ),
            command_topic=_topic(raw, "command_topic", d["command_topic"].default),
            status_topic=_topic(raw, "status_topic", d["status_topic"].default),
            ready_topic=_topic(raw, "ready_topic", d["ready_topic"].default),
            ready_online_payload=str(
                raw.get("ready_online_payload") or d["ready_online_payload"].default
            ),
            will_payload=str(raw.get("will_payload") or d["will_payload"].default),
            will_qos=_as_number(raw.get("will_qos"), d["will_qos"].default, int),
            command_qos=_as_number(raw.get("command_qos"), d["command_qos"].default, int),
            subscribe_qos=_as_number(
                raw.get("subscribe_qos"), d["subscribe_qos"].default, int
            ),
            device_ready_timeout_s=_as_number(
                raw.get("device_ready_timeout_s"), d["device_ready_timeout_s"].default
            ),
            ble_mac=_opt_str(raw.get("ble_mac")),
            ble_name=_opt_str(raw.get("ble_name")),
            ble_adapter=str(raw.get("ble_adapter") or d["ble_adapter"].default),
            ble_scan_timeout_s=_as_number(
                raw.get("ble_scan_timeout_s"), d["ble_scan_timeout_s"].default
            ),
            log_level=str(raw.get("log_level") or d["log_level"].default).upper(),
            log_path=_opt_str(raw.get("log_path")),
        )

    def as_dict(self, *, redact: bool = True) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if redact and data.get("password"):
            data["password"] = "***"
        return data


def load_controller_config(
    yaml_paths: list[Path] | None = None,
    options_path: Path | None = None,
) -> ControllerConfig:
    raw, src = load_config(yaml_paths=yaml_paths, options_path=options_path)
    cfg = ControllerConfig.from_mapping(raw)
    logger.info(
        {
            "event": "config_loaded",
            "source": str(src) if src else "defaults",
            "host": cfg.broker_host,
            "port": cfg.broker_port,
            "ready_topic": cfg.ready_topic,
            "timeout_s": cfg.device_ready_timeout_s,
        }
    )
    return cfg


__all__ = [
    "ControllerConfig",
    "ENV_KEYS",
    "load_config",
    "load_controller_config",
    "_load_options_json",
    "_load_yaml_cfg",
]
