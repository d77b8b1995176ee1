from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from .light import MIDFLIGHT_POLICIES, MIDFLIGHT_REFLECT, QUANTIZE_MODES, QUANTIZE_NEAREST

_LOGGER = logging.getLogger("settings")

DISCOVERY_PAN_ID = "FFFF"


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    username: str
    password: str
    base_topic: str
    discovery_prefix: str
    client_id: str


@dataclass(frozen=True)
class StickConfig:
    driver: str
    serial_port: str
    channel: int
    pan_id: str
    key: str
    position_poll_interval_s: float
    moving_interval_s: float
    command_interval_s: float
    command_retry_delay_s: float
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def discovery_mode(self) -> bool:
        return self.pan_id.upper() == DISCOVERY_PAN_ID

    def driver_config(self) -> dict[str, Any]:
        return {
            **self.extra,
            "serial_port": self.serial_port,
            "channel": self.channel,
            "pan_id": self.pan_id,
            "key": self.key,
            "position_poll_interval_s": self.position_poll_interval_s,
            "moving_interval_s": self.moving_interval_s,
        }


@dataclass(frozen=True)
class EngineConfig:
    weather_ema_alpha: float
    weather_publish_interval_s: float
    weather_poll_interval_s: float
    rain_on_delay_s: float
    rain_off_delay_s: float
    raw_dedup_spacing_s: float
    dedup_gc_interval_s: float
    command_timeout_s: float
    light_midflight_policy: str
    brightness_quantize: str
    snapshot_path: str
    snapshot_debounce_s: float


@dataclass(frozen=True)
class Settings:
    mqtt: MqttConfig
    stick: StickConfig
    engine: EngineConfig
    ignored_devices: frozenset[str]
    force_devices: tuple[tuple[str, str], ...]
    debug: bool


def read_options() -> dict[str, Any]:
    path = os.environ.get("WAREMA_OPTIONS", "/data/options.json")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return {}


def _split_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = [str(value)]
    return [s.strip() for s in items if s.strip()]


def _parse_forced(value: Any) -> tuple[tuple[str, str], ...]:
    out: list[tuple[str, str]] = []
    for item in _split_list(value):
        snr, _, type_code = item.partition(":")
        snr = snr.strip()
        if snr:
            out.append((snr, type_code.strip() or "25"))
    return tuple(out)


def load_settings(options: dict[str, Any]) -> Settings:
    def _read_float(raw: dict[str, Any], key: str, default: float, *, minimum: float = 0.0) -> float:
        v = raw.get(key)
        if v is None:
            return float(default)
        try:
            f = float(v)
        except (TypeError, ValueError):
            _LOGGER.warning("Option %s=%r is invalid, using default %s", key, v, default)
            return float(default)
        if f < minimum:
            _LOGGER.warning("Option %s=%r is below %s, using default %s", key, v, minimum, default)
            return float(default)
        return f

    def _read_choice(raw: dict[str, Any], key: str, choices: tuple[str, ...], default: str) -> str:
        v = str(raw.get(key) or default).strip().lower()
        if v not in choices:
            _LOGGER.warning("Option %s=%r is not one of %s, using %s", key, v, choices, default)
            return default
        return v

    mqtt_raw = options.get("mqtt") or {}
    mqtt = MqttConfig(
        host=str(mqtt_raw.get("host") or "core-mosquitto"),
        port=int(mqtt_raw.get("port") or 1883),
        username=str(mqtt_raw.get("username") or ""),
        password=str(mqtt_raw.get("password") or ""),
        base_topic=str(mqtt_raw.get("base_topic") or "warema").rstrip("/"),
        discovery_prefix=str(mqtt_raw.get("discovery_prefix") or "homeassistant").rstrip("/"),
        client_id=str(mqtt_raw.get("client_id") or "warema-bridge"),
    )

    stick_raw = dict(options.get("stick") or {})
    known = {
        "driver",
        "serial_port",
        "channel",
        "pan_id",
        "key",
        "position_poll_interval_s",
        "moving_interval_s",
        "command_interval_s",
        "command_retry_delay_s",
    }
    stick = StickConfig(
        driver=str(stick_raw.get("driver") or "").strip(),
        serial_port=str(stick_raw.get("serial_port") or "/dev/ttyUSB0"),
        channel=int(stick_raw.get("channel") or 17),
        pan_id=str(stick_raw.get("pan_id") or DISCOVERY_PAN_ID).strip().upper(),
        key=str(stick_raw.get("key") or "00112233445566778899AABBCCDDEEFF"),
        position_poll_interval_s=_read_float(stick_raw, "position_poll_interval_s", 30.0, minimum=0.1),
        moving_interval_s=_read_float(stick_raw, "moving_interval_s", 1.0, minimum=0.1),
        command_interval_s=_read_float(stick_raw, "command_interval_s", 0.1),
        command_retry_delay_s=_read_float(stick_raw, "command_retry_delay_s", 0.5),
        extra={k: v for k, v in stick_raw.items() if k not in known},
    )

    alpha = _read_float(options, "weather_ema_alpha", 0.2)
    if not 0.0 < alpha <= 1.0:
        _LOGGER.warning("Option weather_ema_alpha=%s outside (0, 1], using default 0.2", alpha)
        alpha = 0.2

    engine = EngineConfig(
        weather_ema_alpha=alpha,
        weather_publish_interval_s=_read_float(options, "weather_publish_interval_s", 60.0),
        weather_poll_interval_s=_read_float(options, "weather_poll_interval_s", 30.0, minimum=1.0),
        rain_on_delay_s=_read_float(options, "rain_on_delay_s", 10.0),
        rain_off_delay_s=_read_float(options, "rain_off_delay_s", 30.0),
        raw_dedup_spacing_s=_read_float(options, "raw_dedup_spacing_s", 1.0),
        dedup_gc_interval_s=_read_float(options, "dedup_gc_interval_s", 5.0, minimum=0.5),
        command_timeout_s=_read_float(options, "command_timeout_s", 15.0, minimum=0.5),
        light_midflight_policy=_read_choice(options, "light_midflight_policy", MIDFLIGHT_POLICIES, MIDFLIGHT_REFLECT),
        brightness_quantize=_read_choice(options, "brightness_quantize", QUANTIZE_MODES, QUANTIZE_NEAREST),
        snapshot_path=str(options.get("snapshot_path") or "/data/devices.json"),
        snapshot_debounce_s=_read_float(options, "snapshot_debounce_s", 2.0),
    )

    return Settings(
        mqtt=mqtt,
        stick=stick,
        engine=engine,
        ignored_devices=frozenset(_split_list(options.get("ignored_devices"))),
        force_devices=_parse_forced(options.get("force_devices")),
        debug=bool(options.get("debug") or False),
    )
