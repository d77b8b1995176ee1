from __future__ import annotations

from typing import Any, Iterator

from .models import CoverDevice, Device, LightDevice, SwitchDevice, TiltCoverDevice, WeatherDevice


def bridge_state_topic(base_topic: str) -> str:
    return f"{base_topic}/bridge/state"


def availability_topic(base_topic: str, snr: str) -> str:
    return f"{base_topic}/{snr}/availability"


def _base_payload(*, base_topic: str, device: Device) -> dict[str, Any]:
    snr = device.snr
    return {
        "availability": [
            {"topic": bridge_state_topic(base_topic)},
            {"topic": availability_topic(base_topic, snr)},
        ],
        "availability_mode": "all",
        "payload_available": "online",
        "payload_not_available": "offline",
        "unique_id": snr,
        "name": None,
        "device": {
            "identifiers": [snr],
            "manufacturer": "Warema",
            "model": device.model or device.kind.value,
            "name": snr,
        },
    }


def cover_discovery(*, discovery_prefix: str, base_topic: str, device: CoverDevice) -> tuple[str, dict[str, Any]]:
    snr = device.snr
    payload = _base_payload(base_topic=base_topic, device=device)
    payload.update(
        {
            # Home Assistant: position_open is where the cover is fully open.
            "position_open": device.open_position,
            "position_closed": device.closed_position,
            "command_topic": f"{base_topic}/{snr}/set",
            "state_topic": f"{base_topic}/{snr}/state",
            "position_topic": f"{base_topic}/{snr}/position",
            "set_position_topic": f"{base_topic}/{snr}/set_position",
            "payload_open": "OPEN",
            "payload_close": "CLOSE",
            "payload_stop": "STOP",
            "state_open": "open",
            "state_opening": "opening",
            "state_closed": "closed",
            "state_closing": "closing",
            "state_stopped": "stopped",
        }
    )
    if isinstance(device, TiltCoverDevice):
        payload.update(
            {
                "tilt_status_topic": f"{base_topic}/{snr}/tilt",
                "tilt_command_topic": f"{base_topic}/{snr}/set_tilt",
                "tilt_closed_value": -100,
                "tilt_opened_value": 100,
                "tilt_min": -100,
                "tilt_max": 100,
            }
        )
    topic = f"{discovery_prefix}/cover/{snr}/{snr}/config"
    return topic, payload


def light_discovery(*, discovery_prefix: str, base_topic: str, device: LightDevice) -> tuple[str, dict[str, Any]]:
    snr = device.snr
    payload = _base_payload(base_topic=base_topic, device=device)
    payload.update(
        {
            "name": f"LED {snr}",
            "unique_id": f"{snr}_light",
            "command_topic": f"{base_topic}/{snr}/light/set",
            "state_topic": f"{base_topic}/{snr}/light/state",
            "brightness_command_topic": f"{base_topic}/{snr}/light/set_brightness",
            "brightness_state_topic": f"{base_topic}/{snr}/light/brightness",
            "brightness_scale": 100,
            "supported_color_modes": ["brightness"],
            "payload_on": "ON",
            "payload_off": "OFF",
            # Brightness arrives on its own topic; HA must not resend it with ON.
            "on_command_type": "last",
        }
    )
    topic = f"{discovery_prefix}/light/{snr}/{snr}/config"
    return topic, payload


def switch_discovery(*, discovery_prefix: str, base_topic: str, device: SwitchDevice) -> tuple[str, dict[str, Any]]:
    snr = device.snr
    payload = _base_payload(base_topic=base_topic, device=device)
    payload.update(
        {
            "state_topic": f"{base_topic}/{snr}/state",
            "command_topic": f"{base_topic}/{snr}/set",
            "payload_on": "ON",
            "payload_off": "OFF",
        }
    )
    topic = f"{discovery_prefix}/switch/{snr}/{snr}/config"
    return topic, payload


def weather_discovery(
    *, discovery_prefix: str, base_topic: str, device: WeatherDevice
) -> list[tuple[str, dict[str, Any]]]:
    snr = device.snr
    base = _base_payload(base_topic=base_topic, device=device)
    out: list[tuple[str, dict[str, Any]]] = []

    out.append(
        (
            f"{discovery_prefix}/sensor/{snr}/illuminance/config",
            {
                **base,
                "state_topic": f"{base_topic}/{snr}/illuminance/state",
                "device_class": "illuminance",
                "unique_id": f"{snr}_illuminance",
                "unit_of_measurement": "lx",
                "state_class": "measurement",
            },
        )
    )
    out.append(
        (
            f"{discovery_prefix}/sensor/{snr}/temperature/config",
            {
                **base,
                "state_topic": f"{base_topic}/{snr}/temperature/state",
                "device_class": "temperature",
                "unique_id": f"{snr}_temperature",
                "unit_of_measurement": "°C",
                "state_class": "measurement",
                "suggested_display_precision": 1,
            },
        )
    )
    out.append(
        (
            f"{discovery_prefix}/sensor/{snr}/wind/config",
            {
                **base,
                "state_topic": f"{base_topic}/{snr}/wind/state",
                "device_class": "wind_speed",
                "unique_id": f"{snr}_wind",
                "unit_of_measurement": "m/s",
                "state_class": "measurement",
                "suggested_display_precision": 1,
            },
        )
    )
    out.append(
        (
            f"{discovery_prefix}/binary_sensor/{snr}/rain/config",
            {
                **base,
                "state_topic": f"{base_topic}/{snr}/rain/state",
                "device_class": "moisture",
                "unique_id": f"{snr}_rain",
                "payload_on": "ON",
                "payload_off": "OFF",
            },
        )
    )
    return out


def discovery_for(*, discovery_prefix: str, base_topic: str, device: Device) -> list[tuple[str, dict[str, Any]]]:
    kw = {"discovery_prefix": discovery_prefix, "base_topic": base_topic}
    if isinstance(device, CoverDevice):
        return [cover_discovery(device=device, **kw)]
    if isinstance(device, LightDevice):
        return [light_discovery(device=device, **kw)]
    if isinstance(device, SwitchDevice):
        return [switch_discovery(device=device, **kw)]
    if isinstance(device, WeatherDevice):
        return weather_discovery(device=device, **kw)
    return []


class DiscoveryCache:
    """Discovery payloads as last published, replayed verbatim after a reconnect."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, topic: object) -> bool:
        return topic in self._entries

    def remember(self, topic: str, payload: dict[str, Any]) -> None:
        self._entries[topic] = payload

    def get(self, topic: str) -> dict[str, Any] | None:
        return self._entries.get(topic)

    def items(self) -> Iterator[tuple[str, dict[str, Any]]]:
        return iter(list(self._entries.items()))
