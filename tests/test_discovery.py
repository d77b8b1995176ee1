from __future__ import annotations

from app.discovery import DiscoveryCache, discovery_for
from app.models import CoverDevice, LightDevice, SwitchDevice, TiltCoverDevice, WeatherDevice


def _one(device):
    entries = discovery_for(discovery_prefix="homeassistant", base_topic="warema", device=device)
    assert len(entries) == 1
    return entries[0]


def test_cover_discovery() -> None:
    topic, payload = _one(CoverDevice(snr="1001", model="Vertical awning"))
    assert topic == "homeassistant/cover/1001/1001/config"
    assert payload["position_topic"] == "warema/1001/position"
    assert payload["command_topic"] == "warema/1001/set"
    assert payload["position_open"] == 0
    assert payload["device"]["model"] == "Vertical awning"
    assert "tilt_command_topic" not in payload
    assert {"topic": "warema/bridge/state"} in payload["availability"]


def test_inverted_and_tilt_cover() -> None:
    _, inverted = _one(CoverDevice(snr="1002", inverted=True))
    assert inverted["position_open"] == 100
    assert inverted["position_closed"] == 0

    _, tilt = _one(TiltCoverDevice(snr="1003"))
    assert tilt["tilt_command_topic"] == "warema/1003/set_tilt"
    assert tilt["tilt_status_topic"] == "warema/1003/tilt"


def test_light_and_switch_discovery() -> None:
    topic, light = _one(LightDevice(snr="3003"))
    assert topic == "homeassistant/light/3003/3003/config"
    assert light["brightness_command_topic"] == "warema/3003/light/set_brightness"
    assert light["brightness_scale"] == 100

    topic, switch = _one(SwitchDevice(snr="5005"))
    assert topic == "homeassistant/switch/5005/5005/config"
    assert switch["command_topic"] == "warema/5005/set"


def test_weather_discovery() -> None:
    entries = dict(discovery_for(discovery_prefix="homeassistant", base_topic="warema", device=WeatherDevice(snr="2002")))
    assert set(entries) == {
        "homeassistant/sensor/2002/illuminance/config",
        "homeassistant/sensor/2002/temperature/config",
        "homeassistant/sensor/2002/wind/config",
        "homeassistant/binary_sensor/2002/rain/config",
    }
    assert entries["homeassistant/sensor/2002/wind/config"]["state_topic"] == "warema/2002/wind/state"
    assert entries["homeassistant/binary_sensor/2002/rain/config"]["unique_id"] == "2002_rain"


def test_cache_keeps_latest_payload() -> None:
    cache = DiscoveryCache()
    cache.remember("a", {"v": 1})
    cache.remember("a", {"v": 2})
    assert len(cache) == 1
    assert "a" in cache
    assert cache.get("a") == {"v": 2}
    assert list(cache.items()) == [("a", {"v": 2})]
