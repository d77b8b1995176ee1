from __future__ import annotations

import json

from app.settings import load_settings, read_options


def test_defaults() -> None:
    s = load_settings({})
    assert s.mqtt.host == "core-mosquitto"
    assert s.mqtt.port == 1883
    assert s.mqtt.base_topic == "warema"
    assert s.mqtt.discovery_prefix == "homeassistant"
    assert s.stick.channel == 17
    assert s.stick.pan_id == "FFFF"
    assert s.stick.discovery_mode is True
    assert s.engine.weather_ema_alpha == 0.2
    assert s.engine.rain_on_delay_s == 10.0
    assert s.engine.rain_off_delay_s == 30.0
    assert s.engine.command_timeout_s == 15.0
    assert s.engine.light_midflight_policy == "reflect"
    assert s.engine.brightness_quantize == "nearest"
    assert s.ignored_devices == frozenset()
    assert s.force_devices == ()
    assert s.debug is False


def test_invalid_values_fall_back() -> None:
    s = load_settings(
        {
            "weather_ema_alpha": 3,
            "rain_on_delay_s": "soon",
            "light_midflight_policy": "sometimes",
            "brightness_quantize": "CEIL",
        }
    )
    assert s.engine.weather_ema_alpha == 0.2
    assert s.engine.rain_on_delay_s == 10.0
    assert s.engine.light_midflight_policy == "reflect"
    assert s.engine.brightness_quantize == "ceil"


def test_device_lists() -> None:
    s = load_settings({"ignored_devices": "111, 222", "force_devices": ["333:28", "444", " "]})
    assert s.ignored_devices == frozenset({"111", "222"})
    assert s.force_devices == (("333", "28"), ("444", "25"))


def test_stick_options() -> None:
    s = load_settings(
        {
            "mqtt": {"base_topic": "home/warema/"},
            "stick": {"driver": "mydriver:Stick", "pan_id": "1a2b", "baudrate": 125000},
        }
    )
    assert s.mqtt.base_topic == "home/warema"
    assert s.stick.pan_id == "1A2B"
    assert s.stick.discovery_mode is False
    cfg = s.stick.driver_config()
    assert cfg["baudrate"] == 125000
    assert cfg["channel"] == 17
    assert "driver" not in cfg


def test_read_options(tmp_path, monkeypatch) -> None:
    path = tmp_path / "options.json"
    path.write_text(json.dumps({"debug": True}), encoding="utf-8")
    monkeypatch.setenv("WAREMA_OPTIONS", str(path))
    assert read_options() == {"debug": True}

    monkeypatch.setenv("WAREMA_OPTIONS", str(tmp_path / "missing.json"))
    assert read_options() == {}
