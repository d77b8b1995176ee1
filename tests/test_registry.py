from __future__ import annotations

from app.models import IDLE, CommandPending, CoverDevice, DeviceKind, LightDevice, TiltCoverDevice
from app.registry import DeviceRegistry


def test_upsert_creates_record_for_kind() -> None:
    reg = DeviceRegistry()
    dev = reg.upsert("1001", DeviceKind.ACTUATOR, model="Plug receiver", inverted=True)
    assert isinstance(dev, CoverDevice)
    assert dev.inverted is True
    assert dev.model == "Plug receiver"
    assert "1001" in reg
    assert len(reg) == 1


def test_upsert_is_idempotent() -> None:
    reg = DeviceRegistry()
    first = reg.upsert("1001", DeviceKind.ACTUATOR)
    reg.apply_hardware_observation("1001", position=30)
    again = reg.upsert("1001", DeviceKind.ACTUATOR)
    assert again is first
    assert again.position == 30


def test_kind_change_carries_compatible_fields() -> None:
    reg = DeviceRegistry()
    reg.upsert("1001", DeviceKind.ACTUATOR)
    reg.apply_hardware_observation("1001", position=30)
    dev = reg.upsert("1001", DeviceKind.ACTUATOR_TILT)
    assert isinstance(dev, TiltCoverDevice)
    assert dev.position == 30
    assert dev.tilt is None


def test_observation_marks_first_observation() -> None:
    reg = DeviceRegistry()
    reg.upsert("3003", DeviceKind.LIGHT)
    reg.apply_command_intent("3003", brightness=45)
    assert reg.get("3003").first_observation is False
    reg.apply_hardware_observation("3003", brightness=56)
    assert reg.get("3003").first_observation is True


def test_irrelevant_fields_are_ignored() -> None:
    reg = DeviceRegistry()
    reg.upsert("2002", DeviceKind.WEATHER)
    reg.apply_hardware_observation("2002", position=10)
    assert not hasattr(reg.get("2002"), "position")
    assert reg.apply_hardware_observation("nope", position=1) is None


def test_snapshot_skips_transient_fields() -> None:
    reg = DeviceRegistry()
    reg.upsert("3003", DeviceKind.LIGHT, model="LED")
    reg.apply_command_intent("3003", brightness=45, last_brightness=45, command=CommandPending(45, 1.0))
    reg.upsert("1001", DeviceKind.ACTUATOR)
    reg.apply_hardware_observation("1001", position=30, last_known_position=30)

    snap = reg.snapshot()
    assert snap["3003"] == {"kind": "light", "model": "LED", "brightness": 45, "last_brightness": 45}
    assert snap["1001"] == {"kind": "actuator", "model": "", "inverted": False, "position": 30}


def test_restore_round_trip() -> None:
    reg = DeviceRegistry()
    loaded = reg.restore(
        {
            "3003": {"kind": "light", "model": "LED", "brightness": 56, "last_brightness": 56},
            "1001": {"kind": "actuator", "position": 30},
            "bad": {"kind": "toaster"},
            "junk": "not a record",
        }
    )
    assert loaded == 2
    light = reg.get("3003")
    assert isinstance(light, LightDevice)
    assert light.brightness == 56
    assert light.command == IDLE
    assert reg.get("1001").position == 30
    assert "bad" not in reg
