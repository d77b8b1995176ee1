from __future__ import annotations

import pytest

from app import cover
from app.errors import PayloadError
from app.models import CoverDevice, DeviceKind, TiltCoverDevice
from app.registry import DeviceRegistry


@pytest.mark.parametrize(
    "position,moving,last,expected",
    [
        (0, False, None, "open"),
        (100, False, None, "closed"),
        (50, False, 10, "stopped"),
        (60, True, 30, "closing"),
        (20, True, 30, "opening"),
        (40, True, None, "closing"),
    ],
)
def test_derive_state(position: int, moving: bool, last: int | None, expected: str) -> None:
    assert cover.derive_state(position, moving, last) == expected


def test_derive_state_inverted() -> None:
    assert cover.derive_state(100, False, None, inverted=True) == "open"
    assert cover.derive_state(0, False, None, inverted=True) == "closed"
    assert cover.derive_state(40, True, 60, inverted=True) == "closing"
    assert cover.derive_state(80, True, 60, inverted=True) == "opening"


def test_derive_retains_first_and_settled_reports() -> None:
    reg = DeviceRegistry()
    reg.upsert("1001", DeviceKind.ACTUATOR)

    first = cover.derive(reg, "1001", 20, True)
    assert first.retain is True
    assert first.state == "closing"

    moving = cover.derive(reg, "1001", 40, True)
    assert moving.retain is False
    assert moving.state == "closing"

    settled = cover.derive(reg, "1001", 40, False)
    assert settled.retain is True
    assert settled.state == "stopped"

    dev = reg.get("1001")
    assert dev.position == 40
    assert dev.last_known_position == 40


def test_derive_rejects_non_cover() -> None:
    reg = DeviceRegistry()
    reg.upsert("3003", DeviceKind.LIGHT)
    with pytest.raises(KeyError):
        cover.derive(reg, "3003", 10, False)


def test_parse_position_and_tilt() -> None:
    assert cover.parse_position("42") == 42
    assert cover.parse_position("150") == 100
    assert cover.parse_position("-3") == 0
    assert cover.parse_tilt("-150") == -100
    with pytest.raises(PayloadError):
        cover.parse_position("half")


def test_parse_set_command() -> None:
    normal = CoverDevice(snr="1001")
    inverted = CoverDevice(snr="1002", inverted=True)
    tilted = TiltCoverDevice(snr="1003")

    assert cover.parse_set_command(normal, "open") == cover.CoverCommand(position=0, tilt=0, optimistic_state="opening")
    assert cover.parse_set_command(normal, "CLOSE").position == 100
    assert cover.parse_set_command(inverted, "OPEN").position == 100
    assert cover.parse_set_command(inverted, "CLOSE").position == 0
    assert cover.parse_set_command(normal, "STOP") == cover.CoverCommand(stop=True)
    assert cover.parse_set_command(tilted, "CLOSETILT").tilt == 100
    assert cover.parse_set_command(normal, "ON") is None

    with pytest.raises(PayloadError):
        cover.parse_set_command(normal, "WIGGLE")


@pytest.mark.parametrize("payload", ["inf", "-inf", "1e999", "nan"])
def test_non_finite_payloads_are_rejected(payload: str) -> None:
    with pytest.raises(PayloadError):
        cover.parse_position(payload)
    with pytest.raises(PayloadError):
        cover.parse_tilt(payload)
