from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import PayloadError
from .models import CoverDevice, TiltCoverDevice
from .registry import DeviceRegistry

STATE_OPEN = "open"
STATE_CLOSED = "closed"
STATE_OPENING = "opening"
STATE_CLOSING = "closing"
STATE_STOPPED = "stopped"


@dataclass(frozen=True)
class CoverUpdate:
    position: int
    state: str
    retain: bool


@dataclass(frozen=True)
class CoverCommand:
    stop: bool = False
    position: int | None = None
    tilt: int | None = None
    optimistic_state: str | None = None


def derive_state(position: int, moving: bool, last_known: int | None, *, inverted: bool = False) -> str:
    open_pos = 100 if inverted else 0
    closed_pos = 0 if inverted else 100
    if moving:
        last = open_pos if last_known is None else last_known
        toward_closed = position < last if inverted else position > last
        return STATE_CLOSING if toward_closed else STATE_OPENING
    if position == open_pos:
        return STATE_OPEN
    if position == closed_pos:
        return STATE_CLOSED
    return STATE_STOPPED


def derive(registry: DeviceRegistry, snr: Any, position: int, moving: bool) -> CoverUpdate:
    """Map a position report to a lifecycle state and retain decision.

    The first hardware report of a device and every settled report are
    retained; in-motion labels are not. ``last_known_position`` always moves
    to the reported position afterwards.
    """
    dev = registry.get(snr)
    if not isinstance(dev, CoverDevice):
        raise KeyError(f"{snr} is not a registered cover")
    pos = int(position)
    state = derive_state(pos, bool(moving), dev.last_known_position, inverted=dev.inverted)
    retain = (not dev.first_observation) or not moving
    registry.apply_hardware_observation(dev.snr, position=pos, last_known_position=pos)
    return CoverUpdate(position=pos, state=state, retain=retain)


def _parse_int(payload: str, *, lo: int, hi: int, what: str) -> int:
    s = str(payload or "").strip()
    try:
        value = int(round(float(s)))
    except (ValueError, OverflowError):
        raise PayloadError(f"{what} payload {payload!r} is not a number") from None
    return max(lo, min(hi, value))


def parse_position(payload: str) -> int:
    return _parse_int(payload, lo=0, hi=100, what="position")


def parse_tilt(payload: str) -> int:
    return _parse_int(payload, lo=-100, hi=100, what="tilt")


def parse_set_command(dev: CoverDevice, payload: str) -> CoverCommand | None:
    """Translate a ``set`` payload; ``None`` means accepted but nothing to do."""
    cmd = str(payload or "").strip().upper()
    if cmd == "STOP":
        return CoverCommand(stop=True)
    if cmd in ("OPEN", "OPENTILT"):
        return CoverCommand(position=dev.open_position, tilt=0, optimistic_state=STATE_OPENING)
    if cmd == "CLOSE":
        return CoverCommand(position=dev.closed_position, tilt=0, optimistic_state=STATE_CLOSING)
    if cmd == "CLOSETILT":
        tilt = 100 if isinstance(dev, TiltCoverDevice) else 0
        return CoverCommand(position=dev.open_position, tilt=tilt, optimistic_state=STATE_CLOSING)
    if cmd in ("ON", "OFF"):
        return None
    raise PayloadError(f"unrecognised set payload {payload!r}")
