from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Union

from .errors import UnknownDeviceKindError


class DeviceKind(str, Enum):
    ACTUATOR_TILT = "actuator_tilt"
    ACTUATOR = "actuator"
    LIGHT = "light"
    SWITCH = "switch"
    WEATHER = "weather"


@dataclass(frozen=True)
class TypeCode:
    code: str
    kind: DeviceKind
    model: str
    inverted: bool = False


# Hardware type codes reported by the stick during a scan.
TYPE_CODES: dict[str, TypeCode] = {
    "20": TypeCode("20", DeviceKind.ACTUATOR, "Plug receiver", inverted=True),
    "21": TypeCode("21", DeviceKind.ACTUATOR_TILT, "Actuator UP"),
    "24": TypeCode("24", DeviceKind.SWITCH, "Smart socket"),
    "25": TypeCode("25", DeviceKind.ACTUATOR, "Vertical awning"),
    "28": TypeCode("28", DeviceKind.LIGHT, "LED"),
    "2A": TypeCode("2A", DeviceKind.ACTUATOR_TILT, "Slat roof"),
    "63": TypeCode("63", DeviceKind.WEATHER, "Weather station pro"),
}

# Remotes and web controls show up in scans but expose nothing to bridge.
SILENT_TYPE_CODES = frozenset({"07", "09"})

_DEFAULT_MODELS = {
    DeviceKind.ACTUATOR_TILT: "Actuator",
    DeviceKind.ACTUATOR: "Actuator",
    DeviceKind.LIGHT: "LED",
    DeviceKind.SWITCH: "Switch",
    DeviceKind.WEATHER: "Weather station",
}


def kind_for_type_code(code: str) -> TypeCode:
    """Resolve a scan type code (``"21"``) or a kind name (``"light"``)."""
    raw = str(code or "").strip()
    info = TYPE_CODES.get(raw.upper())
    if info is not None:
        return info
    try:
        kind = DeviceKind(raw.lower())
    except ValueError:
        raise UnknownDeviceKindError(f"unknown device type {code!r}") from None
    return TypeCode(raw.lower(), kind, _DEFAULT_MODELS[kind])


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class CommandPending:
    target: int
    started_at: float
    # Set once a mid-flight step has been published over the optimistic target.
    reflected: bool = False


IDLE = Idle()

CommandLock = Union[Idle, CommandPending]


@dataclass
class Device:
    snr: str
    model: str = ""
    first_observation: bool = False

    kind: ClassVar[DeviceKind]
    # Fields that only live for the process lifetime.
    _transient: ClassVar[frozenset[str]] = frozenset({"snr", "first_observation"})

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}

    def to_snapshot(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind.value}
        for f in fields(self):
            if f.name in self._transient:
                continue
            out[f.name] = getattr(self, f.name)
        return out


@dataclass
class CoverDevice(Device):
    inverted: bool = False
    position: int | None = None
    last_known_position: int | None = None

    kind: ClassVar[DeviceKind] = DeviceKind.ACTUATOR
    _transient: ClassVar[frozenset[str]] = Device._transient | {"last_known_position"}

    @property
    def open_position(self) -> int:
        return 100 if self.inverted else 0

    @property
    def closed_position(self) -> int:
        return 0 if self.inverted else 100


@dataclass
class TiltCoverDevice(CoverDevice):
    tilt: int | None = None

    kind: ClassVar[DeviceKind] = DeviceKind.ACTUATOR_TILT


@dataclass
class LightDevice(Device):
    brightness: int | None = None
    last_brightness: int | None = None
    command: CommandLock = IDLE

    kind: ClassVar[DeviceKind] = DeviceKind.LIGHT
    _transient: ClassVar[frozenset[str]] = Device._transient | {"command"}


@dataclass
class SwitchDevice(Device):
    is_on: bool | None = None

    kind: ClassVar[DeviceKind] = DeviceKind.SWITCH


@dataclass
class WeatherDevice(Device):
    kind: ClassVar[DeviceKind] = DeviceKind.WEATHER


AnyDevice = Union[CoverDevice, TiltCoverDevice, LightDevice, SwitchDevice, WeatherDevice]

RECORD_TYPES: dict[DeviceKind, type[Device]] = {
    DeviceKind.ACTUATOR_TILT: TiltCoverDevice,
    DeviceKind.ACTUATOR: CoverDevice,
    DeviceKind.LIGHT: LightDevice,
    DeviceKind.SWITCH: SwitchDevice,
    DeviceKind.WEATHER: WeatherDevice,
}


def supports_position_query(kind: DeviceKind) -> bool:
    return kind in (DeviceKind.ACTUATOR_TILT, DeviceKind.ACTUATOR, DeviceKind.LIGHT)
