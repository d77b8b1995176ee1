from __future__ import annotations

import logging
from dataclasses import fields
from typing import Any, Iterator

from .models import RECORD_TYPES, AnyDevice, Device, DeviceKind

_LOGGER = logging.getLogger("registry")


class DeviceRegistry:
    """Authoritative in-memory view of every known device.

    Only the bridge's event path mutates it; there is no locking. Devices are
    never removed for the lifetime of the process.
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}

    def __contains__(self, snr: object) -> bool:
        return str(snr) in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(list(self._devices.values()))

    def snrs(self) -> list[str]:
        return list(self._devices.keys())

    def get(self, snr: Any) -> AnyDevice | None:
        return self._devices.get(str(snr))  # type: ignore[return-value]

    def upsert(self, snr: Any, kind: DeviceKind, *, model: str = "", inverted: bool | None = None) -> AnyDevice:
        key = str(snr)
        record_type = RECORD_TYPES[kind]
        current = self._devices.get(key)
        if current is None:
            dev = record_type(snr=key, model=model)
            if inverted is not None and hasattr(dev, "inverted"):
                dev.inverted = bool(inverted)  # type: ignore[attr-defined]
            self._devices[key] = dev
            return dev  # type: ignore[return-value]

        if type(current) is not record_type:
            # Kind changed: carry over whatever state the new kind can hold.
            allowed = record_type.field_names()
            carried = {f.name: getattr(current, f.name) for f in fields(current) if f.name in allowed}
            _LOGGER.info("Device %s changes kind %s -> %s", key, current.kind.value, kind.value)
            current = record_type(**carried)
            self._devices[key] = current
        if model:
            current.model = model
        if inverted is not None and hasattr(current, "inverted"):
            current.inverted = bool(inverted)  # type: ignore[attr-defined]
        return current  # type: ignore[return-value]

    def _merge(self, dev: Device, values: dict[str, Any]) -> None:
        allowed = dev.field_names()
        for name, value in values.items():
            if name not in allowed or name in ("snr", "first_observation"):
                _LOGGER.debug("Ignoring field %s for %s device %s", name, dev.kind.value, dev.snr)
                continue
            setattr(dev, name, value)

    def apply_hardware_observation(self, snr: Any, **values: Any) -> AnyDevice | None:
        dev = self._devices.get(str(snr))
        if dev is None:
            return None
        self._merge(dev, values)
        dev.first_observation = True
        return dev  # type: ignore[return-value]

    def apply_command_intent(self, snr: Any, **values: Any) -> AnyDevice | None:
        dev = self._devices.get(str(snr))
        if dev is None:
            return None
        self._merge(dev, values)
        return dev  # type: ignore[return-value]

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {snr: dev.to_snapshot() for snr, dev in self._devices.items()}

    def restore(self, data: dict[str, Any]) -> int:
        """Seed the registry from a snapshot; returns the number of devices loaded."""
        loaded = 0
        for snr, raw in (data or {}).items():
            if not isinstance(raw, dict):
                continue
            try:
                kind = DeviceKind(str(raw.get("kind") or ""))
            except ValueError:
                _LOGGER.warning("Snapshot entry %s has unknown kind %r, skipped", snr, raw.get("kind"))
                continue
            dev = self.upsert(snr, kind, model=str(raw.get("model") or ""))
            values = {k: v for k, v in raw.items() if k not in ("kind", "model")}
            self._merge(dev, values)
            loaded += 1
        return loaded
