from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Sequence

from .errors import PayloadError
from .models import IDLE, CommandPending, LightDevice
from .registry import DeviceRegistry

_LOGGER = logging.getLogger("light")

# Brightness levels the LED actuator can actually reach.
LED_STEPS: tuple[int, ...] = (100, 89, 78, 67, 56, 45, 34, 23, 12, 1)

QUANTIZE_NEAREST = "nearest"
QUANTIZE_FLOOR = "floor"
QUANTIZE_CEIL = "ceil"
QUANTIZE_MODES = (QUANTIZE_NEAREST, QUANTIZE_FLOOR, QUANTIZE_CEIL)

MIDFLIGHT_REFLECT = "reflect"
MIDFLIGHT_IGNORE = "ignore"
MIDFLIGHT_POLICIES = (MIDFLIGHT_REFLECT, MIDFLIGHT_IGNORE)


def quantize(value: float, mode: str = QUANTIZE_NEAREST, steps: Sequence[int] = LED_STEPS) -> int:
    """Snap a 0-100 brightness to a supported step; 0 always means off."""
    v = max(0.0, min(100.0, float(value)))
    if v <= 0:
        return 0
    ordered = sorted(steps)
    if mode == QUANTIZE_FLOOR:
        below = [s for s in ordered if s <= v]
        return below[-1] if below else 0
    if mode == QUANTIZE_CEIL:
        above = [s for s in ordered if s >= v]
        return above[0] if above else ordered[-1]
    best = ordered[0]
    diff = abs(v - best)
    for s in ordered:
        d = abs(v - s)
        # Strict comparison: on a tie the lower step, seen first, wins.
        if d < diff:
            best, diff = s, d
    return best


@dataclass(frozen=True)
class FeedbackResult:
    brightness: int
    publish: bool
    reason: str


def parse_brightness(payload: str) -> int:
    s = str(payload or "").strip()
    try:
        return int(round(float(s)))
    except (ValueError, OverflowError):
        raise PayloadError(f"brightness payload {payload!r} is not a number") from None


class EchoLoopGuard:
    """Arbitrate between commanded brightness and stick feedback for LEDs.

    A command locks the device on its quantised target. Feedback equal to the
    target releases the lock silently; feedback after ``timeout_s`` releases it
    and is taken as truth. Anything in between is a step of the move and is
    either reflected or ignored according to ``midflight_policy``.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        timeout_s: float = 15.0,
        midflight_policy: str = MIDFLIGHT_REFLECT,
        quantize_mode: str = QUANTIZE_NEAREST,
        clock: Callable[[], float] = time.monotonic,
    ):
        if midflight_policy not in MIDFLIGHT_POLICIES:
            raise ValueError(f"unknown mid-flight policy {midflight_policy!r}")
        if quantize_mode not in QUANTIZE_MODES:
            raise ValueError(f"unknown quantize mode {quantize_mode!r}")
        self._registry = registry
        self._timeout_s = float(timeout_s)
        self._midflight_policy = midflight_policy
        self._quantize_mode = quantize_mode
        self._clock = clock

    def quantize(self, value: float) -> int:
        return quantize(value, self._quantize_mode)

    def _light(self, snr: Any) -> LightDevice:
        dev = self._registry.get(snr)
        if not isinstance(dev, LightDevice):
            raise KeyError(f"{snr} is not a registered light")
        return dev

    def resolve_target(self, snr: Any, command: str, payload: str) -> float:
        """Turn a ``light/set`` or ``light/set_brightness`` payload into a raw target."""
        dev = self._light(snr)
        if command == "light/set":
            up = str(payload or "").strip().upper()
            if up == "ON":
                return dev.last_brightness or 100
            if up == "OFF":
                return 0
            raise PayloadError(f"light/set payload {payload!r} is not ON/OFF")
        if command == "light/set_brightness":
            return parse_brightness(payload)
        raise PayloadError(f"unknown light command {command!r}")

    def handle_command(self, snr: Any, raw_target: float) -> int:
        dev = self._light(snr)
        target = self.quantize(raw_target)
        values: dict[str, Any] = {
            "brightness": target,
            "command": CommandPending(target=target, started_at=self._clock()),
        }
        if target > 0:
            values["last_brightness"] = target
        self._registry.apply_command_intent(dev.snr, **values)
        _LOGGER.debug("LED %s: command %s -> target %s", dev.snr, raw_target, target)
        return target

    def _observe(self, dev: LightDevice, brightness: int, **extra: Any) -> None:
        values: dict[str, Any] = {"brightness": brightness, **extra}
        if brightness > 0:
            values["last_brightness"] = brightness
        self._registry.apply_hardware_observation(dev.snr, **values)

    def handle_feedback(self, snr: Any, raw_observed: float) -> FeedbackResult:
        dev = self._light(snr)
        observed = self.quantize(raw_observed)
        lock = dev.command

        if not isinstance(lock, CommandPending):
            self._observe(dev, observed)
            return FeedbackResult(observed, True, "external")

        if observed == lock.target:
            self._observe(dev, observed, command=IDLE)
            _LOGGER.debug("LED %s: target %s reached", dev.snr, observed)
            if lock.reflected:
                # The last published value is a step, not the target.
                return FeedbackResult(observed, True, "reached")
            return FeedbackResult(observed, False, "echo")

        if self._clock() - lock.started_at > self._timeout_s:
            self._observe(dev, observed, command=IDLE)
            _LOGGER.warning("LED %s: command to %s timed out, lock released at %s", dev.snr, lock.target, observed)
            return FeedbackResult(observed, True, "timeout")

        if self._midflight_policy == MIDFLIGHT_IGNORE:
            return FeedbackResult(observed, False, "ignored")
        self._observe(dev, observed, command=replace(lock, reflected=True))
        return FeedbackResult(observed, True, "midflight")

    def release_expired(self) -> list[str]:
        """Drop command locks older than the timeout; the next feedback is then authoritative."""
        now = self._clock()
        released: list[str] = []
        for dev in self._registry:
            if not isinstance(dev, LightDevice):
                continue
            lock = dev.command
            if isinstance(lock, CommandPending) and now - lock.started_at > self._timeout_s:
                self._registry.apply_command_intent(dev.snr, command=IDLE)
                released.append(dev.snr)
                _LOGGER.warning("LED %s: no confirmation for %s, lock released", dev.snr, lock.target)
        return released
