from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable

WIND = "wind"
TEMPERATURE = "temperature"
ILLUMINANCE = "illuminance"

METRICS = (WIND, TEMPERATURE, ILLUMINANCE)


@dataclass
class SmoothedValue:
    value: float
    last_update: float


@dataclass
class WeatherChannelState:
    metrics: dict[str, SmoothedValue] = field(default_factory=dict)
    last_publish: float | None = None


def format_metric(metric: str, value: float) -> str:
    if metric == ILLUMINANCE:
        # Half-up, not banker's rounding.
        return str(int(math.floor(value + 0.5)))
    return f"{value:.1f}"


class WeatherSmoother:
    """Exponential moving average per sensor metric behind a publish gate."""

    def __init__(
        self,
        alpha: float = 0.2,
        publish_interval_s: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self._alpha = float(alpha)
        self._interval_s = max(0.0, float(publish_interval_s))
        self._clock = clock
        self._channels: dict[str, WeatherChannelState] = {}

    def channel(self, snr: str) -> WeatherChannelState | None:
        return self._channels.get(str(snr))

    def value(self, snr: str, metric: str) -> float | None:
        ch = self._channels.get(str(snr))
        if ch is None or metric not in ch.metrics:
            return None
        return ch.metrics[metric].value

    def observe(self, snr: str, metric: str, raw_value: float | None) -> float | None:
        if metric not in METRICS:
            raise ValueError(f"unknown weather metric {metric!r}")
        if raw_value is None:
            return self.value(snr, metric)
        raw = float(raw_value)
        if math.isnan(raw):
            return self.value(snr, metric)
        now = self._clock()
        ch = self._channels.setdefault(str(snr), WeatherChannelState())
        cur = ch.metrics.get(metric)
        if cur is None:
            ch.metrics[metric] = SmoothedValue(value=raw, last_update=now)
            return raw
        cur.value = cur.value + self._alpha * (raw - cur.value)
        cur.last_update = now
        return cur.value

    def maybe_publish(self, snr: str) -> dict[str, str] | None:
        """Return formatted values when the gate is open, and close it again."""
        ch = self._channels.get(str(snr))
        if ch is None or not ch.metrics:
            return None
        now = self._clock()
        if ch.last_publish is not None and now - ch.last_publish < self._interval_s:
            return None
        ch.last_publish = now
        return {m: format_metric(m, sv.value) for m, sv in ch.metrics.items()}
