from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from app.bridge import WaremaBridge
from app.settings import Settings, load_settings
from app.stick import WeatherObserved


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class _Status:
    connected: bool
    last_error: str | None = None


class FakeMqtt:
    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.published: list[tuple[str, Any, bool]] = []

    def status(self) -> _Status:
        return _Status(connected=self.connected)

    def publish(self, topic: str, payload: Any, *, retain: bool = False) -> bool:
        self.published.append((topic, payload, retain))
        return True

    def on(self, topic: str) -> list[tuple[Any, bool]]:
        return [(p, r) for t, p, r in self.published if t == topic]

    def last(self, topic: str) -> tuple[Any, bool] | None:
        hits = self.on(topic)
        return hits[-1] if hits else None

    def clear(self) -> None:
        self.published.clear()


class FakeStick:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.weather: WeatherObserved | None = None

    def scan_devices(self) -> None:
        self.calls.append(("scan",))

    def set_position(self, snr: str, position: int, tilt: int | None = None) -> None:
        self.calls.append(("set_position", snr, position, tilt))

    def stop_device(self, snr: str) -> None:
        self.calls.append(("stop", snr))

    def add_device(self, snr: str, label: str) -> None:
        self.calls.append(("add_device", snr))

    def query_position(self, snr: str) -> None:
        self.calls.append(("query_position", snr))

    def last_weather_broadcast(self) -> WeatherObserved | None:
        return self.weather

    def named(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return load_settings({"stick": {"pan_id": "1234"}})


@pytest.fixture
def mqtt() -> FakeMqtt:
    return FakeMqtt()


@pytest.fixture
def stick() -> FakeStick:
    return FakeStick()


@pytest.fixture
def bridge(settings: Settings, mqtt: FakeMqtt, stick: FakeStick, clock: FakeClock) -> WaremaBridge:
    return WaremaBridge(settings=settings, mqtt=mqtt, stick=stick, clock=clock)
