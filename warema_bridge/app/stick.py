from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Union

from .errors import DriverLoadError, StickCommandError

_LOGGER = logging.getLogger("stick_gateway")


@dataclass(frozen=True)
class StickReady:
    pass


@dataclass(frozen=True)
class ScannedDevice:
    snr: str
    type_code: str


@dataclass(frozen=True)
class DevicesScanned:
    devices: tuple[ScannedDevice, ...] = ()


@dataclass(frozen=True)
class WeatherObserved:
    snr: str
    wind: float | None = None
    temperature: float | None = None
    illuminance: float | None = None
    rain: bool | None = None
    raw_tag: str = ""


@dataclass(frozen=True)
class PositionObserved:
    snr: str
    position: int | None = None
    tilt: int | None = None
    moving: bool = False
    raw_tag: str = ""


StickEvent = Union[StickReady, DevicesScanned, WeatherObserved, PositionObserved]

EmitFn = Callable[[StickEvent], None]


class StickDriver(Protocol):
    """What the bridge needs from a WMS transceiver driver.

    Every method may return either a plain value or an awaitable. ``open``
    receives the emit callback, which is safe to call from any thread.
    """

    def open(self, emit: EmitFn) -> Any: ...

    def close(self) -> Any: ...

    def scan_devices(self) -> Any: ...

    def set_position(self, snr: str, position: int, tilt: int | None = None) -> Any: ...

    def stop(self, snr: str) -> Any: ...

    def add_device(self, snr: str, label: str) -> Any: ...

    def query_position(self, snr: str) -> Any: ...


def load_driver(path: str, config: dict[str, Any]) -> StickDriver:
    """Instantiate a driver given as ``package.module:Class`` (or dotted)."""
    target = str(path or "").strip()
    if not target:
        raise DriverLoadError("no stick driver configured (stick.driver)")
    if ":" in target:
        module_name, _, attr = target.partition(":")
    else:
        module_name, _, attr = target.rpartition(".")
    if not module_name or not attr:
        raise DriverLoadError(f"invalid driver path {target!r}")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise DriverLoadError(f"cannot import stick driver {target!r}: {e}") from e
    return factory(config)


class OfflineDriver:
    """Stand-in used when no transceiver driver could be loaded.

    It never reports ready, so MQTT stays up with an offline bridge state.
    """

    def __init__(self, reason: str = ""):
        self.reason = reason

    def open(self, emit: EmitFn) -> None:
        _LOGGER.warning("No Warema stick available: %s", self.reason or "driver not configured")

    def close(self) -> None:
        return None

    def _drop(self, what: str, snr: str | None = None) -> None:
        _LOGGER.debug("Stick offline, dropping %s %s", what, snr or "")

    def scan_devices(self) -> None:
        self._drop("scan")

    def set_position(self, snr: str, position: int, tilt: int | None = None) -> None:
        self._drop("set_position", snr)

    def stop(self, snr: str) -> None:
        self._drop("stop", snr)

    def add_device(self, snr: str, label: str) -> None:
        self._drop("add_device", snr)

    def query_position(self, snr: str) -> None:
        self._drop("query_position", snr)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class _Job:
    kind: str
    snr: str | None
    call: Callable[[], Any]
    attempts: int = field(default=0)


class StickGateway:
    def __init__(
        self,
        driver: StickDriver,
        *,
        loop: asyncio.AbstractEventLoop,
        command_interval_s: float = 0.1,
        retry_delay_s: float = 0.5,
    ):
        self._driver = driver
        self._loop = loop
        self._command_interval_s = float(max(0.0, command_interval_s))
        self._retry_delay_s = float(max(0.0, retry_delay_s))

        self._listeners: list[Callable[[StickEvent], None]] = []
        self._started = False
        self._last_error: str | None = None

        # Command queue: coalesce per device and pace telegrams so a slider or a
        # group of covers cannot flood the radio.
        self._jobs: list[_Job] = []
        self._jobs_event = asyncio.Event()
        self._worker: asyncio.Task | None = None

    @property
    def started(self) -> bool:
        return self._started

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def pending_commands(self) -> int:
        return len(self._jobs)

    def add_event_listener(self, cb: Callable[[StickEvent], None]) -> None:
        self._listeners.append(cb)

    def _on_driver_event(self, event: StickEvent) -> None:
        # Drivers may call from their own reader thread; hop onto the loop.
        self._loop.call_soon_threadsafe(self._dispatch, event)

    def _dispatch(self, event: StickEvent) -> None:
        for cb in list(self._listeners):
            try:
                cb(event)
            except Exception:
                _LOGGER.exception("Stick event listener failed for %s", type(event).__name__)

    async def start(self) -> None:
        if self._started:
            return
        try:
            await _maybe_await(self._driver.open(self._on_driver_event))
        except Exception as e:
            self._last_error = str(e)
            _LOGGER.exception("Stick start failed")
            raise
        self._started = True
        if self._worker is None or self._worker.done():
            self._worker = self._loop.create_task(self._command_worker())
        _LOGGER.info("Stick started (%s)", type(self._driver).__name__)

    async def stop(self) -> None:
        if not self._started:
            return
        try:
            if self._worker and not self._worker.done():
                self._worker.cancel()
            self._worker = None
            self._jobs.clear()
            self._jobs_event.clear()
            await _maybe_await(self._driver.close())
        finally:
            self._started = False
            _LOGGER.info("Stick stopped")

    def last_weather_broadcast(self) -> WeatherObserved | None:
        getter = getattr(self._driver, "last_weather_broadcast", None)
        if getter is None:
            return None
        try:
            return getter()
        except Exception as e:
            self._last_error = str(e)
            _LOGGER.warning("Reading last weather broadcast failed: %s", e)
            return None

    async def _command_worker(self) -> None:
        try:
            while True:
                await self._jobs_event.wait()
                while self._jobs:
                    job = self._jobs.pop(0)
                    await self._run(job)
                    if self._command_interval_s > 0:
                        await asyncio.sleep(self._command_interval_s)
                self._jobs_event.clear()
        except asyncio.CancelledError:
            return

    async def _call(self, job: _Job) -> None:
        job.attempts += 1
        try:
            await _maybe_await(job.call())
        except Exception as e:
            raise StickCommandError(f"{job.kind} {job.snr or ''} failed: {e}") from e

    async def _run(self, job: _Job) -> None:
        try:
            await self._call(job)
            return
        except StickCommandError as e:
            self._last_error = str(e)
            _LOGGER.warning("%s, retrying once", e)
        await asyncio.sleep(self._retry_delay_s)
        try:
            await self._call(job)
        except StickCommandError as e:
            self._last_error = str(e)
            _LOGGER.error("%s, giving up", e)

    def _enqueue(self, job: _Job, *, coalesce: bool = False, front: bool = False) -> None:
        if coalesce:
            # Keep only the newest pending command of this kind per device.
            self._jobs = [j for j in self._jobs if not (j.kind == job.kind and j.snr == job.snr)]
        if front:
            self._jobs.insert(0, job)
        else:
            self._jobs.append(job)
        self._jobs_event.set()

    def scan_devices(self) -> None:
        self._enqueue(_Job("scan", None, self._driver.scan_devices), coalesce=True)

    def set_position(self, snr: str, position: int, tilt: int | None = None) -> None:
        snr = str(snr)
        pos = int(position)
        self._enqueue(_Job("set_position", snr, lambda: self._driver.set_position(snr, pos, tilt)), coalesce=True)

    def stop_device(self, snr: str) -> None:
        snr = str(snr)
        # STOP preempts any queued move of the same device.
        self._jobs = [j for j in self._jobs if not (j.kind == "set_position" and j.snr == snr)]
        self._enqueue(_Job("stop", snr, lambda: self._driver.stop(snr)), coalesce=True, front=True)

    def add_device(self, snr: str, label: str) -> None:
        snr = str(snr)
        self._enqueue(_Job("add_device", snr, lambda: self._driver.add_device(snr, label)), coalesce=True)

    def query_position(self, snr: str) -> None:
        snr = str(snr)
        self._enqueue(_Job("query_position", snr, lambda: self._driver.query_position(snr)), coalesce=True)
