from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

from . import cover as covers
from .dedup import RawMessageDeduplicator
from .discovery import DiscoveryCache, availability_topic, bridge_state_topic, discovery_for
from .errors import PayloadError, UnknownDeviceKindError
from .light import EchoLoopGuard
from .models import (
    SILENT_TYPE_CODES,
    CoverDevice,
    Device,
    DeviceKind,
    LightDevice,
    SwitchDevice,
    TiltCoverDevice,
    WeatherDevice,
    kind_for_type_code,
    supports_position_query,
)
from .rain import RainHysteresis
from .rebind import RebindCoordinator
from .registry import DeviceRegistry
from .settings import Settings
from .stick import DevicesScanned, PositionObserved, StickEvent, StickReady, WeatherObserved
from .store import SnapshotStore
from .weather import ILLUMINANCE, TEMPERATURE, WIND, WeatherSmoother, format_metric

_LOGGER = logging.getLogger("warema_bridge")

COMMAND_SUFFIXES = ("set", "set_position", "set_tilt", "light/set", "light/set_brightness")

# Type code used when a position report arrives for a device no scan announced.
FALLBACK_COVER_TYPE = "25"


class Publisher(Protocol):
    def publish(self, topic: str, payload: Any, *, retain: bool = False) -> Any: ...

    def status(self) -> Any: ...


class StickCommands(Protocol):
    def scan_devices(self) -> None: ...

    def set_position(self, snr: str, position: int, tilt: int | None = None) -> None: ...

    def stop_device(self, snr: str) -> None: ...

    def add_device(self, snr: str, label: str) -> None: ...

    def query_position(self, snr: str) -> None: ...

    def last_weather_broadcast(self) -> WeatherObserved | None: ...


def _on_off(value: bool) -> str:
    return "ON" if value else "OFF"


class WaremaBridge:
    """Keeps one consistent device view between the WMS stick and MQTT.

    Every entry point is meant to run on the single asyncio loop thread: stick
    events, MQTT messages (hopped over from paho's thread) and timer ticks.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        mqtt: Publisher,
        stick: StickCommands,
        snapshot: SnapshotStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings
        self._mqtt = mqtt
        self._stick = stick
        self._snapshot = snapshot
        self._clock = clock
        self._base = settings.mqtt.base_topic
        self._prefix = settings.mqtt.discovery_prefix

        eng = settings.engine
        self.registry = DeviceRegistry()
        self.discovery = DiscoveryCache()
        self.dedup = RawMessageDeduplicator(eng.raw_dedup_spacing_s, clock=clock)
        self.weather = WeatherSmoother(eng.weather_ema_alpha, eng.weather_publish_interval_s, clock=clock)
        self.rain = RainHysteresis(eng.rain_on_delay_s, eng.rain_off_delay_s, clock=clock)
        self.guard = EchoLoopGuard(
            self.registry,
            timeout_s=eng.command_timeout_s,
            midflight_policy=eng.light_midflight_policy,
            quantize_mode=eng.brightness_quantize,
            clock=clock,
        )
        self.rebind = RebindCoordinator(
            registry=self.registry,
            discovery=self.discovery,
            base_topic=self._base,
            publish=self._publish,
            query_position=self._stick.query_position,
        )

        self._added_to_stick: set[str] = set()
        self._last_weather_broadcast: float | None = None

    # ---- plumbing -------------------------------------------------------

    def subscriptions(self) -> list[str]:
        return [f"{self._base}/+/{suffix}" for suffix in COMMAND_SUFFIXES]

    def _connected(self) -> bool:
        return bool(self._mqtt.status().connected)

    def _publish(self, topic: str, payload: Any, *, retain: bool) -> None:
        if not self._connected():
            _LOGGER.debug("MQTT offline, dropping publish to %s", topic)
            return
        try:
            self._mqtt.publish(topic, payload, retain=retain)
        except Exception as e:
            _LOGGER.warning("Publish to %s failed: %s", topic, e)

    def _save_snapshot(self) -> None:
        if self._snapshot is not None:
            self._snapshot.request_save(self.registry.snapshot)

    def restore_snapshot(self) -> int:
        if self._snapshot is None:
            return 0
        raw = self._snapshot.read_raw()
        ignored = [snr for snr in raw if snr in self._settings.ignored_devices]
        for snr in ignored:
            _LOGGER.info("Not restoring ignored device %s from snapshot", snr)
            del raw[snr]
        loaded = self.registry.restore(raw)
        if loaded:
            _LOGGER.info("Restored %s devices from %s", loaded, self._snapshot.path)
        return loaded

    def status(self) -> dict[str, Any]:
        return {
            "mqtt_connected": self._connected(),
            "stick_ready": self.rebind.stick_ready,
            "system_ready": self.rebind.system_ready,
            "devices": len(self.registry),
            "discovery_topics": len(self.discovery),
        }

    # ---- MQTT connection ------------------------------------------------

    def on_mqtt_connected(self) -> None:
        if self.rebind.mqtt_connected():
            self._republish_sensor_state()

    def on_mqtt_disconnected(self) -> None:
        self.rebind.mqtt_disconnected()

    def _republish_sensor_state(self) -> None:
        # Weather and rain are derived here, not on the stick; a position query
        # cannot refresh them, so push the current values again.
        for dev in self.registry:
            if not isinstance(dev, WeatherDevice):
                continue
            ch = self.weather.channel(dev.snr)
            if ch is not None:
                for metric, sv in ch.metrics.items():
                    self._publish(f"{self._base}/{dev.snr}/{metric}/state", format_metric(metric, sv.value), retain=True)
            committed = self.rain.committed(dev.snr)
            if committed is not None:
                self._publish(f"{self._base}/{dev.snr}/rain/state", _on_off(committed), retain=True)

    # ---- stick events ---------------------------------------------------

    def handle_stick_event(self, event: StickEvent) -> None:
        if isinstance(event, StickReady):
            self._on_stick_ready()
        elif isinstance(event, DevicesScanned):
            self._on_devices_scanned(event)
        elif isinstance(event, WeatherObserved):
            self._on_weather(event)
        elif isinstance(event, PositionObserved):
            self._on_position(event)
        else:
            _LOGGER.warning("Unknown stick event %r", event)

    def _on_stick_ready(self) -> None:
        _LOGGER.info("Warema stick ready, scanning devices")
        self._stick.scan_devices()
        self.rebind.stick_became_ready()

    def _on_devices_scanned(self, event: DevicesScanned) -> None:
        forced = self._settings.force_devices
        if forced:
            for snr, type_code in forced:
                self.register_device(snr, type_code)
            return
        for scanned in event.devices:
            self.register_device(scanned.snr, scanned.type_code)

    def register_device(self, snr: Any, type_code: str) -> Device | None:
        snr = str(snr or "").strip()
        if not snr:
            _LOGGER.warning("Ignoring scanned device without serial number (type %s)", type_code)
            return None
        if str(type_code).upper() in SILENT_TYPE_CODES:
            _LOGGER.debug("Skipping %s: type %s has nothing to expose", snr, type_code)
            return None
        try:
            info = kind_for_type_code(type_code)
        except UnknownDeviceKindError as e:
            _LOGGER.warning("Device %s: %s", snr, e)
            return None
        if snr in self._settings.ignored_devices:
            _LOGGER.info("Ignoring device %s (type %s)", snr, type_code)
            return None

        _LOGGER.info("Registering %s as %s (%s)", snr, info.kind.value, info.model)
        dev = self.registry.upsert(snr, info.kind, model=info.model, inverted=info.inverted)

        if info.kind != DeviceKind.WEATHER and snr not in self._added_to_stick:
            self._stick.add_device(snr, snr)
            self._added_to_stick.add(snr)

        for topic, payload in discovery_for(discovery_prefix=self._prefix, base_topic=self._base, device=dev):
            self.discovery.remember(topic, payload)
            self._publish(topic, payload, retain=True)
        self._publish(availability_topic(self._base, snr), "online", retain=True)
        self._publish_known_state(dev)

        if supports_position_query(info.kind):
            self._stick.query_position(snr)
        return dev

    def _publish_known_state(self, dev: Device) -> None:
        """Publish state restored from the snapshot; no hardware command is sent."""
        if isinstance(dev, CoverDevice):
            if dev.position is not None:
                state = covers.derive_state(dev.position, False, dev.position, inverted=dev.inverted)
                self._publish(f"{self._base}/{dev.snr}/position", str(dev.position), retain=True)
                self._publish(f"{self._base}/{dev.snr}/state", state, retain=True)
            if isinstance(dev, TiltCoverDevice) and dev.tilt is not None:
                self._publish(f"{self._base}/{dev.snr}/tilt", str(dev.tilt), retain=True)
        elif isinstance(dev, LightDevice):
            brightness = dev.brightness if dev.brightness is not None else dev.last_brightness
            if brightness is not None:
                _LOGGER.info("Restoring LED state for %s: %s%%", dev.snr, brightness)
                self._publish_light(dev.snr, brightness, retain=True)
        elif isinstance(dev, SwitchDevice):
            if dev.is_on is not None:
                self._publish(f"{self._base}/{dev.snr}/state", _on_off(dev.is_on), retain=True)

    def _publish_light(self, snr: str, brightness: int, *, retain: bool) -> None:
        self._publish(f"{self._base}/{snr}/light/brightness", str(brightness), retain=retain)
        self._publish(f"{self._base}/{snr}/light/state", _on_off(brightness > 0), retain=retain)

    def _on_weather(self, event: WeatherObserved, *, polled: bool = False) -> None:
        snr = str(event.snr)
        if not polled:
            self._last_weather_broadcast = self._clock()
            if event.raw_tag and self.dedup.is_duplicate(snr, event.raw_tag):
                _LOGGER.debug("Skipping duplicate weather broadcast from %s", snr)
                return

        dev = self.registry.get(snr)
        if dev is None:
            dev = self.register_device(snr, "63")
            if dev is None:
                return
        if not isinstance(dev, WeatherDevice):
            _LOGGER.warning("Weather broadcast from %s which is a %s, dropped", snr, dev.kind.value)
            return

        self.weather.observe(snr, WIND, event.wind)
        self.weather.observe(snr, TEMPERATURE, event.temperature)
        self.weather.observe(snr, ILLUMINANCE, event.illuminance)
        if self._connected():
            values = self.weather.maybe_publish(snr)
            if values:
                for metric, text in values.items():
                    self._publish(f"{self._base}/{snr}/{metric}/state", text, retain=True)
                _LOGGER.debug("Published smoothed weather for %s", snr)

        if event.rain is not None:
            committed = self.rain.observe(snr, bool(event.rain))
            if committed is not None:
                _LOGGER.info("Rain state for %s is now %s", snr, _on_off(committed))
                self._publish(f"{self._base}/{snr}/rain/state", _on_off(committed), retain=True)

    def _on_position(self, event: PositionObserved) -> None:
        snr = str(event.snr)
        if event.raw_tag and self.dedup.is_duplicate(snr, event.raw_tag):
            _LOGGER.debug("Skipping duplicate position report from %s", snr)
            return
        if event.position is None and event.tilt is None:
            return

        dev = self.registry.get(snr)
        if dev is None:
            _LOGGER.warning("Position report for unregistered device %s, registering as cover", snr)
            dev = self.register_device(snr, FALLBACK_COVER_TYPE)
            if dev is None:
                return

        moving = bool(event.moving)
        if isinstance(dev, LightDevice):
            if event.position is None:
                return
            result = self.guard.handle_feedback(snr, event.position)
            if result.publish:
                self._publish_light(snr, result.brightness, retain=not moving)
            self._save_snapshot()
        elif isinstance(dev, CoverDevice):
            if event.position is not None:
                update = covers.derive(self.registry, snr, event.position, moving)
                self._publish(f"{self._base}/{snr}/position", str(update.position), retain=update.retain)
                self._publish(f"{self._base}/{snr}/state", update.state, retain=update.retain)
            if event.tilt is not None and isinstance(dev, TiltCoverDevice):
                self.registry.apply_hardware_observation(snr, tilt=int(event.tilt))
                self._publish(f"{self._base}/{snr}/tilt", str(int(event.tilt)), retain=True)
            self._save_snapshot()
        elif isinstance(dev, SwitchDevice):
            if event.position is None:
                return
            is_on = int(event.position) > 0
            self.registry.apply_hardware_observation(snr, is_on=is_on)
            self._publish(f"{self._base}/{snr}/state", _on_off(is_on), retain=not moving)
            self._save_snapshot()
        else:
            _LOGGER.warning("Position report for %s device %s, dropped", dev.kind.value, snr)

    # ---- control plane --------------------------------------------------

    def handle_mqtt_message(self, topic: str, payload: str) -> None:
        prefix = self._base + "/"
        if not topic.startswith(prefix):
            _LOGGER.warning("Ignoring message on foreign topic %s", topic)
            return
        snr, _, command = topic[len(prefix) :].partition("/")
        _LOGGER.debug("Received device=%s command=%s payload=%s", snr, command, payload)
        try:
            self._handle_command(snr, command, payload)
        except PayloadError as e:
            _LOGGER.warning("Dropping command %s for %s: %s", command, snr, e)

    def _handle_command(self, snr: str, command: str, payload: str) -> None:
        if command not in COMMAND_SUFFIXES:
            raise PayloadError(f"unknown command topic {command!r}")
        dev = self.registry.get(snr)
        if dev is None:
            raise PayloadError(f"device {snr!r} is not registered")

        if command in ("light/set", "light/set_brightness"):
            if not isinstance(dev, LightDevice):
                raise PayloadError(f"{command} is only valid for lights, {snr} is a {dev.kind.value}")
            raw = self.guard.resolve_target(snr, command, payload)
            target = self.guard.handle_command(snr, raw)
            self._stick.set_position(snr, target, 0)
            self._publish_light(snr, target, retain=True)
            self._save_snapshot()
            return

        if command == "set":
            if isinstance(dev, SwitchDevice):
                self._switch_command(dev, payload)
            elif isinstance(dev, CoverDevice):
                self._cover_command(dev, payload)
            else:
                raise PayloadError(f"set is not supported for {dev.kind.value} {snr}")
            return

        if not isinstance(dev, CoverDevice):
            raise PayloadError(f"{command} is only valid for covers, {snr} is a {dev.kind.value}")
        if command == "set_position":
            position = covers.parse_position(payload)
            _LOGGER.debug("Setting %s to %s", snr, position)
            self._stick.set_position(snr, position)
            return
        # set_tilt
        if not isinstance(dev, TiltCoverDevice):
            raise PayloadError(f"{snr} has no tilt")
        tilt = covers.parse_tilt(payload)
        position = dev.position if dev.position is not None else 0
        _LOGGER.debug("Setting %s tilt to %s, position %s", snr, tilt, position)
        self._stick.set_position(snr, position, tilt)

    def _cover_command(self, dev: CoverDevice, payload: str) -> None:
        cmd = covers.parse_set_command(dev, payload)
        if cmd is None:
            return
        if cmd.stop:
            self._stick.stop_device(dev.snr)
            return
        self._stick.set_position(dev.snr, cmd.position, cmd.tilt)
        if cmd.optimistic_state:
            self._publish(f"{self._base}/{dev.snr}/state", cmd.optimistic_state, retain=False)

    def _switch_command(self, dev: SwitchDevice, payload: str) -> None:
        up = str(payload or "").strip().upper()
        if up not in ("ON", "OFF"):
            raise PayloadError(f"switch payload {payload!r} is not ON/OFF")
        is_on = up == "ON"
        self._stick.set_position(dev.snr, 100 if is_on else 0)
        self.registry.apply_command_intent(dev.snr, is_on=is_on)
        self._publish(f"{self._base}/{dev.snr}/state", _on_off(is_on), retain=True)
        self._save_snapshot()

    # ---- timers ---------------------------------------------------------

    def poll_weather(self) -> None:
        """Fallback for quiet radios: feed the stick's last weather broadcast."""
        interval = self._settings.engine.weather_poll_interval_s
        last = self._last_weather_broadcast
        if last is not None and self._clock() - last < 2 * interval:
            return
        event = self._stick.last_weather_broadcast()
        if event is not None and event.snr:
            self._on_weather(event, polled=True)

    def housekeeping(self) -> None:
        evicted = self.dedup.evict()
        if evicted:
            _LOGGER.debug("Evicted %s stale raw message entries", evicted)
        self.guard.release_expired()

    def shutdown(self) -> None:
        self.rebind.shutting_down()
        self._publish(bridge_state_topic(self._base), "offline", retain=True)
        for snr in self.registry.snrs():
            self._publish(availability_topic(self._base, snr), "offline", retain=True)
        if self._snapshot is not None:
            self._snapshot.flush()
