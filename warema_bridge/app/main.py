from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable

from fastapi import FastAPI, HTTPException

from .bridge import WaremaBridge
from .discovery import bridge_state_topic
from .errors import DriverLoadError
from .mqtt_client import MqttClient
from .settings import Settings, load_settings, read_options
from .stick import OfflineDriver, StickGateway, load_driver
from .store import SnapshotStore

_LOGGER = logging.getLogger("warema_bridge")
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

BRIDGE_VERSION = "0.1.0"

HTTP_PORT = 8099


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for name in (
        "warema_bridge",
        "stick_gateway",
        "mqtt_client",
        "paho",
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
    ):
        logging.getLogger(name).setLevel(level)

    # One line per HTTP request is noise unless debugging.
    if not debug:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


async def _every(interval_s: float, tick: Callable[[], Any], name: str) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            tick()
        except Exception:
            _LOGGER.exception("Periodic task %s failed", name)


def _build_driver(settings: Settings):
    try:
        return load_driver(settings.stick.driver, settings.stick.driver_config())
    except DriverLoadError as e:
        _LOGGER.error("Stick driver unavailable: %s", e)
        return OfflineDriver(str(e))
    except Exception as e:
        _LOGGER.exception("Stick driver %s failed to initialise", settings.stick.driver)
        return OfflineDriver(str(e))


def create_app(settings: Settings | None = None) -> FastAPI:
    api = FastAPI(title="Warema WMS MQTT bridge", version=BRIDGE_VERSION)

    if settings is None:
        settings = load_settings(read_options())
    api.state.settings = settings
    api.state.bridge = None
    api.state.tasks = []
    _configure_logging(settings.debug)

    @api.on_event("startup")
    async def _startup() -> None:
        loop = asyncio.get_running_loop()

        mqtt = MqttClient(
            host=settings.mqtt.host,
            port=settings.mqtt.port,
            username=settings.mqtt.username,
            password=settings.mqtt.password,
            client_id=settings.mqtt.client_id,
            will_topic=bridge_state_topic(settings.mqtt.base_topic),
            will_payload="offline",
        )
        api.state.mqtt = mqtt

        gateway = StickGateway(
            _build_driver(settings),
            loop=loop,
            command_interval_s=settings.stick.command_interval_s,
            retry_delay_s=settings.stick.command_retry_delay_s,
        )
        api.state.gateway = gateway

        snapshot = SnapshotStore(
            settings.engine.snapshot_path,
            debounce_s=settings.engine.snapshot_debounce_s,
            loop=loop,
        )
        bridge = WaremaBridge(settings=settings, mqtt=mqtt, stick=gateway, snapshot=snapshot)
        bridge.restore_snapshot()
        api.state.bridge = bridge

        gateway.add_event_listener(bridge.handle_stick_event)

        # paho callbacks run on its network thread; the bridge lives on the loop.
        mqtt.set_connect_handler(lambda: loop.call_soon_threadsafe(bridge.on_mqtt_connected))
        mqtt.set_disconnect_handler(lambda: loop.call_soon_threadsafe(bridge.on_mqtt_disconnected))
        mqtt.set_message_handler(lambda topic, payload: loop.call_soon_threadsafe(bridge.handle_mqtt_message, topic, payload))
        for topic in bridge.subscriptions():
            mqtt.subscribe(topic)

        try:
            await gateway.start()
        except Exception as e:
            _LOGGER.error("Warema stick failed to start: %s", e)

        if settings.stick.discovery_mode:
            _LOGGER.warning(
                "Stick PAN id is %s: running in network discovery mode, MQTT is not connected",
                settings.stick.pan_id,
            )
        else:
            _LOGGER.info("Starting MQTT client %s:%s", settings.mqtt.host, settings.mqtt.port)
            mqtt.connect()

        eng = settings.engine
        periodic: list[tuple[float, Callable[[], Any], str]] = [
            (eng.dedup_gc_interval_s, bridge.housekeeping, "housekeeping"),
            (eng.weather_poll_interval_s, bridge.poll_weather, "weather poll"),
        ]
        api.state.tasks = [asyncio.create_task(_every(i, fn, name)) for i, fn, name in periodic]

    @api.on_event("shutdown")
    async def _shutdown() -> None:
        for task in api.state.tasks:
            task.cancel()
        api.state.tasks = []

        bridge: WaremaBridge | None = api.state.bridge
        try:
            if bridge is not None:
                bridge.shutdown()
        finally:
            mqtt: MqttClient | None = getattr(api.state, "mqtt", None)
            if mqtt is not None:
                mqtt.disconnect()

        gateway: StickGateway | None = getattr(api.state, "gateway", None)
        if gateway is not None:
            await gateway.stop()

    def _bridge() -> WaremaBridge:
        bridge = api.state.bridge
        if bridge is None:
            raise HTTPException(status_code=503, detail="bridge not started")
        return bridge

    @api.get("/health")
    async def health():
        return {"status": "ok"}

    @api.get("/api/status")
    async def status():
        bridge = _bridge()
        out = bridge.status()
        gateway: StickGateway | None = getattr(api.state, "gateway", None)
        if gateway is not None:
            out["stick_started"] = gateway.started
            out["stick_pending_commands"] = gateway.pending_commands
            out["stick_last_error"] = gateway.last_error
        mqtt: MqttClient | None = getattr(api.state, "mqtt", None)
        if mqtt is not None:
            out["mqtt_last_error"] = mqtt.status().last_error
        out["discovery_mode"] = settings.stick.discovery_mode
        out["version"] = BRIDGE_VERSION
        return out

    @api.get("/api/devices")
    async def devices():
        return {"devices": _bridge().registry.snapshot()}

    return api


def run() -> None:
    import uvicorn

    app = create_app()
    port = int(os.environ.get("WAREMA_HTTP_PORT") or HTTP_PORT)

    async def _serve() -> None:
        cfg = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
        await uvicorn.Server(cfg).serve()

    asyncio.run(_serve())


if __name__ == "__main__":
    run()
