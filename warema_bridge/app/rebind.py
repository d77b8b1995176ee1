from __future__ import annotations

import logging
from typing import Any, Callable

from .discovery import DiscoveryCache, availability_topic, bridge_state_topic
from .models import supports_position_query
from .registry import DeviceRegistry

_LOGGER = logging.getLogger("rebind")

PublishFn = Callable[..., None]


class RebindCoordinator:
    """Republish everything the broker should know once MQTT and stick are both up.

    The sequence runs once per "system ready" edge. Repeated ready signals are
    absorbed by the latch until MQTT actually drops and reconnects.
    """

    def __init__(
        self,
        *,
        registry: DeviceRegistry,
        discovery: DiscoveryCache,
        base_topic: str,
        publish: PublishFn,
        query_position: Callable[[str], Any],
    ):
        self._registry = registry
        self._discovery = discovery
        self._base_topic = base_topic
        self._publish = publish
        self._query_position = query_position
        self._mqtt_ready = False
        self._stick_ready = False
        self._system_ready = False
        self._shutting_down = False

    @property
    def mqtt_ready(self) -> bool:
        return self._mqtt_ready

    @property
    def stick_ready(self) -> bool:
        return self._stick_ready

    @property
    def system_ready(self) -> bool:
        return self._system_ready

    def mqtt_connected(self) -> bool:
        self._mqtt_ready = True
        return self._try_system_ready()

    def mqtt_disconnected(self) -> None:
        self._mqtt_ready = False
        self._system_ready = False

    def stick_became_ready(self) -> bool:
        self._stick_ready = True
        return self._try_system_ready()

    def shutting_down(self) -> None:
        self._shutting_down = True

    def _try_system_ready(self) -> bool:
        if self._shutting_down or self._system_ready:
            return False
        if not (self._mqtt_ready and self._stick_ready):
            return False
        self._system_ready = True
        _LOGGER.info("System ready (MQTT + stick), rebinding state")
        self.rebind()
        return True

    def rebind(self) -> None:
        for topic, payload in self._discovery.items():
            self._publish(topic, payload, retain=True)

        self._publish(bridge_state_topic(self._base_topic), "online", retain=True)

        snrs = self._registry.snrs()
        for snr in snrs:
            self._publish(availability_topic(self._base_topic, snr), "online", retain=True)

        for snr in snrs:
            dev = self._registry.get(snr)
            if dev is not None and supports_position_query(dev.kind):
                try:
                    self._query_position(snr)
                except Exception:
                    _LOGGER.exception("Position query for %s failed", snr)
