"""Charger connectivity manager: one normalized state feed for any station."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

import aiomqtt

from .charger import Charger
from .config import AppConfig, MQTTSettings
from .const import POLL_INTERVAL, RECONNECT_DELAY
from .exceptions import ChargerError, ChargerInitError
from .models import ChargerState, ConnectionState
from .mqtt_client import MessageHandler, MQTTClient
from .worker import StopRequested, Worker

MQTTFactory = Callable[[MQTTSettings, MessageHandler, logging.Logger], MQTTClient]


class ChargerCommands:
    """Command surface of the station. Each call is one best-effort request.

    Raises ChargerError on failure; retrying is up to the caller.
    """

    def __init__(self, charger: Charger, logger: logging.Logger) -> None:
        self._charger = charger
        self.log = logger

    async def start(self) -> None:
        self.log.info("enabling charging station")
        await self._charger.start()

    async def stop(self) -> None:
        self.log.info("disabling charging station")
        await self._charger.stop()

    async def set_amperage(self, amps: int) -> None:
        if amps < 0:
            raise ValueError(f"amperage must not be negative: {amps}")
        self.log.info("setting station amp to %d", amps)
        await self._charger.set_amperage(amps)


class ChargerManager(Worker):
    """Publishes ChargerState updates from polling or from MQTT.

    Polling mode asks the station for its status every few seconds.
    Subscription mode listens on the station's state topic and reconnects
    after a fixed delay whenever the broker connection is lost.
    """

    name = "charger"

    def __init__(
        self,
        config: AppConfig,
        charger: Charger,
        updates: asyncio.Queue[ChargerState],
        shutdown: asyncio.Event | None = None,
        logger: logging.Logger | None = None,
        mqtt_factory: MQTTFactory = MQTTClient,
    ) -> None:
        super().__init__(shutdown, logger or logging.getLogger(__name__))
        self._charger = charger
        self._updates = updates
        self._use_mqtt = config.charger.use_mqtt
        self._mqtt_settings = config.charger.mqtt
        self._mqtt_factory = mqtt_factory
        self.commands = ChargerCommands(charger, self.log)

        self._lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._state = ChargerState()
        self._initialized = False
        self._identity = ""
        self._topic = ""
        self._client: MQTTClient | None = None

        self.connection_state = ConnectionState.DISCONNECTED
        self.poll_interval = POLL_INTERVAL
        self.reconnect_delay = RECONNECT_DELAY

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def topic(self) -> str:
        return self._topic

    async def state(self) -> ChargerState:
        async with self._lock:
            return self._state

    async def init_state(self) -> None:
        """Fetch the baseline status once; later calls are no-ops.

        Raises:
            ChargerInitError: the station could not be queried.
        """
        async with self._init_lock:
            if self._initialized:
                return
            try:
                status = await self._charger.fetch_status()
            except ChargerError as e:
                raise ChargerInitError(f"initializing state: {e}") from e

            async with self._lock:
                self._state = status.state
            self._identity = status.identity
            self._topic = self._charger.state_topic(status.identity)
            self._initialized = True
            self.log.info(
                "Station %s initialized: active=%s usage=%.1fW setting=%.0fA",
                status.identity or self._charger.address,
                status.state.active,
                status.state.current_usage,
                status.state.current_amp_setting,
            )

    async def _setup(self) -> None:
        await self.init_state()

    async def _run(self) -> None:
        await self._send_state()
        if self._use_mqtt:
            await self._loop_mqtt()
        else:
            await self._loop_polling()

    async def _teardown(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.disconnect()
        self.connection_state = ConnectionState.DISCONNECTED

    async def _send_state(self) -> None:
        async with self._lock:
            state = self._state
        await self._publish(self._updates, state)

    # Polling mode

    async def _loop_polling(self) -> None:
        while True:
            await self._sleep(self.poll_interval)
            try:
                status = await self._charger.fetch_status()
            except ChargerError as e:
                self.log.error("failed to fetch status: %s", e)
                continue
            except Exception:
                self.log.exception("unexpected error fetching status")
                continue
            async with self._lock:
                self._state = status.state
            await self._send_state()

    # Subscription mode

    async def _loop_mqtt(self) -> None:
        while True:
            if self._client is None and not await self._connect():
                await self._sleep(self.reconnect_delay)
                continue

            client = self._client
            await self._until_stopped(client.disconnected.wait())

            # Relinquish the dead session before building a new one
            self._client = None
            self.connection_state = ConnectionState.DISCONNECTED
            await client.disconnect()
            self.log.warning(
                "MQTT connection lost, reconnecting in %.0fs", self.reconnect_delay
            )
            await self._sleep(self.reconnect_delay)

    async def _connect(self) -> bool:
        self.connection_state = ConnectionState.CONNECTING
        try:
            await self.init_state()
            client = self._mqtt_factory(self._mqtt_settings, self._on_message, self.log)
            await client.connect()
            try:
                await client.subscribe(self._topic)
            except aiomqtt.MqttError:
                await client.disconnect()
                raise
        except (aiomqtt.MqttError, ChargerInitError) as e:
            self.log.error("failed to connect to mqtt: %s", e)
            self.connection_state = ConnectionState.DISCONNECTED
            return False

        self._client = client
        self.connection_state = ConnectionState.CONNECTED
        return True

    async def _on_message(self, topic: str, payload: bytes) -> None:
        async with self._lock:
            try:
                state = self._charger.parse_message(topic, payload, self._state)
            except ChargerError as e:
                self.log.error("failed to parse message on %s: %s", topic, e)
                return
            except Exception:
                self.log.exception("unexpected error parsing message on %s", topic)
                return
            if state is None:
                return
            self._state = state

        with contextlib.suppress(StopRequested):
            await self._send_state()
