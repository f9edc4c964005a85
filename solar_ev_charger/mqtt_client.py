"""MQTT connection for subscription mode, built on aiomqtt."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import aiomqtt

from .config import MQTTSettings
from .const import MQTT_QOS

# Type for MQTT message handler callbacks
MessageHandler = Callable[[str, bytes], Coroutine[Any, Any, None]]


class MQTTClient:
    """One MQTT session: connect, subscribe, dispatch, signal disconnection.

    The session does not reconnect by itself. When the broker connection
    drops, ``disconnected`` is set and the owner decides when to build a new
    session.
    """

    def __init__(
        self,
        settings: MQTTSettings,
        on_message: MessageHandler,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings
        self._on_message = on_message
        self._stack: contextlib.AsyncExitStack | None = None
        self._client: aiomqtt.Client | None = None
        self._reader: asyncio.Task | None = None
        self._topics: list[str] = []
        self.disconnected = asyncio.Event()
        self.log = logger or logging.getLogger(__name__)

    async def connect(self) -> None:
        """Connect to the broker and start dispatching messages.

        Raises:
            aiomqtt.MqttError: the broker could not be reached.
        """
        self.log.info(
            "Connecting to MQTT broker at %s:%d",
            self._settings.broker,
            self._settings.port,
        )
        stack = contextlib.AsyncExitStack()
        self._client = await stack.enter_async_context(
            aiomqtt.Client(
                hostname=self._settings.broker,
                port=self._settings.port,
                username=self._settings.username or None,
                password=self._settings.password or None,
                identifier=self._settings.client_id or None,
            )
        )
        self._stack = stack
        self.disconnected.clear()
        self._reader = asyncio.create_task(self._read_loop())
        self.log.info("Connected to %s", self._settings.broker)

    async def subscribe(self, topic: str) -> None:
        if self._client is None:
            raise aiomqtt.MqttError("not connected")
        self.log.info("subscribing to %s", topic)
        await self._client.subscribe(topic, qos=MQTT_QOS)
        self._topics.append(topic)

    async def disconnect(self) -> None:
        """Tear down the session."""
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        stack, self._stack = self._stack, None
        self._client = None
        if stack is not None:
            try:
                await stack.aclose()
            except aiomqtt.MqttError as e:
                self.log.debug("error while disconnecting: %s", e)
        self.disconnected.set()

    async def _read_loop(self) -> None:
        client = self._client
        if client is None:
            return
        try:
            async for message in client.messages:
                topic = str(message.topic)
                if not any(self.topic_matches(t, topic) for t in self._topics):
                    continue
                payload = message.payload
                if isinstance(payload, str):
                    payload = payload.encode("utf-8")
                elif not isinstance(payload, (bytes, bytearray)):
                    payload = str(payload).encode("utf-8")
                try:
                    await self._on_message(topic, bytes(payload))
                except Exception:
                    self.log.exception("Error in handler for topic %s", topic)
        except aiomqtt.MqttError as e:
            self.log.info("Connection to %s has been lost: %s", self._settings.broker, e)
        finally:
            self.disconnected.set()

    @staticmethod
    def topic_matches(pattern: str, topic: str) -> bool:
        """Check if an MQTT topic matches a subscription pattern.

        Supports + (single level) and # (multi level) wildcards.
        """
        pattern_parts = pattern.split("/")
        topic_parts = topic.split("/")

        for i, pat in enumerate(pattern_parts):
            if pat == "#":
                return True
            if i >= len(topic_parts):
                return False
            if pat != "+" and pat != topic_parts[i]:
                return False

        return len(pattern_parts) == len(topic_parts)
