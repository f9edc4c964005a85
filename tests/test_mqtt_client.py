"""Tests for the aiomqtt session wrapper."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import aiomqtt
import pytest
from conftest import wait_until

from solar_ev_charger.config import MQTTSettings
from solar_ev_charger.mqtt_client import MQTTClient


class FakeMessages:
    def __init__(self, inbox: asyncio.Queue) -> None:
        self._inbox = inbox

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item


class FakeAiomqttClient:
    """Broker session stand-in; feed ``inbox`` with messages or an MqttError."""

    instances: list[FakeAiomqttClient] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.subscriptions: list[tuple[str, int]] = []
        self.dead = False
        self.exited = False
        FakeAiomqttClient.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.exited = True
        if self.dead:
            raise aiomqtt.MqttError("Disconnected during message iteration")

    async def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscriptions.append((topic, qos))

    @property
    def messages(self) -> FakeMessages:
        return FakeMessages(self.inbox)


def _message(topic: str, payload) -> SimpleNamespace:
    return SimpleNamespace(topic=topic, payload=payload)


@pytest.fixture
def fake_client(monkeypatch):
    FakeAiomqttClient.instances = []
    monkeypatch.setattr(aiomqtt, "Client", FakeAiomqttClient)
    return FakeAiomqttClient.instances


@pytest.mark.asyncio
async def test_dispatches_subscribed_topics(fake_client) -> None:
    received: list[tuple[str, bytes]] = []

    async def on_message(topic: str, payload: bytes) -> None:
        received.append((topic, payload))

    session = MQTTClient(MQTTSettings(broker="mqtt.local", username="ev"), on_message)
    await session.connect()
    try:
        await session.subscribe("openevse/#")
        broker = fake_client[0]
        assert broker.kwargs["hostname"] == "mqtt.local"
        assert broker.kwargs["username"] == "ev"
        assert broker.kwargs["password"] is None
        assert broker.subscriptions == [("openevse/#", 1)]

        broker.inbox.put_nowait(_message("openevse/amp", b"6000"))
        broker.inbox.put_nowait(_message("other/amp", b"1"))
        broker.inbox.put_nowait(_message("openevse/state", "3"))
        await wait_until(lambda: len(received) == 2)
    finally:
        await session.disconnect()

    assert received == [("openevse/amp", b"6000"), ("openevse/state", b"3")]
    assert fake_client[0].exited


@pytest.mark.asyncio
async def test_handler_errors_do_not_end_session(fake_client) -> None:
    received: list[bytes] = []

    async def on_message(topic: str, payload: bytes) -> None:
        if payload == b"bad":
            raise ValueError("bad payload")
        received.append(payload)

    session = MQTTClient(MQTTSettings(broker="mqtt.local"), on_message)
    await session.connect()
    try:
        await session.subscribe("openevse/#")
        broker = fake_client[0]
        broker.inbox.put_nowait(_message("openevse/amp", b"bad"))
        broker.inbox.put_nowait(_message("openevse/amp", b"7"))
        await wait_until(lambda: received == [b"7"])
        assert not session.disconnected.is_set()
    finally:
        await session.disconnect()


@pytest.mark.asyncio
async def test_lost_connection_sets_disconnected(fake_client) -> None:
    async def on_message(topic: str, payload: bytes) -> None:
        pass

    session = MQTTClient(MQTTSettings(broker="mqtt.local"), on_message)
    await session.connect()
    assert not session.disconnected.is_set()

    broker = fake_client[0]
    broker.dead = True
    broker.inbox.put_nowait(aiomqtt.MqttError("Disconnected during message iteration"))
    await asyncio.wait_for(session.disconnected.wait(), 1)

    # Tearing down a dead session must not raise
    await session.disconnect()
    assert broker.exited
    assert session.disconnected.is_set()


@pytest.mark.asyncio
async def test_subscribe_requires_connection() -> None:
    async def on_message(topic: str, payload: bytes) -> None:
        pass

    session = MQTTClient(MQTTSettings(broker="mqtt.local"), on_message)
    with pytest.raises(aiomqtt.MqttError):
        await session.subscribe("openevse/#")
