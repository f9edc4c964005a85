"""Shared fixtures and fakes for the solar EV charger tests."""

from __future__ import annotations

import asyncio
from typing import Any

import aiomqtt
import pytest

from solar_ev_charger.charger import Charger
from solar_ev_charger.config import (
    AppConfig,
    ChargerConfig,
    ConsumerSensor,
    MQTTSettings,
    ProducerSensor,
)
from solar_ev_charger.exceptions import ChargerConnectionError, ChargerResponseError
from solar_ev_charger.models import ChargerState, ChargerStatus, ChargerType
from solar_ev_charger.worker import Worker

PV_PATH = "/Ac/PvOnGrid/L1/Power"
GRID_PATH = "/Ac/Consumption/L1/Power"


def make_config(**overrides: Any) -> AppConfig:
    config = AppConfig(
        voltage=230,
        producers=[ProducerSensor("com.victronenergy.system", PV_PATH, 1.0)],
        consumers=[ConsumerSensor("com.victronenergy.system", GRID_PATH)],
        max_amp_limit=16,
        min_amp_threshold=6,
        disable_charging_threshold=6,
        enable_charging_threshold=8,
        toggle_station_on_threshold=True,
        backoff_interval=0.01,
        charger=ChargerConfig(
            station_address="192.168.1.50",
            mqtt=MQTTSettings(broker="localhost"),
        ),
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.005)


class FakeBus:
    """In-memory stand-in for VictronBusClient."""

    def __init__(self, values: dict[str, Any]) -> None:
        self.values = values
        self.changes: asyncio.Queue = asyncio.Queue()
        self.monitored: list[str] | None = None
        self.closed = False

    async def get_value(self, service: str, path: str) -> Any:
        value = self.values[path]
        if isinstance(value, Exception):
            raise value
        return value

    async def monitor(self, rules: list[str]) -> None:
        self.monitored = rules

    async def next_change(self) -> dict[str, dict[str, Any]]:
        return await self.changes.get()

    async def close(self) -> None:
        self.closed = True


class FakeCharger(Charger):
    """Station variant returning canned statuses and recording commands."""

    type = ChargerType.OPENEVSE

    def __init__(self, statuses: list[ChargerStatus | Exception] | None = None) -> None:
        super().__init__(ChargerConfig(station_address="10.0.0.2"), 230)
        self.statuses = list(statuses or [])
        self.last_status = ChargerStatus(ChargerState(), "fake")
        self.fetches = 0
        self.commands: list[tuple[str, Any]] = []

    async def fetch_status(self) -> ChargerStatus:
        self.fetches += 1
        if self.statuses:
            item = self.statuses.pop(0)
            if isinstance(item, Exception):
                raise item
            self.last_status = item
        return self.last_status

    async def start(self) -> None:
        self.commands.append(("start", None))

    async def stop(self) -> None:
        self.commands.append(("stop", None))

    async def set_amperage(self, amps: int) -> None:
        self.commands.append(("set_amperage", amps))

    def state_topic(self, identity: str) -> str:
        return f"station/{identity}/#"

    def parse_message(self, topic, payload, current):
        if payload == b"crash":
            raise RuntimeError("parser bug")
        if payload == b"garbage":
            raise ChargerResponseError("failed to parse payload")
        if topic.endswith("/amp"):
            return ChargerState(current.active, float(payload), current.current_amp_setting)
        return None


class FakeMQTT:
    """Stand-in for MQTTClient driven by the test."""

    def __init__(self, settings, on_message, logger, fail: bool = False) -> None:
        self.on_message = on_message
        self.fail = fail
        self.disconnected = asyncio.Event()
        self.subscribed: list[str] = []
        self.connected = False
        self.disconnects = 0

    async def connect(self) -> None:
        if self.fail:
            raise aiomqtt.MqttError("connection refused")
        self.connected = True

    async def subscribe(self, topic: str) -> None:
        self.subscribed.append(topic)

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1
        self.disconnected.set()

    def drop(self) -> None:
        """Simulate the broker going away."""
        self.connected = False
        self.disconnected.set()


class MQTTFactory:
    """Creates FakeMQTT sessions; the first ``failures`` connects are refused."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.sessions: list[FakeMQTT] = []

    def __call__(self, settings, on_message, logger) -> FakeMQTT:
        fail = len(self.sessions) < self.failures
        session = FakeMQTT(settings, on_message, logger, fail=fail)
        self.sessions.append(session)
        return session


class RecordingCommands:
    """Records control loop commands; optionally fails one of them."""

    def __init__(
        self, fail_on: str | None = None, error: type[Exception] = ChargerConnectionError
    ) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail_on = fail_on
        self.error = error
        self.failures = 0

    async def _record(self, name: str, arg: Any = None) -> None:
        if name == self.fail_on:
            self.failures += 1
            raise self.error(f"{name} failed")
        self.calls.append((name, arg))

    async def start(self) -> None:
        await self._record("start")

    async def stop(self) -> None:
        await self._record("stop")

    async def set_amperage(self, amps: int) -> None:
        await self._record("set_amperage", amps)


@pytest.fixture
def config() -> AppConfig:
    return make_config()


class SleepyWorker(Worker):
    """Ticks until stopped; teardown can be made slow."""

    name = "sleepy"

    def __init__(self, shutdown=None, teardown_delay: float = 0.0) -> None:
        super().__init__(shutdown)
        self.teardown_delay = teardown_delay
        self.ticks = 0
        self.torn_down = False

    async def _run(self) -> None:
        while True:
            await self._sleep(0.01)
            self.ticks += 1

    async def _teardown(self) -> None:
        await asyncio.sleep(self.teardown_delay)
        self.torn_down = True
