"""Metering aggregator: live producer/consumer power readings from D-Bus."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from .config import AppConfig
from .const import ITEMS_CHANGED_RULE
from .exceptions import BusError, MeteringInitError
from .models import MeteringSnapshot
from .worker import Worker


class BusClient(Protocol):
    async def get_value(self, service: str, path: str) -> Any: ...

    async def monitor(self, rules: list[str]) -> None: ...

    async def next_change(self) -> dict[str, dict[str, Any]]: ...

    async def close(self) -> None: ...


def value_as_float(value: Any) -> float:
    """Convert a numeric bus value to float.

    Raises:
        TypeError: the value is not an int or float.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"invalid type {type(value).__name__}")
    return float(value)


class MeteringAggregator(Worker):
    """Keeps every configured producer and consumer value fresh.

    Publishes a full MeteringSnapshot on ``updates`` whenever a batch of
    bus notifications changes at least one tracked value.
    """

    name = "metering"

    def __init__(
        self,
        config: AppConfig,
        bus: BusClient,
        updates: asyncio.Queue[MeteringSnapshot],
        shutdown: asyncio.Event | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(shutdown, logger or logging.getLogger(__name__))
        self._bus = bus
        self._updates = updates
        self._producers = {p.path: p.multiplier for p in config.producers}
        self._config = config
        self._lock = asyncio.Lock()
        self._producer_values: dict[str, float] = {}
        self._consumer_values: dict[str, float] = {}

    async def snapshot(self) -> MeteringSnapshot:
        async with self._lock:
            return MeteringSnapshot(
                producers=self._producer_values,
                consumers=self._consumer_values,
            )

    async def init_state(self) -> None:
        """Fetch a baseline value for every configured sensor.

        Raises:
            MeteringInitError: any value could not be fetched or converted.
        """
        consumers: dict[str, float] = {}
        producers: dict[str, float] = {}
        try:
            for consumer in self._config.consumers:
                value = await self._bus.get_value(consumer.service, consumer.path)
                consumers[consumer.path] = value_as_float(value)
            for sensor in self._config.producers:
                value = await self._bus.get_value(sensor.service, sensor.path)
                producers[sensor.path] = value_as_float(value) * sensor.multiplier
        except (BusError, TypeError) as e:
            raise MeteringInitError(f"initializing metering state: {e}") from e

        async with self._lock:
            self._consumer_values = consumers
            self._producer_values = producers
        self.log.info(
            "Metering baseline: production=%.1f consumption=%.1f",
            sum(producers.values()),
            sum(consumers.values()),
        )

    async def apply_changes(self, batch: dict[str, dict[str, Any]]) -> bool:
        """Merge one ItemsChanged batch into the cached values.

        Returns True if any tracked value changed.
        """
        changed = False
        async with self._lock:
            for path, fields in batch.items():
                if "Value" not in fields:
                    continue
                is_consumer = path in self._consumer_values
                is_producer = path in self._producers
                if not (is_consumer or is_producer):
                    continue
                try:
                    value = value_as_float(fields["Value"])
                except TypeError as e:
                    self.log.warning("invalid value for %s: %s", path, e)
                    continue

                if is_consumer and self._consumer_values[path] != value:
                    self._consumer_values[path] = value
                    changed = True
                if is_producer:
                    value *= self._producers[path]
                    if self._producer_values.get(path) != value:
                        self._producer_values[path] = value
                        changed = True
        return changed

    async def _setup(self) -> None:
        # Baseline must be complete before we start monitoring
        await self.init_state()
        await self._bus.monitor([ITEMS_CHANGED_RULE])

    async def _run(self) -> None:
        while True:
            batch = await self._until_stopped(self._bus.next_change())
            if await self.apply_changes(batch):
                await self._publish(self._updates, await self.snapshot())

    async def _teardown(self) -> None:
        await self._bus.close()
