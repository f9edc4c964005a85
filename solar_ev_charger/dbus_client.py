"""Victron D-Bus client: item reads and ItemsChanged monitoring via dbus-fast."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus
from dbus_fast.errors import DBusError

from .const import (
    BUS_CHANGES_BUFFER,
    BUS_ITEM_GET_VALUE,
    BUS_ITEM_ITEMS_CHANGED,
    BUS_ITEM_INTERFACE,
    DBUS_MONITORING_INTERFACE,
    DBUS_PATH,
    DBUS_SERVICE,
)
from .exceptions import BusError

# {dbus path: {"Value": ..., "Text": ...}}
ItemsChanged = dict[str, dict[str, Any]]


def _unwrap(value: Any) -> Any:
    while isinstance(value, Variant):
        value = value.value
    return value


class VictronBusClient:
    """Reads com.victronenergy.BusItem values and eavesdrops on their changes."""

    def __init__(
        self,
        bus_type: BusType = BusType.SYSTEM,
        logger: logging.Logger | None = None,
    ) -> None:
        self._bus_type = bus_type
        self._bus: MessageBus | None = None
        self._changes: asyncio.Queue[ItemsChanged] = asyncio.Queue(BUS_CHANGES_BUFFER)
        self.log = logger or logging.getLogger(__name__)

    async def connect(self) -> None:
        """Open the bus connection."""
        try:
            self._bus = await MessageBus(bus_type=self._bus_type).connect()
        except (DBusError, OSError) as e:
            raise BusError(f"connecting to dbus: {e}") from e
        self.log.info("Connected to %s bus", self._bus_type.name.lower())

    async def get_value(self, service: str, path: str) -> Any:
        """Call BusItem.GetValue on ``service`` at ``path``."""
        reply = await self._call(
            Message(
                destination=service,
                path=path,
                interface=BUS_ITEM_INTERFACE,
                member=BUS_ITEM_GET_VALUE,
            ),
            path,
        )
        if not reply.body:
            raise BusError(f"empty GetValue reply for {path}", path=path)
        value = _unwrap(reply.body[0])
        self.log.debug("got %r (%s) for %s", value, type(value).__name__, path)
        return value

    async def monitor(self, rules: list[str]) -> None:
        """Become a bus monitor for ``rules`` and start buffering changes.

        The connection can no longer be used for method calls afterwards.
        """
        await self._call(
            Message(
                destination=DBUS_SERVICE,
                path=DBUS_PATH,
                interface=DBUS_MONITORING_INTERFACE,
                member="BecomeMonitor",
                signature="asu",
                body=[rules, 0],
            ),
            DBUS_PATH,
        )
        self._require_bus().add_message_handler(self._on_message)
        self.log.info("Monitoring dbus for %s", rules)

    async def next_change(self) -> ItemsChanged:
        """Wait for the next batch of changed items."""
        return await self._changes.get()

    async def close(self) -> None:
        """Disconnect from the bus."""
        bus, self._bus = self._bus, None
        if bus is None:
            return
        bus.disconnect()
        try:
            await bus.wait_for_disconnect()
        except Exception as e:
            self.log.debug("dbus disconnected with %r", e)
        self.log.info("dbus connection closed")

    def _on_message(self, msg: Message) -> None:
        if msg.message_type != MessageType.SIGNAL or msg.member != BUS_ITEM_ITEMS_CHANGED:
            return
        for item in msg.body:
            if not isinstance(item, dict):
                self.log.warning("got invalid type: %s", type(item).__name__)
                continue
            batch: ItemsChanged = {}
            for path, fields in item.items():
                if isinstance(fields, dict):
                    batch[path] = {k: _unwrap(v) for k, v in fields.items()}
            try:
                self._changes.put_nowait(batch)
            except asyncio.QueueFull:
                self.log.warning("dbus change buffer full, dropping %d items", len(batch))

    async def _call(self, message: Message, path: str) -> Message:
        try:
            reply = await self._require_bus().call(message)
        except (DBusError, OSError, EOFError) as e:
            raise BusError(f"calling {message.member} on {path}: {e}", path=path) from e
        if reply is None:
            raise BusError(f"no reply to {message.member} on {path}", path=path)
        if reply.message_type == MessageType.ERROR:
            detail = reply.body[0] if reply.body else ""
            raise BusError(
                f"fetching {path} from dbus: {reply.error_name} {detail}".rstrip(),
                path=path,
            )
        return reply

    def _require_bus(self) -> MessageBus:
        if self._bus is None:
            raise BusError("dbus connection is not open")
        return self._bus
