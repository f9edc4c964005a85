"""Charging station interface shared by all supported station protocols."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any

import aiohttp

from .config import ChargerConfig
from .const import HTTP_TIMEOUT
from .exceptions import ChargerConnectionError, ChargerResponseError
from .models import ChargerState, ChargerStatus, ChargerType


class Charger(abc.ABC):
    """One station protocol: status reads, commands and MQTT state parsing."""

    type: ChargerType

    def __init__(
        self,
        config: ChargerConfig,
        voltage: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._voltage = voltage
        self.log = logger or logging.getLogger(__name__)

    @property
    def address(self) -> str:
        return self._config.station_address

    @abc.abstractmethod
    async def fetch_status(self) -> ChargerStatus:
        """Read the full station status over HTTP."""

    @abc.abstractmethod
    async def start(self) -> None:
        """Enable charging."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Disable charging."""

    @abc.abstractmethod
    async def set_amperage(self, amps: int) -> None:
        """Set the maximum charge current in amperes."""

    @abc.abstractmethod
    def state_topic(self, identity: str) -> str:
        """MQTT topic (may contain wildcards) the station publishes state on."""

    @abc.abstractmethod
    def parse_message(
        self, topic: str, payload: bytes, current: ChargerState
    ) -> ChargerState | None:
        """Apply an MQTT message to ``current``.

        Returns the new state, or None if the message carries nothing we track.

        Raises:
            ChargerResponseError: the payload could not be parsed.
        """

    def _auth(self) -> aiohttp.BasicAuth | None:
        if not self._config.username:
            return None
        return aiohttp.BasicAuth(self._config.username, self._config.password)

    async def _http_get(self, url: str, decode: bool = True) -> Any:
        """GET ``url`` and decode the JSON body (None when ``decode`` is off)."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    auth=self._auth(),
                    timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT),
                ) as resp:
                    if resp.status != 200:
                        raise ChargerResponseError(
                            f"station returned HTTP {resp.status} for {url}"
                        )
                    if not decode:
                        return None
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChargerConnectionError(f"sending request to {self.address}: {e}") from e
        except ValueError as e:
            raise ChargerResponseError(f"decoding response from {self.address}: {e}") from e
