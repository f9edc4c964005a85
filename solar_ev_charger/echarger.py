"""go-eCharger station: HTTP API v1 and its MQTT status topic."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from .charger import Charger
from .config import ChargerConfig
from .const import (
    ECHARGER_KEY_ALLOW,
    ECHARGER_KEY_AMP,
    ECHARGER_NRG_AMPS,
    ECHARGER_NRG_LENGTH,
    ECHARGER_TOPIC,
)
from .exceptions import ChargerResponseError
from .models import ChargerState, ChargerStatus, ChargerType


@dataclass(frozen=True)
class EChargerStatus:
    """The subset of the go-eCharger status document we use."""

    sensor_data: tuple[int, ...]  # "nrg"
    serial_number: str  # "sse"
    amp: int
    allow_charging: int  # "alw"

    @classmethod
    def from_json(cls, data: Any) -> EChargerStatus:
        """Parse a status document.

        Raises:
            ChargerResponseError: a field is missing or has the wrong shape.
        """
        if not isinstance(data, dict):
            raise ChargerResponseError(f"decoding status: unexpected {type(data).__name__}")
        try:
            nrg = tuple(int(v) for v in data["nrg"])
            if len(nrg) != ECHARGER_NRG_LENGTH:
                raise ValueError(f"nrg has {len(nrg)} values")
            return cls(
                sensor_data=nrg,
                serial_number=str(data.get("sse", "")),
                amp=int(data["amp"]),
                allow_charging=int(data["alw"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ChargerResponseError(f"decoding status: {e}") from e

    def to_state(self, voltage: int) -> ChargerState:
        # nrg L1..L3 current is in 0.1A
        total = sum(self.sensor_data[i] for i in ECHARGER_NRG_AMPS)
        amps = total // 10 if total > 0 else 0
        return ChargerState(
            active=self.allow_charging == 1,
            current_usage=float(amps * voltage),
            current_amp_setting=float(self.amp),
        )


class ECharger(Charger):
    """go-eCharger reached via ``/status`` and ``/mqtt?payload=``."""

    type = ChargerType.ECHARGER

    def __init__(
        self,
        config: ChargerConfig,
        voltage: int,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(config, voltage, logger or logging.getLogger(__name__))

    async def fetch_status(self) -> ChargerStatus:
        data = await self._http_get(f"http://{self.address}/status")
        status = EChargerStatus.from_json(data)
        return ChargerStatus(
            state=status.to_state(self._voltage),
            identity=status.serial_number,
        )

    async def _set(self, key: str, value: int) -> None:
        await self._http_get(
            f"http://{self.address}/mqtt?payload={key}={value}", decode=False
        )

    async def start(self) -> None:
        await self._set(ECHARGER_KEY_ALLOW, 1)

    async def stop(self) -> None:
        await self._set(ECHARGER_KEY_ALLOW, 0)

    async def set_amperage(self, amps: int) -> None:
        await self._set(ECHARGER_KEY_AMP, amps)

    def state_topic(self, identity: str) -> str:
        return ECHARGER_TOPIC.format(identity)

    def parse_message(
        self, topic: str, payload: bytes, current: ChargerState
    ) -> ChargerState | None:
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise ChargerResponseError(f"failed to decode status: {e}") from e
        return EChargerStatus.from_json(data).to_state(self._voltage)
