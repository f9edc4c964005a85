"""OpenEVSE station: RAPI commands over HTTP and state from its MQTT topics."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from urllib.parse import quote

from .charger import Charger
from .config import ChargerConfig
from .const import (
    EVSE_ACTIVE_STATES,
    EVSE_TOPIC_AMP,
    EVSE_TOPIC_PILOT,
    EVSE_TOPIC_STATE,
    EVSE_TOPIC_VOLTAGE,
    RAPI_ENABLE,
    RAPI_GET_CHARGE_CURRENT_VOLTAGE,
    RAPI_GET_CURRENT_CAPACITY,
    RAPI_GET_STATE,
    RAPI_NK,
    RAPI_OK,
    RAPI_SET_CURRENT,
    RAPI_SLEEP,
)
from .exceptions import ChargerResponseError
from .models import ChargerState, ChargerStatus, ChargerType


@dataclass(frozen=True)
class CurrentCapacityInfo:
    """Reply to $GC."""

    min_amps: int
    max_amps: int  # Hardware maximum
    pilot_amps: int  # Currently advertised by the pilot
    current_max_amps: int  # Configured maximum (saved to EEPROM)


@dataclass(frozen=True)
class StateInfo:
    """Reply to $GS."""

    state: int
    elapsed: int
    pilot_state: int
    vflags: int


def _fields(ret: str, count: int, command: str) -> list[str]:
    """Split a RAPI reply into fields, dropping the ^xx checksum."""
    values = ret.split(" ")
    if len(values) != count or values[0] != RAPI_OK:
        raise ChargerResponseError(f"unexpected response: {ret}", command=command)
    values[-1] = values[-1].split("^")[0]
    return values[1:]


def _parse_int(value: str, name: str, command: str, base: int = 10) -> int:
    try:
        return int(value, base)
    except ValueError:
        raise ChargerResponseError(f"parsing {name}: {value!r}", command=command) from None


class OpenEVSECharger(Charger):
    """OpenEVSE WiFi gateway speaking RAPI on ``/r?json=1&rapi=``."""

    type = ChargerType.OPENEVSE

    def __init__(
        self,
        config: ChargerConfig,
        voltage: int,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(config, voltage, logger or logging.getLogger(__name__))
        self._base_topic = config.base_topic.rstrip("/")
        # Last voltage reported over MQTT (V)
        self._measured_volts = float(voltage)
        self._milliamps = 0.0

    def _url(self, command: str) -> str:
        return f"http://{self.address}/r?json=1&rapi={quote(command, safe='')}"

    async def rapi(self, command: str) -> str:
        """Send a RAPI command and return its ``ret`` string."""
        response = await self._http_get(self._url(command))
        if not isinstance(response, dict):
            raise ChargerResponseError(f"unexpected response: {response!r}", command=command)

        error = response.get("error") or ""
        ret = response.get("ret") or ""
        if not isinstance(error, str) or not isinstance(ret, str):
            raise ChargerResponseError(f"unexpected response: {response!r}", command=command)
        if error:
            raise ChargerResponseError(f"error from RAPI: {error!r}", command=command)
        if ret.startswith(RAPI_NK):
            raise ChargerResponseError(f"got error response from RAPI: {ret!r}", command=command)
        return ret

    async def start(self) -> None:
        await self.rapi(RAPI_ENABLE)

    async def stop(self) -> None:
        await self.rapi(RAPI_SLEEP)

    async def set_amperage(self, amps: int) -> None:
        command = RAPI_SET_CURRENT.format(amps)
        ret = await self.rapi(command)
        if not ret.startswith(RAPI_OK):
            raise ChargerResponseError(f"error response from RAPI: {ret}", command=command)

    async def get_current_capacity_info(self) -> CurrentCapacityInfo:
        cmd = RAPI_GET_CURRENT_CAPACITY
        values = _fields(await self.rapi(cmd), 5, cmd)
        return CurrentCapacityInfo(
            min_amps=_parse_int(values[0], "min amps", cmd),
            max_amps=_parse_int(values[1], "max amps", cmd),
            pilot_amps=_parse_int(values[2], "pilot amps", cmd),
            current_max_amps=_parse_int(values[3], "current max amps", cmd),
        )

    async def get_charge_current_and_voltage(self) -> tuple[int, int]:
        """Return (milliamps, millivolts) currently measured."""
        cmd = RAPI_GET_CHARGE_CURRENT_VOLTAGE
        values = _fields(await self.rapi(cmd), 3, cmd)
        return (
            _parse_int(values[0], "milliamps", cmd),
            _parse_int(values[1], "millivolts", cmd),
        )

    async def get_state(self) -> StateInfo:
        cmd = RAPI_GET_STATE
        values = _fields(await self.rapi(cmd), 5, cmd)
        return StateInfo(
            state=_parse_int(values[0], "state", cmd, 16),
            elapsed=_parse_int(values[1], "elapsed", cmd),
            pilot_state=_parse_int(values[2], "pilot state", cmd, 16),
            vflags=_parse_int(values[3], "vflags", cmd, 16),
        )

    async def fetch_status(self) -> ChargerStatus:
        milliamps, millivolts = await self.get_charge_current_and_voltage()
        capacity = await self.get_current_capacity_info()
        state = await self.get_state()

        if millivolts > 0:
            self._measured_volts = millivolts / 1000.0
        self._milliamps = max(0, milliamps)
        return ChargerStatus(
            state=ChargerState(
                active=state.state in EVSE_ACTIVE_STATES,
                current_usage=self._usage_watts(),
                current_amp_setting=float(capacity.current_max_amps),
            ),
            identity=self._base_topic,
        )

    def _usage_watts(self) -> float:
        return self._milliamps / 1000.0 * self._measured_volts

    def state_topic(self, identity: str) -> str:
        return f"{identity or self._base_topic}/#"

    def parse_message(
        self, topic: str, payload: bytes, current: ChargerState
    ) -> ChargerState | None:
        prefix = self._base_topic + "/"
        if not topic.startswith(prefix):
            return None
        suffix = topic[len(prefix):]
        text = payload.decode("utf-8", errors="replace").strip()

        try:
            if suffix == EVSE_TOPIC_AMP:
                self._milliamps = max(0.0, float(text))
                return dataclasses.replace(current, current_usage=self._usage_watts())
            if suffix == EVSE_TOPIC_VOLTAGE:
                volts = float(text)
                if volts > 0:
                    self._measured_volts = volts
                return None
            if suffix == EVSE_TOPIC_STATE:
                return dataclasses.replace(current, active=int(text) in EVSE_ACTIVE_STATES)
            if suffix == EVSE_TOPIC_PILOT:
                return dataclasses.replace(current, current_amp_setting=float(text))
        except ValueError:
            raise ChargerResponseError(
                f"failed to parse payload on {topic}: {text!r}"
            ) from None
        return None
