"""Control loop: turns surplus power into station on/off and amperage commands."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Protocol

from .config import AppConfig
from .exceptions import ChargerError
from .models import ChargerState, ControlDecision, MeteringSnapshot
from .worker import Worker


class StationCommands(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def set_amperage(self, amps: int) -> None: ...


def compute_decision(
    config: AppConfig,
    snapshot: MeteringSnapshot,
    state: ChargerState,
) -> ControlDecision:
    """Work out the desired station state from metering and charger readings.

    The station's own draw is removed from the consumption total, so the
    surplus is what production leaves after the rest of the household. The
    station is only switched off at or below the disable threshold and only
    switched on at or above the enable threshold; in between, it stays as it
    is.
    """
    household = snapshot.total_consumption - state.current_usage
    available = math.floor(snapshot.total_production - household)

    if available <= 0:
        available_amps = 0
    else:
        available_amps = available // config.voltage
    available_amps = min(available_amps, config.max_amp_limit)

    desired = state.active
    if available_amps <= config.disable_charging_threshold:
        desired = False
    elif available_amps >= config.enable_charging_threshold:
        desired = True

    station_amps = max(available_amps, config.min_amp_threshold)
    current_setting = max(0, int(state.current_amp_setting))

    toggle = config.toggle_station_on_threshold
    return ControlDecision(
        available_watts=available,
        available_amps=available_amps,
        desired_active=desired,
        station_amps=station_amps,
        start=toggle and desired and not state.active,
        stop=toggle and not desired and state.active,
        set_amperage=station_amps != current_setting,
    )


class ControlLoop(Worker):
    """Applies a fresh decision every ``backoff_interval`` seconds."""

    name = "control"

    def __init__(
        self,
        config: AppConfig,
        commands: StationCommands,
        metering_updates: asyncio.Queue[MeteringSnapshot],
        charger_updates: asyncio.Queue[ChargerState],
        shutdown: asyncio.Event | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(shutdown, logger or logging.getLogger(__name__))
        self._config = config
        self._commands = commands
        self._metering_updates = metering_updates
        self._charger_updates = charger_updates
        self._lock = asyncio.Lock()
        self._snapshot: MeteringSnapshot | None = None
        self._charger_state: ChargerState | None = None
        self.interval = config.backoff_interval

    async def set_metering(self, snapshot: MeteringSnapshot) -> None:
        async with self._lock:
            self._snapshot = snapshot

    async def set_charger_state(self, state: ChargerState) -> None:
        async with self._lock:
            self._charger_state = state

    async def sync_state(self) -> ControlDecision | None:
        """Run one control cycle.

        Returns the decision, or None if either feed has not reported yet.

        Raises:
            ChargerError: a command failed; later commands were not sent.
        """
        async with self._lock:
            snapshot = self._snapshot
            state = self._charger_state
        if snapshot is None or state is None:
            self.log.info("Empty charger or metering state. Waiting for metrics.")
            return None

        decision = compute_decision(self._config, snapshot, state)
        self.log.debug(
            "charger usage: %.2f, total usage: %.2f, production: %.2f, available: %.0f",
            state.current_usage,
            snapshot.total_consumption,
            snapshot.total_production,
            decision.available_watts,
        )
        self.log.debug(
            "desired state is %s, available amps is %d, station amps is %d",
            decision.desired_active,
            decision.available_amps,
            decision.station_amps,
        )

        if decision.start:
            self.log.info("enabling charging; available amps: %d", decision.available_amps)
            await self._commands.start()
        if decision.stop:
            self.log.info("disabling charging; available amps: %d", decision.available_amps)
            await self._commands.stop()
        if decision.set_amperage:
            self.log.info(
                "setting station amp to %d. Previous setting was %d",
                decision.station_amps,
                max(0, int(state.current_amp_setting)),
            )
            await self._commands.set_amperage(decision.station_amps)
        return decision

    async def _consume(self, queue: asyncio.Queue, apply) -> None:
        while True:
            await apply(await queue.get())

    async def _run(self) -> None:
        consumers = [
            asyncio.create_task(self._consume(self._metering_updates, self.set_metering)),
            asyncio.create_task(self._consume(self._charger_updates, self.set_charger_state)),
        ]
        try:
            while True:
                await self._sleep(self.interval)
                try:
                    await self.sync_state()
                except ChargerError as e:
                    self.log.error("failed to sync state: %s", e)
                except Exception:
                    self.log.exception("unexpected error syncing state")
        finally:
            for task in consumers:
                task.cancel()
            await asyncio.gather(*consumers, return_exceptions=True)
