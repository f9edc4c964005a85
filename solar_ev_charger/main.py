"""Entry point for the solar EV charger."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .charger import Charger
from .charger_manager import ChargerManager
from .config import AppConfig, load_config
from .const import CHANNEL_SIZE, STOP_TIMEOUT
from .control import ControlLoop
from .dbus_client import VictronBusClient
from .echarger import ECharger
from .exceptions import ConfigError, SolarChargerError, WorkerStopTimeout
from .log import setup_logging
from .metering import MeteringAggregator
from .models import ChargerState, ChargerType, MeteringSnapshot
from .openevse import OpenEVSECharger
from .worker import Worker

logger = logging.getLogger(__name__)

CHARGERS: dict[ChargerType, type[Charger]] = {
    cls.type: cls for cls in (OpenEVSECharger, ECharger)
}


def create_charger(config: AppConfig) -> Charger:
    """Build the station variant selected in the configuration."""
    cls = CHARGERS[config.charger.type]
    return cls(
        config.charger,
        config.voltage,
        logging.getLogger(f"{__package__}.{config.charger.type.value}"),
    )


async def stop_workers(workers: list[Worker], timeout: float = STOP_TIMEOUT) -> bool:
    """Stop workers in reverse start order. Returns False if any timed out."""
    ok = True
    for worker in reversed(workers):
        try:
            await worker.stop(timeout)
        except WorkerStopTimeout as e:
            logger.error("error stopping %s worker: %s", worker.name, e)
            ok = False
    return ok


async def run(config: AppConfig) -> int:
    """Run the workers until SIGINT/SIGTERM. Returns the process exit code."""
    shutdown = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    metering_updates: asyncio.Queue[MeteringSnapshot] = asyncio.Queue(CHANNEL_SIZE)
    charger_updates: asyncio.Queue[ChargerState] = asyncio.Queue(CHANNEL_SIZE)

    bus = VictronBusClient(logger=logging.getLogger(f"{__package__}.dbus"))
    metering = MeteringAggregator(config, bus, metering_updates, shutdown)
    charger = ChargerManager(config, create_charger(config), charger_updates, shutdown)
    control = ControlLoop(
        config, charger.commands, metering_updates, charger_updates, shutdown
    )

    started: list[Worker] = []
    try:
        await bus.connect()
        for worker in (metering, charger, control):
            await worker.start()
            started.append(worker)
            logger.info("%s worker started", worker.name)
    except SolarChargerError as e:
        logger.error("starting workers: %s", e)
        await stop_workers(started)
        await bus.close()
        return 1

    await shutdown.wait()
    logger.info("Shutting down")
    return 0 if await stop_workers(started) else 1


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Throttle an EV charging station to the available solar surplus"
    )
    parser.add_argument("--config", "-c", help="path to the JSON options file")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        setup_logging()
        logger.error("error parsing config: %s", e)
        return 1

    setup_logging(config.log_file, config.log_level)
    logger.info(
        "Starting solar EV charger: %s station at %s (%s), %dV, %d-%dA, interval=%.0fs",
        config.charger.type.value,
        config.charger.station_address,
        "mqtt" if config.charger.use_mqtt else "polling",
        config.voltage,
        config.min_amp_threshold,
        config.max_amp_limit,
        config.backoff_interval,
    )
    try:
        return asyncio.run(run(config))
    finally:
        logger.info("Solar EV charger stopped")


if __name__ == "__main__":
    sys.exit(main())
