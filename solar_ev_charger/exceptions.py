"""Exception hierarchy for the solar EV charger."""

from __future__ import annotations


class SolarChargerError(Exception):
    """Base exception for all solar EV charger errors."""


class ConfigError(SolarChargerError):
    """Invalid or missing configuration."""


class InitializationError(SolarChargerError):
    """A worker could not fetch its baseline state."""


class MeteringInitError(InitializationError):
    """Initial values could not be read from the power-metering bus."""


class ChargerInitError(InitializationError):
    """Initial status could not be read from the charging station."""


class BusError(SolarChargerError):
    """D-Bus call failed or returned an error reply."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class ChargerError(SolarChargerError):
    """A charging station exchange failed."""


class ChargerConnectionError(ChargerError):
    """The station could not be reached (network, timeout)."""


class ChargerResponseError(ChargerError):
    """The station returned an error or a malformed response."""

    def __init__(self, message: str, *, command: str = "") -> None:
        self.command = command
        super().__init__(message)


class WorkerStopTimeout(SolarChargerError):
    """A worker did not close within the stop timeout."""
