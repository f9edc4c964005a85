"""Data models for the solar EV charger."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class ChargerType(Enum):
    """Supported charging station protocols."""

    OPENEVSE = "openevse"
    ECHARGER = "echarger"


class ConnectionState(Enum):
    """Subscription-mode connection states of the charger manager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _frozen(values: Mapping[str, float]) -> Mapping[str, float]:
    return MappingProxyType(dict(values))


@dataclass(frozen=True)
class MeteringSnapshot:
    """Producer and consumer power readings (W), keyed by D-Bus path."""

    producers: Mapping[str, float] = field(default_factory=dict)
    consumers: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Copy so later changes to the aggregator's dicts never leak in
        object.__setattr__(self, "producers", _frozen(self.producers))
        object.__setattr__(self, "consumers", _frozen(self.consumers))

    @property
    def total_production(self) -> float:
        return sum(self.producers.values())

    @property
    def total_consumption(self) -> float:
        return sum(self.consumers.values())


@dataclass(frozen=True)
class ChargerState:
    """Normalized state of the charging station."""

    active: bool = False
    current_usage: float = 0.0  # Station's own draw (W)
    current_amp_setting: float = 0.0  # Configured max current (A)


@dataclass(frozen=True)
class ChargerStatus:
    """A full status reading: normalized state plus station identity."""

    state: ChargerState
    identity: str = ""


@dataclass(frozen=True)
class ControlDecision:
    """Result of one control cycle."""

    available_watts: float
    available_amps: int
    desired_active: bool
    station_amps: int
    start: bool = False
    stop: bool = False
    set_amperage: bool = False

    @property
    def has_commands(self) -> bool:
        return self.start or self.stop or self.set_amperage
