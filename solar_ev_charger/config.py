"""Configuration loading for the solar EV charger."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field

from .const import (
    CONFIG_ENV,
    DEFAULT_BACKOFF_INTERVAL,
    DEFAULT_DISABLE_CHARGING_THRESHOLD,
    DEFAULT_ENABLE_CHARGING_THRESHOLD,
    DEFAULT_MAX_AMP_LIMIT,
    DEFAULT_MIN_AMP_THRESHOLD,
    DEFAULT_MQTT_PORT,
    DEFAULT_VOLTAGE,
    OPTIONS_PATH,
)
from .exceptions import ConfigError
from .models import ChargerType

logger = logging.getLogger(__name__)


@dataclass
class ProducerSensor:
    """A D-Bus item measuring power production.

    The multiplier scales the raw reading to the system's total output,
    e.g. watts produced per volt measured by a reference sensor.
    """

    service: str
    path: str
    multiplier: float = 1.0


@dataclass
class ConsumerSensor:
    """A D-Bus item measuring power consumption (W)."""

    service: str
    path: str


@dataclass
class MQTTSettings:
    """Broker connection settings for subscription mode."""

    broker: str = ""
    port: int = DEFAULT_MQTT_PORT
    username: str = ""
    password: str = ""
    client_id: str = ""


@dataclass
class ChargerConfig:
    """Charging station connection settings."""

    type: ChargerType = ChargerType.OPENEVSE
    station_address: str = ""
    username: str = ""
    password: str = ""
    use_mqtt: bool = False
    # OpenEVSE MQTT base topic
    base_topic: str = "openevse"
    mqtt: MQTTSettings = field(default_factory=MQTTSettings)


@dataclass
class AppConfig:
    """Application configuration."""

    voltage: int = DEFAULT_VOLTAGE
    producers: list[ProducerSensor] = field(default_factory=list)
    consumers: list[ConsumerSensor] = field(default_factory=list)

    # Limits
    max_amp_limit: int = DEFAULT_MAX_AMP_LIMIT
    min_amp_threshold: int = DEFAULT_MIN_AMP_THRESHOLD

    # Hysteresis
    disable_charging_threshold: int = DEFAULT_DISABLE_CHARGING_THRESHOLD
    enable_charging_threshold: int = DEFAULT_ENABLE_CHARGING_THRESHOLD
    toggle_station_on_threshold: bool = True

    backoff_interval: float = DEFAULT_BACKOFF_INTERVAL

    charger: ChargerConfig = field(default_factory=ChargerConfig)

    # Logging
    log_file: str = ""
    log_level: str = "INFO"

    def validate(self) -> None:
        """Check the configuration, raising ConfigError on the first problem."""
        if not self.consumers:
            raise ConfigError("no consumers defined")
        if not self.producers:
            raise ConfigError("no input sensors defined")
        if self.voltage <= 0:
            raise ConfigError("electrical_pressure needs to be non zero")

        for sensor in self.producers + self.consumers:
            if not sensor.service or not sensor.path:
                raise ConfigError(f"sensor {sensor!r} needs dbus_interface and path")
        for producer in self.producers:
            if producer.multiplier == 0:
                producer.multiplier = 1.0

        for name in (
            "max_amp_limit",
            "min_amp_threshold",
            "disable_charging_threshold",
            "enable_charging_threshold",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.min_amp_threshold > self.max_amp_limit:
            raise ConfigError(
                f"min_amp_threshold ({self.min_amp_threshold}) is above "
                f"max_amp_limit ({self.max_amp_limit})"
            )
        if self.disable_charging_threshold >= self.enable_charging_threshold:
            raise ConfigError(
                "disable_charging_threshold must be lower than enable_charging_threshold"
            )
        if self.backoff_interval <= 0:
            raise ConfigError("backoff_interval must be positive")

        if not self.charger.station_address:
            raise ConfigError("charger.station_address is required")
        if self.charger.use_mqtt and not self.charger.mqtt.broker:
            raise ConfigError("charger.mqtt.broker is required when use_mqtt is set")


def load_config(path: str | None = None) -> AppConfig:
    """Load configuration from a JSON options file and environment variables.

    Raises:
        ConfigError: the file is unreadable or the result does not validate.
    """
    config = AppConfig()
    path = path or os.environ.get(CONFIG_ENV, OPTIONS_PATH)

    if os.path.exists(path):
        try:
            with open(path) as f:
                options = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigError(f"failed to load {path}: {e}") from e
        logger.info("Loaded configuration from %s", path)
        _apply_options(config, options)
    else:
        logger.warning("Config file %s not found, using environment only", path)

    _apply_env(config)
    config.validate()
    return config


def _apply_options(config: AppConfig, options: dict) -> None:
    """Apply options file values to config."""
    try:
        if options.get("electrical_pressure"):
            config.voltage = int(options["electrical_pressure"])
        if options.get("input_sensors"):
            config.producers = [
                ProducerSensor(
                    service=s["dbus_interface"],
                    path=s["path"],
                    multiplier=float(s.get("input_sensor_multiplier", 1.0)),
                )
                for s in options["input_sensors"]
            ]
        if options.get("consumers"):
            config.consumers = [
                ConsumerSensor(service=c["dbus_interface"], path=c["path"])
                for c in options["consumers"]
            ]
        if options.get("max_amp_limit") is not None:
            config.max_amp_limit = int(options["max_amp_limit"])
        if options.get("min_amp_threshold") is not None:
            config.min_amp_threshold = int(options["min_amp_threshold"])
        if options.get("disable_charging_threshold") is not None:
            config.disable_charging_threshold = int(options["disable_charging_threshold"])
        if options.get("enable_charging_threshold") is not None:
            config.enable_charging_threshold = int(options["enable_charging_threshold"])
        if options.get("toggle_station_on_threshold") is not None:
            config.toggle_station_on_threshold = bool(options["toggle_station_on_threshold"])
        if options.get("backoff_interval") is not None:
            config.backoff_interval = float(options["backoff_interval"])
        if options.get("log_file"):
            config.log_file = options["log_file"]
        if options.get("log_level"):
            config.log_level = str(options["log_level"]).upper()
        if options.get("charger"):
            _apply_charger(config.charger, options["charger"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid configuration value: {e}") from e


def _apply_charger(charger: ChargerConfig, options: dict) -> None:
    """Apply the charger section of the options file."""
    if options.get("type"):
        try:
            charger.type = ChargerType(options["type"])
        except ValueError:
            raise ConfigError(f"unknown charger type: {options['type']}") from None
    if options.get("station_address"):
        charger.station_address = options["station_address"]
    if options.get("username"):
        charger.username = options["username"]
    if options.get("password"):
        charger.password = options["password"]
    if options.get("use_mqtt") is not None:
        charger.use_mqtt = bool(options["use_mqtt"])
    if options.get("base_topic"):
        charger.base_topic = options["base_topic"].rstrip("/")

    mqtt = options.get("mqtt") or {}
    if mqtt.get("broker"):
        charger.mqtt.broker = mqtt["broker"]
    if mqtt.get("port"):
        charger.mqtt.port = int(mqtt["port"])
    if mqtt.get("username"):
        charger.mqtt.username = mqtt["username"]
    if mqtt.get("password"):
        charger.mqtt.password = mqtt["password"]
    if mqtt.get("client_id"):
        charger.mqtt.client_id = mqtt["client_id"]


def _apply_env(config: AppConfig) -> None:
    """Apply environment variable overrides to config."""
    try:
        config.voltage = int(os.environ.get("SEVC_VOLTAGE", config.voltage))
        config.max_amp_limit = int(os.environ.get("SEVC_MAX_AMP_LIMIT", config.max_amp_limit))
        config.backoff_interval = float(
            os.environ.get("SEVC_BACKOFF_INTERVAL", config.backoff_interval)
        )
        config.charger.mqtt.port = int(os.environ.get("SEVC_MQTT_PORT", config.charger.mqtt.port))
    except ValueError as e:
        raise ConfigError(f"invalid environment value: {e}") from e

    config.charger.station_address = os.environ.get(
        "SEVC_STATION_ADDRESS", config.charger.station_address
    )
    config.charger.username = os.environ.get("SEVC_STATION_USERNAME", config.charger.username)
    config.charger.password = os.environ.get("SEVC_STATION_PASSWORD", config.charger.password)
    config.charger.mqtt.broker = os.environ.get("SEVC_MQTT_HOST", config.charger.mqtt.broker)
    config.charger.mqtt.username = os.environ.get(
        "SEVC_MQTT_USERNAME", config.charger.mqtt.username
    )
    config.charger.mqtt.password = os.environ.get(
        "SEVC_MQTT_PASSWORD", config.charger.mqtt.password
    )
    config.log_level = os.environ.get("SEVC_LOG_LEVEL", config.log_level).upper()
