"""Constants and defaults for the solar EV charger."""

# Electrical defaults
DEFAULT_VOLTAGE = 230
DEFAULT_MAX_AMP_LIMIT = 16  # Amperes
DEFAULT_MIN_AMP_THRESHOLD = 6  # Amperes

# Hysteresis
DEFAULT_DISABLE_CHARGING_THRESHOLD = 6  # Amperes, at or below -> off
DEFAULT_ENABLE_CHARGING_THRESHOLD = 8  # Amperes, at or above -> on

# Control cadence
DEFAULT_BACKOFF_INTERVAL = 30.0  # seconds

# Worker timing
POLL_INTERVAL = 5.0  # seconds between station status polls
RECONNECT_DELAY = 5.0  # seconds before re-establishing MQTT
PUBLISH_TIMEOUT = 30.0  # seconds a snapshot publish may block
STOP_TIMEOUT = 30.0  # seconds stop() waits for a worker to close
HTTP_TIMEOUT = 10.0  # seconds per station HTTP request

# Channels
CHANNEL_SIZE = 10
BUS_CHANGES_BUFFER = 100

# MQTT
DEFAULT_MQTT_PORT = 1883
MQTT_QOS = 1

# Victron D-Bus
BUS_ITEM_INTERFACE = "com.victronenergy.BusItem"
BUS_ITEM_GET_VALUE = "GetValue"
BUS_ITEM_ITEMS_CHANGED = "ItemsChanged"
ITEMS_CHANGED_RULE = (
    "type='signal',member='ItemsChanged',path='/',"
    "interface='com.victronenergy.BusItem'"
)
DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_MONITORING_INTERFACE = "org.freedesktop.DBus.Monitoring"

# OpenEVSE RAPI commands
RAPI_ENABLE = "$FE"
RAPI_SLEEP = "$FS"
RAPI_SET_CURRENT = "$SC {}"
RAPI_GET_CURRENT_CAPACITY = "$GC"
RAPI_GET_CHARGE_CURRENT_VOLTAGE = "$GG"
RAPI_GET_STATE = "$GS"
RAPI_OK = "$OK"
RAPI_NK = "$NK"

# OpenEVSE MQTT topic suffixes (relative to base topic)
EVSE_TOPIC_AMP = "amp"  # Actual current (mA, divide by 1000)
EVSE_TOPIC_PILOT = "pilot"  # Pilot current (A)
EVSE_TOPIC_STATE = "state"  # EVSE state code
EVSE_TOPIC_VOLTAGE = "voltage"  # Measured voltage (V)

# OpenEVSE state codes
EVSE_STATE_NOT_CONNECTED = 1
EVSE_STATE_CONNECTED = 2
EVSE_STATE_CHARGING = 3
EVSE_ACTIVE_STATES = (
    EVSE_STATE_NOT_CONNECTED,
    EVSE_STATE_CONNECTED,
    EVSE_STATE_CHARGING,
)

# go-eCharger
ECHARGER_TOPIC = "go-eCharger/{}/status"
ECHARGER_NRG_LENGTH = 16
ECHARGER_NRG_AMPS = (4, 5, 6)  # L1..L3 current, 0.1A units
ECHARGER_KEY_ALLOW = "alw"
ECHARGER_KEY_AMP = "amp"

# Config
OPTIONS_PATH = "/data/options.json"
CONFIG_ENV = "SEVC_CONFIG"

# Logging
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 2
