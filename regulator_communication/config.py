"""
config.py

Protocol constants, default tuning values and logging setup for the
ERCHM30TZ regulator link.
"""

import logging
from pathlib import Path
from typing import Optional

import serial

from regulator_communication.param_types import CommandType, ParamType

# Frame layout
START_MARKER = bytes([0xAA, 0x55])
HEADER_SIZE = 4          # marker(2) + length(2) on inbound frames
CHECKSUM_SIZE = 1
MAX_PAYLOAD_LENGTH = 1024

# Serial line parameters fixed by the protocol
PROTOCOL_BAUDRATE = 9600
PROTOCOL_BYTESIZE = serial.EIGHTBITS
PROTOCOL_STOPBITS = serial.STOPBITS_TWO
PROTOCOL_PARITY = serial.PARITY_ODD

# Engine limits used when validating commands
MAX_ENGINE_SPEED = 2400
MIN_RACK_POSITION = 0.0
MAX_RACK_POSITION = 30.0
MAX_EQUIPMENT_POSITION = 0xFFFF

# Fixed-point scaling applied to numeric wire fields
RACK_POSITION_SCALE = 100
PRESSURE_SCALE = 100
OIL_TEMPERATURE_THRESHOLD_SCALE = 10

# Default protection thresholds
DEFAULT_THRESHOLDS = {
    "oil_pressure_min": 1.5,       # kg/cm2
    "engine_speed_max": 2200.0,    # rpm
    "boost_pressure_max": 2.5,     # kg/cm2
    "oil_temperature_max": 110.0,  # degC
}

# Describes every command the controller understands: display name, payload
# fields (name, wire type, scale) and whether it only reads data.
COMMAND_PARAMETERS = {
    CommandType.GET_PARAMETERS: {
        "name": "get_parameters",
        "fields": [],
        "query": True,
        "desc": "Request engine telemetry",
    },
    CommandType.SET_ENGINE_SPEED: {
        "name": "set_engine_speed",
        "fields": [("speed", ParamType.UINT16, 1)],
        "query": False,
        "desc": "Set target engine speed (rpm)",
    },
    CommandType.SET_RACK_POSITION: {
        "name": "set_rack_position",
        "fields": [("position", ParamType.UINT16, RACK_POSITION_SCALE)],
        "query": False,
        "desc": "Set fuel-pump rack position",
    },
    CommandType.SET_ENGINE_MODE: {
        "name": "set_engine_mode",
        "fields": [("mode", ParamType.UINT8, 1)],
        "query": False,
        "desc": "Set engine mode (STOP/RUN)",
    },
    CommandType.SET_LOAD_TYPE: {
        "name": "set_load_type",
        "fields": [("load_type", ParamType.UINT8, 1)],
        "query": False,
        "desc": "Set load type (loaded/idle/slipping)",
    },
    CommandType.SET_EQUIPMENT_POSITION: {
        "name": "set_equipment_position",
        "fields": [("position", ParamType.UINT16, 1)],
        "query": False,
        "desc": "Set equipment position",
    },
    CommandType.GET_PROTECTION_STATUS: {
        "name": "get_protection_status",
        "fields": [],
        "query": True,
        "desc": "Request protection status",
    },
    CommandType.SET_PROTECTION_THRESHOLDS: {
        "name": "set_protection_thresholds",
        "fields": [
            ("oil_pressure_min", ParamType.UINT16, PRESSURE_SCALE),
            ("engine_speed_max", ParamType.UINT16, 1),
            ("boost_pressure_max", ParamType.UINT16, PRESSURE_SCALE),
            ("oil_temperature_max", ParamType.UINT16, OIL_TEMPERATURE_THRESHOLD_SCALE),
        ],
        "query": False,
        "desc": "Set protection trip thresholds",
    },
    CommandType.RESET_PROTECTION: {
        "name": "reset_protection",
        "fields": [],
        "query": False,
        "desc": "Reset tripped protections",
    },
}

# Telemetry payload lengths
COMPACT_TELEMETRY_LENGTH = 12
FULL_TELEMETRY_LENGTH = 18
PROTECTION_STATUS_LENGTH = 2

# Status values carried in the full telemetry layout
BOOST_LIMIT_ACTIVE = 255
BOOST_LIMIT_NORMAL = 0
BOOST_LIMIT_SENSOR_ERROR = 238
STOP_FLAG_RUN_CONFIRMED = 253
STOP_FLAG_STOP_CONFIRMED = 0
OVERSPEED_ACTIVE = 255
OVERSPEED_NORMAL = 0
OIL_ALARM_BITS = {
    0x08: "boost pressure sensor failure",
    0x10: "position sensor failure",
    0x20: "oil pressure sensor failure",
    0x40: "oil alarm",
    0x80: "oil protection tripped",
}

# Serial settings defaults (milliseconds, as entered by operators)
DEFAULT_PORT = "COM1"
DEFAULT_READ_TIMEOUT_MS = 1000
DEFAULT_WRITE_TIMEOUT_MS = 1000
DEFAULT_POLLING_INTERVAL_MS = 500
DEFAULT_RESPONSE_DELAY_MS = 50

# Seconds between protection status polls
PROTECTION_POLL_INTERVAL = 5.0

DISPATCHER_DEFAULTS = {
    "max_attempts": 3,
    "retry_delay": 0.1,
    "idle_wait": 0.1,
}

SUPERVISOR_DEFAULTS = {
    "max_attempts": 3,
    "reconnect_delay": 2.0,
}

# A global list of typical baud rates
BAUD_RATES = [2400, 4800, 9600, 19200, 38400, 57600, 115200]

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(name: str, level: int = logging.DEBUG,
                  log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configures logging for the application.

    Args:
        name: Name of the logger to configure.
        level: Logging level for the logger and its handlers.
        log_file: Optional path of a file to mirror the console output into.

    Returns:
        The configured logger.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Removes old handlers if any
    if logger.hasHandlers():
        logger.handlers.clear()
    logger.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
