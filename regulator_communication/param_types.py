"""
param_types.py

Defines the enumerations shared across the protocol: wire command codes,
engine modes, load types, payload field types and connection states.
"""

from enum import Enum, IntEnum


class ParamType(Enum):
    """
    Enumeration of the integer field types used in command payloads.
    Each value is the little-endian struct format character for the field.
    """
    UINT8 = "B"
    UINT16 = "H"

    @property
    def max_value(self) -> int:
        return 0xFF if self is ParamType.UINT8 else 0xFFFF


class CommandType(IntEnum):
    """
    Command codes of the ERCHM30TZ protocol, as written to the wire.
    """
    GET_PARAMETERS = 0x01
    SET_ENGINE_SPEED = 0x02
    SET_RACK_POSITION = 0x03
    SET_ENGINE_MODE = 0x04
    SET_LOAD_TYPE = 0x05
    SET_EQUIPMENT_POSITION = 0x06
    GET_PROTECTION_STATUS = 0x07
    SET_PROTECTION_THRESHOLDS = 0x08
    RESET_PROTECTION = 0x09


class EngineMode(IntEnum):
    STOP = 0
    RUN = 1


class LoadType(IntEnum):
    LOADED = 0
    IDLE = 1
    SLIPPING = 2


class ConnectionState(Enum):
    """
    Connection lifecycle as seen by the communicator.
    CONNECTING covers both the first open and a reconnect cycle.
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
