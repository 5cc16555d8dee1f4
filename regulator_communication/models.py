"""
models.py

Defines the data models used throughout the regulator link: commands,
decoded responses, telemetry, protection status and serial settings.
Utilizes dataclasses to enforce structure and type safety.
"""

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional

from regulator_communication.config import (
    COMMAND_PARAMETERS, DEFAULT_THRESHOLDS, MAX_ENGINE_SPEED,
    MIN_RACK_POSITION, MAX_RACK_POSITION, MAX_EQUIPMENT_POSITION,
    PROTOCOL_BAUDRATE, PROTOCOL_BYTESIZE, PROTOCOL_STOPBITS, PROTOCOL_PARITY,
    DEFAULT_PORT, DEFAULT_READ_TIMEOUT_MS, DEFAULT_WRITE_TIMEOUT_MS,
    DEFAULT_POLLING_INTERVAL_MS, DEFAULT_RESPONSE_DELAY_MS, OIL_ALARM_BITS,
    BOOST_LIMIT_ACTIVE, OVERSPEED_ACTIVE, STOP_FLAG_RUN_CONFIRMED,
)
from regulator_communication.param_types import CommandType, EngineMode, LoadType


def _fits_field(command_type: CommandType, name: str, value: float) -> bool:
    """Checks that a value still fits its wire field once scaled."""
    for field_name, param_type, scale in COMMAND_PARAMETERS[command_type]["fields"]:
        if field_name == name:
            return 0 <= round(value * scale) <= param_type.max_value
    raise KeyError(f"{command_type.name} has no payload field '{name}'")


@dataclass(frozen=True)
class ProtectionThresholds:
    """
    Trip thresholds of the controller's protections.
    """
    oil_pressure_min: float = DEFAULT_THRESHOLDS["oil_pressure_min"]        # kg/cm2
    engine_speed_max: float = DEFAULT_THRESHOLDS["engine_speed_max"]        # rpm
    boost_pressure_max: float = DEFAULT_THRESHOLDS["boost_pressure_max"]    # kg/cm2
    oil_temperature_max: float = DEFAULT_THRESHOLDS["oil_temperature_max"]  # degC

    def __post_init__(self):
        for name, value in asdict(self).items():
            if not _fits_field(CommandType.SET_PROTECTION_THRESHOLDS, name, value):
                raise ValueError(f"Threshold {name}={value} does not fit its wire field")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegulatorCommand:
    """
    Base class for controller commands. Each subclass fixes its command_type
    and carries the values its payload is built from.
    """
    command_type: ClassVar[CommandType]

    @property
    def name(self) -> str:
        return COMMAND_PARAMETERS[self.command_type]["name"]

    @property
    def is_query(self) -> bool:
        return COMMAND_PARAMETERS[self.command_type]["query"]

    def payload_values(self) -> Dict[str, Any]:
        """
        Returns the payload field values keyed by field name.
        """
        return asdict(self)


@dataclass(frozen=True)
class GetParameters(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.GET_PARAMETERS


@dataclass(frozen=True)
class SetEngineSpeed(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.SET_ENGINE_SPEED
    speed: int

    def __post_init__(self):
        if not 0 <= self.speed <= MAX_ENGINE_SPEED:
            raise ValueError(f"Engine speed must be within 0..{MAX_ENGINE_SPEED} rpm, got {self.speed}")
        object.__setattr__(self, "speed", int(round(self.speed)))


@dataclass(frozen=True)
class SetRackPosition(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.SET_RACK_POSITION
    position: float

    def __post_init__(self):
        if not MIN_RACK_POSITION <= self.position <= MAX_RACK_POSITION:
            raise ValueError(
                f"Rack position must be within {MIN_RACK_POSITION}..{MAX_RACK_POSITION}, got {self.position}"
            )


@dataclass(frozen=True)
class SetEngineMode(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.SET_ENGINE_MODE
    mode: EngineMode

    def __post_init__(self):
        object.__setattr__(self, "mode", EngineMode(self.mode))


@dataclass(frozen=True)
class SetLoadType(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.SET_LOAD_TYPE
    load_type: LoadType

    def __post_init__(self):
        object.__setattr__(self, "load_type", LoadType(self.load_type))


@dataclass(frozen=True)
class SetEquipmentPosition(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.SET_EQUIPMENT_POSITION
    position: int

    def __post_init__(self):
        if not 0 <= self.position <= MAX_EQUIPMENT_POSITION:
            raise ValueError(f"Equipment position must be within 0..{MAX_EQUIPMENT_POSITION}, got {self.position}")


@dataclass(frozen=True)
class GetProtectionStatus(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.GET_PROTECTION_STATUS


@dataclass(frozen=True)
class SetProtectionThresholds(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.SET_PROTECTION_THRESHOLDS
    thresholds: ProtectionThresholds = field(default_factory=ProtectionThresholds)

    def payload_values(self) -> Dict[str, Any]:
        return asdict(self.thresholds)


@dataclass(frozen=True)
class ResetProtection(RegulatorCommand):
    command_type: ClassVar[CommandType] = CommandType.RESET_PROTECTION


# ---------------------------------------------------------------------------
# Responses and events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParsedResponse:
    """
    A checksum-valid response payload, tagged with the command it answers.
    """
    command_type: CommandType
    payload: bytes


@dataclass(frozen=True)
class CommandAck:
    """
    Acknowledgement of a setter command.
    error_code is 0 on success, otherwise the code reported by the device.
    """
    command_type: CommandType
    error_code: int = 0

    @property
    def success(self) -> bool:
        return self.error_code == 0


@dataclass(frozen=True)
class ProtectionStatus:
    """
    Protection trip flags reported by the controller.
    """
    oil_pressure_active: bool = False
    engine_speed_active: bool = False
    boost_pressure_active: bool = False
    oil_temperature_active: bool = False
    all_protections_enabled: bool = True

    @property
    def any_active(self) -> bool:
        return (self.oil_pressure_active or self.engine_speed_active
                or self.boost_pressure_active or self.oil_temperature_active)

    def active_protections(self) -> List[str]:
        names = []
        if self.oil_pressure_active:
            names.append("low oil pressure")
        if self.engine_speed_active:
            names.append("engine overspeed")
        if self.boost_pressure_active:
            names.append("boost pressure overload")
        if self.oil_temperature_active:
            names.append("oil overheating")
        return names


class EngineParameters:
    """
    Engine telemetry plus per-field critical flags.

    The critical flags are recomputed whenever a monitored value or its
    threshold is assigned, so they always agree with the current pair.
    """

    def __init__(self, engine_speed: float = 0.0, turbo_speed: float = 0.0,
                 oil_pressure: float = 0.0, boost_pressure: float = 0.0,
                 oil_temperature: float = 0.0, rack_position: float = 0.0,
                 timestamp: Optional[datetime] = None,
                 thresholds: Optional[ProtectionThresholds] = None):
        thresholds = thresholds or ProtectionThresholds()
        self._engine_speed = engine_speed
        self._oil_pressure = oil_pressure
        self._boost_pressure = boost_pressure
        self._oil_temperature = oil_temperature
        self._oil_pressure_threshold = thresholds.oil_pressure_min
        self._engine_speed_threshold = thresholds.engine_speed_max
        self._boost_pressure_threshold = thresholds.boost_pressure_max
        self._oil_temperature_threshold = thresholds.oil_temperature_max
        self.turbo_speed = turbo_speed
        self.rack_position = rack_position
        self.timestamp = timestamp or datetime.now()

        # Populated only from the full telemetry layout
        self.boost_limit_status: Optional[int] = None
        self.stop_flag: Optional[int] = None
        self.overspeed_flag: Optional[int] = None
        self.oil_alarm_bits: Optional[int] = None
        self.target_speed: Optional[int] = None

        self._recompute_flags()

    def _recompute_flags(self) -> None:
        self.is_engine_speed_critical = self._engine_speed > self._engine_speed_threshold
        self.is_oil_pressure_critical = self._oil_pressure < self._oil_pressure_threshold
        self.is_boost_pressure_critical = self._boost_pressure > self._boost_pressure_threshold
        self.is_oil_temperature_critical = self._oil_temperature > self._oil_temperature_threshold

    @property
    def engine_speed(self) -> float:
        return self._engine_speed

    @engine_speed.setter
    def engine_speed(self, value: float) -> None:
        self._engine_speed = value
        self._recompute_flags()

    @property
    def oil_pressure(self) -> float:
        return self._oil_pressure

    @oil_pressure.setter
    def oil_pressure(self, value: float) -> None:
        self._oil_pressure = value
        self._recompute_flags()

    @property
    def boost_pressure(self) -> float:
        return self._boost_pressure

    @boost_pressure.setter
    def boost_pressure(self, value: float) -> None:
        self._boost_pressure = value
        self._recompute_flags()

    @property
    def oil_temperature(self) -> float:
        return self._oil_temperature

    @oil_temperature.setter
    def oil_temperature(self, value: float) -> None:
        self._oil_temperature = value
        self._recompute_flags()

    @property
    def engine_speed_threshold(self) -> float:
        return self._engine_speed_threshold

    @engine_speed_threshold.setter
    def engine_speed_threshold(self, value: float) -> None:
        self._engine_speed_threshold = value
        self._recompute_flags()

    @property
    def oil_pressure_threshold(self) -> float:
        return self._oil_pressure_threshold

    @oil_pressure_threshold.setter
    def oil_pressure_threshold(self, value: float) -> None:
        self._oil_pressure_threshold = value
        self._recompute_flags()

    @property
    def boost_pressure_threshold(self) -> float:
        return self._boost_pressure_threshold

    @boost_pressure_threshold.setter
    def boost_pressure_threshold(self, value: float) -> None:
        self._boost_pressure_threshold = value
        self._recompute_flags()

    @property
    def oil_temperature_threshold(self) -> float:
        return self._oil_temperature_threshold

    @oil_temperature_threshold.setter
    def oil_temperature_threshold(self, value: float) -> None:
        self._oil_temperature_threshold = value
        self._recompute_flags()

    def apply_thresholds(self, thresholds: ProtectionThresholds) -> None:
        """
        Replaces all four thresholds at once.

        Args:
            thresholds: The thresholds to compare against.
        """
        self._oil_pressure_threshold = thresholds.oil_pressure_min
        self._engine_speed_threshold = thresholds.engine_speed_max
        self._boost_pressure_threshold = thresholds.boost_pressure_max
        self._oil_temperature_threshold = thresholds.oil_temperature_max
        self._recompute_flags()

    @property
    def any_critical(self) -> bool:
        return (self.is_engine_speed_critical or self.is_oil_pressure_critical
                or self.is_boost_pressure_critical or self.is_oil_temperature_critical)

    @property
    def boost_limited(self) -> bool:
        return self.boost_limit_status == BOOST_LIMIT_ACTIVE

    @property
    def overspeed(self) -> bool:
        return self.overspeed_flag == OVERSPEED_ACTIVE

    @property
    def running_confirmed(self) -> Optional[bool]:
        if self.stop_flag is None:
            return None
        return self.stop_flag == STOP_FLAG_RUN_CONFIRMED

    def oil_alarms(self) -> List[str]:
        """
        Decodes the oil alarm bits into readable descriptions.
        """
        if not self.oil_alarm_bits:
            return []
        return [text for bit, text in OIL_ALARM_BITS.items() if self.oil_alarm_bits & bit]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "engine_speed": self.engine_speed,
            "turbo_speed": self.turbo_speed,
            "oil_pressure": self.oil_pressure,
            "boost_pressure": self.boost_pressure,
            "oil_temperature": self.oil_temperature,
            "rack_position": self.rack_position,
            "is_engine_speed_critical": self.is_engine_speed_critical,
            "is_oil_pressure_critical": self.is_oil_pressure_critical,
            "is_boost_pressure_critical": self.is_boost_pressure_critical,
            "is_oil_temperature_critical": self.is_oil_temperature_critical,
            "boost_limit_status": self.boost_limit_status,
            "stop_flag": self.stop_flag,
            "overspeed_flag": self.overspeed_flag,
            "oil_alarm_bits": self.oil_alarm_bits,
            "target_speed": self.target_speed,
        }

    def __repr__(self) -> str:
        return (
            f"EngineParameters(speed={self.engine_speed}, turbo={self.turbo_speed}, "
            f"oil_pressure={self.oil_pressure:.2f}, boost_pressure={self.boost_pressure:.2f}, "
            f"oil_temperature={self.oil_temperature}, rack_position={self.rack_position:.2f})"
        )


# ---------------------------------------------------------------------------
# Serial settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComPortSettings:
    """
    Immutable snapshot of the serial port settings. Times are in milliseconds.
    """
    port_name: str = DEFAULT_PORT
    baudrate: int = PROTOCOL_BAUDRATE
    bytesize: int = PROTOCOL_BYTESIZE
    stopbits: float = PROTOCOL_STOPBITS
    parity: str = PROTOCOL_PARITY
    read_timeout: int = DEFAULT_READ_TIMEOUT_MS
    write_timeout: int = DEFAULT_WRITE_TIMEOUT_MS
    polling_interval: int = DEFAULT_POLLING_INTERVAL_MS
    response_delay: int = DEFAULT_RESPONSE_DELAY_MS

    def __post_init__(self):
        if self.read_timeout <= 0 or self.write_timeout <= 0:
            raise ValueError("Read and write timeouts must be positive")
        if self.polling_interval <= 0:
            raise ValueError("Polling interval must be positive")
        if self.response_delay < 0:
            raise ValueError("Response delay cannot be negative")

    @property
    def read_timeout_s(self) -> float:
        return self.read_timeout / 1000.0

    @property
    def write_timeout_s(self) -> float:
        return self.write_timeout / 1000.0

    @property
    def polling_interval_s(self) -> float:
        return self.polling_interval / 1000.0

    @property
    def response_delay_s(self) -> float:
        return self.response_delay / 1000.0

    def with_changes(self, **changes) -> "ComPortSettings":
        """
        Returns a copy of these settings with the given fields replaced.
        """
        return replace(self, **changes)

    def serial_kwargs(self) -> Dict[str, Any]:
        """
        Returns the keyword arguments for opening a serial.Serial port.
        """
        return {
            'port': self.port_name,
            'baudrate': self.baudrate,
            'bytesize': self.bytesize,
            'parity': self.parity,
            'stopbits': self.stopbits,
            'timeout': self.read_timeout_s,
            'write_timeout': self.write_timeout_s,
        }
