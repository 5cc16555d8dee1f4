#!/usr/bin/env python3
"""
device_simulator.py

This module implements SimulatedRegulatorTransport, a Transport that emulates
the ERCHM30TZ controller for testing without physical hardware. It parses the
frames the host writes, keeps an internal engine state that setter commands
act on, and queues protocol-correct responses for the host to read.

Features:
  - Engine model: speed approaches the target with inertia, the turbo follows
    with lag, oil pressure and boost follow speed and rack position, and oil
    temperature rises with load. Advances one step per exchange.
  - Protection checks against the simulated thresholds. A trip latches until
    ResetProtection and stops a running engine.
  - Replies with full-layout telemetry, protection status, or a one-byte
    acknowledgement for setters.
  - Fault injection: failing opens, hard I/O failures, dropped responses,
    corrupted checksums and device error codes.
  - Scenario helpers that force an oil pressure drop, an overspeed, a boost
    overload or oil overheating.

Usage Example:
    bus = EventBus()
    simulator = SimulatedRegulatorTransport(event_bus=bus, config={"noise_level": 0.0})
    communicator = RegulatorCommunicator(simulator, event_bus=bus)
    communicator.connect()
    communicator.set_engine_mode(EngineMode.RUN).wait(2.0)
"""

import logging
import random
import struct
import threading
import time
from typing import Any, Dict, List, Optional

from regulator_communication.communicator.transport import Transport
from regulator_communication.config import (
    BOOST_LIMIT_ACTIVE, BOOST_LIMIT_NORMAL, MAX_ENGINE_SPEED, MAX_RACK_POSITION,
    OVERSPEED_ACTIVE, OVERSPEED_NORMAL, PRESSURE_SCALE, RACK_POSITION_SCALE,
    START_MARKER, STOP_FLAG_RUN_CONFIRMED, STOP_FLAG_STOP_CONFIRMED,
)
from regulator_communication.errors import ShortReadError, TransportError
from regulator_communication.events import COMMAND_RECEIVED, EventBus
from regulator_communication.models import (
    ComPortSettings, GetParameters, GetProtectionStatus, ProtectionStatus,
    ProtectionThresholds, RegulatorCommand, ResetProtection, SetEngineMode,
    SetEngineSpeed, SetEquipmentPosition, SetLoadType, SetProtectionThresholds,
    SetRackPosition,
)
from regulator_communication.param_types import CommandType, EngineMode, LoadType
from regulator_communication.protocol.codec import (
    build_response_frame, compute_checksum, format_bytes,
)
from regulator_communication.protocol.commands import parse_payload

# Engine model constants
ENGINE_INERTIA = 0.5
TURBO_LAG = 0.7
TEMP_RISE_RATE = 0.02
TEMP_COOL_RATE = 0.01
AMBIENT_TEMPERATURE = 25.0
MAX_SIMULATED_SPEED = 2600.0
OIL_PRESSURE_CHECK_MIN_SPEED = 500.0

LOAD_FACTORS = {
    LoadType.LOADED: 1.0,
    LoadType.IDLE: 0.5,
    LoadType.SLIPPING: 0.8,
}

# Oil alarm bits set by the simulator
OIL_ALARM = 0x40
OIL_PROTECTION_TRIPPED = 0x80


def _u16(value: float) -> int:
    return max(0, min(0xFFFF, int(round(value))))


class SimulatedRegulatorTransport(Transport):
    """
    Emulates the regulator controller behind the Transport interface.

    Fault injection attributes (set them directly from tests):
        fail_open_count: The next N calls to open() raise TransportError.
        fail_io: The next read or write raises TransportError.
        drop_responses: Valid frames get no reply, so reads come up short.
        corrupt_next_checksum: The next reply carries a wrong checksum.
        next_error_code: The next setter is acknowledged with this code.
    """

    def __init__(self, event_bus: Optional[EventBus] = None,
                 config: Optional[Dict[str, Any]] = None,
                 logger: Optional[logging.Logger] = None):
        self.event_bus = event_bus
        self.config = config or {
            "noise_level": 0.02,
            "seed": None,
        }
        self.logger = logger or logging.getLogger("RegulatorSimulator")
        self._random = random.Random(self.config.get("seed"))
        self._lock = threading.Lock()
        self._rx_buffer = bytearray()
        self._open = False
        self.settings: Optional[ComPortSettings] = None

        self.fail_open_count = 0
        self.fail_io = False
        self.drop_responses = False
        self.corrupt_next_checksum = False
        self.next_error_code = 0

        self.open_count = 0
        self.frames_received: List[bytes] = []
        self.reset_state()

    def reset_state(self) -> None:
        """
        Puts the simulated engine back to a cold stop.
        """
        self.engine_speed = 0.0
        self.target_engine_speed = 0.0
        self.turbo_speed = 0.0
        self.oil_pressure = 6.0
        self.boost_pressure = 0.0
        self.oil_temperature = AMBIENT_TEMPERATURE
        self.rack_position = 0.0
        self.engine_mode = EngineMode.STOP
        self.load_type = LoadType.IDLE
        self.equipment_position = 0
        self.thresholds = ProtectionThresholds()
        self.protection = ProtectionStatus()
        self.all_protections_enabled = True

    # ------------------------------------------------------------------
    # Transport interface
    # ------------------------------------------------------------------

    def open(self, settings: ComPortSettings) -> None:
        with self._lock:
            if self.fail_open_count > 0:
                self.fail_open_count -= 1
                raise TransportError(f"Simulated port {settings.port_name} unavailable")
            self._open = True
            self._rx_buffer.clear()
            self.settings = settings
            self.open_count += 1
        self.logger.info(f"Simulated regulator connected on {settings.port_name}")

    def close(self) -> None:
        with self._lock:
            was_open = self._open
            self._open = False
            self._rx_buffer.clear()
        if was_open:
            self.logger.info("Simulated regulator disconnected")

    @property
    def is_open(self) -> bool:
        return self._open

    def discard_buffers(self) -> None:
        with self._lock:
            self._check_io()
            self._rx_buffer.clear()

    def write(self, data: bytes) -> None:
        with self._lock:
            self._check_io()
            data = bytes(data)
            self.frames_received.append(data)
            command = self._parse_frame(data)
        if command is None:
            return

        if self.event_bus is not None:
            self.event_bus.publish(COMMAND_RECEIVED, command)

        with self._lock:
            reply = self._handle_command(command)
            self._advance()
            if self.drop_responses:
                self.logger.debug(f"Dropping reply to {command.name}")
                return
            if self.corrupt_next_checksum:
                reply = reply[:-1] + bytes([reply[-1] ^ 0xFF])
                self.corrupt_next_checksum = False
            self._rx_buffer.extend(reply)
        self.logger.debug(f"Simulated reply: {format_bytes(reply)}")

    def read_exact(self, size: int, timeout: Optional[float] = None) -> bytes:
        with self._lock:
            self._check_io()
            if len(self._rx_buffer) >= size:
                data = bytes(self._rx_buffer[:size])
                del self._rx_buffer[:size]
                return data
            partial = bytes(self._rx_buffer)
            self._rx_buffer.clear()

        if timeout is None:
            timeout = self.settings.read_timeout_s if self.settings else 1.0
        time.sleep(timeout)
        raise ShortReadError(size, partial)

    @staticmethod
    def list_ports() -> List[str]:
        return ["SIMULATOR"]

    def _check_io(self) -> None:
        if not self._open:
            raise TransportError("Simulated port is not open")
        if self.fail_io:
            self.fail_io = False
            self._open = False
            raise TransportError("Simulated I/O failure")

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    def _parse_frame(self, data: bytes) -> Optional[RegulatorCommand]:
        if len(data) < 6 or data[:2] != START_MARKER:
            self.logger.warning(f"Simulator ignoring malformed frame: {format_bytes(data)}")
            return None
        length = struct.unpack_from('<H', data, 3)[0]
        if len(data) != 6 + length:
            self.logger.warning(f"Simulator ignoring frame with bad length: {format_bytes(data)}")
            return None
        if compute_checksum(data[2:-1]) != data[-1]:
            self.logger.warning(f"Simulator ignoring frame with bad checksum: {format_bytes(data)}")
            return None
        try:
            command_type = CommandType(data[2])
            values = parse_payload(command_type, data[5:-1])
            return self._build_command(command_type, values)
        except (ValueError, struct.error) as e:
            self.logger.warning(f"Simulator ignoring unsupported frame: {str(e)}")
            return None

    @staticmethod
    def _build_command(command_type: CommandType, values: Dict[str, Any]) -> RegulatorCommand:
        if command_type == CommandType.GET_PARAMETERS:
            return GetParameters()
        if command_type == CommandType.SET_ENGINE_SPEED:
            return SetEngineSpeed(values["speed"])
        if command_type == CommandType.SET_RACK_POSITION:
            return SetRackPosition(values["position"])
        if command_type == CommandType.SET_ENGINE_MODE:
            return SetEngineMode(EngineMode(values["mode"]))
        if command_type == CommandType.SET_LOAD_TYPE:
            return SetLoadType(LoadType(values["load_type"]))
        if command_type == CommandType.SET_EQUIPMENT_POSITION:
            return SetEquipmentPosition(values["position"])
        if command_type == CommandType.GET_PROTECTION_STATUS:
            return GetProtectionStatus()
        if command_type == CommandType.SET_PROTECTION_THRESHOLDS:
            return SetProtectionThresholds(ProtectionThresholds(**values))
        return ResetProtection()

    def _handle_command(self, command: RegulatorCommand) -> bytes:
        self.logger.debug(f"Simulated command received: {command.name}")
        if isinstance(command, GetParameters):
            return build_response_frame(self._telemetry_payload())
        if isinstance(command, GetProtectionStatus):
            return build_response_frame(self._protection_payload())

        if self.next_error_code:
            error_code = self.next_error_code
            self.next_error_code = 0
            self.logger.debug(f"Rejecting {command.name} with error code {error_code}")
            return build_response_frame(bytes([error_code]))

        if isinstance(command, SetEngineSpeed):
            self.target_engine_speed = float(command.speed)
        elif isinstance(command, SetRackPosition):
            self.rack_position = float(command.position)
        elif isinstance(command, SetEngineMode):
            self.engine_mode = command.mode
        elif isinstance(command, SetLoadType):
            self.load_type = command.load_type
        elif isinstance(command, SetEquipmentPosition):
            self.equipment_position = command.position
        elif isinstance(command, SetProtectionThresholds):
            self.thresholds = command.thresholds
        elif isinstance(command, ResetProtection):
            self.protection = ProtectionStatus(all_protections_enabled=self.all_protections_enabled)
        self.logger.info(f"Simulator applied {command}")
        return build_response_frame(bytes([0]))

    def _telemetry_payload(self) -> bytes:
        running = self.engine_mode == EngineMode.RUN
        oil_alarm_bits = 0
        if running and self.oil_pressure < self.thresholds.oil_pressure_min:
            oil_alarm_bits |= OIL_ALARM
        if self.protection.oil_pressure_active:
            oil_alarm_bits |= OIL_PROTECTION_TRIPPED

        return struct.pack(
            '<HHHBHHBBBHH',
            _u16(self.engine_speed),
            _u16(self.rack_position * RACK_POSITION_SCALE),
            _u16(self.oil_temperature),
            BOOST_LIMIT_ACTIVE if self.protection.boost_pressure_active else BOOST_LIMIT_NORMAL,
            _u16(self.turbo_speed),
            _u16(self.boost_pressure * PRESSURE_SCALE),
            STOP_FLAG_RUN_CONFIRMED if running else STOP_FLAG_STOP_CONFIRMED,
            OVERSPEED_ACTIVE if self.protection.engine_speed_active else OVERSPEED_NORMAL,
            oil_alarm_bits,
            _u16(self.oil_pressure * PRESSURE_SCALE),
            _u16(self.target_engine_speed),
        )

    def _protection_payload(self) -> bytes:
        status = self.protection
        flags = (
            (0x01 if status.oil_pressure_active else 0)
            | (0x02 if status.engine_speed_active else 0)
            | (0x04 if status.boost_pressure_active else 0)
            | (0x08 if status.oil_temperature_active else 0)
        )
        return bytes([flags, 0x01 if self.all_protections_enabled else 0x00])

    # ------------------------------------------------------------------
    # Engine model
    # ------------------------------------------------------------------

    def _noise(self) -> float:
        level = self.config.get("noise_level", 0.0)
        return 1.0 + self._random.uniform(-level, level)

    def _advance(self) -> None:
        """
        Steps the engine model once, then re-evaluates the protections.
        """
        if self.engine_mode == EngineMode.STOP:
            self.engine_speed = self.engine_speed * 0.95 if self.engine_speed > 10 else 0.0
            if self.oil_temperature > AMBIENT_TEMPERATURE:
                self.oil_temperature -= TEMP_COOL_RATE
            self.oil_pressure = max(0.0, self.oil_pressure * 0.95)
            self.boost_pressure = max(0.0, self.boost_pressure * 0.95)
            self.turbo_speed = max(0.0, self.turbo_speed * 0.95)
            self._check_protections()
            return

        noise = self._noise()
        self.engine_speed += (self.target_engine_speed - self.engine_speed) * ENGINE_INERTIA * noise
        self.engine_speed = max(0.0, min(MAX_SIMULATED_SPEED, self.engine_speed))

        target_turbo = self.engine_speed * 10 * noise
        self.turbo_speed += (target_turbo - self.turbo_speed) * TURBO_LAG

        if self.engine_speed > 0:
            target_oil_pressure = 0.5 + (self.engine_speed / MAX_ENGINE_SPEED) * 3.5 * noise
            self.oil_pressure += (target_oil_pressure - self.oil_pressure) * 0.1
        else:
            self.oil_pressure = 0.0

        rack_factor = self.rack_position / MAX_RACK_POSITION
        target_boost = (self.engine_speed / MAX_ENGINE_SPEED) * 2.5 * rack_factor * noise
        self.boost_pressure += (target_boost - self.boost_pressure) * 0.1

        load_factor = LOAD_FACTORS[self.load_type]
        target_temperature = 50 + (self.engine_speed / MAX_ENGINE_SPEED) * 40 * load_factor
        if self.oil_temperature < target_temperature:
            self.oil_temperature += TEMP_RISE_RATE * load_factor * noise
        elif self.oil_temperature > target_temperature:
            self.oil_temperature -= TEMP_COOL_RATE * noise

        self._check_protections()

    def _check_protections(self) -> None:
        if not self.all_protections_enabled:
            self.protection = ProtectionStatus(all_protections_enabled=False)
            return

        current = self.protection
        tripped = ProtectionStatus(
            oil_pressure_active=current.oil_pressure_active or (
                self.engine_speed > OIL_PRESSURE_CHECK_MIN_SPEED
                and self.oil_pressure < self.thresholds.oil_pressure_min),
            engine_speed_active=current.engine_speed_active
            or self.engine_speed > self.thresholds.engine_speed_max,
            boost_pressure_active=current.boost_pressure_active
            or self.boost_pressure > self.thresholds.boost_pressure_max,
            oil_temperature_active=current.oil_temperature_active
            or self.oil_temperature > self.thresholds.oil_temperature_max,
            all_protections_enabled=True,
        )
        newly_tripped = set(tripped.active_protections()) - set(current.active_protections())
        for name in sorted(newly_tripped):
            self.logger.warning(f"Simulated protection tripped: {name}")
        self.protection = tripped

        if tripped.any_active and self.engine_mode == EngineMode.RUN:
            self.logger.warning(
                f"Simulated engine stopped by protection: {', '.join(tripped.active_protections())}"
            )
            self.engine_mode = EngineMode.STOP

    def set_all_protections_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.all_protections_enabled = enabled
            self._check_protections()
        self.logger.info(f"Simulated protections {'enabled' if enabled else 'disabled'}")

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------

    def simulate_oil_pressure_drop(self) -> None:
        with self._lock:
            self.oil_pressure = 0.5
            self._check_protections()
        self.logger.warning(f"Simulating oil pressure drop: {self.oil_pressure:.2f} kg/cm2")

    def simulate_engine_overspeed(self) -> None:
        with self._lock:
            self.engine_speed = 2500.0
            self._check_protections()
        self.logger.warning(f"Simulating engine overspeed: {self.engine_speed:.0f} rpm")

    def simulate_boost_pressure_overload(self) -> None:
        with self._lock:
            self.boost_pressure = 3.5
            self._check_protections()
        self.logger.warning(f"Simulating boost pressure overload: {self.boost_pressure:.2f} kg/cm2")

    def simulate_oil_overheating(self) -> None:
        with self._lock:
            self.oil_temperature = 130.0
            self._check_protections()
        self.logger.warning(f"Simulating oil overheating: {self.oil_temperature:.1f} C")
