"""
projector.py

Turns decoded response payloads into domain objects: EngineParameters for
telemetry, ProtectionStatus for protection queries and CommandAck for
every setter.
"""

import logging
import struct
import threading
from datetime import datetime
from typing import Optional, Union

from regulator_communication.config import (
    COMPACT_TELEMETRY_LENGTH, FULL_TELEMETRY_LENGTH, PROTECTION_STATUS_LENGTH,
    PRESSURE_SCALE, RACK_POSITION_SCALE,
)
from regulator_communication.errors import MalformedPayload
from regulator_communication.models import (
    CommandAck, EngineParameters, ParsedResponse, ProtectionStatus,
    ProtectionThresholds, RegulatorCommand, SetProtectionThresholds,
)
from regulator_communication.param_types import CommandType

COMPACT_TELEMETRY_FORMAT = '<HHHHHH'
FULL_TELEMETRY_FORMAT = '<HHHBHHBBBHH'

Projection = Union[EngineParameters, ProtectionStatus, CommandAck]


class ResponseProjector:
    """
    Projects responses into domain events.

    Holds the protection thresholds used for the telemetry critical flags.
    They change only when the controller acknowledges a
    SetProtectionThresholds command.
    """

    def __init__(self, thresholds: Optional[ProtectionThresholds] = None,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._thresholds = thresholds or ProtectionThresholds()
        self._lock = threading.Lock()

    @property
    def thresholds(self) -> ProtectionThresholds:
        with self._lock:
            return self._thresholds

    def project(self, command: RegulatorCommand, response: ParsedResponse) -> Projection:
        """
        Projects a response to the command it answers.

        Args:
            command: The command that was sent.
            response: The decoded response.

        Returns:
            EngineParameters, ProtectionStatus or CommandAck.

        Raises:
            MalformedPayload: The payload is too short for its layout.
        """
        if response.command_type == CommandType.GET_PARAMETERS:
            return self.project_parameters(response.payload)
        if response.command_type == CommandType.GET_PROTECTION_STATUS:
            return self.project_protection_status(response.payload)

        ack = self.project_ack(response.command_type, response.payload)
        if ack.success and isinstance(command, SetProtectionThresholds):
            with self._lock:
                self._thresholds = command.thresholds
            self.logger.info(f"Protection thresholds updated: {command.thresholds}")
        return ack

    def project_parameters(self, payload: bytes) -> EngineParameters:
        """
        Decodes telemetry in either the compact or the full layout.

        Args:
            payload: GetParameters response payload.

        Returns:
            EngineParameters with critical flags evaluated.
        """
        if len(payload) < COMPACT_TELEMETRY_LENGTH:
            raise MalformedPayload(
                f"Telemetry payload too short: {len(payload)} bytes, need {COMPACT_TELEMETRY_LENGTH}",
                payload,
            )

        params = EngineParameters(timestamp=datetime.now(), thresholds=self.thresholds)

        if len(payload) >= FULL_TELEMETRY_LENGTH:
            (diesel_speed, rack, oil_temp, boost_limit, turbo, boost, stop_flag,
             overspeed, oil_alarm, oil_pressure, target_speed) = struct.unpack_from(
                FULL_TELEMETRY_FORMAT, payload)
            params.engine_speed = diesel_speed
            params.rack_position = rack / RACK_POSITION_SCALE
            params.oil_temperature = oil_temp
            params.boost_limit_status = boost_limit
            params.turbo_speed = turbo
            params.boost_pressure = boost / PRESSURE_SCALE
            params.stop_flag = stop_flag
            params.overspeed_flag = overspeed
            params.oil_alarm_bits = oil_alarm
            params.oil_pressure = oil_pressure / PRESSURE_SCALE
            params.target_speed = target_speed
        else:
            speed, turbo, oil_pressure, boost, oil_temp, rack = struct.unpack_from(
                COMPACT_TELEMETRY_FORMAT, payload)
            params.engine_speed = speed
            params.turbo_speed = turbo
            params.oil_pressure = oil_pressure / PRESSURE_SCALE
            params.boost_pressure = boost / PRESSURE_SCALE
            params.oil_temperature = oil_temp
            params.rack_position = rack / RACK_POSITION_SCALE

        return params

    def project_protection_status(self, payload: bytes) -> ProtectionStatus:
        if len(payload) < PROTECTION_STATUS_LENGTH:
            raise MalformedPayload(
                f"Protection status payload too short: {len(payload)} bytes", payload
            )
        flags = payload[0]
        return ProtectionStatus(
            oil_pressure_active=bool(flags & 0x01),
            engine_speed_active=bool(flags & 0x02),
            boost_pressure_active=bool(flags & 0x04),
            oil_temperature_active=bool(flags & 0x08),
            all_protections_enabled=bool(payload[1] & 0x01),
        )

    def project_ack(self, command_type: CommandType, payload: bytes) -> CommandAck:
        if len(payload) < 1:
            raise MalformedPayload("Acknowledgement payload is empty", payload)
        return CommandAck(command_type=CommandType(command_type), error_code=payload[0])
