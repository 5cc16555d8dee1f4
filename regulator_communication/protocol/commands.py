"""
commands.py

Builds command payloads from the COMMAND_PARAMETERS table. Each field is
scaled to its fixed-point wire value and packed little-endian.
"""

import struct
from typing import Any, Dict, List, Tuple

from regulator_communication.config import COMMAND_PARAMETERS
from regulator_communication.models import RegulatorCommand
from regulator_communication.param_types import CommandType, ParamType


def payload_fields(command_type: CommandType) -> List[Tuple[str, ParamType, int]]:
    """
    Returns the (name, wire type, scale) list for a command's payload.
    """
    return COMMAND_PARAMETERS[CommandType(command_type)]["fields"]


def payload_format(command_type: CommandType) -> str:
    """
    Returns the struct format string of a command's payload.
    """
    return '<' + ''.join(param_type.value for _, param_type, _ in payload_fields(command_type))


def build_payload(command: RegulatorCommand) -> bytes:
    """
    Packs the payload for a command.

    Args:
        command: The command whose payload to build.

    Returns:
        The payload bytes (empty for queries and ResetProtection).

    Raises:
        ValueError: A scaled value does not fit its wire field.
    """
    fields = payload_fields(command.command_type)
    if not fields:
        return b""

    values = command.payload_values()
    raw_values = []
    for name, param_type, scale in fields:
        raw = int(round(values[name] * scale))
        if not 0 <= raw <= param_type.max_value:
            raise ValueError(f"{command.name}.{name}={values[name]} does not fit {param_type.name}")
        raw_values.append(raw)

    return struct.pack(payload_format(command.command_type), *raw_values)


def parse_payload(command_type: CommandType, payload: bytes) -> Dict[str, Any]:
    """
    Unpacks a command payload back to engineering values.

    Used by the device simulator to read what the host sent.

    Args:
        command_type: The command code the payload belongs to.
        payload: The raw payload bytes.

    Returns:
        A dict of field name to scaled value.
    """
    fields = payload_fields(command_type)
    if not fields:
        return {}
    raw_values = struct.unpack(payload_format(command_type), payload)
    result = {}
    for (name, _, scale), raw in zip(fields, raw_values):
        result[name] = raw if scale == 1 else raw / scale
    return result
