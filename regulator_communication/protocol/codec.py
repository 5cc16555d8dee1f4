"""
codec.py

Frame encoding and decoding for the ERCHM30TZ protocol.

Outbound frame: [0xAA][0x55][cmd][lenLo][lenHi][payload][checksum]
Inbound frame:  [0xAA][0x55][lenLo][lenHi][payload][checksum]

The checksum is the two's complement of the byte sum after the start
marker, so every byte after the marker including the checksum sums to
zero modulo 256. These are pure functions with no I/O or state.
"""

import struct

from regulator_communication.config import (
    START_MARKER, HEADER_SIZE, CHECKSUM_SIZE, MAX_PAYLOAD_LENGTH,
)
from regulator_communication.errors import (
    MalformedHeader, LengthOutOfRange, ChecksumMismatch,
)
from regulator_communication.models import RegulatorCommand, ParsedResponse
from regulator_communication.param_types import CommandType
from regulator_communication.protocol.commands import build_payload


def compute_checksum(data: bytes) -> int:
    """
    Computes the checksum byte for the bytes that follow the start marker.

    Args:
        data: Frame bytes after the marker, checksum excluded.

    Returns:
        The checksum byte value.
    """
    return (-sum(data)) & 0xFF


def encode(command: RegulatorCommand) -> bytes:
    """
    Builds the outbound frame for a command.

    Args:
        command: The command to encode.

    Returns:
        The complete frame, checksum included.
    """
    payload = build_payload(command)
    body = bytes([int(command.command_type)]) + struct.pack('<H', len(payload)) + payload
    return START_MARKER + body + bytes([compute_checksum(body)])


def parse_header(header: bytes) -> int:
    """
    Validates an inbound header and returns the declared payload length.

    Args:
        header: The first HEADER_SIZE bytes of an inbound frame.

    Returns:
        The payload length.

    Raises:
        MalformedHeader: Missing start marker or too few bytes.
        LengthOutOfRange: Length is zero or above MAX_PAYLOAD_LENGTH.
    """
    if len(header) < HEADER_SIZE:
        raise MalformedHeader(f"Header too short: {len(header)} bytes", header)
    if header[:2] != START_MARKER:
        raise MalformedHeader(f"Missing start marker: {format_bytes(header[:2])}", header)

    length = struct.unpack_from('<H', header, 2)[0]
    if length == 0 or length > MAX_PAYLOAD_LENGTH:
        raise LengthOutOfRange(f"Payload length {length} outside 1..{MAX_PAYLOAD_LENGTH}", header)
    return length


def decode(data: bytes, command_type: CommandType) -> ParsedResponse:
    """
    Decodes a complete inbound frame.

    The frame does not say which command it answers, so the caller passes
    the command type it is waiting for.

    Args:
        data: The full frame, header through checksum.
        command_type: The command the frame is a response to.

    Returns:
        The payload tagged with the command type.

    Raises:
        DecodeError: One of its subclasses when the frame is invalid.
    """
    data = bytes(data)
    length = parse_header(data)
    expected_size = HEADER_SIZE + length + CHECKSUM_SIZE
    if len(data) != expected_size:
        raise MalformedHeader(
            f"Frame size {len(data)} does not match declared size {expected_size}", data
        )

    expected = compute_checksum(data[2:-1])
    received = data[-1]
    if expected != received:
        raise ChecksumMismatch(expected, received, data)

    return ParsedResponse(command_type=CommandType(command_type), payload=data[HEADER_SIZE:-1])


def build_response_frame(payload: bytes) -> bytes:
    """
    Builds an inbound-layout frame around a payload, as the controller does.

    Args:
        payload: The response payload.

    Returns:
        The complete frame.
    """
    body = struct.pack('<H', len(payload)) + bytes(payload)
    return START_MARKER + body + bytes([compute_checksum(body)])


def format_bytes(data: bytes) -> str:
    """
    Renders bytes as spaced uppercase hex for logging.
    """
    return ' '.join(f'{byte:02X}' for byte in data)
