"""
__init__.py

Initializes the protocol package: frame codec, payload builders and the
response projector.
"""

from regulator_communication.protocol.codec import (
    compute_checksum, encode, parse_header, decode, build_response_frame, format_bytes,
)
from regulator_communication.protocol.commands import build_payload, parse_payload
from regulator_communication.protocol.projector import ResponseProjector

__all__ = [
    'compute_checksum',
    'encode',
    'parse_header',
    'decode',
    'build_response_frame',
    'format_bytes',
    'build_payload',
    'parse_payload',
    'ResponseProjector',
]
