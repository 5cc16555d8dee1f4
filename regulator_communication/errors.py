"""
errors.py

Exception hierarchy for the regulator link.

TransportError is fatal to the current connection and hands control to the
reconnection supervisor. ResponseTimeoutError and DecodeError are local to a
single exchange and only cost the dispatcher one attempt.
"""

from typing import Optional


class RegulatorError(Exception):
    """Base class for all regulator link errors."""


class TransportError(RegulatorError):
    """The port is unavailable or a hard I/O failure occurred."""


class ResponseTimeoutError(RegulatorError):
    """No (or an incomplete) response arrived before the timeout."""


class ShortReadError(ResponseTimeoutError):
    """
    Fewer bytes than requested arrived before the read timeout.

    Attributes:
        expected: Number of bytes requested.
        data: The bytes that did arrive.
    """

    def __init__(self, expected: int, data: bytes = b""):
        self.expected = expected
        self.data = bytes(data)
        super().__init__(f"Short read: expected {expected} bytes, got {len(self.data)}")


class DecodeError(RegulatorError):
    """
    Base class for inbound frames that cannot be decoded.

    Attributes:
        data: The offending bytes, kept for logging.
    """

    def __init__(self, message: str, data: Optional[bytes] = None):
        self.data = bytes(data) if data is not None else b""
        super().__init__(message)


class MalformedHeader(DecodeError):
    """The start marker is missing or the frame is truncated."""


class LengthOutOfRange(DecodeError):
    """The declared payload length is zero or exceeds the sanity bound."""


class ChecksumMismatch(DecodeError):
    """The checksum byte does not match the frame contents."""

    def __init__(self, expected: int, received: int, data: Optional[bytes] = None):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Checksum mismatch: expected 0x{expected:02X}, received 0x{received:02X}", data
        )


class MalformedPayload(DecodeError):
    """The payload is too short for the shape the awaited command expects."""
