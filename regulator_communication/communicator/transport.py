"""
transport.py

Defines the Transport contract: a half-duplex byte channel the dispatcher
writes frames to and reads responses from.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from regulator_communication.models import ComPortSettings


class Transport(ABC):
    """
    Abstract byte channel used by the communicator.

    Implementations raise TransportError for unavailable ports and hard I/O
    faults, ShortReadError when fewer bytes than requested arrive before the
    timeout, and ResponseTimeoutError when a write times out.
    """

    @abstractmethod
    def open(self, settings: ComPortSettings) -> None:
        """
        Opens the channel.

        Args:
            settings: The serial settings to open with.
        """

    @abstractmethod
    def close(self) -> None:
        """Closes the channel. Closing a closed channel is a no-op."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def discard_buffers(self) -> None:
        """Drops any stale bytes in the input and output buffers."""

    @abstractmethod
    def write(self, data: bytes) -> None:
        pass

    @abstractmethod
    def read_exact(self, size: int, timeout: Optional[float] = None) -> bytes:
        """
        Reads exactly size bytes.

        Args:
            size: Number of bytes to read.
            timeout: Seconds to wait; the read timeout from the open
                settings when None.

        Returns:
            Exactly size bytes.
        """

    @staticmethod
    def list_ports() -> List[str]:
        """Lists the port names this transport can open."""
        return []
