"""
serial_transport.py

Implements the Transport contract over a pyserial port.
"""

import logging
import time
from typing import List, Optional

import serial
from serial.tools import list_ports

from regulator_communication.communicator.transport import Transport
from regulator_communication.errors import (
    ResponseTimeoutError, ShortReadError, TransportError,
)
from regulator_communication.models import ComPortSettings
from regulator_communication.protocol.codec import format_bytes


class SerialTransport(Transport):
    """
    Serial port transport for the regulator controller.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.ser: Optional[serial.Serial] = None
        self.settings: Optional[ComPortSettings] = None

    def open(self, settings: ComPortSettings) -> None:
        """
        Opens the serial port with the given settings.

        Args:
            settings: Port name and line parameters.

        Raises:
            TransportError: The port cannot be opened.
        """
        self.close()
        try:
            self.ser = serial.Serial(**settings.serial_kwargs())
        except (serial.SerialException, ValueError) as e:
            self.ser = None
            raise TransportError(f"Cannot open {settings.port_name}: {str(e)}") from e
        self.settings = settings
        self.logger.info(
            f"Opened {settings.port_name} at {settings.baudrate} baud "
            f"({settings.bytesize}{settings.parity}{settings.stopbits})"
        )

    def close(self) -> None:
        if self.ser is None:
            return
        try:
            if self.ser.is_open:
                self.ser.close()
                self.logger.info(f"Closed {self.ser.port}")
        except serial.SerialException as e:
            self.logger.error(f"Error closing port: {str(e)}")
        finally:
            self.ser = None

    @property
    def is_open(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def _require_open(self) -> serial.Serial:
        if not self.is_open:
            raise TransportError("Port is not open")
        return self.ser

    def discard_buffers(self) -> None:
        ser = self._require_open()
        try:
            ser.reset_input_buffer()
            ser.reset_output_buffer()
        except serial.SerialException as e:
            raise TransportError(f"Failed to reset buffers: {str(e)}") from e

    def write(self, data: bytes) -> None:
        """
        Writes a frame and waits for it to leave the output buffer.

        Raises:
            ResponseTimeoutError: The write timed out.
            TransportError: The port failed.
        """
        ser = self._require_open()
        self.logger.debug(f"TX: {format_bytes(data)}")
        try:
            ser.write(data)
            ser.flush()
        except serial.SerialTimeoutException as e:
            raise ResponseTimeoutError(f"Write timed out: {str(e)}") from e
        except serial.SerialException as e:
            raise TransportError(f"Write failed: {str(e)}") from e

    def read_exact(self, size: int, timeout: Optional[float] = None) -> bytes:
        """
        Reads exactly size bytes before the timeout expires.

        Raises:
            ShortReadError: Fewer bytes arrived in time.
            TransportError: The port failed.
        """
        ser = self._require_open()
        if timeout is None:
            timeout = self.settings.read_timeout_s if self.settings else 1.0

        data = bytearray()
        deadline = time.monotonic() + timeout
        try:
            # Assigning the timeout reconfigures the open port.
            if ser.timeout != timeout:
                ser.timeout = timeout
            while len(data) < size:
                chunk = ser.read(size - len(data))
                if chunk:
                    data.extend(chunk)
                if time.monotonic() >= deadline:
                    break
        except serial.SerialException as e:
            raise TransportError(f"Read failed: {str(e)}") from e

        if len(data) < size:
            raise ShortReadError(size, bytes(data))
        self.logger.debug(f"RX: {format_bytes(data)}")
        return bytes(data)

    @staticmethod
    def list_ports() -> List[str]:
        """
        Lists available serial ports.

        Returns:
            A list of available port names.
        """
        return [p.device for p in list_ports.comports()]
