"""Tests for the pyserial transport, with the port mocked out."""

import time
from unittest import mock

import pytest
import serial

from regulator_communication.communicator.serial_transport import SerialTransport
from regulator_communication.errors import ResponseTimeoutError, ShortReadError, TransportError
from regulator_communication.models import ComPortSettings


@pytest.fixture
def port():
    with mock.patch.object(serial, "Serial") as serial_class:
        instance = serial_class.return_value
        instance.is_open = True
        instance.port = "COM3"
        yield serial_class


@pytest.fixture
def transport(port):
    transport = SerialTransport()
    transport.open(ComPortSettings(port_name="COM3", read_timeout=50))
    return transport


def test_open_uses_protocol_line_settings(port, transport):
    kwargs = port.call_args.kwargs
    assert kwargs["port"] == "COM3"
    assert kwargs["baudrate"] == 9600
    assert kwargs["bytesize"] == serial.EIGHTBITS
    assert kwargs["stopbits"] == serial.STOPBITS_TWO
    assert kwargs["parity"] == serial.PARITY_ODD
    assert transport.is_open


def test_open_failure_raises_transport_error(port):
    port.side_effect = serial.SerialException("could not open port")
    transport = SerialTransport()
    with pytest.raises(TransportError):
        transport.open(ComPortSettings(port_name="COM9"))
    assert not transport.is_open


def test_write_flushes(port, transport):
    transport.write(b"\xAA\x55")
    port.return_value.write.assert_called_once_with(b"\xAA\x55")
    port.return_value.flush.assert_called_once()


def test_write_timeout_maps_to_response_timeout(port, transport):
    port.return_value.write.side_effect = serial.SerialTimeoutException("write timeout")
    with pytest.raises(ResponseTimeoutError):
        transport.write(b"\x00")


def test_write_io_failure_maps_to_transport_error(port, transport):
    port.return_value.write.side_effect = serial.SerialException("device disconnected")
    with pytest.raises(TransportError):
        transport.write(b"\x00")


def test_read_exact_collects_chunks(port, transport):
    port.return_value.read.side_effect = [b"\xAA", b"\x55\x01", b"\x00"]
    assert transport.read_exact(4, timeout=1.0) == b"\xAA\x55\x01\x00"


def test_read_exact_short_read_keeps_partial_bytes(port, transport):
    chunks = [b"\xAA"]

    def read(size):
        time.sleep(0.005)
        return chunks.pop(0) if chunks else b""

    port.return_value.read.side_effect = read
    with pytest.raises(ShortReadError) as excinfo:
        transport.read_exact(4, timeout=0.05)
    assert excinfo.value.expected == 4
    assert excinfo.value.data == b"\xAA"


def test_discard_buffers_resets_both_directions(port, transport):
    transport.discard_buffers()
    port.return_value.reset_input_buffer.assert_called_once()
    port.return_value.reset_output_buffer.assert_called_once()


def test_io_on_closed_port_raises():
    transport = SerialTransport()
    with pytest.raises(TransportError):
        transport.write(b"\x00")
    with pytest.raises(TransportError):
        transport.read_exact(1)


def test_close_releases_port(port, transport):
    transport.close()
    port.return_value.close.assert_called_once()
    assert not transport.is_open


def test_list_ports():
    fake_port = mock.Mock(device="COM7")
    with mock.patch("regulator_communication.communicator.serial_transport.list_ports.comports",
                    return_value=[fake_port]):
        assert SerialTransport.list_ports() == ["COM7"]


def test_port_timeout_is_only_assigned_when_it_changes(port, transport):
    timeout_property = mock.PropertyMock(return_value=0.05)
    type(port.return_value).timeout = timeout_property

    port.return_value.read.side_effect = [b"\xAA", b"\x55", b"\x01\x00"]
    transport.read_exact(4, timeout=0.05)
    assert [c for c in timeout_property.mock_calls if c.args] == []

    port.return_value.read.side_effect = [b"\xAA\x55\x01\x00"]
    transport.read_exact(4, timeout=1.0)
    assert [c for c in timeout_property.mock_calls if c.args] == [mock.call(1.0)]
