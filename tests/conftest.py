# tests/conftest.py
"""Shared fixtures: an in-memory transport and fast link settings."""

import threading
import time
from collections import defaultdict, deque

import pytest

from regulator_communication.communicator.transport import Transport
from regulator_communication.errors import ShortReadError, TransportError
from regulator_communication.events import EventBus
from regulator_communication.models import ComPortSettings
from regulator_communication.param_types import CommandType
from regulator_communication.protocol.codec import build_response_frame

ZERO_TELEMETRY = bytes(12)
PROTECTION_CLEAR = bytes([0x00, 0x01])
ACK_OK = bytes([0x00])


class FakeTransport(Transport):
    """
    Transport double that answers each written frame from a script.

    Replies are looked up per command code. A scripted reply may be bytes
    (a raw frame to return), None (no reply, the read comes up short) or an
    exception instance (raised from write). Unscripted commands get a valid
    default reply. With stall_reads set, a short read first sleeps for the
    timeout it was given, like a silent serial line.
    """

    def __init__(self):
        self.settings = None
        self.opened = False
        self.open_calls = 0
        self.fail_opens = 0
        self.writes = []
        self.discards = 0
        self.read_timeouts = []
        self.stall_reads = False
        self.scripted = defaultdict(deque)
        self._rx = bytearray()
        self._lock = threading.Lock()

    def queue_reply(self, command_type, reply):
        with self._lock:
            self.scripted[CommandType(command_type)].append(reply)

    def writes_for(self, command_type):
        with self._lock:
            return [frame for frame in self.writes if frame[2] == int(command_type)]

    @staticmethod
    def default_reply(command_type):
        if command_type == CommandType.GET_PARAMETERS:
            return build_response_frame(ZERO_TELEMETRY)
        if command_type == CommandType.GET_PROTECTION_STATUS:
            return build_response_frame(PROTECTION_CLEAR)
        return build_response_frame(ACK_OK)

    def open(self, settings):
        with self._lock:
            self.open_calls += 1
            if self.fail_opens > 0:
                self.fail_opens -= 1
                raise TransportError("fake port unavailable")
            self.opened = True
            self.settings = settings

    def close(self):
        with self._lock:
            self.opened = False
            self._rx.clear()

    @property
    def is_open(self):
        return self.opened

    def discard_buffers(self):
        with self._lock:
            if not self.opened:
                raise TransportError("fake port closed")
            self.discards += 1
            self._rx.clear()

    def write(self, data):
        with self._lock:
            if not self.opened:
                raise TransportError("fake port closed")
            self.writes.append(bytes(data))
            command_type = CommandType(data[2])
            if self.scripted[command_type]:
                reply = self.scripted[command_type].popleft()
            else:
                reply = self.default_reply(command_type)
            if isinstance(reply, Exception):
                raise reply
            if reply is not None:
                self._rx.extend(reply)

    def read_exact(self, size, timeout=None):
        with self._lock:
            if not self.opened:
                raise TransportError("fake port closed")
            self.read_timeouts.append(timeout)
            if len(self._rx) < size:
                partial = bytes(self._rx)
                self._rx.clear()
                if self.stall_reads and timeout:
                    time.sleep(timeout)
                raise ShortReadError(size, partial)
            data = bytes(self._rx[:size])
            del self._rx[:size]
            return data

    @staticmethod
    def list_ports():
        return ["FAKE0"]


class EventRecorder:
    """Collects every payload published for one event."""

    def __init__(self):
        self.items = []
        self.received = threading.Event()

    def __call__(self, payload):
        self.items.append(payload)
        self.received.set()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def fast_settings():
    return ComPortSettings(
        port_name="FAKE0",
        read_timeout=20,
        write_timeout=20,
        polling_interval=60000,
        response_delay=0,
    )


@pytest.fixture
def recorder():
    return EventRecorder
