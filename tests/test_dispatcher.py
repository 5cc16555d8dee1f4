"""Tests for the command dispatcher: exchanges, retries and fault handling."""

import threading
import time
from collections import Counter

import pytest

from regulator_communication.communicator.command_queue import CommandQueue, PendingCommand
from regulator_communication.communicator.dispatcher import CommandDispatcher
from regulator_communication.errors import TransportError
from regulator_communication.events import (
    COMMAND_ACKNOWLEDGED, DATA_RECEIVED, ERROR_OCCURRED, PROTECTION_STATUS_UPDATED,
)
from regulator_communication.models import (
    GetParameters, GetProtectionStatus, SetEngineSpeed,
)
from regulator_communication.param_types import CommandType
from regulator_communication.protocol.codec import build_response_frame
from regulator_communication.protocol.projector import ResponseProjector


@pytest.fixture
def faults():
    return []


@pytest.fixture
def dispatcher(fake_transport, event_bus, fast_settings, faults):
    fake_transport.open(fast_settings)
    dispatcher = CommandDispatcher(
        fake_transport, CommandQueue(), ResponseProjector(), event_bus,
        on_fault=faults.append, retry_delay=0.001, idle_wait=0.01,
    )
    dispatcher.start(fast_settings)
    yield dispatcher
    dispatcher.stop(timeout=2.0)


def submit(dispatcher, command):
    pending = PendingCommand(command)
    dispatcher.queue.put(pending)
    return pending


def test_successful_telemetry_exchange(dispatcher, fake_transport, event_bus, recorder):
    data = recorder()
    event_bus.subscribe(DATA_RECEIVED, data)

    pending = submit(dispatcher, GetParameters())
    assert pending.wait(2.0) is True
    assert data.received.wait(2.0)
    assert data.items[0].engine_speed == 0
    assert len(fake_transport.writes) == 1
    assert fake_transport.discards == 1


def test_protection_status_is_published(dispatcher, event_bus, recorder):
    statuses = recorder()
    event_bus.subscribe(PROTECTION_STATUS_UPDATED, statuses)
    assert submit(dispatcher, GetProtectionStatus()).wait(2.0) is True
    assert statuses.items[0].all_protections_enabled


class RecordingPending(PendingCommand):
    """Pending command that logs its resolution in a shared list."""

    def __init__(self, command, resolutions):
        super().__init__(command)
        self.resolutions = resolutions

    def resolve(self, success):
        self.resolutions.append(self.command)
        super().resolve(success)


def test_concurrent_submissions_resolve_in_submission_order(dispatcher, fake_transport):
    """Eight threads submit at once; one exchange at a time, FIFO resolution."""
    submitted = []
    resolutions = []
    pendings = []
    lock = threading.Lock()
    start = threading.Barrier(8)
    # The first two speed frames go unanswered, so one command needs three attempts.
    fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, None)
    fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, None)

    def submitter(speed):
        pending = RecordingPending(SetEngineSpeed(speed), resolutions)
        start.wait(2.0)
        with lock:
            dispatcher.queue.put(pending)
            submitted.append(pending.command)
            pendings.append(pending)

    threads = [threading.Thread(target=submitter, args=(100 * i,)) for i in range(1, 9)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(2.0)

    assert all(pending.wait(5.0) is True for pending in pendings)
    assert resolutions == submitted

    sent = [int.from_bytes(frame[5:7], "little") for frame in fake_transport.writes]
    assert len(sent) == len(submitted) + 2
    counts = Counter(sent)
    assert max(counts.values()) == 3
    assert all(1 <= count <= 3 for count in counts.values())
    # Retries of one command are never interleaved with another command.
    collapsed = [speed for index, speed in enumerate(sent) if index == 0 or sent[index - 1] != speed]
    assert collapsed == [command.speed for command in submitted]


def test_reads_share_one_deadline_per_attempt(fake_transport, event_bus, fast_settings):
    settings = fast_settings.with_changes(read_timeout=200, response_delay=50)
    fake_transport.open(settings)
    dispatcher = CommandDispatcher(
        fake_transport, CommandQueue(), ResponseProjector(), event_bus, idle_wait=0.01,
    )
    dispatcher.start(settings)
    try:
        assert submit(dispatcher, GetParameters()).wait(2.0) is True
    finally:
        dispatcher.stop(timeout=2.0)

    header_timeout, body_timeout = fake_transport.read_timeouts
    assert header_timeout <= 0.15
    assert body_timeout <= header_timeout


def test_silent_device_costs_one_read_timeout_per_attempt(fake_transport, event_bus,
                                                          fast_settings):
    """Half-sent replies with a response delay: each attempt stays within the read timeout."""
    settings = fast_settings.with_changes(read_timeout=100, response_delay=80)
    fake_transport.open(settings)
    fake_transport.stall_reads = True
    half_frame = build_response_frame(bytes(12))[:6]
    for _ in range(3):
        fake_transport.queue_reply(CommandType.GET_PARAMETERS, half_frame)
    dispatcher = CommandDispatcher(
        fake_transport, CommandQueue(), ResponseProjector(), event_bus,
        retry_delay=0.001, idle_wait=0.01,
    )
    dispatcher.start(settings)
    try:
        started = time.monotonic()
        assert submit(dispatcher, GetParameters()).wait(5.0) is False
        elapsed = time.monotonic() - started
    finally:
        dispatcher.stop(timeout=2.0)

    assert len(fake_transport.writes) == 3
    assert elapsed < 3 * (0.1 + 0.001) + 0.15


def test_corrupt_reply_is_retried(dispatcher, fake_transport):
    bad = bytearray(build_response_frame(b"\x00"))
    bad[-1] ^= 0x01
    fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, bytes(bad))

    assert submit(dispatcher, SetEngineSpeed(1200)).wait(2.0) is True
    assert len(fake_transport.writes_for(CommandType.SET_ENGINE_SPEED)) == 2


def test_short_read_counts_as_failed_attempt(dispatcher, fake_transport):
    frame = build_response_frame(bytes(12))
    fake_transport.queue_reply(CommandType.GET_PARAMETERS, frame[:6])

    assert submit(dispatcher, GetParameters()).wait(2.0) is True
    assert len(fake_transport.writes_for(CommandType.GET_PARAMETERS)) == 2


def test_retries_stop_after_three_attempts(dispatcher, fake_transport, event_bus, recorder):
    errors = recorder()
    event_bus.subscribe(ERROR_OCCURRED, errors)
    for _ in range(5):
        fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, None)

    assert submit(dispatcher, SetEngineSpeed(1200)).wait(2.0) is False
    assert len(fake_transport.writes_for(CommandType.SET_ENGINE_SPEED)) == 3
    assert errors.received.wait(1.0)
    assert "3 attempts" in errors.items[0]


def test_malformed_payload_is_retried(dispatcher, fake_transport):
    fake_transport.queue_reply(CommandType.GET_PARAMETERS, build_response_frame(bytes(4)))
    assert submit(dispatcher, GetParameters()).wait(2.0) is True
    assert len(fake_transport.writes_for(CommandType.GET_PARAMETERS)) == 2


def test_device_error_ack_is_not_retried(dispatcher, fake_transport, event_bus, recorder):
    acks = recorder()
    errors = recorder()
    event_bus.subscribe(COMMAND_ACKNOWLEDGED, acks)
    event_bus.subscribe(ERROR_OCCURRED, errors)
    fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, build_response_frame(b"\x04"))

    assert submit(dispatcher, SetEngineSpeed(1200)).wait(2.0) is False
    assert len(fake_transport.writes_for(CommandType.SET_ENGINE_SPEED)) == 1
    assert acks.items[0].error_code == 4
    assert "error code 4" in errors.items[0]


def test_transport_fault_stops_dispatcher(dispatcher, fake_transport, faults):
    fake_transport.queue_reply(CommandType.GET_PARAMETERS, TransportError("cable pulled"))

    assert submit(dispatcher, GetParameters()).wait(2.0) is False
    dispatcher._thread.join(2.0)

    assert not dispatcher.is_running
    assert len(faults) == 1
    assert isinstance(faults[0], TransportError)


def test_stop_fails_queued_commands(fake_transport, event_bus, fast_settings):
    fake_transport.open(fast_settings)
    dispatcher = CommandDispatcher(fake_transport, CommandQueue(), ResponseProjector(), event_bus)
    queued = [PendingCommand(GetParameters()) for _ in range(3)]
    for pending in queued:
        dispatcher.queue.put(pending)

    dispatcher.stop()
    assert all(p.result is False for p in queued)
    assert fake_transport.writes == []


def test_max_attempts_must_be_positive(fake_transport, event_bus):
    with pytest.raises(ValueError):
        CommandDispatcher(fake_transport, CommandQueue(), ResponseProjector(), event_bus,
                          max_attempts=0)
