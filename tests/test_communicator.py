"""Tests for the RegulatorCommunicator facade over an in-memory transport."""

import time

import pytest

from regulator_communication.communicator.regulator_communicator import RegulatorCommunicator
from regulator_communication.errors import TransportError
from regulator_communication.events import (
    COMMAND_ACKNOWLEDGED, CONNECTION_STATUS_CHANGED, ERROR_OCCURRED,
)
from regulator_communication.models import ProtectionThresholds, ResetProtection
from regulator_communication.param_types import CommandType, ConnectionState, EngineMode


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def communicator(fake_transport, event_bus, fast_settings):
    communicator = RegulatorCommunicator(
        fake_transport, fast_settings, event_bus=event_bus,
        retry_delay=0.001, reconnect_delay=0.01, protection_interval=60.0,
    )
    yield communicator
    communicator.disconnect()


def test_connect_publishes_status(communicator, event_bus, recorder):
    status = recorder()
    event_bus.subscribe(CONNECTION_STATUS_CHANGED, status)

    assert communicator.connect()
    assert communicator.state == ConnectionState.CONNECTED
    assert communicator.is_connected
    assert status.items == [True]


def test_connect_failure(communicator, fake_transport, event_bus, recorder):
    errors = recorder()
    event_bus.subscribe(ERROR_OCCURRED, errors)
    fake_transport.fail_opens = 1

    assert not communicator.connect()
    assert communicator.state == ConnectionState.DISCONNECTED
    assert "Connection failed" in errors.items[0]


def test_submit_while_disconnected_fails_immediately(communicator, fake_transport):
    pending = communicator.set_engine_speed(1200)
    assert pending.done
    assert pending.result is False
    assert fake_transport.writes == []


def test_invalid_command_raises_before_enqueue(communicator):
    communicator.connect()
    with pytest.raises(ValueError):
        communicator.set_engine_speed(5000)


def test_set_engine_speed_round_trip(communicator, fake_transport, event_bus, recorder):
    acks = recorder()
    event_bus.subscribe(COMMAND_ACKNOWLEDGED, acks)
    communicator.connect()

    assert communicator.set_engine_speed(1200).wait(2.0) is True
    frames = fake_transport.writes_for(CommandType.SET_ENGINE_SPEED)
    assert frames[0][5:7] == b"\xB0\x04"
    assert acks.items[-1].command_type == CommandType.SET_ENGINE_SPEED


def test_every_helper_sends_its_command(communicator, fake_transport):
    communicator.connect()
    pendings = [
        communicator.set_rack_position(10.0),
        communicator.set_engine_mode(EngineMode.RUN),
        communicator.set_load_type(1),
        communicator.set_equipment_position(7),
        communicator.set_protection_thresholds(ProtectionThresholds()),
        communicator.reset_protection(),
        communicator.request_parameters(),
        communicator.request_protection_status(),
    ]
    assert all(p.wait(2.0) is True for p in pendings)
    sent = {frame[2] for frame in fake_transport.writes}
    assert sent == set(range(0x01, 0x0A)) - {0x02}


def test_send_command_is_fire_and_forget(communicator, fake_transport):
    communicator.connect()
    assert communicator.send_command(ResetProtection()) is None
    assert wait_for(lambda: fake_transport.writes_for(CommandType.RESET_PROTECTION))


def test_threshold_ack_updates_projector(communicator):
    communicator.connect()
    new = ProtectionThresholds(engine_speed_max=1800)
    assert communicator.set_protection_thresholds(new).wait(2.0) is True
    assert communicator.thresholds == new


def test_update_settings_disconnects_first(communicator, fast_settings):
    communicator.connect()
    communicator.update_settings(fast_settings.with_changes(port_name="FAKE1"))
    assert communicator.state == ConnectionState.DISCONNECTED
    assert communicator.settings.port_name == "FAKE1"


def test_disconnect_publishes_status(communicator, event_bus, recorder):
    status = recorder()
    event_bus.subscribe(CONNECTION_STATUS_CHANGED, status)
    communicator.connect()
    communicator.disconnect()
    assert status.items == [True, False]
    assert not communicator.transport.is_open
    assert communicator.set_engine_speed(1000).result is False


def test_reconnects_after_transport_fault(communicator, fake_transport, event_bus, recorder):
    status = recorder()
    event_bus.subscribe(CONNECTION_STATUS_CHANGED, status)
    communicator.connect()
    fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, TransportError("cable pulled"))

    assert communicator.set_engine_speed(1200).wait(2.0) is False
    assert wait_for(lambda: status.items == [True, False, True])
    assert communicator.is_connected
    assert fake_transport.open_calls == 2
    assert communicator.set_engine_speed(1300).wait(2.0) is True


def test_fault_during_slow_reconnect_notification_reconnects_again(
        communicator, fake_transport, event_bus):
    status = []

    def slow_status_handler(connected):
        status.append(connected)
        if connected and status.count(True) == 2:
            communicator.request_parameters()
            time.sleep(0.3)

    event_bus.subscribe(CONNECTION_STATUS_CHANGED, slow_status_handler)
    communicator.connect()
    assert wait_for(lambda: len(fake_transport.writes_for(CommandType.GET_PROTECTION_STATUS)) == 1)
    fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, TransportError("cable pulled"))
    fake_transport.queue_reply(CommandType.GET_PARAMETERS, TransportError("cable pulled again"))

    assert communicator.set_engine_speed(1200).wait(2.0) is False
    assert wait_for(lambda: status == [True, False, True, False, True]
                    and not communicator.supervisor.is_reconnecting)
    assert communicator.is_connected
    assert communicator.dispatcher.is_running
    assert fake_transport.open_calls == 3
    assert communicator.set_engine_speed(1300).wait(2.0) is True


def test_reconnect_gives_up_after_bound(communicator, fake_transport, event_bus, recorder):
    errors = recorder()
    event_bus.subscribe(ERROR_OCCURRED, errors)
    communicator.connect()
    fake_transport.fail_opens = 5
    fake_transport.queue_reply(CommandType.SET_ENGINE_SPEED, TransportError("cable pulled"))

    communicator.set_engine_speed(1200).wait(2.0)
    assert wait_for(lambda: communicator.state == ConnectionState.DISCONNECTED
                    and not communicator.supervisor.is_reconnecting)
    assert fake_transport.open_calls == 1 + 3
    assert any("Unable to reconnect" in message for message in errors.items)


def test_available_ports_come_from_transport(communicator):
    assert communicator.available_ports() == ["FAKE0"]
