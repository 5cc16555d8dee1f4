"""
regulator_communicator.py

Implements the RegulatorCommunicator, the object a monitoring application
holds to talk to the ERCHM30TZ controller. It wires the command queue,
dispatcher, polling scheduler, reconnection supervisor and response
projector around a transport, and exposes connection control plus one
helper per controller command.

Usage Example:
    communicator = RegulatorCommunicator(SerialTransport(), ComPortSettings(port_name="COM3"))
    communicator.event_bus.subscribe(DATA_RECEIVED, print)
    if communicator.connect():
        communicator.set_engine_speed(1200).wait(5.0)
"""

import logging
import threading
from typing import List, Optional

from regulator_communication.communicator.command_queue import CommandQueue, PendingCommand
from regulator_communication.communicator.dispatcher import CommandDispatcher
from regulator_communication.communicator.polling import PollingScheduler
from regulator_communication.communicator.supervisor import ReconnectionSupervisor
from regulator_communication.communicator.transport import Transport
from regulator_communication.config import (
    DISPATCHER_DEFAULTS, PROTECTION_POLL_INTERVAL, SUPERVISOR_DEFAULTS,
)
from regulator_communication.errors import TransportError
from regulator_communication.events import CONNECTION_STATUS_CHANGED, ERROR_OCCURRED, EventBus
from regulator_communication.models import (
    ComPortSettings, GetParameters, GetProtectionStatus, ProtectionThresholds,
    RegulatorCommand, ResetProtection, SetEngineMode, SetEngineSpeed,
    SetEquipmentPosition, SetLoadType, SetProtectionThresholds, SetRackPosition,
)
from regulator_communication.param_types import ConnectionState, EngineMode, LoadType
from regulator_communication.protocol.projector import ResponseProjector


class RegulatorCommunicator:
    """
    Facade over the regulator link.
    """

    def __init__(self, transport: Transport, settings: Optional[ComPortSettings] = None,
                 event_bus: Optional[EventBus] = None,
                 thresholds: Optional[ProtectionThresholds] = None,
                 max_attempts: int = DISPATCHER_DEFAULTS["max_attempts"],
                 retry_delay: float = DISPATCHER_DEFAULTS["retry_delay"],
                 reconnect_delay: float = SUPERVISOR_DEFAULTS["reconnect_delay"],
                 max_reconnect_attempts: int = SUPERVISOR_DEFAULTS["max_attempts"],
                 protection_interval: float = PROTECTION_POLL_INTERVAL,
                 logger: Optional[logging.Logger] = None):
        """
        Initializes the communicator. Nothing is opened until connect().

        Args:
            transport: Channel to the controller (serial port or simulator).
            settings: Serial settings, defaults when omitted.
            event_bus: Event bus to publish on; a new one when omitted.
            thresholds: Initial protection thresholds for telemetry flags.
            max_attempts: Total attempts per command.
            retry_delay: Seconds between command attempts.
            reconnect_delay: Seconds before each reconnect attempt.
            max_reconnect_attempts: Reconnect attempts before giving up.
            protection_interval: Seconds between protection status polls.
            logger: Optional logger instance.
        """
        self.logger = logger or logging.getLogger(__name__)
        self.transport = transport
        self.event_bus = event_bus or EventBus(logger=self.logger)
        self._settings = settings or ComPortSettings()
        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.RLock()
        self._connect_lock = threading.Lock()

        self.queue = CommandQueue()
        self.projector = ResponseProjector(thresholds, logger=self.logger)
        self.dispatcher = CommandDispatcher(
            transport, self.queue, self.projector, self.event_bus,
            on_fault=self._on_dispatcher_fault,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            logger=self.logger,
        )
        self.scheduler = PollingScheduler(
            self.submit, protection_interval=protection_interval, logger=self.logger
        )
        self.supervisor = ReconnectionSupervisor(
            quiesce=self._quiesce,
            reopen=self._reopen,
            resume=self._resume,
            give_up=self._give_up,
            max_attempts=max_reconnect_attempts,
            reconnect_delay=reconnect_delay,
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def settings(self) -> ComPortSettings:
        return self._settings

    @property
    def thresholds(self) -> ProtectionThresholds:
        return self.projector.thresholds

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            previous = self._state
            if previous == state:
                return
            self._state = state
            self.logger.info(f"Connection state: {previous.value} -> {state.value}")
            was_connected = previous == ConnectionState.CONNECTED
            now_connected = state == ConnectionState.CONNECTED
            if was_connected != now_connected:
                self.event_bus.publish(CONNECTION_STATUS_CHANGED, now_connected)

    # ------------------------------------------------------------------
    # Connection control
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Opens the transport and starts the dispatcher and polling.

        Returns:
            True if connected, False otherwise.
        """
        with self._connect_lock:
            self.supervisor.cancel()
            if self.is_connected:
                return True
            self._set_state(ConnectionState.CONNECTING)
            try:
                self.transport.open(self._settings)
            except TransportError as e:
                message = f"Connection failed: {str(e)}"
                self.logger.error(message)
                self._set_state(ConnectionState.DISCONNECTED)
                self.event_bus.publish(ERROR_OCCURRED, message)
                return False
            self._resume()
            self.logger.info(f"Connected to regulator on {self._settings.port_name}")
            return True

    def disconnect(self) -> None:
        """
        Stops all background work, fails queued commands and closes the port.
        """
        with self._connect_lock:
            self.supervisor.cancel()
            self._teardown(ConnectionState.DISCONNECTED)
            self.logger.info("Disconnected from regulator")

    def update_settings(self, settings: ComPortSettings) -> None:
        """
        Replaces the serial settings, disconnecting first if the link is up.

        Args:
            settings: The new settings snapshot.
        """
        if self.state != ConnectionState.DISCONNECTED:
            self.logger.info("Settings changed while connected, disconnecting")
            self.disconnect()
        self._settings = settings
        self.logger.info(f"Serial settings updated: {settings}")

    def available_ports(self) -> List[str]:
        return self.transport.list_ports()

    def _teardown(self, state: ConnectionState) -> None:
        self.scheduler.stop()
        self._set_state(state)
        self.dispatcher.stop()
        self.transport.close()

    def _quiesce(self) -> None:
        self._teardown(ConnectionState.CONNECTING)

    def _reopen(self) -> None:
        self.transport.open(self._settings)

    def _resume(self) -> None:
        self.dispatcher.start(self._settings)
        self._set_state(ConnectionState.CONNECTED)
        self.scheduler.start(self._settings.polling_interval_s)

    def _give_up(self, message: str) -> None:
        self.transport.close()
        self._set_state(ConnectionState.DISCONNECTED)
        self.event_bus.publish(ERROR_OCCURRED, message)

    def _on_dispatcher_fault(self, error: Exception) -> None:
        if isinstance(error, TransportError):
            self.supervisor.trigger(error)
            return
        self._teardown(ConnectionState.DISCONNECTED)
        self.event_bus.publish(ERROR_OCCURRED, f"Communication stopped: {str(error)}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit(self, command: RegulatorCommand) -> PendingCommand:
        """
        Queues a command for the dispatcher.

        Args:
            command: The command to send.

        Returns:
            A PendingCommand resolved True on success, False on failure.
            It is resolved False immediately when not connected.
        """
        pending = PendingCommand(command)
        with self._state_lock:
            if self._state == ConnectionState.CONNECTED:
                self.queue.put(pending)
                return pending
        self.logger.warning(f"Cannot send {command.name}: not connected")
        pending.resolve(False)
        return pending

    def send_command(self, command: RegulatorCommand) -> None:
        """
        Queues a command without waiting for its outcome.
        Failures still surface through the error_occurred event.
        """
        self.submit(command)

    def set_engine_speed(self, speed: int) -> PendingCommand:
        return self.submit(SetEngineSpeed(speed))

    def set_rack_position(self, position: float) -> PendingCommand:
        return self.submit(SetRackPosition(position))

    def set_engine_mode(self, mode: EngineMode) -> PendingCommand:
        return self.submit(SetEngineMode(mode))

    def set_load_type(self, load_type: LoadType) -> PendingCommand:
        return self.submit(SetLoadType(load_type))

    def set_equipment_position(self, position: int) -> PendingCommand:
        return self.submit(SetEquipmentPosition(position))

    def set_protection_thresholds(self, thresholds: ProtectionThresholds) -> PendingCommand:
        return self.submit(SetProtectionThresholds(thresholds))

    def reset_protection(self) -> PendingCommand:
        return self.submit(ResetProtection())

    def request_parameters(self) -> PendingCommand:
        return self.submit(GetParameters())

    def request_protection_status(self) -> PendingCommand:
        return self.submit(GetProtectionStatus())
