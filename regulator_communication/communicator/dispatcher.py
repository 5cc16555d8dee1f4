"""
dispatcher.py

Implements the CommandDispatcher: the only thread that talks to the
transport. It takes pending commands off the queue one at a time, runs the
request/response exchange with bounded retries, publishes the projected
result and resolves each pending command exactly once.
"""

import logging
import threading
import time
from typing import Callable, Optional

from regulator_communication.communicator.command_queue import CommandQueue, PendingCommand
from regulator_communication.communicator.transport import Transport
from regulator_communication.config import CHECKSUM_SIZE, DISPATCHER_DEFAULTS, HEADER_SIZE
from regulator_communication.errors import DecodeError, ResponseTimeoutError, TransportError
from regulator_communication.events import (
    COMMAND_ACKNOWLEDGED, DATA_RECEIVED, ERROR_OCCURRED, PROTECTION_STATUS_UPDATED, EventBus,
)
from regulator_communication.models import (
    CommandAck, ComPortSettings, EngineParameters, ProtectionStatus, RegulatorCommand,
)
from regulator_communication.protocol.codec import decode, encode, format_bytes, parse_header
from regulator_communication.protocol.projector import Projection, ResponseProjector


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())


class CommandDispatcher:
    """
    Drains the command queue to the transport on a background thread.
    """

    def __init__(self, transport: Transport, queue: CommandQueue, projector: ResponseProjector,
                 event_bus: EventBus, on_fault: Optional[Callable[[Exception], None]] = None,
                 max_attempts: int = DISPATCHER_DEFAULTS["max_attempts"],
                 retry_delay: float = DISPATCHER_DEFAULTS["retry_delay"],
                 idle_wait: float = DISPATCHER_DEFAULTS["idle_wait"],
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            transport: Channel to the controller.
            queue: Source of pending commands.
            projector: Turns decoded responses into domain objects.
            event_bus: Receives the projected results and errors.
            on_fault: Called from the dispatcher thread with the exception
                that stopped it (a TransportError or an unexpected error).
            max_attempts: Total attempts per command.
            retry_delay: Seconds between attempts.
            idle_wait: Seconds to block on an empty queue before re-checking
                the stop flag.
            logger: Optional logger instance.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.transport = transport
        self.queue = queue
        self.projector = projector
        self.event_bus = event_bus
        self.on_fault = on_fault
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.idle_wait = idle_wait
        self.logger = logger or logging.getLogger(__name__)
        self.settings = ComPortSettings()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self, settings: ComPortSettings) -> None:
        """
        Starts the processing thread.

        Args:
            settings: Timeouts and response delay to use for exchanges.
        """
        if self.is_running:
            return
        self.settings = settings
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), name="regulator-dispatcher", daemon=True
        )
        self._thread.start()
        self.logger.debug("Dispatcher started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stops the processing thread and fails every queued command.

        An exchange already on the wire finishes (bounded by the read
        timeout) before the thread exits.
        """
        self._stop_event.set()
        self.queue.wake()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self.drain()
        self.logger.debug("Dispatcher stopped")

    def drain(self) -> int:
        """
        Resolves every queued command as failed.

        Returns:
            The number of commands drained.
        """
        drained = self.queue.drain()
        for pending in drained:
            self._resolve(pending, False)
        if drained:
            self.logger.info(f"Cancelled {len(drained)} queued command(s)")
        return len(drained)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            pending = self.queue.get(timeout=self.idle_wait)
            if pending is None:
                continue
            if stop_event.is_set():
                self._resolve(pending, False)
                break
            try:
                self._process(pending, stop_event)
            except TransportError as e:
                self.logger.error(f"Transport fault during {pending.command.name}: {str(e)}")
                self._resolve(pending, False)
                stop_event.set()
                self._report_fault(e)
            except Exception as e:
                self.logger.error(f"Unexpected dispatcher error: {str(e)}", exc_info=True)
                self._resolve(pending, False)
                stop_event.set()
                self._report_fault(e)

    def _process(self, pending: PendingCommand, stop_event: threading.Event) -> None:
        command = pending.command
        for attempt in range(1, self.max_attempts + 1):
            if stop_event.is_set():
                self._resolve(pending, False)
                return
            try:
                result = self._exchange(command, stop_event)
            except (ResponseTimeoutError, DecodeError) as e:
                self.logger.warning(
                    f"{command.name} attempt {attempt}/{self.max_attempts} failed: {str(e)}"
                )
                if isinstance(e, DecodeError) and e.data:
                    self.logger.debug(f"Offending bytes: {format_bytes(e.data)}")
                if attempt < self.max_attempts:
                    stop_event.wait(self.retry_delay)
                continue

            self._resolve(pending, self._publish(result))
            return

        message = f"{command.name} failed after {self.max_attempts} attempts"
        self.logger.error(message)
        self._resolve(pending, False)
        self.event_bus.publish(ERROR_OCCURRED, message)

    def _exchange(self, command: RegulatorCommand, stop_event: threading.Event) -> Projection:
        frame = encode(command)

        self.transport.discard_buffers()
        self.logger.debug(f"Sending {command.name}: {format_bytes(frame)}")
        self.transport.write(frame)

        # The response delay and both reads share one read timeout.
        deadline = time.monotonic() + self.settings.read_timeout_s
        if self.settings.response_delay > 0:
            stop_event.wait(min(self.settings.response_delay_s, _remaining(deadline)))

        header = self.transport.read_exact(HEADER_SIZE, _remaining(deadline))
        length = parse_header(header)
        rest = self.transport.read_exact(length + CHECKSUM_SIZE, _remaining(deadline))
        data = header + rest
        self.logger.debug(f"Received for {command.name}: {format_bytes(data)}")

        response = decode(data, command.command_type)
        return self.projector.project(command, response)

    def _publish(self, result: Projection) -> bool:
        """
        Publishes a projected result.

        Returns:
            Whether the pending command counts as successful.
        """
        if isinstance(result, EngineParameters):
            self.event_bus.publish(DATA_RECEIVED, result)
            return True
        if isinstance(result, ProtectionStatus):
            self.event_bus.publish(PROTECTION_STATUS_UPDATED, result)
            return True
        if isinstance(result, CommandAck):
            self.event_bus.publish(COMMAND_ACKNOWLEDGED, result)
            if not result.success:
                message = f"Device rejected {result.command_type.name} with error code {result.error_code}"
                self.logger.error(message)
                self.event_bus.publish(ERROR_OCCURRED, message)
            return result.success
        raise TypeError(f"Unexpected projection {type(result).__name__}")

    def _resolve(self, pending: PendingCommand, success: bool) -> None:
        if not pending.done:
            pending.resolve(success)

    def _report_fault(self, error: Exception) -> None:
        if self.on_fault is not None:
            self.on_fault(error)
