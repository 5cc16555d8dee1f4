"""
polling.py

Implements the PollingScheduler, which keeps telemetry flowing by queueing
GetParameters every polling interval and GetProtectionStatus every few
seconds while the link is up.
"""

import logging
import threading
import time
from typing import Callable, Optional

from regulator_communication.communicator.command_queue import PendingCommand
from regulator_communication.config import DEFAULT_POLLING_INTERVAL_MS, PROTECTION_POLL_INTERVAL
from regulator_communication.models import GetParameters, GetProtectionStatus, RegulatorCommand


class PollingScheduler:
    """
    Periodically submits query commands through the shared command queue.

    A poll is skipped while the previous poll of the same kind is still
    pending, so a slow link cannot make the queue grow without bound.
    """

    def __init__(self, submit: Callable[[RegulatorCommand], PendingCommand],
                 protection_interval: float = PROTECTION_POLL_INTERVAL,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            submit: Enqueues a command and returns its pending handle.
            protection_interval: Seconds between protection status polls.
            logger: Optional logger instance.
        """
        self.submit = submit
        self.protection_interval = protection_interval
        self.logger = logger or logging.getLogger(__name__)
        self.polling_interval = DEFAULT_POLLING_INTERVAL_MS / 1000.0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_parameters: Optional[PendingCommand] = None
        self._last_protection: Optional[PendingCommand] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self, polling_interval: float) -> None:
        """
        Starts polling.

        Args:
            polling_interval: Seconds between telemetry polls.
        """
        if self.is_running:
            return
        self.polling_interval = polling_interval
        self._last_parameters = None
        self._last_protection = None
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), name="regulator-polling", daemon=True
        )
        self._thread.start()
        self.logger.debug(f"Polling started every {polling_interval:.3f}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _run(self, stop_event: threading.Event) -> None:
        last_protection_poll = None
        while not stop_event.is_set():
            try:
                self._last_parameters = self._poll(self._last_parameters, GetParameters())

                now = time.monotonic()
                if last_protection_poll is None or now - last_protection_poll >= self.protection_interval:
                    self._last_protection = self._poll(self._last_protection, GetProtectionStatus())
                    last_protection_poll = now
            except Exception as e:
                self.logger.error(f"Polling error: {str(e)}", exc_info=True)

            stop_event.wait(self.polling_interval)

    def _poll(self, previous: Optional[PendingCommand],
              command: RegulatorCommand) -> Optional[PendingCommand]:
        if previous is not None and not previous.done:
            self.logger.debug(f"Skipping {command.name}: previous poll still pending")
            return previous
        return self.submit(command)
