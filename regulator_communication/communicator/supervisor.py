"""
supervisor.py

Implements the ReconnectionSupervisor, which takes over after a hard
transport fault: it quiesces the link, retries opening the port a bounded
number of times and either resumes normal operation or gives up.
"""

import logging
import threading
from typing import Callable, Optional

from regulator_communication.config import SUPERVISOR_DEFAULTS
from regulator_communication.errors import TransportError


class ReconnectionSupervisor:
    """
    Runs one reconnect cycle at a time on its own thread.

    The cycle is driven through callables supplied by the communicator so
    the supervisor stays independent of how the link is wired:

    - quiesce(): stop the scheduler and dispatcher, close the transport,
      fail queued commands and report CONNECTING.
    - reopen(): open the transport; raises TransportError on failure.
    - resume(): report CONNECTED and restart the dispatcher and scheduler.
    - give_up(message): report DISCONNECTED and publish the error.

    A cycle is over once it hands off to resume() or give_up(), so a fault
    raised while resuming starts the next cycle. That cycle waits for the
    previous thread to exit before quiescing the link.
    """

    def __init__(self, quiesce: Callable[[], None], reopen: Callable[[], None],
                 resume: Callable[[], None], give_up: Callable[[str], None],
                 max_attempts: int = SUPERVISOR_DEFAULTS["max_attempts"],
                 reconnect_delay: float = SUPERVISOR_DEFAULTS["reconnect_delay"],
                 logger: Optional[logging.Logger] = None):
        self.quiesce = quiesce
        self.reopen = reopen
        self.resume = resume
        self.give_up = give_up
        self.max_attempts = max_attempts
        self.reconnect_delay = reconnect_delay
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._active = False

    @property
    def is_reconnecting(self) -> bool:
        with self._lock:
            return self._active

    def trigger(self, error: Exception) -> bool:
        """
        Starts a reconnect cycle unless one is already running.

        Args:
            error: The fault that broke the connection.

        Returns:
            True if a new cycle was started.
        """
        with self._lock:
            if self._active:
                self.logger.debug(f"Reconnect already in progress, ignoring: {str(error)}")
                return False
            self.logger.warning(f"Connection lost: {str(error)}")
            self._active = True
            self._cancel_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._cancel_event, self._thread),
                name="regulator-supervisor", daemon=True
            )
            self._thread.start()
            return True

    def cancel(self, timeout: Optional[float] = None) -> None:
        """
        Aborts a running reconnect cycle and waits for its thread to exit.
        """
        self._cancel_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _finish(self) -> None:
        # Faults raised from resume() or give_up() start the next cycle.
        with self._lock:
            if self._thread is threading.current_thread():
                self._active = False

    def _run(self, cancel_event: threading.Event,
             previous: Optional[threading.Thread]) -> None:
        try:
            if previous is not None:
                previous.join()
            if cancel_event.is_set():
                self.logger.info("Reconnect cancelled")
                return
            self.quiesce()
            for attempt in range(1, self.max_attempts + 1):
                if cancel_event.wait(self.reconnect_delay):
                    self.logger.info("Reconnect cancelled")
                    return
                self.logger.info(f"Reconnect attempt {attempt}/{self.max_attempts}")
                try:
                    self.reopen()
                except TransportError as e:
                    self.logger.warning(f"Reconnect attempt {attempt} failed: {str(e)}")
                    continue
                if cancel_event.is_set():
                    self.logger.info("Reconnect cancelled")
                    return
                self.logger.info("Reconnected")
                self._finish()
                self.resume()
                return

            message = f"Unable to reconnect after {self.max_attempts} attempts"
            self.logger.error(message)
            self._finish()
            self.give_up(message)
        except Exception as e:
            self.logger.error(f"Reconnect cycle failed: {str(e)}", exc_info=True)
            self._finish()
            self.give_up(f"Reconnect cycle failed: {str(e)}")
        finally:
            self._finish()
