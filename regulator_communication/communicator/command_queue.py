"""
command_queue.py

FIFO queue of pending commands. Each command is paired with a completion
handle that is resolved exactly once with True or False.
"""

import threading
from collections import deque
from typing import Deque, List, Optional

from regulator_communication.models import RegulatorCommand


class PendingCommand:
    """
    A command awaiting its exchange with the controller.

    Attributes:
        command: The command to send.
        result: True on success, False on failure, None while pending.
    """

    def __init__(self, command: RegulatorCommand):
        self.command = command
        self.result: Optional[bool] = None
        self._done = threading.Event()
        self._lock = threading.Lock()

    def resolve(self, success: bool) -> None:
        """
        Records the outcome and wakes up waiters.

        Raises:
            RuntimeError: The command was already resolved.
        """
        with self._lock:
            if self._done.is_set():
                raise RuntimeError(f"{self.command.name} was already resolved")
            self.result = bool(success)
            self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[bool]:
        """
        Blocks until the command is resolved or the timeout expires.

        Args:
            timeout: Seconds to wait, None to wait forever.

        Returns:
            The result, or None if still pending after the timeout.
        """
        self._done.wait(timeout)
        return self.result

    def __repr__(self) -> str:
        return f"PendingCommand({self.command!r}, result={self.result})"


class CommandQueue:
    """
    Thread-safe FIFO of PendingCommand objects.
    """

    def __init__(self):
        self._items: Deque[PendingCommand] = deque()
        self._condition = threading.Condition()

    def put(self, pending: PendingCommand) -> None:
        with self._condition:
            self._items.append(pending)
            self._condition.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[PendingCommand]:
        """
        Removes the oldest pending command.

        Args:
            timeout: Seconds to wait while the queue is empty.

        Returns:
            The command, or None if the queue stayed empty.
        """
        with self._condition:
            if not self._items:
                self._condition.wait(timeout)
            if not self._items:
                return None
            return self._items.popleft()

    def drain(self) -> List[PendingCommand]:
        """
        Removes and returns every queued command.
        """
        with self._condition:
            items = list(self._items)
            self._items.clear()
            return items

    def wake(self) -> None:
        """Wakes a consumer blocked in get()."""
        with self._condition:
            self._condition.notify_all()

    def __len__(self) -> int:
        with self._condition:
            return len(self._items)
