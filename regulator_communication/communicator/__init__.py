"""
__init__.py

Initializes the communicator package: transports, the command queue and
dispatcher, the polling scheduler, the reconnection supervisor and the
RegulatorCommunicator facade that wires them together.
"""

from regulator_communication.communicator.command_queue import CommandQueue, PendingCommand
from regulator_communication.communicator.dispatcher import CommandDispatcher
from regulator_communication.communicator.polling import PollingScheduler
from regulator_communication.communicator.regulator_communicator import RegulatorCommunicator
from regulator_communication.communicator.serial_transport import SerialTransport
from regulator_communication.communicator.supervisor import ReconnectionSupervisor
from regulator_communication.communicator.transport import Transport

__all__ = [
    'CommandQueue',
    'PendingCommand',
    'CommandDispatcher',
    'PollingScheduler',
    'RegulatorCommunicator',
    'SerialTransport',
    'ReconnectionSupervisor',
    'Transport',
]
