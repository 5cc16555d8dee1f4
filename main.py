#main.py
"""
Main entry point for the Regulator Link program.
Connects to an ERCHM30TZ regulator (or the built-in simulator), logs the
telemetry and protection events it produces, and disconnects cleanly on exit.
"""

import argparse            # Imports argparse to read the command line options
import logging             # Imports logging to handle application logging
import sys                 # Imports the sys module to handle Python runtime settings and exceptions
import time                # Imports time to bound the run duration
from datetime import datetime
from pathlib import Path    # Imports Path for easy cross-platform path handling

from regulator_communication.communicator import RegulatorCommunicator, SerialTransport
from regulator_communication.config import DEFAULT_POLLING_INTERVAL_MS, DEFAULT_PORT, setup_logging
from regulator_communication.device_simulator import SimulatedRegulatorTransport
from regulator_communication.events import (
    COMMAND_ACKNOWLEDGED, CONNECTION_STATUS_CHANGED, DATA_RECEIVED, ERROR_OCCURRED,
    PROTECTION_STATUS_UPDATED, EventBus,
)
from regulator_communication.models import ComPortSettings
from regulator_communication.param_types import EngineMode, LoadType


def setup_exception_handling(logger):
    """
    Configures a global exception handler that logs uncaught errors.
    logger: The Logger instance to record errors.
    """

    def handle_exception(exc_type, exc_value, exc_traceback):
        # Lets Ctrl+C keep its default behaviour
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.error("Uncaught exception:", exc_info=(exc_type, exc_value, exc_traceback))

    # Assigns sys.excepthook to our custom exception handler
    sys.excepthook = handle_exception


def create_app_directories():
    """
    Creates necessary application directories if they don't exist.
    Returns a tuple of (app_dir, log_dir).
    """
    # Defines the base directory in the user's home folder
    app_dir = Path.home() / ".regulator_link"
    # Defines where logs will be stored
    log_dir = app_dir / "logs"

    for directory in [app_dir, log_dir]:
        directory.mkdir(parents=True, exist_ok=True)

    return app_dir, log_dir


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="ERCHM30TZ diesel engine regulator link")
    parser.add_argument("--port", default=DEFAULT_PORT, help="Serial port of the regulator")
    parser.add_argument("--simulate", action="store_true", help="Use the built-in regulator simulator")
    parser.add_argument("--duration", type=float, default=0.0,
                        help="Seconds to run before disconnecting (0 runs until Ctrl+C)")
    parser.add_argument("--polling-interval", type=int, default=DEFAULT_POLLING_INTERVAL_MS,
                        help="Telemetry polling interval in milliseconds")
    parser.add_argument("--list-ports", action="store_true", help="List serial ports and exit")
    parser.add_argument("--debug", action="store_true", help="Log frame traffic")
    return parser.parse_args(argv)


def subscribe_console_logging(event_bus: EventBus, logger: logging.Logger) -> None:
    """
    Logs every collaborator-facing event.
    """
    def on_data(params):
        flags = " CRITICAL" if params.any_critical else ""
        logger.info(f"Telemetry: {params}{flags}")

    def on_protection(status):
        if status.any_active:
            logger.warning(f"Protections active: {', '.join(status.active_protections())}")
        else:
            logger.info("Protections: all clear")

    event_bus.subscribe(CONNECTION_STATUS_CHANGED,
                        lambda connected: logger.info(f"Connected: {connected}"))
    event_bus.subscribe(DATA_RECEIVED, on_data)
    event_bus.subscribe(PROTECTION_STATUS_UPDATED, on_protection)
    event_bus.subscribe(COMMAND_ACKNOWLEDGED, lambda ack: logger.info(f"Acknowledged: {ack}"))
    event_bus.subscribe(ERROR_OCCURRED, lambda message: logger.error(f"Regulator error: {message}"))


def main(argv=None):
    """
    Main function to start the Regulator Link program.
    Creates directories, sets up logging, connects and runs until stopped.
    """
    args = parse_args(argv)

    # Creates any needed folders for logs
    app_dir, log_dir = create_app_directories()

    # Initializes logging for the application
    level = logging.DEBUG if args.debug else logging.INFO
    log_file = log_dir / f"regulator_{datetime.now():%Y%m%d}.log"
    logger = setup_logging("regulator_communication", level=level, log_file=log_file)
    logger.info(f"Starting Regulator Link (data directory: {app_dir})")

    setup_exception_handling(logger)

    if args.list_ports:
        for port in SerialTransport.list_ports():
            print(port)
        return 0

    event_bus = EventBus(logger=logger)
    if args.simulate:
        transport = SimulatedRegulatorTransport(event_bus=event_bus, logger=logger.getChild("simulator"))
        port = "SIMULATOR"
    else:
        transport = SerialTransport(logger=logger)
        port = args.port

    settings = ComPortSettings(port_name=port, polling_interval=args.polling_interval)
    communicator = RegulatorCommunicator(transport, settings, event_bus=event_bus, logger=logger)
    subscribe_console_logging(event_bus, logger)

    if not communicator.connect():
        logger.error(f"Could not connect to {port}")
        return 1

    try:
        if args.simulate:
            # Gives the simulated engine something to do
            communicator.set_load_type(LoadType.IDLE)
            communicator.set_engine_speed(800)
            communicator.set_engine_mode(EngineMode.RUN)

        deadline = time.monotonic() + args.duration if args.duration > 0 else None
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        communicator.disconnect()
        logger.info("Regulator Link stopped")

    return 0


if __name__ == "__main__":
    # Entry point to run the main function
    sys.exit(main())
