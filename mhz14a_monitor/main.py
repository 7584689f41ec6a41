"""Main entry point for the MH-Z14A CO2 monitor."""

import argparse
import logging
import signal
import sys
from collections.abc import Callable
from pathlib import Path

import serial

from .config import Config, default_config, load_config
from .mqtt_handler import (
    STATUS_INIT_FAILED,
    STATUS_ONLINE,
    STATUS_RECONNECTING,
    MqttPublisher,
)
from .poller import InitialisationError, SensorPoller
from .serial_handler import SensorSerial, SerialDisconnected

logger = logging.getLogger(__name__)


def main() -> None:
    """Entry point for mhz14a-monitor command."""
    parser = argparse.ArgumentParser(
        description="Read CO2 concentration (ppm) from an MH-Z14A sensor"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="Path to configuration file (default: built-in settings)",
    )
    parser.add_argument(
        "-p",
        "--port",
        help="Serial device, overrides the configuration file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.config is None:
        config = default_config()
    else:
        try:
            config = load_config(args.config)
        except FileNotFoundError:
            logger.error("Configuration file not found: %s", args.config)
            sys.exit(1)
        except ValueError as e:
            logger.error("Configuration error: %s", e)
            sys.exit(1)

    if args.port:
        config.serial.port = args.port

    sys.exit(run(config))


def print_reading(ppm: int) -> None:
    """Write one reading per line to stdout."""
    print(ppm, flush=True)


def _set_status(publisher: MqttPublisher | None, status: str) -> None:
    if publisher:
        publisher.set_status(status)


def monitor(
    channel: SensorSerial,
    poller: SensorPoller,
    publisher: MqttPublisher | None,
    should_stop: Callable[[], bool],
) -> None:
    """Poll readings until stopped, reopening and reconfiguring a lost sensor."""
    while not should_stop():
        if not channel.connected:
            if not channel.try_reconnect():
                continue

            # The sensor may have been power-cycled with its adapter
            logger.info("Serial reconnected, reconfiguring sensor")
            try:
                poller.initialise()
            except InitialisationError as e:
                logger.warning("Sensor not ready after reconnect: %s", e)
                channel.close()
                continue
            except SerialDisconnected:
                logger.warning("Serial connection lost while reconfiguring sensor")
                channel.close()
                continue
            _set_status(publisher, STATUS_ONLINE)

        try:
            poller.run(should_stop)
        except SerialDisconnected:
            logger.warning("Serial connection lost, will attempt reconnection")
            _set_status(publisher, STATUS_RECONNECTING)
            channel.close()


def run(config: Config) -> int:
    """Run the monitor with loaded configuration, return the exit status."""
    channel = SensorSerial(config.serial)
    publisher = MqttPublisher(config.mqtt) if config.mqtt else None

    def on_reading(ppm: int) -> None:
        print_reading(ppm)
        if publisher:
            publisher.publish_reading(ppm)

    poller = SensorPoller(channel, config.sensor, on_reading)

    # Graceful shutdown
    shutdown_requested = False

    def handle_signal(signum, frame):
        nonlocal shutdown_requested
        logger.info("Shutdown requested")
        shutdown_requested = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        try:
            channel.open()
        except serial.SerialException as e:
            logger.error("Failed to open serial port: %s", e)
            return 1

        if publisher:
            publisher.connect()

        try:
            poller.initialise()
        except InitialisationError as e:
            logger.error("Error initialising sensor - %s", e)
            _set_status(publisher, STATUS_INIT_FAILED)
            return 1
        except SerialDisconnected:
            logger.error("Serial connection lost during initialisation")
            _set_status(publisher, STATUS_INIT_FAILED)
            return 1

        _set_status(publisher, STATUS_ONLINE)
        monitor(channel, poller, publisher, lambda: shutdown_requested)

    finally:
        if publisher:
            publisher.disconnect()
        channel.close()
        logger.info("Monitor stopped")

    return 0


if __name__ == "__main__":
    main()
