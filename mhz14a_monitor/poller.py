"""Polling loop: sensor initialisation handshakes and periodic readings."""

import logging
import time
from collections.abc import Callable

from .config import SensorConfig
from .protocol import (
    PacketKind,
    encode_disable_abc,
    encode_request_reading,
    encode_set_range,
)
from .serial_handler import SensorSerial

logger = logging.getLogger(__name__)


class InitialisationError(Exception):
    """Raised when the sensor does not acknowledge a configuration command."""

    pass


class SensorPoller:
    """Drives a sensor channel: configures the sensor, then requests readings."""

    def __init__(
        self,
        channel: SensorSerial,
        config: SensorConfig,
        on_reading: Callable[[int], None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._config = config
        self._on_reading = on_reading
        self._clock = clock
        self._last_request: float | None = None
        self._awaiting_reading = False

    def initialise(self) -> None:
        """
        Turn off automatic baseline correction and set the detection range.

        Raises InitialisationError if either command is not acknowledged
        within the configured timeout.
        """
        if self._config.disable_abc:
            logger.info("Requesting ABC off")
            self._handshake(encode_disable_abc(), PacketKind.ABC_OFF, "ABC off")

        logger.info("Setting detection range to %d ppm", self._config.range)
        self._handshake(
            encode_set_range(self._config.range),
            PacketKind.SET_RANGE,
            "Set range",
        )

    def _handshake(self, frame: bytes, expected: PacketKind, name: str) -> None:
        self._channel.write_bytes(frame)
        deadline = self._clock() + self._config.init_timeout

        while self._clock() < deadline:
            packets = self._channel.read_packets()
            if any(packet.kind is expected for packet in packets):
                logger.debug("Sensor acknowledged '%s'", name)
                return

        raise InitialisationError(
            f"did not receive response from '{name}' command"
        )

    def poll_once(self) -> None:
        """Run one iteration of the reading loop."""
        now = self._clock()
        if (
            self._last_request is None
            or now - self._last_request >= self._config.poll_interval
        ):
            if self._awaiting_reading:
                logger.warning(
                    "No reading received within %.1f seconds, retrying",
                    self._config.poll_interval,
                )
            logger.debug("Requesting CO2 level")
            self._channel.write_bytes(encode_request_reading())
            self._last_request = now
            self._awaiting_reading = True

        for packet in self._channel.read_packets():
            if packet.kind is PacketKind.READING:
                self._awaiting_reading = False
                self._on_reading(packet.concentration)

    def run(self, should_stop: Callable[[], bool]) -> None:
        """Poll until should_stop() returns True."""
        logger.info("Starting CO2 readings every %.1f seconds", self._config.poll_interval)
        while not should_stop():
            self.poll_once()
