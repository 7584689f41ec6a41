"""Serial port handler for the MH-Z14A sensor."""

import logging
import time

import serial

from .config import SerialConfig
from .protocol import FrameParser, Packet

logger = logging.getLogger(__name__)

# Reconnection settings
RECONNECT_DELAY_MIN = 1  # seconds
RECONNECT_DELAY_MAX = 60  # seconds


class SensorSerial:
    """Raw 8N1 byte channel to the sensor, with its frame parser."""

    def __init__(self, config: SerialConfig) -> None:
        self._config = config
        self._port: serial.Serial | None = None
        self._parser = FrameParser()
        self._reconnect_delay = RECONNECT_DELAY_MIN

    @property
    def connected(self) -> bool:
        """Return True if serial port is open."""
        return self._port is not None and self._port.is_open

    @property
    def parser(self) -> FrameParser:
        """Frame parser fed by this channel."""
        return self._parser

    def open(self) -> None:
        """Open the serial port and discard anything already buffered."""
        self._port = serial.Serial(
            port=self._config.port,
            baudrate=self._config.baud,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            xonxoff=False,
            rtscts=False,
            timeout=self._config.timeout,
        )
        self._port.reset_input_buffer()
        self._reconnect_delay = RECONNECT_DELAY_MIN  # Reset backoff on success
        logger.info(
            "Opened serial port %s at %d baud",
            self._config.port,
            self._config.baud,
        )

    def close(self) -> None:
        """Close the serial port."""
        if self._port and self._port.is_open:
            self._port.close()
            logger.info("Closed serial port")
        self._port = None

    def try_reconnect(self) -> bool:
        """
        Attempt to reconnect to the serial port.

        Returns True if reconnection successful, False otherwise.
        Uses exponential backoff between attempts.
        """
        self.close()

        logger.info(
            "Attempting serial reconnection in %d seconds...",
            self._reconnect_delay,
        )
        time.sleep(self._reconnect_delay)

        try:
            self.open()
        except serial.SerialException as e:
            logger.warning("Serial reconnection failed: %s", e)
            # Exponential backoff
            self._reconnect_delay = min(
                self._reconnect_delay * 2,
                RECONNECT_DELAY_MAX,
            )
            return False

        # New channel, new parser; keep the last reading visible
        last = self._parser.last_concentration
        self._parser = FrameParser()
        self._parser.last_concentration = last
        return True

    def read_byte(self) -> int | None:
        """
        Read a single byte.

        For callers driving FrameParser.consume_byte themselves; the poller
        reads whole chunks through read_packets instead. Returns None if the
        read timed out.
        Raises SerialDisconnected if the port is no longer available.
        """
        if not self.connected:
            raise SerialDisconnected()

        try:
            data = self._port.read(1)
        except serial.SerialException as e:
            logger.error("Serial read error: %s", e)
            raise SerialDisconnected() from e

        if not data:
            return None
        return data[0]

    def read_packets(self) -> list[Packet]:
        """
        Read any available bytes and run them through the parser.

        Returns the valid frames completed, possibly empty.
        Raises SerialDisconnected if the port is no longer available.
        """
        if not self.connected:
            raise SerialDisconnected()

        try:
            data = self._port.read(self._port.in_waiting or 1)
        except serial.SerialException as e:
            logger.error("Serial read error: %s", e)
            raise SerialDisconnected() from e

        if not data:
            return []

        rejected = self._parser.frames_rejected
        packets = self._parser.decode(data)
        if self._parser.frames_rejected > rejected:
            logger.debug(
                "Discarded %d corrupt frame(s)",
                self._parser.frames_rejected - rejected,
            )
        for pkt in packets:
            logger.debug("Received %s packet from sensor", pkt.kind.value)
        return packets

    def write_bytes(self, frame: bytes) -> None:
        """Write a frame to the sensor unchanged."""
        if not self.connected:
            raise SerialDisconnected()

        try:
            self._port.write(frame)
        except serial.SerialException as e:
            logger.error("Serial write error: %s", e)
            raise SerialDisconnected() from e
        logger.debug("Sent frame to sensor: %s", frame.hex(" "))


class SerialDisconnected(Exception):
    """Raised when serial port becomes unavailable."""

    pass
