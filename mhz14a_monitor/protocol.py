"""MH-Z14A serial protocol framing and checksum.

Frame format (9 bytes):
    [0xFF][0x01][command][data0][data1][data2][data3][data4][checksum]

The sensor drops the address in its answers and carries six data bytes:
    [0xFF][command][data0][data1][data2][data3][data4][data5][checksum]

- Sync: 0xFF marks the start of every frame
- Address: 0x01 (fixed sensor number)
- Command: 0x86 read CO2, 0x79 ABC on/off, 0x99 set detection range
- Data: 5 bytes, command specific, zero padded
- Checksum: (0xFF - (sum(bytes[1:8]) & 0xFF) + 1) & 0xFF, so a valid frame
  sums to 0 mod 256 when the sync byte is left out

Readings carry the concentration big-endian in data0/data1, and set-range
requests carry the range the same way.
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

FRAME_SIZE = 9
SYNC_BYTE = 0xFF
SENSOR_ADDRESS = 0x01

CMD_READ_CO2 = 0x86
CMD_ABC_OFF = 0x79
CMD_SET_RANGE = 0x99

VALID_RANGES = (2000, 5000, 10000)

# Parser positions within a frame (1-indexed)
POS_SYNC = 1
POS_CHECKSUM = 9


class PacketKind(Enum):
    """Classification of a frame by its command byte."""

    READING = "reading"
    ABC_OFF = "abc_off"
    SET_RANGE = "set_range"
    UNRECOGNIZED = "unrecognized"
    INCOMPLETE = "incomplete"


_COMMAND_KINDS = {
    CMD_READ_CO2: PacketKind.READING,
    CMD_ABC_OFF: PacketKind.ABC_OFF,
    CMD_SET_RANGE: PacketKind.SET_RANGE,
}


class InvalidRange(ValueError):
    """Raised when a detection range other than 2000, 5000 or 10000 is requested."""

    def __init__(self, value: int) -> None:
        super().__init__(
            f"invalid range {value}, expected one of {', '.join(map(str, VALID_RANGES))}"
        )
        self.value = value


def checksum(frame: bytes) -> int:
    """Calculate the checksum byte for a frame (bytes 1..7 are summed)."""
    return (0xFF - (sum(frame[1:8]) & 0xFF) + 1) & 0xFF


def _build_frame(command: int, data: bytes = b"") -> bytes:
    body = bytes([SYNC_BYTE, SENSOR_ADDRESS, command]) + data.ljust(5, b"\x00")
    return body + bytes([checksum(body)])


def encode_request_reading() -> bytes:
    """Frame asking the sensor for its current CO2 concentration."""
    return _build_frame(CMD_READ_CO2)


def encode_disable_abc() -> bytes:
    """Frame turning off automatic baseline correction."""
    return _build_frame(CMD_ABC_OFF)


def encode_set_range(value: int) -> bytes:
    """Frame setting the detection range (ppm).

    Raises InvalidRange before building anything if the range is not supported.
    """
    if value not in VALID_RANGES:
        raise InvalidRange(value)
    return _build_frame(CMD_SET_RANGE, value.to_bytes(2, "big"))


@dataclass(frozen=True)
class Packet:
    """A valid frame received from the sensor."""

    kind: PacketKind
    concentration: int | None = None  # ppm, READING only


class FrameParser:
    """Byte-at-a-time decoder for frames arriving from the sensor.

    One instance lives as long as the serial channel it reads from. The only
    state carried between calls is the position in the current frame, where
    the command byte sits in it, the kind staged from the command byte, the
    high data byte and the running checksum.

    Frames are accepted with the address byte after the sync byte, as the
    commands are sent, and without it, as the sensor answers them
    (``FF 86 hi lo ...``). The address 0x01 is never a command, so the byte
    after sync tells the two apart.
    """

    def __init__(self) -> None:
        self._position = POS_SYNC
        self._command_at = POS_SYNC + 1
        self._checksum = 0
        self._kind = PacketKind.INCOMPLETE
        self._high = 0
        self._staged_value: int | None = None
        self.last_concentration: int | None = None
        self.frames_rejected = 0

    def consume_byte(self, byte: int) -> PacketKind:
        """
        Advance the state machine by one received byte.

        Returns the kind of packet completed by this byte, or
        PacketKind.INCOMPLETE if no valid frame was completed (including
        when a frame was just dropped for a bad checksum).
        """
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"byte out of range: {byte}")

        position = self._position

        if position == POS_SYNC:
            if byte == SYNC_BYTE:
                self._checksum = 0
                self._kind = PacketKind.INCOMPLETE
                self._staged_value = None
                self._command_at = POS_SYNC + 1
                self._position = POS_SYNC + 1
            return PacketKind.INCOMPLETE

        self._checksum = (self._checksum + byte) & 0xFF

        if position == POS_CHECKSUM:
            self._position = POS_SYNC
            return self._complete_frame()

        if position == POS_SYNC + 1 and byte == SENSOR_ADDRESS:
            self._command_at = position + 1
        elif position == self._command_at:
            self._kind = _COMMAND_KINDS.get(byte, PacketKind.UNRECOGNIZED)
        elif position == self._command_at + 1:
            self._high = byte
        elif position == self._command_at + 2:
            if self._kind is PacketKind.READING:
                self._staged_value = 256 * self._high + byte

        self._position = position + 1
        return PacketKind.INCOMPLETE

    def _complete_frame(self) -> PacketKind:
        if self._checksum != 0:
            self.frames_rejected += 1
            logger.debug(
                "Dropped %s frame with bad checksum (residue 0x%02X)",
                self._kind.value,
                self._checksum,
            )
            return PacketKind.INCOMPLETE

        if self._kind is PacketKind.READING:
            self.last_concentration = self._staged_value
        logger.debug("Decoded %s frame", self._kind.value)
        return self._kind

    def decode(self, data: bytes) -> list[Packet]:
        """Feed bytes into the parser, return every valid frame completed.

        Each reading keeps its own concentration, even when several arrive in
        one chunk.
        """
        packets = []
        for byte in data:
            kind = self.consume_byte(byte)
            if kind is PacketKind.READING:
                packets.append(Packet(kind, self.last_concentration))
            elif kind is not PacketKind.INCOMPLETE:
                packets.append(Packet(kind))
        return packets

    def feed(self, data: bytes) -> list[PacketKind]:
        """Feed bytes into the parser, return the kinds of all completed frames."""
        return [packet.kind for packet in self.decode(data)]
