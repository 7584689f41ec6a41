"""Tests for the serial channel, with pyserial mocked out."""

from unittest.mock import MagicMock, patch

import pytest
import serial

from mhz14a_monitor.config import SerialConfig
from mhz14a_monitor.protocol import Packet, PacketKind, checksum, encode_set_range
from mhz14a_monitor.serial_handler import (
    RECONNECT_DELAY_MAX,
    SensorSerial,
    SerialDisconnected,
)


def reading_frame(ppm: int) -> bytes:
    body = bytes([0xFF, 0x01, 0x86]) + ppm.to_bytes(2, "big") + bytes(3)
    return body + bytes([checksum(body)])


@pytest.fixture
def mock_serial():
    with patch("mhz14a_monitor.serial_handler.serial.Serial") as serial_cls:
        port = MagicMock()
        port.is_open = True
        port.in_waiting = 0
        serial_cls.return_value = port
        yield serial_cls


@pytest.fixture
def channel(mock_serial):
    handler = SensorSerial(SerialConfig(port="/dev/ttyTEST", baud=9600, timeout=0.1))
    handler.open()
    return handler


class TestOpenClose:
    def test_open_configures_raw_8n1(self, mock_serial, channel):
        mock_serial.assert_called_once_with(
            port="/dev/ttyTEST",
            baudrate=9600,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            xonxoff=False,
            rtscts=False,
            timeout=0.1,
        )
        mock_serial.return_value.reset_input_buffer.assert_called_once()
        assert channel.connected

    def test_close(self, mock_serial, channel):
        channel.close()
        mock_serial.return_value.close.assert_called_once()
        assert not channel.connected

    def test_not_connected_before_open(self):
        handler = SensorSerial(SerialConfig())
        assert not handler.connected
        with pytest.raises(SerialDisconnected):
            handler.read_packets()
        with pytest.raises(SerialDisconnected):
            handler.write_bytes(b"\xff")


class TestReadWrite:
    def test_read_byte(self, mock_serial, channel):
        mock_serial.return_value.read.return_value = b"\xff"
        assert channel.read_byte() == 0xFF
        mock_serial.return_value.read.assert_called_with(1)

    def test_read_byte_timeout(self, mock_serial, channel):
        mock_serial.return_value.read.return_value = b""
        assert channel.read_byte() is None

    def test_read_packets_decodes_reading(self, mock_serial, channel):
        port = mock_serial.return_value
        port.in_waiting = 9
        port.read.return_value = reading_frame(400)

        assert channel.read_packets() == [Packet(PacketKind.READING, 400)]
        assert channel.parser.last_concentration == 400
        port.read.assert_called_with(9)

    def test_read_packets_waits_for_one_byte(self, mock_serial, channel):
        port = mock_serial.return_value
        port.read.return_value = b""

        assert channel.read_packets() == []
        port.read.assert_called_with(1)

    def test_read_error_disconnects(self, mock_serial, channel):
        mock_serial.return_value.read.side_effect = serial.SerialException("gone")
        with pytest.raises(SerialDisconnected):
            channel.read_packets()
        with pytest.raises(SerialDisconnected):
            channel.read_byte()

    def test_write_bytes_unchanged(self, mock_serial, channel):
        frame = encode_set_range(10000)
        channel.write_bytes(frame)
        mock_serial.return_value.write.assert_called_once_with(frame)

    def test_write_error_disconnects(self, mock_serial, channel):
        mock_serial.return_value.write.side_effect = serial.SerialException("gone")
        with pytest.raises(SerialDisconnected):
            channel.write_bytes(encode_set_range(2000))


class TestReconnect:
    def test_failed_reconnect_backs_off(self, mock_serial, channel):
        mock_serial.side_effect = serial.SerialException("no device")
        with patch("mhz14a_monitor.serial_handler.time.sleep") as sleep:
            assert channel.try_reconnect() is False
            assert channel.try_reconnect() is False
            for _ in range(10):
                channel.try_reconnect()

        delays = [c.args[0] for c in sleep.call_args_list]
        assert delays[:3] == [1, 2, 4]
        assert max(delays) == RECONNECT_DELAY_MAX
        assert not channel.connected

    def test_reconnect_uses_fresh_parser(self, mock_serial, channel):
        port = mock_serial.return_value
        port.in_waiting = 9
        port.read.return_value = reading_frame(555)
        channel.read_packets()

        # Leave the old parser in the middle of a frame
        port.in_waiting = 3
        port.read.return_value = b"\xff\x01\x86"
        channel.read_packets()
        old_parser = channel.parser

        with patch("mhz14a_monitor.serial_handler.time.sleep"):
            assert channel.try_reconnect() is True

        assert channel.parser is not old_parser
        assert channel.parser.last_concentration == 555

        port.in_waiting = 9
        port.read.return_value = reading_frame(600)
        assert channel.read_packets() == [Packet(PacketKind.READING, 600)]
        assert channel.parser.last_concentration == 600


def test_read_packets_keeps_each_concentration(mock_serial, channel):
    port = mock_serial.return_value
    data = reading_frame(400) + encode_set_range(2000) + reading_frame(410)
    port.in_waiting = len(data)
    port.read.return_value = data

    assert channel.read_packets() == [
        Packet(PacketKind.READING, 400),
        Packet(PacketKind.SET_RANGE),
        Packet(PacketKind.READING, 410),
    ]
