"""MQTT publisher for CO2 readings and sensor status.

Topics, under ``{root_topic}/{sensor_id}``:
    co2     - latest concentration in ppm, as a decimal string
    status  - retained sensor state; the broker sets it to "offline" through
              the last will if the monitor disappears
"""

import logging

import paho.mqtt.client as mqtt

from .config import MqttConfig

logger = logging.getLogger(__name__)

# Reconnection settings
RECONNECT_DELAY_MIN = 1  # seconds
RECONNECT_DELAY_MAX = 120  # seconds

STATUS_INITIALISING = "initialising"
STATUS_ONLINE = "online"
STATUS_RECONNECTING = "reconnecting"
STATUS_INIT_FAILED = "init_failed"
STATUS_OFFLINE = "offline"


class MqttPublisher:
    """Mirrors the sensor's state and readings to an MQTT broker.

    The latest status and reading are remembered, so they are (re)published
    whenever the broker connection comes up, including after a reconnect.
    """

    def __init__(self, config: MqttConfig) -> None:
        self._config = config
        self._connected = False
        self._status = STATUS_INITIALISING
        self._last_ppm: int | None = None

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"mhz14a-monitor-{config.sensor_id}",
        )
        self._client.will_set(self.status_topic, STATUS_OFFLINE, qos=1, retain=True)
        self._client.reconnect_delay_set(RECONNECT_DELAY_MIN, RECONNECT_DELAY_MAX)
        if config.username:
            self._client.username_pw_set(config.username, config.password)

        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def status(self) -> str:
        return self._status

    @property
    def reading_topic(self) -> str:
        return f"{self._config.root_topic}/{self._config.sensor_id}/co2"

    @property
    def status_topic(self) -> str:
        return f"{self._config.root_topic}/{self._config.sensor_id}/status"

    def connect(self) -> None:
        """Connect to the broker and run the network loop in the background."""
        logger.info(
            "Connecting to MQTT broker %s:%d",
            self._config.broker,
            self._config.port,
        )
        self._client.connect(self._config.broker, self._config.port)
        self._client.loop_start()

    def disconnect(self) -> None:
        """Mark a running sensor offline, then leave the broker."""
        if self._status == STATUS_ONLINE:
            self.set_status(STATUS_OFFLINE)
        self._client.loop_stop()
        self._client.disconnect()
        logger.info("Disconnected from MQTT broker")

    def set_status(self, status: str) -> None:
        self._status = status
        if self._connected:
            self._client.publish(self.status_topic, status, qos=1, retain=True)
        logger.debug("Sensor status: %s", status)

    def publish_reading(self, ppm: int) -> None:
        """Publish a concentration reading in ppm."""
        self._last_ppm = ppm
        if not self._connected:
            logger.debug("Broker not connected, holding %d ppm until reconnect", ppm)
            return
        self._send_reading()

    def _send_reading(self) -> None:
        self._client.publish(
            self.reading_topic, str(self._last_ppm), retain=self._config.retain
        )
        logger.debug("Published %d ppm to %s", self._last_ppm, self.reading_topic)

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: mqtt.ConnectFlags,
        reason_code: mqtt.ReasonCode,
        properties: mqtt.Properties | None,
    ) -> None:
        if reason_code != 0:
            self._connected = False
            logger.error("MQTT connection failed: %s", reason_code)
            return

        self._connected = True
        logger.info("Connected to MQTT broker, sensor is %s", self._status)
        client.publish(self.status_topic, self._status, qos=1, retain=True)
        if self._last_ppm is not None:
            self._send_reading()

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: object,
        disconnect_flags: mqtt.DisconnectFlags,
        reason_code: mqtt.ReasonCode,
        properties: mqtt.Properties | None,
    ) -> None:
        self._connected = False
        if reason_code != 0:
            logger.warning("Lost MQTT broker: %s (will reconnect)", reason_code)
