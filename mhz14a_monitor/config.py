"""Configuration loading and validation."""

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .protocol import VALID_RANGES


@dataclass
class SerialConfig:
    port: str = "/dev/ttyUSB0"
    baud: int = 9600
    timeout: float = 0.1  # seconds to wait for a byte


@dataclass
class SensorConfig:
    range: int = 10000
    disable_abc: bool = True
    poll_interval: float = 10.0  # seconds between reading requests
    init_timeout: float = 2.0  # seconds to wait for each handshake response


@dataclass
class MqttConfig:
    broker: str
    port: int = 1883
    username: str | None = None
    password: str | None = None
    root_topic: str = "mhz14a"
    sensor_id: str = "co2"
    retain: bool = False


@dataclass
class Config:
    serial: SerialConfig = field(default_factory=SerialConfig)
    sensor: SensorConfig = field(default_factory=SensorConfig)
    mqtt: MqttConfig | None = None


def default_config() -> Config:
    """Configuration matching the sensor's stock wiring and settings."""
    return Config()


def _positive(raw: dict, key: str, section: str, errors: list[str]) -> None:
    value = raw.get(key)
    if value is not None and (not isinstance(value, (int, float)) or value <= 0):
        errors.append(f"{section}.{key} must be a positive number")


def _section(raw: dict, name: str, errors: list[str]) -> dict:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        errors.append(f"'{name}' section must be a mapping")
        return {}
    return section


def load_config(path: Path) -> Config:
    """Load and validate configuration from YAML file."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError("configuration validation failed: top level must be a mapping")

    errors = []

    serial_raw = _section(raw, "serial", errors)
    _positive(serial_raw, "baud", "serial", errors)
    _positive(serial_raw, "timeout", "serial", errors)

    sensor_raw = _section(raw, "sensor", errors)
    if "range" in sensor_raw and sensor_raw["range"] not in VALID_RANGES:
        errors.append(
            f"sensor.range must be one of {', '.join(map(str, VALID_RANGES))}"
        )
    _positive(sensor_raw, "poll_interval", "sensor", errors)
    _positive(sensor_raw, "init_timeout", "sensor", errors)

    mqtt_raw = raw.get("mqtt")
    if mqtt_raw is not None:
        if not isinstance(mqtt_raw, dict):
            errors.append("'mqtt' section must be a mapping")
        elif "broker" not in mqtt_raw:
            errors.append("mqtt.broker is required")

    if errors:
        raise ValueError(f"configuration validation failed: {'; '.join(errors)}")

    defaults = default_config()

    serial = SerialConfig(
        port=serial_raw.get("port", defaults.serial.port),
        baud=serial_raw.get("baud", defaults.serial.baud),
        timeout=serial_raw.get("timeout", defaults.serial.timeout),
    )

    sensor = SensorConfig(
        range=sensor_raw.get("range", defaults.sensor.range),
        disable_abc=sensor_raw.get("disable_abc", defaults.sensor.disable_abc),
        poll_interval=sensor_raw.get("poll_interval", defaults.sensor.poll_interval),
        init_timeout=sensor_raw.get("init_timeout", defaults.sensor.init_timeout),
    )

    mqtt = None
    if mqtt_raw is not None:
        mqtt = MqttConfig(
            broker=mqtt_raw["broker"],
            port=mqtt_raw.get("port", 1883),
            username=mqtt_raw.get("username"),
            password=mqtt_raw.get("password"),
            root_topic=mqtt_raw.get("root_topic", "mhz14a"),
            sensor_id=mqtt_raw.get("sensor_id", "co2"),
            retain=mqtt_raw.get("retain", False),
        )

    return Config(serial=serial, sensor=sensor, mqtt=mqtt)
