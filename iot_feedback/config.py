"""Configuration loader for iot-feedback."""

from __future__ import annotations

import logging
import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from . import constants

LOGGER = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when configuration values cannot be interpreted."""


@dataclass(slots=True)
class BrokerConfig:
    host: str = constants.DEFAULT_BROKER_HOST
    port: int = constants.DEFAULT_BROKER_PORT
    client_id: str = constants.DEFAULT_DEVICE_NAME
    username: Optional[str] = None
    password: Optional[str] = None
    ca_path: Optional[Path] = None
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None

    @property
    def tls_enabled(self) -> bool:
        return self.ca_path is not None


@dataclass(slots=True)
class DeviceConfig:
    device_id: str = constants.DEFAULT_DEVICE_ID
    velocity: float = constants.DEFAULT_VELOCITY
    remediation_factor: float = constants.DEFAULT_REMEDIATION_FACTOR
    min_temperature: float = constants.DEFAULT_MIN_TEMP
    min_humidity: float = constants.DEFAULT_MIN_HUM
    update_frequency: float = constants.DEFAULT_UPDATE_FREQUENCY


@dataclass(slots=True)
class TopicConfig:
    building: str = constants.DEFAULT_BUILDING
    telemetry: str = constants.DEFAULT_TELEMETRY_TOPIC
    remediation: str = constants.DEFAULT_REMEDIATION_TOPIC

    @property
    def telemetry_topic(self) -> str:
        return self.telemetry.format(building=self.building)

    @property
    def remediation_topic(self) -> str:
        return self.remediation.format(building=self.building)


@dataclass(slots=True)
class PipelineConfig:
    history_bucket: str = constants.DEFAULT_HISTORY_BUCKET
    monitoring_table: str = constants.DEFAULT_MONITORING_TABLE
    metrics_namespace: str = constants.DEFAULT_METRICS_NAMESPACE
    record_ttl_seconds: int = constants.DEFAULT_RECORD_TTL_SECONDS
    sink_timeout_seconds: float = constants.DEFAULT_SINK_TIMEOUT_SECONDS


@dataclass(slots=True)
class RemediationConfig:
    enabled: bool = False
    table: str = constants.DEFAULT_REMEDIATION_TABLE
    qos: int = 0


@dataclass(slots=True)
class AwsConfig:
    region: str = constants.DEFAULT_AWS_REGION
    iot_endpoint: Optional[str] = None


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False
    json_format: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class FeedbackConfig:
    broker: BrokerConfig
    device: DeviceConfig
    topics: TopicConfig
    pipeline: PipelineConfig
    remediation: RemediationConfig
    aws: AwsConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


# Environment variable -> (section, option). Names follow the deployed services.
ENVIRONMENT_OVERRIDES: dict[str, tuple[str, str]] = {
    "IOT_CORE_ENDPOINT": ("broker", "host"),
    "DEVICE_ID": ("device", "device_id"),
    "VELOCITY": ("device", "velocity"),
    "REMEDIATION_FACTOR": ("device", "remediation_factor"),
    "MIN_TEMP": ("device", "min_temperature"),
    "MIN_HUM": ("device", "min_humidity"),
    "UPDATE_FREQUENCY": ("device", "update_frequency"),
    "BUILDING": ("topics", "building"),
    "MONITORING_TOPIC": ("topics", "telemetry"),
    "REMEDIATION_TOPIC": ("topics", "remediation"),
    "HISTORY_BUCKET": ("pipeline", "history_bucket"),
    "MONITORING_TABLE": ("pipeline", "monitoring_table"),
    "TTL_DYNAMO": ("pipeline", "record_ttl_seconds"),
    "REMEDIATION_LOGIC": ("remediation", "enabled"),
    "REMEDIATION_TABLE": ("remediation", "table"),
    "REGION": ("aws", "region"),
    "AWS_REGION": ("aws", "region"),
    "LOG_LEVEL": ("logging", "level"),
}

_FLOAT_OPTIONS = {
    ("device", "velocity"),
    ("device", "remediation_factor"),
    ("device", "min_temperature"),
    ("device", "min_humidity"),
    ("device", "update_frequency"),
    ("pipeline", "sink_timeout_seconds"),
}

_INT_OPTIONS = {
    ("broker", "port"),
    ("pipeline", "record_ttl_seconds"),
    ("remediation", "qos"),
    ("health", "port"),
}

_DEFAULTS: dict[str, dict[str, str]] = {
    "broker": {
        "host": constants.DEFAULT_BROKER_HOST,
        "port": str(constants.DEFAULT_BROKER_PORT),
        "client_id": constants.DEFAULT_DEVICE_NAME,
    },
    "device": {
        "device_id": constants.DEFAULT_DEVICE_ID,
        "velocity": str(constants.DEFAULT_VELOCITY),
        "remediation_factor": str(constants.DEFAULT_REMEDIATION_FACTOR),
        "min_temperature": str(constants.DEFAULT_MIN_TEMP),
        "min_humidity": str(constants.DEFAULT_MIN_HUM),
        "update_frequency": str(constants.DEFAULT_UPDATE_FREQUENCY),
    },
    "topics": {
        "building": constants.DEFAULT_BUILDING,
        "telemetry": constants.DEFAULT_TELEMETRY_TOPIC,
        "remediation": constants.DEFAULT_REMEDIATION_TOPIC,
    },
    "pipeline": {
        "history_bucket": constants.DEFAULT_HISTORY_BUCKET,
        "monitoring_table": constants.DEFAULT_MONITORING_TABLE,
        "metrics_namespace": constants.DEFAULT_METRICS_NAMESPACE,
        "record_ttl_seconds": str(constants.DEFAULT_RECORD_TTL_SECONDS),
        "sink_timeout_seconds": str(constants.DEFAULT_SINK_TIMEOUT_SECONDS),
    },
    "remediation": {
        "enabled": "false",
        "table": constants.DEFAULT_REMEDIATION_TABLE,
        "qos": "0",
    },
    "aws": {
        "region": constants.DEFAULT_AWS_REGION,
    },
    "logging": {
        "level": "INFO",
        "log_network": "false",
        "json_format": "false",
    },
    "health": {
        "enabled": "false",
        "host": "127.0.0.1",
        "port": "0",
    },
}


def _apply_environment(parser: ConfigParser, environ: Mapping[str, str]) -> None:
    for name, (section, option) in ENVIRONMENT_OVERRIDES.items():
        value = environ.get(name)
        if value is None or value.strip() == "":
            continue
        value = value.strip()

        key = (section, option)
        try:
            if key in _FLOAT_OPTIONS:
                float(value)
            elif key in _INT_OPTIONS:
                int(value)
        except ValueError:
            LOGGER.warning(
                "Ignoring invalid value %r for %s; keeping %s",
                value,
                name,
                parser.get(section, option),
            )
            continue

        if key == ("remediation", "enabled"):
            value = "true" if value == "true" else "false"

        parser.set(section, option, value)


def _optional_path(parser: ConfigParser, section: str, option: str) -> Optional[Path]:
    value = parser.get(section, option, fallback="")
    if not value:
        return None
    return Path(value).expanduser()


def _split_host_port(parser: ConfigParser) -> tuple[str, int]:
    host = parser.get("broker", "host")
    port = parser.getint("broker", "port", fallback=constants.DEFAULT_BROKER_PORT)

    if ":" in host:
        host_part, port_part = host.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            host = host_part
            port = parsed_port
            parser.set("broker", "host", host_part)
            parser.set("broker", "port", str(parsed_port))

    return host, port


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> FeedbackConfig:
    """Load configuration from disk and the environment, applying defaults.

    Precedence is defaults, then the INI file, then environment variables.
    Command-line flags are applied afterwards by the CLI.
    """

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(_DEFAULTS)

    if config_path.exists():
        parser.read(config_path)

    _apply_environment(parser, os.environ if environ is None else environ)

    try:
        return _build_config(parser, config_path)
    except ValueError as exc:
        raise ConfigurationError(
            f"Invalid configuration in {config_path}: {exc}"
        ) from exc


def _build_config(parser: ConfigParser, config_path: Path) -> FeedbackConfig:
    host, port = _split_host_port(parser)

    broker = BrokerConfig(
        host=host,
        port=port,
        client_id=parser.get("broker", "client_id"),
        username=parser.get("broker", "username", fallback=None),
        password=parser.get("broker", "password", fallback=None),
        ca_path=_optional_path(parser, "broker", "ca_path"),
        cert_path=_optional_path(parser, "broker", "cert_path"),
        key_path=_optional_path(parser, "broker", "key_path"),
    )

    device = DeviceConfig(
        device_id=parser.get("device", "device_id"),
        velocity=parser.getfloat("device", "velocity"),
        remediation_factor=parser.getfloat("device", "remediation_factor"),
        min_temperature=parser.getfloat("device", "min_temperature"),
        min_humidity=parser.getfloat("device", "min_humidity"),
        update_frequency=max(0.0, parser.getfloat("device", "update_frequency")),
    )

    topics = TopicConfig(
        building=parser.get("topics", "building"),
        telemetry=parser.get("topics", "telemetry"),
        remediation=parser.get("topics", "remediation"),
    )

    pipeline = PipelineConfig(
        history_bucket=parser.get("pipeline", "history_bucket"),
        monitoring_table=parser.get("pipeline", "monitoring_table"),
        metrics_namespace=parser.get("pipeline", "metrics_namespace"),
        record_ttl_seconds=parser.getint("pipeline", "record_ttl_seconds"),
        sink_timeout_seconds=max(
            0.0, parser.getfloat("pipeline", "sink_timeout_seconds")
        ),
    )

    remediation = RemediationConfig(
        enabled=parser.getboolean("remediation", "enabled", fallback=False),
        table=parser.get("remediation", "table"),
        qos=max(0, min(2, parser.getint("remediation", "qos", fallback=0))),
    )

    aws = AwsConfig(
        region=parser.get("aws", "region"),
        iot_endpoint=parser.get("aws", "iot_endpoint", fallback=None) or None,
    )

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO").upper(),
        path=_optional_path(parser, "logging", "path"),
        log_network=parser.getboolean("logging", "log_network", fallback=False),
        json_format=parser.getboolean("logging", "json_format", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return FeedbackConfig(
        broker=broker,
        device=device,
        topics=topics,
        pipeline=pipeline,
        remediation=remediation,
        aws=aws,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: FeedbackConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
