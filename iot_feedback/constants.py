"""Constants used across the iot-feedback package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "iot-feedback"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".iot-feedback" / DEFAULT_CONFIG_FILENAME

DEFAULT_DEVICE_ID = "381938912"
DEFAULT_DEVICE_NAME = "monitoring-device"
DEFAULT_BUILDING = "1"

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 8883

DEFAULT_TELEMETRY_TOPIC = "telemetry/{building}"
DEFAULT_REMEDIATION_TOPIC = "remediation/{building}"

DEFAULT_UPDATE_FREQUENCY = 2.0
DEFAULT_VELOCITY = 1.1
DEFAULT_REMEDIATION_FACTOR = 0.3
DEFAULT_MIN_TEMP = 27.0
DEFAULT_MIN_HUM = 60.0

DEFAULT_RECORD_TTL_SECONDS = 60
DEFAULT_SINK_TIMEOUT_SECONDS = 10.0
DEFAULT_METRICS_NAMESPACE = "Device/Monitoring"
DEFAULT_MONITORING_TABLE = "monitoring"
DEFAULT_REMEDIATION_TABLE = "remediation"
DEFAULT_HISTORY_BUCKET = "monitoring-history"
DEFAULT_AWS_REGION = "eu-west-1"
