"""Adapter modules for external integrations."""

from .aws import (
    CloudWatchMetrics,
    DynamoRecordStore,
    IoTDataPublisher,
    S3ObjectStore,
    build_session,
)
from .memory import (
    InMemoryMetrics,
    InMemoryObjectStore,
    InMemoryRecordStore,
    LocalBus,
    LocalBusClient,
)
from .mqtt import MQTTClient, MQTTConnectionError

__all__ = [
    "CloudWatchMetrics",
    "DynamoRecordStore",
    "InMemoryMetrics",
    "InMemoryObjectStore",
    "InMemoryRecordStore",
    "IoTDataPublisher",
    "LocalBus",
    "LocalBusClient",
    "MQTTClient",
    "MQTTConnectionError",
    "S3ObjectStore",
    "build_session",
]
