"""Core primitives for iot-feedback."""

from .digest import Clock, time_digest
from .models import (
    Action,
    ArchivedRecord,
    ControllerMode,
    DispatchContext,
    PayloadDecodeError,
    SinkOutcome,
    StateDelta,
    TelemetryEvent,
)
from .protocols import (
    MessageHandler,
    MetricsClient,
    ObjectStore,
    Publisher,
    RecordStore,
    Sink,
    Transport,
)
from .utils import describe, resolve

__all__ = [
    "Action",
    "ArchivedRecord",
    "Clock",
    "ControllerMode",
    "DispatchContext",
    "MessageHandler",
    "MetricsClient",
    "ObjectStore",
    "PayloadDecodeError",
    "Publisher",
    "RecordStore",
    "Sink",
    "SinkOutcome",
    "StateDelta",
    "TelemetryEvent",
    "Transport",
    "describe",
    "resolve",
    "time_digest",
]
