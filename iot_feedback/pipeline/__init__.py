"""Telemetry fan-out pipeline."""

from .dispatcher import FanOutDispatcher, SinkTimeoutError
from .ingest import IngestService, build_dispatcher
from .sinks import ArchiveSink, MetricsSink, RecordSink

__all__ = [
    "ArchiveSink",
    "FanOutDispatcher",
    "IngestService",
    "MetricsSink",
    "RecordSink",
    "SinkTimeoutError",
    "build_dispatcher",
]
