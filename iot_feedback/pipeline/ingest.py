"""Telemetry ingestion: transport subscription feeding the fan-out dispatcher."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..config import PipelineConfig
from ..core.models import PayloadDecodeError, SinkOutcome, TelemetryEvent
from ..core.protocols import MetricsClient, ObjectStore, RecordStore, Transport
from .dispatcher import FanOutDispatcher
from .sinks import ArchiveSink, MetricsSink, RecordSink

LOGGER = logging.getLogger(__name__)


def build_dispatcher(
    config: PipelineConfig,
    *,
    metrics: MetricsClient,
    objects: ObjectStore,
    records: RecordStore,
) -> FanOutDispatcher:
    """Wire the three standard sinks in their canonical order."""
    return FanOutDispatcher(
        [
            MetricsSink(metrics, config.metrics_namespace),
            ArchiveSink(objects),
            RecordSink(records, ttl_seconds=config.record_ttl_seconds),
        ],
        sink_timeout=config.sink_timeout_seconds,
    )


class IngestService:
    """Subscribes to device telemetry and dispatches each event."""

    def __init__(
        self, transport: Transport, dispatcher: FanOutDispatcher, topic: str
    ) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self.topic = topic
        self.dispatched = 0
        self.rejected = 0

    def start(self) -> None:
        self._transport.set_message_handler(self.handle_message)
        self._transport.subscribe(self.topic, qos=1)
        LOGGER.info("Ingesting telemetry from %s", self.topic)

    def stop(self) -> None:
        self._transport.set_message_handler(None)

    async def handle_message(
        self, topic: str, payload: bytes
    ) -> Optional[List[SinkOutcome]]:
        try:
            event = TelemetryEvent.from_payload(payload)
        except PayloadDecodeError as exc:
            self.rejected += 1
            LOGGER.warning("Dropping malformed telemetry on %s: %s", topic, exc)
            return None

        outcomes = await self._dispatcher.dispatch(event)
        self.dispatched += 1
        return outcomes
