"""Sink operations invoked by the fan-out dispatcher.

Each sink performs exactly one external write per event and reports a
:class:`SinkOutcome`. Sinks raise on failure; turning the exception into a
failed outcome is the dispatcher's job.
"""

from __future__ import annotations

import logging

from ..core.models import ArchivedRecord, DispatchContext, SinkOutcome, TelemetryEvent
from ..core.protocols import MetricsClient, ObjectStore, RecordStore
from ..core.utils import describe

LOGGER = logging.getLogger(__name__)


class MetricsSink:
    name = "metrics"

    def __init__(self, client: MetricsClient, namespace: str) -> None:
        self._client = client
        self._namespace = namespace

    async def apply(
        self, event: TelemetryEvent, context: DispatchContext
    ) -> SinkOutcome:
        await self._client.put_readings(
            self._namespace,
            event.device_id,
            {"Temperature": event.temperature, "Humidity": event.humidity},
        )
        return SinkOutcome(self.name, event, result=event.action.value)


class ArchiveSink:
    """Archives the serialised event under the ingestion timestamp key."""

    name = "archive"

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def apply(
        self, event: TelemetryEvent, context: DispatchContext
    ) -> SinkOutcome:
        response = await self._store.put_object(context.digest, event.to_payload())
        return SinkOutcome(self.name, event, result=describe(response))


class RecordSink:
    """Upserts the event into the record store with a time-to-live."""

    name = "record"

    def __init__(self, store: RecordStore, *, ttl_seconds: int = 60) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds

    def build_record(
        self, event: TelemetryEvent, context: DispatchContext
    ) -> ArchivedRecord:
        return ArchivedRecord.from_event(
            event,
            context.digest,
            ttl=int(context.ingested_at) + self._ttl_seconds,
        )

    async def apply(
        self, event: TelemetryEvent, context: DispatchContext
    ) -> SinkOutcome:
        record = self.build_record(event, context)
        response = await self._store.put_record(record)
        return SinkOutcome(self.name, event, result=describe(response))
