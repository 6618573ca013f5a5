"""Protocol definitions for sinks, stores and transports."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from .models import ArchivedRecord, DispatchContext, SinkOutcome, TelemetryEvent

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]


class Sink(Protocol):
    """One independent write target invoked during a fan-out."""

    name: str

    async def apply(
        self, event: TelemetryEvent, context: DispatchContext
    ) -> SinkOutcome:
        """Perform exactly one external write for ``event``.

        Implementations may raise; the dispatcher converts the exception
        into a failed outcome.
        """
        ...


class MetricsClient(Protocol):
    async def put_readings(
        self, namespace: str, device_id: str, readings: Mapping[str, float]
    ) -> Any:
        """Emit one scalar datapoint per reading, tagged by device."""
        ...


class ObjectStore(Protocol):
    async def put_object(self, key: str, body: bytes) -> Mapping[str, Any]:
        """Write ``body`` under ``key`` and return the store acknowledgement."""
        ...


class RecordStore(Protocol):
    async def put_record(self, record: ArchivedRecord) -> Mapping[str, Any]:
        """Upsert ``record`` keyed by its digest (last write wins)."""
        ...


class Publisher(Protocol):
    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> Awaitable[None] | None:
        """Publish ``payload`` on ``topic``."""
        ...


class Transport(Publisher, Protocol):
    """Bidirectional pub/sub transport (MQTT broker or in-process bus)."""

    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None: ...
