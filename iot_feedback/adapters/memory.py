"""In-process transport and stores for running the whole loop without a cloud."""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional, Set, Tuple

import paho.mqtt.client as mqtt

from ..core.models import ArchivedRecord
from ..core.protocols import MessageHandler
from ..remediation.stream import ChangeRecord

LOGGER = logging.getLogger(__name__)


class LocalBus:
    """Minimal in-process broker with MQTT wildcard semantics.

    Each participant obtains its own :class:`LocalBusClient` so that the
    device and the ingestion side keep separate handlers and subscriptions.
    """

    def __init__(self) -> None:
        self._clients: List["LocalBusClient"] = []
        self._pending: Set[asyncio.Future[Any]] = set()
        self.published: List[Tuple[str, bytes, int]] = []

    def client(self, name: str) -> "LocalBusClient":
        client = LocalBusClient(self, name)
        self._clients.append(client)
        return client

    def _route(self, topic: str, payload: bytes, qos: int) -> None:
        self.published.append((topic, payload, qos))
        for client in list(self._clients):
            if not client.matches(topic):
                continue
            handler = client.handler
            if handler is None:
                continue
            try:
                result = handler(topic, payload)
            except Exception:
                LOGGER.exception("Local bus handler %s raised", client.name)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every delivered message has been handled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class LocalBusClient:
    def __init__(self, bus: LocalBus, name: str) -> None:
        self._bus = bus
        self.name = name
        self.handler: Optional[MessageHandler] = None
        self._subscriptions: Dict[str, int] = {}

    def matches(self, topic: str) -> bool:
        return any(mqtt.topic_matches_sub(sub, topic) for sub in self._subscriptions)

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        self._bus._route(topic, payload, qos)

    def subscribe(self, topic: str, qos: int = 1) -> None:
        self._subscriptions[topic] = qos

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self.handler = handler


class InMemoryMetrics:
    def __init__(self) -> None:
        self.datapoints: List[Tuple[str, str, str, float]] = []

    async def put_readings(
        self, namespace: str, device_id: str, readings: Mapping[str, float]
    ) -> Any:
        for name, value in readings.items():
            self.datapoints.append((namespace, device_id, name, float(value)))
        return {"accepted": len(readings)}


class InMemoryObjectStore:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}

    async def put_object(self, key: str, body: bytes) -> Mapping[str, Any]:
        self.objects[key] = body
        return {"Key": key, "ETag": hashlib.md5(body).hexdigest()}


class InMemoryRecordStore:
    """Digest-keyed store that records a change log of before/after images."""

    def __init__(self) -> None:
        self.records: Dict[str, Dict[str, Any]] = {}
        self._changes: Deque[ChangeRecord] = deque()
        self._sequence = itertools.count(1)

    def __len__(self) -> int:
        return len(self.records)

    def get(self, digest: str) -> Optional[Dict[str, Any]]:
        item = self.records.get(digest)
        return dict(item) if item is not None else None

    async def put_record(self, record: ArchivedRecord) -> Mapping[str, Any]:
        item = record.as_item()
        previous = self.records.get(record.digest)
        self.records[record.digest] = item

        self._changes.append(
            ChangeRecord(
                event_id=str(next(self._sequence)),
                event_name="INSERT" if previous is None else "MODIFY",
                new_image=dict(item),
                old_image=dict(previous) if previous is not None else {},
            )
        )
        return {"digest": record.digest, "replaced": previous is not None}

    @property
    def pending_changes(self) -> int:
        return len(self._changes)

    def drain_changes(self, batch_size: int = 100) -> List[ChangeRecord]:
        """Pop up to ``batch_size`` change records in commit order."""
        batch: List[ChangeRecord] = []
        while self._changes and len(batch) < batch_size:
            batch.append(self._changes.popleft())
        return batch
