"""Change-triggered remediation.

The processor consumes ordered before/after images from the record store's
change log, derives a remediation command that steers the device back to
its pre-change readings, persists that command and publishes it on the
remediation topic.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence

from ..core.digest import Clock, time_digest
from ..core.models import ArchivedRecord, StateDelta, TelemetryEvent
from ..core.protocols import Publisher, RecordStore
from ..core.utils import resolve
from .stream import ChangeRecord

LOGGER = logging.getLogger(__name__)


class ProcessorState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"


class RemediationDirection(str, Enum):
    COOL_DOWN = "cool_down"
    WARM_UP = "warm_up"


@dataclass(slots=True)
class BatchResult:
    records: int
    delta: Optional[StateDelta] = None
    direction: Optional[RemediationDirection] = None
    command: Optional[TelemetryEvent] = None
    digest: Optional[str] = None
    persisted: bool = False
    published: bool = False
    errors: List[str] = field(default_factory=list)


def _number(image: Mapping[str, Any], key: str) -> Optional[float]:
    value = image.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def extract_delta(records: Sequence[ChangeRecord]) -> Optional[StateDelta]:
    """Fold a batch into one delta.

    A single accumulator spans the batch: each record overwrites whichever
    fields its images carry, so the last record wins per field. Fields never
    seen stay at zero. The device comes from the new image, or from the old
    image when the new one has none. Returns ``None`` for an empty batch.
    """

    if not records:
        return None

    device_id = ""
    new_temperature = old_temperature = 0.0
    new_humidity = old_humidity = 0.0

    for record in records:
        LOGGER.debug(
            "Processing request data for event ID %s, type %s",
            record.event_id,
            record.event_name,
        )
        # TTL expiry produces REMOVE records that only carry the old image.
        device = record.new_image.get("device") or record.old_image.get("device")
        if isinstance(device, str) and device:
            device_id = device

        value = _number(record.new_image, "temperature")
        if value is not None:
            new_temperature = value
        value = _number(record.new_image, "humidity")
        if value is not None:
            new_humidity = value
        value = _number(record.old_image, "temperature")
        if value is not None:
            old_temperature = value
        value = _number(record.old_image, "humidity")
        if value is not None:
            old_humidity = value

    return StateDelta(
        device_id=device_id,
        new_temperature=new_temperature,
        old_temperature=old_temperature,
        new_humidity=new_humidity,
        old_humidity=old_humidity,
    )


def direction_of(delta: StateDelta) -> RemediationDirection:
    if delta.new_temperature > delta.old_temperature:
        return RemediationDirection.COOL_DOWN
    return RemediationDirection.WARM_UP


def remediation_target(delta: StateDelta) -> tuple[float, float]:
    """Return the temperature/humidity the device should steer back toward.

    Without a prior image (old temperature or humidity of zero) the new
    readings become the baseline, so the target is never zero.
    """
    if delta.missing_prior_image:
        return delta.new_temperature, delta.new_humidity
    return delta.old_temperature, delta.old_humidity


class ChangeProcessor:
    """Turns change-log batches into remediation commands.

    ``process_batch`` never raises for persistence or publish failures: they
    are logged and reported on the :class:`BatchResult`, and the batch is
    considered consumed either way.
    """

    def __init__(
        self,
        records: RecordStore,
        publisher: Publisher,
        *,
        topic: str,
        enabled: bool = False,
        qos: int = 0,
        clock: Optional[Clock] = None,
    ) -> None:
        self._records = records
        self._publisher = publisher
        self.topic = topic
        self.enabled = enabled
        self._qos = qos
        self._clock = clock or time.time
        self._state = ProcessorState.IDLE
        # One accumulator per batch; batches on one instance run one at a time.
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ProcessorState:
        return self._state

    async def process_batch(self, records: Sequence[ChangeRecord]) -> BatchResult:
        async with self._lock:
            self._state = ProcessorState.PROCESSING
            try:
                return await self._process(records)
            finally:
                self._state = ProcessorState.IDLE

    async def _process(self, records: Sequence[ChangeRecord]) -> BatchResult:
        result = BatchResult(records=len(records))
        delta = extract_delta(records)
        if delta is None:
            LOGGER.info("Empty change batch; nothing to remediate")
            return result

        result.delta = delta
        result.direction = direction_of(delta)
        # Direction is informational only; the target always comes from the old image.
        if result.direction is RemediationDirection.COOL_DOWN:
            LOGGER.debug(
                "Remediate by cooling down environment: %f, value: %f",
                delta.old_temperature,
                delta.old_humidity,
            )
        else:
            LOGGER.debug(
                "Remediate by warming up environment: %f, value: %f",
                delta.old_temperature,
                delta.old_humidity,
            )

        if not self.enabled:
            LOGGER.info(
                "Remediation logic disabled for batch of %d records (device %s)",
                len(records),
                delta.device_id,
            )
            return result

        if not delta.device_id:
            LOGGER.warning(
                "No device in change batch of %d records; remediation skipped",
                len(records),
            )
            result.errors.append("skipped: batch carries no device")
            return result

        temperature, humidity = remediation_target(delta)
        command = TelemetryEvent.remediation(delta.device_id, temperature, humidity)
        result.command = command
        LOGGER.info("Remediation logic enabled; command %s", command.to_json())

        result.digest = time_digest(self._clock())
        await self._persist(command, result)
        await self._publish(command, result)
        return result

    async def _persist(self, command: TelemetryEvent, result: BatchResult) -> None:
        assert result.digest is not None
        record = ArchivedRecord.from_event(command, result.digest)
        try:
            await self._records.put_record(record)
        except Exception as exc:
            LOGGER.error("Error in PutItem for remediation %s: %s", result.digest, exc)
            result.errors.append(f"persist: {exc}")
        else:
            result.persisted = True

    async def _publish(self, command: TelemetryEvent, result: BatchResult) -> None:
        payload = command.to_payload()
        try:
            await resolve(self._publisher.publish(self.topic, payload, qos=self._qos))
        except Exception as exc:
            LOGGER.error("Error in remediation publish on %s: %s", self.topic, exc)
            result.errors.append(f"publish: {exc}")
        else:
            result.published = True
            LOGGER.info("Remediation message sent: %s", payload.decode("utf-8"))
