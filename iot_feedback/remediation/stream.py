"""Change-log records: before/after images of record store mutations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping

from boto3.dynamodb.types import TypeDeserializer

LOGGER = logging.getLogger(__name__)

_DESERIALIZER = TypeDeserializer()


class ChangeRecordError(ValueError):
    """Raised when a change-log record cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class ChangeRecord:
    event_id: str
    event_name: str
    new_image: Mapping[str, Any] = field(default_factory=dict)
    old_image: Mapping[str, Any] = field(default_factory=dict)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _deserialize_image(image: Any) -> Dict[str, Any]:
    if image is None:
        return {}
    if not isinstance(image, Mapping):
        raise ChangeRecordError("Image must be a mapping of attribute values")
    try:
        return {
            name: _plain(_DESERIALIZER.deserialize(value))
            for name, value in image.items()
        }
    except (AttributeError, TypeError, ValueError, KeyError) as exc:
        raise ChangeRecordError(f"Malformed attribute value: {exc}") from exc


def parse_change_record(raw: Mapping[str, Any]) -> ChangeRecord:
    """Parse one DynamoDB Streams record into a :class:`ChangeRecord`."""

    if not isinstance(raw, Mapping):
        raise ChangeRecordError("Stream record must be an object")

    change = raw.get("dynamodb")
    if not isinstance(change, Mapping):
        raise ChangeRecordError("Stream record is missing the 'dynamodb' section")

    return ChangeRecord(
        event_id=str(raw.get("eventID", "")),
        event_name=str(raw.get("eventName", "")),
        new_image=_deserialize_image(change.get("NewImage")),
        old_image=_deserialize_image(change.get("OldImage")),
    )


def parse_change_event(event: Mapping[str, Any]) -> List[ChangeRecord]:
    """Parse a stream batch, skipping (and logging) records that cannot be read."""

    raw_records: Iterable[Any] = event.get("Records") or []
    records: List[ChangeRecord] = []
    for index, raw in enumerate(raw_records):
        try:
            records.append(parse_change_record(raw))
        except ChangeRecordError as exc:
            LOGGER.warning("Skipping change record %d: %s", index, exc)
    return records
