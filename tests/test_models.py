import json

import pytest

from iot_feedback.core.digest import time_digest
from iot_feedback.core.models import (
    Action,
    ArchivedRecord,
    PayloadDecodeError,
    StateDelta,
    TelemetryEvent,
)
from iot_feedback.core.utils import describe, resolve


def test_event_serialises_with_body_envelope() -> None:
    event = TelemetryEvent.monitor("d1", 28.0, 61.5)

    data = json.loads(event.to_payload())

    assert data == {
        "body": {
            "device": "d1",
            "temperature": 28.0,
            "humidity": 61.5,
            "action": "Monitor",
        }
    }


def test_event_parses_remediation_payload() -> None:
    payload = (
        b'{"body":{"device":"d1","temperature":27,'
        b'"humidity":60,"action":"Remediate"}}'
    )

    event = TelemetryEvent.from_payload(payload)

    assert event.device_id == "d1"
    assert event.temperature == 27.0
    assert event.humidity == 60.0
    assert event.is_remediation


def test_event_action_defaults_to_monitor() -> None:
    event = TelemetryEvent.from_dict(
        {"body": {"device": "d1", "temperature": 1.5, "humidity": 2.5}}
    )

    assert event.action is Action.MONITOR


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"[]",
        b'{"device":"d1"}',
        b'{"body":{"temperature":1,"humidity":2}}',
        b'{"body":{"device":"d1","temperature":"hot","humidity":2}}',
        b'{"body":{"device":"d1","temperature":true,"humidity":2}}',
        b'{"body":{"device":"d1","temperature":1,"humidity":2,"action":"Reboot"}}',
    ],
)
def test_event_rejects_malformed_payloads(payload: bytes) -> None:
    with pytest.raises(PayloadDecodeError):
        TelemetryEvent.from_payload(payload)


def test_archived_record_item_includes_ttl_only_when_set() -> None:
    event = TelemetryEvent.monitor("d1", 27.0, 60.0)

    plain = ArchivedRecord.from_event(event, "1700000000").as_item()
    expiring = ArchivedRecord.from_event(event, "1700000000", ttl=1700000060).as_item()

    assert "ttl" not in plain
    assert plain["digest"] == "1700000000"
    assert plain["action"] == "Monitor"
    assert expiring["ttl"] == 1700000060


def test_state_delta_detects_missing_prior_image() -> None:
    assert StateDelta("d1", 28.0, 0.0, 61.0, 60.0).missing_prior_image
    assert StateDelta("d1", 28.0, 27.0, 61.0, 0.0).missing_prior_image
    assert not StateDelta("d1", 28.0, 27.0, 61.0, 60.0).missing_prior_image


def test_time_digest_truncates_to_seconds() -> None:
    assert time_digest(1700000000.9) == "1700000000"


def test_describe_is_compact_and_sorted() -> None:
    assert describe(None) == ""
    assert describe({"b": 1, "a": "x"}) == '{"a":"x","b":1}'


@pytest.mark.asyncio
async def test_resolve_handles_plain_and_awaitable_values() -> None:
    async def produce() -> int:
        return 7

    assert await resolve(3) == 3
    assert await resolve(produce()) == 7
