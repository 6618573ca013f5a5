"""Domain models shared by the device, the fan-out pipeline and remediation."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class PayloadDecodeError(ValueError):
    """Raised when a transport payload cannot be decoded into an event."""


class Action(str, Enum):
    MONITOR = "Monitor"
    REMEDIATE = "Remediate"

    @classmethod
    def parse(cls, value: Any) -> "Action":
        if isinstance(value, cls):
            return value
        for action in cls:
            if action.value == value:
                return action
        raise PayloadDecodeError(f"Unknown action: {value!r}")


class ControllerMode(str, Enum):
    NEUTRAL = "Neutral"
    WARMING = "Warming"
    COOLING = "Cooling"


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """One reading emitted by a device, or a remediation command sent back to it.

    The wire representation wraps the fields in a ``body`` object::

        {"body": {"device": "d1", "temperature": 27.5, "humidity": 60.2,
                  "action": "Monitor"}}
    """

    device_id: str
    temperature: float
    humidity: float
    action: Action = Action.MONITOR

    @classmethod
    def monitor(
        cls, device_id: str, temperature: float, humidity: float
    ) -> "TelemetryEvent":
        return cls(device_id, float(temperature), float(humidity), Action.MONITOR)

    @classmethod
    def remediation(
        cls, device_id: str, temperature: float, humidity: float
    ) -> "TelemetryEvent":
        return cls(device_id, float(temperature), float(humidity), Action.REMEDIATE)

    @property
    def is_remediation(self) -> bool:
        return self.action is Action.REMEDIATE

    def as_body(self) -> Dict[str, Any]:
        return {
            "device": self.device_id,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "action": self.action.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"body": self.as_body()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def to_payload(self) -> bytes:
        return self.to_json().encode("utf-8")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TelemetryEvent":
        if not isinstance(data, Mapping):
            raise PayloadDecodeError("Payload must be a JSON object")

        body = data.get("body")
        if not isinstance(body, Mapping):
            raise PayloadDecodeError("Payload is missing the 'body' object")

        device = body.get("device")
        if not isinstance(device, str) or not device:
            raise PayloadDecodeError("Payload body is missing 'device'")

        return cls(
            device_id=device,
            temperature=_coerce_float(body, "temperature"),
            humidity=_coerce_float(body, "humidity"),
            action=Action.parse(body.get("action", Action.MONITOR.value)),
        )

    @classmethod
    def from_payload(cls, payload: bytes | str) -> "TelemetryEvent":
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise PayloadDecodeError(f"Payload is not valid JSON: {exc}") from exc
        return cls.from_dict(data)


@dataclass(slots=True)
class SinkOutcome:
    """Result of one sink invocation during a fan-out."""

    sink: str
    event: TelemetryEvent
    result: str = ""
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ArchivedRecord:
    digest: str
    device_id: str
    temperature: float
    humidity: float
    action: Action
    ttl: Optional[int] = None

    @classmethod
    def from_event(
        cls, event: TelemetryEvent, digest: str, *, ttl: Optional[int] = None
    ) -> "ArchivedRecord":
        return cls(
            digest=digest,
            device_id=event.device_id,
            temperature=event.temperature,
            humidity=event.humidity,
            action=event.action,
            ttl=ttl,
        )

    def as_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "digest": self.digest,
            "device": self.device_id,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "action": self.action.value,
        }
        if self.ttl is not None:
            item["ttl"] = self.ttl
        return item


@dataclass(frozen=True, slots=True)
class StateDelta:
    device_id: str
    new_temperature: float
    old_temperature: float
    new_humidity: float
    old_humidity: float

    @property
    def missing_prior_image(self) -> bool:
        return self.old_temperature == 0 or self.old_humidity == 0


def _coerce_float(body: Mapping[str, Any], key: str) -> float:
    value = body.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadDecodeError(f"Payload body field {key!r} must be a number")
    result = float(value)
    if not math.isfinite(result):
        raise PayloadDecodeError(f"Payload body field {key!r} must be finite")
    return result


@dataclass(frozen=True, slots=True)
class DispatchContext:
    """Ingestion metadata captured once per dispatch and shared by every sink."""

    ingested_at: float
    digest: str
