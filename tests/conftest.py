from __future__ import annotations

from typing import Any, List, Optional, Tuple

import pytest

from iot_feedback.config import DeviceConfig


class RecordingTransport:
    """Transport double that records publishes and subscriptions."""

    def __init__(
        self,
        *,
        publish_error: Optional[BaseException] = None,
        subscribe_error: Optional[BaseException] = None,
    ) -> None:
        self.published: List[Tuple[str, bytes, int]] = []
        self.subscriptions: List[Tuple[str, int]] = []
        self.handler: Any = None
        self.publish_error = publish_error
        self.subscribe_error = subscribe_error

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos))

    def subscribe(self, topic: str, qos: int = 1) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append((topic, qos))

    def set_message_handler(self, handler: Any) -> None:
        self.handler = handler


@pytest.fixture
def transport_factory():
    def factory(**kwargs: Any) -> RecordingTransport:
        return RecordingTransport(**kwargs)

    return factory


@pytest.fixture
def device_config() -> DeviceConfig:
    return DeviceConfig(
        device_id="dev-1",
        velocity=1.1,
        remediation_factor=0.3,
        min_temperature=27.0,
        min_humidity=60.0,
        update_frequency=0.01,
    )
