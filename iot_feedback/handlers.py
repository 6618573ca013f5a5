"""Serverless entry points for the cloud side of the loop.

``worker_handler`` receives telemetry forwarded by an IoT topic rule and
fans it out; ``remediation_handler`` receives record store stream batches.
Clients are built from the environment on first use and reused by later
invocations in the same process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional

from .adapters import (
    CloudWatchMetrics,
    DynamoRecordStore,
    IoTDataPublisher,
    S3ObjectStore,
    build_session,
)
from .config import FeedbackConfig, load_config
from .core.models import PayloadDecodeError, TelemetryEvent
from .logging import configure_logging
from .pipeline import FanOutDispatcher, build_dispatcher
from .remediation import ChangeProcessor, parse_change_event

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CloudServices:
    config: FeedbackConfig
    dispatcher: FanOutDispatcher
    processor: ChangeProcessor


def build_cloud_services(config: FeedbackConfig) -> CloudServices:
    session = build_session(config.aws)
    pipeline = config.pipeline
    dispatcher = build_dispatcher(
        pipeline,
        metrics=CloudWatchMetrics.from_session(session),
        objects=S3ObjectStore.from_session(session, pipeline.history_bucket),
        records=DynamoRecordStore.from_session(session, pipeline.monitoring_table),
    )
    processor = ChangeProcessor(
        DynamoRecordStore.from_session(session, config.remediation.table),
        IoTDataPublisher.from_session(
            session, config.aws.iot_endpoint or config.broker.host
        ),
        topic=config.topics.remediation_topic,
        enabled=config.remediation.enabled,
        qos=config.remediation.qos,
    )
    return CloudServices(config=config, dispatcher=dispatcher, processor=processor)


@lru_cache(maxsize=1)
def _services() -> CloudServices:
    config = load_config()
    configure_logging(config.logging.level, json_format=True)
    return build_cloud_services(config)


async def handle_telemetry(
    services: CloudServices, event: Mapping[str, Any]
) -> Dict[str, Any]:
    try:
        telemetry = TelemetryEvent.from_dict(event)
    except PayloadDecodeError as exc:
        LOGGER.error("Rejecting telemetry event: %s", exc)
        return {"sinks": 0, "failed": [], "error": str(exc)}

    outcomes = await services.dispatcher.dispatch(telemetry)
    return {
        "sinks": len(outcomes),
        "failed": sorted(outcome.sink for outcome in outcomes if not outcome.ok),
    }


async def handle_stream(
    services: CloudServices, event: Mapping[str, Any]
) -> Dict[str, Any]:
    records = parse_change_event(event)
    result = await services.processor.process_batch(records)
    summary: Dict[str, Any] = {
        "records": result.records,
        "direction": result.direction.value if result.direction else None,
        "persisted": result.persisted,
        "published": result.published,
    }
    if result.command is not None:
        summary["command"] = result.command.to_dict()
    if result.errors:
        summary["errors"] = list(result.errors)
    return summary


def worker_handler(
    event: Mapping[str, Any], context: Optional[Any] = None
) -> Dict[str, Any]:
    return asyncio.run(handle_telemetry(_services(), event))


def remediation_handler(
    event: Mapping[str, Any], context: Optional[Any] = None
) -> Dict[str, Any]:
    return asyncio.run(handle_stream(_services(), event))
