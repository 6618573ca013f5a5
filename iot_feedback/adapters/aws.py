"""AWS-backed sinks and publishers built on boto3.

boto3 clients are blocking; every call is pushed to a worker thread with
``asyncio.to_thread`` so the event loop keeps serving other sinks.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import boto3

from ..config import AwsConfig
from ..core.models import ArchivedRecord

LOGGER = logging.getLogger(__name__)


def build_session(config: AwsConfig) -> boto3.session.Session:
    return boto3.session.Session(region_name=config.region)


def _to_dynamo(item: Mapping[str, Any]) -> Dict[str, Any]:
    # DynamoDB rejects Python floats; numbers travel as Decimal.
    converted: Dict[str, Any] = {}
    for key, value in item.items():
        if isinstance(value, float):
            converted[key] = Decimal(str(value))
        else:
            converted[key] = value
    return converted


class CloudWatchMetrics:
    """Publishes device readings as CloudWatch custom metrics."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_session(cls, session: boto3.session.Session) -> "CloudWatchMetrics":
        return cls(session.client("cloudwatch"))

    async def put_readings(
        self, namespace: str, device_id: str, readings: Mapping[str, float]
    ) -> Any:
        metric_data = [
            {
                "MetricName": name,
                "Unit": "None",
                "Value": float(value),
                "Dimensions": [{"Name": "Device", "Value": device_id}],
            }
            for name, value in readings.items()
        ]
        return await asyncio.to_thread(
            self._client.put_metric_data,
            Namespace=namespace,
            MetricData=metric_data,
        )


class S3ObjectStore:
    def __init__(self, client: Any, bucket: str) -> None:
        self._client = client
        self.bucket = bucket

    @classmethod
    def from_session(
        cls, session: boto3.session.Session, bucket: str
    ) -> "S3ObjectStore":
        return cls(session.client("s3"), bucket)

    async def put_object(self, key: str, body: bytes) -> Mapping[str, Any]:
        LOGGER.debug("Uploading s3://%s/%s", self.bucket, key)
        return await asyncio.to_thread(
            self._client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType="application/json",
        )


class DynamoRecordStore:
    """Upserts archived records into a DynamoDB table keyed by ``digest``."""

    def __init__(self, table: Any) -> None:
        self._table = table

    @classmethod
    def from_session(
        cls, session: boto3.session.Session, table_name: str
    ) -> "DynamoRecordStore":
        return cls(session.resource("dynamodb").Table(table_name))

    async def put_record(self, record: ArchivedRecord) -> Mapping[str, Any]:
        item = _to_dynamo(record.as_item())
        LOGGER.debug("PutItem digest=%s device=%s", record.digest, record.device_id)
        return await asyncio.to_thread(self._table.put_item, Item=item)


class IoTDataPublisher:
    """Publishes remediation commands through the AWS IoT data plane."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_session(
        cls, session: boto3.session.Session, endpoint: Optional[str] = None
    ) -> "IoTDataPublisher":
        endpoint_url = None
        if endpoint:
            endpoint_url = endpoint if "://" in endpoint else f"https://{endpoint}"
        return cls(session.client("iot-data", endpoint_url=endpoint_url))

    async def publish(
        self, topic: str, payload: bytes, qos: int = 0, retain: bool = False
    ) -> None:
        if retain:
            LOGGER.debug("Retain flag ignored by the IoT data plane publisher")
        await asyncio.to_thread(
            self._client.publish, topic=topic, qos=qos, payload=payload
        )
