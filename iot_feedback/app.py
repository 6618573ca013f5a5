"""Service supervisors for the device simulator and the ingestion pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

from .adapters import (
    CloudWatchMetrics,
    DynamoRecordStore,
    InMemoryMetrics,
    InMemoryObjectStore,
    InMemoryRecordStore,
    LocalBus,
    MQTTClient,
    MQTTConnectionError,
    S3ObjectStore,
    build_session,
)
from .config import FeedbackConfig, load_config
from .controller import ControllerSetupError, DeviceFeedbackController
from .core.models import ControllerMode, TelemetryEvent
from .core.protocols import MetricsClient, ObjectStore, RecordStore, Transport
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .pipeline import IngestService, build_dispatcher
from .remediation import BatchResult, ChangeProcessor

LOGGER = logging.getLogger(__name__)


class ServiceStartupError(RuntimeError):
    """Raised when a service cannot reach a running state."""


class ServiceState(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"


class _ServiceApp:
    """Common startup/shutdown skeleton shared by both services."""

    name = "service"

    def __init__(self, config: Optional[FeedbackConfig] = None) -> None:
        self._config = config or load_config()
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._state = ServiceState.STOPPED
        self._background_tasks: Set[asyncio.Task[None]] = set()

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def _transition_state(self, state: ServiceState) -> None:
        if state == self._state:
            return
        LOGGER.info(
            "%s state transition %s -> %s", self.name, self._state.value, state.value
        )
        self._state = state
        await self._health.set_service_state(
            state.value, healthy=state == ServiceState.ACTIVE
        )

    def request_stop(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(self) -> None:
        """Start services, wait for a shutdown request, then stop services."""

        self._shutdown_event = asyncio.Event()
        await self._transition_state(ServiceState.STARTING)
        try:
            await self._start_services()
            await self._start_health_server()
            await self._transition_state(ServiceState.ACTIVE)
            await self._wait()
        except asyncio.CancelledError:
            LOGGER.info("%s received shutdown signal", self.name)
            raise
        finally:
            await self._transition_state(ServiceState.STOPPING)
            await self._stop_services()
            await self._stop_health_server()
            await self._transition_state(ServiceState.STOPPED)

    async def _wait(self) -> None:
        assert self._shutdown_event is not None
        await self._shutdown_event.wait()

    async def _start_services(self) -> None:
        raise NotImplementedError

    async def _stop_services(self) -> None:
        raise NotImplementedError

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)

    async def _stop_health_server(self) -> None:
        if self._health_server is None:
            return
        await self._health_server.stop()
        self._health_server = None

    async def _connect_mqtt(self, client_id: str) -> MQTTClient:
        client = MQTTClient(self._config.broker, client_id=client_id)
        try:
            await client.connect()
        except MQTTConnectionError as exc:
            await self._health.update("mqtt", False, str(exc))
            raise ServiceStartupError(f"MQTT connection failed: {exc}") from exc
        client.register_disconnect_handler(self._on_mqtt_disconnect)
        connected = client.is_connected()
        await self._health.update(
            "mqtt", connected, None if connected else "not connected"
        )
        return client

    def _on_mqtt_disconnect(self, rc: int) -> None:
        if rc == 0:
            return
        LOGGER.warning("%s lost MQTT connection (rc=%s)", self.name, rc)
        task = asyncio.create_task(
            self._health.update("mqtt", False, f"disconnected (rc={rc})")
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    @classmethod
    def start(cls, config: Optional[FeedbackConfig] = None) -> int:
        """Configure logging and run the service until interrupted.

        Returns a process exit code.
        """
        instance = cls(config=config)
        logging_config = instance._config.logging
        configure_logging(
            logging_config.level,
            log_path=logging_config.path,
            log_network=logging_config.log_network,
            json_format=logging_config.json_format,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("%s received shutdown signal", instance.name)
        except ServiceStartupError as exc:
            LOGGER.error("%s failed to start: %s", instance.name, exc)
            return 1
        return 0


class DeviceApp(_ServiceApp):
    """Runs the feedback controller against the MQTT broker."""

    name = "device"

    def __init__(
        self,
        config: Optional[FeedbackConfig] = None,
        *,
        transport: Optional[Transport] = None,
    ) -> None:
        super().__init__(config)
        self._transport = transport
        self._mqtt_client: Optional[MQTTClient] = None
        self._controller: Optional[DeviceFeedbackController] = None
        self._generation_task: Optional[asyncio.Task[None]] = None

    @property
    def controller(self) -> Optional[DeviceFeedbackController]:
        return self._controller

    async def _start_services(self) -> None:
        transport = self._transport
        if transport is None:
            self._mqtt_client = await self._connect_mqtt(self._config.broker.client_id)
            transport = self._mqtt_client

        topics = self._config.topics
        controller = DeviceFeedbackController(
            self._config.device,
            transport,
            telemetry_topic=topics.telemetry_topic,
            remediation_topic=topics.remediation_topic,
            remediation_qos=self._config.remediation.qos,
        )
        try:
            controller.start_listener()
        except ControllerSetupError as exc:
            await self._health.update("listener", False, str(exc))
            raise ServiceStartupError(str(exc)) from exc
        await self._health.update("listener", True, None)
        self._controller = controller

        assert self._shutdown_event is not None
        self._generation_task = asyncio.create_task(
            controller.run(self._shutdown_event)
        )
        await self._health.update("generator", True, None)

    async def _wait(self) -> None:
        assert self._shutdown_event is not None
        assert self._generation_task is not None
        stop_waiter = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait(
                {stop_waiter, self._generation_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_waiter.cancel()
        if self._generation_task.done() and not self._generation_task.cancelled():
            exc = self._generation_task.exception()
            if exc is not None:
                await self._health.update("generator", False, str(exc))
                LOGGER.error("Generation loop stopped: %s", exc)

    async def _stop_services(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

        if self._generation_task is not None:
            if not self._generation_task.done():
                self._generation_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._generation_task
            self._generation_task = None
            await self._health.update("generator", False, "stopped")

        if self._mqtt_client is not None:
            await self._mqtt_client.disconnect()
            self._mqtt_client = None
            await self._health.update("mqtt", False, "shutdown")


class IngestApp(_ServiceApp):
    """Subscribes to device telemetry and fans it out to the AWS sinks."""

    name = "ingest"

    def __init__(
        self,
        config: Optional[FeedbackConfig] = None,
        *,
        transport: Optional[Transport] = None,
        metrics: Optional[MetricsClient] = None,
        objects: Optional[ObjectStore] = None,
        records: Optional[RecordStore] = None,
    ) -> None:
        super().__init__(config)
        self._transport = transport
        self._metrics = metrics
        self._objects = objects
        self._records = records
        self._mqtt_client: Optional[MQTTClient] = None
        self._service: Optional[IngestService] = None

    @property
    def service(self) -> Optional[IngestService]:
        return self._service

    async def _start_services(self) -> None:
        if None in (self._metrics, self._objects, self._records):
            session = build_session(self._config.aws)
            pipeline = self._config.pipeline
            self._metrics = self._metrics or CloudWatchMetrics.from_session(session)
            self._objects = self._objects or S3ObjectStore.from_session(
                session, pipeline.history_bucket
            )
            self._records = self._records or DynamoRecordStore.from_session(
                session, pipeline.monitoring_table
            )

        transport = self._transport
        if transport is None:
            self._mqtt_client = await self._connect_mqtt(
                f"{self._config.broker.client_id}-ingest"
            )
            transport = self._mqtt_client

        assert self._metrics is not None
        assert self._objects is not None
        assert self._records is not None
        dispatcher = build_dispatcher(
            self._config.pipeline,
            metrics=self._metrics,
            objects=self._objects,
            records=self._records,
        )
        service = IngestService(
            transport, dispatcher, self._config.topics.telemetry_topic
        )
        try:
            service.start()
        except Exception as exc:
            await self._health.update("ingest", False, str(exc))
            raise ServiceStartupError(f"Telemetry subscription failed: {exc}") from exc
        self._service = service
        await self._health.update("ingest", True, None)

    async def _stop_services(self) -> None:
        if self._service is not None:
            self._service.stop()
            self._service = None
            await self._health.update("ingest", False, "stopped")

        if self._mqtt_client is not None:
            await self._mqtt_client.disconnect()
            self._mqtt_client = None
            await self._health.update("mqtt", False, "shutdown")


@dataclass(slots=True)
class DemoSummary:
    iterations: int
    dispatched: int
    archived_objects: int
    stored_records: int
    datapoints: int
    final_mode: ControllerMode
    batches: List[BatchResult] = field(default_factory=list)
    telemetry: List[TelemetryEvent] = field(default_factory=list)

    @property
    def commands(self) -> List[TelemetryEvent]:
        return [batch.command for batch in self.batches if batch.command is not None]


async def run_demo(
    config: FeedbackConfig,
    *,
    iterations: int = 5,
    remediation_enabled: bool = True,
    batch_size: int = 100,
) -> DemoSummary:
    """Run the full feedback loop in-process over the local bus and stores.

    Each iteration publishes one reading, lets the ingestion side fan it
    out, feeds the resulting change-log batch to the processor and delivers
    any remediation command back to the controller.
    """

    bus = LocalBus()
    metrics = InMemoryMetrics()
    objects = InMemoryObjectStore()
    records = InMemoryRecordStore()
    remediation_records = InMemoryRecordStore()
    topics = config.topics

    ingest = IngestService(
        bus.client("ingest"),
        build_dispatcher(
            config.pipeline, metrics=metrics, objects=objects, records=records
        ),
        topics.telemetry_topic,
    )
    ingest.start()

    processor = ChangeProcessor(
        remediation_records,
        bus.client("remediation"),
        topic=topics.remediation_topic,
        enabled=remediation_enabled,
        qos=config.remediation.qos,
    )

    controller = DeviceFeedbackController(
        config.device,
        bus.client("device"),
        telemetry_topic=topics.telemetry_topic,
        remediation_topic=topics.remediation_topic,
        remediation_qos=config.remediation.qos,
    )
    controller.start_listener()

    summary = DemoSummary(
        iterations=iterations,
        dispatched=0,
        archived_objects=0,
        stored_records=0,
        datapoints=0,
        final_mode=controller.mode,
    )
    for _ in range(iterations):
        summary.telemetry.append(await controller.tick())
        await bus.drain()
        batch = records.drain_changes(batch_size)
        if batch:
            summary.batches.append(await processor.process_batch(batch))
            await bus.drain()

    summary.dispatched = ingest.dispatched
    summary.archived_objects = len(objects.objects)
    summary.stored_records = len(records)
    summary.datapoints = len(metrics.datapoints)
    summary.final_mode = controller.mode
    return summary
