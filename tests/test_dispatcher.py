"""Tests for the concurrent telemetry fan-out."""

import asyncio
import json
from typing import List

import pytest

from iot_feedback.adapters import (
    InMemoryMetrics,
    InMemoryObjectStore,
    InMemoryRecordStore,
)
from iot_feedback.config import PipelineConfig
from iot_feedback.core.models import DispatchContext, SinkOutcome, TelemetryEvent
from iot_feedback.pipeline import FanOutDispatcher, SinkTimeoutError, build_dispatcher


class StubSink:
    def __init__(self, name: str, *, error: Exception | None = None, delay: float = 0):
        self.name = name
        self.error = error
        self.delay = delay
        self.contexts: List[DispatchContext] = []

    async def apply(
        self, event: TelemetryEvent, context: DispatchContext
    ) -> SinkOutcome:
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SinkOutcome(self.name, event, result="done")


EVENT = TelemetryEvent.monitor("d1", 27.0, 60.0)


def test_dispatcher_requires_sinks() -> None:
    with pytest.raises(ValueError):
        FanOutDispatcher([])


@pytest.mark.asyncio
async def test_dispatch_returns_one_outcome_per_sink() -> None:
    sinks = [StubSink("a"), StubSink("b"), StubSink("c")]
    dispatcher = FanOutDispatcher(sinks, clock=lambda: 1700000000.5)

    outcomes = await dispatcher.dispatch(EVENT)

    assert sorted(outcome.sink for outcome in outcomes) == ["a", "b", "c"]
    assert all(outcome.ok for outcome in outcomes)


@pytest.mark.asyncio
async def test_sinks_share_one_ingestion_context() -> None:
    sinks = [StubSink("a"), StubSink("b")]
    ticks = iter([1700000000.2, 1700000005.0])
    dispatcher = FanOutDispatcher(sinks, clock=lambda: next(ticks))

    await dispatcher.dispatch(EVENT)

    assert sinks[0].contexts == sinks[1].contexts
    assert sinks[0].contexts[0].digest == "1700000000"


@pytest.mark.asyncio
async def test_failing_sink_does_not_stop_siblings() -> None:
    sinks = [
        StubSink("metrics", error=RuntimeError("throttled")),
        StubSink("archive", delay=0.01),
        StubSink("record"),
    ]
    dispatcher = FanOutDispatcher(sinks)

    outcomes = await dispatcher.dispatch(EVENT)

    by_name = {outcome.sink: outcome for outcome in outcomes}
    assert len(outcomes) == 3
    assert isinstance(by_name["metrics"].error, RuntimeError)
    assert by_name["archive"].ok
    assert by_name["record"].ok


@pytest.mark.asyncio
async def test_slow_sink_times_out_into_outcome() -> None:
    sinks = [StubSink("slow", delay=1.0), StubSink("fast")]
    dispatcher = FanOutDispatcher(sinks, sink_timeout=0.05)

    outcomes = await dispatcher.dispatch(EVENT)

    by_name = {outcome.sink: outcome for outcome in outcomes}
    assert isinstance(by_name["slow"].error, SinkTimeoutError)
    assert by_name["fast"].ok


@pytest.mark.asyncio
async def test_cancelled_dispatch_cancels_sinks() -> None:
    sink = StubSink("slow", delay=10.0)
    dispatcher = FanOutDispatcher([sink])

    task = asyncio.create_task(dispatcher.dispatch(EVENT))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_monitor_event_reaches_all_three_stores() -> None:
    metrics = InMemoryMetrics()
    objects = InMemoryObjectStore()
    records = InMemoryRecordStore()
    dispatcher = build_dispatcher(
        PipelineConfig(), metrics=metrics, objects=objects, records=records
    )
    dispatcher._clock = lambda: 1700000000.0

    event = TelemetryEvent.monitor("381938912", 27.5, 60.2)
    outcomes = await dispatcher.dispatch(event)

    assert [sink.name for sink in dispatcher.sinks] == ["metrics", "archive", "record"]
    assert all(outcome.ok for outcome in outcomes)
    assert metrics.datapoints == [
        ("Device/Monitoring", "381938912", "Temperature", 27.5),
        ("Device/Monitoring", "381938912", "Humidity", 60.2),
    ]
    assert json.loads(objects.objects["1700000000"]) == event.to_dict()
    assert records.get("1700000000") == {
        "digest": "1700000000",
        "device": "381938912",
        "temperature": 27.5,
        "humidity": 60.2,
        "action": "Monitor",
        "ttl": 1700000060,
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("sink_timeout", [None, 5.0])
async def test_timeout_raised_by_sink_is_kept(sink_timeout) -> None:
    socket_timeout = TimeoutError("read timed out")
    sinks = [StubSink("archive", error=socket_timeout), StubSink("record")]
    dispatcher = FanOutDispatcher(sinks, sink_timeout=sink_timeout)

    outcomes = await dispatcher.dispatch(EVENT)

    by_name = {outcome.sink: outcome for outcome in outcomes}
    assert by_name["archive"].error is socket_timeout
    assert not isinstance(by_name["archive"].error, SinkTimeoutError)
    assert by_name["record"].ok
