"""Tests for the device feedback controller."""

import asyncio
import json

import pytest

from iot_feedback import waveform
from iot_feedback.controller import ControllerSetupError, DeviceFeedbackController
from iot_feedback.core.models import ControllerMode, TelemetryEvent


def _controller(device_config, transport) -> DeviceFeedbackController:
    return DeviceFeedbackController(
        device_config,
        transport,
        telemetry_topic="telemetry/1",
        remediation_topic="remediation/1",
    )


def _command(temperature: float, action: str = "Remediate") -> bytes:
    return json.dumps(
        {
            "body": {
                "device": "dev-1",
                "temperature": temperature,
                "humidity": 60.0,
                "action": action,
            }
        }
    ).encode()


@pytest.mark.asyncio
async def test_first_tick_publishes_minimum_readings(device_config, transport_factory):
    transport = transport_factory()
    controller = _controller(device_config, transport)

    event = await controller.tick()

    assert event == TelemetryEvent.monitor("dev-1", 27.0, 60.0)
    topic, payload, qos = transport.published[0]
    assert topic == "telemetry/1"
    assert qos == 1
    assert TelemetryEvent.from_payload(payload) == event


@pytest.mark.asyncio
async def test_ticks_follow_waveform(device_config, transport_factory):
    controller = _controller(device_config, transport_factory())

    events = [await controller.tick() for _ in range(5)]

    for x, event in enumerate(events):
        move = waveform.offset(1.1, x)
        assert event.temperature == pytest.approx(27.0 + move)
        assert event.humidity == pytest.approx(60.0 + move)
    snapshot = await controller.snapshot()
    assert snapshot.iteration == 5
    assert snapshot.last_temperature == events[-1].temperature


@pytest.mark.asyncio
async def test_command_below_last_temperature_sets_warming(
    device_config, transport_factory
):
    controller = _controller(device_config, transport_factory())
    for _ in range(30):
        await controller.tick()

    command = TelemetryEvent.remediation("dev-1", 27.0, 60.0)
    mode = await controller.apply_command(command)

    assert mode is ControllerMode.WARMING
    assert controller.mode is ControllerMode.WARMING


@pytest.mark.asyncio
async def test_command_at_or_above_last_temperature_sets_cooling(
    device_config, transport_factory
):
    controller = _controller(device_config, transport_factory())
    await controller.tick()

    command = TelemetryEvent.remediation("dev-1", 27.0, 60.0)
    mode = await controller.apply_command(command)

    assert mode is ControllerMode.COOLING


@pytest.mark.asyncio
async def test_warming_and_cooling_offsets_are_identical(
    device_config, transport_factory
):
    # Both remediation modes use the same amplitude; only the logs differ.
    warming = _controller(device_config, transport_factory())
    cooling = _controller(device_config, transport_factory())
    for controller in (warming, cooling):
        await controller.tick()
    await warming.apply_command(TelemetryEvent.remediation("dev-1", 20.0, 60.0))
    await cooling.apply_command(TelemetryEvent.remediation("dev-1", 30.0, 60.0))
    assert warming.mode is ControllerMode.WARMING
    assert cooling.mode is ControllerMode.COOLING

    for _ in range(10):
        warm_event = await warming.tick()
        cool_event = await cooling.tick()
        assert warm_event == cool_event

    assert warming.amplitude_for(ControllerMode.WARMING) == 0.3
    assert warming.amplitude_for(ControllerMode.NEUTRAL) == 1.1


@pytest.mark.asyncio
async def test_remediation_mode_uses_remediation_amplitude(
    device_config, transport_factory
):
    controller = _controller(device_config, transport_factory())
    for _ in range(10):
        await controller.tick()
    await controller.apply_command(TelemetryEvent.remediation("dev-1", 40.0, 60.0))

    event = await controller.tick()

    assert event.temperature == pytest.approx(27.0 + waveform.offset(0.3, 10))


@pytest.mark.asyncio
async def test_listener_applies_remediation_messages(device_config, transport_factory):
    transport = transport_factory()
    controller = _controller(device_config, transport)
    controller.start_listener()
    await controller.tick()

    assert transport.subscriptions == [("remediation/1", 0)]
    await transport.handler("remediation/1", _command(10.0))

    assert controller.mode is ControllerMode.WARMING


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [b"garbage", b'{"body":{"device":"dev-1"}}', _command(10.0, action="Monitor")],
)
async def test_listener_ignores_invalid_messages(
    device_config, transport_factory, payload
):
    transport = transport_factory()
    controller = _controller(device_config, transport)
    controller.start_listener()

    await transport.handler("remediation/1", payload)

    assert controller.mode is ControllerMode.NEUTRAL


def test_listener_subscription_failure_is_fatal(device_config, transport_factory):
    transport = transport_factory(subscribe_error=RuntimeError("not authorized"))
    controller = _controller(device_config, transport)

    with pytest.raises(ControllerSetupError):
        controller.start_listener()

    assert transport.handler is None


@pytest.mark.asyncio
async def test_publish_failure_does_not_stop_generation(
    device_config, transport_factory
):
    transport = transport_factory(publish_error=RuntimeError("offline"))
    controller = _controller(device_config, transport)

    await controller.tick()
    await controller.tick()

    assert controller.publish_failures == 2
    assert controller.published == 0
    assert (await controller.snapshot()).iteration == 2


@pytest.mark.asyncio
async def test_run_honours_max_iterations(device_config, transport_factory):
    transport = transport_factory()
    controller = _controller(device_config, transport)

    await controller.run(asyncio.Event(), max_iterations=3)

    assert len(transport.published) == 3


@pytest.mark.asyncio
async def test_run_stops_when_event_is_set(device_config, transport_factory):
    transport = transport_factory()
    controller = _controller(device_config, transport)
    stop = asyncio.Event()

    task = asyncio.create_task(controller.run(stop))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert controller.published >= 1
