"""Device-side feedback controller.

The controller simulates an environment sensor: every ``update_frequency``
seconds it publishes a Monitor reading derived from a slow sine wave, and
it listens on the remediation topic for commands that switch it into a
warming or cooling mode.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from . import waveform
from .config import DeviceConfig
from .core.models import Action, ControllerMode, PayloadDecodeError, TelemetryEvent
from .core.protocols import Transport
from .core.utils import resolve

LOGGER = logging.getLogger(__name__)


class ControllerSetupError(RuntimeError):
    """Raised when the controller cannot subscribe to remediation commands."""


@dataclass(frozen=True, slots=True)
class ControllerSnapshot:
    mode: ControllerMode
    iteration: int
    last_temperature: float
    last_humidity: float


class DeviceFeedbackController:
    """Owns generation state and adapts it to remediation commands.

    The generation loop reads the mode and writes the last published values;
    the command listener reads the last temperature and writes the mode.
    Both sides go through ``self._lock``.
    """

    def __init__(
        self,
        config: DeviceConfig,
        transport: Transport,
        *,
        telemetry_topic: str,
        remediation_topic: str,
        telemetry_qos: int = 1,
        remediation_qos: int = 0,
    ) -> None:
        self._config = config
        self._transport = transport
        self.telemetry_topic = telemetry_topic
        self.remediation_topic = remediation_topic
        self._telemetry_qos = telemetry_qos
        self._remediation_qos = remediation_qos

        self._lock = asyncio.Lock()
        self._mode = ControllerMode.NEUTRAL
        self._iteration = 0
        self._last_temperature = 0.0
        self._last_humidity = 0.0
        self.published = 0
        self.publish_failures = 0

    @property
    def device_id(self) -> str:
        return self._config.device_id

    @property
    def mode(self) -> ControllerMode:
        return self._mode

    async def snapshot(self) -> ControllerSnapshot:
        async with self._lock:
            return ControllerSnapshot(
                mode=self._mode,
                iteration=self._iteration,
                last_temperature=self._last_temperature,
                last_humidity=self._last_humidity,
            )

    def amplitude_for(self, mode: ControllerMode) -> float:
        if mode is ControllerMode.NEUTRAL:
            return self._config.velocity
        # Warming and cooling share the remediation amplitude.
        return self._config.remediation_factor

    # ------------------------------------------------------------------
    # Generation loop
    # ------------------------------------------------------------------
    async def tick(self) -> TelemetryEvent:
        """Generate and publish one Monitor reading."""

        async with self._lock:
            mode = self._mode
            x = self._iteration
            move = waveform.offset(self.amplitude_for(mode), x)

            if mode is ControllerMode.NEUTRAL:
                LOGGER.info("Simulate environment...")
            else:
                LOGGER.info(
                    "Simulate %s...",
                    "warm up" if mode is ControllerMode.WARMING else "cool down",
                )
                unremediated = waveform.offset(self._config.velocity, x)
                LOGGER.debug(
                    "Temperature comparison (no remediation: %0.4f, "
                    "remediation: %0.4f)",
                    self._config.min_temperature + unremediated,
                    self._config.min_temperature + move,
                )

            event = TelemetryEvent.monitor(
                self._config.device_id,
                self._config.min_temperature + move,
                self._config.min_humidity + move,
            )
            self._last_temperature = event.temperature
            self._last_humidity = event.humidity
            self._iteration = x + 1

        LOGGER.info(
            "Sending %s %s update: temperature %0.4fC, humidity %0.4f",
            event.device_id,
            event.action.value,
            event.temperature,
            event.humidity,
        )
        try:
            await resolve(
                self._transport.publish(
                    self.telemetry_topic, event.to_payload(), qos=self._telemetry_qos
                )
            )
        except Exception as exc:
            self.publish_failures += 1
            LOGGER.error("Failed to send update: %s", exc)
        else:
            self.published += 1
        return event

    async def run(
        self, stop_event: asyncio.Event, *, max_iterations: Optional[int] = None
    ) -> None:
        """Publish readings until ``stop_event`` is set.

        The cadence sleep wakes early when the stop event fires.
        """

        LOGGER.debug(
            "Sending monitoring updates every %ss", self._config.update_frequency
        )
        count = 0
        while not stop_event.is_set():
            await self.tick()
            count += 1
            if max_iterations is not None and count >= max_iterations:
                break
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self._config.update_frequency
                )
            except asyncio.TimeoutError:
                continue

    # ------------------------------------------------------------------
    # Command listener
    # ------------------------------------------------------------------
    def start_listener(self) -> None:
        """Subscribe to remediation commands; failure here is fatal."""

        LOGGER.info(
            "Listening for new remediation events on %s", self.remediation_topic
        )
        self._transport.set_message_handler(self.handle_message)
        try:
            self._transport.subscribe(self.remediation_topic, qos=self._remediation_qos)
        except Exception as exc:
            self._transport.set_message_handler(None)
            raise ControllerSetupError(
                f"Failed to subscribe to {self.remediation_topic}: {exc}"
            ) from exc

    async def handle_message(self, topic: str, payload: bytes) -> None:
        LOGGER.debug("New remediation message in topic %s: %r", topic, payload)
        try:
            command = TelemetryEvent.from_payload(payload)
        except PayloadDecodeError as exc:
            LOGGER.warning(
                "Ignoring malformed remediation payload on %s: %s", topic, exc
            )
            return

        if command.action is not Action.REMEDIATE:
            LOGGER.warning(
                "Ignoring %s message on remediation topic %s",
                command.action.value,
                topic,
            )
            return

        await self.apply_command(command)

    async def apply_command(self, command: TelemetryEvent) -> ControllerMode:
        LOGGER.info("Remediation logic activated...")
        async with self._lock:
            if command.temperature < self._last_temperature:
                self._mode = ControllerMode.WARMING
            else:
                self._mode = ControllerMode.COOLING
            mode = self._mode
        LOGGER.info(
            "Controller mode set to %s (target temperature %0.4f)",
            mode.value,
            command.temperature,
        )
        return mode
