"""Concurrent fan-out of one telemetry event to every registered sink."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Sequence

from ..core.digest import Clock, time_digest
from ..core.models import DispatchContext, SinkOutcome, TelemetryEvent
from ..core.protocols import Sink

LOGGER = logging.getLogger(__name__)


class SinkTimeoutError(TimeoutError):
    """Raised into an outcome when a sink exceeds its time budget."""


class FanOutDispatcher:
    """Runs every sink concurrently for one event and joins on all of them.

    Completion is structural: ``dispatch`` returns once each sink has
    reported, whether it succeeded or failed. A failing sink never cancels
    its siblings and nothing is retried.
    """

    def __init__(
        self,
        sinks: Sequence[Sink],
        *,
        sink_timeout: Optional[float] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        if not sinks:
            raise ValueError("FanOutDispatcher requires at least one sink")
        self._sinks = list(sinks)
        self._sink_timeout = sink_timeout if sink_timeout else None
        self._clock = clock or time.time

    @property
    def sinks(self) -> List[Sink]:
        return list(self._sinks)

    async def dispatch(self, event: TelemetryEvent) -> List[SinkOutcome]:
        ingested_at = self._clock()
        context = DispatchContext(
            ingested_at=ingested_at, digest=time_digest(ingested_at)
        )
        LOGGER.info(
            "Time start %s dispatch event: %s", context.digest, event.to_json()
        )

        tasks = [
            asyncio.create_task(self._run_sink(index, sink, event, context))
            for index, sink in enumerate(self._sinks)
        ]

        outcomes: List[SinkOutcome] = []
        try:
            for finished in asyncio.as_completed(tasks):
                outcome = await finished
                if not outcome.ok:
                    LOGGER.error("Error in sink %s: %s", outcome.sink, outcome.error)
                outcomes.append(outcome)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        LOGGER.info(
            "Time end %s dispatch event: %s (%d sinks, %d failed)",
            time_digest(self._clock()),
            event.to_json(),
            len(outcomes),
            failed,
        )
        return outcomes

    async def _run_sink(
        self,
        index: int,
        sink: Sink,
        event: TelemetryEvent,
        context: DispatchContext,
    ) -> SinkOutcome:
        name = getattr(sink, "name", type(sink).__name__)
        LOGGER.debug("Processing %d (%s): %s", index, name, event.to_json())
        if self._sink_timeout is None:
            return await self._apply(name, sink, event, context)
        try:
            return await asyncio.wait_for(
                self._apply(name, sink, event, context), timeout=self._sink_timeout
            )
        except asyncio.TimeoutError:
            return SinkOutcome(
                name,
                event,
                error=SinkTimeoutError(
                    f"Sink {name} timed out after {self._sink_timeout}s"
                ),
            )

    async def _apply(
        self,
        name: str,
        sink: Sink,
        event: TelemetryEvent,
        context: DispatchContext,
    ) -> SinkOutcome:
        # Errors raised by the sink, its own timeouts included, become its outcome.
        try:
            return await sink.apply(event, context)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return SinkOutcome(name, event, error=exc)
