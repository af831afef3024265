from __future__ import annotations

import logging
import math
from typing import AsyncIterator

import anyio

from ringscan.app.events.models import ScanEvent, ScanEventType

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = frozenset(
    {ScanEventType.SCAN_COMPLETED, ScanEventType.SCAN_FAILED}
)


class MemoryQueueEventEmitter:
    """
    Buffers one scan's events for a single SSE consumer.

    The buffer is unbounded, so emit() never waits on the consumer. The
    stream ends after scan_completed or scan_failed, or when close() is
    called. Events emitted after the consumer has gone away are dropped.
    """

    def __init__(self) -> None:
        self._send, self._receive = anyio.create_memory_object_stream(math.inf)
        self._closed = False

    async def emit(self, event: ScanEvent) -> None:
        if self._closed:
            return

        try:
            self._send.send_nowait(event)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug(
                "events: stream consumer gone, dropping %s for scan %s",
                event.event_type.value,
                event.scan_id,
            )
            self._closed = True
            self._send.close()
            return

        if event.event_type in TERMINAL_EVENTS:
            await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._send.aclose()

    async def stream(self) -> AsyncIterator[ScanEvent]:
        """Yield buffered events in emission order until the scan ends."""
        async with self._receive:
            async for event in self._receive:
                yield event
