from __future__ import annotations

import logging
from typing import Protocol

from ringscan.app.events.models import ScanEvent

logger = logging.getLogger(__name__)


class ScanEventEmitter(Protocol):
    """
    Sink for scan progress observations.

    Emission is observational only: an event never changes which tiers
    are consulted or how the report is assembled. Callers that hand an
    arbitrary emitter to the scan wrap it in SafeEventEmitter.
    """

    async def emit(self, event: ScanEvent) -> None:
        ...


class NullEventEmitter:
    """
    Discards every event. Default for CLI scans and the MCP connector.
    """

    async def emit(self, event: ScanEvent) -> None:
        return


class SafeEventEmitter:
    """
    Wraps an emitter so a failing sink cannot fail the scan.

    The first failure is logged with its traceback; the sink is then
    muted for the rest of the scan.
    """

    def __init__(self, inner: ScanEventEmitter) -> None:
        self._inner = inner
        self._muted = False

    @classmethod
    def wrap(cls, emitter: ScanEventEmitter | None) -> "SafeEventEmitter":
        if isinstance(emitter, cls):
            return emitter
        return cls(emitter or NullEventEmitter())

    @property
    def muted(self) -> bool:
        return self._muted

    async def emit(self, event: ScanEvent) -> None:
        if self._muted:
            return
        try:
            await self._inner.emit(event)
        except Exception:
            self._muted = True
            logger.exception(
                "events: %s emitter failed on %s; muting it for scan %s",
                type(self._inner).__name__,
                event.event_type.value,
                event.scan_id,
            )
