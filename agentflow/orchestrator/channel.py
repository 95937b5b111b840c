"""
Event channel between a running pipeline and whoever is listening
"""

import asyncio
from typing import AsyncIterator, Optional

import structlog

from agentflow.orchestrator.events import ProgressEvent

logger = structlog.get_logger()

_CLOSED = object()


class EventChannel:
    """
    Single-producer, single-consumer queue of progress events.

    The producer never blocks and never fails: once the consumer detaches,
    publishes are dropped. Closing ends iteration after queued events drain.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._detached = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            raise RuntimeError("publish on a closed channel")
        if self._detached:
            self.dropped += 1
            logger.debug("progress_event_dropped", event_type=event.type)
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def detach(self) -> None:
        """Consumer is gone; discard everything from now on"""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def next(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None once the channel is closed and drained"""
        if self._detached:
            return None
        item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            # Keep the sentinel for any later reader.
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.next()
            if event is None:
                return
            yield event
