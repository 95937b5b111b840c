"""
Progress Publisher
Turns a pipeline run into a stream of server-sent event frames
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

import structlog

from agentflow.orchestrator.channel import EventChannel
from agentflow.orchestrator.events import encode_frame
from agentflow.orchestrator.pipeline import PipelineOrchestrator

logger = structlog.get_logger()

DisconnectProbe = Callable[[], Awaitable[bool]]


class ProgressPublisher:
    """
    Runs each pipeline in its own task and relays its events as frames.

    The subscriber going away never stops the run: the channel is detached,
    further events are dropped, and the run still reaches its terminal state.
    """

    def __init__(self, orchestrator: PipelineOrchestrator, poll_interval: float = 0.5):
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval
        self._runs: Set[asyncio.Task] = set()

    @property
    def active_runs(self) -> int:
        return len(self._runs)

    def start(self, task: Optional[str], user_address: Optional[str] = None) -> tuple:
        """Start a run in the background; returns (channel, run task)"""
        channel = EventChannel()
        run_task = asyncio.create_task(self.orchestrator.run(task, channel, user_address))
        self._runs.add(run_task)
        run_task.add_done_callback(self._runs.discard)
        return channel, run_task

    async def subscribe(
        self,
        task: Optional[str],
        is_disconnected: DisconnectProbe,
        user_address: Optional[str] = None,
    ) -> AsyncIterator[str]:
        channel, _ = self.start(task, user_address)
        try:
            while True:
                if await is_disconnected():
                    logger.info("progress_subscriber_disconnected", dropped_after=channel.dropped)
                    return
                try:
                    event = await channel.next(timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    continue
                if event is None:
                    return
                yield encode_frame(event)
        finally:
            channel.detach()

    async def wait_idle(self):
        """Wait for every background run to finish"""
        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)
