"""
Outbound side effects that run after a ledger commit.

Jobs are fire-and-forget: a failing job is logged and dropped, and the caller
never observes it. In synchronous mode (tests) jobs run inline so their
effects can be asserted right after the orchestrator returns.
"""
import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class OutboundDispatcher:
    def __init__(self, synchronous: bool = False) -> None:
        self.synchronous = synchronous
        self.completed: list[str] = []
        self.failed: list[str] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def enqueue(self, name: str, job: Job) -> None:
        if self.synchronous:
            await self._run(name, job)
            return
        task = asyncio.create_task(self._run(name, job), name=f"outbound:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, name: str, job: Job) -> None:
        try:
            await job()
        except Exception:
            logger.exception("Outbound job %s failed", name)
            self.failed.append(name)
        else:
            logger.debug("Outbound job %s done", name)
            self.completed.append(name)

    async def drain(self) -> None:
        """Wait for every queued job. Used on shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
