"""In-process registry of tool invocations and their background tasks."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Coroutine
from typing import Any

from ..core.logging import get_logger
from .executor import ToolInvocation

logger = get_logger(__name__)


class InvocationTracker:
    """Owns invocation records and the tasks driving them.

    Tasks are independent of the request that started them, so a client
    disconnect reaches a tool only through its cancel event. Finished
    records are evicted oldest-first once ``max_records`` is exceeded.
    """

    def __init__(self, max_records: int = 1000):
        self._max_records = max_records
        self._records: OrderedDict[str, ToolInvocation] = OrderedDict()
        self._tasks: dict[str, asyncio.Task] = {}
        self._closed = False

    def get(self, invocation_id: str) -> ToolInvocation | None:
        return self._records.get(invocation_id)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def register(self, invocation: ToolInvocation) -> None:
        self._records[invocation.id] = invocation
        self._evict()

    def spawn(self, invocation: ToolInvocation, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        if self._closed:
            coro.close()
            raise RuntimeError("invocation tracker is shut down")
        self.register(invocation)
        task = asyncio.create_task(coro, name=f"tool-invocation:{invocation.id}")
        self._tasks[invocation.id] = task
        task.add_done_callback(lambda t, iid=invocation.id: self._on_done(iid, t))
        return task

    def _on_done(self, invocation_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(invocation_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Invocation task crashed",
                data={"invocation_id": invocation_id, "error": f"{type(exc).__name__}: {exc}"},
            )

    def _evict(self) -> None:
        if len(self._records) <= self._max_records:
            return
        for invocation_id in list(self._records):
            if len(self._records) <= self._max_records:
                break
            if self._records[invocation_id].status.is_terminal:
                del self._records[invocation_id]

    async def drain(self, timeout: float = 10.0) -> None:
        """Stop accepting work and wait for in-flight invocations, cancelling stragglers."""
        self._closed = True
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info("Draining tool invocations", data={"in_flight": len(tasks)})
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled tool invocations at shutdown", data={"count": len(pending)})
