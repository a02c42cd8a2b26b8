from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Dict, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """Owns background polling tasks independently of the request that spawned them."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._by_name: Dict[str, asyncio.Task[Any]] = {}

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        self._by_name[name] = task
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        name = task.get_name()
        if self._by_name.get(name) is task:
            del self._by_name[name]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Background task crashed",
                exc_info=task.exception(),
                extra={"task": name},
            )

    def get(self, name: str) -> asyncio.Task[Any] | None:
        return self._by_name.get(name)

    async def wait(self, name: str, timeout: float | None = None) -> None:
        """Wait for the named task, if it is still running."""
        task = self._by_name.get(name)
        if task is None:
            return
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def wait_all(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Cancelled background tasks", extra={"count": len(tasks)})


__all__ = ["TaskSupervisor"]
