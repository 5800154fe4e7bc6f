"""Fire-and-forget task queue whose failures never reach the caller."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger


class BackgroundQueue:
    """Holds references to background work until it settles.

    Exceptions raised by submitted work are logged and absorbed; the optional
    ``on_success`` callback only runs when the work completes normally.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def submit(
        self,
        work: Awaitable[Any],
        *,
        name: str,
        on_success: Callable[[Any], None] | None = None,
    ) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(self._guard(work, name, on_success))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(
        self,
        work: Awaitable[Any],
        name: str,
        on_success: Callable[[Any], None] | None,
    ) -> Any:
        try:
            result = await work
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Background task {} failed: {}", name, exc)
            return None
        if on_success is not None:
            try:
                on_success(result)
            except Exception:
                logger.exception("Completion callback for {} raised", name)
        return result

    async def drain(self) -> None:
        """Wait until every submitted task, including ones queued meanwhile, settles."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)
