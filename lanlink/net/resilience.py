"""Background tasks for lanlink's long-running pieces.

The UDP listen loop, the engine's inbox worker, each inbound request handler
and the pairing sweep all run as tasks spawned here, so a crash in any of
them reaches the log rather than vanishing with the task.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger


def _report_failure(task: asyncio.Task) -> None:
    if task.cancelled() or task.exception() is None:
        return
    logger.error(
        "[LanLink/Task] background task {} crashed: {!r}",
        task.get_name(), task.exception(),
    )


def supervised_task(coro: Awaitable[Any], *, name: str = "") -> asyncio.Task:
    """``asyncio.create_task`` plus a done-callback that logs a crash.

    The task is returned untouched: awaiting it still raises.
    """
    task = asyncio.create_task(coro, name=name or None)
    task.add_done_callback(_report_failure)
    return task


async def cancel_task(task: asyncio.Task | None) -> None:
    """Cancel *task* if it is still running and wait for it to unwind."""
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class Watchdog:
    """Repeats a maintenance job on a fixed period.

    Node uses one to sweep expired pairings.  The job may be a plain
    function or a coroutine function; a failing run is logged and the next
    one happens on schedule.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Any],
        interval: float = 300.0,
    ) -> None:
        self.name = name
        self._job = callback
        self._period = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> None:
        """Run the job once now."""
        try:
            outcome = self._job()
            if asyncio.iscoroutine(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[LanLink/Watchdog:{}] run failed, retrying next period: {}",
                           self.name, exc)

    async def _run_forever(self) -> None:
        while True:
            await asyncio.sleep(self._period)
            await self.tick()

    def start(self) -> None:
        if self.running:
            return
        self._task = supervised_task(self._run_forever(), name=f"lanlink-watchdog-{self.name}")
        logger.debug("[LanLink/Watchdog:{}] scheduled every {:g}s", self.name, self._period)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("[LanLink/Watchdog:{}] cancelled", self.name)
