import asyncio
from typing import Awaitable, Callable


class PeriodicTask:
    """
    Runs an async callback on a fixed schedule.

    Ticks are deadline based, so a slow callback does not push every later
    tick back. The callback is expected to handle its own errors; anything
    it lets escape is passed to ``on_error`` and the loop carries on.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        interval: float,
        on_error: Callable[[Exception], Awaitable[None]] | None = None,
    ) -> None:
        self._callback = callback
        self._interval = interval
        self._on_error = on_error
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._running = False
        if self._task and self._task is not asyncio.current_task():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._interval

        while self._running:
            await asyncio.sleep(max(0, next_tick - loop.time()))
            if not self._running:
                break

            try:
                await self._callback()
            except Exception as err:
                if self._on_error:
                    await self._on_error(err)

            next_tick += self._interval
            now = loop.time()
            if next_tick < now:
                # Skip ticks missed while the callback was running.
                next_tick = now + self._interval
