"""
Cancellable timers driven by an injectable clock.

Every periodic or delayed action in the dispatch core (poll interval,
countdown ticks, debounce, next-request delay, job status checks) runs on
these so a test clock can drive them deterministically.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class Clock(Protocol):
    def now_ms(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def now_ms(self) -> float:
        return time.monotonic() * 1000

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class _Timer:
    def __init__(self, clock: Clock, callback: TimerCallback, name: str) -> None:
        self._clock = clock
        self._callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[object] = None

    @property
    def running(self) -> bool:
        return self._token is not None

    def start(self) -> None:
        if self.running:
            return
        token = object()
        self._token = token
        self._task = asyncio.create_task(self._run(token), name=self.name)

    def cancel(self) -> None:
        """Stop the timer. Safe to call repeatedly and from inside the callback."""
        task, self._task = self._task, None
        self._token = None
        if task is None or task.done():
            return
        # Cancelling ourselves would interrupt the callback mid-flight; the
        # cleared token ends the loop once it returns instead.
        if task is not asyncio.current_task():
            task.cancel()

    async def _fire(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer %s callback failed", self.name)

    async def _run(self, token: object) -> None:
        raise NotImplementedError


class PeriodicTimer(_Timer):
    def __init__(
        self,
        clock: Clock,
        interval: float,
        callback: TimerCallback,
        name: str,
        immediate: bool = False,
    ) -> None:
        super().__init__(clock, callback, name)
        self.interval = interval
        self.immediate = immediate

    async def _run(self, token: object) -> None:
        if self.immediate and self._token is token:
            await self._fire()
        while self._token is token:
            await self._clock.sleep(self.interval)
            if self._token is not token:
                return
            await self._fire()


class DelayedCall(_Timer):
    def __init__(self, clock: Clock, delay: float, callback: TimerCallback, name: str) -> None:
        super().__init__(clock, callback, name)
        self.delay = delay

    async def _run(self, token: object) -> None:
        await self._clock.sleep(self.delay)
        if self._token is not token:
            return
        # One-shot: mark finished before firing so the callback may re-arm it
        self._token = None
        self._task = None
        await self._fire()


class BackgroundTasks:
    """Fire-and-forget tasks that are still cancellable on teardown."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[None], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
