"""
Named timers on top of an injectable clock.

Every delay in the agent (settle, answerDelay, submitDelay, pollTimeout,
urlWatch, peerPoll, resume) goes through a Scheduler so that tests can drive
virtual time with ManualClock instead of waiting on the wall clock.
"""
import asyncio
import heapq
import itertools
from typing import Awaitable, Callable, Dict, Optional, Set, Union

from logger import agent_logger

TimerCallback = Callable[[], Union[Awaitable[None], None]]


class Clock:
    """Interface: current time, one-shot callbacks and sleeping."""

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], None]):
        """Schedule a plain function. Returns a handle with cancel()."""
        raise NotImplementedError

    async def sleep(self, delay: float) -> None:
        raise NotImplementedError


class LoopClock(Clock):
    """Real time, backed by the running asyncio loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]):
        return asyncio.get_running_loop().call_later(max(0.0, delay), callback)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


class _ManualHandle:
    def __init__(self, due: float, seq: int, callback: Callable[[], None]):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def __lt__(self, other: "_ManualHandle"):
        return (self.due, self.seq) < (other.due, other.seq)


class ManualClock(Clock):
    """
    Virtual time. Nothing happens until advance() is awaited; due callbacks then
    fire in (due time, insertion) order and the loop is drained after each one
    so tasks they spawn can reach their next suspension point.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]):
        handle = _ManualHandle(self._now + max(0.0, delay), next(self._seq), callback)
        heapq.heappush(self._queue, handle)
        return handle

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()

        def _wake():
            if not future.done():
                future.set_result(None)

        self.call_later(delay, _wake)
        await future

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        await self.drain()
        while self._queue:
            handle = self._queue[0]
            if handle.cancelled:
                heapq.heappop(self._queue)
                continue
            if handle.due > target:
                break
            heapq.heappop(self._queue)
            self._now = handle.due
            handle.callback()
            await self.drain()
        self._now = target
        await self.drain()

    @staticmethod
    async def drain(rounds: int = 50) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)


class Scheduler:
    """
    Named one-shot and repeating timers. Starting a timer under a name that is
    already pending replaces it. Coroutine callbacks run as tracked tasks.
    """

    def __init__(self, clock: Optional[Clock] = None, on_error: Optional[Callable[[BaseException], None]] = None):
        self.clock = clock or LoopClock()
        self.on_error = on_error
        self._timers: Dict[str, object] = {}
        self._tasks: Set[asyncio.Task] = set()

    # --- Timers ---

    def start(self, name: str, delay: float, callback: TimerCallback) -> None:
        self.cancel(name)

        def _fire():
            self._timers.pop(name, None)
            self._run(name, callback)

        self._timers[name] = self.clock.call_later(delay, _fire)
        agent_logger.debug(f"⏲️  Timer '{name}' armed for {delay:.1f}s")

    def start_interval(self, name: str, period: float, callback: TimerCallback) -> None:
        self.cancel(name)

        def _tick():
            # Re-arm first so the callback may cancel its own interval
            self._timers[name] = self.clock.call_later(period, _tick)
            self._run(name, callback)

        self._timers[name] = self.clock.call_later(period, _tick)

    def cancel(self, name: str) -> bool:
        handle = self._timers.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_pending(self, name: str) -> bool:
        return name in self._timers

    def cancel_all(self) -> None:
        for name in list(self._timers):
            self.cancel(name)

    # --- Tasks ---

    def spawn(self, awaitable: Awaitable[None], name: str = "task") -> asyncio.Task:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._task_done(name, t))
        return task

    def shutdown(self) -> None:
        """Kill switch: drop every timer and cancel every running task."""
        self.cancel_all()
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        self._tasks.clear()

    async def sleep(self, delay: float) -> None:
        await self.clock.sleep(delay)

    # --- Internals ---

    def _run(self, name: str, callback: TimerCallback) -> None:
        try:
            result = callback()
        except Exception as e:
            self._report(name, e)
            return
        if asyncio.iscoroutine(result):
            self.spawn(result, name=name)

    def _task_done(self, name: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._report(name, exc)

    def _report(self, name: str, exc: BaseException) -> None:
        if self.on_error is not None:
            self.on_error(exc)
        else:
            agent_logger.error(f"Timer/task '{name}' failed: {exc}", exc_info=exc)
