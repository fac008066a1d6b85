"""Per-concern trailing-edge debouncing on the event loop."""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

logger = logging.getLogger(__name__)

Action = Callable[[], Union[None, Awaitable[None]]]

REBUILD = "rebuild"
RELOAD = "reload"
RESTART = "restart"


@dataclass
class DebounceTimer:
    """State of one concern. At most one handle is outstanding."""

    action: Action
    delay: float
    pending: bool = False
    deadline: Optional[float] = None
    handle: Optional[asyncio.TimerHandle] = None
    hits: int = 0


class DebounceScheduler:
    """
    Coalesce bursts of notifications into one trailing action per concern.

    Each concern owns its own timer, so a burst on one concern never delays
    another. A ``notify`` while a timer is pending pushes its deadline to
    ``now + delay``; the action then runs once, without any payload.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop
        self._timers: Dict[str, DebounceTimer] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._disposed = False

    def register(self, concern: str, action: Action, delay: float) -> None:
        if concern in self._timers:
            self._cancel(self._timers[concern])
        self._timers[concern] = DebounceTimer(action=action, delay=delay)

    def notify(self, concern: str, event: Any = None) -> None:
        """Register interest in ``concern``. ``event`` is only counted."""
        if self._disposed:
            logger.debug(f"Ignoring notify for {concern} after dispose")
            return

        timer = self._timers.get(concern)
        if timer is None:
            raise KeyError(f"Unknown debounce concern: {concern}")

        loop = self._get_loop()
        self._cancel(timer, clear=False)

        timer.pending = True
        timer.hits += 1
        timer.deadline = loop.time() + timer.delay
        timer.handle = loop.call_at(timer.deadline, self._fire, concern)

    def pending(self, concern: str) -> bool:
        timer = self._timers.get(concern)
        return bool(timer and timer.pending)

    def deadline(self, concern: str) -> Optional[float]:
        timer = self._timers.get(concern)
        return timer.deadline if timer else None

    def dispose(self) -> None:
        """Cancel every pending deadline without firing it."""
        self._disposed = True
        for timer in self._timers.values():
            self._cancel(timer)

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def drain(self) -> None:
        """Wait for actions that have already fired to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        return self.loop

    def _cancel(self, timer: DebounceTimer, clear: bool = True) -> None:
        if timer.handle is not None:
            timer.handle.cancel()
            timer.handle = None
        if clear:
            timer.pending = False
            timer.deadline = None
            timer.hits = 0

    def _fire(self, concern: str) -> None:
        timer = self._timers[concern]
        hits = timer.hits
        timer.handle = None
        timer.pending = False
        timer.hits = 0

        logger.debug(f"Firing {concern} after {hits} notification(s)")
        try:
            result = timer.action()
        except Exception:
            logger.exception(f"Error in {concern} action")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t, c=concern: self._finished(c, t))

    def _finished(self, concern: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in {concern} action: {exc!r}")
