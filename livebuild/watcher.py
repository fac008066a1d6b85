"""Filesystem change detection on top of watchdog."""

import asyncio
import fnmatch
import logging
import os
from pathlib import Path
from typing import AsyncIterator, Callable, Iterable, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .errors import WatchFailure
from .events import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

IgnorePredicate = Callable[[str], bool]

DEFAULT_IGNORE_PATTERNS = [
    "*.map",
    ".git",
    "node_modules",
    "__pycache__",
    "*.tmp",
    "*.swp",
    "*~",
]

HEALTH_INTERVAL = 1.0

_STOP = object()


def ignore_patterns(patterns: Iterable[str], *under: str) -> IgnorePredicate:
    """Build an ignore predicate from glob patterns and excluded directories."""
    patterns = list(patterns)
    excluded = [os.path.abspath(p) for p in under]

    def should_ignore(path: str) -> bool:
        abspath = os.path.abspath(path)
        for root in excluded:
            if abspath == root or abspath.startswith(root + os.sep):
                return True

        path_obj = Path(path)
        for pattern in patterns:
            if fnmatch.fnmatch(path_obj.name, pattern):
                return True
            if fnmatch.fnmatch(path, pattern):
                return True
            for part in path_obj.parts:
                if fnmatch.fnmatch(part, pattern):
                    return True
        return False

    return should_ignore


# -------- watchdog bridge --------
class _Forwarder(FileSystemEventHandler):
    """Runs on the observer thread; hands every event to the loop."""

    def __init__(self, detector: "ChangeDetector"):
        self.detector = detector

    def on_any_event(self, event):
        self.detector._threadsafe(self.detector._dispatch, event)


def _translate(event) -> List[ChangeEvent]:
    kind = event.event_type
    is_dir = event.is_directory

    if kind == "created":
        return [ChangeEvent(event.src_path, ChangeKind.DIR_ADDED if is_dir else ChangeKind.ADDED)]
    if kind == "deleted":
        return [ChangeEvent(event.src_path, ChangeKind.DIR_REMOVED if is_dir else ChangeKind.REMOVED)]
    if kind == "modified":
        # a directory mtime bump always accompanies a child event
        return [] if is_dir else [ChangeEvent(event.src_path, ChangeKind.MODIFIED)]
    if kind == "moved":
        return [
            ChangeEvent(event.src_path, ChangeKind.DIR_REMOVED if is_dir else ChangeKind.REMOVED),
            ChangeEvent(event.dest_path, ChangeKind.DIR_ADDED if is_dir else ChangeKind.ADDED),
        ]
    # opened / closed notifications carry no content change
    return []


class ChangeDetector:
    """
    Watch one or more roots and expose their changes as an async stream.

    The stream is infinite and can be consumed once. Events seen before the
    observer reports ready are dropped. A failure ends the stream; callers
    carry on without automatic rebuilds.
    """

    def __init__(
        self,
        roots: Iterable[str],
        ignore: Optional[IgnorePredicate] = None,
        observer_factory=Observer,
    ):
        self.roots = [os.path.abspath(r) for r in roots]
        self.ignore = ignore or ignore_patterns(DEFAULT_IGNORE_PATTERNS)
        self._observer_factory = observer_factory

        self._observer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._ready = False
        self._started = False
        self._consumed = False
        self.failed: Optional[BaseException] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def start(self) -> None:
        if self._started:
            raise RuntimeError("ChangeDetector cannot be restarted")
        self._started = True
        self._loop = asyncio.get_running_loop()

        for root in self.roots:
            if not os.path.isdir(root):
                raise WatchFailure(f"Cannot watch {root}: not a directory")

        observer = self._observer_factory()
        handler = _Forwarder(self)
        try:
            for root in self.roots:
                observer.schedule(handler, root, recursive=True)
            await self._loop.run_in_executor(None, self._start_observer, observer)
        except Exception as e:
            raise WatchFailure(f"Cannot watch {', '.join(self.roots)}: {e}") from e

        self._observer = observer
        logger.info(f"Watching {', '.join(self.roots)}")

    def _start_observer(self, observer) -> None:
        # runs in the executor: events the observer emits once start() returns
        # may reach the loop before this coroutine resumes
        observer.start()
        self._ready = True

    def _threadsafe(self, callback, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # loop shut down between the check and the call
            pass

    def _dispatch(self, raw) -> None:
        if not self._ready or self.failed is not None:
            return
        for event in _translate(raw):
            if self.ignore(event.path):
                continue
            self._queue.put_nowait(event)

    def fail(self, exc: BaseException) -> None:
        """Record an observer error and end the stream."""
        if self.failed is not None:
            return
        self.failed = exc
        logger.error(f"File watcher failed, continuing without auto-rebuild: {exc}")
        self._queue.put_nowait(_STOP)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        if self._consumed:
            raise RuntimeError("ChangeDetector stream can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=HEALTH_INTERVAL)
            except asyncio.TimeoutError:
                observer = self._observer
                if observer is not None and not observer.is_alive():
                    self.fail(WatchFailure("watchdog observer thread exited"))
                continue
            if item is _STOP:
                return
            yield item

    async def stop(self) -> None:
        self._ready = False
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            await asyncio.get_running_loop().run_in_executor(None, observer.join, 5)
        self._queue.put_nowait(_STOP)
        logger.info("Stopped watching")
