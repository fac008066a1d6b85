"""The dev session: wires detector, scheduler, builds, hub, server and process."""

import asyncio
import logging
from typing import List, Optional

from aiohttp import web

from .bundler import BuildInvoker, Bundler
from .debounce import REBUILD, RESTART, DebounceScheduler
from .errors import WatchFailure
from .events import BuildResult
from .hub import LiveReloadHub
from .manifest import DevConfig
from .server import StaticFileServer
from .supervisor import ProcessSupervisor
from .watcher import DEFAULT_IGNORE_PATTERNS, ChangeDetector, ignore_patterns

logger = logging.getLogger(__name__)


class OrchestratorSession:
    """
    Everything one dev session owns, with a single teardown path.

    Stages talk through queues: the detector's stream feeds the change pump,
    which only pokes the scheduler; each rebuild takes the paths recorded
    before it started, and a successful one puts that batch on ``completed``
    for the dispatcher to fan out to the hub and the supervisor.
    """

    def __init__(
        self,
        config: DevConfig,
        bundler: Bundler,
        invoker: Optional[BuildInvoker] = None,
        detector: Optional[ChangeDetector] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        node: str = "node",
    ):
        self.config = config
        self.scheduler = DebounceScheduler()
        self.invoker = invoker or BuildInvoker.from_config(bundler, config)

        self.hub: Optional[LiveReloadHub] = None
        if config.live_reload:
            self.hub = LiveReloadHub(self.scheduler, delay=config.reload_delay)

        self.detector: Optional[ChangeDetector] = detector
        if self.detector is None and config.watch:
            ignore = ignore_patterns(DEFAULT_IGNORE_PATTERNS, config.outdir)
            self.detector = ChangeDetector([config.srcdir], ignore=ignore)

        self.supervisor: Optional[ProcessSupervisor] = supervisor
        if self.supervisor is None and config.supervises_process:
            self.supervisor = ProcessSupervisor([node, config.monitor_path], cwd=config.outdir)

        self.static: Optional[StaticFileServer] = None
        if config.serves_files or self.hub is not None:
            # live reload shares the port even when files are not served
            self.static = StaticFileServer(
                config.outdir,
                hub=self.hub,
                default_document=config.default_document,
                serve_files=config.serves_files,
            )

        self.scheduler.register(REBUILD, self._rebuild, config.rebuild_delay)
        self.scheduler.register(RESTART, self._restart, config.restart_delay)

        self.completed: asyncio.Queue = asyncio.Queue()
        self.initial: Optional[BuildResult] = None
        self.auto_rebuild = False
        self._runner: Optional[web.AppRunner] = None
        self._tasks: List[asyncio.Task] = []
        self._closed = False
        self._build_lock = asyncio.Lock()
        self._stopped = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> BuildResult:
        self.initial = await self.invoker.build()
        if not self.initial.ok:
            logger.error("initial build failed")

        if self.supervisor is not None and self.initial.ok:
            await self.supervisor.ensure_running()

        if self.static is not None:
            await self._start_server()

        if self.detector is not None:
            try:
                await self.detector.start()
            except WatchFailure as e:
                logger.error(f"{e}; continuing without auto-rebuild")
            else:
                self.auto_rebuild = True
                self._tasks.append(asyncio.ensure_future(self._pump_changes()))

        self._tasks.append(asyncio.ensure_future(self._dispatch_builds()))
        return self.initial

    async def _start_server(self) -> None:
        app = self.static.make_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info(f"server is listening on http://{self.config.host}:{self.config.port}")

    async def run(self) -> None:
        """Start, then wait until ``close`` is called."""
        await self.start()
        if not self.config.watch and self.static is None:
            await self.close()
            return
        await self._stopped.wait()

    # -------- stages --------
    async def _pump_changes(self) -> None:
        async for event in self.detector:
            logger.debug(f"{event.kind.value} {event.path}")
            if self.hub is not None:
                self.hub.record(event.path)
            self.scheduler.notify(REBUILD, event)

    async def _rebuild(self) -> None:
        async with self._build_lock:
            # the batch is exactly what this build saw; later edits wait for the next one
            batch = self.hub.take() if self.hub is not None else []
            result = await self.invoker.rebuild()
        if self._closed:
            logger.debug("discarding build result after close")
            return
        if result.ok:
            self.completed.put_nowait(batch)
        else:
            logger.error("watch build failed")
            if self.hub is not None:
                self.hub.restore(batch)

    async def _dispatch_builds(self) -> None:
        while True:
            batch = await self.completed.get()
            if self._closed:
                return
            if self.hub is not None:
                self.hub.commit(batch)
            if self.supervisor is not None:
                self.scheduler.notify(RESTART)

    async def _restart(self) -> None:
        if self._closed:
            return
        await self.supervisor.restart()

    # -------- teardown --------
    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.scheduler.dispose()

        if self.detector is not None:
            await self.detector.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.hub is not None:
            await self.hub.close()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self.supervisor is not None:
            await self.supervisor.stop()

        self._stopped.set()
        logger.info("session closed")
