"""Supervision of the one long-lived process a node project runs."""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .errors import ProcessFailure

logger = logging.getLogger(__name__)


class ProcessState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"


@dataclass(eq=False)
class SupervisedProcess:
    handle: Optional[asyncio.subprocess.Process] = None
    state: ProcessState = ProcessState.STARTING
    superseded: bool = False
    returncode: Optional[int] = None
    waiter: Optional[asyncio.Task] = field(default=None, repr=False)
    spawned: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def pid(self) -> Optional[int]:
        return self.handle.pid if self.handle else None

    @property
    def alive(self) -> bool:
        return self.state in (ProcessState.STARTING, ProcessState.RUNNING)


class ProcessSupervisor:
    """
    Own the single supervised-process slot.

    ``restart`` asks the current instance to terminate and immediately
    spawns its replacement without waiting for the old one to go away, so
    two instances may briefly overlap. The old instance is marked
    superseded; its late exit notification is ignored.
    """

    def __init__(self, command: Sequence[str], cwd: Optional[str] = None, stop_timeout: float = 5.0):
        self.command: List[str] = list(command)
        self.cwd = cwd
        self.stop_timeout = stop_timeout
        self.current: Optional[SupervisedProcess] = None
        self.restarts = 0

    async def ensure_running(self) -> Optional[SupervisedProcess]:
        if self.current is not None and self.current.alive:
            return self.current
        return await self._spawn()

    async def restart(self) -> Optional[SupervisedProcess]:
        logger.info("monitored file change, restarting")
        self.restarts += 1
        previous = self.current
        if previous is not None:
            previous.superseded = True
            if previous.alive:
                self._terminate(previous)
        return await self._spawn()

    async def _spawn(self) -> Optional[SupervisedProcess]:
        logger.info(f"starting process {' '.join(self.command)}")
        instance = SupervisedProcess()
        self.current = instance
        try:
            try:
                instance.handle = await self._create(self.command)
            except ProcessFailure as e:
                logger.error(str(e))
                instance.state = ProcessState.EXITED
                if self.current is instance:
                    self.current = None
                return None

            if instance.superseded:
                # replaced or stopped while the spawn was in flight
                self._terminate(instance)
            elif instance.state is ProcessState.STARTING:
                instance.state = ProcessState.RUNNING
            instance.waiter = asyncio.ensure_future(self._watch(instance))
            return instance
        finally:
            instance.spawned.set()

    async def _create(self, command: Sequence[str]) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(*command, cwd=self.cwd)
        except OSError as e:
            raise ProcessFailure(f"Cannot start {command[0]}: {e}") from e

    async def _watch(self, instance: SupervisedProcess) -> None:
        try:
            code = await instance.handle.wait()
        except Exception as e:
            self._on_exit(instance, None, error=e)
            return
        self._on_exit(instance, code)

    def _on_exit(self, instance: SupervisedProcess, code: Optional[int], error: Optional[BaseException] = None) -> None:
        instance.returncode = code
        if instance.superseded:
            instance.state = ProcessState.KILLED
            logger.debug(f"superseded process {instance.pid} exited with code {code}")
            return

        if instance.state is not ProcessState.KILLED:
            instance.state = ProcessState.EXITED
        if error is not None:
            logger.warning(f"process crash: {error!r}")
        else:
            logger.warning(f"process exit with code {code}.")

    def _terminate(self, instance: SupervisedProcess) -> None:
        instance.state = ProcessState.KILLED
        if instance.handle is None:
            return
        try:
            instance.handle.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            pass

    async def stop(self) -> None:
        """Terminate the current instance and wait for it, killing on timeout."""
        instance, self.current = self.current, None
        if instance is None:
            return
        instance.superseded = True
        if instance.handle is None:
            await instance.spawned.wait()
            if instance.handle is None:
                return
        if instance.alive:
            self._terminate(instance)
        try:
            await asyncio.wait_for(instance.handle.wait(), self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"process {instance.pid} ignored SIGTERM, killing")
            try:
                instance.handle.kill()
            except ProcessLookupError:
                pass
            await instance.handle.wait()
        if instance.waiter is not None:
            await asyncio.gather(instance.waiter, return_exceptions=True)
