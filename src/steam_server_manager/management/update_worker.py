"""Single consumer that drives the installer over queued update jobs."""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from ..config.logging import log_performance
from ..installer.base import Installer
from .models import UpdateJob
from .update_queue import UpdateQueue

logger = structlog.get_logger(__name__)


@dataclass
class UpdateHooks:
    """Callbacks the worker reports job progress to."""

    on_job_started: Callable[[UpdateJob], Awaitable[None]]
    on_job_completed: Callable[[UpdateJob, Optional[BaseException]], Awaitable[None]]


class UpdateWorker:
    """Drains the update queue through the installer, one job at a time.

    The installer is a single external process, so jobs are never run in
    parallel. Stopping the worker lets an in-flight installer call finish.
    """

    def __init__(self, queue: UpdateQueue, installer: Installer, hooks: UpdateHooks):
        self.queue = queue
        self.installer = installer
        self.hooks = hooks
        self.running = False
        self._current: Optional[UpdateJob] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def current_job(self) -> Optional[UpdateJob]:
        """Get the job being installed, if any."""
        return self._current

    def start(self) -> None:
        """Start consuming jobs."""
        if self.running:
            return

        self.running = True
        self._stopping = False
        self._task = asyncio.create_task(self._run())
        logger.info("Update worker started")

    async def stop(self) -> None:
        """Stop after the current job; cancel immediately when idle."""
        if not self.running or self._task is None:
            return

        self._stopping = True
        if self._current is None:
            self._task.cancel()

        try:
            await self._task
        except asyncio.CancelledError:
            pass

        self.running = False
        logger.info("Update worker stopped")

    async def wait_idle(self) -> None:
        """Wait until every queued job has been processed."""
        await self.queue.join()

    async def _run(self) -> None:
        while not self._stopping:
            job = await self.queue.take()
            self._current = job
            try:
                await self._process(job)
            finally:
                self._current = None
                self.queue.task_done()

    async def _process(self, job: UpdateJob) -> None:
        log = logger.bind(server_id=job.server_id, app_id=job.app_id)
        await self._call_hook(self.hooks.on_job_started, job)

        error: Optional[BaseException] = None
        start_time = time.time()
        log.info("Update started", install_dir=str(job.install_dir))
        try:
            await self.installer.app_update(job.app_id, job.install_dir)
        except Exception as e:
            error = e
            log.error("Update failed", error=str(e))
        else:
            log_performance(
                log, "app_update", (time.time() - start_time) * 1000
            )

        await self._call_hook(self.hooks.on_job_completed, job, error)

    @staticmethod
    async def _call_hook(hook, *args) -> None:
        try:
            await hook(*args)
        except Exception as e:
            logger.error("Update hook failed", hook=getattr(hook, "__name__", repr(hook)), error=str(e))
