"""FIFO of pending update jobs, deduplicated by server id."""

import asyncio
from collections import deque
from typing import Deque, List, Set

import structlog

from .exceptions import UpdateQueueFullError
from .models import UpdateJob

logger = structlog.get_logger(__name__)


class UpdateQueue:
    """Pending update jobs in order of first enqueue.

    Holds at most one job per server id. Producers call ``offer`` from any
    coroutine on the loop; a single consumer awaits ``take``.
    """

    def __init__(self, maxsize: int = 0):
        """Initialize update queue.

        Args:
            maxsize: Maximum pending jobs (0 = unbounded)
        """
        self.maxsize = maxsize
        self._queue: "asyncio.Queue[UpdateJob]" = asyncio.Queue(maxsize)
        self._pending: Set[str] = set()
        self._order: List[str] = []
        self._overflow: Deque[UpdateJob] = deque()

    def offer(self, job: UpdateJob) -> bool:
        """Enqueue a job unless one for the same server is already pending.

        Args:
            job: Job to enqueue

        Returns:
            bool: True if enqueued, False if a job for that server was pending

        Raises:
            UpdateQueueFullError: If the queue is bounded and full
        """
        if job.server_id in self._pending:
            logger.debug("Update already queued", server_id=job.server_id)
            return False

        if self.full():
            raise UpdateQueueFullError(
                f"Update queue is full ({self.maxsize} jobs)",
                "Wait for pending updates to finish",
                {"server_id": job.server_id},
            )

        self._queue.put_nowait(job)
        self._pending.add(job.server_id)
        self._order.append(job.server_id)
        logger.debug("Update queued", server_id=job.server_id, pending=len(self))
        return True

    def restore(self, job: UpdateJob) -> bool:
        """Enqueue a job ignoring the bound.

        Jobs past the bound wait in an overflow list and move into the queue
        as earlier jobs are taken, so order is kept.

        Returns:
            bool: True if enqueued, False if a job for that server was pending
        """
        if job.server_id in self._pending:
            return False

        if self._overflow or self._queue.full():
            self._overflow.append(job)
        else:
            self._queue.put_nowait(job)

        self._pending.add(job.server_id)
        self._order.append(job.server_id)
        return True

    def full(self) -> bool:
        """Check whether ``offer`` would be rejected for a new server."""
        return bool(self._overflow) or self._queue.full()

    async def take(self) -> UpdateJob:
        """Wait for and remove the oldest job."""
        job = await self._queue.get()
        if self._overflow:
            self._queue.put_nowait(self._overflow.popleft())
        self._pending.discard(job.server_id)
        self._order.remove(job.server_id)
        return job

    def task_done(self) -> None:
        """Mark the last taken job as processed."""
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every taken job has been marked done."""
        await self._queue.join()

    def contains(self, server_id: str) -> bool:
        """Check whether a job for the server is pending."""
        return server_id in self._pending

    def pending_ids(self) -> List[str]:
        """Get pending server ids in queue order."""
        return list(self._order)

    def __len__(self) -> int:
        return self._queue.qsize() + len(self._overflow)
