# src/jobflow/jobs/queue_worker.py

from __future__ import annotations

"""
Queue worker.

A small polling consumer that:
- claims entries from one queue while it has free slots,
- runs the handler for each entry in its own asyncio task,
- keeps the entry's lease alive while the handler runs,
- completes the entry, or fails it when the handler raised.

To stop the worker, call stop() (in-flight handlers are awaited).
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from ..core.ports import QueueRepo
from .job_models import QueueEntry

logger = logging.getLogger(__name__)

EntryHandler = Callable[[QueueEntry], Awaitable[None]]


class QueueWorker:
    def __init__(
        self,
        queues: QueueRepo,
        queue: str,
        handler: EntryHandler,
        *,
        concurrency: int = 1,
        poll_interval_seconds: float = 0.1,
        lease_seconds: float = 30.0,
    ) -> None:
        self._queues = queues
        self._queue = queue
        self._handler = handler
        self._concurrency = max(1, int(concurrency))
        self._poll_interval = max(0.01, float(poll_interval_seconds))
        self._lease_seconds = max(1.0, float(lease_seconds))
        self._inflight: set[asyncio.Task[None]] = set()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def queue(self) -> str:
        return self._queue

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._claim_loop(), name=f"worker:{self._queue}")
        logger.info("Worker started queue=%s concurrency=%s", self._queue, self._concurrency)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("Worker stopped queue=%s", self._queue)

    async def _claim_loop(self) -> None:
        while self._running:
            try:
                self.fill_slots()
            except Exception:
                logger.exception("claim failed queue=%s", self._queue)
            await asyncio.sleep(self._poll_interval)

    def fill_slots(self) -> int:
        """Claim entries until every slot is busy or the queue has nothing ready."""
        started = 0
        while len(self._inflight) < self._concurrency:
            entry = self._queues.claim_next(self._queue, lease_seconds=self._lease_seconds)
            if entry is None:
                break
            task = asyncio.create_task(self.process(entry))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            started += 1
        return started

    async def process(self, entry: QueueEntry) -> None:
        token = entry.lease_token or ""
        keepalive = asyncio.create_task(self._keep_lease(entry.id, token))
        failure: str | None = None
        try:
            await self._handler(entry)
        except Exception as e:
            logger.exception("handler failed queue=%s id=%s", self._queue, entry.id)
            failure = f"{type(e).__name__}: {e}"
        finally:
            keepalive.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await keepalive

        try:
            if failure is None:
                self._queues.complete(self._queue, entry.id, token)
            else:
                self._queues.fail(self._queue, entry.id, token, failure)
        except Exception:
            logger.exception("releasing lease failed queue=%s id=%s", self._queue, entry.id)

    async def _keep_lease(self, entry_id: str, token: str) -> None:
        interval = self._lease_seconds / 2
        while True:
            await asyncio.sleep(interval)
            try:
                if not self._queues.extend_lease(self._queue, entry_id, token, self._lease_seconds):
                    logger.warning("Lease lost queue=%s id=%s", self._queue, entry_id)
                    return
            except Exception:
                logger.exception("extend_lease failed queue=%s id=%s", self._queue, entry_id)
