# src/jobflow/core/state.py

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..jobs.job_registry import JobRegistry
from ..jobs.mailbox_store import SqliteMailboxStore
from ..jobs.queue_store import SqliteQueueStore
from ..jobs.scheduler import JobScheduler

T = TypeVar("T")


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: object

    queues: SqliteQueueStore
    mailbox: SqliteMailboxStore
    registry: JobRegistry
    scheduler: JobScheduler

    # Loop that owns the scheduler once it runs in the background thread.
    loop: asyncio.AbstractEventLoop | None = None

    def run_sync(self, coro: Coroutine[Any, Any, T], timeout: float = 10.0) -> T:
        """Run a coroutine from a synchronous caller (console commands)."""
        loop = self.loop
        if loop is not None and loop.is_running():
            return asyncio.run_coroutine_threadsafe(coro, loop).result(timeout=timeout)
        return asyncio.run(coro)
