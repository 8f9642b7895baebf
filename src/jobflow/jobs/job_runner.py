# src/jobflow/jobs/job_runner.py

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from .job_models import (
    JobDefinition,
    QueueEntry,
    QueueTask,
    TaskCollector,
    maybe_await,
    merge_tasks,
)
from .job_registry import JobHandle

logger = logging.getLogger(__name__)

CONTINUATION_DELAY_MS = 1000


class RunOutcome(str, Enum):
    CONTINUING = "continuing"
    TERMINATED = "terminated"
    BACKPRESSURED = "backpressured"
    FAILED = "failed"


class JobRunner:
    """
    Drives run() for one job, one entry at a time.

    For each job queue entry:
    - task backlog >= concurrency * 2 -> do not run; come back after retry_delay_ms
    - run() produced tasks            -> push them; come back after the continuation delay
    - run() produced nothing          -> the job instance is finished
    - run() raised                    -> logged; the instance is not rescheduled
    """

    def __init__(
        self,
        handle: JobHandle,
        *,
        continuation_delay_ms: int = CONTINUATION_DELAY_MS,
    ) -> None:
        run = handle.definition.run
        if run is None:
            raise ValueError(f"job {handle.name} has no run capability")
        self._run = run
        self._handle = handle
        self._continuation_delay_ms = max(0, int(continuation_delay_ms))

    @property
    def definition(self) -> JobDefinition:
        return self._handle.definition

    async def handle(self, entry: QueueEntry) -> None:
        await self.run_once(entry)

    async def run_once(self, entry: QueueEntry) -> RunOutcome:
        definition = self.definition
        pending = self._handle.pending_tasks()

        if pending >= definition.task_threshold:
            logger.info(
                "Queue full, delaying job=%s id=%s pending=%s threshold=%s",
                definition.name,
                entry.id,
                pending,
                definition.task_threshold,
            )
            await self._handle.start(entry.data, job_id=entry.id, delay_ms=definition.retry_delay_ms)
            return RunOutcome.BACKPRESSURED

        try:
            tasks = await self._collect(entry.data)
        except Exception:
            # The instance stalls here until someone calls start() for it again.
            logger.exception("run failed job=%s id=%s", definition.name, entry.id)
            return RunOutcome.FAILED

        if not tasks:
            logger.info("No tasks, job finished job=%s id=%s", definition.name, entry.id)
            return RunOutcome.TERMINATED

        logger.info("Pushing tasks job=%s id=%s total=%s", definition.name, entry.id, len(tasks))
        for task in tasks:
            if isinstance(task, QueueTask):
                await self._handle.task(task.data, queue_name=task.queue_name)
            else:
                await self._handle.task(task)

        await self._handle.start(entry.data, job_id=entry.id, delay_ms=self._continuation_delay_ms)
        return RunOutcome.CONTINUING

    async def _collect(self, payload: Any) -> list[Any]:
        collector = TaskCollector()
        returned = await maybe_await(self._run(payload, collector))
        return merge_tasks(collector.tasks, returned)
