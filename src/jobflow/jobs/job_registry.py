# src/jobflow/jobs/job_registry.py

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable, Iterator
from typing import Any

from ..core.ports import MailboxRepo, QueueRepo
from .job_models import (
    ANONYMOUS_TASK_ENTRY,
    JOB_ENTRY,
    JOB_KEEP_ON_COMPLETE,
    JOB_KEEP_ON_FAIL,
    NAMED_TASK_ENTRY,
    TASK_KEEP_ON_COMPLETE,
    TASK_KEEP_ON_FAIL,
    JobDefinition,
    Retention,
)

logger = logging.getLogger(__name__)


class JobRegistry:
    """
    The set of jobs known to this process.

    Built once at startup from explicit definitions and passed to the scheduler;
    read-only afterwards.
    """

    def __init__(self, definitions: Iterable[JobDefinition]) -> None:
        jobs: dict[str, JobDefinition] = {}
        for definition in definitions:
            if definition.name in jobs:
                raise ValueError(f"duplicate job name: {definition.name}")
            jobs[definition.name] = definition
        self._jobs = jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self._jobs.values())

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def get(self, name: str) -> JobDefinition:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"unknown job: {name}") from None

    def names(self) -> list[str]:
        return list(self._jobs)

    def pollable(self) -> list[JobDefinition]:
        return [d for d in self._jobs.values() if d.poll is not None]


class JobHandle:
    """
    Submission API for one job: start() feeds the job queue, task() the task queue.

    Store failures are not caught here; they surface to the caller.
    """

    def __init__(self, definition: JobDefinition, queues: QueueRepo, mailbox: MailboxRepo) -> None:
        self.definition = definition
        self._queues = queues
        self._mailbox = mailbox

    @property
    def name(self) -> str:
        return self.definition.name

    async def start(
        self,
        data: Any = None,
        *,
        job_id: str | None = None,
        delay_ms: int = 0,
        remove_on_complete: Retention | None = None,
        remove_on_fail: Retention | None = None,
    ) -> str:
        entry_id = job_id or uuid.uuid4().hex
        self._queues.add(
            self.definition.job_queue,
            entry_id,
            JOB_ENTRY,
            data,
            delay_ms=delay_ms,
            remove_on_complete=remove_on_complete or JOB_KEEP_ON_COMPLETE,
            remove_on_fail=remove_on_fail or JOB_KEEP_ON_FAIL,
        )
        return entry_id

    async def task(
        self,
        data: Any = None,
        *,
        queue_name: str | None = None,
        delay_ms: int = 0,
        remove_on_complete: Retention | None = None,
        remove_on_fail: Retention | None = None,
    ) -> str:
        """
        Named mode (queue_name set):
          the payload goes to the mailbox, the queue only gets a trigger whose id is
          the queue name. A second trigger for a name already queued is deduplicated;
          the appended payload is picked up by the next drain.

        Anonymous mode:
          a fresh entry carrying the payload itself.
        """
        if queue_name:
            if data is not None:
                self._mailbox.push(queue_name, json.dumps(data, ensure_ascii=False))
            self._queues.add(
                self.definition.task_queue,
                queue_name,
                NAMED_TASK_ENTRY,
                {"queue_name": queue_name},
                delay_ms=delay_ms,
                remove_on_complete=remove_on_complete or Retention.drop(),
                remove_on_fail=remove_on_fail or Retention.drop(),
            )
            return queue_name

        entry_id = uuid.uuid4().hex
        self._queues.add(
            self.definition.task_queue,
            entry_id,
            ANONYMOUS_TASK_ENTRY,
            data,
            delay_ms=delay_ms,
            remove_on_complete=remove_on_complete or TASK_KEEP_ON_COMPLETE,
            remove_on_fail=remove_on_fail or TASK_KEEP_ON_FAIL,
        )
        return entry_id

    def pending_tasks(self) -> int:
        return self._queues.count(self.definition.task_queue)
