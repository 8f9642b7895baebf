# src/jobflow/jobs/task_executor.py

from __future__ import annotations

import json
import logging
from enum import Enum

from ..core.ports import MailboxRepo
from .job_models import JobDefinition, QueueEntry, maybe_await
from .job_registry import JobHandle

logger = logging.getLogger(__name__)


class ExecOutcome(str, Enum):
    EXECUTED = "executed"
    EMPTY = "empty"
    DROPPED = "dropped"
    FAILED = "failed"


class TaskExecutor:
    """
    Drives execute() for one job's task queue.

    Named triggers drain one mailbox item per lease:
    - the head is only acknowledged after execute() returned, so a failure keeps it
      at the head for the next drain (at-least-once),
    - after an item is handled, a continuation trigger for the same name is submitted.
      The trigger is still leased at that point, so the queue re-arms it when the
      lease is released instead of starting a second drain next to this one.
    """

    def __init__(self, handle: JobHandle, mailbox: MailboxRepo) -> None:
        execute = handle.definition.execute
        if execute is None:
            raise ValueError(f"job {handle.name} has no execute capability")
        self._execute = execute
        self._handle = handle
        self._mailbox = mailbox

    @property
    def definition(self) -> JobDefinition:
        return self._handle.definition

    async def handle(self, entry: QueueEntry) -> None:
        if entry.is_named_task:
            await self.drain_one(entry.id)
        else:
            await self.execute_one(entry)

    async def execute_one(self, entry: QueueEntry) -> ExecOutcome:
        """
        Run execute() for an anonymous task.

        Errors propagate so the worker fails the entry and its failure retention applies.
        """
        await maybe_await(self._execute(entry.data, {"id": entry.id}))
        return ExecOutcome.EXECUTED

    async def drain_one(self, queue_name: str) -> ExecOutcome:
        item = self._mailbox.peek(queue_name)
        if item is None:
            # The trigger raced with (or outlived) the appends; nothing to do.
            logger.debug("Mailbox empty job=%s queue=%s", self.definition.name, queue_name)
            return ExecOutcome.EMPTY

        try:
            payload = json.loads(item.payload)
        except ValueError:
            logger.error(
                "Dropping undecodable mailbox item job=%s queue=%s item=%s",
                self.definition.name,
                queue_name,
                item.id,
            )
            self._mailbox.ack(queue_name, item.id)
            await self._handle.task(None, queue_name=queue_name)
            return ExecOutcome.DROPPED

        try:
            await maybe_await(self._execute(payload, {"id": queue_name, "queue": queue_name}))
        except Exception:
            logger.exception(
                "execute failed job=%s queue=%s item=%s", self.definition.name, queue_name, item.id
            )
            return ExecOutcome.FAILED

        if not self._mailbox.ack(queue_name, item.id):
            logger.warning("Mailbox item already gone queue=%s item=%s", queue_name, item.id)
        await self._handle.task(None, queue_name=queue_name)
        return ExecOutcome.EXECUTED
