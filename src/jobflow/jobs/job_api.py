# src/jobflow/jobs/job_api.py

from __future__ import annotations

import json
import logging
from typing import Any

from ..core.ports import MailboxRepo
from .mailbox_store import WILDCARD_APP, mailbox_key
from .scheduler import JobScheduler

logger = logging.getLogger(__name__)


def publish_event(
    mailbox: MailboxRepo,
    topic: str,
    data: Any,
    *,
    app_name: str = WILDCARD_APP,
) -> int:
    """
    Drop an event for the job named `topic` into its event mailbox.

    Meant for code running outside the scheduler (other processes sharing the
    mailbox database). app_name="*" reaches every app running that job.
    Returns the mailbox length after the append.
    """
    name = mailbox_key(app_name, topic)
    length = mailbox.push(name, json.dumps({"data": data}, ensure_ascii=False))
    logger.debug("Event published mailbox=%s length=%s", name, length)
    return length


def pending_summary(scheduler: JobScheduler) -> dict[str, dict[str, dict[str, int]]]:
    """Per job: entry counts by state for the job queue and the task queue."""
    out: dict[str, dict[str, dict[str, int]]] = {}
    for definition in scheduler.registry:
        out[definition.name] = {
            "jobs": scheduler.queues.counts(definition.job_queue),
            "tasks": scheduler.queues.counts(definition.task_queue),
        }
    return out
