# src/jobflow/jobs/recovery.py

from __future__ import annotations

import logging

from ..core.ports import QueueRepo
from .job_models import JobDefinition

logger = logging.getLogger(__name__)


def recover_queue(queues: QueueRepo, queue: str) -> int:
    """
    Re-submit every delayed entry of a queue with its remaining delay.

    Entries keep their id and entry name. A failing entry is logged and skipped.
    Returns the number of entries re-submitted.
    """
    try:
        delayed = queues.get_delayed(queue)
    except Exception:
        logger.exception("Listing delayed entries failed queue=%s", queue)
        return 0

    now_ts = queues.now()
    recovered = 0
    for snap in delayed:
        remaining = snap.remaining_delay_ms(now_ts)
        try:
            queues.add(queue, snap.id, snap.name, snap.data, delay_ms=remaining, replace=True)
        except Exception:
            logger.exception("Re-adding delayed entry failed queue=%s id=%s", queue, snap.id)
            continue
        logger.info("Re-added entry queue=%s id=%s (was delayed: %sms)", queue, snap.id, remaining)
        recovered += 1
    return recovered


def recover_job(queues: QueueRepo, definition: JobDefinition) -> int:
    """Startup-only: re-assert delayed work in both queues of a job."""
    logger.info("Recovering delayed jobs... job=%s", definition.name)
    total = recover_queue(queues, definition.job_queue)
    logger.info("Recovering delayed tasks... job=%s", definition.name)
    total += recover_queue(queues, definition.task_queue)
    return total
