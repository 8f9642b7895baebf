# src/jobflow/jobs/examples.py

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any

from .job_models import JobDefinition, TaskCollector

logger = logging.getLogger(__name__)

BATCH_SIZE = 2


class SendCampaignJob:
    """
    Demo job: sends a campaign to a list of recipients, two per run().

    poll() lets another process add recipients while the campaign is running:
        publish_event(mailbox, "sendCampaign", {"recipients": ["a@x", "b@x"]})
    """

    def __init__(self, recipients: list[str] | None = None, send_delay_seconds: float = 0.0) -> None:
        self._pending: deque[str] = deque(recipients or [])
        self._send_delay = max(0.0, float(send_delay_seconds))
        self.sent: list[dict[str, Any]] = []
        self.events: list[Any] = []

    async def run(self, payload: Any, collector: TaskCollector) -> list[dict[str, Any]]:
        campaign = (payload or {}).get("campaign") if isinstance(payload, dict) else None
        batch: list[dict[str, Any]] = []
        while self._pending and len(batch) < BATCH_SIZE:
            batch.append({"campaign": campaign, "to": self._pending.popleft()})
        logger.debug("sendCampaign run: campaign=%s batch=%s", campaign, len(batch))
        return batch

    async def execute(self, task: Any, meta: dict[str, Any]) -> None:
        if self._send_delay:
            await asyncio.sleep(self._send_delay)
        self.sent.append(task)
        logger.info("sendCampaign sent: to=%s task=%s", (task or {}).get("to"), meta.get("id"))

    async def poll(self, event: Any, meta: dict[str, Any]) -> None:
        self.events.append(event)
        if isinstance(event, dict):
            recipients = [str(r) for r in event.get("recipients") or []]
            self._pending.extend(recipients)
            logger.info("sendCampaign poll: added %s recipients", len(recipients))


def default_jobs() -> list[JobDefinition]:
    job = SendCampaignJob(recipients=[f"user-{i}@example.com" for i in range(1, 5)], send_delay_seconds=0.5)
    return [JobDefinition.from_object(job, name="sendCampaign", concurrency=4)]
