# src/jobflow/jobs/mailbox_poller.py

from __future__ import annotations

"""
Mailbox poller.

Bridges events written by other processes into jobs exposing poll():
every tick, for each such job, pop one event from the app-scoped mailbox and one
from the wildcard mailbox, and hand each to poll().

Jobs are visited one after another; throughput is one event per mailbox per tick.
"""

import asyncio
import json
import logging
from typing import Any

from ..core.ports import MailboxRepo
from .job_models import JobDefinition, maybe_await
from .job_registry import JobRegistry
from .mailbox_store import WILDCARD_APP, mailbox_key

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 1.0


def unwrap_event(event: Any) -> Any:
    """Events are published as {"data": ...}; anything else is passed through as is."""
    if isinstance(event, dict) and "data" in event:
        return event["data"]
    return event


class MailboxPoller:
    def __init__(
        self,
        registry: JobRegistry,
        mailbox: MailboxRepo,
        *,
        app_name: str,
        interval_seconds: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._registry = registry
        self._mailbox = mailbox
        self._app_name = app_name
        self._interval = max(0.01, float(interval_seconds))
        self._task: asyncio.Task[None] | None = None
        self._passes = 0

    @property
    def passes(self) -> int:
        return self._passes

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self.run_forever(), name="mailbox-poller")
        logger.info(
            "Mailbox poller started app=%s jobs=%s",
            self._app_name,
            [d.name for d in self._registry.pollable()],
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_forever(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)

    async def poll_once(self) -> int:
        """One pass over every pollable job. Returns the number of events dispatched."""
        self._passes += 1
        dispatched = 0
        for definition in self._registry.pollable():
            for app_name in (self._app_name, WILDCARD_APP):
                try:
                    if await self._dispatch_one(app_name, definition):
                        dispatched += 1
                except Exception:
                    logger.exception(
                        "Queue processing error job=%s app=%s", definition.name, app_name
                    )
        return dispatched

    async def _dispatch_one(self, app_name: str, definition: JobDefinition) -> bool:
        poll = definition.poll
        if poll is None:
            return False

        name = mailbox_key(app_name, definition.name)
        message = self._mailbox.pop(name)
        if message is None:
            return False

        event = json.loads(message)
        logger.debug("Processing event from %s", name)
        await maybe_await(poll(unwrap_event(event), {}))
        return True
