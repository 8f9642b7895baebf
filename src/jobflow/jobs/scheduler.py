# src/jobflow/jobs/scheduler.py

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..core.ports import MailboxRepo, QueueRepo
from .job_registry import JobHandle, JobRegistry
from .job_runner import CONTINUATION_DELAY_MS, JobRunner
from .mailbox_poller import POLL_INTERVAL_SECONDS, MailboxPoller
from .queue_worker import QueueWorker
from .recovery import recover_job
from .task_executor import TaskExecutor

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SchedulerOptions:
    app_name: str = "jobflow"
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    continuation_delay_ms: int = CONTINUATION_DELAY_MS
    worker_poll_interval_seconds: float = 0.1
    lease_seconds: float = 30.0


class JobScheduler:
    """
    Wires a JobRegistry to the queue and mailbox stores.

    initialize() must run inside the event loop that will own the workers:
    - one job queue worker per job with run() (concurrency 1),
    - one task queue worker per job with execute() (concurrency = job concurrency),
    - startup recovery of delayed entries,
    - the mailbox poller when any job exposes poll().
    """

    def __init__(
        self,
        registry: JobRegistry,
        queues: QueueRepo,
        mailbox: MailboxRepo,
        options: SchedulerOptions | None = None,
    ) -> None:
        self.registry = registry
        self.queues = queues
        self.mailbox = mailbox
        self.options = options or SchedulerOptions()
        self._handles = {d.name: JobHandle(d, queues, mailbox) for d in registry}
        self._workers: list[QueueWorker] = []
        self._poller: MailboxPoller | None = None
        self._initialized = False

    @property
    def workers(self) -> list[QueueWorker]:
        return list(self._workers)

    @property
    def poller(self) -> MailboxPoller | None:
        return self._poller

    def handle(self, name: str) -> JobHandle:
        self.registry.get(name)
        return self._handles[name]

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        opts = self.options

        for definition in self.registry:
            handle = self._handles[definition.name]

            if definition.run is not None:
                runner = JobRunner(handle, continuation_delay_ms=opts.continuation_delay_ms)
                self._start_worker(definition.job_queue, runner.handle, concurrency=1)

            if definition.execute is not None:
                executor = TaskExecutor(handle, self.mailbox)
                self._start_worker(
                    definition.task_queue, executor.handle, concurrency=definition.concurrency
                )

            recovered = recover_job(self.queues, definition)
            if recovered:
                logger.info("Recovered %s delayed entries job=%s", recovered, definition.name)

        if self.registry.pollable():
            self._poller = MailboxPoller(
                self.registry,
                self.mailbox,
                app_name=opts.app_name,
                interval_seconds=opts.poll_interval_seconds,
            )
            self._poller.start()

        logger.info("Scheduler initialized app=%s jobs=%s", opts.app_name, self.registry.names())

    def _start_worker(self, queue: str, handler, *, concurrency: int) -> None:
        worker = QueueWorker(
            self.queues,
            queue,
            handler,
            concurrency=concurrency,
            poll_interval_seconds=self.options.worker_poll_interval_seconds,
            lease_seconds=self.options.lease_seconds,
        )
        worker.start()
        self._workers.append(worker)

    async def shutdown(self) -> None:
        if self._poller is not None:
            await self._poller.stop()
            self._poller = None
        for worker in self._workers:
            await worker.stop()
        self._workers.clear()
        self._initialized = False
        logger.info("Scheduler stopped app=%s", self.options.app_name)
