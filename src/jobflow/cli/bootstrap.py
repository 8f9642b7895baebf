# src/jobflow/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- builds the job registry from the configured factory,
- wires stores and the scheduler into AppState.
"""

from __future__ import annotations

import importlib
import logging

from ..config import get_settings
from ..core.state import AppState
from ..jobs.job_models import JobDefinition
from ..jobs.job_registry import JobRegistry
from ..jobs.mailbox_store import SqliteMailboxStore
from ..jobs.queue_store import SqliteQueueStore
from ..jobs.scheduler import JobScheduler, SchedulerOptions

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.queue_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.mailbox_db_path.parent.mkdir(parents=True, exist_ok=True)


def load_job_definitions(factory_path: str) -> list[JobDefinition]:
    """
    Resolve "package.module:callable" and call it.

    The callable returns the job definitions this process registers.
    """
    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"jobs factory must look like 'module:callable', got {factory_path!r}")

    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"jobs factory {factory_path!r} is not callable")

    definitions = list(factory())
    for d in definitions:
        if not isinstance(d, JobDefinition):
            raise ValueError(f"jobs factory {factory_path!r} returned {type(d).__name__}, expected JobDefinition")
    logger.info("Loaded %d job definitions from %s", len(definitions), factory_path)
    return definitions


def scheduler_options(settings) -> SchedulerOptions:
    return SchedulerOptions(
        app_name=settings.app_name,
        poll_interval_seconds=settings.poll_interval_seconds,
        continuation_delay_ms=settings.continuation_delay_ms,
        worker_poll_interval_seconds=settings.worker_poll_interval_seconds,
        lease_seconds=settings.lease_seconds,
    )


def create_initial_state(*, settings=None, definitions: list[JobDefinition] | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings and definitions injectable makes the app easier to test.
    If settings is None, falls back to get_settings(); if definitions is None,
    the configured jobs factory is used.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if definitions is None:
        definitions = load_job_definitions(settings.jobs_factory)

    registry = JobRegistry(definitions)
    queues = SqliteQueueStore(settings.queue_db_path)
    mailbox = SqliteMailboxStore(settings.mailbox_db_path)
    scheduler = JobScheduler(registry, queues, mailbox, scheduler_options(settings))

    return AppState(
        settings=settings,
        queues=queues,
        mailbox=mailbox,
        registry=registry,
        scheduler=scheduler,
    )
