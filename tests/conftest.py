# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from jobflow.cli.bootstrap import create_initial_state
from jobflow.core.state import AppState
from jobflow.jobs.job_models import JobDefinition
from jobflow.jobs.mailbox_store import SqliteMailboxStore
from jobflow.jobs.queue_store import SqliteQueueStore

from .fakes import FakeClock, RecordingJob


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def queues(tmp_path: Path, clock: FakeClock) -> SqliteQueueStore:
    """Queue store on a manual clock: delays only elapse when the test advances it."""
    return SqliteQueueStore(tmp_path / "queues.sqlite3", clock=clock)


@pytest.fixture()
def mailbox(tmp_path: Path) -> SqliteMailboxStore:
    return SqliteMailboxStore(tmp_path / "mailboxes.sqlite3")


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the bootstrap helpers.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="test-app",
        log_level="DEBUG",
        jobs_factory="jobflow.jobs.examples:default_jobs",
        poll_interval_seconds=0.01,
        continuation_delay_ms=0,
        worker_poll_interval_seconds=0.01,
        lease_seconds=5.0,
        console_enabled=False,
        data_dir=tmp_path / "data",
        queue_db_path=tmp_path / "data" / "queues.sqlite3",
        mailbox_db_path=tmp_path / "data" / "mailboxes.sqlite3",
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired with a recording job and no background loop.

    NOTE: We keep real SQLite stores here because their correctness is part
    of what we want to test. Console commands fall back to asyncio.run().
    """
    job = RecordingJob(batches=[[{"to": "a"}]])
    definitions = [JobDefinition.from_object(job, name="notify", concurrency=2)]
    return create_initial_state(settings=settings, definitions=definitions)
