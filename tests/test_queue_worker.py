# tests/test_queue_worker.py

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from jobflow.jobs.job_models import EntryState, QueueEntry, Retention
from jobflow.jobs.queue_store import SqliteQueueStore
from jobflow.jobs.queue_worker import QueueWorker

from .fakes import FakeClock

KEEP = Retention.keep(count=100)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _add(queues: SqliteQueueStore, entry_id: str) -> None:
    queues.add("q", entry_id, "execute", {"id": entry_id}, remove_on_complete=KEEP, remove_on_fail=KEEP)


@pytest.mark.asyncio
async def test_handler_error_fails_entry_and_pool_keeps_going(queues: SqliteQueueStore) -> None:
    handled: list[str] = []

    async def handler(entry: QueueEntry) -> None:
        if entry.id == "bad":
            raise RuntimeError("boom")
        handled.append(entry.id)

    _add(queues, "bad")
    _add(queues, "good")

    worker = QueueWorker(queues, "q", handler, concurrency=2, poll_interval_seconds=0.01)
    worker.start()
    try:
        await _wait_for(lambda: queues.get_state("q", "good") == EntryState.COMPLETED)
        _add(queues, "later")
        await _wait_for(lambda: queues.get_state("q", "later") == EntryState.COMPLETED)
    finally:
        await worker.stop()

    bad = queues.get_entry("q", "bad")
    assert bad.state == EntryState.FAILED
    assert bad.failed_reason == "RuntimeError: boom"
    assert sorted(handled) == ["good", "later"]


@pytest.mark.asyncio
async def test_inflight_never_exceeds_concurrency(queues: SqliteQueueStore) -> None:
    release = asyncio.Event()
    peak = 0

    async def handler(entry: QueueEntry) -> None:
        nonlocal peak
        peak = max(peak, worker.inflight)
        await release.wait()

    for i in range(5):
        _add(queues, f"e{i}")

    worker = QueueWorker(queues, "q", handler, concurrency=2, poll_interval_seconds=0.01)
    worker.start()
    try:
        await _wait_for(lambda: worker.inflight == 2)
        # A few more claim ticks must not start anything else.
        await asyncio.sleep(0.05)
        assert worker.inflight == 2
        assert worker.fill_slots() == 0
        assert queues.count("q") == 3

        release.set()
        await _wait_for(lambda: queues.counts("q")["completed"] == 5)
    finally:
        await worker.stop()

    assert peak <= 2


@pytest.mark.asyncio
async def test_lease_is_renewed_while_handler_runs(queues: SqliteQueueStore, clock: FakeClock) -> None:
    release = asyncio.Event()

    async def handler(entry: QueueEntry) -> None:
        await release.wait()

    _add(queues, "slow")
    # Renewal runs every lease_seconds / 2 (0.5s of real time).
    worker = QueueWorker(queues, "q", handler, concurrency=1, poll_interval_seconds=0.01, lease_seconds=1.0)
    worker.start()
    try:
        await _wait_for(lambda: worker.inflight == 1)
        clock.advance(0.9)
        await asyncio.sleep(0.7)
        # Past the original lease; only the renewal keeps the entry owned.
        clock.advance(0.9)
        assert queues.claim_next("q", lease_seconds=1.0) is None
        assert queues.get_entry("q", "slow").attempts == 1

        release.set()
        await _wait_for(lambda: queues.get_state("q", "slow") == EntryState.COMPLETED)
    finally:
        release.set()
        await worker.stop()


@pytest.mark.asyncio
async def test_stop_waits_for_inflight_handlers(queues: SqliteQueueStore) -> None:
    started = asyncio.Event()

    async def handler(entry: QueueEntry) -> None:
        started.set()
        await asyncio.sleep(0.05)

    _add(queues, "a")
    worker = QueueWorker(queues, "q", handler, poll_interval_seconds=0.01)
    worker.start()
    await asyncio.wait_for(started.wait(), timeout=5.0)
    await worker.stop()

    assert worker.inflight == 0
    assert queues.get_state("q", "a") == EntryState.COMPLETED
