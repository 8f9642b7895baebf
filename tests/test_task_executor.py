# tests/test_task_executor.py

from __future__ import annotations

import pytest

from jobflow.jobs.job_models import NAMED_TASK_ENTRY, EntryState, JobDefinition
from jobflow.jobs.job_registry import JobHandle
from jobflow.jobs.queue_worker import QueueWorker
from jobflow.jobs.task_executor import ExecOutcome, TaskExecutor

from .fakes import RecordingJob, drive_one


def _wire(queues, mailbox, job: RecordingJob | None = None):
    job = job or RecordingJob()
    handle = JobHandle(JobDefinition.from_object(job, name="notify", concurrency=3), queues, mailbox)
    return job, handle, TaskExecutor(handle, mailbox)


@pytest.mark.asyncio
async def test_back_to_back_named_tasks_share_one_trigger(queues, mailbox) -> None:
    _, handle, _ = _wire(queues, mailbox)

    await handle.task({"msg": "A"}, queue_name="user-42")
    await handle.task({"msg": "B"}, queue_name="user-42")

    assert mailbox.length("user-42") == 2
    assert handle.pending_tasks() == 1
    trigger = queues.get_entry(handle.definition.task_queue, "user-42")
    assert trigger.name == NAMED_TASK_ENTRY
    assert trigger.data == {"queue_name": "user-42"}


@pytest.mark.asyncio
async def test_drain_executes_in_order_and_rearms_the_trigger(queues, mailbox) -> None:
    job, handle, executor = _wire(queues, mailbox)
    queue = handle.definition.task_queue
    await handle.task({"msg": "A"}, queue_name="user-42")
    await handle.task({"msg": "B"}, queue_name="user-42")

    entry = queues.claim_next(queue)
    assert await executor.drain_one(entry.id) == ExecOutcome.EXECUTED
    assert job.executed == [({"msg": "A"}, {"id": "user-42", "queue": "user-42"})]
    assert mailbox.length("user-42") == 1
    # The continuation is parked on the leased trigger until it is released.
    assert queues.count(queue) == 0
    assert queues.complete(queue, entry.id, entry.lease_token)
    assert queues.get_state(queue, "user-42") == EntryState.WAITING

    await drive_one(queues, queue, executor.handle)
    assert [p for p, _ in job.executed] == [{"msg": "A"}, {"msg": "B"}]
    assert mailbox.length("user-42") == 0
    assert queues.count(queue) == 1

    # Last continuation finds the mailbox empty and the trigger goes away.
    entry = queues.claim_next(queue)
    assert await executor.drain_one(entry.id) == ExecOutcome.EMPTY
    queues.complete(queue, entry.id, entry.lease_token)
    assert queues.get_entry(queue, "user-42") is None


@pytest.mark.asyncio
async def test_append_during_drain_is_not_lost(queues, mailbox) -> None:
    job, handle, executor = _wire(queues, mailbox)
    queue = handle.definition.task_queue
    await handle.task({"n": 1}, queue_name="q")

    entry = queues.claim_next(queue)
    await handle.task({"n": 2}, queue_name="q")
    await executor.handle(entry)
    queues.complete(queue, entry.id, entry.lease_token)

    await drive_one(queues, queue, executor.handle)
    assert [p for p, _ in job.executed] == [{"n": 1}, {"n": 2}]


@pytest.mark.asyncio
async def test_failed_execute_keeps_payload_at_head(queues, mailbox) -> None:
    job, handle, executor = _wire(queues, mailbox, RecordingJob(fail_execute=True))
    queue = handle.definition.task_queue
    await handle.task({"msg": "A"}, queue_name="user-1")

    entry = queues.claim_next(queue)
    assert await executor.drain_one(entry.id) == ExecOutcome.FAILED
    queues.complete(queue, entry.id, entry.lease_token)

    assert mailbox.items("user-1") == ['{"msg": "A"}']
    # No continuation: the next task() for this name retries the head.
    assert queues.get_entry(queue, "user-1") is None

    job.fail_execute = False
    await handle.task({"msg": "B"}, queue_name="user-1")
    await drive_one(queues, queue, executor.handle)
    assert [p for p, _ in job.executed] == [{"msg": "A"}]


@pytest.mark.asyncio
async def test_undecodable_payload_is_dropped(queues, mailbox) -> None:
    job, handle, executor = _wire(queues, mailbox)
    queue = handle.definition.task_queue
    mailbox.push("user-1", "{not json")
    await handle.task(None, queue_name="user-1")

    entry = queues.claim_next(queue)
    assert await executor.drain_one(entry.id) == ExecOutcome.DROPPED
    assert mailbox.length("user-1") == 0
    assert job.executed == []


@pytest.mark.asyncio
async def test_anonymous_task_executes_with_its_id(queues, mailbox) -> None:
    job, handle, executor = _wire(queues, mailbox)
    task_id = await handle.task({"to": "a"})

    entry, _ = await drive_one(queues, handle.definition.task_queue, executor.handle)
    assert entry.id == task_id
    assert job.executed == [({"to": "a"}, {"id": task_id})]
    # Anonymous tasks are removed once done.
    assert queues.get_entry(handle.definition.task_queue, task_id) is None


@pytest.mark.asyncio
async def test_failed_anonymous_task_is_kept_as_failed(queues, mailbox) -> None:
    _, handle, executor = _wire(queues, mailbox, RecordingJob(fail_execute=True))
    queue = handle.definition.task_queue
    task_id = await handle.task({"to": "a"})

    worker = QueueWorker(queues, queue, executor.handle)
    entry = queues.claim_next(queue)
    with pytest.raises(RuntimeError):
        await executor.execute_one(entry)
    await worker.process(entry)

    failed = queues.get_entry(queue, task_id)
    assert failed is not None
    assert failed.state == EntryState.FAILED
    assert failed.failed_reason == "RuntimeError: execute boom"
    assert failed.data == {"to": "a"}


def test_executor_requires_execute(queues, mailbox) -> None:
    handle = JobHandle(JobDefinition(name="x", run=lambda p, c: []), queues, mailbox)
    with pytest.raises(ValueError):
        TaskExecutor(handle, mailbox)
