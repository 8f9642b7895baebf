# tests/test_job_models.py

from __future__ import annotations

import pytest

from jobflow.jobs.job_models import (
    DelayedEntrySnapshot,
    JobDefinition,
    QueueTask,
    Retention,
    TaskCollector,
    is_blank_task,
    merge_tasks,
)
from jobflow.jobs.job_registry import JobRegistry

from .fakes import RecordingJob


def test_definition_queue_names_and_threshold() -> None:
    d = JobDefinition(name="sendCampaign", concurrency=4)
    assert d.job_queue == "jobs-sendCampaign"
    assert d.task_queue == "jobs-sendCampaign-tasks"
    assert d.task_threshold == 8
    assert d.retry_delay_ms == 5000


def test_definition_defaults() -> None:
    d = JobDefinition(name="x")
    assert d.concurrency == 5
    assert d.task_threshold == 10


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": ""},
        {"name": "   "},
        {"name": "x", "concurrency": 0},
        {"name": "x", "retry_delay_ms": -1},
    ],
)
def test_definition_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ValueError):
        JobDefinition(**kwargs)


def test_from_object_picks_up_capabilities() -> None:
    class OnlyExecute:
        run = None

        def execute(self, payload, meta):
            return None

    d = JobDefinition.from_object(OnlyExecute(), name="only")
    assert d.run is None
    assert d.execute is not None
    assert d.poll is None

    full = JobDefinition.from_object(RecordingJob(), name="full", concurrency=2)
    assert full.run is not None and full.execute is not None and full.poll is not None
    assert full.concurrency == 2


def test_blank_tasks_are_filtered_but_empty_containers_kept() -> None:
    assert is_blank_task(None)
    assert is_blank_task(False)
    assert is_blank_task(0)
    assert is_blank_task("")
    assert not is_blank_task({})
    assert not is_blank_task([])
    assert not is_blank_task(QueueTask("user-1"))

    collector = TaskCollector()
    collector.task({"a": 1}, None)
    assert merge_tasks(collector.tasks, [{"b": 2}, 0, {}]) == [{"a": 1}, {"b": 2}, {}]
    assert merge_tasks([], {"single": True}) == [{"single": True}]
    assert merge_tasks([], None) == []


def test_remaining_delay_never_negative() -> None:
    snap = DelayedEntrySnapshot(id="a", name="read", data=None, timestamp=100.0, delay_ms=5000)
    assert snap.remaining_delay_ms(101.0) == 4000
    assert snap.remaining_delay_ms(200.0) == 0


def test_retention_from_missing_policy_drops() -> None:
    assert Retention.from_dict(None).remove is True
    kept = Retention.from_dict(Retention.keep(age_seconds=60, count=3).to_dict())
    assert kept == Retention.keep(age_seconds=60, count=3)


def test_registry_lookup_and_duplicates() -> None:
    a = JobDefinition(name="a", execute=lambda p, m: None)
    b = JobDefinition(name="b", poll=lambda e, m: None)
    registry = JobRegistry([a, b])

    assert len(registry) == 2
    assert "a" in registry
    assert registry.get("b") is b
    assert registry.names() == ["a", "b"]
    assert registry.pollable() == [b]

    with pytest.raises(KeyError):
        registry.get("missing")
    with pytest.raises(ValueError):
        JobRegistry([a, JobDefinition(name="a")])
