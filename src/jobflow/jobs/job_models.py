# src/jobflow/jobs/job_models.py

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

DEFAULT_CONCURRENCY = 5
DEFAULT_RETRY_DELAY_MS = 5000

# Entry names inside the queues.
JOB_ENTRY = "read"
NAMED_TASK_ENTRY = "queueTask"
ANONYMOUS_TASK_ENTRY = "execute"

RunFn = Callable[[Any, "TaskCollector"], Any]
ExecuteFn = Callable[[Any, dict[str, Any]], Any]
PollFn = Callable[[Any, dict[str, Any]], Any]


class EntryState(StrEnum):
    """
    Lifecycle of a queue entry.

    DELAYED is never stored: it is a WAITING entry whose available_at is in the future.
    """

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> EntryState:
        if not raw:
            return cls.WAITING
        try:
            return cls(raw)
        except ValueError:
            return cls.WAITING


@dataclass(slots=True, frozen=True)
class Retention:
    """What happens to an entry row once it completes or fails."""

    remove: bool = False
    age_seconds: float | None = None
    count: int | None = None

    @classmethod
    def drop(cls) -> Retention:
        return cls(remove=True)

    @classmethod
    def keep(cls, *, age_seconds: float | None = None, count: int | None = None) -> Retention:
        return cls(remove=False, age_seconds=age_seconds, count=count)

    def to_dict(self) -> dict[str, Any]:
        return {"remove": self.remove, "age_seconds": self.age_seconds, "count": self.count}

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> Retention:
        if not raw:
            return cls.drop()
        return cls(
            remove=bool(raw.get("remove", False)),
            age_seconds=raw.get("age_seconds"),
            count=raw.get("count"),
        )


# Job queue: keep a bounded window of finished entries.
JOB_KEEP_ON_COMPLETE = Retention.keep(age_seconds=3600, count=100)
JOB_KEEP_ON_FAIL = Retention.keep(age_seconds=24 * 3600, count=500)

# Anonymous tasks vanish on success, failures are kept for inspection.
TASK_KEEP_ON_COMPLETE = Retention.drop()
TASK_KEEP_ON_FAIL = Retention.keep(age_seconds=3600, count=1000)


@dataclass(slots=True)
class QueueEntry:
    queue: str
    id: str
    name: str
    data: Any
    state: EntryState
    delay_ms: int
    timestamp: float
    available_at: float
    attempts: int = 0
    finished_at: float | None = None
    failed_reason: str | None = None
    lease_token: str | None = None

    @property
    def is_named_task(self) -> bool:
        return self.name == NAMED_TASK_ENTRY


@dataclass(slots=True, frozen=True)
class DelayedEntrySnapshot:
    id: str
    name: str
    data: Any
    timestamp: float
    delay_ms: int

    def remaining_delay_ms(self, now_ts: float) -> int:
        due_at = self.timestamp + self.delay_ms / 1000.0
        return max(0, int(round((due_at - now_ts) * 1000)))


@dataclass(slots=True, frozen=True)
class MailboxItem:
    id: int
    name: str
    payload: str


@dataclass(slots=True, frozen=True)
class QueueTask:
    """A task produced by run() that must be drained in order through a named mailbox."""

    queue_name: str
    data: Any = None


@dataclass(slots=True)
class TaskCollector:
    """Accumulator handed to run(); its tasks come before the ones run() returns."""

    tasks: list[Any] = field(default_factory=list)

    def task(self, *tasks: Any) -> None:
        self.tasks.extend(tasks)


def is_blank_task(task: Any) -> bool:
    """None, False, 0 and "" are not tasks. Empty dicts/lists are."""
    if task is None:
        return True
    if isinstance(task, (dict, list, tuple, QueueTask)):
        return False
    return not task


def merge_tasks(collected: list[Any], returned: Any) -> list[Any]:
    out = list(collected)
    if returned is None:
        pass
    elif isinstance(returned, (list, tuple)):
        out.extend(returned)
    else:
        out.append(returned)
    return [t for t in out if not is_blank_task(t)]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass(slots=True, frozen=True)
class JobDefinition:
    """
    Declarative description of one job.

    A job exposes up to three capabilities:
    - run(payload, collector): produce tasks,
    - execute(payload, meta): consume one task,
    - poll(event_payload, meta): consume an externally injected event.
    Each may be a plain function or a coroutine function.
    """

    name: str
    run: RunFn | None = None
    execute: ExecuteFn | None = None
    poll: PollFn | None = None
    concurrency: int = DEFAULT_CONCURRENCY
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("job name is required")
        if int(self.concurrency) < 1:
            raise ValueError(f"job {self.name}: concurrency must be >= 1")
        if int(self.retry_delay_ms) < 0:
            raise ValueError(f"job {self.name}: retry_delay_ms must be >= 0")

    @classmethod
    def from_object(
        cls,
        job: object,
        *,
        name: str,
        concurrency: int = DEFAULT_CONCURRENCY,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    ) -> JobDefinition:
        def _capability(attr: str) -> Callable[..., Any] | None:
            fn = getattr(job, attr, None)
            return fn if callable(fn) else None

        return cls(
            name=name,
            run=_capability("run"),
            execute=_capability("execute"),
            poll=_capability("poll"),
            concurrency=concurrency,
            retry_delay_ms=retry_delay_ms,
        )

    @property
    def job_queue(self) -> str:
        return f"jobs-{self.name}"

    @property
    def task_queue(self) -> str:
        return f"jobs-{self.name}-tasks"

    @property
    def task_threshold(self) -> int:
        """Pending task count at which run() is held back."""
        return self.concurrency * 2


