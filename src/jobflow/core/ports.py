# src/jobflow/core/ports.py

"""
Ports (interfaces) used by the scheduler.

The scheduler depends on Protocols instead of concrete stores.
This keeps the queue/mailbox backends swappable and makes testing easier.
"""

from __future__ import annotations

from typing import Any, Protocol

from ..jobs.job_models import (
    DelayedEntrySnapshot,
    EntryState,
    MailboxItem,
    QueueEntry,
    Retention,
)


class QueueRepo(Protocol):
    """Durable delay queue with id-based dedupe and consumer leases."""

    def now(self) -> float: ...

    def add(
            self,
            queue: str,
            entry_id: str,
            name: str,
            data: Any = None,
            *,
            delay_ms: int = 0,
            remove_on_complete: Retention | None = None,
            remove_on_fail: Retention | None = None,
            replace: bool = False,
    ) -> bool: ...

    # Consumer API
    def claim_next(self, queue: str, *, lease_seconds: float = 30.0) -> QueueEntry | None: ...
    def extend_lease(self, queue: str, entry_id: str, token: str, lease_seconds: float) -> bool: ...
    def complete(self, queue: str, entry_id: str, token: str) -> bool: ...
    def fail(self, queue: str, entry_id: str, token: str, reason: str | None = None) -> bool: ...

    # Inspection
    def count(self, queue: str) -> int: ...
    def counts(self, queue: str) -> dict[str, int]: ...
    def get_entry(self, queue: str, entry_id: str) -> QueueEntry | None: ...
    def get_state(self, queue: str, entry_id: str) -> EntryState | None: ...
    def get_delayed(self, queue: str) -> list[DelayedEntrySnapshot]: ...
    def remove(self, queue: str, entry_id: str) -> bool: ...


class MailboxRepo(Protocol):
    """Ordered lists of serialized payloads keyed by name."""

    def push(self, name: str, payload: str) -> int: ...
    def pop(self, name: str) -> str | None: ...
    def peek(self, name: str) -> MailboxItem | None: ...
    def ack(self, name: str, item_id: int) -> bool: ...
    def length(self, name: str) -> int: ...
    def items(self, name: str, limit: int = 20) -> list[str]: ...
