# tests/test_mailbox_store.py

from __future__ import annotations

import pytest

from jobflow.jobs.mailbox_store import SqliteMailboxStore, mailbox_key


def test_push_pop_is_fifo_per_name(mailbox: SqliteMailboxStore) -> None:
    assert mailbox.push("user-42", "a") == 1
    assert mailbox.push("user-7", "x") == 1
    assert mailbox.push("user-42", "b") == 2

    assert mailbox.pop("user-42") == "a"
    assert mailbox.pop("user-42") == "b"
    assert mailbox.pop("user-42") is None
    assert mailbox.length("user-7") == 1


def test_peek_then_ack_removes_only_that_item(mailbox: SqliteMailboxStore) -> None:
    mailbox.push("q", "first")
    mailbox.push("q", "second")

    head = mailbox.peek("q")
    assert head is not None
    assert head.payload == "first"
    # Peeking does not consume.
    assert mailbox.length("q") == 2

    assert mailbox.ack("q", head.id) is True
    assert mailbox.ack("q", head.id) is False
    assert mailbox.items("q") == ["second"]


def test_peek_empty_mailbox(mailbox: SqliteMailboxStore) -> None:
    assert mailbox.peek("nothing") is None
    assert mailbox.length("nothing") == 0


def test_clear_and_name_required(mailbox: SqliteMailboxStore) -> None:
    mailbox.push("q", "1")
    mailbox.push("q", "2")
    assert mailbox.clear("q") == 2
    assert mailbox.length("q") == 0

    with pytest.raises(ValueError):
        mailbox.push("", "x")


def test_mailbox_key_format() -> None:
    assert mailbox_key("pushapp", "sendCampaign") == "eq:app:pushapp:topic:sendCampaign"
    assert mailbox_key("*", "sendCampaign") == "eq:app:*:topic:sendCampaign"
