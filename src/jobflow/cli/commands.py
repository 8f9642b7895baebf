# src/jobflow/cli/commands.py

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from typing import Any, cast

from ..core.state import AppState
from ..jobs.job_api import pending_summary, publish_event
from ..jobs.mailbox_store import WILDCARD_APP

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the operator console (/help, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _parse_payload(args: list[str]) -> Any:
    """The rest of the command line as JSON; bare words are taken as a string."""
    raw = " ".join(args).strip()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    summary = pending_summary(state.scheduler)
    app_name = getattr(state.settings, "app_name", "jobflow")
    if not summary:
        return f"Status ({app_name}): no jobs registered."

    lines = [f"Status ({app_name}):"]
    for name, queues in summary.items():
        definition = state.registry.get(name)
        caps = [c for c in ("run", "execute", "poll") if getattr(definition, c) is not None]
        lines.append(f"  {name} [{', '.join(caps)}] concurrency={definition.concurrency}")
        for kind, counts in queues.items():
            shown = ", ".join(f"{k}={v}" for k, v in counts.items() if v)
            lines.append(f"    {kind}: {shown or 'empty'}")
    return "\n".join(lines)


def cmd_start(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /start <job> [json]  -> push a job entry (fresh id)
    """
    if not args:
        return "Usage: /start <job> [json payload]"
    name = args[0]
    if name not in state.registry:
        return f"Unknown job: {name}. Known: {', '.join(state.registry.names()) or '-'}"

    handle = state.scheduler.handle(name)
    entry_id = state.run_sync(handle.start(_parse_payload(args[1:])))
    logger.debug("Job started from console job=%s id=%s", name, entry_id)
    return f"Started {name} (id={entry_id})."


def cmd_task(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /task <job> [json]                -> anonymous task
    /task <job> --queue NAME [json]   -> named task (ordered per NAME)
    """
    if not args:
        return "Usage: /task <job> [--queue NAME] [json payload]"
    name, rest = args[0], args[1:]
    if name not in state.registry:
        return f"Unknown job: {name}. Known: {', '.join(state.registry.names()) or '-'}"

    queue_name: str | None = None
    if len(rest) >= 2 and rest[0] == "--queue":
        queue_name, rest = rest[1], rest[2:]

    handle = state.scheduler.handle(name)
    entry_id = state.run_sync(handle.task(_parse_payload(rest), queue_name=queue_name))
    if queue_name:
        return f"Queued to {queue_name} for {name} (pending in mailbox: {state.mailbox.length(queue_name)})."
    return f"Task added to {name} (id={entry_id})."


def cmd_publish(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /publish <topic> [json]              -> event for every app (wildcard mailbox)
    /publish <topic> --app NAME [json]   -> event for one app
    """
    if not args:
        return "Usage: /publish <topic> [--app NAME] [json payload]"
    topic, rest = args[0], args[1:]
    app_name = WILDCARD_APP
    if len(rest) >= 2 and rest[0] == "--app":
        app_name, rest = rest[1], rest[2:]

    length = publish_event(state.mailbox, topic, _parse_payload(rest), app_name=app_name)
    return f"Event published for {topic} (app={app_name}, pending={length})."


def cmd_mailbox(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /mailbox <name>  -> show the first pending payloads of a mailbox
    """
    if not args:
        return "Usage: /mailbox <name>"
    name = args[0]
    total = state.mailbox.length(name)
    if not total:
        return f"Mailbox {name} is empty."
    lines = [f"Mailbox {name}: {total} pending"]
    for i, payload in enumerate(state.mailbox.items(name, limit=10), start=1):
        lines.append(f"{i}. {payload}")
    if total > 10:
        lines.append(f"... and {total - 10} more")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show jobs and queue counts.")
registry.register("start", cmd_start, help_text="Start a job instance: /start <job> [json].")
registry.register(
    "task", cmd_task, help_text="Add a task: /task <job> [--queue NAME] [json]."
)
registry.register(
    "publish", cmd_publish, help_text="Publish an event: /publish <topic> [--app NAME] [json]."
)
registry.register("mailbox", cmd_mailbox, help_text="Inspect a mailbox: /mailbox <name>.")
