# src/cafe_portal/connectors/console_connector.py

from __future__ import annotations

import logging
from datetime import datetime

from ..cli.commands import CommandContext
from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..notify.events import PortalEvent

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def describe_event(event: PortalEvent) -> str:
    p = event.payload
    if "task" in p:
        task = p["task"] or {}
        who = (task.get("assignee") or {}).get("actor_id")
        suffix = f" -> {who}" if who else ""
        return f"[EVENT] {event.kind}: {task.get('id')} {task.get('status')} {task.get('title')!r}{suffix}"
    if "transaction" in p:
        txn = p["transaction"] or {}
        return f"[EVENT] {event.kind}: {txn.get('kind')} {txn.get('amount')} actor={txn.get('actor_id')}"
    return f"[EVENT] {event.kind}"


class ConsoleSink:
    """EventSink that prints events for the logged-in console session."""

    async def deliver(self, event: PortalEvent) -> None:
        _print_ts(describe_event(event))


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands, /login to start a session, /exit to quit.\n")

    ctx = CommandContext(sink=ConsoleSink())

    while True:
        try:
            line = input(">>> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not line:
            continue

        if line.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = command_registry.handle(state, line, ctx, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Not a command. Use /help to list available commands."
        _print_ts(reply)

    if ctx.subscription is not None:
        state.fanout.unsubscribe(ctx.subscription)
    logger.info("Console connector finished.")
