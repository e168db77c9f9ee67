# src/cafe_portal/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import cast

from .. import api
from ..core.errors import PortalError
from ..core.ports import EventSink
from ..core.state import AppState
from ..notify.fanout import Subscription
from ..notify.webhook import WebhookSink
from ..sessions.auth import request_otp, verify_otp
from ..tasks.task_models import Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class CommandContext:
    """Per-console login state. `sink` receives events once logged in."""

    token: str | None = None
    username: str | None = None
    sink: EventSink | None = None
    subscription: Subscription | None = None


CommandEmitter = Callable[[str], None]
CommandHandler3 = Callable[[AppState, list[str], CommandContext], str]
CommandHandler4 = Callable[[AppState, list[str], CommandContext, CommandEmitter | None], str]
CommandHandler = CommandHandler3 | CommandHandler4


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /claim, ...)."""

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
        ctx: CommandContext,
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
            nparams = 4

        try:
            if nparams >= 4:
                h4 = cast(CommandHandler4, handler)
                return h4(state, args, ctx, emit)
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, ctx)
        except PortalError as e:
            logger.debug("/%s failed: %s", name, e.to_dict())
            return f"Error ({e.code}): {e.message}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _need_login(ctx: CommandContext) -> str:
    if not ctx.token:
        raise PortalError("not logged in; use /login <username> then /verify <username> <otp>")
    return ctx.token


def _fmt_task(t: Task) -> str:
    who = f" -> {t.assignee_id}" if t.assignee_id else ""
    svc = f" [{t.service_name}]" if t.service_name else ""
    return f"{t.id} ({t.status}, {t.priority}) {t.title}{svc} price={t.price:g}{who}"


def cmd_help(state: AppState, args: list[str], ctx: CommandContext) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], ctx: CommandContext) -> str:
    stats = state.fanout.stats
    who = f"{ctx.username}" if ctx.username else "(not logged in)"
    return (
        "Status:\n"
        f"  App: {getattr(state.settings, 'app_name', 'cafe-portal')}\n"
        f"  Logged in as: {who}\n"
        f"  Tasks: {state.tasks.count_tasks()}  Transactions: {state.ledger.count_transactions()}"
        f"  Sessions: {state.sessions.count_sessions()}\n"
        f"  Background loop: {'running' if state.loop.running else 'stopped'}\n"
        f"  Subscriptions: {len(state.fanout.subscriptions())}  "
        f"published={stats.published} delivered={stats.delivered} failed={stats.failed} "
        f"timed_out={stats.timed_out} dropped={stats.dropped}"
    )


def cmd_login(state: AppState, args: list[str], ctx: CommandContext) -> str:
    """/login <username> -> issue an OTP (dev mode prints it to the log)."""
    if not args:
        return "Usage: /login <username>"
    code_type = request_otp(state, args[0])
    return f"OTP issued ({code_type}). Use /verify {args[0]} <otp>."


def cmd_verify(
    state: AppState,
    args: list[str],
    ctx: CommandContext,
    emit: CommandEmitter | None = None,
) -> str:
    """/verify <username> <otp> -> start a session and subscribe this console to events."""
    if len(args) < 2:
        return "Usage: /verify <username> <otp>"
    session = verify_otp(state, args[0], args[1])

    if ctx.subscription is not None:
        state.fanout.unsubscribe(ctx.subscription)
        ctx.subscription = None

    ctx.token = session.token
    ctx.username = session.username
    if ctx.sink is not None:
        ctx.subscription = api.subscribe(state, session.token, ctx.sink)

    if emit:
        emit(f"[AUTH] Session valid until {_ts_local(session.expires_at)}")
    return f"Logged in as {session.username} ({session.session_type})."


def cmd_whoami(state: AppState, args: list[str], ctx: CommandContext) -> str:
    session = api.authenticate(state, _need_login(ctx))
    role = f", role={session.role}" if session.role else ""
    return (
        f"{session.username} ({session.session_type}{role}), "
        f"expires {_ts_local(session.expires_at)}"
    )


def cmd_tasks(state: AppState, args: list[str], ctx: CommandContext) -> str:
    """/tasks [status]"""
    status = args[0] if args else None
    tasks = api.list_tasks(state, _need_login(ctx), status=status, limit=50)
    if not tasks:
        return "No tasks."
    return "\n".join(_fmt_task(t) for t in tasks)


def cmd_task(state: AppState, args: list[str], ctx: CommandContext) -> str:
    if not args:
        return "Usage: /task <task_id>"
    t = api.get_task(state, _need_login(ctx), args[0])
    lines = [
        _fmt_task(t),
        f"  description: {t.description or '-'}",
        f"  created: {_ts_local(t.created_at)} by {t.created_by or '-'}",
        f"  assigned: {_ts_local(t.assigned_at)}  started: {_ts_local(t.started_at)}"
        f"  completed: {_ts_local(t.completed_at)}",
    ]
    return "\n".join(lines)


def cmd_create(state: AppState, args: list[str], ctx: CommandContext) -> str:
    """
    /create <svc-id|price> <title...>
    A service id prices the task from the catalog; a number sets the price.
    """
    if len(args) < 2:
        return "Usage: /create <svc-id|price> <title...>"
    head, title = args[0], " ".join(args[1:])
    service_id: str | None = None
    price: float | None = None
    if head.lower().startswith("svc-"):
        service_id = head.lower()
    else:
        try:
            price = float(head)
        except ValueError:
            return "First argument must be a service id (svc-N) or a price."
    t = api.create_task(state, _need_login(ctx), title=title, service_id=service_id, price=price)
    return f"Created {_fmt_task(t)}"


def cmd_claim(state: AppState, args: list[str], ctx: CommandContext) -> str:
    if not args:
        return "Usage: /claim <task_id> [hostname]"
    hostname = args[1] if len(args) > 1 else None
    t = api.claim_task(state, _need_login(ctx), args[0], hostname=hostname)
    return f"Claimed {_fmt_task(t)}"


def cmd_assign(state: AppState, args: list[str], ctx: CommandContext) -> str:
    if len(args) < 2:
        return "Usage: /assign <task_id> <username>"
    t = api.assign_task(state, _need_login(ctx), args[0], args[1])
    return f"Assigned {_fmt_task(t)}"


def cmd_start(state: AppState, args: list[str], ctx: CommandContext) -> str:
    if not args:
        return "Usage: /start <task_id>"
    t = api.advance_task(state, _need_login(ctx), args[0], TaskStatus.IN_PROGRESS)
    return f"Started {_fmt_task(t)}"


def cmd_complete(state: AppState, args: list[str], ctx: CommandContext) -> str:
    """/complete <task_id> [usage print_bw print_color]"""
    if not args:
        return "Usage: /complete <task_id> [usage print_bw print_color]"
    breakdown = None
    if len(args) > 1:
        keys = ("usage", "print_bw", "print_color")
        breakdown = dict(zip(keys, args[1:4]))
    t = api.advance_task(
        state, _need_login(ctx), args[0], TaskStatus.COMPLETED, breakdown=breakdown
    )
    return f"Completed {_fmt_task(t)}"


def cmd_cancel(state: AppState, args: list[str], ctx: CommandContext) -> str:
    if not args:
        return "Usage: /cancel <task_id>"
    t = api.cancel_task(state, _need_login(ctx), args[0])
    return f"Cancelled {_fmt_task(t)}"


def cmd_balance(state: AppState, args: list[str], ctx: CommandContext) -> str:
    who = args[0] if args else None
    total = api.balance(state, _need_login(ctx), who)
    return f"Balance for {who or ctx.username}: {total:g}"


def cmd_txns(state: AppState, args: list[str], ctx: CommandContext) -> str:
    who = args[0] if args else None
    txns = api.list_transactions(state, _need_login(ctx), actor_id=who, limit=20)
    if not txns:
        return "No transactions."
    lines = []
    for x in txns:
        ref = x.task_id or x.session_id or "-"
        lines.append(
            f"{_ts_local(x.created_at)} {x.id} {x.kind} {x.amount:g} actor={x.actor_id} ref={ref}"
        )
    return "\n".join(lines)


def cmd_summary(state: AppState, args: list[str], ctx: CommandContext) -> str:
    s = api.transaction_summary(state, _need_login(ctx))
    lines = ["Transactions summary:"]
    for label, p in (("today", s.today), ("week", s.week), ("month", s.month)):
        kinds = ", ".join(f"{k}={v:g}" for k, v in sorted(p.by_kind.items())) or "-"
        lines.append(f"  {label}: count={p.count} total={p.total:g} ({kinds})")
    return "\n".join(lines)


def cmd_services(state: AppState, args: list[str], ctx: CommandContext) -> str:
    lines = ["Services:"]
    for s in state.catalog.list_active():
        lines.append(f"  {s.id}: {s.name} ({s.category}) {s.price:g} {s.unit}")
    return "\n".join(lines)


def cmd_webhook(state: AppState, args: list[str], ctx: CommandContext) -> str:
    """/webhook <url> -> forward this session's events to an HTTP endpoint."""
    if not args:
        return "Usage: /webhook <url>"
    timeout = float(getattr(state.settings, "webhook_timeout_seconds", 5.0))
    sink = WebhookSink(args[0], timeout_seconds=timeout)
    sub = api.subscribe(state, _need_login(ctx), sink)
    return f"Webhook subscribed ({sub.id}) -> {args[0]}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show counts, login and delivery stats.")
registry.register("login", cmd_login, help_text="Request an OTP: /login <username>.")
registry.register("verify", cmd_verify, help_text="Log in with the OTP: /verify <username> <otp>.")
registry.register("whoami", cmd_whoami, help_text="Show the current session.")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [status].")
registry.register("task", cmd_task, help_text="Show one task: /task <id>.")
registry.register("create", cmd_create, help_text="Create a task: /create <svc-id|price> <title>.")
registry.register("claim", cmd_claim, help_text="Claim an available task: /claim <id>.")
registry.register("start", cmd_start, help_text="Mark your task in progress: /start <id>.")
registry.register(
    "complete", cmd_complete, help_text="Complete your task: /complete <id> [usage bw color]."
)
registry.register("cancel", cmd_cancel, help_text="Cancel a task: /cancel <id>.")
registry.register("assign", cmd_assign, help_text="Assign a task (admin): /assign <id> <user>.")
registry.register("balance", cmd_balance, help_text="Ledger balance: /balance [user].")
registry.register("txns", cmd_txns, help_text="Recent transactions: /txns [user].")
registry.register("summary", cmd_summary, help_text="Today/week/month totals (admin).")
registry.register("services", cmd_services, help_text="List the service catalog.")
registry.register("webhook", cmd_webhook, help_text="Forward events to a URL: /webhook <url>.")
