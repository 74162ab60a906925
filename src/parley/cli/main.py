"""Parley CLI for replaying sessions and answering agent questions."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from parley.api.client import AgentApiClient
from parley.config import ParleyConfig, get_config
from parley.conversation.manager import ConversationManager
from parley.conversation.models import Conversation, Message
from parley.conversation.reconstruct import reconstruct_raw
from parley.events.dedup import latest_per_invocation
from parley.events.query import token_stats
from parley.logging import setup_logging
from parley.notifications.registry import NotificationRegistry
from parley.notifications.store import JsonFileStore
from parley.routing.router import QuestionRouter
from parley.transport.client import TransportClient
from parley.transport.models import Question, SessionContext

app = typer.Typer(
    name="parley",
    help="Parley: talk to multi-agent systems and answer their questions",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()


@app.callback()
def _setup(
    ctx: typer.Context,
    log_level: str = typer.Option("", "--log-level", envvar="PARLEY_LOG_LEVEL", help="Override log level"),
) -> None:
    config = get_config()
    setup_logging(
        log_level or config.log_level,
        config.log_format,
        component=f"cli.{ctx.invoked_subcommand}" if ctx.invoked_subcommand else "cli",
    )


def _config_with_url(url: str) -> ParleyConfig:
    config = get_config()
    if url:
        config = config.model_copy(
            update={"transport": config.transport.model_copy(update={"url": url})}
        )
    return config


def _notification_registry(config: ParleyConfig) -> NotificationRegistry:
    registry = NotificationRegistry(
        JsonFileStore(config.notifications.store_path),
        key=config.notifications.storage_key,
    )
    registry.load()
    return registry


def _load_event_file(path: Path) -> tuple[list[Any], str | None]:
    """Read a stored session (``{"id", "events"}``) or a bare event list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        return data, None
    if isinstance(data, dict):
        events = data.get("events")
        session_id = data.get("id") or data.get("sessionId")
        return (events if isinstance(events, list) else []), session_id
    raise ValueError("expected a list of events or an object with an 'events' list")


def _format_time(timestamp: float | None) -> str:
    if not timestamp:
        return ""
    return datetime.fromtimestamp(timestamp).strftime("%H:%M:%S")


def _render_message(msg: Message) -> None:
    if msg.role == "user":
        label = "[bold green]you[/bold green]"
        if msg.is_mcp_message:
            label += " [dim](answer)[/dim]"
        console.print(f"{label} [dim]{_format_time(msg.timestamp)}[/dim]")
        console.print(msg.content)
    elif msg.is_error:
        console.print(f"[red]{msg.content}[/red]")
    elif msg.is_mcp_message:
        console.print(Panel(
            Markdown(msg.content),
            title=f"question {msg.mcp_question_id or ''}".strip(),
            border_style="yellow",
        ))
    else:
        label = "[bold cyan]agent[/bold cyan]"
        if msg.final_agent:
            label += f" [dim]{msg.final_agent}[/dim]"
        if msg.is_fallback:
            label += " [dim](fallback)[/dim]"
        console.print(f"{label} [dim]{_format_time(msg.timestamp)}[/dim]")
        console.print(Markdown(msg.content))
    console.print()


def _render_timeline(conv: Conversation) -> None:
    table = Table(title="Timeline (latest revision per invocation)", border_style="blue")
    table.add_column("Time")
    table.add_column("Author", style="cyan")
    table.add_column("Type")
    table.add_column("Invocation", max_width=14)
    table.add_column("Text", max_width=60)

    for event in latest_per_invocation(conv.events):
        table.add_row(
            _format_time(event.timestamp),
            event.author,
            event.type,
            event.invocation_id,
            event.text.strip().replace("\n", " ")[:60],
        )
    console.print(table)


@app.command()
def replay(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Stored session or event list (JSON)"),
    session_id: str = typer.Option("", "--session", "-s", help="Session id used as default invocation"),
    timeline: bool = typer.Option(False, "--timeline", "-t", help="Show the deduplicated event timeline"),
    stats: bool = typer.Option(False, "--stats", help="Show token usage"),
    raw: bool = typer.Option(False, "--raw", help="Output the reconstructed conversation as JSON"),
) -> None:
    """Rebuild a conversation from a stored event log and print it."""
    try:
        raw_events, stored_id = _load_event_file(file)
    except ValueError as e:
        console.print(f"[red]Error:[/red] cannot read {file}: {e}")
        raise typer.Exit(1)

    conv = reconstruct_raw(raw_events, session_id or stored_id or file.stem)

    if raw:
        console.print_json(json.dumps(conv.to_dict()))
        return

    console.print(f"[bold]Session[/bold] {conv.session_id}  [dim]{len(conv.events)} events[/dim]")
    console.print()
    if not conv.messages:
        console.print("[dim]No messages.[/dim]")
    for msg in conv.messages:
        _render_message(msg)

    if timeline:
        _render_timeline(conv)

    if stats:
        usage = token_stats(latest_per_invocation(conv.events))
        table = Table(title="Token usage", show_header=False, border_style="blue")
        table.add_column("Key", style="bold")
        table.add_column("Value", justify="right")
        table.add_row("Total", str(usage.total_tokens))
        table.add_row("Prompt", str(usage.prompt_tokens))
        table.add_row("Candidates", str(usage.candidate_tokens))
        table.add_row("Events with usage", str(usage.event_count))
        console.print(table)


async def _listen(config: ParleyConfig, duration: float) -> None:
    transport = TransportClient(config.transport)
    notifications = _notification_registry(config)

    def _on_question(question: Question) -> None:
        context = question.session_context
        notifications.add(
            question,
            agent_name=context.agent_name if context else None,
            conversation_id=context.session_id if context else None,
        )
        target = f"{context.agent_name}/{context.session_id}" if context else "unknown session"
        console.print(f"[yellow]?[/yellow] [bold]{question.id}[/bold] [dim]{target}[/dim]")
        console.print(f"  {question.question}")

    transport.add_listener("question", _on_question)
    transport.add_listener("connected", lambda _: console.print("[green]✓[/green] connected"))
    transport.add_listener("disconnected", lambda data: console.print(f"[dim]disconnected: {data.get('reason')}[/dim]"))

    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration > 0 else None
    await transport.connect()
    try:
        while deadline is None or loop.time() < deadline:
            await asyncio.sleep(0.5)
            if transport.state == "disconnected" and not transport.reconnect_pending:
                console.print("[red]✗[/red] connection lost, giving up")
                break
    finally:
        await transport.disconnect()


@app.command()
def listen(
    url: str = typer.Option("", "--url", "-u", help="Question server endpoint"),
    duration: float = typer.Option(0.0, "--duration", "-d", help="Stop after N seconds (0 = until interrupted)"),
) -> None:
    """Connect to the question server and record incoming questions."""
    config = _config_with_url(url)
    console.print(f"[bold cyan]Listening[/bold cyan] on {config.transport.url}  [dim](Ctrl-C to stop)[/dim]")
    try:
        asyncio.run(_listen(config, duration))
    except KeyboardInterrupt:
        console.print("\n[dim]bye[/dim]")


@app.command()
def notifications(
    action: str = typer.Argument("list", help="Action: list, clear"),
) -> None:
    """List or clear stored question notifications."""
    registry = _notification_registry(get_config())

    if action == "list":
        items = registry.notifications
        if not items:
            console.print("[dim]No notifications.[/dim]")
            return

        table = Table(title=f"Notifications ({registry.unread_count} unread)", border_style="blue")
        table.add_column("Question", style="cyan")
        table.add_column("Status")
        table.add_column("Agent")
        table.add_column("Session")
        table.add_column("Text", max_width=60)
        for n in items:
            style = "green" if n.status == "answered" else "yellow"
            table.add_row(
                n.question_id,
                f"[{style}]{n.status}[/{style}]",
                n.agent_name or "",
                n.conversation_id or "",
                n.question,
            )
        console.print()
        console.print(table)
        console.print()

    elif action == "clear":
        registry.clear()
        console.print("[green]✓[/green] Cleared notifications")

    else:
        console.print("[red]Unknown action. Use: list, clear[/red]")
        raise typer.Exit(1)


async def _answer(config: ParleyConfig, question_id: str, text: str) -> bool:
    registry = _notification_registry(config)
    notification = registry.get_by_question_id(question_id)
    context = None
    if notification and notification.agent_name and notification.conversation_id:
        context = SessionContext(
            agent_name=notification.agent_name,
            session_id=notification.conversation_id,
        )

    transport = TransportClient(config.transport)
    await transport.connect()
    try:
        if not transport.is_connected:
            return False
        sent = await transport.send_answer(question_id, text, context)
    finally:
        await transport.disconnect()

    if sent:
        registry.mark_answered(question_id)
    return sent


@app.command()
def answer(
    question_id: str = typer.Argument(..., help="Question id (see `parley notifications`)"),
    text: str = typer.Argument(..., help="Answer text"),
    url: str = typer.Option("", "--url", "-u", help="Question server endpoint"),
) -> None:
    """Send an answer to a pending agent question."""
    config = _config_with_url(url)
    if not asyncio.run(_answer(config, question_id, text)):
        console.print(f"[red]✗[/red] Could not reach the question server at {config.transport.url}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Answered {question_id}")


async def _dispatch_line(
    line: str,
    manager: ConversationManager,
    router: QuestionRouter,
    sends: set[asyncio.Task[Any]],
    on_done: Callable[[asyncio.Task[Any]], None] | None = None,
) -> bool:
    """Handle one line of chat input. Returns False when the user quits.

    Messages are sent in the background so ``/answer`` stays usable while an
    agent is blocked on a question inside its run.
    """
    if line.lower() in {"/exit", "/quit"}:
        return False

    if line.startswith("/answer "):
        if not await router.submit_answer(line[len("/answer "):].strip()):
            console.print("[red]No pending question, or the question server is unreachable.[/red]")
        return True

    current = manager.current_conversation
    if current is not None and manager.is_sending(manager.current_agent or "", current.session_id):
        console.print("[yellow]Still waiting for the agent. Use /answer <text> to reply to its question.[/yellow]")
        return True

    task = asyncio.create_task(manager.send_message(line), name="parley-chat-send")
    sends.add(task)
    task.add_done_callback(sends.discard)
    if on_done is not None:
        task.add_done_callback(on_done)
    return True


async def _chat(config: ParleyConfig, agent: str, session_id: str) -> None:
    transport = TransportClient(config.transport)
    api = AgentApiClient(config.api)
    notifications = _notification_registry(config)
    manager = ConversationManager(
        send_to_agent=api.send_message_to_agent,
        session_context=transport.session_context,
        user_id=config.user_id,
    )
    router = QuestionRouter(transport, notifications, manager)
    router.attach()

    conv = manager.start_conversation(agent, session_id or None)
    shown: set[tuple[str, str, float | None]] = set()
    sends: set[asyncio.Task[Any]] = set()

    def _show_new() -> None:
        current = manager.current_conversation
        if current is None:
            return
        for msg in current.messages:
            key = (msg.role, msg.content, msg.timestamp)
            if key in shown:
                continue
            shown.add(key)
            if msg.role != "user" or msg.is_mcp_message:
                _render_message(msg)

    def _on_question(question: Question) -> None:
        context = question.session_context
        if context is None or context.agent_name != agent:
            target = context.agent_name if context else "unknown agent"
            console.print(f"[yellow]![/yellow] question from {target}: {question.question}")
        _show_new()
        console.print("[dim]answer with /answer <text>[/dim]")

    def _on_send_done(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            console.print(f"[red]Send failed:[/red] {task.exception()}")
        _show_new()

    transport.add_listener("question", _on_question)

    await transport.connect()
    console.print(
        f"[bold cyan]Chatting with {agent}[/bold cyan] [dim]{conv.session_id}[/dim]  "
        "[dim](type /exit to quit)[/dim]"
    )
    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold green]you[/bold green]> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                _show_new()
                continue
            if not await _dispatch_line(line, manager, router, sends, _on_send_done):
                break
            _show_new()
    finally:
        for task in list(sends):
            task.cancel()
        await asyncio.gather(*sends, return_exceptions=True)
        router.detach()
        await transport.disconnect()
        await api.close()


@app.command()
def chat(
    agent: str = typer.Argument(..., help="Agent (app) name"),
    session_id: str = typer.Option("", "--session", "-s", help="Use this session id"),
    url: str = typer.Option("", "--url", "-u", help="Question server endpoint"),
) -> None:
    """Interactive chat with an agent, with question routing."""
    config = _config_with_url(url)
    try:
        asyncio.run(_chat(config, agent, session_id))
    except KeyboardInterrupt:
        pass
    console.print("[dim]bye[/dim]")


@app.command()
def version() -> None:
    """Show Parley version."""
    from parley import __version__
    console.print(f"parley v{__version__}")


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
