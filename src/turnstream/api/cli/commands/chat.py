"""Chat command - Run one chat turn locally and render its events."""

import asyncio
import json

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from turnstream.application.factory import TurnFactory
from turnstream.core.domain.enums import ContextType, StreamEventType
from turnstream.core.domain.models import StreamEvent, TurnRequest

console = Console()


def render_event(event: StreamEvent) -> None:
    """Print one stream event in a human-readable form."""
    data = event.data
    kind = event.event_type

    if kind is StreamEventType.TEXT_DELTA:
        console.print(data.get("content", ""), end="", markup=False, highlight=False)
    elif kind is StreamEventType.SESSION:
        session = data.get("session") or {}
        console.print(f"[dim]session {session.get('id')}[/dim]")
    elif kind is StreamEventType.OPERATION:
        op = data.get("operation") or {}
        console.print(f"[dim]{op.get('action')} {op.get('entity_name')}[/dim]")
    elif kind is StreamEventType.TOOL_CALL:
        function = (data.get("tool_call") or {}).get("function") or {}
        console.print(
            f"\n[yellow]> {function.get('name')}[/yellow] [dim]{escape(str(function.get('arguments')))}[/dim]"
        )
    elif kind is StreamEventType.TOOL_RESULT:
        result = data.get("result") or {}
        mark = "[green]ok[/green]" if result.get("success") else f"[red]{result.get('error')}[/red]"
        console.print(f"[yellow]< {result.get('tool_name')}[/yellow] {mark}")
    elif kind is StreamEventType.CONTEXT_SHIFT:
        shift = data.get("context_shift") or {}
        console.print(
            Panel(
                shift.get("message") or shift.get("new_context", ""),
                title="Context shift",
                border_style="magenta",
            )
        )
    elif kind is StreamEventType.ERROR:
        console.print(f"\n[red]Error:[/red] {data.get('error')}")
    elif kind is StreamEventType.DONE:
        usage = data.get("usage") or {}
        console.print(
            f"\n[dim]done ({data.get('finished_reason')}, "
            f"{usage.get('total_tokens', 0)} tokens)[/dim]"
        )


def chat_turn(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="Message to send"),
    context_type: str = typer.Option(
        ContextType.GLOBAL.value, "--context-type", "-t", help="global, project, daily_brief, ..."
    ),
    entity_id: str | None = typer.Option(None, "--entity-id", "-e", help="Project or brief id"),
    session_id: str | None = typer.Option(None, "--session-id", "-s", help="Continue a session"),
    raw: bool = typer.Option(False, "--json", help="Print raw events as JSON lines"),
):
    """Run one turn and render the event stream."""
    global_opts = ctx.obj or {}

    async def _run():
        factory = TurnFactory(config_path=global_opts.get("config"))
        orchestrator = factory.create_orchestrator()
        request = TurnRequest(
            message=message,
            context_type=ContextType.normalize(context_type),
            entity_id=entity_id,
            session_id=session_id,
        )
        async for event in orchestrator.stream_turn(request, global_opts.get("user_id", "local-user")):
            if raw:
                console.print(json.dumps(event.to_dict(), default=str), markup=False, highlight=False)
            else:
                render_event(event)
        if orchestrator.reconciler is not None:
            await orchestrator.reconciler.drain()

    if not message.strip():
        console.print("[red]Message must not be empty[/red]")
        raise typer.Exit(1)
    asyncio.run(_run())
