"""Sessions command - Inspect chat sessions."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from turnstream.application.agent_state_reconciler import AGENT_STATE_KEY
from turnstream.application.factory import TurnFactory

app = typer.Typer(help="Session management")
console = Console()


@app.command("list")
def list_sessions(
    ctx: typer.Context,
    all_users: bool = typer.Option(False, "--all", help="List sessions of every user"),
):
    """List chat sessions, newest first."""
    global_opts = ctx.obj or {}

    async def _list_sessions():
        factory = TurnFactory(config_path=global_opts.get("config"))
        user_id = None if all_users else global_opts.get("user_id", "local-user")
        sessions = await factory.session_store().list_sessions(user_id)

        table = Table(title="Chat Sessions")
        table.add_column("Session ID", style="cyan")
        table.add_column("User", style="white")
        table.add_column("Context", style="magenta")
        table.add_column("Messages", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Updated", style="dim")

        for session in sessions:
            context = session.context_type.value
            if session.entity_id:
                context = f"{context}:{session.entity_id}"
            table.add_row(
                session.id,
                session.user_id,
                context,
                str(session.message_count),
                str(session.total_tokens),
                session.updated_at,
            )

        console.print(table)

    asyncio.run(_list_sessions())


@app.command("show")
def show_session(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session ID"),
    messages: int = typer.Option(10, "--messages", "-m", help="Recent messages to show"),
):
    """Show session details, agent state and recent messages."""
    global_opts = ctx.obj or {}

    async def _show_session():
        factory = TurnFactory(config_path=global_opts.get("config"))
        store = factory.session_store()
        session = await store.get_session(session_id)

        if not session:
            console.print(f"[red]Session '{session_id}' not found[/red]")
            raise typer.Exit(1)

        console.print(f"\n[bold]Session:[/bold] {session.id}")
        console.print(f"[bold]User:[/bold] {session.user_id}")
        console.print(f"[bold]Context:[/bold] {session.context_type.value} {session.entity_id or ''}")
        console.print(f"[bold]Messages:[/bold] {session.message_count}")

        agent_state = session.agent_metadata.get(AGENT_STATE_KEY)
        if agent_state:
            console.print("\n[bold]Agent state:[/bold]")
            console.print_json(data=agent_state)

        for message in await store.load_recent_messages(session_id, limit=messages):
            style = "green" if message.role.value == "user" else "blue"
            console.print(f"[{style}]{message.role.value}:[/{style}] {message.content}")

    asyncio.run(_show_session())
