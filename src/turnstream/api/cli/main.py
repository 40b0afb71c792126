"""turnstream CLI entry point."""

import typer
from rich.console import Console

from turnstream.api.cli.commands import chat, serve, sessions

app = typer.Typer(
    name="turnstream",
    help="turnstream - streaming chat turns with tools and agent state",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("chat", help="Run one chat turn and render its events")(chat.chat_turn)
app.command("serve", help="Run the HTTP API with uvicorn")(serve.serve)
app.add_typer(sessions.app, name="sessions", help="Session management")


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(
        None, "--config", "-c", help="Path to turnstream.yaml (overrides TURNSTREAM_CONFIG)"
    ),
    user_id: str = typer.Option("local-user", "--user", "-u", help="Acting user id"),
):
    """turnstream CLI."""
    ctx.obj = {"config": config, "user_id": user_id}


@app.command()
def version():
    """Show turnstream version."""
    from turnstream import __version__

    console.print(f"[bold blue]Version:[/bold blue] [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
