"""Serve command - Run the HTTP API."""

import typer
import uvicorn


def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Run the FastAPI server."""
    uvicorn.run("turnstream.api.server:app", host=host, port=port, reload=reload)
