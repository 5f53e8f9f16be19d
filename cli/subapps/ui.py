from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from ..common import console, fail
from .series import _build_manager

ui_app = typer.Typer(help="Serve the trend read API")


@ui_app.command("start")
def start_ui(
    host: str = typer.Option("127.0.0.1", "--host", "-h"),
    port: int = typer.Option(8090, "--port", "-p"),
    poll: bool = typer.Option(True, "--poll/--no-poll", help="Refresh every series while serving"),
    config: Optional[Path] = typer.Option(None),
) -> None:
    """Start the FastAPI server over the configured series."""
    from trends.errors import TrendError
    from ui.server import start_ui as run_server

    try:
        manager = _build_manager(config)
    except TrendError as exc:
        fail(exc)
    console().print(f"Starting API on http://{host}:{port}/api/series")

    try:
        run_server(host, port, manager=manager, poll=poll)
    except KeyboardInterrupt:
        console().print("Server stopped")
