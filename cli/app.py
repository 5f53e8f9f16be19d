from __future__ import annotations

import typer
from dotenv import load_dotenv

from .common import configure_logging
from .subapps.series import series_app
from .subapps.ui import ui_app

app = typer.Typer(help="Trend cache command line interface")
app.add_typer(series_app, name="series")
app.add_typer(ui_app, name="ui")


@app.callback()
def main() -> None:
    load_dotenv()
    configure_logging("cli")


if __name__ == "__main__":
    app()
