from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from rich.table import Table

from trends.config import ChartType
from trends.core import samples_to_frame
from trends.errors import TrendError
from trends.manager import SeriesManager, build_services
from trends.normalize import format_timestamp
from trends.settings import SeriesDefinition, load_settings

from ..common import console, ensure_dir, fail

series_app = typer.Typer(help="Manage cached trend series")


def _build_manager(config: Optional[Path]) -> SeriesManager:
    settings = load_settings(config)
    manager = SeriesManager(build_services(settings))
    added = manager.seed()
    if added:
        console().print(f"Registered {len(added)} series from settings")
    return manager


def _manager_or_fail(config: Optional[Path]) -> SeriesManager:
    try:
        return _build_manager(config)
    except TrendError as exc:
        fail(exc)


@series_app.command("list")
def list_series(config: Optional[Path] = typer.Option(None, help="Settings file override")) -> None:
    manager = _manager_or_fail(config)
    table = Table(title="Series")
    table.add_column("Key")
    table.add_column("Title")
    table.add_column("Query")
    table.add_column("Interval (s)", justify="right")
    for definition in manager.list_series():
        series_config = manager.load_config(definition.id)
        table.add_row(
            definition.id,
            definition.title,
            series_config.query_name or "-",
            f"{series_config.refresh_interval_ms / 1000:g}",
        )
    console().print(table)


@series_app.command("add")
def add_series(
    title: str = typer.Option(..., "--title"),
    query: str = typer.Option("", "--query", help="Name of the bound query command"),
    series_id: Optional[str] = typer.Option(None, "--id", help="Explicit series key"),
    db_name: str = typer.Option("", "--db"),
    table_name: str = typer.Option("", "--table"),
    field: Optional[str] = typer.Option(None, "--field"),
    interval_ms: Optional[int] = typer.Option(None, "--interval-ms", min=1),
    config: Optional[Path] = typer.Option(None),
) -> None:
    manager = _manager_or_fail(config)
    definition = SeriesDefinition(
        title=title,
        id=series_id,
        db_name=db_name,
        table_name=table_name,
        data_field=field,
        query_name=query,
        refresh_interval_ms=interval_ms,
    )
    try:
        key = manager.add_series(definition)
    except TrendError as exc:
        fail(exc)
    console().print(f"[green]Added[/] series [cyan]{key}[/]")


@series_app.command("remove")
def remove_series(
    key: str = typer.Argument(...),
    config: Optional[Path] = typer.Option(None),
) -> None:
    manager = _manager_or_fail(config)
    try:
        asyncio.run(manager.remove_series(key))
    except TrendError as exc:
        fail(exc)
    console().print(f"Removed series [cyan]{key}[/]")


@series_app.command("show")
def show_series(
    key: str = typer.Argument(...),
    limit: int = typer.Option(20, min=1, help="Rows to print, newest last"),
    out: Optional[Path] = typer.Option(None, help="Export the display window to CSV"),
    config: Optional[Path] = typer.Option(None),
) -> None:
    manager = _manager_or_fail(config)
    try:
        series_config, samples = manager.snapshot(key)
    except TrendError as exc:
        fail(exc)

    console().print(
        f"[bold]{series_config.title}[/] query={series_config.query_name or '-'} "
        f"window={series_config.display_window_days:g}d retention={series_config.retention_days:g}d "
        f"max_points={series_config.max_points}"
    )
    table = Table(title=f"{key} ({len(samples)} samples in window)")
    table.add_column("Timestamp (UTC)")
    table.add_column("Value", justify="right")
    for sample in samples[-limit:]:
        table.add_row(format_timestamp(pd.Timestamp(sample.timestamp)), f"{sample.value:g}")
    console().print(table)

    if out is not None:
        frame = samples_to_frame(samples)
        ensure_dir(out)
        frame.reset_index().to_csv(out, index=False)
        console().print(f"[green]{out}[/] ready with {len(frame)} rows")


@series_app.command("configure")
def configure_series(
    key: str = typer.Argument(...),
    query: Optional[str] = typer.Option(None, "--query"),
    interval_ms: Optional[int] = typer.Option(None, "--interval-ms"),
    retention_days: Optional[float] = typer.Option(None, "--retention-days"),
    window_days: Optional[float] = typer.Option(None, "--window-days"),
    max_points: Optional[int] = typer.Option(None, "--max-points"),
    chart_type: Optional[ChartType] = typer.Option(None, "--chart-type", case_sensitive=False),
    unit: Optional[str] = typer.Option(None, "--unit"),
    config: Optional[Path] = typer.Option(None),
) -> None:
    manager = _manager_or_fail(config)
    try:
        updated = manager.configure(
            key,
            query_name=query,
            refresh_interval_ms=interval_ms,
            retention_days=retention_days,
            display_window_days=window_days,
            max_points=max_points,
            chart_type=chart_type,
            unit=unit,
        )
    except TrendError as exc:
        fail(exc)
    table = Table(title=f"Config for {key}")
    table.add_column("Field")
    table.add_column("Value")
    for name, value in updated.as_dict().items():
        table.add_row(name, "" if value is None else str(value))
    console().print(table)


@series_app.command("refresh")
def refresh_series(
    key: str = typer.Argument(...),
    config: Optional[Path] = typer.Option(None),
) -> None:
    manager = _manager_or_fail(config)
    try:
        error = asyncio.run(manager.refresh(key))
    except TrendError as exc:
        fail(exc)
    if error is not None:
        fail(error)
    _, samples = manager.snapshot(key)
    console().print(f"[green]Refreshed[/] [cyan]{key}[/]: {len(samples)} samples in window")


@series_app.command("watch")
def watch_series(
    keys: Optional[List[str]] = typer.Argument(None, help="Series keys; all series when omitted"),
    duration: Optional[float] = typer.Option(None, min=0, help="Seconds to poll before stopping"),
    config: Optional[Path] = typer.Option(None),
) -> None:
    manager = _manager_or_fail(config)

    async def _watch() -> None:
        targets = keys or [definition.id for definition in manager.list_series()]
        try:
            for key in targets:
                scheduler = await manager.open(key)
                if scheduler.error_message:
                    console().print(f"[red]{key}:[/] {scheduler.error_message}")
                else:
                    console().print(f"Polling [cyan]{key}[/] ({len(scheduler.record)} cached)")
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            await manager.close_all()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console().print("Stopped polling")
    except TrendError as exc:
        fail(exc)
