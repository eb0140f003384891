from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from courtiq import jobs, services
from courtiq.config import get_settings
from courtiq.db import init_db, session_scope
from courtiq.errors import SourceUnavailable
from courtiq.fetchers import SourceClient
from courtiq.models import Recruit

app = typer.Typer(help="CourtIQ college tennis recruiting pipeline")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=False)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db_url: str | None = typer.Option(None, "--db-url", help="SQLAlchemy URL overriding COURTIQ_DATABASE_URL."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    ctx.obj = {"json_output": json_output, "verbose": verbose, "db_url": db_url}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _init(ctx: typer.Context) -> None:
    init_db((ctx.obj or {}).get("db_url"))


def _format_scalar(value: Any) -> str:
    if value is None:
        return "-"
    return str(value)


def _render_table(title: str, rows: list[tuple[str, str]], *, border_style: str = "cyan") -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for metric, value in rows:
        table.add_row(metric, value)
    console.print(Panel(table, title=title, border_style=border_style))


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return

    scalars = [(k, _format_scalar(v)) for k, v in payload.items() if not isinstance(v, (dict, list))]
    if scalars:
        _render_table(title, scalars)
    for key, value in payload.items():
        if isinstance(value, dict):
            _render_table(
                f"{title} · {key}", [(k, _format_scalar(v)) for k, v in value.items()], border_style="magenta",
            )


def _print_details(details: list[dict[str, Any]]) -> None:
    if not details:
        return
    table = Table(show_header=True, header_style="bold green", box=ROUNDED)
    for column in ("Recruit", "Status", "Old", "New", "Error"):
        table.add_column(column)
    styles = {"updated": "green", "unchanged": "dim", "failed": "red"}
    for d in details:
        status = d["status"]
        table.add_row(
            d["name"], f"[{styles.get(status, 'white')}]{status}[/]",
            _format_scalar(d.get("old_ranking")), _format_scalar(d.get("new_ranking")),
            d.get("error") or "",
        )
    console.print(Panel(table, title="recruits", border_style="green"))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command(ctx: typer.Context) -> None:
    _init(ctx)
    _print("init-db", {"status": "ok", "database_url": (ctx.obj or {}).get("db_url") or get_settings().database_url}, ctx)


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8001, help="Bind port."),
    reload: bool = typer.Option(False, help="Auto-reload on code changes."),
) -> None:
    import uvicorn
    uvicorn.run("courtiq.app:app", host=host, port=port, reload=reload)


@app.command("sync-rankings")
def sync_rankings_command(ctx: typer.Context) -> None:
    """Refresh recruit rankings, then scan the national lists for prospects."""
    _init(ctx)

    async def _run() -> dict[str, Any]:
        async with SourceClient() as client:
            with session_scope() as session:
                return await jobs.run_ranking_sync(session, client)

    payload = asyncio.run(_run())
    _print("sync-rankings", payload, ctx)
    if not _wants_json(ctx):
        _print_details(payload["details"])


@app.command("sync-itf")
def sync_itf_command(
    ctx: typer.Context,
    payload_file: Path | None = typer.Option(
        None, "--from-file", exists=True, dir_okay=False,
        help="Import a saved ITF rankings JSON response instead of fetching it.",
    ),
) -> None:
    """Upsert eligible ITF junior-ranked players as prospects."""
    _init(ctx)
    if payload_file is not None:
        try:
            payload = json.loads(payload_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"not valid JSON ({exc.msg})", param_hint="--from-file") from exc
        with session_scope() as session:
            result = jobs.import_itf_players(session, payload)
        _print("sync-itf", result, ctx)
        return

    async def _run() -> dict[str, Any]:
        async with SourceClient() as client:
            with session_scope() as session:
                return await jobs.sync_itf_prospects(session, client)

    try:
        result = asyncio.run(_run())
    except SourceUnavailable as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    _print("sync-itf", result, ctx)


@app.command("import-list")
def import_list_command(
    ctx: typer.Context,
    html_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Saved ranking-list page."),
    class_year: int | None = typer.Option(None, help="Graduating class the list covers."),
) -> None:
    """Reconcile a ranking-list page saved from the browser."""
    _init(ctx)
    with session_scope() as session:
        result = jobs.import_ranking_list_html(session, html_file.read_text(encoding="utf-8"), class_year)
    _print("import-list", result, ctx)


@app.command("fetch-matches")
def fetch_matches_command(
    ctx: typer.Context,
    recruit_id: int = typer.Argument(..., help="Recruit to fetch activity for."),
) -> None:
    """Fetch and store tournament match results for one recruit."""
    _init(ctx)

    async def _run() -> dict[str, Any]:
        async with SourceClient() as client:
            with session_scope() as session:
                recruit = session.get(Recruit, recruit_id)
                if recruit is None:
                    raise typer.BadParameter(f"No recruit with id {recruit_id}")
                result = await jobs.fetch_match_results(session, client, recruit)
                session.commit()
                return {
                    "recruit": recruit.name, "fetched": result.fetched, "inserted": result.inserted,
                    "by_source": result.by_source, "failed_sources": ", ".join(result.failed_sources) or None,
                }

    _print("fetch-matches", asyncio.run(_run()), ctx)


@app.command("export-contacts")
def export_contacts_command(
    ctx: typer.Context,
    recruit_id: int | None = typer.Option(None, "--recruit-id", help="Only this recruit's contacts."),
    output: Path | None = typer.Option(None, "--output", "-o", dir_okay=False, help="Write CSV here instead of stdout."),
) -> None:
    """Export the contact log as CSV."""
    _init(ctx)
    with session_scope() as session:
        rows = services.contact_log_rows(session, recruit_id)
    text = services.render_contact_log(rows)
    if output is None:
        typer.echo(text, nl=False)
        return
    output.write_text(text, encoding="utf-8")
    _print("export-contacts", {"output": str(output), "rows": len(rows)}, ctx)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
