"""
Root Typer application for the ``pnp-ingest`` CLI.

Commands:
    init-db   create the ingest tables
    encrypt   encrypt a JSON payload with the configured key
    process   run one payload file through the pipeline
    run       start the worker pool on the Redis bus
    serve     start the health API
    health    check the database once

Settings come from ``PNP_*`` environment variables and ``.env``; the global
options below only override logging.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from pnp_ingest import __version__
from pnp_ingest.core.logging import configure_logging
from pnp_ingest.core.result import Cancelled, Ok, PermanentErr
from pnp_ingest.core.settings import IngestSettings
from pnp_ingest.domain.models import EventKind

app = typer.Typer(
    name="pnp-ingest",
    help="pnp-ingest: materialize incident and maintenance events into the status store.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pnp-ingest {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Override PNP_LOG_LEVEL."),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs", help="Log format."),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """pnp-ingest CLI."""
    settings = IngestSettings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=json_logs if json_logs is not None else settings.json_logs,
        service=settings.service_name,
    )
    ctx.obj = settings


def _settings(ctx: typer.Context) -> IngestSettings:
    return ctx.obj if isinstance(ctx.obj, IngestSettings) else IngestSettings()


# ── Storage ──────────────────────────────────────────────────────────────


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """Create the ingest tables in the configured database."""
    from pnp_ingest.cli.runtime import build_engine
    from pnp_ingest.storage.engine import create_schema

    engine = build_engine(_settings(ctx))
    if engine is None:
        err_console.print("[yellow]BYPASS_LOCAL_STORAGE=true: nothing to initialize[/yellow]")
        raise typer.Exit(code=1)
    create_schema(engine)
    console.print(f"[green]Schema ready[/green] at {engine.url.render_as_string(hide_password=True)}")


@app.command("health")
def health(ctx: typer.Context) -> None:
    """Check that the database answers."""
    from pnp_ingest.cli.runtime import build_engine
    from pnp_ingest.storage.engine import check_connectivity

    engine = build_engine(_settings(ctx))
    if engine is None:
        console.print("[green]ok[/green] (storage bypassed)")
        return
    if not check_connectivity(engine):
        err_console.print("[bold red]database unreachable[/bold red]")
        raise typer.Exit(code=1)
    console.print("[green]ok[/green]")


# ── Payloads ─────────────────────────────────────────────────────────────


@app.command("encrypt")
def encrypt(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON payload file."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the token here instead of stdout."),
) -> None:
    """Encrypt a JSON payload with the primary configured key."""
    from pnp_ingest.pipeline.decoder import MessageDecoder

    keys = _settings(ctx).key_material()
    if not keys:
        err_console.print("[bold red]No encryption keys configured[/bold red] (PNP_ENCRYPTION_KEYS)")
        raise typer.Exit(code=1)
    document = json.loads(source.read_text(encoding="utf-8"))
    token = MessageDecoder(keys).encrypt(document)
    if output is None:
        typer.echo(token.decode("ascii"))
    else:
        output.write_bytes(token)


@app.command("process")
def process(
    ctx: typer.Context,
    kind: EventKind = typer.Argument(..., help="incident or maintenance"),
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Payload file (token or JSON)."),
    plain: bool = typer.Option(False, "--plain", help="File is plaintext JSON; encrypt it first."),
) -> None:
    """Run one payload through decode, normalize, reconcile and notify."""
    from pnp_ingest.cli.runtime import build_services
    from pnp_ingest.pipeline.decoder import MessageDecoder
    from pnp_ingest.storage.engine import create_schema

    settings = _settings(ctx)
    try:
        services = build_services(settings)
    except ValueError as exc:
        err_console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    try:
        if services.engine is not None:
            create_schema(services.engine)
        body = source.read_bytes()
        if plain:
            body = MessageDecoder(settings.key_material()).encrypt(json.loads(body))
        outcome = services.processor.process(kind, body, services.retry_controller())
    finally:
        services.close()

    if isinstance(outcome, PermanentErr):
        err_console.print(f"[bold red]{outcome.kind.value}[/bold red]: {outcome.error}")
        raise typer.Exit(code=1)
    if not isinstance(outcome, Ok):
        detail = outcome.last_error if isinstance(outcome, Cancelled) else outcome.error
        err_console.print(f"[yellow]not finished[/yellow]: {detail}")
        raise typer.Exit(code=2)

    table = Table(title=f"{kind.value} decisions")
    table.add_column("Source ID")
    table.add_column("Record ID")
    table.add_column("Action")
    table.add_column("Reason")
    for decision in outcome.value:
        table.add_row(decision.record.source_id, decision.record.record_id[:16], decision.action.value, decision.reason)
    console.print(table)


# ── Services ─────────────────────────────────────────────────────────────


@app.command("run")
def run(
    ctx: typer.Context,
    workers: int | None = typer.Option(None, "--workers", "-w", help="Override PNP_WORKERS."),
) -> None:
    """Start the worker pool on the Redis bus (blocks until SIGINT/SIGTERM)."""
    from pnp_ingest.cli.runtime import build_services
    from pnp_ingest.execution.bus import RedisListBus
    from pnp_ingest.execution.worker import WorkerPool

    settings = _settings(ctx)
    services = build_services(settings)
    bus = RedisListBus(settings.redis_url, prefix=settings.queue_prefix)
    bus.recover()
    pool = WorkerPool(
        bus,
        services.processor,
        workers=workers or settings.workers,
        retry_delay=settings.retry_delay_seconds,
        shutdown_grace=settings.shutdown_grace_seconds,
        dead_letter_permanent=settings.dead_letter_permanent,
    )
    console.print(f"[bold green]Starting {workers or settings.workers} workers[/bold green] on {settings.redis_url}")
    try:
        pool.run()
    finally:
        services.close()


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Start the health API server."""
    import uvicorn

    from pnp_ingest.api.app import create_app
    from pnp_ingest.cli.runtime import build_engine

    settings = _settings(ctx)
    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"[bold green]Starting health API[/bold green] on {bind_host}:{bind_port}")
    uvicorn.run(create_app(build_engine(settings)), host=bind_host, port=bind_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
