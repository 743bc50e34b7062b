"""
Command Line Interface for the Work Registry.
"""

import signal
import threading
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..db.services import AgentService, WorkCatalogStore
from ..logging_config import configure_logging
from ..reconcile import ReconcileError, ReconcileSummary, Reconciler
from ..storage import create_object_source

app = typer.Typer(help="Work Registry - catalog sync and delivery for agent works")
console = Console()


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, help="Override LOG_LEVEL"),
    log_format: Optional[str] = typer.Option(None, help="'console' or 'json'"),
):
    configure_logging(log_level=log_level, log_format=log_format)


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
):
    """Run the delivery API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "work_registry.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


@app.command("init-db")
def init_db():
    """Create catalog tables that do not exist yet."""
    try:
        init_database()
    except SQLAlchemyError as e:
        console.print(f"❌ Database initialization failed: {e}")
        raise typer.Exit(code=1)
    console.print("✅ Database initialized")


@app.command("register-agent")
def register_agent(handle: str = typer.Argument(..., help="Agent handle")):
    """Register an agent (no-op if the handle exists)."""
    db = get_session_local()()
    try:
        agent = AgentService(db).create(handle)
        console.print(f"✅ Agent {agent.handle}: {agent.id}")
    except SQLAlchemyError as e:
        console.print(f"❌ Could not register agent: {e}")
        raise typer.Exit(code=1)
    finally:
        db.close()


def _render_summary(summary: ReconcileSummary, show_anomalies: int = 20) -> None:
    table = Table(
        title="Reconciliation Summary", show_header=True, header_style="bold magenta"
    )
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    for key, value in summary.to_dict().items():
        if key == "warnings":
            continue
        table.add_row(key, str(value))
    console.print(table)

    if summary.missing_ordinals:
        preview = ", ".join(str(o) for o in summary.missing_ordinals[:50])
        if summary.missing > 50:
            preview += ", ..."
        console.print(f"Missing ordinals: {preview}")

    if summary.anomalies:
        anomalies = Table(title="Anomalies", show_header=True, header_style="bold yellow")
        anomalies.add_column("Object", style="yellow")
        anomalies.add_column("Reason")
        for anomaly in summary.anomalies[:show_anomalies]:
            anomalies.add_row(anomaly.name, anomaly.reason)
        console.print(anomalies)
        if len(summary.anomalies) > show_anomalies:
            console.print(f"... and {len(summary.anomalies) - show_anomalies} more")

    for warning in summary.warnings:
        console.print(f"⚠️  {warning}")


@app.command()
def reconcile(
    agent: str = typer.Option(..., "--agent", help="Agent id or handle"),
    expected_count: int = typer.Option(
        ..., "--expected-count", min=0, help="Highest ordinal the agent has produced"
    ),
    batch_size: Optional[int] = typer.Option(None, help="Objects per batch"),
    dry_run: bool = typer.Option(False, help="Classify objects without writing"),
):
    """Reconcile the catalog with the object store for one agent."""
    settings = get_settings()
    cancel_event = threading.Event()

    def _handle_signal(signum, frame):
        console.print(f"\n🛑 Received signal {signum}, stopping after current batch...")
        cancel_event.set()

    rprint(Panel.fit(f"Reconciling {agent} (expected {expected_count})", style="bold blue"))

    try:
        source = create_object_source(settings.storage_root_uri, settings.works_bucket)
    except ValueError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(code=1)

    previous_handlers = {
        sig: signal.signal(sig, _handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    db = get_session_local()()
    try:
        reconciler = Reconciler(
            db, source, batch_size=batch_size, cancel_event=cancel_event
        )
        summary = reconciler.reconcile(agent, expected_count, dry_run=dry_run)
    except ReconcileError as e:
        if e.summary is not None:
            _render_summary(e.summary)
        console.print(f"❌ Reconciliation failed: {e}")
        raise typer.Exit(code=1)
    finally:
        db.close()
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    _render_summary(summary)
    if summary.cancelled:
        console.print("⏹️  Cancelled; committed changes are kept, re-run to finish")
        raise typer.Exit(code=130)
    if summary.warnings:
        console.print("⚠️  Completed with warnings; re-run until counts converge")
    else:
        console.print("✅ Reconciliation complete")


@app.command()
def status(handle: str = typer.Argument(..., help="Agent handle")):
    """Show catalog counts for an agent."""
    db = get_session_local()()
    try:
        agent = AgentService(db).get_by_handle(handle)
        if agent is None:
            console.print(f"❌ Agent not found: {handle}")
            raise typer.Exit(code=1)
        store = WorkCatalogStore(db)
        counts = store.count_by_status(agent.id)
        pending = store.count_pending_checksums(agent.id)
    finally:
        db.close()

    table = Table(title=f"Catalog: {handle}", show_header=True, header_style="bold cyan")
    table.add_column("Status", style="yellow")
    table.add_column("Works", style="green")
    for name, count in sorted(counts.items()):
        table.add_row(name, str(count))
    table.add_row("checksum queue", str(pending))
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Work Registry v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
