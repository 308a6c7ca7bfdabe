"""CLI for refresh-guard: inspect and repair lock and snapshot state."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.table import Table

from refresh_guard.cache.snapshot import SnapshotPaths, SnapshotWriter
from refresh_guard.core.clock import monotonic_ms
from refresh_guard.core.config import AppSettings, ObservabilityConfig
from refresh_guard.core.logging_config import setup_logging
from refresh_guard.core.startup_checks import validate_settings
from refresh_guard.exceptions import RefreshGuardError
from refresh_guard.locking.distributed_lock import cleanup_stale_lock, release_lock
from refresh_guard.locking.models import LockEntry
from refresh_guard.persistence import create_object_store, read_model
from refresh_guard.persistence.protocols import IObjectStore

app = typer.Typer(name="refresh-guard", help="Inspect and repair refresh locks and dataset snapshots")
lock_app = typer.Typer(help="Distributed lock commands")
snapshot_app = typer.Typer(help="Dataset snapshot commands")
app.add_typer(lock_app, name="lock")
app.add_typer(snapshot_app, name="snapshot")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG")) -> None:
    setup_logging(ObservabilityConfig(log_level="DEBUG" if verbose else "WARNING"))


def _open_store() -> tuple[AppSettings, IObjectStore]:
    settings = AppSettings()
    try:
        validate_settings(settings)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e
    return settings, create_object_store(settings.store)


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


@lock_app.command("status")
def lock_status(lock_key: str = typer.Argument(..., help="Lock object key")) -> None:
    """Show who holds a lock and when it expires."""
    _, store = _open_store()
    try:
        entry = asyncio.run(read_model(store, lock_key, LockEntry))
    except RefreshGuardError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e

    if entry is None:
        console.print(f"No lock at [cyan]{lock_key}[/cyan]")
        return

    now = monotonic_ms()
    table = Table(title=f"Lock {lock_key}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Holder", entry.holder_id)
    table.add_row("Acquired", _format_ms(entry.acquired_at))
    table.add_row("Age", f"{entry.age_ms(now)}ms")
    table.add_row("TTL", f"{entry.ttl_ms}ms")
    if entry.is_expired(now):
        table.add_row("Status", "[yellow]EXPIRED[/yellow]")
    else:
        table.add_row("Status", f"[green]held[/green], expires in {entry.expires_in_ms(now)}ms")
    console.print(table)


@lock_app.command("release")
def lock_release(
    lock_key: str = typer.Argument(..., help="Lock object key"),
    holder: str = typer.Option(..., "--holder", help="Holder id that owns the lock"),
    force: bool = typer.Option(False, "--force", help="Release regardless of owner"),
) -> None:
    """Release a lock held by HOLDER (or by anyone with --force)."""
    _, store = _open_store()

    async def _run() -> bool:
        await release_lock(store, lock_key, holder, force)
        return await store.get(lock_key) is None

    try:
        released = asyncio.run(_run())
    except RefreshGuardError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e

    if released:
        console.print(f"[green]Released {lock_key}[/green]")
    else:
        console.print(f"[yellow]{lock_key} is held by another holder; use --force to override[/yellow]")
        raise typer.Exit(code=1)


@lock_app.command("cleanup")
def lock_cleanup(lock_key: str = typer.Argument(..., help="Lock object key")) -> None:
    """Delete a lock if it has outlived its TTL."""
    _, store = _open_store()
    try:
        removed = asyncio.run(cleanup_stale_lock(store, lock_key))
    except RefreshGuardError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e

    if removed:
        console.print(f"[green]Removed stale lock {lock_key}[/green]")
    else:
        console.print(f"Nothing to clean up at {lock_key}")


@snapshot_app.command("show")
def snapshot_show(dataset: str = typer.Argument(..., help="Dataset key")) -> None:
    """Show the latest snapshot pointer and last heartbeat for DATASET."""
    settings, store = _open_store()
    writer = SnapshotWriter(store, SnapshotPaths(settings.cache.snapshot_prefix))

    async def _run():
        return await writer.read_pointer(dataset), await writer.read_heartbeat(dataset)

    try:
        pointer, heartbeat = asyncio.run(_run())
    except RefreshGuardError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e

    if pointer is None:
        console.print(f"No snapshot published for [cyan]{dataset}[/cyan]")
    else:
        table = Table(title=f"Snapshot {dataset}")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Version", pointer.version)
        table.add_row("Key", pointer.key)
        table.add_row("Generated", _format_ms(pointer.generated_at))
        table.add_row("Items", str(pointer.count))
        console.print(table)

    if heartbeat is not None:
        outcome = "[green]ok[/green]" if heartbeat.success else f"[red]failed[/red] ({heartbeat.error})"
        changed = "changed" if heartbeat.change_detected else "no change"
        console.print(f"Last refresh {_format_ms(heartbeat.run_at)}: {outcome}, {changed}")


@app.command()
def check() -> None:
    """Validate the current settings."""
    settings = AppSettings()
    try:
        validate_settings(settings)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e

    table = Table(title="refresh-guard settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("store.backend", settings.store.backend)
    if settings.store.backend == "s3":
        table.add_row("store.s3_bucket", settings.store.s3_bucket)
    elif settings.store.backend == "file":
        table.add_row("store.store_path", str(settings.store.store_path))
    table.add_row("lock.ttl_ms", str(settings.lock.ttl_ms))
    table.add_row("lock.max_retries", str(settings.lock.max_retries))
    table.add_row("lock.cleanup_interval_ms", str(settings.lock.cleanup_interval_ms))
    table.add_row("cache.freshness_ttl_ms", str(settings.cache.freshness_ttl_ms))
    table.add_row("circuit.failure_threshold", str(settings.circuit.failure_threshold))
    console.print(table)
    console.print("[green]Settings OK[/green]")


if __name__ == "__main__":
    app()
