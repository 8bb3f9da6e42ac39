"""
CLI for inspecting and resetting the persistent cache.

Commands:
    fitcache stats - Show tier sizes and the global version
    fitcache show KEY - Show one persisted entry and whether it is still valid
    fitcache invalidate PATTERN - Remove entries whose key contains PATTERN
    fitcache clear - Remove all entries and bump the version
    fitcache warm - Fill the cache from the backend
    fitcache config - Show current configuration
    fitcache version - Print version
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fitcache import __version__
from fitcache.backend.postgrest import create_backend
from fitcache.cache.memoize import RequestCoalescer
from fitcache.cache.store import CacheStore, create_cache_store
from fitcache.config import Settings, clear_settings_cache, get_settings
from fitcache.exceptions import CacheStorageError, ConfigurationError
from fitcache.logging import setup_logging
from fitcache.queries import CachedQueries

app = typer.Typer(
    name="fitcache",
    help="Inspect and manage the coaching platform's read cache",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _open_store() -> tuple[Settings, CacheStore]:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'fitcache config' to see what's wrong."
        )
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL)
    try:
        return settings, create_cache_store(settings)
    except CacheStorageError as e:
        error_console.print(f"[red]Error:[/red] Cannot open cache database: {e}")
        raise typer.Exit(1)


def _format_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


@app.command()
def stats() -> None:
    """Show tier sizes and the global version."""
    settings, store = _open_store()
    current = store.get_stats()

    table = Table(title="Cache", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Database", str(settings.cache_db_path))
    table.add_row("Persisted entries", f"{current.storage_size} / {store.storage_max_items}")
    table.add_row("Version", str(current.version))
    console.print(table)


@app.command()
def show(
    key: Annotated[str, typer.Argument(help="Full cache key, e.g. user_profile:userId:42")],
) -> None:
    """Show one persisted entry and whether it is still valid."""
    _, store = _open_store()
    found = store.inspect(key)
    if found is None:
        console.print(f"[yellow]No entry for[/yellow] {key}")
        raise typer.Exit(1)

    entry, valid = found
    status = "[green]valid[/green]" if valid else "[red]expired or stale[/red]"
    console.print(
        Panel(
            f"[bold]Key:[/bold] {entry.key}\n"
            f"[bold]Written:[/bold] {_format_ms(entry.timestamp)}\n"
            f"[bold]TTL:[/bold] {entry.ttl // 1000}s\n"
            f"[bold]Version:[/bold] {entry.version} (current {store.version})\n"
            f"[bold]Status:[/bold] {status}",
            title="[bold cyan]Cache entry[/bold cyan]",
            border_style="cyan",
        )
    )
    console.print_json(json.dumps(entry.data, default=str))


@app.command()
def invalidate(
    pattern: Annotated[str, typer.Argument(help="Substring of the keys to remove (e.g. pt_)")],
) -> None:
    """Remove every entry whose key contains PATTERN."""
    _, store = _open_store()
    removed = store.clear_pattern(pattern)
    console.print(f"Removed {removed} entries matching [bold]{pattern}[/bold]")


@app.command()
def clear(
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation"),
    ] = False,
) -> None:
    """Remove all entries and bump the global version."""
    _, store = _open_store()
    if not yes:
        typer.confirm("Remove every cache entry?", abort=True)
    store.clear()
    console.print(f"Cache cleared, version is now {store.version}")


@app.command()
def warm(
    user_id: Annotated[
        Optional[str],
        typer.Option("--user-id", "-u", help="Also preload this user's profile data"),
    ] = None,
    admin: Annotated[
        bool,
        typer.Option("--admin", help="Also preload admin dashboard data"),
    ] = False,
) -> None:
    """Fill the cache from the backend."""
    settings, store = _open_store()
    try:
        backend = create_backend(settings)
    except ConfigurationError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    coalescer = RequestCoalescer() if settings.CACHE_COALESCE_REQUESTS else None
    queries = CachedQueries(store, backend, coalescer=coalescer)

    async def run() -> bool:
        try:
            ok = await queries.warm_cache()
            if user_id:
                ok = await queries.preload_critical_data(user_id) and ok
            if admin:
                ok = await queries.preload_admin_data() and ok
            return ok
        finally:
            await backend.close()

    ok = asyncio.run(run())
    after = store.get_stats()
    if ok:
        console.print(f"[green]Cache warmed[/green] ({after.storage_size} entries persisted)")
    else:
        console.print(
            f"[yellow]Cache partially warmed[/yellow] ({after.storage_size} entries persisted); "
            "see log for failed reads"
        )


@app.command()
def config() -> None:
    """Show current configuration with API keys redacted."""
    console.print()
    console.print("[bold]fitcache Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()
    if settings is None:
        error_console.print("[red]Configuration is invalid or incomplete.[/red]")
        error_console.print()
        error_console.print("Check these environment variables:")
        error_console.print("  - BACKEND_URL (must start with http:// or https://)")
        error_console.print("  - CACHE_VERSION_KEY (must not start with CACHE_KEY_PREFIX)")
        error_console.print("  - CACHE_MEMORY_MAX_ITEMS / CACHE_STORAGE_MAX_ITEMS (>= 1)")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()
    if not settings.backend_configured:
        console.print("[yellow]Backend not configured; 'fitcache warm' is unavailable.[/yellow]")
        console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"fitcache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
