# === NAVMAP v1 ===
# {
#   "module": "BundleSync.cli",
#   "purpose": "Typer CLI: sync, status, resolve, clear, and watch commands",
#   "sections": [
#     {"id": "context", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "commands", "name": "Commands", "anchor": "CMD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Command line interface for the bundle synchronization engine.

Global options override the environment-derived settings for one
invocation and must precede the subcommand::

    bundlesync --origin https://a.example --origin https://b.example sync
    bundlesync --cache-root ./web-cache status --json
    bundlesync --bundled-root ./dist resolve
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .errors import ConfigurationError, NoContentAvailable
from .logging_config import setup_logging
from .models import ContentLocation, SyncReport
from .orchestrator import SyncOrchestrator, build_orchestrator
from .resolver import ContentResolver
from .settings import BundleSyncSettings, get_settings, normalize_origins
from .storage import CacheStore

_console = Console()

app = typer.Typer(
    name="bundlesync",
    help="Keep a local copy of a web asset bundle in sync with its origins",
    no_args_is_help=True,
)


class CliContext:
    """Settings and shared resources for one CLI invocation."""

    def __init__(self, settings: BundleSyncSettings, verbosity: int = 0) -> None:
        self.settings = settings
        self.verbosity = verbosity
        self.console = _console
        self._orchestrator: Optional[SyncOrchestrator] = None

    def orchestrator(self) -> SyncOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = build_orchestrator(self.settings)
        return self._orchestrator

    def resolver(self) -> ContentResolver:
        return ContentResolver(self.settings.cache.root, self.settings.cache.bundled_root)

    def store(self) -> CacheStore:
        return CacheStore(self.settings.cache.root, self.settings.cache.resolved_staging_dir())

    def close(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.close()
            self._orchestrator = None


def _apply_overrides(
    settings: BundleSyncSettings,
    origins: Optional[List[str]],
    cache_root: Optional[Path],
    bundled_root: Optional[Path],
    verbosity: int,
    json_logs: bool,
) -> BundleSyncSettings:
    try:
        update: Dict[str, Any] = {}
        if origins:
            update["origins"] = normalize_origins(origins)
        cache_update: Dict[str, Any] = {}
        if cache_root is not None:
            cache_update["root"] = cache_root.expanduser().resolve()
        if bundled_root is not None:
            cache_update["bundled_root"] = bundled_root.expanduser().resolve()
        if cache_update:
            update["cache"] = settings.cache.model_copy(update=cache_update)
        log_update: Dict[str, Any] = {}
        if verbosity:
            log_update["level"] = "DEBUG" if verbosity > 1 else "INFO"
        if json_logs:
            log_update["emit_json_logs"] = True
        if log_update:
            update["logging"] = settings.logging.model_copy(update=log_update)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    return settings.model_copy(update=update) if update else settings


def _location_dict(location: ContentLocation) -> Dict[str, Optional[str]]:
    return {
        "source": location.source.value,
        "index_path": str(location.index_path) if location.index_path else None,
        "read_access_root": str(location.read_access_root) if location.read_access_root else None,
    }


def _report_dict(report: SyncReport) -> Dict[str, Any]:
    return {
        "outcome": report.outcome.value,
        "content_version": report.content_version,
        "origin": report.origin,
        "commit_hash": report.descriptor.commit_hash if report.descriptor else None,
        "build_time": report.descriptor.build_time if report.descriptor else None,
        "failed_paths": list(report.failed_paths),
        "removed_paths": list(report.removed_paths),
        "error": report.error,
        "cycle_id": report.cycle_id,
    }


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"bundlesync {__version__}")
        raise typer.Exit(0)


def _get(ctx: typer.Context) -> CliContext:
    obj = ctx.obj
    if not isinstance(obj, CliContext):
        raise RuntimeError("CLI context not initialized")
    return obj


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    origin: Optional[List[str]] = typer.Option(
        None,
        "--origin",
        "-o",
        help="Origin base URL; repeat to define failover order",
    ),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root directory"),
    bundled_root: Optional[Path] = typer.Option(None, "--bundled-root", help="Bundled fallback tree"),
    verbosity: int = typer.Option(0, "--verbose", "-v", count=True, help="-v for INFO, -vv for DEBUG"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Synchronize a cached web asset bundle with its remote origins."""

    try:
        settings = _apply_overrides(get_settings(), origin, cache_root, bundled_root, verbosity, json_logs)
    except (ConfigurationError, ValueError) as exc:
        _console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(2)
    setup_logging(settings.logging)
    cli_ctx = CliContext(settings, verbosity)
    ctx.obj = cli_ctx
    ctx.call_on_close(cli_ctx.close)


# --- Commands -------------------------------------------------------------------


@app.command()
def sync(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Run one synchronization cycle.

    Exits 0 when the cache is up to date or a new generation was committed.
    """

    cli = _get(ctx)
    report = cli.orchestrator().run_cycle()
    if as_json:
        typer.echo(json.dumps(_report_dict(report), indent=2))
    else:
        colour = "green" if report.ok else "yellow"
        cli.console.print(f"[{colour}]{report.outcome.value}[/{colour}] (content version {report.content_version})")
        if report.origin:
            cli.console.print(f"origin: {report.origin}")
        for path in report.failed_paths:
            cli.console.print(f"  [red]failed[/red] {path}")
        for path in report.removed_paths:
            cli.console.print(f"  [dim]removed[/dim] {path}")
        if report.error:
            cli.console.print(f"[dim]{report.error}[/dim]")
    if not report.ok:
        raise typer.Exit(1)


@app.command()
def status(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print status as JSON"),
) -> None:
    """Show the committed generation and the location content resolves to."""

    cli = _get(ctx)
    store = cli.store()
    generation = store.load_generation()
    location = cli.resolver().resolve()

    payload: Dict[str, Any] = {"cache_root": str(store.root), "location": _location_dict(location)}
    if generation is None:
        payload["generation"] = None
    else:
        payload["generation"] = {
            "descriptor": generation.descriptor.model_dump(by_alias=True),
            "manifest_files": len(generation.manifest.files),
            "present_files": len(generation.present_paths),
            "missing_files": sorted(generation.missing_paths),
        }

    if as_json:
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title="Cached generation", show_header=False)
    table.add_column("field")
    table.add_column("value")
    table.add_row("cache root", str(store.root))
    if generation is None:
        table.add_row("generation", "none")
    else:
        descriptor = generation.descriptor
        table.add_row("commit", f"{descriptor.commit_hash} ({descriptor.branch})")
        table.add_row("built", f"{descriptor.build_time} [{descriptor.build_type}]")
        table.add_row("message", descriptor.commit_message)
        table.add_row("manifest files", str(len(generation.manifest.files)))
        table.add_row("missing files", str(len(generation.missing_paths)))
    table.add_row("content source", location.source.value)
    table.add_row("index", str(location.index_path) if location.index_path else "-")
    cli.console.print(table)


@app.command()
def resolve(ctx: typer.Context) -> None:
    """Print the index file and read-access root to render."""

    cli = _get(ctx)
    try:
        location = cli.resolver().require()
    except NoContentAvailable as exc:
        cli.console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2)
    typer.echo(json.dumps(_location_dict(location), indent=2))


@app.command()
def clear(ctx: typer.Context) -> None:
    """Delete the whole cache and fall back to the bundled tree."""

    cli = _get(ctx)
    location = cli.orchestrator().force_refresh()
    cli.console.print(f"cache cleared; content source is now [bold]{location.source.value}[/bold]")


@app.command()
def watch(
    ctx: typer.Context,
    interval: float = typer.Option(300.0, "--interval", min=0.0, help="Seconds between cycles"),
    cycles: int = typer.Option(0, "--cycles", min=0, help="Stop after N cycles (0 = forever)"),
) -> None:
    """Trigger a cycle periodically, reporting each new content version."""

    cli = _get(ctx)
    orchestrator = cli.orchestrator()
    orchestrator.signal.subscribe(
        lambda state: cli.console.print(
            f"content version {state.version}: {state.location.source.value} {state.location.index_path or ''}"
        )
    )
    count = 0
    try:
        while cycles == 0 or count < cycles:
            future = orchestrator.trigger()
            if future is not None:
                report = future.result()
                cli.console.print(f"[dim]{report.outcome.value}[/dim]")
            count += 1
            if cycles and count >= cycles:
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        cli.console.print("stopped")


__all__ = ["app", "CliContext", "main"]
