"""CLI commands for promptshelf.

- sources list/add/remove/refresh/reset
- list <category>, preview, download
- collections, install <collection>
- updates
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .catalog.models import Category
from .config import Settings
from .download import DownloadProgress, DownloadSummary, OverwriteDecision
from .errors import CatalogError, ManifestValidationError, TransportError
from .ledger import DownloadRecord
from .service import CatalogService

console = Console()


def _service(args: argparse.Namespace) -> CatalogService:
    settings = Settings.load()
    if getattr(args, "root", None):
        settings.root_dir = args.root
    if getattr(args, "no_pacing", False):
        settings.pacing_s = 0.0
    return CatalogService.from_settings(settings, update_sink=_show_update_notice)


def _show_update_notice(records: List[DownloadRecord]) -> None:
    console.print(f"[yellow]{len(records)} downloaded item(s) have updates.[/yellow] Run [bold]promptshelf updates[/bold].")


def _error(e: Exception) -> int:
    if isinstance(e, ManifestValidationError):
        console.print(f"[red]Invalid collection:[/red] field [bold]{e.field}[/bold] {e.message}")
    elif isinstance(e, TransportError) and e.status_code in (401, 403):
        console.print(f"[red]Access denied ({e.status_code}).[/red] Configure a token for this source.")
        console.print(f"[dim]{e.url}[/dim]")
    else:
        console.print(f"[red]Error:[/red] {e}")
    return 1


def _ask_overwrite(force: bool):
    def decide(path: Path) -> OverwriteDecision:
        if force:
            return OverwriteDecision.OVERWRITE
        answer = console.input(f"[yellow]{path}[/yellow] exists. Overwrite? [y/N/a(bort)] ").strip().lower()
        if answer in ("y", "yes"):
            return OverwriteDecision.OVERWRITE
        if answer in ("a", "abort"):
            return OverwriteDecision.ABORT
        return OverwriteDecision.SKIP
    return decide


def _category(value: str) -> Category:
    try:
        return Category.parse(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"unknown category '{value}' (choose from {', '.join(c.value for c in Category)})"
        )


# --- Source Commands ---

def cmd_sources(args: argparse.Namespace) -> int:
    """Manage repository sources."""
    service = _service(args)
    action = args.action or "list"

    try:
        if action == "add":
            if not args.repo:
                console.print("[red]Repository required (owner/repo or URL).[/red]")
                return 1
            source = service.add_source(args.repo, args.label)
            console.print(f"[green]Added[/green] {source.display_label} {source.type_tag}")
            if source.is_enterprise and not service.settings.enterprise_token:
                console.print("[yellow]Enterprise host detected.[/yellow] Set PROMPTSHELF_ENTERPRISE_TOKEN to authenticate.")
            return 0

        if action == "remove":
            if not args.repo:
                console.print("[red]Repository required.[/red]")
                return 1
            confirm = (lambda message: True) if args.force else (
                lambda message: console.input(f"{message} [y/N] ").strip().lower() in ("y", "yes")
            )
            removed = service.remove_source(args.repo, confirm=confirm)
            if removed is None:
                console.print("[yellow]Cancelled.[/yellow]")
            else:
                console.print(f"[green]Removed[/green] {removed.identifier}")
            return 0

        if action == "refresh":
            if not args.repo:
                console.print("[red]Repository required.[/red]")
                return 1
            result = asyncio.run(service.refresh_source(args.repo))
            table = Table(title=f"Refreshed {result.source.display_label}")
            table.add_column("Category", style="bold")
            table.add_column("Items", justify="right")
            for category in Category:
                if category in result.errors:
                    table.add_row(category.label, f"[red]{result.errors[category].message}[/red]")
                else:
                    table.add_row(category.label, str(result.counts.get(category, 0)))
            console.print(table)
            return 0 if not result.errors else 1

        if action == "reset":
            service.reset_sources()
            console.print("[green]Sources reset to defaults.[/green]")
    except CatalogError as e:
        return _error(e)

    table = Table(title="Repository Sources")
    table.add_column("#", justify="right")
    table.add_column("Source", style="cyan")
    table.add_column("Type")
    table.add_column("URL", style="dim")
    for index, source in enumerate(service.sources(), start=1):
        table.add_row(str(index), source.display_label, source.type_tag, source.repo_url)
    console.print(table)
    return 0


# --- Browsing Commands ---

def cmd_list(args: argparse.Namespace) -> int:
    """List one category across sources."""
    service = _service(args)
    category: Category = args.category

    try:
        if args.source:
            source = service.find_source(args.source)
            entries = asyncio.run(service.list_category(source, category, force_refresh=args.refresh))
            errors = {}
        else:
            listing = asyncio.run(service.list_all(category, force_refresh=args.refresh))
            entries, errors = listing.entries, listing.errors
    except CatalogError as e:
        return _error(e)

    for source_id, error in errors.items():
        console.print(f"[yellow]Failed to load {category.value} from {source_id}:[/yellow] {error}")

    if not entries:
        console.print(f"[yellow]No {category.label.lower()} found.[/yellow]")
        return 0 if not errors else 1

    table = Table(title=category.label)
    table.add_column("Name", style="bold")
    table.add_column("Source", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Downloaded", justify="center")
    for entry in entries:
        size = "[dim]folder[/dim]" if entry.is_dir else ("" if entry.size is None else f"{entry.size:,}")
        downloaded = "[green]Yes[/green]" if service.ledger.is_downloaded(entry.item_id) else ""
        table.add_row(entry.label, entry.source_id, size, downloaded)

    console.print(table)
    console.print(f"\nTotal: {len(entries)} item(s)")
    return 0


def cmd_preview(args: argparse.Namespace) -> int:
    """Show an item's content without downloading it."""
    service = _service(args)

    async def run() -> tuple:
        source, entry = await service.find_entry(args.category, args.name, args.source)
        return entry, await service.preview(source, entry)

    try:
        entry, text = asyncio.run(run())
    except CatalogError as e:
        return _error(e)

    if entry.is_dir:
        console.print(Panel(text or "[dim]empty[/dim]", title=f"{entry.name} (skill folder)", border_style="cyan"))
    else:
        console.print(Panel(Syntax(text, "markdown", word_wrap=True), title=entry.label, border_style="cyan"))
    return 0


def cmd_download(args: argparse.Namespace) -> int:
    """Download one item."""
    service = _service(args)

    async def run():
        source, entry = await service.find_entry(args.category, args.name, args.source)
        return await service.download(source, entry, args.category, overwrite=_ask_overwrite(args.force))

    try:
        result = asyncio.run(run())
    except CatalogError as e:
        return _error(e)

    if result is None:
        console.print("[yellow]Skipped.[/yellow]")
        return 0
    for path in result.paths:
        console.print(f"[green]Downloaded[/green] {path}")
    return 0


# --- Collection Commands ---

def cmd_collections(args: argparse.Namespace) -> int:
    """List collection manifests."""
    args.category = Category.COLLECTIONS
    return cmd_list(args)


def _print_summary(summary: DownloadSummary) -> None:
    for item in summary.succeeded:
        console.print(f"  [green]✓[/green] {item.entry.name}")
    for skipped in summary.skipped:
        console.print(f"  [yellow]-[/yellow] {skipped.entry.name} [dim](kept existing)[/dim]")
    for failed in summary.failed:
        code = f" {failed.status_code}" if failed.status_code else ""
        console.print(f"  [red]✗[/red] {failed.label} [dim]{failed.kind.value}{code}: {failed.reason}[/dim]")
    if summary.not_started:
        console.print(f"  [yellow]{len(summary.not_started)} item(s) not started.[/yellow]")

    console.print(
        f"\n[bold]{len(summary.succeeded)}[/bold] downloaded, "
        f"[bold]{len(summary.failed)}[/bold] failed, "
        f"[bold]{len(summary.skipped)}[/bold] skipped"
    )


def cmd_install(args: argparse.Namespace) -> int:
    """Download every item of a collection."""
    service = _service(args)

    def progress(event: DownloadProgress) -> None:
        if event.stage == "start":
            console.print(f"[dim]({event.index + 1}/{event.total}) {event.label}[/dim]")

    async def run() -> Optional[DownloadSummary]:
        source, entry = await service.find_entry(Category.COLLECTIONS, args.name, args.source)
        manifest = await service.load_collection(source, entry)
        console.print(Panel(
            f"{manifest.description}\n\n[dim]{len(manifest.items)} item(s)"
            + (f" · tags: {', '.join(manifest.tags)}" if manifest.tags else "")
            + "[/dim]",
            title=manifest.name,
            border_style="cyan",
        ))
        if not args.yes:
            answer = console.input("Download all items? [Y/n] ").strip().lower()
            if answer in ("n", "no"):
                return None
        return await service.install_collection(
            manifest, source, overwrite=_ask_overwrite(args.force), progress=progress,
        )

    try:
        summary = asyncio.run(run())
    except CatalogError as e:
        return _error(e)

    if summary is None:
        console.print("[yellow]Cancelled.[/yellow]")
        return 0
    _print_summary(summary)
    return 0 if summary.ok else 1


# --- Update Commands ---

def cmd_updates(args: argparse.Namespace) -> int:
    """Show downloaded items whose remote copy changed."""
    service = _service(args)
    if not len(service.ledger):
        console.print("[dim]Nothing downloaded yet.[/dim]")
        return 0

    try:
        updated = asyncio.run(service.check_updates(force_refresh=args.refresh))
    except CatalogError as e:
        return _error(e)

    if not updated:
        console.print("[green]All downloaded items are up to date.[/green]")
        return 0

    table = Table(title="Updates Available")
    table.add_column("Item", style="bold")
    table.add_column("Category")
    table.add_column("Downloaded", style="dim")
    for record in updated:
        table.add_row(record.item_id, record.category, record.downloaded_at[:19].replace("T", " "))
    console.print(table)
    return 0


# --- Parser Setup ---

def add_commands(subparsers: argparse._SubParsersAction) -> None:
    """Register every promptshelf command."""

    p_sources = subparsers.add_parser("sources", help="List or manage repository sources")
    p_sources.add_argument("action", nargs="?", choices=["list", "add", "remove", "refresh", "reset"], default="list")
    p_sources.add_argument("repo", nargs="?", help="owner/repo or repository URL")
    p_sources.add_argument("--label", help="Display label for a new source")
    p_sources.add_argument("--force", "-f", action="store_true", help="Skip confirmation")
    p_sources.set_defaults(func=cmd_sources)

    p_list = subparsers.add_parser("list", help="List items of a category")
    p_list.add_argument("category", type=_category)
    p_list.add_argument("--source", "-s", help="Only this source (owner/repo)")
    p_list.add_argument("--refresh", "-r", action="store_true", help="Bypass the cache")
    p_list.set_defaults(func=cmd_list)

    p_preview = subparsers.add_parser("preview", help="Show an item without downloading")
    p_preview.add_argument("category", type=_category)
    p_preview.add_argument("name")
    p_preview.add_argument("--source", "-s")
    p_preview.set_defaults(func=cmd_preview)

    p_download = subparsers.add_parser("download", help="Download one item")
    p_download.add_argument("category", type=_category)
    p_download.add_argument("name")
    p_download.add_argument("--source", "-s")
    p_download.add_argument("--force", "-f", action="store_true", help="Overwrite without asking")
    p_download.set_defaults(func=cmd_download)

    p_collections = subparsers.add_parser("collections", help="List collections")
    p_collections.add_argument("--source", "-s")
    p_collections.add_argument("--refresh", "-r", action="store_true")
    p_collections.set_defaults(func=cmd_collections)

    p_install = subparsers.add_parser("install", help="Download every item of a collection")
    p_install.add_argument("name", help="Collection file name")
    p_install.add_argument("--source", "-s")
    p_install.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    p_install.add_argument("--force", "-f", action="store_true", help="Overwrite existing files")
    p_install.add_argument("--no-pacing", action="store_true", help="No delay between items")
    p_install.set_defaults(func=cmd_install)

    p_updates = subparsers.add_parser("updates", help="Check downloaded items for updates")
    p_updates.add_argument("--refresh", "-r", action="store_true")
    p_updates.set_defaults(func=cmd_updates)


def run_command(args: argparse.Namespace) -> int:
    """Run the selected command if one was given."""
    if hasattr(args, "func") and args.func:
        return args.func(args)
    return -1
