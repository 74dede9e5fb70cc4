"""Sync command for the davsync CLI.

Commands:
- sync: Synchronize the sync folder with every enabled server
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from davsync.client.cli.config import get_sync_folder, load_config
from davsync.client.local import FileSystemStore, FileSystemWatcher
from davsync.client.notifications import Notifier, sync_complete_notice
from davsync.client.sync.orchestrator import SyncOrchestrator
from davsync.core.config import SyncMode, SyncSettings
from davsync.core.types import SyncReport


def _print_report(report: SyncReport) -> None:
    for path in report.uploaded:
        click.echo(f"  ↑ {path}")
    for path in report.downloaded:
        click.echo(f"  ↓ {path}")
    for path in report.deleted:
        click.echo(f"  - {path}")
    for path in report.moved:
        click.echo(f"  → {path}")

    if report.unverified:
        click.echo(click.style("\nDeletion unverified:", fg="yellow"))
        for path in report.unverified:
            click.echo(f"  ? {path}")

    if report.failed:
        click.echo(click.style("\nErrors:", fg="red"))
        for path, reason in sorted(report.failed.items()):
            click.echo(f"  ✗ {path}: {reason}")

    if not report.change_count and not report.failed:
        click.echo("Everything is up to date.")


async def _run(
    settings: SyncSettings, folder: Path, watch: bool, desktop: bool
) -> SyncReport | None:
    store = FileSystemStore(folder)
    orchestrator = SyncOrchestrator(settings, store, Notifier(desktop=desktop))
    watcher: FileSystemWatcher | None = None
    try:
        if watch:
            # Start before the scan so changes made during it are queued
            watcher = FileSystemWatcher(store, orchestrator.queue_change)
            watcher.start()

        report = await orchestrator.run_sync(SyncMode.FULL)
        if report is not None:
            _print_report(report)
            notice = sync_complete_notice(report)
            if notice is not None and not report.has_failures:
                orchestrator.notifier.notify(notice)

        if watch:
            orchestrator.start_auto_sync()
            click.echo("\nWatching for changes... (Ctrl+C to stop)\n")
            await asyncio.Event().wait()
        return report
    finally:
        if watcher is not None:
            watcher.stop()
        await orchestrator.close()


@click.command()
@click.option("--full", is_flag=True, help="Use full rescans for periodic syncs too.")
@click.option("--watch", "-w", is_flag=True, help="Watch for changes and sync continuously.")
@click.option("--notify", is_flag=True, help="Show desktop notifications.")
def sync(full: bool, watch: bool, notify: bool) -> None:
    """Synchronize the sync folder with every enabled server.

    Always starts with a full reconciliation. Use --watch to keep pushing
    local changes as they happen.
    """
    settings = load_config()
    if not settings.enabled_providers():
        click.echo("Error: No server configured. Run 'davsync add-server' first.", err=True)
        sys.exit(1)
    if full:
        settings.sync_mode = SyncMode.FULL

    folder = get_sync_folder(settings)
    if not folder.exists():
        folder.mkdir(parents=True)
        click.echo(f"Created sync folder: {folder}")

    if watch:
        logging.getLogger("davsync").setLevel(logging.INFO)

    click.echo(f"Syncing {folder} with {', '.join(sorted(settings.enabled_providers()))}...\n")
    try:
        report = asyncio.run(_run(settings, folder, watch, notify))
    except KeyboardInterrupt:
        click.echo("\nStopping...")
        return

    if report is not None and report.has_failures:
        sys.exit(1)
