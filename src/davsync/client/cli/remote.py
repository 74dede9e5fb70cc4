"""Remote inspection commands for the davsync CLI.

Commands:
- ls: List files on a server
- quota: Show storage usage of each server
"""

from __future__ import annotations

import asyncio
import sys

import click

from davsync.client.cli.config import load_config
from davsync.client.webdav.vendors import WebDAVProvider, create_provider
from davsync.core.config import SyncSettings
from davsync.core.errors import StorageError
from davsync.core.types import FileRecord, QuotaInfo


def _format_size(size: int) -> str:
    """Format bytes as human-readable size."""
    if size < 0:
        return "unknown"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def _pick_server(settings: SyncSettings, name: str | None) -> tuple[str, WebDAVProvider]:
    enabled = settings.enabled_providers()
    if not enabled:
        click.echo("Error: No server configured. Run 'davsync add-server' first.", err=True)
        sys.exit(1)
    if name is None:
        name = sorted(enabled)[0]
    elif name not in enabled:
        click.echo(f"Error: No enabled server named '{name}'.", err=True)
        sys.exit(1)
    return name, create_provider(enabled[name], name=name)


async def _list(provider: WebDAVProvider, path: str, recursive: bool) -> list[FileRecord]:
    try:
        await provider.connect()
        return await provider.list_files(provider.remote_path(path), recursive=recursive)
    finally:
        await provider.close()


@click.command("ls")
@click.argument("path", default="")
@click.option("--server", "-s", "server_name", default=None, help="Server name.")
@click.option("--recursive", "-r", is_flag=True, help="List subfolders as well.")
def ls(path: str, server_name: str | None, recursive: bool) -> None:
    """List files under PATH (relative to the server's base folder)."""
    _, provider = _pick_server(load_config(), server_name)
    try:
        records = asyncio.run(_list(provider, path, recursive))
    except StorageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not records:
        click.echo("No files found.")
        return

    for record in sorted(records, key=lambda r: r.path):
        local = provider.local_path(record.path).strip("/")
        if record.is_folder:
            click.echo(f"{local}/")
        else:
            modified = record.modified_time.strftime("%Y-%m-%d %H:%M")
            click.echo(f"{local}  {_format_size(record.size)}  {modified}")


async def _quota(provider: WebDAVProvider) -> QuotaInfo:
    try:
        await provider.connect()
        return await provider.get_quota()
    finally:
        await provider.close()


@click.command()
def quota() -> None:
    """Show storage usage of every enabled server."""
    settings = load_config()
    enabled = settings.enabled_providers()
    if not enabled:
        click.echo("Error: No server configured. Run 'davsync add-server' first.", err=True)
        sys.exit(1)

    failed = False
    for name, server in sorted(enabled.items()):
        provider = create_provider(server, name=name)
        try:
            info = asyncio.run(_quota(provider))
        except StorageError as e:
            click.echo(f"{name}: {e}", err=True)
            failed = True
            continue
        if not info.is_known:
            click.echo(f"{name}: quota not reported by server")
            continue
        percent = info.used / info.total * 100 if info.total else 0.0
        click.echo(
            f"{name}: {_format_size(info.used)} used of {_format_size(info.total)} "
            f"({percent:.1f}%), {_format_size(info.available)} available"
        )
    if failed:
        sys.exit(1)
