"""Command-line interface for davsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- add-server: Add or replace a WebDAV server
- remove-server: Remove a configured server
- servers: List configured servers
- ls: List files on a server
- quota: Show storage usage of each server
- sync: Synchronize the sync folder with every enabled server
"""

from __future__ import annotations

import logging

import click

from davsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_sync_folder,
    load_config,
    save_config,
)
from davsync.client.cli.remote import ls, quota
from davsync.client.cli.servers import add_server, list_servers, remove_server
from davsync.client.cli.sync import sync


@click.group()
@click.version_option(package_name="davsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """davsync - keep a folder in sync with WebDAV servers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Server commands
cli.add_command(add_server)
cli.add_command(remove_server)
cli.add_command(list_servers)

# Remote commands
cli.add_command(ls)
cli.add_command(quota)

# Sync commands
cli.add_command(sync)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_sync_folder",
    "load_config",
    "save_config",
]
