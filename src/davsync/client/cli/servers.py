"""Server configuration commands for the davsync CLI.

Commands:
- add-server: Add or replace a WebDAV server
- remove-server: Remove a configured server
- servers: List configured servers
"""

from __future__ import annotations

import sys

import click

from davsync.client.cli.config import load_config, save_config
from davsync.client.webdav.vendors import classify_vendor
from davsync.core.config import AccountTier, DelayLevel, WebDAVSettings


@click.command("add-server")
@click.argument("name")
@click.argument("url")
@click.option("--username", "-u", prompt=True, help="WebDAV user name.")
@click.option(
    "--password",
    "-p",
    prompt=True,
    hide_input=True,
    help="WebDAV password (an app password for most vendors).",
)
@click.option("--base-path", default="", help="Remote folder mirroring the sync folder.")
@click.option(
    "--tier",
    type=click.Choice([t.value for t in AccountTier]),
    default=None,
    help="Account tier (inferred from quota when omitted).",
)
@click.option(
    "--delay",
    type=click.Choice([d.value for d in DelayLevel]),
    default=DelayLevel.NORMAL.value,
    show_default=True,
    help="Request pacing on free-tier accounts.",
)
def add_server(
    name: str,
    url: str,
    username: str,
    password: str,
    base_path: str,
    tier: str | None,
    delay: str,
) -> None:
    """Add a WebDAV server under NAME, replacing any server of that name."""
    settings = load_config()
    if name in settings.providers:
        click.echo(f"Note: Replacing existing server '{name}'")

    server = WebDAVSettings(
        server_url=url,
        username=username,
        password=password,
        base_path=base_path,
        account_tier=AccountTier(tier) if tier else None,
        delay_level=DelayLevel(delay),
    )
    if not server.is_configured:
        click.echo("Error: URL, username and password are required.", err=True)
        sys.exit(1)

    settings.providers[name] = server
    save_config(settings)
    click.echo(f"Added server '{name}' ({classify_vendor(url).value})")


@click.command("remove-server")
@click.argument("name")
def remove_server(name: str) -> None:
    """Remove the server called NAME."""
    settings = load_config()
    if name not in settings.providers:
        click.echo(f"Error: No server named '{name}'.", err=True)
        sys.exit(1)
    del settings.providers[name]
    save_config(settings)
    click.echo(f"Removed server '{name}'")


@click.command("servers")
def list_servers() -> None:
    """List configured servers."""
    settings = load_config()
    if not settings.providers:
        click.echo("No servers configured. Run 'davsync add-server' first.")
        return
    for name, server in sorted(settings.providers.items()):
        state = "enabled" if server.enabled else "disabled"
        base = server.base_path or "/"
        click.echo(f"{name}  {server.server_url}  {base}  ({state})")
