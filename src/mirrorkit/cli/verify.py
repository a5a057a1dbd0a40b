"""Verification commands"""

import sys

import click
import httpx
from rich.console import Console
from rich.table import Table

from mirrorkit.api.client import APIError, Client
from mirrorkit.installer import bootstrap
from mirrorkit.installer.bootstrap import check_prerequisites

console = Console()


@click.group()
def verify():
    """Verify system and deployment"""
    pass


@verify.command()
def system():
    """Verify system prerequisites"""
    missing = check_prerequisites()

    if missing:
        console.print("\nTo install missing components:")
        if "Podman" in missing:
            console.print("  Podman: https://podman.io/docs/installation")
        if "OpenSSL" in missing or "ssh-keygen" in missing:
            console.print("  OpenSSL / OpenSSH: install them with your distribution's package manager")
        sys.exit(1)


@verify.command()
@click.pass_context
def status(ctx):
    """Check primary and mirror status and the demo project setup"""
    config = ctx.obj["config"]
    bitbucket = config["bitbucket"]

    endpoints = [
        ("Primary", f"https://localhost:{bitbucket['primary_port']}"),
        ("Mirror", f"https://localhost:{bitbucket['mirror_port']}"),
    ]

    table = Table(title="Deployment Status")
    table.add_column("Node", style="cyan")
    table.add_column("URL", style="blue")
    table.add_column("State")

    healthy = True
    for name, url in endpoints:
        try:
            state = Client(url, timeout=5).status.state() or "unknown"
            table.add_row(name, url, f"[green]{state}[/green]")
        except (APIError, httpx.HTTPError, ValueError) as e:
            table.add_row(name, url, f"[red]✗ {e}[/red]")
            healthy = False

    console.print(table)

    try:
        missing = bootstrap.setup_configurator(config).missing()
    except (APIError, httpx.HTTPError, ValueError) as e:
        console.print(f"[red]✗ Could not check project setup: {e}[/red]")
        healthy = False
    else:
        if missing:
            console.print(f"[yellow]Missing: {', '.join(missing)}[/yellow]")
            console.print("Run [cyan]mirrorkit configure[/cyan] to create them.")
            healthy = False
        else:
            console.print("[green]✓[/green] Project and repositories present")

    if not healthy:
        sys.exit(1)
