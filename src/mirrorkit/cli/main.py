#!/usr/bin/env python3
"""mirrorkit CLI - Main entry point"""

from pathlib import Path

import click
from rich.console import Console

from mirrorkit.config.manager import ConfigManager
from mirrorkit.logging_setup import setup_logging
from mirrorkit.orchestrator.errors import ConfigurationError

console = Console()


@click.group()
@click.option("--config", type=click.Path(), envvar="MIRRORKIT_CONFIG", help="Config file path")
@click.option("--base-dir", type=click.Path(), help="Working directory for generated material")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx, config, base_dir, verbose):
    """mirrorkit - Bitbucket primary and smart mirror provisioning"""
    ctx.ensure_object(dict)

    # Load configuration
    config_path = Path(config) if config else Path.home() / ".mirrorkit" / "config.yaml"
    try:
        cfg = ConfigManager(config_path).load()
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise click.Abort()

    # Override with command-line options
    if base_dir:
        cfg["deploy"]["base_dir"] = base_dir

    setup_logging("debug" if verbose else cfg.get("logging", {}).get("level", "info"))

    ctx.obj["config"] = cfg
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


@cli.command()
def version():
    """Show version information"""
    from mirrorkit import __version__

    console.print(f"mirrorkit version {__version__}")


# Import subcommands
from mirrorkit.cli import provision, verify

cli.add_command(provision.provision)
cli.add_command(provision.plan)
cli.add_command(provision.teardown)
cli.add_command(provision.configure)
cli.add_command(verify.verify)


if __name__ == "__main__":
    cli()
