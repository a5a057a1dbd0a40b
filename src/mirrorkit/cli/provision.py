"""Provisioning commands"""

import asyncio
import sys

import click
from rich.console import Console

from mirrorkit.installer import bootstrap
from mirrorkit.orchestrator.errors import ConfigurationError, RegistryError
from mirrorkit.runtime.podman import PodmanRuntime
from mirrorkit.visualizer import render_configuration, render_plan, render_report

console = Console()


@click.command()
@click.option("--skip-teardown", is_flag=True, help="Do not remove a previous deployment first")
@click.option("--skip-configure", is_flag=True, help="Do not create the demo project and repositories")
@click.option("--timeout", type=float, help="Overall run timeout in seconds")
@click.pass_context
def provision(ctx, skip_teardown, skip_configure, timeout):
    """Provision the primary, mirror, database, search index and proxy"""
    config = ctx.obj["config"]

    console.print(f"[bold]Starting Bitbucket Data Center {config['bitbucket']['version']} setup[/bold]\n")
    console.print("[dim]The application usually takes 2-4 minutes to boot.[/dim]\n")

    try:
        result = asyncio.run(
            bootstrap.provision(
                config,
                skip_teardown=skip_teardown,
                skip_configure=skip_configure,
                timeout=timeout,
            )
        )
    except (ConfigurationError, RegistryError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise click.Abort()
    except Exception as e:
        console.print(f"[red]✗ Provisioning failed: {e}[/red]")
        raise click.Abort()

    console.print(render_report(result.report))

    if result.configuration is not None:
        console.print(render_configuration(result.configuration))
    elif result.configuration_skipped:
        console.print(f"[yellow]Post-bootstrap setup skipped: {result.configuration_skipped}[/yellow]")

    if not result.ok:
        console.print("\n[red]✗ Some services failed to provision[/red]")
        console.print("Re-run [cyan]mirrorkit provision[/cyan] to start again from a clean state.")
        sys.exit(1)

    console.print("\n[bold green]✓ Setup complete![/bold green]")
    bitbucket = config["bitbucket"]
    console.print(f"Primary: https://localhost:{bitbucket['primary_port']} ({bitbucket['admin_user']})")
    console.print(f"Mirror:  https://localhost:{bitbucket['mirror_port']}")
    console.print(f"SSH Port: {bitbucket['ssh_port']} (exposed via nginx)")

    console.print("\n[bold]Manual steps required:[/bold]")
    for index, step in enumerate(bootstrap.manual_steps(config), start=1):
        console.print(f"  {index}. {step}")
    console.print("\n[dim]Self-signed certificates will cause browser warnings.[/dim]")


@click.command()
@click.pass_context
def plan(ctx):
    """Show the provisioning order without changing anything"""
    try:
        registry = bootstrap.build_registry(ctx.obj["config"])
    except (ConfigurationError, RegistryError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise click.Abort()

    console.print(render_plan(registry))


@click.command()
@click.option("--keep-workdir", is_flag=True, help="Keep generated certificates and configs")
@click.pass_context
def teardown(ctx, keep_workdir):
    """Remove containers, volumes and network of a previous run"""
    config = ctx.obj["config"]
    runtime = PodmanRuntime(network=config["deploy"]["network"])

    try:
        asyncio.run(bootstrap.teardown(runtime, config, remove_workdir=not keep_workdir))
        console.print("[green]✓[/green] Previous deployment removed")

    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise click.Abort()


@click.command()
@click.pass_context
def configure(ctx):
    """Ensure the demo project and repositories exist on the primary"""
    try:
        result = bootstrap.configure_primary(ctx.obj["config"])
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise click.Abort()

    console.print(render_configuration(result))
    if not result.ok:
        sys.exit(1)
