"""Rich tables for plans, run reports and post-bootstrap results."""

from rich.table import Table
from rich.tree import Tree

from ..orchestrator.configurator import ConfiguratorResult
from ..orchestrator.models import NodeState, Report
from ..orchestrator.registry import ServiceRegistry


def render_plan(registry: ServiceRegistry) -> Tree:
    """Show the topological layers and each node's dependencies"""
    tree = Tree("[bold cyan]Provisioning plan[/bold cyan]")

    for index, layer in enumerate(registry.layers()):
        branch = tree.add(f"[bold]Layer {index}[/bold]")
        for service_id in layer:
            spec = registry.get(service_id)
            deps = ", ".join(sorted(spec.depends_on)) or "-"
            trust = " [magenta](trust bootstrap)[/magenta]" if spec.requires_trust_bootstrap else ""
            branch.add(f"[cyan]{service_id}[/cyan] [dim]{spec.image}[/dim] deps: {deps}{trust}")

    return tree


def render_report(report: Report) -> Table:
    """Create table showing the final state of every node."""
    table = Table(title="Provisioning Report", show_header=True, header_style="bold cyan")
    table.add_column("Service", style="cyan")
    table.add_column("State", justify="center")
    table.add_column("Elapsed", justify="right", style="dim")
    table.add_column("Probes", justify="right", style="dim")
    table.add_column("Details")

    for service_id, instance in report.instances.items():
        if instance.state is NodeState.READY:
            state = "[green]● Ready[/green]"
        else:
            state = f"[red]○ {instance.state.value}[/red]"

        elapsed = f"{instance.elapsed:.1f}s" if instance.elapsed is not None else "-"
        probes = str(instance.last_probe_result.attempts) if instance.last_probe_result else "-"

        details = []
        if instance.failure_reason is not None:
            details.append(str(instance.failure_reason))
        for warning in instance.warnings:
            details.append(f"[yellow]⚠ {warning}[/yellow]")

        table.add_row(service_id, state, elapsed, probes, "\n".join(details))

    return table


def render_configuration(result: ConfiguratorResult) -> Table:
    table = Table(title="Post-bootstrap Setup", show_header=True, header_style="bold magenta")
    table.add_column("Resource", style="magenta")
    table.add_column("Result")

    for label in result.created:
        table.add_row(label, "[green]✓ created[/green]")
    for label in result.existing:
        table.add_row(label, "[green]✓ already exists[/green]")
    for warning in result.warnings:
        table.add_row("-", f"[yellow]⚠ {warning}[/yellow]")

    return table
