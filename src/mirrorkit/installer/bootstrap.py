"""Automated provisioning of the Bitbucket primary and mirror topology."""

import asyncio
import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ..api.client import Client
from ..config.manager import license_key as read_license_key
from ..config.topology import CONTAINERS, VOLUMES, Workdir, build_specs
from ..orchestrator.configurator import ConfiguratorResult, PostBootstrapConfigurator, RepositorySeed
from ..orchestrator.models import Report
from ..orchestrator.registry import ServiceRegistry
from ..orchestrator.scheduler import Scheduler
from ..orchestrator.trust import TrustBootstrapper
from ..runtime.podman import PodmanRuntime
from .materials import prepare_workdir

console = Console()
logger = logging.getLogger(__name__)

PREREQUISITES = {
    "Podman": ["podman", "--version"],
    "OpenSSL": ["openssl", "version"],
    "ssh-keygen": ["ssh-keygen", "-V"],
}

MANUAL_STEPS = [
    "Log into the primary at https://localhost:{primary_port} ({admin_user})",
    "Navigate to: Administration (Gear) -> Mirrors",
    "Authorize the '{mirror_name}' request",
    "Click on '{mirror_name}' in the list",
    "Add the '{project_key}' project to the mirror configuration",
    "Verify sync status",
]


@dataclass
class ProvisionResult:
    report: Report
    configuration: Optional[ConfiguratorResult] = None
    configuration_skipped: str = ""

    @property
    def ok(self) -> bool:
        return self.report.ok


def check_prerequisite(name: str, command: list[str]) -> bool:
    """Check if a prerequisite is installed."""
    if shutil.which(command[0]) is None:
        return False
    try:
        result = subprocess.run(command, capture_output=True, check=False)
        return result.returncode == 0
    except OSError:
        return False


def check_prerequisites() -> List[str]:
    """Check prerequisites and return the missing ones."""
    console.print("\n[bold cyan]Checking Prerequisites[/bold cyan]")

    missing = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        for name, cmd in PREREQUISITES.items():
            task = progress.add_task(f"Checking {name}...", total=1)

            if check_prerequisite(name, cmd):
                console.print(f"  ✓ {name} installed")
            else:
                console.print(f"  ✗ {name} not found")
                missing.append(name)

            progress.update(task, advance=1)

    if missing:
        console.print(f"\n[yellow]Missing prerequisites: {', '.join(missing)}[/yellow]")
    else:
        console.print("\n[green]✓ All prerequisites installed[/green]")

    return missing


def build_registry(config: Dict[str, Any]) -> ServiceRegistry:
    """Validate configuration and build the registry without side effects"""
    key = read_license_key(config)
    return ServiceRegistry(build_specs(config, Workdir.from_config(config), key))


async def teardown(runtime, config: Dict[str, Any], remove_workdir: bool = True) -> None:
    """Remove containers, volumes, network and working directory of a previous run."""
    logger.info("Cleaning up previous runs")

    for name in CONTAINERS:
        if not await runtime.remove_container(name):
            logger.debug("Container %s not present", name)
    for name in VOLUMES:
        if not await runtime.remove_volume(name):
            logger.debug("Volume %s not present", name)
    if not await runtime.remove_network(config["deploy"]["network"]):
        logger.debug("Network %s not present", config["deploy"]["network"])

    workdir = Workdir.from_config(config)
    if remove_workdir and workdir.base.exists():
        shutil.rmtree(workdir.base)


def management_client(config: Dict[str, Any]) -> Client:
    """Authenticated client for the primary's management API"""
    api = config["api"]
    bitbucket = config["bitbucket"]
    return Client(
        base_url=api["base_url"],
        username=bitbucket["admin_user"],
        password=bitbucket["admin_password"],
        timeout=float(api.get("timeout", 30)),
        verify=bool(api.get("verify", False)),
    )


def setup_configurator(config: Dict[str, Any], client: Optional[Client] = None) -> PostBootstrapConfigurator:
    setup = config["setup"]
    return PostBootstrapConfigurator(
        client or management_client(config),
        project_key=setup["project_key"],
        project_name=setup["project_name"],
        repositories=[RepositorySeed(name) for name in setup.get("repositories", [])],
    )


def configure_primary(config: Dict[str, Any], client: Optional[Client] = None) -> ConfiguratorResult:
    """Run the idempotent project and repository setup against the primary."""
    return setup_configurator(config, client).run()


async def provision(
    config: Dict[str, Any],
    runtime=None,
    skip_teardown: bool = False,
    skip_configure: bool = False,
    timeout: Optional[float] = None,
    client: Optional[Client] = None,
) -> ProvisionResult:
    """Provision the full topology from a clean state.

    Configuration and registry validation happen before any side effect, so
    a bad license key or a broken dependency graph leaves the host untouched.
    """
    registry = build_registry(config)
    key = read_license_key(config)
    network = config["deploy"]["network"]
    runtime = runtime or PodmanRuntime(network=network)
    workdir = Workdir.from_config(config)

    if not skip_teardown:
        await teardown(runtime, config)

    logger.info("Creating infrastructure")
    await asyncio.to_thread(prepare_workdir, workdir, config, key)
    await runtime.create_network(network)

    scheduler = Scheduler(
        registry,
        runtime,
        trust=TrustBootstrapper(runtime, workdir.certificate),
    )
    if timeout is None:
        timeout = config["deploy"].get("run_timeout")
    report = await scheduler.run(timeout=float(timeout) if timeout else None)
    result = ProvisionResult(report)

    if skip_configure:
        result.configuration_skipped = "disabled"
    elif "primary" not in report.ready:
        result.configuration_skipped = "primary is not ready"
    elif "proxy" not in report.ready:
        result.configuration_skipped = "management interface is not reachable through the proxy"
    else:
        logger.info("Automating setup steps")
        result.configuration = await asyncio.to_thread(configure_primary, config, client)

    if result.configuration_skipped:
        logger.info("Skipping post-bootstrap configuration: %s", result.configuration_skipped)

    return result


def manual_steps(config: Dict[str, Any]) -> List[str]:
    """Steps an operator still performs once provisioning succeeded"""
    values = {
        "primary_port": config["bitbucket"]["primary_port"],
        "admin_user": config["bitbucket"]["admin_user"],
        "mirror_name": config["bitbucket"]["mirror_name"],
        "project_key": config["setup"]["project_key"],
    }
    return [step.format(**values) for step in MANUAL_STEPS]
