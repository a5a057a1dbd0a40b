"""Dependency-ordered, concurrent driver of the node lifecycle.

Each node runs in its own task and waits until all of its dependencies have
settled. A node whose dependencies are all READY walks the lifecycle:

    Pending -> Seeding -> Starting -> AwaitingReady -> Ready

or, when it requires trust bootstrap:

    AwaitingReady -> TrustBootstrap -> Restarting -> AwaitingReadyAfterTrust -> Ready

Any stage can end in Failed. A node with a failed dependency never enters
Pending: it is recorded directly as Failed with an UpstreamFailure reason and
is never seeded or started. Independent branches of the graph proceed concurrently.
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional

from ..runtime.base import Runtime
from .errors import CommandError, ConfigurationError, LaunchError, SeedError
from .models import (
    FailureKind,
    FailureReason,
    NodeState,
    ProbeOutcome,
    Report,
    ServiceInstance,
    ServiceSpec,
    can_transition,
)
from .prober import ReadinessProber
from .registry import ServiceRegistry
from .seeder import VolumeSeeder
from .trust import TrustBootstrapper

logger = logging.getLogger(__name__)

PROBE_FAILURES = {
    ProbeOutcome.TIMED_OUT: FailureKind.PROBE_TIMED_OUT,
    ProbeOutcome.ERRORED: FailureKind.PROBE_ERRORED,
}


class Scheduler:
    """Drive every registered service to READY or FAILED.

    The scheduler is the only component that mutates ServiceInstance
    records. Seeder, prober and trust bootstrapper are stateless helpers it
    calls at the matching lifecycle stage.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        runtime: Runtime,
        seeder: Optional[VolumeSeeder] = None,
        prober: Optional[ReadinessProber] = None,
        trust: Optional[TrustBootstrapper] = None,
    ):
        self.registry = registry
        self.runtime = runtime
        self.seeder = seeder or VolumeSeeder(runtime)
        self.prober = prober or ReadinessProber(runtime)
        self.trust = trust

        needs_trust = [spec.id for spec in registry.list() if spec.requires_trust_bootstrap]
        if needs_trust and trust is None:
            raise ConfigurationError(f"Services require trust bootstrap but no certificate is configured: {', '.join(needs_trust)}")

        self._instances: Dict[str, ServiceInstance] = {}
        self._settled: Dict[str, asyncio.Event] = {}
        self._ready_order = []

    @property
    def instances(self) -> Mapping[str, ServiceInstance]:
        return dict(self._instances)

    async def run(self, timeout: Optional[float] = None) -> Report:
        """Provision every node and report which became ready.

        With a timeout, nodes still in flight at the deadline are cancelled
        and reported as failed with a RunTimeout reason.
        """
        self._instances = {}
        self._ready_order = []
        self._settled = {spec.id: asyncio.Event() for spec in self.registry.list()}

        layers = self.registry.layers()
        for index, layer in enumerate(layers):
            logger.debug("Layer %d: %s", index, ", ".join(layer))

        tasks = [
            asyncio.ensure_future(self._drive(self.registry.get(service_id)))
            for layer in layers
            for service_id in layer
        ]

        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.error("Run timeout reached with %d node(s) still in progress", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        return self._report()

    def _report(self) -> Report:
        report = Report(instances=dict(self._instances))
        report.ready = list(self._ready_order)
        for layer in self.registry.layers():
            for service_id in layer:
                instance = self._instances[service_id]
                if instance.state is NodeState.FAILED:
                    report.failed.append((service_id, instance.failure_reason))
        return report

    async def _drive(self, spec: ServiceSpec) -> None:
        try:
            for dependency in sorted(spec.depends_on):
                await self._settled[dependency].wait()

            failed = sorted(
                dependency
                for dependency in spec.depends_on
                if self._instances[dependency].state is not NodeState.READY
            )
            if failed:
                self._reject(spec, FailureKind.UPSTREAM_FAILURE, f"dependency failed: {', '.join(failed)}")
                return

            await self._advance(self._admit(spec))

        except asyncio.CancelledError:
            instance = self._instances.get(spec.id)
            if instance is None:
                self._reject(spec, FailureKind.RUN_TIMEOUT, "cancelled while waiting for dependencies")
            elif not instance.state.terminal:
                self._fail(instance, FailureKind.RUN_TIMEOUT, f"cancelled in {instance.state.value}")
            raise
        except Exception as e:
            logger.exception("Unexpected error while provisioning %s", spec.id)
            instance = self._instances.get(spec.id)
            if instance is None:
                self._reject(spec, FailureKind.INTERNAL_ERROR, str(e))
            elif not instance.state.terminal:
                self._fail(instance, FailureKind.INTERNAL_ERROR, str(e))
        finally:
            self._settled[spec.id].set()

    def _admit(self, spec: ServiceSpec) -> ServiceInstance:
        instance = ServiceInstance(spec=spec)
        instance.history.append((NodeState.PENDING, self._now()))
        self._instances[spec.id] = instance
        return instance

    def _reject(self, spec: ServiceSpec, kind: FailureKind, detail: str) -> None:
        """Record a node that never became eligible to start.

        Pending is only entered once every dependency is ready, so the
        instance is created directly in FAILED.
        """
        instance = ServiceInstance(spec=spec, state=NodeState.FAILED, failure_reason=FailureReason(kind, detail))
        instance.history.append((NodeState.FAILED, self._now()))
        self._instances[spec.id] = instance
        logger.error("%s failed: %s", spec.id, instance.failure_reason)

    async def _advance(self, instance: ServiceInstance) -> None:
        spec = instance.spec

        self._transition(instance, NodeState.SEEDING)
        try:
            await self._seed(instance)
        except SeedError as e:
            self._fail(instance, FailureKind.SEED_ERROR, str(e))
            return

        self._transition(instance, NodeState.STARTING)
        try:
            instance.handle = await self.runtime.launch(spec)
        except (LaunchError, CommandError) as e:
            self._fail(instance, FailureKind.LAUNCH_ERROR, str(e))
            return
        instance.started_at = self._now()

        self._transition(instance, NodeState.AWAITING_READY)
        if not await self._await_ready(instance):
            return

        if not spec.requires_trust_bootstrap:
            self._mark_ready(instance)
            return

        self._transition(instance, NodeState.TRUST_BOOTSTRAP)
        result = await self.trust.bootstrap(self.trust.request_for(instance))
        if result.warning is not None:
            instance.warnings.append(result.warning)

        self._transition(instance, NodeState.RESTARTING)
        logger.info("Restarting %s to apply trust store", spec.id)
        try:
            await self.runtime.restart(instance.handle)
        except CommandError as e:
            self._fail(instance, FailureKind.RESTART_ERROR, str(e))
            return

        self._transition(instance, NodeState.AWAITING_READY_AFTER_TRUST)
        if not await self._await_ready(instance):
            return

        self._mark_ready(instance)

    async def _seed(self, instance: ServiceInstance) -> None:
        spec = instance.spec
        if spec.volume is None:
            if spec.seed_files:
                raise SeedError(spec.id, ValueError("seed files declared without a volume"))
            return

        try:
            instance.volume = await self.runtime.create_volume(spec.volume)
        except CommandError as e:
            raise SeedError(spec.volume, e) from e

        if spec.seed_files:
            await self.seeder.seed(instance.volume, spec.seed_files)

    async def _await_ready(self, instance: ServiceInstance) -> bool:
        logger.info("Waiting for %s to become ready", instance.id)
        result = await self.prober.wait_for(instance.spec.readiness, instance.handle)
        instance.last_probe_result = result

        if result.ready:
            return True

        detail = f"{instance.spec.readiness.target}: {result.detail}" if result.detail else str(instance.spec.readiness.target)
        self._fail(instance, PROBE_FAILURES[result.outcome], detail)
        return False

    def _mark_ready(self, instance: ServiceInstance) -> None:
        self._transition(instance, NodeState.READY)
        self._ready_order.append(instance.id)
        logger.info("%s is ready", instance.id)

    def _fail(self, instance: ServiceInstance, kind: FailureKind, detail: str = "") -> None:
        instance.failure_reason = FailureReason(kind, detail)
        self._transition(instance, NodeState.FAILED)
        logger.error("%s failed: %s", instance.id, instance.failure_reason)

    def _transition(self, instance: ServiceInstance, state: NodeState) -> None:
        if not can_transition(instance.state, state):
            raise RuntimeError(f"Illegal transition for {instance.id}: {instance.state.value} -> {state.value}")
        logger.debug("%s: %s -> %s", instance.id, instance.state.value, state.value)
        instance.state = state
        instance.history.append((state, self._now()))

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()
