"""Tests for the dependency scheduler and node lifecycle"""

import asyncio
import random
from pathlib import Path

import pytest

from mirrorkit.orchestrator.errors import ConfigurationError, CycleError, CommandError
from mirrorkit.orchestrator.models import FailureKind, NodeState, ProbeOutcome, SeedFile
from mirrorkit.orchestrator.registry import ServiceRegistry
from mirrorkit.orchestrator.scheduler import Scheduler
from mirrorkit.orchestrator.trust import TrustBootstrapper

from fakes import FakeProber, make_spec

CERT = Path("/deploy/certs/fullchain.pem")

UNREACHED_STATES = {NodeState.PENDING, NodeState.SEEDING, NodeState.STARTING}


def run(scheduler, timeout=None):
    return asyncio.run(scheduler.run(timeout=timeout))


def trust_for(runtime):
    return TrustBootstrapper(runtime, CERT, running_timeout=0.1, poll_interval=0.01)


def topology():
    return ServiceRegistry(
        [
            make_spec("db"),
            make_spec("search"),
            make_spec("primary", ["db", "search"]),
            make_spec("mirror", ["primary"]),
        ]
    )


class TestEndToEnd:
    """DB + Search -> Primary -> Mirror"""

    def test_primary_waits_for_slowest_dependency(self, runtime):
        """Primary starts only after both DB and Search are ready"""
        prober = FakeProber(delays={"db": 0.05, "search": 0.08})
        report = run(Scheduler(topology(), runtime, prober=prober))

        assert report.ok
        assert report.ready == ["db", "search", "primary", "mirror"]

        instances = report.instances
        primary_start = instances["primary"].entered_at(NodeState.STARTING)
        assert primary_start >= instances["search"].entered_at(NodeState.READY)
        assert primary_start >= instances["db"].entered_at(NodeState.READY)
        assert instances["search"].entered_at(NodeState.READY) - instances["search"].entered_at(NodeState.STARTING) >= 0.08

    def test_primary_timeout_fails_mirror_upstream(self, runtime):
        """A timed-out primary cascades to the mirror, which is never seeded"""
        prober = FakeProber(
            delays={"db": 0.05, "search": 0.08},
            outcomes={"primary": [ProbeOutcome.TIMED_OUT]},
        )
        report = run(Scheduler(topology(), runtime, prober=prober))

        assert report.ready == ["db", "search"]
        assert report.reason_for("primary").kind is FailureKind.PROBE_TIMED_OUT
        assert report.reason_for("mirror").kind is FailureKind.UPSTREAM_FAILURE

        mirror = report.instances["mirror"]
        assert [state for state, _ in mirror.history] == [NodeState.FAILED]
        assert not mirror.visited(NodeState.PENDING)
        assert "mirror" not in runtime.launched()

    def test_independent_branches_run_concurrently(self, runtime):
        """DB and Search start before either becomes ready"""
        prober = FakeProber(delays={"db": 0.05, "search": 0.05})
        report = run(Scheduler(topology(), runtime, prober=prober))

        db, search = report.instances["db"], report.instances["search"]
        assert db.entered_at(NodeState.STARTING) < search.entered_at(NodeState.READY)
        assert search.entered_at(NodeState.STARTING) < db.entered_at(NodeState.READY)


class TestOrdering:
    """Dependency ordering holds for arbitrary DAGs"""

    @pytest.mark.parametrize("seed", range(12))
    def test_random_dag(self, runtime, seed):
        """No node starts before every dependency is ready"""
        rng = random.Random(seed)
        ids = [f"svc{i}" for i in range(8)]
        specs = [
            make_spec(service_id, [dep for dep in ids[:index] if rng.random() < 0.35])
            for index, service_id in enumerate(ids)
        ]
        rng.shuffle(specs)
        prober = FakeProber(delays={service_id: rng.choice([0, 0.005, 0.02]) for service_id in ids})

        report = run(Scheduler(ServiceRegistry(specs), runtime, prober=prober))

        assert sorted(report.ready) == sorted(ids)
        for spec in specs:
            started = report.instances[spec.id].entered_at(NodeState.STARTING)
            for dependency in spec.depends_on:
                assert started >= report.instances[dependency].entered_at(NodeState.READY)

    def test_cycle_rejected_before_any_start(self, runtime):
        """Registry validation fails before the scheduler can launch anything"""
        with pytest.raises(CycleError):
            Scheduler(ServiceRegistry([make_spec("a", ["b"]), make_spec("b", ["a"])]), runtime)

        assert runtime.calls == []

    def test_seeding_completes_before_start(self, runtime):
        """Volume content is in place when the instance launches"""
        seed = SeedFile("shared/app.properties", 0o644, content=b"a=1\n")
        spec = make_spec("primary", volume="bb-primary-home", seed_files=[seed])

        report = run(Scheduler(ServiceRegistry([spec]), runtime, prober=FakeProber()))

        assert report.ok
        assert (runtime.volume_root / "bb-primary-home" / "shared" / "app.properties").read_bytes() == b"a=1\n"
        ops = [call[0] for call in runtime.calls]
        assert ops.index("create_volume") < ops.index("launch")
        instance = report.instances["primary"]
        assert instance.entered_at(NodeState.SEEDING) < instance.entered_at(NodeState.STARTING)


class TestTrustBootstrap:
    """Nodes that import the root certificate"""

    def test_restart_and_second_probe_before_ready(self, runtime):
        """Ready only after restart and a fresh successful probe"""
        prober = FakeProber(delays={"primary": 0.01})
        report = run(Scheduler(ServiceRegistry([make_spec("primary", trust=True)]), runtime, prober=prober, trust=trust_for(runtime)))

        instance = report.instances["primary"]
        assert [state for state, _ in instance.history] == [
            NodeState.PENDING,
            NodeState.SEEDING,
            NodeState.STARTING,
            NodeState.AWAITING_READY,
            NodeState.TRUST_BOOTSTRAP,
            NodeState.RESTARTING,
            NodeState.AWAITING_READY_AFTER_TRUST,
            NodeState.READY,
        ]

        first_probe, second_probe = prober.calls["primary"]
        (_, _, restarted_at), = runtime.calls_for("restart")
        assert first_probe <= restarted_at <= second_probe
        assert instance.entered_at(NodeState.READY) >= second_probe

    def test_import_failure_still_restarts(self, runtime):
        """A failed import is a warning; the flow continues through restart"""

        def handler(handle, command, user):
            raise CommandError(["podman", "exec", *command], 1, "keytool error: permission denied")

        runtime.exec_handler = handler
        report = run(Scheduler(ServiceRegistry([make_spec("mirror", trust=True)]), runtime, prober=FakeProber(), trust=trust_for(runtime)))

        instance = report.instances["mirror"]
        assert instance.state is NodeState.READY
        assert instance.visited(NodeState.RESTARTING)
        assert len(instance.warnings) == 1
        assert len(runtime.calls_for("restart")) == 1

    def test_probe_failure_after_restart(self, runtime):
        """The post-restart probe is required to succeed"""
        prober = FakeProber(outcomes={"primary": [ProbeOutcome.READY, ProbeOutcome.ERRORED]})
        report = run(Scheduler(ServiceRegistry([make_spec("primary", trust=True)]), runtime, prober=prober, trust=trust_for(runtime)))

        assert report.reason_for("primary").kind is FailureKind.PROBE_ERRORED
        assert report.instances["primary"].visited(NodeState.AWAITING_READY_AFTER_TRUST)

    def test_restart_failure(self, runtime):
        """A failed restart fails the node"""
        runtime.fail_restart.add("primary")
        report = run(Scheduler(ServiceRegistry([make_spec("primary", trust=True)]), runtime, prober=FakeProber(), trust=trust_for(runtime)))

        assert report.reason_for("primary").kind is FailureKind.RESTART_ERROR

    def test_trust_required_without_bootstrapper(self, runtime):
        """Specs needing trust cannot be scheduled without certificate material"""
        with pytest.raises(ConfigurationError):
            Scheduler(ServiceRegistry([make_spec("primary", trust=True)]), runtime)


class TestFailureIsolation:
    """Per-node failures stay on their branch"""

    def test_fail_fast_is_transitive(self, runtime):
        """Every transitive dependent fails upstream without seeding or starting"""
        runtime.fail_launch.add("a")
        registry = ServiceRegistry(
            [
                make_spec("a"),
                make_spec("b", ["a"]),
                make_spec("c", ["b"]),
                make_spec("d", ["c", "e"]),
                make_spec("e"),
            ]
        )

        report = run(Scheduler(registry, runtime, prober=FakeProber()))

        assert report.reason_for("a").kind is FailureKind.LAUNCH_ERROR
        for service_id in ("b", "c", "d"):
            instance = report.instances[service_id]
            assert instance.failure_reason.kind is FailureKind.UPSTREAM_FAILURE
            assert not any(instance.visited(state) for state in UNREACHED_STATES)
        assert report.ready == ["e"]
        assert runtime.launched() == ["e"]

    def test_seed_error_spares_siblings(self, runtime):
        """A volume failure on one node does not stop unrelated nodes"""
        runtime.fail_volume.add("bb-mirror-home")
        registry = ServiceRegistry(
            [
                make_spec("primary"),
                make_spec("mirror", ["primary"], volume="bb-mirror-home"),
                make_spec("proxy", ["primary", "mirror"]),
                make_spec("search"),
            ]
        )

        report = run(Scheduler(registry, runtime, prober=FakeProber()))

        assert report.reason_for("mirror").kind is FailureKind.SEED_ERROR
        assert report.reason_for("proxy").kind is FailureKind.UPSTREAM_FAILURE
        assert sorted(report.ready) == ["primary", "search"]

    def test_run_timeout_cancels_in_flight_nodes(self, runtime):
        """Nodes still waiting at the run deadline fail with RunTimeout"""
        prober = FakeProber(delays={"slow": 5})
        registry = ServiceRegistry([make_spec("fast"), make_spec("slow"), make_spec("after", ["slow"])])

        report = run(Scheduler(registry, runtime, prober=prober), timeout=0.1)

        assert report.ready == ["fast"]
        assert report.reason_for("slow").kind is FailureKind.RUN_TIMEOUT
        assert report.reason_for("after").kind is FailureKind.RUN_TIMEOUT
        assert report.instances["after"].history[0][0] is NodeState.FAILED
        assert report.instances["slow"].visited(NodeState.AWAITING_READY)
        assert "after" not in runtime.launched()

    def test_report_lists_every_node(self, runtime):
        """Ready and failed lists together cover the registry"""
        runtime.fail_launch.add("search")
        report = run(Scheduler(topology(), runtime, prober=FakeProber()))

        assert report.ready == ["db"]
        assert [service_id for service_id, _ in report.failed] == ["search", "primary", "mirror"]
        assert not report.ok
