"""Tests for the provisioning flow around the scheduler"""

import asyncio

import pytest

from mirrorkit.config.manager import ConfigManager
from mirrorkit.config.topology import CONTAINERS, VOLUMES
from mirrorkit.installer import bootstrap
from mirrorkit.orchestrator.errors import ConfigurationError
from mirrorkit.orchestrator.models import FailureKind, NodeState

RUNNING_BODY = '{"state":"RUNNING"}'


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("MIRRORKIT_LICENSE_KEY", raising=False)
    loaded = ConfigManager(tmp_path / "config.yaml").load()
    loaded["deploy"]["base_dir"] = str(tmp_path / "bb-deploy")
    loaded["bitbucket"]["license"] = "AAAB-TEST-LICENSE"
    # Port 1 is never listening, so the proxy probe fails fast.
    loaded["bitbucket"]["primary_port"] = 1
    loaded["services"] = {
        service_id: {"interval": 0.01, "timeout": 0.1}
        for service_id in ("postgres", "opensearch", "primary", "mirror", "proxy")
    }
    return loaded


@pytest.fixture
def fake_materials(monkeypatch):
    """Replace certificate and key generation with placeholder files"""
    prepared = []

    def prepare(workdir, config, license_key):
        workdir.ssh_dir.mkdir(parents=True)
        workdir.certs_dir.mkdir(parents=True)
        (workdir.ssh_dir / "id_rsa").write_text("PRIVATE KEY\n")
        (workdir.ssh_dir / "id_rsa.pub").write_text("ssh-rsa AAAA mirror@localhost\n")
        workdir.certificate.write_text("CERTIFICATE\n")
        prepared.append(workdir)

    monkeypatch.setattr(bootstrap, "prepare_workdir", prepare)
    return prepared


def status_output(handle, command, user):
    return RUNNING_BODY


class TestValidation:
    """Nothing happens on the host when validation fails"""

    def test_placeholder_license(self, config, runtime, fake_materials):
        config["bitbucket"]["license"] = "PASTE_YOUR_LICENSE_KEY_HERE"

        with pytest.raises(ConfigurationError):
            asyncio.run(bootstrap.provision(config, runtime=runtime))

        assert runtime.calls == []
        assert fake_materials == []

    def test_build_registry(self, config):
        registry = bootstrap.build_registry(config)

        assert len(registry) == 5
        assert "proxy" in registry


class TestTeardown:
    """Removal of a previous deployment"""

    def test_removes_everything(self, config, runtime, tmp_path):
        workdir = tmp_path / "bb-deploy"
        (workdir / "certs").mkdir(parents=True)

        asyncio.run(bootstrap.teardown(runtime, config))

        assert [call[1] for call in runtime.calls_for("remove_container")] == list(CONTAINERS)
        assert [call[1] for call in runtime.calls_for("remove_volume")] == list(VOLUMES)
        assert runtime.calls_for("remove_network") == [("remove_network", "bb-net")]
        assert not workdir.exists()

    def test_keep_workdir(self, config, runtime, tmp_path):
        workdir = tmp_path / "bb-deploy"
        workdir.mkdir()

        asyncio.run(bootstrap.teardown(runtime, config, remove_workdir=False))

        assert workdir.exists()


class TestProvision:
    """Full topology against the fake runtime"""

    def test_bitbucket_nodes_ready_configuration_skipped(self, config, runtime, fake_materials):
        """Configuration is gated on the proxy being reachable"""
        runtime.exec_handler = status_output

        result = asyncio.run(bootstrap.provision(config, runtime=runtime))

        report = result.report
        assert sorted(report.ready[:2]) == ["opensearch", "postgres"]
        assert report.ready[2:] == ["primary", "mirror"]
        assert report.reason_for("proxy").kind is FailureKind.PROBE_TIMED_OUT
        assert result.configuration is None
        assert "proxy" in result.configuration_skipped
        assert not result.ok

        ops = [call[0] for call in runtime.calls]
        assert ops.index("remove_network") < ops.index("create_network") < ops.index("launch")
        assert len(fake_materials) == 1

        mirror_home = runtime.volume_root / "bb-mirror-home"
        assert (mirror_home / ".ssh" / "id_rsa").read_text() == "PRIVATE KEY\n"
        assert b"application.mode=mirror" in (mirror_home / "shared" / "bitbucket.properties").read_bytes()
        assert report.instances["mirror"].visited(NodeState.RESTARTING)
        assert len(runtime.calls_for("restart")) == 2

    def test_configuration_skipped_when_primary_fails(self, config, runtime, fake_materials):
        runtime.exec_handler = status_output
        runtime.fail_launch.add("primary")

        result = asyncio.run(bootstrap.provision(config, runtime=runtime, skip_teardown=True))

        assert result.configuration_skipped == "primary is not ready"
        assert result.report.reason_for("mirror").kind is FailureKind.UPSTREAM_FAILURE
        assert runtime.calls_for("remove_container") == []

    def test_skip_configure(self, config, runtime, fake_materials):
        runtime.exec_handler = status_output

        result = asyncio.run(bootstrap.provision(config, runtime=runtime, skip_configure=True))

        assert result.configuration_skipped == "disabled"


def test_manual_steps(config):
    steps = bootstrap.manual_steps(config)

    assert steps[0] == "Log into the primary at https://localhost:1 (admin)"
    assert "Add the 'DEMO' project to the mirror configuration" in steps
