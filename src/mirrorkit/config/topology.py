"""Build the service registry for the primary + mirror deployment."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from ..orchestrator.models import ExecTarget, HttpTarget, ReadinessProbe, SeedFile, ServiceSpec
from ..orchestrator.prober import body_matches, exit_ok
from .templates import render_mirror_properties, render_primary_properties

BITBUCKET_HOME = "/var/atlassian/application-data/bitbucket"

CONTAINERS = ("bb-primary", "bb-mirror", "bb-postgres", "bb-opensearch", "bb-nginx")
VOLUMES = ("bb-primary-home", "bb-mirror-home", "bb-postgres-data")

# Default polling (interval seconds, timeout seconds) per service.
PROBE_DEFAULTS = {
    "postgres": (2, 60),
    "opensearch": (5, 300),
    "primary": (5, 450),
    "mirror": (5, 450),
    "proxy": (5, 450),
}

STATUS_COMMAND = ("curl", "-s", "--max-time", "5", "http://localhost:7990/status")


@dataclass(frozen=True)
class Workdir:
    """Host working directory holding generated material"""

    base: Path

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Workdir":
        return cls(Path(config["deploy"]["base_dir"]).expanduser())

    @property
    def certs_dir(self) -> Path:
        return self.base / "certs"

    @property
    def config_dir(self) -> Path:
        return self.base / "config"

    @property
    def ssh_dir(self) -> Path:
        return self.config_dir / "mirror-ssh"

    @property
    def certificate(self) -> Path:
        return self.certs_dir / "fullchain.pem"

    @property
    def private_key(self) -> Path:
        return self.certs_dir / "privkey.pem"

    @property
    def primary_properties(self) -> Path:
        return self.config_dir / "bitbucket.properties"

    @property
    def mirror_properties(self) -> Path:
        return self.config_dir / "bitbucket-mirror.properties"

    @property
    def nginx_conf(self) -> Path:
        return self.config_dir / "nginx.conf"


def _probe(config: Dict[str, Any], service_id: str, target, predicate, description: str) -> ReadinessProbe:
    interval, timeout = PROBE_DEFAULTS[service_id]
    overrides = config.get("services", {}).get(service_id, {}) or {}
    interval = float(overrides.get("interval", interval))
    if "attempts" in overrides:
        return ReadinessProbe.from_attempts(target, predicate, interval, int(overrides["attempts"]), description)
    timeout = float(overrides.get("timeout", timeout))
    return ReadinessProbe(target, predicate, interval=interval, timeout=timeout, description=description)


def build_specs(config: Dict[str, Any], workdir: Workdir, license_key: str) -> List[ServiceSpec]:
    """Service specs for postgres, opensearch, primary, mirror and proxy"""
    bitbucket = config["bitbucket"]
    postgres = config["postgres"]
    opensearch = config["opensearch"]
    owner = (int(bitbucket["uid"]), int(bitbucket["gid"]))
    image = f"docker.io/atlassian/bitbucket:{bitbucket['version']}"

    primary_properties = render_primary_properties(config, license_key).encode()
    mirror_properties = render_mirror_properties(config).encode()

    return [
        ServiceSpec(
            id="postgres",
            image=f"postgres:{postgres['version']}",
            container_name="bb-postgres",
            volume="bb-postgres-data",
            volume_target="/var/lib/postgresql/data",
            env=(
                ("POSTGRES_DB", postgres["database"]),
                ("POSTGRES_USER", postgres["user"]),
                ("POSTGRES_PASSWORD", postgres["password"]),
            ),
            readiness=_probe(
                config, "postgres",
                ExecTarget(("pg_isready", "-U", postgres["user"])), exit_ok(),
                "pg_isready",
            ),
        ),
        ServiceSpec(
            id="opensearch",
            image=f"opensearchproject/opensearch:{opensearch['version']}",
            container_name="bb-opensearch",
            env=(
                ("discovery.type", "single-node"),
                ("DISABLE_SECURITY_PLUGIN", "true"),
                ("OPENSEARCH_JAVA_OPTS", f"-Xms{opensearch['heap']} -Xmx{opensearch['heap']}"),
            ),
            readiness=_probe(
                config, "opensearch",
                ExecTarget(("curl", "-sf", "--max-time", "5", "http://localhost:9200/_cluster/health")), exit_ok(),
                "cluster health",
            ),
        ),
        ServiceSpec(
            id="primary",
            image=image,
            container_name="bb-primary",
            depends_on=frozenset({"postgres", "opensearch"}),
            volume="bb-primary-home",
            volume_target=BITBUCKET_HOME,
            seed_files=(
                SeedFile("shared/bitbucket.properties", 0o644, content=primary_properties, owner=owner),
            ),
            requires_trust_bootstrap=True,
            env=(("ELASTICSEARCH_ENABLED", "false"),),
            extra_hosts=("localhost:host-gateway",),
            readiness=_probe(
                config, "primary",
                ExecTarget(STATUS_COMMAND), body_matches(r'"state"\s*:\s*"RUNNING"'),
                "application state RUNNING",
            ),
        ),
        ServiceSpec(
            id="mirror",
            image=image,
            container_name="bb-mirror",
            depends_on=frozenset({"primary"}),
            volume="bb-mirror-home",
            volume_target=BITBUCKET_HOME,
            seed_files=(
                SeedFile("shared/bitbucket.properties", 0o644, content=mirror_properties, owner=owner),
                SeedFile(".ssh", 0o700, source=workdir.ssh_dir, is_directory=True, owner=owner),
                SeedFile(".ssh/id_rsa", 0o600, source=workdir.ssh_dir / "id_rsa", owner=owner),
                SeedFile(".ssh/id_rsa.pub", 0o644, source=workdir.ssh_dir / "id_rsa.pub", owner=owner),
            ),
            requires_trust_bootstrap=True,
            # Mirror mode is forced on the JVM so a late config read cannot boot a primary.
            env=(("JVM_SUPPORT_RECOMMENDED_ARGS", "-Dapplication.mode=mirror"),),
            extra_hosts=("localhost:host-gateway",),
            readiness=_probe(
                config, "mirror",
                ExecTarget(STATUS_COMMAND), body_matches(r'"state"\s*:\s*"(FIRST_RUN|RUNNING)"'),
                "application state FIRST_RUN or RUNNING",
            ),
        ),
        ServiceSpec(
            id="proxy",
            image="nginx:latest",
            container_name="bb-nginx",
            depends_on=frozenset({"primary", "mirror"}),
            ports=(
                f"{bitbucket['primary_port']}:443",
                f"{bitbucket['mirror_port']}:8443",
                f"{bitbucket['ssh_port']}:7999",
            ),
            mounts=(
                f"{workdir.nginx_conf}:/etc/nginx/nginx.conf:Z",
                f"{workdir.certs_dir}:/etc/nginx/certs:Z",
            ),
            readiness=_probe(
                config, "proxy",
                HttpTarget(f"https://localhost:{bitbucket['primary_port']}/status"), body_matches(r"RUNNING"),
                "primary RUNNING through proxy",
            ),
        ),
    ]
