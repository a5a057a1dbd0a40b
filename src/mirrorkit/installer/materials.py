"""Generate certificates, SSH keys and rendered configs in the working directory."""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, Optional

from ..config.templates import render_mirror_properties, render_nginx_conf, render_primary_properties
from ..config.topology import Workdir

logger = logging.getLogger(__name__)

CERT_SUBJECT = "/CN=localhost"
CERT_SANS = "subjectAltName = DNS:localhost,DNS:bb-primary,DNS:bb-mirror,DNS:bb-nginx"


def run_command(cmd: list[str], cwd: Optional[Path] = None, check: bool = True) -> subprocess.CompletedProcess:
    """Run a command and return the result."""
    logger.debug("Running: %s", " ".join(cmd))
    result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, check=False)

    if check and result.returncode != 0:
        logger.error("Command failed with code %d: %s", result.returncode, result.stderr.strip())
        raise RuntimeError(f"Command failed: {' '.join(cmd)}")

    return result


def generate_certificate(workdir: Workdir, days: int = 365) -> None:
    """Self-signed certificate shared by the proxy and every trust store"""
    run_command([
        "openssl", "req", "-x509", "-newkey", "rsa:4096",
        "-keyout", str(workdir.private_key),
        "-out", str(workdir.certificate),
        "-days", str(days), "-nodes",
        "-subj", CERT_SUBJECT,
        "-addext", CERT_SANS,
    ])
    # nginx runs as a different user inside its container and must read both files.
    os.chmod(workdir.private_key, 0o644)
    os.chmod(workdir.certificate, 0o644)


def generate_ssh_keypair(workdir: Workdir, comment: str = "mirror@localhost") -> None:
    key = workdir.ssh_dir / "id_rsa"
    run_command(["ssh-keygen", "-t", "rsa", "-b", "4096", "-f", str(key), "-N", "", "-q", "-C", comment])
    os.chmod(key, 0o600)
    os.chmod(key.with_suffix(".pub"), 0o644)


def write_rendered_configs(workdir: Workdir, config: Dict[str, Any], license_key: str) -> None:
    workdir.primary_properties.write_text(render_primary_properties(config, license_key))
    workdir.mirror_properties.write_text(render_mirror_properties(config))
    workdir.nginx_conf.write_text(render_nginx_conf(config))


def prepare_workdir(workdir: Workdir, config: Dict[str, Any], license_key: str) -> None:
    """Recreate the working directory from scratch.

    Nothing from a previous run is reused: the directory is removed and all
    key material and configs are generated again.
    """
    if workdir.base.exists():
        shutil.rmtree(workdir.base)

    for directory in (workdir.certs_dir, workdir.config_dir, workdir.ssh_dir):
        directory.mkdir(parents=True, exist_ok=True)

    logger.info("Generating SSL certificate")
    generate_certificate(workdir)

    logger.info("Generating SSH keys for mirror")
    generate_ssh_keypair(workdir)

    logger.info("Rendering service configuration")
    write_rendered_configs(workdir, config, license_key)
