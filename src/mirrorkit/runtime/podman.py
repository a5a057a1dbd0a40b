"""Rootless Podman implementation of the runtime interface."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from ..orchestrator.errors import CommandError, LaunchError
from ..orchestrator.models import ServiceSpec, Volume
from .base import ContainerHandle, ContainerStatus, Runtime

logger = logging.getLogger(__name__)

EXITED_STATES = {"exited", "stopped", "dead"}


@dataclass
class CommandOutput:
    returncode: int
    stdout: str
    stderr: str


class PodmanRuntime(Runtime):
    """Drive the podman binary with asyncio subprocesses"""

    def __init__(self, network: str = "bb-net", binary: str = "podman"):
        self.network = network
        self.binary = binary

    async def _podman(self, *args: str, check: bool = True) -> CommandOutput:
        """Run a podman command and return its output"""
        cmd = [self.binary, *args]
        logger.debug("Running: %s", " ".join(cmd))

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except (asyncio.CancelledError, Exception):
            # A cancelled or timed-out caller must not leave the child running.
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
            raise

        result = CommandOutput(
            process.returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )

        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr, result.stdout)

        return result

    async def launch(self, spec: ServiceSpec) -> ContainerHandle:
        args = ["run", "-d", "--name", spec.name, "--network", self.network]

        for host in spec.extra_hosts:
            args += ["--add-host", host]
        for key, value in spec.env:
            args += ["-e", f"{key}={value}"]
        for port in spec.ports:
            args += ["-p", port]
        for mount in spec.mounts:
            args += ["-v", mount]
        if spec.volume:
            args += ["-v", f"{spec.volume}:{spec.volume_target}:Z"]

        args.append(spec.image)
        args.extend(spec.command)

        try:
            result = await self._podman(*args)
        except (CommandError, OSError) as e:
            raise LaunchError(spec.id, e) from e

        return ContainerHandle(spec.name, result.stdout.strip())

    async def restart(self, handle: ContainerHandle) -> None:
        await self._podman("restart", handle.name)

    async def exec(self, handle: ContainerHandle, command: Sequence[str], user: Optional[str] = None) -> str:
        args = ["exec"]
        if user is not None:
            args += ["-u", user]
        args.append(handle.name)
        args.extend(command)

        result = await self._podman(*args)
        return result.stdout

    async def copy_into(self, handle: ContainerHandle, local_path: Union[str, Path], remote_path: str) -> None:
        await self._podman("cp", str(local_path), f"{handle.name}:{remote_path}")

    async def inspect_status(self, handle: ContainerHandle) -> ContainerStatus:
        result = await self._podman("inspect", "-f", "{{.State.Status}}", handle.name, check=False)
        if result.returncode != 0:
            return ContainerStatus.UNKNOWN

        status = result.stdout.strip().lower()
        if status == "running":
            return ContainerStatus.RUNNING
        if status in EXITED_STATES:
            return ContainerStatus.EXITED
        return ContainerStatus.UNKNOWN

    async def create_network(self, name: str) -> None:
        await self._podman("network", "create", name)

    async def create_volume(self, name: str) -> Volume:
        await self._podman("volume", "create", name)
        result = await self._podman("volume", "inspect", "--format", "{{.Mountpoint}}", name)
        return Volume(name, Path(result.stdout.strip()))

    async def chown(self, volume: Volume, path: str, uid: int, gid: int, recursive: bool = False) -> None:
        # Rootless volumes live in the user namespace; chown has to happen inside it.
        args = ["unshare", "chown"]
        if recursive:
            args.append("-R")
        args += [f"{uid}:{gid}", str(volume.path / path)]
        await self._podman(*args)

    async def remove_container(self, name: str) -> bool:
        result = await self._podman("rm", "-f", name, check=False)
        return result.returncode == 0

    async def remove_volume(self, name: str) -> bool:
        result = await self._podman("volume", "rm", name, check=False)
        return result.returncode == 0

    async def remove_network(self, name: str) -> bool:
        result = await self._podman("network", "rm", name, check=False)
        return result.returncode == 0
