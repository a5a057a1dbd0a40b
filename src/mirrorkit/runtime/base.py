"""Runtime interface consumed by the orchestrator."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Union

from ..orchestrator.models import ServiceSpec, Volume


class ContainerStatus(str, Enum):
    RUNNING = "running"
    EXITED = "exited"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ContainerHandle:
    """Reference to a launched service instance"""

    name: str
    id: str = ""


class Runtime(ABC):
    """Operations the orchestrator needs from a container runtime.

    Every method is a coroutine. Failures of individual commands raise
    ``CommandError``; ``launch`` raises ``LaunchError``.
    """

    @abstractmethod
    async def launch(self, spec: ServiceSpec) -> ContainerHandle:
        """Start a detached instance of the service"""

    @abstractmethod
    async def restart(self, handle: ContainerHandle) -> None:
        """Restart an instance and return once the runtime accepted it"""

    @abstractmethod
    async def exec(self, handle: ContainerHandle, command: Sequence[str], user: Optional[str] = None) -> str:
        """Run a command inside the instance and return its stdout"""

    @abstractmethod
    async def copy_into(self, handle: ContainerHandle, local_path: Union[str, Path], remote_path: str) -> None:
        """Copy a host file into the instance"""

    @abstractmethod
    async def inspect_status(self, handle: ContainerHandle) -> ContainerStatus:
        """Report the coarse process state of the instance"""

    @abstractmethod
    async def create_network(self, name: str) -> None:
        """Create the bridge network shared by all instances"""

    @abstractmethod
    async def create_volume(self, name: str) -> Volume:
        """Create a named volume and return it with its host mountpoint"""

    @abstractmethod
    async def chown(self, volume: Volume, path: str, uid: int, gid: int, recursive: bool = False) -> None:
        """Change ownership of a path inside a volume"""

    @abstractmethod
    async def remove_container(self, name: str) -> bool:
        """Force-remove a container; False when it did not exist"""

    @abstractmethod
    async def remove_volume(self, name: str) -> bool:
        """Remove a volume; False when it did not exist"""

    @abstractmethod
    async def remove_network(self, name: str) -> bool:
        """Remove a network; False when it did not exist"""
