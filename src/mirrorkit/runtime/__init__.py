"""Container runtime collaborators."""

from .base import ContainerHandle, ContainerStatus, Runtime
from .podman import PodmanRuntime

__all__ = [
    "ContainerHandle",
    "ContainerStatus",
    "PodmanRuntime",
    "Runtime",
]
