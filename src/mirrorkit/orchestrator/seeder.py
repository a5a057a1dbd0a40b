"""Idempotent seeding of configuration files into service volumes.

Every destination is written to a temporary file next to it and renamed into
place, so a destination either holds the complete new content or keeps its
previous content. Modes and ownership are re-applied on every call,
regardless of what is already on disk.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Sequence

from .errors import CommandError, SeedError
from .models import SeedFile, Volume

logger = logging.getLogger(__name__)


def _resolve_destination(volume: Volume, destination: str) -> Path:
    root = volume.path.resolve()
    target = (root / destination).resolve()
    if target != root and root not in target.parents:
        raise ValueError(f"destination escapes volume {volume.name}")
    return target


def _atomic_write(target: Path, data: bytes, mode: int) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_dir():
        raise IsADirectoryError(f"{target} is a directory")

    fd, tmp_name = tempfile.mkstemp(prefix=".seed-", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    os.chmod(target, mode)


def _chmod_tree(root: Path, mode: int) -> None:
    os.chmod(root, mode)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            os.chmod(os.path.join(dirpath, name), mode)


def _materialize(volume: Volume, seed: SeedFile) -> None:
    target = _resolve_destination(volume, seed.destination)

    if not seed.is_directory:
        data = seed.content if seed.content is not None else Path(seed.source).read_bytes()
        _atomic_write(target, data, seed.mode)
        return

    source = Path(seed.source)
    if not source.is_dir():
        raise NotADirectoryError(f"seed source {source} is not a directory")
    if target.exists() and not target.is_dir():
        raise NotADirectoryError(f"{target} exists and is not a directory")

    target.mkdir(parents=True, exist_ok=True)
    for dirpath, dirnames, filenames in os.walk(source):
        dirnames.sort()
        relative = Path(dirpath).relative_to(source)
        (target / relative).mkdir(parents=True, exist_ok=True)
        for name in sorted(filenames):
            data = (Path(dirpath) / name).read_bytes()
            _atomic_write(target / relative / name, data, seed.mode)

    _chmod_tree(target, seed.mode)


# Inside a rootless user namespace uid 0 is the invoking host user.
HOST_OWNER = (0, 0)


class VolumeSeeder:
    """Materialize seed files into a volume before first start.

    Ownership is applied in a final pass once every entry is written. Under
    rootless Podman a service uid maps to a host subuid, so the host user
    cannot write below a path once it has been handed over. Entries owned by
    a previous run are handed back to the host user before they are
    rewritten.
    """

    def __init__(self, runtime):
        self.runtime = runtime

    async def seed(self, volume: Volume, files: Sequence[SeedFile]) -> None:
        """Write every seed file in order; raise SeedError on the first failure"""
        owned = [seed for seed in files if seed.owner is not None]

        for seed in owned:
            if await asyncio.to_thread(self._exists, volume, seed):
                await self._chown(volume, seed, HOST_OWNER)

        for seed in files:
            logger.info("Seeding %s: %s", volume.name, seed.destination)
            try:
                await asyncio.to_thread(_materialize, volume, seed)
            except (OSError, ValueError) as e:
                raise SeedError(volume.path / seed.destination, e) from e

        for seed in owned:
            await self._chown(volume, seed, seed.owner)

    @staticmethod
    def _exists(volume: Volume, seed: SeedFile) -> bool:
        try:
            target = _resolve_destination(volume, seed.destination)
        except ValueError as e:
            raise SeedError(volume.path / seed.destination, e) from e
        return os.path.lexists(target)

    async def _chown(self, volume: Volume, seed: SeedFile, owner) -> None:
        uid, gid = owner
        try:
            await self.runtime.chown(volume, seed.destination, uid, gid, recursive=seed.is_directory)
        except CommandError as e:
            raise SeedError(volume.path / seed.destination, e) from e
