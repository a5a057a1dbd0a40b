"""Exception and warning taxonomy for provisioning"""

from pathlib import Path
from typing import Optional, Sequence, Union


class MirrorkitError(Exception):
    """Base exception for mirrorkit"""

    pass


class ConfigurationError(MirrorkitError):
    """Configuration is missing or invalid"""

    pass


class RegistryError(MirrorkitError):
    """Service registry failed validation"""

    pass


class CycleError(RegistryError):
    """Dependency graph is not acyclic"""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class UnknownDependencyError(RegistryError):
    """A service depends on an id the registry does not contain"""

    def __init__(self, service: str, dependency: str):
        self.service = service
        self.dependency = dependency
        super().__init__(f"Service '{service}' depends on unknown service '{dependency}'")


class DuplicateServiceError(RegistryError):
    """Two specs share the same id"""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Service '{service}' is defined more than once")


class SeedError(MirrorkitError):
    """Volume seeding failed for a destination path"""

    def __init__(self, path: Union[str, Path], cause: BaseException):
        self.path = str(path)
        self.cause = cause
        super().__init__(f"Failed to seed {self.path}: {cause}")


class CommandError(MirrorkitError):
    """A runtime command exited with a non-zero status"""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = "", stdout: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        detail = stderr.strip() or stdout.strip()
        message = f"Command failed ({returncode}): {' '.join(self.command)}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class LaunchError(MirrorkitError):
    """Service instance could not be launched"""

    def __init__(self, service: str, cause: Optional[BaseException] = None):
        self.service = service
        self.cause = cause
        super().__init__(f"Failed to launch '{service}': {cause}" if cause else f"Failed to launch '{service}'")


class TrustImportWarning(UserWarning):
    """Certificate import into a trust store did not succeed"""

    pass


class PostBootstrapWarning(UserWarning):
    """A post-bootstrap management call did not succeed"""

    pass
