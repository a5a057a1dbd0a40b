"""Idempotent management calls issued once the primary is ready."""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

import httpx

from ..api.client import APIError, Client, ConflictError, NotFoundError
from .errors import PostBootstrapWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepositorySeed:
    name: str
    scm_id: str = "git"
    forkable: bool = True

    @property
    def slug(self) -> str:
        return self.name.lower()


@dataclass
class ConfiguratorResult:
    created: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    warnings: List[PostBootstrapWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings


class PostBootstrapConfigurator:
    """Ensure the demo project and its repositories exist on the primary.

    Every call is create-or-noop: a 409 from the server means the resource
    is already there and counts as success. Other failures become
    PostBootstrapWarning entries; they never raise.
    """

    def __init__(
        self,
        client: Client,
        project_key: str = "DEMO",
        project_name: str = "Demo Project",
        project_description: str = "Auto-created by mirrorkit",
        repositories: Sequence[RepositorySeed] = (RepositorySeed("repo-1"),),
    ):
        self.client = client
        self.project_key = project_key
        self.project_name = project_name
        self.project_description = project_description
        self.repositories = tuple(repositories)

    def steps(self) -> List[Tuple[str, Callable[[], object]]]:
        """Ordered (label, call) pairs; repositories depend on the project"""
        steps = [
            (
                f"project {self.project_key}",
                lambda: self.client.projects.create(self.project_key, self.project_name, self.project_description),
            )
        ]
        for repo in self.repositories:
            steps.append(
                (
                    f"repository {self.project_key}/{repo.name}",
                    lambda repo=repo: self.client.repositories(self.project_key).create(
                        repo.name, repo.scm_id, repo.forkable
                    ),
                )
            )
        return steps

    def missing(self) -> List[str]:
        """Labels of the resources the server does not have yet.

        Errors other than 404 propagate to the caller.
        """
        checks = [(f"project {self.project_key}", lambda: self.client.projects.get(self.project_key))]
        for repo in self.repositories:
            checks.append(
                (
                    f"repository {self.project_key}/{repo.name}",
                    lambda repo=repo: self.client.repositories(self.project_key).get(repo.slug),
                )
            )

        missing = []
        for label, call in checks:
            try:
                call()
            except NotFoundError:
                missing.append(label)
        return missing

    def run(self) -> ConfiguratorResult:
        result = ConfiguratorResult()

        for label, call in self.steps():
            logger.info("Ensuring %s exists", label)
            try:
                call()
            except ConflictError:
                logger.info("%s already exists", label)
                result.existing.append(label)
            except (APIError, httpx.HTTPError) as e:
                warning = PostBootstrapWarning(f"Could not ensure {label}: {e}")
                logger.warning("%s", warning)
                result.warnings.append(warning)
            else:
                logger.info("Created %s", label)
                result.created.append(label)

        return result
