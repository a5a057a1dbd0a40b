"""Static registry of service specs with dependency validation."""

import graphlib
from typing import Dict, FrozenSet, Iterable, List

from .errors import CycleError, DuplicateServiceError, UnknownDependencyError
from .models import ServiceSpec


class ServiceRegistry:
    """Validated, read-only collection of service specs.

    Validation happens once in the constructor: duplicate ids, references to
    unknown services and dependency cycles are all rejected before anything
    else can use the registry.
    """

    def __init__(self, specs: Iterable[ServiceSpec]):
        self._specs: Dict[str, ServiceSpec] = {}
        for spec in specs:
            if spec.id in self._specs:
                raise DuplicateServiceError(spec.id)
            self._specs[spec.id] = spec

        for spec in self._specs.values():
            for dependency in sorted(spec.depends_on):
                if dependency not in self._specs:
                    raise UnknownDependencyError(spec.id, dependency)

        self._layers = self._compute_layers()

    def _compute_layers(self) -> List[List[str]]:
        sorter = graphlib.TopologicalSorter(
            {spec_id: set(spec.depends_on) for spec_id, spec in self._specs.items()}
        )
        try:
            sorter.prepare()
        except graphlib.CycleError as e:
            raise CycleError(e.args[1]) from e

        layers = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready())
            layers.append(ready)
            sorter.done(*ready)
        return layers

    def list(self) -> List[ServiceSpec]:
        """All specs, in registration order"""
        return list(self._specs.values())

    def get(self, service_id: str) -> ServiceSpec:
        return self._specs[service_id]

    def __contains__(self, service_id: str) -> bool:
        return service_id in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def dependencies_of(self, service_id: str) -> FrozenSet[str]:
        """Direct dependency ids of a service"""
        return self._specs[service_id].depends_on

    def dependents_of(self, service_id: str) -> FrozenSet[str]:
        """Every service that transitively depends on service_id"""
        found = set()
        frontier = [service_id]
        while frontier:
            current = frontier.pop()
            for spec in self._specs.values():
                if current in spec.depends_on and spec.id not in found:
                    found.add(spec.id)
                    frontier.append(spec.id)
        return frozenset(found)

    def layers(self) -> List[List[str]]:
        """Topological layering; every layer only depends on earlier layers"""
        return [list(layer) for layer in self._layers]
