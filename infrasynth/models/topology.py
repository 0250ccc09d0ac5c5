"""
In-memory application topology: resources, their bindings and parameters.
"""
from typing import Dict, Iterable, List, Optional

from infrasynth.errors import DanglingReferenceError, DuplicateResourceError, ExposureError
from infrasynth.models.resource import Binding, Parameter, Resource, ResourceKind


class Topology:
    """
    Validated set of resources and parameters.

    Names are unique across resources and parameters, and every reference
    resolves inside the topology. Bindings are kept sorted by name so binding
    indices do not depend on the order the source declared them in.
    """

    def __init__(
        self,
        resources: Iterable[Resource],
        parameters: Iterable[Parameter] = (),
        source: str = "",
    ):
        self.source = source
        self._resources: Dict[str, Resource] = {}
        self._parameters: Dict[str, Parameter] = {}

        for r in resources:
            if r.name in self._resources:
                raise DuplicateResourceError(r.name)
            r.bindings.sort(key=lambda b: b.name)
            self._resources[r.name] = r

        for p in parameters:
            if p.name in self._resources or p.name in self._parameters:
                raise DuplicateResourceError(p.name)
            self._parameters[p.name] = p

        self.validate_references()

    def validate_references(self) -> None:
        for name in sorted(self._resources):
            for ref in sorted(self._resources[name].references):
                if ref not in self._resources and ref not in self._parameters:
                    raise DanglingReferenceError(name, ref)

    # ---------------------------------------------------------- accessors
    @property
    def resources(self) -> List[Resource]:
        return [self._resources[n] for n in sorted(self._resources)]

    @property
    def parameters(self) -> List[Parameter]:
        return [self._parameters[n] for n in sorted(self._parameters)]

    def __contains__(self, name: str) -> bool:
        return name in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def get(self, name: str) -> Optional[Resource]:
        return self._resources.get(name)

    def parameter(self, name: str) -> Optional[Parameter]:
        return self._parameters.get(name)

    def of_kind(self, *kinds: ResourceKind) -> List[Resource]:
        return [r for r in self.resources if r.kind in kinds]

    def services(self) -> List[Resource]:
        return [r for r in self.resources if r.is_service]

    def servable(self) -> List[Resource]:
        return [r for r in self.resources if r.servable]

    def children(self, parent: str) -> List[Resource]:
        return [r for r in self.resources if r.parent == parent]

    def bindings(self, name: str) -> List[Binding]:
        return list(self._resources[name].bindings)

    def dependencies(self, name: str) -> List[str]:
        """Names of the resources and parameters `name` references, sorted."""
        return sorted(self._resources[name].references)

    def dependents(self, name: str) -> List[str]:
        return [r.name for r in self.resources if name in r.references]

    # ---------------------------------------------------------- mutation
    def set_exposure(self, resource_name: str, binding_index: int, external: bool) -> None:
        r = self._resources.get(resource_name)
        if r is None:
            raise KeyError(resource_name)
        if external and not r.servable:
            raise ExposureError(resource_name)
        if not 0 <= binding_index < len(r.bindings):
            raise ExposureError(resource_name, f"no binding at index {binding_index}")
        r.bindings[binding_index].external = external

    def exposed(self) -> List[str]:
        return [r.name for r in self.resources if any(b.external for b in r.bindings)]
