"""
Template synthesizer: topology in, virtual file tree out.

The mapping is pure. Nothing here touches the filesystem, the clock or any
random source; the resource token is the only input that makes generated
names unique, so the same topology and token always produce byte-identical
artifacts.
"""
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from infrasynth.errors import ExposureError, IdentifierCollisionError, IncompleteResourceError
from infrasynth.models.files import VirtualFileTree
from infrasynth.models.resource import Resource, ResourceKind
from infrasynth.models.topology import Topology
from infrasynth.naming import bicep_name, platform_name, screaming_snake
from infrasynth.renderers.blocks import Block, BlockContext, render_blocks, renderer_for
from infrasynth.renderers.project import PROJECT_FILE, render_project
from infrasynth.renderers.runtime import render_descriptor
from infrasynth.renderers.service import plan_service, render_service
from infrasynth.renderers.shared import (
    CORE_OUTPUTS,
    all_outputs,
    render_main,
    render_parameters,
    render_resources,
    shared_names,
    shared_params,
)
from infrasynth.renderers.values import parameter_symbol

INFRA_DIR = "infra"

# symbols declared by the shared templates themselves
RESERVED_SYMBOLS = (
    "containerAppEnvironment",
    "containerRegistry",
    "containerRegistryPull",
    "environmentName",
    "location",
    "logAnalyticsWorkspace",
    "managedIdentity",
    "principalId",
    "resourceToken",
    "resources",
    "rg",
    "tags",
)

# parent kind/engine each child kind can live under
_CHILD_PARENTS = {
    (ResourceKind.DATASTORE, "postgres"): (ResourceKind.DATASTORE, "postgres"),
    (ResourceKind.STORAGE, None): (ResourceKind.STORAGE, None),
}


def _check_unique(family: str, owners: Iterable[Tuple[str, str]]) -> None:
    """`owners` yields (identifier, owner) pairs; two owners may not share one."""
    seen: Dict[str, str] = {}
    for ident, owner in owners:
        if ident in seen and seen[ident] != owner:
            raise IdentifierCollisionError(seen[ident], owner, ident, family)
        seen.setdefault(ident, owner)


def _check_exposure(topology: Topology) -> None:
    for r in topology.resources:
        if not r.servable and any(b.external for b in r.bindings):
            raise ExposureError(r.name)


def _child_key(r: Resource) -> Tuple[ResourceKind, Optional[str]]:
    return (r.kind, r.engine if r.kind == ResourceKind.DATASTORE else None)


def _check_structure(topology: Topology) -> None:
    for r in topology.resources:
        if r.parent is not None:
            parent = topology.get(r.parent)
            expected = _CHILD_PARENTS.get(_child_key(r))
            if (
                parent is None
                or expected is None
                or parent.parent is not None
                or _child_key(parent) != expected
            ):
                raise IncompleteResourceError(r.name, f"'{r.parent}' cannot be its parent")
        elif not r.is_service and renderer_for(r) is None:
            kind = r.resource_type or r.kind.value
            raise IncompleteResourceError(r.name, f"no infrastructure template for {kind} resources")


def _block_owned(blocks: List[Block], names: Callable[[Block], List[str]], shared=()) -> List[Tuple[str, str]]:
    owned = [(name, "<shared>") for name, _ in shared]
    for b in blocks:
        owned.extend((n, b.resource) for n in names(b))
    return owned


def check_identifiers(topology: Topology, blocks: Sequence[Block] = (), token: Optional[str] = None) -> None:
    """
    Fail on any two distinct inputs that derive the same generated identifier.

    Every symbol that `resources.bicep` declares goes into one table: the
    shared template's own symbols, resource and parameter symbols, block
    parameters and whatever each block declares. Globally unique platform
    names (and names scoped to them) form a second table.
    """
    resources = topology.resources
    _check_unique("platform name", ((platform_name(r.name), r.name) for r in resources))

    symbols: List[Tuple[str, str]] = [(s, f"<{s}>") for s in RESERVED_SYMBOLS]
    symbols += [(bicep_name(r.name), r.name) for r in resources]
    symbols += [(parameter_symbol(p.name), p.name) for p in topology.parameters]
    symbols += _block_owned(blocks, lambda b: [p.symbol for p in b.params])
    for b in blocks:
        symbols += b.symbols
    _check_unique("template symbol", symbols)

    names: List[Tuple[str, str]] = []
    if token is not None:
        names += [(n, "<shared>") for n in shared_names(token).values()]
    for b in blocks:
        names += b.names
    _check_unique("resource name", names)

    snakes = [(screaming_snake(r.name), r.name) for r in resources]
    snakes += [(screaming_snake(p.name), p.name) for p in topology.parameters]
    _check_unique("output name", snakes)
    _check_unique("output name", _block_owned(blocks, lambda b: [name for name, _ in b.outputs], CORE_OUTPUTS))


def synthesize(
    topology: Topology,
    token: str,
    root: Optional[str] = None,
    min_replicas: int = 1,
    project_name: str = "app",
) -> VirtualFileTree:
    """
    Render every artifact for `topology`.

    `root` is the directory the tree will be merged into; project paths are
    made relative to it when placing runtime descriptors next to projects.
    """
    topology.validate_references()
    _check_exposure(topology)
    _check_structure(topology)

    blocks = render_blocks(BlockContext(topology, token))
    check_identifiers(topology, blocks, token)
    params = shared_params(topology, blocks)
    outputs = all_outputs(blocks)

    tree = VirtualFileTree()
    tree.add(f"{INFRA_DIR}/main.bicep", render_main(params, outputs), owner="<shared>")
    tree.add(f"{INFRA_DIR}/resources.bicep", render_resources(token, params, blocks, outputs), owner="<shared>")
    tree.add(f"{INFRA_DIR}/main.parameters.json", render_parameters(params), owner="<shared>")

    plans = []
    for r in topology.services():
        plan = plan_service(topology, r, root=root, min_replicas=min_replicas)
        tree.add(f"{INFRA_DIR}/services/{plan.app_name}.bicep", render_service(plan), owner=r.name)
        tree.add(plan.descriptor_path, render_descriptor(plan), owner=r.name)
        plans.append(plan)

    tree.add(PROJECT_FILE, render_project(project_name, plans, INFRA_DIR), owner="<shared>")
    return tree
