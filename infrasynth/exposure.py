"""
Decides which services are reachable from the Internet and remembers the
answer in the environment configuration.

Persisted layout, under ``services.<service>.config``:

    exposedServices:  [web]          # every version
    internalServices: [api, worker]  # version 2 only

A document without ``internalServices`` was written by version 1, which only
recorded the exposed list; every other servable resource is then internal.
With version 2, a servable resource listed in neither key has no decision
yet and is asked for again.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

from rich.console import Console

from infrasynth.config import EnvironmentStore
from infrasynth.models.topology import Topology

console = Console(stderr=True)

SELECT_PROMPT = "Select which services to expose to the Internet"


def exposed_key(service: str) -> str:
    return f"services.{service}.config.exposedServices"


def internal_key(service: str) -> str:
    return f"services.{service}.config.internalServices"


@dataclass
class ExposureDecisions:
    exposed: Set[str] = field(default_factory=set)
    internal: Set[str] = field(default_factory=set)
    version: int = 2

    def decided(self) -> Set[str]:
        return self.exposed | self.internal


def _decode_names(value: Any, key: str, topology: Topology) -> Optional[List[str]]:
    """Valid names from a persisted list; None when the value is not a list."""
    if not isinstance(value, list):
        console.print(f"[yellow]Warning:[/yellow] {key} is not a list, ignoring setting.")
        return None

    names = []
    for idx, name in enumerate(value):
        if not isinstance(name, str):
            console.print(f"[yellow]Warning:[/yellow] {key}[{idx}] is not a string, ignoring value.")
            continue
        r = topology.get(name)
        if r is None:
            console.print(f"[yellow]Warning:[/yellow] {key}[{idx}] names unknown resource '{name}', ignoring value.")
            continue
        if not r.servable:
            console.print(f"[yellow]Warning:[/yellow] {key}[{idx}] names '{name}', which has no network binding, ignoring value.")
            continue
        names.append(name)
    return names


def load_decisions(store: EnvironmentStore, service: str, topology: Topology) -> Optional[ExposureDecisions]:
    """Read the persisted decisions, skipping malformed entries one by one."""
    exposed_raw, has_exposed = store.get(exposed_key(service))
    if not has_exposed:
        return None

    exposed = _decode_names(exposed_raw, exposed_key(service), topology)
    if exposed is None:
        return None

    internal_raw, has_internal = store.get(internal_key(service))
    if not has_internal:
        servable = {r.name for r in topology.servable()}
        return ExposureDecisions(set(exposed), servable - set(exposed), version=1)

    internal = _decode_names(internal_raw, internal_key(service), topology) or []
    return ExposureDecisions(set(exposed), set(internal) - set(exposed), version=2)


def save_decisions(store: EnvironmentStore, service: str, decisions: ExposureDecisions) -> None:
    store.set(exposed_key(service), sorted(decisions.exposed))
    store.set(internal_key(service), sorted(decisions.internal))
    store.save()


def apply_decisions(topology: Topology, decisions: ExposureDecisions) -> None:
    for r in topology.servable():
        idx = r.primary_binding_index()
        if r.name in decisions.decided():
            topology.set_exposure(r.name, idx, r.name in decisions.exposed)


class ExposureSelector:
    """
    Marks the primary binding of each servable resource as external or not.

    `console` is the interactive collaborator; it only needs
    ``multi_select(message, options) -> list``.
    """

    def __init__(self, store: EnvironmentStore, console, service: str = "app"):
        self.store = store
        self.console = console
        self.service = service

    def select(self, topology: Topology) -> List[str]:
        """Apply persisted or freshly chosen decisions; returns exposed names."""
        decisions = load_decisions(self.store, self.service, topology)
        if decisions is None:
            decisions = ExposureDecisions()

        pending = [r.name for r in topology.servable() if r.name not in decisions.decided()]
        if pending:
            chosen = set(self.console.multi_select(SELECT_PROMPT, pending))
            decisions.exposed |= chosen
            decisions.internal |= set(pending) - chosen
            decisions.version = 2
            save_decisions(self.store, self.service, decisions)

        apply_decisions(topology, decisions)
        return sorted(decisions.exposed)

    def reset(self) -> bool:
        """Forget the persisted decisions so the next selection asks again."""
        removed = self.store.unset(exposed_key(self.service))
        removed = self.store.unset(internal_key(self.service)) or removed
        if removed:
            self.store.save()
        return removed
