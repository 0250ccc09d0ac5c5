"""
App host manifest reader: the discovery collaborator behind the topology cache.
"""
import os
import threading
from typing import Any, Dict, List, Optional, Tuple

import yaml
from rich.console import Console

from infrasynth.detect import load_document, locate_manifest
from infrasynth.errors import DiscoveryCancelledError, DiscoveryError
from infrasynth.models.resource import Binding, Parameter, Resource, ResourceKind
from infrasynth.models.topology import Topology

console = Console(stderr=True)

DEFAULT_PROJECT_PORT = 8080

# manifest type -> (kind, datastore engine)
_TYPE_KINDS: Dict[str, Tuple[ResourceKind, Optional[str]]] = {
    "project.v0":             (ResourceKind.PROJECT, None),
    "project.v1":             (ResourceKind.PROJECT, None),
    "container.v0":           (ResourceKind.CONTAINER, None),
    "container.v1":           (ResourceKind.CONTAINER, None),
    "dockerfile.v0":          (ResourceKind.CONTAINER, None),
    "postgres.server.v0":     (ResourceKind.DATASTORE, "postgres"),
    "postgres.database.v0":   (ResourceKind.DATASTORE, "postgres"),
    "redis.v0":               (ResourceKind.DATASTORE, "redis"),
    "azure.redis.v0":         (ResourceKind.DATASTORE, "redis"),
    "azure.cosmosdb.v0":      (ResourceKind.DATASTORE, "cosmosdb"),
    "azure.servicebus.v0":    (ResourceKind.MESSAGE_QUEUE, None),
    "azure.storage.v0":       (ResourceKind.STORAGE, None),
    "azure.storage.blob.v0":  (ResourceKind.STORAGE, None),
    "azure.keyvault.v0":      (ResourceKind.KEY_VAULT, None),
    "azure.appinsights.v0":   (ResourceKind.TELEMETRY, None),
    "azure.identity.v0":      (ResourceKind.IDENTITY, None),
}

_PARAMETER_TYPES = {"parameter.v0"}


def _str_list(val: Any) -> List[str]:
    if not isinstance(val, list):
        return []
    return [str(v) for v in val if isinstance(v, (str, int))]


def _port(val: Any) -> Optional[int]:
    try:
        return int(val) if val is not None else None
    except (TypeError, ValueError):
        return None


def _parse_bindings(name: str, kind: ResourceKind, raw: Any) -> List[Binding]:
    bindings: List[Binding] = []
    if not isinstance(raw, dict):
        return bindings

    for bname, spec in raw.items():
        if not isinstance(spec, dict):
            console.print(f"[yellow]Warning:[/yellow] binding '{bname}' of '{name}' is not an object, skipping.")
            continue
        port = _port(spec.get("targetPort", spec.get("containerPort")))
        if port is None and kind == ResourceKind.PROJECT:
            port = DEFAULT_PROJECT_PORT
        scheme = str(spec.get("scheme", "http")).lower()
        bindings.append(Binding(
            name=str(bname),
            scheme=scheme,
            protocol=str(spec.get("protocol", "tcp")).lower(),
            transport=str(spec.get("transport", "tcp" if scheme == "tcp" else "http")).lower(),
            target_port=port,
            external=bool(spec.get("external", False)),
            allow_insecure=scheme == "http",
        ))
    return bindings


def _resolve_path(base_dir: str, value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value:
        return None
    value = value.replace("\\", "/")
    return os.path.normpath(os.path.join(base_dir, value))


def _parse_resource(name: str, spec: Dict[str, Any], base_dir: str) -> Optional[Resource]:
    rtype = str(spec.get("type", ""))
    if rtype not in _TYPE_KINDS:
        console.print(f"[dim]Skipping unsupported resource type '{rtype}' ({name})[/dim]")
        return None

    kind, engine = _TYPE_KINDS[rtype]
    env = spec.get("env") or {}
    if not isinstance(env, dict):
        console.print(f"[yellow]Warning:[/yellow] env of '{name}' is not an object, ignoring it.")
        env = {}

    r = Resource(
        name=name,
        kind=kind,
        resource_type=rtype,
        bindings=_parse_bindings(name, kind, spec.get("bindings")),
        env={str(k): str(v) for k, v in env.items()},
        image=spec.get("image") if isinstance(spec.get("image"), str) else None,
        parent=spec.get("parent") if isinstance(spec.get("parent"), str) else None,
        engine=engine,
        queues=_str_list(spec.get("queues")),
        topics=_str_list(spec.get("topics")),
        containers=_str_list(spec.get("containers")),
    )

    if kind == ResourceKind.PROJECT:
        r.path = _resolve_path(base_dir, spec.get("path"))
    elif rtype == "dockerfile.v0":
        r.path = _resolve_path(base_dir, spec.get("path"))
        r.build_context = _resolve_path(base_dir, spec.get("context")) or (
            os.path.dirname(r.path) if r.path else None
        )
    elif kind == ResourceKind.CONTAINER and isinstance(spec.get("build"), dict):
        r.build_context = _resolve_path(base_dir, spec["build"].get("context"))
    return r


def _parse_parameter(name: str, spec: Dict[str, Any]) -> Parameter:
    inputs = spec.get("inputs") or {}
    value_input = inputs.get("value") if isinstance(inputs, dict) else None
    secret = bool(value_input.get("secret")) if isinstance(value_input, dict) else False
    default = None
    if isinstance(value_input, dict) and isinstance(value_input.get("default"), dict):
        generate = value_input["default"].get("value")
        default = str(generate) if generate is not None else None
    return Parameter(name=name, secret=secret, default=default)


def parse_file(filepath: str) -> Topology:
    try:
        doc = load_document(filepath)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise DiscoveryError(filepath, str(exc)) from exc

    if not isinstance(doc, dict) or not isinstance(doc.get("resources"), dict):
        raise DiscoveryError(filepath, "manifest has no 'resources' object")

    base_dir = os.path.dirname(os.path.abspath(filepath))
    resources: List[Resource] = []
    parameters: List[Parameter] = []

    for name, spec in doc["resources"].items():
        if not isinstance(spec, dict):
            console.print(f"[yellow]Warning:[/yellow] resource '{name}' is not an object, skipping.")
            continue
        if spec.get("type") in _PARAMETER_TYPES:
            parameters.append(_parse_parameter(str(name), spec))
            continue
        r = _parse_resource(str(name), spec, base_dir)
        if r is not None:
            resources.append(r)

    return Topology(resources, parameters, source=os.path.abspath(filepath))


def discover(source_path: str, cancel: Optional[threading.Event] = None) -> Topology:
    """Locate and parse the manifest for `source_path` (a file or a directory)."""
    if cancel is not None and cancel.is_set():
        raise DiscoveryCancelledError(source_path)

    manifest = locate_manifest(source_path)
    if manifest is None:
        raise DiscoveryError(source_path, "no app host manifest found")

    topology = parse_file(manifest)

    if cancel is not None and cancel.is_set():
        raise DiscoveryCancelledError(source_path)
    return topology
