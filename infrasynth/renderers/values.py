"""
Resolution of environment entries for a service.

A manifest value such as ``Host={db.bindings.tcp.host};Password={pw.value}``
is split into segments: literal text, and values that only exist at deploy
time. Each artifact then renders the segments in its own dialect.
"""
from dataclasses import dataclass
from typing import List, Tuple, Union

from infrasynth.errors import DanglingReferenceError, IncompleteResourceError
from infrasynth.models.resource import PLACEHOLDER_RE, Resource, ResourceKind
from infrasynth.models.topology import Topology
from infrasynth.naming import bicep_name, platform_name, secret_name
from infrasynth.renderers import bicep_str

DOMAIN = "AZURE_CONTAINER_APPS_ENVIRONMENT_DEFAULT_DOMAIN"
CLIENT_ID = "MANAGED_IDENTITY_CLIENT_ID"

# deploy-time values the per-service template can compute itself
BICEP_DEPLOY_VALUES = {
    DOMAIN: "containerAppsEnvironment.properties.defaultDomain",
    CLIENT_ID: "managedIdentity.properties.clientId",
}


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class DeployValue:
    name: str


@dataclass(frozen=True)
class ConnectionString:
    resource: str


@dataclass(frozen=True)
class ParameterValue:
    name: str
    secret: bool = False


Segment = Union[Literal, DeployValue, ConnectionString, ParameterValue]


@dataclass
class EnvEntry:
    name: str
    segments: Tuple[Segment, ...]

    @property
    def secret(self) -> bool:
        return any(
            isinstance(s, ConnectionString) or (isinstance(s, ParameterValue) and s.secret)
            for s in self.segments
        )

    @property
    def secret_name(self) -> str:
        return secret_name(self.name)

    @property
    def secret_param(self) -> str:
        return bicep_name(f"secret_{self.name}")

    def parameters(self) -> List[str]:
        return sorted({s.name for s in self.segments if isinstance(s, ParameterValue)})


# --------------------------------------------------------- resolution
def _binding_segments(owner: Resource, target: Resource, field: str) -> List[Segment]:
    parts = field.split(".")
    if len(parts) != 3:
        raise IncompleteResourceError(owner.name, f"unsupported reference '{{{target.name}.{field}}}'")
    _, bname, prop = parts

    binding = target.binding(bname)
    if binding is None:
        raise IncompleteResourceError(owner.name, f"'{target.name}' has no binding '{bname}'")
    if binding.target_port is None:
        raise IncompleteResourceError(target.name, f"binding '{bname}' has no target port")

    host = platform_name(target.name)
    if prop == "host":
        return [Literal(host)]
    if prop == "scheme":
        return [Literal(binding.scheme)]
    if prop == "targetPort":
        return [Literal(str(binding.target_port))]
    if prop == "port":
        if binding.is_http:
            return [Literal("443" if binding.scheme == "https" else "80")]
        return [Literal(str(binding.target_port))]
    if prop == "url":
        if not binding.is_http:
            return [Literal(f"{binding.scheme}://{host}:{binding.target_port}")]
        # ingress is per app, so every http binding follows the primary one
        primary = target.primary_binding
        if binding.external or (primary is not None and primary.is_http and primary.external):
            return [Literal(f"https://{host}."), DeployValue(DOMAIN)]
        return [Literal(f"{binding.scheme}://{host}.internal."), DeployValue(DOMAIN)]
    raise IncompleteResourceError(owner.name, f"unsupported binding property '{prop}' on '{target.name}'")


def _placeholder_segments(topology: Topology, owner: Resource, target_name: str, field: str) -> List[Segment]:
    param = topology.parameter(target_name)
    if param is not None:
        if field != "value":
            raise IncompleteResourceError(owner.name, f"parameter '{target_name}' only provides 'value'")
        return [ParameterValue(param.name, param.secret)]

    target = topology.get(target_name)
    if target is None:
        # rejected at construction; re-checked here
        raise DanglingReferenceError(owner.name, target_name)

    if field == "connectionString":
        if target.kind == ResourceKind.PROJECT:
            raise IncompleteResourceError(owner.name, f"project '{target.name}' has no connection string")
        return [ConnectionString(target.name)]
    if field.startswith("bindings."):
        return _binding_segments(owner, target, field)
    raise IncompleteResourceError(owner.name, f"unsupported reference '{{{target_name}.{field}}}'")


def resolve_value(topology: Topology, owner: Resource, name: str, value: str) -> EnvEntry:
    segments: List[Segment] = []
    pos = 0
    for m in PLACEHOLDER_RE.finditer(value):
        if m.start() > pos:
            segments.append(Literal(value[pos:m.start()]))
        segments.extend(_placeholder_segments(topology, owner, m.group(1), m.group(2)))
        pos = m.end()
    if pos < len(value) or not segments:
        segments.append(Literal(value[pos:]))
    return EnvEntry(name, tuple(_merge_literals(segments)))


def _merge_literals(segments: List[Segment]) -> List[Segment]:
    merged: List[Segment] = []
    for s in segments:
        if isinstance(s, Literal) and merged and isinstance(merged[-1], Literal):
            merged[-1] = Literal(merged[-1].text + s.text)
        else:
            merged.append(s)
    return merged


def resolve_env(topology: Topology, owner: Resource) -> List[EnvEntry]:
    """Declared entries plus the ones every service gets, sorted by name."""
    entries = {k: resolve_value(topology, owner, k, v) for k, v in owner.env.items()}

    if "AZURE_CLIENT_ID" not in entries:
        entries["AZURE_CLIENT_ID"] = EnvEntry("AZURE_CLIENT_ID", (DeployValue(CLIENT_ID),))

    primary = owner.primary_binding
    if primary is not None and primary.target_port is not None and "PORT" not in entries:
        entries["PORT"] = EnvEntry("PORT", (Literal(str(primary.target_port)),))

    return [entries[k] for k in sorted(entries)]


# --------------------------------------------------------- dialects
def descriptor_value(entry: EnvEntry) -> str:
    """Deploy-time template expression used by the runtime descriptor."""
    out = []
    for s in entry.segments:
        if isinstance(s, Literal):
            out.append(s.text)
        elif isinstance(s, DeployValue):
            out.append("{{ .Env.%s }}" % s.name)
        elif isinstance(s, ConnectionString):
            out.append('{{ connectionString "%s" }}' % s.resource)
        elif s.secret:
            out.append('{{ securedParameter "%s" }}' % s.name)
        else:
            out.append('{{ parameter "%s" }}' % s.name)
    return "".join(out)


def parameter_symbol(name: str) -> str:
    return bicep_name(f"param_{name}")


def bicep_value(entry: EnvEntry) -> str:
    """Bicep expression for a non-secret entry."""
    if entry.secret:
        return entry.secret_param

    text = []
    for s in entry.segments:
        if isinstance(s, Literal):
            text.append(bicep_str(s.text)[1:-1])
        elif isinstance(s, DeployValue):
            text.append("${%s}" % BICEP_DEPLOY_VALUES[s.name])
        elif isinstance(s, ParameterValue):
            text.append("${%s}" % parameter_symbol(s.name))
    return "'" + "".join(text) + "'"
