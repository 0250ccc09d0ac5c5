import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


class ResourceKind(str, Enum):
    PROJECT       = "project"
    CONTAINER     = "container"
    DATASTORE     = "datastore"
    MESSAGE_QUEUE = "message-queue"
    STORAGE       = "storage"
    IDENTITY      = "identity"
    KEY_VAULT     = "key-vault"
    TELEMETRY     = "telemetry"


SERVICE_KINDS = {ResourceKind.PROJECT, ResourceKind.CONTAINER}

# {name.field} placeholders inside environment values
PLACEHOLDER_RE = re.compile(r"\{([A-Za-z0-9][A-Za-z0-9_\-]*)\.([A-Za-z0-9_.\-]+)\}")


@dataclass
class Binding:
    name: str
    scheme: str = "http"         # "http", "https", "tcp"
    protocol: str = "tcp"
    transport: str = "http"      # "http", "http2", "tcp"
    target_port: Optional[int] = None
    external: bool = False
    allow_insecure: bool = False

    @property
    def is_http(self) -> bool:
        return self.scheme in ("http", "https")


@dataclass
class Resource:
    name: str
    kind: ResourceKind
    resource_type: str = ""      # manifest type, e.g. "project.v0", "redis.v0"
    bindings: List[Binding] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    image: Optional[str] = None
    build_context: Optional[str] = None
    path: Optional[str] = None   # project path, relative to the topology source
    parent: Optional[str] = None
    engine: Optional[str] = None # datastores: "postgres", "redis", "cosmosdb"
    queues: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    containers: List[str] = field(default_factory=list)

    @property
    def is_service(self) -> bool:
        return self.kind in SERVICE_KINDS

    @property
    def servable(self) -> bool:
        """A service that listens on at least one port."""
        return self.is_service and bool(self.bindings)

    @property
    def references(self) -> Set[str]:
        refs = set()
        for value in self.env.values():
            for target, _ in PLACEHOLDER_RE.findall(value):
                refs.add(target)
        if self.parent:
            refs.add(self.parent)
        return refs

    def binding(self, name: str) -> Optional[Binding]:
        for b in self.bindings:
            if b.name == name:
                return b
        return None

    def primary_binding_index(self) -> Optional[int]:
        """Index of the binding that receives ingress: https, then http, then the first one."""
        if not self.bindings:
            return None
        for scheme in ("https", "http"):
            for i, b in enumerate(self.bindings):
                if b.scheme == scheme:
                    return i
        return 0

    @property
    def primary_binding(self) -> Optional[Binding]:
        idx = self.primary_binding_index()
        return None if idx is None else self.bindings[idx]


@dataclass
class Parameter:
    name: str
    secret: bool = False
    default: Optional[str] = None
