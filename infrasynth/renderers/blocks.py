"""
Per-kind declaration blocks of the shared infrastructure template.

Each renderer handles one top-level resource and returns the Bicep text for
it, the outputs it contributes and any secure parameters it needs. Child
resources (databases, blob containers) are rendered inside their parent's
block. The synthesizer only calls a renderer for resources that exist, so a
kind that is absent from the topology leaves no trace in the output.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from infrasynth.errors import IncompleteResourceError
from infrasynth.models.resource import Resource, ResourceKind
from infrasynth.models.topology import Topology
from infrasynth.naming import bicep_name, compact_name, platform_name, scoped_name, screaming_snake
from infrasynth.renderers import render

# Built-in role definition ids
ROLE_ACR_PULL = "7f951dda-4ed3-4680-a7ca-43fe172d538d"
ROLE_KEY_VAULT_SECRETS_USER = "4633458b-17de-408a-b874-0445c86b69e6"
ROLE_STORAGE_BLOB_DATA_CONTRIBUTOR = "ba92f5b4-2d11-453d-a403-e96b0029c9fe"
ROLE_SERVICE_BUS_DATA_SENDER = "69a216fc-b8fb-44d8-bc22-1f3c2cd27a39"
ROLE_SERVICE_BUS_DATA_RECEIVER = "4f6d3b9b-027b-4f4c-9142-0e5a2a2247e0"
ROLE_MONITORING_METRICS_PUBLISHER = "3913510d-42f4-4e42-8a64-420c390055eb"
COSMOS_DATA_CONTRIBUTOR = "00000000-0000-0000-0000-000000000002"


@dataclass
class BlockParam:
    symbol: str
    env_var: str
    secure: bool = True


@dataclass
class Block:
    resource: str
    text: str
    outputs: List[Tuple[str, str]] = field(default_factory=list)
    params: List[BlockParam] = field(default_factory=list)
    # (identifier, raw owner name) pairs declared by the block text
    symbols: List[Tuple[str, str]] = field(default_factory=list)
    names: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class BlockContext:
    topology: Topology
    token: str


_ROLE_ASSIGNMENT = """\
resource {{ symbol }} 'Microsoft.Authorization/roleAssignments@2022-04-01' = {
  name: guid({{ scope }}.id, managedIdentity.id, subscriptionResourceId('Microsoft.Authorization/roleDefinitions', '{{ role }}'))
  scope: {{ scope }}
  properties: {
    principalId: managedIdentity.properties.principalId
    principalType: 'ServicePrincipal'
    roleDefinitionId: subscriptionResourceId('Microsoft.Authorization/roleDefinitions', '{{ role }}')
  }
}
"""


def role_assignment(scope: str, role: str, suffix: str = "RoleAssignment") -> str:
    return render(_ROLE_ASSIGNMENT, symbol=f"{scope}{suffix}", scope=scope, role=role)


def _own(owner: str, *idents: str) -> List[Tuple[str, str]]:
    return [(i, owner) for i in idents]


# --------------------------------------------------------- datastores
_POSTGRES = """\
resource {{ sym }} 'Microsoft.DBforPostgreSQL/flexibleServers@2022-12-01' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
  sku: {
    name: 'Standard_B1ms'
    tier: 'Burstable'
  }
  properties: {
    version: '16'
    administratorLogin: 'pgadmin'
    administratorLoginPassword: {{ sym }}Password
    storage: {
      storageSizeGB: 32
    }
    highAvailability: {
      mode: 'Disabled'
    }
  }

  resource firewallAzure 'firewallRules@2022-12-01' = {
    name: 'AllowAllAzureIps'
    properties: {
      startIpAddress: '0.0.0.0'
      endIpAddress: '0.0.0.0'
    }
  }
}
{% for db in databases %}

resource {{ db.sym }} 'Microsoft.DBforPostgreSQL/flexibleServers/databases@2022-12-01' = {
  parent: {{ sym }}
  name: '{{ db.name }}'
}
{% endfor %}
"""


def _children(ctx: BlockContext, r: Resource, kind: ResourceKind, engine: Optional[str] = None) -> List[Resource]:
    children = ctx.topology.children(r.name)
    for c in children:
        if c.kind != kind or (engine and c.engine != engine):
            raise IncompleteResourceError(c.name, f"'{r.name}' cannot be the parent of a {c.resource_type or c.kind.value} resource")
    return children


def render_postgres(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    children = _children(ctx, r, ResourceKind.DATASTORE, "postgres")
    databases = [{"sym": bicep_name(c.name), "name": c.name} for c in children]
    snake = screaming_snake(r.name)
    name = scoped_name("psql", r.name, ctx.token, 63)
    text = render(_POSTGRES, r=r, sym=sym, name=name, databases=databases)
    return Block(
        resource=r.name,
        text=text,
        outputs=[(f"{snake}_HOST", f"{sym}.properties.fullyQualifiedDomainName")],
        params=[BlockParam(f"{sym}Password", f"{snake}_PASSWORD")],
        symbols=_own(r.name, sym) + [(d["sym"], c.name) for d, c in zip(databases, children)],
        names=_own(r.name, name),
    )


_REDIS = """\
resource {{ sym }} 'Microsoft.Cache/redis@2023-08-01' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
  properties: {
    sku: {
      name: 'Basic'
      family: 'C'
      capacity: 0
    }
    enableNonSslPort: false
    minimumTlsVersion: '1.2'
  }
}
"""


def render_redis(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    name = scoped_name("redis", r.name, ctx.token, 63)
    text = render(_REDIS, r=r, sym=sym, name=name)
    return Block(
        r.name,
        text,
        outputs=[(f"{screaming_snake(r.name)}_HOST", f"{sym}.properties.hostName")],
        symbols=_own(r.name, sym),
        names=_own(r.name, name),
    )


_COSMOS = """\
resource {{ sym }} 'Microsoft.DocumentDB/databaseAccounts@2024-05-15' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
  kind: 'GlobalDocumentDB'
  properties: {
    databaseAccountOfferType: 'Standard'
    consistencyPolicy: {
      defaultConsistencyLevel: 'Session'
    }
    locations: [
      {
        locationName: location
        failoverPriority: 0
      }
    ]
    disableLocalAuth: true
  }
}

resource {{ sym }}DataContributor 'Microsoft.DocumentDB/databaseAccounts/sqlRoleAssignments@2024-05-15' = {
  parent: {{ sym }}
  name: guid({{ sym }}.id, managedIdentity.id, '{{ role }}')
  properties: {
    principalId: managedIdentity.properties.principalId
    roleDefinitionId: {{ role_definition }}
    scope: {{ sym }}.id
  }
}
"""


def render_cosmos(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    name = scoped_name("cosmos", r.name, ctx.token, 44)
    text = render(
        _COSMOS,
        r=r,
        sym=sym,
        name=name,
        role=COSMOS_DATA_CONTRIBUTOR,
        role_definition="'${%s.id}/sqlRoleDefinitions/%s'" % (sym, COSMOS_DATA_CONTRIBUTOR),
    )
    return Block(
        r.name,
        text,
        outputs=[(f"{screaming_snake(r.name)}_ENDPOINT", f"{sym}.properties.documentEndpoint")],
        symbols=_own(r.name, sym, f"{sym}DataContributor"),
        names=_own(r.name, name),
    )


# --------------------------------------------------------- messaging
_SERVICE_BUS = """\
resource {{ sym }} 'Microsoft.ServiceBus/namespaces@2022-10-01-preview' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
  sku: {
    name: 'Standard'
  }
  properties: {
    disableLocalAuth: true
  }
}
{% for q in queues %}

resource {{ q.sym }} 'Microsoft.ServiceBus/namespaces/queues@2022-10-01-preview' = {
  parent: {{ sym }}
  name: '{{ q.name }}'
}
{% endfor %}
{% for t in topics %}

resource {{ t.sym }} 'Microsoft.ServiceBus/namespaces/topics@2022-10-01-preview' = {
  parent: {{ sym }}
  name: '{{ t.name }}'
}
{% endfor %}

{{ role_assignment(sym, sender, 'Sender') }}
{{ role_assignment(sym, receiver, 'Receiver') -}}
"""


def _sub_symbols(parent: Resource, parent_sym: str, names: List[str], kind: str) -> List[Dict[str, str]]:
    return [
        {"sym": bicep_name(f"{parent_sym}_{kind}_{n}"), "name": n, "owner": f"{parent.name}/{n}"}
        for n in sorted(set(names))
    ]


def render_service_bus(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    name = scoped_name("sb", r.name, ctx.token, 50)
    queues = _sub_symbols(r, sym, r.queues, "queue")
    topics = _sub_symbols(r, sym, r.topics, "topic")
    text = render(
        _SERVICE_BUS,
        r=r,
        sym=sym,
        name=name,
        queues=queues,
        topics=topics,
        role_assignment=role_assignment,
        sender=ROLE_SERVICE_BUS_DATA_SENDER,
        receiver=ROLE_SERVICE_BUS_DATA_RECEIVER,
    )
    return Block(
        r.name,
        text,
        outputs=[(f"{screaming_snake(r.name)}_ENDPOINT", f"{sym}.properties.serviceBusEndpoint")],
        symbols=(
            _own(r.name, sym, f"{sym}Sender", f"{sym}Receiver")
            + [(q["sym"], q["owner"]) for q in queues + topics]
        ),
        names=_own(r.name, name),
    )


# --------------------------------------------------------- storage
_STORAGE = """\
resource {{ sym }} 'Microsoft.Storage/storageAccounts@2023-01-01' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
  kind: 'StorageV2'
  sku: {
    name: 'Standard_LRS'
  }
  properties: {
    minimumTlsVersion: 'TLS1_2'
    allowBlobPublicAccess: false
    allowSharedKeyAccess: false
  }

  resource blobs 'blobServices@2023-01-01' = {
    name: 'default'
{% for c in containers %}

    resource {{ c.sym }} 'containers@2023-01-01' = {
      name: '{{ c.name }}'
    }
{% endfor %}
  }
}

{{ role_assignment(sym, role) -}}
"""


def render_storage(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    name = compact_name("st", r.name, ctx.token)
    raw = list(r.containers) + [c.name for c in _children(ctx, r, ResourceKind.STORAGE)]
    containers = [
        {"sym": bicep_name(f"{sym}_container_{n}"), "name": platform_name(n, 63), "owner": f"{r.name}/{n}"}
        for n in sorted(set(raw))
    ]
    text = render(
        _STORAGE,
        r=r,
        sym=sym,
        name=name,
        containers=containers,
        role_assignment=role_assignment,
        role=ROLE_STORAGE_BLOB_DATA_CONTRIBUTOR,
    )
    return Block(
        r.name,
        text,
        outputs=[(f"{screaming_snake(r.name)}_BLOB_ENDPOINT", f"{sym}.properties.primaryEndpoints.blob")],
        symbols=_own(r.name, sym, f"{sym}RoleAssignment") + [(c["sym"], c["owner"]) for c in containers],
        # container names only need to be unique inside their account
        names=_own(r.name, name) + [(f"{name}/{c['name']}", c["owner"]) for c in containers],
    )


# --------------------------------------------------------- secrets, telemetry, identity
_KEY_VAULT = """\
resource {{ sym }} 'Microsoft.KeyVault/vaults@2023-07-01' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
  properties: {
    tenantId: subscription().tenantId
    sku: {
      family: 'A'
      name: 'standard'
    }
    enableRbacAuthorization: true
  }
}

{{ role_assignment(sym, role) -}}
"""


def render_key_vault(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    name = scoped_name("kv", r.name, ctx.token, 24)
    text = render(
        _KEY_VAULT,
        r=r,
        sym=sym,
        name=name,
        role_assignment=role_assignment,
        role=ROLE_KEY_VAULT_SECRETS_USER,
    )
    return Block(
        r.name,
        text,
        outputs=[(f"{screaming_snake(r.name)}_VAULT_URI", f"{sym}.properties.vaultUri")],
        symbols=_own(r.name, sym, f"{sym}RoleAssignment"),
        names=_own(r.name, name),
    )


_APP_INSIGHTS = """\
resource {{ sym }} 'Microsoft.Insights/components@2020-02-02' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
  kind: 'web'
  properties: {
    Application_Type: 'web'
    WorkspaceResourceId: logAnalyticsWorkspace.id
  }
}

{{ role_assignment(sym, role) -}}
"""


def render_app_insights(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    name = scoped_name("appi", r.name, ctx.token, 64)
    text = render(
        _APP_INSIGHTS,
        r=r,
        sym=sym,
        name=name,
        role_assignment=role_assignment,
        role=ROLE_MONITORING_METRICS_PUBLISHER,
    )
    return Block(
        r.name,
        text,
        outputs=[(f"{screaming_snake(r.name)}_CONNECTION_STRING", f"{sym}.properties.ConnectionString")],
        symbols=_own(r.name, sym, f"{sym}RoleAssignment"),
        names=_own(r.name, name),
    )


_IDENTITY = """\
resource {{ sym }} 'Microsoft.ManagedIdentity/userAssignedIdentities@2023-01-31' = {
  name: '{{ name }}'
  location: location
  tags: union(tags, {'aspire-resource-name': {{ bicep_str(r.name) }}})
}
"""


def render_identity(r: Resource, ctx: BlockContext) -> Block:
    sym = bicep_name(r.name)
    name = scoped_name("id", r.name, ctx.token, 128)
    text = render(_IDENTITY, r=r, sym=sym, name=name)
    return Block(
        r.name,
        text,
        outputs=[(f"{screaming_snake(r.name)}_CLIENT_ID", f"{sym}.properties.clientId")],
        symbols=_own(r.name, sym),
        names=_own(r.name, name),
    )


BlockRenderer = Callable[[Resource, BlockContext], Block]

# (kind, engine) -> renderer, in the order blocks appear in the template
BLOCK_RENDERERS: List[Tuple[Tuple[ResourceKind, Optional[str]], BlockRenderer]] = [
    ((ResourceKind.IDENTITY, None), render_identity),
    ((ResourceKind.TELEMETRY, None), render_app_insights),
    ((ResourceKind.KEY_VAULT, None), render_key_vault),
    ((ResourceKind.DATASTORE, "postgres"), render_postgres),
    ((ResourceKind.DATASTORE, "redis"), render_redis),
    ((ResourceKind.DATASTORE, "cosmosdb"), render_cosmos),
    ((ResourceKind.MESSAGE_QUEUE, None), render_service_bus),
    ((ResourceKind.STORAGE, None), render_storage),
]


def renderer_for(r: Resource) -> Optional[BlockRenderer]:
    for (kind, engine), fn in BLOCK_RENDERERS:
        if r.kind == kind and (engine is None or r.engine == engine):
            return fn
    return None


def render_blocks(ctx: BlockContext) -> List[Block]:
    """Blocks for every top-level backing resource, grouped by kind."""
    blocks: List[Block] = []
    for (kind, engine), fn in BLOCK_RENDERERS:
        for r in ctx.topology.of_kind(kind):
            if r.parent is not None:
                continue
            if engine is not None and r.engine != engine:
                continue
            blocks.append(fn(r, ctx))
    return blocks
