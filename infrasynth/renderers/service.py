"""
Per-service deployment template (``infra/services/<name>.bicep``).
"""
import os
import posixpath
from dataclasses import dataclass, field
from typing import List, Optional

from infrasynth.errors import IdentifierCollisionError, IncompleteResourceError
from infrasynth.models.resource import Resource, ResourceKind
from infrasynth.models.topology import Topology
from infrasynth.naming import platform_name
from infrasynth.renderers import bicep_str, render
from infrasynth.renderers.values import EnvEntry, bicep_value, parameter_symbol, resolve_env

IMAGE_PLACEHOLDER = "{{ .Image }}"


@dataclass
class Ingress:
    external: bool
    target_port: int
    transport: str
    allow_insecure: bool


@dataclass
class ServicePlan:
    """Everything the per-service artifacts need, resolved once."""
    resource: Resource
    app_name: str
    image: Optional[str]            # literal image; None when built from source
    env: List[EnvEntry] = field(default_factory=list)
    ingress: Optional[Ingress] = None
    min_replicas: int = 1
    descriptor_path: str = ""
    source_dir: Optional[str] = None   # project dir or build context, relative to the root

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def secrets(self) -> List[EnvEntry]:
        return [e for e in self.env if e.secret]

    def parameters(self) -> List[str]:
        names = set()
        for e in self.env:
            if not e.secret:
                names.update(e.parameters())
        return sorted(names)


def _relative(path: str, root: Optional[str]) -> str:
    if root and os.path.isabs(path):
        path = os.path.relpath(path, root)
    return posixpath.normpath(path.replace(os.sep, "/").replace("\\", "/"))


def _relative_dir(path: str, root: Optional[str]) -> str:
    return _relative(os.path.dirname(path), root)


def project_dir(r: Resource, root: Optional[str]) -> str:
    """Directory of a project, relative to the output root."""
    rel = _relative_dir(r.path, root)
    if rel == ".." or rel.startswith("../") or posixpath.isabs(rel):
        raise IncompleteResourceError(r.name, f"project path {r.path} is outside the output root")
    return rel


def descriptor_path(r: Resource, root: Optional[str]) -> str:
    if r.kind == ResourceKind.PROJECT:
        rel = project_dir(r, root)
        prefix = "" if rel == "." else rel + "/"
        return f"{prefix}manifests/containerApp.tmpl.yaml"
    return f"infra/{platform_name(r.name)}/containerApp.tmpl.yaml"


def _check_service(r: Resource) -> None:
    if r.kind == ResourceKind.PROJECT and not r.path:
        raise IncompleteResourceError(r.name, "project has no path")
    if r.kind == ResourceKind.CONTAINER and not (r.image or r.build_context):
        raise IncompleteResourceError(r.name, "container has neither an image nor a build context")
    for b in r.bindings:
        if b.target_port is None:
            raise IncompleteResourceError(r.name, f"binding '{b.name}' has no target port")


def _check_secret_names(r: Resource, env: List[EnvEntry]) -> None:
    for family, key in (("secret name", "secret_name"), ("template symbol", "secret_param")):
        seen = {}
        for e in env:
            if not e.secret:
                continue
            ident = getattr(e, key)
            if ident in seen:
                raise IdentifierCollisionError(f"{r.name}.{seen[ident]}", f"{r.name}.{e.name}", ident, family)
            seen[ident] = e.name


def plan_service(topology: Topology, r: Resource, root: Optional[str] = None, min_replicas: int = 1) -> ServicePlan:
    _check_service(r)
    env = resolve_env(topology, r)
    _check_secret_names(r, env)

    ingress = None
    primary = r.primary_binding
    if primary is not None:
        ingress = Ingress(
            external=primary.external,
            target_port=primary.target_port,
            transport=primary.transport if primary.transport in ("http", "http2", "tcp") else "http",
            allow_insecure=primary.allow_insecure,
        )

    source_dir = None
    if r.kind == ResourceKind.PROJECT:
        source_dir = project_dir(r, root)
    elif r.build_context:
        source_dir = _relative(r.build_context, root)

    return ServicePlan(
        resource=r,
        app_name=platform_name(r.name),
        image=r.image if r.kind == ResourceKind.CONTAINER and not r.build_context else None,
        env=env,
        ingress=ingress,
        min_replicas=min_replicas,
        descriptor_path=descriptor_path(r, root),
        source_dir=source_dir,
    )


_SERVICE = """\
@description('The location used for all deployed resources')
param location string = resourceGroup().location

@description('Tags that will be applied to all resources')
param tags object = {}

param containerAppsEnvironmentName string
param containerRegistryName string
param managedIdentityName string
{% if plan.image %}
param imageName string = {{ bicep_str(plan.image) }}
{% else %}
param imageName string
{% endif %}
{% for p in parameters %}
param {{ p }} string
{% endfor %}
{% for s in plan.secrets %}

@secure()
param {{ s.secret_param }} string
{% endfor %}

resource managedIdentity 'Microsoft.ManagedIdentity/userAssignedIdentities@2023-01-31' existing = {
  name: managedIdentityName
}

resource containerRegistry 'Microsoft.ContainerRegistry/registries@2023-07-01' existing = {
  name: containerRegistryName
}

resource containerAppsEnvironment 'Microsoft.App/managedEnvironments@2024-03-01' existing = {
  name: containerAppsEnvironmentName
}

resource app 'Microsoft.App/containerApps@2024-03-01' = {
  name: '{{ plan.app_name }}'
  location: location
  tags: union(tags, {'azd-service-name': {{ bicep_str(plan.name) }}, 'aspire-resource-name': {{ bicep_str(plan.name) }}})
  identity: {
    type: 'UserAssigned'
    userAssignedIdentities: {
      '${managedIdentity.id}': {}
    }
  }
  properties: {
    environmentId: containerAppsEnvironment.id
    configuration: {
      activeRevisionsMode: 'single'
{% if plan.ingress %}
      ingress: {
        external: {{ 'true' if plan.ingress.external else 'false' }}
        targetPort: {{ plan.ingress.target_port }}
        transport: '{{ plan.ingress.transport }}'
        allowInsecure: {{ 'true' if plan.ingress.allow_insecure else 'false' }}
      }
{% endif %}
      registries: [
        {
          server: containerRegistry.properties.loginServer
          identity: managedIdentity.id
        }
      ]
{% if plan.secrets %}
      secrets: [
{% for s in plan.secrets %}
        {
          name: '{{ s.secret_name }}'
          value: {{ s.secret_param }}
        }
{% endfor %}
      ]
{% endif %}
    }
    template: {
      containers: [
        {
          image: imageName
          name: '{{ plan.app_name }}'
          env: [
{% for e in plan.env %}
            {
              name: {{ bicep_str(e.name) }}
{% if e.secret %}
              secretRef: '{{ e.secret_name }}'
{% else %}
              value: {{ bicep_value(e) }}
{% endif %}
            }
{% endfor %}
          ]
        }
      ]
      scale: {
        minReplicas: {{ plan.min_replicas }}
      }
    }
  }
}

output name string = app.name
{% if plan.ingress %}
output fqdn string = app.properties.configuration.ingress.fqdn
{% endif %}
"""


def render_service(plan: ServicePlan) -> str:
    return render(
        _SERVICE,
        plan=plan,
        parameters=[parameter_symbol(p) for p in plan.parameters()],
        bicep_value=bicep_value,
    )
