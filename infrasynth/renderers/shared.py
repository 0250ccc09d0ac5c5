"""
Shared infrastructure: main.bicep, resources.bicep and main.parameters.json.
"""
import json
from typing import Dict, List

from infrasynth.models.topology import Topology
from infrasynth.naming import compact_name, scoped_name, screaming_snake
from infrasynth.renderers import render
from infrasynth.renderers.blocks import ROLE_ACR_PULL, Block, BlockParam, role_assignment
from infrasynth.renderers.values import parameter_symbol

# Outputs every service descriptor relies on
CORE_OUTPUTS = [
    ("MANAGED_IDENTITY_CLIENT_ID", "managedIdentity.properties.clientId"),
    ("MANAGED_IDENTITY_NAME", "managedIdentity.name"),
    ("AZURE_LOG_ANALYTICS_WORKSPACE_NAME", "logAnalyticsWorkspace.name"),
    ("AZURE_CONTAINER_REGISTRY_ENDPOINT", "containerRegistry.properties.loginServer"),
    ("AZURE_CONTAINER_REGISTRY_MANAGED_IDENTITY_ID", "managedIdentity.id"),
    ("AZURE_CONTAINER_REGISTRY_NAME", "containerRegistry.name"),
    ("AZURE_CONTAINER_APPS_ENVIRONMENT_NAME", "containerAppEnvironment.name"),
    ("AZURE_CONTAINER_APPS_ENVIRONMENT_ID", "containerAppEnvironment.id"),
    ("AZURE_CONTAINER_APPS_ENVIRONMENT_DEFAULT_DOMAIN", "containerAppEnvironment.properties.defaultDomain"),
    ("AZURE_RESOURCE_TOKEN", "resourceToken"),
]

_MAIN = """\
targetScope = 'subscription'

@minLength(1)
@maxLength(64)
@description('Name of the environment that can be used as part of naming resource convention, the name of the resource group for your application will use this name, prefixed with rg-')
param environmentName string

@minLength(1)
@description('The location used for all deployed resources')
param location string

@description('Id of the user or app to assign application roles')
param principalId string = ''
{% for p in params %}

{% if p.secure %}
@secure()
{% endif %}
param {{ p.symbol }} string
{% endfor %}

var tags = {
  'azd-env-name': environmentName
}

resource rg 'Microsoft.Resources/resourceGroups@2022-09-01' = {
  name: 'rg-${environmentName}'
  location: location
  tags: tags
}

module resources 'resources.bicep' = {
  scope: rg
  name: 'resources'
  params: {
    location: location
    tags: tags
    principalId: principalId
{% for p in params %}
    {{ p.symbol }}: {{ p.symbol }}
{% endfor %}
  }
}

{% for name, _ in outputs %}
output {{ name }} string = resources.outputs.{{ name }}
{% endfor %}
"""

_RESOURCES = """\
@description('The location used for all deployed resources')
param location string = resourceGroup().location

@description('Id of the user or app to assign application roles')
param principalId string = ''

@description('Tags that will be applied to all resources')
param tags object = {}
{% for p in params %}

{% if p.secure %}
@secure()
{% endif %}
param {{ p.symbol }} string
{% endfor %}

var resourceToken = '{{ token }}'

resource managedIdentity 'Microsoft.ManagedIdentity/userAssignedIdentities@2023-01-31' = {
  name: '{{ identity_name }}'
  location: location
  tags: tags
}

resource containerRegistry 'Microsoft.ContainerRegistry/registries@2023-07-01' = {
  name: '{{ registry_name }}'
  location: location
  sku: {
    name: 'Basic'
  }
  tags: tags
}

{{ role_assignment('containerRegistry', acr_pull, 'Pull') }}
resource logAnalyticsWorkspace 'Microsoft.OperationalInsights/workspaces@2022-10-01' = {
  name: '{{ workspace_name }}'
  location: location
  properties: {
    sku: {
      name: 'PerGB2018'
    }
  }
  tags: tags
}

resource containerAppEnvironment 'Microsoft.App/managedEnvironments@2024-03-01' = {
  name: '{{ environment_name }}'
  location: location
  properties: {
    workloadProfiles: [
      {
        workloadProfileType: 'Consumption'
        name: 'consumption'
      }
    ]
    appLogsConfiguration: {
      destination: 'log-analytics'
      logAnalyticsConfiguration: {
        customerId: logAnalyticsWorkspace.properties.customerId
        sharedKey: logAnalyticsWorkspace.listKeys().primarySharedKey
      }
    }
  }
  tags: tags
}
{% for block in blocks %}

{{ block.text -}}
{% endfor %}

{% for name, expr in outputs %}
output {{ name }} string = {{ expr }}
{% endfor %}
"""


def shared_params(topology: Topology, blocks: List[Block]) -> List[BlockParam]:
    """Deploy-time inputs: declared topology parameters plus block secrets."""
    params = [
        BlockParam(parameter_symbol(p.name), f"AZURE_{screaming_snake(p.name)}", p.secret)
        for p in topology.parameters
    ]
    for b in blocks:
        params.extend(b.params)
    return params


def all_outputs(blocks: List[Block]):
    outputs = list(CORE_OUTPUTS)
    for b in blocks:
        outputs.extend(b.outputs)
    return outputs


def render_main(params: List[BlockParam], outputs) -> str:
    return render(_MAIN, params=params, outputs=outputs)


def shared_names(token: str) -> Dict[str, str]:
    """Platform names of the resources every deployment gets."""
    return {
        "identity_name": scoped_name("mi", "app", token),
        "registry_name": compact_name("acr", "", token),
        "workspace_name": scoped_name("law", "app", token),
        "environment_name": scoped_name("cae", "app", token),
    }


def render_resources(token: str, params: List[BlockParam], blocks: List[Block], outputs) -> str:
    return render(
        _RESOURCES,
        token=token,
        params=params,
        blocks=blocks,
        outputs=outputs,
        **shared_names(token),
        role_assignment=role_assignment,
        acr_pull=ROLE_ACR_PULL,
    )


def render_parameters(params: List[BlockParam]) -> str:
    doc = {
        "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#",
        "contentVersion": "1.0.0.0",
        "parameters": {
            "environmentName": {"value": "${AZURE_ENV_NAME}"},
            "location": {"value": "${AZURE_LOCATION}"},
            "principalId": {"value": "${AZURE_PRINCIPAL_ID}"},
        },
    }
    for p in params:
        doc["parameters"][p.symbol] = {"value": "${%s}" % p.env_var}
    return json.dumps(doc, indent=2) + "\n"
