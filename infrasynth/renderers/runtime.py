"""
Runtime descriptor consumed by the container apps environment at deploy time.

Environment identifiers are never known at synthesis time; the descriptor
refers to them through ``{{ .Env.NAME }}`` placeholders filled in by the
deploy step.
"""
from typing import Any, Dict

import yaml

from infrasynth.renderers.service import IMAGE_PLACEHOLDER, ServicePlan
from infrasynth.renderers.values import descriptor_value


def _env(name: str) -> str:
    return "{{ .Env.%s }}" % name


def build_descriptor(plan: ServicePlan) -> Dict[str, Any]:
    identity_id = _env("AZURE_CONTAINER_REGISTRY_MANAGED_IDENTITY_ID")

    configuration: Dict[str, Any] = {"activeRevisionsMode": "single"}
    if plan.ingress is not None:
        configuration["ingress"] = {
            "external": plan.ingress.external,
            "targetPort": plan.ingress.target_port,
            "transport": plan.ingress.transport,
            "allowInsecure": plan.ingress.allow_insecure,
        }
    configuration["registries"] = [
        {"server": _env("AZURE_CONTAINER_REGISTRY_ENDPOINT"), "identity": identity_id},
    ]
    if plan.secrets:
        configuration["secrets"] = [
            {"name": s.secret_name, "value": descriptor_value(s)} for s in plan.secrets
        ]

    env = []
    for e in plan.env:
        if e.secret:
            env.append({"name": e.name, "secretRef": e.secret_name})
        else:
            env.append({"name": e.name, "value": descriptor_value(e)})

    return {
        "location": _env("AZURE_LOCATION"),
        "identity": {
            "type": "UserAssigned",
            "userAssignedIdentities": {identity_id: {}},
        },
        "properties": {
            "environmentId": _env("AZURE_CONTAINER_APPS_ENVIRONMENT_ID"),
            "configuration": configuration,
            "template": {
                "containers": [
                    {
                        "image": plan.image or IMAGE_PLACEHOLDER,
                        "name": plan.app_name,
                        "env": env,
                    }
                ],
                "scale": {"minReplicas": plan.min_replicas},
            },
        },
        "tags": {
            "azd-service-name": plan.name,
            "aspire-resource-name": plan.name,
        },
    }


def render_descriptor(plan: ServicePlan) -> str:
    return yaml.safe_dump(build_descriptor(plan), default_flow_style=False, sort_keys=False, width=4096)
