"""
Project file listing every service and where its artifacts live.

The deploy step reads it to find each service's source and runtime
descriptor, so it is rendered from the same plans as the descriptors.
"""
from typing import Any, Dict, List

import yaml

from infrasynth.models.resource import ResourceKind
from infrasynth.renderers.service import ServicePlan

PROJECT_FILE = "infrasynth.services.yaml"
HOST = "containerapp"


def build_project(name: str, plans: List[ServicePlan], infra_dir: str) -> Dict[str, Any]:
    services: Dict[str, Any] = {}
    for plan in sorted(plans, key=lambda p: p.name):
        entry: Dict[str, Any] = {"host": HOST}
        if plan.resource.kind == ResourceKind.PROJECT:
            entry["project"] = plan.source_dir
            entry["language"] = "dotnet"
        elif plan.source_dir is not None:
            entry["docker"] = {"context": plan.source_dir}
        else:
            entry["image"] = plan.image
        entry["descriptor"] = plan.descriptor_path
        entry["template"] = f"{infra_dir}/services/{plan.app_name}.bicep"
        services[plan.name] = entry

    return {
        "name": name,
        "infra": {"provider": "bicep", "path": infra_dir},
        "services": services,
    }


def render_project(name: str, plans: List[ServicePlan], infra_dir: str) -> str:
    return yaml.safe_dump(
        build_project(name, plans, infra_dir),
        default_flow_style=False,
        sort_keys=False,
        width=4096,
    )
