"""
Project settings and the per-environment configuration store.
"""
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple

import yaml
from rich.console import Console

from infrasynth.errors import PersistenceError

console = Console(stderr=True)

CONFIG_VERSION = 2
STATE_DIR = ".infrasynth"
SETTINGS_FILE = "infrasynth.yaml"


@dataclass
class Settings:
    environment: str = "dev"
    service: str = "app"         # name owning the exposure decisions
    scope: str = ""              # deployment scope seed, e.g. a subscription id
    min_replicas: int = 1
    output: Optional[str] = None


def load_settings(root: str) -> Settings:
    """Load `infrasynth.yaml` from the project root if it exists."""
    path = os.path.join(root, SETTINGS_FILE)
    settings = Settings()
    if not os.path.exists(path):
        return settings

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        console.print(f"[yellow]Warning:[/yellow] failed to read {path}: {exc}")
        return settings

    if not isinstance(data, dict):
        console.print(f"[yellow]Warning:[/yellow] {path} is not a mapping, ignoring it.")
        return settings

    known = {f.name for f in fields(Settings)}
    for key, value in data.items():
        if key not in known:
            console.print(f"[yellow]Warning:[/yellow] unknown setting '{key}' in {path}, ignoring.")
            continue
        setattr(settings, key, value)

    try:
        settings.min_replicas = int(settings.min_replicas)
    except (TypeError, ValueError):
        console.print(f"[yellow]Warning:[/yellow] min_replicas must be an integer, using 1.")
        settings.min_replicas = 1
    return settings


class EnvironmentStore:
    """
    Durable key/value document for one deployment environment.

    Keys are dotted paths (``services.app.config.exposedServices``) into a
    nested YAML mapping stored at ``<root>/.infrasynth/<env>/config.yaml``.
    """

    def __init__(self, root: str, name: str):
        self.root = root
        self.name = name
        self.path = os.path.join(root, STATE_DIR, name, "config.yaml")
        self._data: Optional[Dict[str, Any]] = None

    @property
    def data(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = self._load()
        return self._data

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            console.print(f"[yellow]Warning:[/yellow] failed to read {self.path}: {exc}")
            return {}
        if not isinstance(data, dict):
            console.print(f"[yellow]Warning:[/yellow] {self.path} is not a mapping, ignoring it.")
            return {}
        return data

    @property
    def version(self) -> int:
        v = self.data.get("version", 1)
        return v if isinstance(v, int) else 1

    def get(self, key: str) -> Tuple[Any, bool]:
        cur: Any = self.data
        for part in key.split("."):
            if not isinstance(cur, dict) or part not in cur:
                return None, False
            cur = cur[part]
        return cur, True

    def set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        cur = self.data
        for part in parts[:-1]:
            nxt = cur.get(part)
            if not isinstance(nxt, dict):
                nxt = {}
                cur[part] = nxt
            cur = nxt
        cur[parts[-1]] = value

    def unset(self, key: str) -> bool:
        parts = key.split(".")
        cur: Any = self.data
        for part in parts[:-1]:
            if not isinstance(cur, dict) or part not in cur:
                return False
            cur = cur[part]
        if isinstance(cur, dict) and parts[-1] in cur:
            del cur[parts[-1]]
            return True
        return False

    def save(self) -> None:
        self.data["version"] = CONFIG_VERSION
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            with open(self.path, "w", encoding="utf-8", newline="\n") as fh:
                yaml.safe_dump(self.data, fh, default_flow_style=False, sort_keys=True)
        except (OSError, yaml.YAMLError) as exc:
            raise PersistenceError(self.path, exc) from exc
