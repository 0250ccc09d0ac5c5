import json
import os
import threading
from typing import Any, Optional

import yaml

from infrasynth.errors import DiscoveryCancelledError, DiscoveryError

MANIFEST_NAMES = (
    "aspire-manifest.json",
    "apphost-manifest.json",
    "manifest.json",
    "apphost-manifest.yaml",
    "apphost-manifest.yml",
)

# Resource types that make a manifest worth synthesizing
_SERVICE_TYPES = ("project.", "container.", "dockerfile.")


def locate_manifest(path: str) -> Optional[str]:
    """Return the manifest file for `path` (a file or a directory), or None."""
    if os.path.isfile(path):
        return path
    if os.path.isdir(path):
        for name in MANIFEST_NAMES:
            candidate = os.path.join(path, name)
            if os.path.isfile(candidate):
                return candidate
    return None


def load_document(filepath: str) -> Any:
    """Read a JSON or YAML document; raises OSError / ValueError / yaml.YAMLError."""
    _, ext = os.path.splitext(filepath.lower())
    with open(filepath, "r", encoding="utf-8") as fh:
        if ext in (".yaml", ".yml"):
            return yaml.safe_load(fh)
        return json.load(fh)


def detect_format(filepath: str) -> str:
    """
    Return 'apphost-manifest' or 'unknown'.
    """
    try:
        doc = load_document(filepath)
    except (OSError, ValueError, yaml.YAMLError):
        return "unknown"

    if not isinstance(doc, dict) or not isinstance(doc.get("resources"), dict):
        return "unknown"

    for value in doc["resources"].values():
        if isinstance(value, dict) and str(value.get("type", "")).startswith(_SERVICE_TYPES):
            return "apphost-manifest"
    return "unknown"


def can_import(path: str, cancel: Optional[threading.Event] = None) -> bool:
    """
    Cheap probe: does `path` hold a topology manifest with at least one service?
    """
    if not os.path.exists(path):
        raise DiscoveryError(path, "path does not exist")
    if cancel is not None and cancel.is_set():
        raise DiscoveryCancelledError(path)

    manifest = locate_manifest(path)
    if manifest is None:
        return False
    return detect_format(manifest) == "apphost-manifest"
