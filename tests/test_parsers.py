"""
Parser tests: verify topology extraction from the app host manifest fixture.
"""
import json
import os
import shutil
import threading

import pytest

from infrasynth.detect import can_import, detect_format, locate_manifest
from infrasynth.errors import DanglingReferenceError, DiscoveryCancelledError, DiscoveryError
from infrasynth.models.resource import ResourceKind

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
MANIFEST = os.path.join(FIXTURES, "apphost-manifest.json")


class TestManifestParser:
    def setup_method(self):
        from infrasynth.parsers import manifest
        self.parser = manifest

    def test_resource_count(self):
        topo = self.parser.parse_file(MANIFEST)
        # dashboard (executable.v0) is skipped, apikey is a parameter
        assert len(topo) == 12
        assert [p.name for p in topo.parameters] == ["apikey"]

    def test_secret_parameter(self):
        topo = self.parser.parse_file(MANIFEST)
        assert topo.parameter("apikey").secret is True

    def test_kinds(self):
        topo = self.parser.parse_file(MANIFEST)
        assert topo.get("api").kind == ResourceKind.PROJECT
        assert topo.get("gateway").kind == ResourceKind.CONTAINER
        assert topo.get("pg").engine == "postgres"
        assert topo.get("cache").engine == "redis"
        assert topo.get("messaging").kind == ResourceKind.MESSAGE_QUEUE
        assert topo.get("insights").kind == ResourceKind.TELEMETRY
        assert topo.get("secrets").kind == ResourceKind.KEY_VAULT

    def test_children_keep_parent(self):
        topo = self.parser.parse_file(MANIFEST)
        assert topo.get("db").parent == "pg"
        assert [c.name for c in topo.children("storage")] == ["blobs"]

    def test_queues(self):
        topo = self.parser.parse_file(MANIFEST)
        assert sorted(topo.get("messaging").queues) == ["invoices", "orders"]

    def test_project_port_defaults(self):
        topo = self.parser.parse_file(MANIFEST)
        assert all(b.target_port == 8080 for b in topo.bindings("api"))
        assert topo.bindings("gateway")[0].target_port == 80

    def test_project_path_is_absolute(self):
        topo = self.parser.parse_file(MANIFEST)
        path = topo.get("web").path
        assert os.path.isabs(path)
        assert path == os.path.normpath(os.path.join(FIXTURES, "src", "Web", "Web.csproj"))

    def test_bindings_start_internal(self):
        topo = self.parser.parse_file(MANIFEST)
        assert topo.exposed() == []

    def test_servable(self):
        topo = self.parser.parse_file(MANIFEST)
        assert [r.name for r in topo.servable()] == ["api", "gateway", "web"]

    def test_dependencies(self):
        topo = self.parser.parse_file(MANIFEST)
        assert topo.dependencies("api") == ["apikey", "cache", "db"]
        assert topo.dependencies("worker") == ["blobs", "messaging"]

    def test_invalid_file_raises(self, tmp_path):
        bad = tmp_path / "manifest.json"
        bad.write_text("{ not json")
        with pytest.raises(DiscoveryError):
            self.parser.parse_file(str(bad))

    def test_missing_resources_object(self, tmp_path):
        bad = tmp_path / "manifest.json"
        bad.write_text(json.dumps({"resources": []}))
        with pytest.raises(DiscoveryError):
            self.parser.parse_file(str(bad))

    def test_dangling_reference_rejected(self, tmp_path):
        doc = {"resources": {"web": {"type": "project.v0", "path": "w.csproj", "env": {"X": "{ghost.connectionString}"}}}}
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps(doc))
        with pytest.raises(DanglingReferenceError):
            self.parser.parse_file(str(path))

    def test_yaml_manifest(self, tmp_path):
        path = tmp_path / "apphost-manifest.yaml"
        path.write_text(
            "resources:\n"
            "  web:\n"
            "    type: container.v0\n"
            "    image: nginx\n"
            "    bindings:\n"
            "      http: {scheme: http, targetPort: 80}\n"
        )
        topo = self.parser.parse_file(str(path))
        assert topo.get("web").image == "nginx"

    def test_discover_directory(self, tmp_path):
        shutil.copy(MANIFEST, tmp_path / "apphost-manifest.json")
        topo = self.parser.discover(str(tmp_path))
        assert topo.source == str(tmp_path / "apphost-manifest.json")

    def test_discover_without_manifest(self, tmp_path):
        with pytest.raises(DiscoveryError):
            self.parser.discover(str(tmp_path))

    def test_discover_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(DiscoveryCancelledError):
            self.parser.discover(MANIFEST, cancel)


class TestDetect:
    def test_detect_manifest(self):
        assert detect_format(MANIFEST) == "apphost-manifest"

    def test_detect_unknown(self, tmp_path):
        other = tmp_path / "package.json"
        other.write_text(json.dumps({"name": "x"}))
        assert detect_format(str(other)) == "unknown"

    def test_locate_in_directory(self):
        assert locate_manifest(FIXTURES) == MANIFEST

    def test_can_import(self, tmp_path):
        assert can_import(FIXTURES) is True
        assert can_import(str(tmp_path)) is False

    def test_can_import_missing_path(self, tmp_path):
        with pytest.raises(DiscoveryError):
            can_import(str(tmp_path / "missing"))
