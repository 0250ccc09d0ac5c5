"""
Template synthesizer tests.
"""
import json
import os
import re

import pytest
import yaml

from infrasynth.errors import (
    ExposureError,
    IdentifierCollisionError,
    IncompleteResourceError,
)
from infrasynth.models.resource import Binding, Resource, ResourceKind
from infrasynth.models.topology import Topology
from infrasynth.naming import resource_token
from infrasynth.parsers.manifest import parse_file
from infrasynth.renderers.blocks import Block
from infrasynth.renderers.engine import check_identifiers, synthesize

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
MANIFEST = os.path.join(FIXTURES, "apphost-manifest.json")
TOKEN = resource_token("00000000-0000-0000-0000-000000000000/dev")

API_DESCRIPTOR = "src/Api/manifests/containerApp.tmpl.yaml"
WEB_DESCRIPTOR = "src/Web/manifests/containerApp.tmpl.yaml"
WORKER_DESCRIPTOR = "src/Worker/manifests/containerApp.tmpl.yaml"
GATEWAY_DESCRIPTOR = "infra/gateway/containerApp.tmpl.yaml"


def _fixture_tree(expose=()):
    topo = parse_file(MANIFEST)
    for name in expose:
        r = topo.get(name)
        topo.set_exposure(name, r.primary_binding_index(), True)
    return synthesize(topo, TOKEN, root=FIXTURES)


def _container(name, **kwargs):
    kwargs.setdefault("image", "nginx")
    kwargs.setdefault("bindings", [Binding("http", target_port=80)])
    return Resource(name=name, kind=ResourceKind.CONTAINER, resource_type="container.v0", **kwargs)


def _env_map(descriptor):
    containers = descriptor["properties"]["template"]["containers"]
    return {e["name"]: e for e in containers[0]["env"]}


class TestArtifacts:
    def test_file_set(self):
        tree = _fixture_tree()
        assert list(tree) == sorted([
            "infra/main.bicep",
            "infra/resources.bicep",
            "infra/main.parameters.json",
            "infra/services/api.bicep",
            "infra/services/gateway.bicep",
            "infra/services/web.bicep",
            "infra/services/worker.bicep",
            API_DESCRIPTOR,
            WEB_DESCRIPTOR,
            WORKER_DESCRIPTOR,
            GATEWAY_DESCRIPTOR,
            "infrasynth.services.yaml",
        ])

    def test_deterministic(self):
        assert _fixture_tree() == _fixture_tree()

    def test_token_changes_names(self):
        a = synthesize(parse_file(MANIFEST), TOKEN, root=FIXTURES)
        b = synthesize(parse_file(MANIFEST), resource_token("other/dev"), root=FIXTURES)
        assert a.text("infra/resources.bicep") != b.text("infra/resources.bicep")
        assert a.text(API_DESCRIPTOR) == b.text(API_DESCRIPTOR)

    def test_order_independent(self, tmp_path):
        with open(MANIFEST, encoding="utf-8") as fh:
            doc = json.load(fh)
        reordered = {}
        for name in reversed(list(doc["resources"])):
            spec = dict(doc["resources"][name])
            for key in ("env", "bindings"):
                if key in spec:
                    spec[key] = dict(reversed(list(spec[key].items())))
            if "queues" in spec:
                spec["queues"] = list(reversed(spec["queues"]))
            reordered[name] = spec
        path = tmp_path / "apphost-manifest.json"
        path.write_text(json.dumps({"resources": reordered}))

        other = synthesize(parse_file(str(path)), TOKEN, root=str(tmp_path))
        assert other == _fixture_tree()

    def test_parameters_document(self):
        doc = json.loads(_fixture_tree().text("infra/main.parameters.json"))
        params = doc["parameters"]
        assert params["environmentName"] == {"value": "${AZURE_ENV_NAME}"}
        assert params["paramApikey"] == {"value": "${AZURE_APIKEY}"}
        assert params["pgPassword"] == {"value": "${PG_PASSWORD}"}

    def test_main_passes_parameters_to_module(self):
        main = _fixture_tree().text("infra/main.bicep")
        assert "targetScope = 'subscription'" in main
        assert "@secure()\nparam paramApikey string" in main
        assert "    pgPassword: pgPassword" in main
        assert "output PG_HOST string = resources.outputs.PG_HOST" in main


class TestConditionalEmission:
    def test_one_namespace_two_queues(self):
        resources = _fixture_tree().text("infra/resources.bicep")
        assert resources.count("'Microsoft.ServiceBus/namespaces@") == 1
        assert resources.count("'Microsoft.ServiceBus/namespaces/queues@") == 2
        assert "'Microsoft.ServiceBus/namespaces/topics@" not in resources

    def test_absent_kinds_leave_no_trace(self):
        topo = Topology([_container("web")])
        resources = synthesize(topo, TOKEN).text("infra/resources.bicep")
        for marker in (
            "Microsoft.ServiceBus",
            "Microsoft.DBforPostgreSQL",
            "Microsoft.Cache/redis",
            "Microsoft.DocumentDB",
            "Microsoft.Storage",
            "Microsoft.KeyVault",
            "Microsoft.Insights",
        ):
            assert marker not in resources
        # shared resources are always there
        assert "Microsoft.App/managedEnvironments" in resources
        assert "Microsoft.ContainerRegistry/registries" in resources

    def test_namespace_without_queues(self):
        bus = Resource(name="bus", kind=ResourceKind.MESSAGE_QUEUE, resource_type="azure.servicebus.v0")
        resources = synthesize(Topology([_container("web"), bus]), TOKEN).text("infra/resources.bicep")
        assert resources.count("'Microsoft.ServiceBus/namespaces@") == 1
        assert "namespaces/queues@" not in resources

    def test_child_resources_render_inside_parent(self):
        resources = _fixture_tree().text("infra/resources.bicep")
        assert resources.count("'Microsoft.DBforPostgreSQL/flexibleServers@") == 1
        assert resources.count("'Microsoft.DBforPostgreSQL/flexibleServers/databases@") == 1
        assert "name: 'blobs'" in resources

    def test_roles_granted_to_shared_identity(self):
        resources = _fixture_tree().text("infra/resources.bicep")
        assert "containerRegistryPull" in resources
        assert "messagingSender" in resources
        assert "messagingReceiver" in resources
        assert "storageRoleAssignment" in resources


class TestExposure:
    def test_web_external_with_ingress(self):
        tree = _fixture_tree(expose=["web"])
        web = yaml.safe_load(tree.text(WEB_DESCRIPTOR))
        ingress = web["properties"]["configuration"]["ingress"]
        assert ingress == {"external": True, "targetPort": 8080, "transport": "http", "allowInsecure": True}
        assert "external: true" in tree.text("infra/services/web.bicep")

    def test_internal_service_keeps_internal_ingress(self):
        api = yaml.safe_load(_fixture_tree(expose=["web"]).text(API_DESCRIPTOR))
        assert api["properties"]["configuration"]["ingress"]["external"] is False

    def test_no_binding_no_ingress(self):
        worker = yaml.safe_load(_fixture_tree().text(WORKER_DESCRIPTOR))
        assert "ingress" not in worker["properties"]["configuration"]
        assert "ingress" not in _fixture_tree().text("infra/services/worker.bicep")

    def test_url_follows_exposure(self):
        internal = _env_map(yaml.safe_load(_fixture_tree().text(WEB_DESCRIPTOR)))
        external = _env_map(yaml.safe_load(_fixture_tree(expose=["api"]).text(WEB_DESCRIPTOR)))
        domain = "{{ .Env.AZURE_CONTAINER_APPS_ENVIRONMENT_DEFAULT_DOMAIN }}"
        assert internal["services__api__https__0"]["value"] == "https://api.internal." + domain
        assert external["services__api__https__0"]["value"] == "https://api." + domain

    def test_every_http_url_follows_app_ingress(self):
        api = _container(
            "api",
            bindings=[
                Binding("http", scheme="http", target_port=8080),
                Binding("https", scheme="https", target_port=8080, external=True),
            ],
        )
        web = _container("web", env={"API_HTTP": "{api.bindings.http.url}"})
        tree = synthesize(Topology([api, web]), TOKEN)
        env = _env_map(yaml.safe_load(tree.text("infra/web/containerApp.tmpl.yaml")))
        assert env["API_HTTP"]["value"] == "https://api.{{ .Env.AZURE_CONTAINER_APPS_ENVIRONMENT_DEFAULT_DOMAIN }}"

    def test_external_flag_on_backing_resource_rejected(self):
        cache = Resource(
            name="cache",
            kind=ResourceKind.DATASTORE,
            engine="redis",
            bindings=[Binding("tcp", scheme="tcp", target_port=6379, external=True)],
        )
        with pytest.raises(ExposureError):
            synthesize(Topology([_container("web"), cache]), TOKEN)


class TestSecrets:
    def setup_method(self):
        self.tree = _fixture_tree()
        self.api = yaml.safe_load(self.tree.text(API_DESCRIPTOR))

    def test_secrets_section(self):
        secrets = {s["name"]: s["value"] for s in self.api["properties"]["configuration"]["secrets"]}
        assert secrets == {
            "api-key": '{{ securedParameter "apikey" }}',
            "connectionstrings--cache": '{{ connectionString "cache" }}',
            "connectionstrings--db": '{{ connectionString "db" }}',
        }

    def test_env_uses_secret_refs(self):
        env = _env_map(self.api)
        assert env["ConnectionStrings__db"] == {"name": "ConnectionStrings__db", "secretRef": "connectionstrings--db"}
        assert env["API_KEY"] == {"name": "API_KEY", "secretRef": "api-key"}
        assert env["LOG_LEVEL"] == {"name": "LOG_LEVEL", "value": "Information"}

    def test_secret_values_only_in_secrets_section(self):
        env = self.api["properties"]["template"]["containers"][0]["env"]
        for e in env:
            assert "connectionString" not in e.get("value", "")
            assert "securedParameter" not in e.get("value", "")

    def test_service_template_secure_params(self):
        bicep = self.tree.text("infra/services/api.bicep")
        assert "@secure()\nparam secretConnectionStringsDb string" in bicep
        assert "secretRef: 'connectionstrings--db'" in bicep
        assert "value: secretConnectionStringsDb" in bicep

    def test_automatic_entries(self):
        env = _env_map(self.api)
        assert env["AZURE_CLIENT_ID"]["value"] == "{{ .Env.MANAGED_IDENTITY_CLIENT_ID }}"
        assert env["PORT"]["value"] == "8080"

    def test_env_sorted_by_name(self):
        names = [e["name"] for e in self.api["properties"]["template"]["containers"][0]["env"]]
        assert names == sorted(names)


class TestDescriptor:
    def test_placeholders(self):
        tree = _fixture_tree()
        api = yaml.safe_load(tree.text(API_DESCRIPTOR))
        assert api["properties"]["environmentId"] == "{{ .Env.AZURE_CONTAINER_APPS_ENVIRONMENT_ID }}"
        assert api["properties"]["template"]["containers"][0]["image"] == "{{ .Image }}"
        assert api["properties"]["template"]["scale"]["minReplicas"] == 1
        assert api["tags"]["azd-service-name"] == "api"

    def test_literal_image_for_prebuilt_container(self):
        gateway = yaml.safe_load(_fixture_tree().text(GATEWAY_DESCRIPTOR))
        assert gateway["properties"]["template"]["containers"][0]["image"] == "docker.io/library/nginx:1.27"

    def test_min_replicas(self):
        tree = synthesize(parse_file(MANIFEST), TOKEN, root=FIXTURES, min_replicas=0)
        api = yaml.safe_load(tree.text(API_DESCRIPTOR))
        assert api["properties"]["template"]["scale"]["minReplicas"] == 0
        assert "minReplicas: 0" in tree.text("infra/services/api.bicep")


class TestFailures:
    def test_collision_names_both_resources(self):
        topo = Topology([_container("My-Service"), _container("my_service")])
        with pytest.raises(IdentifierCollisionError) as exc:
            synthesize(topo, TOKEN)
        assert {exc.value.first, exc.value.second} == {"My-Service", "my_service"}
        assert "My-Service" in str(exc.value) and "my_service" in str(exc.value)
        assert exc.value.family == "platform name"

    def test_collision_with_reserved_symbol(self):
        with pytest.raises(IdentifierCollisionError) as exc:
            synthesize(Topology([_container("location")]), TOKEN)
        assert exc.value.family == "template symbol"

    def test_container_without_image(self):
        with pytest.raises(IncompleteResourceError) as exc:
            synthesize(Topology([_container("web", image=None)]), TOKEN)
        assert exc.value.resource == "web"

    def test_binding_without_port(self):
        with pytest.raises(IncompleteResourceError):
            synthesize(Topology([_container("web", bindings=[Binding("http")])]), TOKEN)

    def test_project_without_path(self):
        r = Resource(name="api", kind=ResourceKind.PROJECT, bindings=[Binding("http", target_port=8080)])
        with pytest.raises(IncompleteResourceError):
            synthesize(Topology([r]), TOKEN)

    def test_project_outside_root(self, tmp_path):
        r = Resource(name="api", kind=ResourceKind.PROJECT, path="/elsewhere/api/api.csproj")
        with pytest.raises(IncompleteResourceError):
            synthesize(Topology([r]), TOKEN, root=str(tmp_path))

    def test_unknown_binding_reference(self):
        api = _container("api")
        web = _container("web", env={"API": "{api.bindings.grpc.url}"})
        with pytest.raises(IncompleteResourceError):
            synthesize(Topology([api, web]), TOKEN)

    def test_connection_string_of_project(self):
        api = Resource(name="api", kind=ResourceKind.PROJECT, path="/src/api/api.csproj")
        web = _container("web", env={"API": "{api.connectionString}"})
        with pytest.raises(IncompleteResourceError):
            synthesize(Topology([api, web]), TOKEN, root="/src")

    def test_datastore_without_template(self):
        db = Resource(name="db", kind=ResourceKind.DATASTORE, engine="mysql")
        with pytest.raises(IncompleteResourceError):
            synthesize(Topology([_container("web"), db]), TOKEN)

    def test_child_under_wrong_parent(self):
        cache = Resource(name="cache", kind=ResourceKind.DATASTORE, engine="redis")
        db = Resource(name="db", kind=ResourceKind.DATASTORE, engine="postgres", parent="cache")
        with pytest.raises(IncompleteResourceError):
            synthesize(Topology([_container("web"), cache, db]), TOKEN)

    def test_synthesis_does_not_mutate_topology(self):
        topo = parse_file(MANIFEST)
        before = [(r.name, [(b.name, b.external) for b in r.bindings]) for r in topo.resources]
        synthesize(topo, TOKEN, root=FIXTURES)
        assert [(r.name, [(b.name, b.external) for b in r.bindings]) for r in topo.resources] == before


class TestGeneratedIdentifiers:
    def _storage(self, name, **kwargs):
        return Resource(name=name, kind=ResourceKind.STORAGE, resource_type="azure.storage.v0", **kwargs)

    def test_long_storage_names_stay_distinct(self):
        topo = Topology([_container("web"), self._storage("assetsstore1"), self._storage("assetsstore2")])
        resources = synthesize(topo, TOKEN).text("infra/resources.bicep")
        names = re.findall(r"'Microsoft\.Storage/storageAccounts@[^']*' = \{\n  name: '([a-z0-9]+)'", resources)
        assert len(names) == 2
        assert len(set(names)) == 2
        assert all(len(n) <= 24 for n in names)

    def test_sub_queue_symbols_collide(self):
        bus = Resource(
            name="bus",
            kind=ResourceKind.MESSAGE_QUEUE,
            resource_type="azure.servicebus.v0",
            queues=["orders-q", "orders_q"],
        )
        with pytest.raises(IdentifierCollisionError) as exc:
            synthesize(Topology([_container("web"), bus]), TOKEN)
        assert exc.value.family == "template symbol"
        assert {exc.value.first, exc.value.second} == {"bus/orders-q", "bus/orders_q"}

    def test_blob_container_symbols_collide(self):
        store = self._storage("st", containers=["orders-q", "orders_q"])
        with pytest.raises(IdentifierCollisionError) as exc:
            synthesize(Topology([_container("web"), store]), TOKEN)
        assert {exc.value.first, exc.value.second} == {"st/orders-q", "st/orders_q"}

    def test_blob_container_names_collide(self):
        # distinct symbols, same lowercase container name
        store = self._storage("st", containers=["aB", "ab"])
        with pytest.raises(IdentifierCollisionError) as exc:
            synthesize(Topology([_container("web"), store]), TOKEN)
        assert exc.value.family == "resource name"
        assert {exc.value.first, exc.value.second} == {"st/aB", "st/ab"}

    def test_resource_symbol_against_block_parameter(self):
        pg = Resource(name="pg", kind=ResourceKind.DATASTORE, resource_type="postgres.server.v0", engine="postgres")
        vault = Resource(name="pg-password", kind=ResourceKind.KEY_VAULT, resource_type="azure.keyvault.v0")
        with pytest.raises(IdentifierCollisionError) as exc:
            synthesize(Topology([_container("web"), pg, vault]), TOKEN)
        assert exc.value.family == "template symbol"
        assert exc.value.identifier == "pgPassword"
        assert {exc.value.first, exc.value.second} == {"pg", "pg-password"}

    def test_resource_symbol_against_role_assignment(self):
        store = self._storage("store")
        other = _container("store-role-assignment")
        with pytest.raises(IdentifierCollisionError) as exc:
            synthesize(Topology([_container("web"), store, other]), TOKEN)
        assert exc.value.identifier == "storeRoleAssignment"

    def test_platform_names_checked_across_blocks(self):
        topo = Topology([_container("web")])
        blocks = [Block("a", "", names=[("stsame", "a")]), Block("b", "", names=[("stsame", "b")])]
        with pytest.raises(IdentifierCollisionError) as exc:
            check_identifiers(topo, blocks)
        assert exc.value.family == "resource name"
        assert {exc.value.first, exc.value.second} == {"a", "b"}

    def test_sub_resource_symbols_carry_parent_symbol(self):
        tree = _fixture_tree()
        assert "messagingQueueOrders" in tree.text("infra/resources.bicep")
        assert "storageContainerBlobs" in tree.text("infra/resources.bicep")


class TestProjectFile:
    def setup_method(self):
        self.doc = yaml.safe_load(_fixture_tree().text("infrasynth.services.yaml"))

    def test_lists_every_service(self):
        assert list(self.doc["services"]) == ["api", "gateway", "web", "worker"]
        assert self.doc["infra"] == {"provider": "bicep", "path": "infra"}

    def test_project_entry(self):
        api = self.doc["services"]["api"]
        assert api["host"] == "containerapp"
        assert api["project"] == "src/Api"
        assert api["descriptor"] == API_DESCRIPTOR
        assert api["template"] == "infra/services/api.bicep"

    def test_prebuilt_container_entry(self):
        gateway = self.doc["services"]["gateway"]
        assert gateway["image"] == "docker.io/library/nginx:1.27"
        assert gateway["descriptor"] == GATEWAY_DESCRIPTOR

    def test_project_name(self):
        tree = synthesize(parse_file(MANIFEST), TOKEN, root=FIXTURES, project_name="shop")
        assert yaml.safe_load(tree.text("infrasynth.services.yaml"))["name"] == "shop"
