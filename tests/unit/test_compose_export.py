# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for exporting stacks as compose documents and importing them back.
"""
import yaml

from dockstack.CONVERTERS.to_compose import ComposeConverter
from dockstack.MANAGERS.stack import Stack
from dockstack.MODELS.service_definition import PortConfig, ServiceDefinition
from dockstack.MODELS.stack_registry import StackRegistry
from dockstack.PARSERS.compose_parser import ComposeParser


def build_registry():
    registry = StackRegistry("shop")
    registry.register_service(
        ServiceDefinition.database_service("db")
        .set_image("postgres:16")
        .add_env("POSTGRES_PASSWORD", "pa$$word")
        .add_volume("dbdata", "/var/lib/postgresql/data")
        .set_healthcheck(["CMD", "pg_isready"], interval=10, retries=5)
    )
    registry.register_service(
        ServiceDefinition.web_service("web")
        .set_build("./web", dockerfile="Dockerfile.prod")
        .add_build_arg("VERSION", "2")
        .add_port(80, 8080)
        .add_port(443, 8443, mode="host")
        .add_volume("./static", "/srv/static", read_only=True)
        .add_volume("", "/cache", kind="volume", read_only=True)
        .add_network("frontend")
        .depends_on_service("db")
        .set_replicas(2)
        .set_memory("256m")
        .set_cpus(0.5)
        .set_cpu_shares(512)
        .add_secret("api_key")
        .set_restart_policy("on-failure", 3)
    )
    return registry


class TestComposeConverter:
    """Tests for ComposeConverter."""

    def test_document_shape(self):
        """Test top-level keys and service order."""
        doc = ComposeConverter(build_registry()).to_dict()
        assert doc["version"] == "3.8"
        assert list(doc["services"]) == ["db", "web"]
        assert doc["volumes"] == {"dbdata": {}}
        assert doc["networks"] == {"frontend": {}}
        assert doc["secrets"] == {"api_key": {"external": True}}

    def test_service_fields(self):
        """Test each service field is written in compose notation."""
        doc = ComposeConverter(build_registry()).to_dict()
        db, web = doc["services"]["db"], doc["services"]["web"]

        assert db["image"] == "postgres:16"
        assert db["environment"] == {"POSTGRES_PASSWORD": "pa$$$$word"}
        assert db["volumes"] == ["dbdata:/var/lib/postgresql/data"]
        assert db["healthcheck"] == {"test": ["CMD", "pg_isready"], "interval": "10s", "retries": 5}
        assert db["restart"] == "unless-stopped"
        assert "deploy" not in db

        assert web["build"] == {"context": "./web", "dockerfile": "Dockerfile.prod", "args": {"VERSION": "2"}}
        assert "image" not in web
        assert web["ports"][0] == "8080:80"
        assert web["ports"][1] == {"target": 443, "published": 8443, "protocol": "tcp", "mode": "host"}
        assert web["volumes"][0] == "./static:/srv/static:ro"
        assert web["volumes"][1] == {"type": "volume", "target": "/cache", "read_only": True}
        assert web["depends_on"] == ["db"]
        assert web["restart"] == "on-failure:3"
        assert web["cpu_shares"] == 512
        assert web["deploy"] == {"replicas": 2, "resources": {"limits": {"cpus": "0.5", "memory": "256m"}}}

    def test_build_context_only_is_a_string(self):
        registry = StackRegistry("s")
        registry.register_service(ServiceDefinition(name="app").set_build("."))
        assert ComposeConverter(registry).to_dict()["services"]["app"]["build"] == "."

    def test_volume_kind_that_short_syntax_would_misread(self):
        registry = StackRegistry("s")
        registry.register_service(ServiceDefinition(name="app").add_volume("data", "/data", kind="bind"))
        assert ComposeConverter(registry).to_dict()["services"]["app"]["volumes"] == [
            {"type": "bind", "source": "data", "target": "/data"}
        ]

    def test_write(self, tmp_path):
        path = ComposeConverter(build_registry()).write(str(tmp_path / "docker-compose.yml"))
        with open(path) as f:
            assert yaml.safe_load(f)["services"]["web"]["deploy"]["replicas"] == 2


class TestRoundTrip:
    """Tests that an exported document imports to equivalent definitions."""

    def test_export_then_import(self):
        registry = build_registry()
        imported = ComposeParser(context={}).parse_from_string(
            ComposeConverter(registry).to_yaml(), name="shop"
        )
        assert imported.list_service_names() == registry.list_service_names()
        for original in registry.services():
            assert imported.get_service(original.name) == original

    def test_port_protocols_roundtrip(self):
        registry = StackRegistry("ports")
        svc = ServiceDefinition(name="a").set_image("x").add_port(80, protocol="TCP").add_port(53, 53, protocol="udp")
        svc.ports.append(PortConfig(container_port=9000, protocol="udplite"))
        registry.register_service(svc)

        doc = ComposeConverter(registry).to_dict()
        assert doc["services"]["a"]["ports"] == ["80", "53:53/udp", {"target": 9000, "protocol": "udplite"}]

        imported = ComposeParser(context={}).parse_from_string(ComposeConverter(registry).to_yaml())
        assert imported.get_service("a") == registry.get_service("a")

    def test_stack_yaml_roundtrip(self, docker):
        stack = Stack.from_registry(docker, build_registry())
        again = Stack.from_yaml(docker, stack.to_yaml(), name="shop", context={})
        assert again.get_service("db").environment == [("POSTGRES_PASSWORD", "pa$$word")]
        assert again.get_service("web").replicas == 2

    def test_import_from_file_sets_base_dir(self, docker, tmp_path):
        path = tmp_path / "docker-compose.yml"
        Stack.from_registry(docker, build_registry()).to_file(str(path))
        stack = docker.import_stack_from_file(str(path), name="shop")
        assert stack.base_dir == str(tmp_path)
        assert stack.service_count() == 2
