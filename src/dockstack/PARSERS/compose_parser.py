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
Parsers for Docker Compose YAML files.
"""
import logging
import os
import shlex
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..exceptions import ComposeFileError, ComposeParseError
from ..MODELS.service_definition import (
    HealthCheck,
    PortConfig,
    RestartPolicy,
    ServiceDefinition,
    VolumeMount,
    infer_volume_kind,
)
from ..MODELS.stack_registry import StackRegistry
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

DEFAULT_STACK_NAME = "imported-stack"


class ComposeParser:
    """
    Parser for docker-compose.yml files.

    Import never contacts the daemon; it only builds the in-memory registry.
    """

    def __init__(self, context: Optional[Mapping[str, str]] = None, interpolate: bool = True):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables for interpolation. Defaults to the process environment.
        :param interpolate: Set to False to keep ``$`` expressions verbatim.
        """
        self.context = dict(os.environ) if context is None else dict(context)
        self.interpolate = interpolate

    def parse(self, compose_path: str, name: Optional[str] = None) -> StackRegistry:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :param name: Stack name, ``imported-stack`` when omitted.
        :raises ComposeFileError: If the file is missing or unreadable.
        :raises ComposeParseError: If the content is not a compose document.
        """
        try:
            with open(compose_path, "r", encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ComposeFileError(f"Cannot read compose file {compose_path}: {e}") from e
        return self.parse_from_string(content, name=name)

    def parse_from_string(self, content: str, name: Optional[str] = None) -> StackRegistry:
        """
        Parses a compose document from a string.

        :param content: YAML content of the compose file.
        :param name: Stack name, ``imported-stack`` when omitted.
        :return: A registry holding one definition per declared service, in document order.
        :raises ComposeParseError: If the content is not valid YAML or not a compose document.
        """
        registry = StackRegistry(name or DEFAULT_STACK_NAME)
        for service in self.load_services(content):
            registry.register_service(service)
        return registry

    def load_services(self, content: str) -> List[ServiceDefinition]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ComposeParseError(f"Invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ComposeParseError("Compose document must be a mapping")
        services = data.get("services")
        if services is None and "services" not in data:
            raise ComposeParseError("Compose document has no 'services' section")
        services = services or {}
        if not isinstance(services, dict):
            raise ComposeParseError("'services' must be a mapping of service name to definition")

        result = []
        for svc_name, spec in services.items():
            if not isinstance(svc_name, str) or not svc_name:
                raise ComposeParseError(f"Invalid service name: {svc_name!r}")
            if spec is None:
                spec = {}
            if not isinstance(spec, dict):
                raise ComposeParseError(f"Service '{svc_name}' must be a mapping")
            if self.interpolate:
                try:
                    spec = EnvironmentInterpolator.interpolate_value(spec, self.context)
                except ValueError as e:
                    raise ComposeParseError(f"Service '{svc_name}': {e}") from e
            try:
                result.append(self._parse_service(svc_name, spec))
            except ComposeParseError:
                raise
            except (ValueError, TypeError, AttributeError, KeyError) as e:
                raise ComposeParseError(f"Service '{svc_name}': {e}") from e
        return result

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDefinition:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDefinition instance.
        """
        service = ServiceDefinition(name=name)

        build = spec.get("build")
        if build is not None:
            if isinstance(build, str):
                service.set_build(build)
            else:
                self._expect(build, dict, "build")
                service.set_build(
                    str(build.get("context", ".")),
                    dockerfile=build.get("dockerfile"),
                    args=self._to_mapping(build.get("args")),
                    target=build.get("target"),
                    cache_from=self._to_list(build.get("cache_from")),
                )
        # With both keys, compose builds and tags the result with the image name
        if spec.get("image") is not None:
            if service.build is None:
                service.set_image(str(spec["image"]))
            else:
                service.image = str(spec["image"])

        if spec.get("command") is not None:
            service.set_command(self._to_command(spec["command"]))
        if spec.get("entrypoint") is not None:
            service.set_entrypoint(self._to_command(spec["entrypoint"]))
        for key, setter in (("working_dir", service.set_working_dir),
                            ("hostname", service.set_hostname),
                            ("user", service.set_user)):
            if spec.get(key) is not None:
                setter(str(spec[key]))

        self._parse_environment(service, spec.get("environment"))
        for env_file in self._to_list(spec.get("env_file")):
            if isinstance(env_file, dict):
                env_file = env_file["path"]
            service.add_env_file(str(env_file))

        for port in self._to_list(spec.get("ports")):
            service.ports.append(self._parse_port(port))
        for volume in self._to_list(spec.get("volumes")):
            service.volumes.append(self._parse_volume(volume))

        networks = spec.get("networks")
        for network in (list(networks) if isinstance(networks, dict) else self._to_list(networks)):
            service.add_network(str(network))

        depends_on = spec.get("depends_on")
        for dep in (list(depends_on) if isinstance(depends_on, dict) else self._to_list(depends_on)):
            service.depends_on_service(str(dep))

        restart = spec.get("restart")
        if restart is not None:
            # Unquoted 'no' loads as a YAML boolean.
            if restart is False:
                restart = "no"
            service.restart_policy = RestartPolicy.parse(str(restart))

        if spec.get("healthcheck") is not None:
            service.healthcheck = self._parse_healthcheck(spec["healthcheck"])

        for key, value in self._to_mapping(spec.get("labels")).items():
            service.add_label(key, value)

        for secret in self._to_list(spec.get("secrets")):
            service.add_secret(str(secret["source"] if isinstance(secret, dict) else secret))

        self._parse_resources(service, spec)
        return service

    def _parse_environment(self, service: ServiceDefinition, env_spec: Any):
        if env_spec is None:
            return
        if isinstance(env_spec, dict):
            items = list(env_spec.items())
        else:
            items = []
            for entry in self._to_list(env_spec):
                key, sep, value = str(entry).partition("=")
                items.append((key, value if sep else None))
        for key, value in items:
            if value is None:
                # 'KEY' with no value passes the variable through from the context
                if key not in self.context:
                    logger.warning("Environment variable %s for service %s is not set; skipping",
                                   key, service.name)
                    continue
                value = self.context[key]
            service.add_env(str(key), self._scalar(value))

    def _parse_port(self, port: Any) -> PortConfig:
        if isinstance(port, dict):
            published = port.get("published")
            return PortConfig(
                container_port=int(port["target"]),
                host_port=int(published) if published not in (None, "") else None,
                host_ip=port.get("host_ip"),
                protocol=port.get("protocol", "tcp"),
                publish_mode=port.get("mode"),
            )
        return PortConfig.parse(port)

    def _parse_volume(self, volume: Any) -> VolumeMount:
        if isinstance(volume, dict):
            source = str(volume.get("source") or "")
            kind = volume.get("type") or infer_volume_kind(source)
            if kind not in ("bind", "volume"):
                raise ComposeParseError(f"Unsupported volume type: {kind!r}")
            return VolumeMount(
                source=source,
                target=str(volume["target"]),
                kind=kind,
                read_only=bool(volume.get("read_only", False)),
            )
        return VolumeMount.parse(str(volume))

    def _parse_healthcheck(self, spec: Any) -> HealthCheck:
        self._expect(spec, dict, "healthcheck")
        if spec.get("disable"):
            return HealthCheck(test=["NONE"])
        test = spec.get("test")
        if isinstance(test, str):
            test = ["CMD-SHELL", test]
        elif test is None:
            raise ComposeParseError("healthcheck requires a 'test' entry")
        return HealthCheck(
            test=[str(t) for t in test],
            interval=self._duration(spec.get("interval")),
            timeout=self._duration(spec.get("timeout")),
            retries=spec.get("retries"),
            start_period=self._duration(spec.get("start_period")),
        )

    def _parse_resources(self, service: ServiceDefinition, spec: Dict[str, Any]):
        deploy = spec.get("deploy") or {}
        self._expect(deploy, dict, "deploy")
        if deploy.get("replicas") is not None:
            service.set_replicas(int(deploy["replicas"]))

        resources = deploy.get("resources") or {}
        limits = resources.get("limits") or {}
        reservations = resources.get("reservations") or {}
        if limits.get("memory") is not None:
            service.set_memory(str(limits["memory"]))
        if limits.get("cpus") is not None:
            service.set_cpus(str(limits["cpus"]))
        if reservations.get("memory") is not None:
            service.set_memory_reservation(str(reservations["memory"]))

        # Service-level keys from the version 2 file format
        if spec.get("mem_limit") is not None:
            service.set_memory(str(spec["mem_limit"]))
        if spec.get("mem_reservation") is not None:
            service.set_memory_reservation(str(spec["mem_reservation"]))
        if spec.get("cpus") is not None:
            service.set_cpus(str(spec["cpus"]))
        if spec.get("cpu_shares") is not None:
            service.set_cpu_shares(int(spec["cpu_shares"]))
        if spec.get("cpu_quota") is not None:
            service.resources.cpu_quota = int(spec["cpu_quota"])
        if spec.get("cpu_period") is not None:
            service.resources.cpu_period = int(spec["cpu_period"])

    @staticmethod
    def _expect(value: Any, kind: type, field: str):
        if not isinstance(value, kind):
            raise ComposeParseError(f"'{field}' must be a {kind.__name__}, got {type(value).__name__}")

    @staticmethod
    def _scalar(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return "" if value is None else str(value)

    @staticmethod
    def _duration(value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    def _to_mapping(self, value: Any) -> Dict[str, str]:
        """
        Accepts both ``{"K": "V"}`` and ``["K=V"]`` forms.
        """
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): self._scalar(v) for k, v in value.items()}
        result = {}
        for entry in self._to_list(value):
            key, _, val = str(entry).partition("=")
            result[key] = val
        return result

    @staticmethod
    def _to_command(value: Any) -> List[str]:
        if isinstance(value, str):
            return shlex.split(value)
        if isinstance(value, list):
            return [str(v) for v in value]
        raise ComposeParseError(f"Command must be a string or a list, got {type(value).__name__}")

    def _to_list(self, val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, (str, int, dict)):
            return [val]
        if isinstance(val, list):
            return val
        raise ComposeParseError(f"Expected a list, got {type(val).__name__}")
