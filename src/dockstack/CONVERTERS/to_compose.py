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
Converters for generating docker-compose documents from a stack registry.

Fields the compose format cannot hold exactly:
  * duplicate environment keys collapse to the last value, since
    ``environment`` is written as a mapping;
  * top-level secret declarations are written as ``external: true``.
"""
from typing import Any, Dict

import yaml

from ..MODELS.service_definition import (
    PORT_PROTOCOLS,
    PortConfig,
    ServiceDefinition,
    VolumeMount,
    infer_volume_kind,
)
from ..MODELS.stack_registry import StackRegistry
from ..UTILS.string_interpolation import EnvironmentInterpolator

COMPOSE_VERSION = "3.8"


class ComposeConverter:
    """
    Converts a stack registry into a docker-compose document.
    Output is deterministic: services in registration order, fields in a fixed order.
    """

    def __init__(self, registry: StackRegistry):
        """
        :param registry: The registry to export.
        """
        self.registry = registry

    def to_dict(self) -> Dict[str, Any]:
        services = {}
        volumes: Dict[str, Dict] = {}
        networks: Dict[str, Dict] = {}
        secrets: Dict[str, Dict] = {}

        for svc in self.registry.services():
            services[svc.name] = self._escape(self._convert_service(svc))
            for mount in svc.volumes:
                if mount.kind == "volume" and mount.source:
                    volumes.setdefault(mount.source, {})
            for network in svc.networks:
                networks.setdefault(network, {})
            for secret in svc.secrets:
                secrets.setdefault(secret, {"external": True})

        document: Dict[str, Any] = {"version": COMPOSE_VERSION, "services": services}
        if volumes:
            document["volumes"] = volumes
        if networks:
            document["networks"] = networks
        if secrets:
            document["secrets"] = secrets
        return document

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    def write(self, path: str) -> str:
        """
        Writes the compose document to ``path``.

        :return: The path written.
        """
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_yaml())
        return path

    def _convert_service(self, svc: ServiceDefinition) -> Dict[str, Any]:
        out: Dict[str, Any] = {}

        if svc.build is not None:
            build = svc.build
            if build.dockerfile or build.args or build.target or build.cache_from:
                block: Dict[str, Any] = {"context": build.context}
                if build.dockerfile:
                    block["dockerfile"] = build.dockerfile
                if build.args:
                    block["args"] = dict(build.args)
                if build.target:
                    block["target"] = build.target
                if build.cache_from:
                    block["cache_from"] = list(build.cache_from)
                out["build"] = block
            else:
                out["build"] = build.context
        if svc.image:
            out["image"] = svc.image

        if svc.command is not None:
            out["command"] = list(svc.command)
        if svc.entrypoint is not None:
            out["entrypoint"] = list(svc.entrypoint)
        if svc.working_dir:
            out["working_dir"] = svc.working_dir
        if svc.hostname:
            out["hostname"] = svc.hostname
        if svc.user:
            out["user"] = svc.user

        if svc.environment:
            out["environment"] = svc.environment_dict()
        if svc.env_files:
            out["env_file"] = list(svc.env_files)

        if svc.ports:
            out["ports"] = [self._convert_port(p) for p in svc.ports]
        if svc.volumes:
            out["volumes"] = [self._convert_volume(v) for v in svc.volumes]
        if svc.networks:
            out["networks"] = list(svc.networks)

        if svc.depends_on:
            out["depends_on"] = list(svc.depends_on)
        if svc.restart_policy is not None:
            out["restart"] = svc.restart_policy.to_compose()
        if svc.healthcheck is not None:
            hc = svc.healthcheck
            block = {"test": list(hc.test)}
            for key in ("interval", "timeout", "retries", "start_period"):
                value = getattr(hc, key)
                if value is not None:
                    block[key] = value
            out["healthcheck"] = block

        if svc.labels:
            out["labels"] = dict(svc.labels)
        if svc.secrets:
            out["secrets"] = list(svc.secrets)

        res = svc.resources
        for key in ("cpu_shares", "cpu_quota", "cpu_period"):
            value = getattr(res, key)
            if value is not None:
                out[key] = value

        deploy: Dict[str, Any] = {}
        if svc.replicas != 1:
            deploy["replicas"] = svc.replicas
        limits = {k: v for k, v in (("cpus", res.cpus), ("memory", res.memory)) if v is not None}
        if limits or res.memory_reservation is not None:
            deploy["resources"] = {}
            if limits:
                deploy["resources"]["limits"] = limits
            if res.memory_reservation is not None:
                deploy["resources"]["reservations"] = {"memory": res.memory_reservation}
        if deploy:
            out["deploy"] = deploy
        return out

    @staticmethod
    def _convert_port(port: PortConfig):
        if port.publish_mode is None and port.protocol in PORT_PROTOCOLS:
            return port.to_short_syntax()
        block: Dict[str, Any] = {"target": port.container_port}
        if port.host_port is not None:
            block["published"] = port.host_port
        if port.host_ip:
            block["host_ip"] = port.host_ip
        block["protocol"] = port.protocol
        if port.publish_mode is not None:
            block["mode"] = port.publish_mode
        return block

    @staticmethod
    def _convert_volume(mount: VolumeMount):
        short_ok = (
            not (mount.read_only and not mount.source)
            and ":" not in mount.source
            and ":" not in mount.target
            and (mount.kind == infer_volume_kind(mount.source) if mount.source
                 else mount.kind == "volume" and mount.target.startswith("/"))
        )
        if short_ok:
            return mount.to_short_syntax()
        block: Dict[str, Any] = {"type": mount.kind}
        if mount.source:
            block["source"] = mount.source
        block["target"] = mount.target
        if mount.read_only:
            block["read_only"] = True
        return block

    def _escape(self, value: Any) -> Any:
        """Doubles literal '$' so that importing the document does not interpolate them."""
        if isinstance(value, str):
            return EnvironmentInterpolator.escape(value)
        if isinstance(value, dict):
            return {k: self._escape(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._escape(v) for v in value]
        return value
