"""
Converts a service definition into the Engine API container-create payload.
"""
import os
from typing import Any, Dict, List, Optional, Tuple

from ..CLIENT.containers import build_port_bindings
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MODELS.service_definition import ServiceDefinition
from ..UTILS.units import parse_bytes, parse_duration

STACK_LABEL = "dockstack.stack"
SERVICE_LABEL = "dockstack.service"
REPLICA_LABEL = "dockstack.replica"
DEFAULT_NETWORK = "default"


def resource_name(stack_name: str, name: str) -> str:
    """Daemon-side name of a stack-scoped network, volume or image."""
    return f"{stack_name}_{name}"


def container_name(stack_name: str, service_name: str, replica_index: int) -> str:
    return f"{stack_name}_{service_name}_{replica_index}"


def service_networks(stack_name: str, service: ServiceDefinition) -> List[str]:
    """Daemon network names a service attaches to; the first is its primary network."""
    names = service.networks or [DEFAULT_NETWORK]
    return [resource_name(stack_name, n) for n in names]


class ContainerConfigConverter:
    """
    Builds create payloads for the replicas of a stack's services.
    """

    def __init__(self, stack_name: str, base_dir: str = "."):
        """
        :param stack_name: Used for labels, container names and resource prefixes.
        :param base_dir: Directory that relative bind sources and env files resolve against.
        """
        self.stack_name = stack_name
        self.base_dir = os.path.abspath(base_dir)
        self.env_manager = EnvironmentManager(self.base_dir)

    def convert(self, service: ServiceDefinition, replica_index: int,
                image: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
        """
        :param service: The definition to translate.
        :param replica_index: Index recorded in the replica label and the container name.
        :param image: Image to run, defaulting to the service's image reference.
        :return: (container name, create payload)
        """
        config: Dict[str, Any] = {"Image": image or service.image}
        host_config: Dict[str, Any] = {}

        if service.command is not None:
            config["Cmd"] = list(service.command)
        if service.entrypoint is not None:
            config["Entrypoint"] = list(service.entrypoint)
        if service.working_dir:
            config["WorkingDir"] = service.working_dir
        if service.hostname:
            config["Hostname"] = service.hostname
        if service.user:
            config["User"] = service.user

        env = self.env_manager.get_merged_environment(service.environment, service.env_files)
        if env:
            config["Env"] = self.env_manager.to_engine_list(env)

        labels = dict(service.labels)
        labels.update({
            STACK_LABEL: self.stack_name,
            SERVICE_LABEL: service.name,
            REPLICA_LABEL: str(replica_index),
        })
        config["Labels"] = labels

        if service.ports:
            exposed, bindings = build_port_bindings(service.ports)
            config["ExposedPorts"] = exposed
            if bindings:
                host_config["PortBindings"] = bindings

        if service.volumes:
            host_config["Mounts"] = [self._convert_mount(m) for m in service.volumes]

        host_config.update(self._convert_resources(service))
        if service.restart_policy is not None:
            host_config["RestartPolicy"] = service.restart_policy.to_engine()
        if service.healthcheck is not None:
            config["Healthcheck"] = self._convert_healthcheck(service)

        networks = service_networks(self.stack_name, service)
        host_config["NetworkMode"] = networks[0]
        config["NetworkingConfig"] = {
            "EndpointsConfig": {networks[0]: {"Aliases": [service.name]}}
        }
        config["HostConfig"] = host_config
        return container_name(self.stack_name, service.name, replica_index), config

    def _convert_mount(self, mount) -> Dict[str, Any]:
        out: Dict[str, Any] = {"Type": mount.kind, "Target": mount.target, "ReadOnly": mount.read_only}
        if mount.kind == "bind":
            out["Source"] = os.path.normpath(
                os.path.join(self.base_dir, os.path.expanduser(mount.source))
            )
        elif mount.source:
            out["Source"] = resource_name(self.stack_name, mount.source)
        return out

    @staticmethod
    def _convert_resources(service: ServiceDefinition) -> Dict[str, Any]:
        res = service.resources
        out: Dict[str, Any] = {}
        if res.memory is not None:
            out["Memory"] = parse_bytes(res.memory)
        if res.memory_reservation is not None:
            out["MemoryReservation"] = parse_bytes(res.memory_reservation)
        if res.cpus is not None:
            out["NanoCpus"] = int(float(res.cpus) * 1_000_000_000)
        if res.cpu_shares is not None:
            out["CpuShares"] = res.cpu_shares
        if res.cpu_quota is not None:
            out["CpuQuota"] = res.cpu_quota
        if res.cpu_period is not None:
            out["CpuPeriod"] = res.cpu_period
        return out

    @staticmethod
    def _convert_healthcheck(service: ServiceDefinition) -> Dict[str, Any]:
        hc = service.healthcheck
        out: Dict[str, Any] = {"Test": list(hc.test)}
        if hc.interval is not None:
            out["Interval"] = parse_duration(hc.interval)
        if hc.timeout is not None:
            out["Timeout"] = parse_duration(hc.timeout)
        if hc.start_period is not None:
            out["StartPeriod"] = parse_duration(hc.start_period)
        if hc.retries is not None:
            out["Retries"] = hc.retries
        return out
