"""
Models for defining services, including ports, mounts, resources, restart policies and health checks.
"""
import re
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from ..exceptions import ValidationError
from ..UTILS.units import format_duration

PORT_PROTOCOLS = ("tcp", "udp", "sctp")

_PORT_MAPPING = re.compile(
    r"^(?:(?:(?P<ip>\[[0-9a-fA-F:.]+\]|[0-9.]+):)?(?P<host>\d*):)?(?P<container>\d+)(?:/(?P<proto>tcp|udp|sctp))?$"
)


class RestartPolicyName(str, Enum):
    """
    Conditions under which the daemon restarts a container.
    """
    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"


class RestartPolicy(BaseModel):
    """
    Defines how a service's containers are restarted when they exit.
    """
    name: RestartPolicyName = RestartPolicyName.NO
    max_retries: Optional[int] = None

    @classmethod
    def create(cls, name: Union[str, RestartPolicyName], max_retries: Optional[int] = None) -> "RestartPolicy":
        """
        Builds a policy from a name, rejecting anything outside the enumerated set.

        :raises ValidationError: For an unknown name or a negative retry count.
        """
        try:
            policy_name = RestartPolicyName(name)
        except ValueError:
            allowed = ", ".join(p.value for p in RestartPolicyName)
            raise ValidationError(f"Invalid restart policy {name!r}; expected one of: {allowed}")
        if max_retries is not None:
            if max_retries < 0:
                raise ValidationError("Restart policy max_retries cannot be negative")
            if policy_name is not RestartPolicyName.ON_FAILURE:
                raise ValidationError("max_retries is only valid with the 'on-failure' policy")
        return cls(name=policy_name, max_retries=max_retries)

    @classmethod
    def parse(cls, value: str) -> "RestartPolicy":
        """Parses the compose form: 'always', 'on-failure', 'on-failure:3'."""
        name, _, retries = str(value).partition(":")
        if retries:
            if not retries.isdigit():
                raise ValidationError(f"Invalid restart policy {value!r}")
            return cls.create(name, int(retries))
        return cls.create(name)

    def to_compose(self) -> str:
        if self.max_retries is not None:
            return f"{self.name.value}:{self.max_retries}"
        return self.name.value

    def to_engine(self) -> Dict[str, object]:
        return {"Name": self.name.value, "MaximumRetryCount": self.max_retries or 0}


class PortConfig(BaseModel):
    """
    A published or exposed container port.
    """
    container_port: int
    host_port: Optional[int] = None
    host_ip: Optional[str] = None
    protocol: str = "tcp"
    publish_mode: Optional[str] = None

    @classmethod
    def parse(cls, spec: Union[str, int]) -> "PortConfig":
        """
        Parses '80', '8080:80', '127.0.0.1:8080:80' or '53:53/udp'.

        :raises ValidationError: If the string is not a single-port mapping.
        """
        match = _PORT_MAPPING.match(str(spec).strip())
        if not match:
            raise ValidationError(f"Malformed port mapping: {spec!r}")
        host = match.group("host")
        ip = match.group("ip")
        return cls(
            container_port=int(match.group("container")),
            host_port=int(host) if host else None,
            host_ip=ip.strip("[]") if ip else None,
            protocol=match.group("proto") or "tcp",
        )

    def to_short_syntax(self) -> str:
        out = str(self.container_port)
        if self.host_port is not None or self.host_ip:
            host = "" if self.host_port is None else str(self.host_port)
            out = f"{host}:{out}"
            if self.host_ip:
                ip = f"[{self.host_ip}]" if ":" in self.host_ip else self.host_ip
                out = f"{ip}:{out}"
        if self.protocol != "tcp":
            out = f"{out}/{self.protocol}"
        return out


def infer_volume_kind(source: str) -> str:
    """A path-like source is a bind mount; anything else names a volume."""
    if source.startswith(("/", ".", "~")):
        return "bind"
    return "volume"


class VolumeMount(BaseModel):
    """
    Defines a mapping between a host path or named volume and a container path.
    """
    source: str
    target: str
    kind: str = "volume"
    read_only: bool = False

    @classmethod
    def parse(cls, spec: str) -> "VolumeMount":
        """
        Parses 'source:target', 'source:target:ro' or an anonymous '/target'.

        :raises ValidationError: If the string has an unexpected shape.
        """
        parts = str(spec).split(":")
        if len(parts) == 1 and parts[0].startswith("/"):
            return cls(source="", target=parts[0], kind="volume")
        if len(parts) == 2 and all(parts):
            return cls(source=parts[0], target=parts[1], kind=infer_volume_kind(parts[0]))
        if len(parts) == 3 and parts[0] and parts[1]:
            modes = set(parts[2].split(","))
            if not modes <= {"ro", "rw", "z", "Z", "cached", "delegated", "consistent", "nocopy"}:
                raise ValidationError(f"Malformed volume mapping: {spec!r}")
            return cls(
                source=parts[0],
                target=parts[1],
                kind=infer_volume_kind(parts[0]),
                read_only="ro" in modes,
            )
        raise ValidationError(f"Malformed volume mapping: {spec!r}")

    def to_short_syntax(self) -> str:
        if not self.source:
            return self.target
        out = f"{self.source}:{self.target}"
        if self.read_only:
            out += ":ro"
        return out


class BuildConfig(BaseModel):
    """
    Build context for services whose image is built rather than pulled.
    """
    context: str
    dockerfile: Optional[str] = None
    args: Dict[str, str] = {}
    target: Optional[str] = None
    cache_from: List[str] = []


class ResourceLimits(BaseModel):
    """
    Memory and CPU constraints, stored in compose notation.
    """
    memory: Optional[str] = None
    memory_reservation: Optional[str] = None
    cpus: Optional[str] = None
    cpu_shares: Optional[int] = None
    cpu_quota: Optional[int] = None
    cpu_period: Optional[int] = None

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


class HealthCheck(BaseModel):
    """
    Defines a command the daemon runs to check the health of a container.
    Durations are kept as compose strings.
    """
    test: List[str]
    interval: Optional[str] = None
    timeout: Optional[str] = None
    retries: Optional[int] = None
    start_period: Optional[str] = None


Duration = Union[str, int, float, timedelta]


class ServiceDefinition(BaseModel):
    """
    Declarative template for the replicas of one service.

    Setters mutate the definition and return it, so calls chain::

        web = (ServiceDefinition(name="web")
               .set_image("nginx:latest")
               .add_port(80, 8080)
               .depends_on_service("db"))
    """
    name: str = Field(frozen=True)

    # Image source
    image: Optional[str] = None
    build: Optional[BuildConfig] = None

    # Execution
    command: Optional[List[str]] = None
    entrypoint: Optional[List[str]] = None
    working_dir: Optional[str] = None
    hostname: Optional[str] = None
    user: Optional[str] = None

    # Environment
    environment: List[Tuple[str, str]] = []
    env_files: List[str] = []

    # Networking
    ports: List[PortConfig] = []
    networks: List[str] = []

    # Storage
    volumes: List[VolumeMount] = []

    # Lifecycle
    restart_policy: Optional[RestartPolicy] = None
    healthcheck: Optional[HealthCheck] = None
    depends_on: List[str] = []
    replicas: int = 1

    # Resources
    resources: ResourceLimits = Field(default_factory=ResourceLimits)

    # Metadata
    labels: Dict[str, str] = {}
    secrets: List[str] = []

    # Image source

    def set_image(self, ref: str) -> "ServiceDefinition":
        self.image = ref
        self.build = None
        return self

    def set_build(self, context: str, dockerfile: Optional[str] = None,
                  args: Optional[Dict[str, str]] = None, target: Optional[str] = None,
                  cache_from: Optional[List[str]] = None) -> "ServiceDefinition":
        self.build = BuildConfig(
            context=context,
            dockerfile=dockerfile,
            args=dict(args or {}),
            target=target,
            cache_from=list(cache_from or []),
        )
        self.image = None
        return self

    def add_build_arg(self, key: str, value: str) -> "ServiceDefinition":
        if self.build is None:
            raise ValidationError(f"Service '{self.name}' has no build context; call set_build() first")
        self.build.args[key] = value
        return self

    # Execution

    def set_command(self, command: Union[str, List[str]]) -> "ServiceDefinition":
        self.command = command.split() if isinstance(command, str) else list(command)
        return self

    def set_entrypoint(self, entrypoint: Union[str, List[str]]) -> "ServiceDefinition":
        self.entrypoint = entrypoint.split() if isinstance(entrypoint, str) else list(entrypoint)
        return self

    def set_working_dir(self, path: str) -> "ServiceDefinition":
        self.working_dir = path
        return self

    def set_hostname(self, hostname: str) -> "ServiceDefinition":
        self.hostname = hostname
        return self

    def set_user(self, user: str) -> "ServiceDefinition":
        self.user = user
        return self

    # Environment

    def add_env(self, key: str, value: str) -> "ServiceDefinition":
        self.environment.append((key, str(value)))
        return self

    def add_env_file(self, path: str) -> "ServiceDefinition":
        self.env_files.append(path)
        return self

    def environment_dict(self) -> Dict[str, str]:
        """Environment with later entries for the same key winning."""
        return {key: value for key, value in self.environment}

    # Networking

    def add_port(self, container_port: int, host_port: Optional[int] = None,
                 protocol: str = "tcp", mode: Optional[str] = None) -> "ServiceDefinition":
        # Range checks are left to the daemon.
        protocol = str(protocol).lower()
        if protocol not in PORT_PROTOCOLS:
            raise ValidationError(f"Invalid port protocol {protocol!r}; expected one of: {', '.join(PORT_PROTOCOLS)}")
        self.ports.append(PortConfig(
            container_port=container_port,
            host_port=host_port,
            protocol=protocol,
            publish_mode=mode,
        ))
        return self

    def add_port_mapping(self, mapping: str) -> "ServiceDefinition":
        self.ports.append(PortConfig.parse(mapping))
        return self

    def add_network(self, network: str) -> "ServiceDefinition":
        if network not in self.networks:
            self.networks.append(network)
        return self

    # Storage

    def add_volume(self, source: str, target: str, kind: Optional[str] = None,
                   read_only: bool = False) -> "ServiceDefinition":
        kind = kind or infer_volume_kind(source)
        if kind not in ("bind", "volume"):
            raise ValidationError(f"Invalid volume kind {kind!r}; expected 'bind' or 'volume'")
        self.volumes.append(VolumeMount(source=source, target=target, kind=kind, read_only=read_only))
        return self

    def add_volume_mapping(self, mapping: str) -> "ServiceDefinition":
        self.volumes.append(VolumeMount.parse(mapping))
        return self

    # Lifecycle

    def set_restart_policy(self, name: Union[str, RestartPolicyName],
                           max_retries: Optional[int] = None) -> "ServiceDefinition":
        self.restart_policy = RestartPolicy.create(name, max_retries)
        return self

    def set_healthcheck(self, test: Union[str, List[str]], interval: Optional[Duration] = None,
                        timeout: Optional[Duration] = None, retries: Optional[int] = None,
                        start_period: Optional[Duration] = None) -> "ServiceDefinition":
        """
        Sets the health check. Duration strings are stored verbatim; numbers of
        seconds and timedeltas are rendered as compose durations.
        """
        if isinstance(test, str):
            test = ["CMD-SHELL", test]
        self.healthcheck = HealthCheck(
            test=list(test),
            interval=format_duration(interval) if interval is not None else None,
            timeout=format_duration(timeout) if timeout is not None else None,
            retries=retries,
            start_period=format_duration(start_period) if start_period is not None else None,
        )
        return self

    def depends_on_service(self, service: str) -> "ServiceDefinition":
        if service not in self.depends_on:
            self.depends_on.append(service)
        return self

    def set_replicas(self, count: int) -> "ServiceDefinition":
        if count < 0:
            raise ValidationError(f"Replica count cannot be negative: {count}")
        self.replicas = count
        return self

    # Resources

    def set_memory(self, limit: str) -> "ServiceDefinition":
        self.resources.memory = limit
        return self

    def set_memory_reservation(self, limit: str) -> "ServiceDefinition":
        self.resources.memory_reservation = limit
        return self

    def set_cpus(self, cpus: Union[str, float]) -> "ServiceDefinition":
        self.resources.cpus = str(cpus)
        return self

    def set_cpu_shares(self, shares: int) -> "ServiceDefinition":
        self.resources.cpu_shares = shares
        return self

    def set_cpu_quota(self, quota: int, period: Optional[int] = None) -> "ServiceDefinition":
        self.resources.cpu_quota = quota
        if period is not None:
            self.resources.cpu_period = period
        return self

    # Metadata

    def add_label(self, key: str, value: str) -> "ServiceDefinition":
        self.labels[key] = value
        return self

    def add_secret(self, secret: str) -> "ServiceDefinition":
        self.secrets.append(secret)
        return self

    def clone_with_name(self, new_name: str) -> "ServiceDefinition":
        """
        Deep, independent copy under a new name.
        """
        return self.model_copy(deep=True, update={"name": new_name})

    # Presets

    @classmethod
    def web_service(cls, name: str) -> "ServiceDefinition":
        return cls(name=name).set_restart_policy("unless-stopped").add_label("service.type", "web")

    @classmethod
    def database_service(cls, name: str) -> "ServiceDefinition":
        return cls(name=name).set_restart_policy("unless-stopped").add_label("service.type", "database")

    @classmethod
    def redis_service(cls, name: str) -> "ServiceDefinition":
        return (cls(name=name)
                .set_image("redis:7-alpine")
                .add_port(6379, 6379)
                .set_restart_policy("unless-stopped")
                .add_label("service.type", "cache"))
