"""
Docker Containers API
"""

import base64
import io
import json
import logging
import posixpath
import struct
import tarfile
from typing import Any, Dict, List, NamedTuple, Optional, Union

from ..exceptions import APIError, ContainerNotFound, NotFound, ValidationError
from ..MODELS.service_definition import PortConfig, RestartPolicy

logger = logging.getLogger(__name__)

_STREAM_TYPES = (0, 1, 2)
PATH_STAT_HEADER = "x-docker-container-path-stat"


def demux_stream(data: bytes) -> str:
    """
    Decodes log or exec output.

    Without a TTY the daemon frames each chunk with an 8-byte header
    (stream type, three zero bytes, big-endian payload length). Unframed
    output, as produced for TTY containers, is decoded as-is.
    """
    if not data:
        return ""
    if len(data) < 8 or data[0] not in _STREAM_TYPES or data[1:4] != b"\x00\x00\x00":
        return data.decode("utf-8", errors="replace")

    chunks = []
    pos = 0
    while pos + 8 <= len(data):
        stream_type = data[pos]
        if stream_type not in _STREAM_TYPES or data[pos + 1:pos + 4] != b"\x00\x00\x00":
            break
        (size,) = struct.unpack(">I", data[pos + 4:pos + 8])
        chunks.append(data[pos + 8:pos + 8 + size])
        pos += 8 + size
    if pos < len(data):
        chunks.append(data[pos:])
    return b"".join(chunks).decode("utf-8", errors="replace")


class ExecResult(NamedTuple):
    exit_code: Optional[int]
    output: str


def build_port_bindings(ports: Union[Dict[Any, Any], List[Union[str, int, PortConfig]]]):
    """
    Translates port specs into (ExposedPorts, PortBindings).

    Accepts a list of mapping strings / PortConfig objects, or a dict of
    ``{container_port: host_port}`` in the docker-py style.

    :raises ValidationError: On a malformed mapping string.
    """
    if isinstance(ports, dict):
        configs = []
        for container_port, host_port in ports.items():
            container, _, proto = str(container_port).partition("/")
            if not container.isdigit():
                raise ValidationError(f"Malformed container port: {container_port!r}")
            configs.append(PortConfig(
                container_port=int(container),
                host_port=int(host_port) if host_port is not None else None,
                protocol=proto or "tcp",
            ))
    else:
        configs = [p if isinstance(p, PortConfig) else PortConfig.parse(p) for p in ports]

    exposed: Dict[str, Dict] = {}
    bindings: Dict[str, List[Dict[str, str]]] = {}
    for port in configs:
        key = f"{port.container_port}/{port.protocol}"
        exposed[key] = {}
        if port.host_port is None and not port.host_ip:
            continue
        binding = {"HostPort": str(port.host_port) if port.host_port is not None else ""}
        if port.host_ip:
            binding["HostIp"] = port.host_ip
        bindings.setdefault(key, []).append(binding)
    return exposed, bindings


class Container:
    """Docker Container object"""

    def __init__(self, attrs: Dict[str, Any], collection: "ContainerCollection"):
        self.attrs = attrs
        self.collection = collection

    @property
    def id(self) -> str:
        return self.attrs.get("Id", "")

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def name(self) -> str:
        if self.attrs.get("Name"):
            return self.attrs["Name"].lstrip("/")
        names = self.attrs.get("Names") or [""]
        return names[0].lstrip("/")

    @property
    def status(self) -> str:
        state = self.attrs.get("State")
        if isinstance(state, dict):
            return state.get("Status", "unknown")
        return state or "unknown"

    @property
    def health(self) -> Optional[str]:
        state = self.attrs.get("State")
        if isinstance(state, dict):
            return (state.get("Health") or {}).get("Status")
        return None

    @property
    def labels(self) -> Dict[str, str]:
        labels = self.attrs.get("Labels")
        if labels is None:
            labels = (self.attrs.get("Config") or {}).get("Labels")
        return labels or {}

    @property
    def image(self) -> str:
        config = self.attrs.get("Config") or {}
        return config.get("Image") or self.attrs.get("Image", "")

    def __repr__(self):
        return f"<Container: {self.name or self.short_id}>"

    def reload(self) -> "Container":
        """Refresh attrs from the daemon"""
        self.attrs = self.collection.inspect(self.id)
        return self

    def inspect(self) -> Dict[str, Any]:
        return self.collection.inspect(self.id)

    def start(self):
        return self.collection.start(self.id)

    def stop(self, timeout: int = 10):
        return self.collection.stop(self.id, timeout=timeout)

    def restart(self, timeout: int = 10):
        return self.collection.restart(self.id, timeout=timeout)

    def kill(self, signal: str = "SIGKILL"):
        return self.collection.kill(self.id, signal=signal)

    def pause(self):
        return self.collection.pause(self.id)

    def unpause(self):
        return self.collection.unpause(self.id)

    def rename(self, name: str):
        return self.collection.rename(self.id, name)

    def wait(self, condition: Optional[str] = None) -> Dict[str, Any]:
        return self.collection.wait(self.id, condition=condition)

    def remove(self, force: bool = False, v: bool = False):
        return self.collection.remove(self.id, force=force, v=v)

    def logs(self, stdout: bool = True, stderr: bool = True, timestamps: bool = False,
             tail: Union[str, int] = "all", since: Optional[int] = None) -> str:
        return self.collection.logs(self.id, stdout=stdout, stderr=stderr,
                                    timestamps=timestamps, tail=tail, since=since)

    def exec_run(self, cmd: Union[str, List[str]], **kwargs) -> ExecResult:
        return self.collection.exec_run(self.id, cmd, **kwargs)

    def copy_from(self, src: str, dst: str):
        return self.collection.copy_from(self.id, src, dst)

    def copy_file_into(self, src: str, dst: str):
        return self.collection.copy_file_into(self.id, src, dst)

    def stat_file(self, path: str) -> Dict[str, Any]:
        return self.collection.stat_file(self.id, path)

    def commit(self, repository: Optional[str] = None, tag: Optional[str] = None, **kwargs) -> str:
        return self.collection.commit(self.id, repository=repository, tag=tag, **kwargs)


class ContainerCollection:
    """Docker Containers collection"""

    def __init__(self, client):
        self.client = client

    @property
    def http(self):
        return self.client.http

    def list(self, all: bool = False, limit: Optional[int] = None,
             filters: Optional[Dict[str, Any]] = None) -> List[Container]:
        """
        List containers

        Args:
            all: Show all containers (including stopped)
            limit: Maximum number of containers to return
            filters: Filters to apply, e.g. {"label": ["dockstack.stack=web"]}

        Returns:
            List of Container objects
        """
        params: Dict[str, Any] = {"all": all, "limit": limit}
        if filters:
            params["filters"] = filters
        containers_data = self.http.request("GET", "/containers/json", params=params) or []
        return [Container(c_data, self) for c_data in containers_data]

    def get(self, container_id: str) -> Container:
        """
        Get container by ID or name

        Raises:
            ContainerNotFound: If container not found
        """
        return Container(self.inspect(container_id), self)

    def inspect(self, container_id: str) -> Dict[str, Any]:
        return self.http.request("GET", f"/containers/{container_id}/json",
                                 not_found=ContainerNotFound)

    def create(self, image: str, name: Optional[str] = None,
               command: Optional[Union[str, List[str]]] = None,
               entrypoint: Optional[Union[str, List[str]]] = None,
               environment: Optional[Union[Dict[str, str], List[str]]] = None,
               ports: Optional[Union[Dict[Any, Any], List[Union[str, int]]]] = None,
               volumes: Optional[List[str]] = None,
               labels: Optional[Dict[str, str]] = None,
               restart_policy: Optional[Union[str, Dict[str, Any]]] = None,
               hostname: Optional[str] = None, working_dir: Optional[str] = None,
               user: Optional[str] = None, network: Optional[str] = None,
               tty: bool = False, stdin_open: bool = False, auto_remove: bool = False,
               platform: Optional[str] = None, **kwargs) -> Container:
        """
        Create container

        Port mappings and the restart policy are validated before anything is sent.

        Args:
            image: Image name or ID
            name: Container name
            command: Command to run, a list or a string run through ``sh -c``
            entrypoint: Entrypoint override
            environment: Environment variables as a dict or a list of KEY=VALUE
            ports: Mapping strings ("8080:80/tcp") or {container_port: host_port}
            volumes: Bind strings ("/host:/container:ro")
            labels: Container labels
            restart_policy: Policy name ("on-failure:3") or {"Name": ..., "MaximumRetryCount": ...}
            hostname: Container hostname
            working_dir: Working directory inside the container
            user: User to run as
            network: Network to attach the container to
            tty: Allocate TTY
            stdin_open: Keep STDIN open
            auto_remove: Auto-remove when stopped
            platform: Platform (e.g., linux/amd64)
            **kwargs: Raw Engine API fields merged into the request body

        Returns:
            Container object

        Raises:
            ValidationError: Malformed port mapping or unknown restart policy.
        """
        config: Dict[str, Any] = {
            "Image": image,
            "Tty": tty,
            "OpenStdin": stdin_open,
            "AttachStdin": stdin_open,
            "AttachStdout": True,
            "AttachStderr": True,
        }
        host_config: Dict[str, Any] = {}

        if command:
            config["Cmd"] = ["sh", "-c", command] if isinstance(command, str) else list(command)
        if entrypoint:
            config["Entrypoint"] = entrypoint.split() if isinstance(entrypoint, str) else list(entrypoint)
        if environment:
            if isinstance(environment, dict):
                config["Env"] = [f"{k}={v}" for k, v in environment.items()]
            else:
                config["Env"] = list(environment)
        if labels:
            config["Labels"] = dict(labels)
        if hostname:
            config["Hostname"] = hostname
        if working_dir:
            config["WorkingDir"] = working_dir
        if user:
            config["User"] = user

        if ports:
            exposed, bindings = build_port_bindings(ports)
            config["ExposedPorts"] = exposed
            if bindings:
                host_config["PortBindings"] = bindings
        if volumes:
            host_config["Binds"] = list(volumes)
        if restart_policy:
            if isinstance(restart_policy, dict):
                policy = RestartPolicy.create(
                    restart_policy.get("Name", restart_policy.get("name", "")),
                    restart_policy.get("MaximumRetryCount", restart_policy.get("maximum_retry_count")) or None,
                )
            else:
                policy = RestartPolicy.parse(restart_policy)
            host_config["RestartPolicy"] = policy.to_engine()
        if network:
            host_config["NetworkMode"] = network
        if auto_remove:
            host_config["AutoRemove"] = True
        if host_config:
            config["HostConfig"] = host_config

        config.update(kwargs)
        return self.create_from_config(config, name=name, platform=platform)

    def create_from_config(self, config: Dict[str, Any], name: Optional[str] = None,
                           platform: Optional[str] = None) -> Container:
        """
        Create a container from a complete Engine API request body.
        """
        params = {"name": name, "platform": platform}
        result = self.http.request("POST", "/containers/create", data=config, params=params)
        for warning in result.get("Warnings") or []:
            logger.warning("Container %s: %s", name or result.get("Id"), warning)
        attrs = {"Id": result["Id"], "Name": name or "", "Config": config}
        return Container(attrs, self)

    def run(self, image: str, command: Optional[Union[str, List[str]]] = None, **kwargs) -> Container:
        """
        Create and start container
        """
        container = self.create(image, command=command, **kwargs)
        container.start()
        return container

    def prune(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Remove stopped containers"""
        params = {"filters": filters} if filters else None
        return self.http.request("POST", "/containers/prune", params=params)

    def start(self, container_id: str):
        """Start container"""
        self.http.request("POST", f"/containers/{container_id}/start", not_found=ContainerNotFound)

    def stop(self, container_id: str, timeout: int = 10):
        """Stop container"""
        self.http.request("POST", f"/containers/{container_id}/stop", params={"t": timeout},
                          not_found=ContainerNotFound)

    def restart(self, container_id: str, timeout: int = 10):
        """Restart container"""
        self.http.request("POST", f"/containers/{container_id}/restart", params={"t": timeout},
                          not_found=ContainerNotFound)

    def kill(self, container_id: str, signal: str = "SIGKILL"):
        """Kill container"""
        self.http.request("POST", f"/containers/{container_id}/kill", params={"signal": signal},
                          not_found=ContainerNotFound)

    def pause(self, container_id: str):
        self.http.request("POST", f"/containers/{container_id}/pause", not_found=ContainerNotFound)

    def unpause(self, container_id: str):
        self.http.request("POST", f"/containers/{container_id}/unpause", not_found=ContainerNotFound)

    def rename(self, container_id: str, name: str):
        self.http.request("POST", f"/containers/{container_id}/rename", params={"name": name},
                          not_found=ContainerNotFound)

    def wait(self, container_id: str, condition: Optional[str] = None) -> Dict[str, Any]:
        """Block until the container stops; returns {"StatusCode": ..., "Error": ...}"""
        return self.http.request("POST", f"/containers/{container_id}/wait",
                                 params={"condition": condition}, not_found=ContainerNotFound)

    def remove(self, container_id: str, force: bool = False, v: bool = False):
        """Remove container"""
        self.http.request("DELETE", f"/containers/{container_id}", params={"force": force, "v": v},
                          not_found=ContainerNotFound)

    def logs(self, container_id: str, stdout: bool = True, stderr: bool = True,
             timestamps: bool = False, tail: Union[str, int] = "all",
             since: Optional[int] = None) -> str:
        """
        Get container logs

        Args:
            container_id: Container ID
            stdout: Return stdout stream
            stderr: Return stderr stream
            timestamps: Show timestamps
            tail: Number of lines to show from end ('all' for all)
            since: Show logs since timestamp (Unix epoch)

        Returns:
            Log output with stdout and stderr merged in daemon order
        """
        params = {
            "stdout": stdout,
            "stderr": stderr,
            "timestamps": timestamps,
            "tail": tail,
            "since": since,
        }
        data = self.http.request("GET", f"/containers/{container_id}/logs", params=params,
                                 raw=True, not_found=ContainerNotFound)
        return demux_stream(data or b"")

    def exec_run(self, container_id: str, cmd: Union[str, List[str]], stdout: bool = True,
                 stderr: bool = True, tty: bool = False, privileged: bool = False,
                 user: str = "", environment: Optional[Dict[str, str]] = None,
                 workdir: str = "", detach: bool = False) -> ExecResult:
        """
        Execute command in running container

        Returns:
            ExecResult(exit_code, output); exit_code is None when detached
        """
        exec_config: Dict[str, Any] = {
            "AttachStdout": stdout,
            "AttachStderr": stderr,
            "Tty": tty,
            "Privileged": privileged,
            "Cmd": cmd if isinstance(cmd, list) else ["sh", "-c", cmd],
        }
        if user:
            exec_config["User"] = user
        if environment:
            exec_config["Env"] = [f"{k}={v}" for k, v in environment.items()]
        if workdir:
            exec_config["WorkingDir"] = workdir

        exec_result = self.http.request("POST", f"/containers/{container_id}/exec",
                                        data=exec_config, not_found=ContainerNotFound)
        exec_id = exec_result["Id"]

        output = self.http.request("POST", f"/exec/{exec_id}/start",
                                   data={"Detach": detach, "Tty": tty}, raw=True)
        if detach:
            return ExecResult(None, "")
        info = self.http.request("GET", f"/exec/{exec_id}/json") or {}
        return ExecResult(info.get("ExitCode"), demux_stream(output or b""))

    def get_archive(self, container_id: str, path: str) -> bytes:
        """Tar archive of ``path`` inside the container"""
        return self.http.request("GET", f"/containers/{container_id}/archive", params={"path": path},
                                 raw=True, not_found=NotFound) or b""

    def put_archive(self, container_id: str, path: str, data: bytes):
        """Extract a tar archive into the directory ``path`` inside the container"""
        self.http.request("PUT", f"/containers/{container_id}/archive", params={"path": path},
                          data=data, headers={"Content-Type": "application/x-tar"},
                          not_found=NotFound)

    def copy_from(self, container_id: str, src: str, dst: str):
        """
        Copy a file or directory out of a container

        Args:
            container_id: Container ID
            src: Path inside the container
            dst: Local directory the archive is unpacked into
        """
        data = self.get_archive(container_id, src)
        with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
            tar.extractall(dst, filter="data")
        logger.debug("Copied %s from %s to %s", src, container_id[:12], dst)

    def copy_file_into(self, container_id: str, src: str, dst: str):
        """
        Copy a local file into a container

        Args:
            container_id: Container ID
            src: Local file path
            dst: Destination file path inside the container; its directory must exist
        """
        with open(src, "rb") as f:
            content = f.read()
        directory, name = posixpath.split(dst)
        if not name:
            raise ValidationError(f"Destination must name a file: {dst!r}")

        tar_stream = io.BytesIO()
        with tarfile.open(fileobj=tar_stream, mode="w") as tar:
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(content))
        self.put_archive(container_id, directory or "/", tar_stream.getvalue())

    def stat_file(self, container_id: str, path: str) -> Dict[str, Any]:
        """
        Stat a path inside a container

        Returns:
            Decoded path stat: name, size, mode, mtime, linkTarget
        """
        headers = self.http.head(f"/containers/{container_id}/archive", params={"path": path},
                                 not_found=NotFound)
        for key, value in (headers or {}).items():
            if key.lower() == PATH_STAT_HEADER:
                return json.loads(base64.b64decode(value))
        raise APIError(f"Daemon returned no path stat for {path!r}")

    def commit(self, container_id: str, repository: Optional[str] = None, tag: Optional[str] = None,
               message: Optional[str] = None, author: Optional[str] = None,
               changes: Optional[List[str]] = None, pause: bool = True,
               config: Optional[Dict[str, Any]] = None) -> str:
        """
        Create an image from a container's changes

        Returns:
            ID of the new image
        """
        params = {
            "container": container_id,
            "repo": repository,
            "tag": tag,
            "comment": message,
            "author": author,
            "pause": pause,
            "changes": "\n".join(changes) if changes else None,
        }
        result = self.http.request("POST", "/commit", params=params, data=config or {},
                                   not_found=ContainerNotFound)
        logger.info("Committed %s as %s", container_id[:12], result["Id"])
        return result["Id"]
