"""
Docker Client - Main API entry point
"""

import logging
from typing import Any, Dict, Optional

from tenacity import Retrying, retry_if_exception_type, stop_after_delay, wait_fixed

from ..exceptions import DockerConnectionError
from ..MANAGERS.stack import Stack
from .containers import ContainerCollection
from .http_client import DockerHTTPClient
from .images import ImageCollection
from .networks import NetworkCollection
from .volumes import VolumeCollection

logger = logging.getLogger(__name__)


class DockerClient:
    """
    Docker API client.

    Resource collections are reached through methods so that every component
    receiving the client shares one transport::

        docker = DockerClient()
        docker.containers().list(all=True)
        stack = docker.stack("webapp")
    """

    def __init__(self, uri: Optional[str] = None, timeout: Optional[float] = None,
                 http_client: Optional[Any] = None):
        """
        Initialize Docker client

        Args:
            uri: Daemon URI (default: DOCKER_HOST or unix:///var/run/docker.sock)
            timeout: Request timeout in seconds (default: DOCKER_TIMEOUT or 60)
            http_client: Pre-built transport, used instead of connecting to ``uri``

        Raises:
            DockerConnectionError: Malformed URI or missing socket.
        """
        self.http = http_client if http_client is not None else DockerHTTPClient(uri, timeout)
        self._containers = ContainerCollection(self)
        self._images = ImageCollection(self)
        self._networks = NetworkCollection(self)
        self._volumes = VolumeCollection(self)

    @classmethod
    def from_env(cls, timeout: Optional[float] = None) -> "DockerClient":
        """Client configured from DOCKER_HOST and DOCKER_TIMEOUT"""
        return cls(timeout=timeout)

    def containers(self) -> ContainerCollection:
        return self._containers

    def images(self) -> ImageCollection:
        return self._images

    def networks(self) -> NetworkCollection:
        return self._networks

    def volumes(self) -> VolumeCollection:
        return self._volumes

    def version(self) -> Dict[str, Any]:
        """Get Docker version info"""
        return self.http.request("GET", "/version")

    def info(self) -> Dict[str, Any]:
        """Get Docker system info"""
        return self.http.request("GET", "/info")

    def ping(self) -> bool:
        """Ping Docker daemon"""
        return self.http.request("GET", "/_ping") == "OK"

    def data_usage(self) -> Dict[str, Any]:
        """Disk usage of images, containers, volumes and build cache"""
        return self.http.request("GET", "/system/df")

    def wait_until_ready(self, timeout: float = 30, interval: float = 1) -> bool:
        """
        Polls the daemon until it answers a ping.

        Only connection failures are retried; any other error is raised at once.

        :raises DockerConnectionError: If the daemon is still unreachable after ``timeout`` seconds.
        """
        retryer = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(DockerConnectionError),
            before_sleep=lambda state: logger.info("Docker daemon not ready, retrying (attempt %d)",
                                                   state.attempt_number),
            reraise=True,
        )
        return retryer(self.ping)

    def stack(self, name: str, base_dir: str = ".") -> Stack:
        """New empty stack bound to this client"""
        return Stack(self, name, base_dir=base_dir)

    def import_stack_from_yaml(self, text: str, name: Optional[str] = None) -> Stack:
        return Stack.from_yaml(self, text, name=name)

    def import_stack_from_file(self, path: str, name: Optional[str] = None) -> Stack:
        return Stack.from_file(self, path, name=name)

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
