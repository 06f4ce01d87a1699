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
A named multi-service application bound to a Docker client.
"""
import os
from typing import Dict, List, Mapping, Optional, Union

from ..CONVERTERS.to_compose import ComposeConverter
from ..MODELS.stack_registry import StackRegistry
from ..MODELS.stack_status import (
    DeployedContainerRef,
    DeploymentReport,
    StackState,
    StackStatusReport,
    TeardownReport,
)
from ..PARSERS.compose_parser import ComposeParser
from .log_aggregator import LogAggregator
from .service_orchestrator import ServiceOrchestrator
from .status_monitor import StatusMonitor


class Stack(StackRegistry):
    """
    Service registry plus deployment, status and logs for one stack.

    Example::

        stack = Stack(docker, "webapp-example")
        stack.register_service(ServiceDefinition.database_service("database").set_image("postgres:16"))
        stack.register_service(ServiceDefinition.web_service("webapp")
                               .set_image("nginx:latest")
                               .add_port(80, 8080)
                               .depends_on_service("database"))
        stack.up()
        print(stack.status().to_dict())
        stack.down()

    Registration and deployment calls are serialized by one lock per stack.
    Unregistering a deployed service does not stop its containers; ``down()``
    still removes them.
    """

    def __init__(self, client, name: str, base_dir: str = "."):
        """
        :param client: DockerClient every daemon call goes through.
        :param name: Stack name, used in container, network and volume names and labels.
        :param base_dir: Directory that relative build contexts, bind sources and env files resolve against.
        """
        super().__init__(name)
        self.client = client
        self.base_dir = base_dir
        self.orchestrator = ServiceOrchestrator(client, self, base_dir=base_dir, lock=self._lock)
        self.monitor = StatusMonitor(client, self.orchestrator)
        self.log_aggregator = LogAggregator(client, self.orchestrator)

    @property
    def state(self) -> StackState:
        return self.orchestrator.state

    def up(self) -> DeploymentReport:
        return self.orchestrator.up()

    def down(self, remove_volumes: bool = False) -> TeardownReport:
        return self.orchestrator.down(remove_volumes=remove_volumes)

    def scale(self, service_name: str, replicas: int) -> List[int]:
        return self.orchestrator.scale(service_name, replicas)

    def restart_service(self, service_name: str) -> List[DeployedContainerRef]:
        return self.orchestrator.restart_service(service_name)

    def discover(self) -> Dict[str, List[DeployedContainerRef]]:
        return self.orchestrator.discover()

    def tracked_containers(self) -> Dict[str, List[DeployedContainerRef]]:
        return self.orchestrator.tracked_containers()

    def pull(self) -> List[str]:
        """Pulls the image of every image-based service."""
        return self.orchestrator.image_builder.pull_all(self)

    def status(self) -> StackStatusReport:
        return self.monitor.status()

    def logs(self, service_names: Optional[List[str]] = None,
             tail: Union[str, int] = "all", timestamps: bool = False) -> str:
        return self.log_aggregator.logs(service_names, tail=tail, timestamps=timestamps)

    def to_yaml(self) -> str:
        return ComposeConverter(self).to_yaml()

    def to_file(self, path: str) -> str:
        return ComposeConverter(self).write(path)

    @classmethod
    def from_registry(cls, client, registry: StackRegistry, base_dir: str = ".") -> "Stack":
        """New stack holding copies of the registry's services under the registry's name."""
        stack = cls(client, registry.name, base_dir=base_dir)
        for service in registry.services():
            stack.register_service(service)
        return stack

    @classmethod
    def from_yaml(cls, client, text: str, name: Optional[str] = None, base_dir: str = ".",
                  context: Optional[Mapping[str, str]] = None) -> "Stack":
        """
        :raises ComposeParseError: If the text is not a compose document.
        """
        registry = ComposeParser(context).parse_from_string(text, name=name)
        return cls.from_registry(client, registry, base_dir=base_dir)

    @classmethod
    def from_file(cls, client, path: str, name: Optional[str] = None,
                  context: Optional[Mapping[str, str]] = None) -> "Stack":
        """
        Relative paths inside the file resolve against the file's directory.

        :raises ComposeFileError: If the file cannot be read.
        :raises ComposeParseError: If the content is not a compose document.
        """
        registry = ComposeParser(context).parse(path, name=name)
        return cls.from_registry(client, registry, base_dir=os.path.dirname(os.path.abspath(path)))
