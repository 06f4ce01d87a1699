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
Orchestration for multiple services: dependency-ordered deployment, teardown,
scaling and restarts of a stack's containers.
"""
import logging
import threading
from typing import Dict, List, Optional

from ..BUILDERS.image_builder import ImageBuilder
from ..CONVERTERS.to_container_config import (
    REPLICA_LABEL,
    SERVICE_LABEL,
    STACK_LABEL,
    ContainerConfigConverter,
    service_networks,
)
from ..exceptions import (
    ContainerNotFound,
    DependencyCycleError,
    DeploymentError,
    DockerException,
    ServiceNotDeployed,
    ValidationError,
)
from ..MODELS.service_definition import ServiceDefinition
from ..MODELS.stack_registry import StackRegistry
from ..MODELS.stack_status import (
    ContainerState,
    DeployedContainerRef,
    DeploymentReport,
    ServiceFailure,
    StackState,
    TeardownError,
    TeardownReport,
)
from ..RUNNERS.dependency_resolver import DependencyResolver
from .network_manager import NetworkManager
from .volume_manager import VolumeManager

logger = logging.getLogger(__name__)


class ServiceOrchestrator:
    """
    Deploys the services of a registry as containers and tracks the replicas it created.

    Tracked containers live only in this object; ``discover()`` rebuilds them
    from container labels in a new process. Nothing is retried or rolled back.
    """

    def __init__(self, client, registry: StackRegistry, base_dir: str = ".",
                 lock: Optional[threading.RLock] = None, stop_timeout: int = 10):
        """
        Initializes the orchestrator.

        :param client: DockerClient used for every daemon call.
        :param registry: The stack's service definitions.
        :param base_dir: Directory for relative build contexts, bind sources and env files.
        :param lock: Lock shared with the registry so mutations are serialized.
        :param stop_timeout: Seconds the daemon waits before killing a stopping container.
        """
        self.client = client
        self.registry = registry
        self.stack_name = registry.name
        self.base_dir = base_dir
        self.stop_timeout = stop_timeout
        self.resolver = DependencyResolver()
        self.converter = ContainerConfigConverter(self.stack_name, base_dir)
        self.image_builder = ImageBuilder(client, self.stack_name, base_dir)
        self.network_manager = NetworkManager(client, self.stack_name)
        self.volume_manager = VolumeManager(client, self.stack_name)
        self._lock = lock or threading.RLock()
        self._tracked: Dict[str, Dict[int, DeployedContainerRef]] = {}
        self._state = StackState.NOT_DEPLOYED

    @property
    def state(self) -> StackState:
        return self._state

    @property
    def lock(self) -> threading.RLock:
        """The stack-wide lock serializing mutations and status refreshes."""
        return self._lock

    def _settle(self):
        self._tracked = {name: refs for name, refs in self._tracked.items() if refs}
        self._state = StackState.RUNNING if self._tracked else StackState.NOT_DEPLOYED

    def tracked_containers(self) -> Dict[str, List[DeployedContainerRef]]:
        """Tracked replicas per service, ordered by replica index."""
        with self._lock:
            return {name: [refs[i] for i in sorted(refs)]
                    for name, refs in self._tracked.items() if refs}

    def tracked_service_names(self) -> List[str]:
        """Services with tracked replicas: registered ones in registry order, then the rest."""
        with self._lock:
            names = [n for n in self.registry.list_service_names() if self._tracked.get(n)]
            names += [n for n in self._tracked if n not in names and self._tracked[n]]
            return names

    def up(self) -> DeploymentReport:
        """
        Starts all services in dependency order.

        A service whose dependency failed or was skipped is skipped and never
        created. Services started before a failure stay running.

        :return: The deployment report when every service started.
        :raises DependencyCycleError: Before any daemon call, if the dependencies form a cycle.
        :raises DeploymentError: If any service failed; carries the report.
        """
        with self._lock:
            order = self.resolver.resolve_order(self.registry)
            logger.info("Deploying stack %s in order: %s", self.stack_name, ", ".join(order))
            self._state = StackState.DEPLOYING
            report = DeploymentReport(stack=self.stack_name)
            try:
                self.network_manager.ensure_networks(self.registry)
                self.volume_manager.ensure_volumes(self.registry)

                unavailable = set()
                for name in order:
                    service = self.registry.get_service(name)
                    blocked = [d for d in service.depends_on if d in unavailable]
                    if blocked:
                        logger.warning("Skipping service %s: dependency %s did not start",
                                       name, ", ".join(blocked))
                        report.skipped.append(name)
                        unavailable.add(name)
                        continue
                    try:
                        self._deploy_service(service)
                    except (DockerException, ValueError) as e:
                        logger.warning("Service %s failed to start: %s", name, e)
                        report.failed.append(ServiceFailure(service=name, error=str(e)))
                        unavailable.add(name)
                        continue
                    report.succeeded.append(name)
            finally:
                self._settle()

            if report.failed:
                failed = ", ".join(f.service for f in report.failed)
                raise DeploymentError(f"Stack {self.stack_name}: services failed to start: {failed}",
                                      report=report)
            return report

    def _deploy_service(self, service: ServiceDefinition):
        if service.secrets:
            logger.warning("Service %s declares secrets, which only apply under swarm; ignoring",
                           service.name)
        image = self.image_builder.ensure_image(service)
        existing = self._tracked.get(service.name, {})
        for index in range(service.replicas):
            if index in existing:
                continue
            self._start_replica(service, index, image)

    def _start_replica(self, service: ServiceDefinition, index: int, image: str) -> DeployedContainerRef:
        name, config = self.converter.convert(service, index, image)
        containers = self.client.containers()
        container = containers.create_from_config(config, name=name)

        # Tracked before start so that down() also removes containers that never started
        ref = DeployedContainerRef(service_name=service.name, replica_index=index,
                                   container_id=container.id)
        self._tracked.setdefault(service.name, {})[index] = ref

        for network in service_networks(self.stack_name, service)[1:]:
            self.client.networks().connect(network, container.id, aliases=[service.name])
        containers.start(container.id)
        ref.status = ContainerState.RUNNING
        logger.info("Started %s (%s)", name, container.short_id)
        return ref

    def _remove_container(self, ref: DeployedContainerRef):
        containers = self.client.containers()
        try:
            containers.stop(ref.container_id, timeout=self.stop_timeout)
        except ContainerNotFound:
            return
        except DockerException as e:
            logger.warning("Stopping %s failed, forcing removal: %s", ref.container_id[:12], e)
        try:
            containers.remove(ref.container_id, force=True)
        except ContainerNotFound:
            pass

    def down(self, remove_volumes: bool = False) -> TeardownReport:
        """
        Stops and removes every tracked container in reverse dependency order,
        then the stack's networks and, optionally, its named volumes.

        Continues past individual failures; they are collected in the report.
        Afterwards the stack is not deployed and nothing is tracked.
        """
        with self._lock:
            self._state = StackState.TEARING_DOWN
            report = TeardownReport(stack=self.stack_name)
            try:
                order = self.resolver.resolve_shutdown_order(self.registry)
            except DependencyCycleError:
                order = list(reversed(self.registry.list_service_names()))
            order += [n for n in self._tracked if n not in order]

            for name in order:
                refs = self._tracked.get(name, {})
                for index in sorted(refs, reverse=True):
                    ref = refs[index]
                    try:
                        self._remove_container(ref)
                        report.removed_containers.append(ref.container_id)
                        logger.info("Removed %s replica %d", name, index)
                    except DockerException as e:
                        logger.warning("Removing %s replica %d failed: %s", name, index, e)
                        report.container_errors.append(
                            TeardownError(resource=ref.container_id, error=str(e)))

            self._tracked.clear()
            removed, errors = self.network_manager.remove_networks()
            report.removed_networks.extend(removed)
            report.resource_errors.extend(errors)
            if remove_volumes:
                removed, errors = self.volume_manager.remove_volumes()
                report.removed_volumes.extend(removed)
                report.resource_errors.extend(errors)
            self._state = StackState.NOT_DEPLOYED
            return report

    def scale(self, service_name: str, replicas: int) -> List[int]:
        """
        Sets the replica count of a service, starting or removing containers if deployed.

        New replicas take the lowest free indices; scaling down removes the
        highest indices first so replica 0 stays put.

        :return: Replica indices running afterwards.
        :raises ServiceNotFound: If the service is not registered.
        :raises ValidationError: If ``replicas`` is negative.
        """
        with self._lock:
            service = self.registry.get_service(service_name)
            if replicas < 0:
                raise ValidationError(f"Replica count cannot be negative: {replicas}")
            service.set_replicas(replicas)
            if self._state is StackState.NOT_DEPLOYED:
                logger.info("Stack %s not deployed; %s will start %d replicas on up()",
                            self.stack_name, service_name, replicas)
                return []

            refs = self._tracked.setdefault(service_name, {})
            try:
                missing = [i for i in range(replicas) if i not in refs]
                extra = sorted((i for i in refs if i >= replicas), reverse=True)
                if missing:
                    self._state = StackState.SCALING_UP
                    image = self.image_builder.ensure_image(service, rebuild=False)
                    for index in missing:
                        self._start_replica(service, index, image)
                if extra:
                    self._state = StackState.SCALING_DOWN
                    for index in extra:
                        self._remove_container(refs[index])
                        del refs[index]
                        logger.info("Removed %s replica %d", service_name, index)
                return sorted(refs)
            finally:
                self._settle()

    def restart_service(self, service_name: str) -> List[DeployedContainerRef]:
        """
        Restarts every tracked replica in place. A replica whose container has
        disappeared is recreated under the same index.

        :raises ServiceNotFound: If the service is not registered.
        :raises ServiceNotDeployed: If the service has no tracked replicas.
        """
        with self._lock:
            service = self.registry.get_service(service_name)
            refs = self._tracked.get(service_name)
            if not refs:
                raise ServiceNotDeployed(
                    f"Service '{service_name}' has no running containers in stack '{self.stack_name}'"
                )
            self._state = StackState.RESTARTING
            try:
                image = None
                for index in sorted(refs):
                    ref = refs[index]
                    try:
                        self.client.containers().restart(ref.container_id, timeout=self.stop_timeout)
                        ref.status = ContainerState.RUNNING
                        logger.info("Restarted %s replica %d", service_name, index)
                    except ContainerNotFound:
                        logger.info("Container of %s replica %d is gone; recreating", service_name, index)
                        del refs[index]
                        if image is None:
                            image = self.image_builder.ensure_image(service, rebuild=False)
                        self._start_replica(service, index, image)
                return [refs[i] for i in sorted(refs)]
            finally:
                self._settle()

    def discover(self) -> Dict[str, List[DeployedContainerRef]]:
        """
        Rebuilds the tracked replicas from the labels of the stack's containers on the daemon.
        """
        with self._lock:
            found = self.client.containers().list(
                all=True, filters={"label": [f"{STACK_LABEL}={self.stack_name}"]}
            )
            tracked: Dict[str, Dict[int, DeployedContainerRef]] = {}
            for container in found:
                labels = container.labels
                service = labels.get(SERVICE_LABEL)
                try:
                    index = int(labels.get(REPLICA_LABEL, ""))
                except ValueError:
                    logger.warning("Container %s has no valid replica label; ignoring", container.short_id)
                    continue
                if not service:
                    continue
                tracked.setdefault(service, {})[index] = DeployedContainerRef(
                    service_name=service,
                    replica_index=index,
                    container_id=container.id,
                    status=ContainerState.from_daemon(container.status),
                )
            self._tracked = tracked
            self._settle()
            logger.info("Discovered %d containers for stack %s",
                        sum(len(r) for r in tracked.values()), self.stack_name)
            return self.tracked_containers()
