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
Status snapshots for a deployed stack, built from the daemon's view of each
tracked container. No polling happens in the background; every call queries
the daemon afresh.
"""
import logging

from ..exceptions import ContainerNotFound
from ..MODELS.stack_status import (
    ContainerState,
    ContainerStatus,
    HealthStatus,
    ServiceStatus,
    StackStatusReport,
)
from .service_orchestrator import ServiceOrchestrator

logger = logging.getLogger(__name__)


class StatusMonitor:
    """
    Rolls per-container state up into per-service and stack-wide counts.
    """

    def __init__(self, client, orchestrator: ServiceOrchestrator):
        """
        :param client: DockerClient used to inspect containers.
        :param orchestrator: Source of the tracked containers.
        """
        self.client = client
        self.orchestrator = orchestrator

    def status(self) -> StackStatusReport:
        """
        Inspects every tracked container and returns a snapshot.

        Registered services without tracked containers are listed with zero counts.
        A tracked container that no longer exists is reported with status ``unknown``.
        """
        with self.orchestrator.lock:
            registry = self.orchestrator.registry
            tracked = self.orchestrator.tracked_containers()
            report = StackStatusReport(stack=registry.name, status="not_deployed")

            names = registry.list_service_names()
            names += [n for n in tracked if n not in names]
            degraded = False
            for name in names:
                service_status = ServiceStatus()
                for ref in tracked.get(name, []):
                    try:
                        state = self.client.containers().inspect(ref.container_id).get("State") or {}
                        ref.status = ContainerState.from_daemon(state.get("Status"))
                        ref.health = HealthStatus.from_daemon((state.get("Health") or {}).get("Status"))
                    except ContainerNotFound:
                        logger.warning("Tracked container %s of %s no longer exists",
                                       ref.container_id[:12], name)
                        ref.status = ContainerState.UNKNOWN
                        ref.health = HealthStatus.NONE

                    service_status.replicas += 1
                    if ref.status is ContainerState.RUNNING:
                        service_status.running += 1
                    else:
                        degraded = True
                    if ref.health is HealthStatus.HEALTHY:
                        service_status.healthy += 1
                    elif ref.health is HealthStatus.UNHEALTHY:
                        service_status.unhealthy += 1
                        degraded = True
                    service_status.containers.append(ContainerStatus(
                        id=ref.container_id,
                        replica=ref.replica_index,
                        status=ref.status,
                        health=ref.health,
                    ))
                report.services[name] = service_status
                report.total_containers += service_status.replicas

            if report.total_containers:
                report.status = "degraded" if degraded else "running"
        return report
