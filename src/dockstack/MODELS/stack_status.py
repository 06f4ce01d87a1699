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
Runtime state of a deployed stack: tracked replicas, lifecycle states and the
reports returned by deployment, teardown and status queries.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel


class StackState(str, Enum):
    """Lifecycle state of a stack as seen by this process."""

    NOT_DEPLOYED = "not_deployed"
    DEPLOYING = "deploying"
    RUNNING = "running"
    SCALING_UP = "scaling_up"
    SCALING_DOWN = "scaling_down"
    RESTARTING = "restarting"
    TEARING_DOWN = "tearing_down"


class ContainerState(str, Enum):
    """Container status as reported by the daemon, collapsed to the values we track."""

    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    EXITED = "exited"
    UNKNOWN = "unknown"

    @classmethod
    def from_daemon(cls, value: Optional[str]) -> "ContainerState":
        if value == "dead":
            return cls.EXITED
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class HealthStatus(str, Enum):
    """Health status of a container."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = "none"  # No health check configured

    @classmethod
    def from_daemon(cls, value: Optional[str]) -> "HealthStatus":
        try:
            return cls(value) if value else cls.NONE
        except ValueError:
            return cls.NONE


@dataclass
class DeployedContainerRef:
    """One replica created by the orchestrator."""

    service_name: str
    replica_index: int
    container_id: str
    status: ContainerState = ContainerState.CREATED
    health: HealthStatus = HealthStatus.NONE


class ContainerStatus(BaseModel):
    id: str
    replica: int
    status: ContainerState
    health: HealthStatus


class ServiceStatus(BaseModel):
    replicas: int = 0
    running: int = 0
    healthy: int = 0
    unhealthy: int = 0
    containers: List[ContainerStatus] = []


class StackStatusReport(BaseModel):
    """
    Point-in-time snapshot of every tracked container of a stack.

    ``status`` is ``not_deployed`` when nothing is tracked, ``degraded`` when any
    tracked container is not running or is unhealthy, and ``running`` otherwise.
    """

    stack: str
    status: str
    total_containers: int = 0
    services: Dict[str, ServiceStatus] = {}

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class ServiceFailure(BaseModel):
    service: str
    error: str


class DeploymentReport(BaseModel):
    """Outcome of ``up()``: per-service success, failure and skip lists."""

    stack: str
    succeeded: List[str] = []
    failed: List[ServiceFailure] = []
    skipped: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped


class TeardownError(BaseModel):
    resource: str
    error: str


class TeardownReport(BaseModel):
    """Outcome of ``down()``. Failures are collected; teardown never stops early."""

    stack: str
    removed_containers: List[str] = []
    container_errors: List[TeardownError] = []
    removed_networks: List[str] = []
    removed_volumes: List[str] = []
    resource_errors: List[TeardownError] = []

    @property
    def ok(self) -> bool:
        return not self.container_errors and not self.resource_errors
