"""
Log aggregation for the services of a stack.

Lines of one container keep their order. Across services and replicas, lines
appear in the order the containers were read, not in wall-clock order.
"""
import logging
from typing import Iterator, List, Optional, Tuple, Union

from ..exceptions import ContainerNotFound, ServiceNotFound
from .service_orchestrator import ServiceOrchestrator

logger = logging.getLogger(__name__)


class LogAggregator:
    """
    Aggregates logs from every tracked container, tagging each line with its service.
    """

    def __init__(self, client, orchestrator: ServiceOrchestrator):
        """
        Initializes the log aggregator.

        :param client: DockerClient used to fetch container logs.
        :param orchestrator: Source of the tracked containers.
        """
        self.client = client
        self.orchestrator = orchestrator

    def iter_logs(self, service_names: Optional[List[str]] = None,
                  tail: Union[str, int] = "all",
                  timestamps: bool = False) -> Iterator[Tuple[str, str]]:
        """
        Yields (service, line) pairs, service by service, replica by replica.

        :param service_names: Restrict to these services; all tracked services when omitted.
        :param tail: Lines to fetch from the end of each container's log, or 'all'.
        :param timestamps: Prefix lines with the daemon's timestamps.
        :raises ServiceNotFound: If a requested service is neither registered nor tracked.
        """
        tracked = self.orchestrator.tracked_containers()
        if service_names is None:
            names = self.orchestrator.tracked_service_names()
        else:
            registry = self.orchestrator.registry
            for name in service_names:
                if not registry.has_service(name) and name not in tracked:
                    raise ServiceNotFound(f"Service '{name}' is not part of stack '{registry.name}'")
            names = list(service_names)

        for name in names:
            for ref in tracked.get(name, []):
                try:
                    text = self.client.containers().logs(ref.container_id, tail=tail,
                                                         timestamps=timestamps)
                except ContainerNotFound:
                    logger.warning("Container %s of %s no longer exists; no logs",
                                   ref.container_id[:12], name)
                    continue
                for line in text.splitlines():
                    yield name, line

    def logs(self, service_names: Optional[List[str]] = None,
             tail: Union[str, int] = "all", timestamps: bool = False) -> str:
        """
        Returns the aggregated logs, one ``[service] line`` per line.
        """
        return "\n".join(f"[{name}] {line}"
                         for name, line in self.iter_logs(service_names, tail, timestamps))
