"""
In-memory collection of uniquely named service definitions belonging to one stack.
"""
import logging
import threading
from typing import Dict, List

from ..exceptions import ServiceNameConflict, ServiceNotFound
from .service_definition import ServiceDefinition

logger = logging.getLogger(__name__)


class StackRegistry:
    """
    Ordered mapping from service name to ServiceDefinition.

    Registration order is kept and drives compose export, tie-breaking in the
    startup order and log output.
    """

    def __init__(self, name: str):
        self.name = name
        self._services: Dict[str, ServiceDefinition] = {}
        self._lock = threading.RLock()

    def register_service(self, service: ServiceDefinition) -> None:
        """
        Stores an independent copy of the definition.

        :raises ServiceNameConflict: If a service with the same name is registered.
        """
        with self._lock:
            if service.name in self._services:
                raise ServiceNameConflict(
                    f"Service '{service.name}' is already registered in stack '{self.name}'"
                )
            self._services[service.name] = service.model_copy(deep=True)
            logger.debug("Registered service %s in stack %s", service.name, self.name)

    def unregister_service(self, name: str) -> bool:
        """
        Removes a service definition. Containers already deployed for it keep running.

        :return: Whether the service was registered.
        """
        with self._lock:
            return self._services.pop(name, None) is not None

    def get_service(self, name: str) -> ServiceDefinition:
        """
        Returns the stored definition; mutating it changes what later deployments use.
        """
        try:
            return self._services[name]
        except KeyError:
            raise ServiceNotFound(f"Service '{name}' is not registered in stack '{self.name}'")

    def has_service(self, name: str) -> bool:
        return name in self._services

    def service_count(self) -> int:
        return len(self._services)

    def list_service_names(self) -> List[str]:
        return list(self._services)

    get_registered_services = list_service_names

    def services(self) -> List[ServiceDefinition]:
        """Definitions in registration order."""
        return list(self._services.values())

    def __contains__(self, name: str) -> bool:
        return self.has_service(name)

    def __len__(self) -> int:
        return self.service_count()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, services={self.list_service_names()!r})"
