"""
Dependency resolution for services to determine startup and shutdown order.
"""
import heapq
import logging
from typing import Dict, List, Set

from ..exceptions import DependencyCycleError
from ..MODELS.stack_registry import StackRegistry

logger = logging.getLogger(__name__)


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """

    def resolve_order(self, registry: StackRegistry) -> List[str]:
        """
        Orders services so that each comes after everything it depends on.

        Among services whose dependencies are satisfied, the one registered
        first goes first. Dependencies on services that are not registered
        are ignored.

        :param registry: The stack's services.
        :return: Service names in the order they should be started.
        :raises DependencyCycleError: If the dependency graph has a cycle.
        """
        names = registry.list_service_names()
        position = {name: i for i, name in enumerate(names)}
        dependents: Dict[str, List[str]] = {name: [] for name in names}
        remaining: Dict[str, Set[str]] = {}

        for svc in registry.services():
            deps = set()
            for dep in svc.depends_on:
                if dep not in position:
                    logger.warning("Service %s depends on unknown service %s; ignoring",
                                   svc.name, dep)
                    continue
                deps.add(dep)
            remaining[svc.name] = deps
            for dep in deps:
                dependents[dep].append(svc.name)

        ready = [position[name] for name in names if not remaining[name]]
        heapq.heapify(ready)
        ordered = []
        while ready:
            name = names[heapq.heappop(ready)]
            ordered.append(name)
            for dependent in dependents[name]:
                remaining[dependent].discard(name)
                if not remaining[dependent]:
                    heapq.heappush(ready, position[dependent])

        if len(ordered) != len(names):
            stuck = [name for name in names if remaining[name]]
            raise DependencyCycleError(
                f"Circular dependency detected involving: {', '.join(stuck)}"
            )
        return ordered

    def resolve_shutdown_order(self, registry: StackRegistry) -> List[str]:
        """Reverse of the startup order: dependents stop before their dependencies."""
        return list(reversed(self.resolve_order(registry)))
