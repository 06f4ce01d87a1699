"""
Network management for stacks: creates the daemon networks services attach to
and removes them on teardown.
"""
import logging
from typing import List, Tuple

from ..CONVERTERS.to_container_config import STACK_LABEL, service_networks
from ..exceptions import Conflict, DockerException, NetworkNotFound
from ..MODELS.stack_registry import StackRegistry
from ..MODELS.stack_status import TeardownError

logger = logging.getLogger(__name__)


class NetworkManager:
    """
    Manages the networks of one stack. Networks are labelled with the stack
    name so teardown only touches what the stack created.
    """

    def __init__(self, client, stack_name: str):
        """
        :param client: DockerClient used for network calls.
        :param stack_name: Prefix and label value for the stack's networks.
        """
        self.client = client
        self.stack_name = stack_name

    def required_networks(self, registry: StackRegistry) -> List[str]:
        """Daemon names of every network the stack's services attach to, in first-use order."""
        names: List[str] = []
        for svc in registry.services():
            for network in service_networks(self.stack_name, svc):
                if network not in names:
                    names.append(network)
        return names

    def ensure_networks(self, registry: StackRegistry) -> List[str]:
        """
        Creates missing networks.

        :return: The names of all networks the stack needs.
        """
        names = self.required_networks(registry)
        networks = self.client.networks()
        for name in names:
            try:
                networks.get(name)
                logger.debug("Network %s already exists", name)
                continue
            except NetworkNotFound:
                pass
            try:
                networks.create(name, driver="bridge", labels={STACK_LABEL: self.stack_name})
            except Conflict:
                logger.debug("Network %s was created concurrently", name)
        return names

    def remove_networks(self) -> Tuple[List[str], List[TeardownError]]:
        """
        Removes every network labelled with this stack. Failures are collected, not raised.
        """
        removed: List[str] = []
        errors: List[TeardownError] = []
        try:
            found = self.client.networks().list(filters={"label": [f"{STACK_LABEL}={self.stack_name}"]})
        except DockerException as e:
            logger.warning("Listing networks of stack %s failed: %s", self.stack_name, e)
            return removed, [TeardownError(resource="networks", error=str(e))]

        for network in found:
            try:
                network.remove()
                removed.append(network.name)
                logger.info("Removed network %s", network.name)
            except NetworkNotFound:
                removed.append(network.name)
            except DockerException as e:
                logger.warning("Removing network %s failed: %s", network.name, e)
                errors.append(TeardownError(resource=f"network:{network.name}", error=str(e)))
        return removed, errors
