"""
Volume management for stacks: named volumes are created before containers and
optionally removed on teardown.
"""
import logging
from typing import List, Tuple

from ..CONVERTERS.to_container_config import STACK_LABEL, resource_name
from ..exceptions import Conflict, DockerException, VolumeNotFound
from ..MODELS.stack_registry import StackRegistry
from ..MODELS.stack_status import TeardownError

logger = logging.getLogger(__name__)


class VolumeManager:
    """
    Manages the named volumes of one stack.
    Bind mounts are host paths and are never created or removed here.
    """

    def __init__(self, client, stack_name: str):
        """
        :param client: DockerClient used for volume calls.
        :param stack_name: Prefix and label value for the stack's volumes.
        """
        self.client = client
        self.stack_name = stack_name

    def required_volumes(self, registry: StackRegistry) -> List[str]:
        names: List[str] = []
        for svc in registry.services():
            for mount in svc.volumes:
                if mount.kind != "volume" or not mount.source:
                    continue
                name = resource_name(self.stack_name, mount.source)
                if name not in names:
                    names.append(name)
        return names

    def ensure_volumes(self, registry: StackRegistry) -> List[str]:
        """
        Creates missing named volumes.

        :return: The daemon names of all volumes the stack needs.
        """
        names = self.required_volumes(registry)
        volumes = self.client.volumes()
        for name in names:
            try:
                volumes.get(name)
                continue
            except VolumeNotFound:
                pass
            try:
                volumes.create(name, labels={STACK_LABEL: self.stack_name})
            except Conflict:
                logger.debug("Volume %s was created concurrently", name)
        return names

    def remove_volumes(self) -> Tuple[List[str], List[TeardownError]]:
        """
        Removes every volume labelled with this stack. Failures are collected, not raised.
        """
        removed: List[str] = []
        errors: List[TeardownError] = []
        try:
            found = self.client.volumes().list(filters={"label": [f"{STACK_LABEL}={self.stack_name}"]})
        except DockerException as e:
            logger.warning("Listing volumes of stack %s failed: %s", self.stack_name, e)
            return removed, [TeardownError(resource="volumes", error=str(e))]

        for volume in found:
            try:
                volume.remove()
                removed.append(volume.name)
                logger.info("Removed volume %s", volume.name)
            except VolumeNotFound:
                removed.append(volume.name)
            except DockerException as e:
                logger.warning("Removing volume %s failed: %s", volume.name, e)
                errors.append(TeardownError(resource=f"volume:{volume.name}", error=str(e)))
        return removed, errors
