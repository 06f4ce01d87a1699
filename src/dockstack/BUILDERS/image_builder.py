"""
Builders that make sure every service has an image before its containers are created.
"""
import logging
import os
from typing import List

from ..CONVERTERS.to_container_config import resource_name
from ..exceptions import ValidationError
from ..MODELS.service_definition import ServiceDefinition
from ..MODELS.stack_registry import StackRegistry

logger = logging.getLogger(__name__)


class ImageBuilder:
    """
    Builds images for services with a build context and pulls the rest when missing.
    """

    def __init__(self, client, stack_name: str, base_dir: str = "."):
        """
        Initializes the ImageBuilder.

        :param client: DockerClient used for image calls.
        :param stack_name: Prefix for the tags of built images.
        :param base_dir: The base directory for resolving relative build contexts.
        """
        self.client = client
        self.stack_name = stack_name
        self.base_dir = base_dir

    def image_for(self, service: ServiceDefinition) -> str:
        """
        Image reference the service's containers run.

        A built service is tagged with its ``image`` when one is set, else ``<stack>_<service>``.
        """
        if service.build is not None:
            return service.image or resource_name(self.stack_name, service.name)
        if service.image:
            return service.image
        raise ValidationError(f"Service '{service.name}' has neither an image nor a build context")

    def ensure_image(self, service: ServiceDefinition, rebuild: bool = True) -> str:
        """
        Builds or pulls as needed.

        :param rebuild: Build even when the tag already exists locally.
        :return: The image reference to create containers from.
        """
        image = self.image_for(service)
        if service.build is not None:
            if rebuild or not self.client.images().exists(image):
                self.build(service, image)
        elif not self.client.images().exists(image):
            logger.info("Image %s not present locally, pulling", image)
            self.client.images().pull(image=image)
        return image

    def build(self, service: ServiceDefinition, tag: str):
        build = service.build
        context = os.path.normpath(os.path.join(self.base_dir, os.path.expanduser(build.context)))
        logger.info("Building %s for service %s", tag, service.name)
        return self.client.images().build(
            path=context,
            tag=tag,
            dockerfile=build.dockerfile,
            buildargs=dict(build.args) or None,
            target=build.target,
            cache_from=list(build.cache_from) or None,
        )

    def pull_all(self, registry: StackRegistry) -> List[str]:
        """
        Pulls the image of every image-based service, whether present or not.

        :return: The references pulled.
        """
        pulled = []
        for svc in registry.services():
            if svc.build is not None or not svc.image:
                continue
            if svc.image in pulled:
                continue
            self.client.images().pull(image=svc.image)
            pulled.append(svc.image)
        return pulled
