import pytest

from dockstack.CLIENT.docker_client import DockerClient
from fake_daemon import FakeDaemon


@pytest.fixture
def fake_daemon():
    daemon = FakeDaemon()
    for image in ("nginx:latest", "postgres:16", "redis:7-alpine", "busybox:latest"):
        daemon.add_image(image)
    return daemon


@pytest.fixture
def docker(fake_daemon):
    return DockerClient(http_client=fake_daemon)
