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
Exceptions raised by the daemon client and the stack layer.
"""
from typing import Optional


class DockerException(Exception):
    """Base class for every dockstack error."""
    pass


class DockerConnectionError(DockerException, ConnectionError):
    """The daemon endpoint is unreachable or the connection URI is malformed."""
    pass


class APIError(DockerException):
    """
    The daemon rejected a structurally valid request.

    The daemon's own message is kept in ``explanation``.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 explanation: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.explanation = explanation if explanation is not None else message


class NotFound(APIError):
    """The daemon has no resource with the given identifier."""
    pass


class ContainerNotFound(NotFound):
    pass


class ImageNotFound(NotFound):
    pass


class NetworkNotFound(NotFound):
    pass


class VolumeNotFound(NotFound):
    pass


class Conflict(APIError):
    """A resource with the same unique name already exists."""
    pass


class BuildError(APIError):
    """Image build failed."""
    pass


class ValidationError(DockerException, ValueError):
    """Caller-supplied parameters failed a local check; nothing was sent to the daemon."""
    pass


class StackError(DockerException):
    """Base class for stack registry and orchestration errors."""
    pass


class ServiceNameConflict(StackError):
    """A service with the same name is already registered in the stack."""
    pass


class ServiceNotFound(StackError):
    """The named service is not registered in the stack."""
    pass


class ServiceNotDeployed(StackError):
    """The service is registered but has no tracked containers."""
    pass


class DependencyCycleError(StackError):
    """The depends_on graph of a stack contains a cycle."""
    pass


class DeploymentError(StackError):
    """
    One or more services failed during ``up()``.

    Services started before the failure are left running; ``report`` lists
    which services succeeded, failed and were skipped.
    """

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class ComposeError(DockerException):
    """Base class for compose import errors."""
    pass


class ComposeParseError(ComposeError):
    """The document is not valid YAML or does not have the compose shape."""
    pass


class ComposeFileError(ComposeError):
    """The compose file could not be read."""
    pass
