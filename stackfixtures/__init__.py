"""
a Python module designed to drive multi-container environments from pytest
tests: single containers, stacks described by compose files, and multi-broker
kafka clusters. It provides context managers and decorators to manage the
lifecycle of those containers during testing, along with polling helpers to
await their readiness. Both synchronous and asynchronous tests are supported.
"""

__version__ = "0.2.0"

import asyncio
import inspect
import logging
import os

from .client import (
    container_host_ip,
    docker_client,
    image_name_for_running_container,
    is_image_present,
)
from .compose import ComposeEnvironment, ComposeError, RemoveImages
from .container import ExecResult, GenericContainer
from .definitions import ContainerDefinition, ImageBuild, read_definitions
from .kafka import KafkaContainer, KafkaContainerCluster
from .network import Network
from .waiting import (
    async_wait_for,
    async_wait_for_tcp_port,
    get_free_tcp_port,
    wait_for,
    wait_for_logs,
    wait_for_tcp_port,
)


# ------------------------------------------------------------------------------
def _environment_dict(environment) -> dict:
    """Environment given as a dict or as a list of KEY=VALUE entries"""
    if not environment:
        return {}
    if isinstance(environment, dict):
        return dict(environment)
    result = {}
    for entry in environment:
        key, sep, value = entry.partition("=")
        # like docker, a bare KEY takes its value from the current environment
        result[key] = value if sep else os.environ.get(key, "")
    return result


# ------------------------------------------------------------------------------
class using_containers:
    """
    Context manager for running containers during tests.
    ```python
    @using_containers({
        "image": "lipanski/docker-static-website:latest",
        "ports": {"2000": 3000}
    })
    def test_basic():
        wait_for_tcp_port(port=2000)
        response = requests.get("http://localhost:2000")
        assert response.status_code == 404
    ```
    Compose files are accepted with the `compose_file`, `compose_files` or
    `inline_compose` keyword arguments.
    """

    def __init__(self, *args, **kwargs):

        self.logger = logging.getLogger(__name__)
        self.definitions = list(read_definitions(args))
        self._live_containers: dict[str, GenericContainer] = {}
        self.compose: ComposeEnvironment | None = None

        compose_files = list(kwargs.get("compose_files", []))

        # accept a single definition as a keyword argument
        if "compose_file" in kwargs:
            compose_files.append(kwargs["compose_file"])

        compose_options = dict(
            project_name=kwargs.get("stack_name"),
            env=kwargs.get("compose_env", {}),
            docker_command=kwargs.get("docker_command"),
        )

        # accept inline compose files as a keyword argument (string or dict)
        if "inline_compose" in kwargs:
            if compose_files:
                raise ValueError("inline_compose cannot be combined with compose files")
            self.compose = ComposeEnvironment.from_inline(
                kwargs["inline_compose"], **compose_options
            )
        elif compose_files:
            self.compose = ComposeEnvironment(*compose_files, **compose_options)

        if self.compose:
            # build images before starting compose
            self.compose.with_build(kwargs.get("compose_build", True))
            self.compose.with_remove_images(kwargs.get("compose_remove_images"))

    @property
    def client(self):
        return docker_client()

    def _build_image(self, definition: ContainerDefinition):
        self.logger.info(f"Building image {definition.build.context}")
        self.client.images.build(
            path=definition.build.context,
            dockerfile=definition.build.dockerfile,
            tag=definition.build.tag,
            buildargs=definition.build.buildargs,
        )

    def _make_container(self, definition: ContainerDefinition) -> GenericContainer:
        if definition.build:
            if not definition.build.tag:
                raise ValueError("Invalid definition: build without tag")
            self._build_image(definition)
        elif not definition.image:
            raise ValueError("Invalid definition: missing image or build")

        container = GenericContainer(definition.image_name)
        container.name = definition.name
        container.command = definition.command
        container.working_dir = definition.working_dir
        container.user = definition.user
        container.volumes = definition.volumes or {}
        container.env = _environment_dict(definition.environment)

        # definitions map host ports to container ports
        for host_port, container_port in (definition.ports or {}).items():
            container.with_bind_ports(container_port, int(host_port))

        if definition.network:
            container.with_network(definition.network)
            container.with_network_aliases(*definition.network_aliases)
        return container

    def _start_containers(self):
        self._live_containers.clear()

        containers = [self._make_container(d) for d in self.definitions]
        for container in containers:
            container.start()
            self._live_containers[container.container.name] = container

    def _stop_containers(self):
        # Stop and remove all containers that were created
        for container in self._live_containers.values():
            container.stop()
        self._live_containers.clear()

    def __enter__(self) -> "using_containers":
        try:
            self._start_containers()
            if self.compose:
                self.compose.start()
        except Exception:
            self._stop_containers()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if self.compose:
                self.compose.stop()
        finally:
            self._stop_containers()

    def __call__(self, func):
        expects_param = len(inspect.signature(func).parameters) == 1
        if asyncio.iscoroutinefunction(func):

            async def async_wrapper(*args, **kwargs):
                with self:
                    if expects_param:
                        return await func(self)
                    else:
                        return await func(*args, **kwargs)

            return async_wrapper

        else:

            def wrapper(*args, **kwargs):
                with self:
                    if expects_param:
                        return func(self)
                    else:
                        return func(*args, **kwargs)

            return wrapper

    def container(self, name: str) -> GenericContainer:
        return self._live_containers[name]

    def exec(self, container: str, command: str | list[str], **kwargs) -> tuple:
        """
        Execute a command in a running container and return the output
        """
        return self.client.containers.get(container).exec_run(command, **kwargs)

    def run(self, image, command: str | list[str], **kwargs):
        return self.client.containers.run(image, command, **kwargs)


__all__ = [
    "using_containers",
    "ComposeEnvironment",
    "ComposeError",
    "RemoveImages",
    "GenericContainer",
    "ExecResult",
    "KafkaContainer",
    "KafkaContainerCluster",
    "Network",
    "ContainerDefinition",
    "ImageBuild",
    "docker_client",
    "container_host_ip",
    "image_name_for_running_container",
    "is_image_present",
    "wait_for",
    "async_wait_for",
    "wait_for_logs",
    "wait_for_tcp_port",
    "async_wait_for_tcp_port",
    "get_free_tcp_port",
]
