"""
A single docker container with a fluent configuration API, started and stopped
around tests.
"""

import io
import logging
import os
import tarfile
import time
from dataclasses import dataclass

import docker  # type: ignore
from docker.models.containers import Container  # type: ignore

from .client import container_host_ip, docker_client
from .network import Network
from .waiting import wait_for, wait_for_logs

logger = logging.getLogger(__name__)


def _port_key(port) -> str:
    port = str(port)
    return port if "/" in port else f"{port}/tcp"


# ------------------------------------------------------------------------------
@dataclass
class ExecResult:
    """
    Outcome of a command executed inside a running container
    """

    exit_code: int
    stdout: str
    stderr: str


# ------------------------------------------------------------------------------
class GenericContainer:
    """
    Container built from any image.
    ```python
    with GenericContainer("alpine:latest").with_command("tail -f /dev/null") as c:
        assert c.exec_in_container("echo", "hi").stdout == "hi\\n"
    ```
    """

    def __init__(self, image: str):
        self.image = image
        self.env: dict[str, str] = {}
        self.command: str | list[str] | None = None
        self.entrypoint: str | list[str] | None = None
        self.ports: dict[str, int | None] = {}
        self.volumes: dict | list = {}
        self.name: str | None = None
        self.working_dir: str | None = None
        self.user: str | int | None = None
        self.network: Network | str | None = None
        self.network_aliases: list[str] = []
        self.startup_timeout: float = 60
        self.log_pattern: str | None = None
        self.dependencies: list["GenericContainer"] = []
        self._container: Container | None = None

    # -- configuration ---------------------------------------------------------

    def with_env(self, key: str, value) -> "GenericContainer":
        self.env[key] = str(value)
        return self

    def with_command(self, command: str | list[str]) -> "GenericContainer":
        self.command = command
        return self

    def with_entrypoint(self, entrypoint: str | list[str]) -> "GenericContainer":
        self.entrypoint = entrypoint
        return self

    def with_exposed_ports(self, *ports) -> "GenericContainer":
        """Publish container ports on random host ports"""
        for port in ports:
            self.ports[_port_key(port)] = None
        return self

    def with_bind_ports(self, container_port, host_port: int) -> "GenericContainer":
        self.ports[_port_key(container_port)] = host_port
        return self

    def with_volume_mapping(
        self, host_path: str, container_path: str, mode="rw"
    ) -> "GenericContainer":
        if not isinstance(self.volumes, dict):
            raise ValueError("volumes were already given as a list")
        self.volumes[host_path] = {"bind": container_path, "mode": mode}
        return self

    def with_name(self, name: str) -> "GenericContainer":
        self.name = name
        return self

    def with_network(self, network: Network | str) -> "GenericContainer":
        self.network = network
        return self

    def with_network_aliases(self, *aliases: str) -> "GenericContainer":
        self.network_aliases.extend(aliases)
        return self

    def with_startup_timeout(self, seconds: float) -> "GenericContainer":
        self.startup_timeout = seconds
        return self

    def waiting_for_logs(self, pattern: str) -> "GenericContainer":
        """Consider the container started once its logs match `pattern`"""
        self.log_pattern = pattern
        return self

    def depends_on(self, *containers: "GenericContainer") -> "GenericContainer":
        self.dependencies.extend(containers)
        return self

    # -- lifecycle -------------------------------------------------------------

    @property
    def container(self) -> Container:
        if self._container is None:
            raise RuntimeError(f"container for {self.image} is not started")
        return self._container

    @property
    def is_running(self) -> bool:
        if self._container is None:
            return False
        try:
            self._container.reload()
        except docker.errors.NotFound:
            return False
        return self._container.status == "running"

    def _ensure_image(self):
        client = docker_client()
        try:
            client.images.get(self.image)
        except docker.errors.ImageNotFound:
            logger.info(f"Pulling image {self.image}")
            client.images.pull(self.image)

    def _connect_network(self):
        if self.network is None:
            return
        if isinstance(self.network, Network):
            self.network.connect(self._container, self.network_aliases)
        else:
            docker_client().networks.get(self.network).connect(
                self._container, aliases=self.network_aliases or None
            )

    def start(self) -> "GenericContainer":
        if self._container is not None:
            return self

        # dependencies are started one after the other, before this one
        for dependency in self.dependencies:
            if not dependency.is_running:
                dependency.start()

        self._ensure_image()

        logger.info(f"Creating container {self.name or ''} from {self.image}")
        self._container = docker_client().containers.create(
            self.image,
            detach=True,
            name=self.name,
            command=self.command,
            entrypoint=self.entrypoint,
            environment=self.env,
            ports=self.ports or None,
            volumes=self.volumes or None,
            working_dir=self.working_dir,
            user=self.user,
        )

        try:
            self._connect_network()
            logger.info(f"Starting container {self._container.short_id}")
            self._container.start()
            self.container_started()
            if self.log_pattern:
                wait_for_logs(self, self.log_pattern, timeout=self.startup_timeout)
        except Exception:
            logger.error(f"Container {self._container.short_id} failed to start")
            self.stop()
            raise
        return self

    def container_started(self):
        """Hook invoked right after the container has been started"""

    def stop(self):
        if self._container is None:
            return
        container, self._container = self._container, None
        try:
            logger.info(f"Stopping container {container.short_id}")
            container.stop()
            logger.info(f"Removing container {container.short_id}")
            container.remove(v=True)
        except docker.errors.NotFound:
            pass

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    # -- runtime ---------------------------------------------------------------

    def get_container_host_ip(self) -> str:
        return container_host_ip()

    def get_exposed_port(self, port, timeout=10) -> int:
        """Host port on which a container port is published"""
        key = _port_key(port)

        def mapped_port():
            self.container.reload()
            bindings = self.container.ports.get(key)
            return int(bindings[0]["HostPort"]) if bindings else None

        return wait_for(mapped_port, timeout=timeout, name=f"port {key} published")

    def get_logs(self) -> str:
        return self.container.logs().decode(errors="replace")

    def exec_in_container(self, *command: str) -> ExecResult:
        """
        Execute a command in the running container.
        A single argument is run as a command line, several as an argv.
        """
        cmd = command[0] if len(command) == 1 else list(command)
        exit_code, (stdout, stderr) = self.container.exec_run(cmd, demux=True)
        return ExecResult(
            exit_code=exit_code,
            stdout=(stdout or b"").decode(errors="replace"),
            stderr=(stderr or b"").decode(errors="replace"),
        )

    def copy_to_container(self, content: bytes, path: str, mode=0o644):
        """Write a file inside the container"""
        data = io.BytesIO()
        with tarfile.open(fileobj=data, mode="w") as tar:
            info = tarfile.TarInfo(name=os.path.basename(path))
            info.size = len(content)
            info.mode = mode
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(content))
        self.container.put_archive(os.path.dirname(path) or "/", data.getvalue())
