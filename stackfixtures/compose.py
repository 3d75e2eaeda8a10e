"""
Stacks described by compose files, driven through the `docker compose` CLI.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import uuid
from enum import Enum

import yaml

from .client import container_host_ip, docker_client
from .client import docker_command as find_docker_command
from .container import ExecResult
from .waiting import wait_for_tcp_port

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
class RemoveImages(Enum):
    """
    Images removed by `compose down`: LOCAL only removes the images that were
    built for services without an explicit `image` tag, ALL removes every image
    used by the stack.
    """

    LOCAL = "local"
    ALL = "all"


# ------------------------------------------------------------------------------
class ComposeError(RuntimeError):
    """A compose command exited with a non-zero status"""

    def __init__(self, command: list[str], returncode: int, stderr: str):
        super().__init__(
            f"'{' '.join(command)}' failed with exit code {returncode}: {stderr.strip()}"
        )
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


# ------------------------------------------------------------------------------
class ComposeEnvironment:
    """
    A compose project started for the duration of a test.
    ```python
    with ComposeEnvironment("docker-compose.yml").with_exposed_service("redis", 6379) as env:
        port = env.get_service_port("redis", 6379)
    ```
    """

    def __init__(
        self,
        *compose_files: str,
        project_name: str | None = None,
        env: dict | None = None,
        docker_command: str | None = None,
    ):
        self._cleanup_fns = []

        if not compose_files:
            raise ValueError("at least one compose file is required")

        self.compose_files = [os.path.abspath(f) for f in compose_files]
        for compose_file in self.compose_files:
            if not os.path.isfile(compose_file):
                raise FileNotFoundError(f"compose file not found: {compose_file}")

        self.docker_command = docker_command or find_docker_command()

        # compose project names only accept lowercase letters, digits, dashes and underscores
        self.project_name = project_name or f"stackfixtures{uuid.uuid4().hex[:10]}"
        self.compose_env = dict(env or {})
        self.build = False
        self.pull = False
        self.remove_images: RemoveImages | None = None
        self.exposed_services: list[tuple[str, int]] = []

    @classmethod
    def from_inline(cls, compose: str | dict, **kwargs) -> "ComposeEnvironment":
        """
        Stack defined by a compose document given as yaml text or as a dict
        """
        temp_dir = tempfile.mkdtemp()
        compose_file = os.path.join(temp_dir, "docker-compose.yml")

        with open(compose_file, "w") as f:
            if isinstance(compose, str):
                f.write(compose)
            else:
                yaml.safe_dump(compose, f)

        environment = cls(compose_file, **kwargs)
        environment._cleanup_fns.append(
            lambda: shutil.rmtree(temp_dir, ignore_errors=True)
        )
        return environment

    # -- configuration ---------------------------------------------------------

    def with_exposed_service(self, service: str, port: int) -> "ComposeEnvironment":
        """Wait for `port` of `service` to accept connections on start"""
        self.exposed_services.append((service, port))
        return self

    def with_build(self, build: bool = True) -> "ComposeEnvironment":
        self.build = build
        return self

    def with_pull(self, pull: bool = True) -> "ComposeEnvironment":
        self.pull = pull
        return self

    def with_remove_images(self, mode: RemoveImages | None) -> "ComposeEnvironment":
        self.remove_images = mode
        return self

    def with_env(self, key: str, value) -> "ComposeEnvironment":
        self.compose_env[key] = str(value)
        return self

    # -- compose cli -----------------------------------------------------------

    @property
    def project_directory(self) -> str:
        return os.path.dirname(self.compose_files[0])

    def compose_command(self, *args: str) -> list[str]:
        if not self.docker_command:
            raise RuntimeError(
                "docker_command not found. an installation of docker or podman is required to use compose files"
            )
        command = [self.docker_command, "compose", "-p", self.project_name]
        for compose_file in self.compose_files:
            command += ["-f", compose_file]
        return command + list(args)

    def _run(self, *args: str) -> str:
        command = self.compose_command(*args)
        env = os.environ.copy()
        env.update(self.compose_env)
        logger.debug(f"Running {' '.join(command)}")
        result = subprocess.run(
            command,
            cwd=self.project_directory,
            env=env,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise ComposeError(command, result.returncode, result.stderr)
        return result.stdout

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> "ComposeEnvironment":
        try:
            if self.pull:
                logger.info(f"Pulling images for project {self.project_name}")
                self._run("pull")

            up = ["up", "-d"]
            if self.build:
                # images are rebuilt before the services are started
                up.append("--build")

            logger.info(f"Starting compose project {self.project_name}")
            self._run(*up)

            for service, port in self.exposed_services:
                logger.info(f"Waiting for {service}:{port}")
                wait_for_tcp_port(
                    self.get_service_port(service, port),
                    host=self.get_service_host(service, port),
                    timeout=60,
                )
        except Exception:
            logger.error(f"Compose project {self.project_name} failed to start")
            try:
                self.stop()
            except ComposeError as e:
                logger.warning(str(e))
            raise
        return self

    def stop(self):
        args = ["down", "-v"]
        if self.remove_images:
            args += ["--rmi", self.remove_images.value]
        logger.info(f"Stopping compose project {self.project_name}")
        self._run(*args)

    def close(self):
        """Release the temporary files of the environment"""
        while self._cleanup_fns:
            self._cleanup_fns.pop()()

    def __del__(self):
        self.close()

    def __enter__(self) -> "ComposeEnvironment":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    # -- runtime ---------------------------------------------------------------

    def get_service_host(self, service: str | None = None, port: int | None = None) -> str:
        return container_host_ip()

    def get_service_port(self, service: str, port: int) -> int:
        """Host port on which `port` of `service` is published"""
        output = self._run("port", service, str(port)).strip()
        if not output:
            raise LookupError(f"port {port} of service '{service}' is not published")
        # e.g. 0.0.0.0:49153 or [::]:49153
        return int(output.splitlines()[0].rsplit(":", 1)[1])

    def get_service_container(self, service: str):
        containers = docker_client().containers.list(
            filters={
                "label": [
                    f"com.docker.compose.project={self.project_name}",
                    f"com.docker.compose.service={service}",
                ]
            }
        )
        if not containers:
            raise LookupError(
                f"no running container for service '{service}' in project {self.project_name}"
            )
        return containers[0]

    def exec_in_service(self, service: str, command: str | list[str]) -> ExecResult:
        container = self.get_service_container(service)
        exit_code, (stdout, stderr) = container.exec_run(command, demux=True)
        return ExecResult(
            exit_code=exit_code,
            stdout=(stdout or b"").decode(errors="replace"),
            stderr=(stderr or b"").decode(errors="replace"),
        )
