"""
Access to the docker daemon shared by every fixture of the library.
"""

import logging
import os
import shutil
import threading
from urllib.parse import urlparse

import docker  # type: ignore

logger = logging.getLogger(__name__)

_client: docker.DockerClient | None = None
_client_lock = threading.Lock()


# ------------------------------------------------------------------------------
def docker_client() -> docker.DockerClient:
    """
    Lazily created client configured from the environment (DOCKER_HOST, ...)
    """
    global _client
    with _client_lock:
        if _client is None:
            logger.info("Connecting to docker daemon")
            _client = docker.from_env()
        return _client


# ------------------------------------------------------------------------------
def docker_command() -> str | None:
    """Path of the docker CLI, or of podman when docker is not installed"""
    return shutil.which("docker") or shutil.which("podman")


# ------------------------------------------------------------------------------
def container_host_ip() -> str:
    """Host on which the published ports of containers can be reached"""
    docker_host = os.environ.get("DOCKER_HOST", "")
    if docker_host.startswith("tcp://"):
        hostname = urlparse(docker_host).hostname
        if hostname:
            return hostname
    return "localhost"


# ------------------------------------------------------------------------------
def image_name_for_running_container(container_name_suffix: str) -> str:
    """
    Image name of the first running container having a name that ends with
    the given suffix
    """
    for container in docker_client().containers.list():
        if container.name.endswith(container_name_suffix):
            return container.attrs["Config"]["Image"]
    raise LookupError(f"no running container named '*{container_name_suffix}'")


# ------------------------------------------------------------------------------
def is_image_present(image_name: str) -> bool:
    """True if an image matching the given reference exists locally"""
    return len(docker_client().images.list(name=image_name)) > 0
