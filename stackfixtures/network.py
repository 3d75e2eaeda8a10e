"""
User-defined docker networks, so that containers can reach each other by alias.
"""

import logging
import uuid

import docker  # type: ignore

from .client import docker_client

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
class Network:
    """
    A bridge network, created on first use and removed by `close()`.
    ```python
    with Network.new_network() as network:
        GenericContainer("redis:7-alpine").with_network(network).with_network_aliases("redis")
    ```
    """

    def __init__(self, name: str | None = None, driver: str = "bridge"):
        self.name = name or f"stackfixtures-{uuid.uuid4().hex[:12]}"
        self.driver = driver
        self._network = None

    @staticmethod
    def new_network() -> "Network":
        return Network()

    @property
    def network(self):
        if self._network is None:
            logger.info(f"Creating network {self.name}")
            self._network = docker_client().networks.create(
                self.name, driver=self.driver
            )
        return self._network

    @property
    def id(self) -> str:
        return self.network.id

    def connect(self, container, aliases: list[str] | None = None):
        self.network.connect(container, aliases=aliases or None)

    def close(self):
        if self._network is None:
            return
        logger.info(f"Removing network {self.name}")
        try:
            self._network.remove()
        except docker.errors.NotFound:
            pass
        self._network = None

    def __enter__(self) -> "Network":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
