"""
Kafka brokers, alone or as a multi-broker cluster sharing one zookeeper.
```python
with KafkaContainerCluster("7.6.0", brokers_num=3, internal_topics_rf=2) as cluster:
    producer = KafkaProducer(bootstrap_servers=cluster.get_bootstrap_servers())
```
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from .container import GenericContainer
from .network import Network
from .waiting import wait_for

logger = logging.getLogger(__name__)

ZOOKEEPER_PORT = 2181
KAFKA_PORT = 9093
BROKER_PORT = 9092

DEFAULT_CONFLUENT_PLATFORM_VERSION = "7.6.0"

STARTER_SCRIPT = "/stackfixtures_start.sh"


# ------------------------------------------------------------------------------
class KafkaContainer(GenericContainer):
    """
    A Confluent Platform kafka broker.

    Clients on the host connect through the PLAINTEXT listener, published on a
    random port. Other containers of the same network use the BROKER listener,
    on port 9092 of the first network alias. As the published port is only known
    once the container runs, the broker waits for a start script that is copied
    into the container right after it has been started.

    Without an external zookeeper, one is run inside the container.
    """

    def __init__(
        self,
        image: str = f"confluentinc/cp-kafka:{DEFAULT_CONFLUENT_PLATFORM_VERSION}",
    ):
        super().__init__(image)
        self.external_zookeeper_connect: str | None = None

        self.with_exposed_ports(KAFKA_PORT)
        self.with_env(
            "KAFKA_LISTENERS",
            f"PLAINTEXT://0.0.0.0:{KAFKA_PORT},BROKER://0.0.0.0:{BROKER_PORT}",
        )
        self.with_env(
            "KAFKA_LISTENER_SECURITY_PROTOCOL_MAP",
            "BROKER:PLAINTEXT,PLAINTEXT:PLAINTEXT",
        )
        self.with_env("KAFKA_INTER_BROKER_LISTENER_NAME", "BROKER")
        self.with_env("KAFKA_BROKER_ID", 1)
        self.with_env("KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR", 1)
        self.with_env("KAFKA_OFFSETS_TOPIC_NUM_PARTITIONS", 1)
        self.with_env("KAFKA_LOG_FLUSH_INTERVAL_MESSAGES", 2**63 - 1)
        self.with_env("KAFKA_GROUP_INITIAL_REBALANCE_DELAY_MS", 0)
        self.with_command(
            [
                "sh",
                "-c",
                f"while [ ! -f {STARTER_SCRIPT} ]; do sleep 0.1; done; bash {STARTER_SCRIPT}",
            ]
        )
        self.waiting_for_logs(r"\[KafkaServer id=\d+\] started")

    def with_external_zookeeper(self, connect: str) -> "KafkaContainer":
        self.external_zookeeper_connect = connect
        return self

    def get_bootstrap_servers(self) -> str:
        """host:port of the listener reachable from the host"""
        return f"{self.get_container_host_ip()}:{self.get_exposed_port(KAFKA_PORT)}"

    def _internal_host(self) -> str:
        if self.network_aliases:
            return self.network_aliases[0]
        return self.container.attrs["Config"]["Hostname"]

    def starter_script(self) -> str:
        listeners = (
            f"PLAINTEXT://{self.get_bootstrap_servers()},"
            f"BROKER://{self._internal_host()}:{BROKER_PORT}"
        )
        lines = ["#!/bin/bash"]
        if self.external_zookeeper_connect:
            lines.append(
                f"export KAFKA_ZOOKEEPER_CONNECT='{self.external_zookeeper_connect}'"
            )
        else:
            lines += [
                f"echo 'clientPort={ZOOKEEPER_PORT}' > zookeeper.properties",
                "echo 'dataDir=/var/lib/zookeeper/data' >> zookeeper.properties",
                "echo 'dataLogDir=/var/lib/zookeeper/log' >> zookeeper.properties",
                "zookeeper-server-start zookeeper.properties &",
                f"export KAFKA_ZOOKEEPER_CONNECT='localhost:{ZOOKEEPER_PORT}'",
            ]
        lines += [
            f"export KAFKA_ADVERTISED_LISTENERS='{listeners}'",
            ". /etc/confluent/docker/bash-config",
            "/etc/confluent/docker/configure",
            "/etc/confluent/docker/launch",
        ]
        return "\n".join(lines) + "\n"

    def container_started(self):
        logger.info(f"Configuring broker {self._internal_host()}")
        self.copy_to_container(
            self.starter_script().encode(), STARTER_SCRIPT, mode=0o755
        )


# ------------------------------------------------------------------------------
class KafkaContainerCluster:
    """
    Provides an easy way to launch a Kafka cluster with multiple brokers.
    """

    def __init__(
        self,
        confluent_platform_version: str = DEFAULT_CONFLUENT_PLATFORM_VERSION,
        brokers_num: int = 3,
        internal_topics_rf: int = 1,
    ):
        if brokers_num < 1:
            raise ValueError(f"brokers_num '{brokers_num}' must be greater than 0")
        if internal_topics_rf < 1 or internal_topics_rf > brokers_num:
            raise ValueError(
                f"internal_topics_rf '{internal_topics_rf}' must be less than brokers_num and greater than 0"
            )

        self.brokers_num = brokers_num
        self.network = Network.new_network()

        self.zookeeper = (
            GenericContainer(f"confluentinc/cp-zookeeper:{confluent_platform_version}")
            .with_network(self.network)
            .with_network_aliases("zookeeper")
            .with_env("ZOOKEEPER_CLIENT_PORT", ZOOKEEPER_PORT)
        )

        self.brokers: list[KafkaContainer] = [
            KafkaContainer(f"confluentinc/cp-kafka:{confluent_platform_version}")
            .with_network(self.network)
            .with_network_aliases(f"broker-{broker_num}")
            .depends_on(self.zookeeper)
            .with_external_zookeeper(f"zookeeper:{ZOOKEEPER_PORT}")
            .with_env("KAFKA_BROKER_ID", broker_num)
            .with_env("KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR", internal_topics_rf)
            .with_env("KAFKA_OFFSETS_TOPIC_NUM_PARTITIONS", internal_topics_rf)
            .with_env("KAFKA_TRANSACTION_STATE_LOG_REPLICATION_FACTOR", internal_topics_rf)
            .with_env("KAFKA_TRANSACTION_STATE_LOG_MIN_ISR", internal_topics_rf)
            .with_startup_timeout(60)
            for broker_num in range(brokers_num)
        ]

    def get_bootstrap_servers(self) -> str:
        return ",".join(broker.get_bootstrap_servers() for broker in self.brokers)

    def all_containers(self) -> list[GenericContainer]:
        return [*self.brokers, self.zookeeper]

    def registered_broker_ids(self) -> list[str]:
        """Ids of the brokers registered in zookeeper"""
        result = self.zookeeper.exec_in_container(
            "sh",
            "-c",
            f"zookeeper-shell zookeeper:{ZOOKEEPER_PORT} ls /brokers/ids | tail -n 1",
        )
        # last line looks like [0, 1, 2], anything else is an error message
        line = result.stdout.strip()
        if result.exit_code != 0 or not (line.startswith("[") and line.endswith("]")):
            return []
        ids = line[1:-1]
        return [broker_id.strip() for broker_id in ids.split(",") if broker_id.strip()]

    def _all_brokers_registered(self) -> bool:
        if len(self.registered_broker_ids()) != self.brokers_num:
            raise RuntimeError("Zookeeper is not ready yet")
        return True

    def start(self) -> "KafkaContainerCluster":
        try:
            # sequential start to avoid resource contention on CI systems with weaker hardware
            for broker in self.brokers:
                broker.start()

            wait_for(
                self._all_brokers_registered,
                timeout=10,
                name=f"{self.brokers_num} brokers registered in zookeeper",
            )
        except Exception:
            logger.error("Kafka cluster failed to start")
            self.stop()
            raise
        return self

    def stop(self):
        containers = self.all_containers()
        try:
            with ThreadPoolExecutor(max_workers=len(containers)) as executor:
                # list() so that errors raised by stop() are propagated
                list(executor.map(lambda container: container.stop(), containers))
        finally:
            self.network.close()

    def __enter__(self) -> "KafkaContainerCluster":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
