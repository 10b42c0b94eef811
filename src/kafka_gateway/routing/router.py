"""Metadata-caching broker router backed by the confluent-kafka AdminClient."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from confluent_kafka import KafkaException
from confluent_kafka.admin import AdminClient  # type: ignore[attr-defined]
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_exponential_jitter,
)

from kafka_gateway.config.models import KafkaOptions
from kafka_gateway.errors import (
    InvalidPartitionError,
    InvalidTopicMetadataError,
    ServerUnreachableError,
)
from kafka_gateway.routing.base import Connection, Route
from kafka_gateway.routing.connection import ProducerConnection

logger = structlog.get_logger()

ConnectionFactory = Callable[[str, KafkaOptions], Connection]

NO_LEADER = -1


@dataclass(slots=True)
class TopicMetadata:
    """Leader broker id per partition of one topic."""

    topic: str
    partition_leaders: dict[int, int] = field(default_factory=dict)


class BrokerRouter:
    """Caches topic metadata and hands out routes to partition leaders.

    Metadata is fetched on demand, one topic at a time.  Route selection only
    reads the cache.  All cache mutation happens on the event loop thread,
    so concurrent refresh and lookup calls from coroutines never see a
    half-written entry.
    """

    def __init__(
        self,
        options: KafkaOptions,
        *,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._options = options
        self._connection_factory: ConnectionFactory = (
            connection_factory or ProducerConnection
        )
        self._admin = AdminClient(
            {
                "bootstrap.servers": options.bootstrap_servers,
                "client.id": options.client_id,
                "reconnect.backoff.max.ms": int(
                    options.maximum_reconnection_timeout_seconds * 1000
                ),
            }
        )
        self._topics: dict[str, TopicMetadata] = {}
        self._brokers: dict[int, str] = {}
        self._connections: dict[str, Connection] = {}
        # Connections whose broker left the metadata; callers may still hold
        # routes to them, so they are only closed by close().
        self._retired: dict[str, Connection] = {}

    @property
    def cached_topics(self) -> list[str]:
        return sorted(self._topics)

    def topic_metadata(self, topic: str) -> TopicMetadata | None:
        return self._topics.get(topic)

    # -- Metadata --------------------------------------------------------------

    async def refresh_missing_topic_metadata(self, topic: str) -> None:
        """Fetch metadata for *topic* unless it is already cached."""
        if topic in self._topics:
            return
        await self.refresh_topic_metadata(topic)

    async def refresh_topic_metadata(self, topic: str) -> None:
        """Fetch metadata for *topic* and replace the cached entry."""
        loop = asyncio.get_running_loop()
        cluster = await loop.run_in_executor(None, self._fetch_metadata, topic)
        self._apply_metadata(topic, cluster)

    def _fetch_metadata(self, topic: str) -> Any:
        retry_cfg = self._options.metadata_retry
        wait = (
            wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                exp_base=retry_cfg.multiplier,
            )
            if retry_cfg.jitter
            else wait_exponential(
                multiplier=retry_cfg.initial_wait_seconds,
                exp_base=retry_cfg.multiplier,
                max=retry_cfg.max_wait_seconds,
            )
        )

        @retry(
            retry=retry_if_exception_type(KafkaException),
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait,
            reraise=True,
        )
        def _list_topics() -> Any:
            return self._admin.list_topics(
                topic=topic, timeout=self._options.metadata_timeout_seconds
            )

        try:
            return _list_topics()
        except KafkaException as exc:
            logger.error(
                "router.metadata_refresh_failed",
                topic=topic,
                brokers=self._options.bootstrap_servers,
                error=str(exc),
            )
            msg = (
                f"Unable to fetch metadata for '{topic}' from any of "
                f"{self._options.bootstrap_servers}"
            )
            raise ServerUnreachableError(msg) from exc

    def _apply_metadata(self, topic: str, cluster: Any) -> None:
        self._brokers = {
            broker_id: f"{broker.host}:{broker.port}"
            for broker_id, broker in cluster.brokers.items()
        }
        self._retire_stale_connections()

        topic_meta = cluster.topics.get(topic)
        if topic_meta is None or topic_meta.error is not None:
            self._topics.pop(topic, None)
            reason = (
                "topic absent from broker metadata"
                if topic_meta is None
                else str(topic_meta.error)
            )
            logger.warning("router.topic_metadata_error", topic=topic, error=reason)
            raise InvalidTopicMetadataError(topic, reason)

        self._topics[topic] = TopicMetadata(
            topic=topic,
            partition_leaders={
                pid: partition.leader
                for pid, partition in topic_meta.partitions.items()
            },
        )
        logger.info(
            "router.metadata_refreshed",
            topic=topic,
            partitions=len(topic_meta.partitions),
            brokers=len(self._brokers),
        )

    def _retire_stale_connections(self) -> None:
        live = set(self._brokers.values())
        for endpoint in [e for e in self._connections if e not in live]:
            self._retired[endpoint] = self._connections.pop(endpoint)
            logger.info("router.connection_retired", broker=endpoint)

    # -- Routing ---------------------------------------------------------------

    def select_broker_route_from_local_cache(
        self, topic: str, partition: int
    ) -> Route:
        """Resolve the leader connection for (topic, partition) from the cache."""
        meta = self._topics.get(topic)
        if meta is None:
            raise InvalidTopicMetadataError(topic)
        if not meta.partition_leaders:
            raise InvalidTopicMetadataError(topic, "topic has no partitions")

        leader = meta.partition_leaders.get(partition, NO_LEADER)
        endpoint = self._brokers.get(leader)
        if leader == NO_LEADER or endpoint is None:
            raise InvalidPartitionError(topic, partition)

        connection = self._connections.get(endpoint)
        if connection is None:
            # A broker that rejoins gets its retired connection back.
            connection = self._retired.pop(endpoint, None)
            if connection is None:
                connection = self._connection_factory(endpoint, self._options)
            self._connections[endpoint] = connection
        return Route(topic=topic, partition_id=partition, connection=connection)

    def close(self) -> None:
        for connection in [*self._connections.values(), *self._retired.values()]:
            connection.close()
        self._connections.clear()
        self._retired.clear()
        self._topics.clear()
        self._brokers.clear()
        logger.info("router.closed")
