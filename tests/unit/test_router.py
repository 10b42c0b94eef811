"""Unit tests for BrokerRouter metadata caching and route selection."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from confluent_kafka import KafkaException

from kafka_gateway.config.models import KafkaOptions, RetryConfig
from kafka_gateway.errors import (
    InvalidPartitionError,
    InvalidTopicMetadataError,
    ServerUnreachableError,
)
from kafka_gateway.gateway import ProtocolGateway
from kafka_gateway.protocol.messages import OffsetRequest, OffsetResponse
from kafka_gateway.routing.router import BrokerRouter

BROKERS = {1: ("b1", 9092), 2: ("b2", 9093)}


class _HeldConnection:
    """Connection whose send waits until released, then fails if closed."""

    def __init__(self, endpoint: str, options: KafkaOptions) -> None:
        self.endpoint = endpoint
        self.closed = False
        self.release = asyncio.Event()

    async def send(self, request: OffsetRequest) -> list[OffsetResponse]:
        await self.release.wait()
        if self.closed:
            raise RuntimeError("Consumer closed")
        return [OffsetResponse(request.topic, request.partition_id, offsets=(0, 5))]

    def close(self) -> None:
        self.closed = True


def _cluster(
    topic: str = "orders",
    leaders: dict[int, int] | None = None,
    *,
    error: Any = None,
    brokers: dict[int, tuple[str, int]] | None = None,
    include_topic: bool = True,
) -> SimpleNamespace:
    leaders = {0: 1, 1: 2} if leaders is None else leaders
    brokers = BROKERS if brokers is None else brokers
    topics = {}
    if include_topic:
        topics[topic] = SimpleNamespace(
            topic=topic,
            error=error,
            partitions={
                pid: SimpleNamespace(id=pid, leader=leader)
                for pid, leader in leaders.items()
            },
        )
    return SimpleNamespace(
        brokers={
            bid: SimpleNamespace(id=bid, host=host, port=port)
            for bid, (host, port) in brokers.items()
        },
        topics=topics,
    )


@pytest.fixture
def options() -> KafkaOptions:
    return KafkaOptions(
        broker_urls=["b1:9092"],
        metadata_retry=RetryConfig(
            max_attempts=2,
            initial_wait_seconds=0.01,
            max_wait_seconds=0.01,
            jitter=False,
        ),
    )


@pytest.fixture
def admin():
    with patch("kafka_gateway.routing.router.AdminClient") as mock_admin_cls:
        client = MagicMock()
        mock_admin_cls.return_value = client
        client.list_topics.return_value = _cluster()
        yield client


@pytest.fixture
def connection_factory() -> MagicMock:
    return MagicMock(side_effect=lambda endpoint, opts: MagicMock(endpoint=endpoint))


@pytest.fixture
def router(options, admin, connection_factory) -> BrokerRouter:
    return BrokerRouter(options, connection_factory=connection_factory)


class TestAdminClientConfig:
    def test_admin_built_from_options(self, options):
        with patch("kafka_gateway.routing.router.AdminClient") as mock_admin_cls:
            BrokerRouter(options)

        conf = mock_admin_cls.call_args.args[0]
        assert conf["bootstrap.servers"] == "b1:9092"
        assert conf["client.id"] == "kafka-gateway"
        assert conf["reconnect.backoff.max.ms"] == 60000


@pytest.mark.asyncio
class TestMetadataRefresh:
    async def test_refresh_missing_fetches_once(self, router, admin):
        await router.refresh_missing_topic_metadata("orders")
        await router.refresh_missing_topic_metadata("orders")

        admin.list_topics.assert_called_once_with(topic="orders", timeout=10.0)
        assert router.cached_topics == ["orders"]

    async def test_forced_refresh_always_fetches(self, router, admin):
        await router.refresh_missing_topic_metadata("orders")
        await router.refresh_topic_metadata("orders")
        await router.refresh_topic_metadata("orders")

        assert admin.list_topics.call_count == 3

    async def test_refresh_replaces_leaders(self, router, admin):
        await router.refresh_topic_metadata("orders")
        admin.list_topics.return_value = _cluster(leaders={0: 2, 1: 2})

        await router.refresh_topic_metadata("orders")

        meta = router.topic_metadata("orders")
        assert meta is not None
        assert meta.partition_leaders == {0: 2, 1: 2}

    async def test_topic_error_raises_and_evicts(self, router, admin):
        await router.refresh_topic_metadata("orders")
        admin.list_topics.return_value = _cluster(error="UNKNOWN_TOPIC_OR_PART")

        with pytest.raises(InvalidTopicMetadataError, match="UNKNOWN_TOPIC_OR_PART"):
            await router.refresh_topic_metadata("orders")

        assert router.topic_metadata("orders") is None

    async def test_absent_topic_raises(self, router, admin):
        admin.list_topics.return_value = _cluster(include_topic=False)

        with pytest.raises(InvalidTopicMetadataError):
            await router.refresh_missing_topic_metadata("orders")

    async def test_transient_failure_is_retried(self, router, admin):
        admin.list_topics.side_effect = [KafkaException("timed out"), _cluster()]

        await router.refresh_topic_metadata("orders")

        assert admin.list_topics.call_count == 2
        assert router.cached_topics == ["orders"]

    async def test_persistent_failure_raises_server_unreachable(self, router, admin):
        admin.list_topics.side_effect = KafkaException("all brokers down")

        with pytest.raises(ServerUnreachableError, match="b1:9092") as exc:
            await router.refresh_topic_metadata("orders")

        assert isinstance(exc.value.__cause__, KafkaException)
        assert admin.list_topics.call_count == 2


@pytest.mark.asyncio
class TestRouteSelection:
    async def test_selects_leader_connection(self, router, connection_factory):
        await router.refresh_missing_topic_metadata("orders")

        route = router.select_broker_route_from_local_cache("orders", 1)

        assert route.topic == "orders"
        assert route.partition_id == 1
        assert route.connection.endpoint == "b2:9093"
        connection_factory.assert_called_once()

    async def test_connections_are_reused_per_broker(
        self, router, connection_factory
    ):
        await router.refresh_missing_topic_metadata("orders")

        first = router.select_broker_route_from_local_cache("orders", 0)
        second = router.select_broker_route_from_local_cache("orders", 0)

        assert first.connection is second.connection
        assert connection_factory.call_count == 1

    async def test_uncached_topic_raises(self, router):
        with pytest.raises(InvalidTopicMetadataError):
            router.select_broker_route_from_local_cache("orders", 0)

    async def test_topic_without_partitions_raises(self, router, admin):
        admin.list_topics.return_value = _cluster(leaders={})
        await router.refresh_topic_metadata("orders")

        with pytest.raises(InvalidTopicMetadataError, match="no partitions"):
            router.select_broker_route_from_local_cache("orders", 0)

    async def test_unknown_partition_raises(self, router):
        await router.refresh_topic_metadata("orders")

        with pytest.raises(InvalidPartitionError) as exc:
            router.select_broker_route_from_local_cache("orders", 7)

        assert exc.value.partition == 7

    async def test_leaderless_partition_raises(self, router, admin):
        admin.list_topics.return_value = _cluster(leaders={0: -1})
        await router.refresh_topic_metadata("orders")

        with pytest.raises(InvalidPartitionError):
            router.select_broker_route_from_local_cache("orders", 0)

    async def test_departed_broker_connection_is_retired_not_closed(
        self, router, admin
    ):
        await router.refresh_topic_metadata("orders")
        route = router.select_broker_route_from_local_cache("orders", 1)
        admin.list_topics.return_value = _cluster(
            leaders={0: 1, 1: 1}, brokers={1: ("b1", 9092)}
        )

        await router.refresh_topic_metadata("orders")

        route.connection.close.assert_not_called()
        assert (
            router.select_broker_route_from_local_cache("orders", 1).connection
            is not route.connection
        )


@pytest.mark.asyncio
class TestRouterClose:
    async def test_close_closes_connections_and_clears_cache(self, router):
        await router.refresh_topic_metadata("orders")
        route = router.select_broker_route_from_local_cache("orders", 0)

        router.close()

        route.connection.close.assert_called_once()
        assert router.cached_topics == []

    async def test_retired_connections_are_closed(self, router, admin):
        await router.refresh_topic_metadata("orders")
        retired = router.select_broker_route_from_local_cache("orders", 1).connection
        admin.list_topics.return_value = _cluster(brokers={1: ("b1", 9092)})
        await router.refresh_topic_metadata("orders")

        router.close()

        retired.close.assert_called_once()


@pytest.mark.asyncio
class TestConcurrentRefresh:
    async def test_refresh_does_not_close_connection_mid_send(self, options, admin):
        router = BrokerRouter(options, connection_factory=_HeldConnection)
        gateway = ProtocolGateway(router)
        await router.refresh_topic_metadata("orders")
        held = router.select_broker_route_from_local_cache("orders", 1).connection

        in_flight = asyncio.create_task(
            gateway.send_protocol_request(OffsetRequest("orders", 1), "orders", 1)
        )
        await asyncio.sleep(0)
        admin.list_topics.return_value = _cluster(
            leaders={0: 1, 1: 1}, brokers={1: ("b1", 9092)}
        )
        await router.refresh_topic_metadata("orders")
        held.release.set()

        response = await in_flight
        assert response.offsets == (0, 5)
        assert held.closed is False

        router.close()
        assert held.closed is True

    async def test_rejoining_broker_reuses_retired_connection(
        self, router, admin, connection_factory
    ):
        await router.refresh_topic_metadata("orders")
        first = router.select_broker_route_from_local_cache("orders", 1).connection
        admin.list_topics.return_value = _cluster(
            leaders={0: 1, 1: 1}, brokers={1: ("b1", 9092)}
        )
        await router.refresh_topic_metadata("orders")
        admin.list_topics.return_value = _cluster()
        await router.refresh_topic_metadata("orders")

        again = router.select_broker_route_from_local_cache("orders", 1).connection

        assert again is first
        assert connection_factory.call_count == 1
