"""Router and Connection protocols the gateway dispatches through.

Both are structural: any object with the right methods plugs in.  A router is
a process-wide shared cache and must tolerate concurrent refresh and lookup
calls; the gateway does no locking of its own.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from kafka_gateway.protocol.messages import BaseResponse, KafkaRequest

R = TypeVar("R", bound=BaseResponse)


@runtime_checkable
class Connection(Protocol):
    """A connection to one broker."""

    @property
    def endpoint(self) -> str:
        """``host:port`` of the broker this connection talks to."""
        ...

    async def send(self, request: KafkaRequest[R]) -> Sequence[R]:
        """Send *request* and return the broker's responses (possibly none).

        Raises ResponseTimeoutError or BrokerConnectionError on transport
        failure.
        """
        ...

    def close(self) -> None:
        """Release the underlying client."""
        ...


@dataclass(frozen=True, slots=True)
class Route:
    """(topic, partition) resolved to the leader's connection."""

    topic: str
    partition_id: int
    connection: Connection


@runtime_checkable
class Router(Protocol):
    """Cached topic metadata plus route selection."""

    async def refresh_missing_topic_metadata(self, topic: str) -> None:
        """Fetch metadata for *topic* only if it is not cached yet."""
        ...

    async def refresh_topic_metadata(self, topic: str) -> None:
        """Fetch metadata for *topic* unconditionally."""
        ...

    def select_broker_route_from_local_cache(
        self, topic: str, partition: int
    ) -> Route:
        """Resolve a route from the local cache without any network I/O.

        Raises InvalidTopicMetadataError or InvalidPartitionError.
        """
        ...

    def close(self) -> None:
        """Release connections and clients held by the router."""
        ...
