"""Exception taxonomy for the gateway, router and connections."""

from __future__ import annotations


class KafkaGatewayError(Exception):
    """Base class for every error raised by kafka_gateway."""


class FormatError(KafkaGatewayError, ValueError):
    """Raised when a topic name is not valid."""


# -- Metadata ------------------------------------------------------------------


class MetadataError(KafkaGatewayError):
    """Raised when cached metadata cannot resolve a route."""


class InvalidTopicMetadataError(MetadataError):
    """Raised when metadata for a topic is missing or unusable."""

    def __init__(self, topic: str, reason: str = "no metadata cached") -> None:
        self.topic = topic
        super().__init__(f"Invalid metadata for topic '{topic}': {reason}")


class InvalidPartitionError(MetadataError):
    """Raised when a partition does not exist (or has no leader) for a topic."""

    def __init__(self, topic: str, partition: int) -> None:
        self.topic = topic
        self.partition = partition
        super().__init__(
            f"Partition {partition} not found or leaderless for topic '{topic}'"
        )


# -- Transport -----------------------------------------------------------------


class TransportError(KafkaGatewayError):
    """Raised when a request cannot be carried to or from a broker."""


class ResponseTimeoutError(TransportError):
    """Raised when a broker does not answer within the response timeout."""


class BrokerConnectionError(TransportError):
    """Raised on a network failure talking to a specific broker."""

    def __init__(self, message: str, broker: str | None = None) -> None:
        self.broker = broker
        super().__init__(message)


class ServerUnreachableError(TransportError):
    """Raised when none of the seed brokers can be contacted."""


# -- Broker-reported -----------------------------------------------------------


class KafkaApplicationError(KafkaGatewayError):
    """Raised when the broker answers with a non-zero error code."""

    def __init__(self, message: str, *, error_code: int) -> None:
        self.error_code = error_code
        super().__init__(message)
