"""Protocol gateway: sends a request to a partition leader with metadata-aware retry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from kafka_gateway.config.models import KafkaOptions
from kafka_gateway.errors import (
    BrokerConnectionError,
    FormatError,
    KafkaApplicationError,
    ResponseTimeoutError,
    TransportError,
)
from kafka_gateway.protocol.codes import (
    ErrorCode,
    can_recover_by_refresh_metadata,
    error_name,
)
from kafka_gateway.protocol.messages import BaseResponse, KafkaRequest
from kafka_gateway.routing.base import Router
from kafka_gateway.routing.router import BrokerRouter

logger = structlog.get_logger()

R = TypeVar("R", bound=BaseResponse)

MAX_RETRY = 3
DEFAULT_TIMEOUT_SECONDS = 60.0


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


@dataclass(slots=True)
class AttemptResult:
    """What one send attempt produced."""

    outcome: AttemptOutcome
    response: Any = None
    error_detail: str = ""
    error_code: int = ErrorCode.NO_ERROR
    exception: TransportError | None = None


def validate_topic(topic: str) -> None:
    """Raise FormatError if *topic* is not a usable topic name."""
    if " " in topic:
        msg = f"Topic name '{topic}' is invalid: it contains a space"
        raise FormatError(msg)


class ProtocolGateway:
    """Delivers typed requests to the current leader of a topic partition.

    Each call makes at most ``MAX_RETRY`` attempts.  Timeouts, broker
    connection failures and leadership-related error codes trigger a forced
    metadata refresh before the next attempt.  Any other broker error code
    fails immediately, even with attempts left.  Exceptions other than
    ResponseTimeoutError and BrokerConnectionError are never caught.
    """

    def __init__(self, router: Router, *, owns_router: bool = False) -> None:
        self._router = router
        self._owns_router = owns_router

    @classmethod
    def from_broker_urls(cls, *broker_urls: str) -> ProtocolGateway:
        """Build a gateway (and its own router) from seed broker addresses."""
        options = KafkaOptions(
            broker_urls=list(broker_urls),
            maximum_reconnection_timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
            response_timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
        )
        return cls.from_options(options)

    @classmethod
    def from_options(cls, options: KafkaOptions) -> ProtocolGateway:
        return cls(BrokerRouter(options), owns_router=True)

    @property
    def router(self) -> Router:
        return self._router

    @property
    def owns_router(self) -> bool:
        return self._owns_router

    async def send_protocol_request(
        self, request: KafkaRequest[R], topic: str, partition: int
    ) -> R | None:
        """Send *request* to the leader of (*topic*, *partition*).

        Returns the first response, or None when the broker sends none back
        (acks=0 produce).

        Raises:
            FormatError: the topic name is invalid.
            InvalidTopicMetadataError: no usable metadata for the topic.
            InvalidPartitionError: the partition does not exist or has no leader.
            ResponseTimeoutError: the broker kept timing out (original exception).
            BrokerConnectionError: the broker stayed unreachable (original exception).
            KafkaApplicationError: the broker answered with an error code.
        """
        validate_topic(topic)

        attempt = 0
        while True:
            result = await self._attempt(request, topic, partition)
            if result.outcome is AttemptOutcome.SUCCESS:
                return result.response  # type: ignore[no-any-return]

            attempt += 1
            has_more_retry = attempt < MAX_RETRY
            logger.warning(
                "gateway.request_failed",
                topic=topic,
                partition=partition,
                attempt=attempt,
                error=result.error_detail,
            )
            if result.outcome is AttemptOutcome.RECOVERABLE and has_more_retry:
                await self._router.refresh_topic_metadata(topic)
                continue
            break

        logger.error(
            "gateway.request_failed_final",
            topic=topic,
            partition=partition,
            attempts=attempt,
            error=result.error_detail,
        )
        if result.exception is not None:
            raise result.exception
        msg = (
            f"{type(request).__name__} received an error from Kafka: "
            f"{result.error_detail}"
        )
        raise KafkaApplicationError(msg, error_code=result.error_code)

    async def _attempt(
        self, request: KafkaRequest[R], topic: str, partition: int
    ) -> AttemptResult:
        try:
            await self._router.refresh_missing_topic_metadata(topic)
            # Re-resolved every attempt: a refresh may have moved the leader.
            route = self._router.select_broker_route_from_local_cache(topic, partition)
            responses = await route.connection.send(request)
        except (ResponseTimeoutError, BrokerConnectionError) as exc:
            return AttemptResult(
                outcome=AttemptOutcome.RECOVERABLE,
                error_detail=type(exc).__name__,
                exception=exc,
            )

        if not responses:
            return AttemptResult(outcome=AttemptOutcome.SUCCESS, response=None)

        response = responses[0]
        if response.error == ErrorCode.NO_ERROR:
            return AttemptResult(outcome=AttemptOutcome.SUCCESS, response=response)

        outcome = (
            AttemptOutcome.RECOVERABLE
            if can_recover_by_refresh_metadata(response.error)
            else AttemptOutcome.FATAL
        )
        return AttemptResult(
            outcome=outcome,
            error_detail=error_name(response.error),
            error_code=response.error,
        )

    def close(self) -> None:
        """Close the router if this gateway owns it."""
        if self._owns_router:
            self._router.close()

    def __enter__(self) -> ProtocolGateway:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    async def __aenter__(self) -> ProtocolGateway:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()
