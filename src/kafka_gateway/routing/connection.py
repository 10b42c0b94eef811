"""Broker connection backed by confluent-kafka clients bootstrapped at one broker."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog
from confluent_kafka import (
    Consumer,
    KafkaError,
    KafkaException,
    Producer,
    TopicPartition,
)

from kafka_gateway.config.models import KafkaOptions
from kafka_gateway.errors import BrokerConnectionError, ResponseTimeoutError
from kafka_gateway.protocol.codes import ErrorCode
from kafka_gateway.protocol.messages import (
    Acks,
    KafkaRequest,
    OffsetRequest,
    OffsetResponse,
    ProduceRequest,
    ProduceResponse,
)

logger = structlog.get_logger()

_TIMEOUT_CODES = frozenset(
    {
        KafkaError._MSG_TIMED_OUT,  # type: ignore[attr-defined]
        KafkaError._TIMED_OUT,  # type: ignore[attr-defined]
    }
)
_CONNECTION_CODES = frozenset(
    {
        KafkaError._TRANSPORT,  # type: ignore[attr-defined]
        KafkaError._ALL_BROKERS_DOWN,  # type: ignore[attr-defined]
    }
)


class ProducerConnection:
    """Connection to a single broker.

    Produce requests go through one librdkafka producer per acks level (acks
    is a client-level setting there); offset requests go through a consumer
    that never joins a group.  Blocking client calls run in the default
    executor.
    """

    def __init__(self, endpoint: str, options: KafkaOptions) -> None:
        self._endpoint = endpoint
        self._options = options
        self._producers: dict[Acks, Producer] = {}
        self._consumer: Consumer | None = None
        self._closed = False

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _base_config(self) -> dict[str, Any]:
        return {
            "bootstrap.servers": self._endpoint,
            "client.id": self._options.client_id,
            "reconnect.backoff.max.ms": int(
                self._options.maximum_reconnection_timeout_seconds * 1000
            ),
        }

    def _ensure_open(self) -> None:
        if self._closed:
            msg = f"Connection to broker {self._endpoint} is closed"
            raise BrokerConnectionError(msg, broker=self._endpoint)

    def _producer_for(self, acks: Acks) -> Producer:
        self._ensure_open()
        producer = self._producers.get(acks)
        if producer is None:
            producer = Producer(
                {
                    **self._base_config(),
                    "acks": int(acks),
                    "message.timeout.ms": int(
                        self._options.response_timeout_seconds * 1000
                    ),
                }
            )
            self._producers[acks] = producer
        return producer

    def _offsets_consumer(self) -> Consumer:
        self._ensure_open()
        if self._consumer is None:
            self._consumer = Consumer(
                {
                    **self._base_config(),
                    "group.id": f"__{self._options.client_id}_offsets",
                    "enable.auto.commit": False,
                }
            )
        return self._consumer

    def _translate(self, err: KafkaError) -> Exception | None:
        """Map a client-side transport error to the gateway taxonomy."""
        code = err.code()
        if code in _TIMEOUT_CODES:
            return ResponseTimeoutError(
                f"Broker {self._endpoint} did not respond: {err.str()}"
            )
        if code in _CONNECTION_CODES:
            return BrokerConnectionError(
                f"Lost connection to broker {self._endpoint}: {err.str()}",
                broker=self._endpoint,
            )
        return None

    async def send(self, request: KafkaRequest[Any]) -> Sequence[Any]:
        loop = asyncio.get_running_loop()
        if isinstance(request, ProduceRequest):
            return await loop.run_in_executor(None, self._produce_sync, request)
        if isinstance(request, OffsetRequest):
            return await loop.run_in_executor(None, self._offsets_sync, request)
        msg = f"{type(request).__name__} is not supported by {type(self).__name__}"
        raise TypeError(msg)

    # -- Produce ---------------------------------------------------------------

    def _produce_sync(self, request: ProduceRequest) -> list[ProduceResponse]:
        producer = self._producer_for(request.acks)
        reports: list[tuple[KafkaError | None, Any]] = []

        def _on_delivery(err: KafkaError | None, msg: Any) -> None:
            reports.append((err, msg))

        for message in request.messages:
            try:
                producer.produce(
                    topic=request.topic,
                    partition=request.partition_id,
                    value=message.value,
                    key=message.key,
                    headers=[(k, v.encode()) for k, v in message.headers.items()],
                    on_delivery=_on_delivery,
                )
            except BufferError as exc:
                raise ResponseTimeoutError(
                    f"Local produce queue for {self._endpoint} is full"
                ) from exc
            except KafkaException as exc:
                translated = self._translate(exc.args[0])
                if translated is None:
                    raise
                raise translated from exc

        remaining = producer.flush(timeout=self._options.response_timeout_seconds)
        if remaining > 0:
            raise ResponseTimeoutError(
                f"{remaining} message(s) unacknowledged by {self._endpoint} after "
                f"{self._options.response_timeout_seconds}s"
            )

        responses: list[ProduceResponse] = []
        for err, msg in reports:
            if err is None:
                responses.append(
                    ProduceResponse(
                        topic=request.topic,
                        partition_id=request.partition_id,
                        offset=msg.offset(),
                    )
                )
                continue
            translated = self._translate(err)
            if translated is not None:
                logger.warning(
                    "connection.produce_failed",
                    broker=self._endpoint,
                    topic=request.topic,
                    partition=request.partition_id,
                    error=err.str(),
                )
                raise translated
            code = err.code()
            responses.append(
                ProduceResponse(
                    topic=request.topic,
                    partition_id=request.partition_id,
                    error=code if code >= 0 else ErrorCode.UNKNOWN,
                )
            )

        if not request.expect_response:
            return []
        return responses

    # -- Offsets ---------------------------------------------------------------

    def _offsets_sync(self, request: OffsetRequest) -> list[OffsetResponse]:
        consumer = self._offsets_consumer()
        tp = TopicPartition(request.topic, request.partition_id)
        try:
            watermarks = consumer.get_watermark_offsets(
                tp, timeout=self._options.response_timeout_seconds
            )
        except KafkaException as exc:
            err = exc.args[0]
            translated = self._translate(err)
            if translated is not None:
                raise translated from exc
            if err.code() < 0:
                raise
            return [
                OffsetResponse(
                    topic=request.topic,
                    partition_id=request.partition_id,
                    error=err.code(),
                )
            ]
        if watermarks is None:
            raise ResponseTimeoutError(
                f"Broker {self._endpoint} returned no watermarks for "
                f"{request.topic}[{request.partition_id}]"
            )
        low, high = watermarks
        return [
            OffsetResponse(
                topic=request.topic,
                partition_id=request.partition_id,
                offsets=(low, high),
            )
        ]

    def close(self) -> None:
        self._closed = True
        for producer in self._producers.values():
            producer.flush(timeout=0)
        self._producers.clear()
        if self._consumer is not None:
            self._consumer.close()
            self._consumer = None
        logger.debug("connection.closed", broker=self._endpoint)
