"""Typed request/response messages understood by the gateway.

A request is parameterised by the response type it produces.  The gateway only
relies on the capability every response exposes (an integer ``error`` code),
so any object with that attribute can flow through it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Protocol, TypeVar, runtime_checkable

from kafka_gateway.protocol.codes import ErrorCode


class ApiKey(IntEnum):
    """Broker API a request is addressed to."""

    PRODUCE = 0
    FETCH = 1
    OFFSETS = 2
    METADATA = 3


class Acks(IntEnum):
    """Produce acknowledgement levels."""

    NONE = 0
    LEADER = 1
    ALL = -1


@runtime_checkable
class BaseResponse(Protocol):
    """Anything the broker sends back that carries an error code."""

    @property
    def error(self) -> int: ...


R_co = TypeVar("R_co", bound=BaseResponse, covariant=True)


@runtime_checkable
class KafkaRequest(Protocol[R_co]):
    """A request whose successful answer is a sequence of ``R_co``."""

    @property
    def api_key(self) -> ApiKey: ...

    @property
    def expect_response(self) -> bool:
        """False when the broker sends nothing back (e.g. acks=0 produce)."""
        ...

    @property
    def response_type(self) -> type[R_co]: ...


# -- Produce -------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Message:
    value: bytes | None
    key: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProduceResponse:
    topic: str
    partition_id: int
    error: int = ErrorCode.NO_ERROR
    offset: int = -1


@dataclass(frozen=True, slots=True)
class ProduceRequest:
    """Append *messages* to one topic partition."""

    topic: str
    partition_id: int
    messages: tuple[Message, ...]
    acks: Acks = Acks.LEADER

    @property
    def api_key(self) -> ApiKey:
        return ApiKey.PRODUCE

    @property
    def expect_response(self) -> bool:
        return self.acks != Acks.NONE

    @property
    def response_type(self) -> type[ProduceResponse]:
        return ProduceResponse


# -- Offsets -------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OffsetResponse:
    topic: str
    partition_id: int
    error: int = ErrorCode.NO_ERROR
    offsets: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class OffsetRequest:
    """Ask the partition leader for the low and high watermark offsets."""

    topic: str
    partition_id: int

    @property
    def api_key(self) -> ApiKey:
        return ApiKey.OFFSETS

    @property
    def expect_response(self) -> bool:
        return True

    @property
    def response_type(self) -> type[OffsetResponse]:
        return OffsetResponse
