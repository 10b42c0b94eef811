"""Broker error codes and their recovery classification."""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Error codes a broker returns inside a response."""

    UNKNOWN = -1
    NO_ERROR = 0
    OFFSET_OUT_OF_RANGE = 1
    INVALID_MESSAGE = 2
    UNKNOWN_TOPIC_OR_PARTITION = 3
    INVALID_MESSAGE_SIZE = 4
    LEADER_NOT_AVAILABLE = 5
    NOT_LEADER_FOR_PARTITION = 6
    REQUEST_TIMED_OUT = 7
    BROKER_NOT_AVAILABLE = 8
    REPLICA_NOT_AVAILABLE = 9
    MESSAGE_SIZE_TOO_LARGE = 10
    STALE_CONTROLLER_EPOCH = 11
    OFFSET_METADATA_TOO_LARGE = 12
    NETWORK_EXCEPTION = 13
    OFFSETS_LOAD_IN_PROGRESS = 14
    CONSUMER_COORDINATOR_NOT_AVAILABLE = 15
    NOT_COORDINATOR_FOR_CONSUMER = 16
    INVALID_TOPIC = 17
    RECORD_LIST_TOO_LARGE = 18
    NOT_ENOUGH_REPLICAS = 19
    NOT_ENOUGH_REPLICAS_AFTER_APPEND = 20
    INVALID_REQUIRED_ACKS = 21
    ILLEGAL_GENERATION = 22
    TOPIC_AUTHORIZATION_FAILED = 29
    GROUP_AUTHORIZATION_FAILED = 30
    CLUSTER_AUTHORIZATION_FAILED = 31


# Errors a fresh metadata lookup can fix: the partition moved or its
# leader/coordinator is being re-elected.
RECOVERABLE_BY_METADATA_REFRESH: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.BROKER_NOT_AVAILABLE,
        ErrorCode.CONSUMER_COORDINATOR_NOT_AVAILABLE,
        ErrorCode.LEADER_NOT_AVAILABLE,
        ErrorCode.NOT_LEADER_FOR_PARTITION,
    }
)


def to_error_code(value: int) -> ErrorCode | int:
    """Return the ErrorCode for *value*, or the raw int if the code is unknown."""
    try:
        return ErrorCode(value)
    except ValueError:
        return value


def error_name(value: int) -> str:
    """Human-readable name for a broker error code."""
    code = to_error_code(value)
    if isinstance(code, ErrorCode):
        return code.name
    return f"UNRECOGNIZED_ERROR_{value}"


def can_recover_by_refresh_metadata(value: int) -> bool:
    """True if refreshing topic metadata may resolve *value*."""
    return to_error_code(value) in RECOVERABLE_BY_METADATA_REFRESH
