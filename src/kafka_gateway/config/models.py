"""Pydantic configuration models for the gateway and its broker router."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

_BROKER_URL = re.compile(r"^(?:kafka://)?(?P<host>[^\s:/]+):(?P<port>\d{1,5})/?$")


def normalize_broker_url(url: str) -> str:
    """Return ``host:port`` for ``host:port`` or ``kafka://host:port``."""
    match = _BROKER_URL.match(url.strip())
    if not match:
        msg = f"Broker URL '{url}' must look like 'host:port' or 'kafka://host:port'"
        raise ValueError(msg)
    port = int(match.group("port"))
    if not 0 < port < 65536:
        msg = f"Broker URL '{url}' has an out-of-range port"
        raise ValueError(msg)
    return f"{match.group('host')}:{port}"


class RetryConfig(BaseModel):
    """Retry / backoff configuration for metadata fetches."""

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=0.5, gt=0)
    max_wait_seconds: float = Field(default=10.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class KafkaOptions(BaseModel):
    """Seed brokers, timeouts and client identity."""

    broker_urls: list[str] = Field(min_length=1)
    client_id: str = "kafka-gateway"
    maximum_reconnection_timeout_seconds: float = Field(default=60.0, gt=0)
    response_timeout_seconds: float = Field(default=60.0, gt=0)
    metadata_timeout_seconds: float = Field(default=10.0, gt=0)
    metadata_retry: RetryConfig = RetryConfig()

    @field_validator("broker_urls")
    @classmethod
    def validate_broker_urls(cls, v: list[str]) -> list[str]:
        return [normalize_broker_url(url) for url in v]

    @property
    def bootstrap_servers(self) -> str:
        """Comma-separated seed list in the form librdkafka expects."""
        return ",".join(self.broker_urls)
