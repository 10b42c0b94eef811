"""Build ``KafkaOptions`` from an optional YAML file and the environment."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from kafka_gateway.config.models import KafkaOptions

BROKERS_ENV = "KAFKA_BROKERS"
DEFAULT_BROKERS = "localhost:9092"

# ${NAME} or ${NAME:-fallback}
_PLACEHOLDER = re.compile(
    r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}"
)


def _lookup(match: re.Match[str]) -> str:
    name = match.group("name")
    if name in os.environ:
        return os.environ[name]
    fallback = match.group("fallback")
    if fallback is None:
        msg = f"Environment variable '{name}' is referenced but not set"
        raise ValueError(msg)
    return fallback


def expand_env(value: Any) -> Any:
    """Substitute ``${NAME}`` / ``${NAME:-fallback}`` in every string leaf."""
    if isinstance(value, str):
        return _PLACEHOLDER.sub(_lookup, value)
    if isinstance(value, Mapping):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a gateway YAML file and expand its placeholders.

    An empty file yields an empty mapping.
    """
    p = Path(path)
    if not p.is_file():
        msg = f"Gateway config not found: {p}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(p.read_text())
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}" if mark is not None else ""
        msg = f"{p} is not valid YAML{where}: {exc}"
        raise ValueError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{p} must hold a mapping of gateway options, got {type(data).__name__}"
        raise TypeError(msg)
    return expand_env(data)


def brokers_from_env() -> list[str]:
    """Seed brokers from the comma-separated ``KAFKA_BROKERS`` variable."""
    raw = os.environ.get(BROKERS_ENV, DEFAULT_BROKERS)
    return [url.strip() for url in raw.split(",") if url.strip()]


def load_gateway_options(path: str | Path | None = None) -> KafkaOptions:
    """Validate *path* (if given) over the ``KafkaOptions`` field defaults.

    ``broker_urls`` come from the file when it lists them, otherwise from
    ``KAFKA_BROKERS``, otherwise ``localhost:9092``.
    """
    data = read_config_file(path) if path is not None else {}
    data.setdefault("broker_urls", brokers_from_env())
    try:
        return KafkaOptions.model_validate(data)
    except ValidationError as exc:
        source = path if path is not None else f"${BROKERS_ENV}"
        msg = f"Invalid gateway config ({source}):\n{exc}"
        raise ValueError(msg) from exc
