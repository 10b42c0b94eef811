"""Typer CLI for kafka-gateway."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from kafka_gateway.config.loader import load_gateway_options
from kafka_gateway.config.models import KafkaOptions
from kafka_gateway.errors import KafkaGatewayError
from kafka_gateway.gateway import ProtocolGateway
from kafka_gateway.protocol.messages import (
    Acks,
    Message,
    OffsetRequest,
    ProduceRequest,
)

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="kafka-gateway", help="Kafka protocol gateway CLI")


def _load(config_path: str | None) -> KafkaOptions:
    path = Path(config_path) if config_path else None
    if path is not None and not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_gateway_options(path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def validate(
    config_path: str | None = typer.Option(None, "--config", help="Gateway YAML"),
) -> None:
    """Validate a gateway configuration file."""
    options = _load(config_path)
    console.print(f"[green]Valid[/green] — client_id={options.client_id}")
    console.print(f"  brokers:  {options.bootstrap_servers}")
    console.print(f"  response timeout: {options.response_timeout_seconds}s")
    console.print(
        f"  reconnection timeout: {options.maximum_reconnection_timeout_seconds}s"
    )


@app.command()
def offsets(
    topic: str = typer.Argument(..., help="Topic name"),
    partition: int = typer.Argument(..., help="Partition id"),
    config_path: str | None = typer.Option(None, "--config", help="Gateway YAML"),
) -> None:
    """Show the low/high watermark offsets of a partition."""
    options = _load(config_path)

    async def _offsets() -> None:
        async with ProtocolGateway.from_options(options) as gateway:
            response = await gateway.send_protocol_request(
                OffsetRequest(topic=topic, partition_id=partition), topic, partition
            )
        table = Table(title=f"{topic}[{partition}]")
        table.add_column("Low", style="cyan")
        table.add_column("High", style="cyan")
        if response is not None:
            low, high = response.offsets
            table.add_row(str(low), str(high))
        console.print(table)

    try:
        asyncio.run(_offsets())
    except KafkaGatewayError as exc:
        console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def produce(
    topic: str = typer.Argument(..., help="Topic name"),
    partition: int = typer.Argument(..., help="Partition id"),
    value: str = typer.Argument(..., help="Message value (UTF-8)"),
    key: str | None = typer.Option(None, "--key", help="Message key (UTF-8)"),
    acks: int = typer.Option(1, "--acks", help="Acknowledgement level: 0, 1 or -1"),
    config_path: str | None = typer.Option(None, "--config", help="Gateway YAML"),
) -> None:
    """Produce a single message to a partition leader."""
    options = _load(config_path)
    try:
        acks_level = Acks(acks)
    except ValueError as exc:
        console.print(f"[red]Invalid acks level:[/red] {acks}")
        raise typer.Exit(1) from exc

    request = ProduceRequest(
        topic=topic,
        partition_id=partition,
        messages=(
            Message(value=value.encode(), key=key.encode() if key else None),
        ),
        acks=acks_level,
    )

    async def _produce() -> None:
        async with ProtocolGateway.from_options(options) as gateway:
            response = await gateway.send_protocol_request(request, topic, partition)
        if response is None:
            console.print("[yellow]Sent[/yellow] (no acknowledgement requested)")
        else:
            console.print(
                f"[green]Produced[/green] {topic}[{partition}] offset={response.offset}"
            )

    try:
        asyncio.run(_produce())
    except KafkaGatewayError as exc:
        logger.error("cli.produce_failed", topic=topic, error=str(exc))
        console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        raise typer.Exit(1) from exc
