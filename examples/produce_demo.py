#!/usr/bin/env python3
"""Runnable demo: produce a few messages through the gateway and read offsets.

Prerequisites:
    a broker on localhost:9092 with topic 'demo' (1 partition)
    python examples/produce_demo.py
"""

from __future__ import annotations

import asyncio

from rich.console import Console

from kafka_gateway.gateway import ProtocolGateway
from kafka_gateway.protocol.messages import (
    Acks,
    Message,
    OffsetRequest,
    ProduceRequest,
)

console = Console()

TOPIC = "demo"
PARTITION = 0


async def main() -> None:
    async with ProtocolGateway.from_broker_urls("localhost:9092") as gateway:
        # 1. Acknowledged produce: the leader returns the assigned offset
        for i in range(3):
            request = ProduceRequest(
                topic=TOPIC,
                partition_id=PARTITION,
                messages=(Message(value=f"hello {i}".encode(), key=b"demo"),),
            )
            response = await gateway.send_protocol_request(request, TOPIC, PARTITION)
            console.print(f"[green]acked[/green] offset={response.offset}")

        # 2. Fire-and-forget: no response comes back
        fire_and_forget = ProduceRequest(
            topic=TOPIC,
            partition_id=PARTITION,
            messages=(Message(value=b"no ack"),),
            acks=Acks.NONE,
        )
        result = await gateway.send_protocol_request(fire_and_forget, TOPIC, PARTITION)
        console.print(f"[yellow]acks=0 result:[/yellow] {result}")

        # 3. Watermarks
        offsets = await gateway.send_protocol_request(
            OffsetRequest(TOPIC, PARTITION), TOPIC, PARTITION
        )
        console.print(f"[cyan]watermarks:[/cyan] {offsets.offsets}")


if __name__ == "__main__":
    asyncio.run(main())
