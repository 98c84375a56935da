"""MQTT subscriber feeding the telemetry pipeline.

One long-lived loop per process. Losing the broker is fatal: the loop raises
TransportError and the process is expected to restart the whole subscription.
"""
from __future__ import annotations

import logging
import os
import uuid
from typing import Callable

from asyncio_mqtt import Client, MqttError

from shopfloor.core.errors import TransportError
from weighing.telemetry.pipeline import MQTT_WEIGHT_TOPIC, TelemetryPipeline

LOGGER = logging.getLogger(__name__)

MQTT_BROKER = os.getenv("MQTT_BROKER", "localhost")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_KEEPALIVE = int(os.getenv("MQTT_KEEPALIVE", "60"))


async def run_subscriber(
    pipeline: TelemetryPipeline,
    *,
    hostname: str = MQTT_BROKER,
    port: int = MQTT_PORT,
    topic: str = MQTT_WEIGHT_TOPIC,
    keepalive: int = MQTT_KEEPALIVE,
    client_factory: Callable[..., Client] = Client,
) -> None:
    """Subscribe to the weight topic and ingest every message until the connection drops."""
    client_id = f"weighing-{uuid.uuid4().hex[:12]}"
    LOGGER.info("Connecting to MQTT broker %s:%s as %s", hostname, port, client_id)
    try:
        async with client_factory(hostname, port=port, client_id=client_id, keepalive=keepalive) as client:
            async with client.unfiltered_messages() as messages:
                await client.subscribe(topic, qos=0)
                LOGGER.info("Subscribed to %s", topic)
                async for message in messages:
                    pipeline.ingest(str(message.topic), message.payload)
    except MqttError as exc:
        LOGGER.error("MQTT connection to %s:%s lost: %s", hostname, port, exc)
        raise TransportError(f"MQTT connection lost: {exc}", broker=f"{hostname}:{port}") from exc
    raise TransportError("MQTT message stream ended", broker=f"{hostname}:{port}")
