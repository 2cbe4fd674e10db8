"""
RabbitMQ event publisher for the marketplace realtime feed.

Uses pika in a thread-pool executor so blocking I/O doesn't stall the
asyncio event loop. A new connection is opened per publish call. Routing keys
are stable: clients subscribe to ``notification.created`` filtered on
``recipient_id`` and to ``listing.sold`` / ``offer.*`` for their own offers.
"""
import asyncio
import json
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from functools import partial

import pika
import structlog

from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.config import settings
from marketplace_core.domain.events.domain_events import (
    DomainEvent,
    ListingSoldEvent,
    NotificationCreatedEvent,
    OfferCancelledEvent,
    OfferCompletedEvent,
    OfferCreatedEvent,
    RatingSubmittedEvent,
)

logger = structlog.get_logger(__name__)

EXCHANGE_NAME = "marketplace.events"

ROUTING_KEYS: dict[type[DomainEvent], str] = {
    OfferCreatedEvent: "offer.created",
    ListingSoldEvent: "listing.sold",
    OfferCompletedEvent: "offer.completed",
    OfferCancelledEvent: "offer.cancelled",
    RatingSubmittedEvent: "rating.submitted",
    NotificationCreatedEvent: "notification.created",
}


def _event_to_routing_key(event: DomainEvent) -> str:
    return ROUTING_KEYS.get(type(event), "event.unknown")


def _json_default(value: object) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _serialise_event(event: DomainEvent) -> str:
    payload = asdict(event)
    payload["event_type"] = _event_to_routing_key(event)
    payload["occurred_at"] = event.occurred_at.isoformat()
    return json.dumps(payload, default=_json_default)


def _blocking_publish(rabbitmq_url: str, routing_key: str, body: str) -> None:
    connection = pika.BlockingConnection(pika.URLParameters(rabbitmq_url))
    try:
        channel = connection.channel()
        channel.exchange_declare(
            exchange=EXCHANGE_NAME, exchange_type="topic", durable=True
        )
        channel.basic_publish(
            exchange=EXCHANGE_NAME,
            routing_key=routing_key,
            body=body.encode(),
            properties=pika.BasicProperties(
                delivery_mode=pika.DeliveryMode.Persistent,
                content_type="application/json",
            ),
        )
    finally:
        connection.close()


class RabbitMQPublisher(EventPublisher):
    """Publishes domain events to a RabbitMQ topic exchange."""

    def __init__(self, rabbitmq_url: str = settings.rabbitmq_url) -> None:
        self._url = rabbitmq_url

    async def publish(self, event: DomainEvent) -> None:
        routing_key = _event_to_routing_key(event)
        body = _serialise_event(event)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                partial(_blocking_publish, self._url, routing_key, body),
            )
            logger.debug("event_published", routing_key=routing_key, event_id=str(event.event_id))
        except Exception as exc:
            # The feed is advisory; clients fall back to polling the inbox.
            logger.error(
                "failed_to_publish_event",
                routing_key=routing_key,
                error=str(exc),
            )
