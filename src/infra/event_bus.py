# src/infra/event_bus.py
"""
RabbitMQ event bus.
Publishes domain events of the order and delivery lifecycles to a topic
exchange. Publishing is best-effort: a broker outage never fails the
operation that produced the event.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import aio_pika
from aio_pika import Message, ExchangeType
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange

from src.common.logger import log_debug, log_error, log_info, log_warning
from src.common.constants import TypeMsg


# =============================================================================
# DOMAIN EVENTS
# =============================================================================

@dataclass
class DomainEvent:
    """Base domain event."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    event_type: str = ""
    source_service: str = ""
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )
    payload: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialises the event to JSON."""
        return json.dumps({
            "event_id": self.event_id,
            "event_type": self.event_type,
            "source_service": self.source_service,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }, ensure_ascii=False, default=str)


class EventTypes:
    """Event type constants (used as routing keys)."""
    # Orders
    ORDER_CREATED = "order.created"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_CANCELLED = "order.cancelled"

    # Deliveries
    DELIVERY_ASSIGNED = "delivery.assigned"
    DELIVERY_STATUS_CHANGED = "delivery.status_changed"
    DELIVERY_LOCATION_UPDATED = "delivery.location_updated"


class EventBus:
    """
    Publisher side of the RabbitMQ topic exchange.
    """

    _instance: EventBus | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._exchange_name = "food_delivery.events"

    @property
    def is_connected(self) -> bool:
        """True while the broker connection is open."""
        return self._connection is not None and not self._connection.is_closed

    async def connect(
        self,
        url: str | None = None,
        exchange_name: str | None = None,
        prefetch_count: int = 10,
    ) -> None:
        """
        Connects to RabbitMQ and declares the topic exchange.

        Args:
            url: AMQP URL (taken from settings when None)
            exchange_name: Exchange name
            prefetch_count: Channel prefetch
        """
        if self.is_connected:
            return

        if url is None:
            from src.config import settings
            url = settings.rabbitmq.url
            exchange_name = settings.rabbitmq.RABBITMQ_EXCHANGE
            prefetch_count = settings.rabbitmq.RABBITMQ_PREFETCH_COUNT

        if exchange_name:
            self._exchange_name = exchange_name

        await log_info("Connecting to RabbitMQ...", type_msg=TypeMsg.INFO)

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=prefetch_count)

        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

        await log_info("RabbitMQ connection established", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Closes the broker connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            await log_info("RabbitMQ connection closed", type_msg=TypeMsg.INFO)

    async def publish(self, event: DomainEvent) -> bool:
        """
        Publishes an event with its type as routing key.

        Returns:
            True when the broker accepted the message
        """
        if not self.is_connected or self._exchange is None:
            await log_warning(
                f"Event not published, no RabbitMQ connection: {event.event_type}",
                extra={"event_id": event.event_id},
            )
            return False

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                timestamp=datetime.now(timezone.utc),
            )
            await self._exchange.publish(message, routing_key=event.event_type)

            await log_debug(
                f"Event published: {event.event_type}",
                extra={"event_id": event.event_id},
            )
            return True
        except Exception as e:
            await log_error(f"Event publish failed: {e}", extra={"event_type": event.event_type})
            return False

    async def health_check(self) -> bool:
        """True when the connection is alive."""
        return self.is_connected


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Returns the process-wide EventBus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def init_event_bus() -> None:
    """
    Connects the event bus using settings. A broker that cannot be reached
    is logged and tolerated: events are not on any critical path.
    """
    from src.config import settings

    if not settings.rabbitmq.RABBITMQ_ENABLED:
        await log_info("RabbitMQ disabled, domain events will not be published", type_msg=TypeMsg.INFO)
        return

    event_bus = get_event_bus()
    try:
        await event_bus.connect(
            url=settings.rabbitmq.url,
            exchange_name=settings.rabbitmq.RABBITMQ_EXCHANGE,
            prefetch_count=settings.rabbitmq.RABBITMQ_PREFETCH_COUNT,
        )
        await log_info(
            f"RabbitMQ connected: {settings.rabbitmq.RABBITMQ_HOST}:{settings.rabbitmq.RABBITMQ_PORT}",
            type_msg=TypeMsg.INFO,
        )
    except Exception as e:
        await log_warning(f"RabbitMQ unavailable, continuing without events: {e}")


async def close_event_bus() -> None:
    """Closes the event bus connection."""
    event_bus = get_event_bus()
    await event_bus.disconnect()
