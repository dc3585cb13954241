# src/services/delivery_service/dependencies.py
"""
Dependency injection for the delivery service.
"""

from __future__ import annotations

from src.common.constants import DELIVERY_SERVICE_NAME
from src.infra.database import get_db
from src.infra.event_bus import get_event_bus
from src.infra.http_client import NotificationClient, OrderServiceClient, RestaurantClient, UsersClient
from src.services.delivery_service.repository import DeliveryRepository
from src.services.delivery_service.service import DeliveryService
from src.shared.auth import configure_auth


_users_client: UsersClient | None = None
_restaurant_client: RestaurantClient | None = None
_order_client: OrderServiceClient | None = None
_notification_client: NotificationClient | None = None


async def init_dependencies() -> None:
    """Creates the collaborator clients at application start."""
    global _users_client, _restaurant_client, _order_client, _notification_client
    _users_client = UsersClient(service_name=DELIVERY_SERVICE_NAME)
    _restaurant_client = RestaurantClient(service_name=DELIVERY_SERVICE_NAME)
    _order_client = OrderServiceClient(service_name=DELIVERY_SERVICE_NAME)
    _notification_client = NotificationClient(service_name=DELIVERY_SERVICE_NAME)
    configure_auth(_users_client)


def get_delivery_repository() -> DeliveryRepository:
    return DeliveryRepository(get_db())


def get_delivery_service() -> DeliveryService:
    if _users_client is None or _restaurant_client is None or _order_client is None or _notification_client is None:
        raise RuntimeError("Delivery service dependencies are not initialised. Call init_dependencies()")
    return DeliveryService(
        repository=get_delivery_repository(),
        event_bus=get_event_bus(),
        users=_users_client,
        restaurants=_restaurant_client,
        orders=_order_client,
        notifications=_notification_client,
    )


async def cleanup_dependencies() -> None:
    """Closes the HTTP clients at shutdown."""
    global _users_client, _restaurant_client, _order_client, _notification_client
    for client in (_users_client, _restaurant_client, _order_client, _notification_client):
        if client is not None:
            await client.close()
    _users_client = _restaurant_client = _order_client = _notification_client = None
    configure_auth(None)
