# src/services/order_service/dependencies.py
"""
Dependency injection for the order service.
HTTP clients are process singletons created in the lifespan; the service
itself is cheap and built per request.
"""

from __future__ import annotations

from src.common.constants import ORDER_SERVICE_NAME
from src.infra.database import get_db
from src.infra.event_bus import get_event_bus
from src.infra.http_client import DeliveryServiceClient, RestaurantClient, UsersClient
from src.services.order_service.repository import OrderRepository
from src.services.order_service.service import OrderService
from src.shared.auth import configure_auth


_users_client: UsersClient | None = None
_restaurant_client: RestaurantClient | None = None
_delivery_client: DeliveryServiceClient | None = None


async def init_dependencies() -> None:
    """Creates the collaborator clients at application start."""
    global _users_client, _restaurant_client, _delivery_client
    _users_client = UsersClient(service_name=ORDER_SERVICE_NAME)
    _restaurant_client = RestaurantClient(service_name=ORDER_SERVICE_NAME)
    _delivery_client = DeliveryServiceClient(service_name=ORDER_SERVICE_NAME)
    configure_auth(_users_client)


def get_order_repository() -> OrderRepository:
    return OrderRepository(get_db())


def get_order_service() -> OrderService:
    if _restaurant_client is None or _delivery_client is None:
        raise RuntimeError("Order service dependencies are not initialised. Call init_dependencies()")
    return OrderService(
        repository=get_order_repository(),
        event_bus=get_event_bus(),
        restaurants=_restaurant_client,
        deliveries=_delivery_client,
    )


async def cleanup_dependencies() -> None:
    """Closes the HTTP clients at shutdown."""
    global _users_client, _restaurant_client, _delivery_client
    for client in (_users_client, _restaurant_client, _delivery_client):
        if client is not None:
            await client.close()
    _users_client = _restaurant_client = _delivery_client = None
    configure_auth(None)
