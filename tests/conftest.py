# tests/conftest.py
"""
Shared fixtures.

The repositories are replaced by in-memory fakes that keep the two database
guarantees the services rely on: compare-and-set on status and at most one
non-cancelled delivery per order. The services talk to each other through
in-process clients, so a whole assign -> deliver flow runs inside one test.
"""

from __future__ import annotations

import asyncio
import json
import os
from copy import deepcopy
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

# Environment must be set before src.config is imported
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("INTERNAL_SERVICE_TOKEN", "test_internal_token")

from src.services.delivery_service.service import DeliveryService
from src.services.order_service.service import OrderService
from src.shared.auth import service_principal
from src.shared.errors import ConflictError, DomainError, NotFoundError
from src.shared.models.enums import DeliveryStatus, OrderStatus, PaymentMethod, PropagationOutcome, UserRole
from src.shared.models.order_dto import CreateOrderRequest, DeliveryAddressDTO, OrderItemDTO
from src.shared.models.user_dto import CallerIdentity, DeliveryPersonDTO


RESTAURANT_ID = "rest-1"
OTHER_RESTAURANT_ID = "rest-2"


# =============================================================================
# CONFIGURATION FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Path of the configuration file."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Flat configuration in the config.json layout."""
    return {
        "_comment_system": "System",
        "PROJECT_NAME": "food_delivery_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "COMPONENT_MODE": "order_service",
        "API_PREFIX": "/api/v1",
        "ORDER_SERVICE_HOST": "orders.local",
        "ORDER_SERVICE_PORT": 9001,
        "LOG_LEVEL": "INFO",
        "LOG_FORMAT": "json",
        "DB_HOST": "db.local",
        "DB_NAME": "food_delivery_test",
        "RABBITMQ_ENABLED": False,
        "TAX_RATE": 0.2,
        "AMOUNT_TOLERANCE": 0.05,
        "ESTIMATED_DELIVERY_MINUTES": 30,
        "RECONCILIATION_ENABLED": False,
        "RECONCILIATION_INTERVAL": 5,
        "RECONCILIATION_BATCH_SIZE": 10,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Writes mock_config to a temporary config.json."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, indent=2))
    return config_file


# =============================================================================
# IN-MEMORY REPOSITORIES
# =============================================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _key(record_id: Any) -> Optional[str]:
    try:
        return str(UUID(str(record_id)))
    except ValueError:
        return None


def _attempt_order(row: dict, column: str) -> tuple:
    """Sweep order: never attempted first, then least recently attempted."""
    attempted = row[column]
    return (attempted is not None, attempted or row["updated_at"], row["updated_at"])


class FakeOrderRepository:
    """OrderRepository over a dict, with the same compare-and-set contract."""

    def __init__(self) -> None:
        self.rows: dict[str, dict] = {}

    async def create_order(self, order_data: dict) -> dict:
        now = _now()
        row = {
            **deepcopy(order_data),
            "id": uuid4(),
            "delivery_person_id": None,
            "delivery_sync": None,
            "delivery_sync_attempted_at": None,
            "estimated_delivery_time": None,
            "created_at": now,
            "updated_at": now,
        }
        self.rows[str(row["id"])] = row
        return deepcopy(row)

    async def get_order_by_id(self, order_id: Any) -> Optional[dict]:
        # yield like asyncpg does so concurrent callers interleave
        await asyncio.sleep(0)
        row = self.rows.get(_key(order_id))
        return deepcopy(row) if row else None

    async def _select(self, **criteria: Any) -> list[dict]:
        rows = [
            deepcopy(row) for row in self.rows.values()
            if all(row.get(column) == value for column, value in criteria.items())
        ]
        return sorted(rows, key=lambda row: row["created_at"], reverse=True)

    async def get_orders_by_user(self, user_id: str) -> list[dict]:
        return await self._select(user_id=user_id)

    async def get_orders_by_restaurant(self, restaurant_id: str) -> list[dict]:
        return await self._select(restaurant_id=restaurant_id)

    async def get_orders_by_status(self, status: str) -> list[dict]:
        return await self._select(status=status)

    async def compare_and_set_status(
        self,
        order_id: Any,
        expected_status: str,
        new_status: str,
        delivery_person_id: Optional[str] = None,
        estimated_delivery_time: Optional[datetime] = None,
        delivery_sync: Optional[str] = None,
    ) -> Optional[dict]:
        row = self.rows.get(_key(order_id))
        if row is None or row["status"] != expected_status:
            return None
        row["status"] = new_status
        if delivery_person_id is not None:
            row["delivery_person_id"] = delivery_person_id
        if estimated_delivery_time is not None:
            row["estimated_delivery_time"] = estimated_delivery_time
        if delivery_sync is not None:
            row["delivery_sync"] = delivery_sync
        row["updated_at"] = _now()
        return deepcopy(row)

    async def set_delivery_person(
        self,
        order_id: Any,
        expected_status: str,
        delivery_person_id: str,
        estimated_delivery_time: Optional[datetime] = None,
    ) -> Optional[dict]:
        row = self.rows.get(_key(order_id))
        if row is None or row["status"] != expected_status:
            return None
        row["delivery_person_id"] = delivery_person_id
        if estimated_delivery_time is not None:
            row["estimated_delivery_time"] = estimated_delivery_time
        row["updated_at"] = _now()
        return deepcopy(row)

    async def set_delivery_sync(self, order_id: Any, outcome: str) -> Optional[dict]:
        row = self.rows.get(_key(order_id))
        if row is None:
            return None
        row["delivery_sync"] = outcome
        row["delivery_sync_attempted_at"] = _now()
        return deepcopy(row)

    async def get_pending_cancel_sync(self, limit: int = 100) -> list[dict]:
        rows = [
            deepcopy(row) for row in self.rows.values()
            if row["status"] == OrderStatus.CANCELLED.value
            and row["delivery_sync"] is not None
            and row["delivery_sync"] != PropagationOutcome.PROPAGATED.value
        ]
        return sorted(rows, key=lambda row: _attempt_order(row, "delivery_sync_attempted_at"))[:limit]


class FakeDeliveryRepository:
    """DeliveryRepository over a dict; create_delivery enforces one live delivery per order."""

    def __init__(self) -> None:
        self.rows: dict[str, dict] = {}

    def live_for(self, order_id: str) -> list[dict]:
        return [
            row for row in self.rows.values()
            if row["order_id"] == order_id and row["status"] != DeliveryStatus.CANCELLED.value
        ]

    async def create_delivery(self, delivery_data: dict) -> dict:
        if self.live_for(delivery_data["order_id"]):
            raise ConflictError(
                "Order already has an active delivery",
                details={"order_id": delivery_data["order_id"]},
            )
        now = _now()
        row = {
            "current_lat": None,
            "current_lng": None,
            "order_sync_target": None,
            "order_sync_attempted_at": None,
            "order_sync_abandoned_at": None,
            "estimated_delivery_time": None,
            **deepcopy(delivery_data),
            "id": uuid4(),
            "assigned_at": now,
            "picked_up_at": None,
            "delivered_at": None,
            "actual_delivery_time": None,
            "cancelled_at": None,
            "rating": None,
            "feedback": None,
            "created_at": now,
            "updated_at": now,
        }
        self.rows[str(row["id"])] = row
        return deepcopy(row)

    async def get_delivery_by_id(self, delivery_id: Any) -> Optional[dict]:
        await asyncio.sleep(0)
        row = self.rows.get(_key(delivery_id))
        return deepcopy(row) if row else None

    async def get_live_delivery_by_order(self, order_id: str) -> Optional[dict]:
        await asyncio.sleep(0)
        live = self.live_for(order_id)
        return deepcopy(live[0]) if live else None

    async def get_deliveries_by_person(self, delivery_person_id: str) -> list[dict]:
        rows = [
            deepcopy(row) for row in self.rows.values()
            if row["delivery_person_id"] == delivery_person_id
            and row["status"] != DeliveryStatus.CANCELLED.value
        ]
        return sorted(rows, key=lambda row: row["assigned_at"], reverse=True)

    async def compare_and_set_status(
        self,
        delivery_id: Any,
        expected_status: str,
        new_status: str,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> Optional[dict]:
        row = self.rows.get(_key(delivery_id))
        if row is None or row["status"] != expected_status:
            return None
        now = _now()
        row["status"] = new_status
        if new_status == DeliveryStatus.PICKED_UP.value:
            row["picked_up_at"] = now
        if new_status == DeliveryStatus.DELIVERED.value:
            row["delivered_at"] = now
            row["actual_delivery_time"] = now
        if new_status == DeliveryStatus.CANCELLED.value:
            row["cancelled_at"] = now
        if lat is not None:
            row["current_lat"] = lat
        if lng is not None:
            row["current_lng"] = lng
        row["updated_at"] = now
        return deepcopy(row)

    async def update_location_for_person(self, delivery_person_id: str, lat: float, lng: float, statuses) -> int:
        updated = 0
        for row in self.rows.values():
            if row["delivery_person_id"] == delivery_person_id and row["status"] in statuses:
                row["current_lat"] = lat
                row["current_lng"] = lng
                updated += 1
        return updated

    async def set_order_sync(self, delivery_id: Any, outcome: str, target: Optional[str]) -> Optional[dict]:
        row = self.rows.get(_key(delivery_id))
        if row is None:
            return None
        row["order_sync"] = outcome
        row["order_sync_target"] = target
        row["order_sync_attempted_at"] = _now()
        return deepcopy(row)

    async def abandon_order_sync(self, delivery_id: Any) -> Optional[dict]:
        row = self.rows.get(_key(delivery_id))
        if row is None:
            return None
        row["order_sync_abandoned_at"] = _now()
        return deepcopy(row)

    async def get_pending_order_sync(self, limit: int = 100) -> list[dict]:
        rows = [
            deepcopy(row) for row in self.rows.values()
            if row["order_sync"] != PropagationOutcome.PROPAGATED.value
            and row["order_sync_abandoned_at"] is None
            and row["status"] != DeliveryStatus.CANCELLED.value
        ]
        return sorted(rows, key=lambda row: _attempt_order(row, "order_sync_attempted_at"))[:limit]


# =============================================================================
# IN-PROCESS SERVICE CLIENTS
# =============================================================================

class InProcessOrderClient:
    """OrderServiceClient that calls an OrderService directly as a service principal."""

    def __init__(self) -> None:
        self.service: OrderService | None = None
        self.caller = service_principal("delivery_service")
        self.offline = False
        self.calls: list[tuple] = []

    async def get_order(self, order_id: str):
        return await self.service.get_order(order_id, self.caller)

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        delivery_person_id: str | None = None,
        estimated_delivery_time: datetime | None = None,
    ):
        self.calls.append((order_id, status, delivery_person_id))
        if self.offline:
            return PropagationOutcome.DEFERRED
        try:
            await self.service.update_status(
                order_id, status, self.caller, delivery_person_id, estimated_delivery_time
            )
        except DomainError:
            return PropagationOutcome.FAILED
        return PropagationOutcome.PROPAGATED


class InProcessDeliveryClient:
    """DeliveryServiceClient that calls a DeliveryService directly as a service principal."""

    def __init__(self) -> None:
        self.service: DeliveryService | None = None
        self.caller = service_principal("order_service")
        self.offline = False
        self.calls: list[str] = []

    async def cancel_for_order(self, order_id: str):
        self.calls.append(order_id)
        if self.offline:
            return PropagationOutcome.DEFERRED
        try:
            await self.service.cancel_for_order(order_id, self.caller)
        except DomainError:
            return PropagationOutcome.FAILED
        return PropagationOutcome.PROPAGATED


# =============================================================================
# IDENTITIES
# =============================================================================

@pytest.fixture
def customer() -> CallerIdentity:
    return CallerIdentity(id="cust-1", role=UserRole.CUSTOMER)


@pytest.fixture
def other_customer() -> CallerIdentity:
    return CallerIdentity(id="cust-2", role=UserRole.CUSTOMER)


@pytest.fixture
def restaurant_owner() -> CallerIdentity:
    return CallerIdentity(id="owner-1", role=UserRole.RESTAURANT)


@pytest.fixture
def other_owner() -> CallerIdentity:
    return CallerIdentity(id="owner-2", role=UserRole.RESTAURANT)


@pytest.fixture
def courier() -> CallerIdentity:
    return CallerIdentity(id="courier-1", role=UserRole.DELIVERY)


@pytest.fixture
def other_courier() -> CallerIdentity:
    return CallerIdentity(id="courier-2", role=UserRole.DELIVERY)


@pytest.fixture
def admin() -> CallerIdentity:
    return CallerIdentity(id="admin-1", role=UserRole.ADMIN)


# =============================================================================
# COLLABORATOR MOCKS
# =============================================================================

@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Event bus mock."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def restaurants_directory() -> dict[str, dict]:
    return {
        RESTAURANT_ID: {
            "_id": RESTAURANT_ID,
            "name": "Pasta Place",
            "ownerId": "owner-1",
            "address": {"street": "1 Main St", "coordinates": [30.5234, 50.4501]},
        },
        OTHER_RESTAURANT_ID: {
            "_id": OTHER_RESTAURANT_ID,
            "name": "Noodle Bar",
            "owner": {"_id": "owner-2"},
            "address": {"street": "2 Side St"},
        },
    }


@pytest.fixture
def mock_restaurants(restaurants_directory: dict[str, dict]) -> AsyncMock:
    """Restaurant directory mock; unknown ids are NotFoundError."""
    client = AsyncMock()

    async def get_restaurant(restaurant_id: str) -> dict:
        if restaurant_id not in restaurants_directory:
            raise NotFoundError("Restaurant not found")
        return restaurants_directory[restaurant_id]

    client.get_restaurant = AsyncMock(side_effect=get_restaurant)
    return client


@pytest.fixture
def mock_users() -> AsyncMock:
    """User directory mock."""
    client = AsyncMock()
    client.list_available_personnel = AsyncMock(return_value=[
        DeliveryPersonDTO(id="courier-1", name="Ann", is_available=True),
        DeliveryPersonDTO(id="courier-2", name="Bob", is_available=True),
    ])
    client.get_delivery_person = AsyncMock(
        return_value=DeliveryPersonDTO(id="courier-1", name="Ann", phone="+100200300", vehicle_type="bike")
    )
    client.set_availability = AsyncMock(return_value=PropagationOutcome.PROPAGATED)
    client.update_location = AsyncMock(return_value=PropagationOutcome.PROPAGATED)
    return client


@pytest.fixture
def mock_notifications() -> AsyncMock:
    """Notification service mock."""
    client = AsyncMock()
    client.delivery_status = AsyncMock(return_value=PropagationOutcome.PROPAGATED)
    return client


# =============================================================================
# WIRED SERVICES
# =============================================================================

@pytest.fixture
def marketplace(
    mock_event_bus: AsyncMock,
    mock_restaurants: AsyncMock,
    mock_users: AsyncMock,
    mock_notifications: AsyncMock,
) -> SimpleNamespace:
    """Order and delivery services wired to each other over in-memory stores."""
    order_repository = FakeOrderRepository()
    delivery_repository = FakeDeliveryRepository()
    orders_client = InProcessOrderClient()
    deliveries_client = InProcessDeliveryClient()

    order_service = OrderService(
        repository=order_repository,
        event_bus=mock_event_bus,
        restaurants=mock_restaurants,
        deliveries=deliveries_client,
    )
    delivery_service = DeliveryService(
        repository=delivery_repository,
        event_bus=mock_event_bus,
        users=mock_users,
        restaurants=mock_restaurants,
        orders=orders_client,
        notifications=mock_notifications,
    )
    orders_client.service = order_service
    deliveries_client.service = delivery_service

    return SimpleNamespace(
        orders=order_service,
        deliveries=delivery_service,
        order_repository=order_repository,
        delivery_repository=delivery_repository,
        orders_client=orders_client,
        deliveries_client=deliveries_client,
        event_bus=mock_event_bus,
        users=mock_users,
        notifications=mock_notifications,
    )


@pytest.fixture
def order_request() -> CreateOrderRequest:
    """Two items (12.99 x2, 14.99 x1) with a delivery fee of 150."""
    return CreateOrderRequest(
        restaurant_id=RESTAURANT_ID,
        items=[
            OrderItemDTO(menu_item_id="m-1", name="Carbonara", price=12.99, quantity=2),
            OrderItemDTO(menu_item_id="m-2", name="Tiramisu", price=14.99, quantity=1),
        ],
        delivery_fee=150,
        delivery_address=DeliveryAddressDTO(street="5 Elm St", city="Kyiv", state="Kyiv", zip_code="01001"),
        contact_number="+380501234567",
        payment_method=PaymentMethod.CASH,
    )


@pytest.fixture
def place_order(marketplace: SimpleNamespace, order_request: CreateOrderRequest, customer: CallerIdentity):
    """Returns a coroutine that places the sample order as the customer."""

    async def _place(request: CreateOrderRequest | None = None, caller: CallerIdentity | None = None):
        return await marketplace.orders.create_order(request or order_request, caller or customer)

    return _place


@pytest.fixture
def ready_order(marketplace: SimpleNamespace, place_order, restaurant_owner: CallerIdentity):
    """Returns a coroutine that places an order and walks it to ready_for_pickup."""

    async def _ready():
        order = await place_order()
        for status in (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP):
            order = await marketplace.orders.update_status(order.id, status, restaurant_owner)
        return order

    return _ready
