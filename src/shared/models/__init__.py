# src/shared/models/__init__.py
"""
Shared DTOs and Pydantic models exchanged between services.
"""

from src.shared.models.enums import (
    OrderStatus,
    DeliveryStatus,
    UserRole,
    PaymentMethod,
    PaymentStatus,
    PropagationOutcome,
)
from src.shared.models.common import (
    CamelModel,
    ErrorResponse,
    HealthStatus,
)
from src.shared.models.location_dto import GeoPoint
from src.shared.models.user_dto import CallerIdentity, DeliveryPersonDTO
from src.shared.models.order_dto import (
    OrderDTO,
    OrderItemDTO,
    DeliveryAddressDTO,
    CreateOrderRequest,
    UpdateOrderStatusRequest,
)
from src.shared.models.delivery_dto import (
    DeliveryDTO,
    DeliveryDetailsDTO,
    CancelForOrderResult,
    AssignDeliveryRequest,
    UpdateDeliveryStatusRequest,
    LocationUpdateResult,
)

__all__ = [
    # Enums
    "OrderStatus",
    "DeliveryStatus",
    "UserRole",
    "PaymentMethod",
    "PaymentStatus",
    "PropagationOutcome",
    # Common
    "CamelModel",
    "ErrorResponse",
    "HealthStatus",
    "GeoPoint",
    # Users
    "CallerIdentity",
    "DeliveryPersonDTO",
    # Orders
    "OrderDTO",
    "OrderItemDTO",
    "DeliveryAddressDTO",
    "CreateOrderRequest",
    "UpdateOrderStatusRequest",
    # Deliveries
    "DeliveryDTO",
    "DeliveryDetailsDTO",
    "CancelForOrderResult",
    "AssignDeliveryRequest",
    "UpdateDeliveryStatusRequest",
    "LocationUpdateResult",
]
