from datetime import datetime
from typing import Any, Optional
from src.shared.models.common import CamelModel
from src.shared.models.enums import DeliveryStatus, OrderStatus, PropagationOutcome
from src.shared.models.location_dto import GeoPoint
from src.shared.models.user_dto import DeliveryPersonDTO

class DeliveryDTO(CamelModel):
    id: str
    order_id: str
    restaurant_id: str
    delivery_person_id: str
    user_id: str

    delivery_address: Optional[dict[str, Any]] = None
    restaurant_address: Optional[dict[str, Any]] = None
    current_location: Optional[GeoPoint] = None

    status: DeliveryStatus = DeliveryStatus.ASSIGNED
    order_sync: PropagationOutcome = PropagationOutcome.DEFERRED
    order_sync_target: Optional[OrderStatus] = None
    order_sync_abandoned_at: Optional[datetime] = None

    assigned_at: datetime
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None

    rating: Optional[int] = None
    feedback: Optional[str] = None

    created_at: datetime
    updated_at: datetime

class DeliveryDetailsDTO(CamelModel):
    """Live delivery of an order with the courier profile and the order status it implies."""
    delivery: DeliveryDTO
    delivery_person: Optional[DeliveryPersonDTO] = None
    derived_order_status: OrderStatus

class CancelForOrderResult(CamelModel):
    order_id: str
    delivery: Optional[DeliveryDTO] = None
    cancelled: bool = False

class AssignDeliveryRequest(CamelModel):
    order_id: str
    restaurant_id: str
    delivery_person_id: str

class UpdateDeliveryStatusRequest(CamelModel):
    status: DeliveryStatus
    current_location: Optional[GeoPoint] = None

class LocationUpdateResult(CamelModel):
    current_location: GeoPoint
    deliveries_updated: int
    directory_sync: PropagationOutcome
