from datetime import datetime
from typing import Optional, List
from pydantic import Field
from src.shared.models.common import CamelModel
from src.shared.models.enums import OrderStatus, PaymentMethod, PaymentStatus, PropagationOutcome

class OrderItemDTO(CamelModel):
    menu_item_id: str
    name: str
    price: float
    quantity: int

class DeliveryAddressDTO(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None

class OrderDTO(CamelModel):
    id: str
    restaurant_id: str
    user_id: str

    items: List[OrderItemDTO]

    subtotal: float
    delivery_fee: float
    tax: float
    total_amount: float

    delivery_address: DeliveryAddressDTO
    contact_number: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    special_instructions: Optional[str] = None

    status: OrderStatus = OrderStatus.PENDING
    delivery_person_id: Optional[str] = None
    delivery_sync: Optional[PropagationOutcome] = None

    estimated_delivery_time: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class CreateOrderRequest(CamelModel):
    restaurant_id: str
    items: List[OrderItemDTO] = Field(default_factory=list)
    delivery_fee: float = 0.0
    # declared by the client, checked against the recomputed values
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total_amount: Optional[float] = None
    delivery_address: DeliveryAddressDTO
    contact_number: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: Optional[PaymentStatus] = None
    special_instructions: Optional[str] = None

class UpdateOrderStatusRequest(CamelModel):
    status: OrderStatus
    delivery_person_id: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
