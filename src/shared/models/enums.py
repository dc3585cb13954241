from enum import Enum

class OrderStatus(str, Enum):
    """Order statuses."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

class DeliveryStatus(str, Enum):
    """Delivery statuses."""
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

class UserRole(str, Enum):
    """Caller roles."""
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DELIVERY = "delivery"
    ADMIN = "admin"

    def __str__(self) -> str:
        return self.value

class PaymentMethod(str, Enum):
    """Payment methods."""
    CREDIT_CARD = "credit_card"
    CASH = "cash"

    def __str__(self) -> str:
        return self.value

class PaymentStatus(str, Enum):
    """Payment statuses."""
    PENDING = "pending"
    PAID = "paid"

    def __str__(self) -> str:
        return self.value

class PropagationOutcome(str, Enum):
    """Result of a best-effort call to another service."""
    PROPAGATED = "propagated"
    DEFERRED = "deferred"  # timed out, outcome unknown
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value
