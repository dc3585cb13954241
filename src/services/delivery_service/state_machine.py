from src.shared.models.enums import DeliveryStatus, OrderStatus

class DeliveryStateMachine:
    ALLOWED_TRANSITIONS = {
        DeliveryStatus.ASSIGNED: [DeliveryStatus.PICKED_UP, DeliveryStatus.CANCELLED],
        DeliveryStatus.PICKED_UP: [DeliveryStatus.IN_TRANSIT, DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.CANCELLED],
        DeliveryStatus.IN_TRANSIT: [DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED],
        DeliveryStatus.OUT_FOR_DELIVERY: [DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED],
        DeliveryStatus.DELIVERED: [],
        DeliveryStatus.CANCELLED: []
    }

    # statuses in which the courier is carrying (or about to carry) the order
    ACTIVE = (
        DeliveryStatus.ASSIGNED,
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.IN_TRANSIT,
        DeliveryStatus.OUT_FOR_DELIVERY,
    )

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = DeliveryStatus(current_status)
            new = DeliveryStatus(new_status)
            return new in DeliveryStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False

    @staticmethod
    def order_status_for(status: DeliveryStatus) -> OrderStatus | None:
        """
        Order status implied by a delivery status.
        None for cancelled: a cancelled delivery says nothing about the order.
        """
        match status:
            case DeliveryStatus.DELIVERED:
                return OrderStatus.DELIVERED
            case DeliveryStatus.ASSIGNED | DeliveryStatus.PICKED_UP | DeliveryStatus.IN_TRANSIT | DeliveryStatus.OUT_FOR_DELIVERY:
                return OrderStatus.OUT_FOR_DELIVERY
            case DeliveryStatus.CANCELLED:
                return None
