from src.shared.models.enums import OrderStatus, UserRole

class OrderStateMachine:
    ALLOWED_TRANSITIONS = {
        OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
        OrderStatus.CONFIRMED: [OrderStatus.PREPARING, OrderStatus.CANCELLED],
        OrderStatus.PREPARING: [OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED],
        OrderStatus.READY_FOR_PICKUP: [OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED],
        OrderStatus.OUT_FOR_DELIVERY: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
        OrderStatus.DELIVERED: [],
        OrderStatus.CANCELLED: []
    }

    # restaurants drive the kitchen stages only; out_for_delivery is written by the assignment flow
    RESTAURANT_TRANSITIONS = {
        (OrderStatus.PENDING, OrderStatus.CONFIRMED),
        (OrderStatus.CONFIRMED, OrderStatus.PREPARING),
        (OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
        (OrderStatus.PREPARING, OrderStatus.CANCELLED),
        (OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED),
    }

    CUSTOMER_CANCELLABLE = {OrderStatus.PENDING, OrderStatus.CONFIRMED}

    # cancelling from these leaves a delivery behind that has to be cancelled too
    DELIVERY_BOUND = {OrderStatus.READY_FOR_PICKUP, OrderStatus.OUT_FOR_DELIVERY}

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = OrderStatus(current_status)
            new = OrderStatus(new_status)
            return new in OrderStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False

    @staticmethod
    def role_may_transition(role: UserRole, current: OrderStatus, new: OrderStatus) -> bool:
        """
        Whether a role is ever allowed to move an order along this edge.
        Ownership (whose order, whose restaurant, which courier) is checked by the service.
        """
        match role:
            case UserRole.CUSTOMER:
                return new == OrderStatus.CANCELLED and current in OrderStateMachine.CUSTOMER_CANCELLABLE
            case UserRole.RESTAURANT:
                return (current, new) in OrderStateMachine.RESTAURANT_TRANSITIONS
            case UserRole.DELIVERY:
                return (current, new) == (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED)
            case UserRole.ADMIN:
                return OrderStateMachine.can_transition(current, new)
