import math
from datetime import datetime
from typing import Optional, List
from src.services.order_service.repository import OrderRepository
from src.services.order_service.state_machine import OrderStateMachine
from src.services.order_service.pricing import calculate_totals, verify_declared_amounts
from src.infra.event_bus import EventBus, DomainEvent, EventTypes
from src.infra.http_client import RestaurantClient, DeliveryServiceClient
from src.config import settings
from src.common.constants import ORDER_SERVICE_NAME
from src.common.logger import log_info, log_warning
from src.shared.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from src.shared.models.enums import OrderStatus, PaymentMethod, PaymentStatus, PropagationOutcome, UserRole
from src.shared.models.order_dto import CreateOrderRequest, OrderDTO
from src.shared.models.user_dto import CallerIdentity

ADDRESS_FIELDS = ("street", "city", "state", "zip_code")

class OrderService:
    def __init__(
        self,
        repository: OrderRepository,
        event_bus: EventBus,
        restaurants: RestaurantClient,
        deliveries: DeliveryServiceClient,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.restaurants = restaurants
        self.deliveries = deliveries

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_order(self, request: CreateOrderRequest, caller: CallerIdentity) -> OrderDTO:
        match caller.role:
            case UserRole.CUSTOMER | UserRole.ADMIN:
                pass
            case UserRole.RESTAURANT | UserRole.DELIVERY:
                raise ForbiddenError("Only customers can place orders")

        self._validate_order_request(request)

        totals = calculate_totals(request.items, request.delivery_fee, settings.orders.TAX_RATE)
        verify_declared_amounts(
            totals,
            settings.orders.AMOUNT_TOLERANCE,
            subtotal=request.subtotal,
            tax=request.tax,
            total_amount=request.total_amount,
        )

        order_data = {
            "restaurant_id": request.restaurant_id,
            "user_id": caller.id,
            "items": [item.model_dump(by_alias=True) for item in request.items],
            "subtotal": totals.subtotal,
            "delivery_fee": totals.delivery_fee,
            "tax": totals.tax,
            "total_amount": totals.total_amount,
            "delivery_address": request.delivery_address.model_dump(by_alias=True),
            "contact_number": request.contact_number.strip(),
            "payment_method": request.payment_method.value,
            "payment_status": self._initial_payment_status(request).value,
            "special_instructions": request.special_instructions,
            "status": OrderStatus.PENDING.value,
        }
        row = await self.repository.create_order(order_data)
        order = self._map_db_to_dto(row)

        await log_info(
            f"Order created: {order.id}",
            extra={"order_id": order.id, "user_id": caller.id, "total_amount": order.total_amount},
        )
        await self._publish(EventTypes.ORDER_CREATED, {
            "order_id": order.id,
            "user_id": order.user_id,
            "restaurant_id": order.restaurant_id,
            "total_amount": order.total_amount,
        })
        return order

    @staticmethod
    def _validate_order_request(request: CreateOrderRequest) -> None:
        if not request.items:
            raise ValidationError("Order must contain at least one item")

        for index, item in enumerate(request.items):
            if not math.isfinite(item.price) or item.price <= 0:
                raise ValidationError("Item price must be a positive number", details={"item": index})
            if item.quantity < 1:
                raise ValidationError("Item quantity must be a positive integer", details={"item": index})

        if not math.isfinite(request.delivery_fee) or request.delivery_fee < 0:
            raise ValidationError("Delivery fee must be a non-negative number")

        missing = [
            field for field in ADDRESS_FIELDS
            if not (getattr(request.delivery_address, field) or "").strip()
        ]
        if missing:
            raise ValidationError("Delivery address is incomplete", details={"missing": missing})

        if not (request.contact_number or "").strip():
            raise ValidationError("Contact number is required")

    @staticmethod
    def _initial_payment_status(request: CreateOrderRequest) -> PaymentStatus:
        match request.payment_method:
            case PaymentMethod.CASH:
                return PaymentStatus.PENDING
            case PaymentMethod.CREDIT_CARD:
                # paid only when the card was captured before the order was placed
                return request.payment_status or PaymentStatus.PENDING

    # =========================================================================
    # READ
    # =========================================================================

    async def get_order(self, order_id: str, caller: CallerIdentity) -> OrderDTO:
        row = await self._get_row(order_id)
        await self._ensure_can_view(row, caller)
        return self._map_db_to_dto(row)

    async def get_user_orders(self, customer_id: str) -> List[OrderDTO]:
        rows = await self.repository.get_orders_by_user(customer_id)
        return [self._map_db_to_dto(row) for row in rows]

    async def get_restaurant_orders(self, restaurant_id: str, caller: CallerIdentity) -> List[OrderDTO]:
        match caller.role:
            case UserRole.ADMIN:
                pass
            case UserRole.RESTAURANT:
                if not await self._owns_restaurant(caller, restaurant_id):
                    raise ForbiddenError("Not the owner of this restaurant")
            case UserRole.CUSTOMER | UserRole.DELIVERY:
                raise ForbiddenError("Only the restaurant owner can list its orders")

        rows = await self.repository.get_orders_by_restaurant(restaurant_id)
        return [self._map_db_to_dto(row) for row in rows]

    async def get_orders_by_status(self, status: OrderStatus, caller: CallerIdentity) -> List[OrderDTO]:
        match caller.role:
            case UserRole.DELIVERY | UserRole.ADMIN:
                pass
            case UserRole.CUSTOMER | UserRole.RESTAURANT:
                raise ForbiddenError("Only delivery personnel can browse orders by status")

        rows = await self.repository.get_orders_by_status(status.value)
        return [self._map_db_to_dto(row) for row in rows]

    # =========================================================================
    # STATUS
    # =========================================================================

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        caller: CallerIdentity,
        delivery_person_id: Optional[str] = None,
        estimated_delivery_time: Optional[datetime] = None,
    ) -> OrderDTO:
        """
        Moves an order along one edge of its lifecycle.

        ``delivery_person_id`` and ``estimated_delivery_time`` come with the
        out_for_delivery push of the assignment flow.
        """
        row = await self._get_row(order_id)
        current = OrderStatus(row["status"])

        if current == new_status:
            return await self._same_status(row, caller, delivery_person_id, estimated_delivery_time)

        # non-owners get 403 whatever edge they ask for
        await self._ensure_can_view(row, caller)

        if not OrderStateMachine.can_transition(current, new_status):
            raise InvalidTransitionError(current, new_status)

        if not OrderStateMachine.role_may_transition(caller.role, current, new_status):
            raise ForbiddenError(
                f"Role '{caller.role}' cannot move an order from '{current}' to '{new_status}'"
            )

        if new_status == OrderStatus.OUT_FOR_DELIVERY and not delivery_person_id:
            raise ValidationError("deliveryPersonId is required to send an order out for delivery")

        return await self._apply_transition(
            row, current, new_status, caller, delivery_person_id, estimated_delivery_time
        )

    async def cancel_order(self, order_id: str, caller: CallerIdentity) -> OrderDTO:
        row = await self._get_row(order_id)
        current = OrderStatus(row["status"])

        match caller.role:
            case UserRole.ADMIN:
                pass
            case UserRole.CUSTOMER:
                if row["user_id"] != caller.id:
                    raise ForbiddenError("Not your order")
                if current not in OrderStateMachine.CUSTOMER_CANCELLABLE and current != OrderStatus.CANCELLED:
                    raise InvalidTransitionError(
                        current,
                        OrderStatus.CANCELLED,
                        message=f"Order can no longer be cancelled by the customer (status '{current}')",
                    )
            case UserRole.RESTAURANT | UserRole.DELIVERY:
                raise ForbiddenError("Only the customer or an admin can cancel an order")

        if current == OrderStatus.CANCELLED:
            return self._map_db_to_dto(row)
        if not OrderStateMachine.can_transition(current, OrderStatus.CANCELLED):
            raise InvalidTransitionError(current, OrderStatus.CANCELLED)

        return await self._apply_transition(row, current, OrderStatus.CANCELLED, caller, None)

    async def _same_status(
        self,
        row: dict,
        caller: CallerIdentity,
        delivery_person_id: Optional[str],
        estimated_delivery_time: Optional[datetime] = None,
    ) -> OrderDTO:
        """Re-sent status is a no-op; on out_for_delivery it may carry a new assignment."""
        await self._ensure_can_view(row, caller)

        reassigned = row["status"] == OrderStatus.OUT_FOR_DELIVERY.value and (
            (delivery_person_id and row.get("delivery_person_id") != delivery_person_id)
            or (estimated_delivery_time and row.get("estimated_delivery_time") != estimated_delivery_time)
        )
        if not reassigned:
            return self._map_db_to_dto(row)

        if caller.role != UserRole.ADMIN:
            raise ForbiddenError("Only the assignment flow can change the courier of an order")

        updated = await self.repository.set_delivery_person(
            row["id"],
            row["status"],
            delivery_person_id or row.get("delivery_person_id"),
            estimated_delivery_time=estimated_delivery_time,
        )
        if updated is None:
            fresh = await self._get_row(row["id"])
            raise InvalidTransitionError(fresh["status"], row["status"])

        await log_info(
            f"Order {updated['id']} reassigned to {updated['delivery_person_id']}",
            extra={"order_id": str(updated["id"]), "previous": row.get("delivery_person_id")},
        )
        return self._map_db_to_dto(updated)

    async def _apply_transition(
        self,
        row: dict,
        current: OrderStatus,
        new_status: OrderStatus,
        caller: CallerIdentity,
        delivery_person_id: Optional[str],
        estimated_delivery_time: Optional[datetime] = None,
    ) -> OrderDTO:
        needs_delivery_cancel = (
            new_status == OrderStatus.CANCELLED and current in OrderStateMachine.DELIVERY_BOUND
        )

        updated = await self.repository.compare_and_set_status(
            row["id"],
            current.value,
            new_status.value,
            delivery_person_id=delivery_person_id,
            estimated_delivery_time=estimated_delivery_time,
            delivery_sync=PropagationOutcome.DEFERRED.value if needs_delivery_cancel else None,
        )
        if updated is None:
            # lost the race against a concurrent update
            fresh = await self._get_row(row["id"])
            if fresh["status"] == new_status.value:
                return self._map_db_to_dto(fresh)
            raise InvalidTransitionError(fresh["status"], new_status)

        order_id = str(updated["id"])
        await log_info(
            f"Order {order_id}: {current} -> {new_status}",
            extra={"order_id": order_id, "caller_id": caller.id, "caller_role": str(caller.role)},
        )

        if needs_delivery_cancel:
            outcome = await self.deliveries.cancel_for_order(order_id)
            updated = await self.repository.set_delivery_sync(order_id, outcome.value) or updated
            if outcome != PropagationOutcome.PROPAGATED:
                await log_warning(
                    f"Delivery of cancelled order {order_id} not cancelled yet ({outcome})",
                    extra={"order_id": order_id, "outcome": str(outcome)},
                )

        await self._publish(EventTypes.ORDER_STATUS_CHANGED, {
            "order_id": order_id,
            "old_status": current.value,
            "new_status": new_status.value,
            "delivery_person_id": updated.get("delivery_person_id"),
            "changed_by": caller.id,
        })
        if new_status == OrderStatus.CANCELLED:
            await self._publish(EventTypes.ORDER_CANCELLED, {
                "order_id": order_id,
                "cancelled_by": str(caller.role),
                "previous_status": current.value,
            })

        return self._map_db_to_dto(updated)

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def retry_delivery_cancellation(self, row: dict) -> PropagationOutcome:
        """Re-sends the delivery cancellation of an already cancelled order."""
        order_id = str(row["id"])
        outcome = await self.deliveries.cancel_for_order(order_id)
        await self.repository.set_delivery_sync(order_id, outcome.value)
        return outcome

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_row(self, order_id) -> dict:
        row = await self.repository.get_order_by_id(order_id)
        if not row:
            raise NotFoundError("Order not found", details={"order_id": str(order_id)})
        return row

    async def _owns_restaurant(self, caller: CallerIdentity, restaurant_id: str) -> bool:
        try:
            restaurant = await self.restaurants.get_restaurant(restaurant_id)
        except NotFoundError:
            return False
        return RestaurantClient.owner_id(restaurant) == caller.id

    async def _ensure_can_view(self, row: dict, caller: CallerIdentity) -> None:
        match caller.role:
            case UserRole.ADMIN:
                allowed = True
            case UserRole.CUSTOMER:
                allowed = row["user_id"] == caller.id
            case UserRole.DELIVERY:
                allowed = row.get("delivery_person_id") == caller.id
            case UserRole.RESTAURANT:
                allowed = await self._owns_restaurant(caller, row["restaurant_id"])

        if not allowed:
            raise ForbiddenError("Not allowed to access this order")

    async def _publish(self, event_type: str, payload: dict) -> None:
        await self.event_bus.publish(DomainEvent(
            event_type=event_type,
            source_service=ORDER_SERVICE_NAME,
            payload=payload,
        ))

    def _map_db_to_dto(self, data: dict) -> OrderDTO:
        return OrderDTO(
            id=str(data['id']),
            restaurant_id=data['restaurant_id'],
            user_id=data['user_id'],
            items=data['items'],
            subtotal=float(data['subtotal']),
            delivery_fee=float(data['delivery_fee']),
            tax=float(data['tax']),
            total_amount=float(data['total_amount']),
            delivery_address=data['delivery_address'],
            contact_number=data['contact_number'],
            payment_method=data['payment_method'],
            payment_status=data.get('payment_status', 'pending'),
            special_instructions=data.get('special_instructions'),
            status=data['status'],
            delivery_person_id=data.get('delivery_person_id'),
            delivery_sync=data.get('delivery_sync'),
            estimated_delivery_time=data.get('estimated_delivery_time'),
            created_at=data['created_at'],
            updated_at=data['updated_at'],
        )
