from datetime import datetime, timedelta, timezone
from typing import Any, Optional, List, Tuple
from src.services.delivery_service.repository import DeliveryRepository
from src.services.delivery_service.state_machine import DeliveryStateMachine
from src.infra.event_bus import EventBus, DomainEvent, EventTypes
from src.infra.http_client import NotificationClient, OrderServiceClient, RestaurantClient, UsersClient
from src.config import settings
from src.common.constants import DELIVERY_SERVICE_NAME
from src.common.logger import log_info, log_warning
from src.shared.errors import (
    ConflictError,
    DomainError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from src.shared.models.delivery_dto import (
    AssignDeliveryRequest,
    CancelForOrderResult,
    DeliveryDetailsDTO,
    DeliveryDTO,
    LocationUpdateResult,
)
from src.shared.models.enums import DeliveryStatus, OrderStatus, PropagationOutcome, UserRole
from src.shared.models.location_dto import GeoPoint
from src.shared.models.user_dto import CallerIdentity, DeliveryPersonDTO


def restaurant_point(restaurant: dict) -> Optional[GeoPoint]:
    """Pickup coordinates from a restaurant address (GeoJSON ``[lng, lat]``), if it has any."""
    address = restaurant.get("address") or {}
    coordinates: Any = address.get("coordinates") if isinstance(address, dict) else None
    if isinstance(coordinates, dict):
        coordinates = coordinates.get("coordinates")
    if isinstance(coordinates, (list, tuple)) and len(coordinates) == 2:
        try:
            return GeoPoint(longitude=float(coordinates[0]), latitude=float(coordinates[1]))
        except (TypeError, ValueError):
            return None
    return None


class DeliveryService:
    def __init__(
        self,
        repository: DeliveryRepository,
        event_bus: EventBus,
        users: UsersClient,
        restaurants: RestaurantClient,
        orders: OrderServiceClient,
        notifications: NotificationClient,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.users = users
        self.restaurants = restaurants
        self.orders = orders
        self.notifications = notifications

    async def list_available_personnel(self, caller: CallerIdentity) -> List[DeliveryPersonDTO]:
        match caller.role:
            case UserRole.RESTAURANT | UserRole.ADMIN:
                pass
            case UserRole.CUSTOMER | UserRole.DELIVERY:
                raise ForbiddenError("Only restaurants can browse available delivery personnel")
        return await self.users.list_available_personnel()

    # =========================================================================
    # ASSIGN
    # =========================================================================

    async def assign(self, request: AssignDeliveryRequest, caller: CallerIdentity) -> DeliveryDTO:
        """
        Binds a courier to a ready order.

        The delivery row is the authoritative fact and is written first; the
        order status push that follows is best-effort and its outcome is
        stored on the delivery for the reconciliation sweep.
        An order cancelled between the read and the insert refuses that push,
        and the new delivery is cancelled on the spot.
        """
        match caller.role:
            case UserRole.DELIVERY:
                if request.delivery_person_id != caller.id:
                    raise ForbiddenError("Delivery personnel can only assign themselves")
            case UserRole.RESTAURANT | UserRole.ADMIN:
                pass
            case UserRole.CUSTOMER:
                raise ForbiddenError("Customers cannot assign deliveries")

        # critical reads: nothing is written if either lookup fails
        order = await self.orders.get_order(request.order_id)
        restaurant = await self.restaurants.get_restaurant(request.restaurant_id)

        if caller.role == UserRole.RESTAURANT and RestaurantClient.owner_id(restaurant) != caller.id:
            raise ForbiddenError("Not the owner of this restaurant")
        if order.restaurant_id != request.restaurant_id:
            raise ValidationError(
                "Order does not belong to this restaurant",
                details={"order_id": order.id, "restaurant_id": request.restaurant_id},
            )

        match order.status:
            case OrderStatus.READY_FOR_PICKUP:
                pass
            case OrderStatus.OUT_FOR_DELIVERY:
                # reassignment is allowed once the previous delivery was cancelled
                if await self.repository.get_live_delivery_by_order(order.id):
                    raise ConflictError("Order already has an active delivery", details={"order_id": order.id})
            case _:
                raise InvalidTransitionError(
                    order.status,
                    OrderStatus.OUT_FOR_DELIVERY,
                    message=f"Order is '{order.status}', only orders ready for pickup can be assigned",
                )

        pickup = restaurant_point(restaurant)
        row = await self.repository.create_delivery({
            "order_id": order.id,
            "restaurant_id": request.restaurant_id,
            "delivery_person_id": request.delivery_person_id,
            "user_id": order.user_id,
            "delivery_address": order.delivery_address.model_dump(by_alias=True),
            "restaurant_address": restaurant.get("address"),
            "current_lat": pickup.latitude if pickup else None,
            "current_lng": pickup.longitude if pickup else None,
            "status": DeliveryStatus.ASSIGNED.value,
            "order_sync": PropagationOutcome.DEFERRED.value,
            "order_sync_target": OrderStatus.OUT_FOR_DELIVERY.value,
            "estimated_delivery_time": datetime.now(timezone.utc)
            + timedelta(minutes=settings.delivery.ESTIMATED_DELIVERY_MINUTES),
        })
        delivery_id = str(row["id"])

        await log_info(
            f"Delivery {delivery_id} assigned to {request.delivery_person_id}",
            extra={"delivery_id": delivery_id, "order_id": order.id, "assigned_by": caller.id},
        )
        await self._publish(EventTypes.DELIVERY_ASSIGNED, {
            "delivery_id": delivery_id,
            "order_id": order.id,
            "restaurant_id": request.restaurant_id,
            "delivery_person_id": request.delivery_person_id,
        })

        row, _ = await self._sync_order(row, OrderStatus.OUT_FOR_DELIVERY)
        return self._map_db_to_dto(row)

    # =========================================================================
    # STATUS
    # =========================================================================

    async def update_status(
        self,
        delivery_id: str,
        new_status: DeliveryStatus,
        caller: CallerIdentity,
        location: Optional[GeoPoint] = None,
    ) -> DeliveryDTO:
        row = await self.repository.get_delivery_by_id(delivery_id)
        if not row:
            raise NotFoundError("Delivery not found", details={"delivery_id": delivery_id})

        match caller.role:
            case UserRole.DELIVERY:
                if row["delivery_person_id"] != caller.id:
                    raise ForbiddenError("Not your delivery")
            case UserRole.ADMIN:
                pass
            case UserRole.CUSTOMER | UserRole.RESTAURANT:
                raise ForbiddenError("Only the assigned delivery person can update a delivery")

        row = await self._transition(row, new_status, location)
        return self._map_db_to_dto(row)

    async def cancel_for_order(self, order_id: str, caller: CallerIdentity) -> CancelForOrderResult:
        """Cancels the live delivery of an order that was cancelled on the order side."""
        match caller.role:
            case UserRole.ADMIN:
                pass
            case UserRole.CUSTOMER | UserRole.RESTAURANT | UserRole.DELIVERY:
                raise ForbiddenError("Only the order service can cancel deliveries by order")

        row = await self.repository.get_live_delivery_by_order(order_id)
        if not row:
            return CancelForOrderResult(order_id=order_id)

        if row["status"] == DeliveryStatus.DELIVERED.value:
            await log_warning(
                f"Order {order_id} cancelled after its delivery was completed",
                extra={"order_id": order_id, "delivery_id": str(row["id"])},
            )
            return CancelForOrderResult(order_id=order_id, delivery=self._map_db_to_dto(row))

        row = await self._transition(row, DeliveryStatus.CANCELLED, None)
        return CancelForOrderResult(
            order_id=order_id,
            delivery=self._map_db_to_dto(row),
            cancelled=row["status"] == DeliveryStatus.CANCELLED.value,
        )

    async def _transition(
        self,
        row: dict,
        new_status: DeliveryStatus,
        location: Optional[GeoPoint],
    ) -> dict:
        current = DeliveryStatus(row["status"])
        delivery_id = str(row["id"])

        if current == new_status:
            # re-sent status: nothing to do beyond refreshing the location
            if location is not None:
                await self._cascade_location(row["delivery_person_id"], location)
                row = await self.repository.get_delivery_by_id(delivery_id) or row
            return row

        if not DeliveryStateMachine.can_transition(current, new_status):
            raise InvalidTransitionError(current, new_status)

        updated = await self.repository.compare_and_set_status(
            delivery_id,
            current.value,
            new_status.value,
            lat=location.latitude if location else None,
            lng=location.longitude if location else None,
        )
        if updated is None:
            fresh = await self.repository.get_delivery_by_id(delivery_id)
            if fresh and fresh["status"] == new_status.value:
                return fresh
            raise InvalidTransitionError(fresh["status"] if fresh else current, new_status)

        await log_info(
            f"Delivery {delivery_id}: {current} -> {new_status}",
            extra={"delivery_id": delivery_id, "order_id": updated["order_id"]},
        )

        if location is not None:
            await self._cascade_location(updated["delivery_person_id"], location)

        match new_status:
            case DeliveryStatus.DELIVERED:
                await self.users.set_availability(updated["delivery_person_id"], True)
                updated, _ = await self._sync_order(updated, OrderStatus.DELIVERED)
            case DeliveryStatus.CANCELLED:
                # the order is left alone: it either was cancelled already or gets reassigned
                await self.users.set_availability(updated["delivery_person_id"], True)
            case DeliveryStatus.PICKED_UP | DeliveryStatus.IN_TRANSIT | DeliveryStatus.OUT_FOR_DELIVERY:
                if self._order_lags(updated):
                    updated, _ = await self._sync_order(updated, OrderStatus.OUT_FOR_DELIVERY)
            case DeliveryStatus.ASSIGNED:
                pass

        await self.notifications.delivery_status(
            delivery_id=delivery_id,
            order_id=updated["order_id"],
            user_id=updated["user_id"],
            status=new_status.value,
            current_location=self._location_of(updated),
        )
        await self._publish(EventTypes.DELIVERY_STATUS_CHANGED, {
            "delivery_id": delivery_id,
            "order_id": updated["order_id"],
            "delivery_person_id": updated["delivery_person_id"],
            "old_status": current.value,
            "new_status": new_status.value,
        })
        return updated

    # =========================================================================
    # ORDER SYNC
    # =========================================================================

    async def _sync_order(self, row: dict, target: OrderStatus) -> Tuple[dict, PropagationOutcome]:
        """
        Pushes ``target`` to the order service and records the outcome.
        For ``delivered`` an order still lagging behind is first moved to
        out_for_delivery; both pushes are idempotent on the order side.
        A refused push is settled against the order's actual status.
        """
        order_id = row["order_id"]
        person_id = row["delivery_person_id"]
        eta = row.get("estimated_delivery_time")

        if target == OrderStatus.DELIVERED:
            outcome = await self.orders.update_status(order_id, OrderStatus.DELIVERED)
            if outcome == PropagationOutcome.FAILED:
                outcome = await self.orders.update_status(order_id, OrderStatus.OUT_FOR_DELIVERY, person_id, eta)
                if outcome == PropagationOutcome.PROPAGATED:
                    outcome = await self.orders.update_status(order_id, OrderStatus.DELIVERED)
        else:
            outcome = await self.orders.update_status(order_id, target, person_id, eta)

        updated = await self.repository.set_order_sync(row["id"], outcome.value, target.value) or row
        await log_info(
            f"Order {order_id} sync to {target}: {outcome}",
            extra={"order_id": order_id, "delivery_id": str(row["id"]), "outcome": str(outcome)},
        )
        if outcome == PropagationOutcome.FAILED:
            return await self._settle_refused_sync(updated, target)
        return updated, outcome

    async def _settle_refused_sync(self, row: dict, target: OrderStatus) -> Tuple[dict, PropagationOutcome]:
        """
        Reads the order after it refused a push.

        - order already at the target: in sync after all
        - order cancelled: an active delivery is cancelled with it, a
          completed one is dropped from the sweep
        - order gone: dropped from the sweep
        - anything else stays failed and is retried
        """
        order_id = row["order_id"]
        try:
            order = await self.orders.get_order(order_id)
        except NotFoundError:
            return await self._abandon_order_sync(row, "order no longer exists"), PropagationOutcome.FAILED
        except DomainError:
            return row, PropagationOutcome.FAILED

        if order.status == target or (target, order.status) == (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
            updated = await self.repository.set_order_sync(row["id"], PropagationOutcome.PROPAGATED.value, target.value)
            return updated or row, PropagationOutcome.PROPAGATED

        if order.status != OrderStatus.CANCELLED:
            return row, PropagationOutcome.FAILED

        if DeliveryStatus(row["status"]) not in DeliveryStateMachine.ACTIVE:
            return await self._abandon_order_sync(row, "order was cancelled"), PropagationOutcome.FAILED

        await log_warning(
            f"Order {order_id} was cancelled under delivery {row['id']}, cancelling the delivery",
            extra={"order_id": order_id, "delivery_id": str(row["id"])},
        )
        try:
            row = await self._transition(row, DeliveryStatus.CANCELLED, None)
        except InvalidTransitionError:
            # the courier moved the delivery on meanwhile
            row = await self.repository.get_delivery_by_id(row["id"]) or row
        return row, PropagationOutcome.FAILED

    async def _abandon_order_sync(self, row: dict, reason: str) -> dict:
        await log_warning(
            f"Order {row['order_id']} will not accept delivery {row['id']} progress: {reason}",
            extra={"order_id": row["order_id"], "delivery_id": str(row["id"]), "status": row["status"]},
        )
        return await self.repository.abandon_order_sync(row["id"]) or row

    async def resync_order(self, row: dict) -> PropagationOutcome:
        """Retries the order push of a delivery whose last push did not land."""
        target = DeliveryStateMachine.order_status_for(DeliveryStatus(row["status"]))
        if target is None:
            return PropagationOutcome.PROPAGATED
        _, outcome = await self._sync_order(row, target)
        return outcome

    # =========================================================================
    # READ
    # =========================================================================

    async def get_by_order(self, order_id: str, caller: CallerIdentity) -> DeliveryDetailsDTO:
        """
        Live delivery of an order with the courier profile.
        Also a reconciliation read: the order status is derived from the
        delivery, and a lagging order is pushed again.
        """
        row = await self.repository.get_live_delivery_by_order(order_id)
        if not row:
            raise NotFoundError("No active delivery for this order", details={"order_id": order_id})

        match caller.role:
            case UserRole.ADMIN:
                allowed = True
            case UserRole.DELIVERY:
                allowed = row["delivery_person_id"] == caller.id
            case UserRole.CUSTOMER:
                allowed = row["user_id"] == caller.id
            case UserRole.RESTAURANT:
                restaurant = await self.restaurants.get_restaurant(row["restaurant_id"])
                allowed = RestaurantClient.owner_id(restaurant) == caller.id
        if not allowed:
            raise ForbiddenError("Not allowed to access this delivery")

        derived = DeliveryStateMachine.order_status_for(DeliveryStatus(row["status"]))
        if derived is not None and self._order_lags(row):
            row, _ = await self._sync_order(row, derived)
            if row["status"] == DeliveryStatus.CANCELLED.value:
                raise NotFoundError("No active delivery for this order", details={"order_id": order_id})
            derived = DeliveryStateMachine.order_status_for(DeliveryStatus(row["status"]))
        if row.get("order_sync_abandoned_at") is not None:
            # the order went its own way, the delivery no longer speaks for it
            derived = None

        return DeliveryDetailsDTO(
            delivery=self._map_db_to_dto(row),
            delivery_person=await self._delivery_person_profile(row["delivery_person_id"]),
            derived_order_status=derived,
        )

    async def get_mine(self, caller: CallerIdentity) -> List[DeliveryDTO]:
        match caller.role:
            case UserRole.DELIVERY | UserRole.ADMIN:
                pass
            case UserRole.CUSTOMER | UserRole.RESTAURANT:
                raise ForbiddenError("Only delivery personnel have deliveries")
        rows = await self.repository.get_deliveries_by_person(caller.id)
        return [self._map_db_to_dto(row) for row in rows]

    async def _delivery_person_profile(self, delivery_person_id: str) -> Optional[DeliveryPersonDTO]:
        try:
            return await self.users.get_delivery_person(delivery_person_id)
        except DomainError as e:
            await log_warning(
                f"Delivery person profile unavailable: {e.message}",
                extra={"delivery_person_id": delivery_person_id},
            )
            return None

    # =========================================================================
    # LOCATION
    # =========================================================================

    async def update_location(self, caller: CallerIdentity, point: GeoPoint) -> LocationUpdateResult:
        match caller.role:
            case UserRole.DELIVERY:
                pass
            case UserRole.CUSTOMER | UserRole.RESTAURANT | UserRole.ADMIN:
                raise ForbiddenError("Only delivery personnel report locations")

        directory_sync = await self.users.update_location(caller.id, point)
        updated = await self._cascade_location(caller.id, point)
        return LocationUpdateResult(
            current_location=point,
            deliveries_updated=updated,
            directory_sync=directory_sync,
        )

    async def _cascade_location(self, delivery_person_id: str, point: GeoPoint) -> int:
        updated = await self.repository.update_location_for_person(
            delivery_person_id,
            point.latitude,
            point.longitude,
            [status.value for status in DeliveryStateMachine.ACTIVE],
        )
        await self._publish(EventTypes.DELIVERY_LOCATION_UPDATED, {
            "delivery_person_id": delivery_person_id,
            "latitude": point.latitude,
            "longitude": point.longitude,
            "deliveries_updated": updated,
        })
        return updated

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _publish(self, event_type: str, payload: dict) -> None:
        await self.event_bus.publish(DomainEvent(
            event_type=event_type,
            source_service=DELIVERY_SERVICE_NAME,
            payload=payload,
        ))

    @staticmethod
    def _order_lags(row: dict) -> bool:
        """True while the order has not confirmed the delivery's progress and still may."""
        return (
            row["order_sync"] != PropagationOutcome.PROPAGATED.value
            and row.get("order_sync_abandoned_at") is None
        )

    @staticmethod
    def _location_of(data: dict) -> Optional[GeoPoint]:
        if data.get("current_lat") is None or data.get("current_lng") is None:
            return None
        return GeoPoint(latitude=data["current_lat"], longitude=data["current_lng"])

    def _map_db_to_dto(self, data: dict) -> DeliveryDTO:
        return DeliveryDTO(
            id=str(data['id']),
            order_id=data['order_id'],
            restaurant_id=data['restaurant_id'],
            delivery_person_id=data['delivery_person_id'],
            user_id=data['user_id'],
            delivery_address=data.get('delivery_address'),
            restaurant_address=data.get('restaurant_address'),
            current_location=self._location_of(data),
            status=data['status'],
            order_sync=data.get('order_sync', PropagationOutcome.DEFERRED.value),
            order_sync_target=data.get('order_sync_target'),
            order_sync_abandoned_at=data.get('order_sync_abandoned_at'),
            assigned_at=data['assigned_at'],
            picked_up_at=data.get('picked_up_at'),
            delivered_at=data.get('delivered_at'),
            actual_delivery_time=data.get('actual_delivery_time'),
            cancelled_at=data.get('cancelled_at'),
            estimated_delivery_time=data.get('estimated_delivery_time'),
            rating=data.get('rating'),
            feedback=data.get('feedback'),
            created_at=data['created_at'],
            updated_at=data['updated_at'],
        )
