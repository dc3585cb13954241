from typing import Optional, List, Any, Sequence
import asyncpg
from src.infra.database import DatabaseManager, affected_rows, as_uuid, record_to_dict
from src.shared.errors import ConflictError


class DeliveryRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create_delivery(self, delivery_data: dict) -> dict:
        """
        Inserts a delivery. The partial unique index on order_id makes this the
        serialisation point for concurrent assignments: the loser gets ConflictError.
        """
        async with self.db.acquire() as connection:
            query = '''
                INSERT INTO delivery_schema.deliveries (
                    order_id, restaurant_id, delivery_person_id, user_id,
                    delivery_address, restaurant_address, current_lat, current_lng,
                    status, order_sync, order_sync_target, estimated_delivery_time
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                RETURNING *;
            '''
            try:
                row = await connection.fetchrow(
                    query,
                    delivery_data["order_id"],
                    delivery_data["restaurant_id"],
                    delivery_data["delivery_person_id"],
                    delivery_data["user_id"],
                    delivery_data.get("delivery_address"),
                    delivery_data.get("restaurant_address"),
                    delivery_data.get("current_lat"),
                    delivery_data.get("current_lng"),
                    delivery_data["status"],
                    delivery_data["order_sync"],
                    delivery_data.get("order_sync_target"),
                    delivery_data.get("estimated_delivery_time"),
                )
            except asyncpg.UniqueViolationError as e:
                raise ConflictError(
                    "Order already has an active delivery",
                    details={"order_id": delivery_data["order_id"]},
                ) from e
            return record_to_dict(row)

    async def get_delivery_by_id(self, delivery_id: Any) -> Optional[dict]:
        uid = as_uuid(delivery_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            row = await connection.fetchrow("SELECT * FROM delivery_schema.deliveries WHERE id = $1", uid)
            return record_to_dict(row)

    async def get_live_delivery_by_order(self, order_id: str) -> Optional[dict]:
        """The non-cancelled delivery of an order, if any."""
        async with self.db.acquire() as connection:
            row = await connection.fetchrow(
                "SELECT * FROM delivery_schema.deliveries WHERE order_id = $1 AND status <> 'cancelled'",
                order_id,
            )
            return record_to_dict(row)

    async def get_deliveries_by_person(self, delivery_person_id: str) -> List[dict]:
        async with self.db.acquire() as connection:
            rows = await connection.fetch(
                '''
                SELECT * FROM delivery_schema.deliveries
                WHERE delivery_person_id = $1 AND status <> 'cancelled'
                ORDER BY assigned_at DESC
                ''',
                delivery_person_id,
            )
            return [record_to_dict(row) for row in rows]

    async def compare_and_set_status(
        self,
        delivery_id: Any,
        expected_status: str,
        new_status: str,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> Optional[dict]:
        """
        Moves the delivery to ``new_status`` if it is still ``expected_status`` and
        stamps the timestamp that belongs to the new status.
        Returns None when the stored status had already moved on.
        """
        uid = as_uuid(delivery_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            query = '''
                UPDATE delivery_schema.deliveries
                SET status = $3::text,
                    picked_up_at = CASE WHEN $3::text = 'picked_up' THEN NOW() ELSE picked_up_at END,
                    delivered_at = CASE WHEN $3::text = 'delivered' THEN NOW() ELSE delivered_at END,
                    actual_delivery_time = CASE WHEN $3::text = 'delivered' THEN NOW() ELSE actual_delivery_time END,
                    cancelled_at = CASE WHEN $3::text = 'cancelled' THEN NOW() ELSE cancelled_at END,
                    current_lat = COALESCE($4::double precision, current_lat),
                    current_lng = COALESCE($5::double precision, current_lng),
                    updated_at = NOW()
                WHERE id = $1 AND status = $2
                RETURNING *;
            '''
            row = await connection.fetchrow(query, uid, expected_status, new_status, lat, lng)
            return record_to_dict(row)

    async def update_location_for_person(
        self,
        delivery_person_id: str,
        lat: float,
        lng: float,
        statuses: Sequence[str],
    ) -> int:
        """Overwrites the location of every delivery of the person in one of ``statuses``."""
        async with self.db.acquire() as connection:
            result = await connection.execute(
                '''
                UPDATE delivery_schema.deliveries
                SET current_lat = $2, current_lng = $3, updated_at = NOW()
                WHERE delivery_person_id = $1 AND status = ANY($4::text[])
                ''',
                delivery_person_id,
                lat,
                lng,
                list(statuses),
            )
            return affected_rows(result)

    async def set_order_sync(self, delivery_id: Any, outcome: str, target: Optional[str]) -> Optional[dict]:
        """Stores the outcome of the last order status push and when it was attempted."""
        uid = as_uuid(delivery_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            row = await connection.fetchrow(
                '''
                UPDATE delivery_schema.deliveries
                SET order_sync = $2, order_sync_target = $3, order_sync_attempted_at = NOW()
                WHERE id = $1
                RETURNING *;
                ''',
                uid,
                outcome,
                target,
            )
            return record_to_dict(row)

    async def abandon_order_sync(self, delivery_id: Any) -> Optional[dict]:
        """Takes a delivery whose order can never accept the push out of the sweep."""
        uid = as_uuid(delivery_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            row = await connection.fetchrow(
                '''
                UPDATE delivery_schema.deliveries
                SET order_sync_abandoned_at = NOW()
                WHERE id = $1
                RETURNING *;
                ''',
                uid,
            )
            return record_to_dict(row)

    async def get_pending_order_sync(self, limit: int = 100) -> List[dict]:
        """
        Live deliveries whose order has not been confirmed in sync,
        least recently attempted first so every row gets its turn.
        """
        async with self.db.acquire() as connection:
            rows = await connection.fetch(
                '''
                SELECT * FROM delivery_schema.deliveries
                WHERE order_sync <> 'propagated'
                  AND order_sync_abandoned_at IS NULL
                  AND status <> 'cancelled'
                ORDER BY order_sync_attempted_at NULLS FIRST, updated_at
                LIMIT $1
                ''',
                limit,
            )
            return [record_to_dict(row) for row in rows]
