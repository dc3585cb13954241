from datetime import datetime
from typing import Optional, List, Any
from src.infra.database import DatabaseManager, as_uuid, record_to_dict


class OrderRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create_order(self, order_data: dict) -> dict:
        """Inserts an order and returns the stored row."""
        async with self.db.acquire() as connection:
            query = '''
                INSERT INTO orders_schema.orders (
                    restaurant_id, user_id, items, subtotal, delivery_fee, tax,
                    total_amount, delivery_address, contact_number, payment_method,
                    payment_status, special_instructions, status
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                RETURNING *;
            '''
            row = await connection.fetchrow(
                query,
                order_data["restaurant_id"],
                order_data["user_id"],
                order_data["items"],
                order_data["subtotal"],
                order_data["delivery_fee"],
                order_data["tax"],
                order_data["total_amount"],
                order_data["delivery_address"],
                order_data["contact_number"],
                order_data["payment_method"],
                order_data["payment_status"],
                order_data.get("special_instructions"),
                order_data["status"],
            )
            return record_to_dict(row)

    async def get_order_by_id(self, order_id: Any) -> Optional[dict]:
        """Returns the order or None (also for ids that are not UUIDs)."""
        uid = as_uuid(order_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            row = await connection.fetchrow("SELECT * FROM orders_schema.orders WHERE id = $1", uid)
            return record_to_dict(row)

    async def get_orders_by_user(self, user_id: str) -> List[dict]:
        async with self.db.acquire() as connection:
            rows = await connection.fetch(
                "SELECT * FROM orders_schema.orders WHERE user_id = $1 ORDER BY created_at DESC",
                user_id,
            )
            return [record_to_dict(row) for row in rows]

    async def get_orders_by_restaurant(self, restaurant_id: str) -> List[dict]:
        async with self.db.acquire() as connection:
            rows = await connection.fetch(
                "SELECT * FROM orders_schema.orders WHERE restaurant_id = $1 ORDER BY created_at DESC",
                restaurant_id,
            )
            return [record_to_dict(row) for row in rows]

    async def get_orders_by_status(self, status: str) -> List[dict]:
        async with self.db.acquire() as connection:
            rows = await connection.fetch(
                "SELECT * FROM orders_schema.orders WHERE status = $1 ORDER BY created_at DESC",
                status,
            )
            return [record_to_dict(row) for row in rows]

    async def compare_and_set_status(
        self,
        order_id: Any,
        expected_status: str,
        new_status: str,
        delivery_person_id: Optional[str] = None,
        estimated_delivery_time: Optional[datetime] = None,
        delivery_sync: Optional[str] = None,
    ) -> Optional[dict]:
        """
        Moves the order to ``new_status`` only if it is still in ``expected_status``.
        Returns the updated row, or None when the stored status had already moved on.
        """
        uid = as_uuid(order_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            query = '''
                UPDATE orders_schema.orders
                SET status = $3,
                    delivery_person_id = COALESCE($4, delivery_person_id),
                    estimated_delivery_time = COALESCE($5, estimated_delivery_time),
                    delivery_sync = COALESCE($6, delivery_sync),
                    updated_at = NOW()
                WHERE id = $1 AND status = $2
                RETURNING *;
            '''
            row = await connection.fetchrow(
                query, uid, expected_status, new_status, delivery_person_id, estimated_delivery_time, delivery_sync
            )
            return record_to_dict(row)

    async def set_delivery_person(
        self,
        order_id: Any,
        expected_status: str,
        delivery_person_id: str,
        estimated_delivery_time: Optional[datetime] = None,
    ) -> Optional[dict]:
        """Records a new assignment while the order stays in ``expected_status``."""
        uid = as_uuid(order_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            query = '''
                UPDATE orders_schema.orders
                SET delivery_person_id = $3,
                    estimated_delivery_time = COALESCE($4, estimated_delivery_time),
                    updated_at = NOW()
                WHERE id = $1 AND status = $2
                RETURNING *;
            '''
            row = await connection.fetchrow(query, uid, expected_status, delivery_person_id, estimated_delivery_time)
            return record_to_dict(row)

    async def set_delivery_sync(self, order_id: Any, outcome: str) -> Optional[dict]:
        """Stores the outcome of the cancellation sent to the delivery service and when it was sent."""
        uid = as_uuid(order_id)
        if uid is None:
            return None
        async with self.db.acquire() as connection:
            row = await connection.fetchrow(
                '''
                UPDATE orders_schema.orders
                SET delivery_sync = $2, delivery_sync_attempted_at = NOW()
                WHERE id = $1
                RETURNING *;
                ''',
                uid,
                outcome,
            )
            return record_to_dict(row)

    async def get_pending_cancel_sync(self, limit: int = 100) -> List[dict]:
        """
        Cancelled orders whose delivery has not been confirmed cancelled yet,
        least recently attempted first so every row gets its turn.
        """
        async with self.db.acquire() as connection:
            query = '''
                SELECT * FROM orders_schema.orders
                WHERE status = 'cancelled'
                  AND delivery_sync IS NOT NULL
                  AND delivery_sync <> 'propagated'
                ORDER BY delivery_sync_attempted_at NULLS FIRST, updated_at
                LIMIT $1
            '''
            rows = await connection.fetch(query, limit)
            return [record_to_dict(row) for row in rows]
