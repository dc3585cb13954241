# src/worker/runner.py
"""
Standalone launcher of the reconciliation workers.
"""

from __future__ import annotations

import asyncio
from typing import List

from src.worker.base import BaseWorker
from src.worker.reconciliation import CancelSyncWorker, OrderSyncWorker
from src.infra.database import init_db, close_db, get_db
from src.infra.event_bus import init_event_bus, close_event_bus, get_event_bus
from src.infra.http_client import (
    BaseClient,
    DeliveryServiceClient,
    NotificationClient,
    OrderServiceClient,
    RestaurantClient,
    UsersClient,
)
from src.services.delivery_service.repository import DeliveryRepository
from src.services.delivery_service.service import DeliveryService
from src.services.order_service.repository import OrderRepository
from src.services.order_service.service import OrderService
from src.common.constants import RECONCILIATION_SERVICE_NAME, TypeMsg
from src.common.logger import log_info, log_error


def build_workers(clients: List[BaseClient]) -> List[BaseWorker]:
    """
    Wires both sweeps against the shared database. Created clients are
    appended to ``clients`` so the caller can close them.
    """
    users = UsersClient(service_name=RECONCILIATION_SERVICE_NAME)
    restaurants = RestaurantClient(service_name=RECONCILIATION_SERVICE_NAME)
    orders = OrderServiceClient(service_name=RECONCILIATION_SERVICE_NAME)
    deliveries = DeliveryServiceClient(service_name=RECONCILIATION_SERVICE_NAME)
    notifications = NotificationClient(service_name=RECONCILIATION_SERVICE_NAME)
    clients.extend([users, restaurants, orders, deliveries, notifications])

    db = get_db()
    event_bus = get_event_bus()

    delivery_service = DeliveryService(
        repository=DeliveryRepository(db),
        event_bus=event_bus,
        users=users,
        restaurants=restaurants,
        orders=orders,
        notifications=notifications,
    )
    order_service = OrderService(
        repository=OrderRepository(db),
        event_bus=event_bus,
        restaurants=restaurants,
        deliveries=deliveries,
    )
    return [OrderSyncWorker(delivery_service), CancelSyncWorker(order_service)]


async def run_workers(init_infra: bool = True) -> None:
    """
    Runs the reconciliation sweeps until cancelled.

    Args:
        init_infra: Connect to PostgreSQL and RabbitMQ first. False when the
            caller already did (``main.py all``).
    """
    await log_info("Starting reconciliation workers...", type_msg=TypeMsg.INFO)

    if init_infra:
        await init_db()
        await init_event_bus()

    clients: List[BaseClient] = []
    workers = build_workers(clients)

    try:
        for worker in workers:
            await worker.start()

        await log_info(f"{len(workers)} workers running", type_msg=TypeMsg.INFO)

        while True:
            await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Stop signal received", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Reconciliation runner failed: {e}", exc_info=True)
        raise
    finally:
        for worker in workers:
            await worker.stop()
        for client in clients:
            await client.close()

        if init_infra:
            await close_event_bus()
            await close_db()

        await log_info("Reconciliation workers stopped", type_msg=TypeMsg.INFO)


def main() -> None:
    """Entry point."""
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
