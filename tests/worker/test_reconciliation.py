# tests/worker/test_reconciliation.py
"""
Reconciliation sweeps against the in-memory services.
"""

import pytest

from src.shared.models.delivery_dto import AssignDeliveryRequest
from src.shared.models.enums import DeliveryStatus, OrderStatus, PropagationOutcome
from src.worker.reconciliation import CancelSyncWorker, OrderSyncWorker


@pytest.mark.asyncio
async def test_order_sync_converges_lagging_orders(marketplace, ready_order, courier, admin):
    order = await ready_order()
    marketplace.orders_client.offline = True
    delivery = await marketplace.deliveries.assign(
        AssignDeliveryRequest(order_id=order.id, restaurant_id="rest-1", delivery_person_id="courier-1"),
        courier,
    )
    worker = OrderSyncWorker(marketplace.deliveries, interval=1, batch_size=10)

    # still unreachable: the row stays pending
    assert await worker.run_once() == 1
    assert (await marketplace.orders.get_order(order.id, admin)).status == OrderStatus.READY_FOR_PICKUP

    marketplace.orders_client.offline = False
    assert await worker.run_once() == 1

    synced = await marketplace.orders.get_order(order.id, admin)
    assert synced.status == OrderStatus.OUT_FOR_DELIVERY
    assert synced.delivery_person_id == "courier-1"
    stored = await marketplace.delivery_repository.get_delivery_by_id(delivery.id)
    assert stored["order_sync"] == PropagationOutcome.PROPAGATED.value

    # nothing left to do
    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_order_sync_skips_cancelled_deliveries(marketplace, ready_order, courier):
    order = await ready_order()
    marketplace.orders_client.offline = True
    delivery = await marketplace.deliveries.assign(
        AssignDeliveryRequest(order_id=order.id, restaurant_id="rest-1", delivery_person_id="courier-1"),
        courier,
    )
    await marketplace.deliveries.update_status(delivery.id, DeliveryStatus.CANCELLED, courier)

    worker = OrderSyncWorker(marketplace.deliveries, interval=1, batch_size=10)

    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_cancel_sync_retries_deferred_cancellations(marketplace, ready_order, admin):
    order = await ready_order()
    marketplace.deliveries_client.offline = True
    await marketplace.orders.cancel_order(order.id, admin)

    worker = CancelSyncWorker(marketplace.orders, interval=1, batch_size=10)

    assert await worker.run_once() == 1
    assert marketplace.deliveries_client.calls == [order.id, order.id]

    marketplace.deliveries_client.offline = False
    assert await worker.run_once() == 1
    assert await worker.run_once() == 0


def test_worker_names_and_defaults(marketplace):
    order_sync = OrderSyncWorker(marketplace.deliveries)
    cancel_sync = CancelSyncWorker(marketplace.orders, batch_size=3)

    assert order_sync.name == "order_sync"
    assert cancel_sync.name == "cancel_sync"
    assert order_sync.interval > 0
    assert cancel_sync.batch_size == 3


@pytest.mark.asyncio
async def test_order_sync_cancels_delivery_of_cancelled_order(marketplace, ready_order, courier, restaurant_owner, admin):
    order = await ready_order()
    marketplace.orders_client.offline = True
    delivery = await marketplace.deliveries.assign(
        AssignDeliveryRequest(order_id=order.id, restaurant_id="rest-1", delivery_person_id="courier-1"),
        courier,
    )
    # the restaurant cancels while neither push can land
    marketplace.deliveries_client.offline = True
    await marketplace.orders.update_status(order.id, OrderStatus.CANCELLED, restaurant_owner)

    marketplace.orders_client.offline = False
    worker = OrderSyncWorker(marketplace.deliveries, interval=1, batch_size=10)

    assert await worker.run_once() == 1
    stored = await marketplace.delivery_repository.get_delivery_by_id(delivery.id)
    assert stored["status"] == DeliveryStatus.CANCELLED.value
    assert (await marketplace.orders.get_order(order.id, admin)).status == OrderStatus.CANCELLED
    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_order_sync_rotates_past_stuck_rows(marketplace, place_order, ready_order, courier, admin):
    for _ in range(2):
        # orders still pending refuse out_for_delivery on every pass
        pending = await place_order()
        await marketplace.delivery_repository.create_delivery({
            "order_id": pending.id,
            "restaurant_id": "rest-1",
            "delivery_person_id": "courier-2",
            "user_id": pending.user_id,
            "status": DeliveryStatus.ASSIGNED.value,
            "order_sync": PropagationOutcome.FAILED.value,
            "order_sync_target": OrderStatus.OUT_FOR_DELIVERY.value,
        })

    order = await ready_order()
    marketplace.orders_client.offline = True
    await marketplace.deliveries.assign(
        AssignDeliveryRequest(order_id=order.id, restaurant_id="rest-1", delivery_person_id="courier-1"),
        courier,
    )
    marketplace.orders_client.offline = False

    worker = OrderSyncWorker(marketplace.deliveries, interval=1, batch_size=2)
    for _ in range(2):
        assert await worker.run_once() == 2

    assert (await marketplace.orders.get_order(order.id, admin)).status == OrderStatus.OUT_FOR_DELIVERY
    assert len(await marketplace.delivery_repository.get_pending_order_sync()) == 2


@pytest.mark.asyncio
async def test_cancel_sync_rotates_by_last_attempt(marketplace, ready_order, admin):
    first = await ready_order()
    second = await ready_order()
    marketplace.deliveries_client.offline = True
    await marketplace.orders.cancel_order(first.id, admin)
    await marketplace.orders.cancel_order(second.id, admin)

    worker = CancelSyncWorker(marketplace.orders, interval=1, batch_size=1)

    assert await worker.run_once() == 1
    assert await worker.run_once() == 1
    assert marketplace.deliveries_client.calls[-2:] == [first.id, second.id]
