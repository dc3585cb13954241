# src/services/order_service/app.py
"""
FastAPI application of the order service.

Endpoints (prefix /api/v1):
- POST  /orders                          - place an order
- GET   /orders/my-orders                - caller's orders, newest first
- GET   /orders/restaurant/{id}          - orders of a restaurant (owner/admin)
- GET   /orders/status/{status}          - orders by status (delivery/admin)
- GET   /orders/{id}                     - one order
- PATCH /orders/{id}/status              - status transition
- POST  /orders/{id}/cancel              - cancellation
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.services.order_service.routes import router
from src.services.order_service.dependencies import (
    init_dependencies,
    cleanup_dependencies,
    get_order_service,
)
from src.infra.database import init_db, close_db, get_db
from src.infra.event_bus import init_event_bus, close_event_bus, get_event_bus
from src.worker.reconciliation import CancelSyncWorker
from src.shared.errors import register_exception_handlers
from src.shared.models.common import HealthStatus
from src.common.constants import ORDER_SERVICE_NAME
from src.config import settings

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await init_event_bus()
    await init_dependencies()

    worker = None
    if settings.reconciliation.RECONCILIATION_ENABLED:
        worker = CancelSyncWorker(get_order_service())
        await worker.start()

    yield

    if worker is not None:
        await worker.stop()
    await cleanup_dependencies()
    await close_event_bus()
    await close_db()

app = FastAPI(
    title="Order Service",
    version=settings.system.VERSION,
    lifespan=lifespan
)

register_exception_handlers(app)
app.include_router(router, prefix=settings.deployment.API_PREFIX)

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    postgres = await get_db().health_check()
    rabbitmq = await get_event_bus().health_check()
    return HealthStatus(
        service=ORDER_SERVICE_NAME,
        status="healthy" if postgres else "unhealthy",
        version=settings.system.VERSION,
        dependencies={
            "postgres": "healthy" if postgres else "unhealthy",
            "rabbitmq": "healthy" if rabbitmq else "unavailable",
        },
    )
