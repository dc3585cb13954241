# src/worker/reconciliation.py
"""
Reconciliation sweeps.

Cross-service writes are "local write, then best-effort push". The pushes
that did not land are recorded on the local row; these workers re-send them
until the other side confirms.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.common.logger import log_info
from src.common.constants import TypeMsg
from src.config import settings
from src.shared.models.enums import PropagationOutcome
from src.worker.base import BaseWorker

if TYPE_CHECKING:
    from src.services.delivery_service.service import DeliveryService
    from src.services.order_service.service import OrderService


class OrderSyncWorker(BaseWorker):
    """Delivery side: pushes delivery progress to orders that lag behind."""

    def __init__(self, delivery_service: "DeliveryService", interval: float | None = None, batch_size: int | None = None) -> None:
        super().__init__(
            interval=interval if interval is not None else settings.reconciliation.RECONCILIATION_INTERVAL,
            batch_size=batch_size if batch_size is not None else settings.reconciliation.RECONCILIATION_BATCH_SIZE,
        )
        self.delivery_service = delivery_service

    @property
    def name(self) -> str:
        return "order_sync"

    async def run_once(self) -> int:
        rows = await self.delivery_service.repository.get_pending_order_sync(self.batch_size)
        converged = 0
        for row in rows:
            outcome = await self.delivery_service.resync_order(row)
            if outcome == PropagationOutcome.PROPAGATED:
                converged += 1

        if rows:
            await log_info(
                f"Order sync sweep: {converged}/{len(rows)} converged",
                type_msg=TypeMsg.INFO,
                extra={"worker": self.name},
            )
        return len(rows)


class CancelSyncWorker(BaseWorker):
    """Order side: re-sends delivery cancellations of cancelled orders."""

    def __init__(self, order_service: "OrderService", interval: float | None = None, batch_size: int | None = None) -> None:
        super().__init__(
            interval=interval if interval is not None else settings.reconciliation.RECONCILIATION_INTERVAL,
            batch_size=batch_size if batch_size is not None else settings.reconciliation.RECONCILIATION_BATCH_SIZE,
        )
        self.order_service = order_service

    @property
    def name(self) -> str:
        return "cancel_sync"

    async def run_once(self) -> int:
        rows = await self.order_service.repository.get_pending_cancel_sync(self.batch_size)
        converged = 0
        for row in rows:
            outcome = await self.order_service.retry_delivery_cancellation(row)
            if outcome == PropagationOutcome.PROPAGATED:
                converged += 1

        if rows:
            await log_info(
                f"Cancel sync sweep: {converged}/{len(rows)} converged",
                type_msg=TypeMsg.INFO,
                extra={"worker": self.name},
            )
        return len(rows)
