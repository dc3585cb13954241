# src/worker/__init__.py
"""
Background workers: periodic reconciliation sweeps.
"""

from src.worker.base import BaseWorker
from src.worker.reconciliation import CancelSyncWorker, OrderSyncWorker

__all__ = [
    "BaseWorker",
    "OrderSyncWorker",
    "CancelSyncWorker",
]
