# src/worker/base.py
"""
Base class of the periodic background workers.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


class BaseWorker(ABC):
    """
    Runs ``run_once`` every ``interval`` seconds until stopped.
    A failing pass is logged and the loop carries on with the next one.
    """

    def __init__(self, interval: float, batch_size: int = 100) -> None:
        """
        Args:
            interval: Pause between passes (seconds)
            batch_size: Maximum number of records handled per pass
        """
        self.interval = interval
        self.batch_size = batch_size
        self._running = False
        self._tasks: List[asyncio.Task] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Worker name."""
        pass

    @abstractmethod
    async def run_once(self) -> int:
        """
        Performs a single pass.

        Returns:
            Number of records processed
        """
        pass

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Starts the periodic loop in a background task."""
        if self._running:
            return

        self._running = True
        self._tasks.append(asyncio.create_task(self._loop(), name=self.name))
        await log_info(f"Worker {self.name} started (every {self.interval}s)", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Stops the worker and waits for its task."""
        if not self._running:
            return

        self._running = False

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        await log_info(f"Worker {self.name} stopped", type_msg=TypeMsg.INFO)

    async def _loop(self) -> None:
        while self._running:
            processed: Optional[int] = None
            try:
                processed = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Worker {self.name} pass failed: {e}", extra={"worker": self.name}, exc_info=True)

            if processed:
                await log_info(
                    f"Worker {self.name} processed {processed} record(s)",
                    type_msg=TypeMsg.DEBUG,
                    extra={"worker": self.name},
                )
            await asyncio.sleep(self.interval)
