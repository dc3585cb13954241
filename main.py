#!/usr/bin/env python3
# main.py
"""
Main entry point of the food delivery backend.
Starts the order service, the delivery service or the reconciliation
workers depending on the requested mode.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


VALID_MODES = ("order_service", "delivery_service", "reconciliation", "all")

_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Installs SIGINT/SIGTERM handlers for a graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nStop signal received (sig={sig}), shutting down...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # no add_signal_handler on Windows
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def _serve(app_path: str, title: str, port: int) -> None:
    import uvicorn

    await log_info(f"Starting {title} on port {port}...", type_msg=TypeMsg.INFO)

    config = uvicorn.Config(
        app_path,
        host="0.0.0.0",
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info(f"{title}: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_order_service() -> None:
    """Runs the order service (order lifecycle)."""
    await _serve(
        "src.services.order_service.app:app",
        "Order Service",
        settings.deployment.ORDER_SERVICE_PORT,
    )


async def run_delivery_service() -> None:
    """Runs the delivery service (assignment and delivery progress)."""
    await _serve(
        "src.services.delivery_service.app:app",
        "Delivery Service",
        settings.deployment.DELIVERY_SERVICE_PORT,
    )


async def run_reconciliation() -> None:
    """Runs the reconciliation sweeps as a standalone process."""
    from src.worker.runner import run_workers
    await run_workers(init_infra=True)


async def main(mode: str | None = None) -> None:
    """
    Starts the requested component.

    Args:
        mode: One of VALID_MODES. When None, COMPONENT_MODE from settings is used.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = settings.system.COMPONENT_MODE
        if mode not in VALID_MODES:
            await log_error(f"Unknown COMPONENT_MODE '{mode}'")
            print_usage()
            sys.exit(1)

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}: starting in mode '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "order_service":
            await run_order_service()
        elif mode == "delivery_service":
            await run_delivery_service()
        elif mode == "reconciliation":
            await run_reconciliation()
        elif mode == "all":
            # both services in one process; each lifespan starts its own sweep
            _running_tasks = [
                asyncio.create_task(run_order_service()),
                asyncio.create_task(run_delivery_service()),
            ]
            try:
                await asyncio.gather(*_running_tasks, return_exceptions=True)
            except asyncio.CancelledError:
                for task in _running_tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*_running_tasks, return_exceptions=True)
                raise
    except asyncio.CancelledError:
        await log_info("Shutdown requested", type_msg=TypeMsg.INFO)
    finally:
        await log_info("Application stopped", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Prints usage help."""
    print(f"""
Food delivery backend v{settings.system.VERSION}

Usage:
    python main.py [mode]

Modes:
    order_service      Order Service (:{settings.deployment.ORDER_SERVICE_PORT})
    delivery_service   Delivery Service (:{settings.deployment.DELIVERY_SERVICE_PORT})
    reconciliation     Reconciliation workers (order sync + cancel sync)
    all                Both services in one process

Without a mode, COMPONENT_MODE from config/config.json (or the environment) is used.
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Error: unknown mode '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
