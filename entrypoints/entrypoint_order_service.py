#!/usr/bin/env python3
# entrypoint_order_service.py
"""
Entry point of the Order Service (Docker).
"""

import asyncio
import sys
from pathlib import Path

# make the project root importable
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from main import run_order_service
from src.common.logger import setup_logging


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(run_order_service())
    except KeyboardInterrupt:
        pass
