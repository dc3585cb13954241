#!/usr/bin/env python3
# entrypoint_all.py
"""
Runs both services in one process. Meant for local development.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# make the project root importable
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from main import main


if __name__ == "__main__":
    print("Starting order and delivery services... (Ctrl+C to stop)")

    try:
        asyncio.run(main(mode="all"))
    except KeyboardInterrupt:
        print("\nStop signal received, shutting down...")
    except Exception as e:
        print(f"\nFatal error: {e}")
        sys.exit(1)
    finally:
        print("All components stopped")
