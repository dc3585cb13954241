#!/usr/bin/env python3
# entrypoint_reconciliation.py
"""
Entry point of the reconciliation workers (order sync and cancel sync sweeps).
"""

import sys
from pathlib import Path

# make the project root importable
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from src.common.logger import setup_logging
from src.worker.runner import main


if __name__ == "__main__":
    setup_logging()
    main()
