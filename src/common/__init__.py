# src/common/__init__.py
"""
Common utilities, constants and logger.
"""

from src.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from src.common.constants import TypeMsg

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
]
