# src/common/constants.py
"""
Common constants and enumerations.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Log message types."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# HTTP headers used for service-to-service calls
INTERNAL_TOKEN_HEADER = "X-Internal-Token"
SERVICE_NAME_HEADER = "X-Service-Name"

# Service names (used as principal ids for internal calls and in logs)
ORDER_SERVICE_NAME = "order_service"
DELIVERY_SERVICE_NAME = "delivery_service"
RECONCILIATION_SERVICE_NAME = "reconciliation"
