# src/services/order_service/pricing.py
"""
Server-side order totals.

Amounts are recomputed from the items with Decimal arithmetic; totals the
client sends along are only checked against the recomputed values.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from src.shared.errors import ValidationError
from src.shared.models.order_dto import OrderItemDTO


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """Converts through ``str`` so 12.99 stays 12.99 and not its binary neighbour."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total_amount: Decimal


def calculate_totals(
    items: Iterable[OrderItemDTO],
    delivery_fee: float | Decimal,
    tax_rate: float | Decimal,
) -> PriceBreakdown:
    """
    subtotal = sum(price * quantity)
    tax = subtotal * tax_rate (not rounded)
    total = subtotal + delivery_fee + tax
    """
    subtotal = sum(
        (to_decimal(item.price) * item.quantity for item in items),
        Decimal("0"),
    )
    fee = to_decimal(delivery_fee)
    tax = subtotal * to_decimal(tax_rate)
    return PriceBreakdown(
        subtotal=subtotal,
        delivery_fee=fee,
        tax=tax,
        total_amount=subtotal + fee + tax,
    )


def verify_declared_amounts(
    breakdown: PriceBreakdown,
    tolerance: float | Decimal,
    subtotal: float | None = None,
    tax: float | None = None,
    total_amount: float | None = None,
) -> None:
    """Raises ValidationError when a declared amount differs from the computed one."""
    limit = to_decimal(tolerance)
    declared = {
        "subtotal": (subtotal, breakdown.subtotal),
        "tax": (tax, breakdown.tax),
        "totalAmount": (total_amount, breakdown.total_amount),
    }
    mismatches = {}
    for field, (value, expected) in declared.items():
        if value is None:
            continue
        if abs(to_decimal(value) - expected) > limit:
            mismatches[field] = {"declared": value, "expected": float(expected)}

    if mismatches:
        raise ValidationError("Declared amounts do not match the order items", details=mismatches)
