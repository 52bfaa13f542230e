# Invoices Feature - Money calculations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

Number = Union[int, float, Decimal]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
SECONDS_PER_DAY = 24 * 60 * 60


def to_money(value: Number) -> Decimal:
    """Convert a number to a Decimal rounded half-up to cents."""
    if not isinstance(value, Decimal):
        # str() keeps 0.1 as 0.1 instead of its binary float expansion
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: Number, unit_price: Number) -> Decimal:
    return to_money(Decimal(str(quantity)) * Decimal(str(unit_price)))


@dataclass(frozen=True)
class InvoiceTotals:
    """Derived financial fields of an invoice."""

    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    balance_amount: Decimal


def compute_totals(
    line_totals: Iterable[Number],
    tax_rate: Number,
    discount_amount: Number,
    paid_amount: Number,
) -> InvoiceTotals:
    """
    Compute subtotal, tax, total and balance.

    subtotal = sum(line totals)
    tax      = subtotal * tax_rate / 100
    total    = subtotal + tax - discount
    balance  = total - paid
    """
    subtotal = sum((to_money(total) for total in line_totals), ZERO)
    tax_amount = to_money(subtotal * Decimal(str(tax_rate)) / 100)
    total_amount = subtotal + tax_amount - to_money(discount_amount)
    balance_amount = total_amount - to_money(paid_amount)

    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=total_amount,
        balance_amount=balance_amount,
    )


def derive_payment_status(paid_amount: Number, total_amount: Number) -> str:
    """Unpaid when nothing was paid, Paid once paid covers the total, Partial otherwise."""
    paid = to_money(paid_amount)
    if paid == ZERO:
        return "Unpaid"
    if paid >= to_money(total_amount):
        return "Paid"
    return "Partial"


def days_overdue(due_date: datetime, now: datetime) -> int:
    """Whole days past due, rounded up; 0 when not yet due."""
    if due_date >= now:
        return 0
    return math.ceil((now - due_date).total_seconds() / SECONDS_PER_DAY)
