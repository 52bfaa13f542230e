"""Test invoice money arithmetic and derived fields (no database writes)."""

from datetime import timedelta
from decimal import Decimal

import pytest

from clinic_emr.features.invoices.calculations import (
    compute_totals,
    days_overdue,
    derive_payment_status,
    line_total,
    to_money,
)
from clinic_emr.features.invoices.models import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
)
from clinic_emr.shared.exceptions import InvalidStateException, ValidationException
from clinic_emr.shared.models import utcnow


def make_invoice(**overrides) -> Invoice:
    fields = dict(
        invoice_number="INV-2024-000001",
        patient_id="p1",
        patient_name="Sarah Johnson",
        due_date=utcnow() + timedelta(days=30),
        items=[InvoiceItem(description="Consultation", quantity=1, unit_price=100)],
        tax_rate=10,
        discount_amount=5,
    )
    fields.update(overrides)
    invoice = Invoice(**fields)
    invoice.recalculate()
    return invoice


async def test_to_money_rounds_half_up():
    assert to_money(2.675) == Decimal("2.68")
    assert to_money(0.1) + to_money(0.2) == Decimal("0.30")


async def test_line_total():
    assert line_total(3, 19.99) == Decimal("59.97")
    assert line_total(0.5, 10) == Decimal("5.00")


async def test_compute_totals_formula():
    totals = compute_totals([100, 50.5], tax_rate=8.25, discount_amount=10, paid_amount=20)

    assert totals.subtotal == Decimal("150.50")
    assert totals.tax_amount == Decimal("12.42")
    assert totals.total_amount == totals.subtotal + totals.tax_amount - Decimal("10.00")
    assert totals.balance_amount == totals.total_amount - Decimal("20.00")


@pytest.mark.parametrize(
    "paid, total, expected",
    [(0, 105, "Unpaid"), (50, 105, "Partial"), (105, 105, "Paid"), (110, 105, "Paid")],
)
async def test_derive_payment_status(paid, total, expected):
    assert derive_payment_status(paid, total) == expected


async def test_days_overdue_rounds_up():
    now = utcnow()
    assert days_overdue(now - timedelta(hours=1), now) == 1
    assert days_overdue(now - timedelta(days=2, minutes=1), now) == 3
    assert days_overdue(now + timedelta(days=1), now) == 0


async def test_recalculate_matches_creation_scenario():
    invoice = make_invoice()

    assert invoice.subtotal == 100
    assert invoice.tax_amount == 10
    assert invoice.total_amount == 105
    assert invoice.balance_amount == 105
    assert invoice.payment_status == PaymentStatus.UNPAID
    assert invoice.status == InvoiceStatus.DRAFT


async def test_item_total_is_recomputed():
    invoice = make_invoice(items=[InvoiceItem(description="Lab", quantity=2, unit_price=30, total=999)])
    assert invoice.items[0].total == 60
    assert invoice.subtotal == 60


async def test_discount_larger_than_total_is_rejected():
    with pytest.raises(ValidationException):
        make_invoice(discount_amount=500)


async def test_overdue_is_derived_from_due_date_and_status():
    invoice = make_invoice(due_date=utcnow() - timedelta(days=1), status=InvoiceStatus.SENT)

    assert invoice.is_overdue is True
    assert invoice.days_overdue >= 1
    assert invoice.display_status == "Overdue"

    invoice.status = InvoiceStatus.PAID
    assert invoice.is_overdue is False
    assert invoice.days_overdue == 0
    assert invoice.display_status == "Paid"


async def test_add_payment_boundary():
    invoice = make_invoice()

    with pytest.raises(ValidationException):
        invoice.add_payment(105.01, PaymentMethod.CASH)
    assert invoice.paid_amount == 0

    invoice.add_payment(105, PaymentMethod.CASH)
    assert invoice.payment_status == PaymentStatus.PAID
    assert invoice.balance_amount == 0


@pytest.mark.parametrize("amount, method", [(0, PaymentMethod.CASH), (-5, PaymentMethod.CASH), (10, None)])
async def test_add_payment_rejects_bad_input(amount, method):
    invoice = make_invoice()
    with pytest.raises(ValidationException):
        invoice.add_payment(amount, method)


async def test_mark_as_paid_settles_in_full():
    invoice = make_invoice()
    invoice.add_payment(40, PaymentMethod.CASH)

    invoice.mark_as_paid(method=PaymentMethod.CREDIT_CARD, reference="TX-1")

    assert invoice.paid_amount == 105
    assert invoice.balance_amount == 0
    assert invoice.payment_status == PaymentStatus.PAID
    assert invoice.payment_reference == "TX-1"
    assert [p.amount for p in invoice.payments] == [40, 65]


async def test_mark_as_paid_on_zero_total_invoice_derives_payment_status():
    invoice = make_invoice(
        items=[InvoiceItem(description="Follow-up", quantity=1, unit_price=0)], discount_amount=0
    )

    invoice.mark_as_paid()

    assert invoice.paid_amount == 0
    assert invoice.payments == []
    assert invoice.payment_status == PaymentStatus.UNPAID


async def test_full_payment_settles_without_status_change():
    invoice = make_invoice()
    assert invoice.is_settled is False

    invoice.add_payment(105, PaymentMethod.CASH)

    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.is_settled is True


async def test_cancelled_invoice_rejects_payments():
    invoice = make_invoice()
    invoice.cancel()

    with pytest.raises(InvalidStateException):
        invoice.add_payment(10, PaymentMethod.CASH)
    with pytest.raises(InvalidStateException):
        invoice.mark_as_paid()
