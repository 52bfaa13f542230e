"""Test the invoice service against an in-memory MongoDB."""

import re
from datetime import timedelta

import pytest
from bson import ObjectId

from clinic_emr.features.invoices.models import Invoice, InvoiceStatus, PaymentMethod, PaymentStatus
from clinic_emr.features.invoices.schemas import (
    CreateInvoiceRequest,
    InvoiceItemRequest,
    UpdateInvoiceRequest,
)
from clinic_emr.features.invoices.service import InvoiceService
from clinic_emr.shared.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from clinic_emr.shared.models import utcnow


def assert_financials_consistent(invoice: Invoice):
    assert round(invoice.subtotal * invoice.tax_rate / 100, 2) == invoice.tax_amount
    assert round(invoice.subtotal + invoice.tax_amount - invoice.discount_amount, 2) == invoice.total_amount
    assert round(invoice.total_amount - invoice.paid_amount, 2) == invoice.balance_amount


async def test_create_invoice(invoice_request, patient):
    invoice = await InvoiceService.create_invoice(invoice_request, "clinic_1")

    assert re.match(r"^INV-\d{4}-\d{6}$", invoice.invoice_number)
    assert invoice.patient_name == patient.name
    assert invoice.clinic_id == "clinic_1"
    assert invoice.terms == "Net 30"
    assert invoice.subtotal == 100
    assert invoice.tax_amount == 10
    assert invoice.total_amount == 105
    assert invoice.balance_amount == 105
    assert invoice.payment_status == PaymentStatus.UNPAID
    assert invoice.status == InvoiceStatus.DRAFT

    stored = await Invoice.get(invoice.id)
    assert stored.total_amount == 105


async def test_invoice_numbers_are_sequential(invoice_request):
    first = await InvoiceService.create_invoice(invoice_request)
    second = await InvoiceService.create_invoice(invoice_request)

    first_seq = int(first.invoice_number.rsplit("-", 1)[1])
    second_seq = int(second.invoice_number.rsplit("-", 1)[1])
    assert second_seq == first_seq + 1
    assert first.invoice_number.startswith(f"INV-{utcnow().year}-")


async def test_duplicate_invoice_number_is_rejected(invoice_request):
    invoice_request.invoice_number = "INV-2024-000777"
    await InvoiceService.create_invoice(invoice_request)

    with pytest.raises(ValidationException):
        await InvoiceService.create_invoice(invoice_request)


async def test_create_invoice_for_unknown_patient(invoice_request):
    invoice_request.patient_id = str(ObjectId())

    with pytest.raises(NotFoundException):
        await InvoiceService.create_invoice(invoice_request)


async def test_payment_lifecycle(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)
    invoice_id = str(invoice.id)

    invoice = await InvoiceService.add_payment(invoice_id, 50, PaymentMethod.CASH)
    assert invoice.paid_amount == 50
    assert invoice.balance_amount == 55
    assert invoice.payment_status == PaymentStatus.PARTIAL

    invoice = await InvoiceService.add_payment(invoice_id, 55, PaymentMethod.CASH)
    assert invoice.paid_amount == 105
    assert invoice.balance_amount == 0
    assert invoice.payment_status == PaymentStatus.PAID
    assert len(invoice.payments) == 2
    assert_financials_consistent(invoice)

    # Settled through payments alone; the lifecycle status is still Draft
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.is_settled is True
    with pytest.raises(InvalidStateException):
        await InvoiceService.update_invoice(invoice_id, UpdateInvoiceRequest(notes="x"))
    with pytest.raises(InvalidStateException):
        await InvoiceService.delete_invoice(invoice_id)

    stored = await Invoice.get(invoice.id)
    assert stored.notes is None


def stale_reader(stale: Invoice):
    async def get_invoice(invoice_id, clinic_id=None):
        return stale

    return get_invoice


async def test_update_from_stale_read_keeps_recorded_payment(invoice_request, monkeypatch):
    invoice = await InvoiceService.create_invoice(invoice_request)
    stale = await InvoiceService.get_invoice(str(invoice.id))
    await InvoiceService.add_payment(str(invoice.id), 50, PaymentMethod.CASH)

    monkeypatch.setattr(InvoiceService, "get_invoice", stale_reader(stale))
    with pytest.raises(ConflictException):
        await InvoiceService.update_invoice(str(invoice.id), UpdateInvoiceRequest(notes="late edit"))

    stored = await Invoice.get(invoice.id)
    assert stored.paid_amount == 50
    assert len(stored.payments) == 1
    assert stored.payment_status == PaymentStatus.PARTIAL
    assert stored.notes is None


async def test_status_change_from_stale_read_keeps_recorded_payment(invoice_request, monkeypatch):
    invoice = await InvoiceService.create_invoice(invoice_request)
    stale = await InvoiceService.get_invoice(str(invoice.id))
    await InvoiceService.add_payment(str(invoice.id), 20, PaymentMethod.CASH)

    monkeypatch.setattr(InvoiceService, "get_invoice", stale_reader(stale))
    with pytest.raises(ConflictException):
        await InvoiceService.update_status(str(invoice.id), "Sent")

    stored = await Invoice.get(invoice.id)
    assert stored.status == InvoiceStatus.DRAFT
    assert stored.paid_amount == 20


async def test_update_writes_only_invoice_fields(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)
    await InvoiceService.add_payment(str(invoice.id), 40, PaymentMethod.CASH)

    updated = await InvoiceService.update_invoice(str(invoice.id), UpdateInvoiceRequest(notes="Call before visit"))

    assert updated.notes == "Call before visit"
    assert updated.paid_amount == 40
    assert updated.balance_amount == 65
    assert len(updated.payments) == 1


async def test_payment_one_cent_over_balance_is_rejected(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)

    with pytest.raises(ValidationException):
        await InvoiceService.add_payment(str(invoice.id), 105.01, PaymentMethod.CASH)

    stored = await Invoice.get(invoice.id)
    assert stored.paid_amount == 0
    assert stored.payments == []


async def test_payment_with_repeated_idempotency_key_is_applied_once(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)

    await InvoiceService.add_payment(str(invoice.id), 30, PaymentMethod.DEBIT_CARD, idempotency_key="pay-1")
    again = await InvoiceService.add_payment(
        str(invoice.id), 30, PaymentMethod.DEBIT_CARD, idempotency_key="pay-1"
    )

    assert again.paid_amount == 30
    assert len(again.payments) == 1


async def test_concurrent_payment_is_detected(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)
    stale = await InvoiceService.get_invoice(str(invoice.id))

    await InvoiceService.add_payment(str(invoice.id), 10, PaymentMethod.CASH)

    previous_paid = stale.paid_amount
    stale.add_payment(20, PaymentMethod.CASH)
    with pytest.raises(ConflictException):
        await InvoiceService._persist_payment(stale, previous_paid)

    stored = await Invoice.get(invoice.id)
    assert stored.paid_amount == 10


async def test_update_recomputes_financials(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)

    updated = await InvoiceService.update_invoice(
        str(invoice.id),
        UpdateInvoiceRequest(
            items=[
                InvoiceItemRequest(description="Consultation", quantity=1, unit_price=100),
                InvoiceItemRequest(description="Blood panel", quantity=2, unit_price=25),
            ],
            notes="Added lab work",
        ),
    )

    assert updated.subtotal == 150
    assert updated.tax_amount == 15
    assert updated.total_amount == 160
    assert updated.balance_amount == 160
    assert updated.notes == "Added lab work"
    assert_financials_consistent(updated)


async def test_update_status_transitions(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)
    invoice_id = str(invoice.id)

    sent = await InvoiceService.update_status(invoice_id, "Sent")
    assert sent.status == InvoiceStatus.SENT

    paid = await InvoiceService.update_status(
        invoice_id, "Paid", payment_method=PaymentMethod.BANK_TRANSFER, payment_reference="WIRE-9"
    )
    assert paid.status == InvoiceStatus.PAID
    assert paid.paid_amount == 105
    assert paid.balance_amount == 0
    assert paid.payment_status == PaymentStatus.PAID
    assert paid.payment_reference == "WIRE-9"


async def test_overdue_status_cannot_be_set(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)

    with pytest.raises(ValidationException):
        await InvoiceService.update_status(str(invoice.id), "Overdue")


async def test_cancelled_invoice_rejects_payment(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)
    await InvoiceService.update_status(str(invoice.id), "Cancelled")

    with pytest.raises(InvalidStateException):
        await InvoiceService.add_payment(str(invoice.id), 10, PaymentMethod.CASH)


async def test_find_overdue(invoice_request):
    invoice_request.due_date = utcnow() - timedelta(days=1)
    overdue = await InvoiceService.create_invoice(invoice_request)
    await InvoiceService.update_status(str(overdue.id), "Sent")

    invoice_request.due_date = utcnow() + timedelta(days=10)
    await InvoiceService.create_invoice(invoice_request)

    results = await InvoiceService.find_overdue()
    assert [inv.id for inv in results] == [overdue.id]
    assert results[0].is_overdue is True
    assert results[0].days_overdue >= 1

    await InvoiceService.update_status(str(overdue.id), "Paid")
    assert await InvoiceService.find_overdue() == []


async def test_find_by_date_range(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)
    now = utcnow()

    inside = await InvoiceService.find_by_date_range(now - timedelta(days=1), now + timedelta(days=1))
    outside = await InvoiceService.find_by_date_range(now - timedelta(days=10), now - timedelta(days=5))

    assert [inv.id for inv in inside] == [invoice.id]
    assert outside == []

    with pytest.raises(ValidationException):
        await InvoiceService.find_by_date_range(now, now - timedelta(days=1))


async def test_list_invoices_search_and_pagination(invoice_request):
    for _ in range(3):
        await InvoiceService.create_invoice(invoice_request)

    invoices, total = await InvoiceService.list_invoices(search="sarah", page=1, limit=2)
    assert total == 3
    assert len(invoices) == 2

    invoices, total = await InvoiceService.list_invoices(search="nobody")
    assert total == 0


async def test_get_invoice_from_another_clinic_is_forbidden(invoice_request):
    invoice = await InvoiceService.create_invoice(invoice_request)

    with pytest.raises(ForbiddenException):
        await InvoiceService.get_invoice(str(invoice.id), "clinic_2")
    with pytest.raises(NotFoundException):
        await InvoiceService.get_invoice("not-an-id")


async def test_delete_invoice(invoice_request):
    draft = await InvoiceService.create_invoice(invoice_request)
    await InvoiceService.delete_invoice(str(draft.id))
    assert await Invoice.get(draft.id) is None

    paid = await InvoiceService.create_invoice(invoice_request)
    await InvoiceService.update_status(str(paid.id), "Paid")
    with pytest.raises(InvalidStateException):
        await InvoiceService.delete_invoice(str(paid.id))


async def test_stats(invoice_request):
    first = await InvoiceService.create_invoice(invoice_request)
    await InvoiceService.create_invoice(invoice_request)
    await InvoiceService.add_payment(str(first.id), 50, PaymentMethod.CASH)

    stats = await InvoiceService.get_stats()

    assert stats.total_invoices == 2
    assert stats.pending_invoices == 2
    assert stats.paid_invoices == 0
    assert stats.total_revenue == 50
    assert stats.total_outstanding == 160
    assert stats.monthly_revenue[0].revenue == 50
    assert stats.monthly_revenue[0].count == 1


async def test_find_by_patient_and_status(invoice_request, patient):
    invoice = await InvoiceService.create_invoice(invoice_request)

    by_patient = await InvoiceService.find_by_patient(str(patient.id))
    drafts = await InvoiceService.find_by_status(InvoiceStatus.DRAFT)

    assert [inv.id for inv in by_patient] == [invoice.id]
    assert [inv.id for inv in drafts] == [invoice.id]
