# Invoices Feature - Service

import re
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, List, Tuple
from bson import ObjectId
from bson.errors import InvalidId
from beanie.operators import Set, In, NotIn, Or, RegEx
from beanie.odm.queries.update import UpdateResponse
from pymongo.errors import DuplicateKeyError
from clinic_emr.config import settings
from clinic_emr.features.invoices.models import (
    CLOSED_STATUSES,
    OVERDUE_LABEL,
    Invoice,
    InvoiceStatus,
    PaymentMethod,
)
from clinic_emr.features.invoices.schemas import (
    CreateInvoiceRequest,
    UpdateInvoiceRequest,
    InvoiceResponse,
    InvoiceStatsResponse,
    MonthlyRevenue,
)
from clinic_emr.features.patients.service import PatientService
from clinic_emr.models.counter import next_sequence
from clinic_emr.core.logging import logger
from clinic_emr.shared.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from clinic_emr.shared.models import utcnow


INVOICE_SEQUENCE = "invoice_number"
MAX_NUMBER_ATTEMPTS = 3

# Fields that may not be cleared through an update
NON_NULLABLE_UPDATES = {"due_date", "terms", "items", "tax_rate", "discount_amount"}

# Field groups written by each kind of mutation; nothing else is rewritten
DERIVED_FIELDS = ("subtotal", "tax_amount", "total_amount", "balance_amount", "payment_status", "updated_at")
EDITABLE_FIELDS = (
    "due_date", "terms", "items", "tax_rate", "discount_amount",
    "payment_method", "insurance", "notes", "internal_notes",
)
PAYMENT_FIELDS = (
    "status", "paid_amount", "balance_amount", "payment_status", "payment_method",
    "payment_date", "payment_reference", "payments", "updated_at",
)
STATUS_FIELDS = ("status", "updated_at")


class InvoiceService:
    """Service class for invoice operations."""

    @staticmethod
    def _scope(clinic_id: Optional[str]) -> list:
        return [Invoice.clinic_id == clinic_id] if clinic_id else []

    @staticmethod
    def _overdue_conditions(now: datetime) -> list:
        return [Invoice.due_date < now, NotIn(Invoice.status, list(CLOSED_STATUSES))]

    @staticmethod
    async def generate_invoice_number() -> str:
        """Next invoice number, e.g. INV-2024-000042, from an atomic counter."""
        sequence = await next_sequence(INVOICE_SEQUENCE)
        return f"INV-{utcnow().year}-{sequence:06d}"

    @staticmethod
    async def create_invoice(request: CreateInvoiceRequest, clinic_id: Optional[str] = None) -> Invoice:
        """
        Create a Draft invoice for a patient.

        Args:
            request: Invoice creation data
            clinic_id: Clinic of the acting user (None for super admins)

        Returns:
            The persisted invoice with computed financials

        Raises:
            NotFoundException: If the patient does not exist
            ValidationException: On empty items, a duplicate invoice number or an oversized discount
        """
        patient = await PatientService.get_patient_by_id(request.patient_id, clinic_id)

        items = [item.to_item() for item in request.items]
        if not items:
            raise ValidationException("At least one item is required")

        if request.invoice_number:
            existing = await Invoice.find_one(Invoice.invoice_number == request.invoice_number)
            if existing:
                raise ValidationException("Invoice number already exists")

        for _ in range(MAX_NUMBER_ATTEMPTS):
            invoice = Invoice(
                invoice_number=request.invoice_number or await InvoiceService.generate_invoice_number(),
                patient_id=str(patient.id),
                patient_name=request.patient_name or patient.name,
                clinic_id=patient.clinic_id,
                due_date=request.due_date,
                terms=request.terms or settings.INVOICE_DEFAULT_TERMS,
                items=items,
                tax_rate=request.tax_rate,
                discount_amount=request.discount_amount,
                payment_method=request.payment_method,
                insurance=request.insurance,
                notes=request.notes,
                internal_notes=request.internal_notes,
            )
            invoice.recalculate()

            try:
                await invoice.insert()
            except DuplicateKeyError:
                if request.invoice_number:
                    raise ValidationException("Invoice number already exists")
                logger.warning(f"Invoice number {invoice.invoice_number} already taken, allocating another")
                continue

            logger.info(
                f"Created invoice {invoice.invoice_number} for patient {invoice.patient_id} "
                f"(total={invoice.total_amount})"
            )
            return invoice

        raise ConflictException("Could not allocate a unique invoice number")

    @staticmethod
    async def get_invoice(invoice_id: str, clinic_id: Optional[str] = None) -> Invoice:
        """
        Get an invoice by id with clinic access check.

        Raises:
            NotFoundException: If the invoice does not exist
            ForbiddenException: If it belongs to another clinic
        """
        try:
            invoice = await Invoice.get(ObjectId(invoice_id))
        except (InvalidId, TypeError):
            raise NotFoundException("Invoice not found")

        if not invoice:
            raise NotFoundException("Invoice not found")

        if clinic_id and invoice.clinic_id != clinic_id:
            raise ForbiddenException("You don't have access to this invoice")

        return invoice

    @staticmethod
    async def list_invoices(
        clinic_id: Optional[str] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Invoice], int]:
        """List invoices newest first, returning the page and the total match count."""
        conditions = InvoiceService._scope(clinic_id)

        if status == OVERDUE_LABEL:
            conditions.extend(InvoiceService._overdue_conditions(utcnow()))
        elif status:
            conditions.append(Invoice.status == status)
        if payment_status:
            conditions.append(Invoice.payment_status == payment_status)
        if search:
            pattern = re.escape(search)
            conditions.append(Or(
                RegEx(Invoice.patient_name, pattern, options="i"),
                RegEx(Invoice.invoice_number, pattern, options="i"),
            ))
        if start_date and end_date:
            conditions.extend([Invoice.invoice_date >= start_date, Invoice.invoice_date <= end_date])

        query = Invoice.find(*conditions).sort(-Invoice.invoice_date)

        total = await query.count()
        invoices = await query.skip((page - 1) * limit).limit(limit).to_list()

        return invoices, total

    @staticmethod
    async def update_invoice(
        invoice_id: str,
        request: UpdateInvoiceRequest,
        clinic_id: Optional[str] = None,
    ) -> Invoice:
        """
        Update the mutable fields of an invoice and recompute its financials.

        Raises:
            InvalidStateException: If the invoice is settled
            ConflictException: If a payment was recorded since the invoice was read
        """
        invoice = await InvoiceService.get_invoice(invoice_id, clinic_id)

        if invoice.is_settled:
            raise InvalidStateException("Cannot update a paid invoice")

        previous_paid = invoice.paid_amount
        update_dict = request.model_dump(exclude_unset=True)

        for field, value in update_dict.items():
            if value is None and field in NON_NULLABLE_UPDATES:
                continue
            if field == "items":
                value = [item.to_item() for item in request.items]
            elif field == "insurance":
                value = request.insurance
            setattr(invoice, field, value)

        invoice.update_timestamp()
        invoice.recalculate()
        invoice = await InvoiceService._compare_and_set(
            invoice, previous_paid, EDITABLE_FIELDS + DERIVED_FIELDS
        )

        logger.info(f"Updated invoice {invoice.invoice_number} ({', '.join(update_dict) or 'no fields'})")
        return invoice

    @staticmethod
    async def _compare_and_set(invoice: Invoice, previous_paid: float, fields: Tuple[str, ...]) -> Invoice:
        """
        Write the given fields only if nobody changed paid_amount since the invoice was read.

        Raises:
            ConflictException: If a concurrent payment won the race
        """
        updated = await Invoice.find_one(
            Invoice.id == invoice.id,
            Invoice.paid_amount == previous_paid,
        ).update(
            Set({field: getattr(invoice, field) for field in fields}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

        if updated is None:
            logger.warning(f"Concurrent payment detected on invoice {invoice.invoice_number}")
            raise ConflictException("Invoice was modified by another request, please retry")

        return updated

    @staticmethod
    async def _persist_payment(invoice: Invoice, previous_paid: float) -> Invoice:
        return await InvoiceService._compare_and_set(invoice, previous_paid, PAYMENT_FIELDS)

    @staticmethod
    async def update_status(
        invoice_id: str,
        status: str,
        payment_method: Optional[PaymentMethod] = None,
        payment_reference: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> Invoice:
        """
        Apply an explicit lifecycle transition.

        Sent sends the invoice, Paid settles it in full, Cancelled cancels it,
        Draft is assigned as is. Overdue is derived from the due date and is rejected.
        """
        if status == OVERDUE_LABEL:
            raise ValidationException("Overdue is derived from the due date and cannot be set directly")

        invoice = await InvoiceService.get_invoice(invoice_id, clinic_id)
        new_status = InvoiceStatus(status)
        previous_paid = invoice.paid_amount

        if new_status == InvoiceStatus.PAID:
            invoice.mark_as_paid(method=payment_method, reference=payment_reference)
            invoice.status = InvoiceStatus.PAID
            invoice = await InvoiceService._persist_payment(invoice, previous_paid)
        else:
            if new_status == InvoiceStatus.SENT:
                invoice.send()
            elif new_status == InvoiceStatus.CANCELLED:
                invoice.cancel()
            else:
                invoice.status = new_status
                invoice.update_timestamp()
            invoice = await InvoiceService._compare_and_set(invoice, previous_paid, STATUS_FIELDS)

        logger.info(f"Invoice {invoice.invoice_number} status -> {invoice.status.value}")
        return invoice

    @staticmethod
    async def add_payment(
        invoice_id: str,
        amount: float,
        method: Optional[PaymentMethod],
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> Invoice:
        """
        Record a payment against the remaining balance.

        A retried request carrying an idempotency key that is already recorded
        returns the invoice unchanged.

        Raises:
            ValidationException: On a non-positive amount, missing method or overpayment
            ConflictException: If another payment was written concurrently
        """
        invoice = await InvoiceService.get_invoice(invoice_id, clinic_id)

        if idempotency_key and invoice.has_payment(idempotency_key):
            logger.info(f"Payment {idempotency_key} already applied to invoice {invoice.invoice_number}")
            return invoice

        previous_paid = invoice.paid_amount
        invoice.add_payment(amount, method, reference=reference, idempotency_key=idempotency_key)
        invoice = await InvoiceService._persist_payment(invoice, previous_paid)

        logger.info(
            f"Payment of {amount} ({method.value if method else '-'}) applied to invoice "
            f"{invoice.invoice_number}; balance {invoice.balance_amount}"
        )
        return invoice

    @staticmethod
    async def delete_invoice(invoice_id: str, clinic_id: Optional[str] = None) -> None:
        """Hard delete an invoice. Settled invoices are kept."""
        invoice = await InvoiceService.get_invoice(invoice_id, clinic_id)

        if invoice.is_settled:
            raise InvalidStateException("Cannot delete a paid invoice")

        await invoice.delete()
        logger.info(f"Deleted invoice {invoice.invoice_number}")

    @staticmethod
    async def find_overdue(clinic_id: Optional[str] = None) -> List[Invoice]:
        """Open invoices whose due date has passed, oldest due first."""
        conditions = InvoiceService._scope(clinic_id) + InvoiceService._overdue_conditions(utcnow())
        return await Invoice.find(*conditions).sort(+Invoice.due_date).to_list()

    @staticmethod
    async def find_by_date_range(
        start_date: datetime,
        end_date: datetime,
        clinic_id: Optional[str] = None,
    ) -> List[Invoice]:
        """Invoices whose invoice_date falls in [start_date, end_date]."""
        if start_date > end_date:
            raise ValidationException("Start date must not be after end date")

        conditions = InvoiceService._scope(clinic_id) + [
            Invoice.invoice_date >= start_date,
            Invoice.invoice_date <= end_date,
        ]
        return await Invoice.find(*conditions).sort(-Invoice.invoice_date).to_list()

    @staticmethod
    async def find_by_status(status: InvoiceStatus, clinic_id: Optional[str] = None) -> List[Invoice]:
        conditions = InvoiceService._scope(clinic_id) + [Invoice.status == status]
        return await Invoice.find(*conditions).sort(-Invoice.invoice_date).to_list()

    @staticmethod
    async def find_by_patient(patient_id: str, clinic_id: Optional[str] = None) -> List[Invoice]:
        conditions = InvoiceService._scope(clinic_id) + [Invoice.patient_id == patient_id]
        return await Invoice.find(*conditions).sort(-Invoice.invoice_date).to_list()

    @staticmethod
    async def get_stats(clinic_id: Optional[str] = None) -> InvoiceStatsResponse:
        """
        Invoice overview statistics.

        Revenue is what was actually collected (paid amounts); outstanding is
        the balance of every invoice that is neither paid nor cancelled.
        """
        scope = InvoiceService._scope(clinic_id)
        now = utcnow()

        total_invoices = await Invoice.find(*scope).count()
        paid_invoices = await Invoice.find(*scope, Invoice.status == InvoiceStatus.PAID).count()
        pending_invoices = await Invoice.find(
            *scope, In(Invoice.status, [InvoiceStatus.DRAFT, InvoiceStatus.SENT])
        ).count()
        cancelled_invoices = await Invoice.find(*scope, Invoice.status == InvoiceStatus.CANCELLED).count()
        overdue_invoices = await Invoice.find(*scope, *InvoiceService._overdue_conditions(now)).count()

        collected = await Invoice.find(*scope, Invoice.status != InvoiceStatus.CANCELLED).to_list()
        total_revenue = round(sum(inv.paid_amount for inv in collected), 2)
        total_outstanding = round(
            sum(inv.balance_amount for inv in collected if inv.status not in CLOSED_STATUSES), 2
        )

        # Revenue per payment month over the last 12 months, newest first
        window_start = now - timedelta(days=366)
        buckets = defaultdict(lambda: [0.0, 0])
        for inv in collected:
            for payment in inv.payments:
                if payment.paid_at >= window_start:
                    bucket = buckets[(payment.paid_at.year, payment.paid_at.month)]
                    bucket[0] += payment.amount
                    bucket[1] += 1

        monthly_revenue = [
            MonthlyRevenue(year=year, month=month, revenue=round(revenue, 2), count=count)
            for (year, month), (revenue, count) in sorted(buckets.items(), reverse=True)
        ][:12]

        return InvoiceStatsResponse(
            total_invoices=total_invoices,
            paid_invoices=paid_invoices,
            pending_invoices=pending_invoices,
            overdue_invoices=overdue_invoices,
            cancelled_invoices=cancelled_invoices,
            total_revenue=total_revenue,
            total_outstanding=total_outstanding,
            monthly_revenue=monthly_revenue,
        )

    @staticmethod
    def invoice_to_response(invoice: Invoice) -> InvoiceResponse:
        """Convert Invoice document to response schema."""
        return InvoiceResponse(
            id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            patient_id=invoice.patient_id,
            patient_name=invoice.patient_name,
            clinic_id=invoice.clinic_id,
            invoice_date=invoice.invoice_date,
            due_date=invoice.due_date,
            terms=invoice.terms,
            status=invoice.status.value,
            display_status=invoice.display_status,
            items=invoice.items,
            subtotal=invoice.subtotal,
            tax_rate=invoice.tax_rate,
            tax_amount=invoice.tax_amount,
            discount_amount=invoice.discount_amount,
            total_amount=invoice.total_amount,
            payment_status=invoice.payment_status.value,
            payment_method=invoice.payment_method.value if invoice.payment_method else None,
            payment_date=invoice.payment_date,
            payment_reference=invoice.payment_reference,
            paid_amount=invoice.paid_amount,
            balance_amount=invoice.balance_amount,
            payments=invoice.payments,
            insurance=invoice.insurance,
            notes=invoice.notes,
            internal_notes=invoice.internal_notes,
            is_overdue=invoice.is_overdue,
            days_overdue=invoice.days_overdue,
            created_at=invoice.created_at,
            updated_at=invoice.updated_at,
        )
