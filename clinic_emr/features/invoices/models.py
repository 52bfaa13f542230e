# Invoices Feature - Models

from datetime import datetime
from enum import Enum
from typing import Optional, List
from beanie import Document, Indexed, before_event, Insert, Replace, Save, SaveChanges
from pydantic import BaseModel, Field
from clinic_emr.features.invoices.calculations import (
    ZERO,
    compute_totals,
    days_overdue as count_days_overdue,
    derive_payment_status,
    line_total,
    to_money,
)
from clinic_emr.shared.exceptions import InvalidStateException, ValidationException
from clinic_emr.shared.models import TimestampMixin, utcnow


class InvoiceStatus(str, Enum):
    """Persisted lifecycle state of an invoice."""
    DRAFT = "Draft"
    SENT = "Sent"
    PAID = "Paid"
    CANCELLED = "Cancelled"


# Shown instead of the persisted status while an open invoice is past due; never stored
OVERDUE_LABEL = "Overdue"

CLOSED_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)


class PaymentStatus(str, Enum):
    """Financial settlement state, derived from paid vs total."""
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"
    REFUNDED = "Refunded"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    CHECK = "Check"
    BANK_TRANSFER = "Bank Transfer"
    INSURANCE = "Insurance"


class InvoiceItem(BaseModel):
    """A billed line. `total` is always quantity * unit_price."""
    description: str = Field(..., min_length=1)
    quantity: float = Field(..., ge=0.01)
    unit_price: float = Field(..., ge=0)
    total: float = Field(0, ge=0)


class InsuranceInfo(BaseModel):
    provider: Optional[str] = None
    policy_number: Optional[str] = None
    claim_number: Optional[str] = None
    coverage_amount: Optional[float] = Field(None, ge=0)


class PaymentRecord(BaseModel):
    """One payment applied to an invoice."""
    amount: float
    method: Optional[PaymentMethod] = None
    reference: Optional[str] = None
    paid_at: datetime
    idempotency_key: Optional[str] = None


class Invoice(Document, TimestampMixin):
    """
    Invoice document model.

    Financial fields (subtotal, tax_amount, total_amount, balance_amount,
    payment_status) are derived from the items, rates and paid amount and are
    recomputed before every write.
    """

    # Identity
    invoice_number: Indexed(str, unique=True)  # INV-<year>-<000001>

    # Patient (weak reference) and tenant
    patient_id: Indexed(str)
    patient_name: str
    clinic_id: Optional[str] = None

    # Invoice details
    invoice_date: datetime = Field(default_factory=utcnow)
    due_date: datetime
    terms: str = "Net 30"
    status: InvoiceStatus = InvoiceStatus.DRAFT

    # Items and services
    items: List[InvoiceItem] = Field(default_factory=list)

    # Financial information
    subtotal: float = 0
    tax_rate: float = Field(0, ge=0, le=100)
    tax_amount: float = 0
    discount_amount: float = Field(0, ge=0)
    total_amount: float = 0

    # Payment information
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_method: Optional[PaymentMethod] = None
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    paid_amount: float = Field(0, ge=0)
    balance_amount: float = 0
    payments: List[PaymentRecord] = Field(default_factory=list)
    insurance: Optional[InsuranceInfo] = None

    # Notes
    notes: Optional[str] = Field(None, max_length=1000)
    internal_notes: Optional[str] = Field(None, max_length=500)

    class Settings:
        name = "invoices"
        use_state_management = True
        indexes = [
            "status",
            "payment_status",
            [("invoice_date", -1)],
            [("due_date", 1)],
            [("clinic_id", 1), ("created_at", -1)],
        ]

    # ---- derived values ----

    @property
    def is_overdue(self) -> bool:
        return self.due_date < utcnow() and self.status not in CLOSED_STATUSES

    @property
    def days_overdue(self) -> int:
        if not self.is_overdue:
            return 0
        return count_days_overdue(self.due_date, utcnow())

    @property
    def display_status(self) -> str:
        """Lifecycle status as shown to users, with the derived Overdue label."""
        return OVERDUE_LABEL if self.is_overdue else self.status.value

    @property
    def is_settled(self) -> bool:
        """Paid in full, whether through update_status(Paid) or accumulated payments. Settled invoices are locked."""
        return self.status == InvoiceStatus.PAID or self.payment_status == PaymentStatus.PAID

    @property
    def remaining_balance(self) -> float:
        return float(to_money(self.total_amount) - to_money(self.paid_amount))

    def has_payment(self, idempotency_key: str) -> bool:
        return any(p.idempotency_key == idempotency_key for p in self.payments)

    def recalculate(self) -> None:
        """Recompute item totals and every derived financial field."""
        for item in self.items:
            item.total = float(line_total(item.quantity, item.unit_price))

        totals = compute_totals(
            (item.total for item in self.items),
            self.tax_rate,
            self.discount_amount,
            self.paid_amount,
        )
        if totals.total_amount < ZERO:
            raise ValidationException("Discount cannot exceed the invoice subtotal plus tax")
        if totals.balance_amount < ZERO:
            raise ValidationException("Invoice total cannot be lower than the amount already paid")

        self.subtotal = float(totals.subtotal)
        self.tax_amount = float(totals.tax_amount)
        self.total_amount = float(totals.total_amount)
        self.balance_amount = float(totals.balance_amount)
        self.payment_status = PaymentStatus(derive_payment_status(self.paid_amount, self.total_amount))

    @before_event(Insert, Replace, Save, SaveChanges)
    def recalculate_before_write(self):
        self.recalculate()

    # ---- lifecycle ----

    def send(self) -> None:
        self.status = InvoiceStatus.SENT
        self.update_timestamp()

    def cancel(self) -> None:
        self.status = InvoiceStatus.CANCELLED
        self.update_timestamp()

    def mark_as_paid(
        self,
        amount: Optional[float] = None,
        method: Optional[PaymentMethod] = None,
        date: Optional[datetime] = None,
        reference: Optional[str] = None,
    ) -> None:
        """
        Settle the invoice. Without an amount the full total is considered paid.

        payment_status is re-derived from paid vs total, so a zero-total invoice
        stays Unpaid here; callers that need the lifecycle closed set status to Paid.
        """
        if self.status == InvoiceStatus.CANCELLED:
            raise InvalidStateException("Cannot record a payment on a cancelled invoice")

        paid_at = date or utcnow()
        new_paid = to_money(amount if amount is not None else self.total_amount)
        settled_now = new_paid - to_money(self.paid_amount)

        if settled_now > ZERO:
            self.payments.append(PaymentRecord(
                amount=float(settled_now),
                method=method,
                reference=reference,
                paid_at=paid_at,
            ))

        self.paid_amount = float(new_paid)
        self.payment_method = method
        self.payment_date = paid_at
        self.payment_reference = reference
        self.update_timestamp()
        self.recalculate()

    def add_payment(
        self,
        amount: float,
        method: Optional[PaymentMethod],
        date: Optional[datetime] = None,
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> None:
        """Apply a (partial) payment against the remaining balance."""
        if self.status == InvoiceStatus.CANCELLED:
            raise InvalidStateException("Cannot record a payment on a cancelled invoice")
        if amount is None or to_money(amount) <= ZERO:
            raise ValidationException("Payment amount must be greater than zero")
        if not method:
            raise ValidationException("Payment method is required")

        payment = to_money(amount)
        remaining = to_money(self.total_amount) - to_money(self.paid_amount)
        if payment > remaining:
            raise ValidationException("Payment amount exceeds remaining balance")

        paid_at = date or utcnow()
        self.payments.append(PaymentRecord(
            amount=float(payment),
            method=method,
            reference=reference,
            paid_at=paid_at,
            idempotency_key=idempotency_key,
        ))
        self.paid_amount = float(to_money(self.paid_amount) + payment)
        self.payment_method = method
        self.payment_date = paid_at
        if reference:
            self.payment_reference = reference
        self.update_timestamp()
        self.recalculate()

    class Config:
        json_schema_extra = {
            "example": {
                "invoice_number": "INV-2024-000001",
                "patient_id": "665f1c2e9b1e8a0012345678",
                "patient_name": "Sarah Johnson",
                "due_date": "2024-02-15T00:00:00",
                "items": [
                    {"description": "Consultation", "quantity": 1, "unit_price": 100, "total": 100}
                ],
                "tax_rate": 10,
                "discount_amount": 5,
            }
        }
