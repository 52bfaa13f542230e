# Invoices Feature - Schemas

from typing import Optional, List, Literal
from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from clinic_emr.features.invoices.models import (
    InvoiceItem,
    InsuranceInfo,
    PaymentMethod,
    PaymentRecord,
)
from clinic_emr.shared.models import to_naive_utc
from clinic_emr.shared.schemas import Pagination


# ============== Items ==============

class InvoiceItemRequest(BaseModel):
    """Line item as sent by clients. Any client-side total is ignored."""
    description: str = Field(..., min_length=1, max_length=500)
    quantity: float = Field(..., ge=0.01)
    unit_price: float = Field(..., ge=0)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Item description is required")
        return v

    def to_item(self) -> InvoiceItem:
        return InvoiceItem(description=self.description, quantity=self.quantity, unit_price=self.unit_price)


# ============== Create / Update ==============

class CreateInvoiceRequest(BaseModel):
    """Request schema for creating an invoice."""
    patient_id: str = Field(..., min_length=1)
    patient_name: Optional[str] = Field(None, min_length=1, max_length=200)
    invoice_number: Optional[str] = Field(None, min_length=1, max_length=50)
    due_date: datetime
    terms: Optional[str] = Field(None, max_length=100)
    items: List[InvoiceItemRequest] = Field(..., min_length=1)
    tax_rate: float = Field(0, ge=0, le=100)
    discount_amount: float = Field(0, ge=0)
    payment_method: Optional[PaymentMethod] = None
    insurance: Optional[InsuranceInfo] = None
    notes: Optional[str] = Field(None, max_length=1000)
    internal_notes: Optional[str] = Field(None, max_length=500)

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class UpdateInvoiceRequest(BaseModel):
    """Request schema for updating an invoice. Only these fields are mutable."""
    due_date: Optional[datetime] = None
    terms: Optional[str] = Field(None, max_length=100)
    items: Optional[List[InvoiceItemRequest]] = Field(None, min_length=1)
    tax_rate: Optional[float] = Field(None, ge=0, le=100)
    discount_amount: Optional[float] = Field(None, ge=0)
    payment_method: Optional[PaymentMethod] = None
    insurance: Optional[InsuranceInfo] = None
    notes: Optional[str] = Field(None, max_length=1000)
    internal_notes: Optional[str] = Field(None, max_length=500)

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class UpdateInvoiceStatusRequest(BaseModel):
    """Request schema for an explicit status transition."""
    status: Literal["Draft", "Sent", "Paid", "Overdue", "Cancelled"]
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = Field(None, max_length=100)


class AddPaymentRequest(BaseModel):
    """Request schema for recording a (partial) payment."""
    amount: float = Field(..., gt=0)
    method: PaymentMethod
    reference: Optional[str] = Field(None, max_length=100)
    idempotency_key: Optional[str] = Field(None, max_length=100)


# ============== Responses ==============

class InvoiceResponse(BaseModel):
    """Response schema for invoice data, including derived fields."""
    id: str
    invoice_number: str
    patient_id: str
    patient_name: str
    clinic_id: Optional[str] = None
    invoice_date: datetime
    due_date: datetime
    terms: str
    status: str
    display_status: str
    items: List[InvoiceItem]
    subtotal: float
    tax_rate: float
    tax_amount: float
    discount_amount: float
    total_amount: float
    payment_status: str
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    paid_amount: float
    balance_amount: float
    payments: List[PaymentRecord] = []
    insurance: Optional[InsuranceInfo] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    is_overdue: bool
    days_overdue: int
    created_at: datetime
    updated_at: datetime


class InvoiceListResponse(BaseModel):
    """Response schema for a page of invoices."""
    invoices: List[InvoiceResponse]
    pagination: Pagination


class MonthlyRevenue(BaseModel):
    year: int
    month: int
    revenue: float
    count: int


class InvoiceStatsResponse(BaseModel):
    """Invoice overview statistics."""
    total_invoices: int
    paid_invoices: int
    pending_invoices: int
    overdue_invoices: int
    cancelled_invoices: int
    total_revenue: float
    total_outstanding: float
    monthly_revenue: List[MonthlyRevenue]
