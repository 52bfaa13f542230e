# Invoices Feature - Router

from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, Depends, Query, status
from clinic_emr.features.auth.models import User
from clinic_emr.features.auth.dependencies import get_current_user
from clinic_emr.features.invoices.schemas import (
    CreateInvoiceRequest,
    UpdateInvoiceRequest,
    UpdateInvoiceStatusRequest,
    AddPaymentRequest,
    InvoiceResponse,
    InvoiceListResponse,
    InvoiceStatsResponse,
)
from clinic_emr.features.invoices.service import InvoiceService
from clinic_emr.shared.models import to_naive_utc
from clinic_emr.shared.schemas import MessageResponse, Pagination


router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    request: CreateInvoiceRequest,
    current_user: User = Depends(get_current_user)
):
    """
    Create a new Draft invoice.

    - **patient_id**: Patient the invoice is billed to
    - **items**: At least one line item (description, quantity, unit_price)
    - **invoice_number**: Optional; generated as INV-<year>-<sequence> when omitted
    """
    invoice = await InvoiceService.create_invoice(request, current_user.clinic_id)
    return InvoiceService.invoice_to_response(invoice)


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user)
):
    """
    List invoices, newest first.

    - **status**: Draft, Sent, Paid, Cancelled or Overdue
    - **search**: Matches patient name or invoice number
    """
    invoices, total = await InvoiceService.list_invoices(
        clinic_id=current_user.clinic_id,
        status=status,
        payment_status=payment_status,
        search=search,
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
        page=page,
        limit=limit,
    )

    return InvoiceListResponse(
        invoices=[InvoiceService.invoice_to_response(inv) for inv in invoices],
        pagination=Pagination.build(page, limit, total),
    )


# Static routes are declared before /{invoice_id}

@router.get("/overdue", response_model=List[InvoiceResponse])
async def get_overdue_invoices(current_user: User = Depends(get_current_user)):
    """Open invoices whose due date has passed."""
    invoices = await InvoiceService.find_overdue(current_user.clinic_id)
    return [InvoiceService.invoice_to_response(inv) for inv in invoices]


@router.get("/date-range", response_model=List[InvoiceResponse])
async def get_invoices_by_date_range(
    start_date: datetime,
    end_date: datetime,
    current_user: User = Depends(get_current_user)
):
    """Invoices dated within [start_date, end_date]."""
    invoices = await InvoiceService.find_by_date_range(
        to_naive_utc(start_date),
        to_naive_utc(end_date),
        current_user.clinic_id,
    )
    return [InvoiceService.invoice_to_response(inv) for inv in invoices]


@router.get("/stats/overview", response_model=InvoiceStatsResponse)
async def get_invoice_stats(current_user: User = Depends(get_current_user)):
    """Invoice counts, collected revenue, outstanding balance and monthly revenue."""
    return await InvoiceService.get_stats(current_user.clinic_id)


@router.get("/patient/{patient_id}", response_model=List[InvoiceResponse])
async def get_patient_invoices(
    patient_id: str,
    current_user: User = Depends(get_current_user)
):
    invoices = await InvoiceService.find_by_patient(patient_id, current_user.clinic_id)
    return [InvoiceService.invoice_to_response(inv) for inv in invoices]


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    current_user: User = Depends(get_current_user)
):
    invoice = await InvoiceService.get_invoice(invoice_id, current_user.clinic_id)
    return InvoiceService.invoice_to_response(invoice)


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: str,
    request: UpdateInvoiceRequest,
    current_user: User = Depends(get_current_user)
):
    """Update an unpaid invoice. Financial fields are recomputed."""
    invoice = await InvoiceService.update_invoice(invoice_id, request, current_user.clinic_id)
    return InvoiceService.invoice_to_response(invoice)


@router.put("/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: str,
    request: UpdateInvoiceStatusRequest,
    current_user: User = Depends(get_current_user)
):
    """
    Change the lifecycle status of an invoice.

    Setting **Paid** settles the invoice in full. **Overdue** cannot be set; it
    is derived from the due date.
    """
    invoice = await InvoiceService.update_status(
        invoice_id,
        request.status,
        payment_method=request.payment_method,
        payment_reference=request.payment_reference,
        clinic_id=current_user.clinic_id,
    )
    return InvoiceService.invoice_to_response(invoice)


@router.post("/{invoice_id}/payments", response_model=InvoiceResponse)
async def add_payment(
    invoice_id: str,
    request: AddPaymentRequest,
    current_user: User = Depends(get_current_user)
):
    """
    Record a payment against the remaining balance.

    - **idempotency_key**: Optional; a retried request with the same key is applied once
    """
    invoice = await InvoiceService.add_payment(
        invoice_id,
        request.amount,
        request.method,
        reference=request.reference,
        idempotency_key=request.idempotency_key,
        clinic_id=current_user.clinic_id,
    )
    return InvoiceService.invoice_to_response(invoice)


@router.delete("/{invoice_id}", response_model=MessageResponse)
async def delete_invoice(
    invoice_id: str,
    current_user: User = Depends(get_current_user)
):
    await InvoiceService.delete_invoice(invoice_id, current_user.clinic_id)
    return MessageResponse(message="Invoice deleted successfully")
