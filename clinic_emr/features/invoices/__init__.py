# Invoices Feature

from clinic_emr.features.invoices.models import Invoice
from clinic_emr.features.invoices.router import router
from clinic_emr.features.invoices.service import InvoiceService

__all__ = ["Invoice", "router", "InvoiceService"]
