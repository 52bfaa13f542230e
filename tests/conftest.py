"""Shared fixtures: in-memory MongoDB, users, patients and an API client."""

from datetime import timedelta

import pytest
from beanie import init_beanie
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from clinic_emr.database import document_models
from clinic_emr.features.auth.service import AuthService
from clinic_emr.features.invoices.schemas import CreateInvoiceRequest, InvoiceItemRequest
from clinic_emr.features.patients.models import Patient
from clinic_emr.shared.models import utcnow


CLINIC_ID = "clinic_1"
PASSWORD = "s3cret-pass"


@pytest.fixture(autouse=True)
async def db():
    client = AsyncMongoMockClient()
    database = client["clinic_emr_test"]
    await init_beanie(database=database, document_models=document_models())
    yield database


@pytest.fixture
async def admin():
    return await AuthService.create_user(
        email="admin@clinic.com",
        password=PASSWORD,
        name="Clinic Admin",
        role="clinic_admin",
        clinic_id=CLINIC_ID,
    )


@pytest.fixture
async def doctor():
    return await AuthService.create_user(
        email="dr.johnson@clinic.com",
        password=PASSWORD,
        name="Dr. Emily Johnson",
        role="doctor",
        clinic_id=CLINIC_ID,
        phone="+1234567890",
    )


@pytest.fixture
async def other_doctor():
    return await AuthService.create_user(
        email="dr.lee@clinic.com",
        password=PASSWORD,
        name="Dr. Lee",
        role="doctor",
        clinic_id=CLINIC_ID,
    )


@pytest.fixture
async def patient(doctor):
    patient = Patient(
        clinic_id=CLINIC_ID,
        name="Sarah Johnson",
        email="sarah@example.com",
        assigned_doctors=[str(doctor.id)],
    )
    await patient.insert()
    return patient


@pytest.fixture
def invoice_request(patient):
    """Consultation of 100 with 10% tax and 5 discount, due in 30 days."""
    return CreateInvoiceRequest(
        patient_id=str(patient.id),
        due_date=utcnow() + timedelta(days=30),
        items=[InvoiceItemRequest(description="Consultation", quantity=1, unit_price=100)],
        tax_rate=10,
        discount_amount=5,
    )


@pytest.fixture
async def client():
    from clinic_emr.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    """Bearer header builder for a user."""

    def build(user) -> dict:
        return {"Authorization": f"Bearer {AuthService.issue_token(user)}"}

    return build
