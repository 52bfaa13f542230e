# Patient Management Feature - Models

from typing import Optional, List
from datetime import date
from beanie import Document, Indexed
from pydantic import Field
from clinic_emr.shared.models import TimestampMixin


class Patient(Document, TimestampMixin):
    """Patient document model. Invoices and referrals point at it by id."""

    # Clinic association - patient belongs to one clinic
    clinic_id: Indexed(str)

    # Personal information
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None  # Male, Female, Other
    address: Optional[str] = None

    # Doctors (User ids) allowed to act on this patient's referrals
    assigned_doctors: List[str] = Field(default_factory=list)

    # Status
    is_active: bool = True

    def is_assigned_to(self, doctor_id: str) -> bool:
        return doctor_id in self.assigned_doctors

    class Settings:
        name = "patients"
        use_state_management = True
        indexes = [
            [("clinic_id", 1), ("created_at", -1)],
            "assigned_doctors",
        ]

    class Config:
        json_schema_extra = {
            "example": {
                "clinic_id": "clinic_123",
                "name": "Sarah Johnson",
                "email": "patient@email.com",
                "phone": "+1234567890",
                "date_of_birth": "1990-05-15",
                "gender": "Female",
                "assigned_doctors": ["665f1c2e9b1e8a0012345678"],
                "is_active": True
            }
        }
