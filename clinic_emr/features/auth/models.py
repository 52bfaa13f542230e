from beanie import Document, Indexed
from pydantic import EmailStr
from typing import Optional, Literal
from clinic_emr.shared.models import TimestampMixin


UserRole = Literal[
    "super_master_admin",
    "clinic_admin",
    "doctor",
    "nurse",
    "billing",
    "pharmacy",
    "patient",
]

ADMIN_ROLES = ("super_master_admin", "clinic_admin")


class User(Document, TimestampMixin):
    """User document model. Every authenticated actor is a User."""

    email: Indexed(EmailStr, unique=True)
    password_hash: str
    name: str
    phone: Optional[str] = None
    is_active: bool = True

    # Role and clinic association (super master admins have no clinic)
    role: UserRole = "clinic_admin"
    clinic_id: Optional[str] = None

    @property
    def is_doctor(self) -> bool:
        return self.role == "doctor"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    class Settings:
        name = "users"
        use_state_management = True

    class Config:
        json_schema_extra = {
            "example": {
                "email": "dr.johnson@clinic.com",
                "name": "Dr. Emily Johnson",
                "phone": "+1234567890",
                "role": "doctor",
                "clinic_id": "clinic_123",
            }
        }
