from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
from clinic_emr.features.auth.models import UserRole


# Request Schemas
class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr
    password: str


class CreateUserRequest(BaseModel):
    """Create user request schema (admins only)."""

    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = None
    role: UserRole = "doctor"
    clinic_id: Optional[str] = None


# Response Schemas
class UserResponse(BaseModel):
    """User response schema."""

    id: str
    email: EmailStr
    name: str
    phone: Optional[str] = None
    role: str
    clinic_id: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class LoginResponse(BaseModel):
    """Login response schema."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse
