# Patient Management Feature - Schemas

from typing import Optional, List
from datetime import date, datetime
from pydantic import BaseModel, EmailStr, Field


class CreatePatientRequest(BaseModel):
    """Request schema for creating a new patient."""
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, pattern=r'^(Male|Female|Other)$')
    address: Optional[str] = Field(None, max_length=500)
    assigned_doctors: List[str] = Field(default_factory=list)


class AssignDoctorRequest(BaseModel):
    """Request schema for assigning a doctor to a patient."""
    doctor_id: str = Field(..., min_length=1)


class PatientResponse(BaseModel):
    """Response schema for patient data."""
    id: str
    clinic_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    assigned_doctors: List[str] = []
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PatientListResponse(BaseModel):
    """Response schema for list of patients."""
    patients: List[PatientResponse]
    total: int
