# Referrals Feature - Schemas

from typing import Optional, List, Any
from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from clinic_emr.features.referrals.models import (
    Medication,
    ReferralStatus,
    ReferralUrgency,
    ReferringProvider,
    ShareableLink,
    SpecialistAddress,
    SpecialistContact,
)
from clinic_emr.shared.models import to_naive_utc
from clinic_emr.shared.schemas import Pagination


# Urgency labels still sent by older clients
LEGACY_URGENCY = {
    "Low": ReferralUrgency.ROUTINE.value,
    "Medium": ReferralUrgency.ROUTINE.value,
    "High": ReferralUrgency.URGENT.value,
}


def normalize_urgency(value: Any) -> Any:
    if isinstance(value, str):
        return LEGACY_URGENCY.get(value, value)
    return value


# ============== Create / Update ==============

class CreateReferralRequest(BaseModel):
    """Request schema for creating a referral."""
    patient_id: str = Field(..., min_length=1)
    patient_name: str = Field(..., min_length=1, max_length=200)
    specialist_name: str = Field(..., min_length=1, max_length=200)
    specialty: str = Field(..., min_length=1, max_length=100)
    reason: str = Field(..., min_length=1, max_length=1000)
    urgency: ReferralUrgency = ReferralUrgency.ROUTINE
    specialist_contact: Optional[SpecialistContact] = None
    specialist_address: Optional[SpecialistAddress] = None
    referral_date: Optional[datetime] = None
    preferred_date: Optional[datetime] = None
    preferred_time: Optional[str] = Field(None, max_length=50)
    diagnosis: Optional[str] = Field(None, max_length=500)
    symptoms: Optional[str] = Field(None, max_length=1000)
    treatment_history: Optional[str] = Field(None, max_length=1000)
    medications: List[Medication] = []
    provider_notes: Optional[str] = Field(None, max_length=1000)
    special_instructions: Optional[str] = Field(None, max_length=1000)
    follow_up_required: bool = True
    follow_up_date: Optional[datetime] = None
    follow_up_notes: Optional[str] = Field(None, max_length=500)

    @field_validator("urgency", mode="before")
    @classmethod
    def map_legacy_urgency(cls, v):
        return normalize_urgency(v)

    @field_validator("referral_date", "preferred_date", "follow_up_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class UpdateReferralRequest(BaseModel):
    """Request schema for updating descriptive referral fields. Status has its own endpoint."""
    patient_name: Optional[str] = Field(None, min_length=1, max_length=200)
    specialist_name: Optional[str] = Field(None, min_length=1, max_length=200)
    specialty: Optional[str] = Field(None, min_length=1, max_length=100)
    reason: Optional[str] = Field(None, min_length=1, max_length=1000)
    urgency: Optional[ReferralUrgency] = None
    specialist_contact: Optional[SpecialistContact] = None
    specialist_address: Optional[SpecialistAddress] = None
    preferred_date: Optional[datetime] = None
    preferred_time: Optional[str] = Field(None, max_length=50)
    diagnosis: Optional[str] = Field(None, max_length=500)
    symptoms: Optional[str] = Field(None, max_length=1000)
    treatment_history: Optional[str] = Field(None, max_length=1000)
    provider_notes: Optional[str] = Field(None, max_length=1000)
    special_instructions: Optional[str] = Field(None, max_length=1000)
    follow_up_required: Optional[bool] = None
    follow_up_date: Optional[datetime] = None
    follow_up_notes: Optional[str] = Field(None, max_length=500)

    @field_validator("urgency", mode="before")
    @classmethod
    def map_legacy_urgency(cls, v):
        return normalize_urgency(v)

    @field_validator("preferred_date", "follow_up_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class UpdateReferralStatusRequest(BaseModel):
    status: ReferralStatus
    notes: Optional[str] = Field(None, max_length=1000)


class ScheduleReferralRequest(BaseModel):
    appointment_date: datetime

    @field_validator("appointment_date")
    @classmethod
    def normalize_appointment_date(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class CompleteReferralRequest(BaseModel):
    outcome: Optional[str] = Field(None, max_length=1000)
    recommendations: Optional[List[str]] = None


class AddRecommendationRequest(BaseModel):
    recommendation: str = Field(..., min_length=1, max_length=1000)


# ============== Responses ==============

class ReferralResponse(BaseModel):
    """Response schema for referral data, including derived fields."""
    id: str
    patient_id: str
    patient_name: str
    clinic_id: Optional[str] = None
    specialist_name: str
    specialty: str
    specialist_contact: SpecialistContact
    specialist_address: SpecialistAddress
    full_specialist_address: str
    referral_date: datetime
    appointment_date: Optional[datetime] = None
    preferred_date: Optional[datetime] = None
    preferred_time: Optional[str] = None
    reason: str
    urgency: str
    status: str
    status_notes: Optional[str] = None
    special_instructions: Optional[str] = None
    is_urgent: bool
    is_pending: bool
    diagnosis: Optional[str] = None
    symptoms: Optional[str] = None
    treatment_history: Optional[str] = None
    medications: List[Medication] = []
    referred_by: Optional[str] = None
    referring_provider: Optional[ReferringProvider] = None
    provider_notes: Optional[str] = None
    follow_up_required: bool
    follow_up_date: Optional[datetime] = None
    follow_up_notes: Optional[str] = None
    outcome: Optional[str] = None
    recommendations: List[str] = []
    shareable_link: Optional[ShareableLink] = None
    created_at: datetime
    updated_at: datetime


class ReferralListResponse(BaseModel):
    referrals: List[ReferralResponse]
    pagination: Pagination


class SharedReferralResponse(BaseModel):
    """What an unauthenticated holder of a shareable link may see."""
    patient_name: str
    specialist_name: str
    specialty: str
    specialist_contact: SpecialistContact
    reason: str
    urgency: str
    status: str
    referral_date: datetime
    appointment_date: Optional[datetime] = None
    referring_provider: Optional[str] = None


class CountBucket(BaseModel):
    name: str
    count: int


class ReferralStatsResponse(BaseModel):
    """Referral overview statistics."""
    total_referrals: int
    pending_referrals: int
    approved_referrals: int
    scheduled_referrals: int
    completed_referrals: int
    cancelled_referrals: int
    urgent_referrals: int
    specialties: List[CountBucket]
    urgency_distribution: List[CountBucket]
