# Referrals Feature - Models

from datetime import datetime
from enum import Enum
from typing import Optional, List
from beanie import Document, Indexed
from pydantic import BaseModel, Field
from clinic_emr.shared.exceptions import InvalidStateException
from clinic_emr.shared.models import TimestampMixin, utcnow


class ReferralUrgency(str, Enum):
    ROUTINE = "Routine"
    URGENT = "Urgent"
    EMERGENCY = "Emergency"


class ReferralStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"


URGENT_LEVELS = (ReferralUrgency.URGENT, ReferralUrgency.EMERGENCY)

# A referral in one of these states can no longer move to another state
TERMINAL_STATUSES = (ReferralStatus.COMPLETED, ReferralStatus.CANCELLED, ReferralStatus.NO_SHOW)


class SpecialistContact(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None
    fax: Optional[str] = None


class SpecialistAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class Medication(BaseModel):
    name: str = Field(..., min_length=1)
    dosage: Optional[str] = None
    frequency: Optional[str] = None


class ReferringProvider(BaseModel):
    """Snapshot of the referring doctor taken when the referral is created."""
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class ShareableLink(BaseModel):
    """Public, revocable link to a redacted view of the referral."""
    code: str
    url: str
    generated_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None


class Referral(Document, TimestampMixin):
    """
    Referral document model.

    Tracks a patient's referral to a specialist through its status lifecycle.
    Transitions out of Completed, Cancelled or No Show are rejected.
    """

    # Patient (weak reference) and tenant
    patient_id: Indexed(str)
    patient_name: str
    clinic_id: Optional[str] = None

    # Specialist
    specialist_name: str
    specialty: Indexed(str)
    specialist_contact: SpecialistContact = Field(default_factory=SpecialistContact)
    specialist_address: SpecialistAddress = Field(default_factory=SpecialistAddress)

    # Referral details
    referral_date: datetime = Field(default_factory=utcnow)
    appointment_date: Optional[datetime] = None
    preferred_date: Optional[datetime] = None
    preferred_time: Optional[str] = None
    reason: str = Field(..., max_length=1000)
    urgency: ReferralUrgency = ReferralUrgency.ROUTINE
    status: ReferralStatus = ReferralStatus.PENDING
    status_notes: Optional[str] = None
    special_instructions: Optional[str] = None

    # Clinical information
    diagnosis: Optional[str] = Field(None, max_length=500)
    symptoms: Optional[str] = Field(None, max_length=1000)
    treatment_history: Optional[str] = Field(None, max_length=1000)
    medications: List[Medication] = Field(default_factory=list)

    # Provider
    referred_by: Optional[str] = None
    referring_provider: Optional[ReferringProvider] = None
    provider_notes: Optional[str] = Field(None, max_length=1000)

    # Follow-up
    follow_up_required: bool = True
    follow_up_date: Optional[datetime] = None
    follow_up_notes: Optional[str] = Field(None, max_length=500)

    # Outcome
    outcome: Optional[str] = Field(None, max_length=1000)
    recommendations: List[str] = Field(default_factory=list)

    # Sharing
    shareable_link: Optional[ShareableLink] = None

    class Settings:
        name = "referrals"
        use_state_management = True
        indexes = [
            "status",
            "urgency",
            "shareable_link.code",
            [("referral_date", -1)],
            [("status", 1), ("urgency", 1)],
            [("clinic_id", 1), ("created_at", -1)],
        ]

    @property
    def is_urgent(self) -> bool:
        return self.urgency in URGENT_LEVELS

    @property
    def is_pending(self) -> bool:
        return self.status == ReferralStatus.PENDING

    @property
    def full_specialist_address(self) -> str:
        addr = self.specialist_address
        if not addr.street:
            return ""
        return f"{addr.street}, {addr.city}, {addr.state} {addr.zip_code}"

    # ---- lifecycle ----

    def transition_to(self, status: ReferralStatus, notes: Optional[str] = None) -> None:
        """Move to `status`, refusing to leave a terminal state."""
        if self.status in TERMINAL_STATUSES and status != self.status:
            raise InvalidStateException(
                f"Referral is {self.status.value} and cannot be moved to {status.value}"
            )
        self.status = status
        if notes:
            self.status_notes = notes
        self.update_timestamp()

    def approve(self, notes: Optional[str] = None) -> None:
        self.transition_to(ReferralStatus.APPROVED, notes)

    def start(self, notes: Optional[str] = None) -> None:
        self.transition_to(ReferralStatus.IN_PROGRESS, notes)

    def schedule(self, appointment_date: datetime) -> None:
        self.transition_to(ReferralStatus.SCHEDULED)
        self.appointment_date = appointment_date

    def complete(self, outcome: Optional[str] = None, recommendations: Optional[List[str]] = None) -> None:
        """Mark completed; empty outcome or recommendations keep what is already recorded."""
        self.transition_to(ReferralStatus.COMPLETED)
        if outcome:
            self.outcome = outcome
        if recommendations:
            self.recommendations = list(recommendations)

    def cancel(self, notes: Optional[str] = None) -> None:
        self.transition_to(ReferralStatus.CANCELLED, notes)

    def mark_no_show(self) -> None:
        self.transition_to(ReferralStatus.NO_SHOW)

    class Config:
        json_schema_extra = {
            "example": {
                "patient_id": "665f1c2e9b1e8a0012345678",
                "patient_name": "Sarah Johnson",
                "specialist_name": "Dr. Patel",
                "specialty": "Cardiology",
                "reason": "Evaluation of intermittent chest pain",
                "urgency": "Urgent",
            }
        }
