# Referrals Feature - Service

import re
import secrets
import string
from collections import Counter as Tally
from datetime import datetime
from typing import Optional, List, Tuple, Dict, Any
from bson import ObjectId
from bson.errors import InvalidId
from beanie.operators import Set, Inc, Push, In, NotIn, Or, RegEx
from beanie.odm.queries.update import UpdateResponse
from clinic_emr.config import settings
from clinic_emr.core.email import send_referral_notification_email
from clinic_emr.core.logging import logger
from clinic_emr.features.auth.models import User
from clinic_emr.features.patients.service import PatientService
from clinic_emr.features.referrals.models import (
    URGENT_LEVELS,
    Medication,
    Referral,
    ReferralStatus,
    ReferringProvider,
    ShareableLink,
    SpecialistAddress,
    SpecialistContact,
)
from clinic_emr.features.referrals.schemas import (
    CreateReferralRequest,
    UpdateReferralRequest,
    ReferralResponse,
    ReferralStatsResponse,
    SharedReferralResponse,
    CountBucket,
)
from clinic_emr.shared.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from clinic_emr.shared.models import utcnow


BASE36_DIGITS = string.digits + string.ascii_uppercase
CODE_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
CODE_SUFFIX_LENGTH = 5
MAX_CODE_ATTEMPTS = 5


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_link_code(now: Optional[datetime] = None) -> str:
    """REF-<base36 epoch milliseconds>-<5 random upper-case alphanumerics>."""
    now = now or utcnow()
    millis = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    suffix = "".join(secrets.choice(CODE_SUFFIX_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"REF-{to_base36(millis)}-{suffix}"


class ReferralService:
    """Service class for referral operations."""

    @staticmethod
    def _scope(clinic_id: Optional[str]) -> list:
        return [Referral.clinic_id == clinic_id] if clinic_id else []

    @staticmethod
    async def create_referral(request: CreateReferralRequest, actor: User) -> Referral:
        """
        Create a Pending referral.

        When the actor is a doctor, the referral records who referred the patient
        and a snapshot of the doctor's contact details at this moment.

        Raises:
            NotFoundException: If the patient does not exist
        """
        patient = await PatientService.get_patient_by_id(request.patient_id, actor.clinic_id)

        referral = Referral(
            patient_id=str(patient.id),
            patient_name=request.patient_name,
            clinic_id=patient.clinic_id,
            specialist_name=request.specialist_name,
            specialty=request.specialty,
            specialist_contact=request.specialist_contact or SpecialistContact(),
            specialist_address=request.specialist_address or SpecialistAddress(),
            reason=request.reason,
            urgency=request.urgency,
            preferred_date=request.preferred_date,
            preferred_time=request.preferred_time,
            diagnosis=request.diagnosis,
            symptoms=request.symptoms,
            treatment_history=request.treatment_history,
            medications=request.medications,
            provider_notes=request.provider_notes,
            special_instructions=request.special_instructions,
            follow_up_required=request.follow_up_required,
            follow_up_date=request.follow_up_date,
            follow_up_notes=request.follow_up_notes,
        )
        if request.referral_date:
            referral.referral_date = request.referral_date

        if actor.is_doctor:
            referral.referred_by = str(actor.id)
            referral.referring_provider = ReferringProvider(
                name=actor.name,
                phone=actor.phone,
                email=actor.email,
            )

        await referral.insert()

        logger.info(
            f"Created referral {referral.id} for patient {referral.patient_id} "
            f"to {referral.specialty} ({referral.urgency.value})"
        )
        return referral

    @staticmethod
    def notification_snapshot(referral: Referral) -> Dict[str, Any]:
        """Plain copy of what the notification needs, taken before the request ends."""
        return {
            "id": str(referral.id),
            "patient_name": referral.patient_name,
            "specialist_name": referral.specialist_name,
            "specialty": referral.specialty,
            "specialist_email": referral.specialist_contact.email,
            "urgency": referral.urgency.value,
            "reason": referral.reason,
            "referring_provider": referral.referring_provider.name if referral.referring_provider else None,
        }

    @staticmethod
    async def notify_referral_created(snapshot: Dict[str, Any]) -> None:
        """Best-effort notification. Failures are logged and never raised."""
        try:
            sent = await send_referral_notification_email(snapshot)
        except Exception as e:
            logger.warning(f"⚠️ Referral {snapshot.get('id')} notification failed: {type(e).__name__}: {e}")
            return

        if not sent:
            logger.warning(f"⚠️ Referral {snapshot.get('id')} notification was not delivered")

    @staticmethod
    async def get_referral(referral_id: str, clinic_id: Optional[str] = None) -> Referral:
        """
        Get a referral by id with clinic access check.

        Raises:
            NotFoundException: If the referral does not exist
            ForbiddenException: If it belongs to another clinic
        """
        try:
            referral = await Referral.get(ObjectId(referral_id))
        except (InvalidId, TypeError):
            raise NotFoundException("Referral not found")

        if not referral:
            raise NotFoundException("Referral not found")

        if clinic_id and referral.clinic_id != clinic_id:
            raise ForbiddenException("You don't have access to this referral")

        return referral

    @staticmethod
    async def list_referrals(
        clinic_id: Optional[str] = None,
        status: Optional[str] = None,
        urgency: Optional[str] = None,
        specialty: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Referral], int]:
        """List referrals newest first, returning the page and the total match count."""
        conditions = ReferralService._scope(clinic_id)

        if status:
            conditions.append(Referral.status == status)
        if urgency:
            conditions.append(Referral.urgency == urgency)
        if specialty:
            conditions.append(Referral.specialty == specialty)
        if search:
            pattern = re.escape(search)
            conditions.append(Or(
                RegEx(Referral.patient_name, pattern, options="i"),
                RegEx(Referral.specialist_name, pattern, options="i"),
                RegEx(Referral.specialty, pattern, options="i"),
                RegEx(Referral.reason, pattern, options="i"),
            ))

        query = Referral.find(*conditions).sort(-Referral.created_at)

        total = await query.count()
        referrals = await query.skip((page - 1) * limit).limit(limit).to_list()

        return referrals, total

    @staticmethod
    async def update_referral(
        referral_id: str,
        request: UpdateReferralRequest,
        clinic_id: Optional[str] = None,
    ) -> Referral:
        """Update descriptive fields. Status changes go through update_status."""
        referral = await ReferralService.get_referral(referral_id, clinic_id)

        update_dict = request.model_dump(exclude_unset=True, exclude_none=True)
        for field in update_dict:
            setattr(referral, field, getattr(request, field))

        referral.update_timestamp()
        # Only the changed fields are written; shareable_link is left as stored
        await referral.save_changes()

        logger.info(f"Updated referral {referral.id} ({', '.join(update_dict) or 'no fields'})")
        return referral

    @staticmethod
    async def authorize_status_change(referral: Referral, actor: User) -> None:
        """
        Doctors may only change referrals of patients assigned to them.

        Raises:
            ForbiddenException: If the actor is a doctor not assigned to the patient
        """
        if not actor.is_doctor:
            return

        patient = await PatientService.find_patient(referral.patient_id)
        if patient is None or not patient.is_assigned_to(str(actor.id)):
            logger.warning(
                f"Doctor {actor.id} denied status change on referral {referral.id} "
                f"(patient {referral.patient_id} not assigned)"
            )
            raise ForbiddenException("Access denied. This patient is not assigned to you.")

    @staticmethod
    async def _save_transition(referral: Referral, previous: ReferralStatus) -> Referral:
        """
        Write the changed fields only if the status is still the one that was read.

        Raises:
            ConflictException: If the status was changed concurrently
        """
        changes = referral.get_changes()
        if not changes:
            return referral

        updated = await Referral.find_one(
            Referral.id == referral.id,
            Referral.status == previous,
        ).update(
            Set(changes),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

        if updated is None:
            logger.warning(f"Concurrent status change detected on referral {referral.id}")
            raise ConflictException("Referral was modified by another request, please retry")

        return updated

    @staticmethod
    async def update_status(
        referral_id: str,
        status: ReferralStatus,
        actor: User,
        notes: Optional[str] = None,
    ) -> Referral:
        """
        Change the referral status on behalf of an actor.

        Raises:
            NotFoundException: If the referral does not exist
            ForbiddenException: If a doctor is not assigned to the referral's patient
            InvalidStateException: If the referral is already Completed, Cancelled or No Show
        """
        referral = await ReferralService.get_referral(referral_id, actor.clinic_id)
        await ReferralService.authorize_status_change(referral, actor)

        previous = referral.status
        if status == ReferralStatus.APPROVED:
            referral.approve(notes)
        elif status == ReferralStatus.IN_PROGRESS:
            referral.start(notes)
        elif status == ReferralStatus.CANCELLED:
            referral.cancel(notes)
        elif status == ReferralStatus.COMPLETED:
            referral.complete()
        elif status == ReferralStatus.NO_SHOW:
            referral.mark_no_show()
        else:
            referral.transition_to(status)

        if notes:
            referral.status_notes = notes

        referral = await ReferralService._save_transition(referral, previous)

        logger.info(f"Referral {referral.id} status {previous.value} -> {referral.status.value} by {actor.id}")
        return referral

    @staticmethod
    async def schedule(referral_id: str, appointment_date: datetime, actor: User) -> Referral:
        referral = await ReferralService.get_referral(referral_id, actor.clinic_id)
        await ReferralService.authorize_status_change(referral, actor)

        previous = referral.status
        referral.schedule(appointment_date)
        referral = await ReferralService._save_transition(referral, previous)

        logger.info(f"Referral {referral.id} scheduled for {appointment_date.isoformat()}")
        return referral

    @staticmethod
    async def complete(
        referral_id: str,
        actor: User,
        outcome: Optional[str] = None,
        recommendations: Optional[List[str]] = None,
    ) -> Referral:
        referral = await ReferralService.get_referral(referral_id, actor.clinic_id)
        await ReferralService.authorize_status_change(referral, actor)

        previous = referral.status
        referral.complete(outcome, recommendations)
        referral = await ReferralService._save_transition(referral, previous)

        logger.info(f"Referral {referral.id} completed")
        return referral

    @staticmethod
    async def _append(referral_id: str, field: str, value: Any, clinic_id: Optional[str]) -> Referral:
        """Atomically append to a list field, leaving every other field as stored."""
        referral = await ReferralService.get_referral(referral_id, clinic_id)

        updated = await Referral.find_one(Referral.id == referral.id).update(
            Push({field: value}),
            Set({"updated_at": utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if updated is None:
            raise NotFoundException("Referral not found")

        return updated

    @staticmethod
    async def add_medication(referral_id: str, medication: Medication, clinic_id: Optional[str] = None) -> Referral:
        referral = await ReferralService._append(referral_id, "medications", medication, clinic_id)
        logger.info(f"Added medication {medication.name} to referral {referral.id}")
        return referral

    @staticmethod
    async def add_recommendation(referral_id: str, recommendation: str, clinic_id: Optional[str] = None) -> Referral:
        referral = await ReferralService._append(referral_id, "recommendations", recommendation, clinic_id)
        logger.info(f"Added recommendation to referral {referral.id}")
        return referral

    # ==================== Shareable links ====================

    @staticmethod
    async def generate_shareable_link(
        referral_id: str,
        base_url: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> Referral:
        """
        Create a new active shareable link, replacing any previous one.

        Args:
            referral_id: Referral to share
            base_url: scheme://host of the incoming request; FRONTEND_URL when omitted
            clinic_id: Clinic of the acting user
        """
        referral = await ReferralService.get_referral(referral_id, clinic_id)

        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_link_code()
            taken = await Referral.find_one({"shareable_link.code": code})
            if not taken:
                break
            logger.warning(f"Shareable code {code} already in use, generating another")
        else:
            raise ConflictException("Could not generate a unique shareable link")

        base = (base_url or settings.FRONTEND_URL).rstrip("/")
        link = ShareableLink(code=code, url=f"{base}/shared-referral/{code}")

        updated = await Referral.find_one(Referral.id == referral.id).update(
            Set({"shareable_link": link, "updated_at": utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if updated is None:
            raise NotFoundException("Referral not found")

        logger.info(f"Generated shareable link {code} for referral {updated.id}")
        return updated

    @staticmethod
    async def resolve_by_code(code: str) -> SharedReferralResponse:
        """
        Resolve an active shareable code, counting the access.

        Unknown and deactivated codes are both reported as not found.
        """
        referral = await Referral.find_one(
            {"shareable_link.code": code, "shareable_link.is_active": True}
        ).update(
            Inc({"shareable_link.access_count": 1}),
            Set({"shareable_link.last_accessed_at": utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

        if referral is None:
            raise NotFoundException("Shared referral not found or link has been deactivated")

        logger.info(f"Shared referral {referral.id} accessed ({referral.shareable_link.access_count} views)")
        return ReferralService.referral_to_shared(referral)

    @staticmethod
    async def deactivate_link(referral_id: str, clinic_id: Optional[str] = None) -> Referral:
        """
        Deactivate the referral's shareable link. Deactivating twice keeps the first timestamp.

        Raises:
            NotFoundException: If the referral has no shareable link
        """
        referral = await ReferralService.get_referral(referral_id, clinic_id)

        if referral.shareable_link is None:
            raise NotFoundException("No shareable link exists for this referral")

        if not referral.shareable_link.is_active:
            return referral

        now = utcnow()
        updated = await Referral.find_one(
            Referral.id == referral.id,
            {"shareable_link.is_active": True},
        ).update(
            Set({
                "shareable_link.is_active": False,
                "shareable_link.deactivated_at": now,
                "updated_at": now,
            }),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

        if updated is None:
            # Deactivated concurrently
            return await ReferralService.get_referral(referral_id, clinic_id)

        logger.info(f"Deactivated shareable link {updated.shareable_link.code} of referral {updated.id}")
        return updated

    # ==================== Queries ====================

    @staticmethod
    async def find_pending(clinic_id: Optional[str] = None) -> List[Referral]:
        conditions = ReferralService._scope(clinic_id) + [Referral.status == ReferralStatus.PENDING]
        return await Referral.find(*conditions).sort(-Referral.referral_date).to_list()

    @staticmethod
    async def find_urgent(clinic_id: Optional[str] = None) -> List[Referral]:
        """Urgent or emergency referrals that are still open."""
        conditions = ReferralService._scope(clinic_id) + [
            In(Referral.urgency, list(URGENT_LEVELS)),
            NotIn(Referral.status, [ReferralStatus.COMPLETED, ReferralStatus.CANCELLED]),
        ]
        return await Referral.find(*conditions).sort(-Referral.referral_date).to_list()

    @staticmethod
    async def find_by_specialty(specialty: str, clinic_id: Optional[str] = None) -> List[Referral]:
        conditions = ReferralService._scope(clinic_id) + [Referral.specialty == specialty]
        return await Referral.find(*conditions).sort(-Referral.referral_date).to_list()

    @staticmethod
    async def find_by_date_range(
        start_date: datetime,
        end_date: datetime,
        clinic_id: Optional[str] = None,
    ) -> List[Referral]:
        """Referrals whose referral_date falls in [start_date, end_date]."""
        if start_date > end_date:
            raise ValidationException("Start date must not be after end date")

        conditions = ReferralService._scope(clinic_id) + [
            Referral.referral_date >= start_date,
            Referral.referral_date <= end_date,
        ]
        return await Referral.find(*conditions).sort(-Referral.referral_date).to_list()

    @staticmethod
    async def get_stats(clinic_id: Optional[str] = None) -> ReferralStatsResponse:
        referrals = await Referral.find(*ReferralService._scope(clinic_id)).to_list()

        by_status = Tally(r.status for r in referrals)
        specialties = Tally(r.specialty for r in referrals)
        urgencies = Tally(r.urgency.value for r in referrals)

        return ReferralStatsResponse(
            total_referrals=len(referrals),
            pending_referrals=by_status[ReferralStatus.PENDING],
            approved_referrals=by_status[ReferralStatus.APPROVED],
            scheduled_referrals=by_status[ReferralStatus.SCHEDULED],
            completed_referrals=by_status[ReferralStatus.COMPLETED],
            cancelled_referrals=by_status[ReferralStatus.CANCELLED],
            urgent_referrals=sum(1 for r in referrals if r.is_urgent),
            specialties=[CountBucket(name=name, count=count) for name, count in specialties.most_common()],
            urgency_distribution=[CountBucket(name=name, count=count) for name, count in urgencies.most_common()],
        )

    # ==================== Serialization ====================

    @staticmethod
    def referral_to_shared(referral: Referral) -> SharedReferralResponse:
        """Redacted view for shareable links; no clinical or patient record details."""
        return SharedReferralResponse(
            patient_name=referral.patient_name,
            specialist_name=referral.specialist_name,
            specialty=referral.specialty,
            specialist_contact=referral.specialist_contact,
            reason=referral.reason,
            urgency=referral.urgency.value,
            status=referral.status.value,
            referral_date=referral.referral_date,
            appointment_date=referral.appointment_date,
            referring_provider=referral.referring_provider.name if referral.referring_provider else None,
        )

    @staticmethod
    def referral_to_response(referral: Referral) -> ReferralResponse:
        """Convert Referral document to response schema."""
        return ReferralResponse(
            id=str(referral.id),
            patient_id=referral.patient_id,
            patient_name=referral.patient_name,
            clinic_id=referral.clinic_id,
            specialist_name=referral.specialist_name,
            specialty=referral.specialty,
            specialist_contact=referral.specialist_contact,
            specialist_address=referral.specialist_address,
            full_specialist_address=referral.full_specialist_address,
            referral_date=referral.referral_date,
            appointment_date=referral.appointment_date,
            preferred_date=referral.preferred_date,
            preferred_time=referral.preferred_time,
            reason=referral.reason,
            urgency=referral.urgency.value,
            status=referral.status.value,
            status_notes=referral.status_notes,
            special_instructions=referral.special_instructions,
            is_urgent=referral.is_urgent,
            is_pending=referral.is_pending,
            diagnosis=referral.diagnosis,
            symptoms=referral.symptoms,
            treatment_history=referral.treatment_history,
            medications=referral.medications,
            referred_by=referral.referred_by,
            referring_provider=referral.referring_provider,
            provider_notes=referral.provider_notes,
            follow_up_required=referral.follow_up_required,
            follow_up_date=referral.follow_up_date,
            follow_up_notes=referral.follow_up_notes,
            outcome=referral.outcome,
            recommendations=referral.recommendations,
            shareable_link=referral.shareable_link,
            created_at=referral.created_at,
            updated_at=referral.updated_at,
        )
