"""Test the referral service: lifecycle, shareable links, authorization and notification."""

import re
from datetime import timedelta

import pytest
from bson import ObjectId
from fastapi import BackgroundTasks

from clinic_emr.features.referrals import service as referral_service
from clinic_emr.features.referrals.models import (
    Medication,
    Referral,
    ReferralStatus,
    ReferralUrgency,
    SpecialistAddress,
)
from clinic_emr.features.referrals.schemas import CreateReferralRequest, UpdateReferralRequest
from clinic_emr.features.referrals.service import ReferralService, generate_link_code, to_base36
from clinic_emr.shared.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from clinic_emr.shared.models import utcnow


def referral_request(patient, **overrides) -> CreateReferralRequest:
    fields = dict(
        patient_id=str(patient.id),
        patient_name=patient.name,
        specialist_name="Dr. Patel",
        specialty="Cardiology",
        reason="Evaluation of intermittent chest pain",
        urgency="Urgent",
    )
    fields.update(overrides)
    return CreateReferralRequest(**fields)


@pytest.fixture
async def referral(patient, admin):
    return await ReferralService.create_referral(referral_request(patient), admin)


# ==================== Creation ====================

async def test_create_referral_by_doctor_snapshots_provider(patient, doctor):
    referral = await ReferralService.create_referral(referral_request(patient), doctor)

    assert referral.status == ReferralStatus.PENDING
    assert referral.is_pending is True
    assert referral.is_urgent is True
    assert referral.referred_by == str(doctor.id)
    assert referral.referring_provider.name == "Dr. Emily Johnson"
    assert referral.referring_provider.phone == "+1234567890"
    assert referral.referring_provider.email == "dr.johnson@clinic.com"

    doctor.name = "Dr. Emily Johnson-Smith"
    await doctor.save()
    stored = await Referral.get(referral.id)
    assert stored.referring_provider.name == "Dr. Emily Johnson"


async def test_create_referral_by_admin_has_no_provider(referral):
    assert referral.referred_by is None
    assert referral.referring_provider is None


async def test_create_referral_for_unknown_patient(admin, patient):
    request = referral_request(patient, patient_id=str(ObjectId()))

    with pytest.raises(NotFoundException):
        await ReferralService.create_referral(request, admin)


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Low", ReferralUrgency.ROUTINE),
        ("Medium", ReferralUrgency.ROUTINE),
        ("High", ReferralUrgency.URGENT),
        ("Urgent", ReferralUrgency.URGENT),
        ("Emergency", ReferralUrgency.EMERGENCY),
    ],
)
async def test_legacy_urgency_labels_are_normalized(patient, label, expected):
    assert referral_request(patient, urgency=label).urgency == expected


async def test_notification_failure_does_not_fail_creation(patient, admin, monkeypatch, caplog):
    async def broken_send(snapshot):
        raise ConnectionError("SMTP unreachable")

    monkeypatch.setattr(referral_service, "send_referral_notification_email", broken_send)

    referral = await ReferralService.create_referral(referral_request(patient), admin)
    tasks = BackgroundTasks()
    tasks.add_task(ReferralService.notify_referral_created, ReferralService.notification_snapshot(referral))

    await tasks()

    assert await Referral.get(referral.id) is not None
    assert "notification failed" in caplog.text


# ==================== Status ====================

async def test_doctor_not_assigned_is_forbidden(referral, other_doctor):
    with pytest.raises(ForbiddenException):
        await ReferralService.update_status(str(referral.id), ReferralStatus.APPROVED, other_doctor)

    stored = await Referral.get(referral.id)
    assert stored.status == ReferralStatus.PENDING


async def test_assigned_doctor_may_update_status(referral, doctor):
    updated = await ReferralService.update_status(
        str(referral.id), ReferralStatus.APPROVED, doctor, notes="Looks appropriate"
    )

    assert updated.status == ReferralStatus.APPROVED
    assert updated.status_notes == "Looks appropriate"


async def test_doctor_is_forbidden_when_patient_is_missing(referral, doctor, patient):
    await patient.delete()

    with pytest.raises(ForbiddenException):
        await ReferralService.update_status(str(referral.id), ReferralStatus.APPROVED, doctor)


async def test_admin_may_update_any_referral(referral, admin):
    updated = await ReferralService.update_status(str(referral.id), ReferralStatus.IN_PROGRESS, admin)
    assert updated.status == ReferralStatus.IN_PROGRESS


@pytest.mark.parametrize(
    "terminal", [ReferralStatus.COMPLETED, ReferralStatus.CANCELLED, ReferralStatus.NO_SHOW]
)
async def test_terminal_status_cannot_be_left(referral, admin, terminal):
    await ReferralService.update_status(str(referral.id), terminal, admin)

    with pytest.raises(InvalidStateException):
        await ReferralService.update_status(str(referral.id), ReferralStatus.SCHEDULED, admin)

    same = await ReferralService.update_status(str(referral.id), terminal, admin)
    assert same.status == terminal


async def test_schedule_sets_appointment(referral, admin):
    appointment = utcnow().replace(microsecond=0) + timedelta(days=7)

    scheduled = await ReferralService.schedule(str(referral.id), appointment, admin)

    assert scheduled.status == ReferralStatus.SCHEDULED
    assert scheduled.appointment_date == appointment


async def test_complete_keeps_existing_outcome_when_not_given(referral, admin):
    referral.outcome = "Stable, no intervention"
    referral.recommendations = ["Annual echo"]
    await referral.save()

    completed = await ReferralService.complete(str(referral.id), admin, outcome="", recommendations=[])

    assert completed.status == ReferralStatus.COMPLETED
    assert completed.outcome == "Stable, no intervention"
    assert completed.recommendations == ["Annual echo"]


async def test_complete_overwrites_outcome_when_given(referral, admin):
    completed = await ReferralService.complete(
        str(referral.id), admin, outcome="Stent placed", recommendations=["Cardiac rehab"]
    )

    assert completed.outcome == "Stent placed"
    assert completed.recommendations == ["Cardiac rehab"]


async def test_medications_and_recommendations_append(referral):
    await ReferralService.add_medication(str(referral.id), Medication(name="Aspirin", dosage="81mg"))
    await ReferralService.add_medication(str(referral.id), Medication(name="Aspirin", dosage="81mg"))
    updated = await ReferralService.add_recommendation(str(referral.id), "Low sodium diet")

    assert [m.name for m in updated.medications] == ["Aspirin", "Aspirin"]
    assert updated.recommendations == ["Low sodium diet"]


async def test_update_referral_descriptive_fields(referral):
    updated = await ReferralService.update_referral(
        str(referral.id),
        UpdateReferralRequest(
            specialty="Electrophysiology",
            urgency="High",
            specialist_address=SpecialistAddress(street="1 Main St", city="Springfield", state="IL", zip_code="62701"),
        ),
    )

    assert updated.specialty == "Electrophysiology"
    assert updated.urgency == ReferralUrgency.URGENT
    assert updated.status == ReferralStatus.PENDING
    assert updated.full_specialist_address == "1 Main St, Springfield, IL 62701"


# ==================== Shareable links ====================

async def test_link_code_format():
    code = generate_link_code()
    assert re.match(r"^REF-[0-9A-Z]+-[0-9A-Z]{5}$", code)
    assert to_base36(35) == "Z"
    assert to_base36(36) == "10"


async def test_shareable_link_lifecycle(referral):
    shared = await ReferralService.generate_shareable_link(str(referral.id), base_url="https://clinic.example")
    link = shared.shareable_link

    assert link.is_active is True
    assert link.access_count == 0
    assert link.url == f"https://clinic.example/shared-referral/{link.code}"

    first = await ReferralService.resolve_by_code(link.code)
    assert first.patient_name == referral.patient_name
    assert first.specialty == "Cardiology"

    await ReferralService.resolve_by_code(link.code)
    stored = await Referral.get(referral.id)
    assert stored.shareable_link.access_count == 2
    assert stored.shareable_link.last_accessed_at is not None

    await ReferralService.deactivate_link(str(referral.id))
    with pytest.raises(NotFoundException):
        await ReferralService.resolve_by_code(link.code)


async def test_resolve_unknown_code():
    with pytest.raises(NotFoundException):
        await ReferralService.resolve_by_code("REF-NOPE-00000")


async def test_deactivate_link_twice_keeps_first_timestamp(referral):
    await ReferralService.generate_shareable_link(str(referral.id))

    first = await ReferralService.deactivate_link(str(referral.id))
    second = await ReferralService.deactivate_link(str(referral.id))

    assert first.shareable_link.is_active is False
    assert second.shareable_link.is_active is False
    assert second.shareable_link.deactivated_at == first.shareable_link.deactivated_at


async def test_deactivate_without_link(referral):
    with pytest.raises(NotFoundException):
        await ReferralService.deactivate_link(str(referral.id))


async def test_regenerating_link_replaces_previous_code(referral):
    first = await ReferralService.generate_shareable_link(str(referral.id))
    old_code = first.shareable_link.code
    second = await ReferralService.generate_shareable_link(str(referral.id))

    assert second.shareable_link.url.startswith("http://localhost:3000/shared-referral/")
    if second.shareable_link.code != old_code:
        with pytest.raises(NotFoundException):
            await ReferralService.resolve_by_code(old_code)


def stale_reader(stale: Referral):
    async def get_referral(referral_id, clinic_id=None):
        return stale

    return get_referral


async def test_edits_from_stale_read_keep_link_deactivated(referral, monkeypatch):
    shared = await ReferralService.generate_shareable_link(str(referral.id))
    code = shared.shareable_link.code
    stale = await ReferralService.get_referral(str(referral.id))
    await ReferralService.deactivate_link(str(referral.id))

    monkeypatch.setattr(ReferralService, "get_referral", stale_reader(stale))
    await ReferralService.update_referral(str(referral.id), UpdateReferralRequest(specialty="Electrophysiology"))
    await ReferralService.add_recommendation(str(referral.id), "Holter monitor")
    monkeypatch.undo()

    with pytest.raises(NotFoundException):
        await ReferralService.resolve_by_code(code)

    stored = await Referral.get(referral.id)
    assert stored.specialty == "Electrophysiology"
    assert stored.recommendations == ["Holter monitor"]
    assert stored.shareable_link.is_active is False


async def test_edits_from_stale_read_keep_access_count(referral, monkeypatch):
    shared = await ReferralService.generate_shareable_link(str(referral.id))
    stale = await ReferralService.get_referral(str(referral.id))
    await ReferralService.resolve_by_code(shared.shareable_link.code)
    await ReferralService.resolve_by_code(shared.shareable_link.code)

    monkeypatch.setattr(ReferralService, "get_referral", stale_reader(stale))
    await ReferralService.update_referral(str(referral.id), UpdateReferralRequest(reason="Recurrent palpitations"))
    await ReferralService.add_medication(str(referral.id), Medication(name="Metoprolol", dosage="25mg"))

    stored = await Referral.get(referral.id)
    assert stored.reason == "Recurrent palpitations"
    assert stored.shareable_link.access_count == 2


async def test_status_change_from_stale_read_is_a_conflict(referral, admin, monkeypatch):
    stale = await ReferralService.get_referral(str(referral.id))
    await ReferralService.update_status(str(referral.id), ReferralStatus.COMPLETED, admin)

    monkeypatch.setattr(ReferralService, "get_referral", stale_reader(stale))
    with pytest.raises(ConflictException):
        await ReferralService.update_status(str(referral.id), ReferralStatus.SCHEDULED, admin)

    stored = await Referral.get(referral.id)
    assert stored.status == ReferralStatus.COMPLETED


# ==================== Queries ====================

async def test_find_urgent_and_pending(patient, admin):
    urgent = await ReferralService.create_referral(referral_request(patient, urgency="Emergency"), admin)
    routine = await ReferralService.create_referral(referral_request(patient, urgency="Routine"), admin)
    closed = await ReferralService.create_referral(referral_request(patient, urgency="Urgent"), admin)
    await ReferralService.update_status(str(closed.id), ReferralStatus.COMPLETED, admin)

    urgent_ids = {r.id for r in await ReferralService.find_urgent()}
    pending_ids = {r.id for r in await ReferralService.find_pending()}

    assert urgent_ids == {urgent.id}
    assert pending_ids == {urgent.id, routine.id}


async def test_find_by_specialty_and_date_range(patient, admin):
    cardio = await ReferralService.create_referral(referral_request(patient), admin)
    await ReferralService.create_referral(referral_request(patient, specialty="Dermatology"), admin)
    now = utcnow()

    assert [r.id for r in await ReferralService.find_by_specialty("Cardiology")] == [cardio.id]
    assert len(await ReferralService.find_by_date_range(now - timedelta(days=1), now + timedelta(days=1))) == 2
    assert await ReferralService.find_by_date_range(now - timedelta(days=9), now - timedelta(days=8)) == []


async def test_stats(patient, admin):
    await ReferralService.create_referral(referral_request(patient), admin)
    await ReferralService.create_referral(referral_request(patient, urgency="Low", specialty="Dermatology"), admin)

    stats = await ReferralService.get_stats()

    assert stats.total_referrals == 2
    assert stats.pending_referrals == 2
    assert stats.urgent_referrals == 1
    assert {b.name: b.count for b in stats.specialties} == {"Cardiology": 1, "Dermatology": 1}
    assert {b.name: b.count for b in stats.urgency_distribution} == {"Urgent": 1, "Routine": 1}
