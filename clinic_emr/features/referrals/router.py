# Referrals Feature - Router

from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from clinic_emr.features.auth.models import User
from clinic_emr.features.auth.dependencies import get_current_user
from clinic_emr.features.referrals.models import Medication
from clinic_emr.features.referrals.schemas import (
    CreateReferralRequest,
    UpdateReferralRequest,
    UpdateReferralStatusRequest,
    ScheduleReferralRequest,
    CompleteReferralRequest,
    AddRecommendationRequest,
    ReferralResponse,
    ReferralListResponse,
    ReferralStatsResponse,
    SharedReferralResponse,
)
from clinic_emr.features.referrals.service import ReferralService
from clinic_emr.shared.models import to_naive_utc
from clinic_emr.shared.schemas import Pagination


router = APIRouter(prefix="/referrals", tags=["Referrals"])


@router.post("", response_model=ReferralResponse, status_code=status.HTTP_201_CREATED)
async def create_referral(
    request: CreateReferralRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user)
):
    """
    Create a new referral.

    - **urgency**: Routine, Urgent or Emergency (Low/Medium/High are accepted and mapped)

    The specialist notification is sent after the response; a failed
    notification does not affect the created referral.
    """
    referral = await ReferralService.create_referral(request, current_user)

    background_tasks.add_task(
        ReferralService.notify_referral_created,
        ReferralService.notification_snapshot(referral),
    )

    return ReferralService.referral_to_response(referral)


@router.get("", response_model=ReferralListResponse)
async def list_referrals(
    status: Optional[str] = None,
    urgency: Optional[str] = None,
    specialty: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user)
):
    referrals, total = await ReferralService.list_referrals(
        clinic_id=current_user.clinic_id,
        status=status,
        urgency=urgency,
        specialty=specialty,
        search=search,
        page=page,
        limit=limit,
    )

    return ReferralListResponse(
        referrals=[ReferralService.referral_to_response(r) for r in referrals],
        pagination=Pagination.build(page, limit, total),
    )


# Static routes are declared before /{referral_id}

@router.get("/shared/{code}", response_model=SharedReferralResponse)
async def get_shared_referral(code: str):
    """
    Public view of a referral through its shareable link. No authentication.

    Unknown and deactivated codes both return 404.
    """
    return await ReferralService.resolve_by_code(code)


@router.get("/urgent", response_model=List[ReferralResponse])
async def get_urgent_referrals(current_user: User = Depends(get_current_user)):
    referrals = await ReferralService.find_urgent(current_user.clinic_id)
    return [ReferralService.referral_to_response(r) for r in referrals]


@router.get("/pending", response_model=List[ReferralResponse])
async def get_pending_referrals(current_user: User = Depends(get_current_user)):
    referrals = await ReferralService.find_pending(current_user.clinic_id)
    return [ReferralService.referral_to_response(r) for r in referrals]


@router.get("/date-range", response_model=List[ReferralResponse])
async def get_referrals_by_date_range(
    start_date: datetime,
    end_date: datetime,
    current_user: User = Depends(get_current_user)
):
    referrals = await ReferralService.find_by_date_range(
        to_naive_utc(start_date),
        to_naive_utc(end_date),
        current_user.clinic_id,
    )
    return [ReferralService.referral_to_response(r) for r in referrals]


@router.get("/specialty/{specialty}", response_model=List[ReferralResponse])
async def get_referrals_by_specialty(
    specialty: str,
    current_user: User = Depends(get_current_user)
):
    referrals = await ReferralService.find_by_specialty(specialty, current_user.clinic_id)
    return [ReferralService.referral_to_response(r) for r in referrals]


@router.get("/stats/overview", response_model=ReferralStatsResponse)
async def get_referral_stats(current_user: User = Depends(get_current_user)):
    """Counts by status, urgent count, specialty and urgency distributions."""
    return await ReferralService.get_stats(current_user.clinic_id)


@router.get("/{referral_id}", response_model=ReferralResponse)
async def get_referral(
    referral_id: str,
    current_user: User = Depends(get_current_user)
):
    referral = await ReferralService.get_referral(referral_id, current_user.clinic_id)
    return ReferralService.referral_to_response(referral)


@router.put("/{referral_id}", response_model=ReferralResponse)
async def update_referral(
    referral_id: str,
    request: UpdateReferralRequest,
    current_user: User = Depends(get_current_user)
):
    """Update descriptive referral fields. Use the status endpoint to change status."""
    referral = await ReferralService.update_referral(referral_id, request, current_user.clinic_id)
    return ReferralService.referral_to_response(referral)


@router.put("/{referral_id}/status", response_model=ReferralResponse)
async def update_referral_status(
    referral_id: str,
    request: UpdateReferralStatusRequest,
    current_user: User = Depends(get_current_user)
):
    """
    Change the referral status.

    Doctors may only update referrals of patients assigned to them.
    Completed, Cancelled and No Show referrals cannot change status.
    """
    referral = await ReferralService.update_status(
        referral_id,
        request.status,
        current_user,
        notes=request.notes,
    )
    return ReferralService.referral_to_response(referral)


@router.put("/{referral_id}/schedule", response_model=ReferralResponse)
async def schedule_referral(
    referral_id: str,
    request: ScheduleReferralRequest,
    current_user: User = Depends(get_current_user)
):
    referral = await ReferralService.schedule(referral_id, request.appointment_date, current_user)
    return ReferralService.referral_to_response(referral)


@router.put("/{referral_id}/complete", response_model=ReferralResponse)
async def complete_referral(
    referral_id: str,
    request: CompleteReferralRequest,
    current_user: User = Depends(get_current_user)
):
    """Complete the referral. Empty outcome or recommendations keep the recorded ones."""
    referral = await ReferralService.complete(
        referral_id,
        current_user,
        outcome=request.outcome,
        recommendations=request.recommendations,
    )
    return ReferralService.referral_to_response(referral)


@router.post("/{referral_id}/medications", response_model=ReferralResponse)
async def add_medication(
    referral_id: str,
    request: Medication,
    current_user: User = Depends(get_current_user)
):
    referral = await ReferralService.add_medication(referral_id, request, current_user.clinic_id)
    return ReferralService.referral_to_response(referral)


@router.post("/{referral_id}/recommendations", response_model=ReferralResponse)
async def add_recommendation(
    referral_id: str,
    request: AddRecommendationRequest,
    current_user: User = Depends(get_current_user)
):
    referral = await ReferralService.add_recommendation(
        referral_id,
        request.recommendation,
        current_user.clinic_id,
    )
    return ReferralService.referral_to_response(referral)


@router.post("/{referral_id}/generate-link", response_model=ReferralResponse)
async def generate_shareable_link(
    referral_id: str,
    http_request: Request,
    current_user: User = Depends(get_current_user)
):
    """Generate a public link to the referral, replacing any previous link."""
    base_url = f"{http_request.url.scheme}://{http_request.url.netloc}"
    referral = await ReferralService.generate_shareable_link(
        referral_id,
        base_url=base_url,
        clinic_id=current_user.clinic_id,
    )
    return ReferralService.referral_to_response(referral)


@router.post("/{referral_id}/deactivate-link", response_model=ReferralResponse)
async def deactivate_shareable_link(
    referral_id: str,
    current_user: User = Depends(get_current_user)
):
    referral = await ReferralService.deactivate_link(referral_id, current_user.clinic_id)
    return ReferralService.referral_to_response(referral)
