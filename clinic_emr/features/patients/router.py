# Patient Management Feature - Router

from fastapi import APIRouter, Depends, status
from clinic_emr.features.patients.schemas import (
    CreatePatientRequest,
    AssignDoctorRequest,
    PatientResponse,
    PatientListResponse,
)
from clinic_emr.features.patients.service import PatientService
from clinic_emr.features.auth.dependencies import get_current_user
from clinic_emr.features.auth.models import User
from clinic_emr.shared.exceptions import ValidationException


router = APIRouter(prefix="/patients", tags=["Patients"])


@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    request: CreatePatientRequest,
    current_user: User = Depends(get_current_user)
):
    """Create a new patient for the current user's clinic."""
    if not current_user.clinic_id:
        raise ValidationException("You must be associated with a clinic to add patients")

    patient = await PatientService.create_patient(current_user.clinic_id, request)
    return PatientService.patient_to_response(patient)


@router.get("", response_model=PatientListResponse)
async def list_patients(
    include_inactive: bool = False,
    current_user: User = Depends(get_current_user)
):
    """
    List patients of the current user's clinic.

    - **include_inactive**: Include deactivated patients (default: false)
    """
    patients = await PatientService.get_patients_by_clinic(
        current_user.clinic_id,
        include_inactive=include_inactive
    )

    return PatientListResponse(
        patients=[PatientService.patient_to_response(p) for p in patients],
        total=len(patients)
    )


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: str,
    current_user: User = Depends(get_current_user)
):
    """Get a specific patient by id."""
    patient = await PatientService.get_patient_by_id(patient_id, current_user.clinic_id)
    return PatientService.patient_to_response(patient)


@router.post("/{patient_id}/assign-doctor", response_model=PatientResponse)
async def assign_doctor(
    patient_id: str,
    request: AssignDoctorRequest,
    current_user: User = Depends(get_current_user)
):
    """Assign a doctor to a patient so the doctor may manage the patient's referrals."""
    patient = await PatientService.assign_doctor(patient_id, request.doctor_id, current_user.clinic_id)
    return PatientService.patient_to_response(patient)
