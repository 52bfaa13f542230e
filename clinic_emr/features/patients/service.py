# Patient Management Feature - Service

from typing import Optional, List
from bson import ObjectId
from bson.errors import InvalidId
from clinic_emr.features.patients.models import Patient
from clinic_emr.features.patients.schemas import CreatePatientRequest, PatientResponse
from clinic_emr.core.logging import logger
from clinic_emr.shared.exceptions import NotFoundException
from clinic_emr.shared.models import utcnow


class PatientService:
    """Service class for patient management operations."""

    @staticmethod
    async def create_patient(clinic_id: str, request: CreatePatientRequest) -> Patient:
        """Create a new patient for a clinic."""
        patient = Patient(
            clinic_id=clinic_id,
            name=request.name,
            email=request.email,
            phone=request.phone,
            date_of_birth=request.date_of_birth,
            gender=request.gender,
            address=request.address,
            assigned_doctors=list(dict.fromkeys(request.assigned_doctors)),
        )
        await patient.insert()

        logger.info(f"Created patient {patient.id} for clinic {clinic_id}")
        return patient

    @staticmethod
    async def get_patients_by_clinic(clinic_id: Optional[str], include_inactive: bool = False) -> List[Patient]:
        """Get all patients for a clinic (every clinic when clinic_id is None)."""
        query = Patient.find(Patient.clinic_id == clinic_id) if clinic_id else Patient.find_all()

        if not include_inactive:
            query = query.find(Patient.is_active == True)

        return await query.sort(-Patient.created_at).to_list()

    @staticmethod
    async def find_patient(patient_id: str) -> Optional[Patient]:
        """Look up a patient by its MongoDB id, None when it does not exist."""
        try:
            return await Patient.get(ObjectId(patient_id))
        except (InvalidId, TypeError):
            return None

    @staticmethod
    async def get_patient_by_id(patient_id: str, clinic_id: Optional[str] = None) -> Patient:
        """Get a patient by id, optionally scoped to a clinic."""
        patient = await PatientService.find_patient(patient_id)

        if not patient or (clinic_id and patient.clinic_id != clinic_id):
            raise NotFoundException("Patient not found")

        return patient

    @staticmethod
    async def assign_doctor(patient_id: str, doctor_id: str, clinic_id: Optional[str] = None) -> Patient:
        """Add a doctor to the patient's assigned doctors (no duplicates)."""
        patient = await PatientService.get_patient_by_id(patient_id, clinic_id)

        if not patient.is_assigned_to(doctor_id):
            patient.assigned_doctors.append(doctor_id)
            patient.updated_at = utcnow()
            await patient.save()
            logger.info(f"Assigned doctor {doctor_id} to patient {patient_id}")

        return patient

    @staticmethod
    def patient_to_response(patient: Patient) -> PatientResponse:
        """Convert Patient model to response schema."""
        return PatientResponse(
            id=str(patient.id),
            clinic_id=patient.clinic_id,
            name=patient.name,
            email=patient.email,
            phone=patient.phone,
            date_of_birth=patient.date_of_birth,
            gender=patient.gender,
            address=patient.address,
            assigned_doctors=patient.assigned_doctors or [],
            is_active=patient.is_active,
            created_at=patient.created_at,
            updated_at=patient.updated_at,
        )
