# Patient Management Feature

from clinic_emr.features.patients.models import Patient
from clinic_emr.features.patients.router import router
from clinic_emr.features.patients.service import PatientService

__all__ = ["Patient", "router", "PatientService"]
