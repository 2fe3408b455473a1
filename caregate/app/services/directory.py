"""Lookups into the patient and doctor aggregates owned by other services."""
import secrets
from typing import Iterable, Optional

import structlog
from sqlmodel import Session, or_, select

from ..domain.errors import NotFound
from ..domain.models import DoctorProfile, PatientProfile

logger = structlog.get_logger(__name__)

ACCESS_CODE_DIGITS = 12


class PatientDirectory:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, patient_id: str) -> Optional[PatientProfile]:
        return self.session.get(PatientProfile, patient_id)

    def require(self, patient_id: str) -> PatientProfile:
        patient = self.get(patient_id)
        if not patient:
            raise NotFound("Patient not found")
        return patient

    def find_by_reference(self, reference: str) -> Optional[PatientProfile]:
        """Resolve a patient id, or failing that a current access code."""
        patient = self.get(reference)
        if patient:
            return patient
        stmt = select(PatientProfile).where(PatientProfile.access_code == reference)
        return self.session.exec(stmt).first()

    def list(self, patient_ids: Iterable[str]) -> list[PatientProfile]:
        ids = list(set(patient_ids))
        if not ids:
            return []
        stmt = select(PatientProfile).where(PatientProfile.id.in_(ids)).order_by(PatientProfile.full_name)
        return list(self.session.exec(stmt).all())

    def rotate_access_code(self, patient_id: str) -> PatientProfile:
        """Issue a fresh code; the previous one keeps working as the legacy code."""
        patient = self.require(patient_id)
        code = self._unique_code()
        patient.legacy_access_code = patient.access_code
        patient.access_code = code
        self.session.add(patient)
        self.session.flush()
        self.session.refresh(patient)
        logger.info("access code rotated", patient_id=patient_id)
        return patient

    def _unique_code(self) -> str:
        while True:
            code = str(secrets.randbelow(9 * 10 ** (ACCESS_CODE_DIGITS - 1)) + 10 ** (ACCESS_CODE_DIGITS - 1))
            stmt = select(PatientProfile.id).where(
                or_(PatientProfile.access_code == code, PatientProfile.legacy_access_code == code)
            )
            if self.session.exec(stmt).first() is None:
                return code


class DoctorDirectory:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, doctor_id: str) -> Optional[DoctorProfile]:
        return self.session.get(DoctorProfile, doctor_id)

    def require(self, doctor_id: str) -> DoctorProfile:
        doctor = self.get(doctor_id)
        if not doctor:
            raise NotFound("Doctor not found")
        return doctor
