"""Grant lifecycle driven by patients, and the doctor-side request and history views."""
from __future__ import annotations

from typing import Optional, Tuple

import structlog

from ..domain.errors import Conflict, Forbidden, NotFound
from ..domain.models import (
    AccessGrant,
    AccessLevel,
    AccessRequest,
    DoctorPatientHistory,
    PatientProfile,
    RequestStatus,
)
from ..domain.policy import Identity, RequestScope, Role, request_scope
from ..domain.schemas import GrantOut
from .audit import AuditTrail
from .directory import DoctorDirectory, PatientDirectory
from .grants import DEFAULT_GRANT_DAYS, GrantStore, expiry_from_now
from .history import HistoryStore
from .requests import RequestLedger

logger = structlog.get_logger(__name__)

UNKNOWN_CODE = "Unknown"


class ConsentService:
    def __init__(
        self,
        patients: PatientDirectory,
        doctors: DoctorDirectory,
        grants: GrantStore,
        requests: RequestLedger,
        history: HistoryStore,
        audit: AuditTrail,
    ) -> None:
        self.patients = patients
        self.doctors = doctors
        self.grants = grants
        self.requests = requests
        self.history = history
        self.audit = audit

    # patient-initiated

    def grant(
        self,
        patient_id: str,
        doctor_id: str,
        access_level: AccessLevel = AccessLevel.READ_WRITE,
        expiry_days: int = DEFAULT_GRANT_DAYS,
    ) -> AccessGrant:
        patient = self.patients.require(patient_id)
        self.doctors.require(doctor_id)
        grant = self.grants.upsert(patient.id, doctor_id, access_level, expiry_from_now(expiry_days))
        self._history_active(patient, doctor_id)
        self.audit.record(patient.id, Role.PATIENT.value, "grant", doctor_id, detail=access_level.value)
        return grant

    def revoke(self, patient_id: str, doctor_id: str) -> Tuple[AccessGrant, bool]:
        """Downgrade readWrite to read, or deactivate a read grant.

        Returns the grant and whether access is now fully revoked. A single
        call never takes a readWrite grant all the way to inactive.
        """
        patient = self.patients.require(patient_id)
        grant = self.grants.find(patient.id, doctor_id)
        if not grant or not grant.is_active:
            raise NotFound("Access grant not found")

        if grant.access_level is AccessLevel.READ_WRITE:
            grant.access_level = AccessLevel.READ
            grant = self.grants.save(grant)
            self._history_active(patient, doctor_id)
            self.audit.record(patient.id, Role.PATIENT.value, "downgrade", doctor_id)
            logger.info("grant downgraded", patient_id=patient.id, doctor_id=doctor_id)
            return grant, False

        grant.is_active = False
        grant = self.grants.save(grant)
        hospital_code, department_code = self._doctor_codes(doctor_id)
        self.history.mark_revoked(doctor_id, patient.id, patient.full_name, hospital_code, department_code)
        self.audit.record(patient.id, Role.PATIENT.value, "revoke", doctor_id)
        return grant, True

    def respond(
        self,
        patient_id: str,
        request_id: str,
        status: RequestStatus,
        response_message: Optional[str] = None,
    ) -> AccessRequest:
        patient = self.patients.require(patient_id)
        request = self.requests.get(request_id)
        if not request:
            raise NotFound("Access request not found")
        if request.patient_id != patient.id:
            raise Forbidden("Not authorized to respond to this request")
        if request.status is not RequestStatus.PENDING:
            raise NotFound("Access request not found or already answered")

        request = self.requests.resolve(request, status, response_message)
        if status is RequestStatus.APPROVED:
            level = request.access_level or AccessLevel.READ_WRITE
            self.grants.upsert(patient.id, request.doctor_id, level, expiry_from_now(DEFAULT_GRANT_DAYS))
            self._history_active(patient, request.doctor_id)
        self.audit.record(patient.id, Role.PATIENT.value, "respond_request", request.id, detail=status.value)
        return request

    def list_grants(self, patient_id: str) -> list[GrantOut]:
        grants = self.grants.list_current_for_patient(patient_id)
        out = []
        for grant in grants:
            doctor = self.doctors.get(grant.doctor_id)
            view = GrantOut.model_validate(grant)
            if doctor:
                view = view.model_copy(
                    update={
                        "doctor_name": doctor.full_name,
                        "doctor_hospital_code": doctor.hospital_code,
                        "doctor_department_code": doctor.department_code,
                    }
                )
            out.append(view)
        return out

    def rotate_access_code(self, patient_id: str) -> PatientProfile:
        patient = self.patients.rotate_access_code(patient_id)
        self.audit.record(patient.id, Role.PATIENT.value, "rotate_access_code", patient.id)
        return patient

    # doctor-initiated

    def request_access(
        self,
        doctor_id: str,
        patient_id: str,
        message: Optional[str] = None,
        access_level: AccessLevel = AccessLevel.READ,
    ) -> AccessRequest:
        patient = self.patients.require(patient_id)
        if self.grants.find_current(patient.id, doctor_id):
            raise Conflict("You already have access to this patient's data")
        request = self.requests.submit(patient.id, doctor_id, message, access_level)
        self.audit.record(doctor_id, Role.DOCTOR.value, "request_access", patient.id, detail=access_level.value)
        return request

    def list_requests(self, identity: Identity, status: Optional[RequestStatus] = None) -> list[AccessRequest]:
        scope = request_scope(identity)
        if scope is RequestScope.DOCTOR:
            return self.requests.list_for_doctor(identity.user_id)
        if scope is RequestScope.PATIENT:
            return self.requests.list_for_patient(identity.user_id, status)
        if scope is RequestScope.ALL:
            return self.requests.list_pending()
        if scope is RequestScope.NONE:
            raise Forbidden("Access requests are not visible to this role")
        raise ValueError(f"Unhandled request scope: {scope!r}")

    def list_my_patients(self, doctor_id: str) -> list[PatientProfile]:
        grants = self.grants.list_current_for_doctor(doctor_id)
        return self.patients.list(grant.patient_id for grant in grants)

    def list_history(self, doctor_id: str) -> list[DoctorPatientHistory]:
        return self.history.list_for_doctor(doctor_id)

    def _doctor_codes(self, doctor_id: str) -> Tuple[str, str]:
        doctor = self.doctors.get(doctor_id)
        if not doctor:
            return UNKNOWN_CODE, UNKNOWN_CODE
        return doctor.hospital_code, doctor.department_code

    def _history_active(self, patient: PatientProfile, doctor_id: str) -> DoctorPatientHistory:
        hospital_code, department_code = self._doctor_codes(doctor_id)
        return self.history.mark_active(doctor_id, patient.id, patient.full_name, hospital_code, department_code)
