"""Cross-hospital patient lookup for doctors."""
from __future__ import annotations

from typing import Optional, Tuple

import structlog
from fastapi import status

from ..domain.errors import Forbidden, NotFound
from ..domain.policy import Identity
from ..domain.schemas import HistoricalPatient, PatientAccessOut, PatientDetails, PatientSummary
from .audit import AuditTrail
from .history import HistoryStore
from .records import RecordService
from .resolver import AccessResolver

logger = structlog.get_logger(__name__)


class PatientLookup:
    """Find a patient by id or access code and hand back what the doctor may see.

    The status code tells the caller how to surface the outcome: 200 for full
    access or a historical stub, 202 when an access request was sent instead.
    """

    def __init__(
        self,
        resolver: AccessResolver,
        history: HistoryStore,
        records: RecordService,
        audit: AuditTrail,
    ) -> None:
        self.resolver = resolver
        self.history = history
        self.records = records
        self.audit = audit

    def access(
        self, identity: Identity, patient_ref: str, access_code: Optional[str] = None
    ) -> Tuple[int, PatientAccessOut]:
        patient = self.resolver.patients.find_by_reference(patient_ref)
        if not patient:
            return status.HTTP_200_OK, self._from_history(identity, patient_ref)

        decision = self.resolver.resolve_patient(
            identity.user_id,
            patient,
            identity.hospital_code or "",
            identity.department_code or "",
            access_code,
        )
        if decision.request_sent:
            return status.HTTP_202_ACCEPTED, PatientAccessOut(
                message="Access request has been sent to the patient",
                access_method=decision.method.value,
                summary=PatientSummary(id=patient.id, full_name=patient.full_name, access_request_sent=True),
            )
        if not decision.granted:
            raise Forbidden(
                "You do not have access to this patient's data. "
                "Provide a valid access code or request access from the patient."
            )

        records = self.records.visible_to_doctor(identity, patient.id, decision)
        return status.HTTP_200_OK, PatientAccessOut(
            message="Access granted",
            access_method=decision.method.value,
            access_level=decision.access_level,
            patient=PatientDetails.model_validate(patient),
            count=len(records),
            records=records,
        )

    def _from_history(self, identity: Identity, patient_ref: str) -> PatientAccessOut:
        row = self.history.find(identity.user_id, patient_ref)
        if not row:
            raise NotFound("Patient not found. Please check the patient ID.")
        self.audit.record_for(identity, "resolve_access", patient_ref, allowed=False, detail="history_only")
        logger.info("patient served from history", doctor_id=identity.user_id, patient_id=patient_ref)
        return PatientAccessOut(
            message="Limited patient data available from history",
            history=HistoricalPatient(
                patient_id=row.patient_id,
                full_name=row.full_name,
                hospital_code=row.hospital_code,
                department_code=row.department_code,
                has_active_access=False,
                access_revoked_at=row.access_revoked_at,
            ),
        )
