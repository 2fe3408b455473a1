"""Doctor/patient relationship history, kept after every grant is gone."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog
from sqlmodel import Session, col, select

from ..domain.models import DoctorPatientHistory, new_id, utcnow
from ..infra.db import upsert_insert

logger = structlog.get_logger(__name__)


class HistoryStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find(self, doctor_id: str, patient_id: str) -> Optional[DoctorPatientHistory]:
        stmt = (
            select(DoctorPatientHistory)
            .where(
                DoctorPatientHistory.doctor_id == doctor_id,
                DoctorPatientHistory.patient_id == patient_id,
            )
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def record_contact(
        self,
        doctor_id: str,
        patient_id: str,
        full_name: str,
        hospital_code: str,
        department_code: str,
        has_active_access: bool,
    ) -> DoctorPatientHistory:
        """Upsert the pair's row; gaining access clears any earlier revocation time."""
        now = utcnow()
        updates = {
            "full_name": full_name,
            "hospital_code": hospital_code,
            "department_code": department_code,
            "has_active_access": has_active_access,
            "updated_at": now,
        }
        if has_active_access:
            updates["access_revoked_at"] = None
        return self._upsert(doctor_id, patient_id, updates, now)

    def mark_active(self, doctor_id: str, patient_id: str, full_name: str, hospital_code: str,
                    department_code: str) -> DoctorPatientHistory:
        """Patient-side grant: only the activity flags change on an existing row."""
        now = utcnow()
        return self._upsert(
            doctor_id,
            patient_id,
            {"has_active_access": True, "access_revoked_at": None, "updated_at": now},
            now,
            defaults={"full_name": full_name, "hospital_code": hospital_code, "department_code": department_code},
        )

    def mark_revoked(self, doctor_id: str, patient_id: str, full_name: str, hospital_code: str,
                     department_code: str) -> DoctorPatientHistory:
        now = utcnow()
        row = self._upsert(
            doctor_id,
            patient_id,
            {"has_active_access": False, "access_revoked_at": now, "updated_at": now},
            now,
            defaults={"full_name": full_name, "hospital_code": hospital_code, "department_code": department_code},
        )
        logger.info("relationship access revoked", doctor_id=doctor_id, patient_id=patient_id)
        return row

    def list_for_doctor(self, doctor_id: str) -> list[DoctorPatientHistory]:
        stmt = (
            select(DoctorPatientHistory)
            .where(DoctorPatientHistory.doctor_id == doctor_id)
            .order_by(col(DoctorPatientHistory.updated_at).desc())
        )
        return list(self.session.exec(stmt).all())

    def _upsert(
        self,
        doctor_id: str,
        patient_id: str,
        updates: dict,
        now: datetime,
        defaults: Optional[dict] = None,
    ) -> DoctorPatientHistory:
        values = {
            "id": new_id(),
            "doctor_id": doctor_id,
            "patient_id": patient_id,
            "has_active_access": False,
            "access_revoked_at": None,
            "created_at": now,
            **(defaults or {}),
            **updates,
        }
        self.session.flush()
        stmt = upsert_insert(self.session, DoctorPatientHistory).values(**values)
        stmt = stmt.on_conflict_do_update(index_elements=["doctor_id", "patient_id"], set_=updates)
        self.session.connection().execute(stmt)
        return self.find(doctor_id, patient_id)
