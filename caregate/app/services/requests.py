"""Request ledger: why a grant does or does not exist."""
from __future__ import annotations

from typing import Optional, Tuple

import structlog
from sqlalchemy import text
from sqlmodel import Session, col, select

from ..domain.errors import Conflict
from ..domain.models import AccessLevel, AccessRequest, RequestStatus, new_id, utcnow
from ..infra.db import upsert_insert

logger = structlog.get_logger(__name__)

AUTO_APPROVAL_RESPONSE = "Auto-approved via access code"


class RequestLedger:
    """At most one pending request per pair; rows are never deleted."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, request_id: str) -> Optional[AccessRequest]:
        return self.session.get(AccessRequest, request_id)

    def find_pending(self, patient_id: str, doctor_id: str) -> Optional[AccessRequest]:
        return self._find(patient_id, doctor_id, RequestStatus.PENDING)

    def has_approved(self, patient_id: str, doctor_id: str) -> bool:
        return self._find(patient_id, doctor_id, RequestStatus.APPROVED) is not None

    def ensure_pending(
        self,
        patient_id: str,
        doctor_id: str,
        message: Optional[str] = None,
        access_level: AccessLevel = AccessLevel.READ,
    ) -> Tuple[AccessRequest, bool]:
        """Return the pair's pending request, creating it if there is none.

        The partial unique index on pending rows settles concurrent retries:
        a losing insert is ignored and the winner's row is returned.
        """
        existing = self.find_pending(patient_id, doctor_id)
        if existing:
            return existing, False

        now = utcnow()
        self.session.flush()
        stmt = upsert_insert(self.session, AccessRequest).values(
            id=new_id(),
            patient_id=patient_id,
            doctor_id=doctor_id,
            status=RequestStatus.PENDING,
            access_level=access_level,
            message=message or f"Access requested on {now.date().isoformat()}",
            requested_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["patient_id", "doctor_id"],
            index_where=text("status = 'pending'"),
        )
        result = self.session.connection().execute(stmt)
        created = result.rowcount == 1
        if created:
            logger.info("access request created", patient_id=patient_id, doctor_id=doctor_id)
        return self.find_pending(patient_id, doctor_id), created

    def submit(
        self,
        patient_id: str,
        doctor_id: str,
        message: Optional[str],
        access_level: AccessLevel,
    ) -> AccessRequest:
        """Explicit doctor request; a second pending request for the pair is a conflict."""
        request, created = self.ensure_pending(patient_id, doctor_id, message, access_level)
        if not created:
            raise Conflict("A pending access request for this patient already exists")
        return request

    def record_auto_approval(self, patient_id: str, doctor_id: str) -> Optional[AccessRequest]:
        """Leave an approved request behind an access-code grant, once per pair."""
        # No constraint backs this check: racing redemptions may each leave an
        # approved row. That is accepted, since approved rows only explain a grant
        # and the grant itself is a single upserted row.
        if self.has_approved(patient_id, doctor_id):
            return None
        now = utcnow()
        request = AccessRequest(
            patient_id=patient_id,
            doctor_id=doctor_id,
            status=RequestStatus.APPROVED,
            access_level=AccessLevel.READ_WRITE,
            message=f"Access requested using access code on {now.date().isoformat()}",
            response_message=AUTO_APPROVAL_RESPONSE,
            requested_at=now,
            response_date=now,
        )
        self.session.add(request)
        self.session.flush()
        self.session.refresh(request)
        return request

    def resolve(
        self,
        request: AccessRequest,
        status: RequestStatus,
        response_message: Optional[str] = None,
    ) -> AccessRequest:
        if status is RequestStatus.PENDING:
            raise ValueError("a request can only be resolved to approved or rejected")
        request.status = status
        request.response_message = response_message or ""
        request.response_date = utcnow()
        self.session.add(request)
        self.session.flush()
        self.session.refresh(request)
        logger.info(
            "access request resolved",
            request_id=request.id,
            patient_id=request.patient_id,
            doctor_id=request.doctor_id,
            status=status.value,
        )
        return request

    def list_for_doctor(self, doctor_id: str) -> list[AccessRequest]:
        stmt = (
            select(AccessRequest)
            .where(AccessRequest.doctor_id == doctor_id)
            .order_by(col(AccessRequest.requested_at).desc())
        )
        return list(self.session.exec(stmt).all())

    def list_for_patient(
        self, patient_id: str, status: Optional[RequestStatus] = None
    ) -> list[AccessRequest]:
        stmt = select(AccessRequest).where(AccessRequest.patient_id == patient_id)
        if status:
            stmt = stmt.where(AccessRequest.status == status)
        stmt = stmt.order_by(col(AccessRequest.requested_at).desc())
        return list(self.session.exec(stmt).all())

    def list_pending(self, limit: int = 200) -> list[AccessRequest]:
        stmt = (
            select(AccessRequest)
            .where(AccessRequest.status == RequestStatus.PENDING)
            .order_by(col(AccessRequest.requested_at).desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def _find(self, patient_id: str, doctor_id: str, status: RequestStatus) -> Optional[AccessRequest]:
        stmt = select(AccessRequest).where(
            AccessRequest.patient_id == patient_id,
            AccessRequest.doctor_id == doctor_id,
            AccessRequest.status == status,
        )
        return self.session.exec(stmt).first()
