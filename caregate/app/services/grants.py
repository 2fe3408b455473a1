"""Grant store: one permission row per doctor/patient pair."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlmodel import Session, col, or_, select

from ..domain.models import AccessGrant, AccessLevel, new_id, utcnow
from ..infra.db import upsert_insert

logger = structlog.get_logger(__name__)

DEFAULT_GRANT_DAYS = 30
ACCESS_CODE_GRANT_DAYS = 365


def expiry_from_now(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(days=days)


class GrantStore:
    """Grants are upserted on the (patient_id, doctor_id) key and never deleted."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find(self, patient_id: str, doctor_id: str) -> Optional[AccessGrant]:
        stmt = (
            select(AccessGrant)
            .where(AccessGrant.patient_id == patient_id, AccessGrant.doctor_id == doctor_id)
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def find_current(
        self, patient_id: str, doctor_id: str, now: Optional[datetime] = None
    ) -> Optional[AccessGrant]:
        """Active grant whose expiry is still ahead; expiry is only ever checked here, lazily."""
        stmt = select(AccessGrant).where(
            AccessGrant.patient_id == patient_id,
            AccessGrant.doctor_id == doctor_id,
            col(AccessGrant.is_active).is_(True),
            AccessGrant.expires_at > (now or utcnow()),
        ).execution_options(populate_existing=True)
        return self.session.exec(stmt).first()

    def upsert(
        self,
        patient_id: str,
        doctor_id: str,
        access_level: AccessLevel,
        expires_at: datetime,
    ) -> AccessGrant:
        """Create the pair's grant or overwrite its level, expiry and activity."""
        self.session.flush()
        stmt = upsert_insert(self.session, AccessGrant).values(
            id=new_id(),
            patient_id=patient_id,
            doctor_id=doctor_id,
            access_level=access_level,
            is_active=True,
            granted_at=utcnow(),
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["patient_id", "doctor_id"],
            set_={
                "access_level": stmt.excluded.access_level,
                "expires_at": stmt.excluded.expires_at,
                "is_active": True,
            },
        )
        self.session.connection().execute(stmt)
        grant = self.find(patient_id, doctor_id)
        logger.info(
            "grant upserted",
            patient_id=patient_id,
            doctor_id=doctor_id,
            access_level=access_level.value,
            expires_at=expires_at.isoformat(),
        )
        return grant

    def activate_by_code(self, patient_id: str, doctor_id: str, now: Optional[datetime] = None) -> AccessGrant:
        """Create a read/write grant, or revive one that is inactive or expired.

        A grant that is still current is left exactly as the patient last set it.
        """
        now = now or utcnow()
        expires_at = expiry_from_now(ACCESS_CODE_GRANT_DAYS, now)
        self.session.flush()
        stmt = upsert_insert(self.session, AccessGrant).values(
            id=new_id(),
            patient_id=patient_id,
            doctor_id=doctor_id,
            access_level=AccessLevel.READ_WRITE,
            is_active=True,
            granted_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["patient_id", "doctor_id"],
            set_={
                "access_level": stmt.excluded.access_level,
                "expires_at": stmt.excluded.expires_at,
                "is_active": True,
            },
            where=or_(col(AccessGrant.is_active).is_(False), AccessGrant.expires_at <= now),
        )
        self.session.connection().execute(stmt)
        return self.find(patient_id, doctor_id)

    def save(self, grant: AccessGrant) -> AccessGrant:
        self.session.add(grant)
        self.session.flush()
        self.session.refresh(grant)
        return grant

    def list_current_for_patient(self, patient_id: str) -> list[AccessGrant]:
        stmt = (
            select(AccessGrant)
            .where(
                AccessGrant.patient_id == patient_id,
                col(AccessGrant.is_active).is_(True),
                AccessGrant.expires_at > utcnow(),
            )
            .order_by(col(AccessGrant.granted_at).desc())
        )
        return list(self.session.exec(stmt).all())

    def list_current_for_doctor(self, doctor_id: str) -> list[AccessGrant]:
        stmt = select(AccessGrant).where(
            AccessGrant.doctor_id == doctor_id,
            col(AccessGrant.is_active).is_(True),
            AccessGrant.expires_at > utcnow(),
        )
        return list(self.session.exec(stmt).all())
