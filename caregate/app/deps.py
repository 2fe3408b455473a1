"""Dependency injection utilities."""
from collections.abc import Generator
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlmodel import Session

from .domain.errors import Forbidden
from .domain.policy import Identity, Role, is_allowed
from .infra.db import get_session
from .services.audit import AuditTrail
from .services.consent import ConsentService
from .services.directory import DoctorDirectory, PatientDirectory
from .services.grants import GrantStore
from .services.history import HistoryStore
from .services.lookup import PatientLookup
from .services.records import RecordIndex, RecordService
from .services.requests import RequestLedger
from .services.resolver import AccessResolver


def db_session() -> Generator[Session, None, None]:
    """Provide a scoped DB session to FastAPI endpoints."""
    with get_session() as session:
        yield session


def current_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_hospital_code: Optional[str] = Header(default=None),
    x_department_code: Optional[str] = Header(default=None),
) -> Identity:
    """Identity asserted by the authentication collaborator in front of this service."""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing identity")
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")
    return Identity(
        user_id=x_user_id,
        role=role,
        hospital_code=x_hospital_code or None,
        department_code=x_department_code or None,
    )


def require_action(action: str):
    """Route guard: the caller's role must allow ``action``."""

    def guard(identity: Identity = Depends(current_identity)) -> Identity:
        if not is_allowed(identity, action):
            raise Forbidden("Not allowed for this role")
        return identity

    return guard


def access_resolver(session: Session = Depends(db_session)) -> AccessResolver:
    return AccessResolver(
        patients=PatientDirectory(session),
        grants=GrantStore(session),
        requests=RequestLedger(session),
        history=HistoryStore(session),
        records=RecordIndex(session),
        audit=AuditTrail(session),
    )


def record_service(
    session: Session = Depends(db_session),
    resolver: AccessResolver = Depends(access_resolver),
) -> RecordService:
    return RecordService(session, resolver, resolver.audit)


def consent_service(resolver: AccessResolver = Depends(access_resolver)) -> ConsentService:
    session = resolver.grants.session
    return ConsentService(
        patients=resolver.patients,
        doctors=DoctorDirectory(session),
        grants=resolver.grants,
        requests=resolver.requests,
        history=resolver.history,
        audit=resolver.audit,
    )


def patient_lookup(
    resolver: AccessResolver = Depends(access_resolver),
    records: RecordService = Depends(record_service),
) -> PatientLookup:
    return PatientLookup(resolver, resolver.history, records, resolver.audit)
