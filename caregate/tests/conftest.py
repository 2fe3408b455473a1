from datetime import timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from caregate.app.domain.models import (
    AccessGrant,
    AccessLevel,
    DoctorProfile,
    MedicalRecord,
    PatientProfile,
    utcnow,
)
from caregate.app.domain.policy import Identity, Role
from caregate.app.services.audit import AuditTrail
from caregate.app.services.consent import ConsentService
from caregate.app.services.directory import DoctorDirectory, PatientDirectory
from caregate.app.services.grants import GrantStore
from caregate.app.services.history import HistoryStore
from caregate.app.services.records import RecordIndex, RecordService
from caregate.app.services.requests import RequestLedger
from caregate.app.services.resolver import AccessResolver


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def patient(session):
    row = PatientProfile(id="pat-1", full_name="Asha Rao", access_code="111122223333")
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def doctor(session):
    row = DoctorProfile(id="doc-1", full_name="Dr. Ken Mori", hospital_code="H1", department_code="D1")
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def doctor_identity(doctor):
    return Identity(doctor.id, Role.DOCTOR, doctor.hospital_code, doctor.department_code)


@pytest.fixture
def resolver(session):
    return AccessResolver(
        patients=PatientDirectory(session),
        grants=GrantStore(session),
        requests=RequestLedger(session),
        history=HistoryStore(session),
        records=RecordIndex(session),
        audit=AuditTrail(session),
    )


@pytest.fixture
def consent(session, resolver):
    return ConsentService(
        patients=resolver.patients,
        doctors=DoctorDirectory(session),
        grants=resolver.grants,
        requests=resolver.requests,
        history=resolver.history,
        audit=resolver.audit,
    )


@pytest.fixture
def record_service(session, resolver):
    return RecordService(session, resolver, resolver.audit)


@pytest.fixture
def add_grant(session):
    def _add(patient_id, doctor_id, access_level=AccessLevel.READ_WRITE, is_active=True, days=30):
        grant = AccessGrant(
            patient_id=patient_id,
            doctor_id=doctor_id,
            access_level=access_level,
            is_active=is_active,
            expires_at=utcnow() + timedelta(days=days),
        )
        session.add(grant)
        session.commit()
        return grant

    return _add


@pytest.fixture
def add_record(session):
    def _add(patient_id, doctor_id, hospital_code, department_code, **fields):
        record = MedicalRecord(
            patient_id=patient_id,
            doctor_id=doctor_id,
            hospital_code=hospital_code,
            department_code=department_code,
            diagnosis=fields.pop("diagnosis", "Routine check"),
            **fields,
        )
        session.add(record)
        session.commit()
        return record

    return _add
