"""Domain models shared between API and persistence layers."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import JSON, Index, UniqueConstraint, text
from sqlalchemy.types import DateTime, String, TypeDecorator
from sqlmodel import Column, Field as SQLField, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class EnumValueType(TypeDecorator):
    """Stores enum values (not member names) as lowercase-insensitive strings."""

    impl = String
    cache_ok = True

    def __init__(self, enum_class, length: int = 32, **kwargs):
        self.enum_class = enum_class
        super().__init__(length=length, **kwargs)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, self.enum_class):
            return value.value
        value_str = str(value)
        for member in self.enum_class:
            if member.value.lower() == value_str.lower():
                return member.value
        raise ValueError(f"{value_str!r} is not a valid {self.enum_class.__name__}")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self.enum_class(value)


class UTCDateTime(TypeDecorator):
    """Aware UTC datetimes in Python, naive UTC columns at rest.

    SQLite keeps no offset, so values are normalised on the way in and
    tagged as UTC on the way out. Naive input is taken to be UTC already.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class AccessLevel(str, Enum):
    READ = "read"
    READ_WRITE = "readWrite"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RecordType(str, Enum):
    GENERAL = "general"
    LAB = "lab"
    PRESCRIPTION = "prescription"
    VITALS = "vitals"
    TREATMENT = "treatment"
    MEDICATION = "medication"


class PatientProfile(SQLModel, table=True):
    """Patient identity as owned by the registration collaborator."""

    __tablename__ = "patients"

    id: str = SQLField(default_factory=new_id, primary_key=True, index=True)
    full_name: str
    date_of_birth: Optional[date] = SQLField(default=None)
    contact_no: Optional[str] = SQLField(default=None)
    access_code: str = SQLField(unique=True, index=True)
    legacy_access_code: Optional[str] = SQLField(default=None, index=True)
    created_at: datetime = SQLField(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))

    def matches_code(self, code: Optional[str]) -> bool:
        if not code:
            return False
        return code == self.access_code or (
            self.legacy_access_code is not None and code == self.legacy_access_code
        )


class DoctorProfile(SQLModel, table=True):
    """Doctor identity as owned by the staff collaborator."""

    __tablename__ = "doctors"

    id: str = SQLField(default_factory=new_id, primary_key=True, index=True)
    full_name: str
    hospital_code: str = SQLField(index=True)
    department_code: str = SQLField(index=True)


class AccessGrant(SQLModel, table=True):
    """One permission row per doctor/patient pair, mutated in place and never deleted."""

    __tablename__ = "access_grants"
    __table_args__ = (UniqueConstraint("patient_id", "doctor_id", name="uq_access_grants_pair"),)

    id: str = SQLField(default_factory=new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    doctor_id: str = SQLField(index=True)
    access_level: AccessLevel = SQLField(
        default=AccessLevel.READ,
        sa_column=Column(EnumValueType(AccessLevel), nullable=False),
    )
    is_active: bool = SQLField(default=True)
    granted_at: datetime = SQLField(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
    expires_at: datetime = SQLField(sa_column=Column(UTCDateTime(), nullable=False, index=True))

    def is_current(self, now: Optional[datetime] = None) -> bool:
        return self.is_active and self.expires_at > (now or utcnow())


class AccessGrantRead(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    access_level: AccessLevel
    is_active: bool
    granted_at: datetime
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccessRequest(SQLModel, table=True):
    """Ask-and-answer ledger explaining why a grant does or does not exist."""

    __tablename__ = "access_requests"
    __table_args__ = (
        Index(
            "uq_access_requests_pending",
            "patient_id",
            "doctor_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: str = SQLField(default_factory=new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    doctor_id: str = SQLField(index=True)
    status: RequestStatus = SQLField(
        default=RequestStatus.PENDING,
        sa_column=Column(EnumValueType(RequestStatus), nullable=False, index=True),
    )
    access_level: Optional[AccessLevel] = SQLField(
        default=AccessLevel.READ,
        sa_column=Column(EnumValueType(AccessLevel), nullable=True),
    )
    message: Optional[str] = SQLField(default=None)
    response_message: Optional[str] = SQLField(default=None)
    requested_at: datetime = SQLField(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False, index=True)
    )
    response_date: Optional[datetime] = SQLField(default=None, sa_column=Column(UTCDateTime(), nullable=True))


class AccessRequestRead(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    status: RequestStatus
    access_level: Optional[AccessLevel]
    message: Optional[str]
    response_message: Optional[str]
    requested_at: datetime
    response_date: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class DoctorPatientHistory(SQLModel, table=True):
    """Permanent record of every doctor/patient relationship, kept after revocation."""

    __tablename__ = "doctor_patient_history"
    __table_args__ = (UniqueConstraint("doctor_id", "patient_id", name="uq_history_pair"),)

    id: str = SQLField(default_factory=new_id, primary_key=True, index=True)
    doctor_id: str = SQLField(index=True)
    patient_id: str = SQLField(index=True)
    full_name: str
    hospital_code: str
    department_code: str
    has_active_access: bool = SQLField(default=False)
    access_revoked_at: Optional[datetime] = SQLField(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    created_at: datetime = SQLField(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
    updated_at: datetime = SQLField(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False, index=True)
    )


class DoctorPatientHistoryRead(BaseModel):
    id: str
    doctor_id: str
    patient_id: str
    full_name: str
    hospital_code: str
    department_code: str
    has_active_access: bool
    access_revoked_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MedicalRecord(SQLModel, table=True):
    """Clinical record owned by the record collaborator, with its encryption metadata."""

    __tablename__ = "medical_records"

    id: str = SQLField(default_factory=new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    doctor_id: str = SQLField(index=True)
    hospital_code: str = SQLField(index=True)
    department_code: str = SQLField(index=True)
    record_type: RecordType = SQLField(
        default=RecordType.GENERAL,
        sa_column=Column(EnumValueType(RecordType), nullable=False),
    )
    diagnosis: str
    prescription: Optional[str] = SQLField(default=None)
    notes: Optional[str] = SQLField(default=None)
    vital_signs: Dict[str, Any] = SQLField(
        default_factory=dict, sa_column=Column(JSON, nullable=False, server_default="{}")
    )
    lab_results: List[Dict[str, Any]] = SQLField(
        default_factory=list, sa_column=Column(JSON, nullable=False, server_default="[]")
    )
    treatment_plan: Dict[str, Any] = SQLField(
        default_factory=dict, sa_column=Column(JSON, nullable=False, server_default="{}")
    )
    medications: List[Dict[str, Any]] = SQLField(
        default_factory=list, sa_column=Column(JSON, nullable=False, server_default="[]")
    )
    imaging: List[Dict[str, Any]] = SQLField(
        default_factory=list, sa_column=Column(JSON, nullable=False, server_default="[]")
    )
    is_encrypted: bool = SQLField(default=False)
    encrypted_data: Optional[str] = SQLField(default=None)
    encrypted_key: Optional[str] = SQLField(default=None)
    policy: Optional[str] = SQLField(default=None)
    encryption_details: Dict[str, Any] = SQLField(
        default_factory=dict, sa_column=Column(JSON, nullable=False, server_default="{}")
    )
    created_at: datetime = SQLField(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False, index=True)
    )
    updated_at: datetime = SQLField(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))


class AuditEvent(SQLModel, table=True):
    """Append-only authorization fact."""

    __tablename__ = "audit_events"

    id: str = SQLField(default_factory=new_id, primary_key=True, index=True)
    actor_id: str = SQLField(index=True)
    role: str
    action: str = SQLField(index=True)
    resource: str
    allowed: bool = SQLField(default=True)
    detail: Optional[str] = SQLField(default=None)
    created_at: datetime = SQLField(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False, index=True)
    )
