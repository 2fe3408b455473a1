"""API I/O schemas."""
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import (
    AccessGrantRead,
    AccessLevel,
    AccessRequestRead,
    DoctorPatientHistoryRead,
    RecordType,
)


def normalize_vital_signs(value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    vitals = {key: (None if item == "" else item) for key, item in value.items()}
    if "bloodPressure" in vitals and vitals["bloodPressure"] is not None and not isinstance(
        vitals["bloodPressure"], dict
    ):
        vitals["bloodPressure"] = {"systolic": None, "diastolic": None}
    return vitals


class PatientAccessIn(BaseModel):
    patient_ref: str = Field(..., min_length=1, description="patient id or current access code")
    access_code: Optional[str] = None


class PatientSummary(BaseModel):
    id: str
    full_name: str
    access_request_sent: bool = False


class PatientDetails(BaseModel):
    id: str
    full_name: str
    date_of_birth: Optional[date] = None
    contact_no: Optional[str] = None
    has_full_access: bool = True

    model_config = ConfigDict(from_attributes=True)


class HistoricalPatient(BaseModel):
    patient_id: str
    full_name: str
    hospital_code: str
    department_code: str
    has_active_access: bool = False
    access_revoked_at: Optional[datetime] = None
    is_historical_record: bool = True


class RecordOut(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    hospital_code: str
    department_code: str
    record_type: RecordType
    diagnosis: str
    prescription: Optional[str] = None
    notes: Optional[str] = None
    vital_signs: Dict[str, Any] = Field(default_factory=dict)
    lab_results: List[Dict[str, Any]] = Field(default_factory=list)
    treatment_plan: Dict[str, Any] = Field(default_factory=dict)
    medications: List[Dict[str, Any]] = Field(default_factory=list)
    imaging: List[Dict[str, Any]] = Field(default_factory=list)
    is_encrypted: bool
    policy: Optional[str] = None
    encryption_details: Dict[str, Any] = Field(default_factory=dict)
    is_decrypted: bool = False
    policy_denied: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PatientAccessOut(BaseModel):
    message: str
    access_method: Optional[str] = None
    access_level: Optional[AccessLevel] = None
    patient: Optional[PatientDetails] = None
    summary: Optional[PatientSummary] = None
    history: Optional[HistoricalPatient] = None
    count: int = 0
    records: List[RecordOut] = Field(default_factory=list)


class GrantIn(BaseModel):
    doctor_id: str
    access_level: AccessLevel = AccessLevel.READ_WRITE
    expiry_days: int = Field(30, ge=1, le=3650)


class GrantOut(AccessGrantRead):
    doctor_name: Optional[str] = None
    doctor_hospital_code: Optional[str] = None
    doctor_department_code: Optional[str] = None


class RevokeOut(BaseModel):
    message: str
    fully_revoked: bool
    grant: AccessGrantRead


class AccessRequestIn(BaseModel):
    patient_id: str
    message: Optional[str] = None
    access_level: AccessLevel = AccessLevel.READ


class AccessRequestOut(AccessRequestRead):
    pass


class RespondIn(BaseModel):
    status: Literal["approved", "rejected"]
    response_message: Optional[str] = None


class HistoryOut(DoctorPatientHistoryRead):
    pass


class AccessCodeOut(BaseModel):
    access_code: str


class RecordIn(BaseModel):
    patient_id: str
    record_type: RecordType = RecordType.GENERAL
    diagnosis: str
    prescription: Optional[str] = None
    notes: Optional[str] = None
    vital_signs: Dict[str, Any] = Field(default_factory=dict)
    lab_results: List[Dict[str, Any]] = Field(default_factory=list)
    treatment_plan: Dict[str, Any] = Field(default_factory=dict)
    medications: List[Dict[str, Any]] = Field(default_factory=list)
    imaging: List[Dict[str, Any]] = Field(default_factory=list)
    should_encrypt: bool = False

    @field_validator("vital_signs")
    @classmethod
    def normalize_vitals(cls, value):
        return normalize_vital_signs(value)


class RecordPatch(BaseModel):
    record_type: Optional[RecordType] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None
    vital_signs: Optional[Dict[str, Any]] = None
    lab_results: Optional[List[Dict[str, Any]]] = None
    treatment_plan: Optional[Dict[str, Any]] = None
    medications: Optional[List[Dict[str, Any]]] = None
    imaging: Optional[List[Dict[str, Any]]] = None
    should_encrypt: Optional[bool] = None

    @field_validator("vital_signs")
    @classmethod
    def normalize_vitals(cls, value):
        return normalize_vital_signs(value)
