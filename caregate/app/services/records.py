"""Medical record reads and writes behind the resolver and the policy gate."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

import structlog
from sqlmodel import Session, col, select

from ..domain.abe import REDACTED, decrypt_record, encrypt_record
from ..domain.errors import AccessRequested, Forbidden, NotFound, PolicyDenied
from ..domain.models import MedicalRecord, utcnow
from ..domain.policy import Identity
from ..domain.schemas import RecordIn, RecordOut, RecordPatch
from .audit import AuditTrail

if TYPE_CHECKING:
    from .resolver import AccessDecision, AccessResolver

logger = structlog.get_logger(__name__)

SENSITIVE_FIELDS = (
    "diagnosis",
    "prescription",
    "notes",
    "vital_signs",
    "lab_results",
    "treatment_plan",
    "medications",
    "imaging",
)
REDACTED_VALUES: Dict[str, Any] = {
    "diagnosis": REDACTED,
    "prescription": REDACTED,
    "notes": REDACTED,
    "vital_signs": {},
    "lab_results": [],
    "treatment_plan": {},
    "medications": [],
    "imaging": [],
}
PLAIN_DEFAULTS: Dict[str, Any] = {
    "diagnosis": "",
    "prescription": None,
    "notes": None,
    "vital_signs": {},
    "lab_results": [],
    "treatment_plan": {},
    "medications": [],
    "imaging": [],
}


class RecordIndex:
    """Record lookups the resolver's heuristics rely on."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def has_authored_in_hospital(self, patient_id: str, doctor_id: str, hospital_code: str) -> bool:
        stmt = select(MedicalRecord.id).where(
            MedicalRecord.patient_id == patient_id,
            MedicalRecord.doctor_id == doctor_id,
            MedicalRecord.hospital_code == hospital_code,
        )
        return self.session.exec(stmt).first() is not None

    def has_department_record(self, patient_id: str, department_code: str) -> bool:
        stmt = select(MedicalRecord.id).where(
            MedicalRecord.patient_id == patient_id,
            MedicalRecord.department_code == department_code,
        )
        return self.session.exec(stmt).first() is not None

    def for_patient(self, patient_id: str) -> List[MedicalRecord]:
        stmt = (
            select(MedicalRecord)
            .where(MedicalRecord.patient_id == patient_id)
            .order_by(col(MedicalRecord.created_at).desc())
        )
        return list(self.session.exec(stmt).all())


def present(record: MedicalRecord, payload: Optional[Dict[str, Any]] = None, policy_denied: bool = False) -> RecordOut:
    out = RecordOut.model_validate(record)
    if payload:
        out = out.model_copy(update={**_sensitive(payload), "is_decrypted": True})
    if policy_denied:
        out = out.model_copy(update={"policy_denied": True})
    return out


def _sensitive(source: Dict[str, Any]) -> Dict[str, Any]:
    return {name: source.get(name) for name in SENSITIVE_FIELDS if name in source}


def _require_attributes(identity: Identity) -> None:
    if not identity.attributes:
        raise Forbidden("Sealing a record needs hospital or department attributes")


def _seal(record: MedicalRecord, payload: Dict[str, Any], attributes: Dict[str, str]) -> None:
    sealed = encrypt_record(payload, attributes)
    record.is_encrypted = True
    record.encrypted_data = sealed.encrypted_data
    record.encrypted_key = sealed.encrypted_key
    record.policy = sealed.policy
    record.encryption_details = sealed.encryption_details
    for name, value in REDACTED_VALUES.items():
        setattr(record, name, value)


def _unseal(record: MedicalRecord, payload: Dict[str, Any]) -> None:
    for name in SENSITIVE_FIELDS:
        value = payload.get(name)
        setattr(record, name, PLAIN_DEFAULTS[name] if value is None else value)
    record.is_encrypted = False
    record.encrypted_data = None
    record.encrypted_key = None
    record.policy = None
    record.encryption_details = {}


class RecordService:
    def __init__(self, session: Session, resolver: "AccessResolver", audit: AuditTrail) -> None:
        self.session = session
        self.resolver = resolver
        self.audit = audit
        self.index = RecordIndex(session)

    def get(self, record_id: str) -> MedicalRecord:
        record = self.session.get(MedicalRecord, record_id)
        if not record:
            raise NotFound("Medical record not found")
        return record

    def create(self, identity: Identity, data: RecordIn) -> RecordOut:
        self.resolver.patients.require(data.patient_id)
        self.resolver.require_write_level(identity.user_id, data.patient_id)
        if data.should_encrypt:
            _require_attributes(identity)

        fields = data.model_dump(exclude={"should_encrypt"})
        record = MedicalRecord(
            doctor_id=identity.user_id,
            hospital_code=identity.hospital_code or "",
            department_code=identity.department_code or "",
            **fields,
        )
        if data.should_encrypt:
            _seal(record, _sensitive(fields), identity.attributes)
        self.session.add(record)
        self.session.flush()
        self.session.refresh(record)
        self.audit.record_for(identity, "record_create", record.id, detail=record.policy)
        logger.info("record created", record_id=record.id, patient_id=record.patient_id, encrypted=record.is_encrypted)
        return present(record)

    def update(self, identity: Identity, record_id: str, patch: RecordPatch) -> RecordOut:
        record = self.get(record_id)
        if record.doctor_id != identity.user_id:
            raise Forbidden("Not authorized to update this record")
        self.resolver.require_write_level(identity.user_id, record.patient_id)
        if patch.should_encrypt and not record.is_encrypted:
            _require_attributes(identity)

        changes = patch.model_dump(exclude_unset=True, exclude={"should_encrypt"})
        sensitive_changes = {
            name: value
            for name, value in _sensitive(changes).items()
            if value is not None or PLAIN_DEFAULTS[name] is None
        }
        # Open a sealed record before touching it, so a denial leaves it unchanged.
        current = self._open(identity, record) if record.is_encrypted else None
        if changes.get("record_type") is not None:
            record.record_type = changes["record_type"]

        if current is not None:
            merged = {**current, **sensitive_changes}
            if patch.should_encrypt is False:
                _unseal(record, merged)
            else:
                _seal(record, merged, identity.attributes)
        else:
            for name, value in sensitive_changes.items():
                setattr(record, name, value)
            if patch.should_encrypt:
                _seal(record, _sensitive(record.model_dump()), identity.attributes)

        record.updated_at = utcnow()
        self.session.add(record)
        self.session.flush()
        self.session.refresh(record)
        self.audit.record_for(identity, "record_update", record.id, detail=record.policy)
        return present(record)

    def delete(self, identity: Identity, record_id: str) -> None:
        record = self.get(record_id)
        if record.doctor_id != identity.user_id:
            raise Forbidden("Not authorized to delete this record")
        self.session.delete(record)
        self.session.flush()
        self.audit.record_for(identity, "record_delete", record_id)

    def read(self, identity: Identity, record_id: str, access_code: Optional[str] = None) -> RecordOut:
        record = self.get(record_id)
        decision = self.resolver.resolve(
            identity.user_id,
            record.patient_id,
            identity.hospital_code or "",
            identity.department_code or "",
            access_code,
        )
        if not decision.granted:
            self.audit.record_for(identity, "record_read", record.id, allowed=False, detail=decision.method.value)
            if decision.request_sent:
                raise AccessRequested("Access request has been sent to the patient")
            raise Forbidden("You do not have access to this patient's data")
        if not record.is_encrypted:
            self.audit.record_for(identity, "record_read", record.id, detail=decision.method.value)
            return present(record)
        payload = self._open(identity, record)
        self.audit.record_for(identity, "record_read", record.id, detail=decision.method.value)
        return present(record, payload)

    def visible_to_doctor(self, identity: Identity, patient_id: str, decision: "AccessDecision") -> List[RecordOut]:
        """All of a patient's records for a doctor the resolver has admitted.

        Sealed records the doctor's attributes cannot open come back redacted
        and flagged, so a denial is never mistaken for a missing record.
        """
        if decision.request_sent:
            raise AccessRequested("Access request has been sent to the patient")
        if not decision.granted:
            raise Forbidden("You do not have access to this patient's data")
        views = []
        for record in self.index.for_patient(patient_id):
            if not record.is_encrypted:
                views.append(present(record))
                continue
            payload = decrypt_record(record, identity.attributes)
            if payload is None:
                self.audit.record_for(identity, "policy_denied", record.id, allowed=False, detail=record.policy)
                views.append(present(record, policy_denied=True))
            else:
                views.append(present(record, payload))
        return views

    def visible_to_patient(self, patient_id: str) -> List[RecordOut]:
        # Patients hold no hospital/department attributes, so sealed records stay redacted.
        return [
            present(record, policy_denied=record.is_encrypted)
            for record in self.index.for_patient(patient_id)
        ]

    def _open(self, identity: Identity, record: MedicalRecord) -> Dict[str, Any]:
        payload = decrypt_record(record, identity.attributes)
        if payload is None:
            self.audit.record_for(identity, "policy_denied", record.id, allowed=False, detail=record.policy)
            logger.info("policy gate denied", record_id=record.id, doctor_id=identity.user_id)
            raise PolicyDenied("Your hospital/department attributes do not satisfy this record's policy")
        return payload
