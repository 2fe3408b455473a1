"""Access resolver: may this doctor touch this patient's data right now?

Each strategy is a decision function over an ``AccessAttempt`` and read-only
``AccessFacts``; it returns a decision or ``None`` to pass to the next one.
The first decision wins. Side effects (history, grants, requests, audit) are
applied once, after the decision is known.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

import structlog

from ..domain.errors import Forbidden
from ..domain.models import AccessGrant, AccessLevel, PatientProfile, utcnow
from ..domain.policy import Role
from .audit import AuditTrail
from .directory import PatientDirectory
from .grants import GrantStore
from .history import HistoryStore
from .records import RecordIndex
from .requests import RequestLedger

logger = structlog.get_logger(__name__)


class AccessMethod(str, Enum):
    ACCESS_CODE = "access_code"
    EXISTING_GRANT = "existing_grant"
    SAME_HOSPITAL = "same_hospital"
    SAME_DEPARTMENT = "same_department"
    REQUEST_SENT = "request_sent"
    DENIED = "denied"


@dataclass(frozen=True)
class AccessAttempt:
    doctor_id: str
    patient: PatientProfile
    hospital_code: str
    department_code: str
    access_code: Optional[str] = None
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    method: AccessMethod
    access_level: Optional[AccessLevel] = None

    @property
    def request_sent(self) -> bool:
        return self.method is AccessMethod.REQUEST_SENT


class AccessFacts:
    """Read-only lookups the strategies may consult; each is fetched at most once."""

    def __init__(self, grants: GrantStore, records: RecordIndex) -> None:
        self._grants = grants
        self._records = records
        self._grant_cache: dict = {}

    def current_grant(self, attempt: AccessAttempt) -> Optional[AccessGrant]:
        key = (attempt.patient.id, attempt.doctor_id)
        if key not in self._grant_cache:
            self._grant_cache[key] = self._grants.find_current(attempt.patient.id, attempt.doctor_id, attempt.at)
        return self._grant_cache[key]

    def authored_in_hospital(self, attempt: AccessAttempt) -> bool:
        return self._records.has_authored_in_hospital(attempt.patient.id, attempt.doctor_id, attempt.hospital_code)

    def seen_in_department(self, attempt: AccessAttempt) -> bool:
        return self._records.has_department_record(attempt.patient.id, attempt.department_code)


Strategy = Callable[[AccessAttempt, AccessFacts], Optional[AccessDecision]]


def match_access_code(attempt: AccessAttempt, facts: AccessFacts) -> Optional[AccessDecision]:
    if attempt.patient.matches_code(attempt.access_code):
        return AccessDecision(True, AccessMethod.ACCESS_CODE, AccessLevel.READ_WRITE)
    return None


def match_existing_grant(attempt: AccessAttempt, facts: AccessFacts) -> Optional[AccessDecision]:
    grant = facts.current_grant(attempt)
    if grant:
        return AccessDecision(True, AccessMethod.EXISTING_GRANT, grant.access_level)
    return None


def match_same_hospital(attempt: AccessAttempt, facts: AccessFacts) -> Optional[AccessDecision]:
    # Heuristic paths are read-only and never persist a grant.
    if attempt.hospital_code and facts.authored_in_hospital(attempt):
        return AccessDecision(True, AccessMethod.SAME_HOSPITAL, AccessLevel.READ)
    return None


def match_same_department(attempt: AccessAttempt, facts: AccessFacts) -> Optional[AccessDecision]:
    if attempt.department_code and facts.seen_in_department(attempt):
        return AccessDecision(True, AccessMethod.SAME_DEPARTMENT, AccessLevel.READ)
    return None


DEFAULT_STRATEGIES: Sequence[Strategy] = (
    match_access_code,
    match_existing_grant,
    match_same_hospital,
    match_same_department,
)


def no_access(attempt: AccessAttempt) -> AccessDecision:
    if attempt.access_code:
        return AccessDecision(False, AccessMethod.DENIED)
    return AccessDecision(False, AccessMethod.REQUEST_SENT)


def decide(attempt: AccessAttempt, facts: AccessFacts, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> AccessDecision:
    for strategy in strategies:
        decision = strategy(attempt, facts)
        if decision is not None:
            return decision
    return no_access(attempt)


class AccessResolver:
    def __init__(
        self,
        patients: PatientDirectory,
        grants: GrantStore,
        requests: RequestLedger,
        history: HistoryStore,
        records: RecordIndex,
        audit: AuditTrail,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.patients = patients
        self.grants = grants
        self.requests = requests
        self.history = history
        self.records = records
        self.audit = audit
        self.strategies = tuple(strategies)

    def resolve(
        self,
        doctor_id: str,
        patient_id: str,
        hospital_code: str,
        department_code: str,
        access_code: Optional[str] = None,
    ) -> AccessDecision:
        patient = self.patients.require(patient_id)
        return self.resolve_patient(doctor_id, patient, hospital_code, department_code, access_code)

    def resolve_patient(
        self,
        doctor_id: str,
        patient: PatientProfile,
        hospital_code: str,
        department_code: str,
        access_code: Optional[str] = None,
    ) -> AccessDecision:
        attempt = AccessAttempt(
            doctor_id=doctor_id,
            patient=patient,
            hospital_code=hospital_code,
            department_code=department_code,
            access_code=access_code,
        )
        decision = decide(attempt, AccessFacts(self.grants, self.records), self.strategies)
        self._apply(attempt, decision)
        return decision

    def require_write_level(self, doctor_id: str, patient_id: str) -> bool:
        """Gate for record create/update: a current grant at readWrite level is required."""
        grant = self.grants.find_current(patient_id, doctor_id)
        if not grant:
            raise Forbidden("You do not have access to this patient's records")
        if grant.access_level is not AccessLevel.READ_WRITE:
            raise Forbidden("You only have read access to this patient's records")
        return True

    def _apply(self, attempt: AccessAttempt, decision: AccessDecision) -> None:
        patient = attempt.patient
        self.history.record_contact(
            doctor_id=attempt.doctor_id,
            patient_id=patient.id,
            full_name=patient.full_name,
            hospital_code=attempt.hospital_code,
            department_code=attempt.department_code,
            has_active_access=decision.granted,
        )
        if decision.method is AccessMethod.ACCESS_CODE:
            self.grants.activate_by_code(patient.id, attempt.doctor_id, attempt.at)
            self.requests.record_auto_approval(patient.id, attempt.doctor_id)
        elif decision.method is AccessMethod.REQUEST_SENT:
            self.requests.ensure_pending(patient.id, attempt.doctor_id)

        self.audit.record(
            actor_id=attempt.doctor_id,
            role=Role.DOCTOR.value,
            action="resolve_access",
            resource=patient.id,
            allowed=decision.granted,
            detail=decision.method.value,
        )
        logger.info(
            "access resolved",
            doctor_id=attempt.doctor_id,
            patient_id=patient.id,
            granted=decision.granted,
            method=decision.method.value,
            access_level=decision.access_level.value if decision.access_level else None,
        )
