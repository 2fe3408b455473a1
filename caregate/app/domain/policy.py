"""Caller identity and role-based route policy."""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"
    RECEPTIONIST = "receptionist"


class RequestScope(str, Enum):
    """Which side of the request ledger a caller lists."""

    DOCTOR = "doctor"
    PATIENT = "patient"
    ALL = "all"
    NONE = "none"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Role
    hospital_code: Optional[str] = None
    department_code: Optional[str] = None

    @property
    def attributes(self) -> Dict[str, str]:
        """Attributes presented to the record policy gate."""
        attrs: Dict[str, str] = {}
        if self.hospital_code:
            attrs["hospital"] = self.hospital_code
        if self.department_code:
            attrs["department"] = self.department_code
        return attrs


def request_scope(identity: Identity) -> RequestScope:
    if identity.role is Role.DOCTOR:
        return RequestScope.DOCTOR
    if identity.role is Role.PATIENT:
        return RequestScope.PATIENT
    if identity.role is Role.ADMIN:
        return RequestScope.ALL
    if identity.role is Role.RECEPTIONIST:
        return RequestScope.NONE
    raise ValueError(f"Unhandled role: {identity.role!r}")


def is_allowed(identity: Identity, action: str, resource_owner: Optional[str] = None) -> bool:
    if identity.role is Role.DOCTOR:
        return action in {"resolve_access", "request_access", "list_history", "manage_records"}
    if identity.role is Role.PATIENT:
        if action in {"manage_grants", "respond_request", "rotate_access_code"}:
            return True
        if action == "view_own_records":
            return resource_owner is None or resource_owner == identity.user_id
        return False
    if identity.role is Role.ADMIN:
        return action == "list_requests"
    if identity.role is Role.RECEPTIONIST:
        return False
    raise ValueError(f"Unhandled role: {identity.role!r}")
