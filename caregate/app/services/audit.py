"""Audit trail for authorization decisions and access-control mutations."""
from typing import Optional

from sqlmodel import Session

from ..domain.models import AuditEvent
from ..domain.policy import Identity


class AuditTrail:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self,
        actor_id: str,
        role: str,
        action: str,
        resource: str,
        allowed: bool = True,
        detail: Optional[str] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor_id=actor_id,
            role=role,
            action=action,
            resource=resource,
            allowed=allowed,
            detail=detail,
        )
        self.session.add(event)
        return event

    def record_for(
        self,
        identity: Identity,
        action: str,
        resource: str,
        allowed: bool = True,
        detail: Optional[str] = None,
    ) -> AuditEvent:
        return self.record(identity.user_id, identity.role.value, action, resource, allowed, detail)
