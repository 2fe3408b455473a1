"""Patient-facing consent routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..deps import consent_service, current_identity, record_service, require_action
from ..domain.models import AccessGrantRead, RequestStatus
from ..domain.policy import Identity
from ..domain.schemas import (
    AccessCodeOut,
    AccessRequestOut,
    GrantIn,
    GrantOut,
    RecordOut,
    RespondIn,
    RevokeOut,
)
from ..services.consent import ConsentService
from ..services.records import RecordService

router = APIRouter()


@router.get("/grants", response_model=List[GrantOut])
def list_grants(
    identity: Identity = Depends(require_action("manage_grants")),
    consent: ConsentService = Depends(consent_service),
):
    return consent.list_grants(identity.user_id)


@router.post("/grants", response_model=GrantOut, status_code=status.HTTP_201_CREATED)
def grant_access(
    payload: GrantIn,
    identity: Identity = Depends(require_action("manage_grants")),
    consent: ConsentService = Depends(consent_service),
):
    return consent.grant(identity.user_id, payload.doctor_id, payload.access_level, payload.expiry_days)


@router.delete("/grants/{doctor_id}", response_model=RevokeOut)
def revoke_access(
    doctor_id: str,
    identity: Identity = Depends(require_action("manage_grants")),
    consent: ConsentService = Depends(consent_service),
):
    grant, fully_revoked = consent.revoke(identity.user_id, doctor_id)
    message = "Access revoked" if fully_revoked else "Access downgraded to read-only"
    return RevokeOut(message=message, fully_revoked=fully_revoked, grant=AccessGrantRead.model_validate(grant))


@router.get("/requests", response_model=List[AccessRequestOut])
def list_requests(
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    identity: Identity = Depends(current_identity),
    consent: ConsentService = Depends(consent_service),
):
    return consent.list_requests(identity, status_filter)


@router.post("/requests/{request_id}/respond", response_model=AccessRequestOut)
def respond_to_request(
    request_id: str,
    payload: RespondIn,
    identity: Identity = Depends(require_action("respond_request")),
    consent: ConsentService = Depends(consent_service),
):
    return consent.respond(
        identity.user_id,
        request_id,
        RequestStatus(payload.status),
        payload.response_message,
    )


@router.post("/access-code", response_model=AccessCodeOut)
def rotate_access_code(
    identity: Identity = Depends(require_action("rotate_access_code")),
    consent: ConsentService = Depends(consent_service),
):
    patient = consent.rotate_access_code(identity.user_id)
    return AccessCodeOut(access_code=patient.access_code)


@router.get("/records", response_model=List[RecordOut])
def my_records(
    identity: Identity = Depends(require_action("view_own_records")),
    records: RecordService = Depends(record_service),
):
    return records.visible_to_patient(identity.user_id)
