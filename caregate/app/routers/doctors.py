"""Doctor-facing access routes: cross-hospital lookup, requests and history."""
from typing import List

from fastapi import APIRouter, Depends, Response, status

from ..deps import consent_service, current_identity, patient_lookup, require_action
from ..domain.policy import Identity
from ..domain.schemas import (
    AccessRequestIn,
    AccessRequestOut,
    HistoryOut,
    PatientAccessIn,
    PatientAccessOut,
    PatientDetails,
)
from ..services.consent import ConsentService
from ..services.lookup import PatientLookup

router = APIRouter()


@router.post("/patients/access", response_model=PatientAccessOut)
def access_patient(
    payload: PatientAccessIn,
    response: Response,
    identity: Identity = Depends(require_action("resolve_access")),
    lookup: PatientLookup = Depends(patient_lookup),
):
    status_code, body = lookup.access(identity, payload.patient_ref, payload.access_code)
    response.status_code = status_code
    return body


@router.get("/patients", response_model=List[PatientDetails])
def my_patients(
    identity: Identity = Depends(require_action("resolve_access")),
    consent: ConsentService = Depends(consent_service),
):
    return consent.list_my_patients(identity.user_id)


@router.get("/history", response_model=List[HistoryOut])
def history(
    identity: Identity = Depends(require_action("list_history")),
    consent: ConsentService = Depends(consent_service),
):
    return consent.list_history(identity.user_id)


@router.post("/requests", response_model=AccessRequestOut, status_code=status.HTTP_201_CREATED)
def request_access(
    payload: AccessRequestIn,
    identity: Identity = Depends(require_action("request_access")),
    consent: ConsentService = Depends(consent_service),
):
    return consent.request_access(identity.user_id, payload.patient_id, payload.message, payload.access_level)


@router.get("/requests", response_model=List[AccessRequestOut])
def list_requests(
    identity: Identity = Depends(current_identity),
    consent: ConsentService = Depends(consent_service),
):
    # Scope follows the caller's role: own requests for doctors, all pending for admins.
    return consent.list_requests(identity)
