"""Medical record routes for doctors."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ..deps import access_resolver, record_service, require_action
from ..domain.policy import Identity
from ..domain.schemas import RecordIn, RecordOut, RecordPatch
from ..services.records import RecordService
from ..services.resolver import AccessResolver

router = APIRouter()


@router.post("", response_model=RecordOut, status_code=status.HTTP_201_CREATED)
def create_record(
    payload: RecordIn,
    identity: Identity = Depends(require_action("manage_records")),
    records: RecordService = Depends(record_service),
):
    return records.create(identity, payload)


@router.get(
    "/patient/{patient_id}",
    response_model=List[RecordOut],
    responses={202: {"description": "No access yet; a request was sent to the patient"}},
)
def list_patient_records(
    patient_id: str,
    access_code: Optional[str] = Query(default=None),
    identity: Identity = Depends(require_action("manage_records")),
    resolver: AccessResolver = Depends(access_resolver),
    records: RecordService = Depends(record_service),
):
    decision = resolver.resolve(
        identity.user_id,
        patient_id,
        identity.hospital_code or "",
        identity.department_code or "",
        access_code,
    )
    return records.visible_to_doctor(identity, patient_id, decision)


@router.get(
    "/{record_id}",
    response_model=RecordOut,
    responses={202: {"description": "No access yet; a request was sent to the patient"}},
)
def read_record(
    record_id: str,
    access_code: Optional[str] = Query(default=None),
    identity: Identity = Depends(require_action("manage_records")),
    records: RecordService = Depends(record_service),
):
    return records.read(identity, record_id, access_code)


@router.patch("/{record_id}", response_model=RecordOut)
def update_record(
    record_id: str,
    payload: RecordPatch,
    identity: Identity = Depends(require_action("manage_records")),
    records: RecordService = Depends(record_service),
):
    return records.update(identity, record_id, payload)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_record(
    record_id: str,
    identity: Identity = Depends(require_action("manage_records")),
    records: RecordService = Depends(record_service),
):
    records.delete(identity, record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
