import pytest
from sqlmodel import select

from caregate.app.domain.errors import Conflict
from caregate.app.domain.models import AccessLevel, AccessRequest, RequestStatus
from caregate.app.services.requests import AUTO_APPROVAL_RESPONSE, RequestLedger


def _requests(session, status=None):
    stmt = select(AccessRequest)
    if status:
        stmt = stmt.where(AccessRequest.status == status)
    return session.exec(stmt).all()


def test_ensure_pending_is_idempotent(session):
    ledger = RequestLedger(session)
    first, created = ledger.ensure_pending("pat-1", "doc-1")
    again, created_again = ledger.ensure_pending("pat-1", "doc-1")
    session.commit()

    assert created and not created_again
    assert first.id == again.id
    assert first.access_level is AccessLevel.READ
    assert first.message.startswith("Access requested on ")
    assert len(_requests(session, RequestStatus.PENDING)) == 1


def test_losing_insert_of_a_racing_retry_is_treated_as_already_pending(session, monkeypatch):
    ledger = RequestLedger(session)
    winner, _ = ledger.ensure_pending("pat-1", "doc-1")
    session.commit()

    # Simulate a retry whose existence check ran before the winner committed.
    monkeypatch.setattr(ledger, "find_pending", lambda patient_id, doctor_id: None)
    _, created = ledger.ensure_pending("pat-1", "doc-1")
    monkeypatch.undo()

    assert not created
    assert len(_requests(session, RequestStatus.PENDING)) == 1
    assert ledger.find_pending("pat-1", "doc-1").id == winner.id


def test_submit_conflicts_with_an_existing_pending_request(session):
    ledger = RequestLedger(session)
    ledger.submit("pat-1", "doc-1", "please", AccessLevel.READ_WRITE)
    with pytest.raises(Conflict):
        ledger.submit("pat-1", "doc-1", "again", AccessLevel.READ)


def test_answered_request_frees_the_pair_for_a_new_pending_one(session):
    ledger = RequestLedger(session)
    request, _ = ledger.ensure_pending("pat-1", "doc-1")
    ledger.resolve(request, RequestStatus.REJECTED, "not now")
    _, created = ledger.ensure_pending("pat-1", "doc-1")
    session.commit()

    assert created
    assert len(_requests(session)) == 2


def test_auto_approval_is_recorded_once(session):
    ledger = RequestLedger(session)
    approved = ledger.record_auto_approval("pat-1", "doc-1")
    assert approved.status is RequestStatus.APPROVED
    assert approved.response_message == AUTO_APPROVAL_RESPONSE
    assert approved.access_level is AccessLevel.READ_WRITE
    assert approved.response_date is not None

    assert ledger.record_auto_approval("pat-1", "doc-1") is None
    assert len(_requests(session, RequestStatus.APPROVED)) == 1


def test_resolve_sets_outcome(session):
    ledger = RequestLedger(session)
    request, _ = ledger.ensure_pending("pat-1", "doc-1")
    resolved = ledger.resolve(request, RequestStatus.APPROVED, "ok")
    assert resolved.status is RequestStatus.APPROVED
    assert resolved.response_message == "ok"
    assert resolved.response_date is not None


def test_resolve_refuses_pending(session):
    ledger = RequestLedger(session)
    request, _ = ledger.ensure_pending("pat-1", "doc-1")
    with pytest.raises(ValueError):
        ledger.resolve(request, RequestStatus.PENDING)


def test_listings(session):
    ledger = RequestLedger(session)
    ledger.ensure_pending("pat-1", "doc-1")
    ledger.ensure_pending("pat-2", "doc-1")
    ledger.record_auto_approval("pat-1", "doc-2")

    assert {r.patient_id for r in ledger.list_for_doctor("doc-1")} == {"pat-1", "pat-2"}
    assert len(ledger.list_for_patient("pat-1")) == 2
    assert [r.doctor_id for r in ledger.list_for_patient("pat-1", RequestStatus.PENDING)] == ["doc-1"]
    assert len(ledger.list_pending()) == 2
