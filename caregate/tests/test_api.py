import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session

from caregate.app import deps
from caregate.app.domain.models import PatientProfile
from caregate.app.infra import db
from caregate.app.main import create_app

DOCTOR = {"X-User-Id": "doc-1", "X-User-Role": "doctor", "X-Hospital-Code": "H1", "X-Department-Code": "D1"}
MOVED_DOCTOR = {**DOCTOR, "X-Department-Code": "D2"}
PATIENT = {"X-User-Id": "pat-1", "X-User-Role": "patient"}
ADMIN = {"X-User-Id": "adm-1", "X-User-Role": "admin"}


@pytest.fixture
def client(engine, monkeypatch, patient, doctor):
    monkeypatch.setattr(db, "SessionLocal", sessionmaker(bind=engine, class_=Session, autoflush=False))
    return TestClient(create_app())


def _access(client, headers=DOCTOR, **body):
    body.setdefault("patient_ref", "pat-1")
    return client.post("/doctors/patients/access", json=body, headers=headers)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_identity_is_unauthorized(client):
    assert client.get("/patients/grants").status_code == 401
    assert client.get("/patients/grants", headers={"X-User-Id": "x", "X-User-Role": "janitor"}).status_code == 401


def test_role_guard(client):
    resp = client.get("/patients/grants", headers=DOCTOR)
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"


def test_lookup_without_code_sends_a_request(client):
    resp = _access(client)
    assert resp.status_code == 202
    body = resp.json()
    assert body["summary"] == {"id": "pat-1", "full_name": "Asha Rao", "access_request_sent": True}
    assert body["records"] == []

    pending = client.get("/patients/requests", params={"status": "pending"}, headers=PATIENT).json()
    assert [r["doctor_id"] for r in pending] == ["doc-1"]


def test_denied_lookup_still_records_history(client):
    resp = _access(client, access_code="000000000000")
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"

    history = client.get("/doctors/history", headers=DOCTOR).json()
    assert [(h["patient_id"], h["has_active_access"]) for h in history] == [("pat-1", False)]
    assert client.get("/doctors/requests", headers=DOCTOR).json() == []


def test_lookup_with_code_grants_full_access(client):
    resp = _access(client, access_code="111122223333")
    assert resp.status_code == 200
    body = resp.json()
    assert body["access_method"] == "access_code"
    assert body["access_level"] == "readWrite"
    assert body["patient"]["id"] == "pat-1"
    assert "access_code" not in body["patient"]

    grants = client.get("/patients/grants", headers=PATIENT).json()
    assert [(g["doctor_id"], g["access_level"], g["doctor_name"]) for g in grants] == [
        ("doc-1", "readWrite", "Dr. Ken Mori")
    ]
    statuses = [r["status"] for r in client.get("/patients/requests", headers=PATIENT).json()]
    assert statuses == ["approved"]


def test_record_listing_without_access_files_a_request(client):
    resp = client.get("/records/patient/pat-1", headers=DOCTOR)
    assert resp.status_code == 202
    assert resp.json()["code"] == "access_request_sent"
    assert [r["status"] for r in client.get("/doctors/requests", headers=DOCTOR).json()] == ["pending"]


def test_record_listing_with_wrong_code_is_forbidden(client):
    resp = client.get("/records/patient/pat-1", params={"access_code": "000000000000"}, headers=DOCTOR)
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"
    assert client.get("/doctors/requests", headers=DOCTOR).json() == []


def test_access_code_works_as_patient_reference(client):
    resp = _access(client, patient_ref="111122223333")
    assert resp.status_code == 202
    assert resp.json()["summary"]["id"] == "pat-1"


def test_unknown_reference(client):
    resp = _access(client, patient_ref="nobody")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_history_stub_when_patient_is_gone(client, engine):
    _access(client, access_code="111122223333")
    with Session(engine) as other:
        other.delete(other.get(PatientProfile, "pat-1"))
        other.commit()

    resp = _access(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["history"]["patient_id"] == "pat-1"
    assert body["history"]["has_active_access"] is False
    assert body["history"]["is_historical_record"] is True
    assert body["records"] == []


def test_grant_revoke_cycle(client):
    resp = client.post("/patients/grants", json={"doctor_id": "doc-1"}, headers=PATIENT)
    assert resp.status_code == 201
    assert resp.json()["access_level"] == "readWrite"

    first = client.delete("/patients/grants/doc-1", headers=PATIENT).json()
    assert first["fully_revoked"] is False
    assert first["grant"]["access_level"] == "read"

    second = client.delete("/patients/grants/doc-1", headers=PATIENT).json()
    assert second["fully_revoked"] is True
    assert second["grant"]["is_active"] is False

    third = client.delete("/patients/grants/doc-1", headers=PATIENT)
    assert third.status_code == 404

    history = client.get("/doctors/history", headers=DOCTOR).json()
    assert history[0]["has_active_access"] is False
    assert history[0]["access_revoked_at"] is not None


def test_request_and_approval(client):
    resp = client.post("/doctors/requests", json={"patient_id": "pat-1", "message": "consult"}, headers=DOCTOR)
    assert resp.status_code == 201
    request_id = resp.json()["id"]

    dup = client.post("/doctors/requests", json={"patient_id": "pat-1"}, headers=DOCTOR)
    assert dup.status_code == 409
    assert dup.json()["code"] == "conflict"

    assert [r["id"] for r in client.get("/doctors/requests", headers=ADMIN).json()] == [request_id]

    answered = client.post(
        f"/patients/requests/{request_id}/respond",
        json={"status": "approved", "response_message": "fine"},
        headers=PATIENT,
    )
    assert answered.status_code == 200
    assert answered.json()["status"] == "approved"

    again = client.post(f"/patients/requests/{request_id}/respond", json={"status": "rejected"}, headers=PATIENT)
    assert again.status_code == 404

    patients = client.get("/doctors/patients", headers=DOCTOR).json()
    assert [p["id"] for p in patients] == ["pat-1"]


def test_receptionist_cannot_list_requests(client):
    resp = client.get("/doctors/requests", headers={"X-User-Id": "rec-1", "X-User-Role": "receptionist"})
    assert resp.status_code == 403


def test_rotated_code_and_legacy_code_both_work(client):
    new_code = client.post("/patients/access-code", headers=PATIENT).json()["access_code"]
    assert len(new_code) == 12 and new_code != "111122223333"

    assert _access(client, access_code="111122223333").status_code == 200
    assert _access(client, access_code=new_code).status_code == 200


def _create_sealed_record(client):
    _access(client, access_code="111122223333")
    resp = client.post(
        "/records",
        json={"patient_id": "pat-1", "diagnosis": "Arrhythmia", "notes": "private", "should_encrypt": True},
        headers=DOCTOR,
    )
    assert resp.status_code == 201
    return resp.json()


def test_sealed_record_round_trip(client):
    created = _create_sealed_record(client)
    assert created["diagnosis"] == "[Encrypted]"
    assert "encrypted_key" not in created and "encrypted_data" not in created

    opened = client.get(f"/records/{created['id']}", headers=DOCTOR).json()
    assert opened["diagnosis"] == "Arrhythmia"
    assert opened["is_decrypted"] is True


def test_policy_denied_is_distinct_from_forbidden(client):
    created = _create_sealed_record(client)

    resp = client.get(f"/records/{created['id']}", headers=MOVED_DOCTOR)
    assert resp.status_code == 423
    assert resp.json()["code"] == "policy_denied"

    listing = client.get("/records/patient/pat-1", headers=MOVED_DOCTOR).json()
    assert [(r["id"], r["policy_denied"]) for r in listing] == [(created["id"], True)]


def test_patient_sees_own_records_redacted(client):
    created = _create_sealed_record(client)
    records = client.get("/patients/records", headers=PATIENT).json()
    assert [(r["id"], r["diagnosis"], r["policy_denied"]) for r in records] == [
        (created["id"], "[Encrypted]", True)
    ]


def test_read_only_grant_cannot_write(client):
    client.post("/patients/grants", json={"doctor_id": "doc-1", "access_level": "read"}, headers=PATIENT)
    resp = client.post("/records", json={"patient_id": "pat-1", "diagnosis": "x"}, headers=DOCTOR)
    assert resp.status_code == 403


def test_record_update_and_delete(client):
    created = _create_sealed_record(client)
    patched = client.patch(f"/records/{created['id']}", json={"should_encrypt": False}, headers=DOCTOR)
    assert patched.status_code == 200
    assert patched.json()["diagnosis"] == "Arrhythmia"

    assert client.delete(f"/records/{created['id']}", headers=DOCTOR).status_code == 204
    assert client.get(f"/records/{created['id']}", headers=DOCTOR).status_code == 404


def test_storage_outage_is_503(client):
    def broken():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    client.app.dependency_overrides[deps.access_resolver] = broken
    resp = client.get("/doctors/history", headers=DOCTOR)
    assert resp.status_code == 503
    assert resp.json()["code"] == "storage_unavailable"
