from datetime import timedelta, timezone

from sqlmodel import Session, func, select

from caregate.app.domain.models import AccessGrant, AccessLevel, utcnow
from caregate.app.services.grants import GrantStore, expiry_from_now


def _count(session) -> int:
    return session.exec(select(func.count()).select_from(AccessGrant)).one()


def test_upsert_overwrites_the_pair_row(session):
    store = GrantStore(session)
    first = store.upsert("pat-1", "doc-1", AccessLevel.READ, expiry_from_now(5))
    second = store.upsert("pat-1", "doc-1", AccessLevel.READ_WRITE, expiry_from_now(30))
    session.commit()

    assert first.id == second.id
    assert second.access_level is AccessLevel.READ_WRITE
    assert second.is_active
    assert _count(session) == 1


def test_upsert_reactivates_an_inactive_grant(session, add_grant):
    add_grant("pat-1", "doc-1", AccessLevel.READ, is_active=False)
    grant = GrantStore(session).upsert("pat-1", "doc-1", AccessLevel.READ, expiry_from_now(30))
    assert grant.is_active


def test_expired_grant_is_not_current(session, add_grant):
    add_grant("pat-1", "doc-1", days=-1)
    store = GrantStore(session)
    assert store.find("pat-1", "doc-1") is not None
    assert store.find_current("pat-1", "doc-1") is None


def test_inactive_grant_is_not_current(session, add_grant):
    add_grant("pat-1", "doc-1", is_active=False)
    assert GrantStore(session).find_current("pat-1", "doc-1") is None


def test_activate_by_code_creates_a_year_long_read_write_grant(session):
    now = utcnow()
    grant = GrantStore(session).activate_by_code("pat-1", "doc-1", now)
    assert grant.access_level is AccessLevel.READ_WRITE
    assert grant.is_active
    assert grant.expires_at - now == timedelta(days=365)


def test_activate_by_code_revives_a_revoked_grant(session, add_grant):
    add_grant("pat-1", "doc-1", AccessLevel.READ, is_active=False, days=3)
    now = utcnow()
    grant = GrantStore(session).activate_by_code("pat-1", "doc-1", now)
    assert grant.is_active
    assert grant.access_level is AccessLevel.READ_WRITE
    assert grant.expires_at - now == timedelta(days=365)
    assert _count(session) == 1


def test_activate_by_code_revives_an_expired_grant(session, add_grant):
    add_grant("pat-1", "doc-1", AccessLevel.READ, days=-2)
    grant = GrantStore(session).activate_by_code("pat-1", "doc-1")
    assert grant.is_current()
    assert grant.access_level is AccessLevel.READ_WRITE


def test_activate_by_code_leaves_a_current_grant_alone(session, add_grant):
    original = add_grant("pat-1", "doc-1", AccessLevel.READ, days=10)
    expires_at = original.expires_at
    grant = GrantStore(session).activate_by_code("pat-1", "doc-1")
    assert grant.access_level is AccessLevel.READ
    assert grant.expires_at == expires_at


def test_repeated_code_redemption_keeps_one_row(session):
    store = GrantStore(session)
    for _ in range(3):
        store.activate_by_code("pat-1", "doc-1")
    session.commit()
    assert _count(session) == 1


def test_current_listings_skip_expired_and_inactive(session, add_grant):
    add_grant("pat-1", "doc-1")
    add_grant("pat-1", "doc-2", days=-1)
    add_grant("pat-1", "doc-3", is_active=False)
    add_grant("pat-2", "doc-1", AccessLevel.READ)
    store = GrantStore(session)

    assert [g.doctor_id for g in store.list_current_for_patient("pat-1")] == ["doc-1"]
    assert sorted(g.patient_id for g in store.list_current_for_doctor("doc-1")) == ["pat-1", "pat-2"]


def test_expiry_survives_a_fresh_session_as_aware_utc(engine, session):
    expires_at = expiry_from_now(30)
    GrantStore(session).upsert("pat-1", "doc-1", AccessLevel.READ, expires_at)
    session.commit()

    with Session(engine) as other:
        stored = GrantStore(other).find("pat-1", "doc-1")
    assert stored.expires_at.tzinfo is timezone.utc
    assert stored.expires_at == expires_at
    assert stored.is_current()
