"""Tests for the session manager."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from tenant_guard.core.errors import ForbiddenError, NotFoundError, SessionExpiredError
from tenant_guard.db.enums import AuditEventType
from tenant_guard.db.models import AuditEvent, UserSession
from tenant_guard.services import session_service

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1"
)


def _open(db, member, clock, **kwargs):
    return session_service.create_session(db, member.id, member.organization_id, clock=clock, **kwargs)


class TestCreateSession:
    def test_create(self, db, field_worker, clock):
        grant = _open(db, field_worker, clock, ip_address="203.0.113.7", user_agent=CHROME_UA)

        session = grant.session
        assert session.is_active is True
        assert session.expires_at == clock.now() + timedelta(minutes=15)
        assert session.session_token_hash == session_service.hash_token(grant.token)
        assert session.device_info["browser"] == "Chrome"
        assert session.device_info["device_type"] == "desktop"
        assert field_worker.last_login_at == clock.now()

        event = db.scalars(select(AuditEvent).where(AuditEvent.event_type == AuditEventType.LOGIN.value)).one()
        assert event.session_id == session.id
        assert event.ip_address == "203.0.113.7"

    def test_tokens_are_unique(self, db, field_worker, clock):
        tokens = {_open(db, field_worker, clock).token for _ in range(5)}
        assert len(tokens) == 5

    def test_parse_device_info(self):
        assert session_service.parse_device_info(None) == {"label": "Unknown Device"}
        mobile = session_service.parse_device_info(IPHONE_UA)
        assert mobile["device_type"] == "mobile"
        assert "iOS" in mobile["label"]


class TestTouchSession:
    def test_sliding_expiry(self, db, field_worker, clock):
        grant = _open(db, field_worker, clock)
        clock.advance(minutes=10)

        session = session_service.touch_session(db, grant.token, clock=clock)

        assert session.last_activity_at == clock.now()
        assert session.expires_at == clock.now() + timedelta(minutes=15)

    def test_idle_timeout(self, db, field_worker, clock):
        grant = _open(db, field_worker, clock)
        clock.advance(minutes=16)

        with pytest.raises(SessionExpiredError):
            session_service.touch_session(db, grant.token, clock=clock)

        db.refresh(grant.session)
        assert grant.session.is_active is False
        assert grant.session.end_reason == "expired"
        with pytest.raises(SessionExpiredError):
            session_service.touch_session(db, grant.token, clock=clock)

    def test_hard_lifetime_cap(self, db, field_worker, clock):
        grant = _open(db, field_worker, clock)
        created = clock.now()

        for _ in range(143):  # up to 23h50m
            clock.advance(minutes=10)
            session = session_service.touch_session(db, grant.token, clock=clock)
            assert session.expires_at <= created + timedelta(hours=24)

        assert session.expires_at == created + timedelta(hours=24)
        clock.advance(minutes=15)
        with pytest.raises(SessionExpiredError):
            session_service.touch_session(db, grant.token, clock=clock)

    def test_unknown_token(self, db, clock):
        with pytest.raises(SessionExpiredError):
            session_service.touch_session(db, "no-such-token", clock=clock)


class TestRevocation:
    def test_revoke_session(self, db, field_worker, clock):
        grant = _open(db, field_worker, clock)

        assert session_service.revoke_session(db, grant.token, clock=clock) is True
        assert session_service.revoke_session(db, grant.token, clock=clock) is False

        db.refresh(grant.session)
        assert grant.session.end_reason == "logout"
        with pytest.raises(SessionExpiredError):
            session_service.touch_session(db, grant.token, clock=clock)
        logout = db.scalars(select(AuditEvent).where(AuditEvent.event_type == AuditEventType.LOGOUT.value)).one()
        assert logout.details == {"reason": "logout"}

    def test_revoke_all_except_current(self, db, field_worker, clock):
        current = _open(db, field_worker, clock)
        _open(db, field_worker, clock)
        _open(db, field_worker, clock)

        ended = session_service.revoke_all_sessions(db, field_worker.id, except_token=current.token, clock=clock)

        assert ended == 2
        remaining = session_service.list_sessions(db, field_worker, field_worker.id, clock=clock)
        assert [s.id for s in remaining] == [current.session.id]

    def test_revoke_by_id_only_own(self, db, field_worker, supervisor, clock):
        theirs = _open(db, supervisor, clock)
        with pytest.raises(NotFoundError):
            session_service.revoke_session_by_id(db, field_worker, theirs.session.id, clock=clock)
        with pytest.raises(NotFoundError):
            session_service.revoke_session_by_id(db, field_worker, uuid.uuid4(), clock=clock)
        assert session_service.revoke_session_by_id(db, supervisor, theirs.session.id, clock=clock) is True


class TestListSessions:
    def test_lists_own_active_sessions(self, db, field_worker, clock):
        older = _open(db, field_worker, clock)
        clock.advance(minutes=1)
        newer = _open(db, field_worker, clock)

        listed = session_service.list_sessions(db, field_worker, field_worker.id, clock=clock)
        assert [s.id for s in listed] == [newer.session.id, older.session.id]

    def test_expired_sessions_hidden(self, db, field_worker, clock):
        _open(db, field_worker, clock)
        clock.advance(minutes=16)
        assert session_service.list_sessions(db, field_worker, field_worker.id, clock=clock) == []

    def test_other_identity_forbidden(self, db, admin, field_worker, clock):
        _open(db, field_worker, clock)
        with pytest.raises(ForbiddenError):
            session_service.list_sessions(db, admin, field_worker.id, clock=clock)

        denied = db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.ACCESS_DENIED.value)
        ).one()
        assert denied.details["reason"] == "other_identity"

    def test_cross_tenant_forbidden(self, db, field_worker, other_org, clock):
        with pytest.raises(ForbiddenError):
            session_service.list_sessions(db, field_worker, field_worker.id, org_id=other_org.id, clock=clock)


def test_cleanup_expired_sessions(db, field_worker, clock):
    _open(db, field_worker, clock)
    clock.advance(minutes=20)
    live = _open(db, field_worker, clock)

    assert session_service.cleanup_expired_sessions(db, clock=clock) == 1

    left = db.scalars(select(UserSession).where(UserSession.user_id == field_worker.id)).all()
    assert [s.id for s in left] == [live.session.id]
    summary = db.scalars(
        select(AuditEvent).where(AuditEvent.event_type == AuditEventType.SYSTEM_MAINTENANCE.value)
    ).one()
    assert summary.details == {"task": "session_cleanup", "deleted": 1}
