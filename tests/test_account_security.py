"""Tests for lockout, unlock and password policy."""

import pytest
from sqlalchemy import select

from tenant_guard.core.config import settings
from tenant_guard.core.errors import InsufficientRoleError, InvalidInputError, NotFoundError
from tenant_guard.db.enums import AuditEventType
from tenant_guard.db.models import AuditEvent, PasswordHistoryEntry
from tenant_guard.services import account_security_service as guard

EMAIL = "crew@riverbend.io"


def _fail(db, clock, times, email=EMAIL):
    status = None
    for _ in range(times):
        status = guard.record_attempt(db, email, "198.51.100.4", False, clock=clock)
    db.commit()
    return status


class TestLockout:
    def test_four_failures_not_locked(self, db, clock):
        status = _fail(db, clock, 4)
        assert status.locked is False
        assert status.failed_count == 4
        assert status.remaining == 1

    def test_fifth_failure_locks(self, db, clock):
        status = _fail(db, clock, 5)
        assert status.locked is True
        assert status.remaining == 0
        assert guard.check_lockout(db, EMAIL, clock=clock).locked is True

        locked = db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.ACCOUNT_LOCKED.value)
        ).all()
        assert len(locked) == 1
        assert locked[0].details["failed_count"] == 5
        assert EMAIL not in str(locked[0].details)

    def test_further_failures_do_not_relock(self, db, clock):
        _fail(db, clock, 7)
        locked = db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.ACCOUNT_LOCKED.value)
        ).all()
        assert len(locked) == 1

    def test_email_is_case_insensitive(self, db, clock):
        _fail(db, clock, 5, email="CREW@Riverbend.io")
        assert guard.check_lockout(db, EMAIL, clock=clock).locked is True

    def test_lock_lifts_when_window_passes(self, db, clock):
        _fail(db, clock, 5)
        clock.advance(minutes=59)
        assert guard.check_lockout(db, EMAIL, clock=clock).locked is True
        clock.advance(minutes=2)
        status = guard.check_lockout(db, EMAIL, clock=clock)
        assert status.locked is False
        assert status.failed_count == 0

    def test_sliding_window(self, db, clock):
        _fail(db, clock, 3)
        clock.advance(minutes=40)
        _fail(db, clock, 2)
        assert guard.check_lockout(db, EMAIL, clock=clock).locked is True
        clock.advance(minutes=21)
        # The first three have aged out
        assert guard.check_lockout(db, EMAIL, clock=clock).failed_count == 2

    def test_success_does_not_reset_by_default(self, db, clock):
        _fail(db, clock, 4)
        guard.record_attempt(db, EMAIL, None, True, clock=clock)
        assert guard.check_lockout(db, EMAIL, clock=clock).failed_count == 4

    def test_success_resets_when_configured(self, db, clock, monkeypatch):
        monkeypatch.setattr(settings, "LOCKOUT_RESET_ON_SUCCESS", True)
        _fail(db, clock, 4)
        clock.advance(seconds=1)
        guard.record_attempt(db, EMAIL, None, True, clock=clock)
        clock.advance(seconds=1)
        status = _fail(db, clock, 1)
        assert status.failed_count == 1

    def test_other_emails_unaffected(self, db, clock):
        _fail(db, clock, 5)
        assert guard.check_lockout(db, "lead@riverbend.io", clock=clock).failed_count == 0


class TestUnlock:
    def test_admin_unlocks_member(self, db, admin, field_worker, clock):
        _fail(db, clock, 5, email=field_worker.email)

        cleared = guard.unlock_account(db, admin, field_worker.email, clock=clock)

        assert cleared == 5
        assert guard.check_lockout(db, field_worker.email, clock=clock).locked is False
        event = db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.ACCOUNT_UNLOCKED.value)
        ).one()
        assert event.details["target_user_id"] == str(field_worker.id)

    def test_supervisor_cannot_unlock(self, db, supervisor, field_worker, clock):
        _fail(db, clock, 5, email=field_worker.email)
        with pytest.raises(InsufficientRoleError):
            guard.unlock_account(db, supervisor, field_worker.email, clock=clock)
        assert guard.check_lockout(db, field_worker.email, clock=clock).locked is True

    def test_cannot_unlock_other_tenant_member(self, db, other_admin, field_worker, clock):
        with pytest.raises(NotFoundError):
            guard.unlock_account(db, other_admin, field_worker.email, clock=clock)


class TestPasswordPolicy:
    @pytest.mark.parametrize(
        "password",
        [
            "Sh0rt!",
            "alllowercase1!x",
            "ALLUPPERCASE1!X",
            "NoDigitsHere!!x",
            "NoSpecials1234x",
            "Has Space1!xxxx",
        ],
    )
    def test_weak_passwords(self, password):
        with pytest.raises(InvalidInputError):
            guard.validate_password_strength(password)

    def test_strong_password(self):
        guard.validate_password_strength("Riverb3nd!Pump")

    def test_reuse_detected(self, db, field_worker, clock):
        guard.record_password_change(db, field_worker.id, field_worker.organization_id, "hashed::First!Pass12", clock=clock)
        db.commit()
        assert guard.check_password_reuse(db, field_worker.id, "hashed::First!Pass12", clock=clock) is True
        assert guard.check_password_reuse(db, field_worker.id, "hashed::Other!Pass12", clock=clock) is False

    def test_reuse_with_verifier(self, db, field_worker, clock, verifier):
        guard.record_password_change(
            db, field_worker.id, field_worker.organization_id, verifier.hash_password("First!Pass12"), clock=clock
        )
        db.commit()
        assert guard.is_password_reused(db, field_worker.id, "First!Pass12", verifier, clock=clock)
        assert not guard.is_password_reused(db, field_worker.id, "Second!Pass12", verifier, clock=clock)

    def test_history_depth(self, db, field_worker, clock):
        for i in range(14):
            guard.record_password_change(
                db, field_worker.id, field_worker.organization_id, f"hashed::pw-{i}", clock=clock, audit=False
            )
            clock.advance(days=1)
        db.commit()

        hashes = db.scalars(
            select(PasswordHistoryEntry.password_hash).where(PasswordHistoryEntry.user_id == field_worker.id)
        ).all()
        assert len(hashes) == 12
        assert "hashed::pw-0" not in hashes
        assert "hashed::pw-1" not in hashes
        # Oldest two aged out of the depth; the 13th most recent may be reused
        assert guard.check_password_reuse(db, field_worker.id, "hashed::pw-1", clock=clock) is False
        assert guard.check_password_reuse(db, field_worker.id, "hashed::pw-2", clock=clock) is True

    def test_history_retention(self, db, field_worker, clock):
        guard.record_password_change(db, field_worker.id, field_worker.organization_id, "hashed::ancient", clock=clock)
        db.commit()
        clock.advance(days=181)
        assert guard.check_password_reuse(db, field_worker.id, "hashed::ancient", clock=clock) is False
        assert guard.prune_password_history(db, clock=clock) == 1


def test_prune_login_attempts(db, clock):
    _fail(db, clock, 3)
    clock.advance(days=31)
    _fail(db, clock, 1)
    assert guard.prune_login_attempts(db, clock=clock) == 3
