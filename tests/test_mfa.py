"""Tests for MFA enrollment, verification and the default credential verifier."""

import pyotp
import pytest
from argon2 import PasswordHasher, Type
from sqlalchemy import select

from tenant_guard.core.errors import ForbiddenError, InsufficientRoleError, InvalidCredentialsError
from tenant_guard.db.enums import AuditEventType
from tenant_guard.db.models import AuditEvent
from tenant_guard.services import mfa_service
from tenant_guard.services.credential_service import DefaultCredentialVerifier


@pytest.fixture
def fast_verifier():
    return DefaultCredentialVerifier(PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID))


class TestTotp:
    def test_current_code_verifies(self):
        secret = mfa_service.generate_totp_secret()
        assert mfa_service.verify_totp_code(secret, pyotp.TOTP(secret).now())

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef"])
    def test_malformed_codes(self, code):
        assert mfa_service.verify_totp_code(pyotp.random_base32(), code) is False

    def test_provisioning_uri(self):
        uri = mfa_service.get_totp_provisioning_uri("JBSWY3DPEHPK3PXP", "crew@riverbend.io")
        assert uri.startswith("otpauth://totp/")
        assert "secret=JBSWY3DPEHPK3PXP" in uri


class TestRecoveryCodes:
    def test_generate(self):
        codes = mfa_service.generate_recovery_codes()
        assert len(codes) == 8
        assert len(set(codes)) == 8
        assert all(len(c) == 8 for c in codes)
        assert not any(ch in "".join(codes) for ch in "01OIL")

    def test_verify_normalizes_input(self):
        hashed = [mfa_service.hash_recovery_code(c) for c in ["ABCD2345", "WXYZ6789"]]
        assert mfa_service.verify_recovery_code("wxyz-6789", hashed) == (True, 1)
        assert mfa_service.verify_recovery_code("NOPE2345", hashed) == (False, -1)


class TestEnrollment:
    def test_setup_and_verify(self, db, field_worker, verifier, clock):
        secret, uri = mfa_service.begin_totp_setup(db, field_worker, verifier, clock=clock)
        assert secret == verifier.generate_mfa_secret()
        assert field_worker.email.replace("@", "%40") in uri
        assert mfa_service.is_mfa_enabled(db, field_worker.id) is False

        with pytest.raises(InvalidCredentialsError):
            mfa_service.complete_totp_setup(db, field_worker, "111111", verifier, clock=clock)

        codes = mfa_service.complete_totp_setup(db, field_worker, verifier.VALID_CODE, verifier, clock=clock)

        assert len(codes) == 8
        mfa = mfa_service.get_mfa_settings(db, field_worker.id)
        assert mfa.totp_enabled is True
        assert codes[0] not in mfa.backup_codes
        assert mfa_service.get_mfa_status(mfa)["backup_codes_remaining"] == 8
        assert db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.MFA_ENABLED.value)
        ).one()

    def test_cannot_restart_while_enabled(self, db, field_worker, verifier, clock):
        mfa_service.begin_totp_setup(db, field_worker, verifier, clock=clock)
        mfa_service.complete_totp_setup(db, field_worker, verifier.VALID_CODE, verifier, clock=clock)
        with pytest.raises(ForbiddenError):
            mfa_service.begin_totp_setup(db, field_worker, verifier, clock=clock)

    def test_verify_mfa_methods(self, db, field_worker, verifier, clock):
        mfa_service.begin_totp_setup(db, field_worker, verifier, clock=clock)
        codes = mfa_service.complete_totp_setup(db, field_worker, verifier.VALID_CODE, verifier, clock=clock)

        assert mfa_service.verify_mfa(db, field_worker.id, verifier.VALID_CODE, verifier, clock=clock) == (True, "totp")
        assert mfa_service.verify_mfa(db, field_worker.id, codes[3], verifier, clock=clock) == (True, "recovery")
        assert mfa_service.verify_mfa(db, field_worker.id, codes[3], verifier, clock=clock) == (False, None)
        db.commit()
        mfa = mfa_service.get_mfa_settings(db, field_worker.id)
        assert mfa.backup_codes_remaining == 7
        assert mfa.recovery_codes_used == 1

    def test_disable(self, db, field_worker, verifier, clock):
        mfa_service.begin_totp_setup(db, field_worker, verifier, clock=clock)
        mfa_service.complete_totp_setup(db, field_worker, verifier.VALID_CODE, verifier, clock=clock)

        mfa = mfa_service.disable_mfa(db, field_worker, clock=clock)

        assert mfa.totp_enabled is False
        assert mfa.totp_secret is None
        assert mfa.backup_codes == []


class TestReset:
    def test_admin_resets_member(self, db, admin, field_worker, verifier, clock):
        mfa_service.begin_totp_setup(db, field_worker, verifier, clock=clock)
        mfa_service.complete_totp_setup(db, field_worker, verifier.VALID_CODE, verifier, clock=clock)

        mfa_service.reset_mfa(db, admin, field_worker.id, clock=clock)

        assert mfa_service.is_mfa_enabled(db, field_worker.id) is False
        event = db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.MFA_DISABLED.value)
        ).one()
        assert event.details == {"reset": True, "target_user_id": str(field_worker.id)}
        assert event.user_id == admin.id

    def test_supervisor_cannot_reset(self, db, supervisor, field_worker, clock):
        with pytest.raises(InsufficientRoleError):
            mfa_service.reset_mfa(db, supervisor, field_worker.id, clock=clock)


class TestDefaultCredentialVerifier:
    def test_argon2_round_trip(self, fast_verifier):
        hashed = fast_verifier.hash_password("Riverb3nd!Pump")
        assert hashed.startswith("$argon2id$")
        assert fast_verifier.verify_password("Riverb3nd!Pump", hashed) is True
        assert fast_verifier.verify_password("riverb3nd!pump", hashed) is False

    def test_salted_hashes_differ(self, fast_verifier):
        assert fast_verifier.hash_password("Riverb3nd!Pump") != fast_verifier.hash_password("Riverb3nd!Pump")

    def test_garbage_hash_is_not_an_error(self, fast_verifier):
        assert fast_verifier.verify_password("Riverb3nd!Pump", "plaintext") is False
        assert fast_verifier.verify_password("", "$argon2id$whatever") is False

    def test_totp_via_pyotp(self, fast_verifier):
        secret = fast_verifier.generate_mfa_secret()
        assert fast_verifier.verify_mfa_code(secret, pyotp.TOTP(secret).now())
