"""Default credential verifier: argon2id password hashes and pyotp TOTP codes."""

import logging

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from tenant_guard.services import mfa_service

logger = logging.getLogger(__name__)


class DefaultCredentialVerifier:
    """CredentialVerifier backed by argon2-cffi and pyotp."""

    def __init__(self, hasher: PasswordHasher | None = None):
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)

    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        if not password or not password_hash:
            return False
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("Stored password hash could not be verified")
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        return self._pwd_hasher.check_needs_rehash(password_hash)

    def generate_mfa_secret(self) -> str:
        return mfa_service.generate_totp_secret()

    def verify_mfa_code(self, secret: str, code: str) -> bool:
        return mfa_service.verify_totp_code(secret, code)


default_verifier = DefaultCredentialVerifier()
