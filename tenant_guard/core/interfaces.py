"""Collaborator interfaces injected into the services."""

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID


class Clock(Protocol):
    def now(self) -> datetime: ...


class IdentityRecord(Protocol):
    """Minimal shape the services read from an identity."""

    id: UUID
    email: str
    password_hash: str | None


class IdentityStore(Protocol):
    """Where login identities live (local table, external IdP, ...)."""

    def get(self, identity_id: UUID) -> IdentityRecord | None: ...

    def find_by_email(self, email: str) -> IdentityRecord | None: ...

    def create_identity(
        self, email: str, password_hash: str, attributes: dict[str, Any] | None = None
    ) -> IdentityRecord: ...

    def update_password_hash(self, identity_id: UUID, password_hash: str) -> None: ...


class CredentialVerifier(Protocol):
    """Password hashing and MFA code checks."""

    def hash_password(self, password: str) -> str: ...

    def verify_password(self, password: str, password_hash: str) -> bool: ...

    def generate_mfa_secret(self) -> str: ...

    def verify_mfa_code(self, secret: str, code: str) -> bool: ...


class Notifier(Protocol):
    """Outbound delivery for invitation and security mail.

    Implementations may raise; callers dispatch fire-and-forget and log failures.
    """

    def send_invitation(
        self,
        *,
        to_email: str,
        token: str,
        organization_name: str,
        role: str,
        inviter_name: str | None,
        expires_at: datetime,
    ) -> None: ...

    def send_security_notice(self, *, to_email: str, subject: str, body: str) -> None: ...
