"""SQL-backed identity store (the ``identities`` table)."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tenant_guard.db.models import Identity


class SqlIdentityStore:
    """
    IdentityStore over the local identities table.

    Shares the caller's Session so identity writes commit or roll back with the
    operation that made them (e.g. invitation acceptance).
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, identity_id: UUID) -> Identity | None:
        return self.db.get(Identity, identity_id)

    def find_by_email(self, email: str) -> Identity | None:
        return self.db.scalars(
            select(Identity).where(func.lower(Identity.email) == email.strip().lower())
        ).first()

    def create_identity(
        self, email: str, password_hash: str, attributes: dict[str, Any] | None = None
    ) -> Identity:
        now = datetime.now(timezone.utc)
        identity = Identity(
            email=email.strip().lower(),
            password_hash=password_hash,
            attributes=dict(attributes or {}),
            created_at=now,
            updated_at=now,
        )
        self.db.add(identity)
        self.db.flush()
        return identity

    def update_password_hash(self, identity_id: UUID, password_hash: str) -> None:
        identity = self.db.get(Identity, identity_id)
        if identity is None:
            raise LookupError(f"Identity {identity_id} not found")
        identity.password_hash = password_hash
        identity.updated_at = datetime.now(timezone.utc)
        self.db.flush()
