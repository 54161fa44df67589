"""
Test configuration and fixtures.

Provides:
- In-memory SQLite engine with the full schema
- Database session inside an outer transaction (rolled back after each test)
- Frozen clock, fake credential verifier, recording notifier
- Organization and member factories
"""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Generator

# Must be set before tenant_guard.core.config is imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tenant_guard.db.base import Base
from tenant_guard.db.enums import Role
from tenant_guard.db.models import Membership, Organization
from tenant_guard.db.session import build_engine
from tenant_guard.services import membership_service, notification_service, org_service
from tenant_guard.services.identity_service import SqlIdentityStore

DEFAULT_PASSWORD = "Riverb3nd!Pump"


# =============================================================================
# Collaborator fakes
# =============================================================================

class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeVerifier:
    """Deterministic CredentialVerifier: unsalted 'hash', fixed MFA code."""

    VALID_CODE = "246810"

    def hash_password(self, password: str) -> str:
        return f"hashed::{password}"

    def verify_password(self, password: str, password_hash: str) -> bool:
        return password_hash == f"hashed::{password}"

    def generate_mfa_secret(self) -> str:
        return "JBSWY3DPEHPK3PXP"

    def verify_mfa_code(self, secret: str, code: str) -> bool:
        return bool(secret) and code == self.VALID_CODE


class RecordingNotifier:
    """Notifier that records deliveries; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.invitations: list[dict] = []
        self.notices: list[dict] = []

    def send_invitation(self, **kwargs) -> None:
        if self.fail:
            raise RuntimeError("SMTP relay unavailable")
        self.invitations.append(kwargs)

    def send_security_notice(self, **kwargs) -> None:
        if self.fail:
            raise RuntimeError("SMTP relay unavailable")
        self.notices.append(kwargs)


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================

@pytest.fixture(scope="session")
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    """
    Session bound to an outer transaction that is rolled back after the test.

    Service code may commit() and rollback() freely; both operate on a
    SAVEPOINT inside the outer transaction.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint", autoflush=False)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def notifier() -> Generator[RecordingNotifier, None, None]:
    recording = RecordingNotifier()
    yield recording
    notification_service.drain()


@pytest.fixture
def failing_notifier() -> Generator[RecordingNotifier, None, None]:
    broken = RecordingNotifier(fail=True)
    yield broken
    notification_service.drain()


@pytest.fixture
def identity_store(db: Session) -> SqlIdentityStore:
    return SqlIdentityStore(db)


# =============================================================================
# Tenants and members
# =============================================================================

@pytest.fixture
def make_org(db: Session, clock: FrozenClock):
    def _make(name: str = "Riverbend Water", slug: str | None = None, **kwargs) -> Organization:
        return org_service.create_organization(
            db, name, slug or f"org-{uuid.uuid4().hex[:8]}", clock=clock, **kwargs
        )
    return _make


@pytest.fixture
def make_member(db: Session, clock: FrozenClock, identity_store: SqlIdentityStore, verifier: FakeVerifier):
    def _make(org: Organization, role: Role = Role.FIELD_WORKER, email: str | None = None,
              password: str = DEFAULT_PASSWORD) -> Membership:
        email = email or f"{role.value}-{uuid.uuid4().hex[:6]}@riverbend.io"
        identity = identity_store.create_identity(email, verifier.hash_password(password))
        return membership_service.create_bootstrap_membership(
            db, org.id, identity.id, email, role, clock=clock
        )
    return _make


@pytest.fixture
def org(make_org) -> Organization:
    return make_org(slug="riverbend")


@pytest.fixture
def other_org(make_org) -> Organization:
    return make_org(name="Lakeside Utilities", slug="lakeside")


@pytest.fixture
def admin(make_member, org) -> Membership:
    return make_member(org, Role.ADMIN, email="admin@riverbend.io")


@pytest.fixture
def supervisor(make_member, org) -> Membership:
    return make_member(org, Role.SUPERVISOR, email="lead@riverbend.io")


@pytest.fixture
def field_worker(make_member, org) -> Membership:
    return make_member(org, Role.FIELD_WORKER, email="crew@riverbend.io")


@pytest.fixture
def other_admin(make_member, other_org) -> Membership:
    return make_member(other_org, Role.ADMIN, email="admin@lakeside.io")
