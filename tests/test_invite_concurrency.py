"""Concurrent acceptance of one invitation token admits exactly one member."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from tenant_guard.core.errors import AlreadyMemberError, InvitationInvalidOrExpiredError
from tenant_guard.db.base import Base
from tenant_guard.db.enums import InvitationStatus, Role
from tenant_guard.db.models import Identity, Invitation, Membership
from tenant_guard.db.session import build_engine
from tenant_guard.services import invite_service, membership_service, org_service
from tenant_guard.services.identity_service import SqlIdentityStore


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


def test_concurrent_accept_admits_one_member(file_engine, clock, verifier, notifier):
    SessionFactory = sessionmaker(autoflush=False, bind=file_engine)

    with SessionFactory() as setup:
        org = org_service.create_organization(setup, "Race Water", "race-water", clock=clock)
        identity = SqlIdentityStore(setup).create_identity(
            "boss@riverbend.io", verifier.hash_password("Boss!Passw0rd1")
        )
        boss = membership_service.create_bootstrap_membership(
            setup, org.id, identity.id, identity.email, Role.ADMIN, clock=clock
        )
        issued = invite_service.create_invitation(
            setup, boss, "racer@riverbend.io", Role.FIELD_WORKER, org.id, notifier=notifier, clock=clock
        )
        token = issued.token
        org_id = org.id

    workers = 6
    barrier = threading.Barrier(workers)

    def _accept(_i: int):
        with SessionFactory() as db:
            barrier.wait(timeout=10)
            try:
                member = invite_service.accept_invitation(
                    db,
                    token,
                    password="Racer!Passw0rd1",
                    identity_store=SqlIdentityStore(db),
                    verifier=verifier,
                    clock=clock,
                )
                return ("ok", member.id)
            except (InvitationInvalidOrExpiredError, AlreadyMemberError) as exc:
                return ("rejected", exc)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        outcomes = list(executor.map(_accept, range(workers)))

    assert sorted(kind for kind, _ in outcomes) == ["ok"] + ["rejected"] * (workers - 1)

    with SessionFactory() as check:
        members = check.scalars(
            select(Membership).where(Membership.email == "racer@riverbend.io")
        ).all()
        assert len(members) == 1
        assert members[0].organization_id == org_id
        assert check.scalar(
            select(func.count(Identity.id)).where(Identity.email == "racer@riverbend.io")
        ) == 1
        invitation = check.scalars(select(Invitation).where(Invitation.email == "racer@riverbend.io")).one()
        assert invitation.status == InvitationStatus.ACCEPTED.value
        assert invitation.accepted_by_id == members[0].id
