"""Tests for the tenant-guard CLI."""

import pytest
from click.testing import CliRunner
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from tenant_guard import cli as cli_module
from tenant_guard.db.base import Base
from tenant_guard.db.models import Invitation, Organization
from tenant_guard.db.session import build_engine


@pytest.fixture
def cli_sessions(tmp_path, monkeypatch):
    engine = build_engine(f"sqlite:///{tmp_path / 'cli.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(cli_module, "SessionLocal", factory)
    yield factory
    engine.dispose()


@pytest.fixture
def runner():
    return CliRunner()


def test_create_org_with_admin_invite(runner, cli_sessions):
    result = runner.invoke(
        cli_module.cli,
        ["create-org", "--name", "Riverbend Water", "--slug", "Riverbend", "--admin-email", "ops@riverbend.io"],
    )

    assert result.exit_code == 0, result.output
    assert "Created organization: Riverbend Water" in result.output
    assert "Invitation link: http://localhost:3000/invite/" in result.output

    with cli_sessions() as db:
        org = db.scalars(select(Organization).where(Organization.slug == "riverbend")).one()
        invitation = db.scalars(select(Invitation).where(Invitation.organization_id == org.id)).one()
        assert invitation.email == "ops@riverbend.io"
        assert invitation.role == "admin"
        assert invitation.invited_by_id is None
        assert invitation.invite_metadata == {"bootstrap": True}


def test_create_org_duplicate_slug(runner, cli_sessions):
    runner.invoke(cli_module.cli, ["create-org", "--name", "Riverbend Water", "--slug", "riverbend"])
    result = runner.invoke(cli_module.cli, ["create-org", "--name", "Copycat", "--slug", "riverbend"])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_check_lockout(runner, cli_sessions):
    result = runner.invoke(cli_module.cli, ["check-lockout", "crew@riverbend.io"])

    assert result.exit_code == 0
    assert "crew@riverbend.io: ok (failed=0, remaining=5)" in result.output


def test_revoke_sessions_unknown_member(runner, cli_sessions):
    result = runner.invoke(cli_module.cli, ["revoke-sessions", "--email", "ghost@riverbend.io"])

    assert result.exit_code == 1
    assert "Member not found" in result.output


def test_maintenance(runner, cli_sessions):
    result = runner.invoke(cli_module.cli, ["maintenance", "--only", "sessions", "--only", "invitations"])

    assert result.exit_code == 0, result.output
    assert "sessions: 0" in result.output
    assert "invitations: 0" in result.output
    assert "audit_events" not in result.output


def test_maintenance_rejects_unknown_sweep(runner, cli_sessions):
    result = runner.invoke(cli_module.cli, ["maintenance", "--only", "sesions"])

    assert result.exit_code == 2
    assert "Invalid value for '--only'" in result.output
