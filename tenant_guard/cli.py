"""CLI tools for tenant administration."""

import logging
import sys

import click

from tenant_guard.core.config import settings
from tenant_guard.core.errors import ServiceError
from tenant_guard.core.monitoring import init_monitoring
from tenant_guard.db.enums import Role
from tenant_guard.db.session import SessionLocal
from tenant_guard.services.maintenance_service import SWEEPS


@click.group()
def cli():
    """Tenant guard CLI tools."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_monitoring()


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase letters, digits, hyphens)")
@click.option("--admin-email", default=None, help="Send the first admin invitation to this email")
@click.option("--max-users", default=100, show_default=True, help="Member limit")
@click.option("--mfa-required/--no-mfa-required", default=False, help="Require MFA for all members")
def create_org(name: str, slug: str, admin_email: str | None, max_users: int, mfa_required: bool):
    """
    Create an organization and (optionally) its first admin invitation.

    This is the bootstrap command for setting up a new tenant.

    Example:
        tenant-guard create-org --name "Riverbend Water" --slug riverbend --admin-email ops@riverbend.io
    """
    from tenant_guard.services import invite_service, notification_service, org_service

    db = SessionLocal()
    try:
        org = org_service.create_organization(
            db, name, slug.lower().strip(), max_users=max_users, mfa_required=mfa_required
        )
        click.echo(f"✓ Created organization: {org.name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {org.slug}")

        if admin_email:
            issued = invite_service.create_bootstrap_invitation(db, org.id, admin_email, Role.ADMIN)
            click.echo(f"✓ Created invite for {issued.invitation.email} with role: admin")
            click.echo(f"  Expires: {issued.invitation.expires_at.isoformat()}")
            click.echo(f"→ Invitation link: {notification_service.build_invitation_link(issued.token)}")
        notification_service.drain()
    except ServiceError as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        sys.exit(1)
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="Member email to revoke sessions for")
def revoke_sessions(email: str):
    """
    End every active session for a member.

    Example:
        tenant-guard revoke-sessions --email "crew@riverbend.io"
    """
    from sqlalchemy import func, select

    from tenant_guard.db.models import Membership
    from tenant_guard.services import session_service

    db = SessionLocal()
    try:
        member = db.scalars(
            select(Membership).where(func.lower(Membership.email) == email.strip().lower())
        ).first()
        if not member:
            click.echo(f"❌ Member not found: {email}")
            sys.exit(1)
        ended = session_service.revoke_all_sessions(db, member.id, reason="admin_cli")
        click.echo(f"✓ Revoked {ended} session(s) for {email}")
    finally:
        db.close()


@cli.command()
@click.argument("email")
def check_lockout(email: str):
    """Show lockout state for an email."""
    from tenant_guard.services import account_security_service

    db = SessionLocal()
    try:
        status = account_security_service.check_lockout(db, email)
        state = "LOCKED" if status.locked else "ok"
        click.echo(f"{email}: {state} (failed={status.failed_count}, remaining={status.remaining})")
    finally:
        db.close()


@cli.command()
@click.option(
    "--only",
    multiple=True,
    type=click.Choice(list(SWEEPS)),
    help="Run only the named sweep (repeatable)",
)
def maintenance(only: tuple[str, ...]):
    """
    Run expiry and retention sweeps.

    Example:
        tenant-guard maintenance --only sessions --only invitations
    """
    from tenant_guard.services import maintenance_service

    db = SessionLocal()
    try:
        report = maintenance_service.run_all(db, only=list(only) or None)
        for name, count in report.counts.items():
            click.echo(f"✓ {name}: {count}")
        for name, error in report.errors.items():
            click.echo(f"❌ {name}: {error}")
        if not report.ok:
            sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    cli()
