"""Organization service - tenant lifecycle and settings."""

import logging
import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.deadline import check_deadline
from tenant_guard.core.db_retry import retry_read
from tenant_guard.core.errors import (
    DuplicateSlugError,
    InvalidInputError,
    NotFoundError,
    OrganizationFullError,
)
from tenant_guard.core.interfaces import Clock
from tenant_guard.db.enums import AuditEventType, SubscriptionTier
from tenant_guard.db.models import Membership, Organization
from tenant_guard.schemas.organization import SCALAR_TYPES, OrganizationSettingsPatch
from tenant_guard.services import audit_service, authorization_service

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
MAX_SLUG_LENGTH = 50
MAX_NAME_LENGTH = 100
DEFAULT_MAX_USERS = 100


def validate_slug(slug: str) -> str:
    slug = (slug or "").strip()
    if not slug or len(slug) > MAX_SLUG_LENGTH or not SLUG_PATTERN.match(slug):
        raise InvalidInputError(
            f"Slug must be 1-{MAX_SLUG_LENGTH} characters of lowercase letters, digits and hyphens"
        )
    return slug


def validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name or len(name) > MAX_NAME_LENGTH:
        raise InvalidInputError(f"Name must be 1-{MAX_NAME_LENGTH} characters")
    return name


def _validate_settings(settings: dict[str, Any] | None) -> dict[str, Any]:
    settings = dict(settings or {})
    for key, value in settings.items():
        if not isinstance(key, str):
            raise InvalidInputError("Setting keys must be strings")
        if not isinstance(value, SCALAR_TYPES):
            raise InvalidInputError(f"Setting '{key}' must be a scalar value")
    return settings


def create_organization(
    db: Session,
    name: str,
    slug: str,
    settings: dict[str, Any] | None = None,
    *,
    subscription_tier: str = SubscriptionTier.BASIC.value,
    mfa_required: bool = False,
    max_users: int = DEFAULT_MAX_USERS,
    clock: Clock = system_clock,
    deadline: datetime | None = None,
) -> Organization:
    """
    Create a new organization. Privileged bootstrap path; no actor check.

    Raises:
        InvalidInputError: Malformed name, slug, settings or limits
        DuplicateSlugError: Slug already taken
    """
    name = validate_name(name)
    slug = validate_slug(slug)
    settings = _validate_settings(settings)
    if max_users < 1:
        raise InvalidInputError("max_users must be positive")
    try:
        tier = SubscriptionTier(subscription_tier).value
    except ValueError as exc:
        raise InvalidInputError(f"Unknown subscription tier: {subscription_tier}") from exc

    now = clock.now()
    org = Organization(
        name=name,
        slug=slug,
        settings=settings,
        subscription_tier=tier,
        mfa_required=mfa_required,
        max_users=max_users,
        created_at=now,
        updated_at=now,
    )
    db.add(org)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateSlugError(f"Slug '{slug}' already exists") from exc

    audit_service.record_event(
        db,
        AuditEventType.ORGANIZATION_CREATED,
        org_id=org.id,
        resource="organization",
        details={"organization_id": str(org.id), "slug": slug, "max_users": max_users},
        clock=clock,
    )
    check_deadline(db, deadline, clock)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateSlugError(f"Slug '{slug}' already exists") from exc
    db.refresh(org)
    logger.info("Created organization %s (%s)", org.id, slug)
    return org


@retry_read
def get_organization(db: Session, org_id: UUID) -> Organization:
    """Get organization by ID. Raises NotFoundError."""
    org = db.get(Organization, org_id)
    if org is None:
        raise NotFoundError(f"Organization {org_id} not found")
    return org


@retry_read
def get_organization_by_slug(db: Session, slug: str) -> Organization | None:
    """Get organization by slug."""
    return db.scalars(select(Organization).where(Organization.slug == slug.strip().lower())).first()


def update_organization_settings(
    db: Session,
    org_id: UUID,
    actor: Membership,
    patch: OrganizationSettingsPatch | dict[str, Any],
    *,
    clock: Clock = system_clock,
    deadline: datetime | None = None,
) -> Organization:
    """
    Apply a settings patch. Actor must be admin or above in this organization.

    settings keys are merged into the existing map; other fields replace.

    Raises:
        ForbiddenError: Actor belongs to another organization
        InsufficientRoleError: Actor below admin
        InvalidInputError: Patch fails validation
        OrganizationFullError: max_users lowered below current member count
    """
    authorization_service.require_same_org(db, actor, org_id, action="update_settings", resource="organization")
    authorization_service.require_permission(db, actor, "organization", "update_settings")

    if isinstance(patch, dict):
        try:
            patch = OrganizationSettingsPatch.model_validate(patch)
        except ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc

    org = get_organization(db, org_id)
    changes = patch.model_dump(exclude_unset=True)

    # Validate the whole patch before touching org
    updates: dict[str, Any] = {}
    if changes.get("max_users") is not None:
        from tenant_guard.services import membership_service

        current = membership_service.count_members(db, org_id)
        if changes["max_users"] < current:
            raise OrganizationFullError(
                f"max_users {changes['max_users']} is below current member count {current}"
            )
        updates["max_users"] = changes["max_users"]
    if changes.get("name") is not None:
        updates["name"] = validate_name(changes["name"])
    if changes.get("subscription_tier") is not None:
        updates["subscription_tier"] = SubscriptionTier(changes["subscription_tier"]).value
    if changes.get("mfa_required") is not None:
        updates["mfa_required"] = changes["mfa_required"]
    if changes.get("settings") is not None:
        merged = dict(org.settings or {})
        merged.update(_validate_settings(changes["settings"]))
        updates["settings"] = merged

    changed_fields = [f for f in ("name", "subscription_tier", "mfa_required", "max_users", "settings") if f in updates]
    for field, value in updates.items():
        setattr(org, field, value)

    if not changed_fields:
        return org

    org.updated_at = clock.now()
    audit_service.record_event(
        db,
        AuditEventType.ORGANIZATION_UPDATED,
        user_id=actor.id,
        org_id=org_id,
        resource="organization",
        details={"changed_fields": changed_fields},
        clock=clock,
    )
    check_deadline(db, deadline, clock)
    db.commit()
    db.refresh(org)
    return org
