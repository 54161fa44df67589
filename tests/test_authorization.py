"""Tests for the role authorization engine."""

import itertools

import pytest
from sqlalchemy import select

from tenant_guard.core.errors import ForbiddenError, InsufficientRoleError
from tenant_guard.db.enums import AuditEventType, Role
from tenant_guard.db.models import AuditEvent
from tenant_guard.services import authorization_service
from tenant_guard.services.authorization_service import (
    can_invite,
    check_profile_update,
    has_permission,
    required_role_for_invite,
)

ALL_ROLES = sorted(Role, key=lambda r: r.level)


class TestCanInvite:
    def test_supervisor_cannot_invite_admin(self):
        assert can_invite(Role.SUPERVISOR, Role.ADMIN) is False

    def test_admin_can_invite_admin(self):
        assert can_invite(Role.ADMIN, Role.ADMIN) is True

    def test_supervisor_can_invite_field_worker_and_supervisor(self):
        assert can_invite(Role.SUPERVISOR, Role.FIELD_WORKER)
        assert can_invite(Role.SUPERVISOR, Role.SUPERVISOR)

    def test_field_worker_invites_nobody(self):
        assert not any(can_invite(Role.FIELD_WORKER, target) for target in Role)

    def test_super_admin_is_never_invitable(self):
        assert not any(can_invite(inviter, Role.SUPER_ADMIN) for inviter in Role)

    def test_accepts_string_roles(self):
        assert can_invite("admin", "supervisor")

    @pytest.mark.parametrize("target", list(Role))
    def test_monotone_in_inviter_role(self, target):
        for lower, higher in itertools.combinations(ALL_ROLES, 2):
            if can_invite(lower, target):
                assert can_invite(higher, target), f"{higher} should invite {target} like {lower}"

    def test_required_role_for_invite(self):
        assert required_role_for_invite(Role.ADMIN) == Role.ADMIN
        assert required_role_for_invite(Role.SUPERVISOR) == Role.SUPERVISOR
        assert required_role_for_invite(Role.FIELD_WORKER) == Role.SUPERVISOR


class TestHasPermission:
    def test_audit_log_is_admin_only(self):
        assert not has_permission(Role.SUPERVISOR, "view", "audit_log")
        assert has_permission(Role.ADMIN, "view", "audit_log")
        assert has_permission(Role.SUPER_ADMIN, "view", "audit_log")

    def test_unknown_resource_or_action_is_denied(self):
        assert not has_permission(Role.SUPER_ADMIN, "view", "reports")
        assert not has_permission(Role.SUPER_ADMIN, "launch", "members")

    def test_permissions_grow_with_role(self):
        pairs = [
            ("update_settings", "organization"),
            ("change_role", "members"),
            ("invite", "invitations"),
            ("revoke", "invitations"),
            (None, "sessions"),
        ]
        for action, resource in pairs:
            for lower, higher in itertools.combinations(ALL_ROLES, 2):
                if has_permission(lower, action, resource):
                    assert has_permission(higher, action, resource)


class TestProfileUpdate:
    def test_self_update_allowed(self, field_worker):
        assert check_profile_update(field_worker, field_worker, {"first_name": "Dana"})

    @pytest.mark.parametrize("field", ["role", "organization_id"])
    def test_protected_fields_rejected_for_everyone(self, admin, field_worker, field):
        assert not check_profile_update(field_worker, field_worker, {field: "x"})
        assert not check_profile_update(admin, field_worker, {field: "x"})
        assert not check_profile_update(admin, admin, {field: "x"})

    def test_peer_cannot_edit_other_profile(self, field_worker, make_member, org):
        peer = make_member(org, Role.FIELD_WORKER)
        assert not check_profile_update(field_worker, peer, {"phone": "555-0100"})

    def test_admin_can_edit_member_profile(self, admin, field_worker):
        assert check_profile_update(admin, field_worker, {"phone": "555-0100"})

    def test_cross_org_admin_rejected(self, other_admin, field_worker):
        assert not check_profile_update(other_admin, field_worker, {"phone": "555-0100"})


class TestEnforcement:
    def test_require_invite_audits_denial(self, db, supervisor):
        with pytest.raises(InsufficientRoleError) as exc_info:
            authorization_service.require_invite(db, supervisor, Role.ADMIN)

        assert exc_info.value.required_role == "admin"
        assert exc_info.value.attempted_action == "invite"
        event = db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.ACCESS_DENIED.value)
        ).one()
        assert event.user_id == supervisor.id
        assert event.success is False
        assert event.details["attempted_action"] == "invite"
        assert event.details["required_role"] == "admin"

    def test_require_same_org_forbidden(self, db, admin, other_org):
        with pytest.raises(ForbiddenError):
            authorization_service.require_same_org(db, admin, other_org.id, action="view", resource="members")

        event = db.scalars(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.ACCESS_DENIED.value)
        ).one()
        assert event.details["reason"] == "cross_tenant"
        assert event.organization_id == admin.organization_id

    def test_inactive_member_has_no_permissions(self, db, admin):
        admin.is_active = False
        with pytest.raises(InsufficientRoleError):
            authorization_service.require_permission(db, admin, "audit_log", "view")
