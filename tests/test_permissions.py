"""
Tests for the permission guard.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from sms_assistant.models import Permission, PermissionKind
from sms_assistant.permissions import PermissionGuard


@pytest.fixture
def guard(repo, clock):
    return PermissionGuard(repo, clock=clock)


class TestHasPermission:
    def test_primary_user_allowed_everything(self, guard, primary_user, natalie):
        for kind in PermissionKind:
            assert guard.has_permission(primary_user, natalie.id, kind) is True

    @pytest.mark.parametrize("kind", list(PermissionKind))
    def test_self_access_is_reflexive(self, guard, natalie, kind):
        assert guard.has_permission(natalie, natalie.id, kind) is True

    def test_no_grant_denied(self, guard, natalie, mom):
        assert guard.has_permission(natalie, mom.id, PermissionKind.LOCATION) is False

    def test_active_grant_allowed(self, guard, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.LOCATION)

        assert guard.has_permission(natalie, mom.id, PermissionKind.LOCATION) is True

    def test_grant_is_per_kind(self, guard, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.LOCATION)

        assert guard.has_permission(natalie, mom.id, PermissionKind.ETA) is False

    def test_grant_is_directional(self, guard, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.LOCATION)

        assert guard.has_permission(mom, natalie.id, PermissionKind.LOCATION) is False

    def test_revoked_grant_denied(self, guard, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.ETA)
        guard.revoke(natalie.id, mom.id, PermissionKind.ETA)

        assert guard.has_permission(natalie, mom.id, PermissionKind.ETA) is False

    def test_future_expiry_allowed(self, guard, clock, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.LOCATION, expires_at=clock.now + timedelta(seconds=1))

        assert guard.has_permission(natalie, mom.id, PermissionKind.LOCATION) is True

    def test_expiry_equal_to_now_denied(self, guard, clock, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.LOCATION, expires_at=clock.now)

        assert guard.has_permission(natalie, mom.id, PermissionKind.LOCATION) is False

    def test_past_expiry_denied(self, guard, clock, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.LOCATION, expires_at=clock.now - timedelta(minutes=5))

        assert guard.has_permission(natalie, mom.id, PermissionKind.LOCATION) is False

    def test_expiry_is_lazy(self, guard, repo, clock, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.LOCATION, expires_at=clock.now + timedelta(hours=1))
        clock.advance(hours=2)

        assert guard.has_permission(natalie, mom.id, PermissionKind.LOCATION) is False
        assert repo.get_permission(natalie.id, mom.id, PermissionKind.LOCATION).is_active is True

    def test_storage_error_denies(self, guard, repo, natalie, mom, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(repo, "get_permission", broken)

        assert guard.has_permission(natalie, mom.id, PermissionKind.LOCATION) is False


class TestGrantRevoke:
    def test_revoke_twice_leaves_one_inactive_row(self, guard, db_session, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.CONTACTS)
        guard.revoke(natalie.id, mom.id, PermissionKind.CONTACTS)
        guard.revoke(natalie.id, mom.id, PermissionKind.CONTACTS)

        rows = list(db_session.scalars(select(Permission)))
        assert len(rows) == 1
        assert rows[0].is_active is False

    def test_revoke_without_grant_creates_inactive_row(self, guard, db_session, natalie, mom):
        guard.revoke(natalie.id, mom.id, PermissionKind.LISTS)

        rows = list(db_session.scalars(select(Permission)))
        assert len(rows) == 1
        assert rows[0].is_active is False

    def test_regrant_reactivates_and_replaces_expiry(self, guard, clock, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.ETA, expires_at=clock.now)
        guard.revoke(natalie.id, mom.id, PermissionKind.ETA)
        permission = guard.grant(natalie.id, mom.id, PermissionKind.ETA)

        assert permission.is_active is True
        assert permission.expires_at is None
        assert guard.has_permission(natalie, mom.id, PermissionKind.ETA) is True

    def test_revoke_keeps_expiry(self, guard, clock, natalie, mom):
        expires_at = clock.now + timedelta(days=1)
        guard.grant(natalie.id, mom.id, PermissionKind.ETA, expires_at=expires_at)

        permission = guard.revoke(natalie.id, mom.id, PermissionKind.ETA)

        assert permission.expires_at == expires_at


class TestGrantorsOf:
    def test_lists_active_unexpired_grantors(self, guard, clock, primary_user, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.CONTACTS)
        guard.grant(natalie.id, primary_user.id, PermissionKind.CONTACTS, expires_at=clock.now)

        assert guard.grantors_of(natalie, PermissionKind.CONTACTS) == [mom.id]

    def test_excludes_revoked(self, guard, natalie, mom):
        guard.grant(natalie.id, mom.id, PermissionKind.CONTACTS)
        guard.revoke(natalie.id, mom.id, PermissionKind.CONTACTS)

        assert guard.grantors_of(natalie, PermissionKind.CONTACTS) == []
