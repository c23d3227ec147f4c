"""
Cross-user access control for location, ETA, contacts and lists.

Expiry is checked lazily on read; an expired grant is denied but the row is
left untouched.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from sms_assistant.models import Permission, PermissionKind, User
from sms_assistant.repository import Repository
from sms_assistant.utils import utcnow

logger = logging.getLogger(__name__)


class PermissionGuard:
    def __init__(self, repo: Repository, clock: Callable[[], datetime] = utcnow):
        self._repo = repo
        self._clock = clock

    def has_permission(self, requesting_user: User, target_user_id: int, kind: PermissionKind) -> bool:
        """
        Decide whether requesting_user may read target_user_id's data of the
        given kind. First matching rule wins:

        1. primary users may access everything
        2. users may always access their own data
        3. no grant, or an inactive grant, denies
        4. a grant whose expires_at is at or before now denies
        5. otherwise allow

        Storage errors deny.
        """
        context = {
            "requesting_user_id": requesting_user.id,
            "target_user_id": target_user_id,
            "permission_type": kind.value,
        }

        if requesting_user.is_primary_user:
            logger.debug("Primary user has all permissions", extra=context)
            return True

        if requesting_user.id == target_user_id:
            logger.debug("User accessing own data", extra=context)
            return True

        try:
            permission = self._repo.get_permission(requesting_user.id, target_user_id, kind)
        except SQLAlchemyError as e:
            self._repo.rollback()
            logger.error(f"Error checking permission: {e}", extra=context)
            return False

        if permission is None or not permission.is_active:
            logger.warning("Permission denied", extra=context)
            return False

        if permission.expires_at is not None and permission.expires_at <= self._clock():
            logger.warning(
                "Permission expired",
                extra={**context, "expires_at": permission.expires_at.isoformat()},
            )
            return False

        logger.debug("Permission granted", extra=context)
        return True

    def grant(
        self,
        user_id: int,
        granted_by_user_id: int,
        kind: PermissionKind,
        expires_at: Optional[datetime] = None,
    ) -> Permission:
        """Activate (or re-activate) a grant; a second grant replaces the expiry."""
        permission = self._repo.upsert_permission(
            user_id, granted_by_user_id, kind, is_active=True, expires_at=expires_at
        )
        logger.info(
            "Permission granted",
            extra={
                "user_id": user_id,
                "granted_by_user_id": granted_by_user_id,
                "permission_type": kind.value,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        return permission

    def revoke(self, user_id: int, granted_by_user_id: int, kind: PermissionKind) -> Permission:
        """Deactivate a grant. The row is kept for the audit trail."""
        permission = self._repo.upsert_permission(
            user_id, granted_by_user_id, kind, is_active=False, set_expiry=False
        )
        logger.info(
            "Permission revoked",
            extra={"user_id": user_id, "granted_by_user_id": granted_by_user_id, "permission_type": kind.value},
        )
        return permission

    def grantors_of(self, user: User, kind: PermissionKind) -> list[int]:
        """Ids of other users whose `kind` data `user` may currently access."""
        try:
            candidate_ids = self._repo.get_grantor_ids(user.id, kind)
        except SQLAlchemyError as e:
            self._repo.rollback()
            logger.error(f"Error listing grantors: {e}", extra={"user_id": user.id})
            return []
        return [
            grantor_id for grantor_id in candidate_ids
            if grantor_id != user.id and self.has_permission(user, grantor_id, kind)
        ]
