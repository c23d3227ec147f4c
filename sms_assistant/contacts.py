"""
Contact book lookups, including books shared through the contacts permission.
"""

import logging
from typing import Optional

from sms_assistant.models import Contact, PermissionKind, User
from sms_assistant.permissions import PermissionGuard
from sms_assistant.repository import Repository
from sms_assistant.utils import normalize_phone_number

logger = logging.getLogger(__name__)


class ContactService:
    def __init__(self, repo: Repository, guard: PermissionGuard):
        self._repo = repo
        self._guard = guard

    def search(self, owner_id: int, query: str) -> list[Contact]:
        if not query or not query.strip():
            return []
        return self._repo.search_contacts(owner_id, query)

    def lookup(self, user: User, query: str) -> list[Contact]:
        """
        Search the user's own book first, then the books of users who granted
        them the contacts permission. Own matches win when both have hits.
        """
        matches = self.search(user.id, query)
        if matches:
            return matches

        for grantor_id in self._guard.grantors_of(user, PermissionKind.CONTACTS):
            matches = self.search(grantor_id, query)
            if matches:
                logger.info(
                    "Contact found in shared book",
                    extra={"user_id": user.id, "grantor_id": grantor_id, "matches": len(matches)},
                )
                return matches

        return []

    def resolve_user(self, requester: User, name: str) -> Optional[User]:
        """
        Map a spoken name to a registered user: a user with that exact name,
        else one of the requester's contacts whose phone number belongs to a
        user.
        """
        if not name or not name.strip():
            return None

        users = self._repo.find_users_by_name(name)
        if users:
            return users[0]

        contact = self._repo.get_contact_by_name(requester.id, name)
        if contact is None:
            candidates = self._repo.search_contacts(requester.id, name)
            contact = candidates[0] if candidates else None

        if contact is None or not contact.phone_number:
            return None

        return self._repo.get_user_by_phone(normalize_phone_number(contact.phone_number))
