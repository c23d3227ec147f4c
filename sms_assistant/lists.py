"""
List resolution, access control and item operations.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sms_assistant.models import ListItem, ListShare, User, UserList
from sms_assistant.repository import Repository
from sms_assistant.utils import utcnow

logger = logging.getLogger(__name__)

GROCERY_LIST_TYPE = "grocery"
GROCERY_LIST_NAME = "Grocery List"
DEFAULT_LIST_TYPE = "general"


class ListService:
    def __init__(self, repo: Repository, clock: Callable[[], datetime] = utcnow):
        self._repo = repo
        self._clock = clock

    def get_or_create_grocery_list(self, user_id: int) -> UserList:
        user_list = self._repo.find_owned_list_by_type(user_id, GROCERY_LIST_TYPE)
        if user_list is None:
            user_list = self._repo.create_list(user_id, GROCERY_LIST_NAME, GROCERY_LIST_TYPE)
        return user_list

    def resolve_list(self, user_id: int, name_or_type: Optional[str] = None) -> Optional[UserList]:
        """
        Find the list a message refers to.

        With no reference the user's grocery list is returned (created on
        first use). Otherwise owned lists are searched before lists shared
        with the user; within each group the oldest match wins.
        """
        reference = (name_or_type or "").strip()
        if not reference:
            return self.get_or_create_grocery_list(user_id)

        owned = self._repo.find_owned_lists(user_id, reference)
        if owned:
            return owned[0]

        shared = self._repo.find_shared_lists(user_id, reference)
        if shared:
            return shared[0]

        logger.debug("No list matched", extra={"user_id": user_id, "reference": reference})
        return None

    def has_access(self, user_list: UserList, user_id: int, require_edit: bool = False) -> bool:
        if user_list.owner_id == user_id:
            return True

        share = self._repo.get_list_share(user_list.id, user_id)
        if share is None:
            return False

        return share.can_edit or not require_edit

    def items(self, user_list: UserList) -> list[ListItem]:
        return self._repo.get_list_items(user_list.id)

    def add_item(
        self,
        user_list: UserList,
        content: str,
        quantity: Optional[str] = None,
        added_by_user_id: Optional[int] = None,
    ) -> ListItem:
        return self._repo.add_list_item(
            user_list.id,
            content.strip(),
            quantity=quantity.strip() if quantity else None,
            added_by_user_id=added_by_user_id,
        )

    def remove_items(self, user_list: UserList, text: str) -> int:
        """Delete every item whose content contains text; returns the count."""
        return self._repo.delete_list_items_matching(user_list.id, text.strip())

    def complete_items(self, user_list: UserList, text: str) -> int:
        """Mark matching incomplete items done; returns the count."""
        return self._repo.complete_list_items_matching(user_list.id, text.strip(), self._clock())

    def clear(self, user_list: UserList) -> int:
        count = self._repo.delete_all_list_items(user_list.id)
        logger.info(f"List cleared: list_id={user_list.id}, removed={count}")
        return count

    def create_list(self, owner_id: int, name: str, list_type: str = DEFAULT_LIST_TYPE) -> Optional[UserList]:
        """Create a list unless the owner already has one with that name."""
        name = name.strip()
        if self._repo.find_owned_list_by_name(owner_id, name) is not None:
            return None
        return self._repo.create_list(owner_id, name, list_type)

    def share_list(
        self,
        user_list: UserList,
        owner: User,
        target_user_id: int,
        can_edit: bool = True,
    ) -> Optional[ListShare]:
        """Share a list with another user. Only the owner may share."""
        if user_list.owner_id != owner.id or target_user_id == owner.id:
            return None

        share = self._repo.upsert_list_share(user_list, target_user_id, can_edit)
        logger.info(
            "List shared",
            extra={"list_id": user_list.id, "shared_with_user_id": target_user_id, "can_edit": can_edit},
        )
        return share
