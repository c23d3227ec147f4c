"""
Repository over the SQLAlchemy session.

One Repository wraps one session (one webhook request). Every write commits
its own transaction; on failure the session is rolled back and the error is
re-raised to the caller after logging.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sms_assistant.models import (
    Contact,
    ListItem,
    ListShare,
    Location,
    MessageLog,
    Permission,
    PermissionKind,
    Trip,
    TripStatus,
    User,
    UserList,
)
from sms_assistant.utils import utcnow

logger = logging.getLogger(__name__)


def folded_contains(text: Optional[str], fragment: str) -> bool:
    """
    Case-insensitive substring test done in Python.

    SQLite's lower() and LIKE only fold ASCII, so names such as "Épicerie"
    are matched here instead of in SQL.
    """
    return fragment.casefold() in (text or "").casefold()


def folded_equals(text: Optional[str], other: str) -> bool:
    return (text or "").casefold() == other.casefold()


class Repository:
    """CRUD access to users, contacts, permissions, lists, locations, trips and the message log."""

    def __init__(self, db: Session):
        self.db = db

    def rollback(self) -> None:
        self.db.rollback()

    def _commit(self, action: str, **context) -> None:
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {e}", extra=context)
            raise

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_phone(self, phone_number: str) -> Optional[User]:
        return self.db.scalars(
            select(User).where(User.phone_number == phone_number)
        ).first()

    def find_users_by_name(self, name: str) -> list[User]:
        """Exact, case-insensitive name match."""
        name = name.strip()
        users = self.db.scalars(select(User).order_by(User.id))
        return [user for user in users if folded_equals(user.name, name)]

    def count_users(self) -> int:
        return self.db.scalar(select(func.count(User.id))) or 0

    def get_or_create_user(
        self,
        phone_number: str,
        name: str,
        email: Optional[str] = None,
        is_primary_user: bool = False,
    ) -> Tuple[User, bool]:
        """
        Create a user unless the phone number is already registered.

        Returns:
            Tuple of (user, created)
        """
        user = self.get_user_by_phone(phone_number)
        if user:
            return user, False

        user = User(
            phone_number=phone_number,
            name=name,
            email=email,
            is_primary_user=is_primary_user,
        )
        self.db.add(user)
        self._commit("create user", phone_number=phone_number)
        logger.info(f"User created: id={user.id}, primary={is_primary_user}")
        return user, True

    # =========================================================================
    # Contacts
    # =========================================================================

    def search_contacts(self, owner_id: int, query: str) -> list[Contact]:
        """Case-insensitive substring match on contact name, ordered by name."""
        query = query.strip()
        contacts = self.db.scalars(
            select(Contact)
            .where(Contact.owner_id == owner_id)
            .order_by(Contact.name, Contact.id)
        )
        return [contact for contact in contacts if folded_contains(contact.name, query)]

    def get_contact_by_name(self, owner_id: int, name: str) -> Optional[Contact]:
        name = name.strip()
        contacts = self.db.scalars(
            select(Contact).where(Contact.owner_id == owner_id).order_by(Contact.id)
        )
        return next((contact for contact in contacts if folded_equals(contact.name, name)), None)

    def add_contact(
        self,
        owner_id: int,
        name: str,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
        relationship: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Contact:
        contact = Contact(
            owner_id=owner_id,
            name=name,
            phone_number=phone_number,
            email=email,
            relationship=relationship,
            notes=notes,
        )
        self.db.add(contact)
        self._commit("add contact", owner_id=owner_id)
        logger.info(f"Contact added: owner={owner_id}, contact_id={contact.id}")
        return contact

    # =========================================================================
    # Permissions
    # =========================================================================

    def get_permission(
        self,
        user_id: int,
        granted_by_user_id: int,
        kind: PermissionKind,
    ) -> Optional[Permission]:
        return self.db.scalars(
            select(Permission).where(
                Permission.user_id == user_id,
                Permission.granted_by_user_id == granted_by_user_id,
                Permission.permission_type == kind.value,
            )
        ).first()

    def upsert_permission(
        self,
        user_id: int,
        granted_by_user_id: int,
        kind: PermissionKind,
        is_active: bool,
        expires_at: Optional[datetime] = None,
        set_expiry: bool = True,
    ) -> Permission:
        """
        Insert or update the unique (subject, grantor, kind) row.

        expires_at is only written when set_expiry is True, so a revoke keeps
        the previous expiry for the audit trail.
        """
        permission = self.get_permission(user_id, granted_by_user_id, kind)
        if permission is None:
            permission = Permission(
                user_id=user_id,
                granted_by_user_id=granted_by_user_id,
                permission_type=kind.value,
                is_active=is_active,
                expires_at=expires_at if set_expiry else None,
            )
            self.db.add(permission)
        else:
            permission.is_active = is_active
            if set_expiry:
                permission.expires_at = expires_at

        try:
            self.db.commit()
        except IntegrityError:
            # Lost an insert race on the unique key; update the winner's row
            self.db.rollback()
            permission = self.get_permission(user_id, granted_by_user_id, kind)
            permission.is_active = is_active
            if set_expiry:
                permission.expires_at = expires_at
            self._commit("update permission", user_id=user_id, kind=kind.value)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to upsert permission: {e}", extra={"user_id": user_id, "kind": kind.value})
            raise

        return permission

    def get_grantor_ids(self, user_id: int, kind: PermissionKind) -> list[int]:
        """Ids of users with an active grant of `kind` to user_id (expiry not checked)."""
        return list(self.db.scalars(
            select(Permission.granted_by_user_id)
            .where(
                Permission.user_id == user_id,
                Permission.permission_type == kind.value,
                Permission.is_active.is_(True),
            )
            .order_by(Permission.id)
        ))

    # =========================================================================
    # Lists
    # =========================================================================

    @staticmethod
    def _matches_list_reference(user_list: UserList, reference: str) -> bool:
        return folded_contains(user_list.name, reference) or folded_equals(user_list.type, reference)

    def get_list(self, list_id: int) -> Optional[UserList]:
        return self.db.get(UserList, list_id)

    def find_owned_list_by_type(self, owner_id: int, list_type: str) -> Optional[UserList]:
        return self.db.scalars(
            select(UserList)
            .where(UserList.owner_id == owner_id, UserList.type == list_type)
            .order_by(UserList.id)
        ).first()

    def find_owned_list_by_name(self, owner_id: int, name: str) -> Optional[UserList]:
        name = name.strip()
        owned = self.db.scalars(
            select(UserList).where(UserList.owner_id == owner_id).order_by(UserList.id)
        )
        return next((user_list for user_list in owned if folded_equals(user_list.name, name)), None)

    def find_owned_lists(self, owner_id: int, reference: str) -> list[UserList]:
        """Owned lists whose name contains, or whose type equals, the reference."""
        owned = self.db.scalars(
            select(UserList).where(UserList.owner_id == owner_id).order_by(UserList.id)
        )
        return [user_list for user_list in owned if self._matches_list_reference(user_list, reference)]

    def find_shared_lists(self, user_id: int, reference: str) -> list[UserList]:
        """Same match as find_owned_lists, over lists shared with user_id."""
        shared = self.db.scalars(
            select(UserList)
            .join(ListShare, ListShare.list_id == UserList.id)
            .where(ListShare.shared_with_user_id == user_id)
            .order_by(UserList.id)
        )
        return [user_list for user_list in shared if self._matches_list_reference(user_list, reference)]

    def create_list(self, owner_id: int, name: str, list_type: str) -> UserList:
        user_list = UserList(owner_id=owner_id, name=name, type=list_type, is_shared=False)
        self.db.add(user_list)
        self._commit("create list", owner_id=owner_id)
        logger.info(f"List created: owner={owner_id}, list_id={user_list.id}, type={list_type}")
        return user_list

    def get_list_share(self, list_id: int, user_id: int) -> Optional[ListShare]:
        return self.db.scalars(
            select(ListShare).where(
                ListShare.list_id == list_id,
                ListShare.shared_with_user_id == user_id,
            )
        ).first()

    def upsert_list_share(self, user_list: UserList, user_id: int, can_edit: bool) -> ListShare:
        """Share a list (or update the edit bit) and flag the list as shared, in one commit."""
        share = self.get_list_share(user_list.id, user_id)
        if share is None:
            share = ListShare(list_id=user_list.id, shared_with_user_id=user_id, can_edit=can_edit)
            self.db.add(share)
        else:
            share.can_edit = can_edit
        user_list.is_shared = True
        self._commit("share list", list_id=user_list.id, user_id=user_id)
        return share

    # =========================================================================
    # List items
    # =========================================================================

    def get_list_items(self, list_id: int) -> list[ListItem]:
        """Incomplete items first, then creation order."""
        return list(self.db.scalars(
            select(ListItem)
            .where(ListItem.list_id == list_id)
            .order_by(ListItem.is_completed, ListItem.id)
        ))

    def count_list_items(self, list_id: int) -> int:
        return self.db.scalar(
            select(func.count(ListItem.id)).where(ListItem.list_id == list_id)
        ) or 0

    def add_list_item(
        self,
        list_id: int,
        content: str,
        quantity: Optional[str] = None,
        added_by_user_id: Optional[int] = None,
    ) -> ListItem:
        item = ListItem(
            list_id=list_id,
            content=content,
            quantity=quantity,
            added_by_user_id=added_by_user_id,
        )
        self.db.add(item)
        self._commit("add list item", list_id=list_id)
        return item

    def _matching_item_ids(self, list_id: int, text: str, incomplete_only: bool = False) -> list[int]:
        query = select(ListItem).where(ListItem.list_id == list_id)
        if incomplete_only:
            query = query.where(ListItem.is_completed.is_(False))
        return [item.id for item in self.db.scalars(query) if folded_contains(item.content, text)]

    def delete_list_items_matching(self, list_id: int, text: str) -> int:
        ids = self._matching_item_ids(list_id, text)
        if not ids:
            return 0
        result = self.db.execute(
            delete(ListItem)
            .where(ListItem.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        self._commit("remove list items", list_id=list_id)
        return result.rowcount

    def complete_list_items_matching(self, list_id: int, text: str, completed_at: datetime) -> int:
        ids = self._matching_item_ids(list_id, text, incomplete_only=True)
        if not ids:
            return 0
        result = self.db.execute(
            update(ListItem)
            .where(ListItem.id.in_(ids))
            .values(is_completed=True, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        self._commit("complete list items", list_id=list_id)
        return result.rowcount

    def delete_all_list_items(self, list_id: int) -> int:
        result = self.db.execute(
            delete(ListItem)
            .where(ListItem.list_id == list_id)
            .execution_options(synchronize_session=False)
        )
        self._commit("clear list", list_id=list_id)
        return result.rowcount

    # =========================================================================
    # Locations
    # =========================================================================

    def get_current_location(self, user_id: int) -> Optional[Location]:
        return self.db.scalars(
            select(Location)
            .where(Location.user_id == user_id, Location.is_current.is_(True))
            .order_by(Location.id.desc())
        ).first()

    def set_current_location(
        self,
        user_id: int,
        latitude: Decimal,
        longitude: Decimal,
        address: Optional[str] = None,
        label: Optional[str] = None,
    ) -> Location:
        """
        Replace the user's current location in a single transaction: every
        current row is flipped to not-current, then the new row is inserted.
        """
        self.db.execute(
            update(Location)
            .where(Location.user_id == user_id, Location.is_current.is_(True))
            .values(is_current=False)
            .execution_options(synchronize_session=False)
        )
        location = Location(
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            address=address,
            label=label,
            is_current=True,
        )
        self.db.add(location)
        self._commit("set current location", user_id=user_id)
        # Flags on rows loaded before the flip are stale
        self.db.expire_all()
        return location

    # =========================================================================
    # Trips
    # =========================================================================

    def get_trip(self, trip_id: int) -> Optional[Trip]:
        return self.db.get(Trip, trip_id)

    def get_active_trip(self, user_id: int) -> Optional[Trip]:
        return self.db.scalars(
            select(Trip)
            .where(Trip.user_id == user_id, Trip.status == TripStatus.ACTIVE.value)
            .order_by(Trip.id.desc())
        ).first()

    def create_trip(self, trip: Trip, now: datetime) -> Trip:
        """
        Persist a new active trip. Any trip still active for the same user is
        cancelled in the same transaction.
        """
        superseded = self.db.execute(
            update(Trip)
            .where(Trip.user_id == trip.user_id, Trip.status == TripStatus.ACTIVE.value)
            .values(status=TripStatus.CANCELLED.value, completed_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        trip.status = TripStatus.ACTIVE.value
        self.db.add(trip)
        self._commit("create trip", user_id=trip.user_id)
        self.db.expire_all()
        if superseded:
            logger.info(f"Superseded {superseded} active trip(s) for user {trip.user_id}")
        return trip

    def finish_trip(self, trip_id: int, status: TripStatus, completed_at: datetime) -> bool:
        """
        Move an active trip to a terminal status.

        Returns:
            False when the trip does not exist or is no longer active.
        """
        result = self.db.execute(
            update(Trip)
            .where(Trip.id == trip_id, Trip.status == TripStatus.ACTIVE.value)
            .values(status=status.value, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        self._commit("finish trip", trip_id=trip_id)
        self.db.expire_all()
        return result.rowcount == 1

    # =========================================================================
    # Message log
    # =========================================================================

    def log_message(
        self,
        from_phone: str,
        to_phone: str,
        body: str,
        direction: str,
        provider_message_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> MessageLog:
        entry = MessageLog(
            from_phone=from_phone,
            to_phone=to_phone,
            body=body,
            direction=direction,
            provider_message_id=provider_message_id,
            status=status,
            created_at=utcnow(),
        )
        self.db.add(entry)
        self._commit("log message", provider_message_id=provider_message_id)
        return entry

    def set_message_intent(self, entry: MessageLog, intent: str) -> None:
        entry.intent = intent
        self._commit("record message intent", provider_message_id=entry.provider_message_id)

    def set_message_status(self, provider_message_id: str, status: str) -> int:
        """Back-fill delivery status; returns the number of rows updated."""
        result = self.db.execute(
            update(MessageLog)
            .where(MessageLog.provider_message_id == provider_message_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        self._commit("update message status", provider_message_id=provider_message_id)
        return result.rowcount

    def get_messages(
        self,
        limit: int = 50,
        offset: int = 0,
        phone: Optional[str] = None,
        direction: Optional[str] = None,
        q: Optional[str] = None,
    ) -> Tuple[list[MessageLog], int]:
        """
        Retrieve audit entries with pagination and filtering.

        Args:
            limit: Maximum number of entries to return (1-100)
            offset: Number of entries to skip
            phone: Sender or recipient (exact match)
            direction: inbound or outbound
            q: Free-text search in the body (SQL LIKE, so case folding is ASCII-only on SQLite)

        Returns:
            Tuple of (entries, total count matching filters)
        """
        query = select(MessageLog)

        if phone:
            query = query.where(or_(MessageLog.from_phone == phone, MessageLog.to_phone == phone))
        if direction:
            query = query.where(MessageLog.direction == direction)
        if q:
            query = query.where(MessageLog.body.icontains(q, autoescape=True))

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0

        entries = list(self.db.scalars(
            query.order_by(MessageLog.created_at, MessageLog.id).offset(offset).limit(limit)
        ))
        logger.debug(f"Retrieved {len(entries)} of {total} message log entries")

        return entries, total
