"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)

from sms_assistant.storage import Base
from sms_assistant.utils import utcnow


class PermissionKind(str, Enum):
    """Categories of protected data one user can grant another."""
    LOCATION = "location"
    ETA = "eta"
    CONTACTS = "contacts"
    LISTS = "lists"


class TripStatus(str, Enum):
    """Trip lifecycle: active -> completed | cancelled (terminal)."""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


# 8 fractional digits for both latitude and longitude
COORDINATE = Numeric(11, 8, asdecimal=True)


class User(Base):
    """
    Whitelisted user, keyed by phone number.

    Table: users
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String(32), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    is_primary_user = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Contact(Base):
    """
    Address-book entry owned by one user. Not itself a user.

    Table: contacts
    """
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_contacts_owner_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    phone_number = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    relationship = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Permission(Base):
    """
    Grant of one permission kind from a grantor to a subject user.

    Table: permissions
    Unique: (user_id, granted_by_user_id, permission_type)
    """
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "granted_by_user_id", "permission_type",
            name="uq_permissions_subject_grantor_kind",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    granted_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    permission_type = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class UserList(Base):
    """
    Named list (grocery, packing, ...) owned by one user.

    Table: lists
    """
    __tablename__ = "lists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(50), nullable=False, default="general")
    is_shared = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ListItem(Base):
    """
    Table: list_items
    """
    __tablename__ = "list_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    list_id = Column(Integer, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(String(500), nullable=False)
    quantity = Column(String(50), nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    added_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ListShare(Base):
    """
    Access grant on a list for a non-owner.

    Table: list_shares
    Unique: (list_id, shared_with_user_id)
    """
    __tablename__ = "list_shares"
    __table_args__ = (
        UniqueConstraint("list_id", "shared_with_user_id", name="uq_list_shares_list_user"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    list_id = Column(Integer, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True)
    shared_with_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    can_edit = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Location(Base):
    """
    Point-in-time position of a user. Rows are append-only; only the
    is_current flag ever changes.

    Table: locations
    """
    __tablename__ = "locations"
    __table_args__ = (
        # At most one current location per user
        Index(
            "uq_locations_one_current",
            "user_id",
            unique=True,
            sqlite_where=text("is_current = 1"),
            postgresql_where=text("is_current"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    latitude = Column(COORDINATE, nullable=False)
    longitude = Column(COORDINATE, nullable=False)
    address = Column(String(500), nullable=True)
    label = Column(String(100), nullable=True)
    is_current = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Trip(Base):
    """
    Table: trips
    """
    __tablename__ = "trips"
    __table_args__ = (
        # At most one active trip per user
        Index(
            "uq_trips_one_active",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    origin_lat = Column(COORDINATE, nullable=True)
    origin_lng = Column(COORDINATE, nullable=True)
    origin_address = Column(String(500), nullable=True)
    destination_lat = Column(COORDINATE, nullable=False)
    destination_lng = Column(COORDINATE, nullable=False)
    destination_address = Column(String(500), nullable=False)
    destination_label = Column(String(100), nullable=True)
    estimated_arrival = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default=TripStatus.ACTIVE.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    @property
    def display_destination(self) -> str:
        return self.destination_label or self.destination_address


class MessageLog(Base):
    """
    Append-only audit record of every inbound/outbound SMS.

    Table: message_logs
    """
    __tablename__ = "message_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_phone = Column(String(32), nullable=False, index=True)
    to_phone = Column(String(32), nullable=False, index=True)
    body = Column(Text, nullable=False)
    direction = Column(String(10), nullable=False)
    provider_message_id = Column(String(64), nullable=True, index=True)
    status = Column(String(32), nullable=True)
    intent = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
