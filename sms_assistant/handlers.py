"""
One handler per intent.

Handlers take (intent, user, context) and return the reply text. They never
send the reply themselves; the pipeline does. Contact sharing is the
exception: the contact card goes to a third party as its own message.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Union

from sms_assistant import __version__
from sms_assistant.config import Settings
from sms_assistant.contacts import ContactService
from sms_assistant.formatters import (
    format_contact,
    format_distance,
    format_duration,
    format_eta,
    format_help,
    format_list,
    format_location,
    plural,
)
from sms_assistant.intents import (
    ContactLookup,
    ContactShare,
    EtaQuery,
    Help,
    ListAddItem,
    ListClear,
    ListCreate,
    ListMarkComplete,
    ListRemoveItem,
    ListShare,
    ListView,
    LocationQuery,
    LocationUpdate,
    Status,
    TripCancel,
    TripComplete,
    TripStart,
    Unknown,
)
from sms_assistant.lists import ListService
from sms_assistant.locations import EtaStatus, LocationService
from sms_assistant.maps import MapsService
from sms_assistant.models import PermissionKind, User, UserList
from sms_assistant.permissions import PermissionGuard
from sms_assistant.repository import Repository
from sms_assistant.sms import Messenger
from sms_assistant.utils import utcnow

logger = logging.getLogger(__name__)

UNKNOWN_REPLY_PREFIX = "I didn't quite understand that. "

_SHARED_DATA_LABELS = {
    PermissionKind.LOCATION: "location",
    PermissionKind.ETA: "ETA",
}


class HandlerContext:
    """Services shared by the handlers for one inbound message."""

    def __init__(
        self,
        repo: Repository,
        permissions: PermissionGuard,
        contacts: ContactService,
        lists: ListService,
        locations: LocationService,
        messenger: Messenger,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.permissions = permissions
        self.contacts = contacts
        self.lists = lists
        self.locations = locations
        self.messenger = messenger
        self.settings = settings
        self.clock = clock

    @classmethod
    def build(
        cls,
        repo: Repository,
        maps: MapsService,
        messenger: Messenger,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> "HandlerContext":
        permissions = PermissionGuard(repo, clock=clock)
        return cls(
            repo=repo,
            permissions=permissions,
            contacts=ContactService(repo, permissions),
            lists=ListService(repo, clock=clock),
            locations=LocationService(repo, maps, clock=clock),
            messenger=messenger,
            settings=settings,
            clock=clock,
        )


def _resolve_target(
    intent_name: Optional[str],
    user: User,
    context: HandlerContext,
    kind: PermissionKind,
) -> Union[User, str]:
    """
    The user a location or ETA query is about: the sender when no name is
    given, otherwise a registered user the sender has permission to see.
    Returns the reply text when the target cannot be used.
    """
    if not intent_name:
        return user

    target = context.contacts.resolve_user(user, intent_name)
    if target is None:
        return f"I couldn't find anyone named \"{intent_name}\"."

    if not context.permissions.has_permission(user, target.id, kind):
        return f"Sorry, {target.name} hasn't shared their {_SHARED_DATA_LABELS[kind]} with you."

    return target


# =============================================================================
# Location and trips
# =============================================================================

def handle_location_update(intent: LocationUpdate, user: User, context: HandlerContext) -> str:
    if not intent.location:
        return "I couldn't figure out where you are. Please specify a location or address."

    location = context.locations.update_location_from_address(user.id, intent.location)
    if location is None:
        return f"Sorry, I couldn't find the location \"{intent.location}\". Please try a more specific address."

    return f"Got it! I've updated your location to {location.address or intent.location}."


def handle_location_query(intent: LocationQuery, user: User, context: HandlerContext) -> str:
    target = _resolve_target(intent.contact_name, user, context, PermissionKind.LOCATION)
    if isinstance(target, str):
        return target

    location = context.locations.get_current_location(target.id)
    if target.id == user.id:
        if location is None:
            return (
                "I don't have your current location. You can update it by saying "
                "something like 'I'm at the store' or 'I'm at [address]'."
            )
        return f"Your current location: {format_location(location)}"

    if location is None:
        return f"I don't know where {target.name} is right now."

    return f"{target.name} is at {format_location(location)}"


def handle_trip_start(intent: TripStart, user: User, context: HandlerContext) -> str:
    # The classifier sometimes files the destination under "location"
    destination = intent.destination or intent.location
    if not destination:
        return "I couldn't figure out where you're heading. Please specify a destination."

    trip = context.locations.start_trip(user.id, destination, label=destination)
    if trip is None:
        return f"Sorry, I couldn't find the destination \"{destination}\". Please try a more specific address."

    reply = f"Got it! Heading to {trip.destination_address}."
    if trip.estimated_arrival is not None:
        reply += f" ETA: {format_eta(trip.estimated_arrival, context.clock())}"
    return reply


def handle_trip_cancel(intent: TripCancel, user: User, context: HandlerContext) -> str:
    trip = context.locations.get_active_trip(user.id)
    if trip is None:
        return "You don't have an active trip to cancel."

    if context.locations.cancel_trip(trip.id) is None:
        return "Sorry, I had trouble cancelling your trip. Please try again."

    return f"Cancelled trip to {trip.display_destination}."


def handle_trip_complete(intent: TripComplete, user: User, context: HandlerContext) -> str:
    trip = context.locations.get_active_trip(user.id)
    if trip is None:
        return "You don't have an active trip."

    if context.locations.complete_trip(trip.id) is None:
        return "Sorry, I had trouble completing your trip. Please try again."

    return f"Glad you made it! Completed trip to {trip.display_destination}."


def handle_eta_query(intent: EtaQuery, user: User, context: HandlerContext) -> str:
    target = _resolve_target(intent.contact_name, user, context, PermissionKind.ETA)
    if isinstance(target, str):
        return target

    is_self = target.id == user.id
    estimate = context.locations.estimate_arrival(target.id)

    if estimate.status == EtaStatus.NO_ACTIVE_TRIP:
        if is_self:
            return "You don't have an active trip. Start one by saying something like 'I'm heading home'."
        return f"{target.name} doesn't have an active trip."

    destination = estimate.trip.display_destination
    subject = "You're" if is_self else f"{target.name} is"

    if estimate.status == EtaStatus.NO_LOCATION:
        return (
            f"{subject} heading to {destination}, but I don't have enough information "
            "to calculate ETA. Try updating the current location."
        )

    if estimate.status == EtaStatus.ROUTE_UNAVAILABLE:
        return f"{subject} heading to {destination}, but I couldn't calculate a live ETA right now. Please try again."

    eta = format_eta(estimate.estimated_arrival, context.clock())
    distance = format_distance(estimate.distance_meters)
    duration = format_duration(estimate.duration_seconds)
    return f"{subject} heading to {destination}. ETA: {eta} ({distance}, ~{duration} in traffic)"


# =============================================================================
# Contacts
# =============================================================================

def handle_contact_lookup(intent: ContactLookup, user: User, context: HandlerContext) -> str:
    if not intent.contact_name:
        return "I couldn't figure out which contact you're looking for. Please specify a name."

    matches = context.contacts.lookup(user, intent.contact_name)
    if not matches:
        return (
            f"I couldn't find any contact matching \"{intent.contact_name}\". "
            "Please check the spelling or add them to your contacts first."
        )

    if len(matches) == 1:
        return format_contact(matches[0])

    names = ", ".join(contact.name for contact in matches)
    return f"I found {len(matches)} contacts matching \"{intent.contact_name}\": {names}. Please be more specific."


def handle_contact_share(intent: ContactShare, user: User, context: HandlerContext) -> str:
    if not intent.contact_name or not intent.recipient_name:
        return "Please tell me whose contact to send and who to send it to."

    contacts = context.contacts.lookup(user, intent.contact_name)
    if not contacts:
        return f"I couldn't find any contact matching \"{intent.contact_name}\"."
    if len(contacts) > 1:
        names = ", ".join(contact.name for contact in contacts)
        return f"I found {len(contacts)} contacts matching \"{intent.contact_name}\": {names}. Please be more specific."

    recipients = [
        contact for contact in context.contacts.search(user.id, intent.recipient_name)
        if contact.phone_number
    ]
    if not recipients:
        return f"I couldn't find a phone number for \"{intent.recipient_name}\"."
    if len(recipients) > 1:
        names = ", ".join(contact.name for contact in recipients)
        return f"Who should I send it to? I found: {names}."

    contact, recipient = contacts[0], recipients[0]
    result = context.messenger.send(
        recipient.phone_number,
        f"{user.name} shared a contact with you:\n{format_contact(contact)}",
    )
    if not result.success:
        return f"Sorry, I couldn't send {contact.name}'s contact info to {recipient.name}. Please try again."

    return f"Sent {contact.name}'s contact info to {recipient.name}."


# =============================================================================
# Lists
# =============================================================================

def _find_list(list_name: Optional[str], user: User, context: HandlerContext) -> Union[UserList, str]:
    user_list = context.lists.resolve_list(user.id, list_name)
    if user_list is None:
        return f"I couldn't find a list named \"{list_name}\"."
    return user_list


def _list_denied(user_list: UserList, edit: bool) -> str:
    action = "change" if edit else "view"
    return f"Sorry, you don't have permission to {action} {user_list.name}."


def handle_list_add_item(intent: ListAddItem, user: User, context: HandlerContext) -> str:
    if not intent.list_item:
        return "I couldn't figure out what item to add. Please specify the item name."

    user_list = _find_list(intent.list_name, user, context)
    if isinstance(user_list, str):
        return user_list
    if not context.lists.has_access(user_list, user.id, require_edit=True):
        return _list_denied(user_list, edit=True)

    item = context.lists.add_item(user_list, intent.list_item, intent.quantity, added_by_user_id=user.id)
    quantity = f" ({item.quantity})" if item.quantity else ""
    return f"Added \"{item.content}\"{quantity} to {user_list.name}."


def handle_list_remove_item(intent: ListRemoveItem, user: User, context: HandlerContext) -> str:
    if not intent.list_item:
        return "I couldn't figure out what item to remove. Please specify the item name."

    user_list = _find_list(intent.list_name, user, context)
    if isinstance(user_list, str):
        return user_list
    if not context.lists.has_access(user_list, user.id, require_edit=True):
        return _list_denied(user_list, edit=True)

    removed = context.lists.remove_items(user_list, intent.list_item)
    if removed == 0:
        return f"I couldn't find \"{intent.list_item}\" in {user_list.name}."
    if removed == 1:
        return f"Removed \"{intent.list_item}\" from {user_list.name}."
    return f"Removed {removed} items matching \"{intent.list_item}\" from {user_list.name}."


def handle_list_view(intent: ListView, user: User, context: HandlerContext) -> str:
    user_list = _find_list(intent.list_name, user, context)
    if isinstance(user_list, str):
        return user_list
    if not context.lists.has_access(user_list, user.id):
        return _list_denied(user_list, edit=False)

    return format_list(user_list.name, context.lists.items(user_list))


def handle_list_clear(intent: ListClear, user: User, context: HandlerContext) -> str:
    user_list = _find_list(intent.list_name, user, context)
    if isinstance(user_list, str):
        return user_list
    if not context.lists.has_access(user_list, user.id, require_edit=True):
        return _list_denied(user_list, edit=True)

    cleared = context.lists.clear(user_list)
    if cleared == 0:
        return f"{user_list.name} is already empty."
    return f"Cleared {plural(cleared, 'item')} from {user_list.name}."


def handle_list_mark_complete(intent: ListMarkComplete, user: User, context: HandlerContext) -> str:
    if not intent.list_item:
        return "I couldn't figure out what item to mark as complete. Please specify the item name."

    user_list = _find_list(intent.list_name, user, context)
    if isinstance(user_list, str):
        return user_list
    if not context.lists.has_access(user_list, user.id, require_edit=True):
        return _list_denied(user_list, edit=True)

    marked = context.lists.complete_items(user_list, intent.list_item)
    if marked == 0:
        return f"I couldn't find \"{intent.list_item}\" in {user_list.name}, or it's already marked as complete."
    if marked == 1:
        return f"Marked \"{intent.list_item}\" as complete in {user_list.name}."
    return f"Marked {marked} items matching \"{intent.list_item}\" as complete in {user_list.name}."


def handle_list_create(intent: ListCreate, user: User, context: HandlerContext) -> str:
    if not intent.list_name:
        return "I couldn't figure out what to name the new list. Please specify a name."

    user_list = context.lists.create_list(user.id, intent.list_name)
    if user_list is None:
        return f"You already have a list named \"{intent.list_name}\"."

    return f"Created \"{user_list.name}\". You can now add items to it!"


def handle_list_share(intent: ListShare, user: User, context: HandlerContext) -> str:
    if not intent.contact_name:
        return "Who would you like to share the list with?"

    user_list = _find_list(intent.list_name, user, context)
    if isinstance(user_list, str):
        return user_list
    if user_list.owner_id != user.id:
        return f"Only the owner of {user_list.name} can share it."

    target = context.contacts.resolve_user(user, intent.contact_name)
    if target is None:
        return f"I couldn't find anyone named \"{intent.contact_name}\" who uses this assistant."
    if target.id == user.id:
        return f"{user_list.name} is already yours."

    context.lists.share_list(user_list, user, target.id)
    return f"Shared {user_list.name} with {target.name}."


# =============================================================================
# System
# =============================================================================

def handle_help(intent: Help, user: User, context: HandlerContext) -> str:
    return format_help()


def handle_status(intent: Status, user: User, context: HandlerContext) -> str:
    if not user.is_primary_user:
        return "You don't have permission to view system status."

    return (
        f"SMS Assistant v{__version__}\n"
        "\n"
        "Status: Running\n"
        f"Environment: {context.settings.APP_ENV}\n"
        f"Users: {context.repo.count_users()}\n"
        "\n"
        "All systems operational."
    )


def handle_unknown(intent: Unknown, user: User, context: HandlerContext) -> str:
    logger.info("Unrecognized message", extra={"user_id": user.id, "confidence": intent.confidence})
    return UNKNOWN_REPLY_PREFIX + format_help()
