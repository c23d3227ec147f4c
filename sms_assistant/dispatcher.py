"""
Routes a classified intent to its handler.
"""

import logging
from typing import Callable

from sms_assistant import handlers
from sms_assistant.handlers import HandlerContext
from sms_assistant.intents import (
    INTENT_VARIANTS,
    BaseIntent,
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
from sms_assistant.metrics import record_intent
from sms_assistant.models import User

logger = logging.getLogger(__name__)

GENERIC_ERROR_REPLY = "Sorry, I encountered an error processing your request. Please try again."

Handler = Callable[[BaseIntent, User, HandlerContext], str]

_HANDLERS: dict[type[BaseIntent], Handler] = {
    LocationQuery: handlers.handle_location_query,
    EtaQuery: handlers.handle_eta_query,
    LocationUpdate: handlers.handle_location_update,
    TripStart: handlers.handle_trip_start,
    TripCancel: handlers.handle_trip_cancel,
    TripComplete: handlers.handle_trip_complete,
    ContactLookup: handlers.handle_contact_lookup,
    ContactShare: handlers.handle_contact_share,
    ListAddItem: handlers.handle_list_add_item,
    ListRemoveItem: handlers.handle_list_remove_item,
    ListView: handlers.handle_list_view,
    ListClear: handlers.handle_list_clear,
    ListMarkComplete: handlers.handle_list_mark_complete,
    ListCreate: handlers.handle_list_create,
    ListShare: handlers.handle_list_share,
    Help: handlers.handle_help,
    Status: handlers.handle_status,
    Unknown: handlers.handle_unknown,
}

_missing = [variant.__name__ for variant in INTENT_VARIANTS if variant not in _HANDLERS]
if _missing:
    raise RuntimeError(f"No handler registered for intents: {', '.join(_missing)}")


class Dispatcher:
    def __init__(self, context: HandlerContext):
        self._context = context

    def dispatch(self, intent: BaseIntent, user: User) -> str:
        """
        Run the handler for intent and return the reply text.

        Never raises: handler errors become a fixed apology, and an empty
        reply falls back to the unknown-intent text.
        """
        intent_name = getattr(intent, "intent", "unknown")
        logger.info(
            "Routing intent to handler",
            extra={"intent": intent_name, "user_id": user.id, "confidence": intent.confidence},
        )
        record_intent(intent_name)

        handler = _HANDLERS.get(type(intent), handlers.handle_unknown)
        try:
            reply = handler(intent, user, self._context)
        except Exception as e:
            logger.exception(
                f"Handler failed: {e}",
                extra={"intent": intent_name, "user_id": user.id, "raw_message": intent.raw_message},
            )
            return GENERIC_ERROR_REPLY

        if not reply or not reply.strip():
            logger.warning("Handler returned an empty reply", extra={"intent": intent_name})
            return handlers.handle_unknown(intent, user, self._context)

        return reply
