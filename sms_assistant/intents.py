"""
Intent types produced by classification.

Each intent is its own pydantic model carrying only the entities it uses.
The classifier's wire shape ({intent, confidence, entities, rawMessage}, with
camelCase entity keys) is parsed into one of these variants by parse_intent().
"""

import logging
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class IntentType(str, Enum):
    # Location & travel
    LOCATION_QUERY = "location_query"
    ETA_QUERY = "eta_query"
    LOCATION_UPDATE = "location_update"
    TRIP_START = "trip_start"
    TRIP_CANCEL = "trip_cancel"
    TRIP_COMPLETE = "trip_complete"

    # Contacts
    CONTACT_LOOKUP = "contact_lookup"
    CONTACT_SHARE = "contact_share"

    # Lists
    LIST_ADD_ITEM = "list_add_item"
    LIST_REMOVE_ITEM = "list_remove_item"
    LIST_VIEW = "list_view"
    LIST_CLEAR = "list_clear"
    LIST_MARK_COMPLETE = "list_mark_complete"
    LIST_CREATE = "list_create"
    LIST_SHARE = "list_share"

    # System
    HELP = "help"
    STATUS = "status"
    UNKNOWN = "unknown"


class BaseIntent(BaseModel):
    """Fields common to every classified message."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_message: str = ""


class LocationQuery(BaseIntent):
    """'Where is David?'"""
    intent: Literal["location_query"] = "location_query"
    contact_name: Optional[str] = None


class EtaQuery(BaseIntent):
    """'When will you arrive?'"""
    intent: Literal["eta_query"] = "eta_query"
    contact_name: Optional[str] = None


class LocationUpdate(BaseIntent):
    """'I'm at the store'"""
    intent: Literal["location_update"] = "location_update"
    location: Optional[str] = None


class TripStart(BaseIntent):
    """'Heading home'"""
    intent: Literal["trip_start"] = "trip_start"
    destination: Optional[str] = None
    location: Optional[str] = None


class TripCancel(BaseIntent):
    intent: Literal["trip_cancel"] = "trip_cancel"


class TripComplete(BaseIntent):
    """'I made it'"""
    intent: Literal["trip_complete"] = "trip_complete"


class ContactLookup(BaseIntent):
    """'What's Mom's number?'"""
    intent: Literal["contact_lookup"] = "contact_lookup"
    contact_name: Optional[str] = None


class ContactShare(BaseIntent):
    """'Send John Sarah's number'"""
    intent: Literal["contact_share"] = "contact_share"
    contact_name: Optional[str] = None
    recipient_name: Optional[str] = None


class ListAddItem(BaseIntent):
    intent: Literal["list_add_item"] = "list_add_item"
    list_name: Optional[str] = None
    list_item: Optional[str] = None
    quantity: Optional[str] = None


class ListRemoveItem(BaseIntent):
    intent: Literal["list_remove_item"] = "list_remove_item"
    list_name: Optional[str] = None
    list_item: Optional[str] = None


class ListView(BaseIntent):
    intent: Literal["list_view"] = "list_view"
    list_name: Optional[str] = None


class ListClear(BaseIntent):
    intent: Literal["list_clear"] = "list_clear"
    list_name: Optional[str] = None


class ListMarkComplete(BaseIntent):
    intent: Literal["list_mark_complete"] = "list_mark_complete"
    list_name: Optional[str] = None
    list_item: Optional[str] = None


class ListCreate(BaseIntent):
    intent: Literal["list_create"] = "list_create"
    list_name: Optional[str] = None


class ListShare(BaseIntent):
    """'Share the packing list with Natalie'"""
    intent: Literal["list_share"] = "list_share"
    list_name: Optional[str] = None
    contact_name: Optional[str] = None


class Help(BaseIntent):
    intent: Literal["help"] = "help"


class Status(BaseIntent):
    intent: Literal["status"] = "status"


class Unknown(BaseIntent):
    intent: Literal["unknown"] = "unknown"


Intent = Annotated[
    Union[
        LocationQuery,
        EtaQuery,
        LocationUpdate,
        TripStart,
        TripCancel,
        TripComplete,
        ContactLookup,
        ContactShare,
        ListAddItem,
        ListRemoveItem,
        ListView,
        ListClear,
        ListMarkComplete,
        ListCreate,
        ListShare,
        Help,
        Status,
        Unknown,
    ],
    Field(discriminator="intent"),
]

INTENT_VARIANTS: tuple[type[BaseIntent], ...] = get_args(get_args(Intent)[0])

_intent_adapter = TypeAdapter(Intent)

# Confidence assumed when the classifier omits it
DEFAULT_CONFIDENCE = 0.5


def unknown_intent(raw_message: str) -> Unknown:
    """The result returned whenever classification fails."""
    return Unknown(confidence=0.0, raw_message=raw_message)


def _coerce_confidence(value: Any) -> float:
    if value is None:
        return DEFAULT_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def parse_intent(data: Any, raw_message: str) -> BaseIntent:
    """
    Build a typed intent from the classifier's {intent, confidence, entities}
    payload. Anything that does not validate becomes Unknown with zero
    confidence.
    """
    if not isinstance(data, dict):
        logger.warning("Classifier payload is not an object", extra={"payload_type": type(data).__name__})
        return unknown_intent(raw_message)

    entities = data.get("entities")
    if not isinstance(entities, dict):
        entities = {}

    payload = {
        key: str(value)
        for key, value in entities.items()
        if isinstance(key, str) and value not in (None, "")
    }
    payload["intent"] = data.get("intent")
    payload["confidence"] = _coerce_confidence(data.get("confidence"))
    payload["rawMessage"] = raw_message

    try:
        return _intent_adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(
            f"Unrecognized classifier output: {e.error_count()} validation error(s)",
            extra={"intent_label": str(data.get("intent"))},
        )
        return unknown_intent(raw_message)
