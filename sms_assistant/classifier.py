"""
Intent classification through the Anthropic Messages API.

Classification is unreliable input: every failure (missing key, timeout,
API error, non-JSON reply, unknown label) degrades to an Unknown intent with
zero confidence and is never raised to the caller.
"""

import json
import logging
import re
import time
from typing import Any, Optional, Protocol

import anthropic

from sms_assistant.intents import BaseIntent, IntentType, parse_intent, unknown_intent
from sms_assistant.metrics import record_classification_latency, record_external_failure
from sms_assistant.models import User

logger = logging.getLogger(__name__)


INTENT_RECOGNITION_PROMPT = """You are an intent classification system for a personal SMS assistant.

Analyze the incoming text message, classify it into exactly one intent and extract the relevant entities.

Available intents:
- location_query: asking where someone is
- eta_query: asking when someone will arrive
- location_update: the sender telling us where they are
- trip_start: the sender starting a trip to a destination
- trip_cancel: the sender cancelling their trip
- trip_complete: the sender saying they have arrived
- contact_lookup: looking up contact information
- contact_share: asking to send a contact's details to someone
- list_add_item: adding item(s) to a list (usually the grocery list)
- list_remove_item: removing item(s) from a list
- list_view: viewing list contents
- list_clear: clearing all items from a list
- list_mark_complete: marking item(s) as complete/bought
- list_create: creating a new list
- list_share: sharing a list with someone
- help: asking what the assistant can do
- status: asking for system status
- unknown: the message matches none of the above

Respond with a JSON object:
{
  "intent": "intent_name",
  "confidence": 0.0-1.0,
  "entities": {
    "contactName": "person the message is about, if any",
    "recipientName": "person to send a contact to (contact_share only)",
    "listName": "list name, only if the sender names one",
    "listItem": "item text, if any",
    "quantity": "quantity, if any",
    "location": "place or address, if any",
    "destination": "trip destination, if any",
    "duration": "duration or time, if any"
  }
}

Only include entities that are relevant to the intent. Return ONLY valid JSON, no other text."""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class IntentClassifier(Protocol):
    def classify(self, message: str, user: User) -> BaseIntent:
        ...


def extract_json(text: str) -> Any:
    """Parse the model's reply, tolerating a surrounding markdown code fence."""
    cleaned = _CODE_FENCE.sub("", text.strip())
    return json.loads(cleaned)


class AnthropicClassifier:
    """IntentClassifier backed by a Claude model."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        timeout: float = 10.0,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = client
        if self._client is None and api_key:
            # No retries: a slow classifier degrades to UNKNOWN instead
            self._client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def classify(self, message: str, user: User) -> BaseIntent:
        if self._client is None:
            logger.error("Classifier is not configured (missing ANTHROPIC_API_KEY)")
            record_external_failure("classifier")
            return unknown_intent(message)

        user_context = f"User name: {user.name}\nUser phone: {user.phone_number}"
        start_time = time.time()

        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                system=INTENT_RECOGNITION_PROMPT,
                messages=[
                    {
                        "role": "user",
                        "content": f'{user_context}\n\nMessage to classify: "{message}"',
                    }
                ],
            )
            text_blocks = [block.text for block in response.content if block.type == "text"]
            if not text_blocks:
                raise ValueError("Classifier response contained no text block")
            data = extract_json(text_blocks[0])
        except Exception as e:
            logger.error(f"Intent classification failed: {e}", extra={"user_id": user.id})
            record_external_failure("classifier")
            return unknown_intent(message)

        latency_seconds = time.time() - start_time
        record_classification_latency(latency_seconds)
        result = parse_intent(data, message)
        latency_ms = round(latency_seconds * 1000, 2)
        logger.info(
            "Intent recognized",
            extra={
                "user_id": user.id,
                "intent": result.intent,
                "confidence": result.confidence,
                "latency_ms": latency_ms,
            },
        )
        if result.intent == IntentType.UNKNOWN and result.confidence == 0.0:
            # Output did not validate into any intent
            record_external_failure("classifier")
        return result
