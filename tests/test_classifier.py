"""
Tests for intent parsing and the Anthropic classifier adapter.
"""

from types import SimpleNamespace

import httpx
import pytest
from anthropic import APITimeoutError

from sms_assistant.classifier import AnthropicClassifier, extract_json
from sms_assistant.intents import (
    ContactShare,
    ListAddItem,
    LocationQuery,
    TripStart,
    Unknown,
    parse_intent,
)


class FakeMessages:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


def fake_client(text=None, error=None):
    return SimpleNamespace(messages=FakeMessages(text=text, error=error))


class TestParseIntent:
    def test_entities_map_to_typed_fields(self):
        intent = parse_intent(
            {
                "intent": "list_add_item",
                "confidence": 0.92,
                "entities": {"listItem": "milk", "quantity": "2", "listName": "grocery"},
            },
            "add 2 milk to grocery",
        )

        assert isinstance(intent, ListAddItem)
        assert intent.list_item == "milk"
        assert intent.quantity == "2"
        assert intent.list_name == "grocery"
        assert intent.confidence == 0.92
        assert intent.raw_message == "add 2 milk to grocery"

    def test_unrelated_entities_ignored(self):
        intent = parse_intent(
            {"intent": "trip_start", "confidence": 0.8, "entities": {"destination": "home", "duration": "20 min"}},
            "heading home, 20 min",
        )

        assert isinstance(intent, TripStart)
        assert intent.destination == "home"
        assert not hasattr(intent, "duration")

    def test_recipient_name(self):
        intent = parse_intent(
            {"intent": "contact_share", "entities": {"contactName": "Sarah", "recipientName": "John"}},
            "send John Sarah's number",
        )

        assert isinstance(intent, ContactShare)
        assert intent.recipient_name == "John"

    def test_missing_confidence_defaults(self):
        intent = parse_intent({"intent": "location_query", "entities": {}}, "where is mom")

        assert isinstance(intent, LocationQuery)
        assert intent.confidence == 0.5

    @pytest.mark.parametrize("raw, expected", [(1.7, 1.0), (-0.2, 0.0), ("0.4", 0.4), ("lots", 0.0)])
    def test_confidence_clamped(self, raw, expected):
        intent = parse_intent({"intent": "help", "confidence": raw}, "help")

        assert intent.confidence == expected

    @pytest.mark.parametrize(
        "payload",
        [
            {"intent": "order_pizza", "confidence": 0.9},
            {"confidence": 0.9},
            ["not", "an", "object"],
            None,
        ],
    )
    def test_invalid_payload_is_unknown(self, payload):
        intent = parse_intent(payload, "hmm")

        assert isinstance(intent, Unknown)
        assert intent.confidence == 0.0
        assert intent.raw_message == "hmm"

    def test_blank_entities_dropped(self):
        intent = parse_intent({"intent": "list_view", "entities": {"listName": ""}}, "show list")

        assert intent.list_name is None

    def test_intents_are_immutable(self):
        intent = parse_intent({"intent": "help"}, "help")

        with pytest.raises(Exception):
            intent.confidence = 0.1


class TestExtractJson:
    def test_plain(self):
        assert extract_json('{"intent": "help"}') == {"intent": "help"}

    def test_code_fence(self):
        assert extract_json('```json\n{"intent": "help"}\n```') == {"intent": "help"}


class TestAnthropicClassifier:
    def test_classifies(self, natalie):
        client = fake_client('{"intent": "location_query", "confidence": 0.9, "entities": {"contactName": "Mom"}}')
        classifier = AnthropicClassifier(api_key="", model="test-model", client=client)

        intent = classifier.classify("where's mom?", natalie)

        assert isinstance(intent, LocationQuery)
        assert intent.contact_name == "Mom"
        call = client.messages.calls[0]
        assert call["model"] == "test-model"
        assert "Natalie" in call["messages"][0]["content"]
        assert "where's mom?" in call["messages"][0]["content"]

    def test_non_json_reply(self, natalie):
        classifier = AnthropicClassifier(api_key="", model="m", client=fake_client("I think this is a list"))

        intent = classifier.classify("add eggs", natalie)

        assert isinstance(intent, Unknown)
        assert intent.confidence == 0.0

    def test_api_error(self, natalie):
        error = APITimeoutError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        classifier = AnthropicClassifier(api_key="", model="m", client=fake_client(error=error))

        intent = classifier.classify("add eggs", natalie)

        assert isinstance(intent, Unknown)
        assert intent.raw_message == "add eggs"

    def test_not_configured(self, natalie):
        classifier = AnthropicClassifier(api_key="", model="m")

        assert isinstance(classifier.classify("add eggs", natalie), Unknown)
