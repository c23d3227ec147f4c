"""
Tests for reply formatting and the small utility helpers.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from sms_assistant.formatters import (
    SMS_CHAR_LIMIT,
    format_contact,
    format_distance,
    format_duration,
    format_eta,
    format_help,
    format_list,
    format_location,
    truncate_for_sms,
)
from sms_assistant.utils import (
    compute_twilio_signature,
    normalize_phone_number,
    verify_bearer_token,
    verify_twilio_signature,
)

NOW = datetime(2025, 1, 15, 10, 0, 0)


def item(content, quantity=None, is_completed=False):
    return SimpleNamespace(content=content, quantity=quantity, is_completed=is_completed)


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate_for_sms("hello") == "hello"

    def test_exact_limit_unchanged(self):
        text = "x" * SMS_CHAR_LIMIT

        assert truncate_for_sms(text) == text

    def test_long_text_cut_with_ellipsis(self):
        result = truncate_for_sms("x" * 2000)

        assert len(result) == SMS_CHAR_LIMIT
        assert result.endswith("...")


class TestDistanceAndDuration:
    @pytest.mark.parametrize("meters, expected", [
        (250, "250 meters"),
        (8046, "5.0 miles"),
        (40000, "25 miles"),
    ])
    def test_distance(self, meters, expected):
        assert format_distance(meters) == expected

    @pytest.mark.parametrize("seconds, expected", [
        (60, "1 minute"),
        (1500, "25 minutes"),
        (3600, "1 hour"),
        (5400, "1h 30m"),
    ])
    def test_duration(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestEta:
    @pytest.mark.parametrize("delta, expected", [
        (timedelta(minutes=-1), "arrived"),
        (timedelta(minutes=25), "25 min"),
        (timedelta(hours=2), "2 hours"),
        (timedelta(hours=1, minutes=15), "1h 15m"),
    ])
    def test_relative_to_now(self, delta, expected):
        assert format_eta(NOW + delta, NOW) == expected


class TestFormatList:
    def test_empty(self):
        assert format_list("Grocery List", []) == "Grocery List is empty."

    def test_items_with_markers_and_quantity(self):
        text = format_list("Grocery List", [item("milk", "2"), item("bread", is_completed=True)])

        assert text == "Grocery List (2 items):\n\n○ 1. milk (2)\n✓ 2. bread"

    def test_long_list_truncated(self):
        text = format_list("Big", [item("x" * 50) for _ in range(100)])

        assert len(text) == SMS_CHAR_LIMIT


class TestFormatContactAndLocation:
    def test_contact_with_all_fields(self):
        contact = SimpleNamespace(name="Mom", relationship="family", phone_number="+15555555678", email="mom@example.com")

        assert format_contact(contact) == "Mom (family)\nPhone: +15555555678\nEmail: mom@example.com"

    def test_contact_name_only(self):
        contact = SimpleNamespace(name="Sam", relationship=None, phone_number=None, email=None)

        assert format_contact(contact) == "Sam"

    def test_location_prefers_address(self):
        location = SimpleNamespace(address="1 Market St", label="work", latitude=Decimal("1"), longitude=Decimal("2"))

        assert format_location(location) == "1 Market St (work)"

    def test_location_falls_back_to_coordinates(self):
        location = SimpleNamespace(
            address=None, label=None, latitude=Decimal("37.77492950"), longitude=Decimal("-122.41941550")
        )

        assert format_location(location) == "37.77492950, -122.41941550"

    def test_help_mentions_every_area(self):
        text = format_help()

        for heading in ("Contacts", "Lists", "Location"):
            assert heading in text


class TestPhoneNormalization:
    @pytest.mark.parametrize("raw, expected", [
        ("(555) 555-1234", "+15555551234"),
        ("555.555.1234", "+15555551234"),
        ("+1 555 555 1234", "+15555551234"),
        ("15555551234", "+15555551234"),
        ("+44 20 7946 0958", "+442079460958"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_phone_number(raw) == expected


class TestSignatures:
    URL = "https://sms.example.com/webhooks/sms/incoming"
    PARAMS = {"MessageSid": "SM1", "From": "+15555551234", "Body": "hi"}

    def test_valid_signature(self):
        signature = compute_twilio_signature(self.URL, self.PARAMS, "secret")

        assert verify_twilio_signature(self.URL, self.PARAMS, signature, "secret") is True

    def test_parameter_order_irrelevant(self):
        reordered = dict(reversed(list(self.PARAMS.items())))

        assert compute_twilio_signature(self.URL, reordered, "secret") == compute_twilio_signature(
            self.URL, self.PARAMS, "secret"
        )

    def test_tampered_body_rejected(self):
        signature = compute_twilio_signature(self.URL, self.PARAMS, "secret")

        assert verify_twilio_signature(self.URL, {**self.PARAMS, "Body": "bye"}, signature, "secret") is False

    def test_wrong_url_rejected(self):
        signature = compute_twilio_signature(self.URL, self.PARAMS, "secret")

        assert verify_twilio_signature("http://localhost/webhooks/sms/incoming", self.PARAMS, signature, "secret") is False

    @pytest.mark.parametrize("header, expected", [
        ("Bearer admin-key", True),
        ("Bearer wrong", False),
        ("Bearer ", False),
        ("admin-key", False),
        (None, False),
    ])
    def test_bearer_token(self, header, expected):
        assert verify_bearer_token(header, "admin-key") is expected
