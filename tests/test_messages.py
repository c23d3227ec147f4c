"""
Tests for the admin and operational endpoints.

Tests cover:
- GET /messages audit listing: auth, pagination, filters, ordering
- GET /status
- Health probes and the metrics exposition
"""

import pytest

from conftest import MOM_PHONE, NATALIE_PHONE, SERVICE_NUMBER

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-key"}


@pytest.fixture
def seeded_client(client, repo):
    """Client with a short conversation already in the log."""
    entries = [
        (NATALIE_PHONE, SERVICE_NUMBER, "Add milk to the grocery list", "inbound"),
        (SERVICE_NUMBER, NATALIE_PHONE, 'Added "milk" to Grocery List.', "outbound"),
        (MOM_PHONE, SERVICE_NUMBER, "Where is David?", "inbound"),
        (SERVICE_NUMBER, MOM_PHONE, "David is at 123 Main St", "outbound"),
        (NATALIE_PHONE, SERVICE_NUMBER, "Show me the grocery list", "inbound"),
    ]
    for from_phone, to_phone, body, direction in entries:
        repo.log_message(from_phone=from_phone, to_phone=to_phone, body=body, direction=direction)
    return client


class TestMessagesAuth:
    def test_missing_token(self, client):
        response = client.get("/messages")

        assert response.status_code == 401
        assert response.json() == {"detail": "unauthorized"}

    def test_wrong_token(self, client):
        response = client.get("/messages", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_not_bearer(self, client):
        response = client.get("/messages", headers={"Authorization": "test-admin-key"})

        assert response.status_code == 401


class TestMessagesListing:
    def test_default_pagination(self, seeded_client):
        response = seeded_client.get("/messages", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 5
        assert data["limit"] == 50
        assert data["offset"] == 0
        assert len(data["data"]) == 5

    def test_ordered_by_creation(self, seeded_client):
        data = seeded_client.get("/messages", headers=ADMIN_HEADERS).json()["data"]

        ids = [entry["id"] for entry in data]
        assert ids == sorted(ids)
        assert data[0]["body"] == "Add milk to the grocery list"

    def test_limit_and_offset(self, seeded_client):
        data = seeded_client.get("/messages?limit=2&offset=2", headers=ADMIN_HEADERS).json()

        assert data["total"] == 5
        assert [entry["body"] for entry in data["data"]] == ["Where is David?", "David is at 123 Main St"]

    def test_filter_by_phone_matches_both_directions(self, seeded_client):
        data = seeded_client.get(f"/messages?phone={MOM_PHONE}", headers=ADMIN_HEADERS).json()

        assert data["total"] == 2
        assert {entry["direction"] for entry in data["data"]} == {"inbound", "outbound"}

    def test_filter_by_unformatted_phone(self, seeded_client):
        data = seeded_client.get("/messages", params={"phone": "555-555-5678"}, headers=ADMIN_HEADERS).json()

        assert data["total"] == 2

    def test_filter_by_direction(self, seeded_client):
        data = seeded_client.get("/messages?direction=outbound", headers=ADMIN_HEADERS).json()

        assert data["total"] == 2
        assert all(entry["direction"] == "outbound" for entry in data["data"])

    def test_free_text_search_case_insensitive(self, seeded_client):
        data = seeded_client.get("/messages?q=GROCERY", headers=ADMIN_HEADERS).json()

        assert data["total"] == 3

    def test_combined_filters(self, seeded_client):
        data = seeded_client.get(
            f"/messages?phone={NATALIE_PHONE}&direction=inbound&q=show",
            headers=ADMIN_HEADERS,
        ).json()

        assert data["total"] == 1
        assert data["data"][0]["body"] == "Show me the grocery list"

    def test_empty_result(self, seeded_client):
        data = seeded_client.get("/messages?q=nothing-matches", headers=ADMIN_HEADERS).json()

        assert data == {"data": [], "total": 0, "limit": 50, "offset": 0}

    @pytest.mark.parametrize("query", ["limit=0", "limit=101", "offset=-1", "direction=sideways"])
    def test_invalid_query_params(self, client, query):
        response = client.get(f"/messages?{query}", headers=ADMIN_HEADERS)

        assert response.status_code == 422


class TestStatus:
    def test_requires_admin(self, client):
        assert client.get("/status").status_code == 401

    def test_reports_configuration(self, client):
        response = client.get("/status", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "1.0.0"
        assert data["environment"] == "development"
        assert data["checks"]["database"] is True
        assert set(data["checks"]) == {"database", "sms", "classifier", "maps"}


class TestHealthAndMetrics:
    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_request_id_header(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_metrics_exposition(self, client):
        client.get("/health/live")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "sms_webhook_total" in response.text
