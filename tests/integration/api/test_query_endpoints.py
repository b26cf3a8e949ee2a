"""
Integration tests for the read endpoints.

Tests parameter validation messages, pagination and output formats.
"""

import csv
import io
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def seeded_client(test_client: TestClient, auth_headers: Dict[str, str], valid_track_request: Dict[str, Any]) -> TestClient:
    """Client with five page views and one signup stored for tenant-a."""
    for i in range(5):
        body = dict(valid_track_request, eventId=f"pv-{i}", timestamp=f"2025-03-10T12:0{i}:00Z")
        assert test_client.post("/v1/track", json=body, headers=auth_headers).status_code == 200

    test_client.post(
        "/v1/track",
        json={"event": "signup", "eventId": "su-0", "timestamp": "2025-03-11T08:00:00Z", "properties": {"plan": "free"}},
        headers=auth_headers,
    )
    return test_client


class TestEventQueryValidation:
    """Test each invalid parameter gets its own 400 message."""

    @pytest.mark.parametrize(
        "params,field,message",
        [
            ({"limit": "0"}, "limit", "limit must be a positive integer between 1 and 1000"),
            ({"limit": "1001"}, "limit", "limit must be a positive integer between 1 and 1000"),
            ({"limit": "ten"}, "limit", "limit must be a positive integer between 1 and 1000"),
            ({"offset": "-1"}, "offset", "offset must be a non-negative integer"),
            ({"sortBy": "color"}, "sortBy", "sortBy must be one of: timestamp, eventName, userId"),
            ({"sortOrder": "up"}, "sortOrder", "sortOrder must be one of: asc, desc"),
            ({"format": "xml"}, "format", "format must be one of: json, table, csv"),
            ({"startDate": "yesterday"}, "startDate", "startDate must be a valid ISO 8601 date"),
            (
                {"startDate": "2025-03-12T00:00:00Z", "endDate": "2025-03-10T00:00:00Z"},
                "startDate",
                "startDate must be before endDate",
            ),
            ({"properties": "{bad"}, "properties", "properties must be valid JSON"),
            ({"properties": "[1, 2]"}, "properties", "properties must be a JSON object"),
        ],
    )
    def test_invalid_parameter(
        self,
        test_client: TestClient,
        auth_headers: Dict[str, str],
        params: Dict[str, str],
        field: str,
        message: str,
    ) -> None:
        response = test_client.get("/v1/events/query", params=params, headers=auth_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["message"] == message
        assert body["details"]["field"] == field

    def test_user_sort_fields(self, test_client: TestClient, auth_headers: Dict[str, str]) -> None:
        response = test_client.get("/v1/users/query", params={"sortBy": "timestamp"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "sortBy must be one of: firstSeen, lastSeen, eventCount, sessionCount"

    def test_authentication_checked_first(self, test_client: TestClient) -> None:
        response = test_client.get("/v1/events/query", params={"limit": "0"})
        assert response.status_code == 401


class TestEventQueryResults:
    """Test filtering, pagination and rendering."""

    def test_pagination_walk(self, seeded_client: TestClient, auth_headers: Dict[str, str]) -> None:
        seen = []
        offset = 0
        while True:
            data = seeded_client.get(
                "/v1/events/query",
                params={"eventTypes": "page_view", "sortBy": "timestamp", "limit": 2, "offset": offset},
                headers=auth_headers,
            ).json()["data"]
            seen.append([e["eventId"] for e in data["events"]])
            if not data["hasMore"]:
                assert data["pagination"]["nextOffset"] is None
                break
            offset = data["pagination"]["nextOffset"]

        assert seen == [["pv-0", "pv-1"], ["pv-2", "pv-3"], ["pv-4"]]

    def test_filters_combine(self, seeded_client: TestClient, auth_headers: Dict[str, str]) -> None:
        data = seeded_client.get(
            "/v1/events/query",
            params={
                "eventTypes": "page_view,signup",
                "startDate": "2025-03-11T00:00:00Z",
                "properties": '{"plan": "free"}',
            },
            headers=auth_headers,
        ).json()["data"]

        assert [e["eventId"] for e in data["events"]] == ["su-0"]
        assert data["executionTime"] >= 0

    def test_table_format(self, seeded_client: TestClient, auth_headers: Dict[str, str]) -> None:
        body = seeded_client.get(
            "/v1/events/query",
            params={"format": "table", "eventType": "signup"},
            headers=auth_headers,
        ).json()

        assert body["data"]["columns"][:3] == ["eventId", "eventName", "userId"]
        assert body["data"]["rows"][0][0] == "su-0"
        assert body["data"]["totalCount"] == 1

    def test_csv_format(self, seeded_client: TestClient, auth_headers: Dict[str, str]) -> None:
        response = seeded_client.get(
            "/v1/events/query",
            params={"format": "csv", "eventType": "page_view", "sortBy": "timestamp"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "x-request-id" in response.headers
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert [row["eventId"] for row in rows] == [f"pv-{i}" for i in range(5)]
        assert rows[0]["userId"] == "user-1"


class TestUserQuery:
    """Test GET /v1/users/query."""

    def test_query_users_sorted(self, seeded_client: TestClient, auth_headers: Dict[str, str]) -> None:
        seeded_client.post("/v1/identify", json={"userId": "user-2", "traits": {"plan": "pro"}}, headers=auth_headers)

        data = seeded_client.get(
            "/v1/users/query",
            params={"sortBy": "eventCount", "sortOrder": "desc"},
            headers=auth_headers,
        ).json()["data"]

        assert [u["userId"] for u in data["users"]] == ["user-1", "user-2"]
        assert data["users"][0]["eventCount"] == 5

    def test_query_users_by_property(self, seeded_client: TestClient, auth_headers: Dict[str, str]) -> None:
        seeded_client.post("/v1/identify", json={"userId": "user-2", "traits": {"plan": "pro"}}, headers=auth_headers)

        data = seeded_client.get(
            "/v1/users/query",
            params={"properties": '{"plan": "pro"}'},
            headers=auth_headers,
        ).json()["data"]

        assert [u["userId"] for u in data["users"]] == ["user-2"]
