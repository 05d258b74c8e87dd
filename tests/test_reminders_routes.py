from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


def _in_days(days: int) -> str:
    return (datetime.now(timezone.utc).date() + timedelta(days=days)).isoformat()


@pytest.fixture()
def documents(client, auth_context):
    for title, days in (("Passport", 400), ("Lease", -3), ("Insurance", 5), ("Gym", 25), ("Old visa", -40)):
        response = client.post(
            "/documents",
            data={"title": title, "type": "Other", "expiration_date": _in_days(days)},
        )
        assert response.status_code == 201


@pytest.mark.integration
def test_reminders_list_most_urgent_first(client, documents):
    response = client.get("/reminders")

    assert response.status_code == 200
    payload = response.json()
    assert payload["filter"] == "all"
    assert payload["counts"] == {"total": 4, "expired": 2, "expiring_soon": 2}
    assert [item["title"] for item in payload["items"]] == ["Lease", "Old visa", "Insurance", "Gym"]


@pytest.mark.integration
@pytest.mark.parametrize(
    "name, titles",
    [("expired", ["Lease", "Old visa"]), ("expiring_soon", ["Insurance", "Gym"])],
)
def test_reminders_filter(client, documents, name, titles):
    payload = client.get("/reminders", params={"filter": name}).json()

    assert payload["filter"] == name
    assert payload["counts"]["total"] == 4
    assert [item["title"] for item in payload["items"]] == titles


@pytest.mark.integration
def test_reminders_reject_unknown_filter(client, auth_context):
    assert client.get("/reminders", params={"filter": "soonish"}).status_code == 422


@pytest.mark.integration
def test_analytics_summarises_owned_documents(client, documents, make_session):
    make_session("someone-else@example.com")

    response = client.get("/analytics")

    assert response.status_code == 200
    payload = response.json()
    assert payload["stats"] == {"total": 5, "active": 1, "expiring_soon": 2, "expired": 2}
    assert payload["categories"] == [{"key": "other", "category": "Other", "count": 5, "color": "#94A3B8"}]
    assert len(payload["monthly"]) == 6
    assert payload["monthly"][-1]["added"] == 5
    assert {item["action"] for item in payload["recent_activity"]} == {"Added"}
    assert len(payload["recent_activity"]) == 5
    assert payload["insights"][0] == "You have 2 expired document(s). Please renew them as soon as possible."
