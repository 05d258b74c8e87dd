from __future__ import annotations

from datetime import date, datetime, timezone
from types import SimpleNamespace

from api.services.analytics import build_analytics

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _doc(title, type_, expiration, created):
    return SimpleNamespace(title=title, type=type_, expiration_date=expiration, created_at=created)


def _event(type_, title, at):
    return SimpleNamespace(type=type_, data={"title": title}, at=at)


DOCS = [
    _doc("Lease", "Rent Agreement", date(2025, 2, 1), datetime(2024, 11, 20, tzinfo=timezone.utc)),
    _doc("Car insurance", "Insurance", date(2025, 3, 20), datetime(2025, 1, 3, tzinfo=timezone.utc)),
    _doc("Passport", "Passport", date(2030, 6, 1), datetime(2025, 3, 2)),
    _doc("Birth certificate", "Birth Certificate", None, datetime(2025, 3, 5, tzinfo=timezone.utc)),
]


def test_stats_and_insights():
    report = build_analytics(DOCS, now=NOW)

    assert report.stats.total == 4
    assert report.stats.active == 2
    assert report.stats.expiring_soon == 1
    assert report.stats.expired == 1
    assert report.insights == [
        "You have 1 expired document(s). Please renew them as soon as possible.",
        "1 document(s) are expiring within the next 30 days.",
    ]


def test_categories_use_lowercase_keys():
    categories = {item.key: item for item in build_analytics(DOCS, now=NOW).categories}

    assert set(categories) == {"rent agreement", "insurance", "passport", "birth certificate"}
    assert categories["insurance"].category == "Insurance"
    assert categories["insurance"].color == "#6B8E6B"
    assert categories["rent agreement"].color == "#94A3B8"


def test_monthly_buckets_cover_six_months_across_year_boundary():
    monthly = build_analytics(DOCS, now=NOW).monthly

    assert [(bucket.month, bucket.year) for bucket in monthly] == [
        ("Oct", 2024),
        ("Nov", 2024),
        ("Dec", 2024),
        ("Jan", 2025),
        ("Feb", 2025),
        ("Mar", 2025),
    ]
    by_month = {(bucket.year, bucket.month): bucket for bucket in monthly}
    assert by_month[(2024, "Nov")].added == 1
    assert by_month[(2025, "Mar")].added == 2
    assert by_month[(2025, "Feb")].expired == 1


def test_recent_activity_prefers_events():
    events = [
        _event("document_created", "Lease", datetime(2025, 3, 1, tzinfo=timezone.utc)),
        _event("reminder_scheduled", "Lease", datetime(2025, 3, 9, tzinfo=timezone.utc)),
        _event("reminder_sent", "Car insurance", datetime(2025, 3, 8, tzinfo=timezone.utc)),
    ]

    activity = build_analytics(DOCS, events, now=NOW).recent_activity

    assert [(item.action, item.document, item.date) for item in activity] == [
        ("Reminder sent", "Car insurance", "2025-03-08"),
        ("Added", "Lease", "2025-03-01"),
    ]


def test_recent_activity_falls_back_to_newest_documents():
    activity = build_analytics(DOCS, now=NOW).recent_activity

    assert [item.document for item in activity] == ["Birth certificate", "Passport", "Car insurance", "Lease"]
    assert all(item.action == "Added" for item in activity)


def test_empty_account():
    report = build_analytics([], now=NOW).to_dict()

    assert report["stats"] == {"total": 0, "active": 0, "expiring_soon": 0, "expired": 0}
    assert report["insights"] == ["Start by adding your first document to track stats."]
    assert report["recent_activity"] == []
    assert len(report["monthly"]) == 6


def test_all_valid_documents_get_encouragement():
    docs = [_doc("Passport", "Passport", date(2030, 1, 1), None)]
    assert build_analytics(docs, now=NOW).insights == ["Great job! All your documents are valid and up to date."]
