from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from .document_status import DocumentStatus, expiration_instant, get_document_status

MONTHS_BACK = 6
RECENT_ACTIVITY_LIMIT = 5

CATEGORY_COLORS = {
    "passport": "#A8BBA3",
    "license": "#8FA58F",
    "insurance": "#6B8E6B",
    "certificate": "#4A7C59",
    "visa": "#2E5A3C",
    "other": "#94A3B8",
}

EVENT_ACTIONS = {
    "document_created": "Added",
    "document_updated": "Updated",
    "document_deleted": "Deleted",
    "reminder_sent": "Reminder sent",
}


@dataclass
class AnalyticsStats:
    total: int = 0
    active: int = 0
    expiring_soon: int = 0
    expired: int = 0


@dataclass
class CategoryCount:
    key: str
    category: str
    count: int
    color: str


@dataclass
class MonthBucket:
    month: str
    year: int
    added: int = 0
    expired: int = 0


@dataclass
class ActivityItem:
    action: str
    document: str
    date: str


@dataclass
class AnalyticsReport:
    stats: AnalyticsStats
    categories: list[CategoryCount] = field(default_factory=list)
    monthly: list[MonthBucket] = field(default_factory=list)
    recent_activity: list[ActivityItem] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _last_months(now: datetime, count: int) -> list[tuple[int, int]]:
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append((year, month))
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(keys))


def _insights(stats: AnalyticsStats) -> list[str]:
    insights = []
    if stats.expired > 0:
        insights.append(
            f"You have {stats.expired} expired document(s). Please renew them as soon as possible."
        )
    if stats.expiring_soon > 0:
        insights.append(f"{stats.expiring_soon} document(s) are expiring within the next 30 days.")
    if stats.total == 0:
        insights.append("Start by adding your first document to track stats.")
    elif stats.active == stats.total:
        insights.append("Great job! All your documents are valid and up to date.")
    return insights


def _activity_from_events(events: Sequence[Any]) -> list[ActivityItem]:
    items = []
    ordered = sorted(events, key=lambda event: _as_utc(event.at), reverse=True)
    for event in ordered:
        action = EVENT_ACTIONS.get(event.type)
        if action is None:
            continue
        data = event.data or {}
        items.append(
            ActivityItem(
                action=action,
                document=data.get("title") or "Document",
                date=_as_utc(event.at).date().isoformat(),
            )
        )
        if len(items) == RECENT_ACTIVITY_LIMIT:
            break
    return items


def build_analytics(
    docs: Sequence[Any], events: Iterable[Any] = (), now: datetime | None = None
) -> AnalyticsReport:
    now = now or datetime.now(timezone.utc)
    stats = AnalyticsStats(total=len(docs))
    type_counts: Counter[str] = Counter()
    added: Counter[tuple[int, int]] = Counter()
    expired: Counter[tuple[int, int]] = Counter()

    for doc in docs:
        status = get_document_status(doc.expiration_date, now)
        if status == DocumentStatus.EXPIRED:
            stats.expired += 1
            expires_at = expiration_instant(doc.expiration_date)
            expired[(expires_at.year, expires_at.month)] += 1
        elif status == DocumentStatus.EXPIRING_SOON:
            stats.expiring_soon += 1
        else:
            stats.active += 1

        type_counts[(doc.type or "other").lower()] += 1

        if doc.created_at is not None:
            created = _as_utc(doc.created_at)
            added[(created.year, created.month)] += 1

    report = AnalyticsReport(stats=stats)
    report.categories = [
        CategoryCount(
            key=key,
            category=key[:1].upper() + key[1:],
            count=count,
            color=CATEGORY_COLORS.get(key, CATEGORY_COLORS["other"]),
        )
        for key, count in type_counts.items()
    ]
    report.monthly = [
        MonthBucket(
            month=datetime(year, month, 1).strftime("%b"),
            year=year,
            added=added[(year, month)],
            expired=expired[(year, month)],
        )
        for year, month in _last_months(now, MONTHS_BACK)
    ]

    report.recent_activity = _activity_from_events(list(events))
    if not report.recent_activity:
        newest = sorted(
            (doc for doc in docs if doc.created_at is not None),
            key=lambda doc: _as_utc(doc.created_at),
            reverse=True,
        )[:RECENT_ACTIVITY_LIMIT]
        report.recent_activity = [
            ActivityItem(action="Added", document=doc.title or "Document", date=_as_utc(doc.created_at).date().isoformat())
            for doc in newest
        ]

    report.insights = _insights(stats)
    return report
