from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Literal, Optional, Protocol, Sequence

from .document_status import (
    DocumentCategory,
    DocumentStatus,
    expiration_instant,
    get_days_until_expiration,
    get_document_category,
    get_document_status,
)

SortField = Literal["title", "expiration_date", "created_at", "type"]
SortOrder = Literal["asc", "desc"]
ReminderFilter = Literal["all", "expired", "expiring_soon"]

SORT_FIELDS = ("title", "expiration_date", "created_at", "type")


class DocumentLike(Protocol):
    title: str
    type: str
    notes: Optional[str]
    document_number: Optional[str]
    expiration_date: Optional[date]
    created_at: Optional[datetime]


def _matches(doc: DocumentLike, query: str) -> bool:
    for value in (doc.title, doc.notes, doc.type, doc.document_number):
        if value and query in value.lower():
            return True
    return False


def search_documents(docs: Iterable[DocumentLike], term: str | None) -> list[DocumentLike]:
    """Case-insensitive substring search over title, notes, type and document number."""
    docs = list(docs)
    query = (term or "").strip().lower()
    if not query:
        return docs
    return [doc for doc in docs if _matches(doc, query)]


def filter_documents(
    docs: Iterable[DocumentLike],
    *,
    search: str | None = None,
    status: str | None = "all",
    document_type: str | None = "all",
    category: str | None = None,
    now: datetime | None = None,
) -> list[DocumentLike]:
    result = search_documents(docs, search)

    if status and status != "all":
        result = [
            doc
            for doc in result
            if doc.expiration_date is not None and get_document_status(doc.expiration_date, now).value == status
        ]

    if document_type and document_type != "all":
        result = [doc for doc in result if doc.type == document_type]

    if category and category != "all":
        result = [doc for doc in result if get_document_category(doc.type).value == category]

    return result


def _timestamp(value: date | datetime | None) -> float:
    # Missing dates sort as the epoch
    if value is None:
        return 0.0
    return expiration_instant(value).timestamp()


def _sort_key(field: str):
    if field == "title":
        return lambda doc: (doc.title or "").casefold()
    if field == "type":
        return lambda doc: (doc.type or "").casefold()
    if field == "expiration_date":
        return lambda doc: _timestamp(doc.expiration_date)
    if field == "created_at":
        return lambda doc: _timestamp(doc.created_at)
    raise ValueError(f"Unsupported sort field: {field}")


def sort_documents(
    docs: Iterable[DocumentLike], field: str = "created_at", order: str = "desc"
) -> list[DocumentLike]:
    return sorted(docs, key=_sort_key(field), reverse=order == "desc")


def documents_by_status(
    docs: Iterable[DocumentLike], status: DocumentStatus | str, now: datetime | None = None
) -> list[DocumentLike]:
    wanted = DocumentStatus(status)
    return [doc for doc in docs if get_document_status(doc.expiration_date, now) == wanted]


def documents_by_category(docs: Iterable[DocumentLike], category: DocumentCategory | str) -> list[DocumentLike]:
    wanted = DocumentCategory(category)
    return [doc for doc in docs if get_document_category(doc.type) == wanted]


def documents_by_type(docs: Iterable[DocumentLike], document_type: str) -> list[DocumentLike]:
    return [doc for doc in docs if doc.type == document_type]


def documents_expiring_within(
    docs: Iterable[DocumentLike], days: int, now: datetime | None = None
) -> list[DocumentLike]:
    now = now or datetime.now(timezone.utc)
    horizon = now + timedelta(days=days)
    result = []
    for doc in docs:
        if doc.expiration_date is None:
            continue
        expires_at = expiration_instant(doc.expiration_date)
        if now <= expires_at <= horizon:
            result.append(doc)
    return sorted(result, key=lambda doc: expiration_instant(doc.expiration_date))


def document_stats(docs: Sequence[DocumentLike], now: datetime | None = None) -> dict[str, int]:
    stats = {
        "total": len(docs),
        "valid": 0,
        "expiring_soon": 0,
        "expired": 0,
        "no_expiry": 0,
        "identity": 0,
        "expiring": 0,
        "other": 0,
    }
    for doc in docs:
        stats[get_document_status(doc.expiration_date, now).value] += 1
        stats[get_document_category(doc.type).value] += 1
    return stats


def reminder_documents(
    docs: Iterable[DocumentLike], reminder_filter: str = "all", now: datetime | None = None
) -> list[DocumentLike]:
    """Expired and expiring-soon documents, most urgent first."""
    if reminder_filter == "expired":
        wanted = {DocumentStatus.EXPIRED}
    elif reminder_filter == "expiring_soon":
        wanted = {DocumentStatus.EXPIRING_SOON}
    else:
        wanted = {DocumentStatus.EXPIRED, DocumentStatus.EXPIRING_SOON}

    selected = [
        doc
        for doc in docs
        if doc.expiration_date is not None and get_document_status(doc.expiration_date, now) in wanted
    ]

    def urgency(doc: DocumentLike) -> tuple[int, int]:
        expired = get_document_status(doc.expiration_date, now) == DocumentStatus.EXPIRED
        days = get_days_until_expiration(doc.expiration_date, now) or 0
        return (0 if expired else 1, abs(days))

    return sorted(selected, key=urgency)
