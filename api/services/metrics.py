from __future__ import annotations

from prometheus_client import Counter


DOCUMENTS_CREATED_COUNTER = Counter(
    "dt_documents_created_total",
    "Documents created, by entry source",
    ["source"],
)

DOCUMENTS_DELETED_COUNTER = Counter(
    "dt_documents_deleted_total",
    "Documents deleted",
)

OCR_SCANS_COUNTER = Counter(
    "dt_ocr_scans_total",
    "OCR scans by outcome",
    ["outcome"],
)

REMINDERS_SCHEDULED_COUNTER = Counter(
    "dt_reminders_scheduled_total",
    "Reminder jobs scheduled",
)

REMINDERS_SENT_COUNTER = Counter(
    "dt_reminders_sent_total",
    "Reminder emails successfully sent",
    ["channel"],
)

REMINDERS_FAILED_COUNTER = Counter(
    "dt_reminders_failed_total",
    "Reminder emails that failed to send",
    ["channel"],
)


def record_document_created(source: str = "manual") -> None:
    DOCUMENTS_CREATED_COUNTER.labels(source=source).inc()


def record_document_deleted() -> None:
    DOCUMENTS_DELETED_COUNTER.inc()


def record_ocr_scan(outcome: str) -> None:
    OCR_SCANS_COUNTER.labels(outcome=outcome).inc()


def record_reminder_scheduled(count: int = 1) -> None:
    if count <= 0:
        return
    REMINDERS_SCHEDULED_COUNTER.inc(count)


def record_reminder_sent(channel: str = "queue") -> None:
    REMINDERS_SENT_COUNTER.labels(channel=channel).inc()


def record_reminder_failed(channel: str = "queue") -> None:
    REMINDERS_FAILED_COUNTER.labels(channel=channel).inc()
