from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..models.documents import Document
from ..models.events import Event
from ..models.reminder_jobs import ReminderJob, ReminderStatusEnum
from ..models.users import User
from .document_status import expiration_instant, get_days_until_expiration
from .email import EmailClient, expiry_reminder_message, get_email_client
from .metrics import record_reminder_failed, record_reminder_scheduled, record_reminder_sent


logger = logging.getLogger(__name__)

SEND_HOUR_UTC = 9
MAX_ATTEMPTS = 3
RETRY_DELAY = timedelta(minutes=5)
LATE_GRACE = timedelta(hours=1)
SWEEP_WINDOW_DAYS = 31
SCHEDULE_WINDOW_DAYS = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _send_time(day: date) -> datetime:
    return datetime.combine(day, time(hour=SEND_HOUR_UTC), tzinfo=timezone.utc)


def _remove_stale_jobs(db: Session, document_id, keep_due_at: datetime | None, keep_offsets: Iterable[int] = ()) -> None:
    stmt = delete(ReminderJob).where(
        ReminderJob.document_id == document_id,
        ReminderJob.status == ReminderStatusEnum.PENDING,
    )
    if keep_due_at is not None:
        stale_due = ReminderJob.target_due_at != keep_due_at
        offsets = list(keep_offsets)
        if offsets:
            stale_due = stale_due | ReminderJob.offset_days.not_in(offsets)
        stmt = stmt.where(stale_due)
    db.execute(stmt, execution_options={"synchronize_session": "fetch"})


def _upsert_job(
    db: Session,
    *,
    document: Document,
    user: User,
    due_at: datetime,
    offset_days: int,
    payload: dict,
    now: datetime,
) -> ReminderJob | None:
    run_at = _send_time(document.expiration_date - timedelta(days=offset_days))
    if run_at < now:
        if now - run_at <= LATE_GRACE:
            run_at = now
        else:
            return None

    existing = db.execute(
        select(ReminderJob)
        .where(
            ReminderJob.document_id == document.id,
            ReminderJob.target_due_at == due_at,
            ReminderJob.offset_days == offset_days,
            ReminderJob.recipient_email == user.email,
        )
        .with_for_update(skip_locked=True)
    ).scalar_one_or_none()

    if existing:
        if existing.status == ReminderStatusEnum.FAILED:
            existing.status = ReminderStatusEnum.PENDING
            existing.attempts = 0
            existing.last_error = None
            existing.run_at = run_at
        elif existing.status == ReminderStatusEnum.PENDING:
            existing.run_at = run_at
        existing.payload = payload
        existing.recipient_locale = user.preferred_locale or "en"
        return None

    job = ReminderJob(
        user_id=user.id,
        document_id=document.id,
        target_due_at=due_at,
        offset_days=offset_days,
        run_at=run_at,
        recipient_email=user.email,
        recipient_locale=user.preferred_locale or "en",
        payload=payload,
    )
    db.add(job)
    return job


def _document_offsets(document: Document, user: User) -> list[int]:
    offsets = list(user.reminder_intervals())
    if document.reminder_date is not None:
        explicit = max((document.expiration_date - document.reminder_date).days, 0)
        if explicit not in offsets:
            offsets.append(explicit)
    return offsets


def queue_document_reminders(
    db: Session, document: Document, user: User, *, now: datetime | None = None
) -> list[ReminderJob]:
    """(Re)build the pending reminder jobs for one document."""
    now = now or _utcnow()

    if (
        document.expiration_date is None
        or not user.is_active
        or not user.email_notifications
        or expiration_instant(document.expiration_date) <= now
    ):
        _remove_stale_jobs(db, document.id, keep_due_at=None)
        return []

    due_at = expiration_instant(document.expiration_date)
    offsets = _document_offsets(document, user)
    _remove_stale_jobs(db, document.id, keep_due_at=due_at, keep_offsets=offsets)

    payload = {
        "title": document.title,
        "type": document.type,
        "expiration_date": document.expiration_date.isoformat(),
    }

    created: list[ReminderJob] = []
    for offset in offsets:
        job = _upsert_job(
            db,
            document=document,
            user=user,
            due_at=due_at,
            offset_days=offset,
            payload=payload,
            now=now,
        )
        if job:
            created.append(job)
            db.add(
                Event(
                    user_id=user.id,
                    document_id=document.id,
                    type="reminder_scheduled",
                    data={
                        "title": document.title,
                        "recipient": user.email,
                        "offset_days": offset,
                        "run_at": job.run_at.isoformat(),
                        "due_at": due_at.isoformat(),
                    },
                )
            )
    record_reminder_scheduled(len(created))
    return created


def queue_reminders(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    now = now or _utcnow()
    stats = defaultdict(int)

    rows = (
        db.query(Document, User)
        .join(User, User.id == Document.user_id)
        .filter(Document.expiration_date.isnot(None), Document.expiration_date >= now.date())
        .all()
    )
    for document, user in rows:
        jobs = queue_document_reminders(db, document, user, now=now)
        stats["documents"] += 1
        stats["scheduled"] += len(jobs)

    return dict(stats)


def dispatch_reminders(
    db: Session,
    *,
    now: datetime | None = None,
    email_client: EmailClient | None = None,
    batch_size: int = 50,
) -> dict[str, int]:
    now = now or _utcnow()
    client = email_client or get_email_client()
    stats = defaultdict(int)

    jobs = (
        db.query(ReminderJob)
        .filter(
            ReminderJob.status == ReminderStatusEnum.PENDING,
            ReminderJob.run_at <= now,
        )
        .order_by(ReminderJob.run_at.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
        .all()
    )

    for job in jobs:
        document = db.get(Document, job.document_id)
        user = db.get(User, job.user_id)

        if document is None or user is None or document.expiration_date is None:
            logger.warning("Reminder target missing: job=%s document=%s", job.id, job.document_id)
            job.status = ReminderStatusEnum.FAILED
            job.last_attempt_at = now
            job.last_error = "Target missing"
            record_reminder_failed()
            stats["failed"] += 1
            continue

        if not user.email_notifications:
            db.delete(job)
            stats["skipped"] += 1
            continue

        days_until = get_days_until_expiration(document.expiration_date, now) or 0
        message = expiry_reminder_message(
            job.recipient_email,
            name=user.display_name,
            title=document.title,
            document_type=document.type,
            expiration_date=document.expiration_date,
            days_until=days_until,
            document_id=str(document.id),
        )

        try:
            client.send(message)
        except Exception as exc:  # any transport failure counts as an attempt
            logger.exception("Reminder send failed: job=%s", job.id)
            job.attempts = (job.attempts or 0) + 1
            job.last_attempt_at = now
            job.last_error = str(exc)
            if job.attempts >= MAX_ATTEMPTS:
                job.status = ReminderStatusEnum.FAILED
                record_reminder_failed()
            else:
                job.run_at = now + RETRY_DELAY
            stats["failed"] += 1
            continue

        job.status = ReminderStatusEnum.SENT
        job.attempts = (job.attempts or 0) + 1
        job.last_attempt_at = now
        job.last_error = None
        stats["sent"] += 1
        record_reminder_sent()
        db.add(
            Event(
                user_id=user.id,
                document_id=document.id,
                type="reminder_sent",
                data={
                    "title": document.title,
                    "recipient": job.recipient_email,
                    "offset_days": job.offset_days,
                    "days_until": days_until,
                    "sent_at": now.isoformat(),
                    "channel": "queue",
                },
            )
        )

    return dict(stats)


@dataclass
class SweepResult:
    message: str
    sent: int = 0
    skipped: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        payload = asdict(self)
        if not self.errors:
            payload.pop("errors")
        return payload


def run_notification_sweep(
    db: Session,
    *,
    now: datetime | None = None,
    email_client: EmailClient | None = None,
) -> SweepResult:
    """Send today's reminders directly: one email per document whose days-until matches an owner interval."""
    now = now or _utcnow()
    today = now.date()
    horizon = today + timedelta(days=SWEEP_WINDOW_DAYS)

    documents: Sequence[Document] = (
        db.query(Document)
        .filter(Document.expiration_date >= today, Document.expiration_date <= horizon)
        .order_by(Document.expiration_date.asc())
        .all()
    )
    if not documents:
        return SweepResult(message=f"No documents expiring in the next {SWEEP_WINDOW_DAYS} days")

    client = email_client or get_email_client()
    result = SweepResult(message="Notification job completed", total=len(documents))
    users: dict = {}

    for document in documents:
        if document.user_id not in users:
            users[document.user_id] = db.get(User, document.user_id)
        user = users[document.user_id]

        if user is None or not user.is_active or not user.email_notifications:
            result.skipped += 1
            continue

        days_until = (document.expiration_date - today).days
        if days_until not in user.reminder_intervals():
            continue

        message = expiry_reminder_message(
            user.email,
            name=user.display_name,
            title=document.title,
            document_type=document.type,
            expiration_date=document.expiration_date,
            days_until=days_until,
            document_id=str(document.id),
        )
        try:
            client.send(message)
        except Exception as exc:  # reported back to the caller
            logger.warning("Sweep send failed: document=%s error=%s", document.id, exc)
            result.errors.append(f"Failed to send to {user.email}: {exc}")
            record_reminder_failed("sweep")
            continue

        result.sent += 1
        record_reminder_sent("sweep")
        db.add(
            Event(
                user_id=user.id,
                document_id=document.id,
                type="reminder_sent",
                data={
                    "title": document.title,
                    "recipient": user.email,
                    "days_until": days_until,
                    "sent_at": now.isoformat(),
                    "channel": "sweep",
                },
            )
        )

    return result


def notification_schedule(user: User, documents: Iterable[Document], *, now: datetime | None = None) -> dict:
    """Upcoming reminder dates for the owner's documents expiring in the next 60 days."""
    now = now or _utcnow()
    today = now.date()
    horizon = today + timedelta(days=SCHEDULE_WINDOW_DAYS)
    intervals = user.reminder_intervals()

    upcoming = sorted(
        (doc for doc in documents if doc.expiration_date and today <= doc.expiration_date <= horizon),
        key=lambda doc: doc.expiration_date,
    )

    items = []
    for doc in upcoming:
        days_until = (doc.expiration_date - today).days
        items.append(
            {
                "id": str(doc.id),
                "title": doc.title,
                "type": doc.type,
                "expiration_date": doc.expiration_date.isoformat(),
                "days_until_expiry": days_until,
                "upcoming_notifications": [
                    {
                        "days_before_expiry": interval,
                        "notification_date": (doc.expiration_date - timedelta(days=interval)).isoformat(),
                    }
                    for interval in intervals
                    if interval <= days_until
                ],
            }
        )

    return {
        "email_notifications": bool(user.email_notifications),
        "intervals": intervals,
        "expiring_count": len(items),
        "documents": items,
    }
