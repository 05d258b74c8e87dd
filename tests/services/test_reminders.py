from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from api.db.session import SessionLocal
from api.models.documents import Document
from api.models.events import Event
from api.models.reminder_jobs import ReminderJob, ReminderStatusEnum
from api.models.users import User
from api.services.email import EmailClient
from api.services.reminders import (
    MAX_ATTEMPTS,
    dispatch_reminders,
    notification_schedule,
    queue_reminders,
    run_notification_sweep,
)

BASE_TIME = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)


class RecordingClient(EmailClient):
    def __init__(self) -> None:
        self.sent = []

    def send(self, message) -> None:
        self.sent.append(message)


class FailingClient(EmailClient):
    def send(self, message) -> None:
        raise RuntimeError("SES throttled")


def _user(session, **fields) -> User:
    user = User(email=f"owner+{uuid4()}@example.com", preferred_locale="en", **fields)
    session.add(user)
    session.flush()
    return user


def _document(session, user: User, expiration: date | None, **fields) -> Document:
    document = Document(
        user_id=user.id,
        title=fields.pop("title", "Car Insurance"),
        type=fields.pop("type", "Insurance"),
        category="expiring",
        expiration_date=expiration,
        **fields,
    )
    session.add(document)
    session.flush()
    return document


def _offsets(session, document: Document) -> list[int]:
    jobs = session.query(ReminderJob).filter(ReminderJob.document_id == document.id).all()
    return sorted(job.offset_days for job in jobs)


@pytest.mark.integration
def test_queue_reminders_creates_jobs_for_future_offsets() -> None:
    session = SessionLocal()
    try:
        user = _user(session)
        document = _document(session, user, date(2025, 1, 20))
        session.commit()

        stats = queue_reminders(session, now=BASE_TIME)
        session.commit()

        # the 30-day reminder was already due weeks ago
        assert stats == {"documents": 1, "scheduled": 3}
        assert _offsets(session, document) == [1, 7, 15]

        job = (
            session.query(ReminderJob)
            .filter(ReminderJob.document_id == document.id, ReminderJob.offset_days == 7)
            .one()
        )
        assert job.run_at.replace(tzinfo=None) == datetime(2025, 1, 13, 9, 0)
        assert job.status == ReminderStatusEnum.PENDING
        assert job.recipient_email == user.email
        assert session.query(Event).filter(Event.type == "reminder_scheduled").count() == 3

        again = queue_reminders(session, now=BASE_TIME)
        session.commit()
        assert again == {"documents": 1, "scheduled": 0}
    finally:
        session.close()


@pytest.mark.integration
def test_queue_reminders_adds_explicit_reminder_date_and_respects_preferences() -> None:
    session = SessionLocal()
    try:
        user = _user(session, notification_intervals=[7])
        muted = _user(session, email_notifications=False)
        with_reminder = _document(session, user, date(2025, 1, 20), reminder_date=date(2025, 1, 10))
        silent = _document(session, muted, date(2025, 1, 20))
        no_expiry = _document(session, user, None, title="Birth Certificate", type="Birth Certificate")
        session.commit()

        queue_reminders(session, now=BASE_TIME)
        session.commit()

        assert _offsets(session, with_reminder) == [7, 10]
        assert _offsets(session, silent) == []
        assert _offsets(session, no_expiry) == []
    finally:
        session.close()


@pytest.mark.integration
def test_requeue_replaces_jobs_when_expiration_moves() -> None:
    session = SessionLocal()
    try:
        user = _user(session)
        document = _document(session, user, date(2025, 1, 20))
        session.commit()
        queue_reminders(session, now=BASE_TIME)
        session.commit()

        document.expiration_date = date(2025, 3, 1)
        session.commit()
        queue_reminders(session, now=BASE_TIME)
        session.commit()

        jobs = session.query(ReminderJob).filter(ReminderJob.document_id == document.id).all()
        assert sorted(job.offset_days for job in jobs) == [1, 7, 15, 30]
        assert {job.target_due_at.replace(tzinfo=None) for job in jobs} == {datetime(2025, 3, 1)}
    finally:
        session.close()


@pytest.mark.integration
def test_dispatch_reminders_sends_due_jobs() -> None:
    session = SessionLocal()
    try:
        user = _user(session, full_name="Asha")
        document = _document(session, user, date(2025, 1, 20))
        session.commit()
        queue_reminders(session, now=BASE_TIME)
        session.commit()

        client = RecordingClient()
        send_time = datetime(2025, 1, 5, 9, 0, tzinfo=timezone.utc)
        stats = dispatch_reminders(session, now=send_time, email_client=client)
        session.commit()

        assert stats == {"sent": 1}
        assert len(client.sent) == 1
        message = client.sent[0]
        assert message.to == user.email
        assert message.subject == "Reminder: Car Insurance expires in 15 days"
        assert "Hi Asha" in message.text_body
        assert f"/dashboard/documents/{document.id}" in message.text_body

        sent_job = (
            session.query(ReminderJob)
            .filter(ReminderJob.document_id == document.id, ReminderJob.offset_days == 15)
            .one()
        )
        assert sent_job.status == ReminderStatusEnum.SENT
        assert sent_job.attempts == 1
        assert session.query(Event).filter(Event.type == "reminder_sent").count() == 1

        # nothing else is due yet
        assert dispatch_reminders(session, now=send_time, email_client=client) == {}
    finally:
        session.close()


@pytest.mark.integration
def test_dispatch_reminders_retries_then_fails() -> None:
    session = SessionLocal()
    try:
        user = _user(session, notification_intervals=[1])
        document = _document(session, user, date(2025, 1, 20))
        session.commit()
        queue_reminders(session, now=BASE_TIME)
        session.commit()

        now = datetime(2025, 1, 19, 9, 0, tzinfo=timezone.utc)
        for attempt in range(MAX_ATTEMPTS):
            stats = dispatch_reminders(session, now=now, email_client=FailingClient())
            session.commit()
            assert stats == {"failed": 1}
            now += timedelta(minutes=5)

        job = session.query(ReminderJob).filter(ReminderJob.document_id == document.id).one()
        assert job.status == ReminderStatusEnum.FAILED
        assert job.attempts == MAX_ATTEMPTS
        assert job.last_error == "SES throttled"
    finally:
        session.close()


@pytest.mark.integration
def test_dispatch_drops_jobs_for_users_who_muted_notifications() -> None:
    session = SessionLocal()
    try:
        user = _user(session, notification_intervals=[1])
        _document(session, user, date(2025, 1, 20))
        session.commit()
        queue_reminders(session, now=BASE_TIME)
        session.commit()

        user.email_notifications = False
        session.commit()

        client = RecordingClient()
        stats = dispatch_reminders(
            session, now=datetime(2025, 1, 19, 9, 0, tzinfo=timezone.utc), email_client=client
        )
        session.commit()

        assert stats == {"skipped": 1}
        assert client.sent == []
        assert session.query(ReminderJob).count() == 0
    finally:
        session.close()


@pytest.mark.integration
def test_notification_sweep_sends_on_interval_days() -> None:
    session = SessionLocal()
    try:
        user = _user(session)
        muted = _user(session, email_notifications=False)
        due = _document(session, user, date(2025, 1, 20), title="Lease", type="Rent Agreement")
        _document(session, user, date(2025, 1, 25), title="Gym", type="Subscription")
        _document(session, muted, date(2025, 1, 14))
        session.commit()

        client = RecordingClient()
        result = run_notification_sweep(session, now=datetime(2025, 1, 13, 6, 0, tzinfo=timezone.utc), email_client=client)
        session.commit()

        assert result.to_dict() == {
            "message": "Notification job completed",
            "sent": 1,
            "skipped": 1,
            "total": 3,
        }
        assert [message.subject for message in client.sent] == ["⚠️ Lease expires in 7 days"]
        event = session.query(Event).filter(Event.type == "reminder_sent").one()
        assert event.document_id == due.id
        assert event.data["channel"] == "sweep"
    finally:
        session.close()


@pytest.mark.integration
def test_notification_sweep_with_nothing_due() -> None:
    session = SessionLocal()
    try:
        result = run_notification_sweep(session, now=BASE_TIME, email_client=RecordingClient())
        assert result.to_dict() == {
            "message": "No documents expiring in the next 31 days",
            "sent": 0,
            "skipped": 0,
            "total": 0,
        }
    finally:
        session.close()


def test_notification_schedule_lists_upcoming_dates() -> None:
    user = User(email="owner@example.com", email_notifications=True, notification_intervals=[30, 7, 1])
    soon = Document(id=uuid4(), title="Lease", type="Rent Agreement", expiration_date=date(2025, 1, 10))
    later = Document(id=uuid4(), title="Passport", type="Passport", expiration_date=date(2025, 2, 20))
    far = Document(id=uuid4(), title="Visa", type="Other", expiration_date=date(2025, 6, 1))

    schedule = notification_schedule(user, [later, far, soon], now=BASE_TIME)

    assert schedule["intervals"] == [30, 7, 1]
    assert schedule["expiring_count"] == 2
    first, second = schedule["documents"]
    assert first["title"] == "Lease"
    assert first["days_until_expiry"] == 9
    assert first["upcoming_notifications"] == [
        {"days_before_expiry": 7, "notification_date": "2025-01-03"},
        {"days_before_expiry": 1, "notification_date": "2025-01-09"},
    ]
    assert second["title"] == "Passport"
    assert [item["days_before_expiry"] for item in second["upcoming_notifications"]] == [30, 7, 1]
