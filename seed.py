from __future__ import annotations

import logging
import os
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any

from dotenv import load_dotenv

load_dotenv()

from api.db.session import SessionLocal
from api.models import Document, User
from api.services.document_status import get_document_category
from api.services.reminders import queue_document_reminders

logger = logging.getLogger(__name__)

SEED_VERSION = "demo.v1"


def seed_uuid(name: str) -> uuid.UUID:
    """Generate deterministic UUIDs scoped to the seed version."""
    return uuid.uuid5(uuid.NAMESPACE_URL, f"doctracker/{SEED_VERSION}/{name}")


def days_from(today: date, offset: int | None) -> date | None:
    if offset is None:
        return None
    return today + timedelta(days=offset)


SEED_USER: dict[str, Any] = {
    "key": "demo-user",
    "email": "demo@example.com",
    "full_name": "Demo User",
    "notification_intervals": [30, 15, 7, 1],
}

# expiration offsets are relative to the day the seed runs
SEED_DOCUMENTS: list[dict[str, Any]] = [
    {"key": "passport", "title": "Passport", "type": "Passport", "expires_in": 420,
     "document_number": "P1234567", "issuing_authority": "Department of Passports"},
    {"key": "driving-license", "title": "Driving License", "type": "Driving License", "expires_in": 21,
     "document_number": "DL-01-002-345"},
    {"key": "car-insurance", "title": "Car Insurance Policy", "type": "Insurance", "expires_in": 7,
     "metadata": {"policy_number": "INS-88231"}},
    {"key": "apartment-lease", "title": "Apartment Lease", "type": "Rent Agreement", "expires_in": -12,
     "notes": "Renewal negotiation pending"},
    {"key": "streaming", "title": "Streaming Subscription", "type": "Subscription", "expires_in": 1},
    {"key": "laptop-warranty", "title": "Laptop Warranty", "type": "Warranty", "expires_in": 180,
     "reminder_in": 150},
    {"key": "citizenship", "title": "Citizenship Certificate", "type": "Citizenship", "expires_in": None,
     "issued_ago": 3650},
    {"key": "birth-certificate", "title": "Birth Certificate", "type": "Birth Certificate", "expires_in": None},
]


def seed_user(session, payload: dict[str, Any]) -> User:
    user_id = seed_uuid(f"user:{payload['key']}")
    user = session.get(User, user_id)
    if user is None:
        user = session.query(User).filter(User.email == payload["email"]).one_or_none()
        if user is not None:
            logger.debug("Seed user %s already exists as %s; reusing it", payload["email"], user.id)
    if user is None:
        user = User(id=user_id, email=payload["email"])
        session.add(user)
    user.full_name = payload.get("full_name")
    user.is_active = True
    user.email_notifications = True
    user.notification_intervals = list(payload["notification_intervals"])
    session.flush([user])
    return user


def seed_documents(session, user: User, documents: list[dict[str, Any]], today: date) -> int:
    scheduled = 0
    for payload in documents:
        document_id = seed_uuid(f"document:{user.id}:{payload['key']}")
        document = session.get(Document, document_id)
        if document is None:
            document = Document(id=document_id, user_id=user.id)
            session.add(document)
        document.title = payload["title"]
        document.type = payload["type"]
        document.category = get_document_category(payload["type"]).value
        document.expiration_date = days_from(today, payload.get("expires_in"))
        document.reminder_date = days_from(today, payload.get("reminder_in"))
        document.issue_date = days_from(today, -payload["issued_ago"]) if payload.get("issued_ago") else None
        document.notes = payload.get("notes")
        document.document_number = payload.get("document_number")
        document.issuing_authority = payload.get("issuing_authority")
        document.meta = {**dict(payload.get("metadata") or {}), "seed_key": payload["key"]}
        session.flush()

        scheduled += len(queue_document_reminders(session, document, user))
    return scheduled


def run_seed(email: str | None = None) -> None:
    payload = dict(SEED_USER)
    if email:
        payload["email"] = email.strip().lower()

    today = datetime.now(timezone.utc).date()
    session = SessionLocal()
    try:
        user = seed_user(session, payload)
        scheduled = seed_documents(session, user, SEED_DOCUMENTS, today)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info(
        "Seed applied for %s (documents=%s reminder_jobs=%s)",
        payload["email"],
        len(SEED_DOCUMENTS),
        scheduled,
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed(os.getenv("SEED_USER_EMAIL"))
