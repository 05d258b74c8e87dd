from __future__ import annotations

import os
import pathlib
import secrets
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

_DB_PATH = pathlib.Path(tempfile.gettempdir()) / f"doctracker-test-{os.getpid()}.sqlite3"

os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_PATH}")
os.environ.setdefault("EMAIL_BACKEND", "console")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("S3_DOCUMENTS_BUCKET", "test-documents")
os.environ.setdefault("S3_AVATARS_BUCKET", "test-avatars")
os.environ.pop("AI_API_KEY", None)

import boto3  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from api.config import settings  # noqa: E402
from api.db.session import SessionLocal, engine  # noqa: E402
from api.main import app  # noqa: E402
from api.models import UserSession  # noqa: E402
from api.models.base import Base  # noqa: E402
from api.services.auth import AuthService  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def database() -> Iterator[None]:
    """Create the schema once per run on a throwaway SQLite file."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    _DB_PATH.unlink(missing_ok=True)


@pytest.fixture(scope="session")
def client() -> Iterator[TestClient]:
    """Provide a FastAPI TestClient instance."""
    with TestClient(app) as _client:
        yield _client


def create_session_cookie(email: str, *, two_factor_verified: bool = True) -> dict[str, str]:
    token = secrets.token_urlsafe(32)
    now = datetime.now(timezone.utc)
    with SessionLocal() as session:
        user = AuthService(session).get_or_create_user(email, "en")
        session.add(
            UserSession(
                user_id=user.id,
                session_token_hash=AuthService.hash_token(token),
                two_factor_verified_at=now if two_factor_verified else None,
                expires_at=now + timedelta(hours=4),
            )
        )
        session.commit()
        user_id = str(user.id)
    return {"user_id": user_id, "token": token, "email": email}


@pytest.fixture()
def make_session():
    """Factory for extra signed-in users: returns {user_id, token, email}."""
    return create_session_cookie


@pytest.fixture()
def auth_context(client: TestClient) -> Iterator[dict[str, str]]:
    """Create an authenticated session and attach cookie to the client."""
    context = create_session_cookie("owner@example.com")
    client.cookies.set(settings.cookie_name, context["token"])
    try:
        yield context
    finally:
        client.cookies.clear()


@pytest.fixture()
def mock_s3():
    from moto import mock_aws

    with mock_aws():
        s3 = boto3.client("s3", region_name=settings.aws.region)
        s3.create_bucket(Bucket=settings.aws.documents_bucket)
        s3.create_bucket(Bucket=settings.aws.avatars_bucket)
        yield s3


@pytest.fixture()
def sent_emails(monkeypatch) -> list:
    """Capture outgoing email from every module that sends it."""
    from api.services.email import EmailClient

    outbox: list = []

    class RecordingEmailClient(EmailClient):
        def send(self, message) -> None:
            outbox.append(message)

    def factory() -> EmailClient:
        return RecordingEmailClient()

    for target in (
        "api.services.auth.get_email_client",
        "api.services.reminders.get_email_client",
        "api.routers.auth.get_email_client",
        "api.routers.notifications.get_email_client",
    ):
        monkeypatch.setattr(target, factory)
    return outbox


@pytest.fixture(autouse=True)
def cleanup_database() -> Iterator[None]:
    """Empty every table after each test to keep isolation."""
    yield
    with SessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
