from __future__ import annotations

import io

import pytest

from api.config import settings
from api.db.session import SessionLocal
from api.models import User


@pytest.mark.integration
def test_documents_list_requires_auth(client):
    response = client.get("/documents")
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


@pytest.mark.integration
def test_documents_create_requires_auth(client):
    response = client.post(
        "/documents",
        data={"title": "Passport", "type": "Passport", "expiration_date": "2030-01-01"},
        files={"file": ("passport.pdf", io.BytesIO(b"%PDF-1.4\n%%EOF"), "application/pdf")},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


@pytest.mark.integration
@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/reminders"),
        ("get", "/analytics"),
        ("get", "/2fa"),
        ("get", "/notifications/schedule"),
        ("post", "/ocr/scan"),
        ("post", "/process-document"),
        ("post", "/chat"),
        ("post", "/auth/welcome"),
    ],
)
def test_protected_endpoints_reject_anonymous_requests(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 401


@pytest.mark.integration
def test_revoked_or_unknown_cookie_is_rejected(client):
    response = client.get("/auth/me", cookies={settings.cookie_name: "not-a-real-session"})
    assert response.status_code == 401


@pytest.mark.integration
def test_pending_two_factor_session_only_reaches_profile(client, make_session):
    context = make_session("pending@example.com", two_factor_verified=False)
    with SessionLocal() as session:
        user = session.query(User).filter(User.email == "pending@example.com").one()
        user.two_factor_enabled = True
        user.totp_secret = "JBSWY3DPEHPK3PXP"
        session.commit()

    cookies = {settings.cookie_name: context["token"]}

    me = client.get("/auth/me", cookies=cookies)
    assert me.status_code == 200
    assert me.json()["two_factor_pending"] is True

    documents = client.get("/documents", cookies=cookies)
    assert documents.status_code == 401
    assert documents.json()["detail"] == "Two-factor verification required"

    generate = client.post("/2fa", json={"action": "generate"}, cookies=cookies)
    assert generate.status_code == 401
