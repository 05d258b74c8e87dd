from __future__ import annotations

import io
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from api.config import settings
from api.db.session import SessionLocal
from api.models import Document, Event, ReminderJob


def _in_days(days: int) -> str:
    return (datetime.now(timezone.utc).date() + timedelta(days=days)).isoformat()


def _create(client, **fields):
    data = {"title": "Passport", "type": "Passport", "expiration_date": _in_days(400)}
    data.update(fields)
    return client.post("/documents", data=data)


@pytest.mark.integration
def test_create_document_without_file(client, auth_context):
    response = _create(
        client,
        title="Car Insurance",
        type="Insurance",
        expiration_date=_in_days(10),
        document_number="INS-1",
        metadata='{"policy_number": "P-9"}',
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["title"] == "Car Insurance"
    assert payload["category"] == "expiring"
    assert payload["status"] == "expiring_soon"
    assert payload["days_until_expiration"] == 10
    assert payload["has_file"] is False
    assert payload["metadata"] == {"policy_number": "P-9"}

    with SessionLocal() as session:
        doc_id = uuid.UUID(payload["id"])
        offsets = sorted(job.offset_days for job in session.query(ReminderJob).filter_by(document_id=doc_id))
        created = session.query(Event).filter_by(document_id=doc_id, type="document_created").count()
    assert offsets == [1, 7]
    assert created == 1


@pytest.mark.integration
@pytest.mark.parametrize(
    "fields, detail",
    [
        ({"title": ""}, "Missing required fields: title and type are required"),
        ({"title": "x" * 256}, "Title must be less than 255 characters"),
        ({"type": "Spaceship"}, "Invalid document type"),
        ({"expiration_date": ""}, "Expiration date is required for this document type"),
        ({"expiration_date": "12/01/2030"}, "Invalid expiration date format"),
    ],
)
def test_create_document_validation(client, auth_context, fields, detail):
    response = _create(client, **fields)
    assert response.status_code == 400
    assert response.json()["detail"] == detail


@pytest.mark.integration
def test_identity_documents_may_omit_expiration(client, auth_context):
    response = _create(client, title="Citizenship", type="Citizenship", expiration_date="")

    assert response.status_code == 201
    assert response.json()["status"] == "no_expiry"
    assert response.json()["category"] == "identity"


@pytest.mark.integration
def test_create_with_file_uploads_to_documents_bucket(client, auth_context, mock_s3):
    response = client.post(
        "/documents",
        data={"title": "Lease", "type": "Rent Agreement", "expiration_date": _in_days(90)},
        files={"file": ("my lease.pdf", io.BytesIO(b"%PDF-1.7\nlease"), "application/pdf")},
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["has_file"] is True
    assert payload["file_name"] == "my_lease.pdf"
    assert payload["file_type"] == "application/pdf"

    listing = mock_s3.list_objects_v2(Bucket=settings.aws.documents_bucket)
    keys = [item["Key"] for item in listing.get("Contents", [])]
    assert len(keys) == 1
    assert keys[0].startswith(f"{auth_context['user_id']}/")
    assert keys[0].endswith(".pdf")

    download = client.get(f"/documents/{payload['id']}/download")
    assert download.status_code == 200
    assert download.content == b"%PDF-1.7\nlease"

    signed = client.get(f"/documents/{payload['id']}/file-url")
    assert signed.status_code == 200
    assert signed.json()["expires_in"] == 3600
    assert keys[0] in signed.json()["url"]


@pytest.mark.integration
def test_create_rejects_unsupported_file_type(client, auth_context, mock_s3):
    response = client.post(
        "/documents",
        data={"title": "Script", "type": "Other", "expiration_date": _in_days(90)},
        files={"file": ("run.sh", io.BytesIO(b"echo hi"), "text/x-shellscript")},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Unsupported file type."


@pytest.mark.integration
def test_create_rejects_oversized_file(client, auth_context, mock_s3, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 10)
    response = client.post(
        "/documents",
        data={"title": "Big", "type": "Other", "expiration_date": _in_days(90)},
        files={"file": ("big.pdf", io.BytesIO(b"%PDF-" + b"0" * 64), "application/pdf")},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "File too large."


@pytest.mark.integration
def test_list_filters_sorts_and_paginates(client, auth_context):
    _create(client, title="Old Lease", type="Rent Agreement", expiration_date=_in_days(-5))
    _create(client, title="Streaming", type="Subscription", expiration_date=_in_days(3))
    _create(client, title="Passport", type="Passport", expiration_date=_in_days(700))
    _create(client, title="Birth Certificate", type="Birth Certificate", expiration_date="")

    everything = client.get("/documents", params={"sort": "title", "order": "asc"}).json()
    assert [item["title"] for item in everything["items"]] == [
        "Birth Certificate",
        "Old Lease",
        "Passport",
        "Streaming",
    ]
    assert everything["pagination"] == {"page": 1, "limit": 50, "total": 4, "pages": 1}

    expired = client.get("/documents", params={"status": "expired"}).json()
    assert [item["title"] for item in expired["items"]] == ["Old Lease"]

    identity = client.get("/documents", params={"category": "identity", "sort": "title", "order": "asc"}).json()
    assert [item["title"] for item in identity["items"]] == ["Birth Certificate", "Passport"]

    search = client.get("/documents", params={"search": "STREAM"}).json()
    assert [item["title"] for item in search["items"]] == ["Streaming"]

    page_two = client.get("/documents", params={"sort": "title", "order": "asc", "limit": 3, "page": 2}).json()
    assert [item["title"] for item in page_two["items"]] == ["Streaming"]
    assert page_two["pagination"]["pages"] == 2

    bad_sort = client.get("/documents", params={"sort": "size"})
    assert bad_sort.status_code == 400


@pytest.mark.integration
def test_stats_and_expiring(client, auth_context):
    _create(client, title="Old Lease", type="Rent Agreement", expiration_date=_in_days(-5))
    _create(client, title="Streaming", type="Subscription", expiration_date=_in_days(3))
    _create(client, title="Passport", type="Passport", expiration_date=_in_days(700))
    _create(client, title="Birth Certificate", type="Birth Certificate", expiration_date="")

    stats = client.get("/documents/stats").json()
    assert stats["total"] == 4
    assert stats["expired"] == 1
    assert stats["expiring_soon"] == 1
    assert stats["valid"] == 1
    assert stats["no_expiry"] == 1
    assert stats["identity"] == 2
    assert stats["expiring"] == 2

    expiring = client.get("/documents/expiring", params={"days": 7}).json()
    assert [item["title"] for item in expiring["items"]] == ["Streaming"]


@pytest.mark.integration
def test_update_document_replaces_fields_and_reschedules(client, auth_context):
    created = _create(client, title="Streaming", type="Subscription", expiration_date=_in_days(10)).json()

    response = client.put(
        f"/documents/{created['id']}",
        data={"title": "Streaming (family)", "type": "Subscription", "expiration_date": _in_days(40)},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["title"] == "Streaming (family)"
    assert payload["status"] == "valid"

    with SessionLocal() as session:
        jobs = session.query(ReminderJob).filter_by(document_id=uuid.UUID(created["id"])).all()
        offsets = sorted(job.offset_days for job in jobs)
        due_dates = {job.target_due_at.date().isoformat() for job in jobs}
    assert offsets == [1, 7, 15, 30]
    assert due_dates == {_in_days(40)}


@pytest.mark.integration
def test_update_can_remove_file(client, auth_context, mock_s3):
    created = client.post(
        "/documents",
        data={"title": "Warranty", "type": "Warranty", "expiration_date": _in_days(200)},
        files={"file": ("receipt.png", io.BytesIO(b"\x89PNG\r\n"), "image/png")},
    ).json()

    response = client.put(
        f"/documents/{created['id']}",
        data={"title": "Warranty", "type": "Warranty", "expiration_date": _in_days(200), "remove_file": "true"},
    )

    assert response.status_code == 200
    assert response.json()["has_file"] is False
    listing = mock_s3.list_objects_v2(Bucket=settings.aws.documents_bucket)
    assert listing.get("KeyCount", 0) == 0

    missing = client.get(f"/documents/{created['id']}/download")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "No file attached"


@pytest.mark.integration
def test_delete_document_removes_row_file_and_jobs(client, auth_context, mock_s3):
    created = client.post(
        "/documents",
        data={"title": "Lease", "type": "Rent Agreement", "expiration_date": _in_days(20)},
        files={"file": ("lease.pdf", io.BytesIO(b"%PDF-1.7\n"), "application/pdf")},
    ).json()

    response = client.delete(f"/documents/{created['id']}")

    assert response.status_code == 200
    assert response.json() == {"message": "Document deleted successfully"}
    assert client.get(f"/documents/{created['id']}").status_code == 404
    assert mock_s3.list_objects_v2(Bucket=settings.aws.documents_bucket).get("KeyCount", 0) == 0

    with SessionLocal() as session:
        assert session.query(ReminderJob).count() == 0
        assert session.query(Event).filter_by(type="document_deleted").count() == 1


@pytest.mark.integration
def test_documents_are_scoped_to_owner(client, auth_context, make_session):
    created = _create(client, title="Mine").json()

    other = make_session("someone-else@example.com")
    cookies = {settings.cookie_name: other["token"]}

    assert client.get(f"/documents/{created['id']}", cookies=cookies).status_code == 404
    assert client.delete(f"/documents/{created['id']}", cookies=cookies).status_code == 404
    assert client.get("/documents", cookies=cookies).json()["items"] == []
    assert client.get("/documents/not-a-uuid").status_code == 404


@pytest.mark.integration
def test_update_keeps_identity_fields_the_form_omits(client, auth_context):
    created = _create(
        client,
        title="Passport",
        type="Passport",
        expiration_date=_in_days(900),
        document_number="P1234567",
        issue_date="2020-02-01",
        issuing_authority="Department of Passports",
        metadata='{"nationality": "NP"}',
    ).json()

    response = client.put(
        f"/documents/{created['id']}",
        data={"title": "My passport", "type": "Passport", "expiration_date": _in_days(1000)},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["title"] == "My passport"
    assert payload["document_number"] == "P1234567"
    assert payload["issue_date"] == "2020-02-01"
    assert payload["issuing_authority"] == "Department of Passports"
    assert payload["metadata"] == {"nationality": "NP"}


def _failing_refresh(*args, **kwargs):
    raise SQLAlchemyError("database unavailable")


@pytest.mark.integration
def test_failed_create_removes_uploaded_file(client, auth_context, mock_s3, monkeypatch):
    monkeypatch.setattr("api.routers.documents._refresh_reminders", _failing_refresh)

    with pytest.raises(SQLAlchemyError):
        client.post(
            "/documents",
            data={"title": "Lease", "type": "Rent Agreement", "expiration_date": _in_days(20)},
            files={"file": ("lease.pdf", io.BytesIO(b"%PDF-1.7\n"), "application/pdf")},
        )

    assert mock_s3.list_objects_v2(Bucket=settings.aws.documents_bucket).get("KeyCount", 0) == 0
    with SessionLocal() as session:
        assert session.query(Document).count() == 0


@pytest.mark.integration
def test_failed_update_keeps_previous_file(client, auth_context, mock_s3, monkeypatch):
    created = client.post(
        "/documents",
        data={"title": "Lease", "type": "Rent Agreement", "expiration_date": _in_days(20)},
        files={"file": ("lease.pdf", io.BytesIO(b"%PDF-1.7\n"), "application/pdf")},
    ).json()
    before = [obj["Key"] for obj in mock_s3.list_objects_v2(Bucket=settings.aws.documents_bucket)["Contents"]]

    monkeypatch.setattr("api.routers.documents._refresh_reminders", _failing_refresh)
    with pytest.raises(SQLAlchemyError):
        client.put(
            f"/documents/{created['id']}",
            data={"title": "Lease", "type": "Rent Agreement", "expiration_date": _in_days(20)},
            files={"file": ("lease-v2.pdf", io.BytesIO(b"%PDF-1.7\nv2"), "application/pdf")},
        )

    after = [obj["Key"] for obj in mock_s3.list_objects_v2(Bucket=settings.aws.documents_bucket)["Contents"]]
    assert after == before
    with SessionLocal() as session:
        assert session.get(Document, uuid.UUID(created["id"])).file_path == before[0]
