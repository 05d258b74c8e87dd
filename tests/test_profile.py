from __future__ import annotations

import io

import pytest

from api.config import settings
from api.services.aws import public_object_url

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x01" * 32


def _upload(client, name: str = "me.png"):
    return client.post("/profile/avatar", files={"file": (name, io.BytesIO(PNG_BYTES), "image/png")})


@pytest.mark.integration
def test_avatar_upload_replaces_previous(client, auth_context, mock_s3):
    first = _upload(client)
    assert first.status_code == 200
    first_url = first.json()["avatar_url"]
    prefix = public_object_url(settings.aws.avatars_bucket, f"{auth_context['user_id']}/")
    assert first_url.startswith(prefix)
    assert first.json()["user"]["avatar_url"] == first_url

    second = _upload(client, "me-again.png")
    assert second.status_code == 200

    keys = [obj["Key"] for obj in mock_s3.list_objects_v2(Bucket=settings.aws.avatars_bucket)["Contents"]]
    assert len(keys) == 1
    assert second.json()["avatar_url"].endswith(keys[0])


@pytest.mark.integration
def test_avatar_rejects_non_images(client, auth_context):
    response = client.post(
        "/profile/avatar",
        files={"file": ("cv.pdf", io.BytesIO(b"%PDF-1.4"), "application/pdf")},
    )
    assert response.status_code == 400


@pytest.mark.integration
def test_avatar_rejects_large_files(client, auth_context, mock_s3, monkeypatch):
    monkeypatch.setattr(settings, "avatar_max_bytes", 8)

    response = _upload(client)

    assert response.status_code == 400
    assert response.json()["detail"] == "File too large."


@pytest.mark.integration
def test_avatar_remove(client, auth_context, mock_s3):
    _upload(client)

    response = client.delete("/profile/avatar")

    assert response.status_code == 200
    assert response.json()["avatar_url"] is None
    assert mock_s3.list_objects_v2(Bucket=settings.aws.avatars_bucket)["KeyCount"] == 0
    assert client.get("/auth/me").json()["user"]["avatar_url"] is None
