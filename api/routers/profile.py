from __future__ import annotations

import io
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..services.storage import AVATAR_CONTENT_TYPES, get_avatar_storage
from .auth import serialize_user
from .documents import read_upload, sanitize_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])


@router.post("/avatar")
def upload_avatar(
    file: UploadFile = File(...),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    content_type = (file.content_type or "").lower()
    if content_type not in AVATAR_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="Avatar must be a JPEG, PNG, WebP or GIF image.")

    data = read_upload(file, settings.avatar_max_bytes)
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")

    storage = get_avatar_storage()
    user = context.user
    previous_key = storage.key_from_public_url(user.avatar_url)
    try:
        stored = storage.upload_fileobj(
            user.id,
            io.BytesIO(data),
            filename=sanitize_filename(file.filename or "avatar.png"),
            content_type=content_type,
        )
    except RuntimeError as exc:
        logger.error("Avatar upload failed: user_id=%s error=%s", user.id, exc)
        raise HTTPException(status_code=500, detail="Error uploading avatar") from exc

    user.avatar_url = stored.presigned_url
    db.add(user)
    db.commit()
    db.refresh(user)

    if previous_key and previous_key != stored.key:
        storage.delete_quietly(previous_key)

    return {"avatar_url": user.avatar_url, "user": serialize_user(user)}


@router.delete("/avatar")
def remove_avatar(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    storage = get_avatar_storage()
    user = context.user
    key = storage.key_from_public_url(user.avatar_url)
    user.avatar_url = None
    db.add(user)
    db.commit()
    db.refresh(user)
    storage.delete_quietly(key)
    return {"avatar_url": None, "user": serialize_user(user)}
