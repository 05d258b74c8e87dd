from __future__ import annotations

import io
import logging
import os
import re
import uuid
from datetime import timedelta
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models.documents import Document
from ..models.events import Event
from ..models.users import User
from ..services.document_filters import (
    SORT_FIELDS,
    document_stats,
    documents_expiring_within,
    filter_documents,
    sort_documents,
)
from ..services.documents import (
    DocumentValidationError,
    apply_fields,
    serialize_document,
    validate_document_fields,
)
from ..services.metrics import record_document_created, record_document_deleted
from ..services.reminders import queue_document_reminders
from ..services.storage import DOCUMENT_CONTENT_TYPES, StoredFile, get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])

CHUNK_SIZE = 1024 * 1024


def sanitize_filename(filename: str) -> str:
    name = os.path.basename(filename or "document")
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    return name[:100] or "document"


def read_upload(file: UploadFile, max_bytes: int) -> bytes:
    """Read an upload in chunks, rejecting it once it passes ``max_bytes``."""
    total_bytes = 0
    buffer = io.BytesIO()
    try:
        while True:
            chunk = file.file.read(CHUNK_SIZE)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > max_bytes:
                raise HTTPException(status_code=400, detail="File too large.")
            buffer.write(chunk)
    finally:
        file.file.close()
    return buffer.getvalue()


def _has_upload(file: Optional[UploadFile]) -> bool:
    return file is not None and bool(file.filename)


def _store_upload(user_id: uuid.UUID, file: UploadFile) -> StoredFile:
    content_type = (file.content_type or "application/octet-stream").lower()
    if content_type not in DOCUMENT_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported file type.")

    data = read_upload(file, settings.max_upload_bytes)
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")

    try:
        return get_storage_service().upload_fileobj(
            user_id,
            io.BytesIO(data),
            filename=sanitize_filename(file.filename or ""),
            content_type=content_type,
        )
    except RuntimeError as exc:
        logger.error("Document upload failed: user_id=%s error=%s", user_id, exc)
        raise HTTPException(status_code=500, detail="Error uploading file") from exc


def _attach_file(document: Document, stored: StoredFile, original_name: str) -> None:
    document.file_path = stored.key
    document.file_name = sanitize_filename(original_name)
    document.file_type = stored.content_type
    document.file_size = stored.size


def _clear_file(document: Document) -> None:
    document.file_path = None
    document.file_name = None
    document.file_type = None
    document.file_size = None


def _get_owned_document(db: Session, doc_id: str, context: AuthContext) -> Document:
    try:
        document_uuid = uuid.UUID(doc_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc

    document = (
        db.query(Document)
        .filter(Document.id == document_uuid, Document.user_id == context.user.id)
        .one_or_none()
    )
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


def _owned_documents(db: Session, context: AuthContext) -> list[Document]:
    return db.query(Document).filter(Document.user_id == context.user.id).all()


def _refresh_reminders(db: Session, document: Document, user_id: uuid.UUID) -> None:
    user = db.get(User, user_id)
    if user is not None:
        queue_document_reminders(db, document, user)


@router.get("")
def list_documents(
    search: Optional[str] = Query(default=None),
    status_filter: str = Query(default="all", alias="status"),
    type_filter: str = Query(default="all", alias="type"),
    category: Optional[str] = Query(default=None),
    sort: str = Query(default="created_at"),
    order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    if sort not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail="Unsupported sort field")

    documents = filter_documents(
        _owned_documents(db, context),
        search=search,
        status=status_filter,
        document_type=type_filter,
        category=category,
    )
    documents = sort_documents(documents, sort, order)

    total = len(documents)
    offset = (page - 1) * limit
    items = [serialize_document(document) for document in documents[offset : offset + limit]]

    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if total else 0,
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_document(
    title: Optional[str] = Form(default=None),
    type: Optional[str] = Form(default=None),
    expiration_date: Optional[str] = Form(default=None),
    reminder_date: Optional[str] = Form(default=None),
    notes: Optional[str] = Form(default=None),
    document_number: Optional[str] = Form(default=None),
    issue_date: Optional[str] = Form(default=None),
    issuing_authority: Optional[str] = Form(default=None),
    metadata: Optional[str] = Form(default=None),
    source: str = Form(default="manual"),
    file: Optional[UploadFile] = File(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    try:
        fields = validate_document_fields(
            title=title,
            document_type=type,
            expiration_date=expiration_date,
            reminder_date=reminder_date,
            notes=notes,
            document_number=document_number,
            issue_date=issue_date,
            issuing_authority=issuing_authority,
            metadata=metadata,
        )
    except DocumentValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stored: StoredFile | None = None
    if _has_upload(file):
        stored = _store_upload(context.user.id, file)

    document = Document(user_id=context.user.id)
    apply_fields(document, fields)
    if stored is not None:
        _attach_file(document, stored, file.filename or "")
    try:
        db.add(document)
        db.flush()
        db.add(
            Event(
                user_id=context.user.id,
                document_id=document.id,
                type="document_created",
                data={"title": document.title, "type": document.type, "source": source, "has_file": stored is not None},
            )
        )
        _refresh_reminders(db, document, context.user.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        if stored is not None:
            get_storage_service().delete_quietly(stored.key)
        raise
    db.refresh(document)

    record_document_created("ocr" if source == "ocr" else "manual")
    logger.info("document_created user_id=%s document_id=%s", context.user.id, document.id)
    return serialize_document(document)


@router.get("/stats")
def get_document_stats(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return document_stats(_owned_documents(db, context))


@router.get("/expiring")
def get_expiring_documents(
    days: int = Query(default=30, ge=0, le=3650),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    documents = documents_expiring_within(_owned_documents(db, context), days)
    return {"days": days, "items": [serialize_document(document) for document in documents]}


@router.get("/{doc_id}")
def get_document(
    doc_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return serialize_document(_get_owned_document(db, doc_id, context))


@router.put("/{doc_id}")
def update_document(
    doc_id: str,
    title: Optional[str] = Form(default=None),
    type: Optional[str] = Form(default=None),
    expiration_date: Optional[str] = Form(default=None),
    reminder_date: Optional[str] = Form(default=None),
    notes: Optional[str] = Form(default=None),
    document_number: Optional[str] = Form(default=None),
    issue_date: Optional[str] = Form(default=None),
    issuing_authority: Optional[str] = Form(default=None),
    metadata: Optional[str] = Form(default=None),
    remove_file: bool = Form(default=False),
    file: Optional[UploadFile] = File(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = _get_owned_document(db, doc_id, context)
    try:
        fields = validate_document_fields(
            title=title,
            document_type=type,
            expiration_date=expiration_date,
            reminder_date=reminder_date,
            notes=notes,
            document_number=document_number,
            issue_date=issue_date,
            issuing_authority=issuing_authority,
            metadata=metadata,
        )
    except DocumentValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    storage = get_storage_service()
    old_key = document.file_path
    stored: StoredFile | None = None
    if _has_upload(file):
        stored = _store_upload(context.user.id, file)

    submitted_values = {
        "document_number": document_number,
        "issue_date": issue_date,
        "issuing_authority": issuing_authority,
        "metadata": metadata,
    }
    apply_fields(
        document,
        fields,
        submitted={name for name, value in submitted_values.items() if value is not None},
    )
    if stored is not None:
        _attach_file(document, stored, file.filename or "")
    elif remove_file:
        _clear_file(document)

    db.add(
        Event(
            user_id=context.user.id,
            document_id=document.id,
            type="document_updated",
            data={"title": document.title, "file_replaced": stored is not None, "file_removed": remove_file},
        )
    )
    try:
        _refresh_reminders(db, document, context.user.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        if stored is not None:
            storage.delete_quietly(stored.key)
        raise
    db.refresh(document)

    if old_key and old_key != document.file_path:
        storage.delete_quietly(old_key)

    return serialize_document(document)


@router.delete("/{doc_id}")
def delete_document(
    doc_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = _get_owned_document(db, doc_id, context)
    file_key = document.file_path
    title = document.title

    db.add(
        Event(
            user_id=context.user.id,
            document_id=None,
            type="document_deleted",
            data={"title": title, "document_id": str(document.id)},
        )
    )
    db.delete(document)
    db.commit()

    if file_key:
        get_storage_service().delete_quietly(file_key)

    record_document_deleted()
    logger.info("document_deleted user_id=%s document_id=%s", context.user.id, doc_id)
    return {"message": "Document deleted successfully"}


@router.get("/{doc_id}/download")
def download_document(
    doc_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = _get_owned_document(db, doc_id, context)
    if not document.file_path:
        raise HTTPException(status_code=404, detail="No file attached")

    try:
        iterator, metadata, closer = get_storage_service().open_stream(document.file_path)
    except RuntimeError as exc:
        logger.warning("Failed to stream document: document_id=%s", document.id, exc_info=True)
        status_code = 404 if "NoSuchKey" in str(exc) else 500
        detail = "Document file not found" if status_code == 404 else "Unable to download document"
        raise HTTPException(status_code=status_code, detail=detail) from exc

    headers = {
        "Content-Disposition": f'attachment; filename="{document.file_name or "document"}"',
    }
    if metadata.get("content_length") is not None:
        headers["Content-Length"] = str(metadata["content_length"])

    background = BackgroundTasks()
    background.add_task(closer)
    return StreamingResponse(
        iterator(),
        media_type=document.file_type or metadata.get("content_type") or "application/octet-stream",
        headers=headers,
        background=background,
    )


@router.get("/{doc_id}/file-url")
def get_document_file_url(
    doc_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    document = _get_owned_document(db, doc_id, context)
    if not document.file_path:
        raise HTTPException(status_code=404, detail="No file attached")

    ttl = timedelta(hours=1)
    try:
        url = get_storage_service().generate_presigned_url(document.file_path, ttl)
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail="Unable to create file URL") from exc
    return {"url": url, "expires_in": int(ttl.total_seconds())}
