from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Collection, Optional

from ..models.documents import Document
from .document_status import (
    DOCUMENT_TYPE_CONFIG,
    get_days_until_expiration,
    get_document_category,
    get_document_status,
)

TITLE_MAX_LENGTH = 255
# Edit forms may omit these; stored values then stay as they are
OPTIONAL_FORM_FIELDS = ("document_number", "issue_date", "issuing_authority", "metadata")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class DocumentValidationError(ValueError):
    pass


@dataclass
class DocumentFields:
    title: str
    type: str
    category: str
    expiration_date: Optional[date] = None
    reminder_date: Optional[date] = None
    notes: Optional[str] = None
    document_number: Optional[str] = None
    issue_date: Optional[date] = None
    issuing_authority: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_iso_date(value: Optional[str], label: str) -> Optional[date]:
    value = _clean(value)
    if value is None:
        return None
    if not _ISO_DATE.match(value):
        raise DocumentValidationError(f"Invalid {label} format")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise DocumentValidationError(f"Invalid {label} format") from exc


def parse_metadata(raw: Optional[str]) -> dict[str, Any]:
    """Lenient: malformed metadata JSON is dropped rather than rejected."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def validate_document_fields(
    *,
    title: Optional[str],
    document_type: Optional[str],
    expiration_date: Optional[str] = None,
    reminder_date: Optional[str] = None,
    notes: Optional[str] = None,
    document_number: Optional[str] = None,
    issue_date: Optional[str] = None,
    issuing_authority: Optional[str] = None,
    metadata: Optional[str] = None,
) -> DocumentFields:
    title = _clean(title)
    document_type = _clean(document_type)
    if not title or not document_type:
        raise DocumentValidationError("Missing required fields: title and type are required")
    if len(title) > TITLE_MAX_LENGTH:
        raise DocumentValidationError("Title must be less than 255 characters")

    config = DOCUMENT_TYPE_CONFIG.get(document_type)
    if config is None:
        raise DocumentValidationError("Invalid document type")

    expires = parse_iso_date(expiration_date, "expiration date")
    if config.has_expiry and expires is None:
        raise DocumentValidationError("Expiration date is required for this document type")

    return DocumentFields(
        title=title,
        type=document_type,
        category=get_document_category(document_type).value,
        expiration_date=expires,
        reminder_date=parse_iso_date(reminder_date, "reminder date"),
        notes=_clean(notes),
        document_number=_clean(document_number),
        issue_date=parse_iso_date(issue_date, "issue date"),
        issuing_authority=_clean(issuing_authority),
        metadata=parse_metadata(metadata),
    )


def apply_fields(
    document: Document, fields: DocumentFields, *, submitted: Optional[Collection[str]] = None
) -> None:
    """Copy validated fields onto ``document``.

    With ``submitted``, the optional identity fields and metadata keep their stored
    values unless their names appear in it.
    """
    document.title = fields.title
    document.type = fields.type
    document.category = fields.category
    document.expiration_date = fields.expiration_date
    document.reminder_date = fields.reminder_date
    document.notes = fields.notes
    for name in OPTIONAL_FORM_FIELDS:
        if submitted is not None and name not in submitted:
            continue
        if name == "metadata":
            document.meta = dict(fields.metadata)
        else:
            setattr(document, name, getattr(fields, name))


def _iso(value: date | datetime | None) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_document(document: Document, now: datetime | None = None) -> dict[str, Any]:
    return {
        "id": str(document.id),
        "title": document.title,
        "type": document.type,
        "category": document.category,
        "status": get_document_status(document.expiration_date, now).value,
        "days_until_expiration": get_days_until_expiration(document.expiration_date, now),
        "expiration_date": _iso(document.expiration_date),
        "reminder_date": _iso(document.reminder_date),
        "notes": document.notes,
        "file_name": document.file_name,
        "file_type": document.file_type,
        "file_size": document.file_size,
        "has_file": bool(document.file_path),
        "document_number": document.document_number,
        "issue_date": _iso(document.issue_date),
        "issuing_authority": document.issuing_authority,
        "metadata": document.meta or {},
        "created_at": _iso(document.created_at),
        "updated_at": _iso(document.updated_at),
    }
