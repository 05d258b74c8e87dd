from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional


EXPIRING_SOON_DAYS = 30


class DocumentStatus(str, Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    NO_EXPIRY = "no_expiry"


class DocumentCategory(str, Enum):
    EXPIRING = "expiring"
    IDENTITY = "identity"
    OTHER = "other"


@dataclass(frozen=True)
class DocumentTypeConfig:
    category: DocumentCategory
    has_expiry: bool
    has_document_number: bool


DOCUMENT_TYPE_CONFIG: dict[str, DocumentTypeConfig] = {
    "Rent Agreement": DocumentTypeConfig(DocumentCategory.EXPIRING, True, False),
    "Insurance": DocumentTypeConfig(DocumentCategory.EXPIRING, True, True),
    "Subscription": DocumentTypeConfig(DocumentCategory.EXPIRING, True, False),
    "License": DocumentTypeConfig(DocumentCategory.EXPIRING, True, True),
    "Warranty": DocumentTypeConfig(DocumentCategory.EXPIRING, True, False),
    "Contract": DocumentTypeConfig(DocumentCategory.EXPIRING, True, False),
    "Citizenship": DocumentTypeConfig(DocumentCategory.IDENTITY, False, True),
    "PAN Card": DocumentTypeConfig(DocumentCategory.IDENTITY, False, True),
    "National ID": DocumentTypeConfig(DocumentCategory.IDENTITY, True, True),
    "Passport": DocumentTypeConfig(DocumentCategory.IDENTITY, True, True),
    "Driving License": DocumentTypeConfig(DocumentCategory.IDENTITY, True, True),
    "Voter ID": DocumentTypeConfig(DocumentCategory.IDENTITY, False, True),
    "Birth Certificate": DocumentTypeConfig(DocumentCategory.IDENTITY, False, True),
    "Other": DocumentTypeConfig(DocumentCategory.OTHER, True, False),
}

DOCUMENT_TYPES = tuple(DOCUMENT_TYPE_CONFIG)

DOCUMENT_TYPES_BY_CATEGORY: dict[DocumentCategory, tuple[str, ...]] = {
    category: tuple(name for name, config in DOCUMENT_TYPE_CONFIG.items() if config.category == category)
    for category in DocumentCategory
}

# Older clients and the OCR heuristics still emit these names
_TYPE_ALIASES = {
    "rent": "Rent Agreement",
    "lease": "Rent Agreement",
    "driver's license": "Driving License",
    "drivers license": "Driving License",
    "pan": "PAN Card",
    "national id card": "National ID",
}


def coerce_document_type(raw: Optional[str]) -> str:
    """Map free-form type text onto a known document type, falling back to ``Other``."""
    if not raw:
        return "Other"
    cleaned = raw.strip()
    if cleaned in DOCUMENT_TYPE_CONFIG:
        return cleaned
    lowered = cleaned.lower()
    for name in DOCUMENT_TYPE_CONFIG:
        if name.lower() == lowered:
            return name
    return _TYPE_ALIASES.get(lowered, "Other")


def get_document_category(document_type: Optional[str]) -> DocumentCategory:
    config = DOCUMENT_TYPE_CONFIG.get(document_type or "")
    return config.category if config else DocumentCategory.OTHER


def type_requires_expiry(document_type: str) -> bool:
    config = DOCUMENT_TYPE_CONFIG.get(document_type)
    return bool(config and config.has_expiry)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def expiration_instant(expiration_date: date | datetime) -> datetime:
    """Expiration dates count from UTC midnight at the start of the day."""
    if isinstance(expiration_date, datetime):
        if expiration_date.tzinfo is None:
            return expiration_date.replace(tzinfo=timezone.utc)
        return expiration_date
    return datetime.combine(expiration_date, time.min, tzinfo=timezone.utc)


def get_document_status(
    expiration_date: date | datetime | None, now: datetime | None = None
) -> DocumentStatus:
    if expiration_date is None:
        return DocumentStatus.NO_EXPIRY

    now = now or _utcnow()
    expires_at = expiration_instant(expiration_date)
    if expires_at < now:
        return DocumentStatus.EXPIRED
    if expires_at <= now + timedelta(days=EXPIRING_SOON_DAYS):
        return DocumentStatus.EXPIRING_SOON
    return DocumentStatus.VALID


def get_days_until_expiration(
    expiration_date: date | datetime | None, now: datetime | None = None
) -> int | None:
    """Whole days until expiry, rounded up; negative once expired."""
    if expiration_date is None:
        return None
    now = now or _utcnow()
    delta = expiration_instant(expiration_date) - now
    return math.ceil(delta.total_seconds() / 86400)
