from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, field_validator
from instructor import from_openai
import openai

from ..config import settings
from .document_status import coerce_document_type


class AIConfigurationError(RuntimeError):
    """Raised when no hosted model API key is configured."""


_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class DocumentFieldsLLMOut(BaseModel):
    name: str | None = None
    title: str | None = None
    type: str | None = None
    issue_date: str | None = None          # YYYY-MM-DD
    expiration_date: str | None = None     # YYYY-MM-DD
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, value: Any) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        return coerce_document_type(value)

    @field_validator("issue_date", "expiration_date", mode="before")
    @classmethod
    def _iso_or_none(cls, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value if _ISO_DATE.match(value) else None

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}


SYSTEM = (
    "You are an expert document parser. Extract ALL structured information from the raw OCR "
    "text of a personal document and ignore OCR noise.\n\n"
    "Top priority fields:\n"
    "- name: full name of the document holder (labels like 'Name', 'Full Name', 'नाम')\n"
    "- issue_date: YYYY-MM-DD ('Date of Issue', 'Issued On', 'DOI', 'जारी मिति', or the earlier date)\n"
    "- expiration_date: YYYY-MM-DD ('Date of Expiry', 'Valid Until', 'Expires On', 'DOE', 'म्याद', "
    "or the later date)\n"
    "- title: a short descriptive title, e.g. 'Driving License'\n"
    "- type: one of 'Rent Agreement', 'Insurance', 'Subscription', 'License', 'Warranty', 'Contract', "
    "'Citizenship', 'PAN Card', 'National ID', 'Passport', 'Driving License', 'Voter ID', "
    "'Birth Certificate', 'Other'\n\n"
    "If the text contains '--- FRONT SIDE ---' and '--- BACK SIDE ---' markers, combine both sides.\n"
    "Put every other detail (date_of_birth, gender, nationality, address, father_name, "
    "document_number, issuing_authority, policy_number, license_class, ...) into 'metadata'.\n"
    "Never invent information; omit fields that are not present."
)


USER_TMPL = """Here is the raw OCR text from a document. Please extract the structured details:

{text}
"""


def ai_client():
    if not settings.ai_api_key:
        raise AIConfigurationError("AI_API_KEY is not configured")
    return openai.OpenAI(
        api_key=settings.ai_api_key,
        base_url=settings.ai_base_url,
        default_headers={"HTTP-Referer": settings.app_url, "X-Title": settings.app_name},
    )


def extract_document_fields(text: str) -> DocumentFieldsLLMOut:
    client = from_openai(ai_client())
    return client.chat.completions.create(
        model=settings.ai_model,
        response_model=DocumentFieldsLLMOut,
        messages=[
            {"role": "system", "content": SYSTEM},
            {"role": "user", "content": USER_TMPL.format(text=text)},
        ],
        max_tokens=1024,
        temperature=0.2,
    )
