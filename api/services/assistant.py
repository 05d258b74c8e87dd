from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

import openai

from ..config import settings
from .llm_extract import ai_client

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10

KNOWLEDGE_BASE = """
DocTracker is a document expiration tracker. Users add documents (title, type, optional
expiration date, optional file upload of PDF/images/Word/Excel up to 10 MB, notes), edit
them, delete them, view details and download the attached file. Documents can be scanned:
upload a photo or PDF (front and back) and the app reads the title, type, issue date and
expiration date automatically; users review the fields before saving.

Document types: Rent Agreement, Insurance, Subscription, License, Warranty, Contract,
Citizenship, PAN Card, National ID, Passport, Driving License, Voter ID, Birth Certificate,
Other. Identity documents (Citizenship, PAN Card, Voter ID, Birth Certificate) do not need
an expiration date.

Statuses: Valid (not expiring within 30 days), Expiring Soon (expires within 30 days),
Expired (already expired), No Expiry (no expiration date).

Dashboard: totals, search by title/notes/type, filter by status and type, sort by title,
expiration date, date added or type. Reminders page: expired and expiring-soon documents,
most urgent first, with All / Expiring Soon / Expired tabs. Analytics: active, expiring and
expired counts, documents by type, the last six months of additions and expirations,
recent activity and tips.

Email reminders are sent 30, 15, 7 and 1 days before expiry by default; the intervals and
the on/off switch live in Settings, which can also send a test email. A custom reminder
date can be set per document.

Profile: name, language, avatar upload (images up to 5 MB). Security: two-factor
authentication with an authenticator app (scan the QR code, confirm a 6-digit code, keep
the 8 backup codes). Sign in happens with an emailed magic link; if 2FA is on, the
authenticator code or a backup code is required after the link. Account recovery uses a
recovery email or a backup code.
"""

SYSTEM_PROMPT = f"""You are {settings.app_name} Assistant, a helpful assistant for the {settings.app_name} document expiration tracking application.

Only answer questions about {settings.app_name} and its features. Be friendly and concise.
Use plain text only: no markdown, no headers, simple dashes for lists.
If a question is unrelated, reply: "I can only help with questions about {settings.app_name}. Is there anything about managing your documents, settings, or using the app that I can help you with?"
Never make up features. If you are unsure, say so.

Knowledge base:
{KNOWLEDGE_BASE}"""

SCOPE_CHECK_PROMPT = f"""You are a classifier that decides whether a user question is about the {settings.app_name} app.
{settings.app_name} covers adding/editing/deleting documents, expiration tracking, reminders and
notifications, profile and settings, two-factor authentication, analytics, file uploads and sign-in.

Respond with ONLY "IN_SCOPE" or "OUT_OF_SCOPE".

User question: """

OUT_OF_SCOPE_RESPONSE = f"""I'm {settings.app_name} Assistant, and I can only help with questions about the {settings.app_name} app. I can assist you with things like:

- Adding and managing documents
- Understanding document statuses and expiration tracking
- Setting up reminders and notifications
- Profile settings and security (like 2FA)
- Using the analytics dashboard
- Uploading files and avatars

Is there anything about {settings.app_name} I can help you with?"""


@dataclass
class AssistantReply:
    response: str
    is_out_of_scope: bool


def is_configured() -> bool:
    return bool(settings.ai_api_key)


def _complete(client, messages: list[dict[str, str]], max_tokens: int, temperature: float = 0.7) -> str:
    completion = client.chat.completions.create(
        model=settings.ai_model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
    )
    if not completion.choices:
        return ""
    return completion.choices[0].message.content or ""


def check_scope(client, message: str) -> bool:
    try:
        verdict = _complete(client, [{"role": "user", "content": SCOPE_CHECK_PROMPT + message}], max_tokens=10)
    except openai.OpenAIError:
        logger.warning("Scope check failed; treating question as in scope", exc_info=True)
        return True
    verdict = verdict.strip().upper()
    return "IN_SCOPE" in verdict and "OUT_OF_SCOPE" not in verdict


def _history_messages(history: Iterable[Mapping[str, str]]) -> list[dict[str, str]]:
    turns = [
        {"role": turn["role"], "content": turn["content"]}
        for turn in history
        if turn.get("role") in ("user", "assistant") and isinstance(turn.get("content"), str)
    ]
    return turns[-HISTORY_LIMIT:]


def answer(message: str, history: Iterable[Mapping[str, str]] = ()) -> AssistantReply:
    """Answer a product question; raises AIConfigurationError without an API key."""
    client = ai_client()
    if not check_scope(client, message):
        return AssistantReply(response=OUT_OF_SCOPE_RESPONSE, is_out_of_scope=True)

    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    messages.extend(_history_messages(history))
    messages.append({"role": "user", "content": message})
    return AssistantReply(response=_complete(client, messages, max_tokens=1024), is_out_of_scope=False)
