from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from .aws import boto3_client

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    text_body: str
    html_body: Optional[str] = None


class EmailClient:
    def send(self, message: EmailMessage) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def verify(self) -> None:
        """Raise RuntimeError when the backend cannot send."""
        return None


class SesEmailClient(EmailClient):
    def __init__(self) -> None:
        self._client = boto3_client("ses")

    def send(self, message: EmailMessage) -> None:
        try:
            destination = {"ToAddresses": [message.to]}
            body: dict[str, dict[str, str]] = {"Text": {"Data": message.text_body}}
            if message.html_body:
                body["Html"] = {"Data": message.html_body}

            self._client.send_email(
                Source=settings.email_from,
                Destination=destination,
                Message={
                    "Subject": {"Data": message.subject},
                    "Body": body,
                },
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("SES send_email failed: %s", exc)
            raise RuntimeError("Failed to send email") from exc

    def verify(self) -> None:
        try:
            self._client.get_account_sending_enabled()
        except (BotoCoreError, ClientError) as exc:
            raise RuntimeError(f"SES unavailable: {exc}") from exc


class ConsoleEmailClient(EmailClient):
    def send(self, message: EmailMessage) -> None:
        logger.info("Sending email (console fallback) -> %s: %s", message.to, message.subject)
        logger.info("Email body:\n%s", message.text_body)

    def verify(self) -> None:
        return None


def get_email_client() -> EmailClient:
    backend = (settings.email_backend or "auto").lower()
    if backend == "console":
        return ConsoleEmailClient()
    if backend == "ses" or settings.environment == "production":
        return SesEmailClient()

    # auto outside production: use SES only when credentials answer
    try:
        client = SesEmailClient()
        client.verify()
        return client
    except RuntimeError:
        logger.info("Falling back to ConsoleEmailClient")
        return ConsoleEmailClient()


def _app_link(path: str) -> str:
    return f"{settings.app_url.rstrip('/')}{path}"


def magic_link_message(to: str, link: str) -> EmailMessage:
    minutes = settings.magic_link_expiry_minutes
    return EmailMessage(
        to=to,
        subject=f"Your {settings.app_name} sign-in link",
        text_body=(
            f"Click the link below to sign in to {settings.app_name}.\n\n"
            f"{link}\n\n"
            f"This link expires in {minutes} minutes and can only be used once.\n"
            "If you did not request it, you can ignore this email."
        ),
        html_body=(
            f"<p>Click the link below to sign in to {settings.app_name}.</p>"
            f"<p><a href=\"{link}\">Sign in</a></p>"
            f"<p>This link expires in {minutes} minutes.</p>"
        ),
    )


def recovery_link_message(to: str, link: str) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject=f"Recover your {settings.app_name} account",
        text_body=(
            "We received a request to recover access to your account.\n\n"
            f"{link}\n\n"
            f"The link expires in {settings.magic_link_expiry_minutes} minutes. "
            "If this wasn't you, no action is needed."
        ),
        html_body=(
            "<p>We received a request to recover access to your account.</p>"
            f"<p><a href=\"{link}\">Recover account</a></p>"
        ),
    )


def welcome_message(to: str, name: str) -> EmailMessage:
    dashboard = _app_link("/dashboard")
    return EmailMessage(
        to=to,
        subject=f"Welcome to {settings.app_name}!",
        text_body=(
            f"Hi {name},\n\n"
            f"Welcome to {settings.app_name}. Add your passports, licenses, insurance "
            "policies and other documents and we'll remind you before they expire.\n\n"
            f"Get started: {dashboard}"
        ),
        html_body=(
            f"<p>Hi {name},</p>"
            f"<p>Welcome to {settings.app_name}. Add your documents and we'll remind you "
            "before they expire.</p>"
            f"<p><a href=\"{dashboard}\">Open your dashboard</a></p>"
        ),
    )


def reminder_subject(title: str, days_until: int) -> str:
    if days_until <= 1:
        return f"URGENT: {title} expires {'today' if days_until <= 0 else 'tomorrow'}"
    if days_until <= 7:
        return f"⚠️ {title} expires in {days_until} days"
    if days_until <= 15:
        return f"Reminder: {title} expires in {days_until} days"
    return f"Advance Notice: {title} expires in {days_until} days"


def expiry_reminder_message(
    to: str,
    *,
    name: str,
    title: str,
    document_type: str,
    expiration_date: date,
    days_until: int,
    document_id: str | None = None,
) -> EmailMessage:
    link = _app_link(f"/dashboard/documents/{document_id}" if document_id else "/dashboard/reminders")
    expires_on = expiration_date.strftime("%B %d, %Y")
    if days_until <= 0:
        when = "today"
    elif days_until == 1:
        when = "tomorrow"
    else:
        when = f"in {days_until} days"
    return EmailMessage(
        to=to,
        subject=reminder_subject(title, days_until),
        text_body=(
            f"Hi {name},\n\n"
            f"Your {document_type} \"{title}\" expires {when} ({expires_on}).\n"
            "Renew it in time to avoid any interruption.\n\n"
            f"View document: {link}\n\n"
            f"You can change reminder settings in {_app_link('/dashboard/settings')}."
        ),
        html_body=(
            f"<p>Hi {name},</p>"
            f"<p>Your {document_type} <strong>{title}</strong> expires {when} ({expires_on}).</p>"
            f"<p><a href=\"{link}\">View document</a></p>"
        ),
    )


def notification_test_message(to: str, name: str) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject=f"{settings.app_name} test notification",
        text_body=(
            f"Hi {name},\n\n"
            "This is a test notification. If you can read it, expiry reminders will "
            "reach this inbox."
        ),
    )
