from __future__ import annotations

import logging
from typing import Literal
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.auth import (
    AuthContext,
    attach_session_cookie,
    clear_session_cookie,
    finalize_login,
    issue_magic_link,
    require_auth,
    require_session,
)
from ..dependencies.db import get_db
from ..models import User
from ..services.auth import RECOVERY_PURPOSE, AuthError, AuthService, safe_redirect_path
from ..services.email import get_email_client, welcome_message
from ..services.two_factor import TwoFactorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

LOCALE_PATTERN = "^[a-z]{2}(-[A-Z]{2})?$"


class MagicLinkRequest(BaseModel):
    email: EmailStr
    preferred_locale: str = Field(default="en", pattern=LOCALE_PATTERN)
    redirect_path: str | None = Field(default="/dashboard")


class SessionPayload(BaseModel):
    user: dict
    two_factor_pending: bool = False


class UpdateProfileRequest(BaseModel):
    full_name: str | None = Field(default=None, max_length=255)
    preferred_locale: str | None = Field(default=None, pattern=LOCALE_PATTERN)
    email_notifications: bool | None = None
    notification_intervals: list[int] | None = None

    @field_validator("notification_intervals")
    @classmethod
    def _positive_unique(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if not value or any(day <= 0 or day > 365 for day in value):
            raise ValueError("Intervals must be between 1 and 365 days")
        return sorted(set(value), reverse=True)


class ForgotPasswordRequest(BaseModel):
    action: Literal["check-recovery-options", "send-reset-email", "verify-backup-code"]
    email: EmailStr
    code: str | None = None


class WelcomeRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)


def serialize_user(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "full_name": user.full_name,
        "display_name": user.display_name,
        "preferred_locale": user.preferred_locale,
        "avatar_url": user.avatar_url,
        "email_notifications": bool(user.email_notifications),
        "notification_intervals": user.reminder_intervals(),
        "two_factor_enabled": bool(user.two_factor_enabled),
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


def _app_redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{settings.app_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/magic-link")
def send_magic_link(payload: MagicLinkRequest, request: Request, db: Session = Depends(get_db)) -> dict:
    issue_magic_link(payload.email, payload.preferred_locale, request, db, payload.redirect_path)
    return {"status": "sent"}


@router.get("/callback")
def magic_link_callback(
    request: Request,
    token: str | None = None,
    next: str | None = None,
    type: str | None = None,
    db: Session = Depends(get_db),
) -> RedirectResponse:
    if not token:
        return _app_redirect("/login", error="auth_callback_error")
    try:
        login = finalize_login(request, token, db)
    except AuthError as exc:
        logger.info("magic_link_rejected reason=%s", exc)
        return _app_redirect("/login", error="auth_callback_error")

    if login.two_factor_pending:
        response = _app_redirect("/login", step="2fa", provider="magic_link")
    elif login.purpose == RECOVERY_PURPOSE or type == RECOVERY_PURPOSE:
        response = _app_redirect(settings.recovery_redirect_path)
    else:
        response = _app_redirect(safe_redirect_path(next, default=login.redirect_path))

    attach_session_cookie(response, login.session_token)
    return response


@router.get("/me")
def get_current_user(context: AuthContext = Depends(require_session)) -> SessionPayload:
    return SessionPayload(user=serialize_user(context.user), two_factor_pending=context.two_factor_pending)


@router.patch("/me")
def update_current_user(
    payload: UpdateProfileRequest,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> SessionPayload:
    user = context.user
    updates = payload.model_dump(exclude_unset=True)
    if "full_name" in updates:
        user.full_name = (payload.full_name or "").strip() or None
    if payload.preferred_locale is not None:
        user.preferred_locale = payload.preferred_locale
    if payload.email_notifications is not None:
        user.email_notifications = payload.email_notifications
    if payload.notification_intervals is not None:
        user.notification_intervals = payload.notification_intervals
    db.add(user)
    db.commit()
    db.refresh(user)
    return SessionPayload(user=serialize_user(user))


@router.post("/logout")
def logout_user(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> dict:
    raw_token = request.cookies.get(settings.cookie_name)
    if raw_token:
        AuthService(db).revoke_session(raw_token)
    clear_session_cookie(response)
    return {"status": "logged_out"}


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)) -> dict:
    service = AuthService(db)
    user = service.find_user(payload.email)

    if payload.action == "check-recovery-options":
        if user is None:
            raise HTTPException(status_code=404, detail="Email not found. Please check and try again.")
        return {
            "has_two_factor": bool(user.two_factor_enabled) and bool(user.backup_codes),
            "message": "Recovery options checked",
        }

    if payload.action == "send-reset-email":
        if user is not None:
            try:
                service.send_recovery_link(user)
            except AuthError as exc:
                raise HTTPException(status_code=500, detail="Failed to send reset email") from exc
        return {"success": True, "message": "Recovery email sent"}

    if not payload.code:
        raise HTTPException(status_code=400, detail="Backup code is required")
    if user is None:
        raise HTTPException(status_code=400, detail="Invalid credentials")

    remaining = TwoFactorService(db).consume_backup_code(user, payload.code)
    if remaining is None:
        raise HTTPException(status_code=400, detail="Invalid backup code")
    try:
        service.send_recovery_link(user, two_factor_satisfied=True)
    except AuthError as exc:
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to send reset email") from exc

    return {
        "success": True,
        "remaining_backup_codes": remaining,
        "message": "Backup code verified. Recovery email sent.",
    }


@router.post("/welcome")
def send_welcome_email(
    payload: WelcomeRequest,
    context: AuthContext = Depends(require_auth),
) -> dict:
    user = context.user
    name = (payload.name or "").strip() or user.display_name
    try:
        get_email_client().send(welcome_message(user.email, name))
    except RuntimeError as exc:
        logger.error("Welcome email failed: user_id=%s error=%s", user.id, exc)
        raise HTTPException(status_code=500, detail="Failed to send welcome email") from exc
    return {"message": "Welcome email sent successfully", "sent_to": user.email}
