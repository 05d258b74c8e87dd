from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models.documents import Document
from ..models.users import DEFAULT_NOTIFICATION_INTERVALS, User
from ..services.email import get_email_client, notification_test_message
from ..services.reminders import notification_schedule, run_notification_sweep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def require_cron_secret(request: Request) -> None:
    """In production a configured CRON_SECRET must arrive as a Bearer token."""
    if not settings.cron_secret or settings.environment != "production":
        return
    header = request.headers.get("authorization") or ""
    if not hmac.compare_digest(header, f"Bearer {settings.cron_secret}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _sweep(db: Session) -> dict:
    try:
        result = run_notification_sweep(db)
        db.commit()
    except RuntimeError as exc:
        db.rollback()
        logger.exception("Notification sweep failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    logger.info("notification_sweep sent=%s skipped=%s total=%s", result.sent, result.skipped, result.total)
    return result.to_dict()


@router.post("", dependencies=[Depends(require_cron_secret)])
def trigger_notifications(db: Session = Depends(get_db)) -> dict:
    return _sweep(db)


@router.get("")
def notifications_cron(
    request: Request,
    trigger: Optional[str] = None,
    db: Session = Depends(get_db),
) -> dict:
    if trigger != "cron":
        raise HTTPException(
            status_code=400,
            detail="Use /notifications?trigger=cron, /notifications/schedule or /notifications/test",
        )
    require_cron_secret(request)
    return _sweep(db)


@router.get("/schedule")
def get_notification_schedule(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> dict:
    documents = db.query(Document).filter(Document.user_id == context.user.id).all()
    return notification_schedule(context.user, documents)


@router.get("/test")
def verify_email_configuration():
    client = get_email_client()
    try:
        client.verify()
    except RuntimeError as exc:
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Email configuration failed", "error": str(exc)},
        )
    return {
        "status": "ok",
        "message": "Email configuration is valid",
        "backend": type(client).__name__,
        "intervals": DEFAULT_NOTIFICATION_INTERVALS,
    }


@router.put("/test")
def send_test_notification(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> dict:
    user = db.get(User, context.user.id)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        get_email_client().send(notification_test_message(user.email, user.display_name))
    except RuntimeError as exc:
        logger.error("Test notification failed: user_id=%s error=%s", user.id, exc)
        raise HTTPException(status_code=500, detail="Failed to send test email") from exc
    return {"message": "Test email sent", "sent_to": user.email}
