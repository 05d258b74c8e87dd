from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..dependencies.auth import AuthContext, require_auth, require_session
from ..dependencies.db import get_db
from ..models import User, UserSession
from ..services.auth import AuthService
from ..services.two_factor import TwoFactorError, TwoFactorService

router = APIRouter(prefix="/2fa", tags=["two-factor"])


class TwoFactorRequest(BaseModel):
    action: Literal["generate", "verify", "disable", "verify-login"]
    code: str | None = None


@router.get("")
def two_factor_status(context: AuthContext = Depends(require_auth)) -> dict:
    return TwoFactorService.status(context.user)


def _handle_setup(payload: TwoFactorRequest, user: User, db: Session) -> dict:
    service = TwoFactorService(db)
    if payload.action == "generate":
        enrollment = service.generate(user)
        db.commit()
        return {
            "success": True,
            "qr_code": enrollment.qr_code,
            "secret": enrollment.secret,
            "otpauth_url": enrollment.otpauth_url,
        }
    if payload.action == "verify":
        codes = service.verify_setup(user, payload.code)
        db.commit()
        return {"success": True, "backup_codes": codes}

    service.disable(user)
    db.commit()
    return {"success": True}


@router.post("")
def two_factor_action(
    payload: TwoFactorRequest,
    context: AuthContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> dict:
    user = db.get(User, context.user.id)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        if payload.action == "verify-login":
            verification = TwoFactorService(db).verify_login(user, payload.code)
            session = db.get(UserSession, context.session.id)
            if session is not None:
                AuthService(db).mark_two_factor_verified(session)
            db.commit()
            result = {"success": True, "method": verification.method}
            if verification.remaining_backup_codes is not None:
                result["remaining_backup_codes"] = verification.remaining_backup_codes
            return result

        if context.two_factor_pending:
            raise HTTPException(status_code=401, detail="Two-factor verification required")
        return _handle_setup(payload, user, db)
    except TwoFactorError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
