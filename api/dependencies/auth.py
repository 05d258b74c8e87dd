from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from ..config import settings
from ..models import User, UserSession
from ..services.auth import AuthError, AuthService, RedeemedLogin
from ..db.session import SessionLocal


@dataclass
class AuthContext:
    user: User
    session: UserSession

    @property
    def two_factor_pending(self) -> bool:
        return bool(self.user.two_factor_enabled) and self.session.two_factor_verified_at is None


def require_session(request: Request) -> AuthContext:
    """Any live session, including one still waiting on its two-factor challenge."""
    raw_token = request.cookies.get(settings.cookie_name)
    with SessionLocal() as db:
        service = AuthService(db)
        row = service.session_from_token(raw_token or "")
        if not row:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

        session, user = row
        request.state.user_id = str(user.id)
        # detach objects before session closes
        db.expunge_all()
        return AuthContext(user=user, session=session)


def require_auth(context: AuthContext = Depends(require_session)) -> AuthContext:
    if context.two_factor_pending:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Two-factor verification required"
        )
    return context


def issue_magic_link(
    email: str,
    locale: str,
    request: Request,
    db: Session,
    redirect_path: str | None = None,
) -> str:
    service = AuthService(db)
    try:
        return service.request_magic_link(
            email=email,
            preferred_locale=locale,
            request_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            redirect_path=redirect_path,
        )
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def finalize_login(request: Request, signed_token: str, db: Session) -> RedeemedLogin:
    """Redeem a magic link; AuthError propagates so callers can pick the failure redirect."""
    service = AuthService(db)
    return service.redeem_magic_link(
        signed_token,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def attach_session_cookie(response: Response, raw_token: str) -> None:
    response.set_cookie(
        key=settings.cookie_name,
        value=raw_token,
        httponly=True,
        secure=settings.environment == "production",
        samesite="lax",
        domain=settings.cookie_domain,
        path="/",
        max_age=int(timedelta(hours=settings.session_ttl_hours).total_seconds()),
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.cookie_name,
        domain=settings.cookie_domain,
        path="/",
    )
