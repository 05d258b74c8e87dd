from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models import LoginToken, User, UserSession
from .email import EmailClient, get_email_client, magic_link_message, recovery_link_message

logger = logging.getLogger(__name__)

LOGIN_PURPOSE = "login"
RECOVERY_PURPOSE = "recovery"


class AuthError(Exception):
    pass


@dataclass
class RedeemedLogin:
    user: User
    session_token: str
    redirect_path: str
    purpose: str
    two_factor_pending: bool


def safe_redirect_path(candidate: Optional[str], default: str = "/dashboard") -> str:
    """Only same-site relative paths are allowed as post-login destinations."""
    if not candidate or not candidate.startswith("/") or candidate.startswith("//") or "\\" in candidate:
        return default
    return candidate


class AuthService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.serializer = URLSafeTimedSerializer(settings.magic_link_secret, salt="magic-link")
        self._email_client: EmailClient | None = None

    @property
    def email_client(self) -> EmailClient:
        if self._email_client is None:
            self._email_client = get_email_client()
        return self._email_client

    # --- Magic link flow -------------------------------------------------
    def request_magic_link(
        self,
        email: str,
        preferred_locale: str = "en",
        request_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        redirect_path: Optional[str] = None,
        *,
        purpose: str = LOGIN_PURPOSE,
        two_factor_satisfied: bool = False,
    ) -> str:
        normalized_email = email.strip().lower()
        if not normalized_email:
            raise AuthError("Email required")

        user = self.get_or_create_user(normalized_email, preferred_locale)
        link = self._issue_link(user, purpose, redirect_path, two_factor_satisfied)

        message = (
            recovery_link_message(normalized_email, link)
            if purpose == RECOVERY_PURPOSE
            else magic_link_message(normalized_email, link)
        )
        try:
            self.email_client.send(message)
        except RuntimeError as exc:
            logger.error("Failed to send magic link: email=%s error=%s", normalized_email, exc)
            raise AuthError("Could not send magic link") from exc

        logger.info(
            "magic_link_issued user_id=%s purpose=%s request_ip=%s user_agent=%s",
            user.id,
            purpose,
            request_ip,
            user_agent,
        )

        self.db.commit()
        return link

    def _issue_link(
        self,
        user: User,
        purpose: str,
        redirect_path: Optional[str],
        two_factor_satisfied: bool,
    ) -> str:
        raw_token = secrets.token_urlsafe(32)
        login_token = LoginToken(
            user_id=user.id,
            token_hash=self.hash_token(raw_token),
            email=user.email,
            purpose=purpose,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.magic_link_expiry_minutes),
        )
        self.db.add(login_token)
        self.db.flush()

        signed_token = self.serializer.dumps(
            {
                "token": raw_token,
                "user_id": str(user.id),
                "login_token_id": str(login_token.id),
                "redirect": safe_redirect_path(redirect_path),
                "purpose": purpose,
                "two_factor_satisfied": two_factor_satisfied,
            }
        )
        query = {"token": signed_token}
        if purpose == RECOVERY_PURPOSE:
            query["type"] = RECOVERY_PURPOSE
        return f"{settings.api_url.rstrip('/')}/auth/callback?{urlencode(query)}"

    def redeem_magic_link(
        self,
        signed_token: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RedeemedLogin:
        try:
            payload = self.serializer.loads(
                signed_token,
                max_age=settings.magic_link_expiry_minutes * 60,
            )
        except SignatureExpired as exc:
            raise AuthError("Magic link expired") from exc
        except BadSignature as exc:
            raise AuthError("Invalid login token") from exc

        try:
            user_id = uuid.UUID(payload["user_id"])
            login_token_id = uuid.UUID(payload["login_token_id"])
            raw_token = payload["token"]
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError("Invalid login token") from exc

        now = datetime.now(timezone.utc)
        login_token = (
            self.db.query(LoginToken)
            .filter(
                LoginToken.id == login_token_id,
                LoginToken.user_id == user_id,
                LoginToken.token_hash == self.hash_token(raw_token),
                LoginToken.consumed_at.is_(None),
                LoginToken.expires_at > now,
            )
            .one_or_none()
        )
        if not login_token:
            raise AuthError("Login token not found or already used")

        user = self.db.query(User).filter(User.id == user_id, User.is_active.is_(True)).one_or_none()
        if user is None:
            raise AuthError("Account disabled")

        login_token.consumed_at = now

        two_factor_pending = bool(user.two_factor_enabled) and not payload.get("two_factor_satisfied", False)
        session_token = secrets.token_urlsafe(32)
        session = UserSession(
            user_id=user.id,
            session_token_hash=self.hash_token(session_token),
            user_agent=user_agent,
            ip_address=ip_address,
            two_factor_verified_at=None if two_factor_pending else now,
            expires_at=now + timedelta(hours=settings.session_ttl_hours),
        )
        user.last_login_at = now
        self.db.add(session)
        self.db.commit()

        logger.info(
            "user_login user_id=%s login_token_id=%s two_factor_pending=%s",
            user.id,
            login_token.id,
            two_factor_pending,
        )

        return RedeemedLogin(
            user=user,
            session_token=session_token,
            redirect_path=safe_redirect_path(payload.get("redirect")),
            purpose=login_token.purpose or LOGIN_PURPOSE,
            two_factor_pending=two_factor_pending,
        )

    # --- Session flow ----------------------------------------------------
    def session_from_token(self, raw_token: str) -> Optional[tuple[UserSession, User]]:
        if not raw_token:
            return None
        hashed = self.hash_token(raw_token)
        now = datetime.now(timezone.utc)
        row = (
            self.db.query(UserSession, User)
            .join(User, User.id == UserSession.user_id)
            .filter(
                UserSession.session_token_hash == hashed,
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > now,
                User.is_active.is_(True),
            )
            .one_or_none()
        )
        return row

    def mark_two_factor_verified(self, session: UserSession) -> None:
        session.two_factor_verified_at = datetime.now(timezone.utc)
        self.db.flush()

    def revoke_session(self, raw_token: str) -> None:
        hashed = self.hash_token(raw_token)
        now = datetime.now(timezone.utc)
        updated = (
            self.db.query(UserSession)
            .filter(UserSession.session_token_hash == hashed, UserSession.revoked_at.is_(None))
            .update({"revoked_at": now})
        )
        if updated:
            logger.info("session_revoked hash=%s", hashed[:8])
        self.db.commit()

    # --- Recovery --------------------------------------------------------
    def find_user(self, email: str) -> Optional[User]:
        normalized = (email or "").strip().lower()
        if not normalized:
            return None
        return self.db.query(User).filter(func.lower(User.email) == normalized).one_or_none()

    def send_recovery_link(self, user: User, *, two_factor_satisfied: bool = False) -> str:
        return self.request_magic_link(
            user.email,
            user.preferred_locale or "en",
            redirect_path=settings.recovery_redirect_path,
            purpose=RECOVERY_PURPOSE,
            two_factor_satisfied=two_factor_satisfied,
        )

    # --- Helpers ---------------------------------------------------------
    @staticmethod
    def hash_token(value: str) -> str:
        return hashlib.sha256(value.encode("utf-8")).hexdigest()

    def get_or_create_user(self, email: str, preferred_locale: str) -> User:
        user = (
            self.db.query(User)
            .filter(func.lower(User.email) == email.lower())
            .one_or_none()
        )
        if user:
            return user

        user = User(email=email, preferred_locale=preferred_locale)
        self.db.add(user)
        self.db.flush()
        logger.info("user_created user_id=%s", user.id)
        return user
