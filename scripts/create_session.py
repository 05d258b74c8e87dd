#!/usr/bin/env python
"""Utility to mint a local session cookie for manual testing."""

from __future__ import annotations

import argparse
import secrets
import sys
from datetime import datetime, timezone, timedelta
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.append(str(BASE_DIR))

from api.config import settings
from api.db.session import SessionLocal
from api.models import UserSession
from api.services.auth import AuthService


def create_session(email: str, locale: str, skip_two_factor: bool) -> str:
    with SessionLocal() as db:
        service = AuthService(db)
        user = service.get_or_create_user(email.strip().lower(), locale)

        raw_token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=settings.session_ttl_hours)

        session = UserSession(
            user_id=user.id,
            session_token_hash=service.hash_token(raw_token),
            expires_at=expires_at,
            two_factor_verified_at=now if skip_two_factor else None,
        )
        db.add(session)
        db.commit()

        print("User:", user.email)
        print("Two-factor enabled:", user.two_factor_enabled)
        print("Session expires:", expires_at.isoformat())
        print("\nPaste this cookie into your browser's dev tools:")
        print(f"{settings.cookie_name}={raw_token}")
        return raw_token


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a session cookie for local testing")
    parser.add_argument("email", help="User email to authenticate as")
    parser.add_argument("--locale", default="en", help="Preferred locale (default: en)")
    parser.add_argument(
        "--pending-2fa",
        action="store_true",
        help="Leave the two-factor step unverified on the new session",
    )
    args = parser.parse_args()

    create_session(args.email, args.locale, skip_two_factor=not args.pending_2fa)


if __name__ == "__main__":
    main()
