from __future__ import annotations

import base64
import hashlib
import io
import secrets
import string
from dataclasses import dataclass
from typing import Optional

import pyotp
import qrcode
from sqlalchemy.orm import Session

from ..config import settings
from ..models.events import Event
from ..models.users import User

BACKUP_CODE_COUNT = 8
BACKUP_CODE_LENGTH = 6
_BACKUP_ALPHABET = string.ascii_uppercase + string.digits


class TwoFactorError(Exception):
    pass


@dataclass
class Enrollment:
    secret: str
    otpauth_url: str
    qr_code: str  # PNG data URL


@dataclass
class LoginVerification:
    method: str  # "totp" or "backup_code"
    remaining_backup_codes: Optional[int] = None


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.strip().upper().encode("utf-8")).hexdigest()


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    return [
        "".join(secrets.choice(_BACKUP_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
        for _ in range(count)
    ]


def _qr_data_url(uri: str) -> str:
    qr = qrcode.QRCode(box_size=5, border=2)
    qr.add_data(uri)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _require_code(code: Optional[str]) -> str:
    code = (code or "").strip()
    if len(code) != 6:
        raise TwoFactorError("Invalid verification code")
    return code


class TwoFactorService:
    """TOTP enrolment and challenge checks. Backup codes are stored as SHA-256 hashes."""

    def __init__(self, db: Session) -> None:
        self.db = db

    @staticmethod
    def status(user: User) -> dict[str, bool]:
        return {
            "enabled": bool(user.two_factor_enabled),
            "has_backup_codes": bool(user.backup_codes),
        }

    def generate(self, user: User) -> Enrollment:
        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=settings.app_name)
        user.totp_temp_secret = secret
        self.db.flush()
        return Enrollment(secret=secret, otpauth_url=uri, qr_code=_qr_data_url(uri))

    def verify_setup(self, user: User, code: Optional[str]) -> list[str]:
        code = _require_code(code)
        if not user.totp_temp_secret:
            raise TwoFactorError("No pending 2FA setup found. Please generate a new QR code.")
        if not pyotp.TOTP(user.totp_temp_secret).verify(code, valid_window=1):
            raise TwoFactorError("Invalid verification code. Please try again.")

        codes = generate_backup_codes()
        user.two_factor_enabled = True
        user.totp_secret = user.totp_temp_secret
        user.totp_temp_secret = None
        user.backup_codes = [_hash_code(value) for value in codes]
        self.db.add(Event(user_id=user.id, type="two_factor_enabled", data={}))
        self.db.flush()
        return codes

    def disable(self, user: User) -> None:
        was_enabled = bool(user.two_factor_enabled)
        user.two_factor_enabled = False
        user.totp_secret = None
        user.totp_temp_secret = None
        user.backup_codes = []
        if was_enabled:
            self.db.add(Event(user_id=user.id, type="two_factor_disabled", data={}))
        self.db.flush()

    def consume_backup_code(self, user: User, code: Optional[str]) -> Optional[int]:
        """Remove a matching backup code; returns remaining count, or None when no match."""
        if not code:
            return None
        hashed = _hash_code(code)
        remaining = list(user.backup_codes or [])
        if hashed not in remaining:
            return None
        remaining.remove(hashed)
        user.backup_codes = remaining
        self.db.flush()
        return len(remaining)

    def verify_login(self, user: User, code: Optional[str]) -> LoginVerification:
        code = _require_code(code)
        if not user.two_factor_enabled or not user.totp_secret:
            raise TwoFactorError("2FA is not enabled for this account")

        if code.isdigit() and pyotp.TOTP(user.totp_secret).verify(code, valid_window=1):
            return LoginVerification(method="totp")

        remaining = self.consume_backup_code(user, code)
        if remaining is not None:
            return LoginVerification(method="backup_code", remaining_backup_codes=remaining)

        raise TwoFactorError("Invalid verification code. Please try again.")
