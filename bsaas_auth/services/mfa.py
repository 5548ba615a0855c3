from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import pyotp
import qrcode

from bsaas_auth.core.settings import settings
from bsaas_auth.models import User
from bsaas_auth.repositories.base import CredentialTotpRepository, RecoveryCodeRepository
from bsaas_auth.services.audit import AuditService

RECOVERY_CODE_LENGTH = 8  # 8-character codes like "A1B2-C3D4"
_RECOVERY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0, O, 1, I


def generate_totp_secret() -> str:
    return pyotp.random_base32()


def build_totp_uri(secret: str, email: str, issuer: str) -> str:
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(name=email, issuer_name=issuer)


def verify_totp(secret: str, code: str) -> bool:
    code = (code or "").strip()
    if len(code) != 6 or not code.isdigit():
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=1)


def qr_png_data_url(text: str) -> str:
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, "PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


@dataclass(frozen=True, slots=True)
class TotpEnrollment:
    otpauth_url: str
    qr_code_data_url: str


class TotpService:
    """TOTP verification port backed by the encrypted credential store."""

    def __init__(
        self,
        credentials: CredentialTotpRepository,
        *,
        audit: Optional[AuditService] = None,
        issuer: Optional[str] = None,
    ) -> None:
        self.credentials = credentials
        self.audit = audit or AuditService()
        self.issuer = issuer or settings.totp_issuer

    async def verify_token(self, user_id: str, code: str) -> bool:
        credential = await self.credentials.get_by_user_id(user_id)
        if credential is None:
            return False
        return verify_totp(credential.secret, code)

    async def is_enabled(self, user_id: str) -> bool:
        credential = await self.credentials.get_by_user_id(user_id)
        return bool(credential and credential.verified)

    async def enroll(self, user: User) -> TotpEnrollment:
        """Store a fresh unverified secret; login is not gated until confirm()."""
        secret = generate_totp_secret()
        await self.credentials.upsert(str(user.id), secret)
        uri = build_totp_uri(secret, user.email, self.issuer)
        await self.audit.record("totp.enrolled", user_id=str(user.id))
        return TotpEnrollment(otpauth_url=uri, qr_code_data_url=qr_png_data_url(uri))

    async def confirm(self, user_id: str, code: str) -> bool:
        if not await self.verify_token(user_id, code):
            return False
        await self.credentials.mark_verified(user_id)
        await self.audit.record("totp.confirmed", user_id=user_id)
        return True


def generate_recovery_code() -> str:
    code = "".join(secrets.choice(_RECOVERY_ALPHABET) for _ in range(RECOVERY_CODE_LENGTH))
    return f"{code[:4]}-{code[4:]}"


def hash_recovery_code(code: str) -> str:
    normalized = code.strip().upper().replace("-", "")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class RecoveryCodeService:
    """Issues single-use recovery codes; only hashes are stored."""

    def __init__(self, codes: RecoveryCodeRepository, *, audit: Optional[AuditService] = None) -> None:
        self.codes = codes
        self.audit = audit or AuditService()

    async def generate(self, user_id: str, count: int = 10) -> list[str]:
        """Replace the user's previous batch, used or not."""
        if count < 1:
            raise ValueError("count must be positive")
        plain_codes = [generate_recovery_code() for _ in range(count)]
        await self.codes.replace_all(user_id, [hash_recovery_code(code) for code in plain_codes])
        await self.audit.record("recovery.generated", user_id=user_id, count=count)
        return plain_codes

    async def verify_and_consume(self, user_id: str, code: str) -> bool:
        if not code or not code.strip():
            await self.audit.record("recovery.failed", user_id=user_id)
            return False
        consumed = await self.codes.consume(user_id, hash_recovery_code(code))
        await self.audit.record("recovery.consumed" if consumed else "recovery.failed", user_id=user_id)
        return consumed


__all__ = [
    "RecoveryCodeService",
    "TotpEnrollment",
    "TotpService",
    "build_totp_uri",
    "generate_recovery_code",
    "generate_totp_secret",
    "hash_recovery_code",
    "qr_png_data_url",
    "verify_totp",
]
