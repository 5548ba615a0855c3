"""Storage-agnostic repository ports consumed by the auth services."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from bsaas_auth.models import (
    CredentialTOTP,
    EmailVerificationRecord,
    PasswordResetRecord,
    RefreshToken,
    SocialAccount,
    User,
    UserSession,
)


class UserRepository(Protocol):
    async def get_by_email(self, email: str) -> Optional[User]: ...

    async def get_by_id(self, user_id: str) -> Optional[User]: ...

    async def get_role_names(self, user_id: str) -> list[str]: ...

    async def create(
        self,
        email: str,
        *,
        password_hash: Optional[str] = None,
        name: Optional[str] = None,
        role_names: Sequence[str] = (),
    ) -> User: ...

    async def update(self, user_id: str, **fields: Any) -> Optional[User]: ...


class SessionRepository(Protocol):
    async def create(
        self,
        user_id: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> UserSession: ...

    async def get_by_id(self, session_id: str) -> Optional[UserSession]: ...

    async def list_by_user(self, user_id: str) -> list[UserSession]: ...

    async def touch(self, session_id: str) -> None: ...

    async def delete(self, session_id: str) -> bool: ...

    async def delete_all_for_user(self, user_id: str) -> int: ...


class RefreshTokenRepository(Protocol):
    async def create(
        self,
        jti: str,
        user_id: str,
        session_id: str,
        rotated_from: Optional[str] = None,
    ) -> RefreshToken: ...

    async def get_by_jti(self, jti: str) -> Optional[RefreshToken]: ...

    async def revoke(self, jti: str) -> bool:
        """Revoke an active token; returns False when it was already revoked or missing."""
        ...


class CredentialTotpRepository(Protocol):
    async def get_by_user_id(self, user_id: str) -> Optional[CredentialTOTP]: ...

    async def upsert(self, user_id: str, secret: str) -> CredentialTOTP: ...

    async def mark_verified(self, user_id: str) -> None: ...


class EmailVerificationRepository(Protocol):
    async def upsert_for_email(
        self, email: str, code_hash: str, expires_at: datetime
    ) -> EmailVerificationRecord: ...

    async def find_active_by_email(
        self, email: str, *, max_attempts: Optional[int] = None
    ) -> Optional[EmailVerificationRecord]: ...

    async def increment_attempts(self, record_id: str) -> None: ...

    async def mark_used(self, record_id: str) -> bool: ...


class PasswordResetRepository(Protocol):
    async def create(self, user_id: str, expires_at: datetime) -> PasswordResetRecord: ...

    async def get_by_id(self, record_id: str) -> Optional[PasswordResetRecord]: ...

    async def mark_used(self, record_id: str) -> bool: ...


class SocialAccountRepository(Protocol):
    async def find_by_provider_account(
        self, provider: str, provider_user_id: str
    ) -> Optional[SocialAccount]: ...

    async def list_by_user(self, user_id: str) -> list[SocialAccount]: ...

    async def link(self, user_id: str, provider: str, provider_user_id: str) -> SocialAccount: ...

    async def unlink(self, user_id: str, provider: str) -> int: ...


class RecoveryCodeRepository(Protocol):
    async def replace_all(self, user_id: str, code_hashes: Sequence[str]) -> None: ...

    async def consume(self, user_id: str, code_hash: str) -> bool: ...


class AuditLogRepository(Protocol):
    async def append(
        self,
        event: str,
        *,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None: ...


__all__ = [
    "AuditLogRepository",
    "CredentialTotpRepository",
    "EmailVerificationRepository",
    "PasswordResetRepository",
    "RecoveryCodeRepository",
    "RefreshTokenRepository",
    "SessionRepository",
    "SocialAccountRepository",
    "UserRepository",
]
