"""SQLAlchemy async implementations of the repository ports.

Each write commits its own unit of work.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bsaas_auth.models import (
    AuditLog,
    CredentialTOTP,
    EmailVerificationRecord,
    PasswordResetRecord,
    RecoveryCode,
    RefreshToken,
    Role,
    SocialAccount,
    User,
    UserRole,
    UserSession,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Repository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db


class SqlAlchemyUserRepository(_Repository):
    _UPDATABLE = frozenset(
        {"password_hash", "name", "phone", "is_verified", "is_active", "email_verified_at", "last_login_at"}
    )

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_role_names(self, user_id: str) -> list[str]:
        stmt = (
            select(Role.name)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .order_by(UserRole.created_at, Role.name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        email: str,
        *,
        password_hash: Optional[str] = None,
        name: Optional[str] = None,
        role_names: Sequence[str] = (),
    ) -> User:
        user = User(email=email, password_hash=password_hash, name=name)
        self.db.add(user)
        await self.db.flush()
        if role_names:
            result = await self.db.execute(select(Role).where(Role.name.in_(list(role_names))))
            roles = {role.name: role for role in result.scalars().all()}
            for role_name in role_names:
                role = roles.get(role_name)
                if role is None:
                    role = Role(name=role_name)
                    self.db.add(role)
                    await self.db.flush()
                    roles[role_name] = role
                self.db.add(UserRole(user_id=user.id, role_id=role.id))
        await self.db.commit()
        return user

    async def update(self, user_id: str, **fields: Any) -> Optional[User]:
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Unsupported user fields: {', '.join(sorted(unknown))}")
        user = await self.get_by_id(user_id)
        if user is None:
            return None
        for key, value in fields.items():
            setattr(user, key, value)
        self.db.add(user)
        await self.db.commit()
        return user


class SqlAlchemySessionRepository(_Repository):
    async def create(
        self,
        user_id: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> UserSession:
        session = UserSession(
            user_id=user_id,
            user_agent=user_agent[:500] if user_agent else None,
            ip_address=ip_address,
            last_seen_at=_now(),
        )
        self.db.add(session)
        await self.db.commit()
        return session

    async def get_by_id(self, session_id: str) -> Optional[UserSession]:
        result = await self.db.execute(select(UserSession).where(UserSession.id == session_id))
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> list[UserSession]:
        stmt = (
            select(UserSession)
            .where(UserSession.user_id == user_id)
            .order_by(UserSession.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def touch(self, session_id: str) -> None:
        await self.db.execute(
            update(UserSession).where(UserSession.id == session_id).values(last_seen_at=_now())
        )
        await self.db.commit()

    async def delete(self, session_id: str) -> bool:
        # Refresh tokens reference the session; they must go first.
        await self.db.execute(delete(RefreshToken).where(RefreshToken.session_id == session_id))
        result = await self.db.execute(delete(UserSession).where(UserSession.id == session_id))
        await self.db.commit()
        return bool(result.rowcount)

    async def delete_all_for_user(self, user_id: str) -> int:
        await self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        result = await self.db.execute(delete(UserSession).where(UserSession.user_id == user_id))
        await self.db.commit()
        return int(result.rowcount or 0)


class SqlAlchemyRefreshTokenRepository(_Repository):
    async def create(
        self,
        jti: str,
        user_id: str,
        session_id: str,
        rotated_from: Optional[str] = None,
    ) -> RefreshToken:
        token = RefreshToken(
            jti=jti,
            user_id=user_id,
            session_id=session_id,
            rotated_from=rotated_from,
            issued_at=_now(),
        )
        self.db.add(token)
        await self.db.commit()
        return token

    async def get_by_jti(self, jti: str) -> Optional[RefreshToken]:
        result = await self.db.execute(select(RefreshToken).where(RefreshToken.jti == jti))
        return result.scalar_one_or_none()

    async def revoke(self, jti: str) -> bool:
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.jti == jti, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=_now())
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1


class SqlAlchemyCredentialTotpRepository(_Repository):
    async def get_by_user_id(self, user_id: str) -> Optional[CredentialTOTP]:
        result = await self.db.execute(select(CredentialTOTP).where(CredentialTOTP.user_id == user_id))
        return result.scalar_one_or_none()

    async def upsert(self, user_id: str, secret: str) -> CredentialTOTP:
        credential = await self.get_by_user_id(user_id)
        if credential is None:
            credential = CredentialTOTP(user_id=user_id, secret=secret, verified=False)
        else:
            credential.secret = secret
            credential.verified = False
            credential.verified_at = None
        self.db.add(credential)
        await self.db.commit()
        return credential

    async def mark_verified(self, user_id: str) -> None:
        await self.db.execute(
            update(CredentialTOTP)
            .where(CredentialTOTP.user_id == user_id)
            .values(verified=True, verified_at=_now())
        )
        await self.db.commit()


class SqlAlchemyEmailVerificationRepository(_Repository):
    async def upsert_for_email(
        self, email: str, code_hash: str, expires_at: datetime
    ) -> EmailVerificationRecord:
        result = await self.db.execute(
            select(EmailVerificationRecord).where(EmailVerificationRecord.email == email)
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = EmailVerificationRecord(email=email)
        record.code_hash = code_hash
        record.expires_at = expires_at
        record.attempts = 0
        record.used_at = None
        self.db.add(record)
        await self.db.commit()
        return record

    async def find_active_by_email(
        self, email: str, *, max_attempts: Optional[int] = None
    ) -> Optional[EmailVerificationRecord]:
        stmt = select(EmailVerificationRecord).where(
            EmailVerificationRecord.email == email,
            EmailVerificationRecord.used_at.is_(None),
            EmailVerificationRecord.expires_at > _now(),
        )
        if max_attempts is not None:
            stmt = stmt.where(EmailVerificationRecord.attempts < max_attempts)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_attempts(self, record_id: str) -> None:
        await self.db.execute(
            update(EmailVerificationRecord)
            .where(EmailVerificationRecord.id == record_id)
            .values(attempts=EmailVerificationRecord.attempts + 1)
        )
        await self.db.commit()

    async def mark_used(self, record_id: str) -> bool:
        result = await self.db.execute(
            update(EmailVerificationRecord)
            .where(EmailVerificationRecord.id == record_id, EmailVerificationRecord.used_at.is_(None))
            .values(used_at=_now())
        )
        await self.db.commit()
        return result.rowcount == 1


class SqlAlchemyPasswordResetRepository(_Repository):
    async def create(self, user_id: str, expires_at: datetime) -> PasswordResetRecord:
        record = PasswordResetRecord(user_id=user_id, expires_at=expires_at)
        self.db.add(record)
        await self.db.commit()
        return record

    async def get_by_id(self, record_id: str) -> Optional[PasswordResetRecord]:
        result = await self.db.execute(
            select(PasswordResetRecord).where(PasswordResetRecord.id == record_id)
        )
        return result.scalar_one_or_none()

    async def mark_used(self, record_id: str) -> bool:
        result = await self.db.execute(
            update(PasswordResetRecord)
            .where(PasswordResetRecord.id == record_id, PasswordResetRecord.used_at.is_(None))
            .values(used_at=_now())
        )
        await self.db.commit()
        return result.rowcount == 1


class SqlAlchemySocialAccountRepository(_Repository):
    async def find_by_provider_account(
        self, provider: str, provider_user_id: str
    ) -> Optional[SocialAccount]:
        result = await self.db.execute(
            select(SocialAccount).where(
                SocialAccount.provider == provider,
                SocialAccount.provider_user_id == provider_user_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> list[SocialAccount]:
        result = await self.db.execute(
            select(SocialAccount)
            .where(SocialAccount.user_id == user_id)
            .order_by(SocialAccount.created_at)
        )
        return list(result.scalars().all())

    async def link(self, user_id: str, provider: str, provider_user_id: str) -> SocialAccount:
        account = SocialAccount(user_id=user_id, provider=provider, provider_user_id=provider_user_id)
        self.db.add(account)
        await self.db.commit()
        return account

    async def unlink(self, user_id: str, provider: str) -> int:
        result = await self.db.execute(
            delete(SocialAccount).where(
                SocialAccount.user_id == user_id,
                SocialAccount.provider == provider,
            )
        )
        await self.db.commit()
        return int(result.rowcount or 0)


class SqlAlchemyRecoveryCodeRepository(_Repository):
    async def replace_all(self, user_id: str, code_hashes: Sequence[str]) -> None:
        await self.db.execute(delete(RecoveryCode).where(RecoveryCode.user_id == user_id))
        for code_hash in code_hashes:
            self.db.add(RecoveryCode(user_id=user_id, code_hash=code_hash))
        await self.db.commit()

    async def consume(self, user_id: str, code_hash: str) -> bool:
        result = await self.db.execute(
            update(RecoveryCode)
            .where(
                RecoveryCode.user_id == user_id,
                RecoveryCode.code_hash == code_hash,
                RecoveryCode.used_at.is_(None),
            )
            .values(used_at=_now())
        )
        await self.db.commit()
        return bool(result.rowcount)


class SqlAlchemyAuditLogRepository(_Repository):
    async def append(
        self,
        event: str,
        *,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.db.add(
            AuditLog(
                event=event,
                user_id=user_id,
                session_id=session_id,
                ip_address=ip_address,
                request_id=request_id,
                details=details or None,
            )
        )
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise


__all__ = [
    "SqlAlchemyAuditLogRepository",
    "SqlAlchemyCredentialTotpRepository",
    "SqlAlchemyEmailVerificationRepository",
    "SqlAlchemyPasswordResetRepository",
    "SqlAlchemyRecoveryCodeRepository",
    "SqlAlchemyRefreshTokenRepository",
    "SqlAlchemySessionRepository",
    "SqlAlchemySocialAccountRepository",
    "SqlAlchemyUserRepository",
]
