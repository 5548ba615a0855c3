from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from bsaas_auth.repositories.base import (
    AuditLogRepository,
    CredentialTotpRepository,
    EmailVerificationRepository,
    PasswordResetRepository,
    RecoveryCodeRepository,
    RefreshTokenRepository,
    SessionRepository,
    SocialAccountRepository,
    UserRepository,
)
from bsaas_auth.repositories.orm import (
    SqlAlchemyAuditLogRepository,
    SqlAlchemyCredentialTotpRepository,
    SqlAlchemyEmailVerificationRepository,
    SqlAlchemyPasswordResetRepository,
    SqlAlchemyRecoveryCodeRepository,
    SqlAlchemyRefreshTokenRepository,
    SqlAlchemySessionRepository,
    SqlAlchemySocialAccountRepository,
    SqlAlchemyUserRepository,
)


@dataclass(slots=True)
class Repositories:
    users: UserRepository
    sessions: SessionRepository
    refresh_tokens: RefreshTokenRepository
    totp: CredentialTotpRepository
    email_verifications: EmailVerificationRepository
    password_resets: PasswordResetRepository
    social_accounts: SocialAccountRepository
    recovery_codes: RecoveryCodeRepository
    audit_logs: AuditLogRepository


def build_repositories(db: AsyncSession) -> Repositories:
    return Repositories(
        users=SqlAlchemyUserRepository(db),
        sessions=SqlAlchemySessionRepository(db),
        refresh_tokens=SqlAlchemyRefreshTokenRepository(db),
        totp=SqlAlchemyCredentialTotpRepository(db),
        email_verifications=SqlAlchemyEmailVerificationRepository(db),
        password_resets=SqlAlchemyPasswordResetRepository(db),
        social_accounts=SqlAlchemySocialAccountRepository(db),
        recovery_codes=SqlAlchemyRecoveryCodeRepository(db),
        audit_logs=SqlAlchemyAuditLogRepository(db),
    )


__all__ = ["Repositories", "build_repositories"]
