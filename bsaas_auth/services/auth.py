"""Auth orchestration: sign-in, MFA completion, rotation, sessions and recovery.

The service depends only on the repository ports, the token issuer and the
pluggable TOTP/email ports; the host wires concrete implementations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from bsaas_auth.core.security import (
    constant_time_verify,
    generate_numeric_code,
    get_password_hash,
    hash_opaque,
    opaque_equals,
)
from bsaas_auth.core.settings import Settings, settings
from bsaas_auth.models import SocialAccount, User, UserSession
from bsaas_auth.repositories import Repositories
from bsaas_auth.services.audit import AuditService
from bsaas_auth.services.email import redact_email
from bsaas_auth.services.errors import BadRequest, Conflict, Unauthorized
from bsaas_auth.services.ports import EmailDeliveryError, EmailPort, SocialProfile, TotpPort
from bsaas_auth.services.tokens import TokenIssuer, TokenPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SignInResult:
    totp_required: bool
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    temp_token: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "SignInResult":
        return cls(
            totp_required=False,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            session_id=pair.session_id,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_expired(expires_at: datetime) -> bool:
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= _now()


class AuthService:
    def __init__(
        self,
        repos: Repositories,
        *,
        totp: TotpPort,
        email: EmailPort,
        tokens: Optional[TokenIssuer] = None,
        audit: Optional[AuditService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.repos = repos
        self.totp = totp
        self.email = email
        self.config = config or settings
        self.audit = audit or AuditService(repos.audit_logs)
        self.tokens = tokens or TokenIssuer(
            repos.refresh_tokens, repos.users, audit=self.audit, config=self.config
        )

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    async def _start_session(
        self,
        user: User,
        *,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> TokenPair:
        session = await self.repos.sessions.create(str(user.id), user_agent=user_agent, ip_address=ip)
        role_names = await self.repos.users.get_role_names(str(user.id))
        pair = await self.tokens.issue_pair(user, role_names, str(session.id))
        await self.repos.users.update(str(user.id), last_login_at=_now())
        return pair

    async def sign_in(
        self,
        email: str,
        password: str,
        *,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> SignInResult:
        user = await self.repos.users.get_by_email(email)
        password_hash = user.password_hash if user is not None else None
        # Always pay for one hash comparison so unknown emails are not faster.
        password_ok = constant_time_verify(password_hash, password)
        if user is None or not password_ok or not user.is_active:
            await self.audit.record(
                "login.failure",
                user_id=str(user.id) if user is not None else None,
                ip=ip,
                email=redact_email(email),
            )
            raise Unauthorized()

        credential = await self.repos.totp.get_by_user_id(str(user.id))
        if credential is not None and credential.verified:
            temp_token = self.tokens.sign_purpose_token(str(user.id), "totp")
            await self.audit.record("login.totp_challenge", user_id=str(user.id), ip=ip)
            return SignInResult(totp_required=True, temp_token=temp_token)

        pair = await self._start_session(user, user_agent=user_agent, ip=ip)
        await self.audit.record("login.success", user_id=str(user.id), session_id=pair.session_id, ip=ip)
        return SignInResult.from_pair(pair)

    async def sign_in_with_totp(
        self,
        temp_token: str,
        totp_code: str,
        *,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> TokenPair:
        payload = self.tokens.verify_purpose_token(temp_token, "totp")
        user_id = str(payload["sub"])
        if not await self.totp.verify_token(user_id, totp_code):
            await self.audit.record("login.totp_failure", user_id=user_id, ip=ip)
            raise Unauthorized()
        user = await self.repos.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise Unauthorized()
        pair = await self._start_session(user, user_agent=user_agent, ip=ip)
        await self.audit.record("login.totp_success", user_id=user_id, session_id=pair.session_id, ip=ip)
        return pair

    async def issue_tokens_for_user(
        self,
        user_id: str,
        *,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
        event: str = "webauthn.login",
    ) -> TokenPair:
        """Open a new session for an identity already proven by another factor."""
        user = await self.repos.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise Unauthorized()
        pair = await self._start_session(user, user_agent=user_agent, ip=ip)
        await self.audit.record(event, user_id=str(user.id), session_id=pair.session_id, ip=ip)
        return pair

    async def resolve_user_id_by_email(self, email: str) -> Optional[str]:
        user = await self.repos.users.get_by_email(email)
        return str(user.id) if user is not None else None

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.repos.users.get_by_id(user_id)

    async def get_role_names(self, user_id: str) -> list[str]:
        return await self.repos.users.get_role_names(user_id)

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    async def refresh_token(self, token: str) -> TokenPair:
        pair, user = await self.tokens.rotate(token)
        await self.repos.sessions.touch(pair.session_id)
        await self.audit.record("token.refresh", user_id=str(user.id), session_id=pair.session_id)
        return pair

    async def logout(self, session_id: Optional[str], *, user_id: Optional[str] = None) -> None:
        """Idempotent: an unknown or already-deleted session is a no-op."""
        if not session_id:
            return
        session = await self.repos.sessions.get_by_id(session_id)
        if session is None:
            return
        await self.repos.sessions.delete(session_id)
        await self.audit.record("logout", user_id=user_id or str(session.user_id), session_id=session_id)

    async def list_sessions(self, user_id: str) -> list[UserSession]:
        return await self.repos.sessions.list_by_user(user_id)

    async def revoke_session(self, user_id: str, session_id: str) -> bool:
        session = await self.repos.sessions.get_by_id(session_id)
        if session is None or str(session.user_id) != str(user_id):
            raise Unauthorized("Session not found")
        await self.repos.sessions.delete(session_id)
        await self.audit.record("session.revoke", user_id=user_id, session_id=session_id)
        return True

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def _deliver(self, to: str, subject: str, body: str) -> None:
        try:
            await self.email.send_mail(to, subject, body)
        except EmailDeliveryError:
            logger.warning("email_send_failed to=%s subject=%s", redact_email(to), subject, exc_info=True)

    async def request_password_reset(self, email: str) -> None:
        user = await self.repos.users.get_by_email(email)
        if user is None or not user.is_active:
            logger.info("password_reset_unknown_account email=%s", redact_email(email))
            return
        expires_at = _now() + timedelta(minutes=self.config.reset_token_expire_minutes)
        record = await self.repos.password_resets.create(str(user.id), expires_at)
        token = self.tokens.sign_purpose_token(str(user.id), "reset", {"rid": str(record.id)})
        await self._deliver(
            user.email,
            "Reset your password",
            "Use this token to reset your password. It expires in "
            f"{self.config.reset_token_expire_minutes} minutes.\n\n{token}\n",
        )
        await self.audit.record("password.reset_requested", user_id=str(user.id))

    async def reset_password(self, token: str, new_password: str) -> None:
        payload = self.tokens.verify_purpose_token(token, "reset")
        user_id = str(payload["sub"])
        record_id = payload.get("rid")
        if not record_id:
            raise Unauthorized()
        record = await self.repos.password_resets.get_by_id(str(record_id))
        if (
            record is None
            or str(record.user_id) != user_id
            or record.used_at is not None
            or _is_expired(record.expires_at)
        ):
            raise Unauthorized()
        user = await self.repos.users.get_by_id(user_id)
        if user is None:
            raise Unauthorized()
        if not await self.repos.password_resets.mark_used(str(record.id)):
            raise Unauthorized()
        await self.repos.users.update(user_id, password_hash=get_password_hash(new_password))
        revoked = await self.repos.sessions.delete_all_for_user(user_id)
        await self.audit.record("password.reset", user_id=user_id, sessions_revoked=revoked)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def _mark_verified(self, user: User) -> None:
        await self.repos.users.update(str(user.id), is_verified=True, email_verified_at=_now())
        await self.audit.record("email.verified", user_id=str(user.id))

    async def request_email_verification(self, email: str) -> None:
        user = await self.repos.users.get_by_email(email)
        if user is None or user.email_verified_at is not None:
            return
        otp = generate_numeric_code(self.config.email_otp_length)
        expires_at = _now() + timedelta(minutes=self.config.email_otp_expire_minutes)
        await self.repos.email_verifications.upsert_for_email(user.email, hash_opaque(otp), expires_at)
        link_token = self.tokens.sign_purpose_token(str(user.id), "verify")
        await self._deliver(
            user.email,
            "Verify your email",
            f"Your verification code is {otp}. It expires in "
            f"{self.config.email_otp_expire_minutes} minutes.\n\n"
            f"Or confirm with this token:\n{link_token}\n",
        )
        await self.audit.record("email.verification_requested", user_id=str(user.id))

    async def verify_email(self, token: str) -> None:
        payload = self.tokens.verify_purpose_token(token, "verify")
        user = await self.repos.users.get_by_id(str(payload["sub"]))
        if user is None:
            raise Unauthorized()
        await self._mark_verified(user)

    async def verify_email_otp(self, email: str, otp: str) -> None:
        record = await self.repos.email_verifications.find_active_by_email(
            email, max_attempts=self.config.email_otp_max_attempts
        )
        if record is None:
            raise Unauthorized()
        if not opaque_equals((otp or "").strip(), record.code_hash):
            await self.repos.email_verifications.increment_attempts(str(record.id))
            raise Unauthorized()
        if not await self.repos.email_verifications.mark_used(str(record.id)):
            raise Unauthorized()
        user = await self.repos.users.get_by_email(email)
        if user is None:
            raise Unauthorized()
        await self._mark_verified(user)

    # ------------------------------------------------------------------
    # Social accounts
    # ------------------------------------------------------------------

    async def sign_in_with_social(
        self,
        profile: SocialProfile,
        *,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> TokenPair:
        # No implicit linking by email: only an explicit link signs in.
        link = await self.repos.social_accounts.find_by_provider_account(
            profile.provider, profile.provider_user_id
        )
        if link is None:
            await self.audit.record("social.login_failure", ip=ip, provider=profile.provider)
            raise Unauthorized()
        user = await self.repos.users.get_by_id(str(link.user_id))
        if user is None or not user.is_active:
            raise Unauthorized()
        pair = await self._start_session(user, user_agent=user_agent, ip=ip)
        await self.audit.record(
            "social.login", user_id=str(user.id), session_id=pair.session_id, ip=ip, provider=profile.provider
        )
        return pair

    async def link_social_account(self, user_id: str, provider: str, provider_user_id: str) -> SocialAccount:
        existing = await self.repos.social_accounts.find_by_provider_account(provider, provider_user_id)
        if existing is not None:
            if str(existing.user_id) == str(user_id):
                return existing
            raise Conflict("Social account already linked to another user", code="social_account_in_use")
        account = await self.repos.social_accounts.link(user_id, provider, provider_user_id)
        await self.audit.record("social.linked", user_id=user_id, provider=provider)
        return account

    async def unlink_social_account(self, user_id: str, provider: str) -> None:
        user = await self.repos.users.get_by_id(user_id)
        if user is None:
            raise Unauthorized()
        accounts = await self.repos.social_accounts.list_by_user(user_id)
        if not any(account.provider == provider for account in accounts):
            raise BadRequest("Provider not linked", code="provider_not_linked")
        remaining = [account for account in accounts if account.provider != provider]
        if not user.password_hash and not remaining:
            raise BadRequest("Cannot remove the last sign-in method", code="last_auth_method")
        await self.repos.social_accounts.unlink(user_id, provider)
        await self.audit.record("social.unlinked", user_id=user_id, provider=provider)


__all__ = ["AuthService", "SignInResult"]
