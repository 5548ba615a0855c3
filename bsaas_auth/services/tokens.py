from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Literal, Optional, Sequence

from bsaas_auth.core.security import TokenError, decode_token, encode_token, new_token_id
from bsaas_auth.core.settings import Settings, settings
from bsaas_auth.models import User
from bsaas_auth.repositories.base import RefreshTokenRepository, UserRepository
from bsaas_auth.services.audit import AuditService
from bsaas_auth.services.errors import Unauthorized

logger = logging.getLogger(__name__)

Audience = Literal["totp", "reset", "verify"]
PURPOSE_AUDIENCES: tuple[str, ...] = ("totp", "reset", "verify")


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str
    session_id: str


class TokenIssuer:
    """Signs and verifies access, refresh and single-purpose tokens."""

    def __init__(
        self,
        refresh_tokens: RefreshTokenRepository,
        users: UserRepository,
        *,
        audit: Optional[AuditService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.refresh_tokens = refresh_tokens
        self.users = users
        self.audit = audit or AuditService()
        self.config = config or settings

    def _lifetime(self, audience: str) -> timedelta:
        minutes = {
            "totp": self.config.totp_token_expire_minutes,
            "reset": self.config.reset_token_expire_minutes,
            "verify": self.config.verify_token_expire_minutes,
        }[audience]
        return timedelta(minutes=minutes)

    def create_access_token(self, user: User, role_names: Sequence[str], session_id: str) -> str:
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "sessionId": session_id,
            "roles": list(role_names),
            "type": "access",
        }
        return encode_token(
            claims,
            "access",
            timedelta(minutes=self.config.access_token_expire_minutes),
            self.config,
        )

    async def issue_pair(
        self,
        user: User,
        role_names: Sequence[str],
        session_id: str,
        rotated_from: Optional[str] = None,
    ) -> TokenPair:
        access_token = self.create_access_token(user, role_names, session_id)
        jti = new_token_id()
        # The row must exist before the token leaves the process.
        await self.refresh_tokens.create(jti, str(user.id), session_id, rotated_from)
        refresh_token = encode_token(
            {"sub": str(user.id), "jti": jti, "type": "refresh"},
            "refresh",
            timedelta(minutes=self.config.refresh_token_expire_minutes),
            self.config,
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token, session_id=session_id)

    def sign_purpose_token(
        self,
        user_id: str,
        audience: Audience,
        extra_claims: Optional[dict[str, Any]] = None,
    ) -> str:
        if audience not in PURPOSE_AUDIENCES:
            raise ValueError(f"Unknown token audience: {audience}")
        claims: dict[str, Any] = dict(extra_claims or {})
        claims.update({"sub": str(user_id), "aud": audience, "type": audience, "jti": new_token_id()})
        return encode_token(claims, audience, self._lifetime(audience), self.config)

    def verify_purpose_token(self, token: str, audience: Audience) -> dict[str, Any]:
        try:
            return decode_token(token, audience, expected_type=audience, audience=audience, config=self.config)
        except TokenError as exc:
            raise Unauthorized() from exc

    def decode_access(self, token: str) -> dict[str, Any]:
        try:
            payload = decode_token(token, "access", expected_type="access", config=self.config)
        except TokenError as exc:
            raise Unauthorized("Invalid or expired token") from exc
        if not payload.get("sessionId"):
            raise Unauthorized("Invalid or expired token")
        return payload

    def decode_refresh(self, token: str) -> dict[str, Any]:
        try:
            payload = decode_token(token, "refresh", expected_type="refresh", config=self.config)
        except TokenError as exc:
            raise Unauthorized() from exc
        if not payload.get("jti"):
            raise Unauthorized()
        return payload

    async def rotate(self, token: str) -> tuple[TokenPair, User]:
        """Consume a refresh token and issue a new pair bound to the same session.

        The revoke is conditional on the token still being active, so of two
        concurrent rotations of one token only one succeeds.
        """
        payload = self.decode_refresh(token)
        jti = payload["jti"]
        stored = await self.refresh_tokens.get_by_jti(jti)
        if stored is None or str(stored.user_id) != str(payload["sub"]):
            raise Unauthorized()
        if stored.revoked_at is not None:
            await self.audit.record(
                "token.refresh_reuse", user_id=str(stored.user_id), session_id=str(stored.session_id)
            )
            raise Unauthorized()

        user = await self.users.get_by_id(str(payload["sub"]))
        if user is None or not user.is_active:
            raise Unauthorized()

        if not await self.refresh_tokens.revoke(jti):
            await self.audit.record(
                "token.refresh_reuse", user_id=str(user.id), session_id=str(stored.session_id)
            )
            raise Unauthorized()

        role_names = await self.users.get_role_names(str(user.id))
        pair = await self.issue_pair(user, role_names, str(stored.session_id), rotated_from=jti)
        return pair, user


__all__ = ["Audience", "PURPOSE_AUDIENCES", "TokenIssuer", "TokenPair"]
