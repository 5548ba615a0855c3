"""Pluggable collaborators of the auth core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass(frozen=True, slots=True)
class SocialProfile:
    provider: str
    provider_user_id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OAuthStart:
    authorization_url: str
    state: str


@dataclass(frozen=True, slots=True)
class OAuthCallback:
    """Provider profile plus the user who started the flow (None for a sign-in)."""

    profile: SocialProfile
    initiator_user_id: Optional[str] = None


class EmailDeliveryError(RuntimeError):
    pass


class TotpPort(Protocol):
    async def verify_token(self, user_id: str, code: str) -> bool: ...


class EmailPort(Protocol):
    async def send_mail(self, to: str, subject: str, body: str) -> None:
        """Raises EmailDeliveryError when the message could not be handed off."""
        ...


class WebAuthnPort(Protocol):
    async def start_registration(self, user_id: str, username: str) -> dict[str, Any]: ...

    async def finish_registration(self, user_id: str, response: dict[str, Any]) -> None: ...

    async def start_authentication(self, user_id: str) -> dict[str, Any]: ...

    async def finish_authentication(self, user_id: str, response: dict[str, Any]) -> None:
        """Raises when the assertion does not verify."""
        ...

    async def has_credentials(self, user_id: str) -> bool: ...


class OAuthPort(Protocol):
    async def start(self, provider: str, *, initiator_user_id: Optional[str] = None) -> OAuthStart: ...

    async def exchange_code(self, provider: str, code: str, state: Optional[str]) -> OAuthCallback:
        """Consumes the state; raises Unauthorized when it is unknown or bound elsewhere."""
        ...


class RecoveryCodesPort(Protocol):
    async def generate(self, user_id: str, count: int = 10) -> list[str]: ...

    async def verify_and_consume(self, user_id: str, code: str) -> bool: ...


__all__ = [
    "EmailDeliveryError",
    "EmailPort",
    "OAuthCallback",
    "OAuthPort",
    "OAuthStart",
    "RecoveryCodesPort",
    "SocialProfile",
    "TotpPort",
    "WebAuthnPort",
]
