from __future__ import annotations

from typing import Any

from bsaas_auth.services.errors import FeatureUnavailable

_MESSAGE = "WebAuthn is not configured on this deployment"


class UnconfiguredWebAuthn:
    """Default WebAuthnPort until the host installs a real adapter on ``app.state.webauthn_port``."""

    async def start_registration(self, user_id: str, username: str) -> dict[str, Any]:
        raise FeatureUnavailable(_MESSAGE)

    async def finish_registration(self, user_id: str, response: dict[str, Any]) -> None:
        raise FeatureUnavailable(_MESSAGE)

    async def start_authentication(self, user_id: str) -> dict[str, Any]:
        raise FeatureUnavailable(_MESSAGE)

    async def finish_authentication(self, user_id: str, response: dict[str, Any]) -> None:
        raise FeatureUnavailable(_MESSAGE)

    async def has_credentials(self, user_id: str) -> bool:
        raise FeatureUnavailable(_MESSAGE)


__all__ = ["UnconfiguredWebAuthn"]
