from __future__ import annotations

import json
import logging
import secrets
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from bsaas_auth.core.settings import Settings, settings
from bsaas_auth.services.errors import BadRequest, FeatureUnavailable, Unauthorized
from bsaas_auth.services.ports import OAuthCallback, OAuthStart, SocialProfile

logger = logging.getLogger(__name__)

OAUTH_PROVIDERS: dict[str, dict[str, str]] = {
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email profile",
    },
    "github": {
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "scope": "read:user user:email",
    },
    "microsoft": {
        "auth_url": "https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        "token_url": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
        "userinfo_url": "https://graph.microsoft.com/v1.0/me",
        "scope": "openid email profile User.Read",
    },
}

_STATE_PREFIX = "auth:oauth:state:"


def parse_userinfo(provider: str, userinfo: dict[str, Any]) -> SocialProfile:
    if provider == "google":
        uid, email, name = userinfo.get("id") or userinfo.get("sub"), userinfo.get("email"), userinfo.get("name")
    elif provider == "github":
        uid, email, name = userinfo.get("id"), userinfo.get("email"), userinfo.get("name") or userinfo.get("login")
    else:
        uid = userinfo.get("id")
        email = userinfo.get("mail") or userinfo.get("userPrincipalName")
        name = userinfo.get("displayName")
    if uid in (None, ""):
        raise Unauthorized()
    return SocialProfile(provider=provider, provider_user_id=str(uid), email=email, name=name)


class HttpxOAuthClient:
    """OAuthPort for the authorization-code flow.

    State values live in Redis with a TTL and are consumed with GETDEL, so a
    callback can use each one once. The stored payload names the provider and
    the signed-in user who started the flow, if any.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.redis = redis
        self.config = config or settings
        self.transport = transport

    def _credentials(self, provider: str) -> tuple[Optional[str], Optional[str]]:
        if provider not in OAUTH_PROVIDERS:
            raise BadRequest(f"Unsupported OAuth provider: {provider}", code="unsupported_provider")
        client_id = getattr(self.config, f"oauth_{provider}_client_id", None)
        client_secret = getattr(self.config, f"oauth_{provider}_client_secret", None)
        return client_id, client_secret

    def _redirect_uri(self, provider: str) -> str:
        base = self.config.oauth_redirect_uri
        if not base:
            logger.error("oauth_redirect_uri_missing provider=%s", provider)
            raise FeatureUnavailable(f"OAuth provider {provider} is not configured")
        return base.replace("{provider}", provider)

    async def start(self, provider: str, *, initiator_user_id: Optional[str] = None) -> OAuthStart:
        client_id, _ = self._credentials(provider)
        if not client_id:
            logger.warning("oauth_not_configured provider=%s", provider)
            raise FeatureUnavailable(f"OAuth provider {provider} is not configured")
        redirect_uri = self._redirect_uri(provider)
        state = secrets.token_urlsafe(32)
        await self.redis.set(
            f"{_STATE_PREFIX}{state}",
            json.dumps({"provider": provider, "initiator": initiator_user_id}),
            ex=self.config.oauth_state_ttl_seconds,
        )
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": OAUTH_PROVIDERS[provider]["scope"],
            "state": state,
        }
        authorization_url = f"{OAUTH_PROVIDERS[provider]['auth_url']}?{urlencode(params)}"
        return OAuthStart(authorization_url=authorization_url, state=state)

    async def _consume_state(self, provider: str, state: Optional[str]) -> Optional[str]:
        if not state:
            raise Unauthorized()
        try:
            raw = await self.redis.getdel(f"{_STATE_PREFIX}{state}")
        except RedisError as exc:
            logger.error("oauth_state_lookup_failed provider=%s", provider)
            raise Unauthorized() from exc
        if not raw:
            raise Unauthorized()
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise Unauthorized() from exc
        if not isinstance(payload, dict) or payload.get("provider") != provider:
            raise Unauthorized()
        return payload.get("initiator")

    async def exchange_code(self, provider: str, code: str, state: Optional[str]) -> OAuthCallback:
        client_id, client_secret = self._credentials(provider)
        if not client_id or not client_secret:
            raise FeatureUnavailable(f"OAuth provider {provider} is not configured")
        initiator_user_id = await self._consume_state(provider, state)
        provider_config = OAUTH_PROVIDERS[provider]
        try:
            async with httpx.AsyncClient(
                timeout=30.0, follow_redirects=False, transport=self.transport
            ) as client:
                token_response = await client.post(
                    provider_config["token_url"],
                    data={
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "code": code,
                        "redirect_uri": self._redirect_uri(provider),
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                access_token = token_response.json().get("access_token")
                if not access_token:
                    logger.error("oauth_no_access_token provider=%s", provider)
                    raise Unauthorized()

                headers = {"Authorization": f"Bearer {access_token}"}
                if provider == "github":
                    headers["Accept"] = "application/vnd.github+json"
                userinfo_response = await client.get(provider_config["userinfo_url"], headers=headers)
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "oauth_exchange_http_error provider=%s status=%s",
                provider,
                exc.response.status_code,
            )
            raise Unauthorized() from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("oauth_exchange_error provider=%s error=%s", provider, exc.__class__.__name__)
            raise Unauthorized() from exc
        if not isinstance(userinfo, dict):
            raise Unauthorized()
        profile = parse_userinfo(provider, userinfo)
        logger.info("oauth_exchange_success provider=%s", provider)
        return OAuthCallback(profile=profile, initiator_user_id=initiator_user_id)


__all__ = ["HttpxOAuthClient", "OAUTH_PROVIDERS", "parse_userinfo"]
