"""Transport-level cookies for auth results.

Access and refresh tokens travel in HttpOnly cookies; a readable CSRF cookie
backs the double-submit check in ``api.deps.csrf_protect``. Clearing always uses
the same path/domain the cookie was set with, otherwise browsers keep it.
"""

from __future__ import annotations

import hmac
import secrets
from typing import Optional

from fastapi import Request, Response

from bsaas_auth.core.settings import Settings, settings
from bsaas_auth.services.errors import BadRequest


def _base_options(config: Settings) -> dict:
    return {
        "domain": config.auth_cookie_domain,
        "secure": config.auth_cookie_secure,
        "samesite": config.auth_cookie_samesite,
    }


def new_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def issue_csrf_cookie(response: Response, config: Settings | None = None) -> str:
    config = config or settings
    token = new_csrf_token()
    response.set_cookie(
        config.csrf_cookie_name,
        token,
        path="/",
        httponly=False,
        **_base_options(config),
    )
    return token


def set_auth_cookies(
    response: Response,
    access_token: str,
    refresh_token: Optional[str] = None,
    config: Settings | None = None,
) -> None:
    config = config or settings
    response.set_cookie(
        config.access_cookie_name,
        access_token,
        max_age=config.access_token_expire_minutes * 60,
        path="/",
        httponly=True,
        **_base_options(config),
    )
    if refresh_token:
        response.set_cookie(
            config.refresh_cookie_name,
            refresh_token,
            max_age=config.refresh_token_expire_minutes * 60,
            path=config.refresh_cookie_path,
            httponly=True,
            **_base_options(config),
        )
    issue_csrf_cookie(response, config)


def clear_auth_cookies(response: Response, config: Settings | None = None) -> None:
    config = config or settings
    response.delete_cookie(config.access_cookie_name, path="/", httponly=True, **_base_options(config))
    response.delete_cookie(
        config.refresh_cookie_name,
        path=config.refresh_cookie_path,
        httponly=True,
        **_base_options(config),
    )
    response.delete_cookie(
        config.legacy_refresh_cookie_name,
        path=config.refresh_cookie_path,
        httponly=True,
        **_base_options(config),
    )


def resolve_refresh_token(
    request: Request,
    body_token: Optional[str] = None,
    config: Settings | None = None,
) -> str:
    """Named cookie, then the legacy cookie, then the body field."""
    config = config or settings
    token = (
        request.cookies.get(config.refresh_cookie_name)
        or request.cookies.get(config.legacy_refresh_cookie_name)
        or body_token
    )
    if not token:
        raise BadRequest("Refresh token missing", code="refresh_token_missing")
    return token


def set_oauth_state_cookie(response: Response, state: str, config: Settings | None = None) -> None:
    config = config or settings
    # Lax at most: the provider redirect back is a cross-site top-level GET.
    response.set_cookie(
        config.oauth_state_cookie_name,
        state,
        max_age=config.oauth_state_ttl_seconds,
        path=config.oauth_state_cookie_path,
        httponly=True,
        domain=config.auth_cookie_domain,
        secure=config.auth_cookie_secure,
        samesite="none" if config.auth_cookie_samesite == "none" else "lax",
    )


def clear_oauth_state_cookie(response: Response, config: Settings | None = None) -> None:
    config = config or settings
    response.delete_cookie(
        config.oauth_state_cookie_name,
        path=config.oauth_state_cookie_path,
        httponly=True,
        **_base_options(config),
    )


def oauth_state_matches(request: Request, state: Optional[str], config: Settings | None = None) -> bool:
    """The callback state must equal the one this browser was given at start."""
    config = config or settings
    expected = request.cookies.get(config.oauth_state_cookie_name)
    if not expected or not state:
        return False
    return hmac.compare_digest(expected, state)


def read_access_cookie(request: Request, config: Settings | None = None) -> Optional[str]:
    config = config or settings
    return request.cookies.get(config.access_cookie_name) or None


__all__ = [
    "clear_auth_cookies",
    "clear_oauth_state_cookie",
    "issue_csrf_cookie",
    "new_csrf_token",
    "oauth_state_matches",
    "read_access_cookie",
    "resolve_refresh_token",
    "set_auth_cookies",
    "set_oauth_state_cookie",
]
