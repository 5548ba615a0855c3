from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bsaas_auth.core.context import set_user_id
from bsaas_auth.core.cookies import read_access_cookie
from bsaas_auth.core.permissions import UserRole, has_any_role
from bsaas_auth.core.security import TokenError, decode_token
from bsaas_auth.core.settings import settings
from bsaas_auth.db.session import get_db
from bsaas_auth.repositories import Repositories, build_repositories
from bsaas_auth.services.audit import AuditService
from bsaas_auth.services.auth import AuthService
from bsaas_auth.services.email import SmtpEmailSender
from bsaas_auth.services.errors import FeatureUnavailable, Forbidden, Unauthorized
from bsaas_auth.services.mfa import RecoveryCodeService, TotpService
from bsaas_auth.services.oauth import HttpxOAuthClient
from bsaas_auth.services.ports import EmailPort, OAuthPort, RecoveryCodesPort, WebAuthnPort
from bsaas_auth.services.webauthn import UnconfiguredWebAuthn
from bsaas_auth.utils.redis_client import get_redis_client

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
ALT_CSRF_HEADER = "X-CSRF-Token"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class Principal:
    user_id: str
    email: str
    session_id: str
    roles: list[str] = field(default_factory=list)
    via_cookie: bool = False


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def get_repositories(db: AsyncSession = Depends(get_db)) -> Repositories:
    return build_repositories(db)


async def get_audit_service(repos: Repositories = Depends(get_repositories)) -> AuditService:
    return AuditService(repos.audit_logs)


def get_email_port(request: Request) -> EmailPort:
    return getattr(request.app.state, "email_port", None) or SmtpEmailSender()


async def get_totp_service(
    repos: Repositories = Depends(get_repositories),
    audit: AuditService = Depends(get_audit_service),
) -> TotpService:
    return TotpService(repos.totp, audit=audit)


async def get_auth_service(
    repos: Repositories = Depends(get_repositories),
    audit: AuditService = Depends(get_audit_service),
    totp: TotpService = Depends(get_totp_service),
    email: EmailPort = Depends(get_email_port),
) -> AuthService:
    return AuthService(repos, totp=totp, email=email, audit=audit)


async def get_recovery_port(
    request: Request,
    repos: Repositories = Depends(get_repositories),
    audit: AuditService = Depends(get_audit_service),
) -> RecoveryCodesPort:
    port = getattr(request.app.state, "recovery_port", None)
    return port or RecoveryCodeService(repos.recovery_codes, audit=audit)


def get_webauthn_port(request: Request) -> WebAuthnPort:
    return getattr(request.app.state, "webauthn_port", None) or UnconfiguredWebAuthn()


def get_oauth_port(request: Request) -> OAuthPort:
    port = getattr(request.app.state, "oauth_port", None)
    return port or HttpxOAuthClient(get_redis_client())


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def _extract_access_token(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> tuple[Optional[str], bool]:
    cookie_token = read_access_cookie(request)
    if cookie_token:
        return cookie_token, True
    if credentials and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials, False
    return None, False


def _principal_from_token(token: str, via_cookie: bool) -> Principal:
    try:
        payload = decode_token(token, "access", expected_type="access")
    except TokenError as exc:
        raise Unauthorized("Invalid or expired token") from exc
    session_id = payload.get("sessionId")
    if not session_id:
        raise Unauthorized("Invalid or expired token")
    roles = payload.get("roles") or []
    return Principal(
        user_id=str(payload["sub"]),
        email=str(payload.get("email") or ""),
        session_id=str(session_id),
        roles=[str(role) for role in roles],
        via_cookie=via_cookie,
    )


async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """JWT guard: access cookie first, then ``Authorization: Bearer``."""
    token, via_cookie = _extract_access_token(request, credentials)
    if not token:
        raise Unauthorized("Not authenticated")
    principal = _principal_from_token(token, via_cookie)
    request.state.principal = principal
    set_user_id(principal.user_id)
    return principal


async def get_optional_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Principal]:
    token, via_cookie = _extract_access_token(request, credentials)
    if not token:
        return None
    try:
        principal = _principal_from_token(token, via_cookie)
    except Unauthorized:
        return None
    request.state.principal = principal
    set_user_id(principal.user_id)
    return principal


async def csrf_protect(request: Request) -> None:
    """Double-submit check for state-changing requests.

    Enforced whenever the browser holds our cookies: the request carries the
    access cookie or a CSRF cookie. Bearer-only clients are not subject to it.
    """
    if request.method.upper() in SAFE_METHODS:
        return
    cookie = request.cookies.get(settings.csrf_cookie_name)
    if not cookie and not read_access_cookie(request):
        return
    header = request.headers.get(settings.csrf_header_name) or request.headers.get(ALT_CSRF_HEADER)
    if not cookie or not header or not hmac.compare_digest(header, cookie):
        raise Forbidden("CSRF token missing or invalid", code="csrf_failed")


def require_roles(*roles: UserRole | str):
    """Role guard; higher roles include lower ones (admin > owner > staff > customer)."""

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not has_any_role(principal.roles, roles):
            raise Forbidden("Insufficient role")
        return principal

    return dependency


async def require_strong_auth(
    principal: Principal = Depends(get_current_principal),
    repos: Repositories = Depends(get_repositories),
    webauthn: WebAuthnPort = Depends(get_webauthn_port),
) -> Principal:
    """Admins must hold a confirmed TOTP credential or a registered passkey; other roles pass."""
    if UserRole.ADMIN.value not in {role.lower() for role in principal.roles}:
        return principal
    credential = await repos.totp.get_by_user_id(principal.user_id)
    if credential is not None and credential.verified:
        return principal
    try:
        has_passkey = await webauthn.has_credentials(principal.user_id)
    except FeatureUnavailable:
        has_passkey = False
    if has_passkey:
        return principal
    raise Forbidden("Administrators must enable TOTP or a passkey", code="strong_auth_required")


__all__ = [
    "Principal",
    "client_ip",
    "csrf_protect",
    "get_auth_service",
    "get_current_principal",
    "get_oauth_port",
    "get_optional_principal",
    "get_recovery_port",
    "get_repositories",
    "get_totp_service",
    "get_webauthn_port",
    "require_roles",
    "require_strong_auth",
    "user_agent",
]
