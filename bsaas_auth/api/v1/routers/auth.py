from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from bsaas_auth.api import deps
from bsaas_auth.core.cookies import (
    clear_auth_cookies,
    clear_oauth_state_cookie,
    oauth_state_matches,
    resolve_refresh_token,
    set_auth_cookies,
    set_oauth_state_cookie,
)
from bsaas_auth.core.limiter import limiter
from bsaas_auth.core.settings import settings
from bsaas_auth.schemas.auth import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    RecoveryVerifyRequest,
    RefreshRequest,
    ResetPasswordRequest,
    RevokeSessionRequest,
    SessionOut,
    SuccessResponse,
    TotpConfirmRequest,
    TotpEnrollResponse,
    TotpLoginRequest,
    UserOut,
    VerifyEmailRequest,
    WebAuthnFinishRequest,
    WebAuthnLoginStartRequest,
    WebAuthnRegisterStartRequest,
)
from bsaas_auth.services.auth import AuthService
from bsaas_auth.services.errors import BadRequest, Unauthorized
from bsaas_auth.services.mfa import TotpService
from bsaas_auth.services.ports import OAuthPort, RecoveryCodesPort, WebAuthnPort

router = APIRouter(prefix="/auth", tags=["auth"])

CsrfGuard = Depends(deps.csrf_protect)


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(lambda: settings.login_rate_limit)
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(deps.get_auth_service),
) -> LoginResponse:
    result = await service.sign_in(
        credentials.email,
        credentials.password,
        user_agent=deps.user_agent(request),
        ip=deps.client_ip(request),
    )
    if result.totp_required:
        return LoginResponse(totp_required=True, temp_token=result.temp_token)
    set_auth_cookies(response, result.access_token, result.refresh_token)
    return LoginResponse(totp_required=False)


@router.post("/login/totp")
@limiter.limit(lambda: settings.login_rate_limit)
async def login_totp(
    payload: TotpLoginRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(deps.get_auth_service),
) -> dict:
    pair = await service.sign_in_with_totp(
        payload.temp_token,
        payload.totp_code,
        user_agent=deps.user_agent(request),
        ip=deps.client_ip(request),
    )
    set_auth_cookies(response, pair.access_token, pair.refresh_token)
    return {}


@router.post("/refresh")
@limiter.limit(lambda: settings.refresh_rate_limit)
async def refresh(
    request: Request,
    response: Response,
    payload: Optional[RefreshRequest] = None,
    service: AuthService = Depends(deps.get_auth_service),
) -> dict:
    token = resolve_refresh_token(request, payload.refresh_token if payload else None)
    pair = await service.refresh_token(token)
    set_auth_cookies(response, pair.access_token, pair.refresh_token)
    return {}


@router.post("/logout", response_model=SuccessResponse, dependencies=[CsrfGuard])
async def logout(
    response: Response,
    principal: deps.Principal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    await service.logout(principal.session_id, user_id=principal.user_id)
    clear_auth_cookies(response)
    return SuccessResponse()


@router.post("/register", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def register_placeholder() -> SuccessResponse:
    # Accepted but not implemented; account creation happens out of band.
    return SuccessResponse()


@router.get("/me", response_model=UserOut)
async def me(
    principal: deps.Principal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
) -> UserOut:
    user = await service.get_user(principal.user_id)
    if user is None or not user.is_active:
        raise Unauthorized("Invalid or expired token")
    return UserOut(
        id=str(user.id),
        email=user.email,
        name=user.name,
        phone=user.phone,
        roles=await service.get_role_names(str(user.id)),
        is_verified=bool(user.is_verified),
        email_verified_at=user.email_verified_at,
        last_login_at=user.last_login_at,
        session_id=principal.session_id,
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/sessions", response_model=list[SessionOut])
async def list_sessions(
    principal: deps.Principal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
) -> list[SessionOut]:
    sessions = await service.list_sessions(principal.user_id)
    return [
        SessionOut(
            id=str(session.id),
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            last_seen_at=session.last_seen_at,
            created_at=session.created_at,
            current=str(session.id) == principal.session_id,
        )
        for session in sessions
    ]


@router.post("/sessions/revoke/{session_id}", response_model=SuccessResponse, dependencies=[CsrfGuard])
async def revoke_session(
    session_id: str,
    principal: deps.Principal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    await service.revoke_session(principal.user_id, session_id)
    return SuccessResponse()


@router.post("/sessions/revoke", response_model=SuccessResponse, dependencies=[CsrfGuard])
async def revoke_session_body(
    payload: RevokeSessionRequest,
    principal: deps.Principal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    await service.revoke_session(principal.user_id, payload.id)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Password reset and email verification
# ---------------------------------------------------------------------------


@router.post("/password/forgot", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def forgot_password(
    payload: EmailRequest,
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    await service.request_password_reset(payload.email)
    return SuccessResponse()


@router.post("/password/reset", response_model=SuccessResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    await service.reset_password(payload.token, payload.new_password)
    return SuccessResponse()


@router.post("/email/send-verification", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
@router.post("/email/verify/request", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def request_email_verification(
    payload: EmailRequest,
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    await service.request_email_verification(payload.email)
    return SuccessResponse()


@router.post("/email/verify", response_model=SuccessResponse)
@router.post("/email/verify/confirm", response_model=SuccessResponse)
async def verify_email(
    payload: VerifyEmailRequest,
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    if payload.token:
        await service.verify_email(payload.token)
    elif payload.email and payload.otp:
        await service.verify_email_otp(payload.email, payload.otp)
    else:
        raise BadRequest("Provide either token or email and otp", code="verification_payload_invalid")
    return SuccessResponse()


# ---------------------------------------------------------------------------
# TOTP enrollment and recovery codes
# ---------------------------------------------------------------------------


@router.post("/totp/enroll", response_model=TotpEnrollResponse, dependencies=[CsrfGuard])
async def totp_enroll(
    principal: deps.Principal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
    totp: TotpService = Depends(deps.get_totp_service),
) -> TotpEnrollResponse:
    user = await service.get_user(principal.user_id)
    if user is None:
        raise Unauthorized("Invalid or expired token")
    enrollment = await totp.enroll(user)
    return TotpEnrollResponse(
        otpauth_url=enrollment.otpauth_url,
        qr_code_data_url=enrollment.qr_code_data_url,
    )


@router.post("/totp/confirm", response_model=SuccessResponse, dependencies=[CsrfGuard])
async def totp_confirm(
    payload: TotpConfirmRequest,
    principal: deps.Principal = Depends(deps.get_current_principal),
    totp: TotpService = Depends(deps.get_totp_service),
) -> SuccessResponse:
    if not await totp.confirm(principal.user_id, payload.code):
        raise Unauthorized()
    return SuccessResponse()


@router.post("/recovery/generate", response_model=list[str], dependencies=[CsrfGuard])
async def generate_recovery_codes(
    principal: deps.Principal = Depends(deps.get_current_principal),
    recovery: RecoveryCodesPort = Depends(deps.get_recovery_port),
) -> list[str]:
    return await recovery.generate(principal.user_id, settings.recovery_code_count)


@router.post("/recovery/verify", response_model=SuccessResponse, dependencies=[CsrfGuard])
async def verify_recovery_code(
    payload: RecoveryVerifyRequest,
    principal: deps.Principal = Depends(deps.get_current_principal),
    recovery: RecoveryCodesPort = Depends(deps.get_recovery_port),
) -> SuccessResponse:
    if not await recovery.verify_and_consume(principal.user_id, payload.code):
        raise Unauthorized()
    return SuccessResponse()


# ---------------------------------------------------------------------------
# WebAuthn
# ---------------------------------------------------------------------------


async def _resolve_webauthn_user(
    principal: Optional[deps.Principal],
    email: Optional[str],
    service: AuthService,
    webauthn: WebAuthnPort,
) -> str:
    if principal is not None:
        return principal.user_id
    # Unknown emails and users without a passkey get the same answer.
    if email:
        user_id = await service.resolve_user_id_by_email(email)
        if user_id and await webauthn.has_credentials(user_id):
            return user_id
    raise BadRequest("A signed-in user or a known email is required", code="webauthn_user_required")


@router.post("/webauthn/register/start", dependencies=[CsrfGuard])
@limiter.limit(lambda: settings.webauthn_rate_limit)
async def webauthn_register_start(
    request: Request,
    payload: Optional[WebAuthnRegisterStartRequest] = None,
    principal: deps.Principal = Depends(deps.get_current_principal),
    webauthn: WebAuthnPort = Depends(deps.get_webauthn_port),
) -> dict:
    username = (payload.username if payload else None) or principal.email
    return await webauthn.start_registration(principal.user_id, username)


@router.post("/webauthn/register/finish", response_model=SuccessResponse, dependencies=[CsrfGuard])
async def webauthn_register_finish(
    payload: WebAuthnFinishRequest,
    principal: deps.Principal = Depends(deps.get_current_principal),
    webauthn: WebAuthnPort = Depends(deps.get_webauthn_port),
) -> SuccessResponse:
    await webauthn.finish_registration(principal.user_id, payload.response)
    return SuccessResponse()


@router.post("/webauthn/login/start")
@limiter.limit(lambda: settings.webauthn_rate_limit)
async def webauthn_login_start(
    request: Request,
    payload: Optional[WebAuthnLoginStartRequest] = None,
    principal: Optional[deps.Principal] = Depends(deps.get_optional_principal),
    service: AuthService = Depends(deps.get_auth_service),
    webauthn: WebAuthnPort = Depends(deps.get_webauthn_port),
) -> dict:
    user_id = await _resolve_webauthn_user(principal, payload.email if payload else None, service, webauthn)
    return await webauthn.start_authentication(user_id)


@router.post("/webauthn/login/finish")
async def webauthn_login_finish(
    payload: WebAuthnFinishRequest,
    request: Request,
    response: Response,
    principal: Optional[deps.Principal] = Depends(deps.get_optional_principal),
    service: AuthService = Depends(deps.get_auth_service),
    webauthn: WebAuthnPort = Depends(deps.get_webauthn_port),
) -> dict:
    user_id = await _resolve_webauthn_user(principal, payload.email, service, webauthn)
    await webauthn.finish_authentication(user_id, payload.response)
    pair = await service.issue_tokens_for_user(
        user_id,
        user_agent=deps.user_agent(request),
        ip=deps.client_ip(request),
        event="webauthn.login",
    )
    set_auth_cookies(response, pair.access_token, pair.refresh_token)
    return {}


# ---------------------------------------------------------------------------
# OAuth social sign-in
# ---------------------------------------------------------------------------


@router.get("/oauth/{provider}/start", status_code=status.HTTP_302_FOUND)
async def oauth_start(
    provider: str,
    principal: Optional[deps.Principal] = Depends(deps.get_optional_principal),
    oauth: OAuthPort = Depends(deps.get_oauth_port),
) -> RedirectResponse:
    start = await oauth.start(provider, initiator_user_id=principal.user_id if principal else None)
    redirect = RedirectResponse(start.authorization_url, status_code=status.HTTP_302_FOUND)
    set_oauth_state_cookie(redirect, start.state)
    return redirect


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    request: Request,
    response: Response,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    principal: Optional[deps.Principal] = Depends(deps.get_optional_principal),
    service: AuthService = Depends(deps.get_auth_service),
    oauth: OAuthPort = Depends(deps.get_oauth_port),
) -> dict:
    if not code:
        raise BadRequest("Missing authorization code", code="oauth_code_missing")
    if not oauth_state_matches(request, state):
        raise Unauthorized("OAuth state does not belong to this browser", code="oauth_state_mismatch")
    callback = await oauth.exchange_code(provider, code, state)
    clear_oauth_state_cookie(response)
    profile = callback.profile
    if callback.initiator_user_id is not None:
        # Linking only completes for the same signed-in user that started the flow.
        if principal is None or principal.user_id != callback.initiator_user_id:
            raise Unauthorized("OAuth flow was started by another session", code="oauth_initiator_mismatch")
        await service.link_social_account(principal.user_id, profile.provider, profile.provider_user_id)
        return {}
    pair = await service.sign_in_with_social(
        profile,
        user_agent=deps.user_agent(request),
        ip=deps.client_ip(request),
    )
    set_auth_cookies(response, pair.access_token, pair.refresh_token)
    return {}


@router.post("/oauth/{provider}/unlink", response_model=SuccessResponse, dependencies=[CsrfGuard])
async def oauth_unlink(
    provider: str,
    principal: deps.Principal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
) -> SuccessResponse:
    await service.unlink_social_account(principal.user_id, provider)
    return SuccessResponse()
