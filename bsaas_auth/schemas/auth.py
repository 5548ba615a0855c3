from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)


class LoginResponse(_CamelModel):
    totp_required: bool = Field(alias="totpRequired")
    temp_token: Optional[str] = Field(default=None, alias="tempToken")


class TotpLoginRequest(_CamelModel):
    temp_token: str = Field(alias="tempToken", min_length=1)
    totp_code: str = Field(alias="totpCode", pattern=r"^\d{6}$")


class RefreshRequest(_CamelModel):
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")


class SessionOut(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    last_seen_at: Optional[datetime] = Field(default=None, alias="lastSeenAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    current: bool = False


class RevokeSessionRequest(BaseModel):
    id: str = Field(min_length=1)


class SuccessResponse(BaseModel):
    success: bool = True


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(_CamelModel):
    token: str = Field(min_length=1)
    new_password: str = Field(alias="newPassword", min_length=8, max_length=256)


class VerifyEmailRequest(BaseModel):
    """Either ``token`` (link flow) or ``email`` + ``otp``."""

    token: Optional[str] = None
    email: Optional[EmailStr] = None
    otp: Optional[str] = Field(default=None, max_length=12)


class RecoveryVerifyRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class WebAuthnRegisterStartRequest(BaseModel):
    username: Optional[str] = None


class WebAuthnLoginStartRequest(BaseModel):
    email: Optional[EmailStr] = None


class WebAuthnFinishRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[EmailStr] = None
    response: dict[str, Any] = Field(default_factory=dict)


class TotpEnrollResponse(_CamelModel):
    otpauth_url: str = Field(alias="otpauthUrl")
    qr_code_data_url: str = Field(alias="qrCodeDataUrl")


class TotpConfirmRequest(BaseModel):
    code: str = Field(pattern=r"^\d{6}$")


class UserOut(_CamelModel):
    id: str
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    is_verified: bool = Field(default=False, alias="isVerified")
    email_verified_at: Optional[datetime] = Field(default=None, alias="emailVerifiedAt")
    last_login_at: Optional[datetime] = Field(default=None, alias="lastLoginAt")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
