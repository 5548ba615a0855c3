from bsaas_auth.models.audit_log import AuditLog
from bsaas_auth.models.credential_totp import CredentialTOTP
from bsaas_auth.models.email_verification import EmailVerificationRecord
from bsaas_auth.models.password_reset import PasswordResetRecord
from bsaas_auth.models.recovery_code import RecoveryCode
from bsaas_auth.models.refresh_token import RefreshToken
from bsaas_auth.models.role import Role
from bsaas_auth.models.session import UserSession
from bsaas_auth.models.social_account import SocialAccount
from bsaas_auth.models.user import User
from bsaas_auth.models.user_role import UserRole

__all__ = [
    "AuditLog",
    "CredentialTOTP",
    "EmailVerificationRecord",
    "PasswordResetRecord",
    "RecoveryCode",
    "RefreshToken",
    "Role",
    "UserSession",
    "SocialAccount",
    "User",
    "UserRole",
]
