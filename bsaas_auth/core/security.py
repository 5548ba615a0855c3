from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from jose import JWTError, jwt
from passlib.context import CryptContext

from bsaas_auth.core.settings import Settings, settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Only ever used outside production; see resolve_secret.
DEVELOPMENT_SECRET = "bsaas-dev-only-secret"

# Used to equalize timing when no stored hash exists for a login attempt.
_FAKE_HASH = pwd_context.hash("bsaas-timing-equalizer")

SecretPurpose = Literal["access", "refresh", "totp", "reset", "verify"]

_SECRET_CHAINS: dict[str, tuple[str, ...]] = {
    "access": ("jwt_access_secret", "jwt_secret"),
    "refresh": ("jwt_refresh_secret", "jwt_secret"),
    "totp": ("jwt_access_secret", "jwt_secret"),
    "reset": ("jwt_reset_secret", "jwt_access_secret", "jwt_secret"),
    "verify": ("jwt_verify_email_secret", "jwt_access_secret", "jwt_secret"),
}


class JWTKeyError(RuntimeError):
    pass


class TokenError(ValueError):
    pass


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def constant_time_verify(user_password_hash: str | None, password: str) -> bool:
    if user_password_hash:
        return verify_password(password, user_password_hash)
    verify_password(password, _FAKE_HASH)
    return False


def hash_opaque(value: str) -> str:
    """SHA-256 digest used for OTPs, recovery codes and other short-lived secrets."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def opaque_equals(value: str, digest: str) -> bool:
    return hmac.compare_digest(hash_opaque(value), digest)


def generate_numeric_code(length: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def new_token_id() -> str:
    return secrets.token_hex(16)


def resolve_secret(purpose: SecretPurpose, config: Settings | None = None) -> str:
    """Walk the purpose-specific secret chain, then the development default.

    The default is refused in production; hosts must configure real secrets.
    """
    config = config or settings
    for attr in _SECRET_CHAINS[purpose]:
        value = getattr(config, attr, None)
        if value:
            return value
    if config.is_production:
        raise JWTKeyError(f"No signing secret configured for {purpose} tokens")
    return DEVELOPMENT_SECRET


def missing_production_secrets(config: Settings | None = None) -> list[str]:
    config = config or settings
    missing = []
    for purpose, chain in _SECRET_CHAINS.items():
        if not any(getattr(config, attr, None) for attr in chain):
            missing.append(purpose)
    return missing


def ensure_production_secrets(config: Settings | None = None) -> None:
    config = config or settings
    if not config.is_production:
        return
    missing = missing_production_secrets(config)
    if missing:
        raise JWTKeyError(
            "Refusing to start in production without JWT secrets for: " + ", ".join(sorted(missing))
        )
    if config.secret_key == "change-me":
        raise JWTKeyError("Refusing to start in production with the default SECRET_KEY")


def encode_token(
    claims: dict[str, Any],
    purpose: SecretPurpose,
    expires_delta: timedelta,
    config: Settings | None = None,
) -> str:
    config = config or settings
    now = datetime.now(timezone.utc)
    to_encode = dict(claims)
    to_encode.update({"iat": now, "exp": now + expires_delta})
    return jwt.encode(to_encode, resolve_secret(purpose, config), algorithm=config.jwt_algorithm)


def decode_token(
    token: str,
    purpose: SecretPurpose,
    *,
    expected_type: str | None = None,
    audience: str | None = None,
    config: Settings | None = None,
) -> dict[str, Any]:
    config = config or settings
    try:
        payload = jwt.decode(
            token,
            resolve_secret(purpose, config),
            algorithms=[config.jwt_algorithm],
            audience=audience,
        )
    except JWTError as exc:
        raise TokenError("Invalid token") from exc
    if expected_type and payload.get("type") != expected_type:
        raise TokenError(f"Unexpected token type: {payload.get('type')}")
    # jose skips the audience check for tokens that carry no aud claim at all.
    if audience is not None and payload.get("aud") != audience:
        raise TokenError("Unexpected token audience")
    if not payload.get("sub"):
        raise TokenError("Token has no subject")
    return payload
