from datetime import timedelta

import pytest
from jose import jwt

from bsaas_auth.core import security
from bsaas_auth.core.security import (
    DEVELOPMENT_SECRET,
    JWTKeyError,
    TokenError,
    constant_time_verify,
    decode_token,
    encode_token,
    ensure_production_secrets,
    get_password_hash,
    hash_opaque,
    opaque_equals,
    resolve_secret,
    verify_password,
)
from bsaas_auth.core.settings import settings


def _config(**updates):
    base = {
        "jwt_secret": None,
        "jwt_access_secret": None,
        "jwt_refresh_secret": None,
        "jwt_reset_secret": None,
        "jwt_verify_email_secret": None,
        "environment": "development",
    }
    base.update(updates)
    return settings.model_copy(update=base)


def test_password_hashing_and_verify():
    password = "S0meP@ss!WithLength"
    hashed = get_password_hash(password)
    assert hashed != password
    assert verify_password(password, hashed)
    assert verify_password("S0meP@ss!", hashed) is False
    assert verify_password(password, "not-a-bcrypt-hash") is False


def test_constant_time_verify_without_hash_is_false():
    assert constant_time_verify(None, "anything") is False
    assert constant_time_verify(get_password_hash("pw-123456"), "pw-123456") is True


def test_opaque_digest_comparison():
    digest = hash_opaque("123456")
    assert digest != "123456"
    assert opaque_equals("123456", digest)
    assert not opaque_equals("654321", digest)


def test_secret_chain_prefers_specific_then_shared():
    config = _config(jwt_secret="shared", jwt_reset_secret="reset-only")
    assert resolve_secret("reset", config) == "reset-only"
    assert resolve_secret("access", config) == "shared"
    assert resolve_secret("refresh", config) == "shared"

    config = _config(jwt_secret="shared", jwt_access_secret="access-only")
    assert resolve_secret("verify", config) == "access-only"
    assert resolve_secret("totp", config) == "access-only"
    assert resolve_secret("refresh", config) == "shared"


def test_development_default_only_outside_production():
    assert resolve_secret("access", _config()) == DEVELOPMENT_SECRET
    with pytest.raises(JWTKeyError):
        resolve_secret("access", _config(environment="production"))


def test_production_startup_requires_secrets():
    with pytest.raises(JWTKeyError):
        ensure_production_secrets(_config(environment="production"))
    with pytest.raises(JWTKeyError):
        ensure_production_secrets(_config(environment="production", jwt_secret="s", secret_key="change-me"))
    ensure_production_secrets(_config(environment="production", jwt_secret="s", secret_key="real-key"))
    ensure_production_secrets(_config())


def test_encode_decode_roundtrip_and_type_check():
    token = encode_token({"sub": "user-1", "type": "access"}, "access", timedelta(minutes=1))
    payload = decode_token(token, "access", expected_type="access")
    assert payload["sub"] == "user-1"
    assert "iat" in payload and "exp" in payload
    with pytest.raises(TokenError):
        decode_token(token, "access", expected_type="refresh")


def test_expired_token_rejected():
    token = encode_token({"sub": "user-1", "type": "access"}, "access", timedelta(seconds=-5))
    with pytest.raises(TokenError):
        decode_token(token, "access")


def test_token_without_subject_rejected():
    token = encode_token({"type": "access"}, "access", timedelta(minutes=1))
    with pytest.raises(TokenError):
        decode_token(token, "access")


def test_audience_enforced_even_without_aud_claim():
    no_aud = encode_token({"sub": "user-1", "type": "reset"}, "reset", timedelta(minutes=1))
    with pytest.raises(TokenError):
        decode_token(no_aud, "reset", expected_type="reset", audience="reset")


def test_purpose_secret_isolation(monkeypatch):
    monkeypatch.setattr(settings, "jwt_reset_secret", "reset-secret")
    reset_token = encode_token({"sub": "u", "aud": "reset", "type": "reset"}, "reset", timedelta(minutes=1))
    assert decode_token(reset_token, "reset", audience="reset")["sub"] == "u"
    # Same claims but checked against the verify chain: different secret.
    with pytest.raises(TokenError):
        decode_token(reset_token, "verify", audience="reset")


def test_wrong_algorithm_rejected():
    forged = jwt.encode({"sub": "u", "type": "access"}, resolve_secret("access"), algorithm="HS512")
    with pytest.raises(TokenError):
        decode_token(forged, "access")


def test_fake_hash_is_bcrypt():
    assert security._FAKE_HASH.startswith("$2")


def test_injected_config_signs_and_verifies_tokens():
    config = settings.model_copy(update={"jwt_access_secret": "issuer-specific-secret"})

    token = encode_token({"sub": "user-1", "type": "access"}, "access", timedelta(minutes=1), config)

    assert jwt.decode(token, "issuer-specific-secret", algorithms=[config.jwt_algorithm])["sub"] == "user-1"
    assert decode_token(token, "access", config=config)["sub"] == "user-1"
    with pytest.raises(TokenError):
        decode_token(token, "access")


def test_token_issuer_uses_its_own_config(repos, user):
    from bsaas_auth.services.errors import Unauthorized
    from bsaas_auth.services.tokens import TokenIssuer

    config = settings.model_copy(update={"jwt_access_secret": "issuer-specific-secret"})
    issuer = TokenIssuer(repos.refresh_tokens, repos.users, config=config)

    token = issuer.create_access_token(user, ["customer"], "sess-1")

    assert jwt.decode(token, "issuer-specific-secret", algorithms=[config.jwt_algorithm])["sessionId"] == "sess-1"
    assert issuer.decode_access(token)["sub"] == user.id
    with pytest.raises(Unauthorized):
        TokenIssuer(repos.refresh_tokens, repos.users).decode_access(token)
