import re

import pyotp
import pytest

from bsaas_auth.services.mfa import (
    generate_recovery_code,
    hash_recovery_code,
    qr_png_data_url,
    verify_totp,
)


def test_verify_totp_accepts_current_code_only():
    secret = pyotp.random_base32()
    totp = pyotp.TOTP(secret)
    assert verify_totp(secret, totp.now())
    assert verify_totp(secret, f" {totp.now()} ")
    assert not verify_totp(secret, "12345")
    assert not verify_totp(secret, "abcdef")
    assert not verify_totp(secret, "")


def test_qr_code_is_png_data_url():
    url = qr_png_data_url("otpauth://totp/BSaaS:user@example.com?secret=ABC")
    assert url.startswith("data:image/png;base64,")


def test_recovery_code_format_and_normalized_hash():
    code = generate_recovery_code()
    assert re.fullmatch(r"[A-Z2-9]{4}-[A-Z2-9]{4}", code)
    assert hash_recovery_code(code) == hash_recovery_code(code.lower().replace("-", ""))


@pytest.mark.asyncio
async def test_enroll_stores_unverified_secret(totp_service, repos, user):
    enrollment = await totp_service.enroll(user)

    credential = repos.totp.credentials[user.id]
    assert credential.verified is False
    assert enrollment.otpauth_url.startswith("otpauth://totp/")
    assert credential.secret in enrollment.otpauth_url
    assert "issuer=BSaaS" in enrollment.otpauth_url
    assert await totp_service.is_enabled(user.id) is False


@pytest.mark.asyncio
async def test_confirm_requires_valid_code(totp_service, repos, user):
    await totp_service.enroll(user)
    secret = repos.totp.credentials[user.id].secret

    assert await totp_service.confirm(user.id, "abcdef") is False
    assert await totp_service.is_enabled(user.id) is False

    assert await totp_service.confirm(user.id, pyotp.TOTP(secret).now()) is True
    assert await totp_service.is_enabled(user.id) is True
    assert "totp.confirmed" in repos.audit_logs.events()


@pytest.mark.asyncio
async def test_verify_token_without_credential(totp_service):
    assert await totp_service.verify_token("nobody", "123456") is False


@pytest.mark.asyncio
async def test_recovery_codes_are_single_use(recovery_service, repos, user):
    codes = await recovery_service.generate(user.id, count=5)

    assert len(codes) == 5
    assert len(set(codes)) == 5
    stored = repos.recovery_codes.codes[user.id]
    assert not set(codes) & set(stored)

    assert await recovery_service.verify_and_consume(user.id, codes[0]) is True
    assert await recovery_service.verify_and_consume(user.id, codes[0]) is False
    assert await recovery_service.verify_and_consume(user.id, codes[1].lower()) is True
    assert await recovery_service.verify_and_consume(user.id, "") is False


@pytest.mark.asyncio
async def test_regenerating_recovery_codes_invalidates_old_batch(recovery_service, user):
    old = await recovery_service.generate(user.id, count=3)
    await recovery_service.generate(user.id, count=3)
    assert await recovery_service.verify_and_consume(user.id, old[0]) is False


@pytest.mark.asyncio
async def test_recovery_count_must_be_positive(recovery_service, user):
    with pytest.raises(ValueError):
        await recovery_service.generate(user.id, count=0)
