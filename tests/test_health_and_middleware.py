import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from bsaas_auth.api import deps
from bsaas_auth.core import health as health_module
from bsaas_auth.core.errors import register_exception_handlers
from bsaas_auth.core.permissions import UserRole, effective_roles, has_any_role
from bsaas_auth.main import app
from bsaas_auth.models import CredentialTOTP
from bsaas_auth.services.tokens import TokenIssuer
from conftest import DEFAULT_PASSWORD

client = TestClient(app)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def test_health_live_returns_ok() -> None:
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert "timestamp" in payload


def test_health_ready_ok(monkeypatch) -> None:
    async def ok_check():
        return {"status": "ok"}

    monkeypatch.setattr(health_module, "_check_db", ok_check)
    monkeypatch.setattr(health_module, "_check_redis", ok_check)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ready"] is True
    assert payload["checks"]["database"]["status"] == "ok"
    assert payload["checks"]["redis"]["status"] == "ok"


def test_health_ready_degraded(monkeypatch) -> None:
    async def bad_db():
        return {"status": "error", "error": "OperationalError"}

    async def ok_redis():
        return {"status": "ok"}

    monkeypatch.setattr(health_module, "_check_db", bad_db)
    monkeypatch.setattr(health_module, "_check_redis", ok_redis)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["ready"] is False


# ---------------------------------------------------------------------------
# Middlewares
# ---------------------------------------------------------------------------


def test_request_id_echoed_or_generated() -> None:
    echoed = client.get("/api/v1/health/live", headers={"X-Request-ID": "abc-123"})
    assert echoed.headers["x-request-id"] == "abc-123"

    replaced = client.get("/api/v1/health/live", headers={"X-Request-ID": "bad id with spaces"})
    assert replaced.headers["x-request-id"] != "bad id with spaces"
    assert len(replaced.headers["x-request-id"]) == 32


def test_security_headers_and_no_store_scope() -> None:
    response = client.get("/api/v1/health/live")
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"
    assert "cache-control" not in response.headers

    auth_response = client.get("/api/v1/auth/me")
    assert auth_response.headers["cache-control"] == "no-store"
    assert auth_response.headers["pragma"] == "no-cache"


def test_forwarded_client_address_recorded_on_session(override_deps, repos, user) -> None:
    https_client = TestClient(app, base_url="https://testserver")
    response = https_client.post(
        "/api/v1/auth/login",
        json={"email": user.email, "password": DEFAULT_PASSWORD},
        headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.2"},
    )
    assert response.status_code == 200
    session = next(iter(repos.sessions.sessions.values()))
    assert session.ip_address == "198.51.100.7"


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def test_role_hierarchy():
    assert effective_roles(["owner"]) == {"owner", "staff", "customer"}
    assert has_any_role(["admin"], [UserRole.STAFF])
    assert has_any_role(["staff"], ["staff", "owner"])
    assert not has_any_role(["customer"], ["staff"])
    assert not has_any_role(["guest"], ["customer"])
    assert has_any_role([], [])


@pytest.fixture
def guarded_app():
    guarded = FastAPI()
    register_exception_handlers(guarded)

    @guarded.get("/staff-only")
    async def staff_only(principal: deps.Principal = Depends(deps.require_roles(UserRole.STAFF))):
        return {"user": principal.user_id}

    return guarded


def test_require_roles_guard(guarded_app, repos, user):
    issuer = TokenIssuer(repos.refresh_tokens, repos.users)
    owner = repos.users.add("owner@example.com", roles=["owner"])
    guarded_client = TestClient(guarded_app)

    customer_token = issuer.create_access_token(user, ["customer"], "sess-1")
    owner_token = issuer.create_access_token(owner, ["owner"], "sess-2")

    denied = guarded_client.get("/staff-only", headers={"Authorization": f"Bearer {customer_token}"})
    assert denied.status_code == 403
    assert denied.json()["code"] == "forbidden"

    allowed = guarded_client.get("/staff-only", headers={"Authorization": f"Bearer {owner_token}"})
    assert allowed.status_code == 200
    assert allowed.json() == {"user": owner.id}

    assert guarded_client.get("/staff-only").status_code == 401


def test_session_binding_claim_required(guarded_app, user):
    from datetime import timedelta

    from bsaas_auth.core.security import encode_token

    token = encode_token({"sub": user.id, "type": "access", "roles": ["admin"]}, "access", timedelta(minutes=1))
    response = TestClient(guarded_app).get("/staff-only", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401



@pytest.fixture
def strong_auth_app(repos, webauthn_port):
    guarded = FastAPI()
    register_exception_handlers(guarded)
    guarded.dependency_overrides[deps.get_repositories] = lambda: repos
    guarded.dependency_overrides[deps.get_webauthn_port] = lambda: webauthn_port

    @guarded.post("/admin-action")
    async def admin_action(principal: deps.Principal = Depends(deps.require_strong_auth)):
        return {"user": principal.user_id}

    return guarded


def _bearer(repos, user, roles):
    token = TokenIssuer(repos.refresh_tokens, repos.users).create_access_token(user, roles, "sess-1")
    return {"Authorization": f"Bearer {token}"}


def test_strong_auth_lets_non_admin_roles_through(strong_auth_app, repos, user):
    response = TestClient(strong_auth_app).post("/admin-action", headers=_bearer(repos, user, ["owner"]))
    assert response.status_code == 200


def test_strong_auth_rejects_admin_without_second_factor(strong_auth_app, repos):
    admin = repos.users.add("admin@example.com", roles=["admin"])
    repos.totp.credentials[admin.id] = CredentialTOTP(user_id=admin.id, secret="JBSWY3DPEHPK3PXP", verified=False)

    response = TestClient(strong_auth_app).post("/admin-action", headers=_bearer(repos, admin, ["admin"]))

    assert response.status_code == 403
    assert response.json()["code"] == "strong_auth_required"


def test_strong_auth_accepts_admin_with_confirmed_totp(strong_auth_app, repos):
    admin = repos.users.add("admin@example.com", roles=["admin"])
    repos.totp.credentials[admin.id] = CredentialTOTP(user_id=admin.id, secret="JBSWY3DPEHPK3PXP", verified=True)

    response = TestClient(strong_auth_app).post("/admin-action", headers=_bearer(repos, admin, ["admin"]))

    assert response.status_code == 200


def test_strong_auth_accepts_admin_with_passkey(strong_auth_app, repos, webauthn_port):
    admin = repos.users.add("admin@example.com", roles=["admin"])
    webauthn_port.passkeys.add(admin.id)

    response = TestClient(strong_auth_app).post("/admin-action", headers=_bearer(repos, admin, ["admin"]))

    assert response.status_code == 200


def test_strong_auth_without_webauthn_falls_back_to_totp(repos):
    from bsaas_auth.services.webauthn import UnconfiguredWebAuthn

    guarded = FastAPI()
    register_exception_handlers(guarded)
    guarded.dependency_overrides[deps.get_repositories] = lambda: repos
    guarded.dependency_overrides[deps.get_webauthn_port] = UnconfiguredWebAuthn

    @guarded.post("/admin-action")
    async def admin_action(principal: deps.Principal = Depends(deps.require_strong_auth)):
        return {"user": principal.user_id}

    admin = repos.users.add("admin@example.com", roles=["admin"])
    response = TestClient(guarded).post("/admin-action", headers=_bearer(repos, admin, ["admin"]))

    assert response.status_code == 403
    assert response.json()["code"] == "strong_auth_required"
