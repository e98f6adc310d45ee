"""HTTP-level tests: middleware, verdict translation and routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from app.main import app

from conftest import GuardKit, auth_headers, build_kit, token_for

SERVICE_HEADERS = {"X-Auth-Service-Key": "test-service-key"}


@contextmanager
def serve(kit: GuardKit) -> Iterator[TestClient]:
    app.state.guard = kit.guard
    app.state.identity_store = kit.store
    app.state.lockout = kit.lockout
    app.state.audit_emitter = kit.emitter
    with TestClient(app) as client:
        yield client


@pytest.fixture
def api(kit: GuardKit) -> Iterator[TestClient]:
    with serve(kit) as client:
        yield client


def test_health_is_public_and_has_security_headers(api: TestClient) -> None:
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "default-src 'self'" in response.headers["Content-Security-Policy"]


def test_unauthenticated_api_client_gets_401(api: TestClient) -> None:
    response = api.get("/users/me")

    assert response.status_code == 401
    body = response.json()
    assert body["reason"] == "Unauthenticated"
    assert body["login_url"] == "/login?redirect=%2Fusers%2Fme"


def test_unauthenticated_browser_is_redirected(api: TestClient) -> None:
    response = api.get("/users/me", headers={"Accept": "text/html"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/login?redirect=%2Fusers%2Fme"


def test_me_returns_effective_permissions(api: TestClient) -> None:
    response = api.get("/users/me", headers=auth_headers("builder"))

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["id"] == "builder"
    assert data["role"] == "builder"
    assert data["inherited_roles"] == ["client"]
    assert data["permissions"] == ["submit:content", "view:projects"]


def test_forbidden_api_client_gets_403(api: TestClient) -> None:
    response = api.get("/users", headers=auth_headers("client"))

    assert response.status_code == 403
    assert response.json()["reason"] == "InsufficientPermission"


def test_forbidden_browser_is_sent_to_unauthorized_page(api: TestClient) -> None:
    headers = {**auth_headers("client"), "Accept": "text/html"}
    response = api.get("/users", headers=headers, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/unauthorized"


def test_list_users(api: TestClient) -> None:
    response = api.get("/users", headers=auth_headers("director"))

    assert response.status_code == 200, response.text
    assert {u["id"] for u in response.json()} == {"admin", "director", "team", "client", "builder"}


def test_director_can_assign_client_roles_only(api: TestClient, kit: GuardKit) -> None:
    ok = api.patch("/users/client/role", json={"role": "builder"}, headers=auth_headers("director"))
    too_high = api.patch("/users/client/role", json={"role": "admin"}, headers=auth_headers("director"))

    assert ok.status_code == 200, ok.text
    assert ok.json()["role"] == "builder"
    assert too_high.status_code == 403

    api.portal.call(kit.emitter.flush)
    changes = [e for e in kit.sink.events if e.reason == "role_change"]
    assert len(changes) == 1
    assert changes[0].identity_id == "director"
    assert changes[0].detail == {"target_id": "client", "old_role": "client", "new_role": "builder"}


def test_admin_can_assign_any_role(api: TestClient) -> None:
    response = api.patch("/users/builder/role", json={"role": "team"}, headers=auth_headers("admin"))

    assert response.status_code == 200
    assert response.json()["role"] == "team"


def test_role_change_rules(api: TestClient) -> None:
    own = api.patch("/users/admin/role", json={"role": "client"}, headers=auth_headers("admin"))
    missing = api.patch("/users/ghost/role", json={"role": "client"}, headers=auth_headers("admin"))
    invalid = api.patch("/users/client/role", json={"role": "superuser"}, headers=auth_headers("admin"))
    team = api.patch("/users/client/role", json={"role": "builder"}, headers=auth_headers("team"))

    assert own.status_code == 400
    assert missing.status_code == 404
    assert invalid.status_code == 400
    assert "role" in invalid.json()
    # team holds manage:roles through inheritance but may not assign roles
    assert team.status_code == 403


def test_failed_logins_lock_then_unlock(api: TestClient) -> None:
    for expected in ("active", "active", "locked"):
        response = api.post(
            "/auth/events",
            json={"identity_id": "client", "outcome": "failure"},
            headers=SERVICE_HEADERS,
        )
        assert response.status_code == 200, response.text
        assert response.json()["state"] == expected

    locked = api.get("/users/me", headers=auth_headers("client"))
    assert locked.status_code == 423
    assert locked.json()["locked_until"]

    unlock = api.post("/users/client/unlock", headers=auth_headers("admin"))
    assert unlock.status_code == 200
    assert unlock.json()["state"] == "active"

    assert api.get("/users/me", headers=auth_headers("client")).status_code == 200


def test_successful_login_resets_failures(api: TestClient, kit: GuardKit) -> None:
    api.post("/auth/events", json={"identity_id": "team", "outcome": "failure"}, headers=SERVICE_HEADERS)
    response = api.post("/auth/events", json={"identity_id": "team", "outcome": "success"}, headers=SERVICE_HEADERS)

    assert response.status_code == 200
    identity = api.portal.call(kit.store.get_identity, "team")
    assert identity.failed_login_attempts == 0
    assert identity.last_login_at is not None


def test_auth_events_require_service_key(api: TestClient) -> None:
    payload = {"identity_id": "client", "outcome": "failure"}

    assert api.post("/auth/events", json=payload).status_code == 401
    assert api.post("/auth/events", json=payload, headers={"X-Auth-Service-Key": "nope"}).status_code == 401


def test_auth_events_for_unknown_identity(api: TestClient) -> None:
    response = api.post(
        "/auth/events",
        json={"identity_id": "ghost", "outcome": "failure"},
        headers=SERVICE_HEADERS,
    )
    assert response.status_code == 404


def test_unlock_requires_manage_users(api: TestClient) -> None:
    # builder is stopped by the /users/* route rule, before the handler runs
    assert api.post("/users/client/unlock", headers=auth_headers("builder")).status_code == 403
    assert api.post("/users/ghost/unlock", headers=auth_headers("admin")).status_code == 404


def test_deactivated_account_is_refused_until_reactivated(api: TestClient, kit: GuardKit) -> None:
    off = api.patch("/users/client/active", json={"is_active": False}, headers=auth_headers("admin"))
    assert off.status_code == 200, off.text
    assert off.json()["is_active"] is False

    refused = api.get("/users/me", headers=auth_headers("client"))
    assert refused.status_code == 403
    assert refused.json()["reason"] == "AccountInactive"

    on = api.patch("/users/client/active", json={"is_active": True}, headers=auth_headers("admin"))
    assert on.status_code == 200
    assert api.get("/users/me", headers=auth_headers("client")).status_code == 200

    api.portal.call(kit.emitter.flush)
    changes = [e for e in kit.sink.events if e.reason == "active_change"]
    assert [e.detail for e in changes] == [
        {"target_id": "client", "is_active": False},
        {"target_id": "client", "is_active": True},
    ]
    assert all(e.identity_id == "admin" for e in changes)


def test_active_change_rules(api: TestClient) -> None:
    own = api.patch("/users/admin/active", json={"is_active": False}, headers=auth_headers("admin"))
    missing = api.patch("/users/ghost/active", json={"is_active": False}, headers=auth_headers("admin"))
    builder = api.patch("/users/client/active", json={"is_active": False}, headers=auth_headers("builder"))

    assert own.status_code == 400
    assert missing.status_code == 404
    assert builder.status_code == 403
    assert api.get("/users/me", headers=auth_headers("admin")).status_code == 200


def test_rate_limited_requests_get_retry_after() -> None:
    kit = build_kit(max_requests=2, window_seconds=60)
    with serve(kit) as client:
        for _ in range(2):
            assert client.get("/users/me", headers=auth_headers("client")).status_code == 200
        response = client.get("/users/me", headers=auth_headers("client"))

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert response.json()["reason"] == "RateLimited"


def test_permission_inspection(api: TestClient) -> None:
    headers = auth_headers("client")

    mine = api.get("/permissions/me", headers=headers)
    assert mine.status_code == 200
    assert mine.json()["permissions"] == ["submit:content", "view:projects"]

    roles = api.get("/permissions/roles", headers=headers).json()
    by_name = {r["name"]: r for r in roles}
    assert by_name["team"]["inherits"] == ["director", "admin"]
    assert "manage:roles" not in by_name["builder"]["permissions"]

    check = api.post(
        "/permissions/check",
        json={"permissions": ["manage:users", "view:projects"], "mode": "all"},
        headers=headers,
    ).json()
    assert check["has_permission"] is False
    assert check["missing"] == ["manage:users"]

    any_check = api.post(
        "/permissions/check",
        json={"permissions": ["manage:users", "view:projects"], "mode": "any"},
        headers=headers,
    ).json()
    assert any_check["has_permission"] is True


def test_permission_check_rejects_unknown_tokens(api: TestClient) -> None:
    response = api.post(
        "/permissions/check",
        json={"permissions": ["fly:plane"]},
        headers=auth_headers("client"),
    )
    assert response.status_code == 400


def test_cookie_requests_need_matching_origin(api: TestClient) -> None:
    api.cookies.set("session", token_for("admin"))
    payload = {"permissions": ["view:projects"]}

    blocked = api.post("/permissions/check", json=payload)
    foreign = api.post("/permissions/check", json=payload, headers={"Origin": "https://evil.example"})
    same_site = api.post("/permissions/check", json=payload, headers={"Origin": "http://testserver"})
    read = api.get("/permissions/me")

    assert blocked.status_code == 403
    assert foreign.status_code == 403
    assert same_site.status_code == 200
    assert read.status_code == 200


def test_audit_endpoints(api: TestClient) -> None:
    logs = api.get("/audit/logs", headers=auth_headers("admin"))
    assert logs.status_code == 200, logs.text
    assert set(logs.json()) == {"items", "total", "page", "page_size", "pages"}

    diagnostics = api.get("/audit/diagnostics", headers=auth_headers("admin"))
    assert diagnostics.status_code == 200
    assert diagnostics.json()["running"] is True
    assert diagnostics.json()["recorded"] >= 1

    assert api.get("/audit/logs", headers=auth_headers("client")).status_code == 403
