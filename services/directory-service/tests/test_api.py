from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import routes
from app.domain.accounts import FlowAccountRegistry
from app.domain.allocator import PoolAllocator
from app.domain.contracts import FLOW_ACCOUNTS, USERS
from app.domain.coordinator import UserMutationCoordinator
from app.domain.errors import StoreConflict
from app.security.rate_limiter import SlidingWindowRateLimiter

ADMIN = {"X-Admin-ID": "admin-1"}


@pytest.fixture
def api_client(store):
    """Provide a FastAPI test client over an isolated in-memory store."""
    app = FastAPI()
    app.include_router(routes.router)
    app.state.store = store
    app.state.allocator = PoolAllocator(store)
    app.state.registry = FlowAccountRegistry(store)
    app.state.coordinator = UserMutationCoordinator(store)

    original_limiter = routes.rate_limiter
    routes.rate_limiter = SlidingWindowRateLimiter(max_requests=100, window_seconds=60)

    with TestClient(app) as client:
        yield client, store

    routes.rate_limiter = original_limiter


def test_create_flow_account_proposes_gap_code(api_client):
    client, store = api_client
    store.add_account("E1")
    store.add_account("E3")

    assert client.get("/v1/flow-accounts/next-code").json() == {"code": "E2"}

    response = client.post(
        "/v1/flow-accounts",
        json={"email": "New.Pool@Example.com", "password": "pw"},
        headers=ADMIN,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["code"] == "E2"
    assert body["email"] == "new.pool@example.com"
    assert body["occupancy"] == 0
    assert body["capacity"] == 10
    assert body["status"] == "active"
    assert "password" not in body


def test_create_flow_account_rejects_duplicates(api_client):
    client, store = api_client
    store.add_account("E1", email="taken@example.com")

    same_code = client.post(
        "/v1/flow-accounts",
        json={"email": "other@example.com", "password": "pw", "code": "E1"},
        headers=ADMIN,
    )
    same_email = client.post(
        "/v1/flow-accounts",
        json={"email": "taken@example.com", "password": "pw"},
        headers=ADMIN,
    )

    assert same_code.status_code == 409
    assert same_code.json()["detail"]["error"] == "duplicate_account"
    assert same_email.status_code == 409
    assert same_email.json()["detail"]["message"] == "Email already exists in pool"


def test_list_flow_accounts_newest_first(api_client):
    client, store = api_client
    store.add_account("E1")
    store.add_account("E2")

    codes = [account["code"] for account in client.get("/v1/flow-accounts").json()]
    assert codes == ["E2", "E1"]


def test_update_flow_account(api_client):
    client, store = api_client
    account = store.add_account("E1")

    response = client.patch(
        f"/v1/flow-accounts/{account['id']}",
        json={"password": "rotated"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert store.account_by_code("E1")["password"] == "rotated"

    unchanged = client.patch(
        f"/v1/flow-accounts/{account['id']}",
        json={"email": "e1@example.com"},
        headers=ADMIN,
    )
    assert unchanged.status_code == 400
    assert unchanged.json()["detail"]["message"] == "No changes detected"


def test_update_flow_account_rejects_email_of_another_account(api_client):
    client, store = api_client
    store.add_account("E1", email="a@example.com")
    second = store.add_account("E2", email="b@example.com")

    response = client.patch(
        f"/v1/flow-accounts/{second['id']}",
        json={"email": "A@example.com"},
        headers=ADMIN,
    )

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "duplicate_account"
    assert response.json()["detail"]["message"] == "Email already exists in pool"
    assert store.account_by_code("E2")["email"] == "b@example.com"


def test_passwords_are_trimmed_on_create_and_update(api_client):
    client, store = api_client

    created = client.post(
        "/v1/flow-accounts",
        json={"email": "pool@example.com", "password": "  first  "},
        headers=ADMIN,
    )
    assert created.status_code == 201
    assert store.account_by_code("E1")["password"] == "first"

    same = client.patch(
        f"/v1/flow-accounts/{created.json()['id']}",
        json={"password": " first "},
        headers=ADMIN,
    )
    assert same.status_code == 400
    assert same.json()["detail"]["message"] == "No changes detected"


def test_store_conflict_maps_to_409(api_client):
    client, store = api_client
    account = store.add_account("E1")
    store.fail_on(FLOW_ACCOUNTS, "email", StoreConflict("email already in use"))

    response = client.patch(
        f"/v1/flow-accounts/{account['id']}",
        json={"email": "fresh@example.com"},
        headers=ADMIN,
    )

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "store_conflict"


def test_remove_flow_account_is_soft_and_blocked_while_occupied(api_client):
    client, store = api_client
    busy = store.add_account("E1", occupancy=2)
    idle = store.add_account("E2")

    blocked = client.delete(f"/v1/flow-accounts/{busy['id']}", headers=ADMIN)
    removed = client.delete(f"/v1/flow-accounts/{idle['id']}", headers=ADMIN)

    assert blocked.status_code == 409
    assert blocked.json()["detail"]["error"] == "account_in_use"
    assert removed.status_code == 204
    assert store.account_by_code("E2")["status"] == "inactive"
    assert client.get("/v1/flow-accounts/next-code").json() == {"code": "E2"}


def test_credential_lookup(api_client):
    client, store = api_client
    store.add_account("E1")
    store.add_account("E2", status="inactive")

    found = client.get("/v1/flow-accounts/E1/credential")
    missing = client.get("/v1/flow-accounts/E2/credential")

    assert found.json() == {"code": "E1", "email": "e1@example.com", "password": "secret-E1"}
    assert missing.status_code == 404


def test_assign_release_reassign_flow(api_client):
    client, store = api_client
    store.add_account("E1", occupancy=9)
    store.add_account("E2", occupancy=3)
    user_id = store.add_user()
    other_id = store.add_user()

    assigned = client.post(f"/v1/users/{user_id}/flow-account", json={"code": "E1"}, headers=ADMIN)
    assert assigned.status_code == 201
    assert assigned.json()["code"] == "E1"
    assert store.account_by_code("E1")["occupancy"] == 10

    full = client.post(f"/v1/users/{other_id}/flow-account", json={"code": "E1"}, headers=ADMIN)
    assert full.status_code == 409
    assert full.json()["detail"]["error"] == "account_full"

    moved = client.put(f"/v1/users/{user_id}/flow-account", json={}, headers=ADMIN)
    assert moved.status_code == 200
    assert moved.json()["code"] == "E2"
    assert store.account_by_code("E1")["occupancy"] == 9
    assert store.account_by_code("E2")["occupancy"] == 4

    released = client.delete(f"/v1/users/{user_id}/flow-account", headers=ADMIN)
    assert released.status_code == 200
    assert released.json()["code"] is None
    assert store.row(USERS, user_id)["pool_code"] is None

    again = client.delete(f"/v1/users/{user_id}/flow-account", headers=ADMIN)
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "nothing_assigned"


def test_assign_without_body_uses_least_loaded(api_client):
    client, store = api_client
    store.add_account("E1", occupancy=2)
    store.add_account("E2", occupancy=2)
    user_id = store.add_user()

    response = client.post(f"/v1/users/{user_id}/flow-account", headers=ADMIN)

    assert response.status_code == 201
    assert response.json()["code"] == "E1"


def test_assign_unknown_user_is_404(api_client):
    client, store = api_client
    store.add_account("E1")

    response = client.post("/v1/users/ghost/flow-account", json={}, headers=ADMIN)
    assert response.status_code == 404


def test_save_changes_reports_every_error(api_client):
    client, store = api_client
    for index in range(4):
        store.add_user(status="lifetime", personal_token=f"t{index}")
    user_id = store.add_user()
    store.fail_on(USERS, "personal_token")

    response = client.patch(
        f"/v1/users/{user_id}",
        json={"status": "subscription", "personal_token": "new"},
        headers=ADMIN,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert [error["error"] for error in body["errors"]] == ["token_ceiling_reached", "store_write_failed"]


def test_save_changes_lifetime_duration_alone(api_client):
    client, store = api_client
    user_id = store.add_user()

    response = client.patch(
        f"/v1/users/{user_id}",
        json={"subscription_duration": "lifetime"},
        headers=ADMIN,
    )

    assert response.json() == {"success": True, "errors": []}
    assert store.row(USERS, user_id)["status"] == "lifetime"


def test_save_changes_unknown_user(api_client):
    client, _ = api_client
    response = client.patch("/v1/users/ghost", json={"status": "trial"}, headers=ADMIN)
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "user_not_found"


def test_entitlement_summary_and_check(api_client):
    client, store = api_client
    for index in range(4):
        store.add_user(status="subscription", personal_token=f"t{index}")
    store.add_user(personal_token="   ")
    user_id = store.add_user()

    assert client.get("/v1/entitlements").json() == {"authorized_count": 4, "limit": 5}

    check = client.post(f"/v1/users/{user_id}/entitlement-check", json={"status": "lifetime"})
    assert check.status_code == 200
    assert check.json()["allowed"] is False
    assert check.json()["reason"]["error"] == "token_ceiling_reached"

    downgrade = client.post(f"/v1/users/{user_id}/entitlement-check", json={"status": "inactive"})
    assert downgrade.json() == {"allowed": True, "reason": None}


def test_mutations_respect_rate_limits(api_client):
    client, store = api_client
    routes.rate_limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    store.add_account("E1")
    user_id = store.add_user()

    first = client.post(f"/v1/users/{user_id}/flow-account", headers=ADMIN)
    second = client.delete(f"/v1/users/{user_id}/flow-account", headers=ADMIN)
    third = client.post(f"/v1/users/{user_id}/flow-account", headers=ADMIN)
    other_operator = client.post(f"/v1/users/{user_id}/flow-account", headers={"X-Admin-ID": "admin-2"})

    assert first.status_code == 201
    assert second.status_code == 200
    assert third.status_code == 429
    assert third.json()["detail"] == "rate limited"
    assert int(third.headers["Retry-After"]) >= 1
    assert other_operator.status_code == 201
