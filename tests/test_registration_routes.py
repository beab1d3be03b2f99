import asyncio

import pytest

from app.config import settings
from app.modules.registration import registry

pytestmark = pytest.mark.anyio

CREDENTIALS = {
    "email": "a@x.com",
    "username": "alice",
    "password": "secret1",
    "confirm_password": "secret1",
}


async def wait_for_state(client, account_id, state, rounds=200):
    for _ in range(rounds):
        payload = (await client.get(f"/api/v1/auth/register/{account_id}")).json()
        if payload["state"] == state:
            return payload
        await asyncio.sleep(0.01)
    raise AssertionError(f"registration never reached {state}: {payload}")


async def test_register_with_immediate_session_goes_to_profile_step(async_client, supabase):
    supabase.auth.confirm_email = False

    response = await async_client.post("/api/v1/auth/register", json=CREDENTIALS)

    assert response.status_code == 201
    payload = response.json()
    assert payload["state"] == "completing_profile"
    assert payload["account_id"] == "acct-1"
    assert registry.get("acct-1") is not None


async def test_register_password_mismatch_returns_400(async_client, supabase):
    response = await async_client.post(
        "/api/v1/auth/register", json={**CREDENTIALS, "confirm_password": "secret2"}
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Passwords do not match", "kind": "password_mismatch"}
    assert supabase.auth.sign_up_calls == []


async def test_register_taken_username_returns_409(async_client, supabase):
    supabase.users.add_row({"id": "acct-9", "username": "alice"})

    response = await async_client.post("/api/v1/auth/register", json=CREDENTIALS)

    assert response.status_code == 409
    assert response.json()["kind"] == "username_taken"


async def test_register_rejects_short_password(async_client):
    response = await async_client.post(
        "/api/v1/auth/register", json={**CREDENTIALS, "password": "abc", "confirm_password": "abc"}
    )

    assert response.status_code == 422


async def test_email_confirmation_then_profile_completion(async_client, supabase, flow_sleep, monkeypatch):
    monkeypatch.setattr(settings, "confirmation_poll_interval", 0.01)
    flow_sleep["sleep"] = asyncio.sleep

    response = await async_client.post("/api/v1/auth/register", json=CREDENTIALS)
    assert response.json()["state"] == "awaiting_email_confirmation"

    confirm = await async_client.post(
        "/api/v1/auth/register/acct-1/confirm",
        json={"access_token": "access-link", "refresh_token": "refresh-link"},
    )
    assert confirm.status_code == 200

    await wait_for_state(async_client, "acct-1", "completing_profile")

    done = await async_client.post(
        "/api/v1/auth/register/acct-1/profile",
        data={"display_name": "Alice"},
        files={"avatar": ("me.png", b"\x89PNG", "image/png")},
    )

    assert done.status_code == 200
    payload = done.json()
    assert payload["state"] == "done"
    assert payload["warnings"] == []
    assert payload["profile"]["display_name"] == "Alice"
    assert "/avatars/acct-1.png?t=" in payload["profile"]["avatar_url"]
    assert registry.get("acct-1") is None


async def test_confirmation_timeout_is_reported_in_status(async_client, supabase):
    response = await async_client.post("/api/v1/auth/register", json=CREDENTIALS)
    assert response.json()["state"] == "awaiting_email_confirmation"

    payload = await wait_for_state(async_client, "acct-1", "failed")

    assert payload["failed_in"] == "awaiting_email_confirmation"
    assert payload["failure"]["kind"] == "confirmation_timeout"
    assert registry.get("acct-1") is None
    again = await async_client.get("/api/v1/auth/register/acct-1")
    assert again.status_code == 404


async def test_confirm_after_timeout_returns_409(async_client, supabase):
    await async_client.post("/api/v1/auth/register", json=CREDENTIALS)
    entry = registry.get("acct-1")
    await asyncio.wait([entry.task])

    response = await async_client.post(
        "/api/v1/auth/register/acct-1/confirm",
        json={"access_token": "access-link", "refresh_token": "refresh-link"},
    )

    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_state"
    assert supabase.auth.session is None
    assert entry.flow.status().failure.kind.value == "confirmation_timeout"


async def test_stale_registration_is_evicted_and_its_wait_cancelled(
    async_client, supabase, flow_sleep, monkeypatch
):
    monkeypatch.setattr(settings, "confirmation_poll_interval", 5.0)
    flow_sleep["sleep"] = asyncio.sleep

    await async_client.post("/api/v1/auth/register", json=CREDENTIALS)
    entry = registry.get("acct-1")

    assert registry.prune(max_age=3600, now=entry.created_at + 3599) == 0
    assert registry.prune(max_age=3600, now=entry.created_at + 3600) == 1

    await asyncio.wait([entry.task])
    assert entry.task.cancelled()
    assert registry.get("acct-1") is None
    assert supabase.auth.listeners == []


async def test_new_registration_evicts_expired_ones(async_client, supabase, monkeypatch):
    supabase.auth.confirm_email = False
    monkeypatch.setattr(settings, "pending_registration_ttl", 0)

    await async_client.post("/api/v1/auth/register", json=CREDENTIALS)
    await async_client.post(
        "/api/v1/auth/register", json={**CREDENTIALS, "email": "b@x.com", "username": "bob"}
    )

    assert registry.get("acct-1") is None
    assert registry.get("acct-2") is not None


async def test_profile_step_before_confirmation_is_rejected(async_client, supabase, flow_sleep, monkeypatch):
    monkeypatch.setattr(settings, "confirmation_poll_interval", 5.0)
    flow_sleep["sleep"] = asyncio.sleep

    await async_client.post("/api/v1/auth/register", json=CREDENTIALS)
    response = await async_client.post("/api/v1/auth/register/acct-1/profile", data={"display_name": "Alice"})

    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_state"


async def test_unknown_registration_returns_404(async_client):
    response = await async_client.get("/api/v1/auth/register/nope")

    assert response.status_code == 404
    assert response.json()["kind"] == "registration_not_found"


async def test_profile_step_rejects_non_image_avatar(async_client, supabase):
    supabase.auth.confirm_email = False
    await async_client.post("/api/v1/auth/register", json=CREDENTIALS)

    response = await async_client.post(
        "/api/v1/auth/register/acct-1/profile",
        data={"display_name": "Alice"},
        files={"avatar": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "invalid_avatar"


async def test_quick_register(async_client, supabase):
    response = await async_client.post(
        "/api/v1/auth/register/quick",
        data={"display_name": "Alice", "username": "alice", "email": "a@x.com", "password": "secret1"},
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["profile"]["username"] == "alice"
    assert payload["profile"]["display_avatar_url"].startswith("https://ui-avatars.com/api/?name=Alice")
