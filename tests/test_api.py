"""HTTP surface: routes wired to an isolated engine."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from timewellspent.api.deps import get_engine
from timewellspent.main import app


@pytest.fixture
def alice(make_device):
    return make_device("alice")


@pytest.fixture
def client(alice):
    app.dependency_overrides[get_engine] = lambda: alice.engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestSyncRoutes:
    def test_sync_now(self, client):
        response = client.post("/api/sync")

        body = response.json()
        assert response.status_code == 200
        assert body["ok"] is True
        assert "ledger" in body["streams"]

    def test_status(self, client, alice):
        body = client.get("/api/sync/status").json()

        assert body["configured"] is True
        assert body["authenticated"] is True
        assert body["device"]["id"] == alice.id

    def test_rename_and_list_devices(self, client, alice):
        assert client.put("/api/sync/device/name", json={"name": "Desk"}).json() == {"ok": True, "error": None}

        devices = client.get("/api/sync/devices").json()

        assert [(d["id"], d["name"], d["is_current"]) for d in devices] == [(alice.id, "Desk", True)]

    def test_sign_in_rejects_unknown_provider(self, client):
        assert client.post("/api/sync/sign-in", json={"provider": "myspace"}).status_code == 422

    def test_callback_without_code(self, client):
        body = client.get("/api/sync/callback").json()
        assert body["ok"] is False
        assert body["error"] == "Missing auth code"


class TestFriendRoutes:
    @pytest.fixture
    def bob(self, make_device, client):
        bob = make_device("bob")
        client.patch("/api/friends/profile", json={"handle": "alice"})
        return bob

    def test_profile_round_trip(self, client):
        response = client.patch("/api/friends/profile", json={"handle": "Alice", "display_name": "Al"})

        assert response.status_code == 200
        assert response.json()["handle"] == "alice"
        assert client.get("/api/friends/profile").json()["display_name"] == "Al"

    def test_invalid_handle_is_400(self, client):
        assert client.patch("/api/friends/profile", json={"handle": "!"}).status_code == 400

    def test_unknown_handle_is_404(self, client):
        response = client.post("/api/friends/requests", json={"handle": "nobody"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Handle not found"

    def test_self_request_is_409(self, client):
        client.patch("/api/friends/profile", json={"handle": "alice"})
        assert client.post("/api/friends/requests", json={"handle": "alice"}).status_code == 409

    def test_accepting_own_request_is_403(self, client, bob):
        asyncio.run(bob.engine.social.update_profile(handle="bob"))
        request = client.post("/api/friends/requests", json={"handle": "bob"}).json()

        response = client.post(f"/api/friends/requests/{request['id']}/accept")

        assert response.status_code == 403

    def test_signed_out_mutation_is_401(self, client, alice):
        alice.auth.session = None
        assert client.post("/api/friends/requests", json={"handle": "bob"}).status_code == 401

    def test_friend_list_and_timeline(self, client, bob):
        async def befriend():
            await bob.engine.social.update_profile(handle="bob")
            await bob.engine.sync_now()
            request = await bob.engine.social.request_friend("alice")
            return request["id"]

        request_id = asyncio.run(befriend())
        assert client.post(f"/api/friends/requests/{request_id}/accept").json() == {"ok": True}

        body = client.get("/api/friends", params={"window_hours": 12}).json()
        assert [f["handle"] for f in body["friends"]] == ["bob"]
        assert body["profile"]["handle"] == "alice"

        timeline = client.get("/api/friends/bob", params={"window_hours": 3}).json()
        assert timeline["user_id"] == "bob"
        assert len(timeline["timeline"]) == 3
        assert client.get("/api/friends/stranger").status_code == 404

    def test_window_is_bounded(self, client):
        assert client.get("/api/friends", params={"window_hours": 500}).status_code == 422
