"""Tests for the user directory and its REST endpoints."""
import pytest

from app.users.schemas import UserStatus
from app.users.service import UserDirectory, UsernameTakenError


def create_user(client, name="Alice", username="alice"):
    response = client.post("/api/users/create", json={"name": name, "username": username})
    assert response.status_code == 200, response.text
    return response.json()


class TestUserDirectory:

    def test_create_normalizes_username(self):
        directory = UserDirectory()
        user = directory.create(" Alice ", "  Alice ")
        assert user.name == "Alice"
        assert user.username == "alice"
        assert user.status == UserStatus.ONLINE
        assert directory.get_by_username("ALICE") is user

    def test_duplicate_username_rejected(self):
        directory = UserDirectory()
        directory.create("Alice", "alice")
        with pytest.raises(UsernameTakenError):
            directory.create("Other", "ALICE")

    def test_list_orders_by_last_active(self):
        directory = UserDirectory()
        first = directory.create("A", "aaa")
        second = directory.create("B", "bbb")
        directory.touch(first.id)

        assert [u.id for u in directory.list_users()] == [first.id, second.id]
        assert [u.id for u in directory.list_users(skip=1, limit=1)] == [second.id]

    def test_update_status_unknown_user(self):
        assert UserDirectory().update_status("nope", UserStatus.IDLE) is None


class TestCreateEndpoint:

    def test_create_returns_user_and_token(self, api_client, app):
        body = create_user(api_client)

        assert body["username"] == "alice"
        assert body["status"] == "online"
        assert body["createdAt"]
        identity = app.state.token_service.resolve(body["token"])
        assert identity.user_id == body["id"]
        assert identity.username == "alice"

    def test_missing_fields_rejected(self, api_client):
        response = api_client.post("/api/users/create", json={"name": "", "username": "alice"})
        assert response.status_code == 400

    @pytest.mark.parametrize("username", ["ab", "x" * 21])
    def test_username_length_enforced(self, api_client, username):
        response = api_client.post("/api/users/create", json={"name": "A", "username": username})
        assert response.status_code == 400

    def test_duplicate_username_conflict(self, api_client):
        create_user(api_client)
        response = api_client.post("/api/users/create", json={"name": "B", "username": "Alice"})
        assert response.status_code == 409


class TestLookupEndpoints:

    def test_get_by_id(self, api_client):
        created = create_user(api_client)
        response = api_client.get(f"/api/users/{created['id']}")
        assert response.status_code == 200
        assert response.json()["username"] == "alice"
        assert "token" not in response.json()

    def test_get_by_username(self, api_client):
        created = create_user(api_client)
        response = api_client.get("/api/users/username/ALICE")
        assert response.json()["id"] == created["id"]

    def test_unknown_user_404(self, api_client):
        assert api_client.get("/api/users/does-not-exist").status_code == 404
        assert api_client.get("/api/users/username/nobody").status_code == 404

    def test_check_username(self, api_client):
        assert api_client.get("/api/users/check-username/alice").json() == {"available": True}
        create_user(api_client)
        assert api_client.get("/api/users/check-username/Alice").json() == {"available": False}

    def test_list_users(self, api_client):
        create_user(api_client, "Alice", "alice")
        create_user(api_client, "Bob", "bob")

        response = api_client.get("/api/users", params={"limit": 1})
        assert response.status_code == 200
        assert len(response.json()) == 1
        assert len(api_client.get("/api/users").json()) == 2

    def test_list_limit_capped(self, api_client):
        assert api_client.get("/api/users", params={"limit": 500}).status_code == 422


class TestStatusEndpoint:

    def test_update_own_status(self, api_client):
        created = create_user(api_client)
        headers = {"Authorization": f"Bearer {created['token']}"}

        response = api_client.put(
            f"/api/users/{created['id']}/status", json={"status": "dnd"}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "dnd"

    def test_anonymous_update_rejected(self, api_client):
        created = create_user(api_client)
        response = api_client.put(f"/api/users/{created['id']}/status", json={"status": "idle"})
        assert response.status_code == 401

    def test_cannot_update_someone_else(self, api_client):
        alice = create_user(api_client, "Alice", "alice")
        bob = create_user(api_client, "Bob", "bob")
        headers = {"Authorization": f"Bearer {bob['token']}"}

        response = api_client.put(
            f"/api/users/{alice['id']}/status", json={"status": "idle"}, headers=headers
        )
        assert response.status_code == 403

    def test_invalid_status_rejected(self, api_client):
        created = create_user(api_client)
        headers = {"Authorization": f"Bearer {created['token']}"}
        response = api_client.put(
            f"/api/users/{created['id']}/status", json={"status": "away"}, headers=headers
        )
        assert response.status_code == 422
