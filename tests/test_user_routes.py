"""
tests/test_user_routes.py -- Integration tests for the administrative /api/v1/users routes.

Coverage:
  - Auth failures: 401 without token, 401 for a verification token as bearer
  - List: envelope shape, pagination clamping, sorting, status filter, fallbacks
  - Stats: counts move with inserts
  - Block / unblock / delete: happy paths, self-action 400, nothing-changed 400,
    invalid id 400, unverified caller 403, blocked caller's token replay 403
  - delete-unverified: removes only unverified accounts

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- an active admin's session
  - make_user: factory for users with a given status
"""

from __future__ import annotations

import uuid

from auth.models import UserStatus
from auth.tokens import create_verification_token
from conftest import auth_headers


class TestUsersAuthFailure:
    def test_list_unauthenticated(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/users")
        assert resp.status_code == 401, f"Expected 401, got {resp.status_code}"

    def test_block_unauthenticated(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.patch("/api/v1/users/block", json={"userIds": [str(uuid.uuid4())]})
        assert resp.status_code == 401

    def test_verification_token_is_not_a_bearer(self, api_client, make_user) -> None:
        client, _token, _uid = api_client
        user, _ = make_user(status=UserStatus.active)
        resp = client.get("/api/v1/users", headers=auth_headers(create_verification_token(user)))
        assert resp.status_code == 401

    def test_unverified_may_read_but_not_mutate(self, api_client, make_user) -> None:
        client, _token, _uid = api_client
        target, _ = make_user(status=UserStatus.active)
        _, unverified_token = make_user(status=UserStatus.unverified)
        headers = auth_headers(unverified_token)
        assert client.get("/api/v1/users", headers=headers).status_code == 200
        resp = client.patch("/api/v1/users/block", json={"userIds": [target.id]}, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "Active account required for this action"


class TestListUsers:
    def test_envelope_shape(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/users", headers=auth_headers(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert set(data) == {"users", "pagination", "sorting"}
        assert data["sorting"] == {"sortBy": "last_login", "sortOrder": "DESC"}
        assert data["pagination"]["currentPage"] == 1
        assert data["pagination"]["limit"] == 10
        row = data["users"][0]
        assert {"id", "name", "email", "status", "created_at", "last_login"} <= set(row)
        assert "password_hash" not in row

    def test_pagination(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        for _ in range(5):
            make_user()
        resp = client.get("/api/v1/users", params={"page": 2, "limit": 2}, headers=auth_headers(token))
        data = resp.json()["data"]
        total = data["pagination"]["totalUsers"]
        assert len(data["users"]) == 2
        assert data["pagination"]["totalPages"] == -(-total // 2)
        assert data["pagination"]["hasPrevPage"] is True
        assert data["pagination"]["hasNextPage"] is (2 < data["pagination"]["totalPages"])

    def test_out_of_range_values_are_clamped(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.get(
            "/api/v1/users",
            params={"page": 0, "limit": 1000, "sortBy": "password_hash", "status": "weird"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["pagination"]["currentPage"] == 1
        assert data["pagination"]["limit"] == 100
        assert data["sorting"]["sortBy"] == "last_login"

    def test_huge_page_is_an_empty_page_not_a_server_error(self, api_client) -> None:
        """A page number past any 64-bit OFFSET is clamped; the request still answers 200."""
        client, token, _uid = api_client
        resp = client.get(
            "/api/v1/users",
            params={"page": "100000000000000000000", "limit": 100},
            headers=auth_headers(token),
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["users"] == []
        assert data["pagination"]["currentPage"] == 1_000_000_000
        assert data["pagination"]["hasNextPage"] is False
        assert data["pagination"]["hasPrevPage"] is True

    def test_sort_by_name(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        make_user(name="Zed")
        make_user(name="Amy")
        resp = client.get(
            "/api/v1/users",
            params={"sortBy": "name", "sortOrder": "asc", "limit": 100},
            headers=auth_headers(token),
        )
        names = [u["name"] for u in resp.json()["data"]["users"]]
        assert names == sorted(names)
        assert resp.json()["data"]["sorting"] == {"sortBy": "name", "sortOrder": "ASC"}

    def test_last_login_nulls_last(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/users", params={"limit": 100}, headers=auth_headers(token))
        logins = [u["last_login"] for u in resp.json()["data"]["users"]]
        seen_null = False
        for value in logins:
            if value is None:
                seen_null = True
            else:
                assert not seen_null, "Users who never logged in must sort after everyone else"
        stamped = [v for v in logins if v is not None]
        assert stamped == sorted(stamped, reverse=True)

    def test_status_filter(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        make_user(status=UserStatus.blocked)
        resp = client.get("/api/v1/users", params={"status": "blocked", "limit": 100}, headers=auth_headers(token))
        users = resp.json()["data"]["users"]
        assert users, "At least one blocked user exists"
        assert {u["status"] for u in users} == {"blocked"}


class TestStats:
    def test_stats_track_inserts(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        before = client.get("/api/v1/users/stats", headers=auth_headers(token)).json()["data"]["stats"]
        make_user(status=UserStatus.active)
        make_user(status=UserStatus.unverified)
        make_user(status=UserStatus.blocked)
        after = client.get("/api/v1/users/stats", headers=auth_headers(token)).json()["data"]["stats"]
        assert after["total"] == before["total"] + 3
        for status in ("active", "unverified", "blocked"):
            assert after[status] == before[status] + 1
        assert after["total"] == after["active"] + after["unverified"] + after["blocked"]


class TestBlockUnblock:
    def test_block_and_unblock(self, api_client, make_user, user_store) -> None:
        client, token, _uid = api_client
        a, _ = make_user(status=UserStatus.active)
        b, _ = make_user(status=UserStatus.unverified)
        resp = client.patch("/api/v1/users/block", json={"userIds": [a.id, b.id]}, headers=auth_headers(token))
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "Successfully blocked 2 user(s)"
        assert {u["id"] for u in resp.json()["data"]["blockedUsers"]} == {a.id, b.id}

        resp = client.patch("/api/v1/users/unblock", json={"userIds": [a.id, b.id]}, headers=auth_headers(token))
        assert resp.status_code == 200
        assert {u["status"] for u in resp.json()["data"]["unblockedUsers"]} == {"active"}
        assert user_store.get_by_id(b.id).status is UserStatus.active

    def test_block_accepts_uppercase_and_duplicate_ids(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        a, _ = make_user(status=UserStatus.active)
        resp = client.patch(
            "/api/v1/users/block",
            json={"userIds": [a.id.upper(), a.id]},
            headers=auth_headers(token),
        )
        assert resp.status_code == 200
        assert len(resp.json()["data"]["blockedUsers"]) == 1

    def test_cannot_block_self(self, api_client, make_user, user_store) -> None:
        client, token, uid = api_client
        other, _ = make_user(status=UserStatus.active)
        resp = client.patch("/api/v1/users/block", json={"userIds": [other.id, uid]}, headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Cannot block your own account"
        assert user_store.get_by_id(other.id).status is UserStatus.active, "Nothing is touched on a self-block"

    def test_block_nothing_changed(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        blocked, _ = make_user(status=UserStatus.blocked)
        resp = client.patch(
            "/api/v1/users/block",
            json={"userIds": [blocked.id, str(uuid.uuid4())]},
            headers=auth_headers(token),
        )
        assert resp.status_code == 400
        assert resp.json()["message"].startswith("No users were blocked")

    def test_unblock_nothing_changed(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        active, _ = make_user(status=UserStatus.active)
        resp = client.patch("/api/v1/users/unblock", json={"userIds": [active.id]}, headers=auth_headers(token))
        assert resp.status_code == 400

    def test_invalid_bodies(self, api_client) -> None:
        client, token, _uid = api_client
        headers = auth_headers(token)
        assert client.patch("/api/v1/users/block", json={"userIds": []}, headers=headers).status_code == 400
        assert client.patch("/api/v1/users/block", json={}, headers=headers).status_code == 400
        resp = client.patch("/api/v1/users/block", json={"userIds": ["not-a-uuid"]}, headers=headers)
        assert resp.status_code == 400

    def test_blocked_token_replay_is_forbidden(self, api_client, make_user) -> None:
        client, token, _uid = api_client
        victim, victim_token = make_user(status=UserStatus.active)
        assert client.get("/api/v1/users", headers=auth_headers(victim_token)).status_code == 200
        client.patch("/api/v1/users/block", json={"userIds": [victim.id]}, headers=auth_headers(token))
        resp = client.get("/api/v1/users", headers=auth_headers(victim_token))
        assert resp.status_code == 403
        assert resp.json()["message"] == "Account has been blocked"


class TestDelete:
    def test_delete_users(self, api_client, make_user, user_store) -> None:
        client, token, _uid = api_client
        a, a_token = make_user(status=UserStatus.active)
        b, _ = make_user(status=UserStatus.blocked)
        resp = client.request(
            "DELETE", "/api/v1/users/delete", json={"userIds": [a.id, b.id]}, headers=auth_headers(token)
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["deletedCount"] == 2
        assert {u["id"] for u in data["deletedUsers"]} == {a.id, b.id}
        assert user_store.get_by_id(a.id) is None
        gone = client.get("/api/v1/auth/me", headers=auth_headers(a_token))
        assert gone.status_code == 401, "A deleted account's token stops working immediately"

    def test_cannot_delete_self(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.request("DELETE", "/api/v1/users/delete", json={"userIds": [uid]}, headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Cannot delete your own account"

    def test_delete_nothing(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.request(
            "DELETE", "/api/v1/users/delete", json={"userIds": [str(uuid.uuid4())]}, headers=auth_headers(token)
        )
        assert resp.status_code == 400

    def test_delete_unverified(self, api_client, make_user, user_store) -> None:
        client, token, _uid = api_client
        keep, _ = make_user(status=UserStatus.active)
        make_user(status=UserStatus.unverified)
        make_user(status=UserStatus.unverified)
        resp = client.delete("/api/v1/users/delete-unverified", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["deletedCount"] >= 2
        assert user_store.status_counts()["unverified"] == 0
        assert user_store.get_by_id(keep.id) is not None

        again = client.delete("/api/v1/users/delete-unverified", headers=auth_headers(token))
        assert again.status_code == 200
        assert again.json()["data"]["deletedCount"] == 0
