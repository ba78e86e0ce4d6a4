"""
tests/test_api_admin.py -- Integration tests for the permission-guarded routes.

Coverage:
  - 401 without a token, 403 without the permission, 200 with it
  - "*" action grants every action on the resource
  - inactive role grants nothing
  - disabling a user revokes their sessions and refuses their access token
  - admins cannot change their own status or delete themselves
  - role creation and permission replacement, with validation
  - login audit trail
"""

from __future__ import annotations

from auth.models import Role

from conftest import ApiContext, auth_header

ADMIN_PERMS = {"users": {"*"}, "roles": {"*"}}


class TestGuards:
    def test_no_token_is_401(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/v1/users").status_code == 401

    def test_missing_permission_is_403(self, api_client: ApiContext) -> None:
        data = api_client.login("plain@example.com")
        resp = api_client.client.get("/api/v1/users", headers=auth_header(data))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        assert resp.json()["error"]["message"] == "Insufficient permissions."
        assert "WWW-Authenticate" not in resp.headers

    def test_granted_permission_is_200(self, api_client: ApiContext) -> None:
        data = api_client.user_with_role("reader@example.com", "reader", {"users": {"read"}})
        resp = api_client.client.get("/api/v1/users", headers=auth_header(data))
        assert resp.status_code == 200
        assert "reader@example.com" in [u["email"] for u in resp.json()]

    def test_read_does_not_grant_update(self, api_client: ApiContext) -> None:
        data = api_client.user_with_role("reader2@example.com", "reader2", {"users": {"read"}})
        resp = api_client.client.patch(
            f"/api/v1/users/{data['user']['id']}/status", json={"status": "inactive"}, headers=auth_header(data)
        )
        assert resp.status_code == 403

    def test_inactive_role_grants_nothing(self, api_client: ApiContext) -> None:
        role_id = api_client.user_store.create_role(
            Role(name="dormant", permissions={"users": frozenset({"*"})}, is_active=False)
        )
        data = api_client.login("dormant@example.com")
        api_client.user_store.set_role(data["user"]["id"], role_id)
        assert api_client.client.get("/api/v1/users", headers=auth_header(data)).status_code == 403


class TestUserAdministration:
    def test_disable_user_revokes_sessions(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("admin1@example.com", "admin1", ADMIN_PERMS)
        victim = api_client.login("victim1@example.com")

        resp = api_client.client.patch(
            f"/api/v1/users/{victim['user']['id']}/status", json={"status": "suspended"}, headers=auth_header(admin)
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "suspended"

        assert api_client.client.get("/api/v1/auth/profile", headers=auth_header(victim)).status_code == 401
        refresh = api_client.client.post("/api/v1/auth/refresh", json={"refreshToken": victim["refreshToken"]})
        assert refresh.status_code == 401
        assert api_client.session_store.count_for_user(victim["user"]["id"]) == 0

    def test_cannot_change_own_status(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("admin2@example.com", "admin2", ADMIN_PERMS)
        resp = api_client.client.patch(
            f"/api/v1/users/{admin['user']['id']}/status", json={"status": "inactive"}, headers=auth_header(admin)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_status_change"

    def test_assign_role(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("admin3@example.com", "admin3", ADMIN_PERMS)
        target = api_client.login("target3@example.com")
        role_id = api_client.user_store.create_role(Role(name="viewer3", permissions={"users": frozenset({"read"})}))

        resp = api_client.client.patch(
            f"/api/v1/users/{target['user']['id']}/role", json={"roleId": role_id}, headers=auth_header(admin)
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["role"]["name"] == "viewer3"

        # The guard reloads the user, so the old access token now carries the new role.
        assert api_client.client.get("/api/v1/users", headers=auth_header(target)).status_code == 200

    def test_assign_unknown_role_is_404(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("admin4@example.com", "admin4", ADMIN_PERMS)
        resp = api_client.client.patch(
            f"/api/v1/users/{admin['user']['id']}/role", json={"roleId": 99999}, headers=auth_header(admin)
        )
        assert resp.status_code == 404

    def test_delete_user(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("admin5@example.com", "admin5", ADMIN_PERMS)
        victim = api_client.login("victim5@example.com")
        vid = victim["user"]["id"]

        assert api_client.client.delete(f"/api/v1/users/{vid}", headers=auth_header(admin)).status_code == 204
        assert api_client.client.get(f"/api/v1/users/{vid}", headers=auth_header(admin)).status_code == 404
        assert api_client.client.get("/api/v1/auth/profile", headers=auth_header(victim)).status_code == 401

    def test_cannot_delete_self(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("admin6@example.com", "admin6", ADMIN_PERMS)
        resp = api_client.client.delete(f"/api/v1/users/{admin['user']['id']}", headers=auth_header(admin))
        assert resp.status_code == 400

    def test_login_audit_trail(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("admin7@example.com", "admin7", ADMIN_PERMS)
        resp = api_client.client.get(f"/api/v1/users/{admin['user']['id']}/logins", headers=auth_header(admin))
        assert resp.status_code == 200
        assert resp.json()[0]["outcome"] == "success"


class TestRoles:
    def test_create_and_update_role(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("roles1@example.com", "roles-admin1", ADMIN_PERMS)
        headers = auth_header(admin)

        resp = api_client.client.post(
            "/api/v1/roles",
            json={"name": "auditor", "description": "Read-only", "permissions": {"users": ["read"]}},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        role = resp.json()
        assert role["permissions"] == {"users": ["read"]}
        assert role["isActive"] is True

        dup = api_client.client.post("/api/v1/roles", json={"name": "auditor"}, headers=headers)
        assert dup.status_code == 409

        resp = api_client.client.patch(
            f"/api/v1/roles/{role['id']}/permissions",
            json={"permissions": {"users": ["read", "update"], "roles": ["*"]}},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["permissions"] == {"roles": ["*"], "users": ["read", "update"]}

    def test_malformed_permissions_are_422(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("roles2@example.com", "roles-admin2", ADMIN_PERMS)
        resp = api_client.client.post(
            "/api/v1/roles", json={"name": "broken", "permissions": {"users": "read"}}, headers=auth_header(admin)
        )
        assert resp.status_code == 422

    def test_update_unknown_role_is_404(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("roles3@example.com", "roles-admin3", ADMIN_PERMS)
        resp = api_client.client.patch(
            "/api/v1/roles/99999/permissions", json={"permissions": {}}, headers=auth_header(admin)
        )
        assert resp.status_code == 404

    def test_permission_catalog(self, api_client: ApiContext) -> None:
        admin = api_client.user_with_role("roles4@example.com", "roles-admin4", ADMIN_PERMS)
        resp = api_client.client.get("/api/v1/roles/permissions", headers=auth_header(admin))
        assert resp.status_code == 200
        catalog = {entry["resource"]: entry["actions"] for entry in resp.json()}
        assert "read" in catalog["users"]
        assert "*" in catalog["users"]
