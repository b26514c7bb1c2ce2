"""
tests/integration/test_groups.py — Integration tests for group endpoints.

Endpoints covered:
  POST   /groups             → 201
  GET    /groups             → 200
  GET    /groups/:id         → 200 / 403 / 404
  PATCH  /groups/:id         → 200 / 403
  DELETE /groups/:id         → 200 / 403
  GET    /groups/:id/splits  → 200
"""

from __future__ import annotations

from backend.app.services.notification_service import NotificationEvent

from .conftest import auth_headers, dinner, get_balance, make_group, make_user


def test_create_group_creator_is_first_member(client, app):
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")

    group = make_group(client, app, alice, [bob, alice, bob], name="Lisbon", group_type="Trip")

    assert group["name"] == "Lisbon"
    assert group["type"] == "Trip"
    assert group["creator_user_id"] == alice
    assert [m["id"] for m in group["members"]] == [alice, bob]


def test_create_group_defaults_to_custom(client, app):
    alice = make_user(app, "alice")

    resp = client.post("/api/v1/groups/", json={"name": "Flat"}, headers=auth_headers(app, alice))

    assert resp.status_code == 201
    assert resp.get_json()["data"]["type"] == "Custom"


def test_create_group_unknown_member_404(client, app):
    alice = make_user(app, "alice")

    resp = client.post(
        "/api/v1/groups/",
        json={"name": "Flat", "member_ids": [9999]},
        headers=auth_headers(app, alice),
    )

    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


def test_create_group_invalid_type_400(client, app):
    alice = make_user(app, "alice")

    resp = client.post(
        "/api/v1/groups/",
        json={"name": "Flat", "type": "Boat"},
        headers=auth_headers(app, alice),
    )

    assert resp.status_code == 400
    error = resp.get_json()["error"]
    assert error["code"] == "INVALID_GROUP_TYPE"
    assert error["field"] == "type"


def test_requests_without_token_are_401(client, app):
    resp = client.get("/api/v1/groups/")
    assert resp.status_code == 401


def test_list_groups_only_shows_callers_live_groups(client, app):
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")
    shared = make_group(client, app, alice, [bob], name="Shared")
    make_group(client, app, alice, name="Alice only")
    gone = make_group(client, app, bob, name="Gone")
    client.delete(f"/api/v1/groups/{gone['id']}", headers=auth_headers(app, bob))

    resp = client.get("/api/v1/groups/", headers=auth_headers(app, bob))

    assert resp.status_code == 200
    assert [g["id"] for g in resp.get_json()["data"]] == [shared["id"]]


def test_get_group_non_member_403(client, app):
    alice = make_user(app, "alice")
    mallory = make_user(app, "mallory")
    group = make_group(client, app, alice)

    resp = client.get(f"/api/v1/groups/{group['id']}", headers=auth_headers(app, mallory))

    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_get_group_missing_404(client, app):
    alice = make_user(app, "alice")

    resp = client.get("/api/v1/groups/4242", headers=auth_headers(app, alice))

    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"


def test_patch_group_replaces_members_keeping_creator_first(client, app):
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")
    carol = make_user(app, "carol")
    group = make_group(client, app, alice, [bob])

    resp = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"name": "Renamed", "member_ids": [carol]},
        headers=auth_headers(app, alice),
    )

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["name"] == "Renamed"
    assert [m["id"] for m in data["members"]] == [alice, carol]


def test_patch_group_by_member_is_forbidden(client, app):
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")
    group = make_group(client, app, alice, [bob])

    resp = client.patch(
        f"/api/v1/groups/{group['id']}",
        json={"name": "Bob's now"},
        headers=auth_headers(app, bob),
    )

    assert resp.status_code == 403


def test_patch_group_empty_body_400(client, app):
    alice = make_user(app, "alice")
    group = make_group(client, app, alice)

    resp = client.patch(f"/api/v1/groups/{group['id']}", json={}, headers=auth_headers(app, alice))

    assert resp.status_code == 400


def test_delete_group_hides_its_splits_from_balances(client, app, notifier):
    alice, bob, carol, group, _ = dinner(client, app)
    assert get_balance(client, app, alice)["total_owing"] == "60.00"

    resp = client.delete(f"/api/v1/groups/{group['id']}", headers=auth_headers(app, alice))

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"deleted": True, "group_id": group["id"]}
    assert get_balance(client, app, alice)["total_owing"] == "0.00"
    assert get_balance(client, app, bob)["total_owed"] == "0.00"

    (event,) = notifier.of(NotificationEvent.GROUP_DELETED)
    assert event[1] == [bob, carol]

    resp = client.get(f"/api/v1/groups/{group['id']}", headers=auth_headers(app, alice))
    assert resp.status_code == 404


def test_delete_group_by_member_is_forbidden(client, app):
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")
    group = make_group(client, app, alice, [bob])

    resp = client.delete(f"/api/v1/groups/{group['id']}", headers=auth_headers(app, bob))

    assert resp.status_code == 403


def test_list_group_splits(client, app):
    alice, bob, _, group, split = dinner(client, app)

    resp = client.get(f"/api/v1/groups/{group['id']}/splits", headers=auth_headers(app, bob))

    assert resp.status_code == 200
    assert [s["id"] for s in resp.get_json()["data"]] == [split["id"]]
