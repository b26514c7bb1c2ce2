"""
tests/integration/test_users.py — Integration tests for the user directory endpoints.

Endpoints covered:
  GET /users/:id            → 200 / 404
  GET /users/search?q=...   → 200 / 400
"""

from __future__ import annotations

from datetime import timedelta

from .conftest import auth_headers, make_token, make_user


def test_get_user(client, app):
    alice = make_user(app, "alice")

    resp = client.get(f"/api/v1/users/{alice}", headers=auth_headers(app, alice))

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"id": alice, "username": "alice", "email": "alice@test.com"}


def test_get_unknown_user_404(client, app):
    alice = make_user(app, "alice")

    resp = client.get("/api/v1/users/9999", headers=auth_headers(app, alice))

    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


def test_search_is_case_insensitive_prefix(client, app):
    alice = make_user(app, "alice")
    make_user(app, "Albert", email="bert@test.com")
    make_user(app, "bob", email="al.bob@test.com")
    make_user(app, "carol")

    resp = client.get("/api/v1/users/search?q=AL", headers=auth_headers(app, alice))

    assert resp.status_code == 200
    assert [u["username"] for u in resp.get_json()["data"]] == ["Albert", "alice", "bob"]


def test_search_treats_wildcards_literally(client, app):
    alice = make_user(app, "alice")
    make_user(app, "a_b")
    make_user(app, "axb")
    headers = auth_headers(app, alice)

    underscore = client.get("/api/v1/users/search", query_string={"q": "a_"}, headers=headers)
    percent = client.get("/api/v1/users/search", query_string={"q": "%"}, headers=headers)

    assert underscore.status_code == 200
    assert [u["username"] for u in underscore.get_json()["data"]] == ["a_b"]
    assert percent.status_code == 200
    assert percent.get_json()["data"] == []


def test_search_without_query_400(client, app):
    alice = make_user(app, "alice")

    resp = client.get("/api/v1/users/search?q=%20", headers=auth_headers(app, alice))

    assert resp.status_code == 400
    error = resp.get_json()["error"]
    assert error["code"] == "MISSING_FIELD"
    assert error["field"] == "q"


def test_expired_token_rejected(client, app):
    alice = make_user(app, "alice")
    token = make_token(app, alice, expires_in=timedelta(seconds=-1))

    resp = client.get(f"/api/v1/users/{alice}", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "TOKEN_EXPIRED"
