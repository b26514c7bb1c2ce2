"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against in-memory SQLite by default (TestingConfig), or against
    TEST_DATABASE_URL when it is set.
  - The app is created once per session using create_app("testing") with a
    RecordingNotifier, so tests can assert which notifications went out.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated,
    and the user directory cache is emptied (SQLite reuses row ids).

Identity comes from an external provider, so there is no register/login
endpoint. Users are inserted directly and tokens are signed here with the
testing JWT_SECRET_KEY.

Helper functions (not fixtures) are provided for common operations:
  - make_user(app, ...)            → user id
  - auth_headers(app, user_id)     → {"Authorization": "Bearer <token>"}
  - make_group(client, app, ...)   → group dict
  - make_split(client, app, ...)   → HTTP response
  - settle(client, app, ...)       → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from backend.app import create_app
from backend.app.extensions import db as _db
from backend.app.models.user import User


class RecordingNotifier:
    """Collects every emitted notification as (event, recipient_ids, payload)."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def emit(self, event, recipient_ids, payload) -> None:
        self.events.append((event, list(recipient_ids), payload))

    def of(self, event) -> list[tuple]:
        return [e for e in self.events if e[0] == event]


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.

    Steps:
      1. Create app with TestingConfig and a RecordingNotifier.
      2. Run db.create_all() to create all tables.
      3. Yield the app for the test session.
      4. Drop all tables at teardown.
    """
    flask_app = create_app("testing", notifier=RecordingNotifier())

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows between tests in FK-safe order.

    Settlements and participants go before bill_splits; bill_splits and
    memberships before groups; everything before users.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM settlements"))
            conn.execute(text("DELETE FROM participants"))
            conn.execute(text("DELETE FROM bill_splits"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()

    app.extensions["user_directory"].invalidate()
    app.extensions["notifier"].events.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Client / notifier fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def notifier(app) -> RecordingNotifier:
    return app.extensions["notifier"]


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_user(app, username: str = "alice", email: str | None = None) -> int:
    """Inserts a directory user and returns its id."""
    if email is None:
        email = f"{username}@test.com"
    with app.app_context():
        user = User(username=username, email=email)
        _db.session.add(user)
        _db.session.commit()
        return user.id


def make_token(app, user_id, expires_in: timedelta = timedelta(minutes=15)) -> str:
    """Signs an access token the way the identity provider would."""
    now = datetime.now(timezone.utc)
    payload = {"sub": str(user_id), "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, app.config["JWT_SECRET_KEY"], algorithm=app.config["JWT_ALGORITHM"])


def auth_headers(app, user_id: int) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {make_token(app, user_id)}"}


def make_group(
    client,
    app,
    creator_id: int,
    member_ids: list[int] | None = None,
    name: str = "Test Group",
    group_type: str = "Custom",
) -> dict:
    """
    Creates a group and returns the group data dict.
    The creator becomes the first member.
    """
    resp = client.post(
        "/api/v1/groups/",
        json={"name": name, "type": group_type, "member_ids": member_ids or []},
        headers=auth_headers(app, creator_id),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_split(
    client,
    app,
    caller_id: int,
    group_id: int,
    total_amount: str,
    participants: list[dict],
    name: str = "Test Split",
    **extra,
):
    """
    Creates a split and returns the HTTP response.
    participants: [{user_id, split_method?, split_value?, share_amount?, paid_amount?}, ...]
    """
    payload = {
        "name": name,
        "total_amount": total_amount,
        "group_id": group_id,
        "participants": participants,
        **extra,
    }
    return client.post(
        "/api/v1/splits/",
        json=payload,
        headers=auth_headers(app, caller_id),
    )


def settle(
    client,
    app,
    caller_id: int,
    payer_id: int,
    payee_id: int,
    amount: str,
    split_id: int | None = None,
    **extra,
):
    """POSTs a settlement and returns the HTTP response."""
    payload = {"payer_id": payer_id, "payee_id": payee_id, "amount": amount, **extra}
    if split_id is not None:
        payload["split_id"] = split_id
    return client.post(
        "/api/v1/settlements/",
        json=payload,
        headers=auth_headers(app, caller_id),
    )


def get_balance(client, app, caller_id: int, user_id: int | None = None) -> dict:
    """Returns the balance data dict for user_id (the caller by default)."""
    target = caller_id if user_id is None else user_id
    resp = client.get(f"/api/v1/balance/{target}", headers=auth_headers(app, caller_id))
    assert resp.status_code == 200, f"get_balance failed: {resp.get_json()}"
    return resp.get_json()["data"]


def dinner(client, app, total: str = "90.00"):
    """
    Alice, Bob and Carol in one group; Alice fronts `total`, split equally.
    Returns (alice_id, bob_id, carol_id, group, split).
    """
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")
    carol = make_user(app, "carol")
    group = make_group(client, app, alice, [bob, carol], name="Friends")
    resp = make_split(
        client, app, alice, group["id"], total,
        [
            {"user_id": alice, "paid_amount": total},
            {"user_id": bob},
            {"user_id": carol},
        ],
        name="Dinner",
    )
    assert resp.status_code == 201, resp.get_json()
    return alice, bob, carol, group, resp.get_json()["data"]
