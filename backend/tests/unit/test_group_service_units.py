"""
Unit tests for group_service branches that are lightly exercised by integration tests.

These tests run DB-free with mocked session/query behavior.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import GroupType
from backend.app.services import group_service


def _mock_scalars_all(session: MagicMock, rows: list) -> None:
    session.execute.return_value.scalars.return_value.all.return_value = rows


def test_get_live_group_or_404_raises_when_group_missing():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        group_service.get_live_group_or_404(group_id=404, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.GROUP_NOT_FOUND
    assert err.http_status == 404


def test_get_live_group_or_404_treats_deleted_group_as_missing():
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=1, is_deleted=True)

    with pytest.raises(AppError) as exc_info:
        group_service.get_live_group_or_404(group_id=1, session=session)

    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND


def test_require_member_passes_when_membership_exists():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = object()

    group_service.require_member(group_id=1, user_id=10, session=session)

    session.execute.assert_called_once()


def test_require_member_raises_forbidden_when_missing():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        group_service.require_member(group_id=1, user_id=999, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.FORBIDDEN
    assert err.http_status == 403


def test_ordered_member_ids_puts_creator_first_without_duplicates():
    assert group_service._ordered_member_ids(5, [3, 5, 3, 7]) == [5, 3, 7]
    assert group_service._ordered_member_ids(5, None) == [5]


def test_load_users_raises_for_first_unknown_id():
    session = MagicMock()
    _mock_scalars_all(session, [SimpleNamespace(id=1)])

    with pytest.raises(AppError) as exc_info:
        group_service._load_users([1, 2, 3], session)

    err = exc_info.value
    assert err.code == ErrorCode.USER_NOT_FOUND
    assert err.field == "member_ids"
    assert "2" in err.message


def test_list_groups_serializes_groups():
    session = MagicMock()
    ts1 = datetime(2026, 1, 1, tzinfo=timezone.utc)
    ts2 = datetime(2026, 1, 2, tzinfo=timezone.utc)
    rows = [
        SimpleNamespace(id=1, name="Lisbon", type=GroupType.TRIP, creator_user_id=10, created_at=ts1),
        SimpleNamespace(id=2, name="Flat", type=GroupType.HOME, creator_user_id=20, created_at=ts2),
    ]
    _mock_scalars_all(session, rows)

    result = group_service.list_groups(user_id=10, session=session)

    assert result == [
        {
            "id": 1,
            "name": "Lisbon",
            "type": "Trip",
            "creator_user_id": 10,
            "created_at": ts1.isoformat(),
        },
        {
            "id": 2,
            "name": "Flat",
            "type": "Home",
            "creator_user_id": 20,
            "created_at": ts2.isoformat(),
        },
    ]
    session.execute.assert_called_once()


@patch("backend.app.services.group_service._build_group_dict")
@patch("backend.app.services.group_service.require_member")
@patch("backend.app.services.group_service.get_live_group_or_404")
def test_get_group_returns_group_with_members(
    mock_get_live_group_or_404,
    mock_require_member,
    mock_build_group_dict,
):
    session = MagicMock()
    group = SimpleNamespace(id=11)
    members = [
        SimpleNamespace(id=1, username="alice", email="a@example.com"),
        SimpleNamespace(id=2, username="bob", email="b@example.com"),
    ]
    _mock_scalars_all(session, members)

    mock_get_live_group_or_404.return_value = group
    mock_build_group_dict.return_value = {"id": 11, "members": []}

    result = group_service.get_group(group_id=11, caller_id=1, session=session)

    assert result == {"id": 11, "members": []}
    mock_get_live_group_or_404.assert_called_once_with(11, session)
    mock_require_member.assert_called_once_with(11, 1, session)
    mock_build_group_dict.assert_called_once_with(group, members)


@patch("backend.app.services.group_service.get_live_group_or_404")
def test_update_group_non_creator_raises_forbidden(mock_get_live_group_or_404):
    session = MagicMock()
    mock_get_live_group_or_404.return_value = SimpleNamespace(id=1, creator_user_id=100)

    with pytest.raises(AppError) as exc_info:
        group_service.update_group(
            group_id=1,
            caller_id=200,
            data={"name": "Mine now"},
            session=session,
        )

    err = exc_info.value
    assert err.code == ErrorCode.FORBIDDEN
    assert err.http_status == 403
    session.flush.assert_not_called()


@patch("backend.app.services.group_service.get_live_group_or_404")
def test_delete_group_non_creator_raises_forbidden(mock_get_live_group_or_404):
    session = MagicMock()
    mock_get_live_group_or_404.return_value = SimpleNamespace(id=1, creator_user_id=100)

    with pytest.raises(AppError) as exc_info:
        group_service.delete_group(group_id=1, caller_id=200, session=session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN


@patch("backend.app.services.group_service.get_live_group_or_404")
def test_delete_group_sets_deleted_at_and_returns_members(mock_get_live_group_or_404):
    session = MagicMock()
    group = SimpleNamespace(id=1, creator_user_id=100, member_ids=[100, 200], deleted_at=None)
    mock_get_live_group_or_404.return_value = group

    member_ids = group_service.delete_group(group_id=1, caller_id=100, session=session)

    assert member_ids == [100, 200]
    assert group.deleted_at is not None
    session.flush.assert_called_once()
