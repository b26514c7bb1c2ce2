"""
services/group_service.py — Group and membership business logic.

Authorization rules:
  - Read a group:          members only (FORBIDDEN, 403)
  - Rename / retype / change members: creator only
  - Delete:                creator only

Deletion is soft: deleted_at is set and the group answers GROUP_NOT_FOUND
(404) from then on. Its splits stay in the database as orphans; every
balance and allocator query excludes them (balance_service.py).

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group, GroupType
from backend.app.models.membership import Membership
from backend.app.models.user import User


# ── Shared helpers (also used by split and settlement services) ────────────

def get_live_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404) if missing or deleted."""
    group = session.get(Group, group_id)
    if group is None or group.is_deleted:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def require_member(group_id: int, user_id: int, session: Session) -> None:
    """Raises FORBIDDEN (403) if user_id is not a member of group_id."""
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )


# ── Private helpers ────────────────────────────────────────────────────────

def _require_creator(group: Group, caller_id: int, action: str) -> None:
    if caller_id != group.creator_user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the group creator may {action} this group.",
            403,
        )


def _ordered_member_ids(creator_id: int, member_ids: list[int] | None) -> list[int]:
    """Creator first, then the requested ids in order, without duplicates."""
    ordered = [creator_id]
    for uid in member_ids or []:
        if uid not in ordered:
            ordered.append(uid)
    return ordered


def _load_users(user_ids: list[int], session: Session) -> dict[int, User]:
    """Loads the users by id; raises USER_NOT_FOUND (404) for the first missing one."""
    users = {
        u.id: u
        for u in session.execute(select(User).where(User.id.in_(user_ids))).scalars().all()
    }
    for uid in user_ids:
        if uid not in users:
            raise AppError(
                ErrorCode.USER_NOT_FOUND,
                f"User {uid} does not exist.",
                404,
                field="member_ids",
            )
    return users


def _set_members(group: Group, member_ids: list[int], session: Session) -> None:
    """Rewrites the group's membership rows to match member_ids, in order."""
    _load_users(member_ids, session)

    existing = {m.user_id: m for m in group.memberships}
    keep = []
    for position, uid in enumerate(member_ids):
        membership = existing.pop(uid, None)
        if membership is None:
            membership = Membership(user_id=uid, group_id=group.id)
        membership.position = position
        keep.append(membership)

    # delete-orphan cascade removes the memberships left in `existing`.
    group.memberships = keep
    session.flush()


def _build_group_dict(group: Group, members: list[User]) -> dict:
    """Serialises a Group with its member list to a plain dict."""
    return {
        "id": group.id,
        "name": group.name,
        "type": group.type.value,
        "creator_user_id": group.creator_user_id,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "members": [
            {
                "id": m.id,
                "username": m.username,
                "email": m.email,
            }
            for m in members
        ],
    }


def _group_members(group: Group, session: Session) -> list[User]:
    stmt = (
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(Membership.group_id == group.id)
        .order_by(Membership.position.asc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        name: str,
        group_type: GroupType,
        member_ids: list[int] | None,
        creator_id: int,
        session: Session,
) -> dict:
    """
    Creates a new group. The creator is always the first member.

    Raises:
      AppError(USER_NOT_FOUND, 404) — creator or a requested member does not exist
    """
    ordered = _ordered_member_ids(creator_id, member_ids)
    _load_users(ordered, session)

    group = Group(name=name, type=group_type, creator_user_id=creator_id)
    session.add(group)
    session.flush()  # populate group.id before creating memberships

    _set_members(group, ordered, session)
    session.refresh(group)
    return _build_group_dict(group, _group_members(group, session))


def list_groups(user_id: int, session: Session) -> list[dict]:
    """
    Returns all live groups the user is a member of, oldest first.
    Lightweight dicts; the member list comes from get_group().
    """
    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(
            Membership.user_id == user_id,
            Group.deleted_at.is_(None),
        )
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    groups = session.execute(stmt).scalars().all()

    return [
        {
            "id": g.id,
            "name": g.name,
            "type": g.type.value,
            "creator_user_id": g.creator_user_id,
            "created_at": g.created_at.isoformat() if g.created_at else None,
        }
        for g in groups
    ]


def get_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Returns group details with the ordered member list. Members only."""
    group = get_live_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)
    return _build_group_dict(group, _group_members(group, session))


def update_group(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> dict:
    """
    Changes name, type and/or members. Creator only.

    member_ids, when present, replaces the whole member list; the creator is
    kept as the first member whether or not the list includes them.
    """
    group = get_live_group_or_404(group_id, session)
    _require_creator(group, caller_id, "change")

    if "name" in data:
        group.name = data["name"]
    if "type" in data:
        group.type = data["type"]
    if "member_ids" in data:
        _set_members(group, _ordered_member_ids(group.creator_user_id, data["member_ids"]), session)

    session.flush()
    session.refresh(group)
    return _build_group_dict(group, _group_members(group, session))


def delete_group(group_id: int, caller_id: int, session: Session) -> list[int]:
    """
    Soft-deletes a group. Creator only.

    Returns the member ids at deletion time so the caller can notify them.
    """
    group = get_live_group_or_404(group_id, session)
    _require_creator(group, caller_id, "delete")

    member_ids = group.member_ids
    group.deleted_at = datetime.now(timezone.utc)
    session.flush()
    return member_ids
