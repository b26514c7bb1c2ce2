"""
services/balance_service.py — Ledger reads and the per-user balance endpoint.

The data-access helpers below are the ONLY sanctioned way to load splits and
settlements for balance or allocation purposes. They always exclude
soft-deleted splits and splits of deleted groups, so no balance ever
references a group that no longer exists.

The balance itself is computed by ledger_aggregator.aggregate(); this module
only loads the inputs and checks who may look.

Layer rules:
  - No Flask imports. Receives ids and a Session; returns plain objects.
  - Reads never lock; they see whatever snapshot the session gives them.
"""

from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from backend.app.errors import AppError, ErrorCode
from backend.app.models.bill_split import BillSplit, Participant
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.settlement import Settlement
from backend.app.models.user import User
from backend.app.services.ledger_aggregator import UserBalance, aggregate


# ── Data access helpers ────────────────────────────────────────────────────

def _live_splits_stmt():
    return (
        select(BillSplit)
        .join(Group, BillSplit.group_id == Group.id)
        .where(
            BillSplit.deleted_at.is_(None),
            Group.deleted_at.is_(None),
        )
        .options(selectinload(BillSplit.participants))
    )


def get_live_splits_for_user(user_id: int, session: Session) -> list[BillSplit]:
    """Live splits where user_id is a participant or the creator, newest first."""
    participating = select(Participant.split_id).where(Participant.user_id == user_id)
    stmt = (
        _live_splits_stmt()
        .where(
            or_(
                BillSplit.creator_user_id == user_id,
                BillSplit.id.in_(participating),
            )
        )
        .order_by(BillSplit.created_at.desc(), BillSplit.id.desc())
    )
    return list(session.execute(stmt).scalars().unique().all())


def get_live_splits_for_group(group_id: int, session: Session) -> list[BillSplit]:
    stmt = (
        _live_splits_stmt()
        .where(BillSplit.group_id == group_id)
        .order_by(BillSplit.created_at.desc(), BillSplit.id.desc())
    )
    return list(session.execute(stmt).scalars().unique().all())


def get_settlements_for_user(user_id: int, session: Session) -> list[Settlement]:
    """Every settlement where user_id paid or received, newest first."""
    stmt = (
        select(Settlement)
        .where(
            or_(
                Settlement.payer_user_id == user_id,
                Settlement.payee_user_id == user_id,
            )
        )
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_settlements_for_splits(split_ids: list[int], session: Session) -> list[Settlement]:
    if not split_ids:
        return []
    stmt = select(Settlement).where(Settlement.split_id.in_(split_ids))
    return list(session.execute(stmt).scalars().all())


def get_live_group_ids(user_id: int, session: Session) -> set[int]:
    stmt = (
        select(Group.id)
        .join(Membership, Group.id == Membership.group_id)
        .where(
            Membership.user_id == user_id,
            Group.deleted_at.is_(None),
        )
    )
    return set(session.execute(stmt).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def compute_user_balance(user_id: int, session: Session) -> UserBalance:
    """Loads user_id's live splits and settlements and aggregates them."""
    splits = get_live_splits_for_user(user_id, session)
    settlements = get_settlements_for_user(user_id, session)
    active_group_ids = {s.group_id for s in splits}
    return aggregate(splits, settlements, user_id, active_group_ids)


def get_user_balance(user_id: int, caller_id: int, session: Session) -> UserBalance:
    """
    Balance for GET /balance/:user_id. Always computed fresh.

    Callers may read their own balance, or that of a user they share a live
    group with.

    Raises:
        AppError(USER_NOT_FOUND, 404) — user_id does not exist.
        AppError(FORBIDDEN, 403)      — no shared live group.
    """
    if session.get(User, user_id) is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )

    if caller_id != user_id:
        shared = get_live_group_ids(user_id, session) & get_live_group_ids(caller_id, session)
        if not shared:
            raise AppError(
                ErrorCode.FORBIDDEN,
                "You can only view balances of users who share a group with you.",
                403,
            )

    return compute_user_balance(user_id, session)
