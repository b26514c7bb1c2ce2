"""
services/split_service.py — BillSplit repository operations.

Consistency rule enforced here:
  sum(participant.share_amount) == total_amount. Shares are always computed
  server-side by allocation_calculator.compute_shares(); client-supplied
  share_amount is only considered in exact mode, through
  apply_exact_overrides(), and is validated before any write. A division
  that would leave any share below zero is rejected (NEGATIVE_SHARE, 422).

Authorization rules:
  - Create: caller must be a member of the split's group (FORBIDDEN, 403);
            every participant must be a member (PARTICIPANT_NOT_MEMBER, 422)
  - Read:   caller must be a member of the split's group
  - Replace / Delete: split creator only (FORBIDDEN, 403)

Concurrency:
  replace_split and delete_split go through run_with_revision_retry(), so
  they serialize with record_settlement on the same split.

Layer rules:
  - No Flask imports. Receives ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.bill_split import BillSplit, Participant, SplitMethod
from backend.app.models.settlement import Settlement
from backend.app.services import balance_service
from backend.app.services.allocation_calculator import (
    ZERO,
    apply_exact_overrides,
    compute_shares,
    validate_percentages,
)
from backend.app.services.group_service import get_live_group_or_404, require_member
from backend.app.services.revision_retry import DEFAULT_MAX_ATTEMPTS, run_with_revision_retry


# ── Private helpers ────────────────────────────────────────────────────────

def get_live_split_or_404(split_id: int, session: Session) -> BillSplit:
    """
    Returns the split or raises SPLIT_NOT_FOUND (404) when it is missing,
    soft-deleted, or orphaned by a deleted group.
    """
    split = session.get(BillSplit, split_id)
    if split is None or split.is_deleted or split.group is None or split.group.is_deleted:
        raise AppError(
            ErrorCode.SPLIT_NOT_FOUND,
            f"Split {split_id} does not exist.",
            404,
        )
    return split


def _require_creator(split: BillSplit, caller_id: int, action: str) -> None:
    if caller_id != split.creator_user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the creator of this split may {action} it.",
            403,
        )


def _validate_participants_are_members(participants: list[dict], group) -> None:
    """Raises PARTICIPANT_NOT_MEMBER (422) for the first participant outside the group."""
    member_set = set(group.member_ids)
    for p in participants:
        if p["user_id"] not in member_set:
            raise AppError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"User {p['user_id']} is not a member of group {group.id}.",
                422,
                field="participants",
            )


def _split_method_of(participants: list[dict]) -> SplitMethod:
    # The schema guarantees a single method across participants.
    return SplitMethod(participants[0].get("split_method", SplitMethod.EQUAL))


def _compute_participant_rows(total_amount: Decimal, participants: list[dict]) -> list[dict]:
    """
    Turns validated participant input into the rows to store.

    Returns [{user_id, position, share_amount, paid_amount, split_method,
    split_value}, ...] in input order. Guarantees sum(share_amount) == total.
    """
    method = _split_method_of(participants)

    if method == SplitMethod.PERCENTAGE:
        validate_percentages(p.get("split_value") for p in participants)

    shares = compute_shares(
        total_amount,
        method,
        [{"user_id": p["user_id"], "split_value": p.get("split_value")} for p in participants],
    )

    # Exact mode: client shares win when every participant sent one.
    if method == SplitMethod.EXACT and all(p.get("share_amount") is not None for p in participants):
        shares = apply_exact_overrides(
            total_amount,
            [{"user_id": p["user_id"], "share_amount": p["share_amount"]} for p in participants],
        )

    # Per-head rounding can push the first participant's residual below zero,
    # e.g. 0.07 among ten people rounds to 0.01 each.
    negative = next((s for s in shares if s["share_amount"] < ZERO), None)
    if negative is not None:
        raise AppError(
            ErrorCode.NEGATIVE_SHARE,
            f"A total of {total_amount} cannot be divided this way: user "
            f"{negative['user_id']} would get a share of {negative['share_amount']}.",
            422,
            field="participants",
        )

    paid_total = sum((p.get("paid_amount") or ZERO for p in participants), ZERO)
    if paid_total > total_amount:
        raise AppError(
            ErrorCode.PAID_EXCEEDS_TOTAL,
            f"Participants paid {paid_total} in total, more than the split total {total_amount}.",
            422,
            field="participants",
        )

    share_sum = sum((s["share_amount"] for s in shares), ZERO)
    if share_sum != total_amount:
        # compute_shares() assigns the residual, so this is a programming error.
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Share computation produced {share_sum} for total {total_amount}. "
            "This is a bug; please report it.",
            500,
        )

    return [
        {
            "user_id": p["user_id"],
            "position": position,
            "share_amount": share["share_amount"],
            "paid_amount": p.get("paid_amount") or ZERO,
            "split_method": method,
            "split_value": (
                p.get("split_value") if method == SplitMethod.PERCENTAGE else Decimal("1")
            ),
        }
        for position, (p, share) in enumerate(zip(participants, shares))
    ]


def _participants_from_rows(rows: list[dict]) -> list[Participant]:
    return [Participant(**row) for row in rows]


def _settled_by_payer(split_id: int, session: Session) -> dict[int, Decimal]:
    """Total each user has settled against this split, as payer."""
    rows = session.execute(
        select(Settlement).where(Settlement.split_id == split_id)
    ).scalars().all()
    settled: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for s in rows:
        settled[s.payer_user_id] += s.amount
    return settled


def _validate_settled_participants_kept(rows: list[dict], settled: dict[int, Decimal]) -> None:
    """
    A participant who already settled on this split must stay in it, with a
    paid_amount that still covers what they settled. Otherwise the
    settlement history would no longer match the split.
    """
    new_paid = {r["user_id"]: r["paid_amount"] for r in rows}
    for user_id, amount in settled.items():
        if amount <= 0:
            continue
        if user_id not in new_paid or new_paid[user_id] < amount:
            raise AppError(
                ErrorCode.SETTLED_PARTICIPANT_CONFLICT,
                f"User {user_id} has already settled {amount} on this split; "
                f"they must remain a participant with at least that paid_amount.",
                422,
                field="participants",
            )


# ── Public service functions ───────────────────────────────────────────────

def create_split(caller_id: int, data: dict, session: Session) -> BillSplit:
    """
    Records a new split.

    Args:
        caller_id: The authenticated user; becomes the split creator.
        data:      Validated dict from SplitSchema.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)          — group missing or deleted
        AppError(FORBIDDEN, 403)                — caller not a group member
        AppError(PARTICIPANT_NOT_MEMBER, 422)   — participant outside the group
        AppError(PERCENTAGES_NOT_100, 422)      — percentage weights off
        AppError(SHARES_NOT_MATCHING_TOTAL, 422)— exact shares off
        AppError(NEGATIVE_SHARE, 422)           — rounding leaves a share below zero
        AppError(PAID_EXCEEDS_TOTAL, 422)       — fronted more than the total
    """
    group = get_live_group_or_404(data["group_id"], session)
    require_member(group.id, caller_id, session)

    participants = data["participants"]
    _validate_participants_are_members(participants, group)
    rows = _compute_participant_rows(data["total_amount"], participants)

    split = BillSplit(
        name=data["name"],
        total_amount=data["total_amount"],
        group_id=group.id,
        category=data.get("category"),
        notes=data.get("notes"),
        creator_user_id=caller_id,
        participants=_participants_from_rows(rows),
    )
    session.add(split)
    session.flush()
    session.refresh(split)
    return split


def get_split(split_id: int, caller_id: int, session: Session) -> BillSplit:
    """Returns a live split. Caller must be a member of its group."""
    split = get_live_split_or_404(split_id, session)
    require_member(split.group_id, caller_id, session)
    return split


def list_splits_for_group(group_id: int, caller_id: int, session: Session) -> list[BillSplit]:
    """Live splits of a live group, newest first. Members only."""
    get_live_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)
    return balance_service.get_live_splits_for_group(group_id, session)


def list_splits_for_user(user_id: int, session: Session) -> list[BillSplit]:
    """Live splits the user takes part in or created, newest first."""
    return balance_service.get_live_splits_for_user(user_id, session)


def replace_split(
        split_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> BillSplit:
    """
    Fully overwrites name, total, category, notes and participants. Creator only.

    Shares are recomputed exactly as on create. The split cannot move to a
    different group. Participants who already settled on the split must be
    kept with a paid_amount that covers their settlements.
    """

    def _replace() -> BillSplit:
        split = get_live_split_or_404(split_id, session)
        _require_creator(split, caller_id, "edit")

        if data["group_id"] != split.group_id:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                "A split cannot be moved to a different group.",
                422,
                field="group_id",
            )

        participants = data["participants"]
        _validate_participants_are_members(participants, split.group)
        rows = _compute_participant_rows(data["total_amount"], participants)
        _validate_settled_participants_kept(rows, _settled_by_payer(split.id, session))

        split.name = data["name"]
        split.total_amount = data["total_amount"]
        split.category = data.get("category")
        split.notes = data.get("notes")

        # Reuse rows for users who stay so the unique (split_id, user_id)
        # constraint never sees a delete and an insert for the same user.
        existing = {p.user_id: p for p in split.participants}
        updated = []
        for row in rows:
            participant = existing.get(row["user_id"])
            if participant is None:
                participant = Participant(**row)
            else:
                for key, value in row.items():
                    setattr(participant, key, value)
            updated.append(participant)
        split.participants = updated

        # Always touch the split row so its revision moves.
        split.updated_at = datetime.now(timezone.utc)
        return split

    split = run_with_revision_retry(session, _replace, max_attempts, label="replace_split")
    session.refresh(split)
    return split


def delete_split(
        split_id: int,
        caller_id: int,
        session: Session,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> BillSplit:
    """
    Soft-deletes a split. Creator only.

    The row stays so existing settlements keep a valid split_id; every
    balance and allocator read excludes it from now on.
    """

    def _delete() -> BillSplit:
        split = get_live_split_or_404(split_id, session)
        _require_creator(split, caller_id, "delete")
        split.deleted_at = datetime.now(timezone.utc)
        return split

    return run_with_revision_retry(session, _delete, max_attempts, label="delete_split")
